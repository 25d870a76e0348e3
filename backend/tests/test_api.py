import io
import json

from fastapi.testclient import TestClient
from PIL import Image

from overlay_relay.api.server import create_api
from overlay_relay.config.settings import Settings
from overlay_relay.core.session import SessionManager
from overlay_relay.pipeline.builder import build_export_pipeline


def _export_app(settings):
    pipeline = build_export_pipeline(settings)
    manager = SessionManager.from_settings(settings, pipeline)
    return create_api(settings, manager), manager


def test_health_endpoint_ok():
    client = TestClient(create_api(Settings(), SessionManager()))
    resp = client.get("/healthz")
    assert resp.status_code == 200
    assert resp.json() == {"ok": True, "sessions": 0, "clients": 0, "export": {"enabled": False, "pinned": []}}


def test_late_output_receives_settings_then_show_byte_identical():
    settings_raw = json.dumps({"action": "settings", "settings": {"style": "classic"}})
    show_raw = json.dumps({"action": "show", "data": {"line1": "John 3:16"}})

    with TestClient(create_api(Settings(), SessionManager())) as client:
        with client.websocket_connect("/?session=demo&role=control") as a, \
                client.websocket_connect("/?session=demo&role=output") as watcher:
            a.send_text(settings_raw)
            a.send_text(show_raw)
            # once the watcher sees both frames the server has cached them
            assert watcher.receive_text() == settings_raw
            assert watcher.receive_text() == show_raw

            with client.websocket_connect("/ws?session=demo&role=output") as b:
                assert b.receive_text() == settings_raw
                assert b.receive_text() == show_raw

                a.send_text('{"action":"clear"}')
                assert b.receive_text() == '{"action":"clear"}'


def test_unrecognized_frames_are_relayed_verbatim():
    with TestClient(create_api(Settings(), SessionManager())) as client:
        with client.websocket_connect("/?session=x&role=control") as a, \
                client.websocket_connect("/?session=x&role=output") as b:
            a.send_text("hello there")
            a.send_text('{"action":"custom","n":1}')
            assert b.receive_text() == "hello there"
            assert b.receive_text() == '{"action":"custom","n":1}'


def test_export_status_over_websocket(settings):
    app, _ = _export_app(settings)
    with TestClient(app) as client:
        with client.websocket_connect("/?session=demo&role=control") as ws:
            ws.send_text(json.dumps({"action": "atem-export-status", "sessionId": "demo"}))
            ack = json.loads(ws.receive_text())
    assert ack["action"] == "atem-export-config-ack"
    assert ack["sessionId"] == "demo"
    assert ack["pinCurrentSession"] is False
    assert ack["exportUrl"] == "/atem-live/demo.png"


def test_png_placeholder_for_session_without_export(settings):
    app, _ = _export_app(settings)
    with TestClient(app) as client:
        for url in ("/atem-live/new-session.png", "/atem-live.png?session=new-session&alpha=premultiplied"):
            resp = client.get(url)
            assert resp.status_code == 200
            assert resp.headers["content-type"] == "image/png"
            assert resp.headers["cache-control"] == "no-store"
            with Image.open(io.BytesIO(resp.content)) as img:
                assert img.size == (64, 32)
                assert img.convert("RGBA").getextrema()[3] == (0, 0)


def test_png_serves_published_variants(settings):
    app, manager = _export_app(settings)
    publisher = manager.pipeline.publisher
    publisher.directory.mkdir(parents=True)
    publisher.path_for("demo", "straight").write_bytes(b"straight")
    publisher.path_for("demo", "premultiplied").write_bytes(b"premultiplied")
    publisher.path_for("demo").write_bytes(b"straight")

    with TestClient(app) as client:
        assert client.get("/atem-live/demo.png").content == b"straight"
        assert client.get("/atem-live/demo.png?alpha=premultiplied").content == b"premultiplied"
        assert client.get("/atem-live.png?session=demo&alpha=straight").content == b"straight"
        assert client.get("/atem-live.png?session=demo&alpha=weird").content == b"straight"


def test_png_is_404_when_export_disabled():
    client = TestClient(create_api(Settings(), SessionManager()))
    assert client.get("/atem-live/demo.png").status_code == 404
    assert client.get("/atem-live.png").status_code == 404


def test_export_sessions_listing(settings):
    app, _ = _export_app(settings)
    with TestClient(app) as client:
        with client.websocket_connect("/?session=demo&role=control") as ws:
            ws.send_text(json.dumps({"action": "atem-export-config", "sessionId": "demo", "pinCurrentSession": False}))
            assert json.loads(ws.receive_text())["action"] == "atem-export-config-ack"
            body = client.get("/api/export/sessions").json()
    assert body["enabled"] is True
    assert body["sessions"] == [
        {"sessionId": "demo", "clients": 1, "pinned": False, "exportUrl": "/atem-live/demo.png"}
    ]
