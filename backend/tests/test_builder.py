import asyncio
import io

from PIL import Image

from overlay_relay.config.settings import Settings
from overlay_relay.core.state import StateSnapshot
from overlay_relay.pipeline import builder
from overlay_relay.pipeline.renderer import RenderError, RendererUnavailable

from conftest import FakeWorker


def _alpha_extrema(data):
    with Image.open(io.BytesIO(data)) as img:
        return img.convert("RGBA").getextrema()[3]


def test_export_renders_and_publishes(make_pipeline):
    pipeline = make_pipeline(FakeWorker())
    assert asyncio.run(pipeline.export("demo", StateSnapshot())) is True
    assert _alpha_extrema(pipeline.publisher.read("demo")) == (128, 128)


def test_missing_renderer_publishes_placeholder_once(make_pipeline):
    pipeline = make_pipeline(FakeWorker(error=RendererUnavailable("chromium not installed")))
    assert asyncio.run(pipeline.export("demo", StateSnapshot())) is False
    assert _alpha_extrema(pipeline.publisher.read("demo")) == (0, 0)


def test_missing_renderer_keeps_existing_export(make_pipeline):
    worker = FakeWorker()
    pipeline = make_pipeline(worker)
    asyncio.run(pipeline.export("demo", StateSnapshot()))
    before = pipeline.publisher.read("demo")

    worker.error = RendererUnavailable("browser crashed and cannot relaunch")
    asyncio.run(pipeline.export("demo", StateSnapshot()))
    assert pipeline.publisher.read("demo") == before


def test_render_error_leaves_previous_frame(make_pipeline):
    worker = FakeWorker()
    pipeline = make_pipeline(worker)
    asyncio.run(pipeline.export("demo", StateSnapshot()))
    before = pipeline.publisher.read("demo")

    worker.error = RenderError("screenshot timed out")
    assert asyncio.run(pipeline.export("demo", StateSnapshot())) is False
    assert pipeline.publisher.read("demo") == before

    worker.error = RenderError("navigation failed")
    assert asyncio.run(pipeline.export("fresh", StateSnapshot())) is False
    assert pipeline.publisher.read("fresh") is None


def test_server_base_url_names_the_machine_for_wildcard_binds(monkeypatch):
    monkeypatch.setattr(builder.socket, "gethostname", lambda: "studio-pc")
    assert builder.server_base_url(Settings(host="0.0.0.0", port=3333)) == "http://studio-pc:3333"
    assert builder.server_base_url(Settings(host="10.0.0.5", port=8080)) == "http://10.0.0.5:8080"


def test_built_publisher_notifies_with_absolute_url(settings, monkeypatch):
    monkeypatch.setattr(builder.socket, "gethostname", lambda: "studio-pc")
    pipeline = builder.build_export_pipeline(settings)
    assert pipeline.publisher.absolute_url("demo") == "http://studio-pc:3333/atem-live/demo.png"
