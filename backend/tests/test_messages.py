import json

from overlay_relay.processors.messages import (
    ClearMsg,
    ClearTickerMsg,
    ExportConfigMsg,
    ExportRefreshMsg,
    ExportStatusMsg,
    SettingsMsg,
    ShowMsg,
    ShowTickerMsg,
    Unrecognized,
    decode,
)


def test_decodes_state_actions_and_keeps_raw_text():
    raw = '{"action": "show", "data": {"line1": "John 3:16"}, "settings": {"style": "accent"}}'
    msg = decode(raw)
    assert isinstance(msg, ShowMsg)
    assert msg.raw is raw
    assert msg.data == {"line1": "John 3:16"}
    assert msg.embedded_settings == {"style": "accent"}

    assert isinstance(decode('{"action":"settings","settings":{"style":"classic"}}'), SettingsMsg)
    assert isinstance(decode('{"action":"clear"}'), ClearMsg)
    assert isinstance(decode('{"action":"show-ticker","data":{"message":"Welcome"}}'), ShowTickerMsg)
    assert isinstance(decode('{"action":"clear-ticker"}'), ClearTickerMsg)


def test_show_without_embedded_settings():
    msg = decode(json.dumps({"action": "show", "data": {"line1": "x"}, "settings": "nope"}))
    assert isinstance(msg, ShowMsg)
    assert msg.embedded_settings is None


def test_malformed_and_unknown_frames_are_unrecognized():
    for raw in ["not json", "[1, 2]", '"show"', '{"action": "dance"}', "{}",
                '{"action": "settings"}', '{"action": "show"}', '{"action": "show-ticker"}']:
        msg = decode(raw)
        assert isinstance(msg, Unrecognized), raw
        assert msg.raw == raw


def test_binary_frames_are_never_interpreted():
    raw = b'{"action":"clear"}'
    msg = decode(raw)
    assert isinstance(msg, Unrecognized)
    assert msg.raw == raw


def test_export_control_messages():
    cfg = decode('{"action":"atem-export-config","sessionId":"demo","pinCurrentSession":true}')
    assert isinstance(cfg, ExportConfigMsg)
    assert cfg.session_id == "demo" and cfg.pin is True

    off = decode('{"action":"atem-export-config","pinCurrentSession":"false"}')
    assert isinstance(off, ExportConfigMsg)
    assert off.session_id is None and off.pin is False

    assert isinstance(decode('{"action":"atem-export-status","sessionId":"demo"}'), ExportStatusMsg)
    refresh = decode('{"action":"atem-export-refresh","sessionId":7}')
    assert isinstance(refresh, ExportRefreshMsg)
    assert refresh.session_id == "7"
