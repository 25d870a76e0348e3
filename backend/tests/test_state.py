import json

from overlay_relay.core.state import CLEAR_RAW, CLEAR_TICKER_RAW, StateCache
from overlay_relay.processors.messages import decode

SETTINGS = json.dumps({"action": "settings", "settings": {"style": "classic"}})
SHOW = json.dumps({"action": "show", "data": {"line1": "John 3:16"}})
SHOW_2 = json.dumps({"action": "show", "data": {"line1": "Psalm 23"}})
TICKER = json.dumps({"action": "show-ticker", "data": {"message": "Welcome"}})


def _apply(cache, session, *frames):
    snap = None
    for frame in frames:
        snap = cache.update(session, decode(frame))
    return snap


def test_mutations_touch_only_named_fields():
    cache = StateCache()
    snap = _apply(cache, "s", SETTINGS, SHOW)
    assert snap.settings.settings == {"style": "classic"}
    assert snap.overlay.data == {"line1": "John 3:16"}
    assert snap.overlay_visible is True
    assert snap.ticker is None and snap.ticker_visible is False

    snap = _apply(cache, "s", '{"action":"clear"}')
    assert snap.overlay_visible is False
    assert snap.overlay.data == {"line1": "John 3:16"}
    assert snap.settings.settings == {"style": "classic"}

    snap = _apply(cache, "s", TICKER, '{"action":"clear-ticker"}')
    assert snap.ticker.data == {"message": "Welcome"}
    assert snap.ticker_visible is False
    assert snap.overlay_visible is False


def test_replay_order_is_settings_then_show_then_ticker():
    cache = StateCache()
    _apply(cache, "s", TICKER, SHOW, SETTINGS)
    assert cache.replay("s") == [SETTINGS, SHOW, TICKER]


def test_clear_does_not_erase_cached_show_and_replays_visibility():
    cache = StateCache()
    _apply(cache, "s", SHOW, '{"action":"clear"}')
    assert cache.replay("s") == [SHOW, CLEAR_RAW]

    _apply(cache, "s", SHOW_2)
    assert cache.replay("s") == [SHOW_2]


def test_hidden_ticker_replays_with_clear_ticker():
    cache = StateCache()
    _apply(cache, "s", TICKER, '{"action":"clear-ticker"}')
    assert cache.replay("s") == [TICKER, CLEAR_TICKER_RAW]


def test_clear_without_show_replays_nothing():
    cache = StateCache()
    _apply(cache, "s", '{"action":"clear"}')
    assert cache.replay("s") == []
    assert "s" in cache


def test_sessions_are_independent_and_drop_frees_state():
    cache = StateCache()
    _apply(cache, "a", SHOW)
    _apply(cache, "b", SETTINGS)
    assert cache.replay("a") == [SHOW]
    assert cache.replay("b") == [SETTINGS]

    cache.drop("a")
    cache.drop("missing")
    assert "a" not in cache
    assert cache.snapshot("a") is None
    assert cache.replay("a") == []


def test_snapshot_is_a_copy():
    cache = StateCache()
    _apply(cache, "s", SHOW)
    snap = cache.snapshot("s")
    _apply(cache, "s", '{"action":"clear"}')
    assert snap.overlay_visible is True


def test_listeners_receive_each_mutation():
    cache = StateCache()
    seen = []
    cache.add_listener(lambda sid, snap: seen.append((sid, snap.overlay_visible)))
    _apply(cache, "s", SHOW, '{"action":"clear"}')
    assert seen == [("s", True), ("s", False)]
