from dataclasses import dataclass

from ttl_cache import TTLCache


@dataclass
class Entry:
    value: str
    timestamp: float


def test_get_or_refresh_returns_fresh_value_without_refreshing():
    store = {}
    cache = TTLCache(store, 180)
    calls = []

    def refresh():
        calls.append(1)
        return Entry("a", 1000.0)

    first = cache.get_or_refresh("AAPL", refresh, now=1000.0)
    second = cache.get_or_refresh("AAPL", refresh, now=1100.0)

    assert first is second
    assert len(calls) == 1
    assert store["AAPL"] is first


def test_expired_value_is_refreshed():
    cache = TTLCache({"AAPL": Entry("old", 0.0)}, 180)

    result = cache.get_or_refresh("AAPL", lambda: Entry("new", 500.0), now=500.0)

    assert result.value == "new"


def test_none_refresh_is_not_stored():
    store = {}
    cache = TTLCache(store, 180)

    assert cache.get_or_refresh("AAPL", lambda: None, now=0.0) is None
    assert "AAPL" not in store


def test_per_call_ttl_override():
    cache = TTLCache({"BTC/USD": Entry("x", 0.0)}, 180)

    assert cache.get_fresh("BTC/USD", now=200.0) is None
    assert cache.get_fresh("BTC/USD", now=200.0, ttl=300) is not None
