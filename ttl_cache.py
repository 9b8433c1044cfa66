"""Keyed cache with time-to-live semantics over a caller-owned mapping.

Values are stored directly in the mapping handed in by the owner (the agent
state) so the cache contents are persisted with the snapshot.  Freshness is
derived from each value's ``timestamp`` attribute.
"""

from __future__ import annotations

import time
from typing import Callable, Generic, MutableMapping, Optional, TypeVar

V = TypeVar("V")


def _default_timestamp(value) -> float:
    return float(getattr(value, "timestamp", 0.0))


class TTLCache(Generic[V]):
    """Read-or-refresh cache; refresh results of ``None`` are never stored."""

    def __init__(
        self,
        store: MutableMapping[str, V],
        ttl_seconds: float,
        *,
        timestamp_of: Callable[[V], float] = _default_timestamp,
    ) -> None:
        self.store = store
        self.ttl_seconds = float(ttl_seconds)
        self._timestamp_of = timestamp_of

    def is_fresh(self, value: V, now: Optional[float] = None, ttl: Optional[float] = None) -> bool:
        current = time.time() if now is None else now
        limit = self.ttl_seconds if ttl is None else ttl
        return current - self._timestamp_of(value) < limit

    def get_fresh(self, key: str, now: Optional[float] = None, ttl: Optional[float] = None) -> Optional[V]:
        value = self.store.get(key)
        if value is not None and self.is_fresh(value, now, ttl):
            return value
        return None

    def put(self, key: str, value: V) -> V:
        self.store[key] = value
        return value

    def get_or_refresh(
        self,
        key: str,
        refresh: Callable[[], Optional[V]],
        *,
        now: Optional[float] = None,
        ttl: Optional[float] = None,
    ) -> Optional[V]:
        """Return the fresh cached value or compute, store and return a new one."""

        cached = self.get_fresh(key, now, ttl)
        if cached is not None:
            return cached
        value = refresh()
        if value is not None:
            self.put(key, value)
        return value


__all__ = ["TTLCache"]
