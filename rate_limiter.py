"""Minimum-interval pacing for sequential calls to one upstream."""

from __future__ import annotations

import threading
import time
from typing import Callable, Optional


class RateLimiter:
    """Block until ``min_interval`` seconds have passed since the last call.

    One limiter is shared by all sequential requests to the same upstream
    (StockTwits, Reddit, the broker's market data, Twitter) so pacing lives
    outside the normalizers' scoring logic.
    """

    def __init__(
        self,
        min_interval: float,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.min_interval = max(0.0, float(min_interval))
        self._clock = clock
        self._sleep = sleep
        self._last_call: Optional[float] = None
        self._lock = threading.Lock()

    def wait(self) -> float:
        """Pause if needed and return the number of seconds slept."""

        with self._lock:
            now = self._clock()
            slept = 0.0
            if self._last_call is not None:
                remaining = self.min_interval - (now - self._last_call)
                if remaining > 0:
                    self._sleep(remaining)
                    slept = remaining
                    now = self._clock()
            self._last_call = now
            return slept


__all__ = ["RateLimiter"]
