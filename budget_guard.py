"""Daily read quota for rate-limited APIs and the LLM cost ledger.

Both guards are advisory: running out of reads disables the dependent
feature until the window rolls over, and spending past the cost alert only
logs a warning.
"""
from __future__ import annotations

import time
from typing import Dict, MutableMapping, Optional, Tuple

from log_utils import setup_logger
from models import CostTracker

logger = setup_logger(__name__)

DAY_SECONDS = 86_400.0
DEFAULT_DAILY_READS = 200

# USD per million tokens as (input, output).
MODEL_PRICES: Dict[str, Tuple[float, float]] = {
    "llama-3.1-8b-instant": (0.05, 0.08),
    "llama-3.3-70b-versatile": (0.59, 0.79),
    "qwen/qwen3-32b": (0.29, 0.59),
    "meta-llama/llama-4-scout-17b-16e-instruct": (0.11, 0.34),
    "openai/gpt-oss-120b": (0.15, 0.75),
}
DEFAULT_PRICE = MODEL_PRICES["llama-3.3-70b-versatile"]


def estimate_cost(model: str, tokens_in: int, tokens_out: int) -> float:
    """Return the USD cost of one completion; unknown models use the default tier."""

    price_in, price_out = MODEL_PRICES.get(model, DEFAULT_PRICE)
    return (tokens_in * price_in + tokens_out * price_out) / 1_000_000


class ReadQuota:
    """Fixed daily cap with a lazy reset on the first check after expiry.

    ``counters`` is the caller-owned mapping holding ``reads_used`` and
    ``window_start`` so the quota survives restarts.
    """

    def __init__(
        self,
        counters: MutableMapping[str, float],
        *,
        max_reads: int = DEFAULT_DAILY_READS,
        window_seconds: float = DAY_SECONDS,
    ) -> None:
        self.counters = counters
        self.counters.setdefault("reads_used", 0)
        self.counters.setdefault("window_start", 0.0)
        self.max_reads = max_reads
        self.window_seconds = window_seconds

    @property
    def reads_used(self) -> int:
        return int(self.counters["reads_used"])

    @property
    def window_start(self) -> float:
        return float(self.counters["window_start"])

    def check(self, now: Optional[float] = None) -> bool:
        """Return ``True`` while reads remain in the current window."""

        current = time.time() if now is None else now
        if current - self.window_start > self.window_seconds:
            self.counters["reads_used"] = 0
            self.counters["window_start"] = current
        return self.reads_used < self.max_reads

    def spend(self, count: int = 1) -> None:
        self.counters["reads_used"] = self.reads_used + count

    @property
    def remaining(self) -> int:
        return max(0, self.max_reads - self.reads_used)


class CostLedger:
    """Accumulate token usage and cost into a :class:`CostTracker`."""

    def __init__(self, tracker: CostTracker, *, alert_usd: Optional[float] = None) -> None:
        self.tracker = tracker
        self.alert_usd = alert_usd
        self._alerted = False

    def track(self, model: str, tokens_in: int, tokens_out: int) -> float:
        cost = estimate_cost(model, tokens_in, tokens_out)
        self.tracker.total_usd += cost
        self.tracker.calls += 1
        self.tracker.tokens_in += int(tokens_in)
        self.tracker.tokens_out += int(tokens_out)
        if (
            self.alert_usd is not None
            and not self._alerted
            and self.tracker.total_usd >= self.alert_usd
        ):
            self._alerted = True
            logger.warning(
                "LLM spend %.4f USD crossed alert threshold %.2f USD",
                self.tracker.total_usd,
                self.alert_usd,
            )
        return cost


__all__ = ["CostLedger", "MODEL_PRICES", "ReadQuota", "estimate_cost"]
