"""Staleness score for an open position.

A position goes stale when it has been held long enough, is not paying off,
and the crowd that pushed it has moved on.  The score is the sum of three
capped components:

* time held (max 40)
* price action (max 30)
* social volume decay since entry (max 30)

A score of 70 or more is stale.  Independently, a position held past the
maximum hold window without reaching the minimum gain is always stale, and so
is one nobody has mentioned for ``stale_no_mentions_hours``.
"""

from __future__ import annotations

import time
from typing import Optional

from config import AgentConfig
from models import PositionEntry, StalenessResult

STALE_SCORE_THRESHOLD = 70.0


def score_staleness(
    entry: Optional[PositionEntry],
    current_price: float,
    current_social_volume: float,
    config: AgentConfig,
    now: Optional[float] = None,
    *,
    last_mention_time: Optional[float] = None,
) -> StalenessResult:
    if entry is None:
        return StalenessResult(False, "No entry data", 0.0)

    current = time.time() if now is None else now
    hold_hours = (current - entry.entry_time) / 3600
    hold_days = hold_hours / 24
    if entry.entry_price > 0:
        pnl_pct = (current_price - entry.entry_price) / entry.entry_price * 100
    else:
        pnl_pct = 0.0

    if hold_hours < config.stale_min_hold_hours:
        return StalenessResult(False, f"Too early ({hold_hours:.1f}h)", 0.0)

    score = 0.0

    if hold_days >= config.stale_max_hold_days:
        score += 40
    elif hold_days >= config.stale_mid_hold_days:
        span = config.stale_max_hold_days - config.stale_mid_hold_days
        if span > 0:
            score += 20 * (hold_days - config.stale_mid_hold_days) / span

    if pnl_pct < 0:
        score += min(30.0, abs(pnl_pct) * 3)
    elif pnl_pct < config.stale_mid_min_gain_pct and hold_days >= config.stale_mid_hold_days:
        score += 15

    if entry.entry_social_volume > 0:
        volume_ratio = current_social_volume / entry.entry_social_volume
    else:
        volume_ratio = 1.0
    if volume_ratio <= config.stale_social_volume_decay:
        score += 30
    elif volume_ratio <= 0.5:
        score += 15

    score = max(0.0, min(100.0, score))
    if last_mention_time is not None:
        silent_hours = (current - last_mention_time) / 3600
        if silent_hours >= config.stale_no_mentions_hours:
            return StalenessResult(True, f"No social mentions for {silent_hours:.0f}h", score)

    is_stale = score >= STALE_SCORE_THRESHOLD or (
        hold_days >= config.stale_max_hold_days and pnl_pct < config.stale_min_gain_pct
    )
    if is_stale:
        reason = f"Staleness score {score:.0f}/100, held {hold_days:.1f} days"
    else:
        reason = f"OK (score {score:.0f}/100)"
    return StalenessResult(is_stale, reason, score)


__all__ = ["STALE_SCORE_THRESHOLD", "score_staleness"]
