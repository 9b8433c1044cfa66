"""Pure scoring helpers for social posts.

Posts are weighted by age (exponential decay with a floor), engagement
(upvote and comment step tables) and flair quality before their keyword
sentiment feeds a :class:`models.Signal`.
"""
from __future__ import annotations

import re
import time
from typing import List, Optional

DECAY_HALF_LIFE_MINUTES = 120.0
"""Age in minutes after which a post carries half its weight."""

MIN_DECAY = 0.2
"""Old but relevant posts never drop below this weight."""

# Thresholds sorted descending; first satisfied threshold wins.
UPVOTE_TIERS = ((1000, 1.5), (500, 1.3), (200, 1.2), (100, 1.1), (50, 1.0), (0, 0.8))
COMMENT_TIERS = ((200, 1.4), (100, 1.25), (50, 1.15), (20, 1.05), (0, 0.9))

FLAIR_MULTIPLIERS = {
    "DD": 1.5,
    "Technical Analysis": 1.3,
    "Fundamentals": 1.3,
    "News": 1.2,
    "Discussion": 1.0,
    "Chart": 1.1,
    "Daily Discussion": 0.7,
    "Weekend Discussion": 0.6,
    "YOLO": 0.6,
    "Gain": 0.5,
    "Loss": 0.5,
    "Meme": 0.4,
    "Shitpost": 0.3,
}

SOURCE_WEIGHTS = {
    "stocktwits": 0.85,
    "reddit_wallstreetbets": 0.6,
    "reddit_stocks": 0.9,
    "reddit_investing": 0.8,
    "reddit_options": 0.85,
    "twitter_fintwit": 0.95,
    "twitter_news": 0.9,
}
DEFAULT_REDDIT_WEIGHT = 0.7

BULLISH_KEYWORDS = (
    "moon", "rocket", "buy", "calls", "long", "bullish", "yolo", "tendies",
    "gains", "diamond", "squeeze", "pump", "green", "up", "breakout",
    "undervalued", "accumulate",
)
BEARISH_KEYWORDS = (
    "puts", "short", "sell", "bearish", "crash", "dump", "drill", "tank",
    "rip", "red", "down", "bag", "overvalued", "bubble", "avoid",
)

TICKER_BLACKLIST = frozenset(
    """CEO CFO IPO EPS GDP SEC FDA USA USD ETF ATH ATL IMO FOMO YOLO DD TA THE
    AND FOR ARE BUT NOT YOU ALL CAN HER WAS ONE OUR WSB RIP LOL OMG WTF FUD HODL
    APE GME AMC""".split()
)

_TICKER_PATTERN = re.compile(
    r"\$([A-Z]{1,5})\b"
    r"|\b([A-Z]{2,5})\b(?=\s+(?:calls?|puts?|stock|shares?|moon|rocket|yolo|buy|sell|long|short))",
    re.IGNORECASE,
)


def time_decay(age_minutes: float, half_life: float = DECAY_HALF_LIFE_MINUTES) -> float:
    """Return ``clamp(0.5 ** (age / half_life), 0.2, 1.0)``."""

    age = max(0.0, float(age_minutes))
    decay = 0.5 ** (age / half_life)
    return max(MIN_DECAY, min(1.0, decay))


def post_decay(created_ts: float, now: Optional[float] = None) -> float:
    """Decay for a post created at unix time ``created_ts``."""

    current = time.time() if now is None else now
    return time_decay((current - created_ts) / 60.0)


def _tier(value: float, tiers) -> float:
    for threshold, multiplier in tiers:
        if value >= threshold:
            return multiplier
    return tiers[-1][1]


def engagement_multiplier(upvotes: float, comments: float) -> float:
    """Mean of the upvote tier and the comment tier."""

    return (_tier(upvotes, UPVOTE_TIERS) + _tier(comments, COMMENT_TIERS)) / 2


def flair_multiplier(flair: Optional[str]) -> float:
    if not flair:
        return 1.0
    return FLAIR_MULTIPLIERS.get(flair.strip(), 1.0)


def source_weight(source: str) -> float:
    return SOURCE_WEIGHTS.get(source, DEFAULT_REDDIT_WEIGHT)


def detect_sentiment(text: str) -> float:
    """Keyword sentiment in ``[-1, 1]``; ``0`` when the counts tie."""

    lower = (text or "").lower()
    bull = sum(1 for word in BULLISH_KEYWORDS if word in lower)
    bear = sum(1 for word in BEARISH_KEYWORDS if word in lower)
    total = bull + bear
    if total == 0:
        return 0.0
    return (bull - bear) / total


def extract_tickers(text: str) -> List[str]:
    """Return unique upper-cased tickers mentioned in ``text``.

    Only ``$TSLA`` style cashtags and bare symbols followed by a trading word
    ("NVDA calls") are considered; common acronyms are filtered out.
    """

    found: List[str] = []
    for match in _TICKER_PATTERN.finditer(text or ""):
        ticker = (match.group(1) or match.group(2) or "").upper()
        if 2 <= len(ticker) <= 5 and ticker not in TICKER_BLACKLIST and ticker not in found:
            found.append(ticker)
    return found


__all__ = [
    "BEARISH_KEYWORDS",
    "BULLISH_KEYWORDS",
    "FLAIR_MULTIPLIERS",
    "SOURCE_WEIGHTS",
    "TICKER_BLACKLIST",
    "detect_sentiment",
    "engagement_multiplier",
    "extract_tickers",
    "flair_multiplier",
    "post_decay",
    "source_weight",
    "time_decay",
]
