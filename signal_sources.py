"""Social and market sources normalised into :class:`models.Signal` records.

Each source is independent: a failing upstream is logged and yields an
empty list so one outage never aborts the gather cycle.  Requests to the
same upstream are paced by an injected :class:`rate_limiter.RateLimiter`.
"""
from __future__ import annotations

import time
from datetime import datetime
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

import requests
from requests import exceptions as requests_exceptions

from log_utils import setup_logger
from models import Signal
from observability import ActivityLog
from rate_limiter import RateLimiter
from signal_scoring import (
    detect_sentiment,
    engagement_multiplier,
    extract_tickers,
    flair_multiplier,
    post_decay,
    source_weight,
)

logger = setup_logger(__name__)

STOCKTWITS_TRENDING_URL = "https://api.stocktwits.com/api/2/trending/symbols.json"
STOCKTWITS_STREAM_URL = "https://api.stocktwits.com/api/2/streams/symbol/{symbol}.json"
REDDIT_HOT_URL = "https://www.reddit.com/r/{sub}/hot.json"

STOCKTWITS_TOP_TRENDING = 15
STOCKTWITS_STREAM_LIMIT = 30
STOCKTWITS_MIN_MESSAGES = 5
REDDIT_SUBREDDITS = ("wallstreetbets", "stocks", "investing", "options")
REDDIT_POST_LIMIT = 25
REDDIT_MIN_MENTIONS = 2
REDDIT_USER_AGENT = "SocialSignalAgent/1.0"
CRYPTO_SOURCE_WEIGHT = 0.8
REQUEST_TIMEOUT = 10


def _parse_timestamp(value: Any, default: float) -> float:
    if not value:
        return default
    try:
        return datetime.fromisoformat(str(value).replace("Z", "+00:00")).timestamp()
    except ValueError:
        return default


# ---------------------------------------------------------------------------
# Pure normalisers
# ---------------------------------------------------------------------------


def normalize_stocktwits_messages(
    symbol: str, messages: Sequence[Mapping[str, Any]], now: Optional[float] = None
) -> Optional[Signal]:
    """Score one symbol's message stream; ``None`` below the volume floor.

    Bullish and bearish tags are weighted by each message's decay and the
    score is normalised by the summed decay, then scaled by the source weight
    and the average freshness of the stream.
    """

    current = time.time() if now is None else now
    total = len(messages)
    if total < STOCKTWITS_MIN_MESSAGES:
        return None

    bullish = bearish = total_decay = 0.0
    for msg in messages:
        decay = post_decay(_parse_timestamp(msg.get("created_at"), current), current)
        total_decay += decay
        label = ((msg.get("entities") or {}).get("sentiment") or {}).get("basic")
        if label == "Bullish":
            bullish += decay
        elif label == "Bearish":
            bearish += decay

    effective = total_decay or 1.0
    score = (bullish - bearish) / effective
    freshness = total_decay / total
    weight = source_weight("stocktwits")
    return Signal(
        symbol=symbol.upper(),
        source="stocktwits",
        source_detail="stocktwits_trending",
        sentiment=score * weight * freshness,
        raw_sentiment=score,
        volume=total,
        freshness=freshness,
        source_weight=weight,
        reason=(
            f"StockTwits: {round(bullish)}B/{round(bearish)}b ({score * 100:.0f}%) "
            f"[fresh:{freshness * 100:.0f}%]"
        ),
        timestamp=current,
        bullish=round(bullish),
        bearish=round(bearish),
    )


def normalize_reddit_posts(
    posts_by_sub: Mapping[str, Iterable[Mapping[str, Any]]], now: Optional[float] = None
) -> List[Signal]:
    """Merge ticker mentions across subreddits into one signal per ticker.

    Each post contributes its keyword sentiment weighted by
    ``decay * engagement * flair * subreddit weight``.
    """

    current = time.time() if now is None else now
    tickers: Dict[str, Dict[str, Any]] = {}

    for sub, posts in posts_by_sub.items():
        weight = source_weight(f"reddit_{sub}")
        for post in posts:
            text = f"{post.get('title') or ''} {post.get('selftext') or ''}"
            symbols = extract_tickers(text)
            if not symbols:
                continue
            raw = detect_sentiment(text)
            created = float(post.get("created_utc") or current)
            ups = int(post.get("ups") or 0)
            num_comments = int(post.get("num_comments") or 0)
            flair = post.get("link_flair_text")
            flair_mult = flair_multiplier(flair)
            quality = post_decay(created, current) * engagement_multiplier(ups, num_comments) * flair_mult * weight

            for ticker in symbols:
                data = tickers.setdefault(
                    ticker,
                    {
                        "mentions": 0,
                        "raw": 0.0,
                        "weighted": 0.0,
                        "quality": 0.0,
                        "upvotes": 0,
                        "comments": 0,
                        "subs": [],
                        "best_flair": None,
                        "best_flair_mult": 0.0,
                        "freshest": 0.0,
                    },
                )
                data["mentions"] += 1
                data["raw"] += raw
                data["weighted"] += raw * quality
                data["quality"] += quality
                data["upvotes"] += ups
                data["comments"] += num_comments
                if sub not in data["subs"]:
                    data["subs"].append(sub)
                if flair_mult > data["best_flair_mult"]:
                    data["best_flair"] = flair or None
                    data["best_flair_mult"] = flair_mult
                data["freshest"] = max(data["freshest"], created)

    signals: List[Signal] = []
    for ticker, data in tickers.items():
        mentions = data["mentions"]
        if mentions < REDDIT_MIN_MENTIONS:
            continue
        avg_raw = data["raw"] / mentions
        avg_quality = data["quality"] / mentions
        if data["quality"] > 0:
            final = data["weighted"] / mentions
        else:
            final = avg_raw * 0.5
        subs = data["subs"]
        signals.append(
            Signal(
                symbol=ticker,
                source="reddit",
                source_detail="reddit_" + "+".join(subs),
                sentiment=final,
                raw_sentiment=avg_raw,
                volume=mentions,
                freshness=post_decay(data["freshest"], current),
                source_weight=avg_quality,
                reason=(
                    f"Reddit({','.join(subs)}): {mentions} mentions, "
                    f"{data['upvotes']} upvotes, quality:{avg_quality * 100:.0f}%"
                ),
                timestamp=current,
                upvotes=data["upvotes"],
                comments=data["comments"],
                quality_score=avg_quality,
                subreddits=list(subs),
                best_flair=data["best_flair"],
            )
        )
    return signals


def crypto_momentum_signal(
    symbol: str, price: float, prev_close: float, volume: float, threshold: float, now: Optional[float] = None
) -> Optional[Signal]:
    """24h momentum signal; only significant upward moves score above 0.1."""

    if not price or not prev_close:
        return None
    momentum = (price - prev_close) / prev_close * 100
    bullish = momentum > 0
    if abs(momentum) >= threshold and bullish:
        raw = min(abs(momentum) / 5, 1.0)
    else:
        raw = 0.1
    sign = "+" if momentum >= 0 else ""
    return Signal(
        symbol=symbol,
        source="crypto",
        source_detail="crypto_momentum",
        sentiment=raw,
        raw_sentiment=raw,
        volume=int(volume or 0),
        freshness=1.0,
        source_weight=CRYPTO_SOURCE_WEIGHT,
        reason=f"Crypto: {sign}{momentum:.2f}% (24h)",
        timestamp=time.time() if now is None else now,
        bullish=1 if bullish else 0,
        bearish=0 if bullish else 1,
        is_crypto=True,
        momentum=momentum,
        price=price,
    )


# ---------------------------------------------------------------------------
# Fetching sources
# ---------------------------------------------------------------------------


class _HttpSource:
    name = "source"

    def __init__(
        self,
        *,
        session: Any = None,
        limiter: Optional[RateLimiter] = None,
        activity: Optional[ActivityLog] = None,
    ) -> None:
        self._http = session or requests
        self.limiter = limiter or RateLimiter(0.2)
        self.activity = activity

    def _get_json(self, url: str, **kwargs: Any) -> Any:
        response = self._http.get(url, timeout=REQUEST_TIMEOUT, **kwargs)
        response.raise_for_status()
        return response.json()

    def _report_error(self, exc: Exception, **details: Any) -> None:
        logger.warning("%s fetch failed: %s", self.name, exc)
        if self.activity is not None:
            self.activity.record(self.name, "error", message=str(exc), **details)

    def fetch(self, now: Optional[float] = None) -> List[Signal]:
        """Return this cycle's signals; never raises for upstream failures."""

        try:
            return self._fetch(time.time() if now is None else now)
        except (requests_exceptions.RequestException, ValueError, KeyError, TypeError) as exc:
            self._report_error(exc)
            return []

    def _fetch(self, now: float) -> List[Signal]:  # pragma: no cover - abstract
        raise NotImplementedError


class StockTwitsSource(_HttpSource):
    name = "StockTwits"

    def __init__(self, **kwargs: Any) -> None:
        kwargs.setdefault("limiter", RateLimiter(0.2))
        super().__init__(**kwargs)

    def _fetch(self, now: float) -> List[Signal]:
        trending = self._get_json(STOCKTWITS_TRENDING_URL).get("symbols") or []
        signals: List[Signal] = []
        for item in trending[:STOCKTWITS_TOP_TRENDING]:
            symbol = item.get("symbol")
            if not symbol:
                continue
            self.limiter.wait()
            try:
                stream = self._get_json(
                    STOCKTWITS_STREAM_URL.format(symbol=symbol),
                    params={"limit": STOCKTWITS_STREAM_LIMIT},
                )
            except (requests_exceptions.RequestException, ValueError) as exc:
                logger.debug("StockTwits stream for %s unavailable: %s", symbol, exc)
                continue
            signal = normalize_stocktwits_messages(symbol, stream.get("messages") or [], now)
            if signal is not None:
                signals.append(signal)
        return signals


class RedditSource(_HttpSource):
    name = "Reddit"

    def __init__(self, subreddits: Sequence[str] = REDDIT_SUBREDDITS, **kwargs: Any) -> None:
        kwargs.setdefault("limiter", RateLimiter(1.0))
        super().__init__(**kwargs)
        self.subreddits = tuple(subreddits)

    def _fetch(self, now: float) -> List[Signal]:
        posts_by_sub: Dict[str, List[Mapping[str, Any]]] = {}
        for sub in self.subreddits:
            self.limiter.wait()
            try:
                payload = self._get_json(
                    REDDIT_HOT_URL.format(sub=sub),
                    params={"limit": REDDIT_POST_LIMIT},
                    headers={"User-Agent": REDDIT_USER_AGENT},
                )
            except (requests_exceptions.RequestException, ValueError) as exc:
                logger.debug("Reddit r/%s unavailable: %s", sub, exc)
                continue
            children = (payload.get("data") or {}).get("children") or []
            posts_by_sub[sub] = [child.get("data") or {} for child in children]
        return normalize_reddit_posts(posts_by_sub, now)


class CryptoMomentumSource:
    """Momentum signals for the configured crypto pairs from broker snapshots."""

    name = "Crypto"

    def __init__(
        self,
        broker: Any,
        symbols: Sequence[str],
        *,
        threshold: float = 2.0,
        limiter: Optional[RateLimiter] = None,
        activity: Optional[ActivityLog] = None,
    ) -> None:
        self.broker = broker
        self.symbols = list(symbols)
        self.threshold = threshold
        self.limiter = limiter or RateLimiter(0.2)
        self.activity = activity

    def fetch(self, now: Optional[float] = None) -> List[Signal]:
        current = time.time() if now is None else now
        signals: List[Signal] = []
        for symbol in self.symbols:
            self.limiter.wait()
            try:
                snapshot = self.broker.get_crypto_snapshot(symbol)
            except Exception as exc:  # noqa: BLE001 - any broker failure skips the pair
                logger.warning("Crypto snapshot for %s failed: %s", symbol, exc)
                if self.activity is not None:
                    self.activity.record(self.name, "error", symbol=symbol, message=str(exc))
                continue
            if snapshot is None:
                continue
            signal = crypto_momentum_signal(
                symbol, snapshot.price, snapshot.prev_close, snapshot.volume, self.threshold, current
            )
            if signal is not None:
                signals.append(signal)
        if self.activity is not None:
            self.activity.record(self.name, "gathered_signals", count=len(signals))
        return signals


__all__ = [
    "CryptoMomentumSource",
    "RedditSource",
    "StockTwitsSource",
    "crypto_momentum_signal",
    "normalize_reddit_posts",
    "normalize_stocktwits_messages",
]
