"""Secondary corroboration of a signal from recent Twitter posts.

Twitter never creates signals; it only nudges the confidence of a trade the
research gate already approved.  Every search spends one read from a small
daily quota and results are cached for five minutes per symbol.
"""

from __future__ import annotations

import math
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, List, MutableMapping, Optional, Sequence

import requests
from requests import exceptions as requests_exceptions

from budget_guard import ReadQuota
from log_utils import setup_logger
from models import TwitterConfirmation
from observability import ActivityLog
from rate_limiter import RateLimiter
from ttl_cache import TTLCache

logger = setup_logger(__name__)

SEARCH_URL = "https://api.twitter.com/2/tweets/search/recent"
CONFIRMATION_TTL_SECONDS = 300.0
MIN_SENTIMENT_FOR_CONFIRMATION = 0.3
SENTIMENT_BAND = 0.2
CONFIRM_BOOST = 1.15
DISAGREE_PENALTY = 0.85
MAX_RESULTS = 10
MAX_HIGHLIGHTS = 3
HIGHLIGHT_CHARS = 150

ACTIONABLE_KEYWORDS = ("unusual", "flow", "sweep", "block", "whale")
BULL_WORDS = ("buy", "call", "long", "bullish", "upgrade", "beat", "squeeze", "moon", "breakout")
BEAR_WORDS = ("sell", "put", "short", "bearish", "downgrade", "miss", "crash", "dump", "breakdown")

NEWS_ACCOUNTS = ("FirstSquawk", "DeItaone", "Newsquawk")
NEWS_SYMBOL_LIMIT = 3
NEWS_MAX_RESULTS = 5
NEWS_MAX_AGE_SECONDS = 30 * 60
BREAKING_AGE_SECONDS = 10 * 60


@dataclass
class Tweet:
    id: str
    text: str
    created_at: float
    author: str
    author_followers: int
    retweets: int
    likes: int


@dataclass
class NewsItem:
    symbol: str
    headline: str
    author: str
    age_minutes: int
    is_breaking: bool


def apply_confirmation(confidence: float, confirmation: Optional[TwitterConfirmation]) -> float:
    """Boost a confirmed confidence (capped at 1.0) or penalise disagreement.

    A missing confirmation or a neutral secondary sentiment leaves the
    confidence unchanged.
    """

    if confirmation is None:
        return confidence
    if confirmation.confirms_existing:
        return min(1.0, confidence * CONFIRM_BOOST)
    if confirmation.sentiment != 0:
        return confidence * DISAGREE_PENALTY
    return confidence


def score_tweets(symbol: str, tweets: Sequence[Tweet], existing_sentiment: float, now: float) -> TwitterConfirmation:
    """Influence- and engagement-weighted keyword sentiment of ``tweets``."""

    bullish = bearish = total_weight = 0.0
    highlights: List[Dict[str, Any]] = []
    for tweet in tweets:
        text = tweet.text.lower()
        author_weight = min(1.5, math.log10(tweet.author_followers + 1) / 5)
        engagement_weight = min(1.3, 1 + (tweet.likes + tweet.retweets * 2) / 1000)
        weight = author_weight * engagement_weight

        score = sum(1 for w in BULL_WORDS if w in text) - sum(1 for w in BEAR_WORDS if w in text)
        if score > 0:
            bullish += weight
        elif score < 0:
            bearish += weight
        total_weight += weight

        if tweet.likes > 50 or tweet.author_followers > 10_000:
            highlights.append({"author": tweet.author, "text": tweet.text[:HIGHLIGHT_CHARS], "likes": tweet.likes})

    sentiment = (bullish - bearish) / total_weight if total_weight > 0 else 0.0
    secondary_bullish = sentiment > SENTIMENT_BAND
    secondary_bearish = sentiment < -SENTIMENT_BAND
    primary_bullish = existing_sentiment > 0
    primary_bearish = existing_sentiment < 0
    return TwitterConfirmation(
        symbol=symbol,
        tweet_count=len(tweets),
        sentiment=sentiment,
        confirms_existing=(secondary_bullish and primary_bullish) or (secondary_bearish and primary_bearish),
        highlights=highlights[:MAX_HIGHLIGHTS],
        timestamp=now,
    )


def _parse_created(value: Any, default: float) -> float:
    try:
        return datetime.fromisoformat(str(value).replace("Z", "+00:00")).timestamp()
    except ValueError:
        return default


class TwitterConfirmer:
    """Recent-search client with quota, pacing and a confirmation cache."""

    def __init__(
        self,
        bearer_token: Optional[str],
        quota: ReadQuota,
        confirmation_store: MutableMapping[str, TwitterConfirmation],
        *,
        session: Any = None,
        limiter: Optional[RateLimiter] = None,
        activity: Optional[ActivityLog] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.bearer_token = bearer_token
        self.quota = quota
        self.cache: TTLCache[TwitterConfirmation] = TTLCache(confirmation_store, CONFIRMATION_TTL_SECONDS)
        self._http = session or requests
        self.limiter = limiter or RateLimiter(1.0)
        self.activity = activity or ActivityLog()
        self._clock = clock

    @property
    def enabled(self) -> bool:
        return bool(self.bearer_token)

    def can_read(self, now: Optional[float] = None) -> bool:
        return self.enabled and self.quota.check(self._clock() if now is None else now)

    def search_recent(self, query: str, max_results: int = MAX_RESULTS, now: Optional[float] = None) -> List[Tweet]:
        """Return matching tweets; an empty list on quota exhaustion or errors."""

        current = self._clock() if now is None else now
        if not self.can_read(current):
            return []
        self.limiter.wait()
        params = {
            "query": query,
            # The endpoint rejects max_results below 10.
            "max_results": max(10, min(max_results, MAX_RESULTS)),
            "tweet.fields": "created_at,public_metrics,author_id",
            "expansions": "author_id",
            "user.fields": "username,public_metrics",
        }
        try:
            response = self._http.get(
                SEARCH_URL,
                params=params,
                headers={"Authorization": f"Bearer {self.bearer_token}"},
                timeout=10,
            )
            response.raise_for_status()
            payload = response.json()
        except (requests_exceptions.RequestException, ValueError) as exc:
            self.activity.record("Twitter", "error", message=str(exc))
            return []

        self.quota.spend(1)
        self.activity.record(
            "Twitter",
            "read_spent",
            count=1,
            daily_total=self.quota.reads_used,
            budget_remaining=self.quota.remaining,
        )
        users = {u.get("id"): u for u in (payload.get("includes") or {}).get("users") or []}
        tweets: List[Tweet] = []
        for item in payload.get("data") or []:
            user = users.get(item.get("author_id")) or {}
            metrics = item.get("public_metrics") or {}
            tweets.append(
                Tweet(
                    id=str(item.get("id")),
                    text=str(item.get("text") or ""),
                    created_at=_parse_created(item.get("created_at"), current),
                    author=str(user.get("username") or "unknown"),
                    author_followers=int((user.get("public_metrics") or {}).get("followers_count") or 0),
                    retweets=int(metrics.get("retweet_count") or 0),
                    likes=int(metrics.get("like_count") or 0),
                )
            )
        return tweets[:max_results]

    def confirm(self, symbol: str, existing_sentiment: float, now: Optional[float] = None) -> Optional[TwitterConfirmation]:
        """Corroborate ``existing_sentiment`` for ``symbol`` or return ``None``."""

        current = self._clock() if now is None else now
        if abs(existing_sentiment) < MIN_SENTIMENT_FOR_CONFIRMATION:
            return None
        cached = self.cache.get_fresh(symbol, current)
        if cached is not None:
            return cached
        if not self.can_read(current):
            return None

        query = f"${symbol} ({' OR '.join(ACTIONABLE_KEYWORDS)}) -is:retweet lang:en"
        tweets = self.search_recent(query, MAX_RESULTS, current)
        if not tweets:
            return None
        result = self.cache.put(symbol, score_tweets(symbol, tweets, existing_sentiment, current))
        self.activity.record(
            "Twitter",
            "signal_confirmed",
            symbol=symbol,
            sentiment=round(result.sentiment, 2),
            confirms=result.confirms_existing,
            tweet_count=result.tweet_count,
        )
        return result

    def check_breaking_news(self, symbols: Sequence[str], now: Optional[float] = None) -> List[NewsItem]:
        """Recent headlines from news wires mentioning any of the first held symbols."""

        current = self._clock() if now is None else now
        to_check = list(symbols)[:NEWS_SYMBOL_LIMIT]
        if not to_check or not self.can_read(current):
            return []
        sources = " OR ".join(f"from:{account}" for account in NEWS_ACCOUNTS)
        cashtags = " OR ".join(f"${s}" for s in to_check)
        tweets = self.search_recent(f"({sources}) ({cashtags}) -is:retweet", NEWS_MAX_RESULTS, current)

        results: List[NewsItem] = []
        for tweet in tweets:
            age = current - tweet.created_at
            if age > NEWS_MAX_AGE_SECONDS:
                continue
            upper = tweet.text.upper()
            mentioned = next((s for s in to_check if f"${s}" in upper or f" {s} " in upper), None)
            if mentioned is None:
                continue
            results.append(
                NewsItem(
                    symbol=mentioned,
                    headline=tweet.text[:200],
                    author=tweet.author,
                    age_minutes=round(age / 60),
                    is_breaking=age < BREAKING_AGE_SECONDS,
                )
            )
        if results:
            self.activity.record(
                "Twitter", "breaking_news_found", count=len(results), symbols=[r.symbol for r in results]
            )
        return results


__all__ = [
    "NewsItem",
    "Tweet",
    "TwitterConfirmer",
    "apply_confirmation",
    "score_tweets",
]
