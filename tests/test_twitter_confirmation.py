from types import SimpleNamespace

import pytest
import requests

from budget_guard import ReadQuota
from models import TwitterConfirmation
from rate_limiter import RateLimiter
from twitter_confirmation import Tweet, TwitterConfirmer, apply_confirmation, score_tweets

NOW = 1_700_000_000.0


def _confirmation(sentiment, confirms):
    return TwitterConfirmation(symbol="AAPL", tweet_count=5, sentiment=sentiment, confirms_existing=confirms)


def test_apply_confirmation_boost_penalty_and_neutral():
    assert apply_confirmation(0.7, _confirmation(0.6, True)) == pytest.approx(0.805)
    assert apply_confirmation(0.7, _confirmation(-0.5, False)) == pytest.approx(0.595)
    assert apply_confirmation(0.7, _confirmation(0.0, False)) == pytest.approx(0.7)
    assert apply_confirmation(0.95, _confirmation(0.6, True)) == 1.0
    assert apply_confirmation(0.7, None) == 0.7


def _tweet(text, followers=1000, likes=0):
    return Tweet(id="1", text=text, created_at=NOW, author="trader", author_followers=followers, retweets=0, likes=likes)


def test_score_tweets_confirms_bullish_primary():
    tweets = [_tweet("$AAPL call sweep, bullish breakout"), _tweet("$AAPL buy the dip", likes=80)]

    result = score_tweets("AAPL", tweets, 0.5, NOW)

    assert result.sentiment == pytest.approx(1.0)
    assert result.confirms_existing is True
    assert result.tweet_count == 2
    assert [h["likes"] for h in result.highlights] == [80]


def test_score_tweets_disagreement():
    result = score_tweets("AAPL", [_tweet("$AAPL puts printing, bearish dump")], 0.5, NOW)

    assert result.sentiment == pytest.approx(-1.0)
    assert result.confirms_existing is False


def test_score_tweets_bearish_confirms_only_bearish_primary():
    tweets = [_tweet("$AAPL puts printing, bearish dump")]

    assert score_tweets("AAPL", tweets, 0.0, NOW).confirms_existing is False
    assert score_tweets("AAPL", tweets, -0.4, NOW).confirms_existing is True


class _Session:
    def __init__(self, payload):
        self.payload = payload
        self.calls = []

    def get(self, url, **kwargs):
        self.calls.append(kwargs)
        return SimpleNamespace(raise_for_status=lambda: None, json=lambda: self.payload)


def _payload(*texts):
    return {
        "data": [
            {"id": str(i), "text": text, "author_id": "u1", "created_at": "2023-11-14T22:10:00Z",
             "public_metrics": {"like_count": 3, "retweet_count": 1}}
            for i, text in enumerate(texts)
        ],
        "includes": {"users": [{"id": "u1", "username": "flowdesk", "public_metrics": {"followers_count": 5000}}]},
    }


def _confirmer(session, counters=None, token="token"):
    return TwitterConfirmer(
        token,
        ReadQuota({} if counters is None else counters, max_reads=200),
        {},
        session=session,
        limiter=RateLimiter(0),
        clock=lambda: NOW,
    )


def test_confirm_spends_one_read_and_caches():
    session = _Session(_payload("$AAPL whale buying calls, bullish"))
    counters = {}
    confirmer = _confirmer(session, counters)

    first = confirmer.confirm("AAPL", 0.5, NOW)
    second = confirmer.confirm("AAPL", 0.5, NOW + 60)

    assert first is second
    assert first.confirms_existing is True
    assert counters["reads_used"] == 1
    assert len(session.calls) == 1
    assert session.calls[0]["headers"]["Authorization"] == "Bearer token"
    assert session.calls[0]["params"]["max_results"] == 10


def test_weak_primary_sentiment_skips_search():
    session = _Session(_payload("$AAPL bullish"))
    confirmer = _confirmer(session)

    assert confirmer.confirm("AAPL", 0.2, NOW) is None
    assert session.calls == []


def test_exhausted_quota_or_missing_token_returns_none():
    session = _Session(_payload("$AAPL bullish"))
    exhausted = _confirmer(session, {"reads_used": 200, "window_start": NOW})
    no_token = _confirmer(session, token=None)

    assert exhausted.confirm("AAPL", 0.5, NOW) is None
    assert no_token.enabled is False
    assert no_token.confirm("AAPL", 0.5, NOW) is None
    assert session.calls == []


def test_http_error_does_not_spend_quota():
    class FailingSession:
        def get(self, url, **kwargs):
            raise requests.Timeout("slow")

    counters = {}
    confirmer = _confirmer(FailingSession(), counters)

    assert confirmer.confirm("AAPL", 0.5, NOW) is None
    assert counters.get("reads_used", 0) == 0


def test_breaking_news_filters_by_symbol_and_age():
    payload = _payload("BREAKING: $AAPL halted pending news", "$MSFT beats estimates")
    payload["data"][1]["created_at"] = "2023-11-14T20:00:00Z"
    confirmer = _confirmer(_Session(payload))

    news = confirmer.check_breaking_news(["AAPL", "MSFT"], NOW)

    assert [n.symbol for n in news] == ["AAPL"]
    assert news[0].is_breaking is True
    assert news[0].age_minutes == 3
