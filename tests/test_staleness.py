import pytest

from config import AgentConfig
from models import PositionEntry
from staleness import score_staleness

DAY = 86_400.0
ENTRY_TIME = 1_700_000_000.0


def _entry(**overrides):
    fields = dict(
        symbol="AAPL",
        entry_time=ENTRY_TIME,
        entry_price=100.0,
        entry_sentiment=0.5,
        entry_social_volume=50,
        entry_sources=["stocktwits"],
        entry_reason="test",
        peak_price=100.0,
        peak_sentiment=0.5,
    )
    fields.update(overrides)
    return PositionEntry(**fields)


def test_losing_position_with_faded_chatter_is_stale():
    result = score_staleness(_entry(), 95.0, 10, AgentConfig(), now=ENTRY_TIME + 3 * DAY)

    assert result.is_stale is True
    assert result.staleness_score == pytest.approx(85.0)
    assert "held 3.0 days" in result.reason


def test_grace_period_is_never_stale():
    result = score_staleness(_entry(), 50.0, 0, AgentConfig(), now=ENTRY_TIME + 3600 * 5)

    assert result.is_stale is False
    assert result.staleness_score == 0.0
    assert result.reason.startswith("Too early")


def test_mid_hold_small_gain_scores_but_is_not_stale():
    result = score_staleness(_entry(), 101.0, 50, AgentConfig(), now=ENTRY_TIME + 2.5 * DAY)

    assert result.is_stale is False
    assert result.staleness_score == pytest.approx(25.0)


def test_max_hold_without_min_gain_is_always_stale():
    result = score_staleness(_entry(), 102.0, 50, AgentConfig(), now=ENTRY_TIME + 3 * DAY)

    assert result.staleness_score == pytest.approx(55.0)
    assert result.is_stale is True


def test_winner_held_past_window_is_not_stale():
    result = score_staleness(_entry(), 112.0, 60, AgentConfig(), now=ENTRY_TIME + 4 * DAY)

    assert result.is_stale is False


def test_missing_entry():
    result = score_staleness(None, 100.0, 0, AgentConfig())

    assert result.is_stale is False
    assert result.reason == "No entry data"


def test_silence_past_no_mentions_window_is_stale():
    now = ENTRY_TIME + 1.5 * DAY
    result = score_staleness(_entry(), 101.0, 50, AgentConfig(), now=now, last_mention_time=now - 25 * 3600)

    assert result.is_stale is True
    assert result.reason == "No social mentions for 25h"


def test_recent_mention_keeps_position_open():
    now = ENTRY_TIME + 1.5 * DAY
    result = score_staleness(_entry(), 101.0, 50, AgentConfig(), now=now, last_mention_time=now - 3600)

    assert result.is_stale is False
    assert result.staleness_score == 0.0


def test_silence_during_grace_period_is_ignored():
    result = score_staleness(_entry(), 100.0, 0, AgentConfig(), now=ENTRY_TIME + 3600, last_mention_time=0.0)

    assert result.is_stale is False
