import json
import logging

from agent_state import SOCIAL_HISTORY_BUCKET_SECONDS, SOCIAL_HISTORY_POINTS, AgentState
from conftest import make_signal
from models import PositionEntry, PremarketPlan, Recommendation, ResearchResult, SocialSnapshot
from state_store import JsonStateStore


def test_state_survives_restart(tmp_path, state):
    state.enabled = True
    state.config.max_positions = 7
    state.signal_cache = [make_signal("AAPL", subreddits=["stocks"])]
    state.position_entries["AAPL"] = PositionEntry("AAPL", 1.0, 100.0, 0.4, 10, ["stocks"], "test", 105.0, 0.5)
    state.signal_research["AAPL"] = ResearchResult("AAPL", "BUY", 0.8, "good", "ok", timestamp=5.0)
    state.premarket_plan = PremarketPlan(timestamp=9.0, recommendations=[Recommendation("BUY", "AAPL", 0.8)])
    state.twitter_reads.update(reads_used=12, window_start=3.0)
    state.last_research_run = 42.0
    store = JsonStateStore(str(tmp_path / "nested" / "state.json"))

    store.save(state)
    restored = store.load()

    assert restored.enabled is True
    assert restored.config.max_positions == 7
    assert restored.signal_cache[0].subreddits == ["stocks"]
    assert restored.position_entries["AAPL"].peak_price == 105.0
    assert restored.signal_research["AAPL"].confidence == 0.8
    assert restored.premarket_plan.recommendations[0].symbol == "AAPL"
    assert restored.twitter_reads["reads_used"] == 12
    assert restored.last_research_run == 42.0
    assert not (tmp_path / "nested" / "state.json.tmp").exists()


def test_missing_or_corrupt_file_starts_fresh(tmp_path, caplog):
    path = tmp_path / "state.json"
    store = JsonStateStore(str(path))

    assert store.load().signal_cache == []

    path.write_text("{not json")
    with caplog.at_level(logging.ERROR):
        fresh = store.load()
    assert fresh.enabled is False
    assert "invalid JSON" in caplog.text

    path.write_text("   ")
    assert store.load().position_entries == {}


def test_unknown_keys_are_ignored(tmp_path):
    path = tmp_path / "state.json"
    path.write_text(json.dumps({"enabled": True, "legacy_field": 1, "config": {"max_positions": 2, "old_knob": 3}}))

    restored = JsonStateStore(str(path)).load()

    assert restored.enabled is True
    assert restored.config.max_positions == 2


def test_social_history_is_bounded():
    state = AgentState()
    for i in range(SOCIAL_HISTORY_POINTS + 5):
        snapshot = SocialSnapshot(timestamp=float(i * SOCIAL_HISTORY_BUCKET_SECONDS), volume=i, sentiment=0.1)
        state.record_social_snapshot("AAPL", snapshot)

    history = state.social_history["AAPL"]
    assert len(history) == SOCIAL_HISTORY_POINTS
    assert history[0].timestamp == 5.0 * SOCIAL_HISTORY_BUCKET_SECONDS


def test_social_history_folds_gathers_within_the_hour():
    state = AgentState()
    state.record_social_snapshot("AAPL", SocialSnapshot(timestamp=7200.0, volume=12, sentiment=0.4))
    state.record_social_snapshot("AAPL", SocialSnapshot(timestamp=7230.0, volume=0, sentiment=0.0))

    history = state.social_history["AAPL"]
    assert len(history) == 1
    assert history[0].volume == 0
    assert history[0].mentioned_at == 7200.0
    assert state.current_social_volume("AAPL") == 0
    assert state.last_mention_time("AAPL") == 7200.0

    state.record_social_snapshot("AAPL", SocialSnapshot(timestamp=10_800.0, volume=0, sentiment=0.0))
    assert len(history) == 2
    assert state.last_mention_time("AAPL") == 7200.0


def test_current_social_volume_falls_back_to_signal_cache():
    state = AgentState()
    state.signal_cache = [make_signal("AAPL", volume=30), make_signal("AAPL", volume=30, source="reddit")]

    assert state.current_social_volume("AAPL") == 60
    assert state.last_mention_time("AAPL") is None
