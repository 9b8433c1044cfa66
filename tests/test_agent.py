import pytest

from agent import AgentScheduler, SignalAgent
from conftest import FakeBroker, FakeLLM, FakeNotifier, FakeStore, buy_verdict, make_signal
from models import Position, PositionEntry, PremarketPlan
from rate_limiter import RateLimiter

NOW = 1_700_000_000.0  # Tue 2023-11-14 17:13 America/New_York


class StubSource:
    name = "stub"

    def __init__(self, signals):
        self.signals = signals
        self.calls = 0

    def fetch(self, now):
        self.calls += 1
        return list(self.signals)


class Clock:
    def __init__(self, now):
        self.now = now

    def __call__(self):
        return self.now


def _agent(state, broker, *, replies=(), signals=(), notifier=None, clock=None):
    store = FakeStore()
    llm = FakeLLM(list(replies))
    agent = SignalAgent(
        state,
        broker,
        llm,
        store,
        sources=[StubSource(list(signals))],
        notifier=notifier,
        clock=clock or Clock(NOW),
    )
    agent.research_gate.limiter = RateLimiter(0)
    return agent, store, llm


def test_disabled_tick_does_nothing(state, broker):
    agent, store, llm = _agent(state, broker, signals=[make_signal("AAPL")])

    assert agent.tick() is False
    assert store.saves == 0
    assert state.signal_cache == []
    assert llm.calls == []


def test_tick_gathers_researches_and_persists_once(state):
    state.enabled = True
    broker = FakeBroker(is_open=False)
    agent, store, llm = _agent(state, broker, replies=[buy_verdict()], signals=[make_signal("AAPL", raw=0.5)])

    assert agent.tick() is True

    assert store.saves == 1
    assert [s.symbol for s in state.signal_cache] == ["AAPL"]
    assert state.last_data_gather_run == NOW
    assert state.last_research_run == NOW
    assert state.signal_research["AAPL"].verdict == "BUY"
    assert len(llm.calls) == 1
    assert broker.orders == []
    assert any(entry["action"] == "data_gathered" for entry in state.logs)


def test_research_timestamps_advance_independently(state):
    state.enabled = True
    clock = Clock(NOW)
    broker = FakeBroker(positions=[Position("MSFT", 10, 1000.0, 0.0, 100.0)])
    agent, _, _ = _agent(state, broker, signals=[make_signal("AAPL")], clock=clock)

    agent.tick()
    clock.now = NOW + 150
    agent.tick()

    assert state.last_research_run == NOW + 150
    assert state.last_analyst_run == NOW + 150
    assert state.last_position_research_run == NOW
    assert state.last_data_gather_run == NOW + 150


def test_tick_failure_records_alarm_and_scheduler_continues(state):
    class BrokenBroker(FakeBroker):
        def get_clock(self):
            raise RuntimeError("clock endpoint down")

    state.enabled = True
    agent, store, _ = _agent(state, BrokenBroker())
    scheduler = AgentScheduler(agent, interval=0.01)

    assert scheduler.run_once() is False
    assert state.logs[-1]["action"] == "alarm_error"
    assert state.logs[-1]["error"] == "clock endpoint down"
    assert store.saves == 0
    assert scheduler.armed


def test_kill_clears_caches_but_keeps_positions(state):
    state.enabled = True
    broker = FakeBroker(positions=[Position("AAPL", 10, 1000.0, 0.0, 100.0)])
    agent, store, _ = _agent(state, broker)
    scheduler = AgentScheduler(agent)
    state.signal_cache = [make_signal("AAPL")]
    state.signal_research["AAPL"] = object()
    state.premarket_plan = PremarketPlan(timestamp=NOW)

    status = agent.kill()

    assert status["enabled"] is False
    assert not scheduler.armed
    assert state.signal_cache == []
    assert state.signal_research == {}
    assert state.premarket_plan is None
    assert broker.closed == []
    assert [p.symbol for p in broker.get_positions()] == ["AAPL"]
    assert store.saves == 1


def test_enable_arms_scheduler_and_persists(state, broker):
    agent, store, _ = _agent(state, broker)
    scheduler = AgentScheduler(agent)
    assert not scheduler.armed

    agent.enable()

    assert scheduler.armed
    assert state.enabled is True
    assert store.saves == 1


def test_update_config_is_seen_by_every_component(state, broker):
    agent, store, _ = _agent(state, broker)

    result = agent.update_config({"max_positions": "2", "llm_cost_alert_usd": 9})

    assert result["max_positions"] == 2
    assert agent.lifecycle.config.max_positions == 2
    assert agent.research_gate.config is state.config
    assert agent.ledger.alert_usd == 9.0
    assert store.saves == 1


def test_manual_close_through_control_surface(state):
    broker = FakeBroker(positions=[Position("AAPL", 10, 1000.0, 0.0, 100.0)])
    agent, store, _ = _agent(state, broker)

    assert agent.close_position("AAPL") is True
    assert broker.closed == ["AAPL"]
    assert store.saves == 1


def test_gather_records_history_and_alerts(state, broker):
    notifier = FakeNotifier()
    state.position_entries["AAPL"] = PositionEntry("AAPL", NOW, 100.0, 0.4, 5, ["stocktwits"], "test", 100.0, 0.4)
    signals = [make_signal("AAPL", sentiment=0.8, volume=7), make_signal("MSFT", sentiment=0.4)]
    agent, _, _ = _agent(state, broker, signals=signals, notifier=notifier)

    assert agent.gather_signals(NOW) == 2

    snapshot = state.social_history["AAPL"][-1]
    assert snapshot.volume == 7
    assert snapshot.sentiment == pytest.approx(0.8)
    assert notifier.sent == [("signal", {"symbol": "AAPL", "sentiment": 0.8, "sources": ["stocktwits"]})]


def test_trigger_persists_even_when_disabled(state, broker):
    agent, store, _ = _agent(state, broker)

    assert agent.trigger() is False
    assert store.saves == 1
    assert agent.status()["premarket"] == "NONE"
