import pytest

from budget_guard import CostLedger
from conftest import FakeBroker, FakeLLM, FakeNotifier, LLMError, buy_verdict, make_signal
from models import Account, CostTracker, Position
from observability import ActivityLog
from rate_limiter import RateLimiter
from research_gate import ResearchGate

NOW = 1_700_000_000.0


def _gate(config, replies, *, notifier=None, store=None):
    llm = FakeLLM(replies)
    tracker = CostTracker()
    gate = ResearchGate(
        llm,
        CostLedger(tracker),
        {} if store is None else store,
        config=config,
        broker=FakeBroker(),
        notifier=notifier,
        activity=ActivityLog(),
        limiter=RateLimiter(0),
        clock=lambda: NOW,
    )
    return gate, llm, tracker


def test_cached_verdict_avoids_second_call(config):
    gate, llm, tracker = _gate(config, [buy_verdict()])

    first = gate.research("AAPL", 0.35, ["stocktwits"], NOW)
    second = gate.research("AAPL", 0.35, ["stocktwits"], NOW + 120)

    assert first is second
    assert len(llm.calls) == 1
    assert llm.calls[0]["model"] == config.llm_model
    assert tracker.calls == 1


def test_verdict_expires_after_ttl(config):
    gate, llm, _ = _gate(config, [buy_verdict(), buy_verdict(0.9)])

    gate.research("AAPL", 0.35, ["stocktwits"], NOW)
    refreshed = gate.research("AAPL", 0.35, ["stocktwits"], NOW + 181)

    assert len(llm.calls) == 2
    assert refreshed.confidence == pytest.approx(0.9)


def test_invalid_reply_is_not_cached_or_retried_in_cycle(config):
    store = {}
    gate, llm, _ = _gate(config, ["I think you should buy", buy_verdict()], store=store)

    assert gate.research("AAPL", 0.35, ["stocktwits"], NOW) is None
    assert gate.research("AAPL", 0.35, ["stocktwits"], NOW + 1) is None
    assert len(llm.calls) == 1
    assert store == {}

    gate.begin_cycle()
    result = gate.research("AAPL", 0.35, ["stocktwits"], NOW + 2)

    assert result.verdict == "BUY"
    assert len(llm.calls) == 2
    assert "AAPL" in store


def test_llm_error_is_recorded_as_no_verdict(config):
    gate, _, _ = _gate(config, [LLMError("rate limited")])

    assert gate.research("AAPL", 0.35, ["stocktwits"], NOW) is None
    assert gate.activity.tail(1)[0]["action"] == "error"


def test_buy_verdict_notifies_and_logs(config):
    notifier = FakeNotifier()
    gate, _, _ = _gate(config, [buy_verdict()], notifier=notifier)

    gate.research("AAPL", 0.35, ["stocktwits", "reddit"], NOW)

    kind, payload = notifier.sent[0]
    assert kind == "research"
    assert payload["symbol"] == "AAPL"
    assert payload["sources"] == ["stocktwits", "reddit"]
    assert gate.activity.tail(1)[0]["action"] == "signal_researched"


def test_skip_verdict_does_not_notify(config):
    notifier = FakeNotifier()
    skip = dict(buy_verdict(), verdict="SKIP")
    gate, _, _ = _gate(config, [skip], notifier=notifier)

    result = gate.research("AAPL", 0.35, ["stocktwits"], NOW)

    assert result.verdict == "SKIP"
    assert not gate.is_actionable(result)
    assert notifier.sent == []


def test_actionable_requires_min_confidence(config):
    gate, _, _ = _gate(config, [buy_verdict(0.55), buy_verdict(0.6)])

    assert not gate.is_actionable(gate.research("AAPL", 0.4, [], NOW))
    assert gate.is_actionable(gate.research("MSFT", 0.4, [], NOW))


def test_research_top_signals_skips_held_symbols(config):
    gate, llm, _ = _gate(config, [buy_verdict(), buy_verdict()])
    signals = [make_signal("AAPL", sentiment=0.5), make_signal("MSFT", sentiment=0.4), make_signal("TSLA")]

    results = gate.research_top_signals(signals, held={"TSLA"}, limit=5, now=NOW)

    assert [r.symbol for r in results] == ["AAPL", "MSFT"]
    assert len(llm.calls) == 2


def test_crypto_research_uses_longer_ttl(config):
    gate, llm, _ = _gate(config, [buy_verdict()])

    gate.research_crypto("BTC/USD", 4.0, 0.8, 60_000.0, NOW)
    again = gate.research_crypto("BTC/USD", 4.0, 0.8, 60_000.0, NOW + 250)

    assert again is not None
    assert len(llm.calls) == 1
    assert "24H CHANGE: 4.00%" in llm.calls[0]["user"]


def test_review_position_stores_review(config):
    review = {"recommendation": "SELL", "risk_level": "high", "reasoning": "fading", "key_factors": []}
    gate, _, _ = _gate(config, [review])
    position = Position("AAPL", 10, 1100.0, 100.0, 110.0)
    store = {}

    result = gate.review_position(position, store, NOW)

    assert result.recommendation == "SELL"
    assert store["AAPL"] is result


def test_analyze_batch_uses_analyst_model(config):
    reply = {"recommendations": [{"action": "BUY", "symbol": "NVDA", "confidence": 0.8}], "market_summary": "ok"}
    gate, llm, _ = _gate(config, [reply])
    account = Account(cash=10_000.0, equity=20_000.0)

    analysis = gate.analyze_batch([make_signal("NVDA", sentiment=0.5)], [], account, NOW)

    assert [r.symbol for r in analysis.recommendations] == ["NVDA"]
    assert llm.calls[0]["model"] == config.llm_analyst_model
    assert "NVDA: avg sentiment 50%" in llm.calls[0]["user"]


def test_analyze_batch_never_raises(config):
    gate, _, _ = _gate(config, [LLMError("down")])
    account = Account(cash=10_000.0, equity=20_000.0)

    analysis = gate.analyze_batch([make_signal("NVDA", sentiment=0.5)], [], account, NOW)

    assert analysis.recommendations == []
    assert analysis.market_summary.startswith("Analysis failed")
    assert gate.analyze_batch([], [], account, NOW).recommendations == []
