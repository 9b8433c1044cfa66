import pytest

from config import AgentConfig
from models import Account, OptionContract, OptionSelection, Position
from sizing import (
    AssetRouter,
    equity_notional,
    is_crypto_symbol,
    option_contracts,
    options_eligible,
    options_exposure_ok,
)

ACCOUNT = Account(cash=10_000.0, equity=20_000.0)


def _selection(mid=3.1):
    contract = OptionContract("AAPL231229C00102000", "AAPL", "call", 102.0, "2023-12-29")
    return OptionSelection(contract=contract, dte=45, delta=0.42, mid_price=mid, max_contracts=1)


class _Selector:
    def __init__(self, selection):
        self.selection = selection
        self.calls = []

    def select(self, symbol, direction, equity, now=None):
        self.calls.append((symbol, direction, equity))
        return self.selection


def test_equity_notional_scales_with_confidence_and_caps():
    cfg = AgentConfig()

    assert equity_notional(10_000.0, 0.75, cfg) == pytest.approx(1500.0)
    assert equity_notional(100_000.0, 1.0, cfg) == cfg.max_position_value


def test_small_equity_position_is_rejected():
    plan = AssetRouter(AgentConfig()).equity_plan("AAPL", 0.6, Account(cash=500.0, equity=500.0))

    assert plan.tradable is False
    assert plan.rejected == "Position too small"


def test_crypto_symbols_route_to_crypto_plan():
    cfg = AgentConfig()
    plan = AssetRouter(cfg).route("BTC/USD", 0.7, ACCOUNT)

    assert is_crypto_symbol("ETH/USD", cfg)
    assert not is_crypto_symbol("AAPL", cfg)
    assert plan.asset_class == "crypto"
    assert plan.time_in_force == "gtc"
    assert plan.notional == pytest.approx(cfg.crypto_max_position_value)


def test_options_gate():
    cfg = AgentConfig(options_enabled=True)

    assert options_eligible(0.85, "excellent", cfg)
    assert not options_eligible(0.85, "good", cfg)
    assert not options_eligible(0.75, "excellent", cfg)
    assert not options_eligible(0.9, "excellent", AgentConfig())


def test_options_exposure_caps():
    cfg = AgentConfig(options_enabled=True)
    option = Position("AAPL231229C00102000", 1, 500.0, 0.0, 5.0, asset_class="us_option")

    assert options_exposure_ok([option], 20_000.0, cfg)
    assert not options_exposure_ok([option] * 3, 20_000.0, cfg)
    big = Position("TSLA231229C00250000", 5, 2_500.0, 0.0, 5.0, asset_class="us_option")
    assert not options_exposure_ok([big], 20_000.0, cfg)


def test_option_contracts_respects_equity_cap():
    assert option_contracts(3.1, 1, 20_000.0, 0.02) == 1
    assert option_contracts(3.1, 5, 20_000.0, 0.02) == 1
    assert option_contracts(5.0, 1, 20_000.0, 0.02) == 0


def test_route_prefers_options_for_excellent_high_confidence():
    cfg = AgentConfig(options_enabled=True)
    selector = _Selector(_selection())

    plan = AssetRouter(cfg, selector).route("AAPL", 0.85, ACCOUNT, entry_quality="excellent")

    assert plan.asset_class == "us_option"
    assert plan.order_symbol == "AAPL231229C00102000"
    assert plan.order_type == "limit"
    assert plan.limit_price == 3.1
    assert plan.qty == 1
    assert selector.calls == [("AAPL", "bullish", 20_000.0)]


def test_route_falls_back_to_equity_without_contract():
    cfg = AgentConfig(options_enabled=True)

    plan = AssetRouter(cfg, _Selector(None)).route("AAPL", 0.85, ACCOUNT, entry_quality="excellent")

    assert plan.asset_class == "us_equity"
    assert plan.order_symbol == "AAPL"
    assert plan.notional == pytest.approx(1700.0)


def test_unaffordable_contract_is_skipped():
    cfg = AgentConfig(options_enabled=True)
    router = AssetRouter(cfg, _Selector(_selection(mid=9.0)))

    plan = router.route("AAPL", 0.85, ACCOUNT, entry_quality="excellent")

    assert plan.asset_class == "us_equity"
    assert router.activity.tail(1)[0]["action"] == "options_skipped"
