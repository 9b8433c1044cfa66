"""Asset-class routing and position sizing.

Equities and crypto are sized as a confidence-scaled slice of cash capped at
a per-position dollar limit.  Options are reserved for the strongest
verdicts and are sized in whole contracts against a percent-of-equity cap.
"""
from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, Optional, Sequence

from config import AgentConfig
from log_utils import setup_logger
from models import Account, OptionSelection, Position
from observability import ActivityLog
from options_selector import CONTRACT_MULTIPLIER

logger = setup_logger(__name__)

MAX_SIZE_PCT_OF_CASH = 20.0
MIN_EQUITY_NOTIONAL = 100.0
MIN_CRYPTO_NOTIONAL = 10.0
TOP_ENTRY_QUALITY = "excellent"

EQUITY = "us_equity"
OPTION = "us_option"
CRYPTO = "crypto"


def is_crypto_symbol(symbol: str, config: AgentConfig) -> bool:
    return symbol in config.crypto_symbols or "/" in symbol


def is_crypto_position(position: Position, config: AgentConfig) -> bool:
    return position.asset_class == CRYPTO or is_crypto_symbol(position.symbol, config)


def is_option_position(position: Position) -> bool:
    return position.asset_class == OPTION


def equity_notional(cash: float, confidence: float, config: AgentConfig) -> float:
    """Dollar size for an equity buy before the minimum-notional check."""

    size_pct = min(MAX_SIZE_PCT_OF_CASH, config.position_size_pct_of_cash)
    return min(cash * size_pct / 100 * confidence, config.max_position_value)


def crypto_notional(cash: float, confidence: float, config: AgentConfig) -> float:
    size_pct = min(MAX_SIZE_PCT_OF_CASH, config.position_size_pct_of_cash)
    return min(cash * size_pct / 100 * confidence, config.crypto_max_position_value)


def options_eligible(confidence: float, entry_quality: str, config: AgentConfig) -> bool:
    return (
        config.options_enabled
        and confidence >= config.options_min_confidence
        and entry_quality == TOP_ENTRY_QUALITY
    )


def options_exposure_ok(positions: Sequence[Position], equity: float, config: AgentConfig) -> bool:
    """``True`` while open option positions stay under the count and value caps."""

    options = [p for p in positions if is_option_position(p)]
    if len(options) >= config.options_max_positions:
        return False
    if equity <= 0:
        return False
    exposure = sum(abs(p.market_value) for p in options)
    return exposure / equity < config.options_max_total_exposure


def option_contracts(limit_price: float, requested: int, equity: float, max_pct: float) -> int:
    """Whole contracts to buy after applying the percent-of-equity cap.

    Returns 0 when not even one contract fits the cap.
    """

    if limit_price <= 0:
        return 0
    qty = int(requested)
    if limit_price * CONTRACT_MULTIPLIER * qty > equity * max_pct:
        qty = int(math.floor(equity * max_pct / (limit_price * CONTRACT_MULTIPLIER)))
    return max(qty, 0)


@dataclass
class TradePlan:
    """Order parameters for one entry, or the reason there is none."""

    symbol: str
    asset_class: str
    notional: Optional[float] = None
    qty: Optional[int] = None
    order_type: str = "market"
    time_in_force: str = "day"
    limit_price: Optional[float] = None
    selection: Optional[OptionSelection] = None
    rejected: Optional[str] = None

    @property
    def tradable(self) -> bool:
        return self.rejected is None

    @property
    def order_symbol(self) -> str:
        if self.selection is not None:
            return self.selection.contract.symbol
        return self.symbol


class AssetRouter:
    """Choose between the equity, options and crypto routes for a buy."""

    def __init__(
        self,
        config: AgentConfig,
        options_selector: Any = None,
        *,
        activity: Optional[ActivityLog] = None,
    ) -> None:
        self.config = config
        self.options_selector = options_selector
        self.activity = activity or ActivityLog()

    def equity_plan(self, symbol: str, confidence: float, account: Account) -> TradePlan:
        notional = equity_notional(account.cash, confidence, self.config)
        if notional < MIN_EQUITY_NOTIONAL:
            return TradePlan(symbol, EQUITY, notional=notional, rejected="Position too small")
        return TradePlan(symbol, EQUITY, notional=round(notional, 2))

    def crypto_plan(self, symbol: str, confidence: float, account: Account) -> TradePlan:
        notional = crypto_notional(account.cash, confidence, self.config)
        if notional < MIN_CRYPTO_NOTIONAL:
            return TradePlan(symbol, CRYPTO, notional=notional, time_in_force="gtc", rejected="Position too small")
        return TradePlan(symbol, CRYPTO, notional=round(notional, 2), time_in_force="gtc")

    def option_plan(
        self,
        symbol: str,
        account: Account,
        *,
        direction: str = "bullish",
        now: Optional[float] = None,
    ) -> Optional[TradePlan]:
        if self.options_selector is None:
            return None
        selection = self.options_selector.select(symbol, direction, account.equity, now)
        if selection is None:
            return None
        limit_price = round(selection.mid_price, 2)
        qty = option_contracts(limit_price, 1, account.equity, self.config.options_max_pct_per_trade)
        if qty < 1:
            self.activity.record("Options", "options_skipped", symbol=symbol, reason="Cannot afford one contract")
            return None
        return TradePlan(
            symbol,
            OPTION,
            qty=qty,
            order_type="limit",
            limit_price=limit_price,
            selection=selection,
        )

    def route(
        self,
        symbol: str,
        confidence: float,
        account: Account,
        positions: Sequence[Position] = (),
        *,
        entry_quality: str = "",
        direction: str = "bullish",
        now: Optional[float] = None,
    ) -> TradePlan:
        """Return the preferred plan; options fall back to equity when nothing qualifies."""

        if is_crypto_symbol(symbol, self.config):
            return self.crypto_plan(symbol, confidence, account)
        if options_eligible(confidence, entry_quality, self.config) and options_exposure_ok(
            positions, account.equity, self.config
        ):
            plan = self.option_plan(symbol, account, direction=direction, now=now)
            if plan is not None:
                return plan
        return self.equity_plan(symbol, confidence, account)


__all__ = [
    "AssetRouter",
    "MIN_CRYPTO_NOTIONAL",
    "MIN_EQUITY_NOTIONAL",
    "TradePlan",
    "crypto_notional",
    "equity_notional",
    "is_crypto_position",
    "is_crypto_symbol",
    "is_option_position",
    "option_contracts",
    "options_eligible",
    "options_exposure_ok",
]
