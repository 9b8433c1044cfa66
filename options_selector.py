"""Pick a single option contract for a high-conviction signal.

The expiration closest to the middle of the DTE window is chosen, strikes are
ranked by distance from a delta-derived target, and the first of the nearest
few contracts with an acceptable delta, a tight quote and an affordable
premium wins.  Finding nothing is a normal outcome, not an error.
"""

from __future__ import annotations

import math
import re
import time
from datetime import datetime, timedelta, timezone
from typing import Any, List, Optional, Sequence

from config import AgentConfig
from log_utils import setup_logger
from models import OptionContract, OptionSelection
from observability import ActivityLog

logger = setup_logger(__name__)

CONTRACT_LOOKAHEAD = 5
MAX_SPREAD_PCT = 0.10
CONTRACT_MULTIPLIER = 100
DAY_SECONDS = 86_400

_OCC_SYMBOL = re.compile(r"^([A-Z]{1,6})(\d{6})([CP])(\d{8})$")


def underlying_symbol(symbol: str) -> str:
    """Return the underlying ticker of an OCC option symbol, else ``symbol``."""

    match = _OCC_SYMBOL.match(symbol or "")
    return match.group(1) if match else symbol


def days_to_expiration(expiration: str, now: float) -> int:
    expiry = datetime.strptime(expiration, "%Y-%m-%d").replace(tzinfo=timezone.utc).timestamp()
    return math.ceil((expiry - now) / DAY_SECONDS)


def target_strike(price: float, direction: str, target_delta: float) -> float:
    """Linear delta-to-moneyness approximation around the underlying price."""

    offset = (target_delta - 0.5) * 0.2
    if direction == "bullish":
        return price * (1 - offset)
    return price * (1 + offset)


def max_affordable_contracts(equity: float, mid_price: float, max_pct: float) -> int:
    if mid_price <= 0:
        return 0
    return int(math.floor(equity * max_pct / (mid_price * CONTRACT_MULTIPLIER)))


def pick_expiration(expirations: Sequence[str], min_dte: int, max_dte: int, now: float) -> Optional[str]:
    """Expiration inside ``[min_dte, max_dte]`` nearest the window midpoint."""

    valid = [exp for exp in expirations if min_dte <= days_to_expiration(exp, now) <= max_dte]
    if not valid:
        return None
    midpoint = (min_dte + max_dte) / 2
    best = valid[0]
    for exp in valid[1:]:
        if abs(days_to_expiration(exp, now) - midpoint) < abs(days_to_expiration(best, now) - midpoint):
            best = exp
    return best


class OptionsSelector:
    def __init__(self, broker: Any, config: AgentConfig, *, activity: Optional[ActivityLog] = None) -> None:
        self.broker = broker
        self.config = config
        self.activity = activity or ActivityLog()

    def select(
        self,
        symbol: str,
        direction: str,
        equity: float,
        now: Optional[float] = None,
    ) -> Optional[OptionSelection]:
        """Return the best contract for ``symbol`` or ``None``."""

        current = time.time() if now is None else now
        cfg = self.config
        try:
            return self._select(symbol, direction, equity, current, cfg)
        except Exception as exc:  # noqa: BLE001 - broker failures mean no selection
            self.activity.record("Options", "error", symbol=symbol, message=str(exc))
            return None

    def _select(self, symbol: str, direction: str, equity: float, now: float, cfg: AgentConfig) -> Optional[OptionSelection]:
        today = datetime.fromtimestamp(now, tz=timezone.utc).date()
        expirations = self.broker.get_option_expirations(
            symbol,
            (today + timedelta(days=max(0, cfg.options_min_dte - 1))).isoformat(),
            (today + timedelta(days=cfg.options_max_dte + 1)).isoformat(),
        )
        if not expirations:
            self.activity.record("Options", "no_expirations", symbol=symbol)
            return None
        expiration = pick_expiration(expirations, cfg.options_min_dte, cfg.options_max_dte, now)
        if expiration is None:
            self.activity.record("Options", "no_valid_expirations", symbol=symbol)
            return None

        wanted = "call" if direction == "bullish" else "put"
        contracts: List[OptionContract] = [
            c for c in self.broker.get_option_chain(symbol, expiration) if c.option_type == wanted and c.strike > 0
        ]
        if not contracts:
            self.activity.record("Options", "no_contracts", symbol=symbol, direction=direction)
            return None

        price = float(self.broker.get_price(symbol) or 0.0)
        if price <= 0:
            return None
        strike_target = target_strike(price, direction, cfg.options_target_delta)
        ranked = sorted(contracts, key=lambda c: abs(c.strike - strike_target))

        for contract in ranked[:CONTRACT_LOOKAHEAD]:
            snapshot = self.broker.get_option_snapshot(contract.symbol)
            if snapshot is None or snapshot.delta is None:
                continue
            abs_delta = abs(snapshot.delta)
            if abs_delta < cfg.options_min_delta or abs_delta > cfg.options_max_delta:
                continue
            if snapshot.bid <= 0 or snapshot.ask <= 0:
                continue
            if (snapshot.ask - snapshot.bid) / snapshot.ask > MAX_SPREAD_PCT:
                continue
            mid = (snapshot.bid + snapshot.ask) / 2
            quantity = max_affordable_contracts(equity, mid, cfg.options_max_pct_per_trade)
            if quantity < 1:
                continue
            self.activity.record(
                "Options",
                "contract_selected",
                symbol=symbol,
                contract=contract.symbol,
                strike=contract.strike,
                expiration=expiration,
                delta=round(snapshot.delta, 3),
                mid_price=round(mid, 2),
            )
            return OptionSelection(
                contract=contract,
                dte=days_to_expiration(expiration, now),
                delta=snapshot.delta,
                mid_price=mid,
                max_contracts=quantity,
            )
        return None


__all__ = [
    "OptionsSelector",
    "days_to_expiration",
    "max_affordable_contracts",
    "pick_expiration",
    "target_strike",
    "underlying_symbol",
]
