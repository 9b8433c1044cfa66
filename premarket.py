"""Premarket planning and execution at the open.

Between 09:25 and 09:29 New York time the agent researches its best signals
and asks the analyst for a plan.  Between 09:30 and 09:32 the plan is
executed once, sells first, and then discarded.  A plan older than ten
minutes is never executed.
"""

from __future__ import annotations

import time
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Optional
from zoneinfo import ZoneInfo

from agent_state import AgentState
from broker import BrokerError
from log_utils import setup_logger
from models import PremarketPlan
from observability import ActivityLog

logger = setup_logger(__name__)

MARKET_TZ = ZoneInfo("America/New_York")
PLAN_STALE_SECONDS = 600.0
PREMARKET_RESEARCH_LIMIT = 10


class PremarketState(str, Enum):
    NONE = "NONE"
    PLANNING = "PLANNING"
    PLANNED = "PLANNED"
    EXECUTED = "EXECUTED"
    EXPIRED = "EXPIRED"


def _market_time(now: Optional[float]) -> datetime:
    return datetime.fromtimestamp(time.time() if now is None else now, tz=MARKET_TZ)


def is_premarket_window(now: Optional[float] = None) -> bool:
    """Weekdays 09:25-09:29 New York time."""

    local = _market_time(now)
    return local.weekday() < 5 and local.hour == 9 and 25 <= local.minute <= 29


def is_market_open_window(now: Optional[float] = None) -> bool:
    """Weekdays 09:30-09:32 New York time."""

    local = _market_time(now)
    return local.weekday() < 5 and local.hour == 9 and 30 <= local.minute <= 32


class PremarketPlanner:
    def __init__(
        self,
        state: AgentState,
        broker: Any,
        research_gate: Any,
        lifecycle: Any,
        *,
        activity: Optional[ActivityLog] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.state = state
        self.broker = broker
        self.research_gate = research_gate
        self.lifecycle = lifecycle
        self.activity = activity or ActivityLog(state.logs)
        self._clock = clock
        self._status = PremarketState.PLANNED if state.premarket_plan else PremarketState.NONE

    def status(self) -> PremarketState:
        if self.state.premarket_plan is not None:
            return PremarketState.PLANNED
        return self._status

    def is_stale(self, plan: Optional[PremarketPlan], now: float) -> bool:
        return plan is None or now - plan.timestamp > PLAN_STALE_SECONDS

    def expire_if_stale(self, now: Optional[float] = None) -> bool:
        """Discard a plan past its staleness limit; ``True`` when one was dropped."""

        current = self._clock() if now is None else now
        plan = self.state.premarket_plan
        if plan is None or not self.is_stale(plan, current):
            return False
        self.state.premarket_plan = None
        self._status = PremarketState.EXPIRED
        self.activity.record("System", "premarket_plan_expired", age_seconds=round(current - plan.timestamp))
        return True

    def plan(self, now: Optional[float] = None) -> Optional[PremarketPlan]:
        """Build the premarket plan unless one already exists."""

        current = self._clock() if now is None else now
        if self.state.premarket_plan is not None:
            return None
        try:
            account = self.broker.get_account()
            positions = self.broker.get_positions()
        except BrokerError as exc:
            self.activity.record("System", "premarket_error", message=str(exc))
            return None
        if account is None or not self.state.signal_cache:
            return None

        self._status = PremarketState.PLANNING
        self.activity.record(
            "System",
            "premarket_analysis_starting",
            signals=len(self.state.signal_cache),
            researched=len(self.state.signal_research),
        )
        held = {p.symbol for p in positions}
        researched = self.research_gate.research_top_signals(
            self.state.signal_cache, held, PREMARKET_RESEARCH_LIMIT, current
        )
        analysis = self.research_gate.analyze_batch(self.state.signal_cache, positions, account, current)
        plan = PremarketPlan(
            timestamp=current,
            recommendations=list(analysis.recommendations),
            market_summary=analysis.market_summary,
            high_conviction=list(analysis.high_conviction),
            researched_buys=[r for r in researched if r.verdict == "BUY"],
        )
        self.state.premarket_plan = plan
        self._status = PremarketState.PLANNED
        self.activity.record(
            "System",
            "premarket_analysis_complete",
            buy_recommendations=sum(1 for r in plan.recommendations if r.action == "BUY"),
            sell_recommendations=sum(1 for r in plan.recommendations if r.action == "SELL"),
            high_conviction=plan.high_conviction,
        )
        return plan

    def execute_at_open(self, now: Optional[float] = None) -> int:
        """Execute and discard the plan; returns the number of orders placed."""

        current = self._clock() if now is None else now
        plan = self.state.premarket_plan
        if self.is_stale(plan, current):
            self.activity.record("System", "no_premarket_plan", reason="Plan missing or stale")
            if plan is not None:
                self.state.premarket_plan = None
                self._status = PremarketState.EXPIRED
            return 0

        try:
            account = self.broker.get_account()
            positions = self.broker.get_positions()
        except BrokerError as exc:
            self.activity.record("System", "premarket_error", message=str(exc))
            self.state.premarket_plan = None
            self._status = PremarketState.EXPIRED
            return 0

        cfg = self.state.config
        held = {p.symbol for p in positions}
        open_count = len(positions)
        orders = 0
        self.activity.record("System", "executing_premarket_plan", recommendations=len(plan.recommendations))

        for rec in plan.recommendations:
            if rec.action != "SELL" or rec.confidence < cfg.min_analyst_confidence:
                continue
            if rec.symbol not in held:
                continue
            if self.lifecycle.execute_sell(rec.symbol, f"Pre-market plan: {rec.reasoning}"):
                held.discard(rec.symbol)
                open_count -= 1
                orders += 1

        for rec in plan.recommendations:
            if rec.action != "BUY" or rec.confidence < cfg.min_analyst_confidence:
                continue
            if rec.symbol in held:
                continue
            if open_count >= cfg.max_positions:
                break
            order = self.lifecycle.execute_buy(rec.symbol, rec.confidence, account)
            if order is None:
                continue
            self.lifecycle.record_entry(
                rec.symbol, order, confidence=0.0, reason=rec.reasoning, default_source="premarket", now=current
            )
            held.add(rec.symbol)
            open_count += 1
            orders += 1

        self.state.premarket_plan = None
        self._status = PremarketState.EXECUTED
        return orders


__all__ = [
    "PLAN_STALE_SECONDS",
    "PremarketPlanner",
    "PremarketState",
    "is_market_open_window",
    "is_premarket_window",
]
