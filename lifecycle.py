"""Exit and entry decisions for held and candidate positions.

Exits are expressed as ordered rule lists evaluated top to bottom, first
match wins.  Equity positions check take-profit, then stop-loss, then
staleness; options and crypto have their own lists with their own
thresholds and never see the equity rules.

Entries prefer symbols with a fresh per-symbol BUY verdict and only then fall
back to the batch analyst for symbols that have no verdict of their own.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Iterable, List, Optional, Sequence, Set

from agent_state import AgentState
from broker import BrokerError
from log_utils import setup_logger
from models import Account, Order, Position, PositionEntry, ResearchResult, StalenessResult
from observability import ActivityLog
from options_selector import underlying_symbol
from research_gate import position_pl_pct
from signal_aggregator import find_signal, social_volume, symbol_sentiment
from sizing import (
    CRYPTO,
    OPTION,
    AssetRouter,
    TradePlan,
    is_crypto_position,
    is_crypto_symbol,
    is_option_position,
)
from staleness import score_staleness
from twitter_confirmation import apply_confirmation

logger = setup_logger(__name__)

MAX_RESEARCHED_ENTRIES = 3
MAX_CRYPTO_POSITIONS = 3
MAX_CRYPTO_CANDIDATES = 2


class PositionState(str, Enum):
    OPEN = "OPEN"
    EXIT_PROFIT = "EXIT_PROFIT"
    EXIT_LOSS = "EXIT_LOSS"
    EXIT_STALE = "EXIT_STALE"
    EXIT_MANUAL = "EXIT_MANUAL"


@dataclass
class ExitContext:
    """Inputs an exit rule may look at for one position."""

    position: Position
    pl_pct: float
    state: AgentState
    now: float
    staleness: Optional[StalenessResult] = None

    @property
    def config(self):
        return self.state.config


@dataclass
class ExitDecision:
    symbol: str
    state: PositionState
    reason: str
    pl_pct: float


ExitRule = Callable[[ExitContext], Optional[ExitDecision]]


def evaluate_exit(context: ExitContext, rules: Sequence[ExitRule]) -> Optional[ExitDecision]:
    """Return the first rule's decision, or ``None`` when the position stays open."""

    for rule in rules:
        decision = rule(context)
        if decision is not None:
            return decision
    return None


def option_pl_pct(position: Position) -> float:
    entry_price = position.avg_entry_price or position.current_price
    if entry_price <= 0:
        return 0.0
    return (position.current_price - entry_price) / entry_price * 100


# ---------------------------------------------------------------------------
# Rules
# ---------------------------------------------------------------------------


def take_profit(ctx: ExitContext) -> Optional[ExitDecision]:
    if ctx.pl_pct >= ctx.config.take_profit_pct:
        return ExitDecision(
            ctx.position.symbol, PositionState.EXIT_PROFIT, f"Take profit at +{ctx.pl_pct:.1f}%", ctx.pl_pct
        )
    return None


def stop_loss(ctx: ExitContext) -> Optional[ExitDecision]:
    if ctx.pl_pct <= -ctx.config.stop_loss_pct:
        return ExitDecision(ctx.position.symbol, PositionState.EXIT_LOSS, f"Stop loss at {ctx.pl_pct:.1f}%", ctx.pl_pct)
    return None


def stale_position(ctx: ExitContext) -> Optional[ExitDecision]:
    if not ctx.config.stale_position_enabled:
        return None
    symbol = ctx.position.symbol
    entry = ctx.state.position_entries.get(symbol)
    last_mention = ctx.state.last_mention_time(symbol)
    if last_mention is None and entry is not None and ctx.state.social_history.get(symbol):
        # watched since entry without a single mention
        last_mention = entry.entry_time
    ctx.staleness = score_staleness(
        entry,
        ctx.position.current_price,
        ctx.state.current_social_volume(symbol),
        ctx.config,
        ctx.now,
        last_mention_time=last_mention,
    )
    if ctx.staleness.is_stale:
        return ExitDecision(symbol, PositionState.EXIT_STALE, f"STALE: {ctx.staleness.reason}", ctx.pl_pct)
    return None


def crypto_take_profit(ctx: ExitContext) -> Optional[ExitDecision]:
    if ctx.pl_pct >= ctx.config.crypto_take_profit_pct:
        return ExitDecision(
            ctx.position.symbol, PositionState.EXIT_PROFIT, f"Crypto take profit at +{ctx.pl_pct:.1f}%", ctx.pl_pct
        )
    return None


def crypto_stop_loss(ctx: ExitContext) -> Optional[ExitDecision]:
    if ctx.pl_pct <= -ctx.config.crypto_stop_loss_pct:
        return ExitDecision(
            ctx.position.symbol, PositionState.EXIT_LOSS, f"Crypto stop loss at {ctx.pl_pct:.1f}%", ctx.pl_pct
        )
    return None


def options_take_profit(ctx: ExitContext) -> Optional[ExitDecision]:
    if ctx.pl_pct >= ctx.config.options_take_profit_pct:
        return ExitDecision(
            ctx.position.symbol, PositionState.EXIT_PROFIT, f"Options take profit at +{ctx.pl_pct:.1f}%", ctx.pl_pct
        )
    return None


def options_stop_loss(ctx: ExitContext) -> Optional[ExitDecision]:
    if ctx.pl_pct <= -ctx.config.options_stop_loss_pct:
        return ExitDecision(
            ctx.position.symbol, PositionState.EXIT_LOSS, f"Options stop loss at {ctx.pl_pct:.1f}%", ctx.pl_pct
        )
    return None


EQUITY_EXIT_RULES: Sequence[ExitRule] = (take_profit, stop_loss, stale_position)
CRYPTO_EXIT_RULES: Sequence[ExitRule] = (crypto_take_profit, crypto_stop_loss)
# Thresholds are far apart, so profit and loss can never both match.
OPTIONS_EXIT_RULES: Sequence[ExitRule] = (options_take_profit, options_stop_loss)


def held_symbols(positions: Iterable[Position]) -> Set[str]:
    """Symbols held directly or through an option on them."""

    held: Set[str] = set()
    for position in positions:
        held.add(position.symbol)
        if is_option_position(position):
            held.add(underlying_symbol(position.symbol))
    return held


class PositionLifecycle:
    """Apply exit rules, open new positions and keep per-symbol bookkeeping."""

    def __init__(
        self,
        state: AgentState,
        broker: Any,
        router: AssetRouter,
        research_gate: Any,
        *,
        twitter: Any = None,
        activity: Optional[ActivityLog] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.state = state
        self.broker = broker
        self.router = router
        self.research_gate = research_gate
        self.twitter = twitter
        self.activity = activity or ActivityLog(state.logs)
        self._clock = clock

    @property
    def config(self):
        return self.state.config

    @property
    def twitter_active(self) -> bool:
        return bool(self.twitter is not None and self.twitter.enabled and self.config.twitter_confirmation_enabled)

    # ------------------------------------------------------------------
    # Orders
    # ------------------------------------------------------------------
    def execute_sell(self, symbol: str, reason: str) -> bool:
        """Close ``symbol``; bookkeeping is only cleared once the broker accepts."""

        try:
            self.broker.close_position(symbol)
        except BrokerError as exc:
            self.activity.record("Executor", "sell_failed", symbol=symbol, error=str(exc))
            return False
        self.activity.record("Executor", "sell_executed", symbol=symbol, reason=reason)
        self.state.forget_symbol(symbol)
        return True

    def close_manual(self, symbol: str, reason: str = "Manual close") -> Optional[ExitDecision]:
        if not self.execute_sell(symbol, reason):
            return None
        return ExitDecision(symbol, PositionState.EXIT_MANUAL, reason, 0.0)

    def execute_plan(self, plan: TradePlan) -> Optional[Order]:
        agent = {OPTION: "Options", CRYPTO: "Crypto"}.get(plan.asset_class, "Executor")
        if not plan.tradable:
            self.activity.record(agent, "buy_skipped", symbol=plan.symbol, reason=plan.rejected)
            return None
        try:
            order = self.broker.create_order(
                plan.order_symbol,
                side="buy",
                notional=plan.notional if plan.qty is None else None,
                qty=plan.qty,
                order_type=plan.order_type,
                time_in_force=plan.time_in_force,
                limit_price=plan.limit_price,
            )
        except BrokerError as exc:
            self.activity.record(agent, "buy_failed", symbol=plan.order_symbol, error=str(exc))
            return None
        details = {"status": order.status}
        if plan.qty is not None:
            details.update(qty=plan.qty, limit_price=plan.limit_price)
        else:
            details["size"] = plan.notional
        self.activity.record(agent, "buy_executed", symbol=plan.order_symbol, **details)
        return order

    def execute_buy(self, symbol: str, confidence: float, account: Account) -> Optional[Order]:
        return self.execute_plan(self.router.equity_plan(symbol, confidence, account))

    def execute_crypto_buy(self, symbol: str, confidence: float, account: Account) -> Optional[Order]:
        return self.execute_plan(self.router.crypto_plan(symbol, confidence, account))

    def record_entry(
        self,
        symbol: str,
        order: Optional[Order],
        *,
        confidence: float,
        reason: str,
        default_source: str,
        now: Optional[float] = None,
    ) -> PositionEntry:
        """Store the entry snapshot used later by the staleness scorer."""

        signals = self.state.signal_cache
        signal = find_signal(signals, symbol)
        sentiment = symbol_sentiment(signals, symbol) or confidence
        if signal is not None and signal.subreddits:
            sources = list(signal.subreddits)
        else:
            sources = [(signal.source if signal else "") or default_source]
        entry = PositionEntry(
            symbol=symbol,
            entry_time=self._clock() if now is None else now,
            entry_price=float(order.filled_avg_price or 0.0) if order else 0.0,
            entry_sentiment=sentiment,
            entry_social_volume=social_volume(signals, symbol),
            entry_sources=sources,
            entry_reason=reason,
            peak_price=0.0,
            peak_sentiment=sentiment,
        )
        self.state.position_entries[symbol] = entry
        return entry

    # ------------------------------------------------------------------
    # Exits
    # ------------------------------------------------------------------
    def _track_peaks(self, position: Position) -> None:
        entry = self.state.position_entries.get(position.symbol)
        if entry is None:
            return
        if entry.entry_price <= 0 and position.avg_entry_price > 0:
            entry.entry_price = position.avg_entry_price
        if position.current_price > entry.peak_price:
            entry.peak_price = position.current_price
        sentiment = symbol_sentiment(self.state.signal_cache, position.symbol)
        if sentiment > entry.peak_sentiment:
            entry.peak_sentiment = sentiment

    def run_exits(self, positions: Sequence[Position], now: Optional[float] = None) -> List[ExitDecision]:
        """Apply the equity exit rules; options and crypto are skipped."""

        current = self._clock() if now is None else now
        exits: List[ExitDecision] = []
        for position in positions:
            if is_option_position(position) or is_crypto_position(position, self.config):
                continue
            self._track_peaks(position)
            ctx = ExitContext(position, position_pl_pct(position), self.state, current)
            decision = evaluate_exit(ctx, EQUITY_EXIT_RULES)
            if ctx.staleness is not None:
                self.state.staleness_analysis[position.symbol] = ctx.staleness
            if decision is not None and self.execute_sell(position.symbol, decision.reason):
                exits.append(decision)
        return exits

    def check_options_exits(self, positions: Sequence[Position], now: Optional[float] = None) -> List[ExitDecision]:
        """Exit decisions for option positions, without placing orders."""

        if not self.config.options_enabled:
            return []
        current = self._clock() if now is None else now
        decisions: List[ExitDecision] = []
        for position in positions:
            if not is_option_position(position):
                continue
            decision = evaluate_exit(
                ExitContext(position, option_pl_pct(position), self.state, current), OPTIONS_EXIT_RULES
            )
            if decision is not None:
                decisions.append(decision)
        return decisions

    def run_options_exits(self, positions: Sequence[Position], now: Optional[float] = None) -> List[ExitDecision]:
        exits = []
        for decision in self.check_options_exits(positions, now):
            if self.execute_sell(decision.symbol, decision.reason):
                exits.append(decision)
        return exits

    # ------------------------------------------------------------------
    # Entries
    # ------------------------------------------------------------------
    def _confirmed_confidence(self, research: ResearchResult, now: float) -> float:
        confidence = research.confidence
        signal = find_signal(self.state.signal_cache, research.symbol)
        if not self.twitter_active or signal is None:
            return confidence
        confirmation = self.twitter.confirm(research.symbol, signal.sentiment, now)
        adjusted = apply_confirmation(confidence, confirmation)
        if confirmation is not None and confirmation.confirms_existing:
            self.activity.record("System", "twitter_boost", symbol=research.symbol, new_confidence=adjusted)
        return adjusted

    def _researched_buys(self, held: Set[str], now: float) -> List[ResearchResult]:
        fresh = [self.research_gate.cached(symbol, now) for symbol in list(self.state.signal_research)]
        buys = [
            r
            for r in fresh
            if self.research_gate.is_actionable(r)
            and r.symbol not in held
            and not is_crypto_symbol(r.symbol, self.config)
        ]
        buys.sort(key=lambda r: r.confidence, reverse=True)
        return buys[:MAX_RESEARCHED_ENTRIES]

    def _open_researched(
        self, research: ResearchResult, confidence: float, account: Account, positions: Sequence[Position], now: float
    ) -> Optional[Order]:
        plan = self.router.route(
            research.symbol, confidence, account, positions, entry_quality=research.entry_quality, now=now
        )
        if plan.asset_class == OPTION:
            order = self.execute_plan(plan)
            if order is not None:
                self.activity.record(
                    "System", "options_position_opened", symbol=research.symbol, contract=plan.order_symbol
                )
                self.record_entry(
                    plan.order_symbol,
                    order,
                    confidence=confidence,
                    reason=research.reasoning,
                    default_source="research",
                    now=now,
                )
                return order
            plan = self.router.equity_plan(research.symbol, confidence, account)
        order = self.execute_plan(plan)
        if order is not None:
            self.record_entry(
                research.symbol, order, confidence=confidence, reason=research.reasoning, default_source="research", now=now
            )
        return order

    def run_entries(
        self, positions: Sequence[Position], account: Account, now: Optional[float] = None
    ) -> List[str]:
        """Open new positions while below the cap; return the symbols bought."""

        current = self._clock() if now is None else now
        cfg = self.config
        open_count = len(positions)
        if open_count >= cfg.max_positions or not self.state.signal_cache:
            return []
        held = held_symbols(positions)
        bought: List[str] = []

        for research in self._researched_buys(held, current):
            if open_count >= cfg.max_positions:
                break
            if research.symbol in held:
                continue
            confidence = self._confirmed_confidence(research, current)
            if confidence < cfg.min_analyst_confidence:
                continue
            if self._open_researched(research, confidence, account, positions, current) is not None:
                held.add(research.symbol)
                bought.append(research.symbol)
                open_count += 1

        if open_count >= cfg.max_positions:
            return bought

        analysis = self.research_gate.analyze_batch(self.state.signal_cache, positions, account, current)
        covered = {s for s in list(self.state.signal_research) if self.research_gate.cached(s, current) is not None}
        for rec in analysis.recommendations:
            if open_count >= cfg.max_positions:
                break
            if rec.action != "BUY" or rec.confidence < cfg.min_analyst_confidence:
                continue
            if rec.symbol in held or rec.symbol in covered or is_crypto_symbol(rec.symbol, cfg):
                continue
            order = self.execute_buy(rec.symbol, rec.confidence, account)
            if order is None:
                continue
            self.record_entry(
                rec.symbol, order, confidence=rec.confidence, reason=rec.reasoning, default_source="analyst", now=current
            )
            held.add(rec.symbol)
            bought.append(rec.symbol)
            open_count += 1
        return bought

    def run_analyst(
        self, positions: Sequence[Position], account: Account, now: Optional[float] = None
    ) -> List[str]:
        """Exits first, then entries against the remaining positions."""

        exits = self.run_exits(positions, now)
        closed = {d.symbol for d in exits}
        remaining = [p for p in positions if p.symbol not in closed]
        return self.run_entries(remaining, account, now)

    # ------------------------------------------------------------------
    # Crypto
    # ------------------------------------------------------------------
    def run_crypto(self, positions: Sequence[Position], now: Optional[float] = None) -> Optional[str]:
        """Crypto exits and at most one new crypto entry; returns the symbol bought."""

        cfg = self.config
        if not cfg.crypto_enabled:
            return None
        current = self._clock() if now is None else now
        crypto_positions = [p for p in positions if is_crypto_position(p, cfg)]
        held = {p.symbol for p in crypto_positions}

        for position in crypto_positions:
            decision = evaluate_exit(
                ExitContext(position, position_pl_pct(position), self.state, current), CRYPTO_EXIT_RULES
            )
            if decision is None:
                continue
            action = "take_profit" if decision.state is PositionState.EXIT_PROFIT else "stop_loss"
            self.activity.record("Crypto", action, symbol=position.symbol, pnl=round(decision.pl_pct, 2))
            self.execute_sell(position.symbol, decision.reason)

        max_positions = min(len(cfg.crypto_symbols) or MAX_CRYPTO_POSITIONS, MAX_CRYPTO_POSITIONS)
        if len(crypto_positions) >= max_positions:
            return None

        signals = [s for s in self.state.signal_cache if s.is_crypto and s.symbol not in held and s.sentiment > 0]
        signals.sort(key=lambda s: s.momentum or 0.0, reverse=True)
        for signal in signals[:MAX_CRYPTO_CANDIDATES]:
            research = self.research_gate.research_crypto(
                signal.symbol, signal.momentum, signal.sentiment, signal.price, current
            )
            if research is None or research.verdict != "BUY":
                self.activity.record(
                    "Crypto",
                    "research_skip",
                    symbol=signal.symbol,
                    verdict=research.verdict if research else "NO_RESEARCH",
                    confidence=research.confidence if research else 0,
                )
                continue
            if research.confidence < cfg.min_analyst_confidence:
                self.activity.record("Crypto", "low_confidence", symbol=signal.symbol, confidence=research.confidence)
                continue
            try:
                account = self.broker.get_account()
            except BrokerError as exc:
                self.activity.record("Crypto", "error", symbol=signal.symbol, message=str(exc))
                return None
            if self.execute_crypto_buy(signal.symbol, research.confidence, account) is not None:
                return signal.symbol
        return None

    # ------------------------------------------------------------------
    # Position research
    # ------------------------------------------------------------------
    def review_positions(self, positions: Sequence[Position], now: Optional[float] = None) -> int:
        """Informational LLM review of each held equity position."""

        current = self._clock() if now is None else now
        reviewed = 0
        for position in positions:
            if is_option_position(position) or is_crypto_position(position, self.config):
                continue
            self.research_gate.limiter.wait()
            if self.research_gate.review_position(position, self.state.position_research, current) is not None:
                reviewed += 1
        return reviewed


__all__ = [
    "CRYPTO_EXIT_RULES",
    "EQUITY_EXIT_RULES",
    "OPTIONS_EXIT_RULES",
    "ExitContext",
    "ExitDecision",
    "ExitRule",
    "PositionLifecycle",
    "PositionState",
    "evaluate_exit",
    "held_symbols",
    "option_pl_pct",
]
