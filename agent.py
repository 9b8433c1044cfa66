"""Social Signal Agent control loop.

One tick gathers social signals, researches the best of them, plans or
executes the premarket batch, runs the crypto loop and, while the market is
open, the exit and entry logic.  Ticks are serialized by a lock and the
whole state is persisted once at the end of each successful tick.  The
scheduler re-arms after every tick, including ticks that raised.
"""

from __future__ import annotations

import argparse
import sys
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence

from agent_state import AgentState
from broker import AlpacaBroker
from budget_guard import CostLedger, ReadQuota
from config import get_twitter_bearer_token, update_config
from lifecycle import PositionLifecycle, held_symbols
from llm_client import GroqCompleter
from log_utils import setup_logger
from models import SocialSnapshot, to_dict
from notifier import DiscordNotifier
from observability import ActivityLog
from options_selector import OptionsSelector
from premarket import PremarketPlanner, is_market_open_window, is_premarket_window
from research_gate import ResearchGate
from signal_aggregator import social_volume, symbol_sentiment
from signal_sources import CryptoMomentumSource, RedditSource, StockTwitsSource
from sizing import AssetRouter, is_crypto_position, is_option_position
from state_store import JsonStateStore
from twitter_confirmation import TwitterConfirmer

logger = setup_logger(__name__)

TICK_INTERVAL_SECONDS = 30.0
RESEARCH_INTERVAL_SECONDS = 120.0
POSITION_RESEARCH_INTERVAL_SECONDS = 300.0
TICK_RESEARCH_LIMIT = 5
SIGNAL_ALERT_SENTIMENT = 0.7


def handle_exception(exc_type, exc_value, exc_traceback):
    """Log uncaught exceptions with stack traces."""
    if issubclass(exc_type, KeyboardInterrupt):
        return
    logger.error("Uncaught exception", exc_info=(exc_type, exc_value, exc_traceback))


class SignalAgent:
    """Owns the state aggregate and every component that reads or mutates it."""

    def __init__(
        self,
        state: AgentState,
        broker: Any,
        llm: Any,
        store: Any,
        *,
        sources: Optional[Sequence[Any]] = None,
        notifier: Any = None,
        twitter_token: Optional[str] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.state = state
        self.broker = broker
        self.store = store
        self.notifier = notifier
        self._clock = clock
        self._lock = threading.Lock()
        self.scheduler: Optional[AgentScheduler] = None

        cfg = state.config
        self.activity = ActivityLog(state.logs)
        self.ledger = CostLedger(state.cost_tracker, alert_usd=cfg.llm_cost_alert_usd)
        self.research_gate = ResearchGate(
            llm,
            self.ledger,
            state.signal_research,
            config=cfg,
            broker=broker,
            notifier=notifier,
            activity=self.activity,
            clock=clock,
        )
        self.twitter = TwitterConfirmer(
            twitter_token,
            ReadQuota(state.twitter_reads),
            state.twitter_confirmations,
            activity=self.activity,
            clock=clock,
        )
        self.router = AssetRouter(cfg, OptionsSelector(broker, cfg, activity=self.activity), activity=self.activity)
        self.lifecycle = PositionLifecycle(
            state,
            broker,
            self.router,
            self.research_gate,
            twitter=self.twitter,
            activity=self.activity,
            clock=clock,
        )
        self.premarket = PremarketPlanner(
            state, broker, self.research_gate, self.lifecycle, activity=self.activity, clock=clock
        )
        if sources is None:
            sources = [StockTwitsSource(activity=self.activity), RedditSource(activity=self.activity)]
        self.sources = list(sources)
        self.crypto_source = CryptoMomentumSource(
            broker, cfg.crypto_symbols, threshold=cfg.crypto_momentum_threshold, activity=self.activity
        )

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------
    def persist(self) -> None:
        try:
            self.store.save(self.state)
        except OSError as exc:
            logger.exception("Failed to persist agent state: %s", exc)

    # ------------------------------------------------------------------
    # Tick
    # ------------------------------------------------------------------
    def gather_signals(self, now: float) -> int:
        """Fetch every source concurrently and replace the signal cache."""

        cfg = self.state.config
        sources: List[Any] = list(self.sources)
        if cfg.crypto_enabled:
            self.crypto_source.symbols = list(cfg.crypto_symbols)
            self.crypto_source.threshold = cfg.crypto_momentum_threshold
            sources.append(self.crypto_source)
        if not sources:
            return 0

        with ThreadPoolExecutor(max_workers=len(sources), thread_name_prefix="agent-io") as pool:
            batches = list(pool.map(lambda source: source.fetch(now), sources))
        signals = [signal for batch in batches for signal in batch]
        self.state.signal_cache = signals
        self.state.last_data_gather_run = now

        for symbol in list(self.state.position_entries):
            self.state.record_social_snapshot(
                symbol,
                SocialSnapshot(
                    timestamp=now,
                    volume=social_volume(signals, symbol),
                    sentiment=symbol_sentiment(signals, symbol),
                ),
            )

        if self.notifier is not None:
            for signal in signals:
                if signal.sentiment > SIGNAL_ALERT_SENTIMENT:
                    self.notifier.notify(
                        "signal",
                        {"symbol": signal.symbol, "sentiment": signal.sentiment, "sources": [signal.source]},
                    )

        self.activity.record(
            "System",
            "data_gathered",
            total=len(signals),
            **{getattr(s, "name", type(s).__name__): len(b) for s, b in zip(sources, batches)},
        )
        return len(signals)

    def tick(self) -> bool:
        """Run one control-loop pass; returns ``False`` when disabled or failed."""

        with self._lock:
            if not self.state.enabled:
                return False
            try:
                self._tick(self._clock())
            except Exception as exc:  # noqa: BLE001 - the loop must always reschedule
                logger.error("Tick failed: %s", exc, exc_info=True)
                self.activity.record("System", "alarm_error", error=str(exc))
                return False
            self.persist()
            return True

    def _tick(self, now: float) -> None:
        cfg = self.state.config
        clock = self.broker.get_clock()

        if now - self.state.last_data_gather_run >= cfg.data_poll_interval_ms / 1000:
            self.gather_signals(now)

        self.research_gate.begin_cycle()
        if now - self.state.last_research_run >= RESEARCH_INTERVAL_SECONDS:
            held = held_symbols(self.broker.get_positions())
            self.research_gate.research_top_signals(self.state.signal_cache, held, TICK_RESEARCH_LIMIT, now)
            self.state.last_research_run = now

        self.premarket.expire_if_stale(now)
        if is_premarket_window(now) and self.state.premarket_plan is None:
            self.premarket.plan(now)

        positions = self.broker.get_positions()
        if cfg.crypto_enabled:
            self.lifecycle.run_crypto(positions, now)

        if not clock.is_open:
            return

        if is_market_open_window(now) and self.state.premarket_plan is not None:
            self.premarket.execute_at_open(now)

        if now - self.state.last_analyst_run >= cfg.analyst_interval_ms / 1000:
            account = self.broker.get_account()
            self.lifecycle.run_analyst(self.broker.get_positions(), account, now)
            self.state.last_analyst_run = now

        if positions and now - self.state.last_position_research_run >= POSITION_RESEARCH_INTERVAL_SECONDS:
            self.lifecycle.review_positions(positions, now)
            self.state.last_position_research_run = now

        if cfg.options_enabled:
            self.lifecycle.run_options_exits(positions, now)

        if self.lifecycle.twitter_active:
            equity_symbols = [
                p.symbol for p in positions if not is_option_position(p) and not is_crypto_position(p, cfg)
            ]
            for item in self.twitter.check_breaking_news(equity_symbols, now):
                if item.is_breaking:
                    self.activity.record(
                        "System", "breaking_news", symbol=item.symbol, headline=item.headline, author=item.author
                    )

    # ------------------------------------------------------------------
    # Control surface
    # ------------------------------------------------------------------
    def enable(self) -> Dict[str, Any]:
        self.state.enabled = True
        if self.scheduler is not None:
            self.scheduler.arm()
        self.activity.record("System", "agent_enabled")
        self.persist()
        return self.status()

    def disable(self) -> Dict[str, Any]:
        self.state.enabled = False
        if self.scheduler is not None:
            self.scheduler.disarm()
        self.activity.record("System", "agent_disabled")
        self.persist()
        return self.status()

    def kill(self) -> Dict[str, Any]:
        """Disable and wipe caches; open positions are left untouched."""

        self.state.enabled = False
        if self.scheduler is not None:
            self.scheduler.disarm()
        self.state.signal_cache = []
        self.state.signal_research.clear()
        self.state.twitter_confirmations.clear()
        self.state.premarket_plan = None
        self.activity.record("System", "kill_switch_activated")
        self.persist()
        return self.status()

    def trigger(self) -> bool:
        ran = self.tick()
        if not ran:
            self.persist()
        return ran

    def get_config(self) -> Dict[str, Any]:
        return self.state.config.to_dict()

    def update_config(self, updates: Mapping[str, Any]) -> Dict[str, Any]:
        update_config(self.state.config, updates)
        self.ledger.alert_usd = self.state.config.llm_cost_alert_usd
        self.activity.record("System", "config_updated", keys=sorted(updates))
        self.persist()
        return self.get_config()

    def get_logs(self, limit: int = 100) -> List[Dict[str, Any]]:
        return self.activity.tail(limit)

    def get_costs(self) -> Dict[str, Any]:
        return to_dict(self.state.cost_tracker)

    def get_signals(self) -> List[Dict[str, Any]]:
        return [to_dict(s) for s in self.state.signal_cache]

    def close_position(self, symbol: str) -> bool:
        closed = self.lifecycle.close_manual(symbol) is not None
        self.persist()
        return closed

    def status(self) -> Dict[str, Any]:
        state = self.state
        return {
            "enabled": state.enabled,
            "signals": len(state.signal_cache),
            "tracked_positions": sorted(state.position_entries),
            "researched": len(state.signal_research),
            "premarket": self.premarket.status().value,
            "twitter_reads_remaining": self.twitter.quota.remaining,
            "costs": to_dict(state.cost_tracker),
            "last_data_gather_run": state.last_data_gather_run,
            "last_analyst_run": state.last_analyst_run,
            "last_research_run": state.last_research_run,
            "last_position_research_run": state.last_position_research_run,
        }


class AgentScheduler:
    """Background thread that ticks the agent at a fixed interval while armed."""

    def __init__(self, agent: SignalAgent, *, interval: float = TICK_INTERVAL_SECONDS) -> None:
        self.agent = agent
        self.interval = float(interval)
        self._armed = threading.Event()
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None
        agent.scheduler = self
        if agent.state.enabled:
            self._armed.set()

    @property
    def armed(self) -> bool:
        return self._armed.is_set()

    def arm(self) -> None:
        self._armed.set()

    def disarm(self) -> None:
        self._armed.clear()

    def run_once(self) -> bool:
        try:
            return self.agent.tick()
        except Exception:  # noqa: BLE001 - keep the schedule alive
            logger.exception("Scheduled tick raised")
            return False

    def _loop(self) -> None:
        while not self._stop.is_set():
            if self._armed.is_set():
                self.run_once()
            self._stop.wait(self.interval)

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._loop, name="agent-scheduler", daemon=True)
        self._thread.start()

    def stop(self, timeout: Optional[float] = None) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)

    def join(self) -> None:
        while self._thread is not None and self._thread.is_alive():
            self._thread.join(1.0)


def build_agent(state_file: Optional[str] = None) -> SignalAgent:
    """Wire the agent with live collaborators and the persisted state."""

    store = JsonStateStore(state_file)
    return SignalAgent(
        store.load(),
        AlpacaBroker(),
        GroqCompleter(),
        store,
        notifier=DiscordNotifier(),
        twitter_token=get_twitter_bearer_token(),
    )


def main(argv: Optional[Sequence[str]] = None) -> None:
    parser = argparse.ArgumentParser(description="Run the social signal trading agent")
    parser.add_argument("--state-file", help="Path to the persisted agent state")
    parser.add_argument("--enable", action="store_true", help="Enable trading before starting")
    parser.add_argument("--once", action="store_true", help="Run a single tick and exit")
    parser.add_argument("--interval", type=float, default=TICK_INTERVAL_SECONDS, help="Seconds between ticks")
    args = parser.parse_args(argv)

    sys.excepthook = handle_exception
    agent = build_agent(args.state_file)
    if args.enable:
        agent.enable()

    if args.once:
        agent.trigger()
        return

    scheduler = AgentScheduler(agent, interval=args.interval)
    logger.info("Starting Social Signal Agent loop (enabled=%s)", agent.state.enabled)
    scheduler.start()
    try:
        scheduler.join()
    except KeyboardInterrupt:
        logger.info("Shutting down")
    finally:
        scheduler.stop(timeout=5)
        agent.persist()


if __name__ == "__main__":
    main()
