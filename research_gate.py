"""LLM research calls with cached verdicts.

``ResearchGate`` asks the research model whether a symbol is worth buying and
caches valid verdicts for a few minutes.  Replies that fail validation are
treated as "no verdict": they are logged, never cached, and the symbol is not
retried until the next cycle.  The same gate runs the batch analyst pass and
the informational reviews of held positions.
"""

from __future__ import annotations

import time
from datetime import datetime, timezone
from typing import Any, Callable, Iterable, List, MutableMapping, Optional, Sequence, Set

from budget_guard import CostLedger
from config import AgentConfig
from llm_client import LLMCompletion, LLMError
from llm_schema import parse_batch_analysis, parse_position_review, parse_research_result
from log_utils import setup_logger
from models import Account, BatchAnalysis, Position, PositionReview, ResearchResult, Signal
from observability import ActivityLog
from rate_limiter import RateLimiter
from signal_aggregator import batch_candidates, research_candidates
from ttl_cache import TTLCache

logger = setup_logger(__name__)

RESEARCH_TTL_SECONDS = 180.0
CRYPTO_RESEARCH_TTL_SECONDS = 300.0
RESEARCH_MAX_TOKENS = 250
POSITION_MAX_TOKENS = 200
ANALYST_MAX_TOKENS = 800
RESEARCH_TEMPERATURE = 0.3
ANALYST_TEMPERATURE = 0.4
BATCH_CANDIDATE_LIMIT = 10
RAW_SIGNAL_PROMPT_LIMIT = 20

RESEARCH_SYSTEM_PROMPT = "You are a stock research analyst. Be skeptical of hype. Output valid JSON only."
CRYPTO_SYSTEM_PROMPT = (
    "You are a crypto analyst. Be skeptical of FOMO. Crypto is volatile - only recommend BUY "
    "for strong setups. Output valid JSON only."
)
POSITION_SYSTEM_PROMPT = "You are a position risk analyst. Be concise. Output valid JSON only."
ANALYST_SYSTEM_PROMPT = """You are a senior trading analyst AI. Make the FINAL trading decisions based on social sentiment signals.

Rules:
- Only recommend BUY for symbols with strong conviction from multiple data points
- Recommend SELL for positions with deteriorating sentiment or hitting targets
- Consider the QUALITY of sentiment, not just quantity
- Output valid JSON only

Response format:
{
  "recommendations": [
    { "action": "BUY"|"SELL"|"HOLD", "symbol": "TICKER", "confidence": 0.0-1.0, "reasoning": "detailed reasoning", "suggested_size_pct": 10-30 }
  ],
  "market_summary": "overall market read and sentiment",
  "high_conviction_plays": ["symbols you feel strongest about"]
}"""

_VERDICT_SCHEMA = """JSON response:
{
  "verdict": "BUY|SKIP|WAIT",
  "confidence": 0.0-1.0,
  "entry_quality": "excellent|good|fair|poor",
  "reasoning": "brief reason",
  "red_flags": ["any concerns"],
  "catalysts": ["positive factors"]
}"""


def position_pl_pct(position: Position) -> float:
    """Unrealised P&L as a percent of cost basis."""

    basis = position.market_value - position.unrealized_pl
    if not basis:
        return 0.0
    return position.unrealized_pl / basis * 100


def build_research_prompt(symbol: str, sentiment: float, sources: Sequence[str], price: float) -> str:
    return (
        "Should we BUY this stock based on social sentiment and fundamentals?\n\n"
        f"SYMBOL: {symbol}\n"
        f"SENTIMENT: {sentiment * 100:.0f}% bullish (sources: {', '.join(sources)})\n\n"
        "CURRENT DATA:\n"
        f"- Price: ${price}\n\n"
        "Evaluate if this is a good entry. Consider: Is the sentiment justified? "
        "Is it too late (already pumped)? Any red flags?\n\n" + _VERDICT_SCHEMA
    )


def build_crypto_prompt(symbol: str, price: float, momentum: float, sentiment: float) -> str:
    return (
        "Should we BUY this cryptocurrency based on momentum and market conditions?\n\n"
        f"SYMBOL: {symbol}\n"
        f"PRICE: ${price:.2f}\n"
        f"24H CHANGE: {momentum:.2f}%\n"
        f"SENTIMENT: {sentiment * 100:.0f}% bullish\n\n"
        "Evaluate if this is a good entry. Consider:\n"
        "- Is the momentum sustainable or a trap?\n"
        "- Any major news/events affecting this crypto?\n"
        "- Risk/reward at current price level?\n\n" + _VERDICT_SCHEMA
    )


def build_position_prompt(position: Position) -> str:
    return (
        "Analyze this position for risk and opportunity:\n\n"
        f"POSITION: {position.symbol}\n"
        f"- Shares: {position.qty}\n"
        f"- Market Value: ${position.market_value:.2f}\n"
        f"- P&L: ${position.unrealized_pl:.2f} ({position_pl_pct(position):.1f}%)\n"
        f"- Current Price: ${position.current_price}\n\n"
        "Provide a brief risk assessment and recommendation (HOLD, SELL, or ADD). JSON format:\n"
        "{\n"
        '  "recommendation": "HOLD|SELL|ADD",\n'
        '  "risk_level": "low|medium|high",\n'
        '  "reasoning": "brief reason",\n'
        '  "key_factors": ["factor1", "factor2"]\n'
        "}"
    )


class ResearchGate:
    """Cached per-symbol research plus the batch analyst and position reviews."""

    def __init__(
        self,
        llm: Any,
        ledger: CostLedger,
        research_store: MutableMapping[str, ResearchResult],
        *,
        config: AgentConfig,
        broker: Any = None,
        notifier: Any = None,
        activity: Optional[ActivityLog] = None,
        limiter: Optional[RateLimiter] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.llm = llm
        self.ledger = ledger
        self.cache: TTLCache[ResearchResult] = TTLCache(research_store, RESEARCH_TTL_SECONDS)
        self.config = config
        self.broker = broker
        self.notifier = notifier
        self.activity = activity or ActivityLog()
        self.limiter = limiter or RateLimiter(0.5)
        self._clock = clock
        self._failed: Set[str] = set()

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def begin_cycle(self) -> None:
        """Forget symbols whose research failed in the previous cycle."""

        self._failed.clear()

    def _complete(self, system: str, user: str, max_tokens: int, model: str, temperature: float) -> LLMCompletion:
        completion = self.llm.complete(system, user, max_tokens, model=model, temperature=temperature)
        self.ledger.track(completion.model or model, completion.tokens_in, completion.tokens_out)
        return completion

    def _price(self, symbol: str) -> float:
        if self.broker is None:
            return 0.0
        try:
            return float(self.broker.get_price(symbol) or 0.0)
        except Exception as exc:  # noqa: BLE001 - missing price is not fatal
            logger.debug("Price lookup for %s failed: %s", symbol, exc)
            return 0.0

    def cached(self, symbol: str, now: Optional[float] = None, ttl: Optional[float] = None) -> Optional[ResearchResult]:
        return self.cache.get_fresh(symbol, now, ttl)

    def is_actionable(self, result: Optional[ResearchResult]) -> bool:
        return (
            result is not None
            and result.verdict == "BUY"
            and result.confidence >= self.config.min_analyst_confidence
        )

    def _run_verdict(
        self,
        agent: str,
        symbol: str,
        system_prompt: str,
        user_prompt: str,
        now: float,
    ) -> Optional[ResearchResult]:
        try:
            completion = self._complete(
                system_prompt, user_prompt, RESEARCH_MAX_TOKENS, self.config.llm_model, RESEARCH_TEMPERATURE
            )
        except LLMError as exc:
            self._failed.add(symbol)
            self.activity.record(agent, "error", symbol=symbol, message=str(exc))
            return None
        result = parse_research_result(symbol, completion.text, now)
        if result is None:
            self._failed.add(symbol)
            self.activity.record(agent, "invalid_reply", symbol=symbol)
        return result

    # ------------------------------------------------------------------
    # Per-symbol research
    # ------------------------------------------------------------------
    def research(
        self,
        symbol: str,
        sentiment: float,
        sources: Sequence[str],
        now: Optional[float] = None,
    ) -> Optional[ResearchResult]:
        """Return a fresh verdict for ``symbol``, calling the LLM on a cache miss."""

        current = self._clock() if now is None else now
        cached = self.cache.get_fresh(symbol, current)
        if cached is not None:
            return cached
        if symbol in self._failed:
            return None

        def refresh() -> Optional[ResearchResult]:
            prompt = build_research_prompt(symbol, sentiment, sources, self._price(symbol))
            return self._run_verdict("SignalResearch", symbol, RESEARCH_SYSTEM_PROMPT, prompt, current)

        result = self.cache.get_or_refresh(symbol, refresh, now=current)
        if result is None:
            return None
        self.activity.record(
            "SignalResearch",
            "signal_researched",
            symbol=symbol,
            verdict=result.verdict,
            confidence=result.confidence,
            quality=result.entry_quality,
        )
        if result.verdict == "BUY" and self.notifier is not None:
            self.notifier.notify(
                "research",
                {
                    "symbol": symbol,
                    "verdict": result.verdict,
                    "confidence": result.confidence,
                    "quality": result.entry_quality,
                    "sentiment": sentiment,
                    "sources": list(sources),
                    "reasoning": result.reasoning,
                    "catalysts": result.catalysts,
                    "red_flags": result.red_flags,
                },
            )
        return result

    def research_crypto(
        self,
        symbol: str,
        momentum: float,
        sentiment: float,
        price: float = 0.0,
        now: Optional[float] = None,
    ) -> Optional[ResearchResult]:
        current = self._clock() if now is None else now
        if self.cache.get_fresh(symbol, current, CRYPTO_RESEARCH_TTL_SECONDS) is None and symbol in self._failed:
            return None

        def refresh() -> Optional[ResearchResult]:
            prompt = build_crypto_prompt(symbol, price or self._price(symbol), momentum, sentiment)
            return self._run_verdict("Crypto", symbol, CRYPTO_SYSTEM_PROMPT, prompt, current)

        result = self.cache.get_or_refresh(symbol, refresh, now=current, ttl=CRYPTO_RESEARCH_TTL_SECONDS)
        if result is not None:
            self.activity.record(
                "Crypto",
                "researched",
                symbol=symbol,
                verdict=result.verdict,
                confidence=result.confidence,
                quality=result.entry_quality,
            )
        return result

    def research_top_signals(
        self,
        signals: Sequence[Signal],
        held: Iterable[str],
        limit: int = 5,
        now: Optional[float] = None,
    ) -> List[ResearchResult]:
        """Research the best unheld candidates from this cycle's signals."""

        held_set = set(held)
        candidates = research_candidates(signals, held_set, self.config.min_sentiment_score, limit)
        if not candidates:
            self.activity.record(
                "SignalResearch",
                "no_candidates",
                total_signals=len(signals),
                min_sentiment=self.config.min_sentiment_score,
            )
            return []

        self.activity.record("SignalResearch", "researching_signals", count=len(candidates))
        results: List[ResearchResult] = []
        for candidate in candidates:
            self.limiter.wait()
            result = self.research(candidate.symbol, candidate.sentiment, candidate.sources, now)
            if result is not None:
                results.append(result)
        return results

    # ------------------------------------------------------------------
    # Position reviews
    # ------------------------------------------------------------------
    def review_position(
        self,
        position: Position,
        store: MutableMapping[str, PositionReview],
        now: Optional[float] = None,
    ) -> Optional[PositionReview]:
        current = self._clock() if now is None else now
        try:
            completion = self._complete(
                POSITION_SYSTEM_PROMPT,
                build_position_prompt(position),
                POSITION_MAX_TOKENS,
                self.config.llm_model,
                RESEARCH_TEMPERATURE,
            )
        except LLMError as exc:
            self.activity.record("PositionResearch", "error", symbol=position.symbol, message=str(exc))
            return None
        review = parse_position_review(position.symbol, completion.text, current)
        if review is None:
            return None
        store[position.symbol] = review
        self.activity.record(
            "PositionResearch",
            "position_analyzed",
            symbol=position.symbol,
            recommendation=review.recommendation,
            risk=review.risk_level,
        )
        return review

    # ------------------------------------------------------------------
    # Batch analyst
    # ------------------------------------------------------------------
    def build_analyst_prompt(
        self,
        signals: Sequence[Signal],
        positions: Sequence[Position],
        account: Account,
        now: float,
    ) -> Optional[str]:
        candidates = batch_candidates(signals, self.config.min_sentiment_score, BATCH_CANDIDATE_LIMIT)
        if not candidates:
            return None
        cfg = self.config
        held = {p.symbol for p in positions}
        if positions:
            position_lines = "\n".join(
                f"- {p.symbol}: {p.qty} shares, P&L: ${p.unrealized_pl:.2f} ({position_pl_pct(p):.1f}%)"
                for p in positions
            )
        else:
            position_lines = "None"
        candidate_lines = "\n".join(
            f"- {c.symbol}: avg sentiment {c.avg_sentiment * 100:.0f}%, sources: {', '.join(c.sources)}, "
            f"{'[CURRENTLY HELD]' if c.symbol in held else '[NOT HELD]'}"
            for c in candidates
        )
        raw_lines = "\n".join(f"- {s.symbol} ({s.source}): {s.reason}" for s in signals[:RAW_SIGNAL_PROMPT_LIMIT])
        stamp = datetime.fromtimestamp(now, tz=timezone.utc).isoformat()
        return (
            f"Current Time: {stamp}\n\n"
            "ACCOUNT STATUS:\n"
            f"- Equity: ${account.equity:.2f}\n"
            f"- Cash: ${account.cash:.2f}\n"
            f"- Current Positions: {len(positions)}/{cfg.max_positions}\n\n"
            f"CURRENT POSITIONS:\n{position_lines}\n\n"
            f"TOP SENTIMENT CANDIDATES:\n{candidate_lines}\n\n"
            f"RAW SIGNALS (top {RAW_SIGNAL_PROMPT_LIMIT}):\n{raw_lines}\n\n"
            "TRADING RULES:\n"
            f"- Max position size: ${cfg.max_position_value}\n"
            f"- Take profit target: {cfg.take_profit_pct}%\n"
            f"- Stop loss: {cfg.stop_loss_pct}%\n"
            f"- Min confidence to trade: {cfg.min_analyst_confidence}\n\n"
            "Analyze and provide BUY/SELL/HOLD recommendations:"
        )

    def analyze_batch(
        self,
        signals: Sequence[Signal],
        positions: Sequence[Position],
        account: Account,
        now: Optional[float] = None,
    ) -> BatchAnalysis:
        """Ask the analyst model for portfolio-wide recommendations.

        Any failure yields an empty analysis so callers never need to guard.
        """

        current = self._clock() if now is None else now
        if not signals:
            return BatchAnalysis(market_summary="No signals to analyze")
        prompt = self.build_analyst_prompt(signals, positions, account, current)
        if prompt is None:
            return BatchAnalysis(market_summary="No candidates above threshold")
        try:
            completion = self._complete(
                ANALYST_SYSTEM_PROMPT,
                prompt,
                ANALYST_MAX_TOKENS,
                self.config.llm_analyst_model,
                ANALYST_TEMPERATURE,
            )
        except LLMError as exc:
            self.activity.record("Analyst", "error", message=str(exc))
            return BatchAnalysis(market_summary=f"Analysis failed: {exc}")
        analysis = parse_batch_analysis(completion.text)
        if analysis is None:
            self.activity.record("Analyst", "invalid_reply")
            return BatchAnalysis(market_summary="Analysis failed: invalid reply")
        self.activity.record("Analyst", "analysis_complete", recommendations=len(analysis.recommendations))
        return analysis


__all__ = [
    "CRYPTO_RESEARCH_TTL_SECONDS",
    "RESEARCH_TTL_SECONDS",
    "ResearchGate",
    "build_crypto_prompt",
    "build_position_prompt",
    "build_research_prompt",
    "position_pl_pct",
]
