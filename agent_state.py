"""The single state aggregate owned by the control loop.

Everything the agent remembers between ticks lives on :class:`AgentState`:
signals, per-position bookkeeping, cached research, quotas, costs, the
premarket plan and the scheduling timestamps.  The aggregate is persisted
whole at the end of every tick.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Mapping, Optional

from config import AgentConfig, config_from_dict, load_agent_config
from models import (
    CostTracker,
    PositionEntry,
    PositionReview,
    PremarketPlan,
    ResearchResult,
    Signal,
    SocialSnapshot,
    StalenessResult,
    TwitterConfirmation,
    from_mapping,
    to_dict,
)
from signal_aggregator import social_volume

SOCIAL_HISTORY_POINTS = 48
SOCIAL_HISTORY_BUCKET_SECONDS = 3600


@dataclass
class AgentState:
    config: AgentConfig = field(default_factory=load_agent_config)
    enabled: bool = False
    signal_cache: List[Signal] = field(default_factory=list)
    position_entries: Dict[str, PositionEntry] = field(default_factory=dict)
    social_history: Dict[str, List[SocialSnapshot]] = field(default_factory=dict)
    logs: List[Dict[str, Any]] = field(default_factory=list)
    cost_tracker: CostTracker = field(default_factory=CostTracker)
    signal_research: Dict[str, ResearchResult] = field(default_factory=dict)
    position_research: Dict[str, PositionReview] = field(default_factory=dict)
    staleness_analysis: Dict[str, StalenessResult] = field(default_factory=dict)
    twitter_confirmations: Dict[str, TwitterConfirmation] = field(default_factory=dict)
    twitter_reads: Dict[str, float] = field(default_factory=dict)
    premarket_plan: Optional[PremarketPlan] = None
    last_data_gather_run: float = 0.0
    last_analyst_run: float = 0.0
    last_research_run: float = 0.0
    last_position_research_run: float = 0.0

    def record_social_snapshot(self, symbol: str, snapshot: SocialSnapshot) -> None:
        """Fold one gather observation into the symbol's hourly history.

        Observations inside the same hour replace the latest point, keeping the
        most recent time the symbol was mentioned at all.
        """

        if snapshot.volume > 0 and not snapshot.mentioned_at:
            snapshot = replace(snapshot, mentioned_at=snapshot.timestamp)
        history = self.social_history.setdefault(symbol, [])
        if history and _bucket(history[-1].timestamp) == _bucket(snapshot.timestamp):
            last = history[-1]
            history[-1] = replace(snapshot, mentioned_at=max(last.mentioned_at, snapshot.mentioned_at))
            return
        history.append(snapshot)
        if len(history) > SOCIAL_HISTORY_POINTS:
            del history[: len(history) - SOCIAL_HISTORY_POINTS]

    def current_social_volume(self, symbol: str) -> int:
        history = self.social_history.get(symbol)
        if history:
            return int(history[-1].volume)
        return social_volume(self.signal_cache, symbol)

    def last_mention_time(self, symbol: str) -> Optional[float]:
        mentions = [p.mentioned_at for p in self.social_history.get(symbol) or [] if p.mentioned_at > 0]
        return max(mentions) if mentions else None

    def forget_symbol(self, symbol: str) -> None:
        """Drop every per-symbol record kept for a held position."""

        self.position_entries.pop(symbol, None)
        self.social_history.pop(symbol, None)
        self.staleness_analysis.pop(symbol, None)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "config": self.config.to_dict(),
            "enabled": self.enabled,
            "signal_cache": [to_dict(s) for s in self.signal_cache],
            "position_entries": {k: to_dict(v) for k, v in self.position_entries.items()},
            "social_history": {k: [to_dict(p) for p in v] for k, v in self.social_history.items()},
            "logs": list(self.logs),
            "cost_tracker": to_dict(self.cost_tracker),
            "signal_research": {k: to_dict(v) for k, v in self.signal_research.items()},
            "position_research": {k: to_dict(v) for k, v in self.position_research.items()},
            "staleness_analysis": {k: to_dict(v) for k, v in self.staleness_analysis.items()},
            "twitter_confirmations": {k: to_dict(v) for k, v in self.twitter_confirmations.items()},
            "twitter_reads": dict(self.twitter_reads),
            "premarket_plan": to_dict(self.premarket_plan) if self.premarket_plan else None,
            "last_data_gather_run": self.last_data_gather_run,
            "last_analyst_run": self.last_analyst_run,
            "last_research_run": self.last_research_run,
            "last_position_research_run": self.last_position_research_run,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "AgentState":
        def table(key: str, model: type) -> Dict[str, Any]:
            return {k: from_mapping(model, v) for k, v in (data.get(key) or {}).items()}

        plan = data.get("premarket_plan")
        return cls(
            config=config_from_dict(data.get("config")),
            enabled=bool(data.get("enabled", False)),
            signal_cache=[from_mapping(Signal, s) for s in data.get("signal_cache") or []],
            position_entries=table("position_entries", PositionEntry),
            social_history={
                k: [from_mapping(SocialSnapshot, p) for p in v]
                for k, v in (data.get("social_history") or {}).items()
            },
            logs=list(data.get("logs") or []),
            cost_tracker=from_mapping(CostTracker, data.get("cost_tracker") or {}),
            signal_research=table("signal_research", ResearchResult),
            position_research=table("position_research", PositionReview),
            staleness_analysis=table("staleness_analysis", StalenessResult),
            twitter_confirmations=table("twitter_confirmations", TwitterConfirmation),
            twitter_reads=dict(data.get("twitter_reads") or {}),
            premarket_plan=PremarketPlan.from_dict(plan) if plan else None,
            last_data_gather_run=float(data.get("last_data_gather_run", 0.0)),
            last_analyst_run=float(data.get("last_analyst_run", 0.0)),
            last_research_run=float(data.get("last_research_run", 0.0)),
            last_position_research_run=float(data.get("last_position_research_run", 0.0)),
        )


def _bucket(timestamp: float) -> int:
    return int(timestamp // SOCIAL_HISTORY_BUCKET_SECONDS)


__all__ = ["AgentState", "SOCIAL_HISTORY_POINTS", "SOCIAL_HISTORY_BUCKET_SECONDS"]
