"""Dataclasses shared across the signal, research and lifecycle modules."""
from __future__ import annotations

from dataclasses import asdict, dataclass, field, fields
from typing import Any, Dict, List, Mapping, Optional, Type, TypeVar

T = TypeVar("T")

VERDICTS = ("BUY", "SKIP", "WAIT")
ENTRY_QUALITIES = ("excellent", "good", "fair", "poor")


def from_mapping(cls: Type[T], data: Mapping[str, Any]) -> T:
    """Instantiate dataclass ``cls`` from ``data`` ignoring unknown keys."""

    known = {f.name for f in fields(cls)}
    return cls(**{k: v for k, v in data.items() if k in known})


def to_dict(obj: Any) -> Dict[str, Any]:
    return asdict(obj)


@dataclass
class Signal:
    """One source's sentiment reading for one symbol in a gather cycle."""

    symbol: str
    source: str
    source_detail: str
    sentiment: float
    raw_sentiment: float
    volume: int
    freshness: float
    source_weight: float
    reason: str
    timestamp: float = 0.0
    bullish: int = 0
    bearish: int = 0
    upvotes: int = 0
    comments: int = 0
    quality_score: float = 0.0
    subreddits: List[str] = field(default_factory=list)
    best_flair: Optional[str] = None
    is_crypto: bool = False
    momentum: float = 0.0
    price: float = 0.0


@dataclass
class PositionEntry:
    symbol: str
    entry_time: float
    entry_price: float
    entry_sentiment: float
    entry_social_volume: int
    entry_sources: List[str]
    entry_reason: str
    peak_price: float
    peak_sentiment: float


@dataclass
class SocialSnapshot:
    timestamp: float
    volume: int
    sentiment: float
    mentioned_at: float = 0.0


@dataclass
class ResearchResult:
    symbol: str
    verdict: str
    confidence: float
    entry_quality: str
    reasoning: str
    red_flags: List[str] = field(default_factory=list)
    catalysts: List[str] = field(default_factory=list)
    timestamp: float = 0.0


@dataclass
class PositionReview:
    """Informational HOLD/SELL/ADD review of a held position."""

    symbol: str
    recommendation: str
    risk_level: str
    reasoning: str
    key_factors: List[str] = field(default_factory=list)
    timestamp: float = 0.0


@dataclass
class TwitterConfirmation:
    symbol: str
    tweet_count: int
    sentiment: float
    confirms_existing: bool
    highlights: List[Dict[str, Any]] = field(default_factory=list)
    timestamp: float = 0.0


@dataclass
class Recommendation:
    action: str
    symbol: str
    confidence: float
    reasoning: str = ""
    suggested_size_pct: Optional[float] = None


@dataclass
class BatchAnalysis:
    recommendations: List[Recommendation] = field(default_factory=list)
    market_summary: str = ""
    high_conviction: List[str] = field(default_factory=list)


@dataclass
class PremarketPlan:
    timestamp: float
    recommendations: List[Recommendation] = field(default_factory=list)
    market_summary: str = ""
    high_conviction: List[str] = field(default_factory=list)
    researched_buys: List[ResearchResult] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "PremarketPlan":
        return cls(
            timestamp=float(data.get("timestamp", 0.0)),
            recommendations=[from_mapping(Recommendation, r) for r in data.get("recommendations", [])],
            market_summary=str(data.get("market_summary", "")),
            high_conviction=list(data.get("high_conviction", [])),
            researched_buys=[from_mapping(ResearchResult, r) for r in data.get("researched_buys", [])],
        )


@dataclass
class StalenessResult:
    is_stale: bool
    reason: str
    staleness_score: float


@dataclass
class CostTracker:
    total_usd: float = 0.0
    calls: int = 0
    tokens_in: int = 0
    tokens_out: int = 0


# ---------------------------------------------------------------------------
# Brokerage payloads
# ---------------------------------------------------------------------------


@dataclass
class Account:
    cash: float
    equity: float
    buying_power: float = 0.0


@dataclass
class Position:
    symbol: str
    qty: float
    market_value: float
    unrealized_pl: float
    current_price: float
    avg_entry_price: float = 0.0
    asset_class: str = "us_equity"


@dataclass
class Clock:
    is_open: bool
    timestamp: str = ""


@dataclass
class Order:
    id: str
    symbol: str
    status: str
    side: str = "buy"
    filled_avg_price: Optional[float] = None


@dataclass
class CryptoSnapshot:
    symbol: str
    price: float
    prev_close: float
    volume: float = 0.0


@dataclass
class OptionContract:
    symbol: str
    underlying: str
    option_type: str
    strike: float
    expiration: str


@dataclass
class OptionSnapshot:
    bid: float
    ask: float
    delta: Optional[float] = None


@dataclass
class OptionSelection:
    contract: OptionContract
    dte: int
    delta: float
    mid_price: float
    max_contracts: int
