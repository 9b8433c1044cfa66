"""Group the signal cache by symbol and rank candidates.

Research eligibility gates on *raw* sentiment so already-weighted scores
are not penalised twice; ranking uses the quality-weighted sentiment.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, List, Sequence

import pandas as pd

from models import Signal

SIGNAL_COLUMNS = ["symbol", "source", "sentiment", "raw_sentiment", "volume", "is_crypto"]


@dataclass
class Candidate:
    symbol: str
    sentiment: float
    raw_sentiment: float
    sources: List[str] = field(default_factory=list)
    volume: int = 0


@dataclass
class BatchCandidate:
    symbol: str
    avg_sentiment: float
    sources: List[str] = field(default_factory=list)
    count: int = 0


def signals_frame(signals: Sequence[Signal]) -> pd.DataFrame:
    """Return a DataFrame with one row per signal, keeping cache order."""

    if not signals:
        return pd.DataFrame(columns=SIGNAL_COLUMNS)
    rows = [{column: getattr(sig, column) for column in SIGNAL_COLUMNS} for sig in signals]
    return pd.DataFrame(rows, columns=SIGNAL_COLUMNS)


def _ordered_unique(values: Iterable[str]) -> List[str]:
    return list(dict.fromkeys(values))


def research_candidates(
    signals: Sequence[Signal],
    held: Iterable[str],
    min_sentiment: float,
    limit: int = 5,
) -> List[Candidate]:
    """Symbols worth a research call, best weighted sentiment first.

    Held symbols and crypto pairs are excluded; a symbol qualifies when any
    of its signals has ``raw_sentiment >= min_sentiment``.  The candidate
    carries the sentiment of its strongest qualifying signal and every
    qualifying source.
    """

    frame = signals_frame(signals)
    if frame.empty:
        return []
    held_set = set(held)
    eligible = frame[
        (~frame["symbol"].isin(held_set))
        & (~frame["is_crypto"].astype(bool))
        & (frame["raw_sentiment"] >= min_sentiment)
    ]
    if eligible.empty:
        return []
    eligible = eligible.sort_values("sentiment", ascending=False, kind="mergesort")

    candidates: List[Candidate] = []
    for symbol, group in eligible.groupby("symbol", sort=False):
        top = group.iloc[0]
        candidates.append(
            Candidate(
                symbol=str(symbol),
                sentiment=float(top["sentiment"]),
                raw_sentiment=float(top["raw_sentiment"]),
                sources=_ordered_unique(group["source"]),
                volume=int(group["volume"].sum()),
            )
        )
        if len(candidates) >= limit:
            break
    return candidates


def batch_candidates(
    signals: Sequence[Signal], min_sentiment: float, limit: int = 10
) -> List[BatchCandidate]:
    """Average sentiment per symbol for the batch analyst prompt.

    Symbols averaging below half the research threshold are dropped.
    """

    frame = signals_frame(signals)
    if frame.empty:
        return []
    grouped = frame.groupby("symbol", sort=False).agg(
        avg_sentiment=("sentiment", "mean"),
        count=("sentiment", "size"),
        sources=("source", list),
    )
    grouped = grouped[grouped["avg_sentiment"] >= min_sentiment * 0.5]
    grouped = grouped.sort_values("avg_sentiment", ascending=False, kind="mergesort").head(limit)
    return [
        BatchCandidate(
            symbol=str(symbol),
            avg_sentiment=float(row["avg_sentiment"]),
            sources=_ordered_unique(row["sources"]),
            count=int(row["count"]),
        )
        for symbol, row in grouped.iterrows()
    ]


def social_volume(signals: Sequence[Signal], symbol: str) -> int:
    """Total mention volume for ``symbol`` across the current signal cache."""

    return sum(int(sig.volume) for sig in signals if sig.symbol == symbol)


def symbol_sentiment(signals: Sequence[Signal], symbol: str) -> float:
    matches = [sig.sentiment for sig in signals if sig.symbol == symbol]
    if not matches:
        return 0.0
    return sum(matches) / len(matches)


def find_signal(signals: Sequence[Signal], symbol: str) -> Signal | None:
    for sig in signals:
        if sig.symbol == symbol:
            return sig
    return None


__all__ = [
    "BatchCandidate",
    "Candidate",
    "batch_candidates",
    "find_signal",
    "research_candidates",
    "signals_frame",
    "social_volume",
    "symbol_sentiment",
]
