"""Schema-validating deserializers for every research reply.

Each ``parse_*`` function returns a typed result or ``None``; malformed JSON
and missing or mistyped required fields are logged and never raised to the
caller.
"""

from __future__ import annotations

import time
from typing import Any, Iterable, List, Mapping, Optional

from json_utils import extract_json_object
from log_utils import setup_logger
from models import (
    ENTRY_QUALITIES,
    VERDICTS,
    BatchAnalysis,
    PositionReview,
    Recommendation,
    ResearchResult,
)

logger = setup_logger(__name__)

POSITION_RECOMMENDATIONS = ("HOLD", "SELL", "ADD")
RISK_LEVELS = ("low", "medium", "high")
BATCH_ACTIONS = ("BUY", "SELL", "HOLD")


class SchemaError(ValueError):
    """Raised internally when a payload does not match the expected shape."""


def _load(raw_text: str, kind: str) -> dict[str, Any]:
    payload = extract_json_object(raw_text, logger=logger)
    if payload is None:
        raise SchemaError(f"{kind}: reply is not a JSON object")
    return payload


def _require_choice(payload: Mapping[str, Any], key: str, choices: Iterable[str], *, upper: bool) -> str:
    value = payload.get(key)
    if not isinstance(value, str):
        raise SchemaError(f"missing {key}")
    normalised = value.strip().upper() if upper else value.strip().lower()
    if normalised not in choices:
        raise SchemaError(f"invalid {key}: {value!r}")
    return normalised


def _require_confidence(payload: Mapping[str, Any], key: str = "confidence") -> float:
    value = payload.get(key)
    if isinstance(value, bool) or value is None:
        raise SchemaError(f"missing {key}")
    try:
        number = float(value)
    except (TypeError, ValueError) as exc:
        raise SchemaError(f"invalid {key}: {value!r}") from exc
    return max(0.0, min(1.0, number))


def _require_text(payload: Mapping[str, Any], key: str) -> str:
    value = payload.get(key)
    if not isinstance(value, str):
        raise SchemaError(f"missing {key}")
    return value.strip()


def _string_list(value: Any) -> List[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value] if value.strip() else []
    if isinstance(value, list):
        return [str(item) for item in value if item is not None]
    raise SchemaError(f"expected list, got {type(value).__name__}")


def parse_research_result(symbol: str, raw_text: str, now: Optional[float] = None) -> Optional[ResearchResult]:
    """Decode a BUY/SKIP/WAIT verdict for ``symbol``."""

    try:
        payload = _load(raw_text, "research")
        return ResearchResult(
            symbol=symbol,
            verdict=_require_choice(payload, "verdict", VERDICTS, upper=True),
            confidence=_require_confidence(payload),
            entry_quality=_require_choice(payload, "entry_quality", ENTRY_QUALITIES, upper=False),
            reasoning=_require_text(payload, "reasoning"),
            red_flags=_string_list(payload.get("red_flags")),
            catalysts=_string_list(payload.get("catalysts")),
            timestamp=time.time() if now is None else now,
        )
    except SchemaError as exc:
        logger.warning("Discarding research reply for %s: %s", symbol, exc)
        return None


def parse_position_review(symbol: str, raw_text: str, now: Optional[float] = None) -> Optional[PositionReview]:
    try:
        payload = _load(raw_text, "position review")
        return PositionReview(
            symbol=symbol,
            recommendation=_require_choice(payload, "recommendation", POSITION_RECOMMENDATIONS, upper=True),
            risk_level=_require_choice(payload, "risk_level", RISK_LEVELS, upper=False),
            reasoning=_require_text(payload, "reasoning"),
            key_factors=_string_list(payload.get("key_factors")),
            timestamp=time.time() if now is None else now,
        )
    except SchemaError as exc:
        logger.warning("Discarding position review for %s: %s", symbol, exc)
        return None


def _parse_recommendation(item: Any) -> Recommendation:
    if not isinstance(item, Mapping):
        raise SchemaError("recommendation is not an object")
    symbol = item.get("symbol")
    if not isinstance(symbol, str) or not symbol.strip():
        raise SchemaError("recommendation missing symbol")
    size = item.get("suggested_size_pct")
    try:
        size_pct = float(size) if size is not None else None
    except (TypeError, ValueError):
        size_pct = None
    return Recommendation(
        action=_require_choice(item, "action", BATCH_ACTIONS, upper=True),
        symbol=symbol.strip().upper(),
        confidence=_require_confidence(item),
        reasoning=str(item.get("reasoning") or ""),
        suggested_size_pct=size_pct,
    )


def parse_batch_analysis(raw_text: str) -> Optional[BatchAnalysis]:
    """Decode the analyst reply; individual malformed recommendations are skipped."""

    try:
        payload = _load(raw_text, "batch analysis")
        raw_recs = payload.get("recommendations") or []
        if not isinstance(raw_recs, list):
            raise SchemaError("recommendations is not a list")
        recommendations: List[Recommendation] = []
        for item in raw_recs:
            try:
                recommendations.append(_parse_recommendation(item))
            except SchemaError as exc:
                logger.debug("Skipping analyst recommendation: %s", exc)
        return BatchAnalysis(
            recommendations=recommendations,
            market_summary=str(payload.get("market_summary") or ""),
            high_conviction=[s.upper() for s in _string_list(payload.get("high_conviction_plays"))],
        )
    except SchemaError as exc:
        logger.warning("Discarding batch analysis: %s", exc)
        return None


__all__ = [
    "SchemaError",
    "parse_batch_analysis",
    "parse_position_review",
    "parse_research_result",
]
