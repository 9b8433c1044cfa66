"""Discord webhook alerts for high-sentiment signals and research verdicts.

Notifications are fire-and-forget: delivery failures are logged and never
propagate to the trading loop.  Each symbol is announced at most once per
cooldown window.
"""

import time
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Mapping, Optional, Tuple

import requests
from requests import exceptions as requests_exceptions

from config import get_discord_webhook_url
from log_utils import setup_logger

__all__ = ["DiscordNotifier", "build_embed", "NOTIFY_COOLDOWN_SECONDS"]

logger = setup_logger(__name__)

NOTIFY_COOLDOWN_SECONDS = 30 * 60
FOOTER_TEXT = "Social Signal Agent - Not financial advice - DYOR"

_COLOR_BUY = 0x22C55E
_COLOR_SKIP = 0x6B7280
_COLOR_WAIT = 0xFBBF24
_REASONING_LIMIT = 300


def _format_percent(value: Any) -> str:
    try:
        return f"{float(value or 0) * 100:.0f}%"
    except (TypeError, ValueError):
        return "N/A"


def _truncate(text: str, limit: int) -> str:
    if len(text) <= limit:
        return text
    return text[:limit] + "..."


def build_embed(kind: str, payload: Mapping[str, Any]) -> Dict[str, Any]:
    """Return the Discord embed for a ``signal`` or ``research`` event."""

    symbol = payload.get("symbol", "?")
    timestamp = datetime.now(timezone.utc).isoformat()
    if kind == "signal":
        return {
            "title": f"SIGNAL: ${symbol}",
            "color": _COLOR_WAIT,
            "description": "High sentiment detected, researching...",
            "fields": [
                {"name": "Sentiment", "value": f"{_format_percent(payload.get('sentiment'))} bullish", "inline": True},
                {"name": "Sources", "value": ", ".join(payload.get("sources") or []) or "StockTwits", "inline": True},
            ],
            "timestamp": timestamp,
            "footer": {"text": FOOTER_TEXT},
        }

    verdict = str(payload.get("verdict") or "")
    color = {"BUY": _COLOR_BUY, "SKIP": _COLOR_SKIP}.get(verdict, _COLOR_WAIT)
    embed: Dict[str, Any] = {
        "title": f"${symbol} -> {verdict}",
        "color": color,
        "fields": [
            {"name": "Confidence", "value": _format_percent(payload.get("confidence")), "inline": True},
            {"name": "Quality", "value": payload.get("quality") or "N/A", "inline": True},
            {"name": "Sentiment", "value": _format_percent(payload.get("sentiment")), "inline": True},
        ],
        "timestamp": timestamp,
        "footer": {"text": FOOTER_TEXT},
    }
    reasoning = payload.get("reasoning")
    if reasoning:
        embed["description"] = _truncate(str(reasoning), _REASONING_LIMIT)
    catalysts = payload.get("catalysts") or []
    if catalysts:
        embed["fields"].append({"name": "Catalysts", "value": ", ".join(catalysts[:3]), "inline": False})
    red_flags = payload.get("red_flags") or []
    if red_flags:
        embed["fields"].append({"name": "Red Flags", "value": ", ".join(red_flags[:3]), "inline": False})
    return embed


class DiscordNotifier:
    """Post embeds to a Discord webhook with a cooldown per alert kind and symbol."""

    def __init__(
        self,
        webhook_url: Optional[str] = None,
        *,
        cooldown_seconds: float = NOTIFY_COOLDOWN_SECONDS,
        session: Any = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.webhook_url = webhook_url if webhook_url is not None else get_discord_webhook_url()
        self.cooldown_seconds = cooldown_seconds
        self._http = session or requests
        self._clock = clock
        self._last_sent: Dict[Tuple[str, str], float] = {}

    def in_cooldown(self, kind: str, symbol: str) -> bool:
        last = self._last_sent.get((kind, symbol))
        return last is not None and self._clock() - last < self.cooldown_seconds

    def notify(self, kind: str, payload: Mapping[str, Any]) -> bool:
        """Send one alert; returns ``True`` only when the webhook accepted it."""

        if not self.webhook_url:
            return False
        symbol = str(payload.get("symbol") or "")
        if self.in_cooldown(kind, symbol):
            logger.debug("%s notification for %s suppressed by cooldown", kind, symbol)
            return False
        try:
            response = self._http.post(
                self.webhook_url,
                json={"embeds": [build_embed(kind, payload)]},
                timeout=10,
            )
            response.raise_for_status()
        except requests_exceptions.RequestException as exc:
            logger.warning("Discord notification for %s failed: %s", symbol, exc)
            return False
        self._last_sent[(kind, symbol)] = self._clock()
        logger.info("Discord %s notification sent for %s", kind, symbol)
        return True
