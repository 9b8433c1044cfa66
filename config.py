"""Central configuration loader for environment variables and agent settings."""
from __future__ import annotations

from dataclasses import asdict, dataclass, field, fields
from typing import Any, Dict, List, Mapping

from dotenv import load_dotenv

# Load environment variables once when this module is imported.
load_dotenv()

import os

from log_utils import setup_logger

logger = setup_logger(__name__)


def _clean_path(value: str | None) -> str:
    """Return ``value`` without inline comments or surrounding whitespace."""

    if not value:
        return ""
    return value.split("#", 1)[0].strip()


# ---------------------------------------------------------------------------
# Environment helpers
# ---------------------------------------------------------------------------


def _truthy(x: str | None) -> bool:
    return str(x or "").strip().lower() in {"1", "true", "yes", "on"}


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    normalized = raw.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    return default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None:
        return float(default)
    try:
        return float(raw)
    except (TypeError, ValueError):
        return float(default)


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None:
        return int(default)
    try:
        return int(float(raw))
    except (TypeError, ValueError):
        return int(default)


def _env_list(name: str, default: List[str]) -> List[str]:
    raw = os.getenv(name)
    if not raw:
        return list(default)
    items = [item.strip() for item in raw.split(",")]
    return [item for item in items if item] or list(default)


# ---------------------------------------------------------------------------
# LLM model presets
# ---------------------------------------------------------------------------
#
# * ``DEFAULT_RESEARCH_MODEL`` - Llama 3.1 Instant is cheap enough to research
#   every candidate symbol every couple of minutes.
# * ``DEFAULT_ANALYST_MODEL`` - Llama 3.3 70B handles the batch analyst pass and
#   the premarket plan where the prompt carries the whole portfolio.
DEFAULT_RESEARCH_MODEL = "llama-3.1-8b-instant"
DEFAULT_ANALYST_MODEL = "llama-3.3-70b-versatile"


def get_research_model() -> str:
    return os.getenv("RESEARCH_LLM_MODEL", DEFAULT_RESEARCH_MODEL).strip() or DEFAULT_RESEARCH_MODEL


def get_analyst_model() -> str:
    return os.getenv("ANALYST_LLM_MODEL", DEFAULT_ANALYST_MODEL).strip() or DEFAULT_ANALYST_MODEL


# ---------------------------------------------------------------------------
# Collaborator credentials and storage locations
# ---------------------------------------------------------------------------

DEFAULT_STATE_FILE = os.path.join("data", "agent_state.json")


def get_state_file() -> str:
    return _clean_path(os.getenv("AGENT_STATE_FILE")) or DEFAULT_STATE_FILE


def alpaca_credentials() -> tuple[str, str, bool]:
    """Return ``(key_id, secret, paper)`` for the brokerage account."""

    return (
        os.getenv("ALPACA_API_KEY", "").strip(),
        os.getenv("ALPACA_API_SECRET", "").strip(),
        _env_bool("ALPACA_PAPER", True),
    )


def get_twitter_bearer_token() -> str | None:
    token = os.getenv("TWITTER_BEARER_TOKEN", "").strip()
    return token or None


def get_discord_webhook_url() -> str | None:
    url = os.getenv("DISCORD_WEBHOOK_URL", "").strip()
    return url or None


# ---------------------------------------------------------------------------
# Agent settings
# ---------------------------------------------------------------------------

DEFAULT_CRYPTO_SYMBOLS = ["BTC/USD", "ETH/USD", "SOL/USD"]


@dataclass
class AgentConfig:
    """Tunable thresholds for the trading loop.

    Every field can be overridden through an ``AGENT_<FIELD>`` environment
    variable at load time and through :func:`update_config` at runtime.
    """

    data_poll_interval_ms: int = 30_000
    analyst_interval_ms: int = 120_000
    max_position_value: float = 5000.0
    max_positions: int = 5
    min_sentiment_score: float = 0.3
    min_analyst_confidence: float = 0.6
    take_profit_pct: float = 10.0
    stop_loss_pct: float = 5.0
    position_size_pct_of_cash: float = 25.0

    stale_position_enabled: bool = True
    stale_min_hold_hours: float = 24.0
    stale_max_hold_days: float = 3.0
    stale_min_gain_pct: float = 5.0
    stale_mid_hold_days: float = 2.0
    stale_mid_min_gain_pct: float = 3.0
    stale_social_volume_decay: float = 0.3
    stale_no_mentions_hours: float = 24.0

    llm_model: str = field(default_factory=get_research_model)
    llm_analyst_model: str = field(default_factory=get_analyst_model)
    llm_cost_alert_usd: float = 5.0

    options_enabled: bool = False
    options_min_confidence: float = 0.8
    options_max_pct_per_trade: float = 0.02
    options_max_total_exposure: float = 0.10
    options_min_dte: int = 30
    options_max_dte: int = 60
    options_target_delta: float = 0.45
    options_min_delta: float = 0.30
    options_max_delta: float = 0.70
    options_stop_loss_pct: float = 50.0
    options_take_profit_pct: float = 100.0
    options_max_positions: int = 3

    crypto_enabled: bool = False
    crypto_symbols: List[str] = field(default_factory=lambda: list(DEFAULT_CRYPTO_SYMBOLS))
    crypto_momentum_threshold: float = 2.0
    crypto_max_position_value: float = 1000.0
    crypto_take_profit_pct: float = 10.0
    crypto_stop_loss_pct: float = 5.0

    twitter_confirmation_enabled: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _coerce(value: Any, template: Any) -> Any:
    """Coerce ``value`` to the type of ``template`` (the field default)."""

    if isinstance(template, bool):
        if isinstance(value, str):
            return _truthy(value)
        return bool(value)
    if isinstance(template, int):
        return int(float(value))
    if isinstance(template, float):
        return float(value)
    if isinstance(template, list):
        if isinstance(value, str):
            return [item.strip() for item in value.split(",") if item.strip()]
        return [str(item) for item in value]
    return str(value)


def load_agent_config() -> AgentConfig:
    """Build the agent configuration from defaults and ``AGENT_*`` overrides."""

    cfg = AgentConfig()
    for f in fields(AgentConfig):
        env_name = f"AGENT_{f.name.upper()}"
        current = getattr(cfg, f.name)
        if isinstance(current, bool):
            setattr(cfg, f.name, _env_bool(env_name, current))
        elif isinstance(current, int):
            setattr(cfg, f.name, _env_int(env_name, current))
        elif isinstance(current, float):
            setattr(cfg, f.name, _env_float(env_name, current))
        elif isinstance(current, list):
            setattr(cfg, f.name, _env_list(env_name, current))
        elif os.getenv(env_name):
            setattr(cfg, f.name, os.getenv(env_name, "").strip())
    return cfg


def config_from_dict(data: Mapping[str, Any] | None) -> AgentConfig:
    """Rebuild a config from a persisted mapping, ignoring unknown keys."""

    cfg = load_agent_config()
    if data:
        update_config(cfg, data)
    return cfg


def update_config(cfg: AgentConfig, updates: Mapping[str, Any]) -> AgentConfig:
    """Apply ``updates`` in place and return ``cfg``.

    Unknown keys and values that cannot be coerced are skipped with a
    warning so a bad partial update never corrupts the running config.
    """

    known = {f.name for f in fields(AgentConfig)}
    for key, value in updates.items():
        if key not in known:
            logger.warning("Ignoring unknown config key %s", key)
            continue
        try:
            setattr(cfg, key, _coerce(value, getattr(cfg, key)))
        except (TypeError, ValueError):
            logger.warning("Ignoring invalid value for %s: %r", key, value)
    return cfg


__all__ = [
    "AgentConfig",
    "DEFAULT_ANALYST_MODEL",
    "DEFAULT_RESEARCH_MODEL",
    "DEFAULT_STATE_FILE",
    "alpaca_credentials",
    "config_from_dict",
    "get_analyst_model",
    "get_discord_webhook_url",
    "get_research_model",
    "get_state_file",
    "get_twitter_bearer_token",
    "load_agent_config",
    "update_config",
]
