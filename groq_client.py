"""Shared helpers for constructing the Groq SDK client.

All completion calls reuse one cached :class:`groq.Groq` instance so the
API key lookup and client construction happen in one place.
"""

from __future__ import annotations

import os
from functools import lru_cache
from typing import Optional

from groq import Groq

from log_utils import setup_logger

logger = setup_logger(__name__)


def get_groq_api_key() -> str | None:
    """Return the Groq API key from the environment, or None if not set."""

    key = os.getenv("GROQ_API_KEY", "").strip()
    return key or None


@lru_cache(maxsize=1)
def _build_client(api_key: Optional[str]) -> Optional[Groq]:
    """Return a cached Groq client or ``None`` when no API key is provided."""

    if not api_key:
        logger.warning("Groq disabled: no GROQ_API_KEY in environment")
        return None
    logger.debug("Initialising shared Groq client")
    return Groq(api_key=api_key)


def get_groq_client() -> Optional[Groq]:
    """Return the shared Groq SDK client if the API key is configured."""

    return _build_client(get_groq_api_key())


def reset_groq_client_cache() -> None:
    """Clear the cached client (primarily for use in tests)."""

    _build_client.cache_clear()


__all__ = ["get_groq_api_key", "get_groq_client", "reset_groq_client_cache"]
