"""Completion collaborator: system/user prompt in, text and token usage out.

Calls go through the Groq SDK.  When the requested model has been retired
the overflow model is tried once; every other API failure surfaces as
:class:`LLMError` so research call sites can treat it as "no verdict".
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any, Mapping, Optional

from groq import (
    APIConnectionError,
    APIError,
    APIStatusError,
    APITimeoutError,
    RateLimitError,
)

from groq_client import get_groq_client
from log_utils import setup_logger

logger = setup_logger(__name__)

OVERFLOW_MODEL = "llama-3.3-70b-versatile"

_DECOMMISSIONED_HINTS = (
    "model_decommissioned",
    "has been decommissioned",
    "is no longer supported",
    "has been deprecated",
    "model has been retired",
    "does not exist",
    "model_not_found",
)


class LLMError(RuntimeError):
    """Raised when a completion could not be obtained."""


class LLMAuthError(LLMError):
    """Raised when no API key is configured."""


@dataclass
class LLMCompletion:
    text: str
    tokens_in: int
    tokens_out: int
    model: str


def _extract_error_parts(error: Any) -> tuple[str, str | None]:
    """Extract a human readable message and error code from ``error``."""

    body = getattr(error, "body", error)
    if isinstance(body, Mapping):
        inner = body.get("error")
        if isinstance(inner, Mapping):
            code = inner.get("code")
            return str(inner.get("message") or ""), str(code) if code is not None else None
        code = body.get("code")
        return str(body.get("message") or ""), str(code) if code is not None else None
    return str(error or ""), None


def describe_error(error: Any) -> str:
    """Return a compact description of ``error`` suitable for logging."""

    message, code = _extract_error_parts(error)
    status = getattr(error, "status_code", None)
    parts = [str(part) for part in (status, code) if part]
    prefix = "/".join(parts)
    if prefix and message:
        return f"{prefix}: {message}"
    return prefix or message


def is_model_decommissioned_error(error: Any) -> bool:
    message, code = _extract_error_parts(error)
    if code in {"model_decommissioned", "model_not_found"}:
        return True
    lowered = message.lower()
    return any(hint in lowered for hint in _DECOMMISSIONED_HINTS)


def _usage(response: Any) -> tuple[int, int]:
    usage = getattr(response, "usage", None)
    if usage is None:
        return 0, 0
    return int(getattr(usage, "prompt_tokens", 0) or 0), int(getattr(usage, "completion_tokens", 0) or 0)


def _extract_choice_content(response: Any) -> str:
    try:
        content = getattr(response.choices[0].message, "content", "")
    except (AttributeError, IndexError):
        return ""
    return str(content or "").strip()


class GroqCompleter:
    """``complete(system, user, max_tokens)`` backed by the Groq SDK."""

    def __init__(self, client: Any = None, *, overflow_model: Optional[str] = OVERFLOW_MODEL) -> None:
        self._client = client
        self.overflow_model = overflow_model

    @property
    def client(self) -> Any:
        if self._client is None:
            self._client = get_groq_client()
        return self._client

    def available(self) -> bool:
        return self.client is not None

    def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        max_tokens: int,
        *,
        model: str,
        temperature: float = 0.3,
    ) -> LLMCompletion:
        client = self.client
        if client is None:
            raise LLMAuthError("Groq client unavailable")

        messages = [
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": user_prompt},
        ]
        models_to_try = [model]
        if self.overflow_model and self.overflow_model != model:
            models_to_try.append(self.overflow_model)

        last_error: Optional[Exception] = None
        for model_name in models_to_try:
            start = time.perf_counter()
            try:
                response = client.chat.completions.create(
                    model=model_name,
                    messages=messages,
                    max_tokens=max_tokens,
                    temperature=temperature,
                )
            except RateLimitError as err:
                logger.warning("Groq rate limit for %s: %s", model_name, describe_error(err))
                raise LLMError(f"rate limited: {describe_error(err)}") from err
            except (APIStatusError, APIConnectionError, APITimeoutError, APIError) as err:
                last_error = err
                if model_name != models_to_try[-1] and is_model_decommissioned_error(err):
                    logger.warning(
                        "Groq model %s unavailable (%s). Retrying with fallback model %s.",
                        model_name,
                        describe_error(err),
                        models_to_try[-1],
                    )
                    continue
                logger.error("Groq request failed for %s: %s", model_name, describe_error(err))
                raise LLMError(describe_error(err)) from err

            tokens_in, tokens_out = _usage(response)
            logger.info(
                "LLM call succeeded in %.2fs (model=%s, tokens=%d/%d)",
                time.perf_counter() - start,
                model_name,
                tokens_in,
                tokens_out,
            )
            return LLMCompletion(
                text=_extract_choice_content(response),
                tokens_in=tokens_in,
                tokens_out=tokens_out,
                model=model_name,
            )

        raise LLMError(describe_error(last_error))


__all__ = [
    "GroqCompleter",
    "LLMAuthError",
    "LLMCompletion",
    "LLMError",
    "describe_error",
    "is_model_decommissioned_error",
]
