"""Structured logging helpers and the agent's in-state activity log.

* ``log_event`` emits JSON encoded log lines with a consistent schema so the
  caller's logger configuration can ship them to any sink.
* ``ActivityLog`` keeps the bounded list of agent actions that is persisted
  with the state snapshot and served through the control surface.
"""
from __future__ import annotations

import json
import logging
import threading
import time
from typing import Any, Dict, List, MutableMapping, Optional

_OBSERVABILITY_LOGGER = logging.getLogger("observability")

MAX_ACTIVITY_ENTRIES = 500


def log_event(logger: Optional[logging.Logger], event: str, **fields: Any) -> None:
    """Emit a structured JSON log entry.

    Parameters
    ----------
    logger:
        Logger instance to use.  When ``None`` the module level observability
        logger is used.
    event:
        Short event identifier.  Stored under the ``event`` key in the emitted
        payload.
    **fields:
        Additional key/value pairs to include in the log entry.
    """

    payload: MutableMapping[str, Any] = {"event": event, "ts": time.time()}
    payload.update(fields)
    target = logger or _OBSERVABILITY_LOGGER
    try:
        target.info(json.dumps(payload, sort_keys=True))
    except TypeError:
        serialisable = {k: _safe_json_value(v) for k, v in payload.items()}
        target.info(json.dumps(serialisable, sort_keys=True))


def _safe_json_value(value: Any) -> Any:
    try:
        json.dumps(value)
        return value
    except TypeError:
        return repr(value)


class ActivityLog:
    """Bounded list of ``{timestamp, agent, action, ...}`` records.

    The backing list is owned by the agent state so that recorded entries
    survive restarts through the persisted snapshot.  Sources record from
    worker threads during a gather, so every mutation holds the lock.
    """

    def __init__(
        self,
        entries: Optional[List[Dict[str, Any]]] = None,
        *,
        max_entries: int = MAX_ACTIVITY_ENTRIES,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.entries: List[Dict[str, Any]] = entries if entries is not None else []
        self.max_entries = max_entries
        self._logger = logger or _OBSERVABILITY_LOGGER
        self._lock = threading.Lock()

    def record(self, agent: str, action: str, **details: Any) -> Dict[str, Any]:
        entry: Dict[str, Any] = {
            "timestamp": time.time(),
            "agent": agent,
            "action": action,
        }
        entry.update(details)
        with self._lock:
            self.entries.append(entry)
            if len(self.entries) > self.max_entries:
                del self.entries[: len(self.entries) - self.max_entries]
        log_event(self._logger, f"{agent}.{action}", **details)
        return entry

    def tail(self, limit: int = 100) -> List[Dict[str, Any]]:
        with self._lock:
            if limit <= 0:
                return list(self.entries)
            return list(self.entries[-limit:])


__all__ = ["log_event", "ActivityLog", "MAX_ACTIVITY_ENTRIES"]
