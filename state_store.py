"""Whole-snapshot JSON persistence for :class:`agent_state.AgentState`."""

from __future__ import annotations

import json
import os
from typing import Optional

from agent_state import AgentState
from config import get_state_file
from log_utils import setup_logger

logger = setup_logger(__name__)


class JsonStateStore:
    """Save and load the agent state as one JSON document.

    Writes go to a temporary sibling file that is then swapped into place, so
    a crash mid-write leaves the previous snapshot intact.
    """

    def __init__(self, path: Optional[str] = None) -> None:
        self.path = path or get_state_file()

    def save(self, state: AgentState) -> None:
        directory = os.path.dirname(self.path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        tmp_path = f"{self.path}.tmp"
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump(state.to_dict(), f, indent=2)
        os.replace(tmp_path, self.path)

    def load(self) -> AgentState:
        """Return the stored state, or a fresh one when nothing usable exists."""

        if not os.path.exists(self.path):
            return AgentState()
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                content = f.read().strip()
            if not content:
                logger.warning("State file %s is empty; starting fresh", self.path)
                return AgentState()
            return AgentState.from_dict(json.loads(content))
        except json.JSONDecodeError as exc:
            logger.error("State file %s contains invalid JSON: %s", self.path, exc)
        except OSError as exc:
            logger.error("Failed to read state file %s: %s", self.path, exc)
        return AgentState()


__all__ = ["JsonStateStore"]
