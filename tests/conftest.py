from __future__ import annotations

import json
from typing import Any, Dict, List, Optional

import pytest

from agent_state import AgentState
from broker import BrokerError
from config import AgentConfig
from llm_client import LLMCompletion, LLMError
from models import Account, Clock, Order, Position, Signal


class FakeBroker:
    """In-memory stand-in for :class:`broker.AlpacaBroker`."""

    def __init__(
        self,
        *,
        account: Optional[Account] = None,
        positions: Optional[List[Position]] = None,
        is_open: bool = True,
        fail_orders: bool = False,
        fail_close: bool = False,
    ) -> None:
        self.account = account or Account(cash=10_000.0, equity=20_000.0, buying_power=10_000.0)
        self.positions = list(positions or [])
        self.is_open = is_open
        self.fail_orders = fail_orders
        self.fail_close = fail_close
        self.orders: List[Dict[str, Any]] = []
        self.closed: List[str] = []
        self.prices: Dict[str, float] = {}
        self.expirations: List[str] = []
        self.chains: Dict[str, list] = {}
        self.option_snapshots: Dict[str, Any] = {}
        self.crypto_snapshots: Dict[str, Any] = {}

    def get_account(self) -> Account:
        return self.account

    def get_positions(self) -> List[Position]:
        return list(self.positions)

    def get_clock(self) -> Clock:
        return Clock(is_open=self.is_open)

    def create_order(self, symbol: str, **kwargs: Any) -> Order:
        if self.fail_orders:
            raise BrokerError("order rejected")
        self.orders.append(dict(kwargs, symbol=symbol))
        return Order(id=f"order-{len(self.orders)}", symbol=symbol, status="accepted", filled_avg_price=None)

    def close_position(self, symbol: str) -> Order:
        if self.fail_close:
            raise BrokerError("close rejected")
        self.closed.append(symbol)
        self.positions = [p for p in self.positions if p.symbol != symbol]
        return Order(id="close", symbol=symbol, status="accepted", side="sell")

    def get_price(self, symbol: str) -> float:
        return self.prices.get(symbol, 100.0)

    def get_crypto_snapshot(self, symbol: str):
        return self.crypto_snapshots.get(symbol)

    def get_option_expirations(self, underlying: str, start: str, end: str) -> List[str]:
        return list(self.expirations)

    def get_option_chain(self, underlying: str, expiration: str) -> list:
        return list(self.chains.get(expiration, []))

    def get_option_snapshot(self, symbol: str):
        return self.option_snapshots.get(symbol)


class FakeLLM:
    """Completer that replays canned replies and records every prompt."""

    def __init__(self, replies: Optional[List[Any]] = None) -> None:
        self.replies = list(replies or [])
        self.calls: List[Dict[str, Any]] = []

    def complete(self, system_prompt: str, user_prompt: str, max_tokens: int, *, model: str, temperature: float = 0.3):
        self.calls.append({"system": system_prompt, "user": user_prompt, "model": model})
        reply = self.replies.pop(0) if self.replies else "{}"
        if isinstance(reply, Exception):
            raise reply
        if not isinstance(reply, str):
            reply = json.dumps(reply)
        return LLMCompletion(text=reply, tokens_in=100, tokens_out=50, model=model)


class FakeNotifier:
    def __init__(self) -> None:
        self.sent: List[tuple] = []

    def notify(self, kind: str, payload: Dict[str, Any]) -> bool:
        self.sent.append((kind, dict(payload)))
        return True


class FakeStore:
    def __init__(self) -> None:
        self.saves = 0

    def save(self, state: AgentState) -> None:
        self.saves += 1

    def load(self) -> AgentState:
        return AgentState(config=AgentConfig())


def make_signal(symbol: str, sentiment: float = 0.35, raw: float = 0.4, source: str = "stocktwits", **kwargs: Any) -> Signal:
    fields = dict(
        symbol=symbol,
        source=source,
        source_detail=source,
        sentiment=sentiment,
        raw_sentiment=raw,
        volume=10,
        freshness=1.0,
        source_weight=0.85,
        reason=f"{source} test signal",
    )
    fields.update(kwargs)
    return Signal(**fields)


def buy_verdict(confidence: float = 0.75, quality: str = "good") -> Dict[str, Any]:
    return {
        "verdict": "BUY",
        "confidence": confidence,
        "entry_quality": quality,
        "reasoning": "Sentiment backed by earnings beat",
        "red_flags": [],
        "catalysts": ["earnings"],
    }


@pytest.fixture
def config() -> AgentConfig:
    return AgentConfig(llm_model="llama-3.1-8b-instant", llm_analyst_model="llama-3.3-70b-versatile")


@pytest.fixture
def state(config) -> AgentState:
    return AgentState(config=config)


@pytest.fixture
def broker() -> FakeBroker:
    return FakeBroker()


__all__ = [
    "FakeBroker",
    "FakeLLM",
    "FakeNotifier",
    "FakeStore",
    "LLMError",
    "buy_verdict",
    "make_signal",
]
