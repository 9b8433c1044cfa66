import json
from types import SimpleNamespace

import pytest
import requests

from broker import AlpacaBroker, BrokerError


class _Session:
    def __init__(self, responses):
        self.responses = list(responses)
        self.requests = []

    def request(self, method, url, **kwargs):
        self.requests.append((method, url, kwargs))
        payload = self.responses.pop(0)
        if isinstance(payload, Exception):
            raise payload
        content = json.dumps(payload).encode() if payload is not None else b""
        return SimpleNamespace(raise_for_status=lambda: None, content=content, json=lambda: payload)


def _broker(responses):
    session = _Session(responses)
    return AlpacaBroker("key", "secret", paper=True, session=session), session


def test_notional_order_body():
    broker, session = _broker([{"id": "o1", "symbol": "AAPL", "status": "accepted", "filled_avg_price": None}])

    order = broker.create_order("AAPL", side="buy", notional=1500.0)

    method, url, kwargs = session.requests[0]
    assert (method, url) == ("POST", "https://paper-api.alpaca.markets/v2/orders")
    assert kwargs["json"] == {
        "symbol": "AAPL",
        "side": "buy",
        "type": "market",
        "time_in_force": "day",
        "notional": "1500.00",
    }
    assert kwargs["headers"]["APCA-API-KEY-ID"] == "key"
    assert order.status == "accepted"
    assert order.filled_avg_price is None


def test_limit_option_order_uses_qty():
    broker, session = _broker([{"id": "o2", "status": "new"}])

    broker.create_order("AAPL231229C00102000", side="buy", qty=1, order_type="limit", limit_price=3.1)

    body = session.requests[0][2]["json"]
    assert body["qty"] == "1"
    assert body["limit_price"] == "3.10"
    assert "notional" not in body


def test_order_requires_exactly_one_size():
    broker, _ = _broker([])

    with pytest.raises(ValueError):
        broker.create_order("AAPL", side="buy")
    with pytest.raises(ValueError):
        broker.create_order("AAPL", side="buy", notional=10.0, qty=1)


def test_http_failure_raises_broker_error():
    broker, _ = _broker([requests.ConnectionError("reset")])

    with pytest.raises(BrokerError):
        broker.get_account()


def test_positions_and_crypto_close_path():
    broker, session = _broker(
        [
            [{"symbol": "BTC/USD", "qty": "0.01", "market_value": "650", "unrealized_pl": "50",
              "current_price": "65000", "avg_entry_price": "60000", "asset_class": "crypto"}],
            {"id": "c1", "status": "accepted"},
        ]
    )

    positions = broker.get_positions()
    broker.close_position("BTC/USD")

    assert positions[0].asset_class == "crypto"
    assert positions[0].market_value == 650.0
    assert session.requests[1][1].endswith("/v2/positions/BTC%2FUSD")


def test_option_snapshot_parsing():
    broker, _ = _broker(
        [{"snapshots": {"AAPL231229C00102000": {"latestQuote": {"bp": 3.0, "ap": 3.2}, "greeks": {"delta": 0.42}}}}]
    )

    snapshot = broker.get_option_snapshot("AAPL231229C00102000")

    assert (snapshot.bid, snapshot.ask, snapshot.delta) == (3.0, 3.2, 0.42)
