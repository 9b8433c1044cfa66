"""Alpaca brokerage and market-data client built on ``requests``.

Only the calls the trading loop needs are wrapped.  HTTP and payload errors
are raised as :class:`BrokerError`; callers decide whether a failure means
"skip this symbol" or "skip this tick".
"""
from __future__ import annotations

from typing import Any, Dict, List, Optional
from urllib.parse import quote

import requests
from requests import exceptions as requests_exceptions

from config import alpaca_credentials
from log_utils import setup_logger
from models import (
    Account,
    Clock,
    CryptoSnapshot,
    OptionContract,
    OptionSnapshot,
    Order,
    Position,
)

logger = setup_logger(__name__)

PAPER_URL = "https://paper-api.alpaca.markets"
LIVE_URL = "https://api.alpaca.markets"
DATA_URL = "https://data.alpaca.markets"
REQUEST_TIMEOUT = 15


class BrokerError(RuntimeError):
    """Raised when the brokerage rejects a request or returns bad data."""


def _float(value: Any, default: float = 0.0) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


class AlpacaBroker:
    """Thin wrapper over the Alpaca trading and data REST APIs."""

    def __init__(
        self,
        key_id: Optional[str] = None,
        secret: Optional[str] = None,
        *,
        paper: Optional[bool] = None,
        session: Any = None,
    ) -> None:
        env_key, env_secret, env_paper = alpaca_credentials()
        self.key_id = key_id or env_key
        self.secret = secret or env_secret
        self.trading_url = PAPER_URL if (env_paper if paper is None else paper) else LIVE_URL
        self._http = session or requests.Session()

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------
    @property
    def headers(self) -> Dict[str, str]:
        return {
            "APCA-API-KEY-ID": self.key_id,
            "APCA-API-SECRET-KEY": self.secret,
        }

    def _request(self, method: str, url: str, **kwargs: Any) -> Any:
        try:
            response = self._http.request(
                method, url, headers=self.headers, timeout=REQUEST_TIMEOUT, **kwargs
            )
            response.raise_for_status()
        except requests_exceptions.RequestException as exc:
            raise BrokerError(f"{method} {url} failed: {exc}") from exc
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as exc:
            raise BrokerError(f"{method} {url} returned invalid JSON") from exc

    def _trading(self, method: str, path: str, **kwargs: Any) -> Any:
        return self._request(method, f"{self.trading_url}{path}", **kwargs)

    def _data(self, path: str, **kwargs: Any) -> Any:
        return self._request("GET", f"{DATA_URL}{path}", **kwargs)

    # ------------------------------------------------------------------
    # Account state
    # ------------------------------------------------------------------
    def get_account(self) -> Account:
        data = self._trading("GET", "/v2/account") or {}
        return Account(
            cash=_float(data.get("cash")),
            equity=_float(data.get("equity")),
            buying_power=_float(data.get("buying_power")),
        )

    def get_positions(self) -> List[Position]:
        data = self._trading("GET", "/v2/positions") or []
        return [
            Position(
                symbol=str(item.get("symbol")),
                qty=_float(item.get("qty")),
                market_value=_float(item.get("market_value")),
                unrealized_pl=_float(item.get("unrealized_pl")),
                current_price=_float(item.get("current_price")),
                avg_entry_price=_float(item.get("avg_entry_price")),
                asset_class=str(item.get("asset_class") or "us_equity"),
            )
            for item in data
        ]

    def get_clock(self) -> Clock:
        data = self._trading("GET", "/v2/clock") or {}
        return Clock(is_open=bool(data.get("is_open")), timestamp=str(data.get("timestamp") or ""))

    # ------------------------------------------------------------------
    # Orders
    # ------------------------------------------------------------------
    def create_order(
        self,
        symbol: str,
        *,
        side: str,
        notional: Optional[float] = None,
        qty: Optional[float] = None,
        order_type: str = "market",
        time_in_force: str = "day",
        limit_price: Optional[float] = None,
    ) -> Order:
        if (notional is None) == (qty is None):
            raise ValueError("exactly one of notional or qty is required")
        body: Dict[str, Any] = {
            "symbol": symbol,
            "side": side,
            "type": order_type,
            "time_in_force": time_in_force,
        }
        if notional is not None:
            body["notional"] = f"{notional:.2f}"
        else:
            body["qty"] = str(qty)
        if limit_price is not None:
            body["limit_price"] = f"{limit_price:.2f}"
        data = self._trading("POST", "/v2/orders", json=body) or {}
        filled = data.get("filled_avg_price")
        return Order(
            id=str(data.get("id") or ""),
            symbol=str(data.get("symbol") or symbol),
            status=str(data.get("status") or ""),
            side=side,
            filled_avg_price=_float(filled) if filled is not None else None,
        )

    def close_position(self, symbol: str) -> Order:
        data = self._trading("DELETE", f"/v2/positions/{quote(symbol, safe='')}") or {}
        return Order(
            id=str(data.get("id") or ""),
            symbol=symbol,
            status=str(data.get("status") or ""),
            side="sell",
        )

    # ------------------------------------------------------------------
    # Market data
    # ------------------------------------------------------------------
    def get_quote(self, symbol: str) -> Dict[str, float]:
        data = self._data(f"/v2/stocks/{symbol}/quotes/latest") or {}
        quote_data = data.get("quote") or {}
        return {"bid": _float(quote_data.get("bp")), "ask": _float(quote_data.get("ap"))}

    def get_price(self, symbol: str) -> float:
        """Ask price, falling back to bid; crypto pairs use the last trade."""

        if "/" in symbol:
            snapshot = self.get_crypto_snapshot(symbol)
            return snapshot.price if snapshot else 0.0
        quote_data = self.get_quote(symbol)
        return quote_data["ask"] or quote_data["bid"]

    def get_crypto_snapshot(self, symbol: str) -> Optional[CryptoSnapshot]:
        data = self._data("/v1beta3/crypto/us/snapshots", params={"symbols": symbol}) or {}
        snap = (data.get("snapshots") or {}).get(symbol)
        if not snap:
            return None
        return CryptoSnapshot(
            symbol=symbol,
            price=_float((snap.get("latestTrade") or {}).get("p")),
            prev_close=_float((snap.get("prevDailyBar") or {}).get("c")),
            volume=_float((snap.get("dailyBar") or {}).get("v")),
        )

    # ------------------------------------------------------------------
    # Options
    # ------------------------------------------------------------------
    def _option_contracts(self, params: Dict[str, Any]) -> List[Dict[str, Any]]:
        contracts: List[Dict[str, Any]] = []
        page_token: Optional[str] = None
        while True:
            query = dict(params, limit=1000)
            if page_token:
                query["page_token"] = page_token
            data = self._trading("GET", "/v2/options/contracts", params=query) or {}
            contracts.extend(data.get("option_contracts") or [])
            page_token = data.get("next_page_token")
            if not page_token:
                return contracts

    def get_option_expirations(self, underlying: str, start: str, end: str) -> List[str]:
        contracts = self._option_contracts(
            {
                "underlying_symbols": underlying,
                "status": "active",
                "expiration_date_gte": start,
                "expiration_date_lte": end,
            }
        )
        return sorted({str(c.get("expiration_date")) for c in contracts if c.get("expiration_date")})

    def get_option_chain(self, underlying: str, expiration: str) -> List[OptionContract]:
        contracts = self._option_contracts(
            {"underlying_symbols": underlying, "status": "active", "expiration_date": expiration}
        )
        return [
            OptionContract(
                symbol=str(c.get("symbol")),
                underlying=str(c.get("underlying_symbol") or underlying),
                option_type=str(c.get("type") or "").lower(),
                strike=_float(c.get("strike_price")),
                expiration=str(c.get("expiration_date") or expiration),
            )
            for c in contracts
        ]

    def get_option_snapshot(self, symbol: str) -> Optional[OptionSnapshot]:
        data = self._data("/v1beta1/options/snapshots", params={"symbols": symbol}) or {}
        snap = (data.get("snapshots") or {}).get(symbol)
        if not snap:
            return None
        quote_data = snap.get("latestQuote") or {}
        greeks = snap.get("greeks") or {}
        delta = greeks.get("delta")
        return OptionSnapshot(
            bid=_float(quote_data.get("bp")),
            ask=_float(quote_data.get("ap")),
            delta=_float(delta) if delta is not None else None,
        )


__all__ = ["AlpacaBroker", "BrokerError"]
