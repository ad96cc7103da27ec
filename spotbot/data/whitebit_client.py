import base64
import hashlib
import hmac
import json
import threading
import time
from datetime import datetime
from typing import Any, Dict, List, Optional

import requests

from spotbot.core.exceptions import ExchangeCallFailure
from spotbot.models.market import MarketInfo, MarketLimits, Ticker
from spotbot.models.order import OrderResult
from spotbot.utils.config import (
    MARKETS_CACHE_TTL,
    WHITEBIT_API_KEY,
    WHITEBIT_BASE_URL,
    WHITEBIT_SECRET_KEY,
    WHITEBIT_TIMEOUT,
)
from spotbot.utils.logger import log_trade, logger


class WhiteBitClient:
    """REST client for the WhiteBit v4 API covering what the trading core needs."""

    def __init__(self, api_key: str = WHITEBIT_API_KEY, secret_key: str = WHITEBIT_SECRET_KEY,
                 base_url: str = WHITEBIT_BASE_URL, timeout: float = WHITEBIT_TIMEOUT,
                 markets_ttl: float = MARKETS_CACHE_TTL, session: Optional[requests.Session] = None):
        self.api_key = api_key
        self.secret_key = secret_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.markets_ttl = markets_ttl
        self.session = session or requests.Session()
        self.request_count = 0
        self.error_count = 0
        self.last_request_time: Optional[datetime] = None
        self._lock = threading.Lock()
        self._last_nonce = 0
        self._markets_cache: Optional[List[MarketInfo]] = None
        self._markets_fetched_at = 0.0

    # Transport

    def _next_nonce(self) -> int:
        with self._lock:
            self._last_nonce = max(self._last_nonce + 1, int(time.time() * 1000))
            return self._last_nonce

    def _sign(self, body: Dict[str, Any]) -> Dict[str, str]:
        payload = base64.b64encode(json.dumps(body, separators=(",", ":")).encode()).decode()
        signature = hmac.new(self.secret_key.encode(), payload.encode(), hashlib.sha512).hexdigest()
        return {
            "Content-Type": "application/json",
            "X-TXC-APIKEY": self.api_key,
            "X-TXC-PAYLOAD": payload,
            "X-TXC-SIGNATURE": signature,
        }

    def _send(self, method: str, path: str, body: Optional[Dict[str, Any]] = None,
              headers: Optional[Dict[str, str]] = None) -> Any:
        with self._lock:
            self.request_count += 1
            self.last_request_time = datetime.now()
        url = f"{self.base_url}{path}"
        try:
            if body is None:
                response = self.session.request(method, url, timeout=self.timeout)
            else:
                # Same compact encoding as the signed payload
                response = self.session.request(
                    method, url, data=json.dumps(body, separators=(",", ":")),
                    headers=headers, timeout=self.timeout
                )
        except requests.RequestException as e:
            self._record_error()
            logger.error(f"WhiteBit request to {path} failed: {e}")
            raise ExchangeCallFailure(f"WhiteBit request failed: {e}", endpoint=path) from e

        if response.status_code >= 400:
            self._record_error()
            detail = response.text.strip() or "No response body"
            logger.error(f"WhiteBit API error {response.status_code} for {path}: {detail}")
            raise ExchangeCallFailure(
                f"WhiteBit API error {response.status_code} for {path}: {detail}",
                endpoint=path, status_code=response.status_code
            )
        try:
            return response.json()
        except ValueError as e:
            self._record_error()
            raise ExchangeCallFailure(f"Invalid JSON response from WhiteBit for {path}", endpoint=path) from e

    def _record_error(self) -> None:
        with self._lock:
            self.error_count += 1

    def private_request(self, path: str, data: Optional[Dict[str, Any]] = None) -> Any:
        body = {"request": path, "nonce": self._next_nonce(), **(data or {})}
        logger.debug(f"POST {path}")
        return self._send("POST", path, body=body, headers=self._sign(body))

    def public_request(self, endpoint: str) -> Any:
        logger.debug(f"GET {endpoint}")
        return self._send("GET", f"/api/v4/public{endpoint}")

    # Balances

    def get_balance(self) -> Dict[str, Any]:
        return self.private_request("/api/v4/trade-account/balance")

    def get_currency_balance(self, currency: str) -> float:
        """Available amount of one currency; 0.0 when the account holds none."""
        balance = self.get_balance()
        entry = balance.get(currency)
        if entry is None and isinstance(balance.get("main"), dict):
            entry = balance["main"].get(currency)
        if not entry:
            return 0.0
        try:
            return float(entry.get("available", 0) if isinstance(entry, dict) else entry)
        except (TypeError, ValueError) as e:
            raise ExchangeCallFailure(f"Malformed balance for {currency}: {entry}") from e

    # Market data

    def get_ticker(self, symbol: str) -> Ticker:
        tickers = self.public_request("/ticker")
        data = tickers.get(symbol) if isinstance(tickers, dict) else None
        if not data:
            raise ExchangeCallFailure(f"Ticker {symbol} not found", endpoint="/ticker")
        try:
            return Ticker(
                symbol=symbol,
                last=float(data["last_price"]),
                volume=float(data["base_volume"]) if data.get("base_volume") is not None else None,
                change=float(data["change"]) if data.get("change") is not None else None,
                raw=data,
            )
        except (KeyError, TypeError, ValueError) as e:
            raise ExchangeCallFailure(f"Malformed ticker for {symbol}: {data}", endpoint="/ticker") from e

    def get_markets(self, refresh: bool = False) -> List[MarketInfo]:
        with self._lock:
            cached = self._markets_cache
            fresh = time.monotonic() - self._markets_fetched_at < self.markets_ttl
        if cached is not None and fresh and not refresh:
            return cached
        payload = self.public_request("/markets")
        if not isinstance(payload, list):
            raise ExchangeCallFailure("Unexpected markets response", endpoint="/markets")
        markets = [MarketInfo.model_validate(item) for item in payload]
        with self._lock:
            self._markets_cache = markets
            self._markets_fetched_at = time.monotonic()
        return markets

    def get_market(self, symbol: str) -> Optional[MarketInfo]:
        return next((market for market in self.get_markets() if market.name == symbol), None)

    def get_market_limits(self, symbol: str) -> MarketLimits:
        market = self.get_market(symbol)
        if market is None:
            raise ExchangeCallFailure(f"Market {symbol} not found", endpoint="/markets")
        return market.limits()

    def is_market_active(self, symbol: str) -> bool:
        market = self.get_market(symbol)
        return bool(market and market.trades_enabled)

    # Orders

    def create_market_buy_order(self, symbol: str, notional: float) -> OrderResult:
        """Market buy spending `notional` units of the quote currency."""
        order_data = {"market": symbol, "side": "buy", "amount": str(notional)}
        log_trade("MARKET_BUY_REQUEST", symbol, **order_data)
        result = self._parse_order(self.private_request("/api/v4/order/market", order_data))
        log_trade("MARKET_BUY_RESPONSE", symbol, order_id=result.order_id, status=result.status,
                  deal_money=result.deal_money, deal_stock=result.deal_stock)
        return result

    def create_market_sell_order(self, symbol: str, quantity: float) -> OrderResult:
        """Market sell of `quantity` units of the base currency."""
        order_data = {"market": symbol, "side": "sell", "amount": str(quantity)}
        log_trade("MARKET_SELL_REQUEST", symbol, **order_data)
        result = self._parse_order(self.private_request("/api/v4/order/market", order_data))
        log_trade("MARKET_SELL_RESPONSE", symbol, order_id=result.order_id, status=result.status,
                  deal_money=result.deal_money, deal_stock=result.deal_stock)
        return result

    @staticmethod
    def _parse_order(payload: Any) -> OrderResult:
        if not isinstance(payload, dict):
            raise ExchangeCallFailure(f"Unexpected order response: {payload}", endpoint="/api/v4/order/market")

        def as_float(key: str) -> Optional[float]:
            value = payload.get(key)
            try:
                return float(value) if value not in (None, "") else None
            except (TypeError, ValueError):
                return None

        order_id = payload.get("orderId")
        return OrderResult(
            order_id=str(order_id) if order_id is not None else None,
            status=payload.get("status"),
            deal_money=as_float("dealMoney"),
            deal_stock=as_float("dealStock"),
            raw=payload,
        )

    # Service

    def ping(self) -> Any:
        return self.public_request("/ping")

    def get_server_time(self) -> Any:
        return self.public_request("/time")

    def get_api_stats(self) -> Dict[str, Any]:
        with self._lock:
            error_rate = self.error_count / self.request_count * 100 if self.request_count else 0.0
            return {
                "request_count": self.request_count,
                "error_count": self.error_count,
                "error_rate": round(error_rate, 2),
                "last_request_time": self.last_request_time.isoformat() if self.last_request_time else None,
            }

    def test_connection(self) -> Dict[str, Any]:
        try:
            ping = self.ping()
            server_time = self.get_server_time()
            balance = self.get_balance()
            return {
                "success": True,
                "public_api": {"ping": ping, "server_time": server_time},
                "private_api": {"balance_keys": list(balance.keys())},
                "stats": self.get_api_stats(),
            }
        except ExchangeCallFailure as e:
            logger.error(f"WhiteBit connection test failed: {e}")
            return {"success": False, "error": str(e), "stats": self.get_api_stats()}
