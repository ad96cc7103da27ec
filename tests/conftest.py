"""
Shared fixtures for the bot tests.

Exchange and notifier collaborators are in-memory fakes so that the trading
core can be exercised without network access.
"""

from datetime import datetime, timedelta
from typing import Dict, List, Optional, Tuple

import pytest

from spotbot.core.confirmation import ConfirmationWorkflow
from spotbot.core.exceptions import ExchangeCallFailure, NotificationError
from spotbot.core.position_store import PositionStore
from spotbot.core.risk_manager import RiskManager
from spotbot.core.trading_engine import TradingEngine
from spotbot.models.market import MarketLimits, Ticker
from spotbot.models.order import OrderResult
from spotbot.models.position import Position, TakeProfitLevel
from spotbot.models.signal import Signal

STRATEGY = "EMA Ribbon v2"
OPERATOR_CHAT_ID = "42"


class FakeClock:
    def __init__(self, now: Optional[datetime] = None):
        self.now = now or datetime(2024, 5, 1, 12, 0, 0)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class FakeExchange:
    """In-memory exchange. Market orders fill at the configured price unless told otherwise."""

    def __init__(self):
        self.balances: Dict[str, float] = {"USDT": 1000.0}
        self.prices: Dict[str, float] = {"DBTC_DUSDT": 100.0, "DETH_DUSDT": 50.0}
        self.limits: Dict[str, MarketLimits] = {
            "DBTC_DUSDT": MarketLimits(min_amount=0.0001, min_total=5.0, max_total=100000.0),
            "DETH_DUSDT": MarketLimits(min_amount=0.001, min_total=5.0, max_total=100000.0),
        }
        self.inactive: set = set()
        self.fail_balance = False
        self.fail_orders = False
        self.fail_tickers: set = set()
        self.report_fills = True
        self.buy_orders: List[Tuple[str, float]] = []
        self.sell_orders: List[Tuple[str, float]] = []
        self.reachable = True

    def get_currency_balance(self, currency: str) -> float:
        if self.fail_balance:
            raise ExchangeCallFailure("balance unavailable", endpoint="/api/v4/trade-account/balance")
        return self.balances.get(currency, 0.0)

    def get_ticker(self, symbol: str) -> Ticker:
        if symbol in self.fail_tickers or symbol not in self.prices:
            raise ExchangeCallFailure(f"Ticker {symbol} not found", endpoint="/ticker")
        return Ticker(symbol=symbol, last=self.prices[symbol])

    def get_market_limits(self, symbol: str) -> MarketLimits:
        if symbol not in self.limits:
            raise ExchangeCallFailure(f"Market {symbol} not found", endpoint="/markets")
        return self.limits[symbol]

    def is_market_active(self, symbol: str) -> bool:
        return symbol in self.limits and symbol not in self.inactive

    def create_market_buy_order(self, symbol: str, notional: float) -> OrderResult:
        if self.fail_orders:
            raise ExchangeCallFailure("order rejected", endpoint="/api/v4/order/market", status_code=422)
        self.buy_orders.append((symbol, notional))
        order_id = f"buy-{len(self.buy_orders)}"
        if not self.report_fills:
            return OrderResult(order_id=order_id, status="FILLED")
        price = self.prices[symbol]
        return OrderResult(order_id=order_id, status="FILLED", deal_money=notional, deal_stock=notional / price)

    def create_market_sell_order(self, symbol: str, quantity: float) -> OrderResult:
        if self.fail_orders:
            raise ExchangeCallFailure("order rejected", endpoint="/api/v4/order/market", status_code=422)
        self.sell_orders.append((symbol, quantity))
        order_id = f"sell-{len(self.sell_orders)}"
        if not self.report_fills:
            return OrderResult(order_id=order_id, status="FILLED")
        price = self.prices[symbol]
        return OrderResult(order_id=order_id, status="FILLED", deal_money=quantity * price, deal_stock=quantity)

    def get_api_stats(self) -> Dict[str, float]:
        return {"request_count": 0, "error_count": 0, "error_rate": 0.0}

    def test_connection(self) -> Dict[str, object]:
        if not self.reachable:
            return {"success": False, "error": "connection refused"}
        return {"success": True, "public_api": {"ping": "pong"}}


class FakeNotifier:
    def __init__(self):
        self.sent: List[str] = []
        self.asked: List[Tuple[str, list]] = []
        self.answered: List[Tuple[str, str]] = []
        self.fail_ask = False

    def is_operator(self, chat_id) -> bool:
        return str(chat_id) == OPERATOR_CHAT_ID

    def send(self, text: str) -> Optional[int]:
        self.sent.append(text)
        return len(self.sent)

    def ask(self, text: str, choices) -> int:
        if self.fail_ask:
            raise NotificationError("Telegram sendMessage failed")
        self.asked.append((text, list(choices)))
        return 1000 + len(self.asked)

    def answer_callback(self, callback_id: str, text: str = "") -> None:
        self.answered.append((callback_id, text))


def make_signal(action: str = "BUY", ticker: str = "BTCUSDT", price: float = 100.0,
                strategy: str = STRATEGY, message: Optional[str] = None) -> Signal:
    return Signal(action=action, ticker=ticker, price=price, strategyName=strategy, message=message)


def make_position(symbol: str = "DBTC_DUSDT", entry_price: float = 100.0, quantity: float = 10.0,
                  stop_loss_price: float = 97.0, opened: Optional[datetime] = None) -> Position:
    return Position(
        symbol=symbol,
        original_symbol="BTCUSDT",
        entry_price=entry_price,
        quantity=quantity,
        remaining_quantity=quantity,
        order_id="buy-0",
        notional=entry_price * quantity,
        open_time=opened or datetime(2024, 5, 1, 11, 0, 0),
        take_profit_levels=[
            TakeProfitLevel(level=1, price=entry_price * 1.02, percentage=25.0),
            TakeProfitLevel(level=2, price=entry_price * 1.04, percentage=25.0),
            TakeProfitLevel(level=3, price=entry_price * 1.06, percentage=25.0),
        ],
        stop_loss_price=stop_loss_price,
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def exchange() -> FakeExchange:
    return FakeExchange()


@pytest.fixture
def notifier() -> FakeNotifier:
    return FakeNotifier()


@pytest.fixture
def risk_manager(exchange, clock) -> RiskManager:
    return RiskManager(
        exchange,
        risk_percent=2.0,
        min_order_size=10.0,
        max_order_size=1000.0,
        max_daily_loss=10.0,
        max_open_positions=5,
        max_loss_per_position=5.0,
        max_position_share=0.10,
        stop_loss_percent=3.0,
        tp_percentages=[2.0, 4.0, 6.0],
        tp_close_percentages=[25.0, 25.0, 25.0],
        base_currencies=["USDT", "DUSDT"],
        clock=clock,
    )


@pytest.fixture
def store() -> PositionStore:
    return PositionStore()


@pytest.fixture
def confirmation(store, notifier, clock):
    workflow = ConfirmationWorkflow(store, notifier, timeout=300.0, clock=clock)
    yield workflow
    workflow.cancel_all()


@pytest.fixture
def engine(exchange, notifier, risk_manager, store, confirmation, clock) -> TradingEngine:
    return TradingEngine(
        exchange,
        notifier,
        risk_manager,
        store=store,
        confirmation=confirmation,
        strategy_name=STRATEGY,
        tp_close_percentages=[25.0, 25.0, 25.0],
        clock=clock,
    )
