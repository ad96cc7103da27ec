import threading
from datetime import datetime
from typing import Callable, List, Mapping, Optional, Sequence

from spotbot.core.exceptions import (
    DailyLossExceeded,
    ExchangeCallFailure,
    LimitExceeded,
    RiskLimitExceeded,
)
from spotbot.models.position import Position, PositionSide, TakeProfitLevel
from spotbot.models.risk import (
    BalanceSummary,
    CloseDecision,
    DailyLimitUsage,
    DailyRiskStats,
    OrderValidation,
    PositionAdvice,
    PositionUtilization,
    RiskCheck,
    RiskReport,
)
from spotbot.utils.config import (
    BASE_CURRENCIES,
    MAX_DAILY_LOSS,
    MAX_LOSS_PER_POSITION,
    MAX_OPEN_POSITIONS,
    MAX_ORDER_SIZE,
    MAX_POSITION_SHARE,
    MIN_ORDER_SIZE,
    RISK_PERCENT,
    STOP_LOSS_PERCENT,
    TP_CLOSE_PERCENTAGES,
    TP_PERCENTAGES,
)
from spotbot.utils.helpers import decimal_places, floor_percentage, floor_to_precision
from spotbot.utils.logger import logger

DEFAULT_TP_CLOSE_PERCENTAGE = 25.0


class RiskManager:
    """Position sizing, account limits and exit-price decisions.

    The only state is the in-memory daily counter; it rolls over lazily on the
    first access of a new local day. Everything else is computed from the
    arguments plus balance and market metadata read from the exchange.
    """

    def __init__(self, exchange, risk_percent: float = RISK_PERCENT, min_order_size: float = MIN_ORDER_SIZE,
                 max_order_size: float = MAX_ORDER_SIZE, max_daily_loss: float = MAX_DAILY_LOSS,
                 max_open_positions: int = MAX_OPEN_POSITIONS,
                 max_loss_per_position: float = MAX_LOSS_PER_POSITION,
                 max_position_share: float = MAX_POSITION_SHARE, stop_loss_percent: float = STOP_LOSS_PERCENT,
                 tp_percentages: Sequence[float] = TP_PERCENTAGES,
                 tp_close_percentages: Sequence[float] = TP_CLOSE_PERCENTAGES,
                 base_currencies: Sequence[str] = BASE_CURRENCIES,
                 clock: Callable[[], datetime] = datetime.now):
        self.exchange = exchange
        self.risk_percent = risk_percent
        self.min_order_size = min_order_size
        self.max_order_size = max_order_size
        self.max_daily_loss = max_daily_loss
        self.max_open_positions = max_open_positions
        self.max_loss_per_position = max_loss_per_position
        self.max_position_share = max_position_share
        self.stop_loss_percent = stop_loss_percent
        self.tp_percentages = list(tp_percentages)
        self.tp_close_percentages = list(tp_close_percentages)
        self.base_currencies = list(base_currencies)
        self.clock = clock
        self.lock = threading.RLock()
        self.daily_stats = DailyRiskStats(day=clock().date())

    # Daily statistics

    def reset_daily_stats(self) -> bool:
        """Start a fresh counter when the local day changed. Returns True if a reset happened."""
        today = self.clock().date()
        with self.lock:
            if self.daily_stats.day == today:
                return False
            self.daily_stats = DailyRiskStats(day=today)
        logger.info(f"Daily risk statistics reset for {today}")
        return True

    def update_daily_stats(self, pnl: float, count_trade: bool = True) -> DailyRiskStats:
        with self.lock:
            self.reset_daily_stats()
            if count_trade:
                self.daily_stats.trade_count += 1
            self.daily_stats.cumulative_pnl += pnl
            stats = self.daily_stats.model_copy()
        logger.info(f"Daily stats updated: trades={stats.trade_count}, pnl={stats.cumulative_pnl:.2f}")
        return stats

    def get_daily_stats(self) -> DailyRiskStats:
        with self.lock:
            self.reset_daily_stats()
            return self.daily_stats.model_copy()

    def _daily_drawdown(self, balance: float) -> float:
        """Percent lost since the day started; records the starting balance on first use."""
        with self.lock:
            self.reset_daily_stats()
            if self.daily_stats.day_start_balance <= 0:
                self.daily_stats.day_start_balance = balance
            start = self.daily_stats.day_start_balance
        if start <= 0:
            return 0.0
        return (start - balance) * 100 / start

    # Balance

    def get_base_balance(self) -> float:
        """Available balance of the first funded quote currency (USDT, then the demo DUSDT)."""
        for currency in self.base_currencies:
            amount = self.exchange.get_currency_balance(currency)
            if amount > 0:
                logger.debug(f"Base balance {amount} {currency}")
                return amount
        return 0.0

    # Sizing

    def calculate_position_size(self, symbol: str, price: float, open_position_count: int) -> float:
        """Notional amount (quote currency) to commit to a new position."""
        self._check_position_count(open_position_count)
        try:
            balance = self.get_base_balance()
        except ExchangeCallFailure as e:
            logger.warning(f"Balance lookup failed for {symbol}, using minimum order size {self.min_order_size}: {e}")
            return self.min_order_size

        if balance <= 0:
            raise RiskLimitExceeded("Insufficient balance for trading")

        risk_amount = balance * self.risk_percent / 100
        position_size = min(max(risk_amount, self.min_order_size), self.max_order_size)
        position_size = self.apply_risk_limits(position_size, balance, open_position_count)
        position_size = floor_to_precision(position_size, 8)
        if position_size <= 0:
            raise RiskLimitExceeded(f"Calculated position size for {symbol} is not positive")

        logger.info(
            f"Position size for {symbol}: balance={balance}, risk_percent={self.risk_percent}, "
            f"risk_amount={risk_amount}, price={price}, position_size={position_size}"
        )
        return position_size

    def _check_position_count(self, open_position_count: int) -> None:
        if open_position_count >= self.max_open_positions:
            raise LimitExceeded(f"Maximum number of open positions reached: {self.max_open_positions}")

    def apply_risk_limits(self, amount: float, balance: float, open_position_count: int) -> float:
        self._check_position_count(open_position_count)
        if balance <= 0:
            raise RiskLimitExceeded("Insufficient balance for trading")

        drawdown = self._daily_drawdown(balance)
        if drawdown >= self.max_daily_loss:
            raise DailyLossExceeded(f"Maximum daily loss reached: {drawdown:.2f}%")

        if drawdown >= self.max_daily_loss / 2:
            amount *= 0.5
            logger.warning(f"Position size halved due to daily drawdown {drawdown:.2f}%: {amount}")

        max_per_position = balance * self.max_position_share
        if amount > max_per_position:
            amount = max_per_position
            logger.warning(f"Position size capped at {self.max_position_share:.0%} of balance: {amount}")
        return amount

    def can_open_position(self, symbol: str, price: float, open_positions: Mapping[str, Position]) -> RiskCheck:
        """Composite pre-check consulted before the operator is asked. Never raises."""
        try:
            if not self.exchange.is_market_active(symbol):
                return RiskCheck(allowed=False, reason=f"Market {symbol} is not active")

            if symbol in open_positions:
                return RiskCheck(allowed=False, reason=f"Position for {symbol} is already open")

            if len(open_positions) >= self.max_open_positions:
                return RiskCheck(
                    allowed=False,
                    reason=f"Maximum number of open positions reached: {self.max_open_positions}"
                )

            balance = self.get_base_balance()
            drawdown = self._daily_drawdown(balance)
            if drawdown >= self.max_daily_loss:
                return RiskCheck(allowed=False, reason=f"Daily loss limit reached: {drawdown:.2f}%")

            if balance < self.min_order_size:
                return RiskCheck(allowed=False, reason=f"Insufficient balance: {balance}")

            return RiskCheck(allowed=True, reason="All checks passed")
        except Exception as e:
            logger.error(f"Error checking whether {symbol} at {price} can be opened: {e}")
            return RiskCheck(allowed=False, reason=f"Error: {e}")

    # Exit levels

    def calculate_take_profit_levels(self, entry_price: float, side: PositionSide = "long") -> List[TakeProfitLevel]:
        levels = []
        for index, percentage in enumerate(self.tp_percentages):
            offset = percentage if side == "long" else -percentage
            close_percentage = (
                self.tp_close_percentages[index]
                if index < len(self.tp_close_percentages)
                else DEFAULT_TP_CLOSE_PERCENTAGE
            )
            levels.append(TakeProfitLevel(
                level=index + 1,
                price=entry_price * (100 + offset) / 100,
                percentage=close_percentage,
            ))
        return levels

    def calculate_stop_loss(self, entry_price: float, side: PositionSide = "long",
                            sl_percent: Optional[float] = None) -> float:
        sl_percent = self.stop_loss_percent if sl_percent is None else sl_percent
        offset = -sl_percent if side == "long" else sl_percent
        return entry_price * (100 + offset) / 100

    def should_close_position(self, position: Position, current_price: float) -> CloseDecision:
        pnl_percent = position.pnl_percent(current_price)
        stop_hit = (
            current_price <= position.stop_loss_price
            if position.side == "long"
            else current_price >= position.stop_loss_price
        )
        if stop_hit:
            return CloseDecision(should_close=True, reason="Stop Loss triggered", kind="STOP_LOSS",
                                 pnl_percent=pnl_percent)
        if pnl_percent <= -self.max_loss_per_position:
            return CloseDecision(should_close=True, reason=f"Maximum position loss reached: {pnl_percent:.2f}%",
                                 kind="MAX_LOSS", pnl_percent=pnl_percent)
        return CloseDecision(should_close=False, pnl_percent=pnl_percent)

    def get_position_advice(self, position: Position, current_price: float) -> PositionAdvice:
        advice = PositionAdvice()
        pnl_percent = position.pnl_percent(current_price)

        if pnl_percent <= -2:
            advice.risk_level = "HIGH"
            advice.reasons.append(f"Loss {pnl_percent:.2f}%")
        elif pnl_percent <= -1:
            advice.risk_level = "MEDIUM"

        for tp in position.take_profit_levels:
            reached = current_price >= tp.price if position.side == "long" else current_price <= tp.price
            if reached:
                advice.action = "PARTIAL_CLOSE"
                advice.reasons.append(f"TP{tp.level} reached")

        if self.should_close_position(position, current_price).should_close:
            advice.action = "CLOSE"
            advice.risk_level = "CRITICAL"
            advice.reasons.append("Stop Loss triggered")
        return advice

    # Orders

    def validate_order(self, symbol: str, side: str, amount: float, price: Optional[float] = None) -> OrderValidation:
        """Check an order against market limits. Precision problems are warnings only."""
        try:
            limits = self.exchange.get_market_limits(symbol)
        except ExchangeCallFailure as e:
            logger.error(f"Order validation for {symbol} failed: {e}")
            return OrderValidation(valid=False, errors=[f"Validation error: {e}"])

        result = OrderValidation()
        if amount < limits.min_amount:
            result.valid = False
            result.errors.append(f"Amount below minimum: {amount} < {limits.min_amount}")

        if side == "buy" and price:
            total = amount * price
            if total < limits.min_total:
                result.valid = False
                result.errors.append(f"Order total below minimum: {total} < {limits.min_total}")
            if limits.max_total > 0 and total > limits.max_total:
                result.valid = False
                result.errors.append(f"Order total above maximum: {total} > {limits.max_total}")

        amount_decimals = decimal_places(amount)
        if amount_decimals > limits.stock_prec:
            result.warnings.append(f"Amount precision exceeded: {amount_decimals} > {limits.stock_prec}")
        if price:
            price_decimals = decimal_places(price)
            if price_decimals > limits.money_prec:
                result.warnings.append(f"Price precision exceeded: {price_decimals} > {limits.money_prec}")

        logger.info(f"Order validation for {symbol} {side} amount={amount} price={price}: "
                    f"valid={result.valid}, errors={result.errors}, warnings={result.warnings}")
        return result

    def calculate_partial_close_amount(self, position: Position, percentage: float) -> float:
        """Share of the remaining quantity, floored to 8 decimals so it can never oversell."""
        amount = floor_percentage(position.remaining_quantity, percentage, 8)
        return min(amount, position.remaining_quantity)

    # Reporting

    def get_risk_report(self, open_positions: Mapping[str, Position]) -> RiskReport:
        balance = self.get_base_balance()
        drawdown = self._daily_drawdown(balance)
        stats = self.get_daily_stats()
        start = stats.day_start_balance
        change = balance - start
        change_percent = change * 100 / start if start > 0 else 0.0
        utilization = len(open_positions) * 100 / self.max_open_positions if self.max_open_positions else 100.0

        report = RiskReport(
            balance=BalanceSummary(current=balance, start=start, change=change, change_percent=change_percent),
            positions=PositionUtilization(
                count=len(open_positions),
                max_allowed=self.max_open_positions,
                utilization_percent=utilization,
            ),
            daily_limits=DailyLimitUsage(
                max_loss_percent=self.max_daily_loss,
                current_loss_percent=drawdown,
                trades_count=stats.trade_count,
                cumulative_pnl=stats.cumulative_pnl,
            ),
        )
        if utilization > 80:
            report.recommendations.append("REDUCE_POSITIONS - too many open positions")
        if drawdown > self.max_daily_loss / 2:
            report.recommendations.append("REDUCE_RISK - approaching the daily loss limit")
        if change_percent < -5:
            report.recommendations.append("REVIEW_STRATEGY - significant balance drawdown")
        return report
