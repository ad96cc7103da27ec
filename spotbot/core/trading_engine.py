import threading
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from spotbot.core.confirmation import ConfirmationWorkflow
from spotbot.core.exceptions import (
    ExchangeCallFailure,
    RiskLimitExceeded,
    TradingBotError,
    UnknownSignal,
    ValidationFailure,
)
from spotbot.core.position_store import PositionStore
from spotbot.core.risk_manager import RiskManager
from spotbot.models.order import OrderHistoryEntry, OrderResult
from spotbot.models.position import PartialClose, Position
from spotbot.models.signal import ENTRY_ACTIONS, EXIT_ACTIONS, TAKE_PROFIT_ACTIONS, PendingSignal, Signal
from spotbot.models.snapshot import EngineSnapshot, TradingStats
from spotbot.utils.config import STRATEGY_NAME, TP_CLOSE_PERCENTAGES
from spotbot.utils.helpers import convert_symbol, floor_to_precision, subtract_quantity
from spotbot.utils.logger import log_trade, logger
from spotbot.utils.messages import (
    format_error,
    format_partial_close,
    format_position_closed,
    format_position_opened,
    format_signal_rejected,
)


class TradingEngine:
    """Routes incoming signals and runs the position lifecycle.

    Order flow for one market is serialized through the store's per-symbol
    lock; entries additionally go through `_entry_lock` so the open-position
    limit is checked and consumed atomically.
    """

    def __init__(self, exchange, notifier, risk_manager: RiskManager, store: Optional[PositionStore] = None,
                 confirmation: Optional[ConfirmationWorkflow] = None, strategy_name: str = STRATEGY_NAME,
                 tp_close_percentages: Sequence[float] = TP_CLOSE_PERCENTAGES,
                 symbol_converter: Callable[[str], str] = convert_symbol,
                 clock: Callable[[], datetime] = datetime.now):
        self.exchange = exchange
        self.notifier = notifier
        self.risk_manager = risk_manager
        self.store = store or PositionStore()
        self.confirmation = confirmation or ConfirmationWorkflow(self.store, notifier, clock=clock)
        self.strategy_name = strategy_name
        self.tp_close_percentages = list(tp_close_percentages)
        self.convert_symbol = symbol_converter
        self.clock = clock
        self.stats = TradingStats()
        self._stats_lock = threading.Lock()
        self._entry_lock = threading.Lock()

    # Signal routing

    def process_signal(self, signal: Signal) -> Dict[str, Any]:
        logger.info(f"Signal received: {signal.action} {signal.ticker} at {signal.price} ({signal.strategy})")
        if signal.strategy != self.strategy_name:
            logger.warning(f"Signal strategy '{signal.strategy}' does not match '{self.strategy_name}', ignored")
            return {"status": "ignored", "message": "Strategy mismatch"}
        try:
            return self._route(signal)
        except UnknownSignal as e:
            logger.warning(str(e))
            return {"status": "ignored", "message": str(e)}

    def _route(self, signal: Signal) -> Dict[str, Any]:
        if signal.action in ENTRY_ACTIONS:
            return self.handle_buy_signal(signal)
        if signal.action in TAKE_PROFIT_ACTIONS:
            return self.handle_take_profit_signal(signal)
        if signal.action in EXIT_ACTIONS:
            return self.handle_exit_signal(signal)
        raise UnknownSignal(f"Unknown signal action: {signal.action}")

    def handle_buy_signal(self, signal: Signal) -> Dict[str, Any]:
        symbol = self.convert_symbol(signal.ticker)
        check = self.risk_manager.can_open_position(symbol, signal.price, self.store.positions_by_symbol())
        if not check.allowed:
            logger.warning(f"Cannot open position for {symbol}: {check.reason}")
            self.notifier.send(format_error(f"Cannot open position {signal.ticker}", check.reason))
            return {"status": "rejected", "message": check.reason}

        pending = self.confirmation.request(signal, symbol)
        if pending is None:
            return {"status": "error", "message": "Confirmation request could not be sent"}
        return {"status": "pending", "message": "Awaiting confirmation", "signal_id": pending.id}

    def handle_take_profit_signal(self, signal: Signal) -> Dict[str, Any]:
        level = signal.take_profit_level
        symbol = self._resolve_position_symbol(signal.ticker)
        position = self.store.get_position(symbol)
        if position is None:
            logger.warning(f"No open position for {signal.ticker}, {signal.action} ignored")
            return {"status": "ignored", "message": f"No open position for {signal.ticker}"}

        if level is None or level > len(self.tp_close_percentages):
            logger.warning(f"No close percentage configured for {signal.action}, ignored")
            return {"status": "ignored", "message": f"No close percentage for {signal.action}"}

        updated = self.partial_close(symbol, self.tp_close_percentages[level - 1], level,
                                     reference_price=signal.price)
        if updated is None:
            return {"status": "ignored", "message": f"{signal.action} already handled for {signal.ticker}"}
        return {"status": "success", "message": f"{signal.action} executed for {symbol}",
                "remaining_quantity": updated.remaining_quantity}

    def handle_exit_signal(self, signal: Signal) -> Dict[str, Any]:
        reason = "Stop Loss" if signal.action == "SL" else (signal.message or "Exit signal")
        position = self.close_position(signal.ticker, reason, reference_price=signal.price)
        if position is None:
            return {"status": "ignored", "message": f"No open position for {signal.ticker}"}
        return {"status": "success", "message": f"Position {position.symbol} closed",
                "pnl_percent": position.total_pnl_percent}

    def _resolve_position_symbol(self, symbol_or_ticker: str) -> str:
        symbol = symbol_or_ticker.strip().upper()
        if self.store.has_position(symbol):
            return symbol
        return self.convert_symbol(symbol)

    # Confirmation

    def confirm_trade(self, signal_id: str) -> Position:
        pending = self.confirmation.confirm(signal_id)
        return self.open_long_position(pending.ticker, pending.price, pending.to_signal())

    def reject_trade(self, signal_id: str) -> PendingSignal:
        pending = self.confirmation.reject(signal_id)
        log_trade("SIGNAL_REJECTED", pending.exchange_symbol, signal_id=signal_id, ticker=pending.ticker,
                  price=pending.price)
        self.notifier.send(format_signal_rejected(pending))
        return pending

    def cleanup_pending_signals(self) -> int:
        return self.confirmation.reap_expired()

    # Position lifecycle

    def open_long_position(self, symbol: str, price: float, signal: Optional[Signal] = None) -> Position:
        exchange_symbol = self.convert_symbol(symbol)
        with self._entry_lock, self.store.symbol_lock(exchange_symbol):
            try:
                if self.store.has_position(exchange_symbol):
                    raise RiskLimitExceeded(f"Position for {exchange_symbol} is already open")
                notional = self.risk_manager.calculate_position_size(
                    exchange_symbol, price, self.store.position_count
                )
                validation = self.risk_manager.validate_order(exchange_symbol, "buy", notional / price, price)
                if not validation.valid:
                    raise ValidationFailure(validation.errors, symbol=exchange_symbol)
                order = self.exchange.create_market_buy_order(exchange_symbol, notional)
            except TradingBotError as e:
                logger.error(f"Failed to open position {symbol}: {e}")
                self.notifier.send(format_error(f"Failed to open position {symbol}", e))
                raise

            estimated = not order.has_fill
            entry_price = order.average_price if not estimated else price
            quantity = floor_to_precision(order.deal_stock if order.deal_stock else notional / price, 8)
            if estimated:
                logger.warning(f"Buy order {order.order_id} for {exchange_symbol} returned incomplete fill data, "
                               f"using price {entry_price} and quantity {quantity}")

            position = Position(
                symbol=exchange_symbol,
                original_symbol=symbol,
                entry_price=entry_price,
                quantity=quantity,
                remaining_quantity=quantity,
                order_id=order.order_id,
                notional=order.deal_money or notional,
                open_time=self.clock(),
                take_profit_levels=self.risk_manager.calculate_take_profit_levels(entry_price, "long"),
                stop_loss_price=self.risk_manager.calculate_stop_loss(entry_price, "long"),
                signal=signal,
                estimated_fill=estimated,
            )
            self.store.add_position(position)

        with self._stats_lock:
            self.stats.total_trades += 1
        self.store.append_history(OrderHistoryEntry(
            timestamp=position.open_time,
            action="OPEN_LONG",
            symbol=symbol,
            exchange_symbol=exchange_symbol,
            price=entry_price,
            quantity=quantity,
            order_id=order.order_id,
            notional=position.notional,
            estimated_fill=estimated,
        ))
        log_trade("POSITION_OPENED", exchange_symbol, entry_price=entry_price, quantity=quantity,
                  notional=position.notional, order_id=order.order_id,
                  take_profit=[tp.price for tp in position.take_profit_levels],
                  stop_loss=position.stop_loss_price, estimated_fill=estimated)
        self.notifier.send(format_position_opened(position))
        return position

    def close_position(self, symbol: str, reason: str = "Exit signal",
                       reference_price: Optional[float] = None) -> Optional[Position]:
        symbol = self._resolve_position_symbol(symbol)
        with self.store.symbol_lock(symbol):
            position = self.store.get_position(symbol)
            if position is None or not position.is_active:
                logger.warning(f"No active position for {symbol}, close ignored")
                return None

            quantity = position.remaining_quantity
            order = self._sell(position, quantity, reference_price)
            exit_price, estimated = self._exit_price(position, order, reference_price)
            close = self._record_close(position, order, quantity, exit_price, estimated, level=None,
                                       percentage=100.0, reason=reason, full=True)
            self._finalize(position, exit_price, reason)
        self.notifier.send(format_position_closed(position, close))
        return position

    def partial_close(self, symbol: str, percentage: float, level: Optional[int] = None,
                      reference_price: Optional[float] = None) -> Optional[Position]:
        symbol = self._resolve_position_symbol(symbol)
        with self.store.symbol_lock(symbol):
            position = self.store.get_position(symbol)
            if position is None or not position.is_active:
                logger.warning(f"No active position for {symbol}, partial close ignored")
                return None
            if level is not None and level in position.closed_levels():
                logger.info(f"TP{level} already executed for {symbol}")
                return None

            quantity = self.risk_manager.calculate_partial_close_amount(position, percentage)
            if quantity <= 0:
                logger.warning(f"Partial close amount for {symbol} is zero, skipped")
                return None

            order = self._sell(position, quantity, reference_price)
            exit_price, estimated = self._exit_price(position, order, reference_price)
            close = self._record_close(position, order, quantity, exit_price, estimated, level=level,
                                       percentage=percentage, reason=f"TP{level}" if level else "Partial close")
            closed = position.remaining_quantity <= 0
            if closed:
                self._finalize(position, exit_price, f"TP{level} final" if level else "Partial close final")
        self.notifier.send(format_partial_close(position, close))
        if closed:
            self.notifier.send(format_position_closed(position, close))
        return position

    def _sell(self, position: Position, quantity: float, reference_price: Optional[float]) -> OrderResult:
        try:
            validation = self.risk_manager.validate_order(position.symbol, "sell", quantity, reference_price)
            if not validation.valid:
                raise ValidationFailure(validation.errors, symbol=position.symbol)
            return self.exchange.create_market_sell_order(position.symbol, quantity)
        except TradingBotError as e:
            logger.error(f"Failed to sell {quantity} {position.symbol}: {e}")
            self.notifier.send(format_error(f"Failed to close {position.symbol}", e))
            raise

    def _exit_price(self, position: Position, order: OrderResult,
                    reference_price: Optional[float]) -> Tuple[float, bool]:
        if order.has_fill:
            return order.average_price, False
        price = reference_price
        if price is None:
            try:
                price = self.exchange.get_ticker(position.symbol).last
            except ExchangeCallFailure as e:
                logger.error(f"Ticker lookup for {position.symbol} failed, using entry price: {e}")
                price = position.entry_price
        logger.warning(f"Sell order {order.order_id} for {position.symbol} returned no fill data, "
                       f"using last observed price {price}")
        return price, True

    def _record_close(self, position: Position, order: OrderResult, quantity: float, exit_price: float,
                      estimated: bool, level: Optional[int], percentage: float, reason: str,
                      full: bool = False) -> PartialClose:
        pnl_percent = position.pnl_percent(exit_price)
        received = order.deal_money if order.has_fill else quantity * exit_price
        now = self.clock()
        close = PartialClose(
            level=level,
            percentage=percentage,
            quantity=quantity,
            price=exit_price,
            pnl_percent=pnl_percent,
            received=received,
            timestamp=now,
            order_id=order.order_id,
            estimated_fill=estimated,
        )
        with self.store.lock:
            position.partial_closes.append(close)
            position.remaining_quantity = subtract_quantity(position.remaining_quantity, quantity)

        self.store.append_history(OrderHistoryEntry(
            timestamp=now,
            action="CLOSE_POSITION" if full else "PARTIAL_CLOSE",
            symbol=position.original_symbol,
            exchange_symbol=position.symbol,
            price=exit_price,
            quantity=quantity,
            order_id=order.order_id,
            entry_price=position.entry_price,
            pnl_percent=pnl_percent,
            level=level,
            percentage=percentage,
            reason=reason,
            estimated_fill=estimated,
        ))
        realized = quantity * (exit_price - position.entry_price)
        if position.side == "short":
            realized = -realized
        self.risk_manager.update_daily_stats(realized, count_trade=position.remaining_quantity <= 0)
        log_trade("POSITION_CLOSED" if full else "PARTIAL_CLOSE", position.symbol,
                  level=level, quantity=quantity, price=exit_price, pnl_percent=round(pnl_percent, 4),
                  remaining=position.remaining_quantity, order_id=order.order_id, reason=reason,
                  estimated_fill=estimated)
        return close

    def _finalize(self, position: Position, exit_price: float, reason: str) -> None:
        closed_quantity = position.closed_quantity()
        total_pnl = (
            sum(close.quantity * close.pnl_percent for close in position.partial_closes) / closed_quantity
            if closed_quantity else 0.0
        )
        with self.store.lock:
            position.status = "CLOSED"
            position.exit_price = exit_price
            position.exit_time = self.clock()
            position.close_reason = reason
            position.total_pnl_percent = total_pnl
            self.store.remove_position(position.symbol)

        with self._stats_lock:
            if total_pnl > 0:
                self.stats.profitable += 1
            else:
                self.stats.losing += 1
            self.stats.total_pnl += total_pnl
        logger.info(f"Position {position.symbol} closed: {reason}, P&L {total_pnl:.2f}%")

    def close_all_positions(self, reason: str = "Manual close") -> List[Dict[str, Any]]:
        results = []
        for position in self.store.positions():
            try:
                closed = self.close_position(position.symbol, reason)
                results.append({"symbol": position.symbol, "success": closed is not None,
                                "pnl_percent": closed.total_pnl_percent if closed else None})
            except TradingBotError as e:
                results.append({"symbol": position.symbol, "success": False, "error": str(e)})
        logger.info(f"Close all finished: {sum(1 for r in results if r['success'])}/{len(results)} closed")
        return results

    # Monitoring

    def monitor_positions(self) -> int:
        """One sweep over open positions. Returns how many were checked."""
        positions = self.store.positions()
        for position in positions:
            try:
                self._monitor_position(position)
            except Exception as e:
                logger.error(f"Monitoring failed for {position.symbol}: {e}")
        return len(positions)

    def _monitor_position(self, position: Position) -> None:
        current_price = self.exchange.get_ticker(position.symbol).last
        decision = self.risk_manager.should_close_position(position, current_price)
        if decision.should_close:
            logger.warning(f"{position.symbol}: {decision.reason}")
            self.close_position(position.symbol, decision.reason, reference_price=current_price)
            return

        advice = self.risk_manager.get_position_advice(position, current_price)
        logger.debug(f"{position.symbol} at {current_price}: pnl={decision.pnl_percent:.2f}% "
                     f"advice={advice.action}/{advice.risk_level}")

        closed_levels = position.closed_levels()
        for tp in position.take_profit_levels:
            if tp.level in closed_levels:
                continue
            reached = current_price >= tp.price if position.side == "long" else current_price <= tp.price
            if not reached:
                continue
            logger.info(f"{position.symbol} reached TP{tp.level} at {current_price}")
            updated = self.partial_close(position.symbol, tp.percentage, tp.level, reference_price=current_price)
            if updated is None or not updated.is_active:
                break

    # Lookups and reporting

    def get_position(self, symbol: str) -> Optional[Position]:
        symbol = self._resolve_position_symbol(symbol)
        with self.store.lock:
            position = self.store.get_position(symbol)
            return position.model_copy(deep=True) if position else None

    def has_position(self, symbol: str) -> bool:
        return self.store.has_position(self._resolve_position_symbol(symbol))

    def get_all_positions(self) -> List[Position]:
        with self.store.lock:
            return [position.model_copy(deep=True) for position in self.store.positions()]

    def get_all_pending_signals(self) -> List[PendingSignal]:
        return [pending.model_copy() for pending in self.store.pending_signals()]

    def get_order_history(self, limit: int = 50) -> List[OrderHistoryEntry]:
        return self.store.history(limit)

    def get_stats(self) -> Dict[str, Any]:
        with self._stats_lock:
            stats = self.stats.model_copy()
        return {
            "total_trades": stats.total_trades,
            "profitable_trades": stats.profitable,
            "losing_trades": stats.losing,
            "total_pnl": stats.total_pnl,
            "win_rate": stats.win_rate,
            "average_pnl": stats.average_pnl,
            "active_positions": self.store.position_count,
            "pending_signals": len(self.store.pending_signals()),
        }

    def get_detailed_report(self) -> Dict[str, Any]:
        try:
            risk = self.risk_manager.get_risk_report(self.store.positions_by_symbol()).model_dump()
        except ExchangeCallFailure as e:
            logger.error(f"Risk report unavailable: {e}")
            risk = {"error": str(e)}
        return {
            "timestamp": self.clock().isoformat(),
            "trading": self.get_stats(),
            "risk": risk,
            "api": self.exchange.get_api_stats(),
            "positions": [
                {
                    "symbol": position.symbol,
                    "entry_price": position.entry_price,
                    "quantity": position.quantity,
                    "remaining_quantity": position.remaining_quantity,
                    "take_profits_hit": sorted(position.closed_levels()),
                    "open_time": position.open_time.isoformat(),
                }
                for position in self.store.positions()
            ],
            "recent_orders": [entry.model_dump(mode="json") for entry in self.store.history(10)],
        }

    # Snapshot

    def export_data(self) -> EngineSnapshot:
        with self.store.lock:
            positions = [position.model_copy(deep=True) for position in self.store.positions()]
            pending = [signal.model_copy() for signal in self.store.pending_signals()]
            history = self.store.history()
        with self._stats_lock:
            stats = self.stats.model_copy()
        return EngineSnapshot(active_positions=positions, pending_signals=pending, order_history=history,
                              stats=stats, timestamp=self.clock())

    def import_data(self, snapshot: EngineSnapshot) -> None:
        self.confirmation.cancel_all()
        self.store.replace(snapshot.active_positions, snapshot.pending_signals, snapshot.order_history)
        with self._stats_lock:
            self.stats = snapshot.stats.model_copy()
        armed = self.confirmation.restore(snapshot.pending_signals)
        logger.info(f"Snapshot from {snapshot.timestamp} imported, {armed} pending signals re-armed")
