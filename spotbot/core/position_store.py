import threading
from datetime import datetime
from typing import Dict, Iterable, List, Optional

from spotbot.models.order import OrderHistoryEntry
from spotbot.models.position import Position
from spotbot.models.signal import PendingSignal
from spotbot.utils.logger import logger


class PositionStore:
    """In-memory state shared by webhook handlers, operator callbacks and the scheduler.

    Positions are keyed by exchange symbol and kept in insertion order. `lock`
    guards the collections; `symbol_lock(symbol)` serializes the order flow of
    one market so a close and a partial close can never sell the same quantity.
    """

    def __init__(self):
        self.lock = threading.RLock()
        self._positions: Dict[str, Position] = {}
        self._pending: Dict[str, PendingSignal] = {}
        self._history: List[OrderHistoryEntry] = []
        self._symbol_locks: Dict[str, threading.Lock] = {}

    def symbol_lock(self, symbol: str) -> threading.Lock:
        with self.lock:
            if symbol not in self._symbol_locks:
                self._symbol_locks[symbol] = threading.Lock()
            return self._symbol_locks[symbol]

    # Positions

    def add_position(self, position: Position) -> None:
        with self.lock:
            if position.symbol in self._positions:
                raise ValueError(f"Position for {position.symbol} already exists")
            self._positions[position.symbol] = position
            count = len(self._positions)
        logger.info(f"Position {position.symbol} stored. Open positions: {count}")

    def get_position(self, symbol: str) -> Optional[Position]:
        with self.lock:
            return self._positions.get(symbol)

    def has_position(self, symbol: str) -> bool:
        with self.lock:
            return symbol in self._positions

    def remove_position(self, symbol: str) -> Optional[Position]:
        with self.lock:
            position = self._positions.pop(symbol, None)
            count = len(self._positions)
        if position is not None:
            logger.info(f"Position {symbol} removed. Open positions: {count}")
        return position

    def positions(self) -> List[Position]:
        with self.lock:
            return list(self._positions.values())

    def positions_by_symbol(self) -> Dict[str, Position]:
        with self.lock:
            return dict(self._positions)

    @property
    def position_count(self) -> int:
        with self.lock:
            return len(self._positions)

    # Pending signals

    def add_pending(self, pending: PendingSignal) -> None:
        with self.lock:
            if pending.id in self._pending:
                raise ValueError(f"Pending signal {pending.id} already exists")
            self._pending[pending.id] = pending

    def get_pending(self, signal_id: str) -> Optional[PendingSignal]:
        with self.lock:
            return self._pending.get(signal_id)

    def has_pending(self, signal_id: str) -> bool:
        with self.lock:
            return signal_id in self._pending

    def pop_pending(self, signal_id: str) -> Optional[PendingSignal]:
        """Remove and return a pending signal. Only the first caller for an id gets it."""
        with self.lock:
            return self._pending.pop(signal_id, None)

    def set_pending_message_id(self, signal_id: str, message_id: Optional[int]) -> None:
        with self.lock:
            pending = self._pending.get(signal_id)
            if pending is not None:
                pending.message_id = message_id

    def pending_signals(self) -> List[PendingSignal]:
        with self.lock:
            return list(self._pending.values())

    def expired_pending(self, now: datetime, timeout: float) -> List[PendingSignal]:
        with self.lock:
            return [p for p in self._pending.values() if p.age_seconds(now) >= timeout]

    # Order history

    def append_history(self, entry: OrderHistoryEntry) -> None:
        with self.lock:
            self._history.append(entry)

    def history(self, limit: Optional[int] = None) -> List[OrderHistoryEntry]:
        """Most recent entries last. `limit` keeps only the newest ones."""
        with self.lock:
            if limit is None:
                return list(self._history)
            if limit <= 0:
                return []
            return self._history[-limit:]

    # Bulk

    def replace(self, positions: Iterable[Position], pending: Iterable[PendingSignal],
                history: Iterable[OrderHistoryEntry]) -> None:
        """Swap in restored state; used when importing a backup."""
        with self.lock:
            self._positions = {position.symbol: position for position in positions}
            self._pending = {signal.id: signal for signal in pending}
            self._history = list(history)
            counts = (len(self._positions), len(self._pending), len(self._history))
        logger.info(f"State replaced: {counts[0]} positions, {counts[1]} pending signals, {counts[2]} history entries")
