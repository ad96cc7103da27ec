import itertools
import threading
from datetime import datetime
from typing import Callable, Dict, Iterable, Optional

from spotbot.core.exceptions import NotificationError, SignalNotFound
from spotbot.core.position_store import PositionStore
from spotbot.models.signal import PendingSignal, Signal
from spotbot.utils.config import CONFIRMATION_TIMEOUT
from spotbot.utils.logger import logger
from spotbot.utils.messages import format_confirmation_request, format_signal_expired


class ConfirmationWorkflow:
    """Human approval of entry signals.

    Every pending signal gets a cancellable timer. Resolution (confirm, reject,
    timer expiry or the periodic reaper) pops the signal from the store under
    its lock, so exactly one path wins and the others see SignalNotFound or a
    no-op.
    """

    def __init__(self, store: PositionStore, notifier, timeout: float = CONFIRMATION_TIMEOUT,
                 clock: Callable[[], datetime] = datetime.now):
        self.store = store
        self.notifier = notifier
        self.timeout = timeout
        self.clock = clock
        self._timers: Dict[str, threading.Timer] = {}
        self._lock = threading.Lock()
        self._sequence = itertools.count(1)

    def new_signal_id(self) -> str:
        millis = int(self.clock().timestamp() * 1000)
        while True:
            signal_id = f"{millis}-{next(self._sequence)}"
            if not self.store.has_pending(signal_id):
                return signal_id

    def request(self, signal: Signal, exchange_symbol: str) -> Optional[PendingSignal]:
        """Park an entry signal and ask the operator. Returns None if the question could not be sent."""
        pending = PendingSignal.from_signal(self.new_signal_id(), signal, exchange_symbol, self.clock())
        self.store.add_pending(pending)
        try:
            message_id = self.notifier.ask(
                format_confirmation_request(pending),
                [("✅ YES, BUY", f"confirm_{pending.id}"), ("❌ NO, SKIP", f"reject_{pending.id}")],
            )
        except NotificationError as e:
            self.store.pop_pending(pending.id)
            logger.error(f"Confirmation request for {signal.ticker} could not be sent, signal dropped: {e}")
            return None

        self.store.set_pending_message_id(pending.id, message_id)
        pending.message_id = message_id
        self._arm(pending.id, self.timeout)
        logger.info(f"Signal {pending.id} for {signal.ticker} awaiting confirmation for {self.timeout:.0f}s")
        return pending

    def _arm(self, signal_id: str, delay: float) -> None:
        timer = threading.Timer(max(delay, 0.0), self.expire, args=(signal_id,))
        timer.daemon = True
        with self._lock:
            previous = self._timers.pop(signal_id, None)
            self._timers[signal_id] = timer
        if previous is not None:
            previous.cancel()
        timer.start()

    def _disarm(self, signal_id: str) -> None:
        with self._lock:
            timer = self._timers.pop(signal_id, None)
        if timer is not None:
            timer.cancel()

    def _resolve(self, signal_id: str) -> PendingSignal:
        pending = self.store.pop_pending(signal_id)
        self._disarm(signal_id)
        if pending is None:
            raise SignalNotFound(f"Signal {signal_id} not found or expired")
        return pending

    def confirm(self, signal_id: str) -> PendingSignal:
        pending = self._resolve(signal_id)
        logger.info(f"Signal {signal_id} confirmed for {pending.ticker}")
        return pending

    def reject(self, signal_id: str) -> PendingSignal:
        pending = self._resolve(signal_id)
        logger.info(f"Signal {signal_id} rejected for {pending.ticker}")
        return pending

    def expire(self, signal_id: str) -> bool:
        """Drop a signal whose window closed. False if it was already resolved."""
        pending = self.store.pop_pending(signal_id)
        self._disarm(signal_id)
        if pending is None:
            return False
        logger.warning(f"Signal {signal_id} for {pending.ticker} expired without confirmation")
        self.notifier.send(format_signal_expired(pending))
        return True

    def reap_expired(self) -> int:
        expired = self.store.expired_pending(self.clock(), self.timeout)
        removed = sum(1 for pending in expired if self.expire(pending.id))
        if removed:
            logger.info(f"Removed {removed} expired signals")
        return removed

    def restore(self, pending_signals: Iterable[PendingSignal]) -> int:
        """Re-arm timers for imported signals; those already past their window expire now."""
        now = self.clock()
        armed = 0
        for pending in pending_signals:
            remaining = self.timeout - pending.age_seconds(now)
            if remaining <= 0:
                self.expire(pending.id)
            else:
                self._arm(pending.id, remaining)
                armed += 1
        return armed

    def cancel_all(self) -> None:
        with self._lock:
            timers = list(self._timers.values())
            self._timers.clear()
        for timer in timers:
            timer.cancel()
