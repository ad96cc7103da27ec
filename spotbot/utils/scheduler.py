import threading
from typing import Callable, Optional

import schedule

from spotbot.utils.config import BACKUP_INTERVAL, CLEANUP_INTERVAL, MONITOR_INTERVAL
from spotbot.utils.logger import logger


class BotScheduler:
    """Periodic jobs on a daemon thread.

    An exception escaping a job is treated as an unexpected fault: the loop
    stops and `on_fault` is called so the process can shut down.
    """

    def __init__(self, engine, backup: Optional[Callable[[], str]] = None,
                 monitor_interval: int = MONITOR_INTERVAL, cleanup_interval: int = CLEANUP_INTERVAL,
                 backup_interval: int = BACKUP_INTERVAL,
                 on_fault: Optional[Callable[[BaseException], None]] = None):
        self.engine = engine
        self.backup = backup
        self.monitor_interval = monitor_interval
        self.cleanup_interval = cleanup_interval
        self.backup_interval = backup_interval
        self.on_fault = on_fault
        self.scheduler = schedule.Scheduler()
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def register_jobs(self) -> None:
        self.scheduler.clear()
        self.scheduler.every(self.monitor_interval).seconds.do(self.engine.monitor_positions)
        self.scheduler.every(self.cleanup_interval).seconds.do(self.engine.cleanup_pending_signals)
        if self.backup is not None:
            self.scheduler.every(self.backup_interval).seconds.do(self.run_backup)

    def run_backup(self) -> None:
        try:
            self.backup()
        except OSError as e:
            logger.error(f"Backup failed: {e}")

    def run_pending(self) -> bool:
        """Run due jobs once. Returns False after a fault."""
        try:
            self.scheduler.run_pending()
        except Exception as e:
            logger.exception(f"Unexpected error in scheduled job: {e}")
            if self.on_fault is not None:
                self.on_fault(e)
            return False
        return True

    def _run(self) -> None:
        while not self._stop.is_set():
            if not self.run_pending():
                break
            self._stop.wait(1)

    def start(self) -> None:
        self.register_jobs()
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name="spotbot-scheduler", daemon=True)
        self._thread.start()
        logger.info(
            f"Scheduler started. Monitoring every {self.monitor_interval}s, "
            f"cleanup every {self.cleanup_interval}s, backup every {self.backup_interval}s"
        )

    def stop(self, timeout: float = 5.0) -> None:
        self._stop.set()
        self.scheduler.clear()
        if self._thread is not None and self._thread is not threading.current_thread():
            self._thread.join(timeout)
        self._thread = None
        logger.info("Scheduler stopped")
