from typing import Any, Callable, Dict, Optional

from fastapi import Depends, HTTPException, Request

from spotbot.core.commands import OperatorCommands
from spotbot.core.confirmation import ConfirmationWorkflow
from spotbot.core.position_store import PositionStore
from spotbot.core.risk_manager import RiskManager
from spotbot.core.trading_engine import TradingEngine
from spotbot.data.telegram_client import TelegramNotifier
from spotbot.data.whitebit_client import WhiteBitClient
from spotbot.utils.config import BACKUP_PATH, CONFIRMATION_TIMEOUT, WEBHOOK_SECRET, validate_config
from spotbot.utils.persistence import load_snapshot, save_snapshot
from spotbot.utils.scheduler import BotScheduler


class Services:
    """The service graph of one running bot, owned by the FastAPI app."""

    def __init__(self, exchange, notifier, engine: TradingEngine, backup_path: str = BACKUP_PATH,
                 webhook_secret: str = WEBHOOK_SECRET, scheduler: Optional[BotScheduler] = None):
        self.exchange = exchange
        self.notifier = notifier
        self.engine = engine
        self.backup_path = backup_path
        self.webhook_secret = webhook_secret
        self.commands = OperatorCommands(engine, notifier, backup=self.backup)
        self.scheduler = scheduler or BotScheduler(engine, backup=self.backup)
        self.on_fault: Optional[Callable[[BaseException], None]] = None
        self.connection: Dict[str, Any] = {}

    def backup(self) -> str:
        return save_snapshot(self.backup_path, self.engine.export_data())

    def fault(self, error: BaseException) -> None:
        if self.on_fault is not None:
            self.on_fault(error)

    def check_connection(self) -> Dict[str, Any]:
        self.connection = self.exchange.test_connection()
        return self.connection

    def restore(self) -> bool:
        snapshot = load_snapshot(self.backup_path)
        if snapshot is None:
            return False
        self.engine.import_data(snapshot)
        return True


def build_services() -> Services:
    """Validate the environment and wire the production collaborators."""
    validate_config()
    exchange = WhiteBitClient()
    notifier = TelegramNotifier()
    store = PositionStore()
    risk_manager = RiskManager(exchange)
    confirmation = ConfirmationWorkflow(store, notifier, timeout=CONFIRMATION_TIMEOUT)
    engine = TradingEngine(exchange, notifier, risk_manager, store=store, confirmation=confirmation)
    return Services(exchange, notifier, engine)


def get_services(request: Request) -> Services:
    services = getattr(request.app.state, "services", None)
    if services is None:
        raise HTTPException(status_code=503, detail="Trading services are not running")
    return services


def get_engine(services: Services = Depends(get_services)) -> TradingEngine:
    return services.engine

