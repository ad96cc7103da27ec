import os
import signal
import threading
from contextlib import asynccontextmanager
from typing import Callable

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from spotbot.api.dependencies import Services, build_services
from spotbot.api.routes import router
from spotbot.core.exceptions import TradingBotError
from spotbot.utils.config import SERVER_IP, SERVER_PORT, STRATEGY_NAME
from spotbot.utils.logger import logger
from spotbot.utils.messages import format_error


def request_shutdown(services: Services, error: BaseException) -> None:
    """Unexpected fault: log, tell the operator, and stop the process through the normal shutdown path."""
    logger.critical(f"Unexpected fault, shutting down: {error}")
    services.notifier.send(format_error("Unexpected fault, bot is shutting down", error))
    os.kill(os.getpid(), signal.SIGTERM)


def create_app(services_factory: Callable[[], Services] = build_services,
               install_fault_handlers: bool = True) -> FastAPI:

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Manage the lifespan of the FastAPI application."""
        # Startup tasks
        try:
            services = services_factory()
            app.state.services = services
            if services.restore():
                logger.info("State restored from backup")
            if install_fault_handlers:
                services.on_fault = lambda error: request_shutdown(services, error)
                services.scheduler.on_fault = services.on_fault
                threading.excepthook = lambda args: request_shutdown(services, args.exc_value)
            connection = services.check_connection()
            if connection.get("success"):
                logger.info("WhiteBit connection OK")
            else:
                logger.warning(f"WhiteBit connection test failed: {connection.get('error')}")
            services.scheduler.start()
            exchange_status = "✅ connected" if connection.get("success") else "⚠️ unreachable"
            services.notifier.send(f"🤖 <b>Trading bot started</b>\n📊 Strategy: {STRATEGY_NAME}\n"
                                   f"🏦 WhiteBit: {exchange_status}")
            logger.info("Trading bot started")
        except (TradingBotError, OSError, ValueError) as e:
            logger.error(f"Startup failed: {e}")
            raise

        yield  # Application is running

        # Shutdown tasks
        services.scheduler.stop()
        services.engine.confirmation.cancel_all()
        try:
            services.backup()
        except OSError as e:
            logger.error(f"Final backup failed: {e}")
        services.notifier.send("🛑 <b>Trading bot stopped</b>")
        logger.info("Trading bot stopped")

    app = FastAPI(
        title="Spot Trading Bot",
        version="1.0.0",
        description="Signal-driven spot trading bot for WhiteBit with Telegram confirmation",
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(router)
    return app


app = create_app()


if __name__ == "__main__":
    uvicorn.run(app, host=SERVER_IP, port=SERVER_PORT)
