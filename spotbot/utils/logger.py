import logging
import logging.handlers
import os
from typing import Any

from spotbot.utils.config import LOG_DIR, LOG_LEVEL

os.makedirs(LOG_DIR, exist_ok=True)

formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

logger = logging.getLogger("spotbot")
logger.setLevel(getattr(logging, LOG_LEVEL.upper(), logging.INFO))

file_handler = logging.handlers.RotatingFileHandler(
    os.path.join(LOG_DIR, "trading.log"), maxBytes=10*1024*1024, backupCount=5
)
stream_handler = logging.StreamHandler()
file_handler.setFormatter(formatter)
stream_handler.setFormatter(formatter)

logger.addHandler(file_handler)
logger.addHandler(stream_handler)

# Order and position events go to their own file
trade_logger = logging.getLogger("spotbot.trades")
trade_logger.setLevel(logging.INFO)
trade_logger.propagate = False

trade_handler = logging.handlers.RotatingFileHandler(
    os.path.join(LOG_DIR, "trades.log"), maxBytes=10*1024*1024, backupCount=5
)
trade_handler.setFormatter(formatter)
trade_logger.addHandler(trade_handler)


def log_trade(action: str, symbol: str, **data: Any) -> None:
    details = ", ".join(f"{key}={value}" for key, value in data.items())
    trade_logger.info(f"{action} {symbol} {details}".rstrip())
    logger.info(f"Trade event {action} for {symbol}")
