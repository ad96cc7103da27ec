import os
from typing import Dict, List, Optional
from dotenv import load_dotenv
from spotbot.core.exceptions import ConfigError

load_dotenv()

def get_env_var(var_name: str, default: Optional[str] = None) -> Optional[str]:
    """Get an environment variable, falling back to a default when not set or empty."""
    value = os.getenv(var_name)
    if value is None or value.strip() == "":
        return default
    return value.strip()

def get_required_env_var(var_name: str) -> str:
    """Get an environment variable and raise an error if not set."""
    value = get_env_var(var_name)
    if value is None:
        raise ValueError(f"Environment variable {var_name} is not set in .env file")
    return value

def get_int_env_var(var_name: str, default: int) -> int:
    """Get an integer environment variable and raise an error if invalid."""
    value = get_env_var(var_name)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        raise ValueError(f"Environment variable {var_name} must be an integer, got: {value}")

def get_float_env_var(var_name: str, default: float) -> float:
    """Get a float environment variable and raise an error if invalid."""
    value = get_env_var(var_name)
    if value is None:
        return default
    try:
        return float(value)
    except ValueError:
        raise ValueError(f"Environment variable {var_name} must be a float, got: {value}")

def get_list_env_var(var_name: str, default: List[str]) -> List[str]:
    value = get_env_var(var_name)
    if value is None:
        return list(default)
    return [item.strip() for item in value.split(",") if item.strip()]

def get_float_list_env_var(var_name: str, default: List[float]) -> List[float]:
    items = get_list_env_var(var_name, [str(item) for item in default])
    try:
        return [float(item) for item in items]
    except ValueError:
        raise ValueError(f"Environment variable {var_name} must be a comma separated list of numbers")

def get_mapping_env_var(var_name: str, default: Dict[str, str]) -> Dict[str, str]:
    """Parse `KEY:VALUE,KEY:VALUE` pairs, keeping their order."""
    value = get_env_var(var_name)
    if value is None:
        return dict(default)
    mapping = {}
    for pair in value.split(","):
        if not pair.strip():
            continue
        if ":" not in pair:
            raise ValueError(f"Environment variable {var_name} has a malformed pair: {pair}")
        key, mapped = pair.split(":", 1)
        mapping[key.strip().upper()] = mapped.strip().upper()
    return mapping

# Exchange
WHITEBIT_API_KEY = get_env_var("WHITEBIT_API_KEY", "")
WHITEBIT_SECRET_KEY = get_env_var("WHITEBIT_SECRET_KEY", "")
WHITEBIT_BASE_URL = get_env_var("WHITEBIT_BASE_URL", "https://whitebit.com")
WHITEBIT_TIMEOUT = get_float_env_var("WHITEBIT_TIMEOUT", 10.0)
MARKETS_CACHE_TTL = get_float_env_var("MARKETS_CACHE_TTL", 60.0)

# Telegram
TELEGRAM_BOT_TOKEN = get_env_var("TELEGRAM_BOT_TOKEN", "")
TELEGRAM_CHAT_ID = get_env_var("TELEGRAM_CHAT_ID", "")
TELEGRAM_BASE_URL = get_env_var("TELEGRAM_BASE_URL", "https://api.telegram.org")

# Webhook server
WEBHOOK_SECRET = get_env_var("WEBHOOK_SECRET", "")
SERVER_IP = get_env_var("SERVER_IP", "0.0.0.0")
SERVER_PORT = get_int_env_var("SERVER_PORT", 3000)

# Risk
RISK_PERCENT = get_float_env_var("RISK_PERCENT", 2.0)
MIN_ORDER_SIZE = get_float_env_var("MIN_ORDER_SIZE", 10.0)
MAX_ORDER_SIZE = get_float_env_var("MAX_ORDER_SIZE", 1000.0)
MAX_DAILY_LOSS = get_float_env_var("MAX_DAILY_LOSS", 10.0)
MAX_OPEN_POSITIONS = get_int_env_var("MAX_OPEN_POSITIONS", 5)
MAX_LOSS_PER_POSITION = get_float_env_var("MAX_LOSS_PER_POSITION", 5.0)
MAX_POSITION_SHARE = get_float_env_var("MAX_POSITION_SHARE", 0.10)
STOP_LOSS_PERCENT = get_float_env_var("STOP_LOSS_PERCENT", 3.0)
BASE_CURRENCIES = get_list_env_var("BASE_CURRENCIES", ["USDT", "DUSDT"])

# Strategy
STRATEGY_NAME = get_env_var("STRATEGY_NAME", "EMA Ribbon v2")
TP_PERCENTAGES = get_float_list_env_var("TP_PERCENTAGES", [2.0, 4.0, 6.0])
TP_CLOSE_PERCENTAGES = get_float_list_env_var("TP_CLOSE_PERCENTAGES", [25.0, 25.0, 25.0])
CONFIRMATION_TIMEOUT = get_float_env_var("CONFIRMATION_TIMEOUT", 300.0)

# Symbols
SYMBOL_MAPPING = get_mapping_env_var("SYMBOL_MAPPING", {
    "BTCUSDT": "DBTC_DUSDT",
    "BTC": "DBTC_DUSDT",
    "ETHUSDT": "DETH_DUSDT",
    "ETH": "DETH_DUSDT",
})
QUOTE_CURRENCIES = get_list_env_var("QUOTE_CURRENCIES", ["USDT", "USDC", "BTC", "ETH"])

# Housekeeping
MONITOR_INTERVAL = get_int_env_var("MONITOR_INTERVAL", 30)
CLEANUP_INTERVAL = get_int_env_var("CLEANUP_INTERVAL", 300)
BACKUP_INTERVAL = get_int_env_var("BACKUP_INTERVAL", 6 * 60 * 60)
BACKUP_PATH = get_env_var("BACKUP_PATH", "backup.json")
LOG_DIR = get_env_var("LOG_DIR", "logs")
LOG_LEVEL = get_env_var("LOG_LEVEL", "INFO")

REQUIRED_SECRETS = {
    "WHITEBIT_API_KEY": WHITEBIT_API_KEY,
    "WHITEBIT_SECRET_KEY": WHITEBIT_SECRET_KEY,
    "TELEGRAM_BOT_TOKEN": TELEGRAM_BOT_TOKEN,
    "TELEGRAM_CHAT_ID": TELEGRAM_CHAT_ID,
    "WEBHOOK_SECRET": WEBHOOK_SECRET,
}

def validate_config(values: Optional[Dict[str, str]] = None) -> None:
    """Raise ConfigError naming every required secret that is missing."""
    values = REQUIRED_SECRETS if values is None else values
    missing = [name for name, value in values.items() if not value]
    if missing:
        raise ConfigError(f"Missing required environment variables: {', '.join(missing)}")
    if len(TP_CLOSE_PERCENTAGES) < len(TP_PERCENTAGES):
        raise ConfigError("TP_CLOSE_PERCENTAGES must have an entry for every TP_PERCENTAGES level")
