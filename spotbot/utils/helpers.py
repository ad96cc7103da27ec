from decimal import Decimal, ROUND_DOWN, InvalidOperation
from typing import Dict, Iterable, Optional
from spotbot.utils.config import SYMBOL_MAPPING, QUOTE_CURRENCIES
from spotbot.utils.logger import logger

def convert_symbol(ticker: str, mapping: Optional[Dict[str, str]] = None,
                   quote_currencies: Optional[Iterable[str]] = None) -> str:
    """Translate a charting ticker (e.g. BTCUSDT) into the exchange market name (e.g. BTC_USDT)."""
    mapping = SYMBOL_MAPPING if mapping is None else mapping
    quote_currencies = QUOTE_CURRENCIES if quote_currencies is None else quote_currencies
    symbol = ticker.strip().upper()

    if symbol in mapping:
        return mapping[symbol]

    for key, value in mapping.items():
        if key in symbol:
            logger.debug(f"Symbol {symbol} matched mapping key {key}")
            return value

    if "_" in symbol:
        return symbol
    for quote in quote_currencies:
        if symbol.endswith(quote) and len(symbol) > len(quote):
            return f"{symbol[:-len(quote)]}_{quote}"

    logger.warning(f"No conversion rule for ticker {symbol}, using it as is")
    return symbol

def floor_to_precision(value: float, precision: int = 8) -> float:
    """Truncate towards zero at `precision` decimal places, never rounding up."""
    quantum = Decimal(1).scaleb(-precision)
    return float(Decimal(str(value)).quantize(quantum, rounding=ROUND_DOWN))

def floor_percentage(value: float, percentage: float, precision: int = 8) -> float:
    """`value * percentage / 100` in exact decimal arithmetic, truncated at `precision` places."""
    quantum = Decimal(1).scaleb(-precision)
    share = Decimal(str(value)) * Decimal(str(percentage)) / Decimal(100)
    return float(share.quantize(quantum, rounding=ROUND_DOWN))

def decimal_places(value: float) -> int:
    try:
        exponent = Decimal(str(value)).normalize().as_tuple().exponent
    except InvalidOperation:
        return 0
    return -exponent if exponent < 0 else 0

def subtract_quantity(value: float, amount: float, precision: int = 8) -> float:
    """Subtract two quantities on the 8-decimal grid so float drift cannot leave dust."""
    quantum = Decimal(1).scaleb(-precision)
    result = (Decimal(str(value)) - Decimal(str(amount))).quantize(quantum, rounding=ROUND_DOWN)
    return float(max(result, Decimal(0)))

def format_price(value: Optional[float]) -> str:
    if value is None:
        return "n/a"
    return f"${value:,.2f}" if value >= 1 or value == 0 else f"${value:.8f}".rstrip("0")

def format_signed_percent(value: float) -> str:
    return f"{value:+.2f}%"
