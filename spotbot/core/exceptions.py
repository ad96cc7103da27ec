"""Exceptions shared by the trading core, the exchange client and the API layer."""

from typing import List, Optional


class TradingBotError(Exception):
    """Base exception for all bot-specific errors."""


class ConfigError(TradingBotError):
    """Raised when environment configuration is invalid or missing."""


class ValidationFailure(TradingBotError):
    """Raised when an order fails market constraints; nothing is sent to the exchange."""

    def __init__(self, errors: List[str], symbol: Optional[str] = None):
        self.errors = list(errors)
        self.symbol = symbol
        super().__init__(f"Order validation failed: {', '.join(self.errors)}")


class RiskLimitExceeded(TradingBotError):
    """Raised when an account-level risk limit blocks an action."""


class LimitExceeded(RiskLimitExceeded):
    """Maximum number of open positions reached."""


class DailyLossExceeded(RiskLimitExceeded):
    """Today's drawdown reached the configured maximum daily loss."""


class ExchangeCallFailure(TradingBotError):
    """Raised when an exchange request fails at the transport or API level."""

    def __init__(self, message: str, endpoint: Optional[str] = None, status_code: Optional[int] = None):
        self.endpoint = endpoint
        self.status_code = status_code
        super().__init__(message)


class UnknownSignal(TradingBotError):
    """Raised for signals whose action the engine does not recognise."""


class SignalNotFound(TradingBotError):
    """Raised when a pending signal id is no longer pending (confirmed, rejected or expired)."""


class NotificationError(TradingBotError):
    """Raised when the messaging channel rejects a request."""
