from datetime import datetime
from typing import Optional
from pydantic import BaseModel, ConfigDict, Field, field_validator

ENTRY_ACTIONS = ("BUY",)
TAKE_PROFIT_ACTIONS = ("TP1", "TP2", "TP3")
EXIT_ACTIONS = ("SL", "EXIT")


class Signal(BaseModel):
    """Alert payload posted by the charting service."""

    model_config = ConfigDict(populate_by_name=True)

    action: str
    ticker: str
    price: float
    strategy: str = Field(alias="strategyName")
    message: Optional[str] = None
    secret: Optional[str] = Field(None, exclude=True)

    @field_validator("action", "ticker")
    @classmethod
    def normalize_upper(cls, value: str) -> str:
        value = value.strip().upper()
        if not value:
            raise ValueError("Field must not be empty")
        return value

    @field_validator("price")
    @classmethod
    def validate_positive(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("Price must be positive")
        return value

    @field_validator("strategy")
    @classmethod
    def strip_strategy(cls, value: str) -> str:
        return value.strip()

    @property
    def take_profit_level(self) -> Optional[int]:
        if self.action in TAKE_PROFIT_ACTIONS:
            return int(self.action[2:])
        return None


class PendingSignal(BaseModel):
    id: str
    ticker: str
    exchange_symbol: str
    price: float
    action: str
    strategy: str
    message: Optional[str] = None
    received_at: datetime
    message_id: Optional[int] = None

    @classmethod
    def from_signal(cls, signal_id: str, signal: Signal, exchange_symbol: str, received_at: datetime) -> "PendingSignal":
        return cls(
            id=signal_id,
            ticker=signal.ticker,
            exchange_symbol=exchange_symbol,
            price=signal.price,
            action=signal.action,
            strategy=signal.strategy,
            message=signal.message,
            received_at=received_at,
        )

    def to_signal(self) -> Signal:
        return Signal(
            action=self.action,
            ticker=self.ticker,
            price=self.price,
            strategy=self.strategy,
            message=self.message,
        )

    def age_seconds(self, now: datetime) -> float:
        return (now - self.received_at).total_seconds()
