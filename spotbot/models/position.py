from datetime import datetime
from typing import List, Literal, Optional, Set
from pydantic import BaseModel, Field, field_validator
from spotbot.models.signal import Signal

PositionSide = Literal["long", "short"]
PositionStatus = Literal["ACTIVE", "CLOSED"]


class TakeProfitLevel(BaseModel):
    level: int
    price: float
    percentage: float


class PartialClose(BaseModel):
    """One executed sell against a position. `level` is None when not tied to a take-profit level."""

    level: Optional[int] = None
    percentage: Optional[float] = None
    quantity: float
    price: float
    pnl_percent: float
    received: float = 0.0
    timestamp: datetime
    order_id: Optional[str] = None
    estimated_fill: bool = False


class Position(BaseModel):
    symbol: str
    original_symbol: str
    side: PositionSide = "long"
    entry_price: float
    quantity: float
    remaining_quantity: float
    order_id: Optional[str] = None
    notional: float = 0.0
    open_time: datetime
    take_profit_levels: List[TakeProfitLevel] = Field(default_factory=list)
    stop_loss_price: float
    partial_closes: List[PartialClose] = Field(default_factory=list)
    status: PositionStatus = "ACTIVE"
    signal: Optional[Signal] = None
    estimated_fill: bool = False
    exit_price: Optional[float] = None
    exit_time: Optional[datetime] = None
    close_reason: Optional[str] = None
    total_pnl_percent: Optional[float] = None

    @field_validator("entry_price", "quantity")
    @classmethod
    def validate_positive(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("Value must be positive")
        return value

    @field_validator("remaining_quantity")
    @classmethod
    def validate_non_negative(cls, value: float) -> float:
        if value < 0:
            raise ValueError("Remaining quantity cannot be negative")
        return value

    @property
    def is_active(self) -> bool:
        return self.status == "ACTIVE" and self.remaining_quantity > 0

    @property
    def base_asset(self) -> str:
        return self.symbol.split("_")[0]

    def closed_levels(self) -> Set[int]:
        return {close.level for close in self.partial_closes if close.level is not None}

    def pnl_percent(self, price: float) -> float:
        change = (price - self.entry_price) / self.entry_price * 100
        return change if self.side == "long" else -change

    def closed_quantity(self) -> float:
        return sum(close.quantity for close in self.partial_closes)
