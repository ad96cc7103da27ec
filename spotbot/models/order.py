from datetime import datetime
from typing import Any, Dict, Literal, Optional
from pydantic import BaseModel, ConfigDict, Field

OrderAction = Literal["OPEN_LONG", "PARTIAL_CLOSE", "CLOSE_POSITION"]


class OrderResult(BaseModel):
    """Normalised response of a market order."""

    order_id: Optional[str] = None
    status: Optional[str] = None
    deal_money: Optional[float] = None
    deal_stock: Optional[float] = None
    raw: Dict[str, Any] = Field(default_factory=dict)

    @property
    def has_fill(self) -> bool:
        return bool(self.deal_money) and bool(self.deal_stock)

    @property
    def average_price(self) -> Optional[float]:
        if not self.has_fill:
            return None
        return self.deal_money / self.deal_stock


class OrderHistoryEntry(BaseModel):
    """Audit record of one placed order. Immutable once written."""

    model_config = ConfigDict(frozen=True)

    timestamp: datetime
    action: OrderAction
    symbol: str
    exchange_symbol: str
    price: float
    quantity: float
    order_id: Optional[str] = None
    notional: Optional[float] = None
    entry_price: Optional[float] = None
    pnl_percent: Optional[float] = None
    level: Optional[int] = None
    percentage: Optional[float] = None
    reason: Optional[str] = None
    estimated_fill: bool = False
