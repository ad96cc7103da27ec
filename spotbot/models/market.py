from typing import Any, Dict, Optional
from pydantic import BaseModel, ConfigDict, Field


class Ticker(BaseModel):
    symbol: str
    last: float
    volume: Optional[float] = None
    change: Optional[float] = None
    raw: Dict[str, Any] = Field(default_factory=dict)


class MarketInfo(BaseModel):
    """Market metadata as returned by the public markets endpoint."""

    model_config = ConfigDict(populate_by_name=True)

    name: str
    stock: Optional[str] = None
    money: Optional[str] = None
    min_amount: float = Field(0.0, alias="minAmount")
    min_total: float = Field(0.0, alias="minTotal")
    max_total: float = Field(0.0, alias="maxTotal")
    maker_fee: float = Field(0.0, alias="makerFee")
    taker_fee: float = Field(0.0, alias="takerFee")
    stock_prec: int = Field(8, alias="stockPrec")
    money_prec: int = Field(8, alias="moneyPrec")
    trades_enabled: bool = Field(False, alias="tradesEnabled")

    def limits(self) -> "MarketLimits":
        return MarketLimits(
            min_amount=self.min_amount,
            min_total=self.min_total,
            max_total=self.max_total,
            maker_fee=self.maker_fee,
            taker_fee=self.taker_fee,
            stock_prec=self.stock_prec,
            money_prec=self.money_prec,
        )


class MarketLimits(BaseModel):
    min_amount: float
    min_total: float
    max_total: float
    maker_fee: float = 0.0
    taker_fee: float = 0.0
    stock_prec: int = 8
    money_prec: int = 8
