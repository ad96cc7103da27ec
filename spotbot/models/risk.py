from datetime import date
from typing import List, Literal, Optional
from pydantic import BaseModel, Field

CloseKind = Literal["STOP_LOSS", "MAX_LOSS"]
AdviceAction = Literal["HOLD", "PARTIAL_CLOSE", "CLOSE"]
RiskLevel = Literal["LOW", "MEDIUM", "HIGH", "CRITICAL"]


class DailyRiskStats(BaseModel):
    day: date
    day_start_balance: float = 0.0
    cumulative_pnl: float = 0.0
    trade_count: int = 0


class RiskCheck(BaseModel):
    allowed: bool
    reason: str


class OrderValidation(BaseModel):
    valid: bool = True
    errors: List[str] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)


class CloseDecision(BaseModel):
    should_close: bool
    reason: Optional[str] = None
    kind: Optional[CloseKind] = None
    pnl_percent: Optional[float] = None


class PositionAdvice(BaseModel):
    action: AdviceAction = "HOLD"
    risk_level: RiskLevel = "LOW"
    reasons: List[str] = Field(default_factory=list)


class BalanceSummary(BaseModel):
    current: float
    start: float
    change: float
    change_percent: float


class PositionUtilization(BaseModel):
    count: int
    max_allowed: int
    utilization_percent: float


class DailyLimitUsage(BaseModel):
    max_loss_percent: float
    current_loss_percent: float
    trades_count: int
    cumulative_pnl: float


class RiskReport(BaseModel):
    balance: BalanceSummary
    positions: PositionUtilization
    daily_limits: DailyLimitUsage
    recommendations: List[str] = Field(default_factory=list)
