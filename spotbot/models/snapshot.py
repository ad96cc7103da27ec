from datetime import datetime
from typing import List
from pydantic import BaseModel, Field
from spotbot.models.order import OrderHistoryEntry
from spotbot.models.position import Position
from spotbot.models.signal import PendingSignal


class TradingStats(BaseModel):
    total_trades: int = 0
    profitable: int = 0
    losing: int = 0
    total_pnl: float = 0.0

    @property
    def closed_trades(self) -> int:
        return self.profitable + self.losing

    @property
    def win_rate(self) -> float:
        if not self.closed_trades:
            return 0.0
        return self.profitable / self.closed_trades * 100

    @property
    def average_pnl(self) -> float:
        if not self.closed_trades:
            return 0.0
        return self.total_pnl / self.closed_trades


class EngineSnapshot(BaseModel):
    """Point-in-time export of engine state used for backups and crash recovery."""

    active_positions: List[Position] = Field(default_factory=list)
    pending_signals: List[PendingSignal] = Field(default_factory=list)
    order_history: List[OrderHistoryEntry] = Field(default_factory=list)
    stats: TradingStats = Field(default_factory=TradingStats)
    timestamp: datetime
