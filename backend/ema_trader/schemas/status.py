"""Engine status Pydantic schemas"""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel


class PricePointResponse(BaseModel):
    time: datetime
    price: float

    class Config:
        from_attributes = True


class PositionResponse(BaseModel):
    id: str
    symbol: str
    side: str  # LONG, SHORT
    entry_price: float
    size: float
    stop_loss: float
    take_profit: float
    opened_at: datetime
    deposit_amount: float
    leverage: float
    mark_price: Optional[float] = None  # Last price seen by the PnL monitor
    roi_percent: Optional[float] = None
    unrealized_pnl: Optional[float] = None
    monitor_running: bool = False


class SymbolStatus(BaseModel):
    symbol: str
    state: str  # FLAT, OPEN
    last_action: Optional[str] = None  # BUY, SELL
    consecutive_same_side_entries: int = 0
    last_signal: Optional[str] = None  # BUY, SELL, HOLD
    last_error: Optional[str] = None  # Why the last tick was skipped
    position: Optional[PositionResponse] = None
    price_history: List[PricePointResponse] = []


class StatsResponse(BaseModel):
    win_count: int
    loss_count: int
    total_trades: int
    win_rate: Optional[float]  # Ratio 0-1, None until the first close
    total_pnl: float


class EngineStatus(BaseModel):
    running: bool
    symbols: List[SymbolStatus]
    stats: StatsResponse
    ledger_failures: int = 0
