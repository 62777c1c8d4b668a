"""
Trading engine records

Plain dataclasses passed between the indicator, signal, position and
monitor layers. SymbolState is the only mutable record and is owned by
the engine (one per tracked symbol).
"""

from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Deque, Optional
from uuid import uuid4


class Signal(str, Enum):
    BUY = "BUY"
    SELL = "SELL"
    HOLD = "HOLD"


class PositionSide(str, Enum):
    LONG = "LONG"
    SHORT = "SHORT"

    @classmethod
    def from_signal(cls, signal: Signal) -> "PositionSide":
        if signal == Signal.BUY:
            return cls.LONG
        if signal == Signal.SELL:
            return cls.SHORT
        raise ValueError(f"No position side for signal {signal}")


class PositionState(str, Enum):
    FLAT = "FLAT"
    OPEN = "OPEN"


class TradeResult(str, Enum):
    WIN = "WIN"
    LOSS = "LOSS"


@dataclass(frozen=True)
class Candle:
    open_time: datetime
    close: float


@dataclass(frozen=True)
class PricePoint:
    time: datetime
    price: float


@dataclass(frozen=True)
class IndicatorSnapshot:
    ema_fast: float
    ema_slow: float
    latest_close: float
    ema_trend: Optional[float] = None


@dataclass
class Position:
    symbol: str
    side: PositionSide
    entry_price: float
    size: float
    stop_loss: float
    take_profit: float
    opened_at: datetime
    deposit_amount: float
    leverage: float
    id: str = field(default_factory=lambda: uuid4().hex)

    @property
    def action(self) -> Signal:
        """Signal that opened this position"""
        return Signal.BUY if self.side == PositionSide.LONG else Signal.SELL


@dataclass(frozen=True)
class TradeRecord:
    position_id: str
    symbol: str
    side: PositionSide
    entry_price: float
    exit_price: float
    pnl_amount: float
    pnl_percent: float
    result: TradeResult
    exit_reason: str
    stop_loss: float
    take_profit: float
    deposit_amount: float
    leverage: float
    opened_at: datetime
    closed_at: datetime


@dataclass
class SymbolState:
    symbol: str
    price_history_size: int = 100
    state: PositionState = PositionState.FLAT
    last_action: Optional[Signal] = None
    consecutive_same_side_entries: int = 0
    position: Optional[Position] = None
    price_history: Deque[PricePoint] = field(default=None)
    tick_in_flight: bool = False
    last_signal: Optional[Signal] = None

    def __post_init__(self):
        if self.price_history is None:
            self.price_history = deque(maxlen=self.price_history_size)

    @property
    def is_flat(self) -> bool:
        return self.state == PositionState.FLAT

    def record_price(self, time: datetime, price: float):
        """Append to the bounded price history (oldest entries fall off)"""
        self.price_history.append(PricePoint(time=time, price=price))
