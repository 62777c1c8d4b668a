"""
Stats Aggregator

Running win/loss counters and cumulative realized PnL across all symbols.
Fed once per closed position by PositionManager; read by the status API.
"""

import logging
from dataclasses import dataclass
from typing import Optional, Set

from ema_trader.trading_engine.types import TradeRecord, TradeResult

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StatsSnapshot:
    win_count: int
    loss_count: int
    total_pnl: float
    win_rate: Optional[float]  # wins / (wins + losses), None before the first close

    @property
    def total_trades(self) -> int:
        return self.win_count + self.loss_count


class StatsAggregator:
    """Accumulates realized trade outcomes"""

    def __init__(self):
        self.win_count = 0
        self.loss_count = 0
        self.total_pnl = 0.0
        self._recorded_positions: Set[str] = set()

    def record(self, trade: TradeRecord) -> bool:
        """
        Add a closed trade to the running totals

        Returns:
            False if this position was already recorded (no change)
        """
        if trade.position_id in self._recorded_positions:
            logger.warning(f"Trade for position {trade.position_id} already recorded, ignoring")
            return False
        self._recorded_positions.add(trade.position_id)

        if trade.result == TradeResult.WIN:
            self.win_count += 1
        else:
            self.loss_count += 1
        self.total_pnl += trade.pnl_amount
        return True

    def snapshot(self) -> StatsSnapshot:
        total = self.win_count + self.loss_count
        win_rate = (self.win_count / total) if total > 0 else None
        return StatsSnapshot(
            win_count=self.win_count,
            loss_count=self.loss_count,
            total_pnl=self.total_pnl,
            win_rate=win_rate,
        )

