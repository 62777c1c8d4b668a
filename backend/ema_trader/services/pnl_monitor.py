"""
PnL monitor for a single open position

Re-prices the position every `interval_seconds` and closes it through
the PositionManager once the mark price crosses take-profit or
stop-loss, or once the position has been held longer than
`max_holding_seconds`.
"""

import logging
from datetime import datetime
from typing import TYPE_CHECKING, Callable, Optional, Tuple

from ema_trader.exceptions import DataUnavailableError
from ema_trader.price_feeds.base import MarketDataSource
from ema_trader.services.periodic_task import PeriodicTask
from ema_trader.trading_engine.types import Position, PositionSide, TradeRecord

if TYPE_CHECKING:
    from ema_trader.trading_engine.position_manager import PositionManager

logger = logging.getLogger(__name__)

EXIT_TAKE_PROFIT = "take_profit"
EXIT_STOP_LOSS = "stop_loss"
EXIT_MAX_HOLDING = "max_holding_time"
EXIT_SHUTDOWN = "shutdown"


def calculate_pnl(position: Position, mark_price: float) -> Tuple[float, float]:
    """
    Calculate leveraged ROI and PnL for a position at a mark price

    ROI% = (mark - entry) / entry * 100 * leverage, negated for SHORT
    PnL  = ROI% / 100 * deposit

    Returns:
        (roi_percent, pnl_amount)
    """
    roi_percent = (mark_price - position.entry_price) / position.entry_price * 100 * position.leverage
    if position.side == PositionSide.SHORT:
        roi_percent = -roi_percent
    pnl_amount = roi_percent / 100 * position.deposit_amount
    return roi_percent, pnl_amount


class PnLMonitor:
    """Monitor one open position against its exit envelope"""

    def __init__(
        self,
        position: Position,
        position_manager: "PositionManager",
        market_data: MarketDataSource,
        interval_seconds: float = 5.0,
        max_holding_seconds: float = 3600.0,
        clock: Callable[[], datetime] = datetime.utcnow,
    ):
        self.position = position
        self.position_manager = position_manager
        self.market_data = market_data
        self.interval_seconds = interval_seconds
        self.max_holding_seconds = max_holding_seconds
        self.clock = clock
        self.task: Optional[PeriodicTask] = None

        # Latest observation, for the status API
        self.last_price: Optional[float] = None
        self.roi_percent: Optional[float] = None
        self.unrealized_pnl: Optional[float] = None
        self.last_checked_at: Optional[datetime] = None

    @property
    def running(self) -> bool:
        return self.task is not None and self.task.running

    def start(self):
        """
        Schedule the recurring check

        Raises:
            RuntimeError: the check could not be scheduled
        """
        if self.task is not None:
            return
        self.task = PeriodicTask(
            f"pnl:{self.position.symbol}:{self.position.id[:8]}",
            self.interval_seconds,
            self.check,
        ).start()
        logger.info(
            f"PnL monitor started for {self.position.symbol} {self.position.side.value} "
            f"(interval: {self.interval_seconds}s)"
        )

    def stop(self) -> bool:
        """Cancel the recurring check. Returns False if it was already stopped."""
        if self.task is None:
            return False
        return self.task.cancel()

    def evaluate_exit(self, mark_price: float, now: datetime) -> Optional[str]:
        """Return the exit reason if the position should close at this mark, else None"""
        position = self.position
        if position.side == PositionSide.LONG:
            if mark_price >= position.take_profit:
                return EXIT_TAKE_PROFIT
            if mark_price <= position.stop_loss:
                return EXIT_STOP_LOSS
        else:
            if mark_price <= position.take_profit:
                return EXIT_TAKE_PROFIT
            if mark_price >= position.stop_loss:
                return EXIT_STOP_LOSS

        held_seconds = (now - position.opened_at).total_seconds()
        if held_seconds > self.max_holding_seconds:
            return EXIT_MAX_HOLDING

        return None

    async def check(self) -> Optional[TradeRecord]:
        """
        Re-price the position and close it if an exit condition is met

        Returns:
            The TradeRecord if this check closed the position, else None
        """
        if self.position_manager.position is not self.position:
            # Closed elsewhere (e.g. shutdown); nothing left to watch
            self.stop()
            return None

        symbol = self.position.symbol
        try:
            mark_price = await self.market_data.get_latest_price(symbol)
        except DataUnavailableError as e:
            logger.warning(f"PnL check skipped for {symbol}: {e.message}")
            return None

        now = self.clock()
        roi_percent, pnl_amount = calculate_pnl(self.position, mark_price)
        self.last_price = mark_price
        self.roi_percent = roi_percent
        self.unrealized_pnl = pnl_amount
        self.last_checked_at = now

        reason = self.evaluate_exit(mark_price, now)
        if reason is None:
            logger.debug(
                f"{symbol} {self.position.side.value} mark={mark_price} "
                f"ROI={roi_percent:+.2f}% PnL={pnl_amount:+.4f}"
            )
            return None

        logger.info(f"🔔 {symbol} exit condition {reason} at {mark_price} (ROI {roi_percent:+.2f}%)")
        self.stop()
        return await self.position_manager.close_position(self.position, mark_price, reason, closed_at=now)
