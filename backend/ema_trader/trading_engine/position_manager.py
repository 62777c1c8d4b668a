"""
Position management for one symbol

Owns the FLAT/OPEN state machine:
- FLAT --(BUY/SELL)--> OPEN: entry, stop-loss/take-profit envelope, PnL monitor
- OPEN --(monitor close)--> FLAT: realized PnL, stats, ledger
Signals arriving while OPEN are rejected. Only the PnL monitor (or an
explicit shutdown close) moves a position back to FLAT.
"""

import logging
import random
from datetime import datetime
from typing import Callable, Optional, Tuple

from ema_trader.config import TradingConfig
from ema_trader.price_feeds.base import MarketDataSource
from ema_trader.services.pnl_monitor import EXIT_SHUTDOWN, PnLMonitor, calculate_pnl
from ema_trader.services.stats_aggregator import StatsAggregator
from ema_trader.services.trade_ledger import LedgerWriter
from ema_trader.trading_engine.types import (
    Position,
    PositionSide,
    PositionState,
    Signal,
    SymbolState,
    TradeRecord,
    TradeResult,
)

logger = logging.getLogger(__name__)


def calculate_envelope(
    side: PositionSide, entry_price: float, stop_loss_pct: float, risk_reward_ratio: float
) -> Tuple[float, float]:
    """
    Calculate stop-loss and take-profit prices

    Stop distance is stop_loss_pct of the entry; take-profit distance is
    the stop distance times risk_reward_ratio. LONG puts the stop below
    the entry, SHORT above.

    Returns:
        (stop_loss, take_profit)
    """
    stop_distance = entry_price * stop_loss_pct / 100
    target_distance = stop_distance * risk_reward_ratio
    if side == PositionSide.LONG:
        return entry_price - stop_distance, entry_price + target_distance
    return entry_price + stop_distance, entry_price - target_distance


class PositionManager:
    """FLAT/OPEN state machine for a single symbol"""

    def __init__(
        self,
        state: SymbolState,
        config: TradingConfig,
        market_data: MarketDataSource,
        stats: StatsAggregator,
        ledger_writer: LedgerWriter,
        rng: Optional[random.Random] = None,
        clock: Callable[[], datetime] = datetime.utcnow,
    ):
        self.state = state
        self.config = config
        self.market_data = market_data
        self.stats = stats
        self.ledger_writer = ledger_writer
        self.rng = rng or random.Random()
        self.clock = clock
        self.monitor: Optional[PnLMonitor] = None

    @property
    def symbol(self) -> str:
        return self.state.symbol

    @property
    def position(self) -> Optional[Position]:
        return self.state.position

    def _create_monitor(self, position: Position) -> PnLMonitor:
        return PnLMonitor(
            position,
            self,
            self.market_data,
            interval_seconds=self.config.pnl_check_interval_seconds,
            max_holding_seconds=self.config.max_holding_seconds,
            clock=self.clock,
        )

    def open_position(self, signal: Signal, latest_close: float) -> Optional[Position]:
        """
        FLAT -> OPEN on a BUY or SELL signal

        Args:
            signal: BUY opens LONG, SELL opens SHORT; HOLD is a no-op
            latest_close: Entry price

        Returns:
            The new Position, or None if the signal was rejected

        Raises:
            RuntimeError: the PnL monitor could not be scheduled (state rolled back to FLAT)
        """
        if signal == Signal.HOLD:
            return None
        if not self.state.is_flat:
            logger.warning(
                f"{self.symbol}: {signal.value} rejected, {self.state.position.side.value} position already open"
            )
            return None

        side = PositionSide.from_signal(signal)
        stop_loss_pct = self.rng.uniform(self.config.stop_loss_pct_min, self.config.stop_loss_pct_max)
        stop_loss, take_profit = calculate_envelope(
            side, latest_close, stop_loss_pct, self.config.risk_reward_ratio
        )
        position = Position(
            symbol=self.symbol,
            side=side,
            entry_price=latest_close,
            size=self.config.deposit_amount * self.config.leverage / latest_close,
            stop_loss=stop_loss,
            take_profit=take_profit,
            opened_at=self.clock(),
            deposit_amount=self.config.deposit_amount,
            leverage=self.config.leverage,
        )

        previous_action = self.state.last_action
        previous_streak = self.state.consecutive_same_side_entries

        self.state.position = position
        self.state.state = PositionState.OPEN
        if previous_action == signal:
            self.state.consecutive_same_side_entries = previous_streak + 1
        else:
            self.state.consecutive_same_side_entries = 1
        self.state.last_action = signal

        monitor = self._create_monitor(position)
        try:
            monitor.start()
        except Exception as e:
            # No position may stay OPEN without a monitor
            monitor.stop()
            self.state.position = None
            self.state.state = PositionState.FLAT
            self.state.last_action = previous_action
            self.state.consecutive_same_side_entries = previous_streak
            logger.error(f"{self.symbol}: could not start PnL monitor, open rolled back: {e}")
            raise RuntimeError(f"Failed to start PnL monitor for {self.symbol}") from e
        self.monitor = monitor

        logger.info(
            f"🟢 Opened {side.value} {self.symbol} @ {latest_close} "
            f"(SL {stop_loss:.6f} / TP {take_profit:.6f}, stop {stop_loss_pct:.2f}%, "
            f"size {position.size:.6f}, x{self.config.leverage:g})"
        )
        self.ledger_writer.submit_opened(position)
        return position

    async def close_position(
        self,
        position: Position,
        exit_price: float,
        reason: str,
        closed_at: Optional[datetime] = None,
    ) -> Optional[TradeRecord]:
        """
        OPEN -> FLAT

        Idempotent: closing a position that is no longer the open one
        returns None and changes nothing.

        Returns:
            The TradeRecord for this close, or None if already closed
        """
        if self.state.state != PositionState.OPEN or self.state.position is not position:
            logger.debug(f"{self.symbol}: close for position {position.id} ignored, not open")
            return None

        roi_percent, pnl_amount = calculate_pnl(position, exit_price)
        trade = TradeRecord(
            position_id=position.id,
            symbol=position.symbol,
            side=position.side,
            entry_price=position.entry_price,
            exit_price=exit_price,
            pnl_amount=pnl_amount,
            pnl_percent=roi_percent,
            result=TradeResult.WIN if pnl_amount >= 0 else TradeResult.LOSS,
            exit_reason=reason,
            stop_loss=position.stop_loss,
            take_profit=position.take_profit,
            deposit_amount=position.deposit_amount,
            leverage=position.leverage,
            opened_at=position.opened_at,
            closed_at=closed_at or self.clock(),
        )

        self.state.position = None
        self.state.state = PositionState.FLAT
        self.state.consecutive_same_side_entries = 0

        monitor, self.monitor = self.monitor, None
        if monitor is not None:
            monitor.stop()

        self.stats.record(trade)

        marker = "💰" if trade.result == TradeResult.WIN else "🔻"
        logger.info(
            f"{marker} Closed {position.side.value} {self.symbol} @ {exit_price} ({reason}): "
            f"PnL {pnl_amount:+.4f} ({roi_percent:+.2f}%) {trade.result.value}"
        )
        self.ledger_writer.submit_closed(trade)
        return trade

    def resume_monitor(self):
        """Restart monitoring for a position that survived an engine stop"""
        position = self.state.position
        if position is None or (self.monitor is not None and self.monitor.running):
            return
        monitor = self._create_monitor(position)
        monitor.start()
        self.monitor = monitor

    async def shutdown(self) -> Optional[TradeRecord]:
        """
        Stop monitoring the open position (if any)

        With close_on_shutdown the position is closed at the latest price;
        otherwise it stays OPEN until resume_monitor() is called.
        """
        monitor, self.monitor = self.monitor, None
        if monitor is not None:
            monitor.stop()

        position = self.state.position
        if position is None or not self.config.close_on_shutdown:
            return None

        price = await self.market_data.get_latest_price(self.symbol)
        return await self.close_position(position, price, EXIT_SHUTDOWN)
