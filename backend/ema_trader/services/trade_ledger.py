"""
Trade Ledger

Durable record of opened and closed positions. The engine treats the
ledger as fire-and-observe: every failure surfaces as PersistenceError,
which the caller logs without touching trading state.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Optional, Set

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ema_trader.exceptions import PersistenceError
from ema_trader.models import Trade
from ema_trader.trading_engine.types import Position, PositionSide, Signal, TradeRecord

logger = logging.getLogger(__name__)


class TradeLedger(ABC):
    """Abstract trade ledger"""

    @abstractmethod
    async def record_opened(self, position: Position) -> None:
        """Persist a newly opened position"""
        pass

    @abstractmethod
    async def record(self, trade: TradeRecord) -> None:
        """Persist a closed trade"""
        pass


class SqlTradeLedger(TradeLedger):
    """Trade ledger backed by the `trades` table"""

    def __init__(self, session_maker: async_sessionmaker):
        self.session_maker = session_maker

    async def record_opened(self, position: Position) -> None:
        try:
            async with self.session_maker() as db:
                db.add(
                    Trade(
                        position_id=position.id,
                        symbol=position.symbol,
                        action=position.action.value,
                        status="open",
                        entry_price=position.entry_price,
                        deposit_amount=position.deposit_amount,
                        margin=position.leverage,
                        size=position.size,
                        take_profit=position.take_profit,
                        stop_loss=position.stop_loss,
                        timestamp=position.opened_at,
                    )
                )
                await db.commit()
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to record opened position {position.id}: {e}") from e

        logger.debug(f"Ledger: recorded open {position.symbol} position {position.id}")

    async def record(self, trade: TradeRecord) -> None:
        try:
            async with self.session_maker() as db:
                row = await self._get_trade(db, trade.position_id)
                if row is None:
                    # Open event never made it to the ledger; write the full row now
                    action = Signal.BUY if trade.side == PositionSide.LONG else Signal.SELL
                    row = Trade(
                        position_id=trade.position_id,
                        symbol=trade.symbol,
                        action=action.value,
                        entry_price=trade.entry_price,
                        deposit_amount=trade.deposit_amount,
                        margin=trade.leverage,
                        take_profit=trade.take_profit,
                        stop_loss=trade.stop_loss,
                        timestamp=trade.opened_at,
                    )
                    db.add(row)

                row.status = "closed"
                row.exit_price = trade.exit_price
                row.closed_at = trade.closed_at
                row.profit_loss_amount = trade.pnl_amount
                row.profit_loss_percent = trade.pnl_percent
                row.result = trade.result.value
                row.exit_reason = trade.exit_reason
                await db.commit()
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to record closed trade {trade.position_id}: {e}") from e

        logger.debug(f"Ledger: recorded close {trade.symbol} position {trade.position_id}")

    async def _get_trade(self, db: AsyncSession, position_id: str) -> Optional[Trade]:
        result = await db.execute(select(Trade).where(Trade.position_id == position_id))
        return result.scalars().first()


class LedgerWriter:
    """
    Schedules ledger writes off the trading path.

    Each write runs as its own asyncio task so a slow or failing ledger
    never delays a state transition. Failures are logged and counted,
    never retried.
    """

    def __init__(self, ledger: Optional[TradeLedger]):
        self.ledger = ledger
        self.failures = 0
        self._pending: Set[asyncio.Task] = set()
        # Writes for one position must land in order (open before close)
        self._lock = asyncio.Lock()

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def submit_opened(self, position: Position):
        if self.ledger is not None:
            self._schedule(self.ledger.record_opened(position), f"open {position.symbol} {position.id}")

    def submit_closed(self, trade: TradeRecord):
        if self.ledger is not None:
            self._schedule(self.ledger.record(trade), f"close {trade.symbol} {trade.position_id}")

    def _schedule(self, coro, description: str):
        task = asyncio.get_running_loop().create_task(self._write(coro, description))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _write(self, coro, description: str):
        try:
            async with self._lock:
                await coro
        except PersistenceError as e:
            self.failures += 1
            logger.error(f"Ledger write failed ({description}): {e.message}")
        except Exception as e:
            self.failures += 1
            logger.error(f"Unexpected ledger error ({description}): {e}", exc_info=True)

    async def flush(self):
        """Wait for every scheduled write to finish"""
        while self._pending:
            await asyncio.gather(*list(self._pending))
