"""
Multi-Symbol Monitor

Schedules one signal-evaluation tick per tracked symbol, evaluates the
EMA strategy on fresh candles and hands BUY/SELL signals to the symbol's
PositionManager. Owns every SymbolState for the lifetime of the process.
"""

import asyncio
import logging
import random
from datetime import datetime
from functools import partial
from typing import Callable, Dict, Optional

from ema_trader.config import TradingConfig
from ema_trader.exceptions import ConfigurationError, DataUnavailableError, InsufficientDataError
from ema_trader.indicator_calculator import IndicatorCalculator
from ema_trader.price_feeds.base import MarketDataSource
from ema_trader.schemas.status import (
    EngineStatus,
    PositionResponse,
    PricePointResponse,
    StatsResponse,
    SymbolStatus,
)
from ema_trader.services.periodic_task import PeriodicTask
from ema_trader.services.stats_aggregator import StatsAggregator
from ema_trader.services.trade_ledger import LedgerWriter, TradeLedger
from ema_trader.trading_engine.position_manager import PositionManager
from ema_trader.trading_engine.signal_processor import generate_signal
from ema_trader.trading_engine.types import Signal, SymbolState

logger = logging.getLogger(__name__)


class MultiSymbolMonitor:
    """
    Monitor prices and signals for every configured symbol.

    Each symbol gets its own periodic tick and its own PositionManager;
    open positions get their own PnL monitor from the manager.
    """

    def __init__(
        self,
        market_data: MarketDataSource,
        ledger: Optional[TradeLedger] = None,
        stats: Optional[StatsAggregator] = None,
        indicator_calculator: Optional[IndicatorCalculator] = None,
        rng: Optional[random.Random] = None,
        clock: Callable[[], datetime] = datetime.utcnow,
    ):
        """
        Initialize multi-symbol monitor

        Args:
            market_data: Candle / latest price source
            ledger: Trade ledger for opened and closed positions (None to skip persistence)
            stats: Shared stats aggregator
            indicator_calculator: EMA calculator
            rng: Random source for stop-loss distances
            clock: Current time source
        """
        self.market_data = market_data
        self.ledger_writer = LedgerWriter(ledger)
        self.stats = stats or StatsAggregator()
        self.indicators = indicator_calculator or IndicatorCalculator()
        self.rng = rng or random.Random()
        self.clock = clock

        self.config: Optional[TradingConfig] = None
        self.running = False
        self.states: Dict[str, SymbolState] = {}
        self.managers: Dict[str, PositionManager] = {}
        self.tasks: Dict[str, PeriodicTask] = {}
        self.last_errors: Dict[str, str] = {}
        # Serializes start()/stop() across their awaits
        self._lifecycle_lock = asyncio.Lock()

    async def validate_symbols(self, config: TradingConfig):
        """
        Make sure the venue lists every configured symbol

        Raises:
            ConfigurationError: a symbol is unknown to the venue
        """
        for symbol in config.symbols:
            try:
                exists = await self.market_data.symbol_exists(symbol)
            except DataUnavailableError as e:
                logger.warning(f"Could not validate symbol {symbol} ({e.message}), continuing")
                continue
            if not exists:
                raise ConfigurationError(f"Unknown symbol {symbol} on {self.market_data.name}")

    async def start(self, config: TradingConfig):
        """
        Start ticking every configured symbol

        Concurrent calls are serialized; only the first one starts the engine.

        Raises:
            ConfigurationError: invalid configuration; the engine stays stopped
        """
        async with self._lifecycle_lock:
            await self._start(config)

    async def _start(self, config: TradingConfig):
        if self.running:
            logger.info("Multi-symbol monitor already running")
            return
        if not isinstance(config, TradingConfig):
            raise ConfigurationError("start() requires a TradingConfig")

        for symbol, state in self.states.items():
            if symbol not in config.symbols and state.position is not None:
                raise ConfigurationError(f"{symbol} has an open position and cannot be dropped")

        await self.validate_symbols(config)

        states: Dict[str, SymbolState] = {}
        managers: Dict[str, PositionManager] = {}
        for symbol in config.symbols:
            state = self.states.get(symbol) or SymbolState(
                symbol=symbol, price_history_size=config.price_history_size
            )
            states[symbol] = state
            managers[symbol] = PositionManager(
                state,
                config,
                self.market_data,
                self.stats,
                self.ledger_writer,
                rng=self.rng,
                clock=self.clock,
            )

        self.config = config
        self.states = states
        self.managers = managers
        self.running = True

        for symbol, manager in managers.items():
            manager.resume_monitor()
            existing = self.tasks.get(symbol)
            if existing is not None:
                existing.cancel()
            self.tasks[symbol] = PeriodicTask(
                f"tick:{symbol}", config.tick_interval_seconds, partial(self.tick, symbol)
            ).start()

        logger.info(
            f"🚀 Trading engine started for {', '.join(config.symbols)} "
            f"(EMA {config.ema_fast_period}/{config.ema_slow_period}"
            f"{f'/{config.ema_trend_period}' if config.use_trend_filter else ''}, "
            f"tick: {config.tick_interval_seconds}s, PnL check: {config.pnl_check_interval_seconds}s)"
        )

    async def stop(self):
        """Stop every tick and PnL monitor"""
        async with self._lifecycle_lock:
            await self._stop()

    async def _stop(self):
        if not self.running:
            return
        self.running = False

        tasks = list(self.tasks.values())
        self.tasks = {}
        for task in tasks:
            task.cancel()
        await asyncio.gather(*(task.wait_stopped() for task in tasks))

        for symbol, manager in self.managers.items():
            try:
                await manager.shutdown()
            except DataUnavailableError as e:
                logger.warning(f"Could not close {symbol} on shutdown: {e.message}")

        await self.ledger_writer.flush()
        logger.info("🛑 Trading engine stopped")

    async def tick(self, symbol: str) -> Optional[Signal]:
        """
        Evaluate one symbol

        Dropped (returns None) if the previous tick for this symbol is
        still in flight.

        Returns:
            The signal derived this tick, or None if the tick was skipped
        """
        state = self.states.get(symbol)
        if state is None:
            raise ValueError(f"{symbol} is not a tracked symbol")
        if state.tick_in_flight:
            logger.debug(f"{symbol}: previous tick still running, dropping this one")
            return None

        state.tick_in_flight = True
        try:
            return await self._evaluate(symbol, state)
        finally:
            state.tick_in_flight = False

    async def _evaluate(self, symbol: str, state: SymbolState) -> Optional[Signal]:
        config = self.config
        if config is None or not self.running:
            return None

        try:
            candles = await self.market_data.get_candles(
                symbol, config.candle_interval, config.candle_limit
            )
        except DataUnavailableError as e:
            logger.warning(f"⚠️ {symbol}: market data unavailable, skipping tick ({e.message})")
            self.last_errors[symbol] = e.message
            return None

        if not self.running:
            return None

        closes = [candle.close for candle in candles]
        trend_period = config.ema_trend_period if config.use_trend_filter else None
        try:
            snapshot = self.indicators.calculate_snapshot(
                closes, config.ema_fast_period, config.ema_slow_period, trend_period
            )
        except InsufficientDataError as e:
            logger.warning(f"⚠️ {symbol}: {e.message}, skipping signal evaluation")
            self.last_errors[symbol] = e.message
            return None

        self.last_errors.pop(symbol, None)
        state.record_price(self.clock(), snapshot.latest_close)

        signal = generate_signal(
            snapshot,
            state,
            max_consecutive=config.max_consecutive_entries,
            use_trend_filter=config.use_trend_filter,
            allow_short=config.allow_short,
        )
        state.last_signal = signal

        logger.info(
            f"📈 {symbol} close={snapshot.latest_close} "
            f"EMA{config.ema_fast_period}={snapshot.ema_fast:.6f} "
            f"EMA{config.ema_slow_period}={snapshot.ema_slow:.6f} -> {signal.value}"
        )

        if signal != Signal.HOLD:
            logger.info(f"🔔 {signal.value} Signal Detected for {symbol} at {snapshot.latest_close}")
            try:
                self.managers[symbol].open_position(signal, snapshot.latest_close)
            except RuntimeError as e:
                logger.error(f"{symbol}: {e}")
                self.last_errors[symbol] = str(e)

        return signal

    def get_status(self) -> EngineStatus:
        """Read-only view of every symbol plus running stats"""
        symbols = []
        for symbol, state in self.states.items():
            position_view = None
            if state.position is not None:
                position = state.position
                manager = self.managers.get(symbol)
                monitor = manager.monitor if manager else None
                position_view = PositionResponse(
                    id=position.id,
                    symbol=position.symbol,
                    side=position.side.value,
                    entry_price=position.entry_price,
                    size=position.size,
                    stop_loss=position.stop_loss,
                    take_profit=position.take_profit,
                    opened_at=position.opened_at,
                    deposit_amount=position.deposit_amount,
                    leverage=position.leverage,
                    mark_price=monitor.last_price if monitor else None,
                    roi_percent=monitor.roi_percent if monitor else None,
                    unrealized_pnl=monitor.unrealized_pnl if monitor else None,
                    monitor_running=bool(monitor and monitor.running),
                )

            symbols.append(
                SymbolStatus(
                    symbol=symbol,
                    state=state.state.value,
                    last_action=state.last_action.value if state.last_action else None,
                    consecutive_same_side_entries=state.consecutive_same_side_entries,
                    last_signal=state.last_signal.value if state.last_signal else None,
                    last_error=self.last_errors.get(symbol),
                    position=position_view,
                    price_history=[
                        PricePointResponse(time=p.time, price=p.price) for p in state.price_history
                    ],
                )
            )

        stats = self.stats.snapshot()
        return EngineStatus(
            running=self.running,
            symbols=symbols,
            stats=StatsResponse(
                win_count=stats.win_count,
                loss_count=stats.loss_count,
                total_trades=stats.total_trades,
                win_rate=stats.win_rate,
                total_pnl=stats.total_pnl,
            ),
            ledger_failures=self.ledger_writer.failures,
        )
