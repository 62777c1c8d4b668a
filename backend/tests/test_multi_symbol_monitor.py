"""
Tests for backend/ema_trader/multi_symbol_monitor.py

Ticks are driven by calling tick() directly; the scheduled ticks use a
one-hour interval so they never fire during a test.
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from ema_trader.exceptions import ConfigurationError, DataUnavailableError
from ema_trader.multi_symbol_monitor import MultiSymbolMonitor
from ema_trader.services.pnl_monitor import PnLMonitor
from ema_trader.services.trade_ledger import TradeLedger
from ema_trader.trading_engine.types import PositionState, Signal


RISING = [100.0 + 2 * i for i in range(51)]  # 100, 102, ..., 200
FALLING = list(reversed(RISING))


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def mock_ledger():
    ledger = MagicMock(spec=TradeLedger)
    ledger.record_opened = AsyncMock()
    ledger.record = AsyncMock()
    return ledger


@pytest.fixture
async def engine(mock_market_data, mock_ledger, fixed_rng, clock):
    monitor = MultiSymbolMonitor(mock_market_data, ledger=mock_ledger, rng=fixed_rng, clock=clock)
    yield monitor
    await monitor.stop()
    for manager in monitor.managers.values():
        if manager.monitor is not None:
            manager.monitor.stop()


@pytest.fixture
def serve_candles(mock_market_data, make_candles):
    """Make the mock feed return these closes as candles."""
    def _serve(closes):
        mock_market_data.get_candles.side_effect = None
        mock_market_data.get_candles.return_value = make_candles(closes)
    return _serve


# ---------------------------------------------------------------------------
# start / stop
# ---------------------------------------------------------------------------


class TestStart:
    """Tests for MultiSymbolMonitor.start()."""

    @pytest.mark.asyncio
    async def test_start_tracks_symbols(self, engine, make_config):
        config = make_config(symbols=["BTCUSDT", "ethusdt"])
        await engine.start(config)

        assert engine.running is True
        assert set(engine.states) == {"BTCUSDT", "ETHUSDT"}
        assert set(engine.tasks) == {"BTCUSDT", "ETHUSDT"}
        assert all(task.running for task in engine.tasks.values())
        assert engine.states["BTCUSDT"].state == PositionState.FLAT

    @pytest.mark.asyncio
    async def test_start_twice_is_noop(self, engine, trading_config):
        await engine.start(trading_config)
        tasks = dict(engine.tasks)
        await engine.start(trading_config)
        assert engine.tasks == tasks

    @pytest.mark.asyncio
    async def test_concurrent_starts_create_one_tick(self, engine, trading_config, mock_market_data):
        """Edge case: overlapping start() calls leave one tick task per symbol."""
        release = asyncio.Event()

        async def slow_symbol_exists(symbol):
            await release.wait()
            return True

        mock_market_data.symbol_exists.side_effect = slow_symbol_exists

        def live_ticks():
            return [
                t for t in asyncio.all_tasks()
                if t.get_name() == "tick:BTCUSDT" and not t.done()
            ]

        starts = asyncio.gather(engine.start(trading_config), engine.start(trading_config))
        await asyncio.sleep(0)
        release.set()
        await starts

        assert len(live_ticks()) == 1
        assert mock_market_data.symbol_exists.await_count == 1

        await engine.stop()
        assert live_ticks() == []

    @pytest.mark.asyncio
    async def test_start_during_stop_waits(self, engine, trading_config):
        await engine.start(trading_config)
        await asyncio.gather(engine.stop(), engine.start(trading_config))

        assert engine.running is True
        assert len(engine.tasks) == 1
        assert engine.tasks["BTCUSDT"].running is True

    @pytest.mark.asyncio
    async def test_unknown_symbol_rejected(self, engine, trading_config, mock_market_data):
        """Failure: a symbol the venue does not list keeps the engine stopped."""
        mock_market_data.symbol_exists.return_value = False

        with pytest.raises(ConfigurationError, match="Unknown symbol BTCUSDT"):
            await engine.start(trading_config)

        assert engine.running is False
        assert engine.tasks == {}

    @pytest.mark.asyncio
    async def test_validation_unavailable_continues(self, engine, trading_config, mock_market_data):
        """Edge case: venue unreachable at startup is not a configuration error."""
        mock_market_data.symbol_exists.side_effect = DataUnavailableError("timeout")
        await engine.start(trading_config)
        assert engine.running is True

    @pytest.mark.asyncio
    async def test_non_config_rejected(self, engine):
        with pytest.raises(ConfigurationError):
            await engine.start({"symbols": ["BTCUSDT"]})
        assert engine.running is False

    @pytest.mark.asyncio
    async def test_cannot_drop_symbol_with_open_position(self, engine, trading_config, make_config, serve_candles):
        serve_candles(RISING)
        await engine.start(trading_config)
        await engine.tick("BTCUSDT")
        await engine.stop()

        with pytest.raises(ConfigurationError, match="open position"):
            await engine.start(make_config(symbols=["ETHUSDT"]))


class TestStop:
    """Tests for MultiSymbolMonitor.stop()."""

    @pytest.mark.asyncio
    async def test_stop_cancels_ticks(self, engine, trading_config):
        await engine.start(trading_config)
        tasks = list(engine.tasks.values())

        await engine.stop()

        assert engine.running is False
        assert engine.tasks == {}
        assert all(task.cancelled for task in tasks)
        assert all(task.task.done() for task in tasks)

    @pytest.mark.asyncio
    async def test_stop_twice_is_noop(self, engine, trading_config):
        await engine.start(trading_config)
        await engine.stop()
        await engine.stop()
        assert engine.running is False

    @pytest.mark.asyncio
    async def test_position_survives_stop_and_resumes(self, engine, trading_config, serve_candles):
        """Happy path: without close_on_shutdown the position outlives the engine."""
        serve_candles(RISING)
        await engine.start(trading_config)
        await engine.tick("BTCUSDT")
        position = engine.states["BTCUSDT"].position

        await engine.stop()
        manager = engine.managers["BTCUSDT"]
        assert engine.states["BTCUSDT"].position is position
        assert manager.monitor is None

        await engine.start(trading_config)
        assert engine.states["BTCUSDT"].position is position
        assert engine.managers["BTCUSDT"].monitor.running is True

    @pytest.mark.asyncio
    async def test_close_on_shutdown(self, engine, make_config, serve_candles, mock_market_data, mock_ledger):
        serve_candles(RISING)
        await engine.start(make_config(close_on_shutdown=True))
        await engine.tick("BTCUSDT")
        mock_market_data.get_latest_price.return_value = 201.0

        await engine.stop()

        assert engine.states["BTCUSDT"].state == PositionState.FLAT
        assert engine.stats.snapshot().total_trades == 1
        mock_ledger.record.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_close_on_shutdown_price_unavailable(self, engine, make_config, serve_candles, mock_market_data):
        """Failure: shutdown still completes when the close price cannot be fetched."""
        serve_candles(RISING)
        await engine.start(make_config(close_on_shutdown=True))
        await engine.tick("BTCUSDT")
        mock_market_data.get_latest_price.side_effect = DataUnavailableError("down")

        await engine.stop()

        assert engine.running is False
        assert engine.states["BTCUSDT"].state == PositionState.OPEN


# ---------------------------------------------------------------------------
# tick
# ---------------------------------------------------------------------------


class TestTick:
    """Tests for MultiSymbolMonitor.tick()."""

    @pytest.mark.asyncio
    async def test_rising_prices_open_one_long(self, engine, trading_config, serve_candles, clock):
        """Scenario: monotonic rise gives BUY, one FLAT->OPEN, never SELL."""
        await engine.start(trading_config)

        signals = []
        for end in range(4, len(RISING) + 1):
            serve_candles(RISING[:end])
            signals.append(await engine.tick("BTCUSDT"))
            clock.advance(60)

        assert signals[0] == Signal.BUY
        assert Signal.SELL not in signals
        assert all(s == Signal.HOLD for s in signals[1:])

        state = engine.states["BTCUSDT"]
        assert state.state == PositionState.OPEN
        assert state.position.entry_price == 106.0
        assert state.consecutive_same_side_entries == 1
        assert len(state.price_history) == len(signals)

    @pytest.mark.asyncio
    async def test_falling_prices_open_short(self, engine, trading_config, serve_candles):
        serve_candles(FALLING)
        await engine.start(trading_config)
        assert await engine.tick("BTCUSDT") == Signal.SELL
        assert engine.states["BTCUSDT"].position.side.value == "SHORT"

    @pytest.mark.asyncio
    async def test_short_disabled(self, engine, make_config, serve_candles):
        serve_candles(FALLING)
        await engine.start(make_config(allow_short=False))
        assert await engine.tick("BTCUSDT") == Signal.HOLD
        assert engine.states["BTCUSDT"].state == PositionState.FLAT

    @pytest.mark.asyncio
    async def test_trend_filter(self, engine, make_config, serve_candles):
        serve_candles(RISING)
        await engine.start(make_config(use_trend_filter=True))
        assert await engine.tick("BTCUSDT") == Signal.BUY

    @pytest.mark.asyncio
    async def test_feed_failure_leaves_state_unchanged(self, engine, trading_config, serve_candles, mock_market_data):
        """Scenario: tick N fails, state untouched; tick N+1 recovers."""
        await engine.start(trading_config)
        state = engine.states["BTCUSDT"]
        state.last_action = Signal.SELL
        before = (
            state.state,
            state.last_action,
            state.consecutive_same_side_entries,
            state.last_signal,
            list(state.price_history),
        )

        mock_market_data.get_candles.side_effect = DataUnavailableError("Binance HTTP 502")
        assert await engine.tick("BTCUSDT") is None

        after = (
            state.state,
            state.last_action,
            state.consecutive_same_side_entries,
            state.last_signal,
            list(state.price_history),
        )
        assert after == before
        assert engine.get_status().symbols[0].last_error == "Binance HTTP 502"

        serve_candles(RISING)
        assert await engine.tick("BTCUSDT") == Signal.BUY
        assert state.state == PositionState.OPEN
        assert engine.get_status().symbols[0].last_error is None

    @pytest.mark.asyncio
    async def test_insufficient_candles_skips(self, engine, trading_config, serve_candles):
        serve_candles([100.0, 101.0, 102.0])  # slow period is 4
        await engine.start(trading_config)

        assert await engine.tick("BTCUSDT") is None

        state = engine.states["BTCUSDT"]
        assert len(state.price_history) == 0
        assert state.last_signal is None
        assert engine.last_errors["BTCUSDT"]

    @pytest.mark.asyncio
    async def test_overlapping_tick_dropped(self, engine, trading_config, mock_market_data, make_candles):
        """Edge case: a tick arriving while the previous one runs is dropped."""
        release = asyncio.Event()

        async def slow_candles(symbol, interval, limit):
            await release.wait()
            return make_candles(RISING)

        mock_market_data.get_candles.side_effect = slow_candles
        await engine.start(trading_config)

        first = asyncio.ensure_future(engine.tick("BTCUSDT"))
        await asyncio.sleep(0)
        assert engine.states["BTCUSDT"].tick_in_flight is True

        assert await engine.tick("BTCUSDT") is None
        release.set()
        assert await first == Signal.BUY
        assert mock_market_data.get_candles.await_count == 1
        assert engine.states["BTCUSDT"].tick_in_flight is False

    @pytest.mark.asyncio
    async def test_unknown_symbol_raises(self, engine, trading_config):
        await engine.start(trading_config)
        with pytest.raises(ValueError):
            await engine.tick("DOGEUSDT")

    @pytest.mark.asyncio
    async def test_tick_after_stop_ignored(self, engine, trading_config, serve_candles):
        serve_candles(RISING)
        await engine.start(trading_config)
        await engine.stop()
        assert await engine.tick("BTCUSDT") is None
        assert engine.states["BTCUSDT"].state == PositionState.FLAT

    @pytest.mark.asyncio
    async def test_monitor_start_failure_recorded(self, engine, trading_config, serve_candles):
        """Failure: open rolled back, tick still returns the signal."""
        serve_candles(RISING)
        await engine.start(trading_config)

        with patch.object(PnLMonitor, "start", side_effect=RuntimeError("no loop")):
            assert await engine.tick("BTCUSDT") == Signal.BUY

        assert engine.states["BTCUSDT"].state == PositionState.FLAT
        assert "Failed to start PnL monitor" in engine.last_errors["BTCUSDT"]

    @pytest.mark.asyncio
    async def test_open_written_to_ledger(self, engine, trading_config, serve_candles, mock_ledger):
        serve_candles(RISING)
        await engine.start(trading_config)
        await engine.tick("BTCUSDT")
        await engine.ledger_writer.flush()
        mock_ledger.record_opened.assert_awaited_once_with(engine.states["BTCUSDT"].position)

    @pytest.mark.asyncio
    async def test_symbols_are_independent(self, engine, make_config, mock_market_data, make_candles):
        async def candles_for(symbol, interval, limit):
            return make_candles(RISING if symbol == "BTCUSDT" else FALLING)

        mock_market_data.get_candles.side_effect = candles_for
        await engine.start(make_config(symbols=["BTCUSDT", "ETHUSDT"]))

        assert await engine.tick("BTCUSDT") == Signal.BUY
        assert await engine.tick("ETHUSDT") == Signal.SELL
        assert engine.states["BTCUSDT"].position.side.value == "LONG"
        assert engine.states["ETHUSDT"].position.side.value == "SHORT"


# ---------------------------------------------------------------------------
# Full cycle
# ---------------------------------------------------------------------------


class TestFullCycle:
    """Signal -> open -> PnL monitor close -> stats."""

    @pytest.mark.asyncio
    async def test_take_profit_round_trip(self, engine, trading_config, serve_candles, mock_market_data, mock_ledger):
        serve_candles(RISING)
        await engine.start(trading_config)
        await engine.tick("BTCUSDT")

        manager = engine.managers["BTCUSDT"]
        entry = manager.position.entry_price
        mock_market_data.get_latest_price.return_value = manager.position.take_profit
        trade = await manager.monitor.check()
        await engine.ledger_writer.flush()

        assert trade.result.value == "WIN"
        assert trade.pnl_percent == pytest.approx((trade.exit_price - entry) / entry * 100 * 10.0)
        status = engine.get_status()
        assert status.symbols[0].state == "FLAT"
        assert status.stats.win_count == 1
        assert status.stats.win_rate == 1.0
        mock_ledger.record.assert_awaited_once_with(trade)


# ---------------------------------------------------------------------------
# get_status
# ---------------------------------------------------------------------------


class TestGetStatus:
    """Tests for MultiSymbolMonitor.get_status()."""

    @pytest.mark.asyncio
    async def test_status_before_start(self, engine):
        status = engine.get_status()
        assert status.running is False
        assert status.symbols == []
        assert status.stats.total_trades == 0
        assert status.stats.win_rate is None

    @pytest.mark.asyncio
    async def test_status_with_open_position(self, engine, trading_config, serve_candles, mock_market_data):
        serve_candles(RISING)
        await engine.start(trading_config)
        await engine.tick("BTCUSDT")
        mock_market_data.get_latest_price.return_value = 201.0
        await engine.managers["BTCUSDT"].monitor.check()

        status = engine.get_status()
        symbol = status.symbols[0]

        assert status.running is True
        assert symbol.symbol == "BTCUSDT"
        assert symbol.state == "OPEN"
        assert symbol.last_action == "BUY"
        assert symbol.last_signal == "BUY"
        assert symbol.consecutive_same_side_entries == 1
        assert symbol.position.side == "LONG"
        assert symbol.position.entry_price == 200.0
        assert symbol.position.mark_price == 201.0
        assert symbol.position.monitor_running is True
        assert len(symbol.price_history) == 1
        assert symbol.price_history[0].price == 200.0

    @pytest.mark.asyncio
    async def test_status_is_read_only(self, engine, trading_config, serve_candles):
        serve_candles(RISING)
        await engine.start(trading_config)
        await engine.tick("BTCUSDT")
        state = engine.states["BTCUSDT"]

        status = engine.get_status()
        status.symbols[0].price_history.clear()

        assert len(state.price_history) == 1
