"""
Shared test fixtures for the trading engine tests.

Provides reusable fixtures for:
- Async database sessions (in-memory SQLite)
- Mock market data sources
- Deterministic clock and random source
- Trading configuration and candle factories
"""

import random
from datetime import datetime, timedelta

import pytest
from unittest.mock import AsyncMock, MagicMock
from sqlalchemy.ext.asyncio import (
    create_async_engine,
    AsyncSession,
    async_sessionmaker,
)

from ema_trader.config import TradingConfig
from ema_trader.price_feeds.base import MarketDataSource
from ema_trader.trading_engine.types import Candle


# ---------------------------------------------------------------------------
# Database fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
async def async_engine():
    """Create an in-memory async SQLite engine for testing."""
    from ema_trader.models import Base

    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        echo=False,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture
def session_maker(async_engine):
    """Session factory bound to the in-memory engine."""
    return async_sessionmaker(async_engine, class_=AsyncSession, expire_on_commit=False)


# ---------------------------------------------------------------------------
# Clock / randomness
# ---------------------------------------------------------------------------


class FakeClock:
    """Manually advanced clock."""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float):
        self.now += timedelta(seconds=seconds)


@pytest.fixture
def clock():
    return FakeClock(datetime(2024, 1, 1, 12, 0, 0))


@pytest.fixture
def fixed_rng():
    """Random source whose uniform() always returns the lower bound."""
    rng = MagicMock(spec=random.Random)
    rng.uniform.side_effect = lambda a, b: a
    return rng


# ---------------------------------------------------------------------------
# Trading configuration
# ---------------------------------------------------------------------------


@pytest.fixture
def make_config():
    """Build a TradingConfig with test-friendly defaults."""
    def _make_config(**overrides):
        values = {
            "symbols": ["BTCUSDT"],
            "ema_fast_period": 2,
            "ema_slow_period": 4,
            "ema_trend_period": 6,
            "candle_limit": 60,
            "tick_interval_seconds": 3600,  # Ticks are driven manually in tests
            "pnl_check_interval_seconds": 3600,
            "deposit_amount": 10.0,
            "leverage": 10.0,
            "stop_loss_pct_min": 2.0,
            "stop_loss_pct_max": 2.0,
            "risk_reward_ratio": 2.0,
            "max_consecutive_entries": 2,
            "max_holding_seconds": 600,
        }
        values.update(overrides)
        return TradingConfig.build(**values)
    return _make_config


@pytest.fixture
def trading_config(make_config):
    return make_config()


# ---------------------------------------------------------------------------
# Market data
# ---------------------------------------------------------------------------


@pytest.fixture
def make_candles():
    """Turn a list of close prices into Candles (oldest first)."""
    def _make_candles(closes, start=datetime(2024, 1, 1)):
        return [
            Candle(open_time=start + timedelta(minutes=15 * i), close=float(c))
            for i, c in enumerate(closes)
        ]
    return _make_candles


@pytest.fixture
def mock_market_data():
    """Mock market data source without hitting real APIs."""
    source = MagicMock(spec=MarketDataSource)
    source.name = "mock"
    source.get_candles = AsyncMock(return_value=[])
    source.get_latest_price = AsyncMock(return_value=100.0)
    source.symbol_exists = AsyncMock(return_value=True)
    source.close = AsyncMock()
    return source
