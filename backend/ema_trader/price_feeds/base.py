"""
Base Market Data Interface

Defines the abstract interface the trading engine reads prices through.
Implementations raise DataUnavailableError on any transport failure so
the engine can skip the tick without knowing the transport.
"""

from abc import ABC, abstractmethod
from typing import List

from ema_trader.trading_engine.types import Candle


class MarketDataSource(ABC):
    """
    Abstract base class for market data sources.

    Each source represents a single venue and provides candle history
    and the latest traded price per symbol.
    """

    def __init__(self, name: str):
        self.name = name

    @abstractmethod
    async def get_candles(self, symbol: str, interval: str, limit: int) -> List[Candle]:
        """
        Get recent candles for a symbol.

        Args:
            symbol: Trading pair (e.g., "BTCUSDT")
            interval: Candle interval (e.g., "15m")
            limit: Number of candles

        Returns:
            Candles ordered oldest to newest

        Raises:
            DataUnavailableError: transport or upstream failure
        """
        pass

    @abstractmethod
    async def get_latest_price(self, symbol: str) -> float:
        """
        Get the latest traded price for a symbol.

        Raises:
            DataUnavailableError: transport or upstream failure
        """
        pass

    @abstractmethod
    async def symbol_exists(self, symbol: str) -> bool:
        """
        Check whether the venue lists this symbol.

        Raises:
            DataUnavailableError: the venue could not be asked
        """
        pass

    async def close(self):
        """Release transport resources"""
        pass
