"""
Price Feeds Module

Market data abstraction the trading engine reads candles and prices through.

Components:
- MarketDataSource: Abstract base class for market data sources
- BinanceMarketData: Binance public REST API feed
"""

from ema_trader.price_feeds.base import MarketDataSource
from ema_trader.price_feeds.binance_feed import BinanceMarketData

__all__ = [
    "MarketDataSource",
    "BinanceMarketData",
]
