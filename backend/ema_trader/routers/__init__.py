"""
API Routers

This package contains the FastAPI routers for the trading engine.
"""

from ema_trader.routers import trading_router

__all__ = [
    "trading_router",
]
