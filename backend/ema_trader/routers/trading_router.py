"""
Trading Router - engine status and control

Read-only status snapshot plus start/stop for the trading engine. The
engine instance is registered by main.py at startup.
"""

import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException

from ema_trader.config import TradingConfig, settings
from ema_trader.multi_symbol_monitor import MultiSymbolMonitor
from ema_trader.schemas import EngineStatus

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/trading", tags=["trading"])

_trading_engine: Optional[MultiSymbolMonitor] = None


def set_trading_engine(engine: Optional[MultiSymbolMonitor]):
    global _trading_engine
    _trading_engine = engine


def get_trading_engine() -> MultiSymbolMonitor:
    if _trading_engine is None:
        raise HTTPException(status_code=503, detail="Trading engine not initialized")
    return _trading_engine


@router.get("/status", response_model=EngineStatus)
async def get_status(engine: MultiSymbolMonitor = Depends(get_trading_engine)) -> EngineStatus:
    """Per-symbol state, open positions and running win/loss stats"""
    return engine.get_status()


@router.get("/start")
async def start_ping() -> str:
    """Legacy liveness ping kept for existing dashboards"""
    return "<=======🚀 Trading bot started! 🚀=======>"


@router.post("/start")
async def start_engine(engine: MultiSymbolMonitor = Depends(get_trading_engine)) -> Dict[str, Any]:
    """
    Start the engine with the configured trading parameters.

    Invalid configuration is rejected with 400 and the engine stays stopped.
    """
    if engine.running:
        return {"running": True, "message": "Trading engine already running"}

    config = TradingConfig.from_settings(settings)
    await engine.start(config)
    logger.info("Trading engine started via API")
    return {"running": True, "symbols": config.symbols}


@router.post("/stop")
async def stop_engine(engine: MultiSymbolMonitor = Depends(get_trading_engine)) -> Dict[str, Any]:
    """Stop all ticks and PnL monitors"""
    await engine.stop()
    logger.info("Trading engine stopped via API")
    return {"running": False}
