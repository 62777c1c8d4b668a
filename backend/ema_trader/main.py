import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from ema_trader.config import TradingConfig, settings
from ema_trader.database import async_session_maker, init_db
from ema_trader.exceptions import TradingError
from ema_trader.multi_symbol_monitor import MultiSymbolMonitor
from ema_trader.price_feeds import BinanceMarketData
from ema_trader.routers import trading_router
from ema_trader.routers.trading_router import set_trading_engine
from ema_trader.services.trade_ledger import SqlTradeLedger

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("🚀 Initializing database...")
    await init_db()

    market_data = BinanceMarketData(
        base_url=settings.binance_base_url, timeout=settings.http_timeout_seconds
    )
    engine = MultiSymbolMonitor(market_data, ledger=SqlTradeLedger(async_session_maker))
    set_trading_engine(engine)

    try:
        if settings.auto_start:
            # ConfigurationError here is fatal: the app refuses to start
            await engine.start(TradingConfig.from_settings(settings))
        else:
            logger.info("🚀 auto_start disabled - POST /api/trading/start to begin trading")

        logger.info("🚀 Startup complete!")
        yield
    finally:
        logger.info("🛑 Stopping trading engine...")
        await engine.stop()
        await market_data.close()
        set_trading_engine(None)
        logger.info("🛑 Shutdown complete")


app = FastAPI(title="EMA Trader", lifespan=lifespan)


@app.exception_handler(TradingError)
async def trading_error_handler(request: Request, exc: TradingError):
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


app.include_router(trading_router.router)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)
