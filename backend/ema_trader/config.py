from typing import Any, List

from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator
from pydantic_settings import BaseSettings

from ema_trader.exceptions import ConfigurationError


class Settings(BaseSettings):
    # Database (trade ledger)
    database_url: str = "sqlite+aiosqlite:///./trades.db"
    database_echo: bool = False

    # Binance public REST API (market data only, no order execution)
    binance_base_url: str = "https://api.binance.com"
    http_timeout_seconds: float = 10.0

    # Logging
    log_level: str = "INFO"

    # Start the engine from the FastAPI lifespan hook
    auto_start: bool = True

    # Trading Parameters
    symbols: List[str] = ["BTCUSDT"]
    deposit_amount: float = 10.0  # Fixed stake per position (USDT)
    leverage: float = 40.0
    stop_loss_pct_min: float = 1.0
    stop_loss_pct_max: float = 2.0
    risk_reward_ratio: float = 2.0
    max_consecutive_entries: int = 2
    max_holding_seconds: float = 3600.0
    allow_short: bool = True
    close_on_shutdown: bool = False

    # EMA Parameters
    ema_fast_period: int = 12
    ema_slow_period: int = 26
    ema_trend_period: int = 200
    use_trend_filter: bool = False

    # Candle/Tick Parameters
    # Valid Binance intervals: 1m, 3m, 5m, 15m, 30m, 1h, 2h, 4h, 6h, 8h, 12h, 1d
    candle_interval: str = "15m"
    candle_limit: int = 250
    tick_interval_seconds: float = 60.0
    pnl_check_interval_seconds: float = 5.0
    price_history_size: int = 100

    class Config:
        env_file = ".env"
        case_sensitive = False


VALID_CANDLE_INTERVALS = {
    "1m", "3m", "5m", "15m", "30m", "1h", "2h", "4h", "6h", "8h", "12h", "1d", "3d", "1w",
}


class TradingConfig(BaseModel):
    """Runtime configuration handed to MultiSymbolMonitor.start()"""

    symbols: List[str] = Field(..., min_length=1)
    ema_fast_period: int = Field(12, gt=0)
    ema_slow_period: int = Field(26, gt=0)
    ema_trend_period: int = Field(200, gt=0)
    use_trend_filter: bool = False
    allow_short: bool = True
    candle_interval: str = "15m"
    candle_limit: int = Field(250, gt=0, le=1000)  # Binance klines cap
    tick_interval_seconds: float = Field(60.0, gt=0)
    pnl_check_interval_seconds: float = Field(5.0, gt=0)
    deposit_amount: float = Field(10.0, gt=0)
    leverage: float = Field(40.0, gt=0)
    stop_loss_pct_min: float = Field(1.0, gt=0, lt=100)
    stop_loss_pct_max: float = Field(2.0, gt=0, lt=100)
    risk_reward_ratio: float = Field(2.0, gt=0)
    max_consecutive_entries: int = Field(2, gt=0)
    max_holding_seconds: float = Field(3600.0, gt=0)
    price_history_size: int = Field(100, gt=0)
    close_on_shutdown: bool = False

    @field_validator("symbols")
    @classmethod
    def normalize_symbols(cls, v: List[str]) -> List[str]:
        symbols = []
        for symbol in v:
            symbol = symbol.strip().upper()
            if not symbol:
                raise ValueError("symbol must not be empty")
            if symbol in symbols:
                raise ValueError(f"duplicate symbol {symbol}")
            symbols.append(symbol)
        return symbols

    @field_validator("candle_interval")
    @classmethod
    def check_interval(cls, v: str) -> str:
        if v not in VALID_CANDLE_INTERVALS:
            raise ValueError(f"unsupported candle interval {v!r}")
        return v

    @model_validator(mode="after")
    def validate_periods(self):
        if self.ema_fast_period >= self.ema_slow_period:
            raise ValueError("ema_fast_period must be smaller than ema_slow_period")
        if self.stop_loss_pct_min > self.stop_loss_pct_max:
            raise ValueError("stop_loss_pct_min must not exceed stop_loss_pct_max")
        if self.candle_limit < self.required_candles:
            raise ValueError(
                f"candle_limit {self.candle_limit} is smaller than the longest EMA period "
                f"({self.required_candles})"
            )
        return self

    @property
    def required_candles(self) -> int:
        """Candles needed before every configured EMA is defined"""
        if self.use_trend_filter:
            return max(self.ema_slow_period, self.ema_trend_period)
        return self.ema_slow_period

    @classmethod
    def build(cls, **values: Any) -> "TradingConfig":
        """Validate values, raising ConfigurationError instead of pydantic's ValidationError"""
        try:
            return cls(**values)
        except ValidationError as e:
            errors = "; ".join(
                f"{'.'.join(str(loc) for loc in err['loc']) or 'config'}: {err['msg']}"
                for err in e.errors()
            )
            raise ConfigurationError(f"Invalid trading configuration: {errors}") from e

    @classmethod
    def from_settings(cls, settings: "Settings") -> "TradingConfig":
        return cls.build(
            **{name: getattr(settings, name) for name in cls.model_fields if hasattr(settings, name)}
        )


settings = Settings()
