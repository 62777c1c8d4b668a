"""
Indicator Calculator for the EMA momentum strategy

Calculates exponential moving averages from close prices and bundles
the values one signal evaluation needs into an IndicatorSnapshot.

Supports:
- EMA series (SMA-seeded, standard recurrence)
- Latest EMA value
- Fast / slow / trend snapshot for one tick
"""

from typing import List, Optional

from ema_trader.exceptions import InsufficientDataError
from ema_trader.trading_engine.types import IndicatorSnapshot


class IndicatorCalculator:
    """
    Calculates EMA indicators from close prices (oldest first)

    Every series is aligned to the tail of its input: the first value
    corresponds to prices[period - 1] and the last to prices[-1].
    """

    def calculate_ema_series(self, prices: List[float], period: int) -> List[float]:
        """
        Calculate the EMA series for a price sequence

        Args:
            prices: Close prices, oldest to newest
            period: EMA period

        Returns:
            List of len(prices) - period + 1 EMA values

        Raises:
            InsufficientDataError: fewer prices than the period
        """
        if period <= 0:
            raise ValueError(f"EMA period must be positive, got {period}")
        if len(prices) < period:
            raise InsufficientDataError(
                f"EMA{period} needs {period} prices, got {len(prices)}",
                available=len(prices),
                required=period,
            )

        multiplier = 2 / (period + 1)

        # Start with SMA for initial value
        ema = sum(prices[:period]) / period
        series = [ema]

        for price in prices[period:]:
            ema = price * multiplier + ema * (1 - multiplier)
            series.append(ema)

        return series

    def calculate_ema(self, prices: List[float], period: int) -> float:
        """Calculate the latest EMA value"""
        return self.calculate_ema_series(prices, period)[-1]

    def calculate_snapshot(
        self,
        closes: List[float],
        fast_period: int,
        slow_period: int,
        trend_period: Optional[int] = None,
    ) -> IndicatorSnapshot:
        """
        Calculate all EMAs needed for one signal evaluation

        Args:
            closes: Close prices, oldest to newest
            fast_period: Fast EMA period (e.g. 12)
            slow_period: Slow EMA period (e.g. 26)
            trend_period: Trend filter EMA period (e.g. 200), None to skip

        Raises:
            InsufficientDataError: not enough closes for one of the periods
        """
        if not closes:
            raise InsufficientDataError("No close prices", available=0, required=slow_period)

        ema_fast = self.calculate_ema(closes, fast_period)
        ema_slow = self.calculate_ema(closes, slow_period)
        ema_trend = self.calculate_ema(closes, trend_period) if trend_period else None

        return IndicatorSnapshot(
            ema_fast=ema_fast,
            ema_slow=ema_slow,
            ema_trend=ema_trend,
            latest_close=float(closes[-1]),
        )
