"""
Signal processing for the EMA crossover strategy

Pure decision logic: no I/O, no state mutation. The same snapshot and
symbol state always produce the same signal.
"""

from ema_trader.trading_engine.types import IndicatorSnapshot, Signal, SymbolState


def _streak_exhausted(state: SymbolState, side: Signal, max_consecutive: int) -> bool:
    """True if `side` already opened max_consecutive positions in a row"""
    return state.last_action == side and state.consecutive_same_side_entries >= max_consecutive


def generate_signal(
    snapshot: IndicatorSnapshot,
    state: SymbolState,
    max_consecutive: int = 2,
    use_trend_filter: bool = False,
    allow_short: bool = True,
) -> Signal:
    """
    Derive a BUY/SELL/HOLD signal

    BUY:  fast EMA above slow EMA, symbol FLAT, BUY streak below max_consecutive
          (and close above the trend EMA when the trend filter is on)
    SELL: mirrored, opens a SHORT; only when allow_short
    HOLD: anything else, including equal EMAs and any OPEN symbol

    Args:
        snapshot: EMA values for this tick
        state: Current symbol state (read only)
        max_consecutive: Max same-side entries in a row
        use_trend_filter: Require latest close on the right side of ema_trend
        allow_short: Whether SELL signals may be emitted at all
    """
    if not state.is_flat:
        return Signal.HOLD

    if snapshot.ema_fast > snapshot.ema_slow:
        candidate = Signal.BUY
    elif snapshot.ema_fast < snapshot.ema_slow:
        if not allow_short:
            return Signal.HOLD
        candidate = Signal.SELL
    else:
        return Signal.HOLD

    if use_trend_filter:
        if snapshot.ema_trend is None:
            return Signal.HOLD
        if candidate == Signal.BUY and not snapshot.latest_close > snapshot.ema_trend:
            return Signal.HOLD
        if candidate == Signal.SELL and not snapshot.latest_close < snapshot.ema_trend:
            return Signal.HOLD

    if _streak_exhausted(state, candidate, max_consecutive):
        return Signal.HOLD

    return candidate
