"""
Trading Engine Components

Core position lifecycle components:
- types: Candle, IndicatorSnapshot, Signal, Position, SymbolState, TradeRecord
- SignalProcessor: Turns EMA snapshots and symbol state into BUY/SELL/HOLD
- PositionManager: Per-symbol FLAT/OPEN state machine with SL/TP envelope
"""
