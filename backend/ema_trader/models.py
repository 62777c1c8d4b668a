"""
Database Models

Defines SQLAlchemy ORM models for the trade ledger:
- Trade: one row per position, inserted when it opens and completed when it closes
"""

from datetime import datetime

from sqlalchemy import Column, DateTime, Float, Integer, String

from ema_trader.database import Base


class Trade(Base):
    __tablename__ = "trades"

    id = Column(Integer, primary_key=True, index=True)
    position_id = Column(String, unique=True, index=True, nullable=False)  # Engine-side position id
    symbol = Column(String, index=True, nullable=False)  # e.g. BTCUSDT
    action = Column(String, nullable=False)  # BUY or SELL
    status = Column(String, default="open")  # open, closed

    entry_price = Column(Float, nullable=False)
    deposit_amount = Column(Float, nullable=False)  # Fixed stake per position
    margin = Column(Float, nullable=False)  # Leverage
    size = Column(Float, nullable=True)  # Notional base quantity
    take_profit = Column(Float, nullable=True)
    stop_loss = Column(Float, nullable=True)
    timestamp = Column(DateTime, default=datetime.utcnow)  # Opened at

    # Filled in on close
    exit_price = Column(Float, nullable=True)
    closed_at = Column(DateTime, nullable=True)
    profit_loss_amount = Column(Float, nullable=True)
    profit_loss_percent = Column(Float, nullable=True)
    result = Column(String, nullable=True)  # WIN or LOSS
    exit_reason = Column(String, nullable=True)  # take_profit, stop_loss, max_holding_time, shutdown
