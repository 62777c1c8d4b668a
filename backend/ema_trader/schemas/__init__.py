"""Centralized Pydantic schemas for API requests/responses"""

from .status import (
    EngineStatus,
    PositionResponse,
    PricePointResponse,
    StatsResponse,
    SymbolStatus,
)

__all__ = [
    "EngineStatus",
    "PositionResponse",
    "PricePointResponse",
    "StatsResponse",
    "SymbolStatus",
]
