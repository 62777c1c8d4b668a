"""
Domain exceptions for the trading engine.

The engine and its adapters raise these instead of transport- or
framework-specific errors. A global exception handler in main.py
translates them into HTTP responses for the status/control API.
"""


class TradingError(Exception):
    """Base trading error with an HTTP-equivalent status code."""

    def __init__(self, message: str, status_code: int = 400):
        self.message = message
        self.status_code = status_code
        super().__init__(message)


class DataUnavailableError(TradingError):
    """Upstream market data feed failed (503). Transient: skip the tick."""

    def __init__(self, message: str = "Market data unavailable"):
        super().__init__(message, status_code=503)


class InsufficientDataError(TradingError):
    """Not enough price history for the requested indicator period (422)."""

    def __init__(self, message: str, available: int = None, required: int = None):
        self.available = available
        self.required = required
        super().__init__(message, status_code=422)


class PersistenceError(TradingError):
    """Trade ledger write failed (500). Logged, never rolled back."""

    def __init__(self, message: str = "Trade ledger write failed"):
        super().__init__(message, status_code=500)


class ConfigurationError(TradingError):
    """Invalid engine configuration (400). Fatal at startup."""

    def __init__(self, message: str):
        super().__init__(message, status_code=400)
