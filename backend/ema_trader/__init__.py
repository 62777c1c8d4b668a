"""EMA momentum trading engine"""

__version__ = "1.0.0"
