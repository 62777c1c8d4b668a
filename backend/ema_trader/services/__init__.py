"""
Trading services

- PeriodicTask: cancellable fixed-interval task
- PnLMonitor: exit envelope checks for one open position
- StatsAggregator: realized win/loss counters
- TradeLedger / LedgerWriter: persistence of opened and closed trades
"""
