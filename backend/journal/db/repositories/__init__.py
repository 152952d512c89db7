"""
Repository Layer
TradeJournal cTrader Sync

Provides data access abstractions for all domain models.
"""

# Account repositories
from journal.db.repositories.accounts import (
    TradingAccountRepository,
    CTraderConnectionRepository,
    CTraderAuthStateRepository,
)

# Trading repositories
from journal.db.repositories.trading import (
    TradeRepository,
)


__all__ = [
    "TradingAccountRepository",
    "CTraderConnectionRepository",
    "CTraderAuthStateRepository",
    "TradeRepository",
]
