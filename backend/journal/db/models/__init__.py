"""
Database Models Package
TradeJournal cTrader Sync

Exports all SQLAlchemy models for the application.
"""

from journal.db.base import Base

from journal.db.models.accounts import (
    TradingAccount,
    CTraderConnection,
    CTraderAuthState,
)

from journal.db.models.trading import (
    Trade,
    TradeStatus,
    TradeSource,
)


__all__ = [
    # Base
    "Base",

    # Enums
    "TradeStatus",
    "TradeSource",

    # Account Models
    "TradingAccount",
    "CTraderConnection",
    "CTraderAuthState",

    # Trading Models
    "Trade",
]
