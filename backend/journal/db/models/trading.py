"""
Domain Models - Trade Ledger
TradeJournal cTrader Sync

The journal's trade table. Broker open positions are reconciled into rows
with status 'open' and source 'ctrader', keyed by external_id.
"""

from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import String, DateTime, Float, Text, ForeignKey, Index, text
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func

from journal.db.base import Base
from journal.utils.timeutils import new_id


class TradeStatus(str, Enum):
    OPEN = "open"
    CLOSED = "closed"


class TradeSource(str, Enum):
    MANUAL = "manual"
    CSV = "csv"
    CTRADER = "ctrader"


class Trade(Base):
    """
    Journal trade record.

    Entry attributes are fixed once a row exists; sync only refreshes
    pnl, commission and swap on open rows.
    """
    __tablename__ = "trades"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    user_id: Mapped[str] = mapped_column(String(36), nullable=False)
    trading_account_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("trading_accounts.id", ondelete="CASCADE"),
        nullable=False,
    )
    external_id: Mapped[Optional[str]] = mapped_column(String(64))  # Broker position id

    # Entry
    symbol: Mapped[str] = mapped_column(String(50), nullable=False)
    trade_type: Mapped[str] = mapped_column(String(10), nullable=False)  # buy, sell
    quantity: Mapped[float] = mapped_column(Float, nullable=False)  # Lots
    entry_price: Mapped[float] = mapped_column(Float, nullable=False)
    entry_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    # Exit
    exit_price: Mapped[Optional[float]] = mapped_column(Float)
    exit_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    # Money
    pnl: Mapped[Optional[float]] = mapped_column(Float)
    commission: Mapped[Optional[float]] = mapped_column(Float)
    swap: Mapped[Optional[float]] = mapped_column(Float)

    status: Mapped[str] = mapped_column(String(20), nullable=False, default=TradeStatus.OPEN.value)
    source: Mapped[Optional[str]] = mapped_column(String(30))  # manual, csv, ctrader
    notes: Mapped[Optional[str]] = mapped_column(Text)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), onupdate=func.now())

    __table_args__ = (
        Index("idx_trades_account_external", "trading_account_id", "external_id"),
        # One open row per broker position
        Index(
            "uq_trades_open_external_id",
            "trading_account_id",
            "external_id",
            unique=True,
            postgresql_where=text("status = 'open'"),
            sqlite_where=text("status = 'open'"),
        ),
    )
