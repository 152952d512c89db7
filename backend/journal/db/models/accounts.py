"""
Domain Models - Trading Accounts & Broker Connections
TradeJournal cTrader Sync

SQLAlchemy models for:
- Trading accounts (journal-owned; balance fields are written by sync)
- cTrader OAuth connections
- Pending OAuth authorization states
"""

from datetime import datetime
from typing import List, Optional

from sqlalchemy import (
    String, Boolean, DateTime, Float, ForeignKey, Index, UniqueConstraint
)
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.sql import func

from journal.db.base import Base
from journal.utils.timeutils import new_id


class TradingAccount(Base):
    """
    A journal trading account.

    Only the fields the sync pipeline reads or writes are mapped here; the
    rest of the table is owned by the journal application.
    """
    __tablename__ = "trading_accounts"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    user_id: Mapped[str] = mapped_column(String(36), nullable=False)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    broker: Mapped[Optional[str]] = mapped_column(String(50))
    account_type: Mapped[str] = mapped_column(String(30), default="live")  # live, demo, prop_firm

    currency: Mapped[str] = mapped_column(String(10), default="USD")
    initial_balance: Mapped[float] = mapped_column(Float, default=0.0)
    current_balance: Mapped[float] = mapped_column(Float, default=0.0)
    current_equity: Mapped[float] = mapped_column(Float, default=0.0)

    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), onupdate=func.now())

    # Relationships
    connections: Mapped[List["CTraderConnection"]] = relationship(back_populates="trading_account")

    __table_args__ = (
        Index("idx_trading_account_user", "user_id"),
    )


class CTraderConnection(Base):
    """
    OAuth credential set linking a trading account to a cTrader account.

    One row per (trading account, broker account number). Tokens are
    rewritten by the refresh flow and last_sync by every sync attempt.
    """
    __tablename__ = "ctrader_connections"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    user_id: Mapped[str] = mapped_column(String(36), nullable=False)
    trading_account_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("trading_accounts.id", ondelete="CASCADE"),
        nullable=False,
    )
    account_number: Mapped[str] = mapped_column(String(50), nullable=False)

    # OAuth tokens
    access_token: Mapped[str] = mapped_column(String(512), nullable=False)
    refresh_token: Mapped[str] = mapped_column(String(512), nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    last_sync: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    connected_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), onupdate=func.now())

    # Relationships
    trading_account: Mapped["TradingAccount"] = relationship(back_populates="connections")

    __table_args__ = (
        UniqueConstraint("trading_account_id", "account_number", name="uq_ctrader_connection_account"),
        Index("idx_ctrader_connection_user", "user_id"),
    )


class CTraderAuthState(Base):
    """One-time OAuth state correlating an authorize redirect with its callback."""
    __tablename__ = "ctrader_auth_states"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    state: Mapped[str] = mapped_column(String(128), unique=True, nullable=False)
    user_id: Mapped[str] = mapped_column(String(36), nullable=False)
    trading_account_id: Mapped[str] = mapped_column(String(36), nullable=False)
    account_number: Mapped[str] = mapped_column(String(50), default="")  # Resolved at callback when empty
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        Index("idx_ctrader_auth_state_expiry", "expires_at"),
    )
