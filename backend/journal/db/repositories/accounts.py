"""
Account Repositories
TradeJournal cTrader Sync

Data access layer for trading accounts, cTrader connections and pending
OAuth states.
"""

from datetime import datetime
from typing import List, Optional

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from journal.db.repository import BaseRepository
from journal.db.models.accounts import (
    TradingAccount,
    CTraderConnection,
    CTraderAuthState,
)
from journal.utils.timeutils import utcnow


class TradingAccountRepository(BaseRepository[TradingAccount]):
    """Repository for journal trading accounts."""

    def __init__(self, session: AsyncSession):
        super().__init__(TradingAccount, session)

    async def get_for_user(self, account_id: str, user_id: str) -> Optional[TradingAccount]:
        """Get a trading account only if it belongs to the user."""
        result = await self.session.execute(
            select(self.model)
            .where(self.model.id == account_id)
            .where(self.model.user_id == user_id)
        )
        return result.scalar_one_or_none()

    async def update_balances(
        self,
        account_id: str,
        balance: float,
        equity: float,
        currency: str,
    ) -> bool:
        """Write the broker's balance snapshot onto the account."""
        result = await self.session.execute(
            update(self.model)
            .where(self.model.id == account_id)
            .values(
                current_balance=balance,
                current_equity=equity,
                currency=currency,
                updated_at=utcnow(),
            )
        )
        await self.session.commit()
        return result.rowcount > 0


class CTraderConnectionRepository(BaseRepository[CTraderConnection]):
    """Repository for cTrader OAuth connections."""

    def __init__(self, session: AsyncSession):
        super().__init__(CTraderConnection, session)

    async def get_for_account(
        self,
        trading_account_id: str,
        user_id: Optional[str] = None,
        account_number: Optional[str] = None,
    ) -> Optional[CTraderConnection]:
        """
        Get the connection of a trading account, optionally scoped to its owner.

        Without an account number the most recently linked connection wins.
        """
        query = select(self.model).where(self.model.trading_account_id == trading_account_id)
        if user_id is not None:
            query = query.where(self.model.user_id == user_id)
        if account_number is not None:
            query = query.where(self.model.account_number == account_number)
        query = query.order_by(self.model.connected_at.desc()).limit(1)
        result = await self.session.execute(query)
        return result.scalar_one_or_none()

    async def get_by_account_pair(
        self,
        trading_account_id: str,
        account_number: str,
    ) -> Optional[CTraderConnection]:
        result = await self.session.execute(
            select(self.model)
            .where(self.model.trading_account_id == trading_account_id)
            .where(self.model.account_number == account_number)
        )
        return result.scalar_one_or_none()

    async def list_active(self) -> List[CTraderConnection]:
        """Connections whose trading account is active, oldest link first."""
        result = await self.session.execute(
            select(self.model)
            .join(TradingAccount, TradingAccount.id == self.model.trading_account_id)
            .where(TradingAccount.is_active == True)  # noqa: E712
            .order_by(self.model.connected_at, self.model.id)
        )
        return list(result.scalars().all())

    async def update_tokens(
        self,
        connection_id: str,
        access_token: str,
        refresh_token: str,
        expires_at: datetime,
    ) -> None:
        await self.session.execute(
            update(self.model)
            .where(self.model.id == connection_id)
            .values(
                access_token=access_token,
                refresh_token=refresh_token,
                expires_at=expires_at,
                updated_at=utcnow(),
            )
        )
        await self.session.commit()

    async def touch_last_sync(self, connection_id: str, synced_at: datetime) -> None:
        await self.session.execute(
            update(self.model)
            .where(self.model.id == connection_id)
            .values(last_sync=synced_at)
        )
        await self.session.commit()

    async def upsert(
        self,
        user_id: str,
        trading_account_id: str,
        account_number: str,
        access_token: str,
        refresh_token: str,
        expires_at: datetime,
        commit: bool = True,
    ) -> CTraderConnection:
        """
        Insert or refresh the connection for (trading account, account number).

        Callers are responsible for rejecting a pair owned by another user.
        """
        existing = await self.get_by_account_pair(trading_account_id, account_number)
        if existing:
            existing.user_id = user_id
            existing.access_token = access_token
            existing.refresh_token = refresh_token
            existing.expires_at = expires_at
            existing.connected_at = utcnow()
            existing.updated_at = utcnow()
            if commit:
                await self.session.commit()
            else:
                await self.session.flush()
            return existing

        return await self.create(
            {
                "user_id": user_id,
                "trading_account_id": trading_account_id,
                "account_number": account_number,
                "access_token": access_token,
                "refresh_token": refresh_token,
                "expires_at": expires_at,
                "connected_at": utcnow(),
            },
            commit=commit,
        )


class CTraderAuthStateRepository(BaseRepository[CTraderAuthState]):
    """Repository for pending OAuth states."""

    def __init__(self, session: AsyncSession):
        super().__init__(CTraderAuthState, session)

    async def get_by_state(self, state: str) -> Optional[CTraderAuthState]:
        return await self.get_by_field("state", state)

    async def delete_state(self, state: str, commit: bool = True) -> None:
        await self.session.execute(delete(self.model).where(self.model.state == state))
        if commit:
            await self.session.commit()

    async def purge_expired(self, now: Optional[datetime] = None) -> int:
        """Delete states past their expiry. Returns the number removed."""
        result = await self.session.execute(
            delete(self.model).where(self.model.expires_at < (now or utcnow()))
        )
        await self.session.commit()
        return result.rowcount or 0
