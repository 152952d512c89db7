"""
Trading Repository
TradeJournal cTrader Sync

Data access layer for the trade ledger.
"""

from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from journal.db.repository import BaseRepository
from journal.db.models.trading import Trade, TradeStatus
from journal.utils.timeutils import utcnow


class TradeRepository(BaseRepository[Trade]):
    """Repository for journal trades."""

    def __init__(self, session: AsyncSession):
        super().__init__(Trade, session)

    async def get_open_by_external_id(
        self,
        trading_account_id: str,
        external_id: str,
    ) -> Optional[Trade]:
        """Get the open trade mirroring a broker position."""
        result = await self.session.execute(
            select(self.model)
            .where(self.model.external_id == external_id)
            .where(self.model.trading_account_id == trading_account_id)
            .where(self.model.status == TradeStatus.OPEN.value)
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def update_running_metrics(
        self,
        trade_id: str,
        pnl: float,
        commission: float,
        swap: float,
        commit: bool = True,
    ) -> None:
        """Refresh the mutable money fields of an open trade."""
        await self.session.execute(
            update(self.model)
            .where(self.model.id == trade_id)
            .values(
                pnl=pnl,
                commission=commission,
                swap=swap,
                updated_at=utcnow(),
            )
        )
        if commit:
            await self.session.commit()
