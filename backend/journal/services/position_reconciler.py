"""
Position Reconciler
TradeJournal cTrader Sync

Upserts broker open positions into the trade ledger, keyed by
(trading account, external position id, status='open').

- Existing open trade: only pnl, commission, swap and updated_at change.
- No open trade: a new open trade is inserted.
- A failing position is logged, rolled back and skipped; the rest of the
  batch still runs.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession

from journal.brokers.ctrader_data import BrokerPosition
from journal.core.errors import ReconcileItemFailed
from journal.db.repositories.trading import TradeRepository


@dataclass
class ReconcileReport:
    """Outcome of one reconciliation batch."""
    created: int = 0
    updated: int = 0
    failures: List[ReconcileItemFailed] = field(default_factory=list)

    @property
    def failed(self) -> int:
        return len(self.failures)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "created": self.created,
            "updated": self.updated,
            "failed": self.failed,
            "failures": [{"positionId": f.position_id, "reason": f.reason} for f in self.failures],
        }


class PositionReconciler:
    """Idempotent open-position upsert for one database session."""

    def __init__(self, session: AsyncSession):
        self.session = session
        self.trades = TradeRepository(session)

    async def reconcile(
        self,
        trading_account_id: str,
        user_id: str,
        positions: List[BrokerPosition],
    ) -> ReconcileReport:
        report = ReconcileReport()
        logger.info(f"Syncing {len(positions)} open positions for account {trading_account_id}")

        for position in positions:
            try:
                created = await self._reconcile_one(trading_account_id, user_id, position)
            except Exception as e:
                await self.session.rollback()
                failure = ReconcileItemFailed(position.id, str(e))
                report.failures.append(failure)
                logger.error(f"Error syncing position {position.id}: {e}")
                continue

            if created:
                report.created += 1
            else:
                report.updated += 1

        if report.failures:
            logger.warning(
                f"Reconciled account {trading_account_id} with {report.failed} failures "
                f"(created={report.created}, updated={report.updated})"
            )
        return report

    async def _reconcile_one(
        self,
        trading_account_id: str,
        user_id: str,
        position: BrokerPosition,
    ) -> bool:
        """Upsert one position. Returns True when a trade was inserted."""
        existing = await self.trades.get_open_by_external_id(trading_account_id, position.id)

        if existing is not None:
            await self.trades.update_running_metrics(
                existing.id,
                pnl=position.pnl,
                commission=position.commission,
                swap=position.swap,
            )
            return False

        values = position.to_trade_values()
        values.update({"user_id": user_id, "trading_account_id": trading_account_id})
        await self.trades.create(values)
        return True
