"""
cTrader Sync Orchestrator
TradeJournal cTrader Sync

One end-to-end sync of a single trading account:

    token refresh -> account info -> history import -> position reconcile -> last_sync

Only failing to establish a usable token is fatal. Account info, history
import and position failures degrade into partial results with warnings,
and last_sync is stamped whenever the token step succeeded.
"""

import asyncio
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, AsyncGenerator, Callable, Dict, List, Optional

from loguru import logger
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from journal.brokers.ctrader_auth import CTraderOAuthClient
from journal.brokers.ctrader_data import BrokerPosition, CTraderDataClient, DEFAULT_CURRENCY
from journal.core.config import SyncSettings, settings
from journal.core.errors import SyncError, SyncInProgress
from journal.db.repositories.accounts import CTraderConnectionRepository, TradingAccountRepository
from journal.services.position_reconciler import PositionReconciler, ReconcileReport
from journal.services.token_store import TokenStore
from journal.services.trade_import import TradeHistoryImporter, create_trade_importer
from journal.utils.timeutils import utcnow


class AccountLockRegistry:
    """
    In-process lock per trading account.

    A second sync of an account that is already syncing is rejected rather
    than queued, so a manual sync and the sweep never overlap.
    """

    def __init__(self):
        self._locks: Dict[str, asyncio.Lock] = {}

    def is_locked(self, trading_account_id: str) -> bool:
        lock = self._locks.get(trading_account_id)
        return lock is not None and lock.locked()

    @asynccontextmanager
    async def hold(self, trading_account_id: str) -> AsyncGenerator[None, None]:
        lock = self._locks.get(trading_account_id)
        if lock is None:
            lock = self._locks[trading_account_id] = asyncio.Lock()
        elif lock.locked():
            raise SyncInProgress(
                "A sync for this account is already running",
                {"tradingAccountId": trading_account_id},
            )
        try:
            async with lock:
                yield
        finally:
            # Callers never wait on a held lock, so a released one can go
            if self._locks.get(trading_account_id) is lock and not lock.locked():
                del self._locks[trading_account_id]

    def __len__(self) -> int:
        return len(self._locks)


@dataclass
class SyncResult:
    """Aggregated outcome of one account sync."""
    trading_account_id: str
    full_sync: bool = False
    balance: float = 0.0
    equity: float = 0.0
    currency: str = DEFAULT_CURRENCY
    trades_imported: int = 0
    open_positions: int = 0
    reconcile: Optional[ReconcileReport] = None
    warnings: List[str] = field(default_factory=list)
    synced_at: Optional[datetime] = None

    @property
    def sync_type(self) -> str:
        return "full" if self.full_sync else "incremental"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": True,
            "message": "Sync completed successfully" if not self.warnings else "Sync completed with warnings",
            "tradingAccountId": self.trading_account_id,
            "accountInfo": {
                "balance": self.balance,
                "equity": self.equity,
                "currency": self.currency,
            },
            "tradesImported": self.trades_imported,
            "openPositions": self.open_positions,
            "syncType": self.sync_type,
            "warnings": list(self.warnings),
            "syncedAt": self.synced_at.isoformat() if self.synced_at else None,
        }


class CTraderSyncService:
    """
    Sync orchestrator for cTrader-linked trading accounts.

    Usage:
        service = create_sync_service()
        result = await service.sync(trading_account_id, full_sync=False, user_id=user_id)
    """

    def __init__(
        self,
        session_factory: Optional[async_sessionmaker] = None,
        oauth_client: Optional[CTraderOAuthClient] = None,
        data_client: Optional[CTraderDataClient] = None,
        importer: Optional[TradeHistoryImporter] = None,
        sync_settings: Optional[SyncSettings] = None,
        locks: Optional[AccountLockRegistry] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        if session_factory is None:
            from journal.db.session import AsyncSessionLocal
            session_factory = AsyncSessionLocal

        self._session_factory = session_factory
        self._oauth = oauth_client or CTraderOAuthClient()
        self._data = data_client or CTraderDataClient()
        self._settings = sync_settings or settings.sync
        self._importer = importer or create_trade_importer(self._settings)
        self._locks = locks or AccountLockRegistry()
        self._clock = clock

    @property
    def locks(self) -> AccountLockRegistry:
        return self._locks

    async def sync(
        self,
        trading_account_id: str,
        full_sync: bool = False,
        user_id: Optional[str] = None,
        bearer_token: Optional[str] = None,
        account_number: Optional[str] = None,
    ) -> SyncResult:
        """
        Sync one trading account.

        Args:
            trading_account_id: Local trading account id
            full_sync: 365-day history window instead of 7 days
            user_id: Caller; the connection must belong to this user
            bearer_token: Caller's token, forwarded to the history importer
            account_number: Broker account to sync when the trading account has
                several connections; defaults to the most recently linked one

        Raises:
            NotConnected, TokenRefreshFailed, SyncInProgress
        """
        async with self._locks.hold(trading_account_id):
            async with self._session_factory() as session:
                return await self._sync(
                    session, trading_account_id, full_sync, user_id, bearer_token, account_number
                )

    async def _sync(
        self,
        session: AsyncSession,
        trading_account_id: str,
        full_sync: bool,
        user_id: Optional[str],
        bearer_token: Optional[str],
        account_number: Optional[str] = None,
    ) -> SyncResult:
        logger.info(f"Starting cTrader sync for account: {trading_account_id}, fullSync: {full_sync}")

        token_store = TokenStore(
            session,
            self._oauth,
            refresh_margin=timedelta(minutes=self._settings.token_refresh_margin_minutes),
        )
        connection = await token_store.get(trading_account_id, user_id, account_number)
        connection = await token_store.ensure_fresh(connection, self._clock())

        # Plain values; session rollbacks below expire ORM state
        connection_id = connection.id
        owner_id = connection.user_id
        access_token = connection.access_token
        account_number = connection.account_number

        result = SyncResult(trading_account_id=trading_account_id, full_sync=full_sync)
        try:
            await self._sync_account_info(session, result, access_token, account_number)
            await self._import_history(result, bearer_token)
            await self._sync_positions(session, result, owner_id, access_token, account_number)
        finally:
            result.synced_at = await self._touch_last_sync(session, connection_id)

        logger.info(
            f"cTrader sync finished for {trading_account_id}: balance={result.balance} {result.currency}, "
            f"imported={result.trades_imported}, open={result.open_positions}, warnings={len(result.warnings)}"
        )
        return result

    async def _sync_account_info(
        self,
        session: AsyncSession,
        result: SyncResult,
        access_token: str,
        account_number: str,
    ) -> None:
        try:
            snapshot = await self._data.fetch_account_info(access_token, account_number)
        except SyncError as e:
            logger.error(f"Account info fetch failed for {account_number}: {e.message}")
            result.warnings.append(f"accountInfo: {e.code}: {e.message}")
            return

        result.balance = snapshot.balance
        result.equity = snapshot.equity
        result.currency = snapshot.currency

        try:
            await TradingAccountRepository(session).update_balances(
                result.trading_account_id,
                balance=snapshot.balance,
                equity=snapshot.equity,
                currency=snapshot.currency,
            )
            logger.info("Updated account balance and equity")
        except SQLAlchemyError as e:
            await session.rollback()
            logger.error(f"Failed to update account info: {e}")
            result.warnings.append("accountInfo: balance update not saved")

    async def _import_history(self, result: SyncResult, bearer_token: Optional[str]) -> None:
        days = self._settings.full_days if result.full_sync else self._settings.incremental_days
        to_date = self._clock()
        from_date = to_date - timedelta(days=days)
        logger.info(f"Syncing trades from {from_date.isoformat()} to {to_date.isoformat()}")

        try:
            result.trades_imported = await self._importer.import_history(
                result.trading_account_id, from_date, to_date, bearer_token
            )
        except Exception as e:
            logger.warning(f"Trade history import failed for {result.trading_account_id}: {e}")
            result.trades_imported = 0
            result.warnings.append(f"historyImport: {e}")

    async def _sync_positions(
        self,
        session: AsyncSession,
        result: SyncResult,
        owner_id: str,
        access_token: str,
        account_number: str,
    ) -> None:
        positions: List[BrokerPosition]
        try:
            positions = await self._data.fetch_open_positions(access_token, account_number)
        except SyncError as e:
            logger.error(f"Open positions fetch failed for {account_number}: {e.message}")
            result.warnings.append(f"positions: {e.code}: {e.message}")
            return

        result.open_positions = len(positions)
        report = await PositionReconciler(session).reconcile(result.trading_account_id, owner_id, positions)
        result.reconcile = report
        for failure in report.failures:
            result.warnings.append(f"positions: {failure.code}: {failure.message}")

    async def _touch_last_sync(self, session: AsyncSession, connection_id: str) -> Optional[datetime]:
        synced_at = self._clock()
        try:
            await CTraderConnectionRepository(session).touch_last_sync(connection_id, synced_at)
        except SQLAlchemyError as e:
            await session.rollback()
            logger.error(f"Failed to update last_sync for connection {connection_id}: {e}")
            return None
        return synced_at


def create_sync_service(**kwargs: Any) -> CTraderSyncService:
    """Factory function for the sync orchestrator."""
    return CTraderSyncService(**kwargs)
