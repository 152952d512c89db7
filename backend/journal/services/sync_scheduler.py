"""
cTrader Sync Scheduler

Periodic sweep over every cTrader connection whose trading account is active:
- Skips accounts synced within the staleness window (10 minutes)
- Syncs the rest incrementally, one at a time, as the connection owner
- Sleeps between successive syncs to pace broker calls
- Never raises; each account's failure becomes a summary entry
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Dict, List, Optional

from loguru import logger
from sqlalchemy.ext.asyncio import async_sessionmaker

from journal.core.config import SyncSettings, settings
from journal.core.errors import SyncError, SyncInProgress
from journal.db.repositories.accounts import CTraderConnectionRepository
from journal.services.ctrader_sync import CTraderSyncService
from journal.utils.timeutils import ensure_utc, utcnow


@dataclass
class AccountSyncOutcome:
    """Per-account line of a sweep summary."""
    trading_account_id: str
    account_number: str
    status: str  # synced / skipped / failed
    reason: Optional[str] = None
    result: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "tradingAccountId": self.trading_account_id,
            "accountNumber": self.account_number,
            "status": self.status,
        }
        if self.reason:
            data["reason"] = self.reason
        if self.result is not None:
            data["result"] = self.result
        return data


@dataclass
class SweepSummary:
    synced_accounts: int = 0
    skipped_accounts: int = 0
    errors: List[str] = field(default_factory=list)
    results: List[AccountSyncOutcome] = field(default_factory=list)
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": True,
            "message": "Auto-sync completed",
            "syncedAccounts": self.synced_accounts,
            "skippedAccounts": self.skipped_accounts,
            "errors": list(self.errors),
            "results": [r.to_dict() for r in self.results],
            "startedAt": self.started_at.isoformat() if self.started_at else None,
            "finishedAt": self.finished_at.isoformat() if self.finished_at else None,
        }


@dataclass
class _SweepTarget:
    trading_account_id: str
    account_number: str
    user_id: str
    last_sync: Optional[datetime]


class CTraderSyncScheduler:
    """
    Scheduler sweep plus an optional in-process interval loop.

    Usage:
        scheduler = CTraderSyncScheduler(sync_service)
        summary = await scheduler.run_sweep()

        await scheduler.start()   # app startup
        await scheduler.stop()    # app shutdown
    """

    def __init__(
        self,
        sync_service: CTraderSyncService,
        session_factory: Optional[async_sessionmaker] = None,
        sync_settings: Optional[SyncSettings] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        clock: Callable[[], datetime] = utcnow,
    ):
        if session_factory is None:
            from journal.db.session import AsyncSessionLocal
            session_factory = AsyncSessionLocal

        self.sync_service = sync_service
        self._session_factory = session_factory
        self._settings = sync_settings or settings.sync
        self._sleep = sleep
        self._clock = clock

        self._running = False
        self._loop_task: Optional[asyncio.Task] = None
        self.last_summary: Optional[SweepSummary] = None

    @property
    def is_running(self) -> bool:
        return self._running

    def is_stale(self, last_sync: Optional[datetime], now: datetime) -> bool:
        last_sync = ensure_utc(last_sync)
        if last_sync is None:
            return True
        return now - last_sync >= timedelta(minutes=self._settings.stale_after_minutes)

    async def run_sweep(self) -> SweepSummary:
        """One pass over all active connections. Never raises."""
        summary = SweepSummary(started_at=self._clock())
        logger.info("Starting cTrader auto-sync sweep")

        try:
            targets = await self._load_targets()
        except Exception as e:
            logger.error(f"Auto-sync could not load connections: {e}")
            summary.errors.append(f"Failed to load connections: {e}")
            summary.finished_at = self._clock()
            self.last_summary = summary
            return summary

        logger.info(f"Found {len(targets)} active cTrader connections")

        synced_before = False
        for target in targets:
            now = self._clock()
            if not self.is_stale(target.last_sync, now):
                logger.debug(f"Skipping account {target.account_number}, synced recently")
                summary.skipped_accounts += 1
                summary.results.append(AccountSyncOutcome(
                    target.trading_account_id, target.account_number, "skipped", reason="recently synced",
                ))
                continue

            if synced_before and self._settings.pacing_seconds > 0:
                await self._sleep(self._settings.pacing_seconds)
            synced_before = True

            await self._sync_target(target, summary)

        summary.finished_at = self._clock()
        self.last_summary = summary
        logger.info(
            f"Auto-sync completed: synced={summary.synced_accounts}, "
            f"skipped={summary.skipped_accounts}, errors={len(summary.errors)}"
        )
        return summary

    async def _load_targets(self) -> List[_SweepTarget]:
        async with self._session_factory() as session:
            connections = await CTraderConnectionRepository(session).list_active()
            return [
                _SweepTarget(
                    trading_account_id=c.trading_account_id,
                    account_number=c.account_number,
                    user_id=c.user_id,
                    last_sync=c.last_sync,
                )
                for c in connections
            ]

    async def _sync_target(self, target: _SweepTarget, summary: SweepSummary) -> None:
        logger.info(f"Syncing account {target.account_number}")
        try:
            result = await self.sync_service.sync(
                target.trading_account_id,
                full_sync=False,
                user_id=target.user_id,
                account_number=target.account_number,
            )
        except SyncInProgress:
            logger.info(f"Account {target.account_number} already syncing, skipped")
            summary.skipped_accounts += 1
            summary.results.append(AccountSyncOutcome(
                target.trading_account_id, target.account_number, "skipped", reason="sync in progress",
            ))
            return
        except SyncError as e:
            logger.error(f"Error syncing account {target.account_number}: {e.code}: {e.message}")
            summary.errors.append(f"Account {target.account_number}: {e.code}: {e.message}")
            summary.results.append(AccountSyncOutcome(
                target.trading_account_id, target.account_number, "failed", reason=e.code,
            ))
            return
        except Exception as e:
            logger.exception(f"Unexpected error syncing account {target.account_number}: {e}")
            summary.errors.append(f"Account {target.account_number}: {e}")
            summary.results.append(AccountSyncOutcome(
                target.trading_account_id, target.account_number, "failed", reason=str(e),
            ))
            return

        summary.synced_accounts += 1
        summary.results.append(AccountSyncOutcome(
            target.trading_account_id, target.account_number, "synced", result=result.to_dict(),
        ))

    async def start(self) -> None:
        """Start the interval loop."""
        if self._running:
            return

        self._running = True
        self._loop_task = asyncio.create_task(self._sweep_loop())
        logger.info(f"cTrader auto-sync started (every {self._settings.auto_sync_interval_seconds}s)")

    async def stop(self) -> None:
        """Stop the interval loop."""
        self._running = False

        if self._loop_task:
            self._loop_task.cancel()
            try:
                await self._loop_task
            except asyncio.CancelledError:
                pass
            self._loop_task = None

        logger.info("cTrader auto-sync stopped")

    async def _sweep_loop(self) -> None:
        while self._running:
            try:
                await self.run_sweep()
                await asyncio.sleep(self._settings.auto_sync_interval_seconds)
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Error in auto-sync loop: {e}")
                await asyncio.sleep(self._settings.auto_sync_interval_seconds)
