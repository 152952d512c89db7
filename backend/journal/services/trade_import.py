"""
Trade History Import Collaborator
TradeJournal cTrader Sync

Closed-trade history import lives in a separate service; the sync pipeline
only asks it to import a date window and reads back how many trades it
stored.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Dict, Optional

import httpx
from loguru import logger

from journal.core.config import SyncSettings, settings


class TradeHistoryImporter(ABC):
    """Imports closed trades for a trading account and date window."""

    @abstractmethod
    async def import_history(
        self,
        trading_account_id: str,
        from_date: datetime,
        to_date: datetime,
        bearer_token: Optional[str] = None,
    ) -> int:
        """Returns the number of trades imported."""
        pass


class NullTradeHistoryImporter(TradeHistoryImporter):
    """Used when no import service is configured."""

    async def import_history(
        self,
        trading_account_id: str,
        from_date: datetime,
        to_date: datetime,
        bearer_token: Optional[str] = None,
    ) -> int:
        logger.debug(f"History import not configured, skipping account {trading_account_id}")
        return 0


class HttpTradeHistoryImporter(TradeHistoryImporter):
    """POSTs the import window to the history import endpoint."""

    def __init__(
        self,
        url: str,
        timeout: float = 60.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.url = url
        self.timeout = timeout
        self._transport = transport

    async def import_history(
        self,
        trading_account_id: str,
        from_date: datetime,
        to_date: datetime,
        bearer_token: Optional[str] = None,
    ) -> int:
        headers: Dict[str, str] = {"Content-Type": "application/json"}
        if bearer_token:
            headers["Authorization"] = f"Bearer {bearer_token}"

        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            response = await client.post(
                self.url,
                json={
                    "tradingAccountId": trading_account_id,
                    "fromDate": from_date.isoformat(),
                    "toDate": to_date.isoformat(),
                },
                headers=headers,
            )
        response.raise_for_status()

        data = response.json() or {}
        count = int(data.get("tradesCount") or data.get("inserted") or 0)
        logger.info(f"Imported {count} trades during sync")
        return count


def create_trade_importer(sync_settings: Optional[SyncSettings] = None) -> TradeHistoryImporter:
    """Importer for the configured history import endpoint."""
    sync_settings = sync_settings or settings.sync
    if sync_settings.history_import_url:
        return HttpTradeHistoryImporter(
            sync_settings.history_import_url,
            timeout=sync_settings.history_import_timeout,
        )
    return NullTradeHistoryImporter()
