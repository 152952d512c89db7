"""
Services Layer
TradeJournal cTrader Sync

Sync Pipeline:
    - TokenStore: connection lookup and proactive token refresh
    - PositionReconciler: idempotent open-position upsert into trades
    - CTraderSyncService: one end-to-end account sync
    - CTraderSyncScheduler: periodic sweep over active connections

Linking:
    - CTraderConnectService: OAuth authorization and callback

Collaborators:
    - AuthClient: bearer token -> user id
    - TradeHistoryImporter: closed-trade history import
"""

from journal.services.auth_client import AuthClient, extract_bearer
from journal.services.ctrader_connect import (
    AuthorizationStart,
    ConnectedAccount,
    CTraderConnectService,
    render_callback_page,
)
from journal.services.ctrader_sync import (
    AccountLockRegistry,
    CTraderSyncService,
    SyncResult,
    create_sync_service,
)
from journal.services.position_reconciler import PositionReconciler, ReconcileReport
from journal.services.sync_scheduler import (
    AccountSyncOutcome,
    CTraderSyncScheduler,
    SweepSummary,
)
from journal.services.token_store import TokenStore
from journal.services.trade_import import (
    HttpTradeHistoryImporter,
    NullTradeHistoryImporter,
    TradeHistoryImporter,
    create_trade_importer,
)

__all__ = [
    "AuthClient",
    "extract_bearer",
    "AuthorizationStart",
    "ConnectedAccount",
    "CTraderConnectService",
    "render_callback_page",
    "AccountLockRegistry",
    "CTraderSyncService",
    "SyncResult",
    "create_sync_service",
    "PositionReconciler",
    "ReconcileReport",
    "AccountSyncOutcome",
    "CTraderSyncScheduler",
    "SweepSummary",
    "TokenStore",
    "HttpTradeHistoryImporter",
    "NullTradeHistoryImporter",
    "TradeHistoryImporter",
    "create_trade_importer",
]
