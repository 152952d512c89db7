"""
cTrader API Routes

Endpoints for linking cTrader accounts and syncing them:
- OAuth start and popup callback
- Manual account sync
- Auto-sync trigger for an external timer
- Connection status
"""

import secrets
from typing import Optional

from fastapi import APIRouter, Depends, Header, Query
from fastapi.responses import HTMLResponse
from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession

from journal.api.deps import (
    get_bearer_token,
    get_connect_service,
    get_current_user_id,
    get_scheduler,
    get_sync_service,
)
from journal.core.config import settings
from journal.core.errors import NotConnected, SyncError, Unauthorized
from journal.db.repositories.accounts import CTraderConnectionRepository
from journal.db.session import get_db
from journal.schemas.ctrader import (
    AuthStartRequest,
    AuthStartResponse,
    ConnectionStatus,
    SyncRequest,
    SyncResponse,
)
from journal.services.ctrader_connect import CTraderConnectService, render_callback_page
from journal.services.ctrader_sync import CTraderSyncService
from journal.services.sync_scheduler import CTraderSyncScheduler
from journal.utils.timeutils import ensure_utc, utcnow

router = APIRouter()


@router.post("/auth", response_model=AuthStartResponse, response_model_by_alias=True)
async def start_auth(
    body: AuthStartRequest,
    user_id: str = Depends(get_current_user_id),
    connect: CTraderConnectService = Depends(get_connect_service),
):
    """Create an OAuth state and return the cTrader consent URL."""
    started = await connect.start_authorization(
        user_id,
        body.trading_account_id,
        body.account_number or "",
    )
    return AuthStartResponse(authUrl=started.auth_url, state=started.state)


@router.get("/callback", response_class=HTMLResponse)
async def oauth_callback(
    code: Optional[str] = Query(default=None),
    state: Optional[str] = Query(default=None),
    error: Optional[str] = Query(default=None),
    connect: CTraderConnectService = Depends(get_connect_service),
):
    """OAuth redirect target; answers with a page that closes the popup."""
    if error:
        logger.warning(f"cTrader authorization denied: {error}")
        return HTMLResponse(render_callback_page(False, f"Authorization failed: {error}"), status_code=400)

    try:
        connected = await connect.complete_authorization(code or "", state or "")
    except SyncError as e:
        logger.error(f"cTrader callback failed: {e.code}: {e.message}")
        return HTMLResponse(render_callback_page(False, e.message), status_code=e.status_code)

    return HTMLResponse(
        render_callback_page(True, f"cTrader account {connected.account_number} connected successfully")
    )


@router.post("/sync", response_model=SyncResponse, response_model_by_alias=True)
async def sync_account(
    body: SyncRequest,
    token: str = Depends(get_bearer_token),
    user_id: str = Depends(get_current_user_id),
    sync_service: CTraderSyncService = Depends(get_sync_service),
):
    """Sync one trading account now."""
    result = await sync_service.sync(
        body.trading_account_id,
        full_sync=body.full_sync,
        user_id=user_id,
        bearer_token=token,
        account_number=body.account_number,
    )
    return SyncResponse.model_validate(result.to_dict())


@router.post("/auto-sync")
async def auto_sync(
    x_cron_secret: Optional[str] = Header(default=None),
    scheduler: CTraderSyncScheduler = Depends(get_scheduler),
):
    """Run one sweep over all active connections."""
    expected = settings.sync.cron_secret
    if expected and not secrets.compare_digest(x_cron_secret or "", expected):
        raise Unauthorized("Invalid cron secret")

    summary = await scheduler.run_sweep()
    return summary.to_dict()


@router.get("/connections/{trading_account_id}", response_model=ConnectionStatus, response_model_by_alias=True)
async def connection_status(
    trading_account_id: str,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    sync_service: CTraderSyncService = Depends(get_sync_service),
):
    """Connection status of a trading account for the caller."""
    connection = await CTraderConnectionRepository(db).get_for_account(trading_account_id, user_id)
    if connection is None:
        raise NotConnected("cTrader connection not found", {"tradingAccountId": trading_account_id})

    expires_at = ensure_utc(connection.expires_at)
    return ConnectionStatus(
        connected=True,
        tradingAccountId=trading_account_id,
        accountNumber=connection.account_number,
        expiresAt=expires_at,
        lastSync=ensure_utc(connection.last_sync),
        connectedAt=ensure_utc(connection.connected_at),
        tokenExpired=expires_at is not None and expires_at <= utcnow(),
        syncInProgress=sync_service.locks.is_locked(trading_account_id),
    )
