"""FastAPI dependencies shared by the cTrader routes."""

from typing import Optional

from fastapi import Depends, Header, Request
from sqlalchemy.ext.asyncio import AsyncSession

from journal.db.session import get_db
from journal.services.auth_client import AuthClient, extract_bearer
from journal.services.ctrader_connect import CTraderConnectService
from journal.services.ctrader_sync import CTraderSyncService, create_sync_service
from journal.services.sync_scheduler import CTraderSyncScheduler


def get_auth_client() -> AuthClient:
    return AuthClient()


async def get_bearer_token(authorization: Optional[str] = Header(default=None)) -> str:
    return extract_bearer(authorization)


async def get_current_user_id(
    token: str = Depends(get_bearer_token),
    auth_client: AuthClient = Depends(get_auth_client),
) -> str:
    """Resolve the caller's user id; raises Unauthorized."""
    return await auth_client.get_user_id(token)


def get_sync_service(request: Request) -> CTraderSyncService:
    """Process-wide orchestrator, so the per-account lock is shared."""
    service = getattr(request.app.state, "sync_service", None)
    if service is None:
        service = create_sync_service()
        request.app.state.sync_service = service
    return service


def get_scheduler(
    request: Request,
    sync_service: CTraderSyncService = Depends(get_sync_service),
) -> CTraderSyncScheduler:
    scheduler = getattr(request.app.state, "sync_scheduler", None)
    if scheduler is None:
        scheduler = CTraderSyncScheduler(sync_service)
        request.app.state.sync_scheduler = scheduler
    return scheduler


async def get_connect_service(db: AsyncSession = Depends(get_db)) -> CTraderConnectService:
    return CTraderConnectService(db)
