"""
cTrader Token Store
TradeJournal cTrader Sync

Resolves the stored OAuth connection of a trading account and keeps its
tokens fresh. Refresh is proactive: a token expiring within the margin
(one hour by default) is exchanged before any protocol call.
"""

from datetime import datetime, timedelta
from typing import Optional

from loguru import logger
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from journal.brokers.ctrader_auth import CTraderOAuthClient
from journal.core.config import settings
from journal.core.errors import NotConnected, TokenRefreshFailed
from journal.db.models.accounts import CTraderConnection
from journal.db.repositories.accounts import CTraderConnectionRepository
from journal.utils.timeutils import ensure_utc, utcnow


class TokenStore:
    """Connection lookup and token refresh for one database session."""

    def __init__(
        self,
        session: AsyncSession,
        oauth_client: CTraderOAuthClient,
        refresh_margin: Optional[timedelta] = None,
    ):
        self.session = session
        self.connections = CTraderConnectionRepository(session)
        self.oauth = oauth_client
        self.refresh_margin = refresh_margin or timedelta(
            minutes=settings.sync.token_refresh_margin_minutes
        )

    async def get(
        self,
        trading_account_id: str,
        user_id: Optional[str] = None,
        account_number: Optional[str] = None,
    ) -> CTraderConnection:
        """
        Stored connection for a trading account.

        Raises:
            NotConnected: no connection (for this user, when given)
        """
        connection = await self.connections.get_for_account(trading_account_id, user_id, account_number)
        if connection is None:
            details = {"tradingAccountId": trading_account_id}
            if account_number is not None:
                details["accountNumber"] = account_number
            raise NotConnected("cTrader connection not found. Please connect first.", details)
        return connection

    def needs_refresh(self, connection: CTraderConnection, now: Optional[datetime] = None) -> bool:
        expires_at = ensure_utc(connection.expires_at)
        if expires_at is None:
            return True
        return expires_at - (now or utcnow()) < self.refresh_margin

    async def refresh(self, connection: CTraderConnection) -> CTraderConnection:
        """
        Exchange the refresh token and persist the new pair.

        The stored row is left untouched when the exchange fails.

        Raises:
            TokenRefreshFailed
        """
        connection_id = connection.id
        logger.info(f"Refreshing cTrader access token for account {connection.account_number}")

        try:
            grant = await self.oauth.refresh(connection.refresh_token)
        except TokenRefreshFailed as e:
            logger.error(f"Failed to refresh token for connection {connection_id}: {e.message}")
            raise

        try:
            await self.connections.update_tokens(
                connection_id,
                access_token=grant.access_token,
                refresh_token=grant.refresh_token,
                expires_at=grant.expires_at,
            )
            await self.session.refresh(connection)
        except SQLAlchemyError as e:
            await self.session.rollback()
            logger.error(f"Failed to persist refreshed tokens for connection {connection_id}: {e}")
            raise TokenRefreshFailed("Refreshed tokens could not be stored") from e

        logger.info("Access token refreshed successfully")
        return connection

    async def ensure_fresh(self, connection: CTraderConnection, now: Optional[datetime] = None) -> CTraderConnection:
        """Refresh the connection's tokens if they expire within the margin."""
        if self.needs_refresh(connection, now):
            return await self.refresh(connection)
        return connection
