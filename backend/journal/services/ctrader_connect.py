"""
cTrader Connect Service
TradeJournal cTrader Sync

OAuth linking of a journal trading account to a cTrader account:

1. start_authorization: store a one-hour state, hand back the consent URL
2. complete_authorization: validate the state, exchange the code, resolve
   the broker account number and upsert the connection
"""

import html
import json
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Optional

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession

from journal.brokers.ctrader_auth import CTraderOAuthClient
from journal.brokers.ctrader_data import CTraderDataClient
from journal.core.config import CTraderSettings, settings
from journal.core.errors import (
    AuthStateInvalid,
    BrokerNotConfigured,
    ConnectionConflict,
    NotConnected,
    ProtocolError,
)
from journal.db.repositories.accounts import (
    CTraderAuthStateRepository,
    CTraderConnectionRepository,
    TradingAccountRepository,
)
from journal.utils.timeutils import ensure_utc, utcnow


@dataclass
class AuthorizationStart:
    auth_url: str
    state: str
    expires_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {
            "authUrl": self.auth_url,
            "state": self.state,
            "expiresAt": self.expires_at.isoformat(),
        }


@dataclass
class ConnectedAccount:
    connection_id: str
    trading_account_id: str
    account_number: str
    expires_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {
            "connectionId": self.connection_id,
            "tradingAccountId": self.trading_account_id,
            "accountNumber": self.account_number,
            "expiresAt": self.expires_at.isoformat(),
        }


class CTraderConnectService:
    """OAuth connect flow for one database session."""

    def __init__(
        self,
        session: AsyncSession,
        oauth_client: Optional[CTraderOAuthClient] = None,
        data_client: Optional[CTraderDataClient] = None,
        ctrader_settings: Optional[CTraderSettings] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.session = session
        self._settings = ctrader_settings or settings.ctrader
        self.oauth = oauth_client or CTraderOAuthClient(self._settings)
        self.data = data_client or CTraderDataClient()
        self.accounts = TradingAccountRepository(session)
        self.connections = CTraderConnectionRepository(session)
        self.states = CTraderAuthStateRepository(session)
        self._clock = clock

    async def start_authorization(
        self,
        user_id: str,
        trading_account_id: str,
        account_number: str = "",
    ) -> AuthorizationStart:
        """
        Begin linking a trading account.

        Raises:
            BrokerNotConfigured: client credentials missing
            NotConnected: trading account not found for this user
        """
        if not self.oauth.is_configured:
            raise BrokerNotConfigured("cTrader client credentials are not configured")

        account = await self.accounts.get_for_user(trading_account_id, user_id)
        if account is None:
            raise NotConnected(
                "Trading account not found",
                {"tradingAccountId": trading_account_id},
            )

        now = self._clock()
        purged = await self.states.purge_expired(now)
        if purged:
            logger.debug(f"Purged {purged} expired cTrader auth states")

        state = secrets.token_urlsafe(32)
        expires_at = now + timedelta(minutes=self._settings.auth_state_ttl_minutes)
        await self.states.create({
            "state": state,
            "user_id": user_id,
            "trading_account_id": trading_account_id,
            "account_number": (account_number or "").strip(),
            "expires_at": expires_at,
        })

        logger.info(f"Started cTrader authorization for trading account {trading_account_id}")
        return AuthorizationStart(
            auth_url=self.oauth.build_authorization_url(state),
            state=state,
            expires_at=expires_at,
        )

    async def complete_authorization(self, code: str, state: str) -> ConnectedAccount:
        """
        Finish linking after the broker redirects back.

        Raises:
            AuthStateInvalid: unknown or expired state, or missing code
            TokenRefreshFailed: code exchange rejected
            ProtocolError / Timeout: account lookup failed
            ConnectionConflict: broker account linked by another user
        """
        if not code or not state:
            raise AuthStateInvalid("Missing authorization code or state")

        auth_state = await self.states.get_by_state(state)
        if auth_state is None:
            raise AuthStateInvalid("Unknown authorization state")

        user_id = auth_state.user_id
        trading_account_id = auth_state.trading_account_id
        account_number = auth_state.account_number or ""

        if ensure_utc(auth_state.expires_at) < self._clock():
            await self.states.delete_state(state)
            raise AuthStateInvalid("Authorization state expired, please reconnect")

        grant = await self.oauth.exchange_code(code)

        if not account_number:
            account_number = await self._resolve_account_number(grant.access_token)

        existing = await self.connections.get_by_account_pair(trading_account_id, account_number)
        if existing is not None and existing.user_id != user_id:
            raise ConnectionConflict(
                "This cTrader account is already linked by another user",
                {"accountNumber": account_number},
            )

        connection = await self.connections.upsert(
            user_id=user_id,
            trading_account_id=trading_account_id,
            account_number=account_number,
            access_token=grant.access_token,
            refresh_token=grant.refresh_token,
            expires_at=grant.expires_at,
            commit=False,
        )
        await self.states.delete_state(state, commit=False)
        await self.session.commit()

        logger.info(f"✓ Connected cTrader account {account_number} to trading account {trading_account_id}")
        return ConnectedAccount(
            connection_id=connection.id,
            trading_account_id=trading_account_id,
            account_number=account_number,
            expires_at=grant.expires_at,
        )

    async def _resolve_account_number(self, access_token: str) -> str:
        account_ids = await self.data.fetch_account_ids(access_token)
        if not account_ids:
            raise ProtocolError("No cTrader accounts are authorised for this token")
        if len(account_ids) > 1:
            logger.warning(f"Token authorises {len(account_ids)} accounts, linking the first")
        return str(account_ids[0])


def render_callback_page(success: bool, message: str) -> str:
    """Popup page that reports the outcome to the opener and closes itself."""
    payload = json.dumps({"type": "ctrader-auth", "success": success, "message": message})
    # Keep the message from closing the script element
    safe_payload = payload.replace("</", "<\\/")
    title = "cTrader connected" if success else "cTrader connection failed"
    return f"""<!DOCTYPE html>
<html>
<head><meta charset="utf-8"><title>{html.escape(title)}</title></head>
<body>
<h3>{html.escape(title)}</h3>
<p>{html.escape(message)}</p>
<script>
  if (window.opener) {{
    window.opener.postMessage({safe_payload}, "*");
  }}
  setTimeout(function () {{ window.close(); }}, 1500);
</script>
</body>
</html>
"""
