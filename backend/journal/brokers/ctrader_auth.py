"""
cTrader OAuth Client
TradeJournal cTrader Sync

Authorization URL construction and token endpoint calls:
- authorization_code exchange (OAuth callback)
- refresh_token exchange (proactive refresh before sync)
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, Optional
from urllib.parse import urlencode

import httpx
from loguru import logger

from journal.core.config import CTraderSettings, settings
from journal.core.errors import TokenRefreshFailed
from journal.utils.timeutils import utcnow


@dataclass
class TokenGrant:
    """Tokens returned by the token endpoint."""
    access_token: str
    refresh_token: str
    expires_at: datetime

    @classmethod
    def from_response(
        cls,
        data: Dict[str, Any],
        fallback_refresh_token: str = "",
        default_ttl_seconds: int = 2628000,
        now: Optional[datetime] = None,
    ) -> "TokenGrant":
        access_token = data.get("access_token") or data.get("accessToken")
        if not access_token:
            raise TokenRefreshFailed(
                f"Token endpoint returned no access token: {data.get('errorCode') or data.get('error') or 'unknown'}",
                details={"description": data.get("description") or data.get("error_description")},
            )
        refresh_token = data.get("refresh_token") or data.get("refreshToken") or fallback_refresh_token
        expires_in = data.get("expires_in", data.get("expiresIn"))
        ttl = int(expires_in) if expires_in is not None else default_ttl_seconds
        return cls(
            access_token=access_token,
            refresh_token=refresh_token,
            expires_at=(now or utcnow()) + timedelta(seconds=ttl),
        )


class CTraderOAuthClient:
    """
    OAuth client for the cTrader Open API application.

    Usage:
        oauth = CTraderOAuthClient()
        url = oauth.build_authorization_url(state)
        grant = await oauth.exchange_code(code)
        grant = await oauth.refresh(connection.refresh_token)
    """

    def __init__(
        self,
        ctrader_settings: Optional[CTraderSettings] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._settings = ctrader_settings or settings.ctrader
        self._transport = transport

    @property
    def is_configured(self) -> bool:
        return self._settings.is_configured

    def build_authorization_url(self, state: str) -> str:
        """Broker consent page URL for the popup window."""
        params = {
            "client_id": self._settings.client_id,
            "redirect_uri": self._settings.redirect_uri,
            "scope": self._settings.scope,
            "response_type": "code",
            "state": state,
        }
        return f"{self._settings.authorize_url}?{urlencode(params)}"

    async def exchange_code(self, code: str) -> TokenGrant:
        """Exchange an authorization code for tokens."""
        data = await self._post_token({
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": self._settings.redirect_uri,
            "client_id": self._settings.client_id,
            "client_secret": self._settings.client_secret,
        })
        logger.info("✓ cTrader authorization code exchanged")
        return TokenGrant.from_response(data, default_ttl_seconds=self._settings.default_token_ttl_seconds)

    async def refresh(self, refresh_token: str) -> TokenGrant:
        """Exchange a refresh token for a new token pair."""
        data = await self._post_token({
            "grant_type": "refresh_token",
            "refresh_token": refresh_token,
            "client_id": self._settings.client_id,
            "client_secret": self._settings.client_secret,
        })
        return TokenGrant.from_response(
            data,
            fallback_refresh_token=refresh_token,
            default_ttl_seconds=self._settings.default_token_ttl_seconds,
        )

    async def _post_token(self, form: Dict[str, str]) -> Dict[str, Any]:
        grant_type = form["grant_type"]
        async with httpx.AsyncClient(timeout=self._settings.http_timeout, transport=self._transport) as client:
            try:
                response = await client.post(
                    self._settings.token_url,
                    data=form,
                    headers={"Accept": "application/json"},
                )
            except httpx.HTTPError as e:
                logger.error(f"cTrader token request ({grant_type}) failed: {e}")
                raise TokenRefreshFailed(f"Token endpoint unreachable: {e}") from e

        if response.status_code < 200 or response.status_code >= 300:
            logger.error(f"cTrader token request ({grant_type}) failed: {response.status_code} - {response.text}")
            raise TokenRefreshFailed(
                f"Token request failed: {response.status_code}",
                status=response.status_code,
            )

        try:
            return response.json()
        except ValueError as e:
            raise TokenRefreshFailed("Token endpoint returned invalid JSON", status=response.status_code) from e
