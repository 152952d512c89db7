"""
Identity Provider Client
TradeJournal cTrader Sync

Resolves the user behind a bearer token by asking the identity provider's
user endpoint. User sessions themselves are managed elsewhere.
"""

from typing import Optional

import httpx
from loguru import logger

from journal.core.config import AuthSettings, settings
from journal.core.errors import Unauthorized


def extract_bearer(authorization: Optional[str]) -> str:
    """Token from an 'Authorization: Bearer ...' header value."""
    if not authorization:
        raise Unauthorized("Missing authorization header")
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise Unauthorized("Malformed authorization header")
    return token.strip()


class AuthClient:
    """Validates user access tokens against the identity provider."""

    def __init__(
        self,
        auth_settings: Optional[AuthSettings] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._settings = auth_settings or settings.auth
        self._transport = transport

    async def get_user_id(self, token: str) -> str:
        """
        User id owning the token.

        Raises:
            Unauthorized: token rejected or identity provider unreachable
        """
        headers = {"Authorization": f"Bearer {token}"}
        if self._settings.api_key:
            headers["apikey"] = self._settings.api_key

        async with httpx.AsyncClient(timeout=self._settings.timeout, transport=self._transport) as client:
            try:
                response = await client.get(f"{self._settings.url.rstrip('/')}/user", headers=headers)
            except httpx.HTTPError as e:
                logger.error(f"Identity provider request failed: {e}")
                raise Unauthorized("Unable to verify credentials") from e

        if response.status_code != 200:
            logger.warning(f"Authentication failed: {response.status_code}")
            raise Unauthorized("Unauthorized")

        user_id = (response.json() or {}).get("id")
        if not user_id:
            raise Unauthorized("Unauthorized")
        return str(user_id)
