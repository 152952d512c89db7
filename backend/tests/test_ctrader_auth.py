"""
Tests for the cTrader OAuth client.
"""

from datetime import datetime, timedelta, timezone
from urllib.parse import parse_qs, urlparse

import httpx
import pytest

from journal.brokers.ctrader_auth import CTraderOAuthClient, TokenGrant
from journal.core.config import CTraderSettings
from journal.core.errors import TokenRefreshFailed


@pytest.fixture
def ctrader_settings():
    return CTraderSettings(
        client_id="client-1",
        client_secret="secret-1",
        redirect_uri="https://journal.test/api/ctrader/callback",
        token_url="https://openapi.test/apps/token",
        authorize_url="https://connect.test/apps/auth",
    )


def client_with(ctrader_settings, handler):
    return CTraderOAuthClient(ctrader_settings, transport=httpx.MockTransport(handler))


class TestTokenGrant:

    def test_expiry_from_expires_in(self):
        now = datetime(2026, 1, 1, tzinfo=timezone.utc)
        grant = TokenGrant.from_response(
            {"access_token": "a", "refresh_token": "r", "expires_in": 3600}, now=now
        )
        assert grant.expires_at == now + timedelta(hours=1)

    def test_default_ttl_and_fallback_refresh_token(self):
        now = datetime(2026, 1, 1, tzinfo=timezone.utc)
        grant = TokenGrant.from_response({"accessToken": "a"}, fallback_refresh_token="old", now=now)
        assert grant.refresh_token == "old"
        assert grant.expires_at == now + timedelta(seconds=2628000)

    def test_missing_access_token(self):
        with pytest.raises(TokenRefreshFailed):
            TokenGrant.from_response({"errorCode": "ACCESS_DENIED"})


class TestAuthorizationUrl:

    def test_contains_oauth_parameters(self, ctrader_settings):
        oauth = CTraderOAuthClient(ctrader_settings)
        url = urlparse(oauth.build_authorization_url("state-123"))
        params = parse_qs(url.query)

        assert f"{url.scheme}://{url.netloc}{url.path}" == "https://connect.test/apps/auth"
        assert params["client_id"] == ["client-1"]
        assert params["redirect_uri"] == ["https://journal.test/api/ctrader/callback"]
        assert params["scope"] == ["accounts"]
        assert params["response_type"] == ["code"]
        assert params["state"] == ["state-123"]

    def test_is_configured(self, ctrader_settings):
        assert CTraderOAuthClient(ctrader_settings).is_configured
        assert not CTraderOAuthClient(CTraderSettings(client_id="", client_secret="")).is_configured


class TestTokenEndpoint:

    @pytest.mark.asyncio
    async def test_refresh_posts_form(self, ctrader_settings):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["form"] = parse_qs(request.content.decode())
            return httpx.Response(200, json={
                "access_token": "new-access",
                "refresh_token": "new-refresh",
                "expires_in": 2628000,
            })

        grant = await client_with(ctrader_settings, handler).refresh("old-refresh")

        assert grant.access_token == "new-access"
        assert grant.refresh_token == "new-refresh"
        assert seen["url"] == "https://openapi.test/apps/token"
        assert seen["form"]["grant_type"] == ["refresh_token"]
        assert seen["form"]["refresh_token"] == ["old-refresh"]
        assert seen["form"]["client_id"] == ["client-1"]
        assert seen["form"]["client_secret"] == ["secret-1"]

    @pytest.mark.asyncio
    async def test_refresh_keeps_old_refresh_token_when_omitted(self, ctrader_settings):
        def handler(request):
            return httpx.Response(200, json={"access_token": "new-access", "expires_in": 60})

        grant = await client_with(ctrader_settings, handler).refresh("old-refresh")

        assert grant.refresh_token == "old-refresh"

    @pytest.mark.asyncio
    async def test_exchange_code(self, ctrader_settings):
        seen = {}

        def handler(request):
            seen["form"] = parse_qs(request.content.decode())
            return httpx.Response(200, json={"access_token": "a", "refresh_token": "r", "expires_in": 60})

        grant = await client_with(ctrader_settings, handler).exchange_code("code-1")

        assert grant.access_token == "a"
        assert seen["form"]["grant_type"] == ["authorization_code"]
        assert seen["form"]["code"] == ["code-1"]
        assert seen["form"]["redirect_uri"] == ["https://journal.test/api/ctrader/callback"]

    @pytest.mark.asyncio
    async def test_non_2xx_raises(self, ctrader_settings):
        def handler(request):
            return httpx.Response(400, json={"error": "invalid_grant"})

        with pytest.raises(TokenRefreshFailed) as exc_info:
            await client_with(ctrader_settings, handler).refresh("bad")

        assert exc_info.value.status == 400

    @pytest.mark.asyncio
    async def test_network_error_raises(self, ctrader_settings):
        def handler(request):
            raise httpx.ConnectError("unreachable", request=request)

        with pytest.raises(TokenRefreshFailed):
            await client_with(ctrader_settings, handler).refresh("r")

    @pytest.mark.asyncio
    async def test_invalid_json_raises(self, ctrader_settings):
        def handler(request):
            return httpx.Response(200, text="<html>oops</html>")

        with pytest.raises(TokenRefreshFailed):
            await client_with(ctrader_settings, handler).refresh("r")
