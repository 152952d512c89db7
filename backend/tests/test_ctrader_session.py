"""
Tests for the cTrader Open API protocol session.

Drives the state machine with a scripted WebSocket.
"""

import asyncio
import json

import pytest
from websockets.exceptions import ConnectionClosedError
from websockets.frames import Close

from journal.brokers.ctrader_session import (
    CTraderProtocolSession,
    PayloadType,
    ProtocolRequest,
    SessionState,
    decode_message,
    encode_message,
)
from journal.core.errors import ProtocolError, Timeout

from conftest import ACCOUNT_NUMBER, CLOSE, FakeConnect, FakeWebSocket, handshake_script


ACCOUNT_ID = int(ACCOUNT_NUMBER)


def trader_request() -> ProtocolRequest:
    return ProtocolRequest(
        payload_type=PayloadType.TRADER_REQ,
        response_type=PayloadType.TRADER_RES,
        payload={"ctidTraderAccountId": ACCOUNT_ID},
        account_id=ACCOUNT_ID,
    )


def make_session(ws=None, error=None, timeout=1.0, access_token="token"):
    connect = FakeConnect(ws, error=error)
    session = CTraderProtocolSession(
        client_id="client",
        client_secret="secret",
        access_token=access_token,
        ws_url="wss://example.test:5036",
        timeout=timeout,
        connect=connect,
    )
    return session, connect


class TestMessageCodec:
    """Tests for JSON frame encoding."""

    def test_encode_adds_client_msg_id(self):
        message = json.loads(encode_message("ProtoOATraderReq", {"ctidTraderAccountId": 7}))
        assert message["payloadType"] == "ProtoOATraderReq"
        assert message["ctidTraderAccountId"] == 7
        assert message["clientMsgId"]

    def test_decode_flattens_nested_payload(self):
        raw = json.dumps({"payloadType": "ProtoOATraderRes", "payload": {"trader": {"balance": 1}}})
        message = decode_message(raw)
        assert message["trader"] == {"balance": 1}
        assert "payload" not in message

    def test_decode_rejects_non_object(self):
        with pytest.raises(ValueError):
            decode_message("[1, 2]")

    def test_error_payload_detection(self):
        assert PayloadType.is_error("ProtoOAErrorRes")
        assert PayloadType.is_error("ProtoErrorRes")
        assert not PayloadType.is_error("ProtoOATraderRes")
        assert not PayloadType.is_error(None)


class TestHandshake:
    """Tests for the happy path."""

    @pytest.mark.asyncio
    async def test_full_handshake_resolves_with_response(self):
        ws = FakeWebSocket(handshake_script(
            ProtoOATraderReq=[{"payloadType": "ProtoOATraderRes", "trader": {"balance": 1005025}}],
        ))
        session, connect = make_session(ws)

        response = await session.request(trader_request())

        assert response["trader"] == {"balance": 1005025}
        assert ws.sent_types == [
            "ProtoOAApplicationAuthReq",
            "ProtoOAAccountAuthReq",
            "ProtoOATraderReq",
        ]
        assert ws.close_code == 1000
        assert session.state == SessionState.CLOSED
        assert connect.calls[0]["url"] == "wss://example.test:5036"

    @pytest.mark.asyncio
    async def test_auth_messages_carry_credentials(self):
        ws = FakeWebSocket(handshake_script(
            ProtoOATraderReq=[{"payloadType": "ProtoOATraderRes", "trader": {}}],
        ))
        session, _ = make_session(ws, access_token="abc")

        await session.request(trader_request())

        app_auth, account_auth, request = ws.sent
        assert app_auth["clientId"] == "client"
        assert app_auth["clientSecret"] == "secret"
        assert account_auth["accessToken"] == "abc"
        assert account_auth["ctidTraderAccountId"] == ACCOUNT_ID
        assert request["ctidTraderAccountId"] == ACCOUNT_ID

    @pytest.mark.asyncio
    async def test_request_without_account_auth(self):
        ws = FakeWebSocket(handshake_script(
            ProtoOAGetAccountListByAccessTokenReq=[{
                "payloadType": "ProtoOAGetAccountListByAccessTokenRes",
                "ctidTraderAccount": [{"ctidTraderAccountId": 42}],
            }],
        ))
        session, _ = make_session(ws)

        response = await session.request(ProtocolRequest(
            payload_type=PayloadType.ACCOUNT_LIST_REQ,
            response_type=PayloadType.ACCOUNT_LIST_RES,
            payload={"accessToken": "token"},
            requires_account_auth=False,
        ))

        assert response["ctidTraderAccount"][0]["ctidTraderAccountId"] == 42
        assert "ProtoOAAccountAuthReq" not in ws.sent_types

    @pytest.mark.asyncio
    async def test_unrelated_frames_are_ignored(self):
        ws = FakeWebSocket(handshake_script(
            ProtoOATraderReq=[
                {"payloadType": "ProtoHeartbeatEvent"},
                {"payloadType": "ProtoOASpotEvent"},
                {"payloadType": "ProtoOATraderRes", "trader": {"balance": 5}},
            ],
        ))
        session, _ = make_session(ws)

        response = await session.request(trader_request())

        assert response["trader"]["balance"] == 5

    @pytest.mark.asyncio
    async def test_session_is_single_use(self):
        ws = FakeWebSocket(handshake_script(
            ProtoOATraderReq=[{"payloadType": "ProtoOATraderRes", "trader": {}}],
        ))
        session, _ = make_session(ws)
        await session.request(trader_request())

        with pytest.raises(RuntimeError):
            await session.request(trader_request())


class TestFailures:
    """Tests for error payloads, closure and deadlines."""

    @pytest.mark.asyncio
    async def test_error_payload_during_account_auth(self):
        ws = FakeWebSocket({
            "ProtoOAApplicationAuthReq": [{"payloadType": "ProtoOAApplicationAuthRes"}],
            "ProtoOAAccountAuthReq": [{
                "payloadType": "ProtoOAErrorRes",
                "errorCode": "CH_ACCESS_TOKEN_INVALID",
                "description": "Invalid access token",
            }],
        })
        session, _ = make_session(ws)

        with pytest.raises(ProtocolError) as exc_info:
            await session.request(trader_request())

        assert exc_info.value.error_code == "CH_ACCESS_TOKEN_INVALID"
        assert exc_info.value.description == "Invalid access token"
        assert ws.close_code == 1000
        assert "ProtoOATraderReq" not in ws.sent_types

    @pytest.mark.asyncio
    async def test_error_payload_during_app_auth(self):
        ws = FakeWebSocket({
            "ProtoOAApplicationAuthReq": [{
                "payloadType": "ProtoErrorRes",
                "errorCode": "CH_CLIENT_AUTH_FAILURE",
            }],
        })
        session, _ = make_session(ws)

        with pytest.raises(ProtocolError) as exc_info:
            await session.request(trader_request())

        assert exc_info.value.error_code == "CH_CLIENT_AUTH_FAILURE"

    @pytest.mark.asyncio
    async def test_timeout_when_response_never_arrives(self):
        ws = FakeWebSocket(handshake_script())
        session, _ = make_session(ws, timeout=0.05)

        with pytest.raises(Timeout):
            await session.request(trader_request())

        assert session.state == SessionState.CLOSED

    @pytest.mark.asyncio
    async def test_channel_closed_before_response(self):
        ws = FakeWebSocket(handshake_script(ProtoOATraderReq=[CLOSE]))
        session, _ = make_session(ws)

        with pytest.raises(ProtocolError, match="closed before"):
            await session.request(trader_request())

    @pytest.mark.asyncio
    async def test_abnormal_closure_reports_close_code(self):
        ws = FakeWebSocket(handshake_script(
            ProtoOATraderReq=[ConnectionClosedError(Close(1011, "internal error"), None)],
        ))
        session, _ = make_session(ws)

        with pytest.raises(ProtocolError) as exc_info:
            await session.request(trader_request())

        assert exc_info.value.details["closeCode"] == 1011

    @pytest.mark.asyncio
    async def test_connection_refused(self):
        session, _ = make_session(error=OSError("connection refused"))

        with pytest.raises(ProtocolError, match="connection failed"):
            await session.request(trader_request())

    @pytest.mark.asyncio
    @pytest.mark.parametrize("error", [TimeoutError("opening handshake"), asyncio.TimeoutError()])
    async def test_opening_handshake_timeout(self, error):
        session, _ = make_session(error=error)

        with pytest.raises(Timeout) as exc_info:
            await session.request(trader_request())

        assert exc_info.value.details["state"] == SessionState.CONNECTING.value

    @pytest.mark.asyncio
    async def test_malformed_frame(self):
        ws = FakeWebSocket({"ProtoOAApplicationAuthReq": ["not json"]})
        session, _ = make_session(ws)

        with pytest.raises(ProtocolError, match="Malformed"):
            await session.request(trader_request())

    @pytest.mark.asyncio
    async def test_account_request_requires_token(self):
        session, connect = make_session(FakeWebSocket(), access_token=None)

        with pytest.raises(ProtocolError):
            await session.request(trader_request())

        assert connect.calls == []
