"""
cTrader Open API Protocol Session
TradeJournal cTrader Sync

One-shot JSON session against the Open API WebSocket endpoint:

    CONNECTING -> APP_AUTHENTICATING -> ACCOUNT_AUTHENTICATING -> READY -> CLOSED

Each session authenticates the application, then the account (when the
request needs one), sends exactly one typed request and resolves with the
matching response. Error payloads, abnormal closure and the overall deadline
all fail the request and close the channel.

Usage:
    session = CTraderProtocolSession(client_id, client_secret, access_token)
    response = await session.request(ProtocolRequest(
        payload_type=PayloadType.TRADER_REQ,
        response_type=PayloadType.TRADER_RES,
        payload={"ctidTraderAccountId": 1002345},
        account_id=1002345,
    ))
"""

import asyncio
import json
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Optional, Union

import websockets
from websockets.exceptions import ConnectionClosed, WebSocketException
from loguru import logger

from journal.core.config import settings
from journal.core.errors import ProtocolError, Timeout


NORMAL_CLOSURE = 1000


class SessionState(str, Enum):
    """Protocol session states."""
    CONNECTING = "CONNECTING"
    APP_AUTHENTICATING = "APP_AUTHENTICATING"
    ACCOUNT_AUTHENTICATING = "ACCOUNT_AUTHENTICATING"
    READY = "READY"
    CLOSED = "CLOSED"


class PayloadType:
    """Open API JSON payload discriminators used by the sync pipeline."""
    APP_AUTH_REQ = "ProtoOAApplicationAuthReq"
    APP_AUTH_RES = "ProtoOAApplicationAuthRes"
    ACCOUNT_AUTH_REQ = "ProtoOAAccountAuthReq"
    ACCOUNT_AUTH_RES = "ProtoOAAccountAuthRes"
    TRADER_REQ = "ProtoOATraderReq"
    TRADER_RES = "ProtoOATraderRes"
    RECONCILE_REQ = "ProtoOAReconcileReq"
    RECONCILE_RES = "ProtoOAReconcileRes"
    ACCOUNT_LIST_REQ = "ProtoOAGetAccountListByAccessTokenReq"
    ACCOUNT_LIST_RES = "ProtoOAGetAccountListByAccessTokenRes"

    @staticmethod
    def is_error(payload_type: Any) -> bool:
        return isinstance(payload_type, str) and "Error" in payload_type


@dataclass
class ProtocolRequest:
    """A typed request and the response type that resolves it."""
    payload_type: str
    response_type: str
    payload: Dict[str, Any] = field(default_factory=dict)
    requires_account_auth: bool = True
    account_id: Optional[int] = None


def encode_message(payload_type: str, payload: Dict[str, Any], client_msg_id: Optional[str] = None) -> str:
    message = {"clientMsgId": client_msg_id or f"tj_{uuid.uuid4().hex[:12]}", "payloadType": payload_type}
    message.update(payload)
    return json.dumps(message)


def decode_message(raw: Union[str, bytes]) -> Dict[str, Any]:
    """
    Parse an inbound frame.

    Frames that wrap their fields in a nested "payload" object are
    flattened so handlers see one level of keys.
    """
    if isinstance(raw, bytes):
        raw = raw.decode("utf-8")
    message = json.loads(raw)
    if not isinstance(message, dict):
        raise ValueError("Open API frame is not a JSON object")
    nested = message.pop("payload", None)
    if isinstance(nested, dict):
        for key, value in nested.items():
            message.setdefault(key, value)
    return message


class CTraderProtocolSession:
    """
    Single-request Open API session.

    Not safe for reuse: create one session per logical fetch.
    """

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        access_token: Optional[str] = None,
        ws_url: Optional[str] = None,
        timeout: Optional[float] = None,
        connect: Optional[Callable[..., Any]] = None,
    ):
        """
        Args:
            client_id: Open API application client id
            client_secret: Open API application secret
            access_token: OAuth bearer for account auth
            ws_url: WebSocket endpoint (defaults to settings)
            timeout: Overall deadline in seconds (defaults to settings)
            connect: websockets-compatible connect callable (for tests)
        """
        ctrader_settings = settings.ctrader
        self._client_id = client_id
        self._client_secret = client_secret
        self._access_token = access_token
        self._ws_url = ws_url or ctrader_settings.ws_url
        self._timeout = timeout if timeout is not None else ctrader_settings.session_timeout
        self._connect = connect or websockets.connect

        self._state = SessionState.CLOSED
        self._used = False

    @property
    def state(self) -> SessionState:
        """Current session state."""
        return self._state

    async def request(self, request: ProtocolRequest) -> Dict[str, Any]:
        """
        Run the handshake and one typed request.

        Returns:
            The decoded response message.

        Raises:
            ProtocolError: broker error payload, abnormal closure or bad frame
            Timeout: deadline exceeded
        """
        if self._used:
            raise RuntimeError("CTraderProtocolSession handles exactly one request")
        self._used = True

        if request.requires_account_auth and not self._access_token:
            raise ProtocolError("Access token required for account-scoped request")

        try:
            return await asyncio.wait_for(self._run(request), timeout=self._timeout)
        except asyncio.TimeoutError:
            logger.warning(
                f"cTrader session timed out after {self._timeout}s "
                f"waiting for {request.response_type} (state={self._state.value})"
            )
            raise Timeout(
                f"Timed out after {self._timeout:g}s waiting for {request.response_type}",
                {"state": self._state.value},
            )
        finally:
            self._state = SessionState.CLOSED

    async def _run(self, request: ProtocolRequest) -> Dict[str, Any]:
        self._state = SessionState.CONNECTING
        try:
            async with self._connect(self._ws_url, open_timeout=self._timeout, close_timeout=5) as ws:
                self._state = SessionState.APP_AUTHENTICATING
                await ws.send(encode_message(PayloadType.APP_AUTH_REQ, {
                    "clientId": self._client_id,
                    "clientSecret": self._client_secret,
                }))

                async for raw in ws:
                    response = await self._handle_frame(ws, raw, request)
                    if response is not None:
                        await ws.close(code=NORMAL_CLOSURE)
                        return response

                raise ProtocolError(
                    f"Channel closed before {request.response_type} was received",
                    details={"state": self._state.value},
                )
        except ConnectionClosed as e:
            rcvd = getattr(e, "rcvd", None)
            code = rcvd.code if rcvd is not None else None
            reason = rcvd.reason if rcvd is not None else ""
            raise ProtocolError(
                f"WebSocket closed: {code} {reason}".strip(),
                details={"closeCode": code, "state": self._state.value},
            ) from e
        except (asyncio.TimeoutError, TimeoutError) as e:
            # Opening handshake deadline; TimeoutError is an OSError on 3.11+
            logger.warning(f"cTrader session timed out in state {self._state.value}")
            raise Timeout(
                f"Timed out after {self._timeout:g}s opening the cTrader connection",
                {"state": self._state.value},
            ) from e
        except (OSError, WebSocketException) as e:
            raise ProtocolError(f"WebSocket connection failed: {e}") from e

    async def _handle_frame(
        self,
        ws: Any,
        raw: Union[str, bytes],
        request: ProtocolRequest,
    ) -> Optional[Dict[str, Any]]:
        """Advance the state machine. Returns the response once it arrives."""
        try:
            message = decode_message(raw)
        except ValueError as e:
            raise ProtocolError(f"Malformed Open API frame: {e}") from e

        payload_type = message.get("payloadType")
        logger.debug(f"cTrader frame {payload_type} (state={self._state.value})")

        if PayloadType.is_error(payload_type):
            error_code = message.get("errorCode")
            description = message.get("description")
            await ws.close(code=NORMAL_CLOSURE)
            raise ProtocolError(
                f"cTrader API Error: {description or error_code or payload_type}",
                error_code=str(error_code) if error_code is not None else None,
                description=description,
            )

        if payload_type == PayloadType.APP_AUTH_RES and self._state == SessionState.APP_AUTHENTICATING:
            if request.requires_account_auth:
                self._state = SessionState.ACCOUNT_AUTHENTICATING
                account_auth: Dict[str, Any] = {"accessToken": self._access_token}
                if request.account_id is not None:
                    account_auth["ctidTraderAccountId"] = request.account_id
                await ws.send(encode_message(PayloadType.ACCOUNT_AUTH_REQ, account_auth))
            else:
                await self._send_request(ws, request)
            return None

        if payload_type == PayloadType.ACCOUNT_AUTH_RES and self._state == SessionState.ACCOUNT_AUTHENTICATING:
            await self._send_request(ws, request)
            return None

        if payload_type == request.response_type and self._state == SessionState.READY:
            return message

        # Heartbeats and unsolicited events
        return None

    async def _send_request(self, ws: Any, request: ProtocolRequest) -> None:
        self._state = SessionState.READY
        await ws.send(encode_message(request.payload_type, request.payload))
