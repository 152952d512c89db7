"""
Test configuration and shared fixtures for the cTrader sync backend tests.
"""

import asyncio
import json
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import StaticPool

from journal.brokers.ctrader_auth import TokenGrant
from journal.brokers.ctrader_data import AccountSnapshot, BrokerPosition
from journal.db.models import CTraderConnection, TradingAccount
from journal.db.session import create_session_factory, init_db


NOW = datetime(2026, 1, 15, 12, 0, tzinfo=timezone.utc)

USER_ID = "user-1"
ACCOUNT_ID = "acct-1"
ACCOUNT_NUMBER = "1002345"


# =============================================================================
# Database
# =============================================================================

@pytest.fixture
async def engine():
    """In-memory SQLite engine shared across sessions of one test."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return create_session_factory(engine)


@pytest.fixture
async def db_session(session_factory):
    async with session_factory() as session:
        yield session


async def add_account(
    session_factory,
    account_id: str = ACCOUNT_ID,
    user_id: str = USER_ID,
    is_active: bool = True,
) -> None:
    async with session_factory() as session:
        session.add(TradingAccount(
            id=account_id,
            user_id=user_id,
            name=f"Account {account_id}",
            broker="cTrader",
            currency="EUR",
            current_balance=0.0,
            current_equity=0.0,
            is_active=is_active,
        ))
        await session.commit()


async def add_connection(
    session_factory,
    account_id: str = ACCOUNT_ID,
    user_id: str = USER_ID,
    account_number: str = ACCOUNT_NUMBER,
    expires_in: timedelta = timedelta(hours=2),
    last_sync: Optional[datetime] = None,
    connected_at: Optional[datetime] = None,
    now: datetime = NOW,
) -> str:
    async with session_factory() as session:
        connection = CTraderConnection(
            user_id=user_id,
            trading_account_id=account_id,
            account_number=account_number,
            access_token="old-access",
            refresh_token="old-refresh",
            expires_at=now + expires_in,
            last_sync=last_sync,
            connected_at=connected_at or now - timedelta(days=1),
        )
        session.add(connection)
        await session.commit()
        return connection.id


@pytest.fixture
async def seeded(session_factory):
    """One active account with a connection valid for two more hours."""
    await add_account(session_factory)
    connection_id = await add_connection(session_factory)
    return {"account_id": ACCOUNT_ID, "user_id": USER_ID, "connection_id": connection_id}


# =============================================================================
# Broker Mocks
# =============================================================================

def make_snapshot(balance: float = 10050.25, equity: float = 10075.0, currency: str = "USD") -> AccountSnapshot:
    return AccountSnapshot(
        balance=balance,
        equity=equity,
        margin=0.0,
        free_margin=equity,
        margin_level=0.0,
        currency=currency,
        account_number=ACCOUNT_NUMBER,
    )


def make_position(position_id: str = "p1", pnl: float = 12.5, **overrides: Any) -> BrokerPosition:
    values = dict(
        id=position_id,
        symbol="EURUSD",
        side="BUY",
        volume=1.0,
        open_price=1.085,
        current_price=1.0862,
        pnl=pnl,
        commission=-3.5,
        swap=0.0,
        open_time=NOW - timedelta(hours=3),
    )
    values.update(overrides)
    return BrokerPosition(**values)


@pytest.fixture
def mock_oauth():
    oauth = MagicMock()
    oauth.is_configured = True
    oauth.refresh = AsyncMock(return_value=TokenGrant(
        access_token="new-access",
        refresh_token="new-refresh",
        expires_at=NOW + timedelta(days=30),
    ))
    oauth.exchange_code = AsyncMock(return_value=TokenGrant(
        access_token="code-access",
        refresh_token="code-refresh",
        expires_at=NOW + timedelta(days=30),
    ))
    oauth.build_authorization_url = MagicMock(
        side_effect=lambda state: f"https://connect.spotware.com/apps/auth?state={state}"
    )
    return oauth


@pytest.fixture
def mock_data_client():
    client = MagicMock()
    client.fetch_account_info = AsyncMock(return_value=make_snapshot())
    client.fetch_open_positions = AsyncMock(return_value=[make_position()])
    client.fetch_account_ids = AsyncMock(return_value=[int(ACCOUNT_NUMBER)])
    return client


@pytest.fixture
def mock_importer():
    importer = MagicMock()
    importer.import_history = AsyncMock(return_value=3)
    return importer


# =============================================================================
# Scripted WebSocket
# =============================================================================

CLOSE = object()


class FakeWebSocket:
    """
    Scripted stand-in for a websockets client connection.

    `script` maps an outbound payloadType to the frames answered when it is
    sent. A frame is a dict (JSON-encoded), a raw string, an exception
    instance (raised from the iterator) or CLOSE.
    """

    def __init__(self, script: Optional[Dict[str, List[Any]]] = None):
        self.script = {key: list(frames) for key, frames in (script or {}).items()}
        self.sent: List[Dict[str, Any]] = []
        self.closed = False
        self.close_code: Optional[int] = None
        self._inbox: asyncio.Queue = asyncio.Queue()

    def push(self, frame: Any) -> None:
        if isinstance(frame, dict):
            frame = json.dumps(frame)
        self._inbox.put_nowait(frame)

    @property
    def sent_types(self) -> List[str]:
        return [message["payloadType"] for message in self.sent]

    async def send(self, raw: str) -> None:
        message = json.loads(raw)
        self.sent.append(message)
        for frame in self.script.get(message["payloadType"], []):
            self.push(frame)

    async def close(self, code: int = 1000, reason: str = "") -> None:
        if self.close_code is None:
            self.close_code = code
        self.closed = True
        self._inbox.put_nowait(CLOSE)

    def __aiter__(self):
        return self

    async def __anext__(self):
        frame = await self._inbox.get()
        if frame is CLOSE:
            raise StopAsyncIteration
        if isinstance(frame, BaseException):
            raise frame
        return frame


class FakeConnect:
    """websockets.connect replacement yielding a FakeWebSocket."""

    def __init__(self, ws: Optional[FakeWebSocket] = None, error: Optional[BaseException] = None):
        self.ws = ws
        self.error = error
        self.calls: List[Dict[str, Any]] = []

    def __call__(self, url: str, **kwargs: Any) -> "FakeConnect":
        self.calls.append({"url": url, **kwargs})
        return self

    async def __aenter__(self) -> FakeWebSocket:
        if self.error is not None:
            raise self.error
        return self.ws

    async def __aexit__(self, exc_type, exc, tb) -> bool:
        if self.ws is not None:
            self.ws.closed = True
        return False


def handshake_script(**responses: List[Any]) -> Dict[str, List[Any]]:
    """App and account auth succeed; extra request responses by payloadType."""
    script: Dict[str, List[Any]] = {
        "ProtoOAApplicationAuthReq": [{"payloadType": "ProtoOAApplicationAuthRes"}],
        "ProtoOAAccountAuthReq": [{"payloadType": "ProtoOAAccountAuthRes", "ctidTraderAccountId": int(ACCOUNT_NUMBER)}],
    }
    script.update(responses)
    return script


# =============================================================================
# Pytest Configuration
# =============================================================================

def pytest_configure(config):
    """Configure pytest markers."""
    config.addinivalue_line(
        "markers", "integration: marks tests that use the SQLite database"
    )
    config.addinivalue_line(
        "markers", "unit: marks tests as unit tests"
    )
