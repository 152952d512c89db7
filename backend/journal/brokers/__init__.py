"""
Broker Integrations
TradeJournal cTrader Sync

cTrader Open API clients:
- CTraderOAuthClient: authorization URL, code exchange, token refresh
- CTraderProtocolSession: one-shot JSON WebSocket session
- CTraderDataClient: account info / open positions / account discovery
"""

from journal.brokers.ctrader_auth import CTraderOAuthClient, TokenGrant
from journal.brokers.ctrader_session import (
    CTraderProtocolSession,
    PayloadType,
    ProtocolRequest,
    SessionState,
)
from journal.brokers.ctrader_data import (
    AccountSnapshot,
    BrokerPosition,
    CTraderDataClient,
    normalize_position,
    normalize_trader,
    parse_account_id,
)

__all__ = [
    "CTraderOAuthClient",
    "TokenGrant",
    "CTraderProtocolSession",
    "PayloadType",
    "ProtocolRequest",
    "SessionState",
    "AccountSnapshot",
    "BrokerPosition",
    "CTraderDataClient",
    "normalize_position",
    "normalize_trader",
    "parse_account_id",
]
