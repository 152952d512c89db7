"""
cTrader Account & Position Fetchers
TradeJournal cTrader Sync

Drives one protocol session per fetch and normalises the broker's records:
- Trader info -> AccountSnapshot
- Reconcile response -> list of BrokerPosition
- Account list by access token -> broker account ids (OAuth callback)
"""

import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from loguru import logger

from journal.brokers.ctrader_session import (
    CTraderProtocolSession,
    PayloadType,
    ProtocolRequest,
)
from journal.core.config import settings
from journal.core.errors import InvalidAccountNumber, ProtocolError
from journal.db.models.trading import TradeSource, TradeStatus
from journal.utils.timeutils import from_epoch_ms, utcnow


# Broker volumes are expressed in hundredths of a unit; 100000 = 1 standard lot
VOLUME_PER_LOT = 100000
DEFAULT_CURRENCY = "USD"
UNKNOWN_SYMBOL = "UNKNOWN"

# Raised by normalisation on records that do not match the expected shape
MALFORMED_RECORD_ERRORS = (AttributeError, TypeError, ValueError, OverflowError, OSError)


def parse_account_id(account_number: str) -> int:
    """
    Numeric ctidTraderAccountId from a stored account number.

    Non-digit characters are stripped ("ct-1002345" -> 1002345). Raises
    InvalidAccountNumber when nothing numeric is left.
    """
    digits = re.sub(r"\D", "", account_number or "")
    if not digits:
        raise InvalidAccountNumber(
            f"Account number {account_number!r} contains no digits",
            {"accountNumber": account_number},
        )
    return int(digits)


def _number(value: Any, default: float = 0.0) -> float:
    if value is None or value == "":
        return default
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


@dataclass
class AccountSnapshot:
    """Balance state of a broker account at fetch time."""
    balance: float
    equity: float
    margin: float
    free_margin: float
    margin_level: float
    currency: str
    account_number: str
    captured_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "balance": self.balance,
            "equity": self.equity,
            "margin": self.margin,
            "freeMargin": self.free_margin,
            "marginLevel": self.margin_level,
            "currency": self.currency,
            "accountNumber": self.account_number,
        }


@dataclass
class BrokerPosition:
    """Open position as reported by the broker."""
    id: str
    symbol: str
    side: str  # BUY, SELL
    volume: float  # Lots
    open_price: float
    current_price: float
    pnl: float
    commission: float
    swap: float
    open_time: datetime

    def to_trade_values(self) -> Dict[str, Any]:
        """Column values for a new open journal trade."""
        return {
            "external_id": self.id,
            "symbol": self.symbol,
            "trade_type": self.side.lower(),
            "quantity": self.volume,
            "entry_price": self.open_price,
            "entry_date": self.open_time,
            "pnl": self.pnl,
            "commission": self.commission,
            "swap": self.swap,
            "status": TradeStatus.OPEN.value,
            "source": TradeSource.CTRADER.value,
            "notes": "Open position from cTrader (Live sync)",
        }


def normalize_trader(trader: Optional[Dict[str, Any]], account_number: str) -> AccountSnapshot:
    """Map a ProtoOATrader record to an AccountSnapshot."""
    trader = trader or {}
    balance = _number(trader.get("balance"))
    # Equity is not always distinguished from balance by the API
    equity = _number(trader.get("equity"), default=balance)
    return AccountSnapshot(
        balance=balance,
        equity=equity,
        margin=_number(trader.get("usedMargin", trader.get("margin"))),
        free_margin=_number(trader.get("freeMargin")),
        margin_level=_number(trader.get("marginLevel")),
        currency=trader.get("depositCurrency") or trader.get("currency") or DEFAULT_CURRENCY,
        account_number=account_number,
    )


def normalize_position(raw: Dict[str, Any], index: int = 0) -> BrokerPosition:
    """Map a ProtoOAPosition record to a BrokerPosition."""
    trade_data = raw.get("tradeData") or {}

    position_id = raw.get("positionId", raw.get("id"))
    if position_id is None:
        position_id = f"{int(utcnow().timestamp() * 1000)}_{index}"
        logger.warning(f"Broker position without positionId, using synthetic id {position_id}")

    trade_side = trade_data.get("tradeSide", raw.get("side"))
    side = "BUY" if trade_side in (1, "1", "BUY", "buy") else "SELL"

    commission = _number(raw.get("commission"))
    swap = _number(raw.get("swap"))
    if raw.get("pnl") is not None:
        pnl = _number(raw.get("pnl"))
    else:
        pnl = swap + commission + _number(raw.get("moneyDigits"))

    open_price = _number(raw.get("price", raw.get("openPrice")))
    current_price = _number(raw.get("currentPrice"), default=open_price)

    open_ts = trade_data.get("openTimestamp") or raw.get("utcLastUpdateTimestamp")
    open_time = from_epoch_ms(open_ts) if open_ts else utcnow()

    return BrokerPosition(
        id=str(position_id),
        symbol=raw.get("symbolName") or raw.get("symbol") or UNKNOWN_SYMBOL,
        side=side,
        volume=_number(trade_data.get("volume", raw.get("volume"))) / VOLUME_PER_LOT,
        open_price=open_price,
        current_price=current_price,
        pnl=pnl,
        commission=commission,
        swap=swap,
        open_time=open_time,
    )


SessionFactory = Callable[[Optional[str]], CTraderProtocolSession]


class CTraderDataClient:
    """
    Account/position fetchers over one-shot protocol sessions.

    Each call opens, authenticates and tears down its own session.
    """

    def __init__(self, session_factory: Optional[SessionFactory] = None):
        self._session_factory = session_factory or self._default_session

    @staticmethod
    def _default_session(access_token: Optional[str]) -> CTraderProtocolSession:
        ctrader_settings = settings.ctrader
        return CTraderProtocolSession(
            client_id=ctrader_settings.client_id,
            client_secret=ctrader_settings.client_secret,
            access_token=access_token,
        )

    async def fetch_account_info(self, access_token: str, account_number: str) -> AccountSnapshot:
        """Current balance/equity/currency for one broker account."""
        account_id = parse_account_id(account_number)
        session = self._session_factory(access_token)
        response = await session.request(ProtocolRequest(
            payload_type=PayloadType.TRADER_REQ,
            response_type=PayloadType.TRADER_RES,
            payload={"ctidTraderAccountId": account_id},
            account_id=account_id,
        ))
        try:
            snapshot = normalize_trader(response.get("trader"), account_number)
        except MALFORMED_RECORD_ERRORS as e:
            raise ProtocolError(
                f"Malformed trader record: {e}",
                details={"accountNumber": account_number},
            ) from e
        logger.info(
            f"cTrader account {account_number}: balance={snapshot.balance} "
            f"equity={snapshot.equity} {snapshot.currency}"
        )
        return snapshot

    async def fetch_open_positions(self, access_token: str, account_number: str) -> List[BrokerPosition]:
        """All open positions for one broker account (empty list when flat)."""
        account_id = parse_account_id(account_number)
        session = self._session_factory(access_token)
        response = await session.request(ProtocolRequest(
            payload_type=PayloadType.RECONCILE_REQ,
            response_type=PayloadType.RECONCILE_RES,
            payload={"ctidTraderAccountId": account_id},
            account_id=account_id,
        ))

        raw_positions = response.get("position") or []
        if not isinstance(raw_positions, list):
            raise ProtocolError("Reconcile response 'position' is not a list")

        positions = []
        for i, raw in enumerate(raw_positions):
            try:
                positions.append(normalize_position(raw, i))
            except MALFORMED_RECORD_ERRORS as e:
                raise ProtocolError(
                    f"Malformed position record: {e}",
                    details={"accountNumber": account_number, "index": i},
                ) from e
        logger.info(f"cTrader account {account_number}: {len(positions)} open positions")
        return positions

    async def fetch_account_ids(self, access_token: str) -> List[int]:
        """Broker account ids authorised by an access token."""
        session = self._session_factory(access_token)
        response = await session.request(ProtocolRequest(
            payload_type=PayloadType.ACCOUNT_LIST_REQ,
            response_type=PayloadType.ACCOUNT_LIST_RES,
            payload={"accessToken": access_token},
            requires_account_auth=False,
        ))
        accounts = response.get("ctidTraderAccount") or []
        try:
            return [
                int(account["ctidTraderAccountId"])
                for account in accounts
                if isinstance(account, dict) and account.get("ctidTraderAccountId") is not None
            ]
        except MALFORMED_RECORD_ERRORS as e:
            raise ProtocolError(f"Malformed account list: {e}") from e
