from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class CamelModel(BaseModel):
    """Accepts both camelCase (wire) and snake_case field names."""
    model_config = ConfigDict(populate_by_name=True)


class AuthStartRequest(CamelModel):
    trading_account_id: str = Field(alias="tradingAccountId", min_length=1)
    account_number: Optional[str] = Field(default=None, alias="accountNumber")


class AuthStartResponse(CamelModel):
    auth_url: str = Field(alias="authUrl")
    state: str


class SyncRequest(CamelModel):
    trading_account_id: str = Field(alias="tradingAccountId", min_length=1)
    full_sync: bool = Field(default=False, alias="fullSync")
    account_number: Optional[str] = Field(default=None, alias="accountNumber")


class AccountInfo(BaseModel):
    balance: float = 0.0
    equity: float = 0.0
    currency: str = "USD"


class SyncResponse(CamelModel):
    success: bool = True
    message: str
    trading_account_id: str = Field(alias="tradingAccountId")
    account_info: AccountInfo = Field(alias="accountInfo")
    trades_imported: int = Field(alias="tradesImported")
    open_positions: int = Field(alias="openPositions")
    sync_type: str = Field(alias="syncType")  # full / incremental
    warnings: List[str] = []
    synced_at: Optional[datetime] = Field(default=None, alias="syncedAt")


class ConnectionStatus(CamelModel):
    connected: bool
    trading_account_id: str = Field(alias="tradingAccountId")
    account_number: Optional[str] = Field(default=None, alias="accountNumber")
    expires_at: Optional[datetime] = Field(default=None, alias="expiresAt")
    last_sync: Optional[datetime] = Field(default=None, alias="lastSync")
    connected_at: Optional[datetime] = Field(default=None, alias="connectedAt")
    token_expired: bool = Field(default=False, alias="tokenExpired")
    sync_in_progress: bool = Field(default=False, alias="syncInProgress")
