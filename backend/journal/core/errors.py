"""
Error Taxonomy
TradeJournal cTrader Sync

Typed failures raised by the broker sync pipeline. Every error carries a
stable code (returned to API callers), an HTTP status and a category used
for log routing.
"""

from enum import Enum
from typing import Any, Dict, Optional


class ErrorCategory(str, Enum):
    """Error categories for routing and handling."""
    AUTH = "auth"               # Caller identity
    CONNECTION = "connection"   # Broker link / OAuth state
    TOKEN = "token"             # OAuth token exchange and refresh
    PROTOCOL = "protocol"       # Open API session failures
    TIMEOUT = "timeout"         # Session deadline exceeded
    RECONCILE = "reconcile"     # Ledger writes
    VALIDATION = "validation"   # Bad input
    CONCURRENCY = "concurrency" # Overlapping syncs


class SyncError(Exception):
    """Base class for all sync-pipeline failures."""

    code: str = "SyncError"
    status_code: int = 500
    category: ErrorCategory = ErrorCategory.CONNECTION

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "success": False,
            "error": self.code,
            "message": self.message,
        }
        if self.details:
            payload["details"] = self.details
        return payload


class Unauthorized(SyncError):
    """Missing or invalid caller credentials."""
    code = "Unauthorized"
    status_code = 401
    category = ErrorCategory.AUTH


class NotConnected(SyncError):
    """No broker connection (or trading account) for the caller."""
    code = "NotConnected"
    status_code = 404
    category = ErrorCategory.CONNECTION


class TokenRefreshFailed(SyncError):
    """Token endpoint rejected the exchange or could not be reached."""
    code = "TokenRefreshFailed"
    status_code = 502
    category = ErrorCategory.TOKEN

    def __init__(self, message: str, status: Optional[int] = None, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details)
        self.status = status
        if status is not None:
            self.details.setdefault("status", status)


class ProtocolError(SyncError):
    """Open API session failure, carrying the broker's error code when known."""
    code = "ProtocolError"
    status_code = 502
    category = ErrorCategory.PROTOCOL

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        description: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, details)
        self.error_code = error_code
        self.description = description
        if error_code:
            self.details.setdefault("errorCode", error_code)
        if description:
            self.details.setdefault("description", description)


class Timeout(SyncError):
    """A protocol session exceeded its deadline."""
    code = "Timeout"
    status_code = 504
    category = ErrorCategory.TIMEOUT


class ReconcileItemFailed(SyncError):
    """One position could not be written to the ledger."""
    code = "ReconcileItemFailed"
    status_code = 500
    category = ErrorCategory.RECONCILE

    def __init__(self, position_id: str, reason: str):
        super().__init__(f"Failed to reconcile position {position_id}: {reason}", {"positionId": position_id})
        self.position_id = position_id
        self.reason = reason


class InvalidAccountNumber(SyncError, ValueError):
    """Broker account number contains no digits."""
    code = "InvalidAccountNumber"
    status_code = 422
    category = ErrorCategory.VALIDATION


class AuthStateInvalid(SyncError):
    """OAuth state unknown, already used or expired."""
    code = "AuthStateInvalid"
    status_code = 400
    category = ErrorCategory.CONNECTION


class ConnectionConflict(SyncError):
    """Broker account already linked by another user."""
    code = "ConnectionConflict"
    status_code = 409
    category = ErrorCategory.CONNECTION


class SyncInProgress(SyncError):
    """Another sync of the same trading account is running."""
    code = "SyncInProgress"
    status_code = 409
    category = ErrorCategory.CONCURRENCY


class BrokerNotConfigured(SyncError):
    """Open API application credentials are not set."""
    code = "BrokerNotConfigured"
    status_code = 400
    category = ErrorCategory.VALIDATION


__all__ = [
    "ErrorCategory",
    "SyncError",
    "Unauthorized",
    "NotConnected",
    "TokenRefreshFailed",
    "ProtocolError",
    "Timeout",
    "ReconcileItemFailed",
    "InvalidAccountNumber",
    "AuthStateInvalid",
    "ConnectionConflict",
    "SyncInProgress",
    "BrokerNotConfigured",
]
