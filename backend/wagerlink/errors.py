"""
backend/wagerlink/errors.py

Purpose:
    Typed error taxonomy for the bet ledger and wallet gateway. Callers
    branch on the exception class (or its ``code``), never on message text:
    a ConflictError on placement means "already placed, safe to proceed".

Dependencies:
    - wagerlink.models.wallet
"""

from __future__ import annotations

from typing import Any, Optional

from wagerlink.models.wallet import WalletApiAction, WalletErrorType


class WagerError(Exception):
    """Base class for all domain errors raised by this package."""

    code: str = "WAGER_ERROR"


class ConflictError(WagerError):
    """A placement with the same (external_platform_tx_id, game_code) exists."""

    code = "CONFLICT"


class NotFoundError(WagerError):
    """Unknown bet, agent or (when a validator is configured) game."""

    code = "NOT_FOUND"


# ---------- Wallet call failures ----------

class WalletCallError(WagerError):
    """An external wallet call did not succeed."""

    code = "WALLET_CALL_FAILED"
    failure_type: WalletErrorType = WalletErrorType.unknown_error

    def __init__(
        self,
        message: str,
        *,
        action: Optional[WalletApiAction] = None,
        request_id: Optional[str] = None,
    ):
        super().__init__(message)
        self.action = action
        self.request_id = request_id


class AgentRejectedError(WalletCallError):
    """Transport succeeded but the wallet answered with a non-success status."""

    code = "AGENT_REJECTED"
    failure_type = WalletErrorType.agent_rejected

    def __init__(self, message: str, *, status: str, response: Any = None, **kwargs):
        super().__init__(message, **kwargs)
        self.status = status
        self.response = response


class MalformedResponseError(WalletCallError):
    """Response body is not JSON or lacks a string status field."""

    code = "MALFORMED_RESPONSE"
    failure_type = WalletErrorType.malformed_response

    def __init__(self, message: str, *, response: Any = None, **kwargs):
        super().__init__(message, **kwargs)
        self.response = response


class WalletNetworkError(WalletCallError):
    code = "NETWORK_ERROR"
    failure_type = WalletErrorType.network_error


class WalletTimeoutError(WalletCallError):
    code = "TIMEOUT_ERROR"
    failure_type = WalletErrorType.timeout_error


class WalletHttpError(WalletCallError):
    """Non-2xx HTTP response."""

    code = "HTTP_ERROR"
    failure_type = WalletErrorType.http_error

    def __init__(self, message: str, *, status_code: int, body: Any = None, **kwargs):
        super().__init__(message, **kwargs)
        self.status_code = status_code
        self.body = body


class WalletUnknownError(WalletCallError):
    code = "UNKNOWN_ERROR"
    failure_type = WalletErrorType.unknown_error
