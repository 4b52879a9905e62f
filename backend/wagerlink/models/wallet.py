"""Wallet gateway models: wire enums, call parameters, audit and retry documents."""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field, model_validator

from wagerlink.models.common import Money, MongoDocument
from wagerlink.utils import utcnow

# Status sentinel the remote wallet returns on success. Any other string is
# an application-level rejection.
WALLET_SUCCESS_STATUS = "0000"


# ---------- Enums ----------

class WalletApiAction(str, Enum):
    get_balance = "get_balance"
    place_bet = "place_bet"
    settle_bet = "settle_bet"
    refund_bet = "refund_bet"


# Only these are captured as retry jobs; placement and balance failures are
# handled synchronously by the caller.
RETRYABLE_ACTIONS = frozenset({WalletApiAction.settle_bet, WalletApiAction.refund_bet})


class WalletAuditStatus(str, Enum):
    success = "success"
    failure = "failure"


class WalletErrorType(str, Enum):
    agent_rejected = "agent_rejected"
    network_error = "network_error"
    timeout_error = "timeout_error"
    http_error = "http_error"
    malformed_response = "malformed_response"
    unknown_error = "unknown_error"


class RetryJobStatus(str, Enum):
    pending = "pending"          # Created by the gateway
    in_progress = "in_progress"  # Scheduler-owned from here on
    succeeded = "succeeded"
    exhausted = "exhausted"


# ---------- Call parameters ----------

class AgentEndpoint(BaseModel):
    """Where and how to call an agent's wallet."""
    agent_id: str
    callback_url: str
    credential: str


class WalletResponse(BaseModel):
    balance: Decimal = Decimal("0")
    balance_ts: Optional[str] = None
    status: str
    user_id: Optional[str] = None
    raw: dict[str, Any] = Field(default_factory=dict)


class PlaceBetParams(BaseModel):
    agent_id: str
    user_id: str
    amount: Money
    round_id: str
    platform_tx_id: str
    game_code: str
    currency: Optional[str] = None


class SettleBetParams(BaseModel):
    agent_id: str
    platform_tx_id: str
    user_id: str
    win_amount: Money
    round_id: str
    bet_amount: Money
    game_code: str
    game_session: Any = None  # str or JSON-serializable blob


class RefundTransaction(BaseModel):
    platform_tx_id: str
    refund_platform_tx_id: str
    bet_amount: Money
    win_amount: Money
    turnover: Optional[Money] = None
    bet_time: str
    update_time: str
    round_id: str
    game_code: str
    game_info: Any = None


class RefundBetParams(BaseModel):
    """A batch of refunds for one agent/user, sent as a single cancelBet call."""
    agent_id: str
    user_id: str
    refund_transactions: list[RefundTransaction] = Field(min_length=1)


# ---------- Persisted records ----------

class AuditRecord(MongoDocument):
    """One external wallet call attempt. Insert-only."""

    request_id: str
    agent_id: str
    user_id: str
    api_action: WalletApiAction
    status: WalletAuditStatus
    failure_type: Optional[WalletErrorType] = None
    request_payload: Optional[dict[str, Any]] = None
    request_url: Optional[str] = None
    response_data: Any = None
    http_status: Optional[int] = None
    response_time_ms: int = 0
    error_message: Optional[str] = None
    error_stack: Optional[str] = None
    raw_error: Optional[str] = None
    platform_tx_id: Optional[str] = None
    round_id: Optional[str] = None
    bet_amount: Optional[Money] = None
    win_amount: Optional[Money] = None
    currency: Optional[str] = None
    callback_url: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)

    @model_validator(mode="after")
    def _failure_type_matches_status(self):
        if self.status == WalletAuditStatus.failure and self.failure_type is None:
            raise ValueError("failure_type is required for failed calls")
        if self.status == WalletAuditStatus.success and self.failure_type is not None:
            raise ValueError("failure_type must be empty for successful calls")
        return self


class RetryJob(MongoDocument):
    """A failed settle/refund call captured for out-of-band resubmission."""

    platform_tx_id: str
    api_action: WalletApiAction
    agent_id: str
    user_id: str
    request_payload: dict[str, Any]
    callback_url: Optional[str] = None
    round_id: Optional[str] = None
    bet_amount: Optional[Money] = None
    win_amount: Optional[Money] = None
    currency: Optional[str] = None
    game_payloads: dict[str, Any] = Field(default_factory=dict)
    wallet_audit_id: Optional[str] = None
    error_message: Optional[str] = None
    status: RetryJobStatus = RetryJobStatus.pending
    attempts: int = 0
    next_retry_at: datetime = Field(default_factory=utcnow)
    created_at: datetime = Field(default_factory=utcnow)

    @model_validator(mode="after")
    def _only_retryable_actions(self):
        if self.api_action not in RETRYABLE_ACTIONS:
            raise ValueError(f"{self.api_action.value} calls are not retried")
        return self
