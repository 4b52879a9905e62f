"""Bet documents plus placement, settlement and update parameters."""

from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

from wagerlink.models.common import Money, MongoDocument, to_mongo_value


class BetStatus(str, Enum):
    placed = "placed"
    pending_settlement = "pending_settlement"
    won = "won"
    lost = "lost"
    cancelled = "cancelled"
    refunded = "refunded"
    settlement_failed = "settlement_failed"


# Settlement is a no-op once a bet reaches one of these.
SETTLED_STATUSES = frozenset({BetStatus.won, BetStatus.lost})


class FairnessData(BaseModel):
    """Seed/hash provenance for a provably fair outcome."""

    model_config = ConfigDict(extra="allow")

    decimal: Optional[str] = None
    client_seed: Optional[str] = None
    server_seed: Optional[str] = None
    combined_hash: Optional[str] = None
    hashed_server_seed: Optional[str] = None


class Bet(MongoDocument):
    """One wagering transaction. Owned exclusively by BetLedger."""

    external_platform_tx_id: str
    user_id: str
    round_id: str
    game_code: str = Field(max_length=64)
    operator_id: str = Field(max_length=64)

    bet_amount: Money
    win_amount: Optional[Money] = None
    currency: str = Field(max_length=4)
    status: BetStatus = BetStatus.placed
    is_premium: bool = False

    game_metadata: Optional[dict[str, Any]] = None
    fairness_data: Optional[FairnessData] = None
    game_info: Optional[str] = None

    balance_after_bet: Optional[Money] = None
    balance_after_settlement: Optional[Money] = None
    final_coeff: Optional[Money] = None
    withdraw_coeff: Optional[Money] = None
    settlement_ref_tx_id: Optional[str] = None

    created_at: datetime
    updated_at: datetime
    created_by: Optional[str] = None
    updated_by: Optional[str] = None
    bet_placed_at: Optional[datetime] = None
    settled_at: Optional[datetime] = None


class BetPatch(BaseModel):
    """Mutable bet fields. Only fields the caller actually set are applied.

    ``None`` is a value here: passing ``settled_at=None`` clears the column,
    omitting ``settled_at`` leaves it untouched.
    """

    game_metadata: Optional[dict[str, Any]] = None
    bet_amount: Optional[Money] = None
    win_amount: Optional[Money] = None
    currency: Optional[str] = Field(default=None, max_length=4)
    status: Optional[BetStatus] = None
    settlement_ref_tx_id: Optional[str] = None
    is_premium: Optional[bool] = None
    bet_placed_at: Optional[datetime] = None
    settled_at: Optional[datetime] = None
    game_info: Optional[str] = None
    balance_after_bet: Optional[Money] = None
    balance_after_settlement: Optional[Money] = None
    final_coeff: Optional[Money] = None
    withdraw_coeff: Optional[Money] = None
    fairness_data: Optional[FairnessData] = None

    def changes(self) -> dict[str, Any]:
        """Explicitly provided mutable fields, ready for a Mongo ``$set``."""
        fields = set(BetPatch.model_fields) & self.model_fields_set
        return to_mongo_value(self.model_dump(include=fields))


MUTABLE_BET_FIELDS = frozenset(BetPatch.model_fields)


class PlacementParams(BaseModel):
    external_platform_tx_id: str
    user_id: str
    round_id: str
    game_code: str = Field(max_length=64)
    operator_id: str = Field(max_length=64)
    bet_amount: Money
    currency: str = Field(max_length=4)
    created_by: str

    game_metadata: Optional[dict[str, Any]] = None
    is_premium: bool = False
    bet_placed_at: Optional[datetime] = None
    balance_after_bet: Optional[Money] = None
    # Columns that may already be known at placement time
    win_amount: Optional[Money] = None
    status: Optional[BetStatus] = None
    settlement_ref_tx_id: Optional[str] = None
    settled_at: Optional[datetime] = None
    game_info: Optional[str] = None
    balance_after_settlement: Optional[Money] = None
    updated_by: Optional[str] = None
    final_coeff: Optional[Money] = None
    withdraw_coeff: Optional[Money] = None
    fairness_data: Optional[FairnessData] = None


class SettlementParams(BetPatch):
    """Settlement outcome. ``status`` overrides the won/lost derivation."""

    external_platform_tx_id: str
    win_amount: Money
    updated_by: str


class BetUpdate(BetPatch):
    external_platform_tx_id: str
    updated_by: str
