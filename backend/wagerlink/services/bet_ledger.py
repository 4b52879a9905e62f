"""
backend/wagerlink/services/bet_ledger.py

Purpose:
    Owner of the bet state machine. Records placements idempotently per
    (external_platform_tx_id, game_code), records settlements idempotently
    per external_platform_tx_id, and serves the lookup and reconciliation
    queries used by callers and maintenance jobs.

    The ledger never talks to the wallet. Callers sequence WalletGateway
    and BetLedger and own any compensating action if one half fails.

Dependencies:
    - wagerlink.database
    - wagerlink.models.bet
    - wagerlink.services.capabilities
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any, Optional

from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

import wagerlink.database as _db
from wagerlink.config import settings
from wagerlink.errors import ConflictError, NotFoundError
from wagerlink.models.bet import (
    SETTLED_STATUSES,
    Bet,
    BetStatus,
    BetUpdate,
    PlacementParams,
    SettlementParams,
)
from wagerlink.services.capabilities import GameValidator
from wagerlink.utils import utcnow

logger = logging.getLogger("wagerlink.bet_ledger")

BET_EXISTS = "Bet already exists (idempotent placement)"
BET_NOT_FOUND = "Bet not found"
SETTLEMENT_NOT_FOUND = "Bet not found for settlement"

# Oldest placement wins when a tx id exists under several game codes.
_OLDEST_FIRST = [("created_at", 1)]


def _by_external_tx(external_platform_tx_id: str, game_code: Optional[str] = None) -> dict[str, Any]:
    where: dict[str, Any] = {"external_platform_tx_id": external_platform_tx_id}
    if game_code:
        where["game_code"] = game_code
    return where


class BetLedger:
    def __init__(self, game_validator: Optional[GameValidator] = None) -> None:
        self._game_validator = game_validator

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def create_placement(self, params: PlacementParams) -> Bet:
        """Persist a new bet in ``placed`` (or the caller's) status.

        Raises NotFoundError when a configured validator rejects the game,
        ConflictError when the placement key already exists.
        """
        if self._game_validator is not None:
            await self._validate_game(params.game_code)

        existing = await _db.db.bets.find_one(
            _by_external_tx(params.external_platform_tx_id, params.game_code),
        )
        if existing:
            logger.warning(
                "Duplicate bet placement attempt: tx=%s game=%s",
                params.external_platform_tx_id, params.game_code,
            )
            raise ConflictError(BET_EXISTS)

        now = utcnow()
        data = params.model_dump(exclude={"status", "updated_by"})
        bet = Bet(
            **data,
            status=params.status or BetStatus.placed,
            updated_by=params.updated_by if params.updated_by is not None else params.created_by,
            created_at=now,
            updated_at=now,
        )
        doc = bet.to_document()
        try:
            result = await _db.db.bets.insert_one(doc)
        except DuplicateKeyError as exc:
            # Lost the race against a concurrent placement with the same key.
            logger.warning(
                "Duplicate bet placement rejected by index: tx=%s game=%s",
                params.external_platform_tx_id, params.game_code,
            )
            raise ConflictError(BET_EXISTS) from exc

        bet = bet.model_copy(update={"id": str(result.inserted_id)})
        logger.info(
            "Bet placed: %s (game: %s, user: %s, amount: %s)",
            params.external_platform_tx_id, params.game_code, params.user_id, params.bet_amount,
        )
        return bet

    async def record_settlement(self, params: SettlementParams) -> Bet:
        """Apply a settlement outcome and move the bet to a terminal status.

        Looks the bet up by tx id alone. A bet that is already won or lost is
        returned unchanged without any write, which absorbs duplicate
        settlement callbacks.
        """
        doc = await _db.db.bets.find_one(
            _by_external_tx(params.external_platform_tx_id), sort=_OLDEST_FIRST,
        )
        if not doc:
            logger.warning("Settlement failed: bet not found (%s)", params.external_platform_tx_id)
            raise NotFoundError(SETTLEMENT_NOT_FOUND)

        bet = Bet.from_document(doc)
        if bet.status in SETTLED_STATUSES:
            logger.warning(
                "Settlement idempotency: bet already settled (%s, status: %s)",
                params.external_platform_tx_id, bet.status.value,
            )
            return bet

        now = utcnow()
        changes = params.changes()
        if changes.get("settled_at") is None:
            changes["settled_at"] = now
        if params.status is not None:
            status = params.status
        elif params.win_amount > 0:
            status = BetStatus.won
        else:
            status = BetStatus.lost
        changes["status"] = status.value
        changes["updated_by"] = params.updated_by
        changes["updated_at"] = now

        updated = await _db.db.bets.find_one_and_update(
            {"_id": doc["_id"], "status": {"$nin": [s.value for s in SETTLED_STATUSES]}},
            {"$set": changes},
            return_document=ReturnDocument.AFTER,
        )
        if updated is None:
            current = await _db.db.bets.find_one({"_id": doc["_id"]})
            if current is None:
                raise NotFoundError(SETTLEMENT_NOT_FOUND)
            logger.warning(
                "Settlement idempotency: bet settled concurrently (%s)",
                params.external_platform_tx_id,
            )
            return Bet.from_document(current)

        logger.info(
            "Bet settled: %s (status: %s, win: %s)",
            params.external_platform_tx_id, status.value, params.win_amount,
        )
        return Bet.from_document(updated)

    async def update_status(
        self, external_platform_tx_id: str, status: BetStatus, updated_by: str,
    ) -> Bet:
        """Set any status; forward-only transitions are the caller's to enforce."""
        return await self._apply(
            external_platform_tx_id,
            {"status": BetStatus(status).value, "updated_by": updated_by},
        )

    async def mark_pending_settlement(self, external_platform_tx_id: str, updated_by: str) -> Bet:
        return await self.update_status(external_platform_tx_id, BetStatus.pending_settlement, updated_by)

    async def mark_settlement_failed(self, external_platform_tx_id: str, updated_by: str) -> Bet:
        return await self.update_status(external_platform_tx_id, BetStatus.settlement_failed, updated_by)

    async def update_bet(self, params: BetUpdate) -> Bet:
        """Patch the fields the caller set; always stamps updated_by."""
        changes = params.changes()
        changes["updated_by"] = params.updated_by
        return await self._apply(params.external_platform_tx_id, changes)

    async def _apply(self, external_platform_tx_id: str, set_fields: dict[str, Any]) -> Bet:
        set_fields["updated_at"] = utcnow()
        updated = await _db.db.bets.find_one_and_update(
            _by_external_tx(external_platform_tx_id),
            {"$set": set_fields},
            sort=_OLDEST_FIRST,
            return_document=ReturnDocument.AFTER,
        )
        if updated is None:
            logger.warning("Bet update failed: bet not found (%s)", external_platform_tx_id)
            raise NotFoundError(BET_NOT_FOUND)
        return Bet.from_document(updated)

    async def _validate_game(self, game_code: str) -> None:
        try:
            await self._game_validator.validate_game(game_code)
        except NotFoundError:
            raise
        except Exception as exc:
            logger.warning("Game validation failed for %s: %s", game_code, exc)
            raise NotFoundError(f"Game '{game_code}' not found or inactive") from exc

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    async def get_by_external_tx_id(
        self, external_platform_tx_id: str, game_code: Optional[str] = None,
    ) -> Optional[Bet]:
        doc = await _db.db.bets.find_one(
            _by_external_tx(external_platform_tx_id, game_code), sort=_OLDEST_FIRST,
        )
        return Bet.from_document(doc) if doc else None

    async def find_bet_by_round_id(self, game_code: str, round_id: str) -> Optional[Bet]:
        doc = await _db.db.bets.find_one({"game_code": game_code, "round_id": round_id})
        return Bet.from_document(doc) if doc else None

    async def find_bet_by_platform_tx_id(
        self, game_code: str, external_platform_tx_id: str,
    ) -> Optional[Bet]:
        doc = await _db.db.bets.find_one(
            {"game_code": game_code, "external_platform_tx_id": external_platform_tx_id},
        )
        return Bet.from_document(doc) if doc else None

    async def list_user_bets(
        self, user_id: str, game_code: Optional[str] = None, limit: Optional[int] = None,
    ) -> list[Bet]:
        """A user's bets, newest first, capped at ``limit``."""
        where: dict[str, Any] = {"user_id": user_id}
        if game_code:
            where["game_code"] = game_code
        return await self._find_newest_first(where, limit)

    async def list_user_bets_by_time_range(
        self,
        user_id: str,
        start_time: datetime,
        end_time: datetime,
        game_code: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> list[Bet]:
        """Like list_user_bets, restricted to start_time <= created_at <= end_time."""
        where: dict[str, Any] = {
            "user_id": user_id,
            "created_at": {"$gte": start_time, "$lte": end_time},
        }
        if game_code:
            where["game_code"] = game_code
        return await self._find_newest_first(where, limit)

    async def list_by_round(self, game_code: str, round_id: str) -> list[Bet]:
        docs = await _db.db.bets.find({"game_code": game_code, "round_id": round_id}).to_list(length=None)
        return [Bet.from_document(doc) for doc in docs]

    async def _find_newest_first(self, where: dict[str, Any], limit: Optional[int]) -> list[Bet]:
        cap = limit or settings.BET_QUERY_DEFAULT_LIMIT
        docs = await _db.db.bets.find(where).sort("created_at", -1).limit(cap).to_list(length=cap)
        return [Bet.from_document(doc) for doc in docs]

    # ------------------------------------------------------------------
    # Reconciliation / administration
    # ------------------------------------------------------------------

    async def find_old_placed_bets(self, max_age: timedelta) -> list[Bet]:
        """Placed bets older than ``max_age``, judged by bet_placed_at or, if unset, created_at.

        Feeds the external stuck-bet refund job.
        """
        threshold = utcnow() - max_age
        docs = await _db.db.bets.find({
            "status": BetStatus.placed.value,
            "$or": [
                {"bet_placed_at": {"$lt": threshold}},
                {"bet_placed_at": None, "created_at": {"$lt": threshold}},
            ],
        }).to_list(length=None)
        return [Bet.from_document(doc) for doc in docs]

    async def delete_placed_bets(self) -> int:
        result = await _db.db.bets.delete_many({"status": BetStatus.placed.value})
        count = result.deleted_count
        if count > 0:
            logger.info("Deleted %d placed bets", count)
        return count

    async def delete_bets_before_date(self, before: datetime) -> int:
        """Retention purge: remove bets created before ``before``."""
        result = await _db.db.bets.delete_many({"created_at": {"$lt": before}})
        count = result.deleted_count
        logger.info("Deleted %d bet(s) created before %s", count, before.isoformat())
        return count
