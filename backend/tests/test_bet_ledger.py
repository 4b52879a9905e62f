"""
backend/tests/test_bet_ledger.py

Purpose:
    Placement/settlement idempotency, partial updates, status helpers and
    the query and reconciliation surface of BetLedger.
"""

from __future__ import annotations

from datetime import timedelta
from decimal import Decimal

import pytest

from wagerlink.errors import ConflictError, NotFoundError
from wagerlink.models.bet import BetStatus, BetUpdate, PlacementParams, SettlementParams
from wagerlink.services.bet_ledger import BetLedger
from wagerlink.services.capabilities import GameValidator
from wagerlink.utils import utcnow


def _placement(tx: str = "T1", game_code: str = "G1", **overrides) -> PlacementParams:
    data = {
        "external_platform_tx_id": tx,
        "user_id": "user-1",
        "round_id": "round-1",
        "game_code": game_code,
        "operator_id": "op-1",
        "bet_amount": "5.00",
        "currency": "USD",
        "created_by": "api",
    }
    data.update(overrides)
    return PlacementParams(**data)


class _RejectingValidator(GameValidator):
    def __init__(self, exc: Exception):
        self.exc = exc
        self.calls: list[str] = []

    async def validate_game(self, game_code: str) -> None:
        self.calls.append(game_code)
        raise self.exc


class _AcceptingValidator(GameValidator):
    async def validate_game(self, game_code: str) -> None:
        return None


@pytest.mark.asyncio
async def test_create_placement_defaults(fake_db):
    bet = await BetLedger().create_placement(_placement())

    assert bet.id
    assert bet.status == BetStatus.placed
    assert bet.bet_amount == Decimal("5.00")
    assert bet.updated_by == "api"
    assert bet.created_at == bet.updated_at
    assert len(fake_db.bets.docs) == 1
    assert fake_db.bets.docs[0]["status"] == "placed"


@pytest.mark.asyncio
async def test_create_placement_honours_status_and_updated_by(fake_db):
    bet = await BetLedger().create_placement(
        _placement(status=BetStatus.pending_settlement, updated_by="worker"),
    )
    assert bet.status == BetStatus.pending_settlement
    assert bet.updated_by == "worker"


@pytest.mark.asyncio
async def test_duplicate_placement_conflicts_and_keeps_one_row(fake_db):
    ledger = BetLedger()
    await ledger.create_placement(_placement())

    with pytest.raises(ConflictError):
        await ledger.create_placement(_placement(bet_amount="99"))

    assert len(fake_db.bets.docs) == 1
    assert fake_db.bets.docs[0]["bet_amount"] == Decimal("5.00")


@pytest.mark.asyncio
async def test_same_tx_under_other_game_code_is_a_new_placement(fake_db):
    ledger = BetLedger()
    await ledger.create_placement(_placement(game_code="G1"))
    await ledger.create_placement(_placement(game_code="G2"))
    assert len(fake_db.bets.docs) == 2


@pytest.mark.asyncio
async def test_index_race_is_reported_as_conflict(fake_db, monkeypatch):
    ledger = BetLedger()
    await ledger.create_placement(_placement())

    # Simulate a concurrent writer: the pre-check misses, the unique index fires.
    async def _miss(*_args, **_kwargs):
        return None

    monkeypatch.setattr(fake_db.bets, "find_one", _miss)
    with pytest.raises(ConflictError):
        await ledger.create_placement(_placement())
    assert len(fake_db.bets.docs) == 1


@pytest.mark.asyncio
async def test_game_validator_gates_placement(fake_db):
    validator = _RejectingValidator(NotFoundError("Game 'G1' not found"))
    with pytest.raises(NotFoundError):
        await BetLedger(game_validator=validator).create_placement(_placement())
    assert validator.calls == ["G1"]
    assert fake_db.bets.docs == []


@pytest.mark.asyncio
async def test_unexpected_validator_failure_becomes_not_found(fake_db):
    validator = _RejectingValidator(RuntimeError("catalog down"))
    with pytest.raises(NotFoundError) as excinfo:
        await BetLedger(game_validator=validator).create_placement(_placement())
    assert isinstance(excinfo.value.__cause__, RuntimeError)
    assert fake_db.bets.docs == []


@pytest.mark.asyncio
async def test_accepting_validator_allows_placement(fake_db):
    bet = await BetLedger(game_validator=_AcceptingValidator()).create_placement(_placement())
    assert bet.status == BetStatus.placed


@pytest.mark.asyncio
async def test_settlement_derives_won_and_lost(fake_db):
    ledger = BetLedger()
    await ledger.create_placement(_placement(tx="T-lost"))
    await ledger.create_placement(_placement(tx="T-won"))

    lost = await ledger.record_settlement(
        SettlementParams(external_platform_tx_id="T-lost", win_amount="0.000", updated_by="settler"),
    )
    won = await ledger.record_settlement(
        SettlementParams(external_platform_tx_id="T-won", win_amount="10.500", updated_by="settler"),
    )

    assert lost.status == BetStatus.lost
    assert won.status == BetStatus.won
    assert won.win_amount == Decimal("10.500")
    assert won.updated_by == "settler"


@pytest.mark.asyncio
async def test_settlement_explicit_status_wins_over_derivation(fake_db):
    ledger = BetLedger()
    await ledger.create_placement(_placement())
    bet = await ledger.record_settlement(
        SettlementParams(
            external_platform_tx_id="T1",
            win_amount="5.00",
            status=BetStatus.refunded,
            updated_by="settler",
        ),
    )
    assert bet.status == BetStatus.refunded


@pytest.mark.asyncio
async def test_settlement_unknown_tx_is_not_found(fake_db):
    with pytest.raises(NotFoundError):
        await BetLedger().record_settlement(
            SettlementParams(external_platform_tx_id="nope", win_amount="1", updated_by="x"),
        )
    assert fake_db.bets.docs == []


@pytest.mark.asyncio
async def test_settlement_only_touches_provided_fields(fake_db):
    ledger = BetLedger()
    await ledger.create_placement(
        _placement(game_info="session-a", balance_after_bet="95.00"),
    )
    settled_at = utcnow() - timedelta(minutes=5)

    bet = await ledger.record_settlement(
        SettlementParams(
            external_platform_tx_id="T1",
            win_amount="2",
            balance_after_settlement="97.00",
            settled_at=settled_at,
            updated_by="settler",
        ),
    )

    assert bet.game_info == "session-a"
    assert bet.balance_after_bet == Decimal("95.00")
    assert bet.balance_after_settlement == Decimal("97.00")
    assert bet.settled_at == settled_at


@pytest.mark.asyncio
async def test_settlement_scenario_is_idempotent(fake_db):
    ledger = BetLedger()
    placed = await ledger.create_placement(_placement(tx="T1", game_code="G1", bet_amount="5.00"))
    assert placed.status == BetStatus.placed

    first = await ledger.record_settlement(
        SettlementParams(external_platform_tx_id="T1", win_amount="0.00", updated_by="settler"),
    )
    assert first.status == BetStatus.lost
    assert first.settled_at is not None

    writes_before = fake_db.bets.writes
    again = await ledger.record_settlement(
        SettlementParams(external_platform_tx_id="T1", win_amount="9.00", updated_by="other"),
    )

    assert fake_db.bets.writes == writes_before
    assert again.model_dump() == first.model_dump()
    assert again.status == BetStatus.lost
    assert str(again.win_amount) == "0.00"


@pytest.mark.asyncio
async def test_won_bet_settlement_is_idempotent(fake_db):
    ledger = BetLedger()
    await ledger.create_placement(_placement(tx="T-won"))
    first = await ledger.record_settlement(
        SettlementParams(external_platform_tx_id="T-won", win_amount="12.50", updated_by="settler"),
    )
    assert first.status == BetStatus.won

    writes_before = fake_db.bets.writes
    again = await ledger.record_settlement(
        SettlementParams(
            external_platform_tx_id="T-won",
            win_amount="0",
            status=BetStatus.lost,
            game_info="late callback",
            updated_by="other",
        ),
    )

    assert fake_db.bets.writes == writes_before
    assert again.model_dump() == first.model_dump()
    assert again.status == BetStatus.won
    assert str(again.win_amount) == "12.50"


@pytest.mark.asyncio
async def test_update_status_leaves_transition_rules_to_caller(fake_db):
    ledger = BetLedger()
    await ledger.create_placement(_placement())
    await ledger.record_settlement(
        SettlementParams(external_platform_tx_id="T1", win_amount="3", updated_by="settler"),
    )
    reopened = await ledger.update_status("T1", BetStatus.placed, "admin")
    assert reopened.status == BetStatus.placed


@pytest.mark.asyncio
async def test_settlement_race_returns_current_row(fake_db, monkeypatch):
    ledger = BetLedger()
    await ledger.create_placement(_placement())
    real_update = fake_db.bets.find_one_and_update

    async def _settled_elsewhere(query, update, **kwargs):
        fake_db.bets.docs[0]["status"] = "won"
        return await real_update(query, update, **kwargs)

    monkeypatch.setattr(fake_db.bets, "find_one_and_update", _settled_elsewhere)
    bet = await ledger.record_settlement(
        SettlementParams(external_platform_tx_id="T1", win_amount="0", updated_by="settler"),
    )
    assert bet.status == BetStatus.won


@pytest.mark.asyncio
async def test_status_helpers(fake_db):
    ledger = BetLedger()
    await ledger.create_placement(_placement())

    pending = await ledger.mark_pending_settlement("T1", "orchestrator")
    assert pending.status == BetStatus.pending_settlement
    assert pending.updated_by == "orchestrator"

    failed = await ledger.mark_settlement_failed("T1", "orchestrator")
    assert failed.status == BetStatus.settlement_failed

    cancelled = await ledger.update_status("T1", BetStatus.cancelled, "admin")
    assert cancelled.status == BetStatus.cancelled
    assert cancelled.bet_amount == Decimal("5.00")


@pytest.mark.asyncio
async def test_status_update_unknown_bet(fake_db):
    with pytest.raises(NotFoundError):
        await BetLedger().mark_pending_settlement("missing", "orchestrator")


@pytest.mark.asyncio
async def test_update_bet_distinguishes_absent_from_none(fake_db):
    ledger = BetLedger()
    await ledger.create_placement(_placement(game_info="keep-me", balance_after_bet="1.00"))

    bet = await ledger.update_bet(
        BetUpdate(
            external_platform_tx_id="T1",
            balance_after_bet=None,
            is_premium=True,
            fairness_data={"client_seed": "abc", "nonce": 7},
            updated_by="admin",
        ),
    )

    assert bet.game_info == "keep-me"
    assert bet.balance_after_bet is None
    assert bet.is_premium is True
    assert bet.fairness_data.client_seed == "abc"
    assert bet.updated_by == "admin"


@pytest.mark.asyncio
async def test_update_bet_unknown(fake_db):
    with pytest.raises(NotFoundError):
        await BetLedger().update_bet(BetUpdate(external_platform_tx_id="x", updated_by="admin"))


@pytest.mark.asyncio
async def test_lookups(fake_db):
    ledger = BetLedger()
    await ledger.create_placement(_placement(tx="T1", game_code="G1", round_id="R1"))
    await ledger.create_placement(_placement(tx="T2", game_code="G1", round_id="R1"))
    await ledger.create_placement(_placement(tx="T1", game_code="G2", round_id="R9"))

    assert (await ledger.get_by_external_tx_id("T1", "G2")).game_code == "G2"
    assert (await ledger.get_by_external_tx_id("T1")).game_code == "G1"
    assert await ledger.get_by_external_tx_id("T3") is None
    assert (await ledger.find_bet_by_round_id("G2", "R9")).external_platform_tx_id == "T1"
    assert (await ledger.find_bet_by_platform_tx_id("G1", "T2")).round_id == "R1"
    assert await ledger.find_bet_by_platform_tx_id("G2", "T2") is None
    assert {b.external_platform_tx_id for b in await ledger.list_by_round("G1", "R1")} == {"T1", "T2"}


@pytest.mark.asyncio
async def test_user_listings_are_newest_first_and_capped(fake_db):
    ledger = BetLedger()
    for i in range(4):
        await ledger.create_placement(_placement(tx=f"T{i}", game_code="G1" if i % 2 else "G2"))
    base = utcnow()
    for i, doc in enumerate(fake_db.bets.docs):
        doc["created_at"] = base - timedelta(hours=10 - i)

    bets = await ledger.list_user_bets("user-1", limit=3)
    assert [b.external_platform_tx_id for b in bets] == ["T3", "T2", "T1"]

    only_g1 = await ledger.list_user_bets("user-1", game_code="G1")
    assert [b.external_platform_tx_id for b in only_g1] == ["T3", "T1"]

    window = await ledger.list_user_bets_by_time_range(
        "user-1", base - timedelta(hours=9), base - timedelta(hours=8),
    )
    assert [b.external_platform_tx_id for b in window] == ["T2", "T1"]
    assert await ledger.list_user_bets("someone-else") == []


@pytest.mark.asyncio
async def test_find_old_placed_bets_falls_back_to_created_at(fake_db):
    ledger = BetLedger()
    max_age = timedelta(minutes=10)
    now = utcnow()
    await ledger.create_placement(_placement(tx="old"))
    await ledger.create_placement(_placement(tx="young"))
    await ledger.create_placement(_placement(tx="old-by-placed-at", bet_placed_at=now - 3 * max_age))
    await ledger.create_placement(_placement(tx="settled"))
    for doc in fake_db.bets.docs:
        if doc["external_platform_tx_id"] in ("old", "settled"):
            doc["created_at"] = now - 2 * max_age
        elif doc["external_platform_tx_id"] == "young":
            doc["created_at"] = now - max_age / 2
    await ledger.record_settlement(
        SettlementParams(external_platform_tx_id="settled", win_amount="0", updated_by="x"),
    )

    stuck = await ledger.find_old_placed_bets(max_age)
    assert {b.external_platform_tx_id for b in stuck} == {"old", "old-by-placed-at"}


@pytest.mark.asyncio
async def test_bulk_purges(fake_db):
    ledger = BetLedger()
    await ledger.create_placement(_placement(tx="A"))
    await ledger.create_placement(_placement(tx="B"))
    await ledger.create_placement(_placement(tx="C"))
    await ledger.record_settlement(
        SettlementParams(external_platform_tx_id="C", win_amount="1", updated_by="x"),
    )
    fake_db.wallet_audits.docs.append({"platform_tx_id": "A"})

    assert await ledger.delete_placed_bets() == 2
    assert [d["external_platform_tx_id"] for d in fake_db.bets.docs] == ["C"]

    fake_db.bets.docs[0]["created_at"] = utcnow() - timedelta(days=200)
    assert await ledger.delete_bets_before_date(utcnow() - timedelta(days=90)) == 1
    assert fake_db.bets.docs == []
    assert len(fake_db.wallet_audits.docs) == 1
