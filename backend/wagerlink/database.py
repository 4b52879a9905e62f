"""
backend/wagerlink/database.py

Purpose:
    MongoDB connection bootstrap and index management for the bet ledger,
    wallet audit trail, retry queue and agent directory collections.
    The unique (external_platform_tx_id, game_code) index on bets is the
    storage-level guard behind idempotent placement.

Dependencies:
    - motor.motor_asyncio
    - pymongo / bson
    - wagerlink.config
"""

import logging
from decimal import Decimal

from bson.codec_options import TypeCodec, TypeRegistry
from bson.decimal128 import Decimal128
from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
from pymongo.errors import DuplicateKeyError, OperationFailure

from wagerlink.config import settings

client: AsyncIOMotorClient = None
db: AsyncIOMotorDatabase = None

logger = logging.getLogger("wagerlink.database")


class DecimalCodec(TypeCodec):
    """Store Python Decimals as BSON Decimal128 and read them back as Decimal."""

    python_type = Decimal
    bson_type = Decimal128

    def transform_python(self, value: Decimal) -> Decimal128:
        return Decimal128(value)

    def transform_bson(self, value: Decimal128) -> Decimal:
        return value.to_decimal()


async def connect_db() -> None:
    global client, db
    client = AsyncIOMotorClient(
        settings.MONGO_URI,
        maxPoolSize=settings.MONGO_MAX_POOL_SIZE,
        minPoolSize=settings.MONGO_MIN_POOL_SIZE,
        tz_aware=True,
        type_registry=TypeRegistry([DecimalCodec()]),
    )
    db = client[settings.MONGO_DB]
    await _ensure_indexes()
    logger.info("Connected to MongoDB database %s", settings.MONGO_DB)


async def close_db() -> None:
    global client
    if client:
        client.close()
        client = None


async def _ensure_indexes() -> None:
    """Create indexes on startup. Idempotent."""

    # ---- Bets ----

    # Idempotent placement key. Check-then-insert in BetLedger is not atomic;
    # this index is what rejects concurrent duplicates.
    try:
        await db.bets.create_index(
            [("external_platform_tx_id", 1), ("game_code", 1)],
            unique=True,
            name="bets_placement_key",
        )
    except (DuplicateKeyError, OperationFailure) as exc:
        logger.error(
            "Could not create unique placement index on bets (duplicate data?): %s",
            exc,
        )
        raise
    # Settlement lookup ignores game_code
    await db.bets.create_index("external_platform_tx_id")
    await db.bets.create_index([("game_code", 1), ("round_id", 1)])
    await db.bets.create_index([("user_id", 1), ("created_at", -1)])
    await db.bets.create_index([("user_id", 1), ("game_code", 1), ("created_at", -1)])
    # Stuck-bet reconciliation
    await db.bets.create_index([("status", 1), ("bet_placed_at", 1)])
    await db.bets.create_index([("status", 1), ("created_at", 1)])
    # Retention purge
    await db.bets.create_index("created_at")

    # ---- Wallet Audit (insert-only) ----

    await db.wallet_audits.create_index("request_id")
    await db.wallet_audits.create_index([("platform_tx_id", 1), ("created_at", -1)])
    await db.wallet_audits.create_index([("agent_id", 1), ("created_at", -1)])
    await db.wallet_audits.create_index([("status", 1), ("created_at", -1)])

    # ---- Wallet Retry Jobs ----

    await db.wallet_retry_jobs.create_index([("status", 1), ("next_retry_at", 1)])
    await db.wallet_retry_jobs.create_index("platform_tx_id")
    await db.wallet_retry_jobs.create_index("wallet_audit_id")

    # ---- Agents ----

    await db.agents.create_index("agent_id", unique=True)
