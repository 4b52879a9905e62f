"""Immutable audit trail of every external wallet call attempt.

Entries are insert-only: there are no update or delete operations on the
wallet_audits collection.
"""

import logging
from datetime import datetime
from typing import Optional

import wagerlink.database as _db
from wagerlink.models.wallet import AuditRecord, WalletAuditStatus

logger = logging.getLogger("wagerlink.wallet_audit")


class WalletAuditLog:
    async def append(self, record: AuditRecord) -> Optional[str]:
        """Insert one audit record and return its id.

        Returns None when the write fails; audit logging must never crash
        the wallet call that produced it.
        """
        doc = record.to_document()
        doc.pop("_id", None)
        try:
            result = await _db.db.wallet_audits.insert_one(doc)
        except Exception:
            logger.exception(
                "Failed to write wallet audit: action=%s request_id=%s tx=%s",
                record.api_action.value, record.request_id, record.platform_tx_id,
            )
            return None
        return str(result.inserted_id)

    async def list_for_transaction(self, platform_tx_id: str, limit: int = 50) -> list[AuditRecord]:
        """All call attempts that referenced a platform transaction, newest first."""
        docs = await _db.db.wallet_audits.find(
            {"platform_tx_id": platform_tx_id},
        ).sort("created_at", -1).limit(limit).to_list(length=limit)
        return [AuditRecord.from_document(doc) for doc in docs]

    async def list_failures(self, since: datetime, limit: int = 200) -> list[AuditRecord]:
        docs = await _db.db.wallet_audits.find(
            {"status": WalletAuditStatus.failure.value, "created_at": {"$gte": since}},
        ).sort("created_at", -1).limit(limit).to_list(length=limit)
        return [AuditRecord.from_document(doc) for doc in docs]
