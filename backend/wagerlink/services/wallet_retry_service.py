"""
backend/wagerlink/services/wallet_retry_service.py

Purpose:
    Durable queue of failed settle/refund wallet calls. This module only
    creates jobs and reads them back; picking jobs up, resubmitting and
    marking them exhausted belongs to the external retry scheduler.

Dependencies:
    - wagerlink.database
    - wagerlink.models.wallet
"""

from __future__ import annotations

import logging
from typing import Optional

from bson import ObjectId
from bson.errors import InvalidId

import wagerlink.database as _db
from wagerlink.models.wallet import RetryJob

logger = logging.getLogger("wagerlink.wallet_retry")


class WalletRetryQueue:
    async def enqueue(self, job: RetryJob) -> Optional[str]:
        """Persist a pending retry job and return its id (None if the write failed)."""
        doc = job.to_document()
        doc.pop("_id", None)
        try:
            result = await _db.db.wallet_retry_jobs.insert_one(doc)
        except Exception:
            logger.exception(
                "Failed to create retry job: action=%s tx=%s audit=%s",
                job.api_action.value, job.platform_tx_id, job.wallet_audit_id,
            )
            return None
        job_id = str(result.inserted_id)
        logger.info(
            "Retry job %s queued: action=%s tx=%s audit=%s",
            job_id, job.api_action.value, job.platform_tx_id, job.wallet_audit_id,
        )
        return job_id

    async def get(self, job_id: str) -> Optional[RetryJob]:
        try:
            oid = ObjectId(job_id)
        except (InvalidId, TypeError):
            return None
        doc = await _db.db.wallet_retry_jobs.find_one({"_id": oid})
        return RetryJob.from_document(doc) if doc else None

    async def list_for_transaction(self, platform_tx_id: str) -> list[RetryJob]:
        docs = await _db.db.wallet_retry_jobs.find(
            {"platform_tx_id": platform_tx_id},
        ).sort("created_at", -1).to_list(length=100)
        return [RetryJob.from_document(doc) for doc in docs]
