"""Persistent run markers for maintenance jobs, kept in the ``worker_state`` collection.

A restart or a second process does not re-run a job that already ran
inside its window.
"""

from datetime import datetime, timedelta
from typing import Any, Optional

import wagerlink.database as _db
from wagerlink.utils import ensure_utc, utcnow


async def last_run_at(job_id: str) -> Optional[datetime]:
    doc = await _db.db.worker_state.find_one({"_id": job_id})
    if not doc or not doc.get("last_run_at"):
        return None
    return ensure_utc(doc["last_run_at"])


async def mark_run(job_id: str, **summary: Any) -> None:
    """Record that a job just completed, with optional counters for operators."""
    await _db.db.worker_state.update_one(
        {"_id": job_id},
        {"$set": {"last_run_at": utcnow(), "summary": summary}},
        upsert=True,
    )


async def ran_within(job_id: str, window: timedelta) -> bool:
    last = await last_run_at(job_id)
    return last is not None and (utcnow() - last) < window
