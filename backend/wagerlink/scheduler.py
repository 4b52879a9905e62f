"""
backend/wagerlink/scheduler.py

Purpose:
    APScheduler wiring for the ledger's maintenance jobs. Jobs are only
    registered when enabled in settings; the scheduler itself is started
    and stopped by the runtime.

Dependencies:
    - apscheduler
    - wagerlink.workers.bet_retention
"""

import logging
from typing import Any

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from wagerlink.config import settings
from wagerlink.services.bet_ledger import BetLedger
from wagerlink.workers.bet_retention import run_bet_retention

logger = logging.getLogger("wagerlink.scheduler")


def _job_specs(ledger: BetLedger) -> list[dict[str, Any]]:
    specs: list[dict[str, Any]] = []
    if settings.BET_RETENTION_ENABLED:
        specs.append({
            "id": "bet_retention",
            "func": run_bet_retention,
            "kwargs": {"ledger": ledger},
            "trigger": "interval",
            "trigger_kwargs": {"hours": settings.BET_RETENTION_INTERVAL_HOURS},
        })
    return specs


def build_scheduler(ledger: BetLedger) -> AsyncIOScheduler:
    """Create an (unstarted) scheduler with every enabled maintenance job."""
    scheduler = AsyncIOScheduler()
    for spec in _job_specs(ledger):
        scheduler.add_job(
            spec["func"],
            spec["trigger"],
            id=spec["id"],
            kwargs=spec["kwargs"],
            replace_existing=True,
            **spec["trigger_kwargs"],
        )
        logger.info("Scheduled job %s every %s", spec["id"], spec["trigger_kwargs"])
    return scheduler
