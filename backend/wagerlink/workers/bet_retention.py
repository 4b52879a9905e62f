"""Bet retention: purge bets older than BET_RETENTION_DAYS.

Runs at most once per ~20h (smart sleep), however often the scheduler fires.
"""

import logging
from datetime import timedelta
from typing import Optional

from wagerlink.config import settings
from wagerlink.services.bet_ledger import BetLedger
from wagerlink.utils import utcnow
from wagerlink.workers._state import mark_run, ran_within

logger = logging.getLogger("wagerlink.bet_retention")

STATE_KEY = "bet_retention"
SMART_SLEEP = timedelta(hours=20)


async def run_bet_retention(
    ledger: Optional[BetLedger] = None, retention_days: Optional[int] = None,
) -> int:
    """Delete expired bets and return how many were removed (0 when skipped)."""
    if await ran_within(STATE_KEY, SMART_SLEEP):
        logger.debug("Smart sleep: bet retention ran recently")
        return 0

    days = retention_days if retention_days is not None else settings.BET_RETENTION_DAYS
    if days <= 0:
        logger.warning("Bet retention disabled: BET_RETENTION_DAYS=%s", days)
        return 0

    cutoff = utcnow() - timedelta(days=days)
    deleted = await (ledger or BetLedger()).delete_bets_before_date(cutoff)

    if deleted:
        logger.info("Bet retention complete: %d bet(s) older than %d days removed", deleted, days)
    else:
        logger.debug("Bet retention complete: nothing to remove")

    await mark_run(STATE_KEY, deleted=deleted, cutoff=cutoff)
    return deleted
