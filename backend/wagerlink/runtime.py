"""
backend/wagerlink/runtime.py

Purpose:
    Process bootstrap for embedding the ledger and wallet gateway in a host
    service: connects MongoDB, builds the shared collaborators and starts the
    maintenance scheduler. ``WagerRuntime.stop()`` tears everything down in
    reverse order after draining in-flight audit and retry writes.

Dependencies:
    - wagerlink.database
    - wagerlink.services.*
    - wagerlink.scheduler
"""

import logging
from dataclasses import dataclass
from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from wagerlink.config import settings
from wagerlink.database import close_db, connect_db
from wagerlink.logging_setup import setup_logging
from wagerlink.providers.http_client import WalletHttpClient
from wagerlink.scheduler import build_scheduler
from wagerlink.services.agent_directory import MongoAgentDirectory
from wagerlink.services.bet_ledger import BetLedger
from wagerlink.services.capabilities import (
    AgentDirectory,
    GameMetadataProvider,
    GameValidator,
)
from wagerlink.services.wallet_audit_service import WalletAuditLog
from wagerlink.services.wallet_gateway import WalletGateway
from wagerlink.services.wallet_retry_service import WalletRetryQueue

logger = logging.getLogger("wagerlink.runtime")


@dataclass
class WagerRuntime:
    ledger: BetLedger
    gateway: WalletGateway
    audit_log: WalletAuditLog
    retry_queue: WalletRetryQueue
    http_client: WalletHttpClient
    scheduler: Optional[AsyncIOScheduler] = None

    async def stop(self) -> None:
        await self.gateway.drain()
        if self.scheduler is not None and self.scheduler.running:
            self.scheduler.shutdown(wait=False)
        await self.http_client.aclose()
        await close_db()
        logger.info("Wager runtime stopped")


async def start_runtime(
    *,
    game_validator: Optional[GameValidator] = None,
    metadata_provider: Optional[GameMetadataProvider] = None,
    agent_directory: Optional[AgentDirectory] = None,
    http_client: Optional[WalletHttpClient] = None,
    with_scheduler: bool = True,
    configure_logging: bool = False,
) -> WagerRuntime:
    if configure_logging:
        setup_logging(settings.LOG_LEVEL)

    await connect_db()

    http_client = http_client or WalletHttpClient()
    audit_log = WalletAuditLog()
    retry_queue = WalletRetryQueue()
    ledger = BetLedger(game_validator=game_validator)
    gateway = WalletGateway(
        agent_directory=agent_directory or MongoAgentDirectory(),
        http_client=http_client,
        audit_log=audit_log,
        retry_queue=retry_queue,
        metadata_provider=metadata_provider,
    )

    scheduler = None
    if with_scheduler:
        scheduler = build_scheduler(ledger)
        scheduler.start()
        logger.info("Background scheduler started")

    logger.info(
        "Wager runtime started (game validator: %s, metadata provider: %s)",
        "yes" if game_validator else "no",
        "yes" if metadata_provider else "no",
    )
    return WagerRuntime(
        ledger=ledger,
        gateway=gateway,
        audit_log=audit_log,
        retry_queue=retry_queue,
        http_client=http_client,
        scheduler=scheduler,
    )
