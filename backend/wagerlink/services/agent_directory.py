"""Read-only agent directory over the MongoDB agents collection."""

import logging
from typing import Optional

import wagerlink.database as _db
from wagerlink.models.wallet import AgentEndpoint
from wagerlink.services.capabilities import AgentDirectory

logger = logging.getLogger("wagerlink.agent_directory")


class MongoAgentDirectory(AgentDirectory):
    async def resolve(self, agent_id: str) -> Optional[AgentEndpoint]:
        doc = await _db.db.agents.find_one(
            {"agent_id": agent_id},
            {"agent_id": 1, "cert": 1, "callback_url": 1},
        )
        if not doc:
            return None
        if not doc.get("callback_url") or not doc.get("cert"):
            logger.error("Agent %s has no callback_url or cert configured", agent_id)
            return None
        return AgentEndpoint(
            agent_id=doc["agent_id"],
            callback_url=doc["callback_url"],
            credential=doc["cert"],
        )
