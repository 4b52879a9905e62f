"""
backend/wagerlink/services/capabilities.py

Purpose:
    Collaborator interfaces consumed by the ledger and the wallet gateway.
    Game validation and game metadata are optional: services accept ``None``
    and fall back to documented behavior instead of failing.

Dependencies:
    - abc
    - wagerlink.models.wallet
"""

from abc import ABC, abstractmethod
from typing import Any, Optional

from wagerlink.models.wallet import AgentEndpoint


class GameValidator(ABC):
    """Gate for placements: asserts a game code is known and active."""

    @abstractmethod
    async def validate_game(self, game_code: str) -> None:
        """Return normally for a playable game.

        Raise wagerlink.errors.NotFoundError (or any exception, which the
        ledger reports as NotFoundError) when the game is unknown or inactive.
        """
        ...


class GameMetadataProvider(ABC):
    """Supplies game-descriptive fields merged into outbound wallet transactions."""

    @abstractmethod
    async def get_game_payloads(self, game_code: str) -> dict[str, Any]:
        """Return at least ``{"gameCode": ...}``.

        Common optional keys: gameName, platform, gameType, settleType,
        currency. Extra keys are passed through to the wallet as-is.
        """
        ...


class AgentDirectory(ABC):
    """Resolves an agent id to its wallet callback endpoint and signing key."""

    @abstractmethod
    async def resolve(self, agent_id: str) -> Optional[AgentEndpoint]:
        """Return the endpoint, or None if the agent is unknown."""
        ...
