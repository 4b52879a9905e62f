"""
backend/wagerlink/config.py

Purpose:
    Central settings loading for the wager ledger and wallet gateway.

Dependencies:
    - pydantic-settings
    - pathlib
"""

from pathlib import Path

from pydantic_settings import BaseSettings

# Prefer backend/.env, fallback to project-root .env.
_BACKEND_ENV_FILE = Path(__file__).resolve().parent.parent / ".env"
_ROOT_ENV_FILE = Path(__file__).resolve().parent.parent.parent / ".env"


class Settings(BaseSettings):
    MONGO_URI: str = "mongodb://localhost:27017"
    MONGO_DB: str = "wagerlink"
    MONGO_MAX_POOL_SIZE: int = 25
    MONGO_MIN_POOL_SIZE: int = 5

    # Outbound wallet calls (one POST per call, no in-process retry)
    WALLET_HTTP_TIMEOUT_SECONDS: float = 15.0
    WALLET_HTTP_MAX_CONNECTIONS: int = 100
    WALLET_HTTP_MAX_KEEPALIVE: int = 20
    WALLET_DEFAULT_CURRENCY: str = "USD"

    # Bet ledger queries
    BET_QUERY_DEFAULT_LIMIT: int = 100

    # Retention purge (off unless explicitly enabled)
    BET_RETENTION_ENABLED: bool = False
    BET_RETENTION_DAYS: int = 90
    BET_RETENTION_INTERVAL_HOURS: int = 24

    LOG_LEVEL: str = "INFO"

    model_config = {
        "env_file": (str(_BACKEND_ENV_FILE), str(_ROOT_ENV_FILE)),
        "extra": "ignore",
    }


settings = Settings()
