import json
import logging
from typing import Any

call_logger = logging.getLogger("wagerlink.wallet_calls")


def setup_logging(level: str | int = logging.INFO) -> None:
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S",
    )


def log_wallet_call(log_data: dict[str, Any], *, failed: bool) -> None:
    """Emit one JSON line per outbound wallet call."""
    level = logging.WARNING if failed else logging.INFO
    call_logger.log(level, json.dumps(log_data, default=str))
