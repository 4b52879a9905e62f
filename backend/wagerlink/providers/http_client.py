"""
backend/wagerlink/providers/http_client.py

Purpose:
    Shared httpx client for agent wallet callbacks plus the mapping from
    httpx failures onto the wallet error taxonomy.

    Wallet calls move money, so a POST is sent exactly once. Failed
    settlements and refunds are resubmitted out of band through retry jobs,
    never by looping here.

Dependencies:
    - httpx
    - wagerlink.config
    - wagerlink.errors
"""

import logging
from typing import Any, Optional
from urllib.parse import urlparse

import httpx

from wagerlink.config import settings
from wagerlink.errors import (
    WalletCallError,
    WalletHttpError,
    WalletNetworkError,
    WalletTimeoutError,
    WalletUnknownError,
)
from wagerlink.models.wallet import WalletApiAction

logger = logging.getLogger("wagerlink.http_client")


def _safe_url(url: str) -> str:
    """Strip query params (may contain credentials) for safe logging."""
    parsed = urlparse(str(url))
    return f"{parsed.scheme}://{parsed.netloc}{parsed.path}"


def _response_body(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return response.text


def classify_transport_error(
    exc: Exception,
    *,
    action: Optional[WalletApiAction] = None,
    request_id: Optional[str] = None,
) -> WalletCallError:
    """Map a transport-level exception onto a typed wallet error.

    Connection refused and unresolvable hosts surface from httpx as
    ConnectError, a NetworkError subclass. Timeouts are checked first since
    ConnectTimeout is both.
    """
    if isinstance(exc, WalletCallError):
        return exc
    message = str(exc) or type(exc).__name__
    if isinstance(exc, httpx.HTTPStatusError):
        return WalletHttpError(
            f"Wallet responded with HTTP {exc.response.status_code}",
            status_code=exc.response.status_code,
            body=_response_body(exc.response),
            action=action,
            request_id=request_id,
        )
    if isinstance(exc, httpx.TimeoutException):
        return WalletTimeoutError(message, action=action, request_id=request_id)
    if isinstance(exc, httpx.NetworkError):
        return WalletNetworkError(message, action=action, request_id=request_id)
    return WalletUnknownError(message, action=action, request_id=request_id)


class WalletHttpClient:
    """httpx.AsyncClient wrapper for single-shot JSON POSTs to agent callbacks."""

    def __init__(
        self,
        name: str = "wallet",
        timeout: Optional[float] = None,
        max_connections: Optional[int] = None,
        max_keepalive_connections: Optional[int] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        limits = httpx.Limits(
            max_connections=max_connections or settings.WALLET_HTTP_MAX_CONNECTIONS,
            max_keepalive_connections=(
                max_keepalive_connections or settings.WALLET_HTTP_MAX_KEEPALIVE
            ),
        )
        self._client = httpx.AsyncClient(
            timeout=timeout or settings.WALLET_HTTP_TIMEOUT_SECONDS,
            limits=limits,
            transport=transport,
        )
        self._name = name

    async def post_json(self, url: str, body: dict[str, Any]) -> tuple[int, Any]:
        """POST ``body`` as JSON and return ``(status_code, decoded_body)``.

        The decoded body is the raw text when the response is not JSON.
        Raises httpx errors, including HTTPStatusError for non-2xx status.
        """
        logger.debug("[%s] POST %s", self._name, _safe_url(url))
        try:
            resp = await self._client.post(url, json=body)
            resp.raise_for_status()
        except httpx.HTTPStatusError as exc:
            logger.warning(
                "[%s] HTTP %d on POST %s",
                self._name, exc.response.status_code, _safe_url(url),
            )
            raise
        except httpx.HTTPError as exc:
            logger.warning(
                "[%s] Transport error on POST %s: %s: %s",
                self._name, _safe_url(url), type(exc).__name__, exc,
            )
            raise
        return resp.status_code, _response_body(resp)

    async def aclose(self) -> None:
        await self._client.aclose()
