"""
backend/wagerlink/services/wallet_gateway.py

Purpose:
    Drives the agent wallet protocol (getBalance / bet / settle / cancelBet)
    over HTTP. Every call attempt that reaches the wire produces exactly one
    audit record; failed settle and refund calls additionally produce one
    retry job that references the audit record.

    Audit and retry writes run as background tasks. Their failures are
    logged and discarded and never change what the caller sees.

Dependencies:
    - wagerlink.providers.http_client
    - wagerlink.services.wallet_audit_service
    - wagerlink.services.wallet_retry_service
    - wagerlink.services.capabilities
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
import traceback
import uuid
from decimal import Decimal
from typing import Any, Coroutine, Optional

from pydantic import ValidationError

from wagerlink.config import settings
from wagerlink.errors import (
    AgentRejectedError,
    MalformedResponseError,
    NotFoundError,
    WalletCallError,
    WalletHttpError,
)
from wagerlink.logging_setup import log_wallet_call
from wagerlink.models.wallet import (
    RETRYABLE_ACTIONS,
    WALLET_SUCCESS_STATUS,
    AgentEndpoint,
    AuditRecord,
    PlaceBetParams,
    RefundBetParams,
    RetryJob,
    SettleBetParams,
    WalletApiAction,
    WalletAuditStatus,
    WalletResponse,
)
from wagerlink.providers.http_client import WalletHttpClient, classify_transport_error
from wagerlink.services.capabilities import AgentDirectory, GameMetadataProvider
from wagerlink.services.wallet_audit_service import WalletAuditLog
from wagerlink.services.wallet_retry_service import WalletRetryQueue
from wagerlink.utils import iso_timestamp, to_decimal, utcnow, wire_number

logger = logging.getLogger("wagerlink.wallet_gateway")

_REJECTION_LABELS = {
    WalletApiAction.get_balance: "getBalance",
    WalletApiAction.place_bet: "bet",
    WalletApiAction.settle_bet: "settlement",
    WalletApiAction.refund_bet: "refund",
}


def _game_info(value: Any) -> str:
    return value if isinstance(value, str) else json.dumps(value, default=str)


def _optional_str(value: Any) -> Optional[str]:
    return None if value is None else str(value)


class WalletGateway:
    """Outbound wallet calls for one process. Share a single instance."""

    def __init__(
        self,
        agent_directory: AgentDirectory,
        http_client: WalletHttpClient,
        audit_log: WalletAuditLog,
        retry_queue: WalletRetryQueue,
        metadata_provider: Optional[GameMetadataProvider] = None,
    ):
        self._agents = agent_directory
        self._http = http_client
        self._audit_log = audit_log
        self._retry_queue = retry_queue
        self._metadata = metadata_provider
        self._pending: set[asyncio.Task] = set()
        if metadata_provider is None:
            logger.warning("No game metadata provider configured; wallet payloads will be minimal")

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def resolve_agent(self, agent_id: str) -> AgentEndpoint:
        endpoint = await self._agents.resolve(agent_id)
        if endpoint is None:
            raise NotFoundError(f"Agent '{agent_id}' not found")
        return endpoint

    async def get_balance(self, agent_id: str, user_id: str) -> WalletResponse:
        endpoint = await self.resolve_agent(agent_id)
        message_obj = {"action": "getBalance", "userId": user_id}
        return await self._call(
            WalletApiAction.get_balance,
            endpoint,
            user_id=user_id,
            message_obj=message_obj,
            linkage={},
        )

    async def place_bet(self, params: PlaceBetParams) -> WalletResponse:
        """Debit the wallet for a new bet. Failures are audited but never queued for retry."""
        endpoint = await self.resolve_agent(params.agent_id)
        currency = params.currency or settings.WALLET_DEFAULT_CURRENCY
        game_payloads = await self._game_payloads(params.game_code)

        txn = {
            "platformTxId": params.platform_tx_id,
            "userId": params.user_id,
            "currency": currency,
            **game_payloads,
            "betType": None,
            "betAmount": wire_number(params.amount),
            "betTime": iso_timestamp(utcnow()),
            "roundId": params.round_id,
            "isPremium": False,
        }
        return await self._call(
            WalletApiAction.place_bet,
            endpoint,
            user_id=params.user_id,
            message_obj={"action": "bet", "txns": [txn]},
            linkage={
                "platform_tx_id": params.platform_tx_id,
                "round_id": params.round_id,
                "bet_amount": params.amount,
                "currency": currency,
            },
        )

    async def settle_bet(self, params: SettleBetParams) -> WalletResponse:
        endpoint = await self.resolve_agent(params.agent_id)
        game_payloads = await self._game_payloads(params.game_code)
        currency = game_payloads.get("currency") or settings.WALLET_DEFAULT_CURRENCY

        txn = {
            "platformTxId": params.platform_tx_id,
            "userId": params.user_id,
            **game_payloads,
            "refPlatformTxId": None,
            "settleType": game_payloads.get("settleType"),
            "gameType": game_payloads.get("gameType"),
            "gameCode": game_payloads["gameCode"],
            "gameName": game_payloads.get("gameName"),
            "betType": None,
            "betAmount": wire_number(params.bet_amount),
            "winAmount": wire_number(params.win_amount),
            "betTime": iso_timestamp(utcnow()),
            "roundId": params.round_id,
        }
        if params.game_session:
            txn["gameInfo"] = _game_info(params.game_session)

        return await self._call(
            WalletApiAction.settle_bet,
            endpoint,
            user_id=params.user_id,
            message_obj={"action": "settle", "txns": [txn]},
            linkage={
                "platform_tx_id": params.platform_tx_id,
                "round_id": params.round_id,
                "bet_amount": params.bet_amount,
                "win_amount": params.win_amount,
                "currency": currency,
            },
            game_payloads=game_payloads,
        )

    async def refund_bet(self, params: RefundBetParams) -> WalletResponse:
        """Cancel a batch of bets for one agent/user in a single cancelBet call.

        Enrichment uses the first transaction's game code. Audit and retry
        records carry the batch totals; the retry job is keyed on the first
        transaction and embeds the whole batch so a resubmission replays it.
        """
        endpoint = await self.resolve_agent(params.agent_id)
        first = params.refund_transactions[0]
        game_payloads = await self._game_payloads(first.game_code)
        currency = game_payloads.get("currency") or settings.WALLET_DEFAULT_CURRENCY

        txns = []
        for refund in params.refund_transactions:
            txn = {
                "platformTxId": refund.platform_tx_id,
                "userId": params.user_id,
                "platform": game_payloads.get("platform"),
                "gameType": game_payloads.get("gameType"),
                "gameCode": game_payloads["gameCode"],
                "gameName": game_payloads.get("gameName"),
                "betType": None,
                "betAmount": wire_number(refund.bet_amount),
                "winAmount": wire_number(refund.win_amount),
                "turnover": wire_number(refund.turnover if refund.turnover is not None else Decimal("0")),
                "betTime": refund.bet_time,
                "updateTime": refund.update_time,
                "roundId": refund.round_id,
                "refundPlatformTxId": refund.refund_platform_tx_id,
            }
            if refund.game_info:
                txn["gameInfo"] = _game_info(refund.game_info)
            txns.append(txn)

        total_bet = sum((t.bet_amount for t in params.refund_transactions), Decimal("0"))
        total_win = sum((t.win_amount for t in params.refund_transactions), Decimal("0"))
        logger.info(
            "Refunding %d transaction(s) for user=%s agent=%s: %s",
            len(txns), params.user_id, params.agent_id,
            ",".join(t.platform_tx_id for t in params.refund_transactions),
        )
        return await self._call(
            WalletApiAction.refund_bet,
            endpoint,
            user_id=params.user_id,
            message_obj={"action": "cancelBet", "txns": txns},
            linkage={
                "platform_tx_id": first.platform_tx_id,
                "round_id": first.round_id,
                "bet_amount": total_bet,
                "win_amount": total_win,
                "currency": currency,
            },
            game_payloads=game_payloads,
            extra_snapshot={
                "refundTransactions": [
                    t.model_dump(mode="json") for t in params.refund_transactions
                ],
            },
        )

    async def drain(self) -> None:
        """Wait for every in-flight audit/retry write to finish."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    # ------------------------------------------------------------------
    # Call pipeline
    # ------------------------------------------------------------------

    async def _call(
        self,
        action: WalletApiAction,
        endpoint: AgentEndpoint,
        *,
        user_id: str,
        message_obj: dict[str, Any],
        linkage: dict[str, Any],
        game_payloads: Optional[dict[str, Any]] = None,
        extra_snapshot: Optional[dict[str, Any]] = None,
    ) -> WalletResponse:
        request_id = str(uuid.uuid4())
        url = endpoint.callback_url
        envelope = {"key": endpoint.credential, "message": json.dumps(message_obj, default=str)}
        # The signing key stays out of everything that gets persisted.
        snapshot: dict[str, Any] = {"message": message_obj, "url": url}
        if extra_snapshot:
            snapshot.update(extra_snapshot)

        audit_base = {
            "request_id": request_id,
            "agent_id": endpoint.agent_id,
            "user_id": user_id,
            "api_action": action,
            "request_payload": snapshot,
            "request_url": url,
            "callback_url": url,
            **linkage,
        }

        started = time.monotonic()
        http_status: Optional[int] = None
        try:
            try:
                http_status, body = await self._http.post_json(url, envelope)
            except Exception as exc:
                raise classify_transport_error(exc, action=action, request_id=request_id) from exc
            response = self._map_response(body, action=action, request_id=request_id)
        except WalletCallError as err:
            elapsed_ms = int((time.monotonic() - started) * 1000)
            self._on_failure(
                err,
                action,
                audit_base=audit_base,
                http_status=http_status,
                elapsed_ms=elapsed_ms,
                game_payloads=game_payloads,
            )
            raise

        elapsed_ms = int((time.monotonic() - started) * 1000)
        log_wallet_call(
            {
                "request_id": request_id,
                "action": action.value,
                "agent_id": endpoint.agent_id,
                "user_id": user_id,
                "status": WalletAuditStatus.success.value,
                "http_status": http_status,
                "duration_ms": elapsed_ms,
                "wallet_status": response.status,
            },
            failed=False,
        )
        record = AuditRecord(
            **audit_base,
            status=WalletAuditStatus.success,
            response_data=response.raw,
            http_status=http_status,
            response_time_ms=elapsed_ms,
        )
        self._spawn(self._write_audit(record), f"wallet-audit-{request_id}")
        return response

    def _map_response(
        self, body: Any, *, action: WalletApiAction, request_id: str,
    ) -> WalletResponse:
        if not isinstance(body, dict) or not isinstance(body.get("status"), str):
            raise MalformedResponseError(
                "Malformed agent response", response=body, action=action, request_id=request_id,
            )
        status = body["status"]
        if status != WALLET_SUCCESS_STATUS:
            raise AgentRejectedError(
                f"Agent rejected {_REJECTION_LABELS[action]} with status: {status}",
                status=status,
                response=body,
                action=action,
                request_id=request_id,
            )
        try:
            balance = to_decimal(body.get("balance") or 0)
        except ValueError as exc:
            raise MalformedResponseError(
                f"Unreadable balance in agent response: {body.get('balance')!r}",
                response=body, action=action, request_id=request_id,
            ) from exc
        # Optional fields are kept as text whatever their JSON type.
        try:
            return WalletResponse(
                balance=balance,
                balance_ts=_optional_str(body.get("balanceTs")),
                status=status,
                user_id=_optional_str(body.get("userId")),
                raw=body,
            )
        except ValidationError as exc:
            raise MalformedResponseError(
                "Unreadable agent response", response=body, action=action, request_id=request_id,
            ) from exc

    def _on_failure(
        self,
        err: WalletCallError,
        action: WalletApiAction,
        *,
        audit_base: dict[str, Any],
        http_status: Optional[int],
        elapsed_ms: int,
        game_payloads: Optional[dict[str, Any]],
    ) -> None:
        response_data: Any = None
        if isinstance(err, WalletHttpError):
            http_status = err.status_code
            response_data = err.body
        elif isinstance(err, (AgentRejectedError, MalformedResponseError)):
            response_data = err.response

        cause = err.__cause__ or err
        logger.error(
            "Wallet %s failed: agent=%s user=%s tx=%s type=%s http=%s request_id=%s: %s",
            action.value, audit_base["agent_id"], audit_base["user_id"],
            audit_base.get("platform_tx_id"), err.failure_type.value,
            http_status if http_status is not None else "N/A", audit_base["request_id"], err,
        )
        log_wallet_call(
            {
                "request_id": audit_base["request_id"],
                "action": action.value,
                "agent_id": audit_base["agent_id"],
                "user_id": audit_base["user_id"],
                "status": WalletAuditStatus.failure.value,
                "http_status": http_status,
                "duration_ms": elapsed_ms,
                "failure_type": err.failure_type.value,
            },
            failed=True,
        )

        record = AuditRecord(
            **audit_base,
            status=WalletAuditStatus.failure,
            failure_type=err.failure_type,
            response_data=response_data,
            http_status=http_status,
            response_time_ms=elapsed_ms,
            error_message=str(err),
            error_stack="".join(traceback.format_exception(type(cause), cause, cause.__traceback__)),
            raw_error=repr(cause),
        )

        if action not in RETRYABLE_ACTIONS:
            self._spawn(self._write_audit(record), f"wallet-audit-{record.request_id}")
            return

        job_seed = {
            "platform_tx_id": audit_base["platform_tx_id"],
            "api_action": action,
            "agent_id": audit_base["agent_id"],
            "user_id": audit_base["user_id"],
            "request_payload": audit_base["request_payload"],
            "callback_url": audit_base["callback_url"],
            "round_id": audit_base.get("round_id"),
            "bet_amount": audit_base.get("bet_amount"),
            "win_amount": audit_base.get("win_amount"),
            "currency": audit_base.get("currency"),
            "game_payloads": game_payloads or {},
            "error_message": str(err),
        }
        self._spawn(self._audit_then_retry(record, job_seed), f"wallet-retry-{record.request_id}")

    # ------------------------------------------------------------------
    # Enrichment and background writes
    # ------------------------------------------------------------------

    async def _game_payloads(self, game_code: str) -> dict[str, Any]:
        minimal = {"gameCode": game_code}
        if self._metadata is None:
            return minimal
        try:
            payloads = await self._metadata.get_game_payloads(game_code)
        except Exception as exc:
            logger.warning(
                "Failed to get game payloads for gameCode=%s, using minimal payload: %s",
                game_code, exc,
            )
            return minimal
        if not isinstance(payloads, dict):
            logger.warning("Game payloads for gameCode=%s are not a mapping, using minimal payload", game_code)
            return minimal
        return {**minimal, **payloads}

    def _spawn(self, coro: Coroutine[Any, Any, Any], name: str) -> None:
        task = asyncio.create_task(coro, name=name)
        self._pending.add(task)
        task.add_done_callback(self._background_done)

    def _background_done(self, task: asyncio.Task) -> None:
        self._pending.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Background wallet write %s failed: %s", task.get_name(), exc, exc_info=exc)

    async def _write_audit(self, record: AuditRecord) -> Optional[str]:
        try:
            return await self._audit_log.append(record)
        except Exception:
            logger.exception(
                "Failed to log wallet audit (non-blocking): action=%s request_id=%s",
                record.api_action.value, record.request_id,
            )
            return None

    async def _audit_then_retry(self, record: AuditRecord, job_seed: dict[str, Any]) -> None:
        audit_id = await self._write_audit(record)
        job = RetryJob(**job_seed, wallet_audit_id=audit_id)
        await self._retry_queue.enqueue(job)
