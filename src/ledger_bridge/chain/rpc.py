"""JSON-RPC client for the ledger fullnode.

Each call opens its own ``httpx.AsyncClient``; the bridge holds no
long-lived connections. Retryable failures (HTTP 429 and 5xx, connect and
read timeouts, dropped connections) are retried with a linear backoff plus a
small jitter. Everything else surfaces immediately as
:class:`~ledger_bridge.errors.LedgerRPCError`.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
import random
from collections.abc import Awaitable, Callable
from typing import Any

import httpx

from ledger_bridge.errors import LedgerRPCError

logger = logging.getLogger(__name__)

RETRY_BASE_DELAY_MS = 800
RETRY_MAX_DELAY_MS = 8_000
RETRY_JITTER_MS = 250

_RETRYABLE_STATUS = {429, 500, 502, 503, 504}


class LedgerClient:
    """Thin async wrapper over the fullnode JSON-RPC methods the bridge uses."""

    def __init__(
        self,
        rpc_url: str,
        *,
        timeout: float = 10.0,
        attempts: int = 3,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.rpc_url = rpc_url
        self.timeout = timeout
        self.attempts = max(1, attempts)
        self._sleep = sleep
        self._transport = transport
        self._ids = itertools.count(1)

    async def call(self, method: str, params: list[Any]) -> Any:
        """Invoke ``method`` and return its ``result``.

        Raises:
            LedgerRPCError: Transport failure after all attempts, a
                non-retryable HTTP status, or a JSON-RPC error object.
        """
        payload = {"jsonrpc": "2.0", "id": next(self._ids), "method": method, "params": params}
        last_error: Exception | None = None

        for attempt in range(self.attempts):
            try:
                async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                    response = await client.post(self.rpc_url, json=payload)
                if response.status_code in _RETRYABLE_STATUS:
                    raise httpx.HTTPStatusError(
                        f"HTTP {response.status_code}", request=response.request, response=response
                    )
                response.raise_for_status()
                body = response.json()
            except (httpx.TransportError, httpx.HTTPStatusError) as exc:
                last_error = exc
                retryable = not isinstance(exc, httpx.HTTPStatusError) or (
                    exc.response.status_code in _RETRYABLE_STATUS
                )
                if not retryable or attempt >= self.attempts - 1:
                    break
                delay_ms = min(RETRY_BASE_DELAY_MS * (attempt + 1), RETRY_MAX_DELAY_MS)
                delay_ms += random.randint(0, RETRY_JITTER_MS)  # nosec B311 - jitter only
                logger.warning(
                    "%s failed (%s); retrying in %dms (attempt %d/%d)",
                    method,
                    exc,
                    delay_ms,
                    attempt + 1,
                    self.attempts,
                )
                await self._sleep(delay_ms / 1000)
                continue
            except ValueError as exc:
                raise LedgerRPCError(f"{method}: node returned invalid JSON") from exc

            if body.get("error"):
                error = body["error"]
                message = error.get("message", str(error)) if isinstance(error, dict) else str(error)
                raise LedgerRPCError(f"{method}: {message}", extra={"rpcMethod": method})
            return body.get("result")

        raise LedgerRPCError(
            f"{method}: ledger node unreachable ({last_error})", extra={"rpcMethod": method}
        ) from last_error

    # -- Read methods ---------------------------------------------------------

    async def get_object_type(self, object_id: str) -> str | None:
        result = await self.call("sui_getObject", [object_id, {"showType": True}])
        data = (result or {}).get("data") or {}
        return data.get("type")

    async def query_events(
        self,
        event_type: str,
        *,
        cursor: dict | None = None,
        limit: int = 50,
        descending: bool = True,
    ) -> dict:
        return await self.call(
            "suix_queryEvents", [{"MoveEventType": event_type}, cursor, limit, descending]
        )

    async def get_transaction_block(self, digest: str) -> dict:
        return await self.call("sui_getTransactionBlock", [digest, {"showEvents": True}])

    async def get_reference_gas_price(self) -> int:
        return int(await self.call("suix_getReferenceGasPrice", []))

    async def get_coins(self, owner: str, coin_type: str = "0x2::sui::SUI") -> list[dict]:
        result = await self.call("suix_getCoins", [owner, coin_type, None, 50])
        return list((result or {}).get("data") or [])

    # -- Write methods --------------------------------------------------------

    async def execute_transaction_block(self, tx_bytes_b64: str, signatures: list[str]) -> dict:
        return await self.call(
            "sui_executeTransactionBlock",
            [tx_bytes_b64, signatures, {"showEffects": True}, "WaitForLocalExecution"],
        )
