"""
Test doubles and builders shared by several test packages.

- :class:`FakeClock`        settable millisecond clock.
- :class:`FakeOrderReader`  stands in for ``OrderEventReader``.
- :class:`FakeLedgerClient` stands in for ``LedgerClient`` in sponsorship.
- :func:`make_record`       builds a ``ChainOrderRecord`` with sane defaults.
- :func:`sign_headers`      produces the ``x-auth-*`` headers for a request.
- :func:`order_call_kind`   base64 transaction kind calling the order module.
"""

from __future__ import annotations

import base64
import time
import uuid
from typing import Any

import base58

from ledger_bridge.auth.signature import build_auth_message, hash_body
from ledger_bridge.chain.crypto import Keypair
from ledger_bridge.chain.transactions import MoveCall, ProgrammableTransaction
from ledger_bridge.chain.types import ChainOrderRecord
from tests.constants import (
    COMPANION_SEED,
    HUB_ID,
    NOW_MS,
    OUTSIDER_SEED,
    PACKAGE_ID,
    SPONSOR_SEED,
    USER_SEED,
)

USER = Keypair.from_seed(USER_SEED)
COMPANION = Keypair.from_seed(COMPANION_SEED)
SPONSOR = Keypair.from_seed(SPONSOR_SEED)
OUTSIDER = Keypair.from_seed(OUTSIDER_SEED)


class FakeClock:
    """Callable clock returning ``now`` in milliseconds."""

    def __init__(self, now: int = NOW_MS) -> None:
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


class FakeOrderReader:
    """
    In-memory replacement for ``OrderEventReader``.

    ``responses`` is consumed one list per ``fetch_orders`` call; once empty,
    every call returns ``orders``. ``fetch_error`` makes every call raise.
    """

    def __init__(
        self,
        orders: list[ChainOrderRecord] | None = None,
        *,
        responses: list[list[ChainOrderRecord]] | None = None,
        event_limit: int = 1000,
    ) -> None:
        self.orders = list(orders or [])
        self.responses = list(responses or [])
        self.event_limit = event_limit
        self.package_id = PACKAGE_ID
        self.hub_id = HUB_ID
        self.fetch_error: Exception | None = None
        self.fetch_calls = 0
        self.digest_orders: dict[str, ChainOrderRecord] = {}
        self.digest_error: Exception | None = None
        self.digest_calls: list[tuple[str, dict[str, Any]]] = []

    async def fetch_orders(self) -> list[ChainOrderRecord]:
        self.fetch_calls += 1
        if self.fetch_error is not None:
            raise self.fetch_error
        if self.responses:
            return list(self.responses.pop(0))
        return list(self.orders)

    async def find_order_by_digest(self, digest, fallback=None):
        self.digest_calls.append((digest, dict(fallback or {})))
        if self.digest_error is not None:
            raise self.digest_error
        return self.digest_orders.get(digest)


def make_coin(object_byte: int, balance: int, version: int = 12) -> dict[str, Any]:
    """A gas coin as ``suix_getCoins`` returns it."""
    return {
        "coinObjectId": "0x" + f"{object_byte:02x}" * 32,
        "version": str(version),
        "digest": base58.b58encode(bytes([object_byte]) * 32).decode("ascii"),
        "balance": str(balance),
    }


class FakeLedgerClient:
    """Records sponsorship RPC traffic and returns canned results."""

    def __init__(
        self,
        *,
        coins: list[dict[str, Any]] | None = None,
        gas_price: int = 1000,
        execute_result: dict[str, Any] | None = None,
    ) -> None:
        if coins is None:
            coins = [make_coin(0x11, 30_000_000), make_coin(0x22, 40_000_000)]
        self.coins = coins
        self.gas_price = gas_price
        self.execute_result = execute_result
        self.coin_requests: list[tuple[str, str]] = []
        self.executed: list[tuple[str, list[str]]] = []

    async def get_reference_gas_price(self) -> int:
        return self.gas_price

    async def get_coins(self, owner: str, coin_type: str = "0x2::sui::SUI") -> list[dict]:
        self.coin_requests.append((owner, coin_type))
        return [dict(coin) for coin in self.coins]

    async def execute_transaction_block(self, tx_bytes_b64: str, signatures: list[str]) -> dict:
        self.executed.append((tx_bytes_b64, list(signatures)))
        if self.execute_result is not None:
            return self.execute_result
        return {"digest": "SponsoredDigest1", "effects": {"status": {"status": "success"}}}


def make_record(
    order_id: str = "1",
    *,
    status: int = 0,
    user: str | None = None,
    companion: str | None = None,
    service_fee: int = 10_000,
    deposit: int = 5_000,
    created_at: int = NOW_MS - 60_000,
    digest: str | None = None,
    **fields: Any,
) -> ChainOrderRecord:
    return ChainOrderRecord(
        order_id=order_id,
        user=user or USER.address,
        companion=companion or COMPANION.address,
        status=status,
        service_fee=service_fee,
        deposit=deposit,
        created_at=created_at,
        digest=digest,
        **fields,
    )


def sign_headers(
    keypair: Keypair,
    *,
    intent: str,
    body: bytes | None = None,
    nonce: str | None = None,
    timestamp: int | None = None,
    address: str | None = None,
) -> dict[str, str]:
    """Headers a wallet client sends for one signed request."""
    ts = int(time.time() * 1000) if timestamp is None else timestamp
    nonce = nonce or uuid.uuid4().hex
    body_hash = hash_body(body) if body is not None else ""
    message = build_auth_message(
        intent=intent,
        address=address or keypair.address,
        timestamp=ts,
        nonce=nonce,
        body_hash=body_hash,
    )
    headers = {
        "x-auth-signature": keypair.sign_personal_message(message.encode("utf-8")),
        "x-auth-timestamp": str(ts),
        "x-auth-nonce": nonce,
        "x-auth-address": address or keypair.address,
    }
    if body is not None:
        headers["x-auth-body-sha256"] = body_hash
    return headers


def order_call(function: str, package: str = PACKAGE_ID, module: str = "order_system") -> MoveCall:
    return MoveCall(package=package, module=module, function=function)


def order_call_kind(*functions: str, package: str = PACKAGE_ID) -> str:
    """Base64 programmable transaction calling ``functions`` in order."""
    kind = ProgrammableTransaction(
        commands=tuple(order_call(name, package=package) for name in functions)
    )
    return base64.b64encode(kind.to_bytes()).decode("ascii")
