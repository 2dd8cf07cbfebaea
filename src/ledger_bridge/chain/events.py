"""Reading order state out of ledger events.

Two read paths:

* :meth:`OrderEventReader.fetch_orders` scans the store's ``SetRecord``
  events for the ``order`` table and decodes each record's key and value
  tuples. This is the full snapshot the cache holds, and also what a direct
  node query performs.
* :meth:`OrderEventReader.find_order_by_digest` rebuilds one order from the
  lifecycle events a single transaction emitted, for when the store index has
  not caught up yet.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Mapping
from dataclasses import replace
from typing import Any

from ledger_bridge.chain.bcs import BCSError, Reader
from ledger_bridge.chain.crypto import address_from_bytes, normalize_address
from ledger_bridge.chain.rpc import LedgerClient
from ledger_bridge.chain.types import ZERO_ADDRESS, ChainOrderRecord, ChainOrderStatus
from ledger_bridge.errors import ConfigurationError

logger = logging.getLogger(__name__)

EVENT_PAGE_SIZE = 50
ORDER_TABLE_ID = "order"
ORDER_VALUE_FIELDS = 16

LIFECYCLE_EVENTS = (
    "OrderCreated",
    "OrderClaimed",
    "OrderPaid",
    "DepositLocked",
    "OrderCompleted",
    "OrderDisputed",
    "OrderResolved",
    "OrderFinalized",
)


def _strip_0x(value: str) -> str:
    return value[2:] if value.startswith("0x") else value


def _normalize_dapp_key(value: str) -> str:
    return _strip_0x(value.strip().lower())


def _as_bytes(raw: Any) -> bytes:
    if not isinstance(raw, list):
        raise BCSError("tuple field is not a byte array")
    return bytes(int(b) for b in raw)


def _u64(raw: Any) -> int:
    r = Reader(_as_bytes(raw))
    return r.u64()


def _u8(raw: Any) -> int:
    return Reader(_as_bytes(raw)).u8()


def _address(raw: Any) -> str:
    return address_from_bytes(Reader(_as_bytes(raw)).address())


def _vec_u8(raw: Any) -> str:
    return "0x" + Reader(_as_bytes(raw)).bytes().hex()


def decode_order_tuple(key_tuple: list, value_tuple: list) -> ChainOrderRecord | None:
    """Decode one ``order`` table record, or None if the shape is wrong."""
    if not key_tuple or len(value_tuple) < ORDER_VALUE_FIELDS:
        return None
    try:
        return ChainOrderRecord(
            order_id=str(_u64(key_tuple[0])),
            user=_address(value_tuple[0]),
            companion=_address(value_tuple[1]),
            rule_set_id=_u64(value_tuple[2]),
            service_fee=_u64(value_tuple[3]),
            deposit=_u64(value_tuple[4]),
            platform_fee_bps=_u64(value_tuple[5]),
            status=_u8(value_tuple[6]),
            created_at=_u64(value_tuple[7]),
            finish_at=_u64(value_tuple[8]),
            dispute_deadline=_u64(value_tuple[9]),
            vault_service=_u64(value_tuple[10]),
            vault_deposit=_u64(value_tuple[11]),
            evidence_hash=_vec_u8(value_tuple[12]),
            dispute_status=_u8(value_tuple[13]),
            resolved_by=_address(value_tuple[14]),
            resolved_at=_u64(value_tuple[15]),
        )
    except (BCSError, ValueError, TypeError):
        logger.warning("Skipping undecodable order record", exc_info=True)
        return None


def _read_int(fields: Mapping[str, Any] | None, key: str) -> int | None:
    if not fields or fields.get(key) in (None, ""):
        return None
    try:
        return int(fields[key])
    except (TypeError, ValueError):
        return None


def _read_hex(fields: Mapping[str, Any] | None, key: str) -> str:
    raw = (fields or {}).get(key)
    if isinstance(raw, str):
        return raw
    if isinstance(raw, list):
        try:
            return "0x" + bytes(int(b) for b in raw).hex()
        except (TypeError, ValueError):
            return "0x"
    return "0x"


def _read_address(fields: Mapping[str, Any] | None, key: str) -> str | None:
    raw = (fields or {}).get(key)
    if not raw:
        return None
    return normalize_address(str(raw))


class OrderEventReader:
    """Order reads for one contract deployment."""

    def __init__(
        self,
        client: LedgerClient,
        *,
        package_id: str,
        hub_id: str,
        event_limit: int = 1000,
    ) -> None:
        self.client = client
        self.package_id = package_id
        self.hub_id = hub_id
        self.event_limit = event_limit

    def _require_deployment(self) -> None:
        if not self.package_id or _strip_0x(self.package_id).strip("0") == "":
            raise ConfigurationError("ledger.package_id is not configured")
        if not self.hub_id or _strip_0x(self.hub_id).strip("0") == "":
            raise ConfigurationError("ledger.hub_id is not configured")

    async def _store_package_id(self) -> str:
        object_type = await self.client.get_object_type(self.hub_id)
        if not object_type:
            raise ConfigurationError(f"could not read the type of hub object {self.hub_id}")
        return object_type.split("::")[0]

    async def fetch_orders(self) -> list[ChainOrderRecord]:
        """Scan the newest ``event_limit`` store events for order records.

        Returns one record per order id (the newest observation), sorted by
        ``created_at`` descending.
        """
        self._require_deployment()
        store_package = await self._store_package_id()
        event_type = f"{store_package}::dubhe_events::Dubhe_Store_SetRecord"
        target_key = _normalize_dapp_key(f"{_strip_0x(self.package_id)}::dapp_key::DappKey")

        orders: dict[str, ChainOrderRecord] = {}
        cursor: dict | None = None
        remaining = self.event_limit
        while remaining > 0:
            page = await self.client.query_events(
                event_type, cursor=cursor, limit=min(EVENT_PAGE_SIZE, remaining)
            )
            events = page.get("data") or []
            for event in events:
                record = self._record_from_event(event, target_key)
                # Descending scan: the first observation of an id is the newest.
                if record is not None and record.order_id not in orders:
                    orders[record.order_id] = record
            remaining -= len(events)
            if not page.get("hasNextPage") or not events:
                break
            cursor = page.get("nextCursor")

        logger.info("Fetched %d ledger orders from %s", len(orders), event_type)
        return sorted(orders.values(), key=lambda o: o.created_at, reverse=True)

    @staticmethod
    def _record_from_event(event: Mapping[str, Any], target_key: str) -> ChainOrderRecord | None:
        parsed = event.get("parsedJson") or {}
        if parsed.get("table_id") != ORDER_TABLE_ID:
            return None
        if _normalize_dapp_key(str(parsed.get("dapp_key") or "")) != target_key:
            return None
        record = decode_order_tuple(parsed.get("key_tuple") or [], parsed.get("value_tuple") or [])
        if record is None:
            return None
        event_id = event.get("id") or {}
        return replace(
            record,
            last_updated_ms=int(event.get("timestampMs") or 0),
            digest=event_id.get("txDigest"),
        )

    async def find_order_by_digest(
        self,
        digest: str,
        fallback: Mapping[str, Any] | None = None,
    ) -> ChainOrderRecord | None:
        """Rebuild an order from the lifecycle events of one transaction.

        ``fallback`` supplies ``orderId``, ``user``, ``companion``,
        ``ruleSetId``, ``serviceFee``, ``deposit`` and ``createdAt`` for
        fields the events do not carry (normally the local record).
        """
        self._require_deployment()
        if not digest:
            return None
        fallback = fallback or {}
        tx = await self.client.get_transaction_block(digest)
        prefix = f"{self.package_id}::events::"
        by_name: dict[str, Mapping[str, Any]] = {}
        for event in (tx or {}).get("events") or []:
            event_type = str(event.get("type") or "")
            if event_type.startswith(prefix):
                name = event_type[len(prefix):]
                if name in LIFECYCLE_EVENTS and name not in by_name:
                    by_name[name] = event.get("parsedJson") or {}
        if not by_name:
            return None

        created = by_name.get("OrderCreated")
        claimed = by_name.get("OrderClaimed")
        paid = by_name.get("OrderPaid")
        locked = by_name.get("DepositLocked")
        completed = by_name.get("OrderCompleted")
        disputed = by_name.get("OrderDisputed")
        resolved = by_name.get("OrderResolved")
        finalized = by_name.get("OrderFinalized")

        order_id = next(
            (str(fields["order_id"]) for fields in by_name.values() if fields.get("order_id") not in (None, "")),
            str(fallback.get("orderId") or ""),
        )
        if not order_id:
            return None

        def first_int(*sources: tuple[Mapping[str, Any] | None, str], default_key: str) -> int:
            for fields, key in sources:
                value = _read_int(fields, key)
                if value is not None:
                    return value
            try:
                return int(fallback.get(default_key) or 0)
            except (TypeError, ValueError):
                return 0

        def first_address(*sources: Mapping[str, Any] | None, key: str, default_key: str) -> str:
            for fields in sources:
                value = _read_address(fields, key)
                if value:
                    return value
            raw = fallback.get(default_key)
            return normalize_address(str(raw)) if raw else ZERO_ADDRESS

        service_fee = first_int(
            (created, "service_fee"), (paid, "service_fee"), (locked, "service_fee"),
            default_key="serviceFee",
        )
        deposit = first_int((created, "deposit"), (locked, "deposit"), default_key="deposit")
        timestamp = int((tx or {}).get("timestampMs") or 0)
        created_at = _read_int(fallback, "createdAt") or timestamp or int(time.time() * 1000)

        status = ChainOrderStatus.CREATED
        vault_service = vault_deposit = 0
        finish_at = dispute_deadline = resolved_at = 0
        dispute_status = 0
        evidence_hash = "0x"
        resolved_by = ZERO_ADDRESS
        if paid:
            status = ChainOrderStatus.PAID
            vault_service = service_fee
        if locked:
            status = ChainOrderStatus.DEPOSITED
            vault_service, vault_deposit = service_fee, deposit
        if completed:
            status = ChainOrderStatus.COMPLETED
            finish_at = _read_int(completed, "finish_at") or 0
            dispute_deadline = _read_int(completed, "dispute_deadline") or 0
            vault_service = service_fee
            vault_deposit = deposit if locked else 0
        if disputed:
            status = ChainOrderStatus.DISPUTED
            dispute_status = 1
            evidence_hash = _read_hex(disputed, "evidence_hash")
        if resolved:
            status = ChainOrderStatus.RESOLVED
            dispute_status = 2
            resolved_by = _read_address(resolved, "resolved_by") or ZERO_ADDRESS
            resolved_at = timestamp
            vault_service = vault_deposit = 0
        if finalized:
            status = ChainOrderStatus.RESOLVED
            vault_service = vault_deposit = 0

        return ChainOrderRecord(
            order_id=order_id,
            user=first_address(created, paid, completed, key="user", default_key="user"),
            companion=first_address(created, claimed, locked, key="companion", default_key="companion"),
            status=int(status),
            rule_set_id=first_int((created, "rule_set_id"), default_key="ruleSetId"),
            service_fee=service_fee,
            deposit=deposit,
            created_at=created_at,
            finish_at=finish_at,
            dispute_deadline=dispute_deadline,
            vault_service=vault_service,
            vault_deposit=vault_deposit,
            evidence_hash=evidence_hash,
            dispute_status=dispute_status,
            resolved_by=resolved_by,
            resolved_at=resolved_at,
            last_updated_ms=timestamp,
            digest=digest,
        )
