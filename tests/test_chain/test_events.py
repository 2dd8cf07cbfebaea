"""
Tests for reading orders out of ledger events (ledger_bridge/chain/events.py).

Tests cover:
- Decoding store ``SetRecord`` events into order records
- Paging, event limit and newest-observation-wins deduplication
- Rebuilding one order from a transaction's lifecycle events
"""

import pytest

from ledger_bridge.chain.bcs import Writer
from ledger_bridge.chain.crypto import address_to_bytes
from ledger_bridge.chain.events import OrderEventReader, decode_order_tuple
from ledger_bridge.chain.types import ZERO_ADDRESS, ChainOrderStatus
from ledger_bridge.errors import ConfigurationError
from tests.constants import HUB_ID, NOW_MS, PACKAGE_ID, STORE_PACKAGE_ID
from tests.helpers import COMPANION, OUTSIDER, USER

DAPP_KEY = f"{PACKAGE_ID[2:]}::dapp_key::DappKey"
SET_RECORD = f"{STORE_PACKAGE_ID}::dubhe_events::Dubhe_Store_SetRecord"


def _u64(value: int) -> list[int]:
    return list(Writer().u64(value).getvalue())


def _u8(value: int) -> list[int]:
    return [value]


def _addr(address: str) -> list[int]:
    return list(address_to_bytes(address))


def _value_tuple(*, status: int, created_at: int, service_fee: int = 1000, deposit: int = 500):
    return [
        _addr(USER.address),
        _addr(COMPANION.address),
        _u64(3),
        _u64(service_fee),
        _u64(deposit),
        _u64(250),
        _u8(status),
        _u64(created_at),
        _u64(0),
        _u64(0),
        _u64(0),
        _u64(0),
        list(Writer().bytes(b"\xbe\xef").getvalue()),
        _u8(0),
        _addr(ZERO_ADDRESS),
        _u64(0),
    ]


def set_record_event(
    order_id: int,
    *,
    status: int = 0,
    created_at: int = NOW_MS,
    digest: str = "Digest",
    table: str = "order",
    dapp_key: str = DAPP_KEY,
) -> dict:
    return {
        "id": {"txDigest": digest, "eventSeq": "0"},
        "timestampMs": str(created_at + 5),
        "parsedJson": {
            "table_id": table,
            "dapp_key": dapp_key,
            "key_tuple": [_u64(order_id)],
            "value_tuple": _value_tuple(status=status, created_at=created_at),
        },
    }


class FakeEventClient:
    """Serves ``query_events`` pages in order and one transaction block."""

    def __init__(self, pages=(), *, hub_type=f"{STORE_PACKAGE_ID}::dubhe_schema::Hub", tx=None):
        self.pages = list(pages)
        self.hub_type = hub_type
        self.tx = tx
        self.queries: list[tuple[str, dict | None, int]] = []

    async def get_object_type(self, object_id):
        return self.hub_type

    async def query_events(self, event_type, *, cursor=None, limit=50, descending=True):
        self.queries.append((event_type, cursor, limit))
        return self.pages[len(self.queries) - 1]

    async def get_transaction_block(self, digest):
        return self.tx


def _reader(client, **kwargs) -> OrderEventReader:
    return OrderEventReader(client, package_id=PACKAGE_ID, hub_id=HUB_ID, **kwargs)


# ============================================================================
# SNAPSHOT SCAN TESTS
# ============================================================================


@pytest.mark.asyncio
@pytest.mark.ledger
async def test_fetch_orders_keeps_newest_observation_and_sorts():
    page = {
        "data": [
            set_record_event(1, status=2, created_at=NOW_MS - 100, digest="new"),
            set_record_event(2, status=0, created_at=NOW_MS),
            set_record_event(1, status=0, created_at=NOW_MS - 100, digest="old"),
            set_record_event(3, table="profile"),
            set_record_event(4, dapp_key="0x" + "99" * 32 + "::dapp_key::DappKey"),
        ],
        "hasNextPage": False,
    }
    client = FakeEventClient([page])

    orders = await _reader(client).fetch_orders()

    assert [o.order_id for o in orders] == ["2", "1"]
    assert orders[1].status == 2
    assert orders[1].digest == "new"
    assert orders[1].last_updated_ms == NOW_MS - 95
    assert orders[1].user == USER.address
    assert orders[1].evidence_hash == "0xbeef"
    assert client.queries[0][0] == SET_RECORD


@pytest.mark.asyncio
@pytest.mark.ledger
async def test_dapp_key_with_0x_prefix_matches():
    page = {"data": [set_record_event(8, dapp_key="0x" + DAPP_KEY.upper())], "hasNextPage": False}

    orders = await _reader(FakeEventClient([page])).fetch_orders()

    assert [o.order_id for o in orders] == ["8"]


@pytest.mark.asyncio
@pytest.mark.ledger
async def test_fetch_orders_follows_cursor():
    cursor = {"txDigest": "c1", "eventSeq": "0"}
    pages = [
        {"data": [set_record_event(1)], "hasNextPage": True, "nextCursor": cursor},
        {"data": [set_record_event(2)], "hasNextPage": False},
    ]
    client = FakeEventClient(pages)

    orders = await _reader(client).fetch_orders()

    assert {o.order_id for o in orders} == {"1", "2"}
    assert client.queries[0][1] is None
    assert client.queries[1][1] == cursor


@pytest.mark.asyncio
@pytest.mark.ledger
async def test_fetch_orders_stops_at_event_limit():
    pages = [
        {"data": [set_record_event(i) for i in range(50)], "hasNextPage": True, "nextCursor": {"c": 1}},
        {"data": [set_record_event(i) for i in range(50, 60)], "hasNextPage": True, "nextCursor": {"c": 2}},
        {"data": [set_record_event(99)], "hasNextPage": False},
    ]
    client = FakeEventClient(pages)

    orders = await _reader(client, event_limit=60).fetch_orders()

    assert len(orders) == 60
    assert [limit for _, _, limit in client.queries] == [50, 10]


@pytest.mark.asyncio
@pytest.mark.ledger
async def test_missing_deployment_is_configuration_error():
    reader = OrderEventReader(FakeEventClient(), package_id="", hub_id=HUB_ID)

    with pytest.raises(ConfigurationError, match="package_id"):
        await reader.fetch_orders()


@pytest.mark.asyncio
@pytest.mark.ledger
async def test_unreadable_hub_is_configuration_error():
    reader = _reader(FakeEventClient(hub_type=None))

    with pytest.raises(ConfigurationError, match="hub object"):
        await reader.fetch_orders()


@pytest.mark.unit
@pytest.mark.ledger
def test_decode_order_tuple_rejects_bad_shapes():
    assert decode_order_tuple([_u64(1)], _value_tuple(status=0, created_at=1)[:10]) is None
    assert decode_order_tuple([], _value_tuple(status=0, created_at=1)) is None

    broken = _value_tuple(status=0, created_at=1)
    broken[0] = [1, 2, 3]
    assert decode_order_tuple([_u64(1)], broken) is None


# ============================================================================
# DIGEST REBUILD TESTS
# ============================================================================


def _lifecycle(name: str, **fields) -> dict:
    return {"type": f"{PACKAGE_ID}::events::{name}", "parsedJson": fields}


@pytest.mark.asyncio
@pytest.mark.ledger
async def test_rebuild_paid_order_from_digest():
    tx = {
        "timestampMs": str(NOW_MS),
        "events": [
            _lifecycle(
                "OrderCreated",
                order_id="7",
                user=USER.address,
                companion=COMPANION.address,
                rule_set_id="1",
                service_fee="1000",
                deposit="500",
            ),
            _lifecycle("OrderPaid", order_id="7", service_fee="1000"),
            {"type": "0x2::coin::Minted", "parsedJson": {"order_id": "999"}},
        ],
    }
    reader = _reader(FakeEventClient(tx=tx))

    record = await reader.find_order_by_digest("TxDigest")

    assert record.order_id == "7"
    assert record.status == ChainOrderStatus.PAID
    assert record.vault_service == 1000
    assert record.vault_deposit == 0
    assert record.deposit == 500
    assert record.rule_set_id == 1
    assert record.created_at == NOW_MS
    assert record.digest == "TxDigest"


@pytest.mark.asyncio
@pytest.mark.ledger
async def test_rebuild_completed_order_keeps_locked_deposit():
    tx = {
        "timestampMs": str(NOW_MS),
        "events": [
            _lifecycle("DepositLocked", order_id="7", companion=COMPANION.address, service_fee="1000", deposit="500"),
            _lifecycle("OrderCompleted", order_id="7", user=USER.address, finish_at="11", dispute_deadline="22"),
        ],
    }

    record = await _reader(FakeEventClient(tx=tx)).find_order_by_digest("TxDigest")

    assert record.status == ChainOrderStatus.COMPLETED
    assert record.finish_at == 11
    assert record.dispute_deadline == 22
    assert record.vault_service == 1000
    assert record.vault_deposit == 500


@pytest.mark.asyncio
@pytest.mark.ledger
async def test_rebuild_resolved_order_empties_vaults():
    tx = {
        "timestampMs": str(NOW_MS),
        "events": [_lifecycle("OrderResolved", order_id="7", resolved_by=OUTSIDER.address)],
    }

    record = await _reader(FakeEventClient(tx=tx)).find_order_by_digest(
        "TxDigest", fallback={"user": USER.address, "serviceFee": 1000}
    )

    assert record.status == ChainOrderStatus.RESOLVED
    assert record.dispute_status == 2
    assert record.resolved_by == OUTSIDER.address
    assert record.resolved_at == NOW_MS
    assert record.vault_service == 0
    assert record.service_fee == 1000
    assert record.user == USER.address


@pytest.mark.asyncio
@pytest.mark.ledger
async def test_rebuild_uses_fallback_order_id():
    tx = {"timestampMs": "5", "events": [_lifecycle("OrderClaimed", companion=COMPANION.address)]}

    record = await _reader(FakeEventClient(tx=tx)).find_order_by_digest(
        "TxDigest", fallback={"orderId": "9", "user": USER.address, "createdAt": 123}
    )

    assert record.order_id == "9"
    assert record.user == USER.address
    assert record.companion == COMPANION.address
    assert record.created_at == 123


@pytest.mark.asyncio
@pytest.mark.ledger
async def test_rebuild_without_lifecycle_events_returns_none():
    tx = {"events": [{"type": "0x2::coin::Minted", "parsedJson": {}}]}

    assert await _reader(FakeEventClient(tx=tx)).find_order_by_digest("TxDigest") is None
    assert await _reader(FakeEventClient(tx=tx)).find_order_by_digest("") is None
