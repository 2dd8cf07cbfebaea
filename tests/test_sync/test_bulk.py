"""
Tests for the bulk ledger sync (ledger_bridge/sync/bulk.py).

Tests cover:
- Created/updated accounting against the local store
- The run lock: refusal while held, release after success and failure
- Refusal to mirror a stale fallback snapshot
- The audit event written per run
"""

import asyncio
import json

import pytest

from ledger_bridge.db import orders_repo
from ledger_bridge.errors import LedgerRPCError, SyncLockedError
from ledger_bridge.store import MemoryKeyValueStore
from ledger_bridge.sync.bulk import LOCK_KEY, BulkOrderSync
from ledger_bridge.sync.cache import LedgerQueryCache
from ledger_bridge.sync.mirror import mirror_chain_order
from tests.helpers import FakeClock, FakeOrderReader, make_record


def _bulk(reader: FakeOrderReader, store: MemoryKeyValueStore | None = None) -> BulkOrderSync:
    cache = LedgerQueryCache(reader.fetch_orders, clock=FakeClock())
    return BulkOrderSync(cache, store or MemoryKeyValueStore(), lock_ttl_ms=60_000)


# ============================================================================
# MIRRORING TESTS
# ============================================================================


@pytest.mark.asyncio
@pytest.mark.sync
async def test_run_mirrors_every_order_and_counts(test_db):
    mirror_chain_order(make_record("1", status=0))
    reader = FakeOrderReader([make_record("1", status=2), make_record("2", status=1)])

    result = await _bulk(reader).run(actor="ops")

    assert result["total"] == 2
    assert result["created"] == 1
    assert result["updated"] == 1
    assert result["durationMs"] >= 0
    assert orders_repo.get_order("1")["chain_status"] == 2
    assert orders_repo.get_order("2")["chain_status"] == 1


@pytest.mark.asyncio
@pytest.mark.sync
async def test_run_bypasses_a_fresh_snapshot(test_db):
    reader = FakeOrderReader([make_record("1")])
    bulk = _bulk(reader)
    await bulk.cache.get()

    await bulk.run(actor="ops")

    assert reader.fetch_calls == 2


@pytest.mark.asyncio
@pytest.mark.sync
async def test_run_writes_audit_event(test_db, audit_dir):
    reader = FakeOrderReader([make_record("1")])

    await _bulk(reader).run(actor="cli")

    event = json.loads((audit_dir / "orders.jsonl").read_text().splitlines()[-1])
    assert event["event_type"] == "orders.bulk_synced"
    assert event["data"]["total"] == 1
    assert event["data"]["created"] == 1
    assert event["meta"] == {"actor": "cli"}


@pytest.mark.asyncio
@pytest.mark.sync
async def test_stale_fallback_is_not_mirrored(test_db):
    reader = FakeOrderReader([make_record("1")])
    store = MemoryKeyValueStore()
    bulk = _bulk(reader, store)
    await bulk.cache.get()
    reader.fetch_error = LedgerRPCError("node down")

    with pytest.raises(LedgerRPCError):
        await bulk.run(actor="ops")

    assert orders_repo.get_order("1") is None
    assert await store.get(LOCK_KEY) is None


# ============================================================================
# LOCK TESTS
# ============================================================================


@pytest.mark.asyncio
@pytest.mark.sync
async def test_held_lock_refuses_run_and_is_left_alone(test_db):
    store = MemoryKeyValueStore()
    await store.consume_once(LOCK_KEY, 60_000)
    reader = FakeOrderReader([make_record("1")])

    with pytest.raises(SyncLockedError) as exc_info:
        await _bulk(reader, store).run(actor="ops")

    assert exc_info.value.status_code == 429
    assert exc_info.value.code == "sync_locked"
    assert await store.get(LOCK_KEY) == "1"
    assert reader.fetch_calls == 0
    assert orders_repo.get_order("1") is None


@pytest.mark.asyncio
@pytest.mark.sync
async def test_lock_is_released_after_a_run(test_db):
    store = MemoryKeyValueStore()
    bulk = _bulk(FakeOrderReader([make_record("1")]), store)

    await bulk.run(actor="ops")
    second = await bulk.run(actor="ops")

    assert await store.get(LOCK_KEY) is None
    assert second["updated"] == 1


@pytest.mark.asyncio
@pytest.mark.sync
async def test_overlapping_runs_admit_one(test_db):
    release = asyncio.Event()

    async def slow_fetch():
        await release.wait()
        return [make_record("1")]

    cache = LedgerQueryCache(slow_fetch, clock=FakeClock())
    bulk = BulkOrderSync(cache, MemoryKeyValueStore(), lock_ttl_ms=60_000)

    async def release_soon():
        for _ in range(5):
            await asyncio.sleep(0)
        release.set()

    results = await asyncio.gather(
        bulk.run(actor="a"), bulk.run(actor="b"), release_soon(), return_exceptions=True
    )

    outcomes = results[:2]
    assert sum(isinstance(item, SyncLockedError) for item in outcomes) == 1
    assert sum(isinstance(item, dict) for item in outcomes) == 1
