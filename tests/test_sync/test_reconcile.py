"""
Tests for reconciliation (ledger_bridge/sync/reconcile.py).

Tests cover:
- Classification into presence and status buckets
- Action-to-order mapping
- Report summary, health and detail truncation
"""

import pytest

from ledger_bridge.sync.cache import LedgerQueryCache
from ledger_bridge.sync.reconcile import DETAIL_LIMIT, ReconciliationEngine, classify
from tests.helpers import FakeClock, FakeOrderReader, make_record


def _local(order_id: str, *, status: int | None, source: str = "chain") -> dict:
    return {"id": order_id, "source": source, "chain_status": status, "meta": {}}


# ============================================================================
# CLASSIFICATION TESTS
# ============================================================================


@pytest.mark.unit
@pytest.mark.sync
def test_classify_sorts_each_disagreement_once():
    ledger = [make_record("1", status=1), make_record("2", status=2), make_record("3", status=3)]
    local = [
        _local("2", status=2),
        _local("3", status=1),
        _local("4", status=0),
        _local("5", status=1, source="app"),
    ]

    result = classify(ledger, local)

    assert result.missing_in_local == ["1"]
    assert result.missing_in_ledger == ["4"]
    assert result.status_mismatch == [{"orderId": "3", "chainStatus": 3, "localStatus": 1}]
    assert [item["orderId"] for item in result.needs_sync] == ["1", "3"]
    assert result.healthy is False


@pytest.mark.unit
@pytest.mark.sync
def test_classify_reads_status_from_meta_when_column_missing():
    local = [{"id": "1", "source": "chain", "chain_status": None, "meta": {"chain": {"status": 2}}}]

    result = classify([make_record("1", status=2)], local)

    assert result.healthy is True


@pytest.mark.unit
@pytest.mark.sync
def test_order_ids_for_actions():
    result = classify(
        [make_record("1"), make_record("2", status=3)],
        [_local("2", status=1)],
    )

    assert result.order_ids_for("sync_missing") == ["1"]
    assert result.order_ids_for("fix_status") == ["2"]
    assert result.order_ids_for("sync_all") == ["1", "2"]
    with pytest.raises(ValueError):
        result.order_ids_for("delete_everything")


@pytest.mark.unit
@pytest.mark.sync
def test_sync_all_orders_ids_numerically_across_buckets():
    result = classify(
        [make_record("10"), make_record("9", status=3), make_record("2")],
        [_local("9", status=1)],
    )

    assert result.order_ids_for("sync_missing") == ["2", "10"]
    assert result.order_ids_for("sync_all") == ["2", "9", "10"]


# ============================================================================
# REPORT TESTS
# ============================================================================


def _engine(ledger, local) -> ReconciliationEngine:
    cache = LedgerQueryCache(FakeOrderReader(ledger).fetch_orders, clock=FakeClock())
    return ReconciliationEngine(cache, local_orders=lambda: list(local))


@pytest.mark.asyncio
@pytest.mark.sync
async def test_healthy_report():
    engine = _engine([make_record("1", status=2)], [_local("1", status=2)])

    report = await engine.reconcile()

    summary = report["summary"]
    assert summary["health"] == {"status": "healthy", "issues": []}
    assert summary["ledgerOrders"] == {"total": 1, "byStatus": {"2": 1}}
    assert summary["localOrders"] == {"total": 1, "bySource": {"chain": 1}}
    assert summary["cache"]["stale"] is False
    assert "details" not in report


@pytest.mark.asyncio
@pytest.mark.sync
async def test_discrepancies_need_attention():
    engine = _engine([make_record("1", status=2)], [_local("1", status=1), _local("9", status=0)])

    report = await engine.reconcile(detailed=True)

    summary = report["summary"]
    assert summary["health"]["status"] == "needs_attention"
    assert len(summary["health"]["issues"]) == 2
    assert summary["discrepancies"] == {
        "missingInLocal": 0,
        "missingInLedger": 1,
        "statusMismatch": 1,
        "needsSync": 1,
    }
    assert report["details"]["missingInLedger"] == ["9"]


@pytest.mark.asyncio
@pytest.mark.sync
async def test_details_are_truncated():
    ledger = [make_record(str(i)) for i in range(DETAIL_LIMIT + 10)]
    engine = _engine(ledger, [])

    report = await engine.reconcile(detailed=True)

    assert report["summary"]["discrepancies"]["missingInLocal"] == DETAIL_LIMIT + 10
    assert len(report["details"]["missingInLocal"]) == DETAIL_LIMIT
    assert len(report["details"]["needsSync"]) == DETAIL_LIMIT


@pytest.mark.asyncio
@pytest.mark.sync
async def test_reconcile_never_writes_local_orders():
    local = [_local("1", status=0)]
    engine = _engine([make_record("1", status=3)], local)

    await engine.reconcile(force_refresh=True)

    assert local == [_local("1", status=0)]
