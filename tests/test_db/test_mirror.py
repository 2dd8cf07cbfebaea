"""
Tests for mirroring ledger observations into the order store
(ledger_bridge/sync/mirror.py).
"""

import pytest

from ledger_bridge.chain.types import ZERO_ADDRESS
from ledger_bridge.db import orders_repo
from ledger_bridge.sync.mirror import build_chain_patch, mirror_chain_order, to_currency
from tests.helpers import COMPANION, USER, make_record

# ============================================================================
# PATCH BUILDING TESTS
# ============================================================================


@pytest.mark.unit
@pytest.mark.sync
def test_to_currency_scales_hundredths():
    assert to_currency(12_345) == 123.45
    assert to_currency(0) == 0.0


@pytest.mark.unit
@pytest.mark.sync
def test_patch_for_new_order():
    record = make_record("1", status=2, digest="TxNew", created_at=500)

    patch = build_chain_patch(None, record)

    assert patch["stage"] == "in_progress"
    assert patch["chain_status"] == 2
    assert patch["service_fee"] == 100.0
    assert patch["deposit"] == 50.0
    assert patch["amount"] == 150.0
    assert patch["note"] == "ledger sync"
    assert patch["created_at"] == 500
    assert patch["chain_digest"] == "TxNew"
    assert patch["user_address"] == USER.address
    assert patch["companion_address"] == COMPANION.address
    assert patch["meta"]["chain"]["status"] == 2


@pytest.mark.unit
@pytest.mark.sync
def test_patch_for_existing_order_keeps_local_columns():
    existing = {"id": "1", "source": "app", "chain_status": 1, "meta": {"tag": "vip"}}

    patch = build_chain_patch(existing, make_record("1", status=3))

    assert "note" not in patch
    assert "amount" not in patch
    assert "created_at" not in patch
    assert patch["meta"]["tag"] == "vip"
    assert patch["chain_status"] == 3


@pytest.mark.unit
@pytest.mark.sync
def test_patch_never_regresses_status():
    existing = {"id": "1", "chain_status": 5, "meta": {"chain": {"status": 5, "ruleSetId": 2}}}

    patch = build_chain_patch(existing, make_record("1", status=2))

    assert patch["chain_status"] == 5
    assert patch["stage"] == "completed"
    assert patch["meta"]["chain"] == {"status": 5, "ruleSetId": 2}


@pytest.mark.unit
@pytest.mark.sync
def test_zero_companion_is_unassigned():
    patch = build_chain_patch(None, make_record("1", companion=ZERO_ADDRESS))

    assert patch["companion_address"] is None


@pytest.mark.unit
@pytest.mark.sync
def test_zero_companion_keeps_locally_assigned_companion():
    existing = {"id": "1", "companion_address": COMPANION.address, "meta": {}}

    patch = build_chain_patch(existing, make_record("1", companion=ZERO_ADDRESS))

    assert "companion_address" not in patch


# ============================================================================
# PERSISTENCE TESTS
# ============================================================================


@pytest.mark.db
@pytest.mark.sync
def test_mirror_creates_chain_order(test_db):
    stored = mirror_chain_order(make_record("42", status=1))

    assert stored["id"] == "42"
    assert stored["source"] == "chain"
    assert stored["stage"] == "confirmed"
    assert orders_repo.get_order("42") == stored


@pytest.mark.db
@pytest.mark.sync
def test_mirror_updates_app_order_in_place(test_db):
    orders_repo.create_order("42", source="app", note="from app")

    stored = mirror_chain_order(make_record("42", status=3))

    assert stored["source"] == "app"
    assert stored["note"] == "from app"
    assert stored["chain_status"] == 3
    assert orders_repo.is_chain_managed(stored)


@pytest.mark.db
@pytest.mark.sync
def test_mirror_twice_with_older_observation(test_db):
    mirror_chain_order(make_record("42", status=5))

    stored = mirror_chain_order(make_record("42", status=1))

    assert stored["chain_status"] == 5
    assert stored["stage"] == "completed"
