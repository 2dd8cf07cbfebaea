"""
Shared pytest fixtures for the ledger bridge test suite.

This module provides fixtures that are automatically available to all test files:
- Temporary SQLite order stores
- Audit trail redirection to a temporary directory
- Admin tokens for every role
- Bridge services wired with in-memory fakes, and a FastAPI TestClient

No fixture talks to a real ledger node or Redis server.
"""

import shutil
import tempfile
from collections.abc import Generator
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from ledger_bridge.auth import SignatureAuthenticator
from ledger_bridge.config import config, use_test_database
from ledger_bridge.db import orders_repo
from ledger_bridge.db.schema import init_database
from ledger_bridge.services import BridgeServices
from ledger_bridge.sponsor import GasSponsorshipExecutor
from ledger_bridge.store import MemoryKeyValueStore, NonceStore
from ledger_bridge.sync.bulk import BulkOrderSync
from ledger_bridge.sync.cache import LedgerQueryCache
from ledger_bridge.sync.reconcile import ReconciliationEngine
from ledger_bridge.sync.resolver import LedgerOrderResolver
from tests.constants import ADMIN_TOKENS, PACKAGE_ID, SPONSOR_SEED
from tests.helpers import FakeLedgerClient, FakeOrderReader

# ============================================================================
# DATABASE FIXTURES
# ============================================================================


@pytest.fixture(scope="function")
def temp_db_path() -> Generator[Path, None, None]:
    """
    Create a temporary database file for testing.

    Each test function gets its own database through the config system's
    use_test_database context manager.

    Yields:
        Path to temporary database file
    """
    temp_dir = tempfile.mkdtemp()
    temp_db = Path(temp_dir) / "test_bridge.db"

    with use_test_database(temp_db):
        yield temp_db

    shutil.rmtree(temp_dir, ignore_errors=True)


@pytest.fixture(scope="function")
def test_db(temp_db_path: Path) -> Generator[None, None, None]:
    """Initialize a test database with schema but no orders."""
    init_database()
    yield


# ============================================================================
# CONFIGURATION FIXTURES
# ============================================================================


@pytest.fixture(autouse=True)
def audit_dir(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Redirect every audit stream to ``tmp_path / "audit"``."""
    root = tmp_path / "audit"
    monkeypatch.setattr(config.audit, "path", str(root))
    monkeypatch.setattr(config.audit, "enabled", True)
    return root


@pytest.fixture(autouse=True)
def admin_tokens(monkeypatch: pytest.MonkeyPatch) -> dict[str, str]:
    """Install one admin token per role."""
    monkeypatch.setattr(
        config.admin, "tokens", [f"{role}:{token}" for role, token in ADMIN_TOKENS.items()]
    )
    return ADMIN_TOKENS


def admin_headers(role: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {ADMIN_TOKENS[role]}"}


@pytest.fixture
def auth_headers():
    """Factory for ``Authorization`` headers by role name."""
    return admin_headers


# ============================================================================
# SERVICE FIXTURES
# ============================================================================


async def _no_sleep(_seconds: float) -> None:
    return None


@pytest.fixture
def fake_reader() -> FakeOrderReader:
    """Order reader with an empty ledger; tests append to ``orders``."""
    return FakeOrderReader()


@pytest.fixture
def fake_ledger() -> FakeLedgerClient:
    """Ledger client for the sponsorship path."""
    return FakeLedgerClient()


@pytest.fixture
def services(fake_reader: FakeOrderReader, fake_ledger: FakeLedgerClient) -> BridgeServices:
    """
    Bridge services wired with fakes.

    Uses the in-process key/value store, a resolver that never actually
    sleeps, and a sponsor keyed from ``SPONSOR_SEED``.
    """
    store = MemoryKeyValueStore()
    authenticator = SignatureAuthenticator(NonceStore(store, ttl_ms=600_000))
    cache = LedgerQueryCache(fake_reader.fetch_orders)
    resolver = LedgerOrderResolver(
        cache,
        fake_reader,
        local_lookup=orders_repo.get_order,
        sleep=_no_sleep,
    )
    reconciler = ReconciliationEngine(cache, local_orders=orders_repo.list_chain_linked_orders)
    bulk_sync = BulkOrderSync(cache, store, lock_ttl_ms=60_000)
    sponsor = GasSponsorshipExecutor(
        fake_ledger,
        package_id=PACKAGE_ID,
        private_key=SPONSOR_SEED.hex(),
    )
    return BridgeServices(
        store=store,
        authenticator=authenticator,
        reader=fake_reader,
        cache=cache,
        resolver=resolver,
        reconciler=reconciler,
        sponsor=sponsor,
        bulk_sync=bulk_sync,
    )


# ============================================================================
# FASTAPI TEST CLIENT FIXTURES
# ============================================================================


@pytest.fixture(scope="function")
def test_client(test_db, services: BridgeServices) -> TestClient:
    """
    Create a FastAPI TestClient for API endpoint testing.

    The app is built from the ``services`` fixture, so tests can seed the
    fake ledger through ``fake_reader`` and inspect ``fake_ledger``.

    Example:
        def test_cache_status(test_client, auth_headers):
            response = test_client.get("/cache", headers=auth_headers("viewer"))
            assert response.status_code == 200
    """
    from ledger_bridge.api.server import create_app

    app = create_app(services=services)
    return TestClient(app)
