"""
Unit tests for CLI module (ledger_bridge/cli.py).

Tests cover:
- Command parsing and help
- init-db command
- reconcile exit codes
- sync-order success and failure output
- sync-all output and lock refusal
"""

import argparse
import asyncio
import json
from unittest.mock import patch

import pytest

from ledger_bridge import cli
from ledger_bridge.db import orders_repo
from ledger_bridge.db.errors import DatabaseOperationContext, DatabaseWriteError
from ledger_bridge.errors import LedgerRPCError
from ledger_bridge.sync.bulk import LOCK_KEY
from tests.helpers import make_record


@pytest.fixture(autouse=True)
def keep_log_handlers():
    """Stop main() from replacing pytest's log capture handlers."""
    with patch("ledger_bridge.config.configure_logging") as mock_configure:
        yield mock_configure


@pytest.fixture
def cli_services(services):
    """Route build_services() in the CLI to the fake-backed services."""
    with patch("ledger_bridge.services.build_services", return_value=services) as mock_build:
        yield mock_build


# ============================================================================
# PARSING TESTS
# ============================================================================


@pytest.mark.unit
def test_main_without_command_prints_help(capsys, keep_log_handlers):
    assert cli.main([]) == 0

    assert "ledger-bridge" in capsys.readouterr().out
    keep_log_handlers.assert_not_called()


@pytest.mark.unit
def test_main_dispatches_and_configures_logging(keep_log_handlers):
    with patch("ledger_bridge.db.schema.init_database") as mock_init:
        assert cli.main(["init-db"]) == 0

    mock_init.assert_called_once()
    keep_log_handlers.assert_called_once()


@pytest.mark.unit
def test_sync_order_arguments_are_parsed():
    with patch("ledger_bridge.cli.cmd_sync_order", return_value=0) as mock_cmd:
        assert cli.main(["sync-order", "42", "--force", "--max-wait-ms", "500", "--digest", "TxA"]) == 0

    args = mock_cmd.call_args.args[0]
    assert (args.order_id, args.force, args.max_wait_ms, args.digest) == ("42", True, 500, "TxA")


# ============================================================================
# INIT-DB COMMAND TESTS
# ============================================================================


@pytest.mark.unit
def test_cmd_init_db_creates_schema(temp_db_path, capsys):
    assert cli.cmd_init_db(argparse.Namespace()) == 0

    assert "initialized" in capsys.readouterr().out
    assert orders_repo.get_order("1") is None


@pytest.mark.unit
def test_cmd_init_db_failure():
    with patch("ledger_bridge.db.schema.init_database", side_effect=OSError("read-only")):
        assert cli.cmd_init_db(argparse.Namespace()) == 1


# ============================================================================
# RECONCILE COMMAND TESTS
# ============================================================================


@pytest.mark.unit
def test_reconcile_healthy_exits_zero(test_db, cli_services, capsys):
    code = cli.cmd_reconcile(argparse.Namespace(refresh=True, detailed=False))

    assert code == 0
    assert json.loads(capsys.readouterr().out)["summary"]["health"]["status"] == "healthy"


@pytest.mark.unit
def test_reconcile_with_discrepancies_exits_two(test_db, cli_services, fake_reader, capsys):
    fake_reader.orders.append(make_record("1"))

    code = cli.cmd_reconcile(argparse.Namespace(refresh=False, detailed=True))

    assert code == 2
    assert json.loads(capsys.readouterr().out)["details"]["missingInLocal"] == ["1"]


@pytest.mark.unit
def test_reconcile_ledger_failure_exits_one(test_db, cli_services, fake_reader, capsys):
    fake_reader.fetch_error = LedgerRPCError("node down")

    assert cli.cmd_reconcile(argparse.Namespace(refresh=True, detailed=False)) == 1
    assert "ledger_unavailable" in capsys.readouterr().err


# ============================================================================
# SYNC-ORDER COMMAND TESTS
# ============================================================================


def _sync_args(order_id: str, **overrides) -> argparse.Namespace:
    values = {"order_id": order_id, "force": False, "max_wait_ms": 0, "digest": None}
    values.update(overrides)
    return argparse.Namespace(**values)


@pytest.mark.unit
def test_sync_order_mirrors_and_prints(test_db, cli_services, fake_reader, capsys):
    fake_reader.orders.append(make_record("7", status=5))

    assert cli.cmd_sync_order(_sync_args("7")) == 0

    output = json.loads(capsys.readouterr().out)
    assert output["syncedFrom"] == "cache"
    assert output["order"]["stage"] == "completed"
    assert orders_repo.get_order("7")["chain_status"] == 5


@pytest.mark.unit
def test_sync_order_not_found_prints_diagnostics(test_db, cli_services, capsys):
    assert cli.cmd_sync_order(_sync_args("404")) == 1

    captured = capsys.readouterr()
    assert "order_not_found_on_ledger" in captured.err
    assert json.loads(captured.out)["orderId"] == "404"


@pytest.mark.unit
def test_sync_order_database_failure(test_db, cli_services, fake_reader, capsys):
    fake_reader.orders.append(make_record("7"))
    failure = DatabaseWriteError(context=DatabaseOperationContext("orders.apply_chain_state"))

    with patch("ledger_bridge.sync.mirror.mirror_chain_order", side_effect=failure):
        assert cli.cmd_sync_order(_sync_args("7")) == 1

    assert "Error writing local order" in capsys.readouterr().err


# ============================================================================
# SYNC-ALL COMMAND TESTS
# ============================================================================


@pytest.mark.unit
def test_sync_all_dispatches():
    with patch("ledger_bridge.cli.cmd_sync_all", return_value=0) as mock_cmd:
        assert cli.main(["sync-all"]) == 0

    mock_cmd.assert_called_once()


@pytest.mark.unit
def test_sync_all_mirrors_and_prints(test_db, cli_services, fake_reader, capsys):
    fake_reader.orders.extend([make_record("1", status=1), make_record("2", status=5)])

    assert cli.cmd_sync_all(argparse.Namespace()) == 0

    output = json.loads(capsys.readouterr().out)
    assert (output["total"], output["created"], output["updated"]) == (2, 2, 0)
    assert orders_repo.get_order("2")["stage"] == "completed"


@pytest.mark.unit
def test_sync_all_refuses_while_locked(test_db, cli_services, services, fake_reader, capsys):
    fake_reader.orders.append(make_record("1"))
    asyncio.run(services.store.consume_once(LOCK_KEY, 60_000))

    assert cli.cmd_sync_all(argparse.Namespace()) == 1

    assert "sync_locked" in capsys.readouterr().err
    assert orders_repo.get_order("1") is None


@pytest.mark.unit
def test_sync_all_ledger_failure_exits_one(test_db, cli_services, fake_reader, capsys):
    fake_reader.fetch_error = LedgerRPCError("node down")

    assert cli.cmd_sync_all(argparse.Namespace()) == 1
    assert "ledger_unavailable" in capsys.readouterr().err
