"""SQLite connection primitives for the local order store."""

from __future__ import annotations

import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path


def get_db_path() -> Path:
    """Resolve the absolute SQLite database path from runtime configuration."""
    from ledger_bridge.config import config

    return config.database.absolute_path


def configure_connection(connection: sqlite3.Connection) -> sqlite3.Connection:
    """Apply per-connection pragmas and return rows addressable by name.

    ``busy_timeout`` absorbs short lock contention between the sync path and
    admin edits.
    """
    connection.row_factory = sqlite3.Row
    connection.execute("PRAGMA foreign_keys = ON")
    connection.execute("PRAGMA busy_timeout = 5000")
    return connection


def get_connection() -> sqlite3.Connection:
    """Create and configure a new SQLite connection."""
    path = get_db_path()
    path.parent.mkdir(parents=True, exist_ok=True)
    connection = sqlite3.connect(str(path))
    return configure_connection(connection)


@contextmanager
def connection_scope(*, write: bool = False) -> Iterator[sqlite3.Connection]:
    """Yield a configured connection and always close it.

    Args:
        write: When True, commit on success and roll back on exceptions.
    """
    connection = get_connection()
    try:
        yield connection
        if write:
            connection.commit()
    except Exception:
        if write:
            try:
                connection.rollback()
            except sqlite3.Error:
                # Keep the original exception.
                pass
        raise
    finally:
        connection.close()
