"""Schema creation for the local order store."""

from __future__ import annotations

import logging

from ledger_bridge.db.connection import connection_scope

logger = logging.getLogger(__name__)

ORDERS_TABLE = """
CREATE TABLE IF NOT EXISTS orders (
    id TEXT PRIMARY KEY,
    user_address TEXT,
    companion_address TEXT,
    stage TEXT NOT NULL DEFAULT 'pending'
        CHECK (stage IN ('pending', 'confirmed', 'in_progress', 'completed', 'cancelled')),
    chain_status INTEGER CHECK (chain_status IS NULL OR chain_status BETWEEN 0 AND 6),
    payment_status TEXT NOT NULL DEFAULT 'unpaid',
    source TEXT NOT NULL DEFAULT 'manual' CHECK (source IN ('manual', 'app', 'chain')),
    service_fee REAL NOT NULL DEFAULT 0,
    deposit REAL NOT NULL DEFAULT 0,
    amount REAL NOT NULL DEFAULT 0,
    chain_digest TEXT,
    note TEXT,
    meta_json TEXT NOT NULL DEFAULT '{}',
    created_at INTEGER NOT NULL,
    updated_at INTEGER NOT NULL
)
"""

INDEX_STATEMENTS = (
    "CREATE INDEX IF NOT EXISTS idx_orders_source ON orders(source)",
    "CREATE INDEX IF NOT EXISTS idx_orders_chain_status ON orders(chain_status)",
    "CREATE INDEX IF NOT EXISTS idx_orders_user_address ON orders(user_address)",
)


def init_database() -> None:
    """Create tables and indexes. Safe to run repeatedly."""
    with connection_scope(write=True) as conn:
        conn.execute(ORDERS_TABLE)
        for statement in INDEX_STATEMENTS:
            conn.execute(statement)
    logger.info("Database schema ready")
