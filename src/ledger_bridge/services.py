"""Construction of the bridge's long-lived components.

:func:`build_services` wires one instance of each component from a
:class:`~ledger_bridge.config.BridgeConfig`. The API server and the CLI both
go through it, and tests build their own :class:`BridgeServices` with fakes.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from ledger_bridge.auth import SignatureAuthenticator
from ledger_bridge.chain.events import OrderEventReader
from ledger_bridge.chain.rpc import LedgerClient
from ledger_bridge.config import BridgeConfig
from ledger_bridge.db import orders_repo
from ledger_bridge.sponsor import GasSponsorshipExecutor
from ledger_bridge.store import KeyValueStore, NonceStore, build_store
from ledger_bridge.sync.bulk import BulkOrderSync
from ledger_bridge.sync.cache import LedgerQueryCache
from ledger_bridge.sync.reconcile import ReconciliationEngine
from ledger_bridge.sync.resolver import LedgerOrderResolver

logger = logging.getLogger(__name__)


@dataclass
class BridgeServices:
    store: KeyValueStore
    authenticator: SignatureAuthenticator
    reader: OrderEventReader
    cache: LedgerQueryCache
    resolver: LedgerOrderResolver
    reconciler: ReconciliationEngine
    sponsor: GasSponsorshipExecutor
    bulk_sync: BulkOrderSync

    async def close(self) -> None:
        await self.store.close()


def build_services(cfg: BridgeConfig) -> BridgeServices:
    """Create every component from configuration. Performs no I/O."""
    store = build_store(cfg.store.redis_url, key_prefix=cfg.store.key_prefix)
    nonces = NonceStore(store, ttl_ms=cfg.auth.nonce_ttl_ms)
    authenticator = SignatureAuthenticator(nonces, max_skew_ms=cfg.auth.max_skew_ms)

    client = LedgerClient(
        cfg.ledger.resolved_rpc_url,
        timeout=cfg.ledger.timeout_seconds,
        attempts=cfg.ledger.rpc_attempts,
    )
    reader = OrderEventReader(
        client,
        package_id=cfg.ledger.package_id,
        hub_id=cfg.ledger.hub_id,
        event_limit=cfg.ledger.event_limit,
    )
    cache = LedgerQueryCache(
        reader.fetch_orders,
        ttl_ms=cfg.cache.ttl_ms,
        max_age_ms=cfg.cache.max_age_ms,
    )
    resolver = LedgerOrderResolver(
        cache,
        reader,
        local_lookup=orders_repo.get_order,
        backoff_ms=cfg.resolver.backoff_ms,
        default_max_wait_ms=cfg.resolver.default_max_wait_ms,
        max_wait_ceiling_ms=cfg.resolver.max_wait_ceiling_ms,
        network=cfg.ledger.network,
    )
    reconciler = ReconciliationEngine(cache, local_orders=orders_repo.list_chain_linked_orders)
    bulk_sync = BulkOrderSync(cache, store, lock_ttl_ms=cfg.sync.lock_ttl_ms)
    sponsor = GasSponsorshipExecutor(
        client,
        package_id=cfg.ledger.package_id,
        private_key=cfg.sponsor.private_key,
        gas_budget=cfg.sponsor.gas_budget,
    )
    logger.info(
        "Bridge services ready (network=%s, rpc=%s)",
        cfg.ledger.network,
        cfg.ledger.resolved_rpc_url,
    )
    return BridgeServices(
        store=store,
        authenticator=authenticator,
        reader=reader,
        cache=cache,
        resolver=resolver,
        reconciler=reconciler,
        sponsor=sponsor,
        bulk_sync=bulk_sync,
    )
