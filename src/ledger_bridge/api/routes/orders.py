"""Order endpoints: ledger sync and guarded admin edits."""

import json
import logging

from fastapi import APIRouter, Depends, Query, Request
from pydantic import ValidationError

from ledger_bridge.api.auth import AdminIdentity, get_admin, require_permission
from ledger_bridge.api.models import (
    BulkSyncResponse,
    ChainSyncRequest,
    ChainSyncResponse,
    OrderPatchRequest,
    OrderResponse,
)
from ledger_bridge.api.permissions import Permission, has_permission
from ledger_bridge.audit import record_audit_event
from ledger_bridge.chain.crypto import normalize_address
from ledger_bridge.db import orders_repo
from ledger_bridge.errors import AuthError, BridgeError
from ledger_bridge.services import BridgeServices
from ledger_bridge.sync.mirror import mirror_chain_order

logger = logging.getLogger(__name__)


def _parse_body(raw: bytes) -> ChainSyncRequest:
    if not raw.strip():
        return ChainSyncRequest()
    try:
        return ChainSyncRequest.model_validate(json.loads(raw))
    except (ValueError, ValidationError) as exc:
        raise BridgeError("Invalid JSON body", code="invalid_json", status_code=400) from exc


def router(services: BridgeServices) -> APIRouter:
    """Build the orders router."""
    api = APIRouter()

    @api.post("/orders/{order_id}/chain-sync", response_model=ChainSyncResponse)
    async def chain_sync(
        order_id: str,
        request: Request,
        force: bool = False,
        max_wait_ms: int | None = Query(None, alias="maxWaitMs", ge=0),
        digest: str | None = None,
    ):
        """
        Mirror an order's ledger state into the local store.

        Authenticated by an admin token with ``sync_orders``, or by a user
        signature over intent ``orders:chain-sync:<order_id>`` bound to the
        raw body. Signed callers must be the order's user or companion.

        Not found after every strategy returns 404 with the resolver's
        diagnostic payload.
        """
        raw = await request.body()
        body = _parse_body(raw)

        admin = get_admin(request)
        signer: str | None = None
        if admin is not None:
            if not has_permission(admin.role.value, Permission.SYNC_ORDERS):
                raise AuthError(
                    f"Insufficient permissions. Required: {Permission.SYNC_ORDERS.value}",
                    code="forbidden",
                    status_code=403,
                )
        else:
            if not body.userAddress:
                raise AuthError("userAddress is required", code="auth_required")
            authenticated = await services.authenticator.authenticate(
                request.headers,
                intent=f"orders:chain-sync:{order_id}",
                address=body.userAddress,
                body=raw,
            )
            signer = authenticated.address

        resolved = await services.resolver.find(
            order_id,
            force=force,
            max_wait_ms=max_wait_ms,
            digest=(digest or "").strip() or (body.digest or "").strip() or None,
        )
        record = resolved.record

        if signer is not None:
            participants = {normalize_address(record.user), normalize_address(record.companion)}
            if signer not in participants:
                raise AuthError(
                    "Only the order's participants may sync it",
                    code="not_order_participant",
                    status_code=403,
                )

        stored = mirror_chain_order(record)
        record_audit_event(
            "orders",
            "order.chain_synced",
            {
                "orderId": order_id,
                "chainStatus": record.status,
                "source": resolved.source,
                "retries": resolved.retries,
                "digest": record.digest,
            },
            meta={"actor": admin.label if admin else signer},
        )
        return {
            "success": True,
            "order": stored,
            "syncedFrom": resolved.source,
            "chainStatus": record.status,
            "retries": resolved.retries,
            "waitedMs": resolved.waited_ms,
        }

    @api.post("/admin/orders/chain-sync", response_model=BulkSyncResponse)
    async def sync_all_orders(
        admin: AdminIdentity = Depends(require_permission(Permission.SYNC_ALL_ORDERS)),
    ):
        """Mirror every ledger order locally. 429 while another run holds the lock."""
        return await services.bulk_sync.run(actor=admin.label)

    @api.patch("/admin/orders/{order_id}", response_model=OrderResponse)
    async def patch_order(
        order_id: str,
        patch: OrderPatchRequest,
        admin: AdminIdentity = Depends(require_permission(Permission.EDIT_ORDERS)),
    ):
        """Edit a local order. Ledger-managed lifecycle fields are refused with 409."""
        changes = patch.model_dump(exclude_unset=True)
        try:
            order = orders_repo.update_order_manual(order_id, changes)
        except ValueError as exc:
            raise BridgeError(str(exc), code="invalid_request", status_code=400) from exc
        if order is None:
            raise BridgeError(f"Order {order_id} not found", code="order_not_found", status_code=404)
        logger.info("Order %s edited by %s: %s", order_id, admin.label, sorted(changes))
        return {"order": order}

    return api
