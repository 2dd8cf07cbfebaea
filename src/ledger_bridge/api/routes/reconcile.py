"""Reconciliation report and action endpoints."""

import logging

from fastapi import APIRouter, Depends

from ledger_bridge.api.auth import AdminIdentity, require_permission
from ledger_bridge.api.models import ReconcileActionRequest, ReconcileActionResponse
from ledger_bridge.api.permissions import Permission
from ledger_bridge.audit import record_audit_event
from ledger_bridge.services import BridgeServices
from ledger_bridge.sync.reconcile import DETAIL_LIMIT

logger = logging.getLogger(__name__)


def router(services: BridgeServices) -> APIRouter:
    """Build the reconcile router."""
    api = APIRouter()
    engine = services.reconciler

    @api.get("/reconcile")
    async def get_report(
        refresh: bool = False,
        detailed: bool = False,
        _admin: AdminIdentity = Depends(require_permission(Permission.VIEW_RECONCILE)),
    ):
        """Diff the ledger snapshot against ledger-linked local orders."""
        return await engine.reconcile(force_refresh=refresh, detailed=detailed)

    @api.post("/reconcile", response_model=ReconcileActionResponse)
    async def request_action(
        request: ReconcileActionRequest,
        admin: AdminIdentity = Depends(require_permission(Permission.RUN_RECONCILE_ACTIONS)),
    ):
        """
        Queue the orders an action would touch for operator review.

        Nothing is written to local orders. Each queued order is fixed by
        running chain-sync on it.
        """
        result, _context = await engine.discrepancies(force_refresh=True)
        order_ids = result.order_ids_for(request.action)
        record_audit_event(
            "reconcile",
            "reconcile.action_requested",
            {
                "action": request.action,
                "count": len(order_ids),
                "orderIds": order_ids[:DETAIL_LIMIT],
            },
            meta={"role": admin.label},
        )
        logger.info("Reconcile action %s queued %d orders for review", request.action, len(order_ids))
        return {
            "action": request.action,
            "applied": False,
            "queuedForReview": len(order_ids),
            "orderIds": order_ids[:DETAIL_LIMIT],
        }

    return api
