"""Fee sponsorship endpoint.

``POST /chain/sponsor`` runs one phase per call. Both phases require a user
signature bound to the raw body: ``prepare`` signs as ``sender``, ``execute``
as the sender embedded in ``txBytes``.
"""

import json

from fastapi import APIRouter, Request
from pydantic import ValidationError

from ledger_bridge.api.models import SponsorExecuteResponse, SponsorPrepareResponse, SponsorRequest
from ledger_bridge.auth import require_auth_headers
from ledger_bridge.errors import BridgeError
from ledger_bridge.services import BridgeServices

PREPARE_INTENT = "chain:sponsor:prepare"
EXECUTE_INTENT = "chain:sponsor:execute"


def router(services: BridgeServices) -> APIRouter:
    """Build the sponsorship router."""
    api = APIRouter()
    executor = services.sponsor

    @api.post("/chain/sponsor", response_model=SponsorPrepareResponse | SponsorExecuteResponse)
    async def sponsor(request: Request):
        raw = await request.body()
        try:
            payload = SponsorRequest.model_validate(json.loads(raw or b"null"))
        except (ValueError, ValidationError) as exc:
            raise BridgeError("Invalid request", code="invalid_request", status_code=400) from exc

        if payload.step == "prepare":
            if not payload.sender or not payload.kindBytes:
                raise BridgeError(
                    "sender and kindBytes are required", code="invalid_request", status_code=400
                )
            await services.authenticator.authenticate(
                request.headers, intent=PREPARE_INTENT, address=payload.sender, body=raw
            )
            return await executor.build(payload.sender, payload.kindBytes)

        if not payload.txBytes or not payload.userSignature:
            raise BridgeError(
                "txBytes and userSignature are required", code="invalid_request", status_code=400
            )
        # The signing address lives inside txBytes; refuse unsigned calls before decoding it.
        require_auth_headers(request.headers)
        await services.authenticator.authenticate(
            request.headers,
            intent=EXECUTE_INTENT,
            address=executor.decode_transaction(payload.txBytes)[1].sender,
            body=raw,
        )
        return await executor.execute(payload.txBytes, payload.userSignature)

    return api
