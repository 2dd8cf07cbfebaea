"""Signed request envelopes.

A client proves control of an account by signing, as a wallet personal
message, the canonical string::

    qy-auth-v2|<intent>|<address>|<timestamp ms>|<nonce>|<body hash>

and sending the pieces in ``x-auth-*`` headers. The body hash is the base64
SHA-256 digest of the exact bytes of the request body, or empty when the
request carries none.

Checks run in a fixed order and stop at the first failure, so every
rejection has exactly one code. The nonce is consumed before the body hash
and signature are checked: a request that fails late still burns its nonce.
"""

from __future__ import annotations

import base64
import hashlib
import hmac
import logging
import math
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass

from ledger_bridge.chain.crypto import (
    SignatureError,
    is_valid_address,
    normalize_address,
    verify_personal_message,
)
from ledger_bridge.errors import AuthError
from ledger_bridge.store.nonce import NonceStore

logger = logging.getLogger(__name__)

AUTH_MESSAGE_VERSION = "qy-auth-v2"

SIGNATURE_HEADER = "x-auth-signature"
TIMESTAMP_HEADER = "x-auth-timestamp"
NONCE_HEADER = "x-auth-nonce"
ADDRESS_HEADER = "x-auth-address"
BODY_HASH_HEADER = "x-auth-body-sha256"


def build_auth_message(
    *,
    intent: str,
    address: str,
    timestamp: int,
    nonce: str,
    body_hash: str = "",
) -> str:
    """Canonical string a client signs for one request."""
    return "|".join(
        [
            AUTH_MESSAGE_VERSION,
            intent,
            address.strip().lower(),
            str(timestamp),
            nonce,
            (body_hash or "").strip(),
        ]
    )


def hash_body(body: bytes) -> str:
    """Base64 SHA-256 digest of a raw request body."""
    return base64.b64encode(hashlib.sha256(body).digest()).decode("ascii")


def _now_ms() -> int:
    return int(time.time() * 1000)


def _header(headers: Mapping[str, str], name: str) -> str:
    return (headers.get(name) or "").strip()


def require_auth_headers(headers: Mapping[str, str]) -> tuple[str, str, str]:
    """Return the signature, timestamp and nonce headers, or raise ``auth_required``.

    Routes that must parse the body to learn the signing address call this
    first, so an unsigned request is refused before any body parsing.
    """
    signature = _header(headers, SIGNATURE_HEADER)
    raw_timestamp = _header(headers, TIMESTAMP_HEADER)
    nonce = _header(headers, NONCE_HEADER)
    if not signature or not raw_timestamp or not nonce:
        raise AuthError("Signature, timestamp and nonce headers are required", code="auth_required")
    return signature, raw_timestamp, nonce


@dataclass(frozen=True)
class AuthenticatedRequest:
    address: str
    intent: str
    timestamp: int
    nonce: str


class SignatureAuthenticator:
    def __init__(
        self,
        nonces: NonceStore,
        *,
        max_skew_ms: int = 300_000,
        clock: Callable[[], int] = _now_ms,
    ) -> None:
        self.nonces = nonces
        self.max_skew_ms = max_skew_ms
        self._clock = clock

    async def authenticate(
        self,
        headers: Mapping[str, str],
        *,
        intent: str,
        address: str,
        body: bytes | None = None,
    ) -> AuthenticatedRequest:
        """Verify the envelope in ``headers`` for ``intent`` by ``address``.

        Pass ``body`` to bind the signature to the raw request bytes; the
        ``x-auth-body-sha256`` header then becomes mandatory.

        Raises:
            AuthError: With one of ``auth_required``, ``invalid_timestamp``,
                ``auth_expired``, ``invalid_address``, ``address_mismatch``,
                ``replay_detected``, ``body_hash_required``,
                ``body_hash_mismatch`` or ``invalid_signature``.
        """
        signature, raw_timestamp, nonce = require_auth_headers(headers)

        timestamp = _parse_timestamp(raw_timestamp)
        if abs(self._clock() - timestamp) > self.max_skew_ms:
            raise AuthError("Signed request timestamp is outside the allowed window", code="auth_expired")

        claimed = (address or "").strip().lower()
        normalized = normalize_address(claimed)
        if not claimed.startswith("0x") or not is_valid_address(normalized):
            raise AuthError("Address is not a valid account address", code="invalid_address", status_code=400)

        header_address = _header(headers, ADDRESS_HEADER)
        if header_address and normalize_address(header_address) != normalized:
            raise AuthError("Signed address does not match the request", code="address_mismatch")

        if not await self.nonces.consume(normalized, nonce):
            raise AuthError("Nonce has already been used", code="replay_detected")

        body_hash = _header(headers, BODY_HASH_HEADER)
        if body is not None:
            if not body_hash:
                raise AuthError("Body hash header is required", code="body_hash_required")
            if not hmac.compare_digest(body_hash.encode(), hash_body(body).encode()):
                raise AuthError("Body hash does not match the request body", code="body_hash_mismatch")

        message = build_auth_message(
            intent=intent,
            address=normalized,
            timestamp=timestamp,
            nonce=nonce,
            body_hash=body_hash,
        )
        try:
            verify_personal_message(message.encode("utf-8"), signature, normalized)
        except SignatureError as exc:
            logger.info("Rejected signature for %s on %s: %s", normalized, intent, exc)
            raise AuthError("Signature verification failed", code="invalid_signature") from exc

        return AuthenticatedRequest(normalized, intent, timestamp, nonce)


def _parse_timestamp(raw: str) -> int:
    try:
        value = float(raw)
    except ValueError:
        value = math.nan
    if not math.isfinite(value):
        raise AuthError("Timestamp is not a number", code="invalid_timestamp", status_code=400)
    return int(value)
