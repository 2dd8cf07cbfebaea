"""Signature-based request authentication."""

from ledger_bridge.auth.signature import (
    AUTH_MESSAGE_VERSION,
    AuthenticatedRequest,
    SignatureAuthenticator,
    build_auth_message,
    hash_body,
    require_auth_headers,
)

__all__ = [
    "AUTH_MESSAGE_VERSION",
    "AuthenticatedRequest",
    "SignatureAuthenticator",
    "build_auth_message",
    "hash_body",
    "require_auth_headers",
]
