"""Account addresses and Ed25519 signatures in the ledger's format.

An address is ``0x`` followed by the hex BLAKE2b-256 digest of the signature
scheme flag and the public key. Signatures travel as base64 of
``flag || signature || public_key``. Personal messages and transactions are
signed over a BLAKE2b-256 digest of an intent prefix plus the payload.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import re

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives.asymmetric.ed25519 import (
    Ed25519PrivateKey,
    Ed25519PublicKey,
)
from cryptography.hazmat.primitives.serialization import Encoding, PublicFormat

from ledger_bridge.chain.bcs import ADDRESS_LENGTH, Writer

ED25519_FLAG = 0x00
ED25519_SIGNATURE_LENGTH = 64
ED25519_PUBLIC_KEY_LENGTH = 32

# Intent prefixes: (scope, version, app id).
PERSONAL_MESSAGE_INTENT = bytes([3, 0, 0])
TRANSACTION_INTENT = bytes([0, 0, 0])

_HEX_ADDRESS = re.compile(r"^0x[0-9a-f]{64}$")


class SignatureError(ValueError):
    """A serialized signature could not be parsed or did not verify."""


def blake2b256(data: bytes) -> bytes:
    return hashlib.blake2b(data, digest_size=32).digest()


def normalize_address(value: str) -> str:
    """Lowercase, strip ``0x``, left-pad to 64 hex digits, re-add ``0x``."""
    raw = (value or "").strip().lower()
    if raw.startswith("0x"):
        raw = raw[2:]
    return "0x" + raw.rjust(ADDRESS_LENGTH * 2, "0")


def is_valid_address(value: str) -> bool:
    """True for a ``0x``-prefixed, 64-hex-digit address (case-insensitive)."""
    if not isinstance(value, str):
        return False
    return bool(_HEX_ADDRESS.match(value.strip().lower()))


def address_to_bytes(value: str) -> bytes:
    normalized = normalize_address(value)
    if not is_valid_address(normalized):
        raise ValueError(f"invalid address {value!r}")
    return bytes.fromhex(normalized[2:])


def address_from_bytes(value: bytes) -> str:
    return "0x" + value.hex()


def address_from_public_key(public_key: bytes) -> str:
    return address_from_bytes(blake2b256(bytes([ED25519_FLAG]) + public_key))


def personal_message_digest(message: bytes) -> bytes:
    """Digest signed by wallets for a personal message."""
    payload = Writer().bytes(message).getvalue()
    return blake2b256(PERSONAL_MESSAGE_INTENT + payload)


def transaction_digest(tx_bytes: bytes) -> bytes:
    """Digest signed by each party of a transaction."""
    return blake2b256(TRANSACTION_INTENT + tx_bytes)


def parse_serialized_signature(serialized: str) -> tuple[bytes, bytes]:
    """Split a base64 serialized signature into ``(signature, public_key)``."""
    try:
        raw = base64.b64decode(serialized, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise SignatureError("signature is not valid base64") from exc
    expected = 1 + ED25519_SIGNATURE_LENGTH + ED25519_PUBLIC_KEY_LENGTH
    if len(raw) != expected:
        raise SignatureError(f"signature must be {expected} bytes, got {len(raw)}")
    if raw[0] != ED25519_FLAG:
        raise SignatureError(f"unsupported signature scheme flag {raw[0]:#x}")
    return raw[1 : 1 + ED25519_SIGNATURE_LENGTH], raw[1 + ED25519_SIGNATURE_LENGTH :]


def verify_personal_message(message: bytes, serialized_signature: str, address: str) -> None:
    """Verify a wallet signature over ``message`` for ``address``.

    Raises:
        SignatureError: The signature is malformed, was made by a key that
            does not derive ``address``, or does not verify.
    """
    signature, public_key = parse_serialized_signature(serialized_signature)
    if address_from_public_key(public_key) != normalize_address(address):
        raise SignatureError("signature public key does not match address")
    try:
        Ed25519PublicKey.from_public_bytes(public_key).verify(
            signature, personal_message_digest(message)
        )
    except InvalidSignature as exc:
        raise SignatureError("signature verification failed") from exc


class Keypair:
    """Ed25519 keypair used by the sponsor account."""

    def __init__(self, private_key: Ed25519PrivateKey) -> None:
        self._private_key = private_key
        self.public_key = private_key.public_key().public_bytes(
            Encoding.Raw, PublicFormat.Raw
        )
        self.address = address_from_public_key(self.public_key)

    @classmethod
    def from_seed(cls, seed: bytes) -> Keypair:
        return cls(Ed25519PrivateKey.from_private_bytes(seed))

    @classmethod
    def from_secret(cls, secret: str) -> Keypair:
        """Load from base64 (32-byte seed, optionally flag-prefixed) or hex.

        Bech32 ``suiprivkey`` strings are not accepted.
        """
        value = secret.strip()
        if value.startswith("suiprivkey"):
            raise ValueError("bech32 private keys are not supported; use base64 or hex")
        hex_candidate = value[2:] if value.startswith("0x") else value
        if len(hex_candidate) == 64 and all(c in "0123456789abcdefABCDEF" for c in hex_candidate):
            return cls.from_seed(bytes.fromhex(hex_candidate))
        try:
            raw = base64.b64decode(value, validate=True)
        except (binascii.Error, ValueError) as exc:
            raise ValueError("private key is neither hex nor base64") from exc
        if len(raw) == 33 and raw[0] == ED25519_FLAG:
            raw = raw[1:]
        if len(raw) != 32:
            raise ValueError(f"private key must be a 32-byte Ed25519 seed, got {len(raw)} bytes")
        return cls.from_seed(raw)

    def _serialize(self, signature: bytes) -> str:
        return base64.b64encode(bytes([ED25519_FLAG]) + signature + self.public_key).decode("ascii")

    def sign_transaction(self, tx_bytes: bytes) -> str:
        return self._serialize(self._private_key.sign(transaction_digest(tx_bytes)))

    def sign_personal_message(self, message: bytes) -> str:
        return self._serialize(self._private_key.sign(personal_message_digest(message)))
