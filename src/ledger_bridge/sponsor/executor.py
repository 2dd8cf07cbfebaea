"""Fee sponsorship for the order-lifecycle entry points.

The platform's sponsor account pays gas for transactions a user signs, but
only when every command is a Move call to one of :data:`ALLOWED_FUNCTIONS`
in the order contract. The checks run in both phases:

* :meth:`GasSponsorshipExecutor.build` takes the user's transaction kind,
  validates it, and returns full transaction bytes with the sponsor as gas
  owner.
* :meth:`GasSponsorshipExecutor.execute` takes those bytes back with the
  user's signature, validates them again from scratch, checks the gas
  owner and budget, co-signs and submits.

Nothing is remembered between the phases; a client that swaps the bytes in
between is judged on what it sends.
"""

from __future__ import annotations

import base64
import binascii
import logging
import math
from typing import Any

import base58

from ledger_bridge.audit import record_audit_event
from ledger_bridge.chain.bcs import BCSError
from ledger_bridge.chain.crypto import Keypair, is_valid_address, normalize_address
from ledger_bridge.chain.rpc import LedgerClient
from ledger_bridge.chain.transactions import (
    GasData,
    ObjectRef,
    ProgrammableTransaction,
    TransactionData,
    UnsupportedTransactionError,
)
from ledger_bridge.chain.types import ZERO_ADDRESS
from ledger_bridge.errors import ConfigurationError, LedgerExecutionError, SponsorshipError

logger = logging.getLogger(__name__)

DEFAULT_GAS_BUDGET = 50_000_000
ORDER_MODULE = "order_system"
ALLOWED_FUNCTIONS = (
    "create_order",
    "pay_service_fee",
    "claim_order",
    "lock_deposit",
    "mark_completed",
    "raise_dispute",
    "finalize_no_dispute",
    "cancel_order",
)
GAS_COIN_TYPE = "0x2::sui::SUI"


def parse_gas_budget(raw: str | int | None) -> int:
    """Positive integer budget from config; empty means the default.

    Raises:
        ConfigurationError: The value is not a positive number.
    """
    if raw is None or str(raw).strip() == "":
        return DEFAULT_GAS_BUDGET
    try:
        value = float(str(raw).strip())
    except ValueError:
        value = math.nan
    if not math.isfinite(value) or value <= 0:
        raise ConfigurationError(f"sponsor.gas_budget must be a positive number, got {raw!r}")
    return int(value)


def allowed_targets(package_id: str) -> frozenset[str]:
    package = normalize_address(package_id)
    return frozenset(f"{package}::{ORDER_MODULE}::{name}" for name in ALLOWED_FUNCTIONS)


def _b64decode(value: str, what: str) -> bytes:
    try:
        return base64.b64decode(value, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise SponsorshipError(f"{what} is not valid base64") from exc


class GasSponsorshipExecutor:
    def __init__(
        self,
        client: LedgerClient,
        *,
        package_id: str,
        private_key: str,
        gas_budget: str | int | None = None,
    ) -> None:
        self.client = client
        self.package_id = package_id
        self._private_key = private_key
        self._gas_budget = gas_budget
        self._keypair: Keypair | None = None

    # -- Configuration --------------------------------------------------------

    @property
    def gas_budget(self) -> int:
        return parse_gas_budget(self._gas_budget)

    @property
    def keypair(self) -> Keypair:
        if self._keypair is None:
            if not self._private_key:
                raise SponsorshipError(
                    "Fee sponsorship is not configured",
                    code="sponsor_not_configured",
                    status_code=503,
                )
            try:
                self._keypair = Keypair.from_secret(self._private_key)
            except ValueError as exc:
                raise ConfigurationError(f"sponsor.private_key is invalid: {exc}") from exc
        return self._keypair

    @property
    def sponsor_address(self) -> str:
        return self.keypair.address

    def _targets(self) -> frozenset[str]:
        if not self.package_id or normalize_address(self.package_id) == ZERO_ADDRESS:
            raise ConfigurationError("ledger.package_id is not configured")
        return allowed_targets(self.package_id)

    # -- Validation -----------------------------------------------------------

    def ensure_allowed(self, kind: ProgrammableTransaction, sender: str) -> None:
        """Reject anything but allowlisted Move calls from a valid sender.

        Raises:
            SponsorshipError: ``invalid_transaction`` for an empty command
                list, ``target_not_allowed`` for a call outside the
                allowlist, ``invalid_sender`` for a malformed sender.
        """
        if not kind.commands:
            raise SponsorshipError("Transaction has no commands")
        targets = self._targets()
        for command in kind.commands:
            if command.target not in targets:
                raise SponsorshipError(
                    f"Move call target not allowed: {command.target}",
                    code="target_not_allowed",
                    extra={"target": command.target},
                )
        if not sender or not is_valid_address(normalize_address(sender)):
            raise SponsorshipError("Invalid sender", code="invalid_sender")

    @staticmethod
    def _decode(parse, data: bytes):
        try:
            return parse(data)
        except UnsupportedTransactionError as exc:
            code = "command_not_allowed" if exc.kind == "command" else "invalid_transaction"
            raise SponsorshipError(str(exc), code=code) from exc
        except BCSError as exc:
            raise SponsorshipError(f"Transaction bytes could not be decoded: {exc}") from exc

    def decode_transaction(self, tx_bytes: str) -> tuple[bytes, TransactionData]:
        """Decode base64 transaction data, mapping failures to ``SponsorshipError``."""
        raw = _b64decode(tx_bytes, "txBytes")
        return raw, self._decode(TransactionData.from_bytes, raw)

    # -- Phases ---------------------------------------------------------------

    async def build(self, sender: str, kind_bytes: str) -> dict[str, Any]:
        """Wrap a user's transaction kind as a sponsored transaction.

        Returns:
            ``{"bytes", "sponsor", "sender", "gasBudget"}`` where ``bytes``
            is base64 transaction data for the user to sign.
        """
        if not sender or not sender.strip().lower().startswith("0x"):
            raise SponsorshipError("Invalid sender address", code="invalid_sender")
        sender = normalize_address(sender)
        if not is_valid_address(sender):
            raise SponsorshipError("Invalid sender address", code="invalid_sender")

        kind = self._decode(ProgrammableTransaction.from_bytes, _b64decode(kind_bytes, "kindBytes"))
        self.ensure_allowed(kind, sender)

        budget = self.gas_budget
        sponsor = self.sponsor_address
        price = await self.client.get_reference_gas_price()
        payment = await self._select_gas(sponsor, budget)

        data = TransactionData(kind, sender, GasData(payment, sponsor, price, budget))
        logger.info(
            "Prepared sponsored transaction for %s (%d commands, budget %d)",
            sender,
            len(kind.commands),
            budget,
        )
        return {
            "bytes": base64.b64encode(data.to_bytes()).decode("ascii"),
            "sponsor": sponsor,
            "sender": sender,
            "gasBudget": budget,
        }

    async def _select_gas(self, owner: str, budget: int) -> tuple[ObjectRef, ...]:
        coins = await self.client.get_coins(owner, GAS_COIN_TYPE)
        coins.sort(key=lambda coin: int(coin.get("balance") or 0), reverse=True)
        selected: list[ObjectRef] = []
        total = 0
        for coin in coins:
            selected.append(
                ObjectRef(
                    object_id=coin["coinObjectId"],
                    version=int(coin["version"]),
                    digest=base58.b58decode(coin["digest"]),
                )
            )
            total += int(coin.get("balance") or 0)
            if total >= budget:
                return tuple(selected)
        logger.error(
            "Sponsor %s has %d gas units across %d coins; need %d", owner, total, len(coins), budget
        )
        raise SponsorshipError(
            "Sponsor account has insufficient gas",
            code="sponsor_gas_unavailable",
            status_code=503,
        )

    async def execute(self, tx_bytes: str, user_signature: str) -> dict[str, Any]:
        """Re-validate, co-sign and submit a prepared transaction.

        Raises:
            SponsorshipError: Validation failed; nothing was signed.
            LedgerExecutionError: The ledger executed the transaction and
                reported a failure status.
        """
        try:
            raw, data = self.decode_transaction(tx_bytes)
            self.ensure_allowed(data.kind, data.sender)

            sponsor = self.sponsor_address
            if normalize_address(data.gas_data.owner) != sponsor:
                raise SponsorshipError(
                    "Gas owner is not the sponsor",
                    code="gas_owner_mismatch",
                    extra={"gasOwner": data.gas_data.owner},
                )
            max_budget = self.gas_budget
            if data.gas_data.budget > max_budget:
                raise SponsorshipError(
                    "Gas budget exceeds sponsor limit",
                    code="gas_budget_exceeded",
                    extra={"gasBudget": data.gas_data.budget, "maxGasBudget": max_budget},
                )
        except SponsorshipError as exc:
            logger.warning("Rejected sponsored transaction: %s (%s)", exc.message, exc.code)
            record_audit_event(
                "sponsor", "sponsor.rejected", {"code": exc.code, "message": exc.message}
            )
            raise

        sponsor_signature = self.keypair.sign_transaction(raw)
        result = await self.client.execute_transaction_block(
            tx_bytes, [user_signature, sponsor_signature]
        )
        digest = (result or {}).get("digest")
        status = ((result or {}).get("effects") or {}).get("status") or {}
        if status.get("status") and status["status"] != "success":
            error = status.get("error") or "ledger transaction failed"
            logger.error("Sponsored transaction %s failed on ledger: %s", digest, error)
            raise LedgerExecutionError(error, extra={"digest": digest})

        logger.info("Executed sponsored transaction %s for %s", digest, data.sender)
        record_audit_event(
            "sponsor",
            "sponsor.executed",
            {
                "digest": digest,
                "sender": data.sender,
                "targets": [command.target for command in data.kind.commands],
                "gasBudget": data.gas_data.budget,
            },
        )
        return {"digest": digest}
