"""Gas sponsorship for allowlisted order-contract calls."""

from ledger_bridge.sponsor.executor import (
    ALLOWED_FUNCTIONS,
    GasSponsorshipExecutor,
    allowed_targets,
    parse_gas_budget,
)

__all__ = ["ALLOWED_FUNCTIONS", "GasSponsorshipExecutor", "allowed_targets", "parse_gas_budget"]
