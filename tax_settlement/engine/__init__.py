"""Pure balance and settlement computations."""

from tax_settlement.engine.balance import (
    TOLERANCE,
    balance_for,
    clamp_collection_amount,
    compute_balance,
    to_cents,
    to_decimal,
    validate_discount,
)
from tax_settlement.engine.settlement import (
    compute_collector_commission,
    compute_daily_settlement,
    compute_report_split,
    validate_commission_rate,
    validate_revenue_split,
)

__all__ = [
    "TOLERANCE",
    "balance_for",
    "clamp_collection_amount",
    "compute_balance",
    "compute_collector_commission",
    "compute_daily_settlement",
    "compute_report_split",
    "to_cents",
    "to_decimal",
    "validate_commission_rate",
    "validate_discount",
    "validate_revenue_split",
]
