"""Payment and installment models."""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any

from tax_settlement.models.enums import PaymentStatus


@dataclass
class Payment:
    """Yearly tax payment for a property, created on approval."""

    payment_id: str
    property_id: str
    amount: Decimal  # Most recent collection, display only
    currency: str = "USD"
    status: PaymentStatus = PaymentStatus.PENDING
    discount_amount: Decimal = Decimal("0")
    discount_reason: str | None = None
    is_exempt: bool = False
    exemption_reason: str | None = None
    transaction_reference: str = ""
    collector_id: str | None = None
    payment_method_id: str | None = None
    notes: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    payment_date: datetime | None = None
    completed_at: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    version: int = 0  # Optimistic lock counter


@dataclass
class PaymentDetail:
    """One recorded collection (installment) against a property."""

    payment_detail_id: str
    property_id: str
    amount: Decimal
    installment_number: int  # 1, 2, 3, ...
    payment_date: datetime
    collected_by: str
    payment_method_id: str
    currency: str = "USD"
    payment_id: str | None = None
    transaction_reference: str = ""
    receipt_number: str | None = None
    notes: str | None = None
    created_at: datetime | None = None
