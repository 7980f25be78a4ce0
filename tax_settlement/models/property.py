"""Property models for tax assessment."""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal

from tax_settlement.models.enums import PropertyPaymentStatus


@dataclass
class PropertyType:
    """Tax category with a price per area unit."""

    property_type_id: str
    name: str
    price: Decimal  # Per area unit
    unit: str = "sqm"


@dataclass
class Property:
    """Registered property owing a yearly tax."""

    property_id: str
    property_type: PropertyType
    area_size: Decimal
    paid_amount: Decimal = Decimal("0")
    payment_status: PropertyPaymentStatus = PropertyPaymentStatus.PENDING
    currency: str = "USD"
    plate_number: str | None = None
    owner_name: str = ""
    collector_id: str | None = None
    approved_at: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    version: int = 0  # Optimistic lock counter

    @property
    def expected_amount(self) -> Decimal:
        """Total tax owed: type price times area."""
        return self.property_type.price * self.area_size
