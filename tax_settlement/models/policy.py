"""Admin-configured settlement policies."""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal


@dataclass
class CommissionPolicy:
    """Collector commission rate as a percentage (2 means 2%)."""

    rate_percent: Decimal
    description: str | None = None
    is_active: bool = True
    updated_at: datetime | None = None


@dataclass
class RevenueSplitPolicy:
    """How net revenue is split between the company and the municipality."""

    company_share_percent: Decimal
    municipality_share_percent: Decimal
    description: str | None = None
    is_active: bool = True
    updated_at: datetime | None = None
