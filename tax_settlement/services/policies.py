"""Commission and revenue split policy administration."""

import logging
from decimal import Decimal
from typing import Any

from tax_settlement.engine import validate_commission_rate, validate_revenue_split
from tax_settlement.models import CommissionPolicy, RevenueSplitPolicy
from tax_settlement.store import TaxStore

logger = logging.getLogger(__name__)


class PolicyService:
    """Read and replace the active settlement policies.

    Rates are validated when written, so readers can trust stored values.
    """

    def __init__(self, store: TaxStore) -> None:
        self.store = store

    def get_commission_policy(self) -> CommissionPolicy | None:
        return self.store.get_commission_policy()

    def update_commission_policy(self, rate_percent: Any, description: str | None = None) -> CommissionPolicy:
        """Replace the commission policy; rate must be within [0, 100]."""
        rate = validate_commission_rate(rate_percent)
        policy = self.store.save_commission_policy(
            CommissionPolicy(rate_percent=rate, description=description)
        )
        logger.info("Commission rate set to %s%%", rate)
        return policy

    def get_revenue_split_policy(self) -> RevenueSplitPolicy | None:
        return self.store.get_revenue_split_policy()

    def update_revenue_split_policy(
        self,
        company_share_percent: Any,
        municipality_share_percent: Any,
        description: str | None = None,
    ) -> RevenueSplitPolicy:
        """Replace the revenue split; shares must sum to 100."""
        company, municipality = validate_revenue_split(company_share_percent, municipality_share_percent)
        policy = self.store.save_revenue_split_policy(
            RevenueSplitPolicy(
                company_share_percent=company,
                municipality_share_percent=municipality,
                description=description,
            )
        )
        logger.info("Revenue split set to company %s%% / municipality %s%%", company, municipality)
        return policy

    def active_rates(self) -> tuple[Decimal, Decimal, Decimal]:
        """Commission, company and municipality percentages; missing policies count as 0."""
        commission = self.get_commission_policy()
        split = self.get_revenue_split_policy()
        return (
            commission.rate_percent if commission else Decimal("0"),
            split.company_share_percent if split else Decimal("0"),
            split.municipality_share_percent if split else Decimal("0"),
        )
