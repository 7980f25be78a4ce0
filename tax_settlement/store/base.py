"""Persistence interface used by the settlement services."""

from __future__ import annotations

from abc import ABC, abstractmethod
from contextlib import AbstractContextManager
from datetime import datetime

from tax_settlement.models import (
    CommissionPolicy,
    Payment,
    PaymentDetail,
    Property,
    PropertyType,
    RevenueSplitPolicy,
)


class TaxStore(ABC):
    """Load and save properties, payments, installments and policies.

    Entities returned by getters are detached copies. Changes are written
    back with ``update_property``/``update_payment``, which compare the
    copy's ``version`` against the stored one and raise
    ``ConcurrentUpdateConflictError`` when another writer got there first.

    ``transaction(property_id)`` serialises all work on one property and
    commits or rolls back the block as a unit.
    """

    @abstractmethod
    def transaction(self, property_id: str) -> AbstractContextManager[TaxStore]:
        """Lock a property for the duration of a read-modify-write block."""

    # Master data
    @abstractmethod
    def add_property_type(self, property_type: PropertyType) -> None:
        """Add a property type."""

    @abstractmethod
    def add_property(self, prop: Property) -> None:
        """Add a property."""

    @abstractmethod
    def get_property(self, property_id: str) -> Property:
        """Get a property by id."""

    @abstractmethod
    def update_property(self, prop: Property) -> None:
        """Write back paid amount and payment status."""

    # Payments
    @abstractmethod
    def add_payment(self, payment: Payment) -> None:
        """Add a payment."""

    @abstractmethod
    def get_payment(self, payment_id: str) -> Payment:
        """Get a payment by id."""

    @abstractmethod
    def get_payment_for_property(self, property_id: str) -> Payment | None:
        """Get the most recent payment of a property, if any."""

    @abstractmethod
    def list_payments(
        self,
        property_id: str | None = None,
        is_exempt: bool | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> list[Payment]:
        """List payments, optionally filtered; ``end`` is exclusive."""

    @abstractmethod
    def update_payment(self, payment: Payment) -> None:
        """Write back discount, exemption, status and amount."""

    # Installments
    @abstractmethod
    def add_payment_detail(self, detail: PaymentDetail) -> None:
        """Append an installment to the ledger."""

    @abstractmethod
    def list_payment_details(self, property_id: str) -> list[PaymentDetail]:
        """Installments of a property ordered by payment date."""

    @abstractmethod
    def list_payment_details_between(
        self,
        start: datetime,
        end: datetime,
        collected_by: str | None = None,
    ) -> list[PaymentDetail]:
        """Installments with ``start <= payment_date < end``."""

    # Policies
    @abstractmethod
    def get_commission_policy(self) -> CommissionPolicy | None:
        """Active commission policy, if configured."""

    @abstractmethod
    def save_commission_policy(self, policy: CommissionPolicy) -> CommissionPolicy:
        """Create or replace the active commission policy."""

    @abstractmethod
    def get_revenue_split_policy(self) -> RevenueSplitPolicy | None:
        """Active revenue split policy, if configured."""

    @abstractmethod
    def save_revenue_split_policy(self, policy: RevenueSplitPolicy) -> RevenueSplitPolicy:
        """Create or replace the active revenue split policy."""
