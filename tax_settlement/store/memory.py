"""In-memory tax store with referential integrity and per-property locking."""

import copy
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime

from tax_settlement.exceptions import (
    ConcurrentUpdateConflictError,
    EntityNotFoundError,
    ReferentialIntegrityError,
)
from tax_settlement.models import (
    CommissionPolicy,
    Payment,
    PaymentDetail,
    Property,
    PropertyType,
    RevenueSplitPolicy,
    utc_now,
)
from tax_settlement.store.base import TaxStore


@dataclass
class InMemoryTaxStore(TaxStore):
    """In-memory store for tax entities with relationship tracking."""

    # Primary entities
    property_types: dict[str, PropertyType] = field(default_factory=dict)
    properties: dict[str, Property] = field(default_factory=dict)
    payments: dict[str, Payment] = field(default_factory=dict)

    # Ledger
    payment_details: list[PaymentDetail] = field(default_factory=list)

    # Policies
    commission_policy: CommissionPolicy | None = None
    revenue_split_policy: RevenueSplitPolicy | None = None

    # Relationship indexes
    _property_payments: dict[str, list[str]] = field(default_factory=dict)
    _property_details: dict[str, list[PaymentDetail]] = field(default_factory=dict)

    # Concurrency
    _locks: dict[str, threading.RLock] = field(default_factory=dict)
    _guard: threading.Lock = field(default_factory=threading.Lock)

    def _lock_for(self, property_id: str) -> threading.RLock:
        with self._guard:
            if property_id not in self._locks:
                self._locks[property_id] = threading.RLock()
            return self._locks[property_id]

    @contextmanager
    def transaction(self, property_id: str) -> Iterator["InMemoryTaxStore"]:
        """Serialise work on one property; restore its state on error."""
        if property_id not in self.properties:
            raise EntityNotFoundError(f"Property {property_id} not found")

        with self._lock_for(property_id):
            saved_property = copy.deepcopy(self.properties[property_id])
            saved_payments = {
                pid: copy.deepcopy(self.payments[pid])
                for pid in self._property_payments.get(property_id, [])
            }
            saved_detail_count = len(self._property_details.get(property_id, []))
            try:
                yield self
            except BaseException:
                self.properties[property_id] = saved_property
                self.payments.update(saved_payments)
                details = self._property_details.get(property_id, [])
                added = details[saved_detail_count:]
                del details[saved_detail_count:]
                with self._guard:
                    added_ids = {id(d) for d in added}
                    self.payment_details = [
                        d for d in self.payment_details if id(d) not in added_ids
                    ]
                raise

    def add_property_type(self, property_type: PropertyType) -> None:
        """Add a property type to the store."""
        self.property_types[property_type.property_type_id] = property_type

    def add_property(self, prop: Property) -> None:
        """Add a property to the store."""
        type_id = prop.property_type.property_type_id
        if type_id not in self.property_types:
            raise ReferentialIntegrityError(f"Property type {type_id} not found")

        if prop.created_at is None:
            prop.created_at = utc_now()
        self.properties[prop.property_id] = copy.deepcopy(prop)
        self._property_payments.setdefault(prop.property_id, [])
        self._property_details.setdefault(prop.property_id, [])

    def get_property(self, property_id: str) -> Property:
        """Get a detached copy of a property."""
        if property_id not in self.properties:
            raise EntityNotFoundError(f"Property {property_id} not found")
        return copy.deepcopy(self.properties[property_id])

    def update_property(self, prop: Property) -> None:
        """Write back a property if nobody else changed it meanwhile."""
        stored = self.properties.get(prop.property_id)
        if stored is None:
            raise EntityNotFoundError(f"Property {prop.property_id} not found")
        if stored.version != prop.version:
            raise ConcurrentUpdateConflictError(
                f"Property {prop.property_id} was modified concurrently "
                f"(expected version {prop.version}, found {stored.version})"
            )

        prop.version += 1
        prop.updated_at = utc_now()
        self.properties[prop.property_id] = copy.deepcopy(prop)

    def add_payment(self, payment: Payment) -> None:
        """Add a payment to the store."""
        if payment.property_id not in self.properties:
            raise ReferentialIntegrityError(f"Property {payment.property_id} not found")

        if payment.created_at is None:
            payment.created_at = utc_now()
        self.payments[payment.payment_id] = copy.deepcopy(payment)
        self._property_payments[payment.property_id].append(payment.payment_id)

    def get_payment(self, payment_id: str) -> Payment:
        """Get a detached copy of a payment."""
        if payment_id not in self.payments:
            raise EntityNotFoundError(f"Payment {payment_id} not found")
        return copy.deepcopy(self.payments[payment_id])

    def get_payment_for_property(self, property_id: str) -> Payment | None:
        """Get the most recently added payment of a property."""
        payment_ids = self._property_payments.get(property_id, [])
        if not payment_ids:
            return None
        return copy.deepcopy(self.payments[payment_ids[-1]])

    def list_payments(
        self,
        property_id: str | None = None,
        is_exempt: bool | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> list[Payment]:
        """List payments matching all given filters."""
        if property_id is not None:
            candidates = [self.payments[pid] for pid in self._property_payments.get(property_id, [])]
        else:
            candidates = list(self.payments.values())

        result = []
        for payment in candidates:
            if is_exempt is not None and payment.is_exempt != is_exempt:
                continue
            if start is not None and (payment.payment_date is None or payment.payment_date < start):
                continue
            if end is not None and (payment.payment_date is None or payment.payment_date >= end):
                continue
            result.append(copy.deepcopy(payment))
        return result

    def update_payment(self, payment: Payment) -> None:
        """Write back a payment if nobody else changed it meanwhile."""
        stored = self.payments.get(payment.payment_id)
        if stored is None:
            raise EntityNotFoundError(f"Payment {payment.payment_id} not found")
        if stored.version != payment.version:
            raise ConcurrentUpdateConflictError(
                f"Payment {payment.payment_id} was modified concurrently "
                f"(expected version {payment.version}, found {stored.version})"
            )

        payment.version += 1
        payment.updated_at = utc_now()
        self.payments[payment.payment_id] = copy.deepcopy(payment)

    def add_payment_detail(self, detail: PaymentDetail) -> None:
        """Append an installment to the ledger."""
        if detail.property_id not in self.properties:
            raise ReferentialIntegrityError(f"Property {detail.property_id} not found")

        if detail.payment_id and detail.payment_id not in self.payments:
            raise ReferentialIntegrityError(f"Payment {detail.payment_id} not found")

        if detail.created_at is None:
            detail.created_at = utc_now()
        stored = copy.deepcopy(detail)
        self._property_details[detail.property_id].append(stored)
        with self._guard:
            self.payment_details.append(stored)

    # Query methods
    def list_payment_details(self, property_id: str) -> list[PaymentDetail]:
        """Get all installments for a property, oldest first."""
        details = self._property_details.get(property_id, [])
        return [copy.deepcopy(d) for d in sorted(details, key=lambda d: d.payment_date)]

    def list_payment_details_between(
        self,
        start: datetime,
        end: datetime,
        collected_by: str | None = None,
    ) -> list[PaymentDetail]:
        """Get installments paid in ``[start, end)``, optionally by one collector."""
        with self._guard:
            details = list(self.payment_details)
        return [
            copy.deepcopy(d)
            for d in details
            if start <= d.payment_date < end
            and (collected_by is None or d.collected_by == collected_by)
        ]

    def get_commission_policy(self) -> CommissionPolicy | None:
        """Get the active commission policy."""
        policy = self.commission_policy
        return copy.copy(policy) if policy and policy.is_active else None

    def save_commission_policy(self, policy: CommissionPolicy) -> CommissionPolicy:
        """Replace the active commission policy."""
        policy.updated_at = utc_now()
        self.commission_policy = copy.copy(policy)
        return policy

    def get_revenue_split_policy(self) -> RevenueSplitPolicy | None:
        """Get the active revenue split policy."""
        policy = self.revenue_split_policy
        return copy.copy(policy) if policy and policy.is_active else None

    def save_revenue_split_policy(self, policy: RevenueSplitPolicy) -> RevenueSplitPolicy:
        """Replace the active revenue split policy."""
        policy.updated_at = utc_now()
        self.revenue_split_policy = copy.copy(policy)
        return policy

    def summary(self) -> dict[str, int]:
        """Return summary counts of all entities."""
        return {
            "property_types": len(self.property_types),
            "properties": len(self.properties),
            "payments": len(self.payments),
            "payment_details": len(self.payment_details),
        }
