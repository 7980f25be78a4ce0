"""Pytest configuration and fixtures."""

from collections.abc import Callable
from decimal import Decimal

import pytest

from tax_settlement.config import SettlementConfig
from tax_settlement.models import Payment, Property, PropertyType
from tax_settlement.services import CollectionService, PolicyService, ReportingService
from tax_settlement.store import InMemoryTaxStore


@pytest.fixture
def seed() -> int:
    """Fixed seed for reproducible tests."""
    return 42


@pytest.fixture
def store() -> InMemoryTaxStore:
    """Empty in-memory store."""
    return InMemoryTaxStore()


@pytest.fixture
def residential() -> PropertyType:
    """Property type at 0.50 per square metre."""
    return PropertyType(property_type_id="type-res", name="Residential", price=Decimal("0.50"))


@pytest.fixture
def make_property(store: InMemoryTaxStore, residential: PropertyType) -> Callable[..., Property]:
    """Add a property with the given expected amount (and optionally a payment)."""
    store.add_property_type(residential)
    counter = {"n": 0}

    def factory(expected: str = "32", with_payment: bool = True) -> Property:
        counter["n"] += 1
        prop = Property(
            property_id=f"prop-{counter['n']:03d}",
            property_type=residential,
            area_size=Decimal(expected) / residential.price,
            owner_name="Test Owner",
        )
        store.add_property(prop)
        if with_payment:
            store.add_payment(
                Payment(
                    payment_id=f"pay-{counter['n']:03d}",
                    property_id=prop.property_id,
                    amount=prop.expected_amount,
                )
            )
        return store.get_property(prop.property_id)

    return factory


@pytest.fixture
def collection(store: InMemoryTaxStore) -> CollectionService:
    """Collection service over the in-memory store."""
    return CollectionService(store, SettlementConfig())


@pytest.fixture
def policies(store: InMemoryTaxStore) -> PolicyService:
    """Policy service with 2% commission and a 40/60 split."""
    service = PolicyService(store)
    service.update_commission_policy(Decimal("2"))
    service.update_revenue_split_policy(Decimal("40"), Decimal("60"))
    return service


@pytest.fixture
def reporting(store: InMemoryTaxStore) -> ReportingService:
    """Reporting service over the in-memory store."""
    return ReportingService(store)
