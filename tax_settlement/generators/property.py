"""Property type and property generators."""

from __future__ import annotations

from datetime import timedelta
from decimal import Decimal
from typing import Iterator

from tax_settlement.generators.base import BaseGenerator
from tax_settlement.models import Property, PropertyType, utc_now


class PropertyTypeGenerator(BaseGenerator):
    """Generate the municipal tax categories."""

    # Name and yearly price per square metre
    CATALOG = [
        ("Residential", Decimal("0.50")),
        ("Apartment", Decimal("0.75")),
        ("Commercial", Decimal("1.50")),
        ("Industrial", Decimal("1.25")),
        ("Agricultural", Decimal("0.10")),
    ]

    def generate_batch(self) -> list[PropertyType]:
        """Generate one property type per catalog entry."""
        return [
            PropertyType(
                property_type_id=self.fake.uuid4(),
                name=name,
                price=price,
            )
            for name, price in self.CATALOG
        ]


class PropertyGenerator(BaseGenerator):
    """Generate registered properties of the given types."""

    # Area range in square metres per type name
    AREA_RANGES = {
        "Residential": (80, 600),
        "Apartment": (40, 200),
        "Commercial": (50, 1500),
        "Industrial": (500, 10000),
        "Agricultural": (2000, 50000),
    }
    DEFAULT_AREA_RANGE = (50, 1000)

    def __init__(
        self,
        property_types: list[PropertyType],
        seed: int | None = None,
        currency: str = "USD",
    ) -> None:
        super().__init__(seed)
        if not property_types:
            raise ValueError("At least one property type is required")
        self.property_types = property_types
        self.currency = currency

    def generate(self) -> Property:
        """Generate a single property."""
        return self._generate_one()

    def generate_batch(self, count: int) -> Iterator[Property]:
        """Generate multiple properties.

        Parameters
        ----------
        count : int
            Number of properties to generate.

        Yields
        ------
        Property
            Generated properties.
        """
        for _ in range(count):
            yield self._generate_one()

    def _generate_one(self) -> Property:
        property_type = self.random.choice(self.property_types)
        low, high = self.AREA_RANGES.get(property_type.name, self.DEFAULT_AREA_RANGE)
        area = Decimal(self.random.randint(low * 100, high * 100)) / 100

        approved_at = utc_now() - timedelta(days=self.random.randint(0, 365))
        return Property(
            property_id=self.fake.uuid4(),
            property_type=property_type,
            area_size=area,
            currency=self.currency,
            plate_number=self._plate_number(),
            owner_name=self.fake.name(),
            approved_at=approved_at,
        )

    def _plate_number(self) -> str:
        return f"{self.fake.lexify('??').upper()}-{self.random.randint(1, 99999):05d}"
