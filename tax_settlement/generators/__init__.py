"""Faker-based sample data generators."""

from tax_settlement.generators.property import PropertyGenerator, PropertyTypeGenerator

__all__ = ["PropertyGenerator", "PropertyTypeGenerator"]
