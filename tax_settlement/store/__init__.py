"""Persistence for properties, payments, installments and policies."""

from tax_settlement.config import TaxSettlementConfig
from tax_settlement.store.base import TaxStore
from tax_settlement.store.memory import InMemoryTaxStore
from tax_settlement.store.postgres import PostgresTaxStore


def create_store(config: TaxSettlementConfig) -> TaxStore:
    """Build the store selected by ``config.settlement.store_backend``."""
    if config.settlement.store_backend == "postgres":
        return PostgresTaxStore(config.postgres)
    return InMemoryTaxStore()


__all__ = ["InMemoryTaxStore", "PostgresTaxStore", "TaxStore", "create_store"]
