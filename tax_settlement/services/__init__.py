"""Application services over the store and the engines."""

from tax_settlement.services.collection import CollectionService
from tax_settlement.services.policies import PolicyService
from tax_settlement.services.reporting import ReportingService

__all__ = ["CollectionService", "PolicyService", "ReportingService"]
