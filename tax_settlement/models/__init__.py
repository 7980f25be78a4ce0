"""Domain models for property tax settlement."""

from tax_settlement.models.base import Event, as_naive_utc, utc_now
from tax_settlement.models.enums import (
    LedgerEntryType,
    PaymentStatus,
    PropertyPaymentStatus,
)
from tax_settlement.models.payment import Payment, PaymentDetail
from tax_settlement.models.policy import CommissionPolicy, RevenueSplitPolicy
from tax_settlement.models.property import Property, PropertyType
from tax_settlement.models.settlement import (
    BalanceSnapshot,
    CollectionAmount,
    CollectorCollection,
    DailySettlement,
    InstallmentReceipt,
    LedgerEntry,
    ReportSplit,
)

__all__ = [
    "BalanceSnapshot",
    "CollectionAmount",
    "CollectorCollection",
    "CommissionPolicy",
    "DailySettlement",
    "Event",
    "InstallmentReceipt",
    "LedgerEntry",
    "LedgerEntryType",
    "Payment",
    "PaymentDetail",
    "PaymentStatus",
    "Property",
    "PropertyPaymentStatus",
    "PropertyType",
    "ReportSplit",
    "RevenueSplitPolicy",
    "as_naive_utc",
    "utc_now",
]
