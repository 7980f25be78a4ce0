"""Enumeration types for property tax entities."""

from enum import Enum


class PropertyPaymentStatus(str, Enum):
    PENDING = "Pending"
    PAID_PARTIALLY = "Paid_partially"
    PAID = "Paid"
    EXEMPTION = "Exemption"


class PaymentStatus(str, Enum):
    PENDING = "Pending"
    PARTIALLY_PAID = "Partially Paid"
    COMPLETED = "Completed"
    FAILED = "Failed"


class LedgerEntryType(str, Enum):
    DISCOUNT = "discount"
    EXEMPTION = "exemption"
    INSTALLMENT = "installment"
