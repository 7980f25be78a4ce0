"""Computed results: balances, receipts, settlements and ledger rows."""

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal

from tax_settlement.models.enums import LedgerEntryType, PropertyPaymentStatus
from tax_settlement.models.payment import Payment, PaymentDetail


@dataclass(frozen=True)
class BalanceSnapshot:
    """Outstanding balance of a property at one point in time."""

    expected_amount: Decimal
    paid_amount: Decimal
    discount_amount: Decimal
    is_exempt: bool
    remaining_amount: Decimal  # Ignores discount
    effective_remaining: Decimal  # Still collectible
    is_fully_paid: bool
    is_balance_cleared_by_discount: bool
    payment_percentage: Decimal
    collection_allowed: bool  # Gates collect, discount and exemption actions

    @property
    def property_status(self) -> PropertyPaymentStatus:
        """Property payment status implied by this balance."""
        if self.is_fully_paid:
            return PropertyPaymentStatus.PAID
        if self.paid_amount > 0:
            return PropertyPaymentStatus.PAID_PARTIALLY
        return PropertyPaymentStatus.PENDING


@dataclass(frozen=True)
class CollectionAmount:
    """Amount accepted by the collection input, with an optional notice."""

    amount: Decimal
    was_capped: bool
    notice: str | None = None


@dataclass(frozen=True)
class InstallmentReceipt:
    """Result of recording an installment."""

    payment_detail: PaymentDetail
    balance: BalanceSnapshot
    requested_amount: Decimal
    payment_completed: bool
    notice: str | None = None  # Set when the requested amount was capped


@dataclass(frozen=True)
class DailySettlement:
    """Daily settlement (xisaab xir) of collected revenue."""

    settlement_date: date
    currency: str
    payment_count: int
    total_collected: Decimal
    commission_rate_percent: Decimal
    commission_amount: Decimal
    net_after_commission: Decimal
    company_share_percent: Decimal
    municipality_share_percent: Decimal
    company_share: Decimal
    municipality_share: Decimal


@dataclass(frozen=True)
class ReportSplit:
    """Ad-hoc report split: company on gross, municipality on net."""

    total_amount: Decimal
    total_discount: Decimal
    total_exempt_amount: Decimal
    company_share_percent: Decimal
    net_collected: Decimal
    company_share: Decimal
    municipality_share: Decimal


@dataclass(frozen=True)
class CollectorCollection:
    """What one collector brought in over a date range."""

    collector_id: str
    start_date: date | None
    end_date: date | None
    currency: str
    count: int
    total_amount: Decimal
    commission_rate_percent: Decimal
    commission_amount: Decimal


@dataclass(frozen=True)
class LedgerEntry:
    """Display row of a property's payment history.

    Discount and exemption rows are synthesized from the payment and
    never stored.
    """

    entry_type: LedgerEntryType
    amount: Decimal
    currency: str
    reason: str | None = None
    installment_number: int | None = None
    payment_date: datetime | None = None
    payment_detail: PaymentDetail | None = None

    @classmethod
    def for_discount(cls, payment: Payment) -> "LedgerEntry":
        return cls(
            entry_type=LedgerEntryType.DISCOUNT,
            amount=payment.discount_amount,
            currency=payment.currency,
            reason=payment.discount_reason,
        )

    @classmethod
    def for_exemption(cls, payment: Payment) -> "LedgerEntry":
        return cls(
            entry_type=LedgerEntryType.EXEMPTION,
            amount=Decimal("0"),
            currency=payment.currency,
            reason=payment.exemption_reason,
        )

    @classmethod
    def for_installment(cls, detail: PaymentDetail) -> "LedgerEntry":
        return cls(
            entry_type=LedgerEntryType.INSTALLMENT,
            amount=detail.amount,
            currency=detail.currency,
            installment_number=detail.installment_number,
            payment_date=detail.payment_date,
            payment_detail=detail,
        )
