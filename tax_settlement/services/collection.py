"""Installment recording, discounts, exemptions and yearly payments."""

from __future__ import annotations

import logging
import uuid
from collections.abc import Callable
from datetime import datetime
from typing import Any, TypeVar

from tax_settlement.config import SettlementConfig
from tax_settlement.engine import (
    balance_for,
    clamp_collection_amount,
    compute_balance,
    to_decimal,
    validate_discount,
)
from tax_settlement.exceptions import (
    ConcurrentUpdateConflictError,
    InvalidEntityStateError,
    NoRemainingBalanceError,
    ReasonRequiredError,
    ValidationError,
)
from tax_settlement.models import (
    BalanceSnapshot,
    Event,
    InstallmentReceipt,
    Payment,
    PaymentDetail,
    PaymentStatus,
    as_naive_utc,
    utc_now,
)
from tax_settlement.sinks import NullPublisher
from tax_settlement.sinks.serialization import to_dict
from tax_settlement.store import TaxStore

logger = logging.getLogger(__name__)

T = TypeVar("T")

EVENT_SOURCE = "tax-settlement"


def transaction_reference(prefix: str, entity_id: str, sequence: Any, when: datetime) -> str:
    """Build a reference like ``PD-1A2B3C4D-3-20250101093000``."""
    short_id = entity_id.replace("-", "")[:8].upper()
    return f"{prefix}-{short_id}-{sequence}-{when:%Y%m%d%H%M%S}"


def _require_open(snapshot: BalanceSnapshot, action: str) -> None:
    """Collect, discount and exempt are only allowed on an open balance."""
    if snapshot.is_exempt:
        raise NoRemainingBalanceError(f"Payment is exempt; nothing to {action}.")
    if not snapshot.collection_allowed:
        raise NoRemainingBalanceError(f"No remaining balance to {action}.")


class CollectionService:
    """Record collections against properties and annotate their payments.

    Every operation runs inside ``store.transaction(property_id)`` and is
    retried as a whole when the store reports a version conflict.
    """

    def __init__(
        self,
        store: TaxStore,
        config: SettlementConfig | None = None,
        publisher: Any = None,
    ) -> None:
        """Initialize the service.

        Parameters
        ----------
        store : TaxStore
            Persistence collaborator.
        config : SettlementConfig | None
            Tolerance, default currency and retry settings.
        publisher : Any
            Object with ``publish(event)``; events are dropped when omitted.
        """
        self.store = store
        self.config = config or SettlementConfig()
        self.publisher = publisher or NullPublisher()

    def _with_retries(self, operation: str, func: Callable[[], T]) -> T:
        attempts = max(1, self.config.max_conflict_retries)
        for attempt in range(1, attempts + 1):
            try:
                return func()
            except ConcurrentUpdateConflictError:
                if attempt == attempts:
                    logger.error("%s failed after %d conflicting attempts", operation, attempts)
                    raise
                logger.info("%s conflicted (attempt %d/%d), retrying", operation, attempt, attempts)
        raise AssertionError("unreachable")

    def _publish(self, event_type: str, subject: str, data: Any) -> None:
        event = Event(
            event_id=str(uuid.uuid4()),
            event_type=event_type,
            event_time=utc_now(),
            source=EVENT_SOURCE,
            subject=subject,
            data=to_dict(data),
        )
        try:
            self.publisher.publish(event)
        except Exception:
            logger.warning("Failed to publish %s for %s", event_type, subject, exc_info=True)

    def _payment_of(self, property_id: str, payment_id: str | None) -> Payment | None:
        if payment_id is None:
            return self.store.get_payment_for_property(property_id)
        payment = self.store.get_payment(payment_id)
        if payment.property_id != property_id:
            raise InvalidEntityStateError(
                f"Payment {payment_id} does not belong to property {property_id}"
            )
        return payment

    def record_installment(
        self,
        property_id: str,
        requested_amount: Any,
        payment_method_id: str,
        collector_id: str,
        payment_id: str | None = None,
        payment_date: datetime | None = None,
        receipt_number: str | None = None,
        notes: str | None = None,
    ) -> InstallmentReceipt:
        """Record one collection against a property.

        The requested amount is rounded to cents and capped at the
        effective remaining balance. The installment, the property's paid
        amount and status, and the payment's latest amount are written as
        one unit. Completing the payment afterwards is best-effort.

        Parameters
        ----------
        property_id : str
            Property being collected for.
        requested_amount : Any
            Amount entered by the collector, at least one cent.
        payment_method_id : str
            Cash, mobile money, etc.
        collector_id : str
            User who collected the money.
        payment_id : str | None
            Payment to collect against; defaults to the property's latest.
        payment_date : datetime | None
            When the money was collected; defaults to now. Aware values are
            stored as naive UTC.
        receipt_number : str | None
            Paper receipt number, if any.
        notes : str | None
            Free text.

        Returns
        -------
        InstallmentReceipt
            Stored installment and the balance after it.

        Raises
        ------
        InvalidAmountError
            If the requested amount is not a positive number of cents.
        NoRemainingBalanceError
            If the payment is exempt or nothing is left to collect.
        """
        payment_date = as_naive_utc(payment_date)

        def attempt() -> tuple[InstallmentReceipt, Payment | None]:
            with self.store.transaction(property_id) as store:
                prop = store.get_property(property_id)
                payment = self._payment_of(property_id, payment_id)
                before = balance_for(prop, payment, self.config.tolerance)

                collection = clamp_collection_amount(requested_amount, before, prop.currency)
                _require_open(before, "collect")
                if collection.was_capped:
                    logger.info(
                        "Installment for %s: %s",
                        property_id,
                        collection.notice,
                        extra={"property_id": property_id},
                    )

                now = utc_now()
                number = len(store.list_payment_details(property_id)) + 1
                detail = PaymentDetail(
                    payment_detail_id=str(uuid.uuid4()),
                    property_id=property_id,
                    payment_id=payment.payment_id if payment else None,
                    amount=collection.amount,
                    currency=prop.currency,
                    installment_number=number,
                    payment_date=payment_date or now,
                    collected_by=collector_id,
                    payment_method_id=payment_method_id,
                    transaction_reference=transaction_reference("PD", property_id, number, now),
                    receipt_number=receipt_number,
                    notes=notes,
                )
                store.add_payment_detail(detail)

                prop.paid_amount += collection.amount
                after = balance_for(prop, payment, self.config.tolerance)
                prop.payment_status = after.property_status
                store.update_property(prop)

                if payment is not None:
                    payment.amount = collection.amount
                    payment.payment_date = detail.payment_date
                    if payment.status == PaymentStatus.PENDING:
                        payment.status = PaymentStatus.PARTIALLY_PAID
                    store.update_payment(payment)

            completed = after.effective_remaining <= self.config.tolerance
            receipt = InstallmentReceipt(
                payment_detail=detail,
                balance=after,
                requested_amount=to_decimal(requested_amount),
                payment_completed=completed,
                notice=collection.notice,
            )
            return receipt, payment

        receipt, payment = self._with_retries(f"record_installment({property_id})", attempt)
        logger.info(
            "Recorded installment %d of %s for property %s",
            receipt.payment_detail.installment_number,
            receipt.payment_detail.amount,
            property_id,
            extra={
                "property_id": property_id,
                "payment_id": receipt.payment_detail.payment_id,
                "collector_id": collector_id,
            },
        )

        if receipt.payment_completed and payment is not None:
            self._complete_payment(property_id, payment.payment_id)

        self._publish("installment.recorded", property_id, receipt.payment_detail)
        return receipt

    def _complete_payment(self, property_id: str, payment_id: str) -> None:
        """Mark a payment Completed; failures are logged and swallowed."""
        context = {"property_id": property_id, "payment_id": payment_id}
        try:
            with self.store.transaction(property_id) as store:
                payment = store.get_payment(payment_id)
                payment.status = PaymentStatus.COMPLETED
                payment.completed_at = utc_now()
                store.update_payment(payment)
            logger.info("Payment %s completed (no remaining balance)", payment_id, extra=context)
        except Exception:
            logger.warning("Could not mark payment %s as completed", payment_id, exc_info=True, extra=context)

    def update_payment(
        self,
        payment_id: str,
        discount_amount: Any = None,
        discount_reason: str | None = None,
        is_exempt: bool | None = None,
        exemption_reason: str | None = None,
        status: PaymentStatus | str | None = None,
    ) -> Payment:
        """Change the discount, exemption and status of a payment as one unit.

        Every field is validated before anything is written, and all
        changes are stored in a single transaction: either all of them are
        applied or none is.

        Parameters
        ----------
        payment_id : str
            Payment to update.
        discount_amount : Any
            New discount (replaces the old one), rounded to cents.
        discount_reason : str | None
            Why the discount was given.
        is_exempt : bool | None
            ``True`` exempts the payment, ``False`` lifts an exemption.
        exemption_reason : str | None
            Required when exempting.
        status : PaymentStatus | str | None
            New payment status.

        Returns
        -------
        Payment
            The stored payment.

        Raises
        ------
        ValidationError
            If no field is given or the status is unknown.
        ReasonRequiredError
            If exempting without a reason.
        NoRemainingBalanceError
            If discounting or exempting a payment that is exempt or has
            nothing left to collect.
        DiscountExceedsBalanceError
            If the discount is greater than the current remaining amount.
        """
        if discount_amount is None and is_exempt is None and status is None:
            raise ValidationError("No valid fields to update")

        reason = None
        if is_exempt:
            reason = exemption_reason.strip() if exemption_reason else ""
            if not reason:
                raise ReasonRequiredError("A reason is required to exempt a payment.")

        new_status = None
        if status is not None:
            try:
                new_status = PaymentStatus(status)
            except ValueError:
                raise ValidationError(f"Unknown payment status {status!r}") from None

        property_id = self.store.get_payment(payment_id).property_id

        def attempt() -> Payment:
            with self.store.transaction(property_id) as store:
                prop = store.get_property(property_id)
                payment = store.get_payment(payment_id)

                discount = None
                if discount_amount is not None or is_exempt:
                    # Lifting an exemption in the same request reopens the balance
                    still_exempt = payment.is_exempt and is_exempt is not False
                    before = compute_balance(
                        prop.expected_amount,
                        prop.paid_amount,
                        payment.discount_amount,
                        still_exempt,
                        self.config.tolerance,
                    )
                    _require_open(before, "discount" if discount_amount is not None else "exempt")
                    if discount_amount is not None:
                        discount = validate_discount(discount_amount, before)

                if discount is not None:
                    payment.discount_amount = discount
                    payment.discount_reason = (
                        discount_reason.strip() if discount_reason and discount_reason.strip() else None
                    )
                if is_exempt is not None:
                    payment.is_exempt = is_exempt
                    payment.exemption_reason = reason if is_exempt else None
                if new_status is not None:
                    payment.status = new_status
                    if new_status == PaymentStatus.COMPLETED and payment.completed_at is None:
                        payment.completed_at = utc_now()
                store.update_payment(payment)
                return payment

        payment = self._with_retries(f"update_payment({payment_id})", attempt)
        logger.info(
            "Payment %s updated (discount=%s, exempt=%s, status=%s)",
            payment_id,
            payment.discount_amount,
            payment.is_exempt,
            payment.status.value,
            extra={"property_id": property_id, "payment_id": payment_id},
        )

        if discount_amount is not None:
            self._publish("discount.applied", payment_id, payment)
        if is_exempt is not None:
            self._publish("exemption.applied" if is_exempt else "exemption.lifted", payment_id, payment)
        if new_status is not None:
            self._publish("payment.status_changed", payment_id, payment)
        return payment

    def apply_discount(self, payment_id: str, amount: Any, reason: str | None = None) -> Payment:
        """Set (not add to) the discount on a payment.

        Validated against the remaining amount computed from the current
        paid amount inside the transaction.

        Raises
        ------
        InvalidAmountError
            If the amount is negative or not a number.
        DiscountExceedsBalanceError
            If the amount is greater than the remaining amount.
        """
        return self.update_payment(payment_id, discount_amount=amount, discount_reason=reason)

    def apply_exemption(self, payment_id: str, reason: str | None) -> Payment:
        """Exempt a payment from its remaining balance.

        Raises
        ------
        ReasonRequiredError
            If the reason is missing or blank.
        """
        return self.update_payment(payment_id, is_exempt=True, exemption_reason=reason)

    def set_payment_status(self, payment_id: str, status: PaymentStatus | str) -> Payment:
        """Change a payment's status by hand."""
        return self.update_payment(payment_id, status=status)

    def open_payment(self, property_id: str, created_by: str, year: int | None = None) -> Payment | None:
        """Create the yearly payment of a property.

        Returns ``None`` when the property already has a payment for that
        year.
        """
        year = year or utc_now().year

        def attempt() -> Payment | None:
            with self.store.transaction(property_id) as store:
                existing = store.list_payments(property_id=property_id)
                if any(p.metadata.get("year") == year for p in existing):
                    return None

                prop = store.get_property(property_id)
                now = utc_now()
                payment = Payment(
                    payment_id=str(uuid.uuid4()),
                    property_id=property_id,
                    amount=prop.expected_amount,
                    currency=prop.currency,
                    status=PaymentStatus.PENDING,
                    transaction_reference=transaction_reference("PROP", property_id, year, now),
                    collector_id=created_by,
                    notes=f"Yearly property tax {year}",
                    metadata={
                        "is_recurring": True,
                        "frequency": "yearly",
                        "year": year,
                        "property_type": prop.property_type.name,
                        "area_size": str(prop.area_size),
                        "unit_price": str(prop.property_type.price),
                    },
                    payment_date=now,
                )
                store.add_payment(payment)
                return payment

        payment = self._with_retries(f"open_payment({property_id})", attempt)
        if payment is None:
            logger.info("Property %s already has a payment for %d", property_id, year)
            return None

        logger.info(
            "Opened %d payment %s for property %s",
            year,
            payment.payment_id,
            property_id,
            extra={"property_id": property_id, "payment_id": payment.payment_id},
        )
        self._publish("payment.created", property_id, payment)
        return payment
