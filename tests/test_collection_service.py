"""Tests for CollectionService: installments, discounts, exemptions, payments."""

import logging
import re
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from unittest.mock import MagicMock, patch

import pytest

from tax_settlement.config import SettlementConfig
from tax_settlement.exceptions import (
    ConcurrentUpdateConflictError,
    DiscountExceedsBalanceError,
    InvalidAmountError,
    InvalidEntityStateError,
    NoRemainingBalanceError,
    ReasonRequiredError,
    ValidationError,
)
from tax_settlement.models import PaymentStatus, PropertyPaymentStatus
from tax_settlement.services import CollectionService
from tax_settlement.store import InMemoryTaxStore


def _collect(service: CollectionService, property_id: str, amount, collector: str = "col-1"):
    return service.record_installment(property_id, amount, "cash", collector)


class TestRecordInstallment:
    """Tests for record_installment."""

    def test_partial_installment(self, store: InMemoryTaxStore, collection: CollectionService, make_property) -> None:
        prop = make_property("100")

        receipt = _collect(collection, prop.property_id, "40")

        assert receipt.payment_detail.amount == Decimal("40")
        assert receipt.payment_detail.installment_number == 1
        assert receipt.payment_detail.payment_id == "pay-001"
        assert receipt.balance.remaining_amount == Decimal("60")
        assert receipt.payment_completed is False
        assert receipt.notice is None

        stored = store.get_property(prop.property_id)
        assert stored.paid_amount == Decimal("40")
        assert stored.payment_status == PropertyPaymentStatus.PAID_PARTIALLY
        payment = store.get_payment("pay-001")
        assert payment.amount == Decimal("40")
        assert payment.status == PaymentStatus.PARTIALLY_PAID

    def test_transaction_reference_format(self, collection: CollectionService, make_property) -> None:
        prop = make_property()

        receipt = _collect(collection, prop.property_id, "5")

        assert re.fullmatch(r"PD-PROP001-1-\d{14}", receipt.payment_detail.transaction_reference)

    def test_discounted_property_caps_and_completes(
        self, store: InMemoryTaxStore, collection: CollectionService, make_property
    ) -> None:
        """Expected 32 with a 10 discount: collecting 30 takes 22 and clears the balance."""
        prop = make_property("32")
        collection.apply_discount("pay-001", "10")

        receipt = _collect(collection, prop.property_id, "30")

        assert receipt.payment_detail.amount == Decimal("22")
        assert receipt.requested_amount == Decimal("30")
        assert receipt.notice == "Capped to USD 22.00"
        assert receipt.balance.paid_amount == Decimal("22")
        assert receipt.balance.remaining_amount == Decimal("10")
        assert receipt.balance.is_fully_paid is False
        assert receipt.balance.is_balance_cleared_by_discount is True
        assert receipt.payment_completed is True

        assert store.get_property(prop.property_id).payment_status == PropertyPaymentStatus.PAID_PARTIALLY
        payment = store.get_payment("pay-001")
        assert payment.status == PaymentStatus.COMPLETED
        assert payment.completed_at is not None

    def test_full_payment_marks_property_paid(
        self, store: InMemoryTaxStore, collection: CollectionService, make_property
    ) -> None:
        prop = make_property("50")

        receipt = _collect(collection, prop.property_id, "50")

        assert receipt.balance.is_fully_paid is True
        assert receipt.balance.effective_remaining == 0
        assert store.get_property(prop.property_id).payment_status == PropertyPaymentStatus.PAID
        assert store.get_payment("pay-001").status == PaymentStatus.COMPLETED

    def test_never_collects_more_than_effective_remaining(
        self, store: InMemoryTaxStore, collection: CollectionService, make_property
    ) -> None:
        prop = make_property("32")
        collection.apply_discount("pay-001", "2")

        for requested in ["10", "1000", "50"]:
            before = collection.store.get_property(prop.property_id).paid_amount
            try:
                receipt = _collect(collection, prop.property_id, requested)
            except NoRemainingBalanceError:
                break
            effective_before = Decimal("30") - before
            assert receipt.payment_detail.amount <= effective_before

        assert store.get_property(prop.property_id).paid_amount == Decimal("30")

    def test_ledger_sum_equals_paid_amount(
        self, store: InMemoryTaxStore, collection: CollectionService, make_property
    ) -> None:
        prop = make_property("100")

        for amount in ["10.10", "20.20", "0.01", "33.33", "5"]:
            _collect(collection, prop.property_id, amount)

        details = store.list_payment_details(prop.property_id)
        assert [d.installment_number for d in details] == [1, 2, 3, 4, 5]
        assert sum(d.amount for d in details) == store.get_property(prop.property_id).paid_amount

    def test_no_remaining_balance(self, collection: CollectionService, make_property) -> None:
        prop = make_property("10")
        _collect(collection, prop.property_id, "10")

        with pytest.raises(NoRemainingBalanceError):
            _collect(collection, prop.property_id, "1")

    @pytest.mark.parametrize("amount", ["0", "-3", "abc"])
    def test_invalid_amount_checked_first(self, collection: CollectionService, make_property, amount) -> None:
        prop = make_property("10")
        _collect(collection, prop.property_id, "10")

        with pytest.raises(InvalidAmountError):
            _collect(collection, prop.property_id, amount)

    def test_exempt_payment_rejects_collection(self, collection: CollectionService, make_property) -> None:
        prop = make_property("10")
        collection.apply_exemption("pay-001", "Mosque")

        with pytest.raises(NoRemainingBalanceError):
            _collect(collection, prop.property_id, "5")

    def test_without_payment(self, store: InMemoryTaxStore, collection: CollectionService, make_property) -> None:
        prop = make_property("10", with_payment=False)

        receipt = _collect(collection, prop.property_id, "4")

        assert receipt.payment_detail.payment_id is None
        assert store.get_property(prop.property_id).paid_amount == Decimal("4")

    def test_payment_of_other_property(self, collection: CollectionService, make_property) -> None:
        make_property()
        other = make_property()

        with pytest.raises(InvalidEntityStateError):
            collection.record_installment(other.property_id, "1", "cash", "col-1", payment_id="pay-001")

    def test_explicit_payment_date_and_receipt(self, collection: CollectionService, make_property) -> None:
        prop = make_property()
        paid_on = datetime(2025, 2, 3, 10, 0)

        receipt = collection.record_installment(
            prop.property_id, "5", "cash", "col-1", payment_date=paid_on, receipt_number="R-1", notes="front desk"
        )

        assert receipt.payment_detail.payment_date == paid_on
        assert receipt.payment_detail.receipt_number == "R-1"
        assert receipt.payment_detail.notes == "front desk"


class TestBestEffortCompletion:
    """Completing the payment must never undo the installment."""

    def test_completion_failure_is_logged(
        self,
        store: InMemoryTaxStore,
        collection: CollectionService,
        make_property,
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        prop = make_property("10")
        original = store.update_payment

        def fail_on_complete(payment):
            if payment.status == PaymentStatus.COMPLETED:
                raise RuntimeError("status table locked")
            return original(payment)

        with patch.object(store, "update_payment", side_effect=fail_on_complete):
            with caplog.at_level(logging.WARNING, logger="tax_settlement.services.collection"):
                receipt = _collect(collection, prop.property_id, "10")

        assert receipt.payment_completed is True
        assert store.get_property(prop.property_id).paid_amount == Decimal("10")
        assert len(store.list_payment_details(prop.property_id)) == 1
        assert store.get_payment("pay-001").status == PaymentStatus.PARTIALLY_PAID
        assert any("pay-001" in r.getMessage() and r.exc_info for r in caplog.records)


class TestConflictRetries:
    """Whole-operation retry on version conflicts."""

    def test_retries_after_conflict(self, store: InMemoryTaxStore, collection: CollectionService, make_property) -> None:
        prop = make_property("10")
        original = store.update_property
        calls = {"n": 0}

        def conflict_once(p):
            calls["n"] += 1
            if calls["n"] == 1:
                raise ConcurrentUpdateConflictError("someone else wrote")
            return original(p)

        with patch.object(store, "update_property", side_effect=conflict_once):
            receipt = _collect(collection, prop.property_id, "4")

        assert calls["n"] == 2
        assert receipt.payment_detail.installment_number == 1
        assert len(store.list_payment_details(prop.property_id)) == 1
        assert store.get_property(prop.property_id).paid_amount == Decimal("4")

    def test_gives_up_after_max_retries(self, store: InMemoryTaxStore, make_property) -> None:
        prop = make_property("10")
        service = CollectionService(store, SettlementConfig(max_conflict_retries=2))

        with patch.object(store, "update_property", side_effect=ConcurrentUpdateConflictError("busy")) as update:
            with pytest.raises(ConcurrentUpdateConflictError):
                _collect(service, prop.property_id, "4")

        assert update.call_count == 2
        assert store.list_payment_details(prop.property_id) == []
        assert store.get_property(prop.property_id).paid_amount == 0


class TestConcurrentInstallments:
    """Per-property serialisation under threads."""

    def test_parallel_collections_never_overshoot(
        self, store: InMemoryTaxStore, collection: CollectionService, make_property
    ) -> None:
        prop = make_property("32")
        collection.apply_discount("pay-001", "2")

        def worker(_):
            try:
                return _collect(collection, prop.property_id, "5").payment_detail.amount
            except NoRemainingBalanceError:
                return Decimal("0")

        with ThreadPoolExecutor(max_workers=8) as pool:
            collected = list(pool.map(worker, range(20)))

        stored = store.get_property(prop.property_id)
        details = store.list_payment_details(prop.property_id)
        assert sum(collected) == Decimal("30")
        assert stored.paid_amount == Decimal("30")
        assert sum(d.amount for d in details) == stored.paid_amount
        assert sorted(d.installment_number for d in details) == list(range(1, len(details) + 1))


class TestDiscountAndExemption:
    """Tests for apply_discount and apply_exemption."""

    def test_discount_overwrites(self, store: InMemoryTaxStore, collection: CollectionService, make_property) -> None:
        make_property("100")

        collection.apply_discount("pay-001", "10", "first")
        payment = collection.apply_discount("pay-001", "15", "second")

        assert payment.discount_amount == Decimal("15")
        assert payment.discount_reason == "second"
        assert store.get_payment("pay-001").discount_amount == Decimal("15")

    def test_discount_checked_against_current_paid(self, collection: CollectionService, make_property) -> None:
        prop = make_property("100")
        _collect(collection, prop.property_id, "20")

        with pytest.raises(DiscountExceedsBalanceError):
            collection.apply_discount("pay-001", "90")
        assert collection.apply_discount("pay-001", "80").discount_amount == Decimal("80")

    def test_negative_discount(self, collection: CollectionService, make_property) -> None:
        make_property("100")

        with pytest.raises(InvalidAmountError):
            collection.apply_discount("pay-001", "-1")

    @pytest.mark.parametrize("reason", [None, "", "   "])
    def test_exemption_requires_reason(self, collection: CollectionService, make_property, reason) -> None:
        make_property()

        with pytest.raises(ReasonRequiredError):
            collection.apply_exemption("pay-001", reason)

    def test_exemption_only_annotates_payment(
        self, store: InMemoryTaxStore, collection: CollectionService, make_property
    ) -> None:
        prop = make_property("100")
        _collect(collection, prop.property_id, "30")

        payment = collection.apply_exemption("pay-001", "  Public school  ")

        assert payment.is_exempt is True
        assert payment.exemption_reason == "Public school"
        stored = store.get_property(prop.property_id)
        assert stored.paid_amount == Decimal("30")
        assert stored.payment_status == PropertyPaymentStatus.PAID_PARTIALLY
        assert len(store.list_payment_details(prop.property_id)) == 1


class TestPaymentLifecycle:
    """Tests for open_payment and set_payment_status."""

    def test_open_payment(self, store: InMemoryTaxStore, collection: CollectionService, make_property) -> None:
        prop = make_property("32", with_payment=False)

        payment = collection.open_payment(prop.property_id, created_by="admin", year=2025)

        assert payment.amount == Decimal("32")
        assert payment.status == PaymentStatus.PENDING
        assert payment.transaction_reference.startswith("PROP-PROP001-2025-")
        assert payment.metadata["year"] == 2025
        assert payment.metadata["is_recurring"] is True
        assert payment.metadata["property_type"] == "Residential"
        assert store.get_payment_for_property(prop.property_id).payment_id == payment.payment_id

    def test_open_payment_once_per_year(self, store: InMemoryTaxStore, collection: CollectionService, make_property) -> None:
        prop = make_property(with_payment=False)

        assert collection.open_payment(prop.property_id, "admin", year=2025) is not None
        assert collection.open_payment(prop.property_id, "admin", year=2025) is None
        assert collection.open_payment(prop.property_id, "admin", year=2026) is not None
        assert len(store.list_payments(property_id=prop.property_id)) == 2

    def test_set_status_completed_stamps_time(self, collection: CollectionService, make_property) -> None:
        make_property()

        payment = collection.set_payment_status("pay-001", "Completed")

        assert payment.status == PaymentStatus.COMPLETED
        assert payment.completed_at is not None

    def test_set_status_failed(self, collection: CollectionService, make_property) -> None:
        make_property()

        assert collection.set_payment_status("pay-001", PaymentStatus.FAILED).completed_at is None


class TestEventPublishing:
    """Events go out after commit; publisher failures are logged only."""

    def test_installment_event(self, store: InMemoryTaxStore, make_property) -> None:
        publisher = MagicMock()
        service = CollectionService(store, publisher=publisher)
        prop = make_property()

        service.record_installment(prop.property_id, "5", "cash", "col-1")

        event = publisher.publish.call_args.args[0]
        assert event.event_type == "installment.recorded"
        assert event.subject == prop.property_id
        assert event.data["amount"] == "5.00"
        assert event.source == "tax-settlement"

    def test_publisher_failure_does_not_fail_operation(self, store: InMemoryTaxStore, make_property) -> None:
        publisher = MagicMock()
        publisher.publish.side_effect = RuntimeError("broker down")
        service = CollectionService(store, publisher=publisher)
        prop = make_property()

        receipt = service.record_installment(prop.property_id, "5", "cash", "col-1")

        assert receipt.payment_detail.amount == Decimal("5")

    def test_no_event_on_failure(self, store: InMemoryTaxStore, make_property) -> None:
        publisher = MagicMock()
        service = CollectionService(store, publisher=publisher)
        prop = make_property()

        with pytest.raises(InvalidAmountError):
            service.record_installment(prop.property_id, "0", "cash", "col-1")

        publisher.publish.assert_not_called()


class TestAmountsAndDates:
    """Money is kept in cents and timestamps in naive UTC."""

    def test_rounds_to_cents(self, store: InMemoryTaxStore, collection: CollectionService, make_property) -> None:
        prop = make_property("100")

        receipt = _collect(collection, prop.property_id, "10.005")

        assert receipt.payment_detail.amount == Decimal("10.01")
        assert store.get_property(prop.property_id).paid_amount == Decimal("10.01")

    def test_sub_cent_amount_rejected(self, store: InMemoryTaxStore, collection: CollectionService, make_property) -> None:
        prop = make_property("100")

        with pytest.raises(InvalidAmountError):
            _collect(collection, prop.property_id, "0.004")
        assert store.list_payment_details(prop.property_id) == []

    def test_aware_payment_date_stored_as_utc(
        self, store: InMemoryTaxStore, collection: CollectionService, reporting, make_property
    ) -> None:
        prop = make_property("100")
        collection.record_installment(prop.property_id, "10", "cash", "col-1", payment_date=datetime(2025, 3, 1, 9, 0))
        east_africa = timezone(timedelta(hours=3))

        receipt = collection.record_installment(
            prop.property_id, "10", "cash", "col-1", payment_date=datetime(2025, 3, 2, 1, 30, tzinfo=east_africa)
        )

        assert receipt.payment_detail.payment_date == datetime(2025, 3, 1, 22, 30)
        assert receipt.payment_detail.payment_date.tzinfo is None
        assert [e.installment_number for e in reporting.ledger(prop.property_id)] == [2, 1]
        assert _collect(collection, prop.property_id, "1").payment_detail.installment_number == 3
        assert reporting.daily_settlement(datetime(2025, 3, 1).date()).payment_count == 2


class TestUpdatePayment:
    """Discount, exemption and status change as one unit."""

    def test_all_fields_in_one_write(self, store: InMemoryTaxStore, collection: CollectionService, make_property) -> None:
        make_property("100")
        version = store.get_payment("pay-001").version

        payment = collection.update_payment(
            "pay-001",
            discount_amount="10",
            discount_reason="Widow",
            is_exempt=True,
            exemption_reason="Council decision",
            status="Completed",
        )

        assert payment.discount_amount == Decimal("10")
        assert payment.is_exempt is True
        assert payment.exemption_reason == "Council decision"
        assert payment.status == PaymentStatus.COMPLETED
        assert store.get_payment("pay-001").version == version + 1

    def test_blank_exemption_reason_stores_nothing(
        self, store: InMemoryTaxStore, collection: CollectionService, make_property
    ) -> None:
        make_property("100")

        with pytest.raises(ReasonRequiredError):
            collection.update_payment("pay-001", discount_amount="30", is_exempt=True, exemption_reason=" ")

        stored = store.get_payment("pay-001")
        assert stored.discount_amount == 0
        assert stored.is_exempt is False

    def test_rejected_discount_keeps_status(self, store: InMemoryTaxStore, collection: CollectionService, make_property) -> None:
        make_property("100")

        with pytest.raises(DiscountExceedsBalanceError):
            collection.update_payment("pay-001", discount_amount="500", status="Completed")

        assert store.get_payment("pay-001").status == PaymentStatus.PENDING

    def test_requires_a_field(self, collection: CollectionService, make_property) -> None:
        make_property()

        with pytest.raises(ValidationError, match="No valid fields"):
            collection.update_payment("pay-001")

    def test_unknown_status(self, collection: CollectionService, make_property) -> None:
        make_property()

        with pytest.raises(ValidationError, match="Refunded"):
            collection.update_payment("pay-001", status="Refunded")


class TestActionGate:
    """Collect, discount and exempt need an open, non-exempt balance."""

    def test_exempt_payment_rejects_discount(self, store: InMemoryTaxStore, collection: CollectionService, make_property) -> None:
        make_property("100")
        collection.apply_exemption("pay-001", "Mosque")

        with pytest.raises(NoRemainingBalanceError, match="exempt"):
            collection.apply_discount("pay-001", "50")
        assert store.get_payment("pay-001").discount_amount == 0

    def test_cannot_exempt_twice(self, store: InMemoryTaxStore, collection: CollectionService, make_property) -> None:
        make_property("100")
        collection.apply_exemption("pay-001", "Mosque")

        with pytest.raises(NoRemainingBalanceError):
            collection.apply_exemption("pay-001", "again")
        assert store.get_payment("pay-001").exemption_reason == "Mosque"

    def test_fully_paid_rejects_discount_and_exemption(self, collection: CollectionService, make_property) -> None:
        prop = make_property("10")
        _collect(collection, prop.property_id, "10")

        with pytest.raises(NoRemainingBalanceError):
            collection.apply_discount("pay-001", "0")
        with pytest.raises(NoRemainingBalanceError):
            collection.apply_exemption("pay-001", "Public school")

    def test_status_change_not_gated(self, collection: CollectionService, make_property) -> None:
        make_property("100")
        collection.apply_exemption("pay-001", "Mosque")

        assert collection.set_payment_status("pay-001", "Failed").status == PaymentStatus.FAILED

    def test_lifting_exemption_reopens_balance(
        self, store: InMemoryTaxStore, collection: CollectionService, make_property
    ) -> None:
        prop = make_property("100")
        collection.apply_exemption("pay-001", "Mosque")

        payment = collection.update_payment("pay-001", is_exempt=False, discount_amount="20")

        assert payment.is_exempt is False
        assert payment.exemption_reason is None
        assert payment.discount_amount == Decimal("20")
        assert _collect(collection, prop.property_id, "100").payment_detail.amount == Decimal("80")

    def test_lifting_exemption_event(self, store: InMemoryTaxStore, make_property) -> None:
        publisher = MagicMock()
        service = CollectionService(store, publisher=publisher)
        make_property("100")
        service.apply_exemption("pay-001", "Mosque")

        service.update_payment("pay-001", is_exempt=False)

        assert publisher.publish.call_args.args[0].event_type == "exemption.lifted"
