"""Read-side views: balances, ledgers and settlement reports."""

import logging
from collections.abc import Iterable
from datetime import date, datetime, time, timedelta, timezone
from decimal import Decimal

from tax_settlement.config import SettlementConfig
from tax_settlement.engine import (
    balance_for,
    compute_collector_commission,
    compute_daily_settlement,
    compute_report_split,
)
from tax_settlement.models import (
    BalanceSnapshot,
    CollectorCollection,
    DailySettlement,
    LedgerEntry,
    Payment,
    ReportSplit,
)
from tax_settlement.services.policies import PolicyService
from tax_settlement.store import TaxStore

logger = logging.getLogger(__name__)


class ReportingService:
    """Views shared by the API, the CLI and exports.

    All balances go through the balance engine so every view shows the
    same figures.
    """

    def __init__(self, store: TaxStore, config: SettlementConfig | None = None) -> None:
        self.store = store
        self.config = config or SettlementConfig()
        self.policies = PolicyService(store)

    def balance(self, property_id: str) -> BalanceSnapshot:
        """Balance of a property against its latest payment."""
        prop = self.store.get_property(property_id)
        payment = self.store.get_payment_for_property(property_id)
        return balance_for(prop, payment, self.config.tolerance)

    def payment_balance(self, payment: Payment) -> BalanceSnapshot:
        """Balance of the property a payment belongs to, using that payment."""
        prop = self.store.get_property(payment.property_id)
        return balance_for(prop, payment, self.config.tolerance)

    def ledger(self, property_id: str) -> list[LedgerEntry]:
        """Payment history for display.

        Discount and exemption rows come first and are built from the
        payment on the fly; installments follow, newest first.
        """
        self.store.get_property(property_id)
        payment = self.store.get_payment_for_property(property_id)

        entries: list[LedgerEntry] = []
        if payment is not None:
            if payment.discount_amount > 0:
                entries.append(LedgerEntry.for_discount(payment))
            if payment.is_exempt:
                entries.append(LedgerEntry.for_exemption(payment))

        details = self.store.list_payment_details(property_id)
        details.sort(key=lambda d: (d.payment_date, d.installment_number), reverse=True)
        entries.extend(LedgerEntry.for_installment(d) for d in details)
        return entries

    def daily_settlement(self, settlement_date: date | None = None) -> DailySettlement:
        """Settle the installments collected on one day.

        Parameters
        ----------
        settlement_date : date | None
            Day to settle; defaults to yesterday (UTC).

        Returns
        -------
        DailySettlement
            Totals with commission and the company/municipality split.
        """
        if settlement_date is None:
            settlement_date = datetime.now(timezone.utc).date() - timedelta(days=1)

        start = datetime.combine(settlement_date, time.min)
        details = self.store.list_payment_details_between(start, start + timedelta(days=1))
        commission, company, municipality = self.policies.active_rates()
        currency = details[0].currency if details else self.config.default_currency

        settlement = compute_daily_settlement(
            settlement_date,
            [d.amount for d in details],
            commission,
            company,
            municipality,
            currency=currency,
        )
        logger.info(
            "Daily settlement %s: %d payments, total %s",
            settlement_date,
            settlement.payment_count,
            settlement.total_collected,
            extra={"settlement_date": settlement_date},
        )
        return settlement

    def report_split(self, payments: Iterable[Payment]) -> ReportSplit:
        """Company/municipality split for an ad-hoc set of payments."""
        total = discount = exempt = Decimal("0")
        for payment in payments:
            total += payment.amount
            discount += payment.discount_amount
            if payment.is_exempt:
                exempt += payment.amount
        _, company, _ = self.policies.active_rates()
        return compute_report_split(total, discount, exempt, company)

    def collector_collection(
        self,
        collector_id: str,
        start: date | None = None,
        end: date | None = None,
    ) -> CollectorCollection:
        """What a collector collected between two dates, both inclusive."""
        start_at = datetime.combine(start, time.min) if start else datetime.min
        end_at = datetime.combine(end + timedelta(days=1), time.min) if end else datetime.max
        details = self.store.list_payment_details_between(start_at, end_at, collected_by=collector_id)

        rate, _, _ = self.policies.active_rates()
        total, commission = compute_collector_commission((d.amount for d in details), rate)
        return CollectorCollection(
            collector_id=collector_id,
            start_date=start,
            end_date=end,
            currency=details[0].currency if details else self.config.default_currency,
            count=len(details),
            total_amount=total,
            commission_rate_percent=rate,
            commission_amount=commission,
        )
