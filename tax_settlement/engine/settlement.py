"""Revenue settlement calculator: commission and company/municipality split."""

from datetime import date
from decimal import Decimal
from typing import Any, Iterable

from tax_settlement.engine.balance import HUNDRED, ZERO, to_decimal
from tax_settlement.exceptions import PolicyValidationError
from tax_settlement.models import DailySettlement, ReportSplit

SPLIT_SUM_TOLERANCE = Decimal("0.01")


def _percent(value: Any, field_name: str) -> Decimal:
    rate = to_decimal(value, field_name)
    if rate < 0 or rate > HUNDRED:
        raise PolicyValidationError(f"{field_name} must be between 0 and 100.")
    return rate


def validate_commission_rate(rate_percent: Any) -> Decimal:
    """Check a collector commission rate is within [0, 100]."""
    return _percent(rate_percent, "Commission rate")


def validate_revenue_split(
    company_share_percent: Any,
    municipality_share_percent: Any,
) -> tuple[Decimal, Decimal]:
    """Check both shares are within [0, 100] and sum to 100 (+/- 0.01)."""
    company = _percent(company_share_percent, "Company share")
    municipality = _percent(municipality_share_percent, "Municipality share")
    if abs(company + municipality - HUNDRED) > SPLIT_SUM_TOLERANCE:
        raise PolicyValidationError("Company and municipality shares must sum to 100.")
    return company, municipality


def compute_daily_settlement(
    settlement_date: date,
    amounts: Iterable[Any],
    commission_rate_percent: Any,
    company_share_percent: Any,
    municipality_share_percent: Any,
    currency: str = "USD",
) -> DailySettlement:
    """Settle one day of collections.

    The caller passes only the amounts collected on ``settlement_date``.
    Commission comes off the top; the company gets its percentage of the
    remainder and the municipality gets whatever is left, so the two
    shares always add up to ``net_after_commission``.

    Parameters
    ----------
    settlement_date : date
        Day being settled.
    amounts : Iterable[Any]
        Collected installment amounts for that day. May be empty.
    commission_rate_percent : Any
        Collector commission, e.g. 2 for 2%.
    company_share_percent : Any
        Company share of the net, e.g. 40.
    municipality_share_percent : Any
        Municipality share of the net; reported, the amount is the remainder.
    currency : str
        Currency label for the report.

    Returns
    -------
    DailySettlement
        Totals, commission and split.
    """
    values = [to_decimal(a) for a in amounts]
    commission_rate = to_decimal(commission_rate_percent, "commission_rate_percent")
    company_percent = to_decimal(company_share_percent, "company_share_percent")
    municipality_percent = to_decimal(municipality_share_percent, "municipality_share_percent")

    total = sum(values, ZERO)
    commission = total * commission_rate / HUNDRED
    net = total - commission
    company_share = net * company_percent / HUNDRED
    municipality_share = net - company_share

    return DailySettlement(
        settlement_date=settlement_date,
        currency=currency,
        payment_count=len(values),
        total_collected=total,
        commission_rate_percent=commission_rate,
        commission_amount=commission,
        net_after_commission=net,
        company_share_percent=company_percent,
        municipality_share_percent=municipality_percent,
        company_share=company_share,
        municipality_share=municipality_share,
    )


def compute_report_split(
    total_amount: Any,
    total_discount: Any,
    total_exempt_amount: Any,
    company_share_percent: Any,
) -> ReportSplit:
    """Split for the ad-hoc payment report.

    The company share is taken on the gross amount; discounts and
    exemptions reduce only the municipality share, which floors at zero.
    """
    total = to_decimal(total_amount, "total_amount")
    discount = to_decimal(total_discount, "total_discount")
    exempt = to_decimal(total_exempt_amount, "total_exempt_amount")
    company_percent = to_decimal(company_share_percent, "company_share_percent")

    net_collected = total - discount - exempt
    company_share = total * company_percent / HUNDRED

    return ReportSplit(
        total_amount=total,
        total_discount=discount,
        total_exempt_amount=exempt,
        company_share_percent=company_percent,
        net_collected=net_collected,
        company_share=company_share,
        municipality_share=max(ZERO, net_collected - company_share),
    )


def compute_collector_commission(
    amounts: Iterable[Any],
    commission_rate_percent: Any,
) -> tuple[Decimal, Decimal]:
    """Total collected by one collector and the commission owed on it."""
    total = sum((to_decimal(a) for a in amounts), ZERO)
    rate = to_decimal(commission_rate_percent, "commission_rate_percent")
    return total, total * rate / HUNDRED
