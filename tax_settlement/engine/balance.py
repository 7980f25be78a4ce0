"""Balance engine: outstanding balance and payment status of a property.

Every view, report and the installment recorder compute balances through
``compute_balance`` so the figures cannot drift between call sites.

Two input policies live here and are intentionally different:

- ``clamp_collection_amount`` silently caps an over-large collection to
  the effective remaining balance and returns a transient notice.
- ``validate_discount`` rejects an over-large discount outright.
"""

from decimal import ROUND_DOWN, ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any

from tax_settlement.exceptions import DiscountExceedsBalanceError, InvalidAmountError
from tax_settlement.models import BalanceSnapshot, CollectionAmount, Payment, Property

TOLERANCE = Decimal("0.01")
CENT = Decimal("0.01")
ZERO = Decimal("0")
HUNDRED = Decimal("100")


def to_decimal(value: Any, field_name: str = "amount") -> Decimal:
    """Coerce a user-supplied number to ``Decimal``.

    Parameters
    ----------
    value : Any
        Decimal, int, float or numeric string.
    field_name : str
        Name used in the error message.

    Returns
    -------
    Decimal
        Finite decimal value.

    Raises
    ------
    InvalidAmountError
        If the value is missing, boolean, non-numeric or not finite.
    """
    if value is None or isinstance(value, bool):
        raise InvalidAmountError(f"{field_name} must be a number")
    if isinstance(value, Decimal):
        result = value
    else:
        try:
            # str() keeps 0.1 as 0.1 rather than its binary expansion
            result = Decimal(str(value).strip())
        except (InvalidOperation, ValueError):
            raise InvalidAmountError(f"{field_name} must be a number, got {value!r}") from None
    if not result.is_finite():
        raise InvalidAmountError(f"{field_name} must be a finite number")
    return result


def to_cents(value: Any, field_name: str = "amount") -> Decimal:
    """Coerce a user-supplied amount and round it half-up to cents."""
    return to_decimal(value, field_name).quantize(CENT, rounding=ROUND_HALF_UP)


def compute_balance(
    expected_amount: Any,
    paid_amount: Any,
    discount_amount: Any = ZERO,
    is_exempt: bool = False,
    tolerance: Decimal = TOLERANCE,
) -> BalanceSnapshot:
    """Compute the balance of a property.

    Parameters
    ----------
    expected_amount : Any
        Total owed (type price times area), >= 0.
    paid_amount : Any
        Sum of recorded installments, >= 0.
    discount_amount : Any
        Discount on the payment, >= 0.
    is_exempt : bool
        Whether the payment carries an exemption.
    tolerance : Decimal
        Rounding tolerance for "paid" and "cleared" comparisons.

    Returns
    -------
    BalanceSnapshot
        Remaining, effective remaining and status flags.
    """
    expected = to_decimal(expected_amount, "expected_amount")
    paid = to_decimal(paid_amount, "paid_amount")
    discount = to_decimal(discount_amount, "discount_amount")
    for name, value in (("expected_amount", expected), ("paid_amount", paid), ("discount_amount", discount)):
        if value < 0:
            raise InvalidAmountError(f"{name} cannot be negative")

    remaining = max(ZERO, expected - paid)
    effective = max(ZERO, remaining - discount)
    percentage = paid / expected * HUNDRED if expected > 0 else ZERO

    return BalanceSnapshot(
        expected_amount=expected,
        paid_amount=paid,
        discount_amount=discount,
        is_exempt=is_exempt,
        remaining_amount=remaining,
        effective_remaining=effective,
        is_fully_paid=remaining <= tolerance,
        is_balance_cleared_by_discount=effective <= tolerance and remaining > tolerance,
        payment_percentage=percentage,
        collection_allowed=effective > tolerance and not is_exempt,
    )


def balance_for(
    prop: Property,
    payment: Payment | None = None,
    tolerance: Decimal = TOLERANCE,
) -> BalanceSnapshot:
    """Balance of a property, with discount/exemption from its payment."""
    if payment is None:
        return compute_balance(prop.expected_amount, prop.paid_amount, tolerance=tolerance)
    return compute_balance(
        prop.expected_amount,
        prop.paid_amount,
        payment.discount_amount,
        payment.is_exempt,
        tolerance=tolerance,
    )


def clamp_collection_amount(
    requested: Any,
    snapshot: BalanceSnapshot,
    currency: str = "USD",
) -> CollectionAmount:
    """Apply the collection-input policy to a requested amount.

    The amount is rounded to cents. Amounts above the effective remaining
    balance are capped, not rejected; the result carries a notice for the
    collector. The cap is rounded down so a collection never exceeds what
    is owed.

    Raises
    ------
    InvalidAmountError
        If the requested amount is not a number or is below one cent.
    """
    amount = to_cents(requested)
    if amount <= 0:
        raise InvalidAmountError("Please enter a valid amount greater than 0")

    if amount > snapshot.effective_remaining:
        capped = snapshot.effective_remaining.quantize(CENT, rounding=ROUND_DOWN)
        return CollectionAmount(
            amount=capped,
            was_capped=True,
            notice=f"Capped to {currency} {capped:.2f}",
        )
    return CollectionAmount(amount=amount, was_capped=False)


def validate_discount(amount: Any, snapshot: BalanceSnapshot) -> Decimal:
    """Apply the discount policy: never above the current remaining amount.

    Raises
    ------
    InvalidAmountError
        If the amount is not a number or is negative.
    DiscountExceedsBalanceError
        If the amount is greater than ``snapshot.remaining_amount``.
    """
    value = to_cents(amount, "discount amount")
    if value < 0:
        raise InvalidAmountError("Discount amount cannot be negative.")
    if value > snapshot.remaining_amount:
        raise DiscountExceedsBalanceError(
            "The total discount cannot exceed the remaining balance "
            f"({snapshot.remaining_amount:.2f}).",
            remaining_amount=snapshot.remaining_amount,
        )
    return value
