"""Reserve arithmetic - pure functions for hold sizing and balance checks"""

from datetime import datetime, timedelta
from decimal import Decimal, ROUND_HALF_UP, InvalidOperation, localcontext
from typing import Any, Tuple, Union
from reserve_engine.domain.exceptions import ValidationError, InsufficientReserveError

Percentage = Union[Decimal, float, int, str]


def to_decimal_percentage(reserve_percentage: Percentage) -> Decimal:
    """Convert a reserve percentage (0..1) to Decimal without float drift"""
    try:
        pct = Decimal(str(reserve_percentage))
    except (InvalidOperation, ValueError) as e:
        raise ValidationError(f"Invalid reserve percentage: {reserve_percentage!r}") from e
    if not pct.is_finite():
        raise ValidationError("Reserve percentage must be finite")
    return pct


def require_minor_units(amount: Any, label: str = "Amount") -> int:
    """Money is whole minor units; floats, Decimals and bools are rejected rather than truncated"""
    if isinstance(amount, bool) or not isinstance(amount, int):
        raise ValidationError(f"{label} must be an integer number of minor units, got {amount!r}")
    return amount


def validate_hold_request(source_amount: int, reserve_percentage: Percentage, hold_days: int) -> Decimal:
    """Reject bad hold parameters before the store is touched; returns the parsed percentage"""
    require_minor_units(source_amount, "Transaction amount")
    if isinstance(hold_days, bool) or not isinstance(hold_days, int):
        raise ValidationError(f"Hold days must be a whole number, got {hold_days!r}")
    if source_amount <= 0:
        raise ValidationError("Transaction amount must be positive")
    pct = to_decimal_percentage(reserve_percentage)
    if pct < 0 or pct > 1:
        raise ValidationError("Reserve percentage must be between 0 and 1")
    if hold_days <= 0:
        raise ValidationError("Hold days must be positive")
    return pct


def compute_hold_amount(source_amount: int, reserve_percentage: Percentage) -> int:
    """
    Portion of a processed amount withheld into reserve.

    Rounds half away from zero to whole minor units:
        10000 * 0.10  -> 1000
        10005 * 0.10  -> 1001 (1000.5 rounds up)
    """
    pct = to_decimal_percentage(reserve_percentage)
    amount = require_minor_units(source_amount, "Transaction amount")
    # Precision must cover every digit of the exact product
    with localcontext() as ctx:
        ctx.prec = max(ctx.prec, len(str(abs(amount))) + len(pct.as_tuple().digits) + 2)
        exact = Decimal(amount) * pct
        return int(exact.quantize(Decimal(1), rounding=ROUND_HALF_UP))


def scheduled_release_date(now: datetime, hold_days: int) -> datetime:
    return now + timedelta(days=hold_days)


def require_positive(amount: int, message: str) -> None:
    if amount is None:
        raise ValidationError(message)
    require_minor_units(amount)
    if amount <= 0:
        raise ValidationError(message)


def balance_after_release(balance: int, amount: int) -> int:
    if amount > balance:
        raise InsufficientReserveError("Release amount exceeds available reserve balance")
    return balance - amount


def balance_after_adjustment(balance: int, amount: int) -> int:
    new_balance = balance + amount
    if new_balance < 0:
        raise InsufficientReserveError("Adjustment would result in negative reserve balance")
    return new_balance


def split_chargeback_debit(balance: int, requested_amount: int) -> Tuple[int, int]:
    """
    Partial-debit policy: debit what the reserve can cover, report the rest.

    Returns (debited_amount, remaining_unfunded). The balance never goes negative.
    """
    debited = min(requested_amount, max(balance, 0))
    return debited, requested_amount - debited
