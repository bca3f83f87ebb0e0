"""Unit tests for reserve arithmetic"""

import pytest
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from reserve_engine.domain.exceptions import InsufficientReserveError, ValidationError
from reserve_engine.domain.reserve import (
    balance_after_adjustment,
    balance_after_release,
    compute_hold_amount,
    require_minor_units,
    scheduled_release_date,
    split_chargeback_debit,
    validate_hold_request,
)


def test_compute_hold_amount_exact():
    """Test 10% of 10000 minor units"""
    assert compute_hold_amount(10000, Decimal("0.10")) == 1000


def test_compute_hold_amount_rounds_half_up():
    """Test half a minor unit rounds away from zero"""
    assert compute_hold_amount(10005, Decimal("0.10")) == 1001  # 1000.5
    assert compute_hold_amount(10004, Decimal("0.10")) == 1000  # 1000.4


def test_compute_hold_amount_avoids_float_drift():
    """Test float input is parsed through its decimal string"""
    # 0.07 * 150 is 10.500000000000002 in binary floating point
    assert compute_hold_amount(150, 0.07) == 11
    assert compute_hold_amount(150, "0.07") == 11


def test_compute_hold_amount_large_values():
    """Test amounts beyond 64-bit range stay exact"""
    huge = 10**30
    assert compute_hold_amount(huge, Decimal("0.25")) == huge // 4


@pytest.mark.parametrize(
    "amount,pct,days",
    [
        (0, Decimal("0.10"), 90),
        (-100, Decimal("0.10"), 90),
        (10000, Decimal("-0.01"), 90),
        (10000, Decimal("1.01"), 90),
        (10000, Decimal("0.10"), 0),
        (10000, "not-a-number", 90),
        (10000, "NaN", 90),
    ],
)
def test_validate_hold_request_rejects(amount, pct, days):
    with pytest.raises(ValidationError):
        validate_hold_request(amount, pct, days)


def test_validate_hold_request_bounds_inclusive():
    assert validate_hold_request(100, 0, 1) == Decimal("0")
    assert validate_hold_request(100, 1, 1) == Decimal("1")


def test_scheduled_release_date():
    now = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)
    assert scheduled_release_date(now, 90) == now + timedelta(days=90)


def test_release_cannot_exceed_balance():
    assert balance_after_release(1000, 1000) == 0
    with pytest.raises(InsufficientReserveError):
        balance_after_release(1000, 1001)


def test_adjustment_cannot_go_negative():
    assert balance_after_adjustment(1000, -1000) == 0
    assert balance_after_adjustment(1000, 250) == 1250
    with pytest.raises(InsufficientReserveError):
        balance_after_adjustment(1000, -1001)


def test_split_chargeback_debit():
    """Test partial debit caps at the balance and reports the shortfall"""
    assert split_chargeback_debit(1000, 400) == (400, 0)
    assert split_chargeback_debit(1000, 1000) == (1000, 0)
    assert split_chargeback_debit(300, 500) == (300, 200)
    assert split_chargeback_debit(0, 500) == (0, 500)


@pytest.mark.parametrize("amount", [0.9, 10.5, 10.0, Decimal("10"), True, False, "100", None])
def test_require_minor_units_rejects_non_integers(amount):
    with pytest.raises(ValidationError):
        require_minor_units(amount)


def test_require_minor_units_accepts_ints():
    assert require_minor_units(0) == 0
    assert require_minor_units(-250) == -250
    assert require_minor_units(10**30) == 10**30


def test_fractional_source_amount_is_not_truncated():
    """Test 0.9 at 100% is rejected instead of silently becoming a zero hold"""
    with pytest.raises(ValidationError):
        validate_hold_request(0.9, Decimal("1"), 1)
    with pytest.raises(ValidationError):
        compute_hold_amount(0.9, Decimal("1"))
