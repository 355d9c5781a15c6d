"""Unit tests for money helpers and billing period arithmetic."""
from datetime import datetime
from decimal import Decimal

from booking_billing.models.plan import BillingInterval
from booking_billing.utils.money import clamp, get_currency_decimal_places, round2, to_decimal, to_minor_units
from booking_billing.utils.periods import add_interval


def test_round2_rounds_half_away_from_zero() -> None:
    assert round2(Decimal("0.125")) == Decimal("0.13")
    assert round2("2.675") == Decimal("2.68")
    assert round2(Decimal("51.6129")) == Decimal("51.61")
    assert round2(Decimal("-0.125")) == Decimal("-0.13")


def test_to_decimal_avoids_float_artefacts() -> None:
    assert to_decimal(0.1) == Decimal("0.1")
    assert to_decimal(7) == Decimal("7")
    assert to_decimal("19.99") == Decimal("19.99")


def test_clamp_bounds_value() -> None:
    assert clamp(Decimal("120"), Decimal("0"), Decimal("100")) == Decimal("100")
    assert clamp(Decimal("-5"), Decimal("0"), Decimal("100")) == Decimal("0")
    assert clamp(Decimal("42.50"), Decimal("0"), Decimal("100")) == Decimal("42.50")


def test_minor_units_respect_currency_exponent() -> None:
    assert get_currency_decimal_places("try") == 2
    assert get_currency_decimal_places("JPY") == 0
    assert to_minor_units(Decimal("103.23"), "TRY") == 10323
    assert to_minor_units(Decimal("0.005"), "TRY") == 1
    assert to_minor_units(Decimal("1000"), "JPY") == 1000


def test_monthly_interval_clamps_to_month_end() -> None:
    assert add_interval(datetime(2026, 1, 31, 10, 0), BillingInterval.MONTHLY) == datetime(2026, 2, 28, 10, 0)
    assert add_interval(datetime(2026, 3, 15), BillingInterval.MONTHLY, count=2) == datetime(2026, 5, 15)


def test_yearly_interval_handles_leap_day() -> None:
    assert add_interval(datetime(2024, 2, 29), BillingInterval.YEARLY) == datetime(2025, 2, 28)
