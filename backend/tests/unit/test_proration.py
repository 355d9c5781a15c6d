"""Unit tests for plan change proration and downgrade capacity checks."""
from datetime import datetime
from decimal import Decimal

import pytest

from booking_billing.adapters.usage_client import ResourceUsage
from booking_billing.exceptions import CapacityError
from booking_billing.models.plan import UNLIMITED, Plan
from booking_billing.services.proration import ChangeType, check_capacity, classify_change, prorate

PERIOD_START = datetime(2026, 1, 1)
PERIOD_END = datetime(2026, 2, 1)  # 31 days


def _plan(price: str, **limits) -> Plan:
    return Plan(name=f"plan-{price}", display_name=price, price=Decimal(price), currency="TRY", **limits)


def test_upgrade_mid_period_charges_difference_for_remaining_days() -> None:
    result = prorate(_plan("100"), _plan("300"), PERIOD_START, PERIOD_END, datetime(2026, 1, 16))

    assert result.days_total == 31
    assert result.days_remaining == 16
    assert result.credit_amount == Decimal("51.61")
    assert result.charge_amount == Decimal("154.84")
    assert result.net_amount == Decimal("103.23")


def test_partial_days_are_rounded_up() -> None:
    result = prorate(_plan("100"), _plan("300"), PERIOD_START, PERIOD_END, datetime(2026, 1, 16, 0, 0, 1))

    # 15 days and 23:59:59 left counts as 16 days
    assert result.days_remaining == 16


def test_switch_after_period_end_is_free() -> None:
    result = prorate(_plan("100"), _plan("300"), PERIOD_START, PERIOD_END, datetime(2026, 2, 3))

    assert result.days_remaining == 0
    assert result.credit_amount == Decimal("0.00")
    assert result.charge_amount == Decimal("0.00")
    assert result.net_amount == Decimal("0.00")


def test_switch_before_period_start_covers_whole_period() -> None:
    result = prorate(_plan("100"), _plan("300"), PERIOD_START, PERIOD_END, datetime(2025, 12, 20))

    assert result.days_remaining == result.days_total == 31
    assert result.net_amount == Decimal("200.00")


def test_downgrade_proration_is_a_credit() -> None:
    result = prorate(_plan("300"), _plan("100"), PERIOD_START, PERIOD_END, datetime(2026, 1, 16))

    assert result.net_amount == Decimal("-103.23")


def test_classify_change_by_price() -> None:
    assert classify_change(_plan("100"), _plan("300")) == ChangeType.UPGRADE
    assert classify_change(_plan("300"), _plan("100")) == ChangeType.DOWNGRADE
    assert classify_change(_plan("100"), _plan("100.00")) == ChangeType.SAME


def test_capacity_check_lists_every_violation() -> None:
    plan = _plan("100", max_businesses=1, max_staff_per_business=5)

    with pytest.raises(CapacityError) as exc_info:
        check_capacity(plan, ResourceUsage(businesses=2, staff=7))

    violations = exc_info.value.violations
    assert len(violations) == 2
    assert any(v.startswith("businesses") for v in violations)
    assert any(v.startswith("staff: 7") for v in violations)
    assert exc_info.value.status_code == 422


def test_capacity_check_allows_usage_at_limit_and_unlimited() -> None:
    check_capacity(_plan("100", max_businesses=1, max_staff_per_business=5), ResourceUsage(businesses=1, staff=5))
    check_capacity(
        _plan("100", max_businesses=UNLIMITED, max_staff_per_business=UNLIMITED),
        ResourceUsage(businesses=40, staff=900),
    )
