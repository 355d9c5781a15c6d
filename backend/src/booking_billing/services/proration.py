"""Proration for mid-cycle plan changes and downgrade capacity checks."""
import math
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal

from booking_billing.adapters.usage_client import ResourceUsage
from booking_billing.exceptions import CapacityError
from booking_billing.models.plan import Plan
from booking_billing.utils.money import round2, to_decimal

ONE_DAY = timedelta(days=1)


class ChangeType:
    """Direction of a plan change by price."""

    UPGRADE = "upgrade"
    DOWNGRADE = "downgrade"
    SAME = "same"


@dataclass(frozen=True)
class ProrationResult:
    """Credit for unused time on the old plan and charge for the new plan."""

    credit_amount: Decimal
    charge_amount: Decimal
    net_amount: Decimal  # negative means a credit is owed
    days_total: int
    days_remaining: int


def _ceil_days(delta: timedelta) -> int:
    return math.ceil(delta / ONE_DAY)


def prorate(
    old_plan: Plan,
    new_plan: Plan,
    period_start: datetime,
    period_end: datetime,
    now: datetime,
) -> ProrationResult:
    """
    Prorate a plan switch over the remaining whole days of the period.

    days_total and days_remaining are both rounded up to whole days, and
    days_remaining is clamped to [0, days_total]. Credit and charge are each
    rounded to two places before the net is taken.

    Args:
        old_plan: Current plan
        new_plan: Target plan
        period_start: Start of the current billing period
        period_end: End of the current billing period
        now: Time of the switch

    Returns:
        ProrationResult

    Example:
        A 100 -> 300 switch on day 15 of a 31-day period leaves 16 days:
        credit 51.61, charge 154.84, net 103.23.
    """
    days_total = max(_ceil_days(period_end - period_start), 1)
    days_remaining = min(max(_ceil_days(period_end - now), 0), days_total)

    ratio = Decimal(days_remaining) / Decimal(days_total)
    credit = round2(to_decimal(old_plan.price) * ratio)
    charge = round2(to_decimal(new_plan.price) * ratio)

    return ProrationResult(
        credit_amount=credit,
        charge_amount=charge,
        net_amount=charge - credit,
        days_total=days_total,
        days_remaining=days_remaining,
    )


def classify_change(old_plan: Plan, new_plan: Plan) -> str:
    """Upgrade when the new plan costs more, downgrade when it costs less."""
    if new_plan.price > old_plan.price:
        return ChangeType.UPGRADE
    if new_plan.price < old_plan.price:
        return ChangeType.DOWNGRADE
    return ChangeType.SAME


def check_capacity(new_plan: Plan, usage: ResourceUsage) -> None:
    """
    Make sure current usage fits the target plan's limits.

    Raises:
        CapacityError: Listing every exceeded limit
    """
    violations = []
    if not new_plan.allows(new_plan.max_businesses, usage.businesses):
        violations.append(f"businesses: {usage.businesses} in use, plan allows {new_plan.max_businesses}")
    if not new_plan.allows(new_plan.max_staff_per_business, usage.staff):
        violations.append(f"staff: {usage.staff} in use, plan allows {new_plan.max_staff_per_business}")

    if violations:
        raise CapacityError(
            f"Current usage exceeds the limits of plan {new_plan.name}",
            violations=violations,
        )
