"""Billing period arithmetic on calendar intervals."""
from datetime import datetime

from dateutil.relativedelta import relativedelta

from booking_billing.models.plan import BillingInterval


def add_interval(start: datetime, interval: BillingInterval, count: int = 1) -> datetime:
    """
    Advance a timestamp by whole billing intervals.

    Calendar arithmetic is used so Jan 31 + 1 month lands on the last day of
    February rather than drifting into March.

    Args:
        start: Period start
        interval: Plan billing interval
        count: Number of intervals to add

    Returns:
        End of the period
    """
    if interval == BillingInterval.YEARLY:
        return start + relativedelta(years=count)
    return start + relativedelta(months=count)
