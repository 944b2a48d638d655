"""Billing period arithmetic and per-cycle policy tables."""
from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone
from decimal import Decimal
from typing import Callable, Dict, Mapping, Optional, Union

from dateutil.relativedelta import relativedelta

from .models import BillingCycle

CYCLE_LENGTHS: Dict[BillingCycle, relativedelta] = {
    BillingCycle.MONTHLY: relativedelta(months=1),
    BillingCycle.QUARTERLY: relativedelta(months=3),
    BillingCycle.ANNUAL: relativedelta(years=1),
    # One-time plans have no term of their own yet; they run for a year.
    BillingCycle.ONE_TIME: relativedelta(years=1),
}

# Months covered by one payment for cycles that count as recurring revenue.
# Cycles mapped to ``None`` are left out of MRR and ARR entirely.
RECURRING_REVENUE_POLICY: Mapping[BillingCycle, Optional[int]] = {
    BillingCycle.MONTHLY: 1,
    BillingCycle.ANNUAL: 12,
    BillingCycle.QUARTERLY: None,
    BillingCycle.ONE_TIME: None,
}


def current_time(clock: Optional[Callable[[], datetime]]) -> datetime:
    if clock is None:
        return datetime.now(timezone.utc)
    return as_utc(clock())


def as_utc(value: Union[datetime, date]) -> datetime:
    """Normalize naive datetimes and bare dates to aware UTC datetimes."""

    if not isinstance(value, datetime):
        value = datetime.combine(value, time.min)
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def advance_period(start: datetime, billing_cycle: BillingCycle) -> datetime:
    """Return the end of a period beginning at ``start``.

    Month arithmetic clamps to the last day of shorter months, so a monthly
    period starting on January 31st ends on the last day of February.
    """

    return as_utc(start) + CYCLE_LENGTHS[billing_cycle]


def renewal_reminder_date(end_date: datetime, reminder_days: int) -> datetime:
    return as_utc(end_date) - timedelta(days=max(reminder_days, 0))


def monthly_recurring_amount(
    price: Decimal,
    billing_cycle: BillingCycle,
    policy: Mapping[BillingCycle, Optional[int]] = RECURRING_REVENUE_POLICY,
) -> Decimal:
    months = policy.get(billing_cycle)
    if not months:
        return Decimal("0")
    return price / months


def annual_recurring_amount(
    price: Decimal,
    billing_cycle: BillingCycle,
    policy: Mapping[BillingCycle, Optional[int]] = RECURRING_REVENUE_POLICY,
) -> Decimal:
    months = policy.get(billing_cycle)
    if not months:
        return Decimal("0")
    return price * 12 / months


__all__ = [
    "CYCLE_LENGTHS",
    "RECURRING_REVENUE_POLICY",
    "advance_period",
    "annual_recurring_amount",
    "as_utc",
    "current_time",
    "monthly_recurring_amount",
    "renewal_reminder_date",
]
