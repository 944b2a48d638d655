"""Read-only reporting over a contractor's plans and memberships."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import Callable, Dict, List, Mapping, Optional

from .models import BillingCycle, Membership, MembershipStats, MembershipStatus, PlanStats
from .periods import (
    RECURRING_REVENUE_POLICY,
    annual_recurring_amount,
    as_utc,
    current_time,
    monthly_recurring_amount,
)
from .repository import MembershipRepository

EXPIRING_WINDOW_DAYS = 30


@dataclass
class AnalyticsAggregator:
    repository: MembershipRepository
    clock: Optional[Callable[[], datetime]] = None
    expiring_window_days: int = EXPIRING_WINDOW_DAYS
    recurring_revenue_policy: Mapping[BillingCycle, Optional[int]] = field(
        default_factory=lambda: dict(RECURRING_REVENUE_POLICY)
    )

    def list_expiring(
        self,
        contractor_id: str,
        within_days: int = EXPIRING_WINDOW_DAYS,
        *,
        now: Optional[datetime] = None,
    ) -> List[Membership]:
        """Active memberships ending between now and ``within_days`` from now, soonest first."""

        now = as_utc(now) if now is not None else current_time(self.clock)
        horizon = now + timedelta(days=within_days)
        active = self.repository.list_memberships(contractor_id, status=MembershipStatus.ACTIVE)
        expiring = [m for m in active if now <= as_utc(m.end_date) <= horizon]
        return sorted(expiring, key=lambda m: as_utc(m.end_date))

    def compute_stats(self, contractor_id: str, *, now: Optional[datetime] = None) -> MembershipStats:
        now = as_utc(now) if now is not None else current_time(self.clock)
        horizon = now + timedelta(days=self.expiring_window_days)
        memberships = self.repository.list_memberships(contractor_id)
        plans = self.repository.list_plans(contractor_id, include_inactive=True)

        # Plain dicts while accumulating; frozen models are built at the end.
        plan_totals: Dict[str, Dict[str, object]] = {
            plan.id: {
                "plan_id": plan.id,
                "plan_name": plan.name,
                "price": plan.price,
                "billing_cycle": plan.billing_cycle,
                "active_members": 0,
                "total_members": 0,
                "revenue": Decimal("0"),
            }
            for plan in plans
        }

        counts = {status: 0 for status in MembershipStatus}
        expiring = 0
        renewals = 0
        total_revenue = Decimal("0")
        mrr = Decimal("0")
        arr = Decimal("0")
        savings = Decimal("0")

        for membership in memberships:
            counts[membership.status] += 1
            savings += membership.total_savings
            if membership.renewed_at is not None:
                renewals += 1

            plan_entry = plan_totals.get(membership.plan_id)
            if plan_entry is not None:
                plan_entry["total_members"] += 1
                plan_entry["revenue"] += membership.price

            if not membership.is_active:
                continue

            total_revenue += membership.price
            mrr += monthly_recurring_amount(
                membership.price, membership.billing_cycle, self.recurring_revenue_policy
            )
            arr += annual_recurring_amount(
                membership.price, membership.billing_cycle, self.recurring_revenue_policy
            )
            if plan_entry is not None:
                plan_entry["active_members"] += 1
            if now <= as_utc(membership.end_date) <= horizon:
                expiring += 1

        active = counts[MembershipStatus.ACTIVE]
        expired = counts[MembershipStatus.EXPIRED]
        cancelled = counts[MembershipStatus.CANCELLED]

        average_savings = Decimal("0")
        if active:
            average_savings = (savings / active).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)

        completed = expired + cancelled + renewals
        renewal_rate = (renewals / completed) * 100 if completed else 0.0

        plan_stats = {plan_id: PlanStats(**values) for plan_id, values in plan_totals.items()}
        most_popular: Optional[PlanStats] = None
        for stats in plan_stats.values():
            if most_popular is None or stats.active_members > most_popular.active_members:
                most_popular = stats

        return MembershipStats(
            total_members=len(memberships),
            active_members=active,
            expired_members=expired,
            cancelled_members=cancelled,
            expiring_within_30_days=expiring,
            total_revenue=total_revenue,
            monthly_recurring_revenue=mrr,
            annual_recurring_revenue=arr,
            total_savings_provided=savings,
            average_savings_per_member=average_savings,
            plan_stats=plan_stats,
            most_popular_plan=most_popular,
            renewal_count=renewals,
            cancellation_count=cancelled,
            renewal_rate=renewal_rate,
        )


__all__ = ["AnalyticsAggregator", "EXPIRING_WINDOW_DAYS"]
