"""Daily pass over active memberships: reminders, auto-renewals and expiry."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Optional, Sequence, Tuple

from .display import days_until_expiration
from .events import RenewalNotifier
from .lifecycle import MembershipLifecycleManager
from .models import (
    Membership,
    MembershipStatus,
    PaymentMethod,
    RenewalSweepSummary,
    SweepError,
)
from .periods import as_utc, current_time
from .repository import MembershipRepository

logger = logging.getLogger(__name__)

DEFAULT_REMINDER_TIERS: Tuple[int, ...] = (30, 7)
DEFAULT_REMINDER_RESEND_DAYS = 25
# No reminders inside the final day; expiry handles it.
_FINAL_REMINDER_FLOOR = timedelta(days=1)


def can_auto_renew(membership: Membership) -> bool:
    """Only processor-billed memberships renew without customer action."""

    return (
        membership.auto_renew
        and membership.payment_method == PaymentMethod.STRIPE
        and bool(membership.external_subscription_id)
    )


@dataclass
class RenewalSweeper:
    lifecycle: MembershipLifecycleManager
    repository: MembershipRepository
    notifier: RenewalNotifier
    reminder_tiers: Sequence[int] = DEFAULT_REMINDER_TIERS
    reminder_resend_days: int = DEFAULT_REMINDER_RESEND_DAYS
    clock: Optional[Callable[[], datetime]] = None

    def sweep(self, contractor_id: str, now: Optional[datetime] = None) -> RenewalSweepSummary:
        now = as_utc(now) if now is not None else current_time(self.clock)
        processed = reminders = renewed = expired = 0
        errors = []

        for membership in self.repository.list_memberships(contractor_id, status=MembershipStatus.ACTIVE):
            processed += 1
            try:
                if as_utc(membership.end_date) <= now:
                    if can_auto_renew(membership):
                        self._auto_renew(membership, now)
                        renewed += 1
                    else:
                        self._expire(membership, now)
                        expired += 1
                    continue

                tier = self._due_tier(membership, now)
                if tier is not None:
                    self._remind(membership, tier, now)
                    reminders += 1
            except Exception as exc:
                logger.exception(
                    "Renewal sweep failed for membership %s",
                    membership.id,
                    extra={"contractor_id": contractor_id},
                )
                errors.append(SweepError(membership_id=membership.id, error=str(exc)))

        return RenewalSweepSummary(
            processed=processed,
            reminders_sent=reminders,
            auto_renewed=renewed,
            expired=expired,
            errors=errors,
        )

    def sweep_all(self, now: Optional[datetime] = None) -> RenewalSweepSummary:
        now = as_utc(now) if now is not None else current_time(self.clock)
        summary = RenewalSweepSummary()
        for contractor_id in self.repository.list_contractor_ids():
            summary = summary.merge(self.sweep(contractor_id, now))
        return summary

    def _due_tier(self, membership: Membership, now: datetime) -> Optional[int]:
        """Return the reminder tier ``membership`` falls in, unless it was already reminded."""

        end = as_utc(membership.end_date)
        tiers = sorted(self.reminder_tiers, reverse=True)
        for index, tier in enumerate(tiers):
            if index + 1 < len(tiers):
                floor = now + timedelta(days=tiers[index + 1])
            else:
                floor = now + _FINAL_REMINDER_FLOOR
            if floor < end <= now + timedelta(days=tier):
                last = membership.reminders_sent.get(str(tier))
                if last is not None and now - as_utc(last) < timedelta(days=self.reminder_resend_days):
                    return None
                return tier
        return None

    def _remind(self, membership: Membership, tier: int, now: datetime) -> None:
        stored = self.lifecycle.record_reminder(
            membership.contractor_id,
            membership.id,
            tier,
            now=now,
            expected_version=membership.version,
        )
        self.notifier.notify_renewal_reminder(stored, days_until_expiration(stored.end_date, now))

    def _auto_renew(self, membership: Membership, now: datetime) -> None:
        stored = self.lifecycle.renew(
            membership.contractor_id,
            membership.id,
            now=now,
            expected_version=membership.version,
        )
        self.notifier.notify_auto_renewed(stored)

    def _expire(self, membership: Membership, now: datetime) -> None:
        stored = self.lifecycle.mark_expired(
            membership.contractor_id,
            membership.id,
            now=now,
            expected_version=membership.version,
        )
        self.notifier.notify_expired(stored)


__all__ = [
    "DEFAULT_REMINDER_RESEND_DAYS",
    "DEFAULT_REMINDER_TIERS",
    "RenewalSweeper",
    "can_auto_renew",
]
