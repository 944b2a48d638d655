"""Selling, renewing and cancelling customer memberships."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, List, Mapping, Optional, Union
from uuid import uuid4

from pydantic import ValidationError as PydanticValidationError

from .catalog import PlanCatalog
from .events import MembershipEventLogger
from .exceptions import ConcurrentModificationError, NotFoundError, ValidationError
from .models import (
    DEFAULT_REMINDER_DAYS,
    Membership,
    MembershipAuditEvent,
    MembershipAuditEventType,
    MembershipRequest,
    MembershipStatus,
    PlanSnapshot,
    ServiceUsage,
)
from .periods import advance_period, as_utc, current_time, renewal_reminder_date
from .repository import MembershipRepository

_PROTECTED_FIELDS = frozenset(
    {
        "id",
        "contractor_id",
        "plan_id",
        "plan",
        "status",
        "services_used",
        "discounts_applied",
        "fees_waived",
        "total_savings",
        "reminders_sent",
        "created_at",
        "updated_at",
        "renewed_at",
        "cancelled_at",
        "cancellation_reason",
        "version",
    }
)


def ensure_version(membership: Membership, expected_version: Optional[int]) -> None:
    """Reject a call made against a stale read of ``membership``."""

    if expected_version is not None and membership.version != expected_version:
        raise ConcurrentModificationError(
            message="Membership was modified concurrently",
            detail={
                "membership_id": membership.id,
                "expected_version": expected_version,
                "current_version": membership.version,
            },
        )


def load_membership(
    repository: MembershipRepository,
    contractor_id: str,
    membership_id: str,
    expected_version: Optional[int] = None,
) -> Membership:
    membership = repository.get_membership(contractor_id, membership_id)
    if membership is None:
        raise NotFoundError(message="Membership not found", detail={"membership_id": membership_id})
    ensure_version(membership, expected_version)
    return membership


def _blank(value: Optional[str]) -> bool:
    return value is None or not str(value).strip()


@dataclass
class MembershipLifecycleManager:
    """Owns membership status transitions and the plan member count."""

    repository: MembershipRepository
    catalog: PlanCatalog
    event_logger: MembershipEventLogger
    clock: Optional[Callable[[], datetime]] = None
    default_reminder_days: int = DEFAULT_REMINDER_DAYS

    def create(
        self,
        contractor_id: str,
        plan_id: str,
        request: Union[MembershipRequest, Mapping[str, Any]],
    ) -> Membership:
        plan = self.catalog.get(contractor_id, plan_id)
        if not plan.active:
            raise ValidationError(
                message="Plan is no longer offered",
                detail={"plan_id": plan_id},
            )

        if not isinstance(request, MembershipRequest):
            try:
                request = MembershipRequest.model_validate(request)
            except PydanticValidationError as exc:
                raise ValidationError.from_pydantic(exc) from exc

        missing = [
            field
            for field in ("customer_name", "customer_email")
            if _blank(getattr(request, field))
        ]
        if missing:
            raise ValidationError(
                message=f"Missing required customer details: {', '.join(missing)}",
                detail={"fields": missing},
            )

        now = current_time(self.clock)
        start = as_utc(request.start_date) if request.start_date else now
        end = advance_period(start, plan.billing_cycle)
        reminder_days = (
            request.renewal_reminder_days
            if request.renewal_reminder_days is not None
            else plan.renewal_reminder_days
        )

        membership = Membership(
            id=f"mem_{uuid4().hex}",
            contractor_id=contractor_id,
            plan_id=plan.id,
            plan=PlanSnapshot.from_plan(plan),
            customer_id=request.customer_id,
            customer_name=request.customer_name.strip(),
            customer_email=str(request.customer_email),
            customer_phone=request.customer_phone,
            property_id=request.property_id,
            property_address=request.property_address,
            status=MembershipStatus.ACTIVE,
            start_date=start,
            end_date=end,
            renewal_date=renewal_reminder_date(end, reminder_days),
            auto_renew=plan.auto_renew_default if request.auto_renew is None else request.auto_renew,
            payment_method=request.payment_method,
            external_subscription_id=request.external_subscription_id,
            services_used=[ServiceUsage.from_included(service) for service in plan.included_services],
            notes=request.notes,
            created_at=now,
            updated_at=now,
        )
        stored = self.repository.insert_membership(membership, member_count_delta=1)
        self._log(
            MembershipAuditEventType.MEMBERSHIP_CREATED,
            stored,
            {"customer_id": stored.customer_id or "", "end_date": stored.end_date.isoformat()},
        )
        return stored

    def get(self, contractor_id: str, membership_id: str) -> Membership:
        return load_membership(self.repository, contractor_id, membership_id)

    def list(
        self,
        contractor_id: str,
        *,
        status: Optional[MembershipStatus] = None,
        customer_id: Optional[str] = None,
    ) -> List[Membership]:
        return list(self.repository.list_memberships(contractor_id, status=status, customer_id=customer_id))

    def get_for_customer(self, contractor_id: str, customer_id: str) -> Optional[Membership]:
        """Return the customer's most recent active membership, if any."""

        memberships = self.repository.list_memberships(
            contractor_id,
            status=MembershipStatus.ACTIVE,
            customer_id=customer_id,
        )
        return memberships[0] if memberships else None

    def cancel(
        self,
        contractor_id: str,
        membership_id: str,
        reason: str = "",
        *,
        expected_version: Optional[int] = None,
    ) -> Membership:
        membership = load_membership(self.repository, contractor_id, membership_id, expected_version)
        if membership.status == MembershipStatus.CANCELLED:
            return membership

        now = current_time(self.clock)
        cancelled = membership.model_copy(
            update={
                "status": MembershipStatus.CANCELLED,
                "auto_renew": False,
                "cancelled_at": now,
                "cancellation_reason": reason,
                "updated_at": now,
            }
        )
        stored = self.repository.save_membership(
            cancelled,
            expected_version=membership.version,
            member_count_delta=-1,
        )
        self._log(MembershipAuditEventType.MEMBERSHIP_CANCELLED, stored, {"reason": reason})
        return stored

    def renew(
        self,
        contractor_id: str,
        membership_id: str,
        *,
        now: Optional[datetime] = None,
        expected_version: Optional[int] = None,
    ) -> Membership:
        """Start a fresh period at ``now`` and clear quota usage.

        Works from any status. The period length comes from the membership's
        own snapshot; only the reminder lead time is read from the live plan.
        """

        membership = load_membership(self.repository, contractor_id, membership_id, expected_version)
        now = as_utc(now) if now is not None else current_time(self.clock)

        plan = self.repository.get_plan(contractor_id, membership.plan_id)
        reminder_days = plan.renewal_reminder_days if plan is not None else self.default_reminder_days
        end = advance_period(now, membership.billing_cycle)

        renewed = membership.model_copy(
            update={
                "status": MembershipStatus.ACTIVE,
                "start_date": now,
                "end_date": end,
                "renewal_date": renewal_reminder_date(end, reminder_days),
                "services_used": [usage.reset() for usage in membership.services_used],
                "reminders_sent": {},
                "renewed_at": now,
                "updated_at": now,
            }
        )
        was_cancelled = membership.status == MembershipStatus.CANCELLED
        stored = self.repository.save_membership(
            renewed,
            expected_version=membership.version,
            member_count_delta=1 if was_cancelled else 0,
        )
        self._log(
            MembershipAuditEventType.MEMBERSHIP_RENEWED,
            stored,
            {"previous_status": membership.status.value, "end_date": end.isoformat()},
        )
        return stored

    def update(
        self,
        contractor_id: str,
        membership_id: str,
        fields: Mapping[str, Any],
        *,
        expected_version: Optional[int] = None,
    ) -> Membership:
        protected = sorted(_PROTECTED_FIELDS.intersection(fields))
        if protected:
            raise ValidationError(
                message=f"Fields cannot be updated: {', '.join(protected)}",
                detail={"fields": protected},
            )
        unknown = sorted(set(fields).difference(Membership.model_fields))
        if unknown:
            raise ValidationError(
                message=f"Unknown fields: {', '.join(unknown)}",
                detail={"fields": unknown},
            )

        membership = load_membership(self.repository, contractor_id, membership_id, expected_version)
        try:
            patched = Membership.model_validate(
                {**membership.model_dump(), **fields, "updated_at": current_time(self.clock)}
            )
        except PydanticValidationError as exc:
            raise ValidationError.from_pydantic(exc) from exc

        stored = self.repository.save_membership(patched, expected_version=membership.version)
        self._log(
            MembershipAuditEventType.MEMBERSHIP_UPDATED,
            stored,
            {"fields": ",".join(sorted(fields))},
        )
        return stored

    def mark_expired(
        self,
        contractor_id: str,
        membership_id: str,
        *,
        now: Optional[datetime] = None,
        expected_version: Optional[int] = None,
    ) -> Membership:
        membership = load_membership(self.repository, contractor_id, membership_id, expected_version)
        if membership.status != MembershipStatus.ACTIVE:
            return membership

        now = as_utc(now) if now is not None else current_time(self.clock)
        expired = membership.model_copy(update={"status": MembershipStatus.EXPIRED, "updated_at": now})
        stored = self.repository.save_membership(expired, expected_version=membership.version)
        self._log(
            MembershipAuditEventType.MEMBERSHIP_EXPIRED,
            stored,
            {"end_date": stored.end_date.isoformat()},
        )
        return stored

    def record_reminder(
        self,
        contractor_id: str,
        membership_id: str,
        tier: int,
        *,
        now: Optional[datetime] = None,
        expected_version: Optional[int] = None,
    ) -> Membership:
        membership = load_membership(self.repository, contractor_id, membership_id, expected_version)
        now = as_utc(now) if now is not None else current_time(self.clock)
        reminded = membership.model_copy(
            update={"reminders_sent": {**membership.reminders_sent, str(tier): now}, "updated_at": now}
        )
        stored = self.repository.save_membership(reminded, expected_version=membership.version)
        self._log(MembershipAuditEventType.RENEWAL_REMINDER_SENT, stored, {"tier": str(tier)})
        return stored

    def _log(
        self,
        event_type: MembershipAuditEventType,
        membership: Membership,
        metadata: Dict[str, str],
    ) -> None:
        self.event_logger.log(
            MembershipAuditEvent(
                event_type=event_type,
                contractor_id=membership.contractor_id,
                plan_id=membership.plan_id,
                membership_id=membership.id,
                metadata=metadata,
                occurred_at=membership.updated_at,
            )
        )


__all__ = ["MembershipLifecycleManager", "ensure_version", "load_membership"]
