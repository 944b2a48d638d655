"""Applying membership benefits to jobs and quotes."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Callable, Dict, Mapping, Optional, Union

from pydantic import ValidationError as PydanticValidationError

from .events import MembershipEventLogger
from .exceptions import InvalidStateError, ValidationError
from .lifecycle import load_membership
from .models import (
    BenefitLine,
    BenefitSummary,
    DiscountRecord,
    DiscountResult,
    FeeWaiver,
    FeeWaiverResult,
    IncludedServiceBenefit,
    Membership,
    MembershipAuditEvent,
    MembershipAuditEventType,
    Quote,
    ServiceAvailability,
    ServiceUsageResult,
)
from .periods import current_time
from .repository import MembershipRepository

CENT = Decimal("0.01")

QUOTA_EXHAUSTED_MESSAGE = "All included services have been used"


def _to_amount(value: Any, field: str) -> Decimal:
    try:
        amount = value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, ValueError) as exc:
        raise ValidationError(message=f"{field} must be a number", detail={"field": field}) from exc
    if not amount.is_finite() or amount < 0:
        raise ValidationError(message=f"{field} must be zero or greater", detail={"field": field})
    return amount


def percentage_of(total: Decimal, percent: Optional[Decimal]) -> Decimal:
    """Return ``percent`` of ``total`` rounded half-up to whole cents."""

    if not percent:
        return Decimal("0.00")
    return (total * percent / Decimal(100)).quantize(CENT, rounding=ROUND_HALF_UP)


@dataclass
class BenefitEngine:
    """Mutates savings ledgers and service quotas on active memberships.

    Every mutating call accepts ``expected_version``. When supplied, a call
    made against a stale read fails with ``ConcurrentModificationError``
    before anything is written. The store write is itself conditional on the
    version loaded here, so two racing calls never both succeed.
    """

    repository: MembershipRepository
    event_logger: MembershipEventLogger
    clock: Optional[Callable[[], datetime]] = None

    def apply_discount(
        self,
        contractor_id: str,
        membership_id: str,
        job_id: str,
        original_total: Any,
        *,
        expected_version: Optional[int] = None,
    ) -> DiscountResult:
        total = _to_amount(original_total, "original_total")
        membership = self._load_active(contractor_id, membership_id, expected_version)
        now = current_time(self.clock)

        percent = membership.benefits.discount_percent or Decimal("0")
        amount = percentage_of(total, percent)
        record = DiscountRecord(
            job_id=job_id,
            original_total=total,
            discount_percent=percent,
            discount_amount=amount,
            date=now,
        )
        stored = self._save(
            membership,
            {
                "discounts_applied": [*membership.discounts_applied, record],
                "total_savings": membership.total_savings + amount,
                "updated_at": now,
            },
        )
        self._log(
            MembershipAuditEventType.DISCOUNT_APPLIED,
            stored,
            {"job_id": job_id, "discount_amount": str(amount)},
        )
        return DiscountResult(
            discount_percent=percent,
            discount_amount=amount,
            new_total=total - amount,
            total_savings=stored.total_savings,
            membership=stored,
        )

    def waive_fee(
        self,
        contractor_id: str,
        membership_id: str,
        job_id: str,
        fee_type: str,
        fee_amount: Any,
        *,
        expected_version: Optional[int] = None,
    ) -> FeeWaiverResult:
        """Record a waived fee. Requires an active membership, like discounts."""

        if not fee_type or not fee_type.strip():
            raise ValidationError(message="fee_type is required", detail={"field": "fee_type"})
        amount = _to_amount(fee_amount, "fee_amount")
        membership = self._load_active(contractor_id, membership_id, expected_version)
        now = current_time(self.clock)

        waiver = FeeWaiver(job_id=job_id, fee_type=fee_type.strip(), fee_amount=amount, date=now)
        stored = self._save(
            membership,
            {
                "fees_waived": [*membership.fees_waived, waiver],
                "total_savings": membership.total_savings + amount,
                "updated_at": now,
            },
        )
        self._log(
            MembershipAuditEventType.FEE_WAIVED,
            stored,
            {"job_id": job_id, "fee_type": waiver.fee_type, "fee_amount": str(amount)},
        )
        return FeeWaiverResult(
            fee_type=waiver.fee_type,
            fee_amount=amount,
            total_savings=stored.total_savings,
            membership=stored,
        )

    def record_service_usage(
        self,
        contractor_id: str,
        membership_id: str,
        service_type: str,
        job_id: str,
        *,
        expected_version: Optional[int] = None,
    ) -> ServiceUsageResult:
        membership = self._load_active(contractor_id, membership_id, expected_version)
        usage = membership.find_service(service_type)
        if usage is None:
            raise ValidationError(
                message="Service not included in plan",
                detail={"service_type": service_type},
            )

        if usage.is_exhausted:
            self._log(
                MembershipAuditEventType.SERVICE_QUOTA_EXHAUSTED,
                membership,
                {"service_type": service_type, "job_id": job_id},
                occurred_at=current_time(self.clock),
            )
            return ServiceUsageResult(
                success=False,
                used_count=usage.used_count,
                included_count=usage.included_count,
                remaining_count=0,
                message=QUOTA_EXHAUSTED_MESSAGE,
                membership=membership,
            )

        now = current_time(self.clock)
        consumed = usage.consume(job_id, now)
        services_used = [
            consumed if entry.service_type == service_type else entry
            for entry in membership.services_used
        ]
        stored = self._save(membership, {"services_used": services_used, "updated_at": now})
        self._log(
            MembershipAuditEventType.SERVICE_USED,
            stored,
            {
                "service_type": service_type,
                "job_id": job_id,
                "used_count": str(consumed.used_count),
            },
        )
        return ServiceUsageResult(
            success=True,
            used_count=consumed.used_count,
            included_count=consumed.included_count,
            remaining_count=consumed.remaining_count,
            message=f"{consumed.remaining_count} of {consumed.included_count} remaining",
            membership=stored,
        )

    @staticmethod
    def check_service_availability(
        membership: Optional[Membership],
        service_type: str,
    ) -> ServiceAvailability:
        if membership is None or not membership.is_active:
            return ServiceAvailability(available=False, reason="No active membership")

        usage = membership.find_service(service_type)
        if usage is None:
            return ServiceAvailability(available=False, reason="Service not included in plan")

        remaining = usage.remaining_count
        return ServiceAvailability(
            available=remaining > 0,
            reason="Service available" if remaining > 0 else "All included services used",
            used_count=usage.used_count,
            included_count=usage.included_count,
            remaining_count=remaining,
        )

    @staticmethod
    def calculate_membership_benefits(
        membership: Optional[Membership],
        quote: Union[Quote, Mapping[str, Any]],
    ) -> Optional[BenefitSummary]:
        """Describe what the membership would take off ``quote`` without writing anything."""

        if membership is None or not membership.is_active:
            return None

        if not isinstance(quote, Quote):
            try:
                quote = Quote.model_validate(quote)
            except PydanticValidationError as exc:
                raise ValidationError.from_pydantic(exc) from exc

        benefits = membership.benefits
        discounts = []
        waived = []
        included = []

        if benefits.discount_percent and quote.subtotal:
            discounts.append(
                BenefitLine(
                    type="percentage",
                    description=f"Member Discount ({benefits.discount_percent.normalize():f}%)",
                    amount=percentage_of(quote.subtotal, benefits.discount_percent),
                )
            )

        if benefits.waive_diagnostic_fee and quote.diagnostic_fee:
            waived.append(
                BenefitLine(type="diagnostic", description="Diagnostic Fee Waived", amount=quote.diagnostic_fee)
            )

        if benefits.waive_trip_fee and quote.trip_fee:
            waived.append(BenefitLine(type="trip", description="Trip Fee Waived", amount=quote.trip_fee))

        if quote.service_type:
            availability = BenefitEngine.check_service_availability(membership, quote.service_type)
            if availability.available:
                included.append(
                    IncludedServiceBenefit(
                        service_type=quote.service_type,
                        description="Included Service",
                        remaining_count=availability.remaining_count or 0,
                    )
                )

        total_discount = sum((line.amount for line in [*discounts, *waived]), Decimal("0"))
        return BenefitSummary(
            membership_id=membership.id,
            plan_name=membership.plan.plan_name,
            plan_color=membership.plan.plan_color,
            discounts=discounts,
            waived=waived,
            included_services=included,
            total_discount=total_discount,
            priority_scheduling=benefits.priority_scheduling,
            emergency_response=benefits.emergency_response,
        )

    def _load_active(
        self,
        contractor_id: str,
        membership_id: str,
        expected_version: Optional[int],
    ) -> Membership:
        membership = load_membership(self.repository, contractor_id, membership_id, expected_version)
        if not membership.is_active:
            raise InvalidStateError(
                message="Membership is not active",
                detail={"membership_id": membership_id, "status": membership.status.value},
            )
        return membership

    def _save(self, membership: Membership, update: Dict[str, Any]) -> Membership:
        # Revalidate so the quota and savings ledger invariants are checked before the write.
        updated = Membership.model_validate({**membership.model_dump(), **update})
        return self.repository.save_membership(updated, expected_version=membership.version)

    def _log(
        self,
        event_type: MembershipAuditEventType,
        membership: Membership,
        metadata: Dict[str, str],
        occurred_at: Optional[datetime] = None,
    ) -> None:
        self.event_logger.log(
            MembershipAuditEvent(
                event_type=event_type,
                contractor_id=membership.contractor_id,
                plan_id=membership.plan_id,
                membership_id=membership.id,
                metadata=metadata,
                occurred_at=occurred_at or membership.updated_at,
            )
        )


__all__ = ["BenefitEngine", "QUOTA_EXHAUSTED_MESSAGE", "percentage_of"]
