"""Domain models for contractor membership plans and customer memberships."""
from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator, model_validator

DEFAULT_PLAN_COLOR = "#10b981"
DEFAULT_REMINDER_DAYS = 30


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class BillingCycle(str, Enum):
    """Recurrence unit controlling the length of a membership period."""

    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    ANNUAL = "annual"
    ONE_TIME = "one-time"


class MembershipStatus(str, Enum):
    """Lifecycle state for a customer membership."""

    ACTIVE = "active"
    CANCELLED = "cancelled"
    EXPIRED = "expired"


class PaymentMethod(str, Enum):
    """How the customer pays for the plan. Recorded only, never charged."""

    MANUAL = "manual"
    STRIPE = "stripe"


class PlanBenefits(BaseModel):
    """Non-quota perks attached to a plan and snapshotted onto memberships."""

    discount_percent: Decimal = Field(default=Decimal("0"), ge=0, le=100)
    priority_scheduling: bool = False
    waive_diagnostic_fee: bool = False
    waive_trip_fee: bool = False
    emergency_response: Optional[str] = Field(
        default=None,
        description="Response tier shown to the customer, e.g. '24/7' or '4-hour'.",
    )
    transferable: bool = False

    model_config = ConfigDict(populate_by_name=True, frozen=True)


class IncludedService(BaseModel):
    """A capped number of service visits bundled into a plan."""

    service_type: str = Field(min_length=1)
    quantity: int = Field(ge=1)
    description: Optional[str] = None

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    @field_validator("service_type")
    @classmethod
    def _strip_service_type(cls, value: str) -> str:
        stripped = value.strip()
        if not stripped:
            raise ValueError("service_type must not be blank")
        return stripped


class Plan(BaseModel):
    """Sellable service-plan template owned by a single contractor."""

    id: str
    contractor_id: str
    name: str
    description: str = ""
    color: str = DEFAULT_PLAN_COLOR
    price: Decimal = Field(gt=0)
    billing_cycle: BillingCycle
    included_services: List[IncludedService] = Field(default_factory=list)
    benefits: PlanBenefits = Field(default_factory=PlanBenefits)
    active: bool = True
    member_count: int = Field(default=0, ge=0)
    renewal_reminder_days: int = Field(default=DEFAULT_REMINDER_DAYS, ge=0)
    auto_renew_default: bool = True
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)
    version: int = Field(default=0, ge=0)

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    @field_validator("name")
    @classmethod
    def _require_name(cls, value: str) -> str:
        stripped = value.strip()
        if not stripped:
            raise ValueError("name must not be empty")
        return stripped


class PlanSnapshot(BaseModel):
    """Plan fields frozen onto a membership when it is sold."""

    plan_name: str
    plan_color: str = DEFAULT_PLAN_COLOR
    price: Decimal
    billing_cycle: BillingCycle
    benefits: PlanBenefits = Field(default_factory=PlanBenefits)

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    @classmethod
    def from_plan(cls, plan: Plan) -> "PlanSnapshot":
        return cls(
            plan_name=plan.name,
            plan_color=plan.color,
            price=plan.price,
            billing_cycle=plan.billing_cycle,
            benefits=plan.benefits,
        )


class ServiceUsage(BaseModel):
    """Per-period quota tracker for one included service type."""

    service_type: str
    service_name: str
    used_count: int = Field(default=0, ge=0)
    included_count: int = Field(ge=0)
    last_used_date: Optional[datetime] = None
    job_ids: List[str] = Field(default_factory=list)

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    @model_validator(mode="after")
    def _within_quota(self) -> "ServiceUsage":
        if self.used_count > self.included_count:
            raise ValueError(
                f"used_count {self.used_count} exceeds included_count {self.included_count}"
                f" for service '{self.service_type}'"
            )
        return self

    @classmethod
    def from_included(cls, service: IncludedService) -> "ServiceUsage":
        return cls(
            service_type=service.service_type,
            service_name=service.description or service.service_type,
            used_count=0,
            included_count=service.quantity,
        )

    @property
    def remaining_count(self) -> int:
        return self.included_count - self.used_count

    @property
    def is_exhausted(self) -> bool:
        return self.used_count >= self.included_count

    def consume(self, job_id: str, used_at: datetime) -> "ServiceUsage":
        """Return a tracker with one more use recorded against ``job_id``."""

        return self.model_copy(
            update={
                "used_count": self.used_count + 1,
                "last_used_date": used_at,
                "job_ids": [*self.job_ids, job_id],
            }
        )

    def reset(self) -> "ServiceUsage":
        return self.model_copy(update={"used_count": 0, "last_used_date": None, "job_ids": []})


class DiscountRecord(BaseModel):
    """Ledger entry for a percentage discount applied to a job."""

    job_id: str
    original_total: Decimal
    discount_percent: Decimal
    discount_amount: Decimal = Field(ge=0)
    date: datetime

    model_config = ConfigDict(populate_by_name=True, frozen=True)


class FeeWaiver(BaseModel):
    """Ledger entry for a fee waived as a membership benefit."""

    job_id: str
    fee_type: str
    fee_amount: Decimal = Field(ge=0)
    date: datetime

    model_config = ConfigDict(populate_by_name=True, frozen=True)


class Membership(BaseModel):
    """One customer's subscription to a plan, scoped to a contractor."""

    id: str
    contractor_id: str
    plan_id: str
    plan: PlanSnapshot

    customer_id: Optional[str] = None
    customer_name: str
    customer_email: EmailStr
    customer_phone: Optional[str] = None
    property_id: Optional[str] = None
    property_address: Optional[str] = None

    status: MembershipStatus = MembershipStatus.ACTIVE
    start_date: datetime
    end_date: datetime
    renewal_date: datetime

    auto_renew: bool = True
    payment_method: PaymentMethod = PaymentMethod.MANUAL
    external_subscription_id: Optional[str] = None

    services_used: List[ServiceUsage] = Field(default_factory=list)
    discounts_applied: List[DiscountRecord] = Field(default_factory=list)
    fees_waived: List[FeeWaiver] = Field(default_factory=list)
    total_savings: Decimal = Field(default=Decimal("0"), ge=0)

    notes: str = ""
    reminders_sent: Dict[str, datetime] = Field(
        default_factory=dict,
        description="Last reminder timestamp keyed by reminder tier (days before end).",
    )
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)
    renewed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    cancellation_reason: Optional[str] = None
    version: int = Field(default=0, ge=0)

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    @field_validator("customer_name")
    @classmethod
    def _require_customer_name(cls, value: str) -> str:
        stripped = value.strip()
        if not stripped:
            raise ValueError("customer_name must not be empty")
        return stripped

    @model_validator(mode="after")
    def _savings_match_ledger(self) -> "Membership":
        ledger_total = sum((record.discount_amount for record in self.discounts_applied), Decimal("0"))
        ledger_total += sum((waiver.fee_amount for waiver in self.fees_waived), Decimal("0"))
        if ledger_total != self.total_savings:
            raise ValueError(
                f"total_savings {self.total_savings} does not match recorded savings {ledger_total}"
            )
        return self

    @property
    def is_active(self) -> bool:
        return self.status == MembershipStatus.ACTIVE

    @property
    def price(self) -> Decimal:
        return self.plan.price

    @property
    def billing_cycle(self) -> BillingCycle:
        return self.plan.billing_cycle

    @property
    def benefits(self) -> PlanBenefits:
        return self.plan.benefits

    def find_service(self, service_type: str) -> Optional[ServiceUsage]:
        for usage in self.services_used:
            if usage.service_type == service_type:
                return usage
        return None


class MembershipRequest(BaseModel):
    """Customer details supplied when selling a membership."""

    customer_id: Optional[str] = None
    customer_name: Optional[str] = None
    customer_email: Optional[EmailStr] = None
    customer_phone: Optional[str] = None
    property_id: Optional[str] = None
    property_address: Optional[str] = None
    start_date: Optional[datetime] = None
    auto_renew: Optional[bool] = None
    payment_method: PaymentMethod = PaymentMethod.MANUAL
    external_subscription_id: Optional[str] = None
    renewal_reminder_days: Optional[int] = Field(default=None, ge=0)
    notes: str = ""

    model_config = ConfigDict(populate_by_name=True, frozen=True)


class Quote(BaseModel):
    """The parts of a quote or job that membership benefits can apply to."""

    subtotal: Decimal = Decimal("0")
    diagnostic_fee: Decimal = Decimal("0")
    trip_fee: Decimal = Decimal("0")
    service_type: Optional[str] = None

    model_config = ConfigDict(populate_by_name=True, frozen=True)


class DiscountResult(BaseModel):
    discount_percent: Decimal
    discount_amount: Decimal
    new_total: Decimal
    total_savings: Decimal
    membership: Membership

    model_config = ConfigDict(populate_by_name=True, frozen=True)


class FeeWaiverResult(BaseModel):
    fee_type: str
    fee_amount: Decimal
    total_savings: Decimal
    membership: Membership

    model_config = ConfigDict(populate_by_name=True, frozen=True)


class ServiceUsageResult(BaseModel):
    """Outcome of consuming one included service.

    Quota exhaustion is reported with ``success=False`` rather than raised,
    since running out of included visits is an expected business outcome.
    """

    success: bool
    used_count: int
    included_count: int
    remaining_count: int
    message: Optional[str] = None
    membership: Optional[Membership] = None

    model_config = ConfigDict(populate_by_name=True, frozen=True)


class ServiceAvailability(BaseModel):
    available: bool
    reason: str
    used_count: Optional[int] = None
    included_count: Optional[int] = None
    remaining_count: Optional[int] = None

    model_config = ConfigDict(populate_by_name=True, frozen=True)


class BenefitLine(BaseModel):
    type: str
    description: str
    amount: Decimal

    model_config = ConfigDict(populate_by_name=True, frozen=True)


class IncludedServiceBenefit(BaseModel):
    service_type: str
    description: str
    remaining_count: int

    model_config = ConfigDict(populate_by_name=True, frozen=True)


class BenefitSummary(BaseModel):
    """What a membership would take off a quote, without applying anything."""

    membership_id: str
    plan_name: str
    plan_color: str
    discounts: List[BenefitLine] = Field(default_factory=list)
    waived: List[BenefitLine] = Field(default_factory=list)
    included_services: List[IncludedServiceBenefit] = Field(default_factory=list)
    total_discount: Decimal = Decimal("0")
    priority_scheduling: bool = False
    emergency_response: Optional[str] = None

    model_config = ConfigDict(populate_by_name=True, frozen=True)


class PlanStats(BaseModel):
    plan_id: str
    plan_name: str
    price: Decimal
    billing_cycle: BillingCycle
    active_members: int = 0
    total_members: int = 0
    revenue: Decimal = Decimal("0")

    model_config = ConfigDict(populate_by_name=True, frozen=True)


class MembershipStats(BaseModel):
    """Contractor-wide membership, revenue and retention figures."""

    total_members: int = 0
    active_members: int = 0
    expired_members: int = 0
    cancelled_members: int = 0
    expiring_within_30_days: int = 0

    total_revenue: Decimal = Decimal("0")
    monthly_recurring_revenue: Decimal = Decimal("0")
    annual_recurring_revenue: Decimal = Decimal("0")

    total_savings_provided: Decimal = Decimal("0")
    average_savings_per_member: Decimal = Decimal("0")

    plan_stats: Dict[str, PlanStats] = Field(default_factory=dict)
    most_popular_plan: Optional[PlanStats] = None

    renewal_count: int = 0
    cancellation_count: int = 0
    renewal_rate: float = 0.0

    model_config = ConfigDict(populate_by_name=True, frozen=True)


class MembershipAuditEventType(str, Enum):
    """Audit event categories emitted by the membership subsystem."""

    PLAN_CREATED = "plan_created"
    PLAN_UPDATED = "plan_updated"
    PLAN_DEACTIVATED = "plan_deactivated"
    MEMBERSHIP_CREATED = "membership_created"
    MEMBERSHIP_UPDATED = "membership_updated"
    MEMBERSHIP_CANCELLED = "membership_cancelled"
    MEMBERSHIP_RENEWED = "membership_renewed"
    MEMBERSHIP_EXPIRED = "membership_expired"
    DISCOUNT_APPLIED = "discount_applied"
    FEE_WAIVED = "fee_waived"
    SERVICE_USED = "service_used"
    SERVICE_QUOTA_EXHAUSTED = "service_quota_exhausted"
    RENEWAL_REMINDER_SENT = "renewal_reminder_sent"


class MembershipAuditEvent(BaseModel):
    """Structured audit event for analytics and notifications."""

    event_type: MembershipAuditEventType
    contractor_id: str
    plan_id: Optional[str] = None
    membership_id: Optional[str] = None
    metadata: Dict[str, str] = Field(default_factory=dict)
    occurred_at: datetime = Field(default_factory=_utcnow)

    model_config = ConfigDict(populate_by_name=True, frozen=True)


class SweepError(BaseModel):
    membership_id: str
    error: str

    model_config = ConfigDict(populate_by_name=True, frozen=True)


class RenewalSweepSummary(BaseModel):
    """Counts produced by one pass of the renewal sweep."""

    processed: int = 0
    reminders_sent: int = 0
    auto_renewed: int = 0
    expired: int = 0
    errors: List[SweepError] = Field(default_factory=list)

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    def merge(self, other: "RenewalSweepSummary") -> "RenewalSweepSummary":
        return RenewalSweepSummary(
            processed=self.processed + other.processed,
            reminders_sent=self.reminders_sent + other.reminders_sent,
            auto_renewed=self.auto_renewed + other.auto_renewed,
            expired=self.expired + other.expired,
            errors=[*self.errors, *other.errors],
        )
