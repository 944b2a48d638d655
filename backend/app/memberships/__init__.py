"""Membership domain package: contractor plans, customer memberships and benefits."""

from .analytics import AnalyticsAggregator
from .benefits import BenefitEngine
from .catalog import PlanCatalog
from .events import MembershipEventLogger, RenewalNotifier
from .exceptions import (
    ConcurrentModificationError,
    InvalidStateError,
    MembershipError,
    NotFoundError,
    ValidationError,
)
from .lifecycle import MembershipLifecycleManager
from .models import (
    BenefitSummary,
    BillingCycle,
    DiscountResult,
    FeeWaiverResult,
    IncludedService,
    Membership,
    MembershipAuditEvent,
    MembershipAuditEventType,
    MembershipRequest,
    MembershipStats,
    MembershipStatus,
    PaymentMethod,
    Plan,
    PlanBenefits,
    PlanSnapshot,
    PlanStats,
    Quote,
    RenewalSweepSummary,
    ServiceAvailability,
    ServiceUsage,
    ServiceUsageResult,
)
from .periods import RECURRING_REVENUE_POLICY
from .renewals import RenewalSweeper
from .repository import InMemoryMembershipRepository, MembershipRepository

__all__ = [
    "AnalyticsAggregator",
    "BenefitEngine",
    "BenefitSummary",
    "BillingCycle",
    "ConcurrentModificationError",
    "DiscountResult",
    "FeeWaiverResult",
    "InMemoryMembershipRepository",
    "IncludedService",
    "InvalidStateError",
    "Membership",
    "MembershipAuditEvent",
    "MembershipAuditEventType",
    "MembershipError",
    "MembershipEventLogger",
    "MembershipLifecycleManager",
    "MembershipRepository",
    "MembershipRequest",
    "MembershipStats",
    "MembershipStatus",
    "NotFoundError",
    "PaymentMethod",
    "Plan",
    "PlanBenefits",
    "PlanCatalog",
    "PlanSnapshot",
    "PlanStats",
    "Quote",
    "RECURRING_REVENUE_POLICY",
    "RenewalNotifier",
    "RenewalSweepSummary",
    "RenewalSweeper",
    "ServiceAvailability",
    "ServiceUsage",
    "ServiceUsageResult",
    "ValidationError",
]
