"""API schemas for membership endpoints."""
from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from ..memberships import (
    BenefitSummary,
    BillingCycle,
    Membership,
    PaymentMethod,
    Plan,
    Quote,
)


class IncludedServicePayload(BaseModel):
    service_type: str = Field(alias="serviceType")
    quantity: int
    description: Optional[str] = None

    model_config = ConfigDict(populate_by_name=True)


class PlanBenefitsPayload(BaseModel):
    discount_percent: Decimal = Field(alias="discountPercent", default=Decimal("0"))
    priority_scheduling: bool = Field(alias="priorityScheduling", default=False)
    waive_diagnostic_fee: bool = Field(alias="waiveDiagnosticFee", default=False)
    waive_trip_fee: bool = Field(alias="waiveTripFee", default=False)
    emergency_response: Optional[str] = Field(alias="emergencyResponse", default=None)
    transferable: bool = False

    model_config = ConfigDict(populate_by_name=True)


class PlanCreateRequest(BaseModel):
    name: str
    description: str = ""
    color: Optional[str] = None
    price: Decimal
    billing_cycle: BillingCycle = Field(alias="billingCycle")
    included_services: List[IncludedServicePayload] = Field(alias="includedServices", default_factory=list)
    benefits: PlanBenefitsPayload = Field(default_factory=PlanBenefitsPayload)
    active: bool = True
    renewal_reminder_days: Optional[int] = Field(alias="renewalReminderDays", default=None)
    auto_renew_default: Optional[bool] = Field(alias="autoRenewDefault", default=None)

    model_config = ConfigDict(populate_by_name=True)

    def to_plan_data(self) -> Dict[str, Any]:
        return self.model_dump(exclude_none=True)


class PlanUpdateRequest(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    color: Optional[str] = None
    price: Optional[Decimal] = None
    billing_cycle: Optional[BillingCycle] = Field(alias="billingCycle", default=None)
    included_services: Optional[List[IncludedServicePayload]] = Field(alias="includedServices", default=None)
    benefits: Optional[PlanBenefitsPayload] = None
    active: Optional[bool] = None
    renewal_reminder_days: Optional[int] = Field(alias="renewalReminderDays", default=None)
    auto_renew_default: Optional[bool] = Field(alias="autoRenewDefault", default=None)

    model_config = ConfigDict(populate_by_name=True)

    def to_fields(self) -> Dict[str, Any]:
        return self.model_dump(exclude_unset=True)


class PlanListResponse(BaseModel):
    plans: List[Plan]

    model_config = ConfigDict(populate_by_name=True)


class MembershipCreateRequest(BaseModel):
    plan_id: str = Field(alias="planId")
    customer_id: Optional[str] = Field(alias="customerId", default=None)
    customer_name: Optional[str] = Field(alias="customerName", default=None)
    customer_email: Optional[str] = Field(alias="customerEmail", default=None)
    customer_phone: Optional[str] = Field(alias="customerPhone", default=None)
    property_id: Optional[str] = Field(alias="propertyId", default=None)
    property_address: Optional[str] = Field(alias="propertyAddress", default=None)
    start_date: Optional[datetime] = Field(alias="startDate", default=None)
    auto_renew: Optional[bool] = Field(alias="autoRenew", default=None)
    payment_method: PaymentMethod = Field(alias="paymentMethod", default=PaymentMethod.MANUAL)
    external_subscription_id: Optional[str] = Field(alias="externalSubscriptionId", default=None)
    renewal_reminder_days: Optional[int] = Field(alias="renewalReminderDays", default=None)
    notes: str = ""

    model_config = ConfigDict(populate_by_name=True)

    def to_request_data(self) -> Dict[str, Any]:
        return self.model_dump(exclude={"plan_id"})


class MembershipUpdateRequest(BaseModel):
    customer_name: Optional[str] = Field(alias="customerName", default=None)
    customer_email: Optional[str] = Field(alias="customerEmail", default=None)
    customer_phone: Optional[str] = Field(alias="customerPhone", default=None)
    property_id: Optional[str] = Field(alias="propertyId", default=None)
    property_address: Optional[str] = Field(alias="propertyAddress", default=None)
    auto_renew: Optional[bool] = Field(alias="autoRenew", default=None)
    payment_method: Optional[PaymentMethod] = Field(alias="paymentMethod", default=None)
    external_subscription_id: Optional[str] = Field(alias="externalSubscriptionId", default=None)
    notes: Optional[str] = None
    expected_version: Optional[int] = Field(alias="expectedVersion", default=None)

    model_config = ConfigDict(populate_by_name=True)

    def to_fields(self) -> Dict[str, Any]:
        return self.model_dump(exclude_unset=True, exclude={"expected_version"})


class MembershipListResponse(BaseModel):
    memberships: List[Membership]

    model_config = ConfigDict(populate_by_name=True)


class CancelMembershipRequest(BaseModel):
    reason: str = ""
    expected_version: Optional[int] = Field(alias="expectedVersion", default=None)

    model_config = ConfigDict(populate_by_name=True)


class RenewMembershipRequest(BaseModel):
    expected_version: Optional[int] = Field(alias="expectedVersion", default=None)

    model_config = ConfigDict(populate_by_name=True)


class ApplyDiscountRequest(BaseModel):
    job_id: str = Field(alias="jobId")
    original_total: Decimal = Field(alias="originalTotal")
    expected_version: Optional[int] = Field(alias="expectedVersion", default=None)

    model_config = ConfigDict(populate_by_name=True)


class WaiveFeeRequest(BaseModel):
    job_id: str = Field(alias="jobId")
    fee_type: str = Field(alias="feeType")
    fee_amount: Decimal = Field(alias="feeAmount")
    expected_version: Optional[int] = Field(alias="expectedVersion", default=None)

    model_config = ConfigDict(populate_by_name=True)


class ServiceUsageRequest(BaseModel):
    service_type: str = Field(alias="serviceType")
    job_id: str = Field(alias="jobId")
    expected_version: Optional[int] = Field(alias="expectedVersion", default=None)

    model_config = ConfigDict(populate_by_name=True)


class BenefitsPreviewRequest(BaseModel):
    subtotal: Decimal = Decimal("0")
    diagnostic_fee: Decimal = Field(alias="diagnosticFee", default=Decimal("0"))
    trip_fee: Decimal = Field(alias="tripFee", default=Decimal("0"))
    service_type: Optional[str] = Field(alias="serviceType", default=None)

    model_config = ConfigDict(populate_by_name=True)

    def to_quote(self) -> Quote:
        return Quote(
            subtotal=self.subtotal,
            diagnostic_fee=self.diagnostic_fee,
            trip_fee=self.trip_fee,
            service_type=self.service_type,
        )


class BenefitsPreviewResponse(BaseModel):
    benefits: Optional[BenefitSummary] = None

    model_config = ConfigDict(populate_by_name=True)


__all__ = [
    "ApplyDiscountRequest",
    "BenefitsPreviewRequest",
    "BenefitsPreviewResponse",
    "CancelMembershipRequest",
    "IncludedServicePayload",
    "MembershipCreateRequest",
    "MembershipListResponse",
    "MembershipUpdateRequest",
    "PlanBenefitsPayload",
    "PlanCreateRequest",
    "PlanListResponse",
    "PlanUpdateRequest",
    "RenewMembershipRequest",
    "ServiceUsageRequest",
    "WaiveFeeRequest",
]
