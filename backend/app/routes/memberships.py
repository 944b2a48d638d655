"""API routes exposing contractor membership plans and customer memberships."""
from __future__ import annotations

import os
from contextlib import contextmanager
from functools import lru_cache
from typing import Any, Callable, Iterator, Optional

from fastapi import APIRouter, Cookie, Depends, HTTPException, Query, status

from ..memberships import (
    DiscountResult,
    FeeWaiverResult,
    Membership,
    MembershipError,
    MembershipStats,
    MembershipStatus,
    Plan,
    ServiceAvailability,
    ServiceUsageResult,
)
from ..schemas.memberships import (
    ApplyDiscountRequest,
    BenefitsPreviewRequest,
    BenefitsPreviewResponse,
    CancelMembershipRequest,
    MembershipCreateRequest,
    MembershipListResponse,
    MembershipUpdateRequest,
    PlanCreateRequest,
    PlanListResponse,
    PlanUpdateRequest,
    RenewMembershipRequest,
    ServiceUsageRequest,
    WaiveFeeRequest,
)
from ..services.memberships import get_membership_components


def _resolve_get_current_user() -> Callable[..., Any]:  # pragma: no cover
    try:
        from backend.main import get_current_user as resolved
    except ModuleNotFoundError as exc:
        if exc.name != "backend":
            raise
        from ...main import get_current_user as resolved  # type: ignore[no-redef]
    return resolved


@lru_cache(maxsize=1)
def _get_current_user_callable() -> Callable[..., Any]:
    return _resolve_get_current_user()


_SESSION_COOKIE_NAME = os.getenv("SESSION_COOKIE_NAME", "session")


def _get_current_user(
    session_token: Optional[str] = Cookie(None, alias=_SESSION_COOKIE_NAME),
):
    resolved = _get_current_user_callable()
    return resolved(session_token=session_token)


def _ensure_contractor_access(current_user: Any, contractor_id: str) -> None:
    if getattr(current_user, "role", None) == "admin":
        return
    if str(getattr(current_user, "contractor_id", None) or "") != contractor_id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Cannot manage memberships for another contractor",
        )


@contextmanager
def _domain_errors() -> Iterator[None]:
    try:
        yield
    except MembershipError as exc:
        raise exc.to_http_exception() from exc


router = APIRouter(prefix="/api/contractors", tags=["memberships"])


@router.get("/{contractor_id}/plans", response_model=PlanListResponse)
def list_plans(
    contractor_id: str,
    include_inactive: bool = Query(False, alias="includeInactive"),
    *,
    current_user=Depends(_get_current_user),
) -> PlanListResponse:
    _ensure_contractor_access(current_user, contractor_id)
    catalog = get_membership_components().catalog
    return PlanListResponse(plans=catalog.list(contractor_id, include_inactive=include_inactive))


@router.post("/{contractor_id}/plans", response_model=Plan, status_code=status.HTTP_201_CREATED)
def create_plan(
    contractor_id: str,
    payload: PlanCreateRequest,
    *,
    current_user=Depends(_get_current_user),
) -> Plan:
    _ensure_contractor_access(current_user, contractor_id)
    catalog = get_membership_components().catalog
    with _domain_errors():
        return catalog.create(contractor_id, payload.to_plan_data())


@router.get("/{contractor_id}/plans/{plan_id}", response_model=Plan)
def get_plan(
    contractor_id: str,
    plan_id: str,
    *,
    current_user=Depends(_get_current_user),
) -> Plan:
    _ensure_contractor_access(current_user, contractor_id)
    catalog = get_membership_components().catalog
    with _domain_errors():
        return catalog.get(contractor_id, plan_id)


@router.patch("/{contractor_id}/plans/{plan_id}", response_model=Plan)
def update_plan(
    contractor_id: str,
    plan_id: str,
    payload: PlanUpdateRequest,
    *,
    current_user=Depends(_get_current_user),
) -> Plan:
    _ensure_contractor_access(current_user, contractor_id)
    catalog = get_membership_components().catalog
    with _domain_errors():
        return catalog.update(contractor_id, plan_id, payload.to_fields())


@router.delete("/{contractor_id}/plans/{plan_id}", response_model=Plan)
def deactivate_plan(
    contractor_id: str,
    plan_id: str,
    *,
    current_user=Depends(_get_current_user),
) -> Plan:
    _ensure_contractor_access(current_user, contractor_id)
    catalog = get_membership_components().catalog
    with _domain_errors():
        return catalog.soft_delete(contractor_id, plan_id)


@router.get("/{contractor_id}/memberships", response_model=MembershipListResponse)
def list_memberships(
    contractor_id: str,
    membership_status: Optional[MembershipStatus] = Query(None, alias="status"),
    customer_id: Optional[str] = Query(None, alias="customerId"),
    *,
    current_user=Depends(_get_current_user),
) -> MembershipListResponse:
    _ensure_contractor_access(current_user, contractor_id)
    lifecycle = get_membership_components().lifecycle
    memberships = lifecycle.list(contractor_id, status=membership_status, customer_id=customer_id)
    return MembershipListResponse(memberships=memberships)


@router.post(
    "/{contractor_id}/memberships",
    response_model=Membership,
    status_code=status.HTTP_201_CREATED,
)
def create_membership(
    contractor_id: str,
    payload: MembershipCreateRequest,
    *,
    current_user=Depends(_get_current_user),
) -> Membership:
    _ensure_contractor_access(current_user, contractor_id)
    lifecycle = get_membership_components().lifecycle
    with _domain_errors():
        return lifecycle.create(contractor_id, payload.plan_id, payload.to_request_data())


@router.get("/{contractor_id}/memberships/stats", response_model=MembershipStats)
def get_membership_stats(
    contractor_id: str,
    *,
    current_user=Depends(_get_current_user),
) -> MembershipStats:
    _ensure_contractor_access(current_user, contractor_id)
    return get_membership_components().analytics.compute_stats(contractor_id)


@router.get("/{contractor_id}/memberships/expiring", response_model=MembershipListResponse)
def list_expiring_memberships(
    contractor_id: str,
    within_days: int = Query(30, alias="withinDays", ge=0, le=366),
    *,
    current_user=Depends(_get_current_user),
) -> MembershipListResponse:
    _ensure_contractor_access(current_user, contractor_id)
    analytics = get_membership_components().analytics
    return MembershipListResponse(memberships=analytics.list_expiring(contractor_id, within_days))


@router.get("/{contractor_id}/customers/{customer_id}/membership", response_model=Optional[Membership])
def get_customer_membership(
    contractor_id: str,
    customer_id: str,
    *,
    current_user=Depends(_get_current_user),
) -> Optional[Membership]:
    _ensure_contractor_access(current_user, contractor_id)
    return get_membership_components().lifecycle.get_for_customer(contractor_id, customer_id)


@router.get("/{contractor_id}/memberships/{membership_id}", response_model=Membership)
def get_membership(
    contractor_id: str,
    membership_id: str,
    *,
    current_user=Depends(_get_current_user),
) -> Membership:
    _ensure_contractor_access(current_user, contractor_id)
    lifecycle = get_membership_components().lifecycle
    with _domain_errors():
        return lifecycle.get(contractor_id, membership_id)


@router.patch("/{contractor_id}/memberships/{membership_id}", response_model=Membership)
def update_membership(
    contractor_id: str,
    membership_id: str,
    payload: MembershipUpdateRequest,
    *,
    current_user=Depends(_get_current_user),
) -> Membership:
    _ensure_contractor_access(current_user, contractor_id)
    lifecycle = get_membership_components().lifecycle
    with _domain_errors():
        return lifecycle.update(
            contractor_id,
            membership_id,
            payload.to_fields(),
            expected_version=payload.expected_version,
        )


@router.post("/{contractor_id}/memberships/{membership_id}/cancel", response_model=Membership)
def cancel_membership(
    contractor_id: str,
    membership_id: str,
    payload: CancelMembershipRequest,
    *,
    current_user=Depends(_get_current_user),
) -> Membership:
    _ensure_contractor_access(current_user, contractor_id)
    lifecycle = get_membership_components().lifecycle
    with _domain_errors():
        return lifecycle.cancel(
            contractor_id,
            membership_id,
            payload.reason,
            expected_version=payload.expected_version,
        )


@router.post("/{contractor_id}/memberships/{membership_id}/renew", response_model=Membership)
def renew_membership(
    contractor_id: str,
    membership_id: str,
    payload: RenewMembershipRequest,
    *,
    current_user=Depends(_get_current_user),
) -> Membership:
    _ensure_contractor_access(current_user, contractor_id)
    lifecycle = get_membership_components().lifecycle
    with _domain_errors():
        return lifecycle.renew(contractor_id, membership_id, expected_version=payload.expected_version)


@router.post("/{contractor_id}/memberships/{membership_id}/discounts", response_model=DiscountResult)
def apply_discount(
    contractor_id: str,
    membership_id: str,
    payload: ApplyDiscountRequest,
    *,
    current_user=Depends(_get_current_user),
) -> DiscountResult:
    _ensure_contractor_access(current_user, contractor_id)
    benefits = get_membership_components().benefits
    with _domain_errors():
        return benefits.apply_discount(
            contractor_id,
            membership_id,
            payload.job_id,
            payload.original_total,
            expected_version=payload.expected_version,
        )


@router.post("/{contractor_id}/memberships/{membership_id}/fee-waivers", response_model=FeeWaiverResult)
def waive_fee(
    contractor_id: str,
    membership_id: str,
    payload: WaiveFeeRequest,
    *,
    current_user=Depends(_get_current_user),
) -> FeeWaiverResult:
    _ensure_contractor_access(current_user, contractor_id)
    benefits = get_membership_components().benefits
    with _domain_errors():
        return benefits.waive_fee(
            contractor_id,
            membership_id,
            payload.job_id,
            payload.fee_type,
            payload.fee_amount,
            expected_version=payload.expected_version,
        )


@router.post(
    "/{contractor_id}/memberships/{membership_id}/service-usage",
    response_model=ServiceUsageResult,
)
def record_service_usage(
    contractor_id: str,
    membership_id: str,
    payload: ServiceUsageRequest,
    *,
    current_user=Depends(_get_current_user),
) -> ServiceUsageResult:
    _ensure_contractor_access(current_user, contractor_id)
    benefits = get_membership_components().benefits
    with _domain_errors():
        return benefits.record_service_usage(
            contractor_id,
            membership_id,
            payload.service_type,
            payload.job_id,
            expected_version=payload.expected_version,
        )


@router.get(
    "/{contractor_id}/memberships/{membership_id}/services/{service_type}/availability",
    response_model=ServiceAvailability,
)
def check_service_availability(
    contractor_id: str,
    membership_id: str,
    service_type: str,
    *,
    current_user=Depends(_get_current_user),
) -> ServiceAvailability:
    _ensure_contractor_access(current_user, contractor_id)
    components = get_membership_components()
    with _domain_errors():
        membership = components.lifecycle.get(contractor_id, membership_id)
    return components.benefits.check_service_availability(membership, service_type)


@router.post(
    "/{contractor_id}/memberships/{membership_id}/benefits-preview",
    response_model=BenefitsPreviewResponse,
)
def preview_benefits(
    contractor_id: str,
    membership_id: str,
    payload: BenefitsPreviewRequest,
    *,
    current_user=Depends(_get_current_user),
) -> BenefitsPreviewResponse:
    _ensure_contractor_access(current_user, contractor_id)
    components = get_membership_components()
    with _domain_errors():
        membership = components.lifecycle.get(contractor_id, membership_id)
    summary = components.benefits.calculate_membership_benefits(membership, payload.to_quote())
    return BenefitsPreviewResponse(benefits=summary)
