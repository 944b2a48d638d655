"""Tests for selling, renewing and cancelling memberships."""
from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal

import pytest

from backend.app.memberships import (
    ConcurrentModificationError,
    Membership,
    MembershipAuditEventType,
    MembershipStatus,
    NotFoundError,
    PlanSnapshot,
    ValidationError,
)

from conftest import CONTRACTOR_ID, annual_plan_data, customer_request


def _utc(*args: int) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


def test_annual_membership_period_and_quota_trackers(catalog, lifecycle, repository):
    plan = catalog.create(CONTRACTOR_ID, annual_plan_data())

    membership = lifecycle.create(CONTRACTOR_ID, plan.id, customer_request(start_date="2024-01-01"))

    assert membership.status == MembershipStatus.ACTIVE
    assert membership.start_date == _utc(2024, 1, 1)
    assert membership.end_date == _utc(2025, 1, 1)
    assert membership.renewal_date == _utc(2024, 12, 2)
    assert [(u.service_type, u.used_count, u.included_count) for u in membership.services_used] == [
        ("hvac-tuneup", 0, 2)
    ]
    assert membership.plan == PlanSnapshot.from_plan(plan)
    assert membership.total_savings == Decimal("0")
    assert repository.get_plan(CONTRACTOR_ID, plan.id).member_count == 1


@pytest.mark.parametrize(
    ("cycle", "start", "expected_end"),
    [
        ("monthly", "2024-01-31", _utc(2024, 2, 29)),
        ("quarterly", "2024-01-15", _utc(2024, 4, 15)),
        ("annual", "2024-02-29", _utc(2025, 2, 28)),
        ("one-time", "2024-03-10", _utc(2025, 3, 10)),
    ],
)
def test_period_length_follows_billing_cycle(catalog, lifecycle, cycle, start, expected_end):
    plan = catalog.create(CONTRACTOR_ID, annual_plan_data(billing_cycle=cycle))

    membership = lifecycle.create(CONTRACTOR_ID, plan.id, customer_request(start_date=start))

    assert membership.end_date == expected_end


def test_create_defaults_start_to_now_and_honours_overrides(catalog, lifecycle, clock):
    plan = catalog.create(
        CONTRACTOR_ID,
        annual_plan_data(billing_cycle="monthly", auto_renew_default=False),
    )

    membership = lifecycle.create(
        CONTRACTOR_ID,
        plan.id,
        customer_request(renewal_reminder_days=7, notes="Gate code 1234"),
    )

    assert membership.start_date == clock.now
    assert membership.end_date == _utc(2024, 7, 1, 12)
    assert membership.renewal_date == _utc(2024, 6, 24, 12)
    assert membership.auto_renew is False
    assert membership.notes == "Gate code 1234"


@pytest.mark.parametrize(
    "overrides",
    [
        {"customer_name": None},
        {"customer_name": "   "},
        {"customer_email": None},
        {"customer_email": "not-an-email"},
    ],
)
def test_create_requires_customer_name_and_email(catalog, lifecycle, repository, overrides):
    plan = catalog.create(CONTRACTOR_ID, annual_plan_data())

    with pytest.raises(ValidationError):
        lifecycle.create(CONTRACTOR_ID, plan.id, customer_request(**overrides))

    assert repository.list_memberships(CONTRACTOR_ID) == []
    assert repository.get_plan(CONTRACTOR_ID, plan.id).member_count == 0


def test_create_against_unknown_or_retired_plan_fails(catalog, lifecycle):
    with pytest.raises(NotFoundError):
        lifecycle.create(CONTRACTOR_ID, "plan_missing", customer_request())

    plan = catalog.create(CONTRACTOR_ID, annual_plan_data())
    catalog.soft_delete(CONTRACTOR_ID, plan.id)
    with pytest.raises(ValidationError):
        lifecycle.create(CONTRACTOR_ID, plan.id, customer_request())


def test_plan_edits_do_not_change_existing_memberships(catalog, lifecycle):
    plan = catalog.create(CONTRACTOR_ID, annual_plan_data())
    membership = lifecycle.create(CONTRACTOR_ID, plan.id, customer_request())

    catalog.update(
        CONTRACTOR_ID,
        plan.id,
        {"price": Decimal("450"), "benefits": {"discount_percent": Decimal("25")}},
    )
    catalog.soft_delete(CONTRACTOR_ID, plan.id)

    stored = lifecycle.get(CONTRACTOR_ID, membership.id)
    assert stored.price == Decimal("300")
    assert stored.benefits.discount_percent == Decimal("15")
    assert stored.is_active


def test_cancel_decrements_member_count_exactly_once(catalog, lifecycle, repository, clock, event_logger):
    plan = catalog.create(CONTRACTOR_ID, annual_plan_data())
    first = lifecycle.create(CONTRACTOR_ID, plan.id, customer_request())
    lifecycle.create(CONTRACTOR_ID, plan.id, customer_request(customer_id="cust-2"))
    assert repository.get_plan(CONTRACTOR_ID, plan.id).member_count == 2

    clock.advance(days=3)
    cancelled = lifecycle.cancel(CONTRACTOR_ID, first.id, "Moving away")
    again = lifecycle.cancel(CONTRACTOR_ID, first.id, "Duplicate click")

    assert cancelled.status == MembershipStatus.CANCELLED
    assert cancelled.auto_renew is False
    assert cancelled.cancelled_at == clock.now
    assert cancelled.cancellation_reason == "Moving away"
    assert again == cancelled
    assert repository.get_plan(CONTRACTOR_ID, plan.id).member_count == 1
    assert len(event_logger.of_type(MembershipAuditEventType.MEMBERSHIP_CANCELLED)) == 1


def test_cancel_floors_member_count_at_zero(catalog, lifecycle, repository):
    plan = catalog.create(CONTRACTOR_ID, annual_plan_data())
    drifted = lifecycle.create(CONTRACTOR_ID, plan.id, customer_request())
    repository._adjust_member_count(CONTRACTOR_ID, plan.id, -1)

    lifecycle.cancel(CONTRACTOR_ID, drifted.id)

    assert repository.get_plan(CONTRACTOR_ID, plan.id).member_count == 0


def test_cancel_unknown_membership_raises_not_found(lifecycle):
    with pytest.raises(NotFoundError):
        lifecycle.cancel(CONTRACTOR_ID, "mem_missing")


def test_renew_starts_new_period_and_resets_quota(catalog, lifecycle, benefits, clock):
    plan = catalog.create(CONTRACTOR_ID, annual_plan_data())
    membership = lifecycle.create(CONTRACTOR_ID, plan.id, customer_request())
    benefits.record_service_usage(CONTRACTOR_ID, membership.id, "hvac-tuneup", "job-1")
    benefits.apply_discount(CONTRACTOR_ID, membership.id, "job-1", Decimal("200"))
    catalog.update(CONTRACTOR_ID, plan.id, {"renewal_reminder_days": 10, "billing_cycle": "monthly"})

    renew_at = clock.advance(days=200)
    renewed = lifecycle.renew(CONTRACTOR_ID, membership.id)

    assert renewed.status == MembershipStatus.ACTIVE
    assert renewed.start_date == renew_at
    assert renewed.end_date == _utc(2025, 12, 18, 12)
    assert renewed.renewal_date == _utc(2025, 12, 8, 12)
    assert renewed.renewed_at == renew_at
    assert all(u.used_count == 0 and u.job_ids == [] and u.last_used_date is None for u in renewed.services_used)
    assert renewed.total_savings == Decimal("30.00")
    assert len(renewed.discounts_applied) == 1


def test_renew_cancelled_membership_wins_back_member(catalog, lifecycle, repository, clock):
    plan = catalog.create(CONTRACTOR_ID, annual_plan_data())
    membership = lifecycle.create(CONTRACTOR_ID, plan.id, customer_request())
    lifecycle.cancel(CONTRACTOR_ID, membership.id, "Too expensive")
    assert repository.get_plan(CONTRACTOR_ID, plan.id).member_count == 0

    clock.advance(days=30)
    renewed = lifecycle.renew(CONTRACTOR_ID, membership.id)

    assert renewed.status == MembershipStatus.ACTIVE
    assert renewed.end_date == _utc(2025, 7, 1, 12)
    assert repository.get_plan(CONTRACTOR_ID, plan.id).member_count == 1


def test_renew_expired_membership_keeps_member_count(catalog, lifecycle, repository, clock):
    plan = catalog.create(CONTRACTOR_ID, annual_plan_data())
    membership = lifecycle.create(CONTRACTOR_ID, plan.id, customer_request())
    lifecycle.mark_expired(CONTRACTOR_ID, membership.id)

    renewed = lifecycle.renew(CONTRACTOR_ID, membership.id)

    assert renewed.status == MembershipStatus.ACTIVE
    assert repository.get_plan(CONTRACTOR_ID, plan.id).member_count == 1


def test_renew_without_plan_falls_back_to_default_reminder(lifecycle, repository, clock):
    orphan = Membership(
        id="mem_orphan",
        contractor_id=CONTRACTOR_ID,
        plan_id="plan_gone",
        plan=PlanSnapshot(plan_name="Old Plan", price=Decimal("20"), billing_cycle="monthly"),
        customer_name="Sam",
        customer_email="sam@acmehomes.com",
        status=MembershipStatus.EXPIRED,
        start_date=_utc(2024, 1, 1),
        end_date=_utc(2024, 2, 1),
        renewal_date=_utc(2024, 1, 2),
    )
    repository.insert_membership(orphan, member_count_delta=0)

    renewed = lifecycle.renew(CONTRACTOR_ID, orphan.id)

    assert renewed.end_date == _utc(2024, 7, 1, 12)
    assert renewed.renewal_date == _utc(2024, 6, 1, 12)


def test_update_patches_editable_fields(lifecycle, catalog, clock):
    plan = catalog.create(CONTRACTOR_ID, annual_plan_data())
    membership = lifecycle.create(CONTRACTOR_ID, plan.id, customer_request())
    clock.advance(hours=1)

    updated = lifecycle.update(CONTRACTOR_ID, membership.id, {"notes": "Dog in yard", "auto_renew": False})

    assert updated.notes == "Dog in yard"
    assert updated.auto_renew is False
    assert updated.updated_at == clock.now
    assert updated.version == membership.version + 1


@pytest.mark.parametrize("field", ["total_savings", "services_used", "status", "discounts_applied", "plan"])
def test_update_rejects_protected_fields(lifecycle, catalog, field):
    plan = catalog.create(CONTRACTOR_ID, annual_plan_data())
    membership = lifecycle.create(CONTRACTOR_ID, plan.id, customer_request())

    with pytest.raises(ValidationError):
        lifecycle.update(CONTRACTOR_ID, membership.id, {field: None})


@pytest.mark.parametrize(
    "fields",
    [
        {"customer_name": "   "},
        {"customer_email": "not-an-email"},
    ],
)
def test_update_rejects_invalid_customer_details(lifecycle, catalog, event_logger, fields):
    plan = catalog.create(CONTRACTOR_ID, annual_plan_data())
    membership = lifecycle.create(CONTRACTOR_ID, plan.id, customer_request())

    with pytest.raises(ValidationError):
        lifecycle.update(CONTRACTOR_ID, membership.id, fields)

    stored = lifecycle.get(CONTRACTOR_ID, membership.id)
    assert stored.version == membership.version
    assert (stored.customer_name, stored.customer_email) == ("Jordan Lee", "jordan@acmehomes.com")
    assert event_logger.of_type(MembershipAuditEventType.MEMBERSHIP_UPDATED) == []


def test_update_rejects_unknown_fields(lifecycle, catalog, event_logger):
    plan = catalog.create(CONTRACTOR_ID, annual_plan_data())
    membership = lifecycle.create(CONTRACTOR_ID, plan.id, customer_request())

    with pytest.raises(ValidationError) as excinfo:
        lifecycle.update(CONTRACTOR_ID, membership.id, {"notes": "Gate code 1234", "bogus": 1})

    assert excinfo.value.detail == {"fields": ["bogus"]}
    assert lifecycle.get(CONTRACTOR_ID, membership.id).notes == ""
    assert event_logger.of_type(MembershipAuditEventType.MEMBERSHIP_UPDATED) == []


def test_stale_version_is_rejected(lifecycle, catalog, benefits):
    plan = catalog.create(CONTRACTOR_ID, annual_plan_data())
    membership = lifecycle.create(CONTRACTOR_ID, plan.id, customer_request())
    benefits.record_service_usage(CONTRACTOR_ID, membership.id, "hvac-tuneup", "job-1")

    with pytest.raises(ConcurrentModificationError) as excinfo:
        lifecycle.cancel(CONTRACTOR_ID, membership.id, expected_version=membership.version)

    assert excinfo.value.retryable is True
    assert lifecycle.get(CONTRACTOR_ID, membership.id).is_active


def test_get_for_customer_returns_latest_active_membership(lifecycle, catalog, clock):
    plan = catalog.create(CONTRACTOR_ID, annual_plan_data())
    older = lifecycle.create(CONTRACTOR_ID, plan.id, customer_request())
    clock.advance(days=1)
    newer = lifecycle.create(CONTRACTOR_ID, plan.id, customer_request())
    clock.advance(days=1)
    cancelled = lifecycle.create(CONTRACTOR_ID, plan.id, customer_request())
    lifecycle.cancel(CONTRACTOR_ID, cancelled.id)

    assert lifecycle.get_for_customer(CONTRACTOR_ID, "cust-1").id == newer.id
    assert lifecycle.get_for_customer(CONTRACTOR_ID, "cust-unknown") is None
    assert {m.id for m in lifecycle.list(CONTRACTOR_ID, status=MembershipStatus.ACTIVE)} == {older.id, newer.id}
