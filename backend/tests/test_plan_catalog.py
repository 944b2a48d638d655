"""Tests for contractor plan management."""
from __future__ import annotations

from decimal import Decimal

import pytest

from backend.app.memberships import (
    BillingCycle,
    MembershipAuditEventType,
    NotFoundError,
    ValidationError,
)

from conftest import CONTRACTOR_ID, annual_plan_data


def test_create_plan_starts_with_no_members(catalog, event_logger, clock):
    plan = catalog.create(CONTRACTOR_ID, annual_plan_data(member_count=12, version=7))

    assert plan.id.startswith("plan_")
    assert plan.contractor_id == CONTRACTOR_ID
    assert plan.member_count == 0
    assert plan.version == 0
    assert plan.billing_cycle == BillingCycle.ANNUAL
    assert plan.price == Decimal("300")
    assert plan.renewal_reminder_days == 30
    assert plan.auto_renew_default is True
    assert plan.included_services[0].service_type == "hvac-tuneup"
    assert plan.created_at == clock.now
    assert [event.event_type for event in event_logger.events] == [MembershipAuditEventType.PLAN_CREATED]


@pytest.mark.parametrize(
    "overrides",
    [
        {"price": Decimal("0")},
        {"price": Decimal("-10")},
        {"name": "   "},
        {"billing_cycle": "weekly"},
    ],
)
def test_create_plan_rejects_invalid_definitions(catalog, repository, overrides):
    with pytest.raises(ValidationError) as excinfo:
        catalog.create(CONTRACTOR_ID, annual_plan_data(**overrides))

    assert excinfo.value.status_code == 400
    assert excinfo.value.payload["error"] == "validation_error"
    assert repository.list_plans(CONTRACTOR_ID, include_inactive=True) == []


def test_update_merges_fields_and_bumps_timestamp(catalog, clock):
    plan = catalog.create(CONTRACTOR_ID, annual_plan_data())
    clock.advance(hours=2)

    updated = catalog.update(CONTRACTOR_ID, plan.id, {"price": Decimal("360"), "renewal_reminder_days": 14})

    assert updated.price == Decimal("360")
    assert updated.renewal_reminder_days == 14
    assert updated.name == plan.name
    assert updated.updated_at == clock.now
    assert updated.created_at == plan.created_at
    assert updated.version == plan.version + 1


def test_partial_benefits_update_keeps_other_flags(catalog):
    plan = catalog.create(
        CONTRACTOR_ID,
        annual_plan_data(benefits={"discount_percent": Decimal("15"), "waive_trip_fee": True, "priority_scheduling": True}),
    )

    updated = catalog.update(CONTRACTOR_ID, plan.id, {"benefits": {"discount_percent": Decimal("20")}})

    assert updated.benefits.discount_percent == Decimal("20")
    assert updated.benefits.waive_trip_fee is True
    assert updated.benefits.priority_scheduling is True


def test_update_rejects_member_count_and_identity_fields(catalog):
    plan = catalog.create(CONTRACTOR_ID, annual_plan_data())

    with pytest.raises(ValidationError) as excinfo:
        catalog.update(CONTRACTOR_ID, plan.id, {"member_count": 40, "id": "other"})

    assert excinfo.value.payload["fields"] == ["id", "member_count"]
    assert catalog.get(CONTRACTOR_ID, plan.id).member_count == 0


def test_update_revalidates_merged_plan(catalog):
    plan = catalog.create(CONTRACTOR_ID, annual_plan_data())

    with pytest.raises(ValidationError):
        catalog.update(CONTRACTOR_ID, plan.id, {"price": Decimal("-1")})

    assert catalog.get(CONTRACTOR_ID, plan.id).price == Decimal("300")


def test_update_and_soft_delete_unknown_plan_raise_not_found(catalog):
    with pytest.raises(NotFoundError):
        catalog.update(CONTRACTOR_ID, "plan_missing", {"name": "New"})
    with pytest.raises(NotFoundError):
        catalog.soft_delete(CONTRACTOR_ID, "plan_missing")


def test_plans_are_scoped_by_contractor(catalog):
    plan = catalog.create(CONTRACTOR_ID, annual_plan_data())

    with pytest.raises(NotFoundError):
        catalog.get("contractor-2", plan.id)
    assert catalog.list("contractor-2") == []


def test_list_returns_newest_first_and_hides_inactive(catalog, clock):
    basic = catalog.create(CONTRACTOR_ID, annual_plan_data(name="Basic"))
    clock.advance(minutes=5)
    premium = catalog.create(CONTRACTOR_ID, annual_plan_data(name="Premium"))
    clock.advance(minutes=5)
    retired = catalog.create(CONTRACTOR_ID, annual_plan_data(name="Legacy"))
    catalog.soft_delete(CONTRACTOR_ID, retired.id)

    assert [plan.id for plan in catalog.list(CONTRACTOR_ID)] == [premium.id, basic.id]
    assert [plan.id for plan in catalog.list(CONTRACTOR_ID, include_inactive=True)] == [
        retired.id,
        premium.id,
        basic.id,
    ]


def test_soft_delete_keeps_plan_and_logs_once(catalog, event_logger):
    plan = catalog.create(CONTRACTOR_ID, annual_plan_data())

    retired = catalog.soft_delete(CONTRACTOR_ID, plan.id)
    again = catalog.soft_delete(CONTRACTOR_ID, plan.id)

    assert retired.active is False
    assert again == retired
    assert catalog.get(CONTRACTOR_ID, plan.id).active is False
    assert len(event_logger.of_type(MembershipAuditEventType.PLAN_DEACTIVATED)) == 1
