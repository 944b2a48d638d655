"""Shared fixtures for membership engine tests."""
from __future__ import annotations

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Dict, List

import pytest

from backend.app.memberships import (
    AnalyticsAggregator,
    BenefitEngine,
    InMemoryMembershipRepository,
    Membership,
    MembershipAuditEvent,
    MembershipAuditEventType,
    MembershipEventLogger,
    MembershipLifecycleManager,
    PlanCatalog,
    RenewalNotifier,
    RenewalSweeper,
)


class MutableClock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class RecordingEventLogger(MembershipEventLogger):
    def __init__(self) -> None:
        self.events: List[MembershipAuditEvent] = []

    def log(self, event: MembershipAuditEvent) -> None:
        self.events.append(event)

    def of_type(self, event_type: MembershipAuditEventType) -> List[MembershipAuditEvent]:
        return [event for event in self.events if event.event_type == event_type]


class RecordingNotifier(RenewalNotifier):
    def __init__(self) -> None:
        self.reminders: list[tuple[str, int]] = []
        self.renewed: list[str] = []
        self.expired: list[str] = []

    def notify_renewal_reminder(self, membership: Membership, days_left: int) -> None:
        self.reminders.append((membership.id, days_left))

    def notify_auto_renewed(self, membership: Membership) -> None:
        self.renewed.append(membership.id)

    def notify_expired(self, membership: Membership) -> None:
        self.expired.append(membership.id)


CONTRACTOR_ID = "contractor-1"


def annual_plan_data(**overrides: Any) -> Dict[str, Any]:
    data: Dict[str, Any] = {
        "name": "Comfort Club",
        "description": "Two tune-ups a year",
        "price": Decimal("300"),
        "billing_cycle": "annual",
        "included_services": [{"service_type": "hvac-tuneup", "quantity": 2, "description": "HVAC Tune-up"}],
        "benefits": {"discount_percent": Decimal("15"), "waive_diagnostic_fee": True},
    }
    data.update(overrides)
    return data


def customer_request(**overrides: Any) -> Dict[str, Any]:
    data: Dict[str, Any] = {
        "customer_id": "cust-1",
        "customer_name": "Jordan Lee",
        "customer_email": "jordan@acmehomes.com",
    }
    data.update(overrides)
    return data


@pytest.fixture
def clock() -> MutableClock:
    return MutableClock(datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def repository() -> InMemoryMembershipRepository:
    return InMemoryMembershipRepository()


@pytest.fixture
def event_logger() -> RecordingEventLogger:
    return RecordingEventLogger()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def catalog(repository, event_logger, clock) -> PlanCatalog:
    return PlanCatalog(repository=repository, event_logger=event_logger, clock=clock)


@pytest.fixture
def lifecycle(repository, catalog, event_logger, clock) -> MembershipLifecycleManager:
    return MembershipLifecycleManager(
        repository=repository,
        catalog=catalog,
        event_logger=event_logger,
        clock=clock,
    )


@pytest.fixture
def benefits(repository, event_logger, clock) -> BenefitEngine:
    return BenefitEngine(repository=repository, event_logger=event_logger, clock=clock)


@pytest.fixture
def analytics(repository, clock) -> AnalyticsAggregator:
    return AnalyticsAggregator(repository=repository, clock=clock)


@pytest.fixture
def sweeper(lifecycle, repository, notifier, clock) -> RenewalSweeper:
    return RenewalSweeper(lifecycle=lifecycle, repository=repository, notifier=notifier, clock=clock)
