"""Application wiring for the membership services."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from functools import lru_cache

from ..memberships import (
    AnalyticsAggregator,
    BenefitEngine,
    InMemoryMembershipRepository,
    Membership,
    MembershipAuditEvent,
    MembershipEventLogger,
    MembershipLifecycleManager,
    MembershipRepository,
    PlanCatalog,
    RenewalNotifier,
    RenewalSweeper,
)
from ..memberships.config import MembershipConfig, load_membership_config


logger = logging.getLogger("memberships")


class LoggingMembershipEventLogger(MembershipEventLogger):
    """Event logger forwarding membership audit events to logging."""

    def log(self, event: MembershipAuditEvent) -> None:
        logger.info(
            "Membership event %s contractor=%s plan=%s membership=%s metadata=%s",
            event.event_type.value,
            event.contractor_id,
            event.plan_id,
            event.membership_id,
            event.metadata,
        )


class LoggingRenewalNotifier(RenewalNotifier):
    """Notifier that records renewal notifications until customer email is wired in."""

    def notify_renewal_reminder(self, membership: Membership, days_left: int) -> None:
        logger.info(
            "Renewal reminder membership=%s customer=%s plan=%s days_left=%s",
            membership.id,
            membership.customer_email,
            membership.plan.plan_name,
            days_left,
        )

    def notify_auto_renewed(self, membership: Membership) -> None:
        logger.info(
            "Membership auto-renewed membership=%s customer=%s end_date=%s",
            membership.id,
            membership.customer_email,
            membership.end_date.isoformat(),
        )

    def notify_expired(self, membership: Membership) -> None:
        logger.warning(
            "Membership expired membership=%s customer=%s plan=%s",
            membership.id,
            membership.customer_email,
            membership.plan.plan_name,
        )


@dataclass(frozen=True)
class MembershipComponents:
    """The membership services sharing one repository."""

    config: MembershipConfig
    repository: MembershipRepository
    catalog: PlanCatalog
    lifecycle: MembershipLifecycleManager
    benefits: BenefitEngine
    analytics: AnalyticsAggregator
    sweeper: RenewalSweeper


def _build_repository(config: MembershipConfig) -> MembershipRepository:
    if config.store == "memory":
        logger.warning("Using in-memory membership store; data is lost on restart")
        return InMemoryMembershipRepository()

    from ..memberships.postgres import PostgresMembershipRepository

    return PostgresMembershipRepository()


def build_membership_components(
    config: MembershipConfig,
    repository: MembershipRepository,
) -> MembershipComponents:
    event_logger = LoggingMembershipEventLogger()
    catalog = PlanCatalog(repository=repository, event_logger=event_logger)
    lifecycle = MembershipLifecycleManager(
        repository=repository,
        catalog=catalog,
        event_logger=event_logger,
        default_reminder_days=config.default_reminder_days,
    )
    return MembershipComponents(
        config=config,
        repository=repository,
        catalog=catalog,
        lifecycle=lifecycle,
        benefits=BenefitEngine(repository=repository, event_logger=event_logger),
        analytics=AnalyticsAggregator(
            repository=repository,
            expiring_window_days=config.expiring_window_days,
        ),
        sweeper=RenewalSweeper(
            lifecycle=lifecycle,
            repository=repository,
            notifier=LoggingRenewalNotifier(),
            reminder_tiers=config.reminder_tiers,
            reminder_resend_days=config.reminder_resend_days,
        ),
    )


@lru_cache(maxsize=1)
def get_membership_components() -> MembershipComponents:
    config = load_membership_config()
    return build_membership_components(config, _build_repository(config))


__all__ = [
    "LoggingMembershipEventLogger",
    "LoggingRenewalNotifier",
    "MembershipComponents",
    "build_membership_components",
    "get_membership_components",
]
