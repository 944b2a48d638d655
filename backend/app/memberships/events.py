"""Collaborator protocols notified by the membership services."""
from __future__ import annotations

from typing import Protocol

from .models import Membership, MembershipAuditEvent


class MembershipEventLogger(Protocol):
    """Captures structured membership audit events."""

    def log(self, event: MembershipAuditEvent) -> None:
        ...


class RenewalNotifier(Protocol):
    """Dispatches renewal related notifications to customers."""

    def notify_renewal_reminder(self, membership: Membership, days_left: int) -> None:
        ...

    def notify_auto_renewed(self, membership: Membership) -> None:
        ...

    def notify_expired(self, membership: Membership) -> None:
        ...
