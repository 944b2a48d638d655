"""Persistence protocol for plans and memberships, plus an in-process store."""
from __future__ import annotations

from threading import RLock
from typing import Dict, Optional, Protocol, Sequence, Tuple

from .exceptions import ConcurrentModificationError, NotFoundError
from .models import Membership, MembershipStatus, Plan


class MembershipRepository(Protocol):
    """Document store scoped by contractor.

    Writes that take ``expected_version`` are compare-and-swap: they fail with
    :class:`ConcurrentModificationError` when the stored version differs, and
    bump the version on success. ``member_count_delta`` adjusts the referenced
    plan's member count (floored at zero) in the same atomic write.
    """

    def get_plan(self, contractor_id: str, plan_id: str) -> Optional[Plan]:
        ...

    def list_plans(self, contractor_id: str, *, include_inactive: bool = False) -> Sequence[Plan]:
        ...

    def create_plan(self, plan: Plan) -> Plan:
        ...

    def save_plan(self, plan: Plan, *, expected_version: int) -> Plan:
        ...

    def get_membership(self, contractor_id: str, membership_id: str) -> Optional[Membership]:
        ...

    def list_memberships(
        self,
        contractor_id: str,
        *,
        status: Optional[MembershipStatus] = None,
        customer_id: Optional[str] = None,
    ) -> Sequence[Membership]:
        ...

    def insert_membership(self, membership: Membership, *, member_count_delta: int = 1) -> Membership:
        ...

    def save_membership(
        self,
        membership: Membership,
        *,
        expected_version: int,
        member_count_delta: int = 0,
    ) -> Membership:
        ...

    def list_contractor_ids(self) -> Sequence[str]:
        ...


class InMemoryMembershipRepository:
    """Thread-safe store suitable for tests and local development."""

    def __init__(self) -> None:
        self._lock = RLock()
        self._plans: Dict[Tuple[str, str], Plan] = {}
        self._memberships: Dict[Tuple[str, str], Membership] = {}

    def get_plan(self, contractor_id: str, plan_id: str) -> Optional[Plan]:
        with self._lock:
            return self._plans.get((contractor_id, plan_id))

    def list_plans(self, contractor_id: str, *, include_inactive: bool = False) -> Sequence[Plan]:
        with self._lock:
            plans = [
                plan
                for (owner, _), plan in self._plans.items()
                if owner == contractor_id and (include_inactive or plan.active)
            ]
        return sorted(plans, key=lambda plan: plan.created_at, reverse=True)

    def create_plan(self, plan: Plan) -> Plan:
        with self._lock:
            self._plans[(plan.contractor_id, plan.id)] = plan
            return plan

    def save_plan(self, plan: Plan, *, expected_version: int) -> Plan:
        key = (plan.contractor_id, plan.id)
        with self._lock:
            current = self._plans.get(key)
            if current is None:
                raise NotFoundError(message="Plan not found", detail={"plan_id": plan.id})
            if current.version != expected_version:
                raise ConcurrentModificationError(
                    message="Plan was modified concurrently",
                    detail={"plan_id": plan.id, "expected_version": expected_version},
                )
            stored = plan.model_copy(
                update={"member_count": current.member_count, "version": current.version + 1}
            )
            self._plans[key] = stored
            return stored

    def get_membership(self, contractor_id: str, membership_id: str) -> Optional[Membership]:
        with self._lock:
            return self._memberships.get((contractor_id, membership_id))

    def list_memberships(
        self,
        contractor_id: str,
        *,
        status: Optional[MembershipStatus] = None,
        customer_id: Optional[str] = None,
    ) -> Sequence[Membership]:
        with self._lock:
            memberships = [
                membership
                for (owner, _), membership in self._memberships.items()
                if owner == contractor_id
                and (status is None or membership.status == status)
                and (customer_id is None or membership.customer_id == customer_id)
            ]
        return sorted(memberships, key=lambda membership: membership.created_at, reverse=True)

    def insert_membership(self, membership: Membership, *, member_count_delta: int = 1) -> Membership:
        with self._lock:
            self._memberships[(membership.contractor_id, membership.id)] = membership
            self._adjust_member_count(membership.contractor_id, membership.plan_id, member_count_delta)
            return membership

    def save_membership(
        self,
        membership: Membership,
        *,
        expected_version: int,
        member_count_delta: int = 0,
    ) -> Membership:
        key = (membership.contractor_id, membership.id)
        with self._lock:
            current = self._memberships.get(key)
            if current is None:
                raise NotFoundError(message="Membership not found", detail={"membership_id": membership.id})
            if current.version != expected_version:
                raise ConcurrentModificationError(
                    message="Membership was modified concurrently",
                    detail={"membership_id": membership.id, "expected_version": expected_version},
                )
            stored = membership.model_copy(update={"version": current.version + 1})
            self._memberships[key] = stored
            self._adjust_member_count(membership.contractor_id, membership.plan_id, member_count_delta)
            return stored

    def list_contractor_ids(self) -> Sequence[str]:
        with self._lock:
            owners = {owner for owner, _ in self._memberships}
        return sorted(owners)

    def _adjust_member_count(self, contractor_id: str, plan_id: str, delta: int) -> None:
        if not delta:
            return
        key = (contractor_id, plan_id)
        plan = self._plans.get(key)
        if plan is None:
            return
        self._plans[key] = plan.model_copy(update={"member_count": max(0, plan.member_count + delta)})


__all__ = ["InMemoryMembershipRepository", "MembershipRepository"]
