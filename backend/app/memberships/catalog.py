"""Contractor-owned plan definitions."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, List, Mapping, Optional
from uuid import uuid4

from pydantic import ValidationError as PydanticValidationError

from .events import MembershipEventLogger
from .exceptions import NotFoundError, ValidationError
from .models import MembershipAuditEvent, MembershipAuditEventType, Plan
from .periods import current_time
from .repository import MembershipRepository

# Owned by the store or the lifecycle manager, never by catalog callers.
_SYSTEM_FIELDS = frozenset({"id", "contractor_id", "member_count", "version", "created_at", "updated_at"})


@dataclass
class PlanCatalog:
    """Creates, edits and retires the plans a contractor sells."""

    repository: MembershipRepository
    event_logger: MembershipEventLogger
    clock: Optional[Callable[[], datetime]] = None

    def create(self, contractor_id: str, plan_data: Mapping[str, Any]) -> Plan:
        now = current_time(self.clock)
        fields = {key: value for key, value in plan_data.items() if key not in _SYSTEM_FIELDS}
        plan = self._validate(
            {
                **fields,
                "id": f"plan_{uuid4().hex}",
                "contractor_id": contractor_id,
                "member_count": 0,
                "version": 0,
                "created_at": now,
                "updated_at": now,
            }
        )
        stored = self.repository.create_plan(plan)
        self._log(MembershipAuditEventType.PLAN_CREATED, stored, {"name": stored.name})
        return stored

    def get(self, contractor_id: str, plan_id: str) -> Plan:
        plan = self.repository.get_plan(contractor_id, plan_id)
        if plan is None:
            raise NotFoundError(message="Plan not found", detail={"plan_id": plan_id})
        return plan

    def update(self, contractor_id: str, plan_id: str, fields: Mapping[str, Any]) -> Plan:
        protected = sorted(_SYSTEM_FIELDS.intersection(fields))
        if protected:
            raise ValidationError(
                message=f"Fields cannot be updated: {', '.join(protected)}",
                detail={"fields": protected},
            )

        plan = self.get(contractor_id, plan_id)
        # Benefit flags left out of a partial update keep their stored values.
        if isinstance(fields.get("benefits"), Mapping):
            fields = {**fields, "benefits": {**plan.benefits.model_dump(), **fields["benefits"]}}
        merged = self._validate(
            {**plan.model_dump(), **fields, "updated_at": current_time(self.clock)}
        )
        stored = self.repository.save_plan(merged, expected_version=plan.version)
        self._log(
            MembershipAuditEventType.PLAN_UPDATED,
            stored,
            {"fields": ",".join(sorted(fields))},
        )
        return stored

    def list(self, contractor_id: str, *, include_inactive: bool = False) -> List[Plan]:
        return list(self.repository.list_plans(contractor_id, include_inactive=include_inactive))

    def soft_delete(self, contractor_id: str, plan_id: str) -> Plan:
        """Retire a plan. Existing memberships keep working from their snapshot."""

        plan = self.get(contractor_id, plan_id)
        if not plan.active:
            return plan
        retired = plan.model_copy(update={"active": False, "updated_at": current_time(self.clock)})
        stored = self.repository.save_plan(retired, expected_version=plan.version)
        self._log(MembershipAuditEventType.PLAN_DEACTIVATED, stored, {})
        return stored

    def _validate(self, data: Dict[str, Any]) -> Plan:
        try:
            return Plan.model_validate(data)
        except PydanticValidationError as exc:
            raise ValidationError.from_pydantic(exc) from exc

    def _log(self, event_type: MembershipAuditEventType, plan: Plan, metadata: Dict[str, str]) -> None:
        self.event_logger.log(
            MembershipAuditEvent(
                event_type=event_type,
                contractor_id=plan.contractor_id,
                plan_id=plan.id,
                metadata=metadata,
                occurred_at=plan.updated_at,
            )
        )


__all__ = ["PlanCatalog"]
