"""Membership engine configuration helpers."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Mapping, Optional, Tuple
import os

from .models import DEFAULT_REMINDER_DAYS

SUPPORTED_STORES = {"postgres", "memory"}


@dataclass(frozen=True)
class MembershipConfig:
    """Runtime settings for the membership services and renewal sweep."""

    default_reminder_days: int
    expiring_window_days: int
    reminder_tiers: Tuple[int, ...]
    reminder_resend_days: int
    store: str
    renewal_scheduler_enabled: bool
    renewal_hour: int


def _to_bool(value: Optional[str], *, default: bool) -> bool:
    if value is None:
        return default
    lowered = value.strip().lower()
    if lowered in {"1", "true", "yes", "on"}:
        return True
    if lowered in {"0", "false", "no", "off"}:
        return False
    return default


def _to_int(value: Optional[str], *, default: int) -> int:
    if value is None or value == "":
        return default
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"Expected integer value, got {value!r}") from exc


def _to_int_tuple(value: Optional[str], *, default: Tuple[int, ...]) -> Tuple[int, ...]:
    if value is None or not value.strip():
        return default
    parts = [part.strip() for part in value.split(",") if part.strip()]
    tiers = {_to_int(part, default=0) for part in parts}
    # Largest lead time first so the earliest reminder is considered first.
    return tuple(sorted((tier for tier in tiers if tier > 0), reverse=True)) or default


def load_membership_config(env: Optional[Mapping[str, str]] = None) -> MembershipConfig:
    """Load :class:`MembershipConfig` from environment variables."""

    env_mapping = os.environ if env is None else env

    default_reminder_days = max(
        0, _to_int(env_mapping.get("MEMBERSHIP_DEFAULT_REMINDER_DAYS"), default=DEFAULT_REMINDER_DAYS)
    )
    expiring_window_days = max(1, _to_int(env_mapping.get("MEMBERSHIP_EXPIRING_WINDOW_DAYS"), default=30))
    reminder_tiers = _to_int_tuple(env_mapping.get("MEMBERSHIP_REMINDER_TIERS"), default=(30, 7))
    reminder_resend_days = max(1, _to_int(env_mapping.get("MEMBERSHIP_REMINDER_RESEND_DAYS"), default=25))

    store = (env_mapping.get("MEMBERSHIP_STORE") or "postgres").strip().lower() or "postgres"
    if store not in SUPPORTED_STORES:
        raise ValueError(f"Unsupported MEMBERSHIP_STORE {store!r}; expected one of {sorted(SUPPORTED_STORES)}")

    renewal_scheduler_enabled = _to_bool(env_mapping.get("MEMBERSHIP_RENEWAL_SCHEDULER"), default=True)
    renewal_hour = _to_int(env_mapping.get("MEMBERSHIP_RENEWAL_HOUR"), default=6)
    if not 0 <= renewal_hour <= 23:
        raise ValueError(f"MEMBERSHIP_RENEWAL_HOUR must be between 0 and 23, got {renewal_hour}")

    return MembershipConfig(
        default_reminder_days=default_reminder_days,
        expiring_window_days=expiring_window_days,
        reminder_tiers=reminder_tiers,
        reminder_resend_days=reminder_resend_days,
        store=store,
        renewal_scheduler_enabled=renewal_scheduler_enabled,
        renewal_hour=renewal_hour,
    )


__all__ = ["MembershipConfig", "load_membership_config"]
