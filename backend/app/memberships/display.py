"""Pure formatting helpers shared by the API and notification copy."""
from __future__ import annotations

import math
from datetime import date, datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Dict, Optional, Union

from .models import MembershipStatus
from .periods import as_utc

STATUS_BADGES: Dict[str, Dict[str, str]] = {
    MembershipStatus.ACTIVE.value: {"label": "Active", "class_name": "bg-green-100 text-green-700"},
    MembershipStatus.EXPIRED.value: {"label": "Expired", "class_name": "bg-red-100 text-red-700"},
    MembershipStatus.CANCELLED.value: {"label": "Cancelled", "class_name": "bg-slate-100 text-slate-700"},
    "pending": {"label": "Pending", "class_name": "bg-yellow-100 text-yellow-700"},
}


def format_currency(amount: Union[Decimal, int, float, str, None]) -> str:
    """Format a USD amount with at most two decimals, e.g. ``$1,234.5``."""

    value = Decimal(str(amount or 0)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
    text = f"{abs(value):,.2f}".rstrip("0").rstrip(".")
    return f"-${text}" if value < 0 else f"${text}"


def format_date(value: Union[datetime, date, None]) -> str:
    if value is None:
        return ""
    if isinstance(value, datetime):
        value = as_utc(value)
    return f"{value:%b} {value.day}, {value.year}"


def get_status_badge_info(status: Union[MembershipStatus, str, None]) -> Dict[str, str]:
    key = status.value if isinstance(status, MembershipStatus) else (status or "")
    return dict(STATUS_BADGES.get(key, STATUS_BADGES["pending"]))


def days_until_expiration(end_date: Union[datetime, date, None], now: Optional[datetime] = None) -> Optional[int]:
    """Whole days left until ``end_date``, rounded up. Negative once lapsed."""

    if end_date is None:
        return None
    reference = as_utc(now) if now is not None else datetime.now(timezone.utc)
    return math.ceil((as_utc(end_date) - reference).total_seconds() / 86400)


def is_expiring_soon(
    end_date: Union[datetime, date, None],
    within_days: int = 30,
    now: Optional[datetime] = None,
) -> bool:
    remaining = days_until_expiration(end_date, now)
    return remaining is not None and 0 <= remaining <= within_days


__all__ = [
    "STATUS_BADGES",
    "days_until_expiration",
    "format_currency",
    "format_date",
    "get_status_badge_info",
    "is_expiring_soon",
]
