"""Exceptions raised by the membership engine."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional

from fastapi import HTTPException, status
from pydantic import ValidationError as PydanticValidationError


@dataclass
class MembershipError(Exception):
    """Base error carrying a machine readable code for API callers."""

    message: str
    code: str = "membership_error"
    status_code: int = status.HTTP_400_BAD_REQUEST
    detail: Optional[Mapping[str, Any]] = None

    def __post_init__(self) -> None:
        base_detail: Dict[str, Any] = {"error": self.code, "message": self.message}
        if self.detail:
            base_detail.update(self.detail)
        object.__setattr__(self, "_payload", base_detail)
        super().__init__(self.message)

    @property
    def payload(self) -> Mapping[str, Any]:
        """Serialized representation suitable for JSON responses."""

        return self._payload

    @property
    def retryable(self) -> bool:
        return False

    def to_http_exception(self) -> HTTPException:
        """Convert the domain error into a FastAPI HTTPException."""

        return HTTPException(status_code=self.status_code, detail=dict(self.payload))


@dataclass
class ValidationError(MembershipError):
    """Malformed input: missing field, bad price, unknown cycle or service type."""

    code: str = "validation_error"
    status_code: int = status.HTTP_400_BAD_REQUEST

    @classmethod
    def from_pydantic(cls, exc: PydanticValidationError) -> "ValidationError":
        errors = [
            {
                "field": ".".join(str(part) for part in error.get("loc", ())),
                "message": error.get("msg", "invalid value"),
            }
            for error in exc.errors()
        ]
        first = errors[0] if errors else {"field": "", "message": "invalid value"}
        message = f"{first['field']}: {first['message']}" if first["field"] else first["message"]
        return cls(message=message, detail={"errors": errors})


@dataclass
class NotFoundError(MembershipError):
    """A plan or membership identifier does not resolve."""

    code: str = "not_found"
    status_code: int = status.HTTP_404_NOT_FOUND


@dataclass
class InvalidStateError(MembershipError):
    """The operation requires an active membership."""

    code: str = "invalid_state"
    status_code: int = status.HTTP_409_CONFLICT


@dataclass
class ConcurrentModificationError(MembershipError):
    """A write was based on a stale version of the document."""

    code: str = "concurrent_modification"
    status_code: int = status.HTTP_409_CONFLICT

    @property
    def retryable(self) -> bool:
        return True


__all__ = [
    "ConcurrentModificationError",
    "InvalidStateError",
    "MembershipError",
    "NotFoundError",
    "ValidationError",
]
