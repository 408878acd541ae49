"""Error taxonomy for VIP subscription operations."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, ClassVar, Dict, Mapping, Optional

from fastapi import HTTPException, status


@dataclass(eq=False)
class VipError(Exception):
    """Domain failure carrying the error code and HTTP status surfaced to callers."""

    message: str
    detail: Optional[Mapping[str, Any]] = None

    code: ClassVar[str] = "vip_error"
    status_code: ClassVar[int] = status.HTTP_400_BAD_REQUEST

    def __post_init__(self) -> None:
        super().__init__(self.message)

    def __str__(self) -> str:
        return self.message

    @property
    def payload(self) -> Mapping[str, Any]:
        """Serialized representation suitable for JSON responses."""

        base_detail: Dict[str, Any] = {"error": self.code, "message": self.message}
        if self.detail:
            base_detail.update(self.detail)
        return base_detail

    def to_http_exception(self) -> HTTPException:
        """Convert the domain error into a FastAPI HTTPException."""

        return HTTPException(status_code=self.status_code, detail=dict(self.payload))


class Forbidden(VipError):
    code = "forbidden"
    status_code = status.HTTP_403_FORBIDDEN


class Conflict(VipError):
    """Another pending or active subscription already exists for the entity."""

    code = "conflict"
    status_code = status.HTTP_409_CONFLICT


class InvalidInput(VipError):
    code = "invalid_input"
    status_code = status.HTTP_400_BAD_REQUEST


class UnknownTier(InvalidInput):
    code = "unknown_tier"


class MethodUnavailable(VipError):
    """The instant payment method was requested but is not configured."""

    code = "method_unavailable"
    status_code = status.HTTP_400_BAD_REQUEST


class InvalidMethod(VipError):
    code = "invalid_method"
    status_code = status.HTTP_400_BAD_REQUEST


class NotFound(VipError):
    code = "not_found"
    status_code = status.HTTP_404_NOT_FOUND


class AlreadyResolved(VipError):
    """The payment transaction is no longer pending."""

    code = "already_resolved"
    status_code = status.HTTP_400_BAD_REQUEST


class StaleState(VipError):
    """A conditional subscription update found a different current status."""

    code = "stale_state"
    status_code = status.HTTP_409_CONFLICT


class NotActive(VipError):
    code = "not_active"
    status_code = status.HTTP_400_BAD_REQUEST


class TransactionCreateFailed(VipError):
    code = "transaction_create_failed"
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR


__all__ = [
    "AlreadyResolved",
    "Conflict",
    "Forbidden",
    "InvalidInput",
    "InvalidMethod",
    "MethodUnavailable",
    "NotActive",
    "NotFound",
    "StaleState",
    "TransactionCreateFailed",
    "UnknownTier",
    "VipError",
]
