"""Domain models for VIP entitlements."""
from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Optional, Type, TypeVar

from pydantic import BaseModel, ConfigDict, Field

from .exceptions import InvalidInput


class EntityKind(str, Enum):
    """Kinds of entities that can hold a VIP entitlement."""

    PROFILE = "profile"
    VENUE = "venue"


class DurationTier(str, Enum):
    """Duration buckets offered by the pricing catalog."""

    TRIAL = "trial"
    SHORT = "short"
    MEDIUM = "medium"
    LONG = "long"


class SubscriptionStatus(str, Enum):
    """Lifecycle status of a VIP subscription."""

    PENDING_PAYMENT = "pending_payment"
    ACTIVE = "active"
    CANCELLED = "cancelled"
    FAILED = "failed"
    EXPIRED = "expired"


OCCUPYING_STATUSES = frozenset({SubscriptionStatus.PENDING_PAYMENT, SubscriptionStatus.ACTIVE})


class OwnershipAction(str, Enum):
    """Actions a principal may request on an entity's entitlement."""

    PURCHASE = "purchase"
    CANCEL = "cancel"


_E = TypeVar("_E", bound=Enum)


def parse_choice(enum_cls: Type[_E], value: object, *, field: str) -> _E:
    """Coerce a raw request value into ``enum_cls`` or raise :class:`InvalidInput`."""

    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(str(value).strip().lower())
    except ValueError as exc:
        allowed = ", ".join(member.value for member in enum_cls)
        raise InvalidInput(
            f"Invalid {field} {value!r}; expected one of: {allowed}",
            detail={"field": field},
        ) from exc


class VipSubscription(BaseModel):
    """A time-bounded VIP entitlement held by a profile or venue."""

    id: str
    entity_kind: EntityKind
    entity_id: str
    tier: DurationTier
    status: SubscriptionStatus = SubscriptionStatus.PENDING_PAYMENT
    starts_at: datetime
    expires_at: datetime
    price_paid: int = Field(ge=0, description="Catalog price captured at purchase time")
    transaction_id: Optional[str] = None
    purchased_by: Optional[str] = None
    cancelled_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    @property
    def occupies_entity(self) -> bool:
        """Return ``True`` while this subscription blocks a new purchase for its entity."""
        return self.status in OCCUPYING_STATUSES

    def is_lapsed(self, now: datetime) -> bool:
        return self.status == SubscriptionStatus.ACTIVE and now > self.expires_at

    def effective_status(self, now: datetime) -> SubscriptionStatus:
        """Status as observed at ``now``; active rows past expiry read as expired."""

        if self.is_lapsed(now):
            return SubscriptionStatus.EXPIRED
        return self.status


class VipStatus(BaseModel):
    """Public view of whether an entity currently holds a VIP entitlement."""

    entity_kind: EntityKind
    entity_id: str
    is_vip: bool
    tier: Optional[DurationTier] = None
    expires_at: Optional[datetime] = None

    model_config = ConfigDict(populate_by_name=True, frozen=True)
