"""Domain models for VIP payment settlement."""
from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ..entitlements.models import DurationTier, EntityKind, SubscriptionStatus, VipSubscription


class PaymentMethod(str, Enum):
    """Settlement methods accepted for a VIP purchase."""

    MANUAL_CASH = "manual_cash"
    INSTANT_QR = "instant_qr"
    ADMIN_GRANT = "admin_grant"


class PaymentStatus(str, Enum):
    """Lifecycle status of a payment transaction."""

    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class PaymentTransaction(BaseModel):
    """A single settlement attempt backing one subscription."""

    id: str
    subscription_id: str
    amount: int = Field(ge=0)
    currency: str = Field(min_length=3, max_length=3)
    method: PaymentMethod
    payment_status: PaymentStatus = PaymentStatus.PENDING
    qr_payload: Optional[str] = None
    settlement_reference: Optional[str] = None
    admin_notes: Optional[str] = None
    verified_by: Optional[str] = None
    purchased_by: Optional[str] = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    resolved_at: Optional[datetime] = None

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    @field_validator("currency")
    @classmethod
    def _upper_currency(cls, value: str) -> str:
        return value.upper()

    @property
    def is_pending(self) -> bool:
        return self.payment_status == PaymentStatus.PENDING


class AdminTransactionView(BaseModel):
    """Transaction joined with the owning subscription for the admin listing."""

    transaction: PaymentTransaction
    entity_kind: EntityKind
    entity_id: str
    tier: DurationTier
    subscription_status: SubscriptionStatus
    starts_at: datetime
    expires_at: datetime

    model_config = ConfigDict(populate_by_name=True, frozen=True)


class PurchaseResult(BaseModel):
    """Return value of a purchase: the linked subscription and its transaction."""

    subscription: VipSubscription
    transaction: PaymentTransaction
    qr_image: Optional[str] = Field(default=None, description="PNG data URL of the instant payment QR")

    model_config = ConfigDict(populate_by_name=True, frozen=True)


class VipAuditEventType(str, Enum):
    """Audit event categories emitted by the VIP lifecycle."""

    PURCHASE_CREATED = "purchase_created"
    PURCHASE_ROLLED_BACK = "purchase_rolled_back"
    ROLLBACK_FAILED = "rollback_failed"
    PAYMENT_VERIFIED = "payment_verified"
    PAYMENT_REJECTED = "payment_rejected"
    PAYMENT_STATE_DIVERGENCE = "payment_state_divergence"
    SUBSCRIPTION_CANCELLED = "subscription_cancelled"
    SUBSCRIPTION_EXPIRED = "subscription_expired"


class VipAuditEvent(BaseModel):
    """Structured audit event for operator follow-up."""

    event_type: VipAuditEventType
    subscription_id: Optional[str] = None
    transaction_id: Optional[str] = None
    actor_id: Optional[str] = None
    metadata: Dict[str, str] = Field(default_factory=dict)
    occurred_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    model_config = ConfigDict(populate_by_name=True, frozen=True)
