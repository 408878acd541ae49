"""In-app notifications for the VIP purchase lifecycle."""
from __future__ import annotations

import logging
from enum import Enum
from typing import Any, Mapping, Optional

import psycopg2.extras
from psycopg2.extensions import connection as PgConnection
from pydantic import BaseModel, ConfigDict, Field

from ..billing.models import PaymentTransaction
from ..entitlements.models import VipSubscription
from ..entitlements.repository import managed_connection

logger = logging.getLogger(__name__)


class NotificationType(str, Enum):
    VIP_PURCHASE_PENDING = "vip_purchase_pending"
    VIP_PAYMENT_VERIFIED = "vip_payment_verified"
    VIP_PAYMENT_REJECTED = "vip_payment_rejected"
    VIP_SUBSCRIPTION_CANCELLED = "vip_subscription_cancelled"


class NotificationCreate(BaseModel):
    user_id: str
    type: NotificationType
    title: str = Field(min_length=1, max_length=200)
    body: Optional[str] = None
    link: Optional[str] = None

    model_config = ConfigDict(populate_by_name=True, frozen=True)


def create_notification(
    event: NotificationCreate | Mapping[str, Any],
    *,
    conn: Optional[PgConnection] = None,
) -> int:
    """Insert a notification row and return its id."""

    if not isinstance(event, NotificationCreate):
        event = NotificationCreate.model_validate(event)

    with managed_connection(conn) as (connection, _managed):
        with connection.cursor(cursor_factory=psycopg2.extras.RealDictCursor) as cur:
            cur.execute(
                """
                INSERT INTO notifications (user_id, type, title, body, link)
                VALUES (%s, %s, %s, %s, %s)
                RETURNING id
                """,
                (event.user_id, event.type.value, event.title, event.body, event.link),
            )
            row = cur.fetchone()
    if row is None:
        raise RuntimeError("Failed to insert notification")
    return int(row["id"])


def _describe(subscription: VipSubscription) -> str:
    return f"{subscription.tier.value} VIP for {subscription.entity_kind.value} {subscription.entity_id}"


class NotificationsVipNotifier:
    """Writes VIP lifecycle events to the purchaser's notification feed."""

    def __init__(self, *, link: str) -> None:
        self._link = link

    def _send(self, user_id: Optional[str], kind: NotificationType, title: str, body: str) -> None:
        if not user_id:
            return
        create_notification(
            NotificationCreate(user_id=user_id, type=kind, title=title, body=body, link=self._link)
        )

    def notify_purchase_created(self, subscription: VipSubscription, transaction: PaymentTransaction) -> None:
        self._send(
            transaction.purchased_by or subscription.purchased_by,
            NotificationType.VIP_PURCHASE_PENDING,
            "VIP purchase received",
            f"Your {_describe(subscription)} is awaiting payment of {transaction.amount} {transaction.currency}.",
        )

    def notify_payment_verified(self, subscription: VipSubscription, transaction: PaymentTransaction) -> None:
        self._send(
            transaction.purchased_by or subscription.purchased_by,
            NotificationType.VIP_PAYMENT_VERIFIED,
            "VIP activated",
            f"Your {_describe(subscription)} is active until {subscription.expires_at:%Y-%m-%d}.",
        )

    def notify_payment_rejected(
        self,
        subscription: Optional[VipSubscription],
        transaction: PaymentTransaction,
        reason: str,
    ) -> None:
        what = _describe(subscription) if subscription else "VIP purchase"
        self._send(
            transaction.purchased_by,
            NotificationType.VIP_PAYMENT_REJECTED,
            "VIP payment rejected",
            f"Payment for your {what} was rejected: {reason}",
        )

    def notify_subscription_cancelled(self, subscription: VipSubscription, cancelled_by: str) -> None:
        self._send(
            subscription.purchased_by,
            NotificationType.VIP_SUBSCRIPTION_CANCELLED,
            "VIP cancelled",
            f"Your {_describe(subscription)} has been cancelled.",
        )


__all__ = ["NotificationCreate", "NotificationType", "NotificationsVipNotifier", "create_notification"]
