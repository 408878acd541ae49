"""Application wiring for the VIP subscription service."""
from __future__ import annotations

import logging
from functools import lru_cache
from typing import Optional

from ..billing import (
    PaymentTransaction,
    PromptPayQRGenerator,
    VipAuditEvent,
    VipAuditEventType,
    VipEventLogger,
    VipNotifier,
    VipSubscriptionService,
    load_vip_config,
)
from ..billing.repository import PostgresTransactionLedger, PostgresVipUnitOfWork
from ..entitlements import OwnershipVerifier, PostgresOwnershipLookup, PostgresSubscriptionStore, VipSubscription
from .notifications import NotificationsVipNotifier


logger = logging.getLogger("vip")

_INCONSISTENCY_EVENTS = frozenset(
    {VipAuditEventType.ROLLBACK_FAILED, VipAuditEventType.PAYMENT_STATE_DIVERGENCE}
)


class LoggingVipNotifier(VipNotifier):
    """Notifier that records VIP notifications to the application logger."""

    def notify_purchase_created(self, subscription: VipSubscription, transaction: PaymentTransaction) -> None:
        logger.info(
            "VIP purchase pending subscription=%s transaction=%s method=%s",
            subscription.id,
            transaction.id,
            transaction.method.value,
        )

    def notify_payment_verified(self, subscription: VipSubscription, transaction: PaymentTransaction) -> None:
        logger.info("VIP payment verified subscription=%s transaction=%s", subscription.id, transaction.id)

    def notify_payment_rejected(
        self,
        subscription: Optional[VipSubscription],
        transaction: PaymentTransaction,
        reason: str,
    ) -> None:
        logger.info("VIP payment rejected transaction=%s reason=%s", transaction.id, reason)

    def notify_subscription_cancelled(self, subscription: VipSubscription, cancelled_by: str) -> None:
        logger.info("VIP subscription cancelled subscription=%s by=%s", subscription.id, cancelled_by)


class LoggingVipEventLogger(VipEventLogger):
    """Forwards VIP audit events to logging; inconsistencies are logged as errors."""

    def log(self, event: VipAuditEvent) -> None:
        level = logging.ERROR if event.event_type in _INCONSISTENCY_EVENTS else logging.INFO
        logger.log(
            level,
            "VIP event %s subscription=%s transaction=%s actor=%s metadata=%s",
            event.event_type.value,
            event.subscription_id,
            event.transaction_id,
            event.actor_id,
            event.metadata,
        )


@lru_cache(maxsize=1)
def get_vip_service() -> VipSubscriptionService:
    config = load_vip_config()
    notifier: VipNotifier
    if config.notifications_enabled:
        notifier = NotificationsVipNotifier(link=config.notification_link)
    else:
        notifier = LoggingVipNotifier()
    service = VipSubscriptionService(
        subscriptions=PostgresSubscriptionStore(),
        transactions=PostgresTransactionLedger(),
        unit_of_work=PostgresVipUnitOfWork(),
        ownership=OwnershipVerifier.from_lookup(PostgresOwnershipLookup()),
        qr_provider=PromptPayQRGenerator(config.promptpay_merchant_id),
        notifier=notifier,
        event_logger=LoggingVipEventLogger(),
    )
    return service


__all__ = ["get_vip_service", "LoggingVipNotifier", "LoggingVipEventLogger"]
