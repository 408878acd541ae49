from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import List

import pytest

from vip_backend.app.billing import (
    PaymentMethod,
    PaymentTransaction,
    VipAuditEvent,
    VipAuditEventType,
)
from vip_backend.app.entitlements import DurationTier, EntityKind, SubscriptionStatus, VipSubscription
from vip_backend.app.services import notifications as notifications_service
from vip_backend.app.services import vip as vip_services
from vip_backend.app.services.notifications import (
    NotificationCreate,
    NotificationType,
    NotificationsVipNotifier,
    create_notification,
)

NOW = datetime(2026, 3, 1, tzinfo=timezone.utc)


def _subscription(**overrides) -> VipSubscription:
    fields = dict(
        id="vip_1",
        entity_kind=EntityKind.VENUE,
        entity_id="V1",
        tier=DurationTier.MEDIUM,
        status=SubscriptionStatus.ACTIVE,
        starts_at=NOW,
        expires_at=NOW + timedelta(days=90),
        price_paid=2399,
        purchased_by="venue-owner",
    )
    fields.update(overrides)
    return VipSubscription(**fields)


def _transaction(**overrides) -> PaymentTransaction:
    fields = dict(
        id="txn_1",
        subscription_id="vip_1",
        amount=2399,
        currency="THB",
        method=PaymentMethod.MANUAL_CASH,
        purchased_by="venue-owner",
    )
    fields.update(overrides)
    return PaymentTransaction(**fields)


@pytest.fixture
def sent(monkeypatch) -> List[NotificationCreate]:
    captured: List[NotificationCreate] = []

    def fake_create_notification(event, *, conn=None) -> int:
        captured.append(event)
        return len(captured)

    monkeypatch.setattr(notifications_service, "create_notification", fake_create_notification)
    return captured


def test_verified_payment_notifies_purchaser(sent):
    notifier = NotificationsVipNotifier(link="/vip/my-subscriptions")

    notifier.notify_payment_verified(_subscription(), _transaction())

    assert len(sent) == 1
    assert sent[0].user_id == "venue-owner"
    assert sent[0].type == NotificationType.VIP_PAYMENT_VERIFIED
    assert sent[0].link == "/vip/my-subscriptions"
    assert "2026-05-30" in sent[0].body


def test_rejection_includes_reason(sent):
    notifier = NotificationsVipNotifier(link="/vip")

    notifier.notify_payment_rejected(None, _transaction(), "No payment received")

    assert sent[0].type == NotificationType.VIP_PAYMENT_REJECTED
    assert sent[0].body.endswith("No payment received")


def test_missing_recipient_is_skipped(sent):
    notifier = NotificationsVipNotifier(link="/vip")

    notifier.notify_subscription_cancelled(_subscription(purchased_by=None), "admin-1")

    assert sent == []


class _Cursor:
    def __init__(self):
        self.executed = []

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def execute(self, sql, params):
        self.executed.append(params)

    def fetchone(self):
        return {"id": 17}


class _Connection:
    def __init__(self):
        self.cursor_obj = _Cursor()

    def cursor(self, cursor_factory=None):
        return self.cursor_obj


def test_create_notification_accepts_mapping():
    connection = _Connection()

    notification_id = create_notification(
        {"user_id": "u1", "type": "vip_purchase_pending", "title": "VIP purchase received"},
        conn=connection,
    )

    assert notification_id == 17
    assert connection.cursor_obj.executed == [
        ("u1", "vip_purchase_pending", "VIP purchase received", None, None)
    ]


def test_event_logger_escalates_inconsistencies(caplog):
    event_logger = vip_services.LoggingVipEventLogger()

    with caplog.at_level(logging.INFO, logger="vip"):
        event_logger.log(VipAuditEvent(event_type=VipAuditEventType.PAYMENT_VERIFIED, transaction_id="txn_1"))
        event_logger.log(VipAuditEvent(event_type=VipAuditEventType.ROLLBACK_FAILED, subscription_id="vip_1"))

    levels = [(record.levelno, record.getMessage().split()[2]) for record in caplog.records]
    assert levels == [(logging.INFO, "payment_verified"), (logging.ERROR, "rollback_failed")]


def test_service_wiring_follows_configuration(monkeypatch):
    monkeypatch.setenv("VIP_NOTIFICATIONS_ENABLED", "false")
    monkeypatch.delenv("PROMPTPAY_MERCHANT_ID", raising=False)
    vip_services.get_vip_service.cache_clear()
    try:
        service = vip_services.get_vip_service()
        assert isinstance(service.notifier, vip_services.LoggingVipNotifier)
        assert service.available_payment_methods() == [PaymentMethod.MANUAL_CASH]
        assert [resolver.name for resolver in service.ownership.resolvers] == ["direct", "delegated"]
    finally:
        vip_services.get_vip_service.cache_clear()
