from __future__ import annotations

import copy
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from typing import Dict, Iterator, List, NamedTuple, Optional, Sequence, Set, Tuple

import pytest

from vip_backend.app.billing import (
    AdminTransactionView,
    InstantPayment,
    PaymentMethod,
    PaymentStatus,
    PaymentTransaction,
    QRProviderNotConfigured,
    VipAuditEvent,
    VipStores,
    VipSubscriptionService,
)
from vip_backend.app.billing.service import (
    InstantPaymentProvider,
    SubscriptionStore,
    TransactionLedger,
    VipEventLogger,
    VipNotifier,
)
from vip_backend.app.entitlements import (
    AlreadyResolved,
    Conflict,
    EntityKind,
    NotActive,
    NotFound,
    OwnershipLookup,
    OwnershipVerifier,
    StaleState,
    SubscriptionStatus,
    VipSubscription,
)

START = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)


class FixedClock:
    def __init__(self, now: datetime = START) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, delta: timedelta) -> None:
        self.now = self.now + delta


class InMemorySubscriptionStore(SubscriptionStore):
    def __init__(self) -> None:
        self.rows: Dict[str, VipSubscription] = {}
        self.managed: Dict[str, Set[Tuple[EntityKind, str]]] = {}
        self.fail_delete = False
        self.deleted: List[str] = []

    def get(self, subscription_id: str) -> Optional[VipSubscription]:
        return self.rows.get(subscription_id)

    def has_active_or_pending(self, entity_kind: EntityKind, entity_id: str) -> Optional[VipSubscription]:
        for row in self.rows.values():
            if row.entity_kind == entity_kind and row.entity_id == entity_id and row.occupies_entity:
                return row
        return None

    def create(self, subscription: VipSubscription) -> VipSubscription:
        # Mirrors the partial unique index on occupying rows.
        if subscription.occupies_entity and self.occupying(subscription.entity_kind, subscription.entity_id):
            raise Conflict("duplicate occupying subscription")
        self.rows[subscription.id] = subscription
        return subscription

    def link_transaction(self, subscription_id: str, transaction_id: str) -> VipSubscription:
        row = self.rows.get(subscription_id)
        if row is None:
            raise NotFound(f"Subscription {subscription_id} not found")
        updated = row.model_copy(update={"transaction_id": transaction_id})
        self.rows[subscription_id] = updated
        return updated

    def transition_to(
        self,
        subscription_id: str,
        status: SubscriptionStatus,
        expected_current_status: SubscriptionStatus,
    ) -> VipSubscription:
        row = self.rows.get(subscription_id)
        if row is None:
            raise NotFound(f"Subscription {subscription_id} not found")
        if row.status != expected_current_status:
            raise StaleState(
                f"Subscription {subscription_id} is {row.status.value}",
                detail={"current_status": row.status.value},
            )
        update = {"status": status, "updated_at": datetime.now(timezone.utc)}
        if status == SubscriptionStatus.CANCELLED:
            update["cancelled_at"] = datetime.now(timezone.utc)
        updated = row.model_copy(update=update)
        self.rows[subscription_id] = updated
        return updated

    def cancel(self, subscription_id: str) -> VipSubscription:
        try:
            return self.transition_to(
                subscription_id, SubscriptionStatus.CANCELLED, SubscriptionStatus.ACTIVE
            )
        except StaleState as exc:
            raise NotActive("Subscription is not active", detail=exc.detail) from exc

    def delete(self, subscription_id: str) -> None:
        if self.fail_delete:
            raise RuntimeError("database unavailable")
        self.rows.pop(subscription_id, None)
        self.deleted.append(subscription_id)

    def list_for_principal(self, principal_id: str) -> Sequence[VipSubscription]:
        entities = self.managed.get(principal_id, set())
        return [row for row in self.rows.values() if (row.entity_kind, row.entity_id) in entities]

    def find_current(self, entity_kind: EntityKind, entity_id: str, now: datetime) -> Optional[VipSubscription]:
        for row in self.rows.values():
            if (
                row.entity_kind == entity_kind
                and row.entity_id == entity_id
                and row.status == SubscriptionStatus.ACTIVE
                and row.expires_at >= now
            ):
                return row
        return None

    def expire_lapsed(self, now: datetime) -> int:
        count = 0
        for row_id, row in list(self.rows.items()):
            if row.status == SubscriptionStatus.ACTIVE and row.expires_at < now:
                self.rows[row_id] = row.model_copy(update={"status": SubscriptionStatus.EXPIRED})
                count += 1
        return count

    def occupying(self, entity_kind: EntityKind, entity_id: str) -> List[VipSubscription]:
        return [
            row
            for row in self.rows.values()
            if row.entity_kind == entity_kind and row.entity_id == entity_id and row.occupies_entity
        ]


class InMemoryTransactionLedger(TransactionLedger):
    def __init__(self, store: InMemorySubscriptionStore) -> None:
        self.rows: Dict[str, PaymentTransaction] = {}
        self._store = store
        self.fail_create = False

    def create(self, transaction: PaymentTransaction) -> PaymentTransaction:
        if self.fail_create:
            raise RuntimeError("insert failed")
        self.rows[transaction.id] = transaction
        return transaction

    def get(self, transaction_id: str) -> Optional[PaymentTransaction]:
        return self.rows.get(transaction_id)

    def resolve(
        self,
        transaction_id: str,
        outcome: PaymentStatus,
        *,
        verified_by: Optional[str] = None,
        admin_notes: Optional[str] = None,
        expected_current_status: PaymentStatus = PaymentStatus.PENDING,
    ) -> PaymentTransaction:
        row = self.rows.get(transaction_id)
        if row is None:
            raise NotFound(f"Transaction {transaction_id} not found")
        if row.payment_status != expected_current_status:
            raise AlreadyResolved(f"Transaction {transaction_id} is already {row.payment_status.value}")
        updated = row.model_copy(
            update={
                "payment_status": outcome,
                "verified_by": verified_by,
                "admin_notes": admin_notes if admin_notes is not None else row.admin_notes,
                "resolved_at": datetime.now(timezone.utc),
            }
        )
        self.rows[transaction_id] = updated
        return updated

    def _matching(
        self, method: Optional[PaymentMethod], status: Optional[PaymentStatus]
    ) -> List[PaymentTransaction]:
        return sorted(
            (
                row
                for row in self.rows.values()
                if (method is None or row.method == method)
                and (status is None or row.payment_status == status)
            ),
            key=lambda row: row.created_at,
            reverse=True,
        )

    def list_for_admin(
        self,
        *,
        method: Optional[PaymentMethod] = None,
        status: Optional[PaymentStatus] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> Sequence[AdminTransactionView]:
        views = []
        for row in self._matching(method, status)[offset : offset + limit]:
            subscription = self._store.get(row.subscription_id)
            if subscription is None:
                continue
            views.append(
                AdminTransactionView(
                    transaction=row,
                    entity_kind=subscription.entity_kind,
                    entity_id=subscription.entity_id,
                    tier=subscription.tier,
                    subscription_status=subscription.status,
                    starts_at=subscription.starts_at,
                    expires_at=subscription.expires_at,
                )
            )
        return views

    def count_for_admin(
        self,
        *,
        method: Optional[PaymentMethod] = None,
        status: Optional[PaymentStatus] = None,
    ) -> int:
        return len(self._matching(method, status))


class InMemoryUnitOfWork:
    """Restores both stores when the block raises, like a rolled back transaction."""

    def __init__(self, store: InMemorySubscriptionStore, ledger: InMemoryTransactionLedger) -> None:
        self._store = store
        self._ledger = ledger
        self.commits = 0
        self.rollbacks = 0

    @contextmanager
    def __call__(self) -> Iterator[VipStores]:
        store_snapshot = copy.copy(self._store.rows)
        ledger_snapshot = copy.copy(self._ledger.rows)
        try:
            yield VipStores(subscriptions=self._store, transactions=self._ledger)
        except Exception:
            self._store.rows = store_snapshot
            self._ledger.rows = ledger_snapshot
            self.rollbacks += 1
            raise
        self.commits += 1


class FakeOwnershipLookup(OwnershipLookup):
    def __init__(self) -> None:
        self.profile_owners: Dict[str, str] = {}
        self.venue_grants: Set[Tuple[str, str]] = set()
        self.delegated_profiles: Set[Tuple[str, str]] = set()
        self.calls: List[str] = []

    def get_profile_owner(self, profile_id: str) -> Optional[str]:
        self.calls.append("direct")
        return self.profile_owners.get(profile_id)

    def has_venue_grant(self, principal_id: str, venue_id: str) -> bool:
        self.calls.append("venue")
        return (principal_id, venue_id) in self.venue_grants

    def manages_profile_via_venue(self, principal_id: str, profile_id: str) -> bool:
        self.calls.append("delegated")
        return (principal_id, profile_id) in self.delegated_profiles


class FakeQRProvider(InstantPaymentProvider):
    def __init__(self) -> None:
        self.configured = True
        self.error: Optional[Exception] = None
        self.generated: List[Tuple[int, str]] = []

    def is_configured(self) -> bool:
        return self.configured

    def generate(self, amount: int, reference: str) -> InstantPayment:
        if self.error is not None:
            raise self.error
        self.generated.append((amount, reference))
        return InstantPayment(
            qr_payload=f"PAYLOAD-{amount}",
            qr_image="data:image/png;base64,QR",
            settlement_reference=reference,
            amount=amount,
        )


class FakeNotifier(VipNotifier):
    def __init__(self) -> None:
        self.sent: List[Tuple[str, str]] = []
        self.fail = False

    def _record(self, name: str, subscription_id: str) -> None:
        if self.fail:
            raise RuntimeError("notification backend down")
        self.sent.append((name, subscription_id))

    def notify_purchase_created(self, subscription, transaction) -> None:
        self._record("purchase_created", subscription.id)

    def notify_payment_verified(self, subscription, transaction) -> None:
        self._record("payment_verified", subscription.id)

    def notify_payment_rejected(self, subscription, transaction, reason: str) -> None:
        self._record("payment_rejected", transaction.subscription_id)

    def notify_subscription_cancelled(self, subscription, cancelled_by: str) -> None:
        self._record("subscription_cancelled", subscription.id)


class FakeEventLogger(VipEventLogger):
    def __init__(self) -> None:
        self.events: List[VipAuditEvent] = []

    def log(self, event: VipAuditEvent) -> None:
        self.events.append(event)

    def types(self) -> List[str]:
        return [event.event_type.value for event in self.events]


class VipComponents(NamedTuple):
    store: InMemorySubscriptionStore
    ledger: InMemoryTransactionLedger
    unit_of_work: InMemoryUnitOfWork
    lookup: FakeOwnershipLookup
    qr: FakeQRProvider
    notifier: FakeNotifier
    event_logger: FakeEventLogger
    clock: FixedClock
    service: VipSubscriptionService


@pytest.fixture
def fixed_clock() -> FixedClock:
    return FixedClock()


@pytest.fixture
def ownership_lookup() -> FakeOwnershipLookup:
    lookup = FakeOwnershipLookup()
    lookup.profile_owners = {"P1": "owner-1", "P2": "worker-2"}
    lookup.venue_grants = {("venue-owner", "V1"), ("co-owner", "V1")}
    lookup.delegated_profiles = {("venue-owner", "P2")}
    return lookup


@pytest.fixture
def vip_components(fixed_clock: FixedClock, ownership_lookup: FakeOwnershipLookup) -> VipComponents:
    store = InMemorySubscriptionStore()
    store.managed = {
        "owner-1": {(EntityKind.PROFILE, "P1")},
        "venue-owner": {(EntityKind.VENUE, "V1"), (EntityKind.PROFILE, "P2")},
    }
    ledger = InMemoryTransactionLedger(store)
    unit_of_work = InMemoryUnitOfWork(store, ledger)
    qr = FakeQRProvider()
    notifier = FakeNotifier()
    event_logger = FakeEventLogger()
    service = VipSubscriptionService(
        subscriptions=store,
        transactions=ledger,
        unit_of_work=unit_of_work,
        ownership=OwnershipVerifier.from_lookup(ownership_lookup),
        qr_provider=qr,
        notifier=notifier,
        event_logger=event_logger,
        clock=fixed_clock,
    )
    return VipComponents(
        store=store,
        ledger=ledger,
        unit_of_work=unit_of_work,
        lookup=ownership_lookup,
        qr=qr,
        notifier=notifier,
        event_logger=event_logger,
        clock=fixed_clock,
        service=service,
    )


@pytest.fixture
def qr_not_configured() -> QRProviderNotConfigured:
    return QRProviderNotConfigured("PromptPay merchant ID not configured")
