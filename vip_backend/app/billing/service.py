"""Lifecycle orchestration for VIP purchases, confirmations and cancellations."""
from __future__ import annotations

import logging
import sys
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, ContextManager, List, NamedTuple, Optional, Protocol, Sequence, Tuple
from uuid import uuid4

from ..entitlements.catalog import EntityPricing, Quote, get_entity_pricing, quote, quotes
from ..entitlements.exceptions import (
    AlreadyResolved,
    Conflict,
    Forbidden,
    InvalidInput,
    InvalidMethod,
    MethodUnavailable,
    NotActive,
    NotFound,
    StaleState,
    TransactionCreateFailed,
)
from ..entitlements.models import (
    DurationTier,
    EntityKind,
    OwnershipAction,
    SubscriptionStatus,
    VipStatus,
    VipSubscription,
    parse_choice,
)
from .models import (
    AdminTransactionView,
    PaymentMethod,
    PaymentStatus,
    PaymentTransaction,
    PurchaseResult,
    VipAuditEvent,
    VipAuditEventType,
)
from .promptpay import InstantPayment, QRProviderNotConfigured

logger = logging.getLogger(__name__)


class SubscriptionStore(Protocol):
    """Persistence operations for subscriptions."""

    def get(self, subscription_id: str) -> Optional[VipSubscription]:
        ...

    def has_active_or_pending(self, entity_kind: EntityKind, entity_id: str) -> Optional[VipSubscription]:
        ...

    def create(self, subscription: VipSubscription) -> VipSubscription:
        ...

    def link_transaction(self, subscription_id: str, transaction_id: str) -> VipSubscription:
        ...

    def transition_to(
        self,
        subscription_id: str,
        status: SubscriptionStatus,
        expected_current_status: SubscriptionStatus,
    ) -> VipSubscription:
        ...

    def cancel(self, subscription_id: str) -> VipSubscription:
        ...

    def delete(self, subscription_id: str) -> None:
        ...

    def list_for_principal(self, principal_id: str) -> Sequence[VipSubscription]:
        ...

    def find_current(self, entity_kind: EntityKind, entity_id: str, now: datetime) -> Optional[VipSubscription]:
        ...

    def expire_lapsed(self, now: datetime) -> int:
        ...


class TransactionLedger(Protocol):
    """Persistence operations for payment transactions."""

    def create(self, transaction: PaymentTransaction) -> PaymentTransaction:
        ...

    def get(self, transaction_id: str) -> Optional[PaymentTransaction]:
        ...

    def resolve(
        self,
        transaction_id: str,
        outcome: PaymentStatus,
        *,
        verified_by: Optional[str] = None,
        admin_notes: Optional[str] = None,
        expected_current_status: PaymentStatus = PaymentStatus.PENDING,
    ) -> PaymentTransaction:
        ...

    def list_for_admin(
        self,
        *,
        method: Optional[PaymentMethod] = None,
        status: Optional[PaymentStatus] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> Sequence[AdminTransactionView]:
        ...

    def count_for_admin(
        self,
        *,
        method: Optional[PaymentMethod] = None,
        status: Optional[PaymentStatus] = None,
    ) -> int:
        ...


class VipStores(NamedTuple):
    """Store and ledger bound to the same storage transaction."""

    subscriptions: SubscriptionStore
    transactions: TransactionLedger


UnitOfWork = Callable[[], ContextManager[VipStores]]


class OwnershipAuthorizer(Protocol):
    def authorize(
        self,
        principal_id: str,
        entity_kind: EntityKind,
        entity_id: str,
        action: OwnershipAction,
    ) -> bool:
        ...


class InstantPaymentProvider(Protocol):
    """External collaborator producing instant QR payment payloads."""

    def is_configured(self) -> bool:
        ...

    def generate(self, amount: int, reference: str) -> InstantPayment:
        ...


class VipNotifier(Protocol):
    """Dispatches VIP lifecycle notifications to the purchaser."""

    def notify_purchase_created(self, subscription: VipSubscription, transaction: PaymentTransaction) -> None:
        ...

    def notify_payment_verified(self, subscription: VipSubscription, transaction: PaymentTransaction) -> None:
        ...

    def notify_payment_rejected(
        self,
        subscription: Optional[VipSubscription],
        transaction: PaymentTransaction,
        reason: str,
    ) -> None:
        ...

    def notify_subscription_cancelled(self, subscription: VipSubscription, cancelled_by: str) -> None:
        ...


class VipEventLogger(Protocol):
    """Captures structured VIP audit events."""

    def log(self, event: VipAuditEvent) -> None:
        ...


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def payment_reference(subscription_id: str) -> str:
    """Short upper-case reference the payer quotes with an instant transfer."""

    return "VIP" + subscription_id.replace("vip_", "", 1)[:12].upper()


# ``slots`` support for ``dataclass`` was added in Python 3.10.
_dataclass_kwargs = {"slots": True} if sys.version_info >= (3, 10) else {}


@dataclass(**_dataclass_kwargs)
class VipSubscriptionService:
    """Ties subscriptions and their payment transactions together.

    A purchase writes the subscription first and the transaction second; if
    the second write fails the subscription is deleted again. Confirmation and
    rejection resolve the transaction and transition the subscription inside
    one unit of work, so the pair is never observed half-updated.
    """

    subscriptions: SubscriptionStore
    transactions: TransactionLedger
    unit_of_work: UnitOfWork
    ownership: OwnershipAuthorizer
    qr_provider: InstantPaymentProvider
    notifier: VipNotifier
    event_logger: VipEventLogger
    clock: Callable[[], datetime] = _utcnow

    def _now(self) -> datetime:
        return self.clock()

    # ------------------------------------------------------------------
    # Catalog and read models
    # ------------------------------------------------------------------
    def available_payment_methods(self) -> List[PaymentMethod]:
        methods = [PaymentMethod.MANUAL_CASH]
        if self.qr_provider.is_configured():
            methods.append(PaymentMethod.INSTANT_QR)
        return methods

    def pricing(self, entity_kind: EntityKind | str) -> Tuple[EntityPricing, Tuple[Quote, ...]]:
        entry = get_entity_pricing(entity_kind)
        return entry, quotes(entry.entity_kind)

    def list_mine(self, principal_id: str) -> List[VipSubscription]:
        now = self._now()
        results: List[VipSubscription] = []
        for subscription in self.subscriptions.list_for_principal(principal_id):
            effective = subscription.effective_status(now)
            if effective != subscription.status:
                subscription = subscription.model_copy(update={"status": effective})
            results.append(subscription)
        return results

    def vip_status(self, entity_kind: EntityKind | str, entity_id: str) -> VipStatus:
        kind = parse_choice(EntityKind, entity_kind, field="entity_kind")
        current = self.subscriptions.find_current(kind, entity_id, self._now())
        if current is None:
            return VipStatus(entity_kind=kind, entity_id=entity_id, is_vip=False)
        return VipStatus(
            entity_kind=kind,
            entity_id=entity_id,
            is_vip=True,
            tier=current.tier,
            expires_at=current.expires_at,
        )

    def list_transactions(
        self,
        *,
        method: Optional[PaymentMethod | str] = None,
        status: Optional[PaymentStatus | str] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> Tuple[List[AdminTransactionView], int]:
        method_filter = parse_choice(PaymentMethod, method, field="method") if method else None
        status_filter = parse_choice(PaymentStatus, status, field="status") if status else None
        if limit < 1 or offset < 0:
            raise InvalidInput("limit must be positive and offset non-negative")
        items = self.transactions.list_for_admin(
            method=method_filter, status=status_filter, limit=limit, offset=offset
        )
        total = self.transactions.count_for_admin(method=method_filter, status=status_filter)
        return list(items), total

    # ------------------------------------------------------------------
    # Purchase
    # ------------------------------------------------------------------
    def purchase(
        self,
        *,
        principal_id: str,
        entity_kind: EntityKind | str,
        entity_id: str,
        tier: DurationTier | str,
        payment_method: PaymentMethod | str,
        is_admin: bool = False,
    ) -> PurchaseResult:
        kind = parse_choice(EntityKind, entity_kind, field="entity_kind")
        method = parse_choice(PaymentMethod, payment_method, field="payment_method")
        entity_id = (entity_id or "").strip()
        if not entity_id:
            raise InvalidInput("entity_id is required", detail={"field": "entity_id"})
        price = quote(kind, tier)

        if method == PaymentMethod.INSTANT_QR and not self.qr_provider.is_configured():
            raise MethodUnavailable("Instant QR payment is not available")
        if method == PaymentMethod.ADMIN_GRANT and not is_admin:
            raise Forbidden("Only administrators can grant VIP without payment")
        if not is_admin and not self.ownership.authorize(
            principal_id, kind, entity_id, OwnershipAction.PURCHASE
        ):
            raise Forbidden(f"You do not manage this {kind.value}")

        self._ensure_entity_free(kind, entity_id, actor_id=principal_id)

        now = self._now()
        subscription = self.subscriptions.create(
            VipSubscription(
                id=f"vip_{uuid4().hex}",
                entity_kind=kind,
                entity_id=entity_id,
                tier=price.tier,
                status=SubscriptionStatus.PENDING_PAYMENT,
                starts_at=now,
                expires_at=now + price.duration,
                price_paid=price.price,
                purchased_by=principal_id,
                created_at=now,
                updated_at=now,
            )
        )

        instant: Optional[InstantPayment] = None
        if method == PaymentMethod.INSTANT_QR:
            try:
                instant = self.qr_provider.generate(price.price, payment_reference(subscription.id))
            except QRProviderNotConfigured as exc:
                self._roll_back_purchase(subscription, reason="qr_not_configured")
                raise MethodUnavailable("Instant QR payment is not available") from exc
            except Exception as exc:
                self._roll_back_purchase(subscription, reason="qr_generation_failed")
                raise TransactionCreateFailed("Failed to create payment transaction") from exc

        try:
            transaction = self.transactions.create(
                PaymentTransaction(
                    id=f"txn_{uuid4().hex}",
                    subscription_id=subscription.id,
                    amount=price.price,
                    currency=price.currency,
                    method=method,
                    payment_status=PaymentStatus.PENDING,
                    qr_payload=instant.qr_payload if instant else None,
                    settlement_reference=instant.settlement_reference if instant else None,
                    purchased_by=principal_id,
                    created_at=now,
                )
            )
        except Exception as exc:
            self._roll_back_purchase(subscription, reason="transaction_create_failed")
            raise TransactionCreateFailed("Failed to create payment transaction") from exc

        try:
            subscription = self.subscriptions.link_transaction(subscription.id, transaction.id)
        except Exception as exc:
            logger.exception(
                "Failed to link transaction %s to subscription %s", transaction.id, subscription.id
            )
            self._roll_back_purchase(subscription, reason="transaction_link_failed")
            raise TransactionCreateFailed("Failed to create payment transaction") from exc

        self.event_logger.log(
            VipAuditEvent(
                event_type=VipAuditEventType.PURCHASE_CREATED,
                subscription_id=subscription.id,
                transaction_id=transaction.id,
                actor_id=principal_id,
                metadata={
                    "entity_kind": kind.value,
                    "entity_id": entity_id,
                    "tier": price.tier.value,
                    "method": method.value,
                },
            )
        )

        if method == PaymentMethod.ADMIN_GRANT:
            transaction, granted = self._resolve_pair(
                transaction.id,
                PaymentStatus.COMPLETED,
                actor_id=principal_id,
                notes="Granted by administrator",
            )
            subscription = granted or subscription
            self._notify("payment_verified", self.notifier.notify_payment_verified, subscription, transaction)
        else:
            self._notify("purchase_created", self.notifier.notify_purchase_created, subscription, transaction)

        return PurchaseResult(
            subscription=subscription,
            transaction=transaction,
            qr_image=instant.qr_image if instant else None,
        )

    def _ensure_entity_free(self, entity_kind: EntityKind, entity_id: str, *, actor_id: str) -> None:
        existing = self.subscriptions.has_active_or_pending(entity_kind, entity_id)
        if existing is None:
            return

        if existing.is_lapsed(self._now()):
            try:
                self.subscriptions.transition_to(
                    existing.id,
                    SubscriptionStatus.EXPIRED,
                    expected_current_status=SubscriptionStatus.ACTIVE,
                )
            except StaleState as exc:
                raise Conflict(
                    f"{entity_kind.value} {entity_id} already has a VIP subscription",
                    detail={"subscription_id": existing.id},
                ) from exc
            self.event_logger.log(
                VipAuditEvent(
                    event_type=VipAuditEventType.SUBSCRIPTION_EXPIRED,
                    subscription_id=existing.id,
                    actor_id=actor_id,
                )
            )
            return

        raise Conflict(
            f"{entity_kind.value} {entity_id} already has a {existing.status.value} VIP subscription",
            detail={"subscription_id": existing.id, "status": existing.status.value},
        )

    def _roll_back_purchase(self, subscription: VipSubscription, *, reason: str) -> None:
        try:
            self.subscriptions.delete(subscription.id)
        except Exception:
            logger.exception(
                "Rollback failed; orphan subscription %s left in %s",
                subscription.id,
                subscription.status.value,
            )
            self.event_logger.log(
                VipAuditEvent(
                    event_type=VipAuditEventType.ROLLBACK_FAILED,
                    subscription_id=subscription.id,
                    actor_id=subscription.purchased_by,
                    metadata={"reason": reason},
                )
            )
            return

        logger.warning("Rolled back subscription %s (%s)", subscription.id, reason)
        self.event_logger.log(
            VipAuditEvent(
                event_type=VipAuditEventType.PURCHASE_ROLLED_BACK,
                subscription_id=subscription.id,
                actor_id=subscription.purchased_by,
                metadata={"reason": reason},
            )
        )

    # ------------------------------------------------------------------
    # Confirmation paths
    # ------------------------------------------------------------------
    def verify_cash_payment(
        self,
        *,
        admin_id: str,
        transaction_id: str,
        admin_notes: Optional[str] = None,
    ) -> Tuple[PaymentTransaction, Optional[VipSubscription]]:
        transaction = self._require_pending(transaction_id, PaymentMethod.MANUAL_CASH)
        notes = (admin_notes or "").strip() or None
        resolved, subscription = self._resolve_pair(
            transaction.id, PaymentStatus.COMPLETED, actor_id=admin_id, notes=notes
        )
        if subscription is not None and subscription.status == SubscriptionStatus.ACTIVE:
            self._notify("payment_verified", self.notifier.notify_payment_verified, subscription, resolved)
        return resolved, subscription

    def confirm_instant_payment(
        self,
        *,
        transaction_id: str,
        verified_by: str,
        settlement_reference: Optional[str] = None,
    ) -> Tuple[PaymentTransaction, Optional[VipSubscription]]:
        """Entry point for the external verifier of instant QR payments."""

        transaction = self._require_pending(transaction_id, PaymentMethod.INSTANT_QR)
        if settlement_reference is not None and settlement_reference != transaction.settlement_reference:
            raise InvalidInput(
                "Settlement reference does not match the transaction",
                detail={"field": "settlement_reference"},
            )
        resolved, subscription = self._resolve_pair(
            transaction.id, PaymentStatus.COMPLETED, actor_id=verified_by, notes=None
        )
        if subscription is not None and subscription.status == SubscriptionStatus.ACTIVE:
            self._notify("payment_verified", self.notifier.notify_payment_verified, subscription, resolved)
        return resolved, subscription

    def reject_payment(
        self,
        *,
        admin_id: str,
        transaction_id: str,
        admin_notes: Optional[str],
    ) -> Tuple[PaymentTransaction, Optional[VipSubscription]]:
        reason = (admin_notes or "").strip()
        if not reason:
            raise InvalidInput("A rejection reason is required", detail={"field": "admin_notes"})

        transaction = self._require_pending(transaction_id, method=None)
        resolved, subscription = self._resolve_pair(
            transaction.id, PaymentStatus.FAILED, actor_id=admin_id, notes=reason
        )
        self._notify("payment_rejected", self.notifier.notify_payment_rejected, subscription, resolved, reason)
        return resolved, subscription

    def _require_pending(self, transaction_id: str, method: Optional[PaymentMethod]) -> PaymentTransaction:
        transaction = self.transactions.get(transaction_id)
        if transaction is None:
            raise NotFound(f"Transaction {transaction_id} not found")
        if method is not None and transaction.method != method:
            raise InvalidMethod(
                f"Transaction uses {transaction.method.value}, expected {method.value}",
                detail={"method": transaction.method.value},
            )
        if not transaction.is_pending:
            raise AlreadyResolved(
                f"Transaction {transaction_id} is already {transaction.payment_status.value}",
                detail={"payment_status": transaction.payment_status.value},
            )
        return transaction

    def _resolve_pair(
        self,
        transaction_id: str,
        outcome: PaymentStatus,
        *,
        actor_id: str,
        notes: Optional[str],
    ) -> Tuple[PaymentTransaction, Optional[VipSubscription]]:
        target = SubscriptionStatus.ACTIVE if outcome == PaymentStatus.COMPLETED else SubscriptionStatus.FAILED

        with self.unit_of_work() as stores:
            resolved = stores.transactions.resolve(
                transaction_id, outcome, verified_by=actor_id, admin_notes=notes
            )
            try:
                subscription: Optional[VipSubscription] = stores.subscriptions.transition_to(
                    resolved.subscription_id,
                    target,
                    expected_current_status=SubscriptionStatus.PENDING_PAYMENT,
                )
            except StaleState as exc:
                subscription = stores.subscriptions.get(resolved.subscription_id)
                current = subscription.status.value if subscription else "missing"
                logger.error(
                    "Payment %s resolved %s but subscription %s is %s; manual review required",
                    resolved.id,
                    outcome.value,
                    resolved.subscription_id,
                    current,
                )
                self.event_logger.log(
                    VipAuditEvent(
                        event_type=VipAuditEventType.PAYMENT_STATE_DIVERGENCE,
                        subscription_id=resolved.subscription_id,
                        transaction_id=resolved.id,
                        actor_id=actor_id,
                        metadata={
                            "payment_status": outcome.value,
                            "subscription_status": current,
                            "error": exc.code,
                        },
                    )
                )

        event_type = (
            VipAuditEventType.PAYMENT_VERIFIED
            if outcome == PaymentStatus.COMPLETED
            else VipAuditEventType.PAYMENT_REJECTED
        )
        self.event_logger.log(
            VipAuditEvent(
                event_type=event_type,
                subscription_id=resolved.subscription_id,
                transaction_id=resolved.id,
                actor_id=actor_id,
                metadata={"method": resolved.method.value},
            )
        )
        return resolved, subscription

    # ------------------------------------------------------------------
    # Cancellation and expiry
    # ------------------------------------------------------------------
    def cancel(
        self,
        *,
        principal_id: str,
        subscription_id: str,
        entity_kind: EntityKind | str,
        is_admin: bool = False,
    ) -> VipSubscription:
        kind = parse_choice(EntityKind, entity_kind, field="entity_kind")
        subscription = self.subscriptions.get(subscription_id)
        if subscription is None or subscription.entity_kind != kind:
            raise NotFound(f"Subscription {subscription_id} not found")

        if not is_admin and not self.ownership.authorize(
            principal_id, subscription.entity_kind, subscription.entity_id, OwnershipAction.CANCEL
        ):
            raise Forbidden(f"You do not manage this {kind.value}")

        effective = subscription.effective_status(self._now())
        if effective != SubscriptionStatus.ACTIVE:
            raise NotActive(
                f"Subscription is {effective.value}",
                detail={"current_status": effective.value},
            )

        cancelled = self.subscriptions.cancel(subscription.id)
        self.event_logger.log(
            VipAuditEvent(
                event_type=VipAuditEventType.SUBSCRIPTION_CANCELLED,
                subscription_id=cancelled.id,
                transaction_id=cancelled.transaction_id,
                actor_id=principal_id,
                metadata={"by_admin": str(is_admin).lower()},
            )
        )
        self._notify(
            "subscription_cancelled",
            self.notifier.notify_subscription_cancelled,
            cancelled,
            principal_id,
        )
        return cancelled

    def expire_lapsed_subscriptions(self) -> int:
        count = self.subscriptions.expire_lapsed(self._now())
        if count:
            self.event_logger.log(
                VipAuditEvent(
                    event_type=VipAuditEventType.SUBSCRIPTION_EXPIRED,
                    metadata={"count": str(count)},
                )
            )
        return count

    def _notify(self, name: str, send: Callable[..., None], *args) -> None:
        try:
            send(*args)
        except Exception:
            logger.exception("VIP %s notification failed", name)


__all__ = [
    "InstantPaymentProvider",
    "OwnershipAuthorizer",
    "SubscriptionStore",
    "TransactionLedger",
    "UnitOfWork",
    "VipEventLogger",
    "VipNotifier",
    "VipStores",
    "VipSubscriptionService",
    "payment_reference",
]
