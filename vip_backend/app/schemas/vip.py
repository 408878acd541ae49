"""API schemas for VIP endpoints."""
from __future__ import annotations

from datetime import datetime
from typing import List, Optional, Sequence

from pydantic import BaseModel, ConfigDict, Field

from ..billing import AdminTransactionView, PaymentMethod, PaymentTransaction, PurchaseResult
from ..entitlements import Quote, VipStatus, VipSubscription
from ..entitlements.catalog import EntityPricing


class PurchaseRequest(BaseModel):
    # Missing values are reported by the service as invalid_input (400).
    entity_kind: Optional[str] = Field(alias="entityKind", default=None)
    entity_id: Optional[str] = Field(alias="entityId", default=None)
    tier: Optional[str] = None
    payment_method: Optional[str] = Field(alias="paymentMethod", default=None)

    model_config = ConfigDict(populate_by_name=True)


class CancelRequest(BaseModel):
    entity_kind: Optional[str] = Field(alias="entityKind", default=None)

    model_config = ConfigDict(populate_by_name=True)


class VerifyPaymentRequest(BaseModel):
    admin_notes: Optional[str] = Field(alias="adminNotes", default=None)

    model_config = ConfigDict(populate_by_name=True)


class RejectPaymentRequest(BaseModel):
    # Emptiness is checked by the service so a missing reason is a 400.
    admin_notes: Optional[str] = Field(alias="adminNotes", default=None)

    model_config = ConfigDict(populate_by_name=True)


class SubscriptionResponse(BaseModel):
    id: str
    entity_kind: str = Field(alias="entityKind")
    entity_id: str = Field(alias="entityId")
    tier: str
    status: str
    starts_at: datetime = Field(alias="startsAt")
    expires_at: datetime = Field(alias="expiresAt")
    price_paid: int = Field(alias="pricePaid")
    transaction_id: Optional[str] = Field(alias="transactionId", default=None)
    cancelled_at: Optional[datetime] = Field(alias="cancelledAt", default=None)
    created_at: datetime = Field(alias="createdAt")

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_subscription(cls, subscription: VipSubscription) -> "SubscriptionResponse":
        return cls(
            id=subscription.id,
            entity_kind=subscription.entity_kind.value,
            entity_id=subscription.entity_id,
            tier=subscription.tier.value,
            status=subscription.status.value,
            starts_at=subscription.starts_at,
            expires_at=subscription.expires_at,
            price_paid=subscription.price_paid,
            transaction_id=subscription.transaction_id,
            cancelled_at=subscription.cancelled_at,
            created_at=subscription.created_at,
        )


class TransactionResponse(BaseModel):
    id: str
    subscription_id: str = Field(alias="subscriptionId")
    amount: int
    currency: str
    method: str
    payment_status: str = Field(alias="paymentStatus")
    qr_payload: Optional[str] = Field(alias="qrPayload", default=None)
    settlement_reference: Optional[str] = Field(alias="settlementReference", default=None)
    admin_notes: Optional[str] = Field(alias="adminNotes", default=None)
    verified_by: Optional[str] = Field(alias="verifiedBy", default=None)
    created_at: datetime = Field(alias="createdAt")
    resolved_at: Optional[datetime] = Field(alias="resolvedAt", default=None)

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_transaction(cls, transaction: PaymentTransaction) -> "TransactionResponse":
        return cls(
            id=transaction.id,
            subscription_id=transaction.subscription_id,
            amount=transaction.amount,
            currency=transaction.currency,
            method=transaction.method.value,
            payment_status=transaction.payment_status.value,
            qr_payload=transaction.qr_payload,
            settlement_reference=transaction.settlement_reference,
            admin_notes=transaction.admin_notes,
            verified_by=transaction.verified_by,
            created_at=transaction.created_at,
            resolved_at=transaction.resolved_at,
        )


class PurchaseResponse(BaseModel):
    subscription: SubscriptionResponse
    transaction: TransactionResponse
    qr_image: Optional[str] = Field(alias="qrImage", default=None)

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_result(cls, result: PurchaseResult) -> "PurchaseResponse":
        return cls(
            subscription=SubscriptionResponse.from_subscription(result.subscription),
            transaction=TransactionResponse.from_transaction(result.transaction),
            qr_image=result.qr_image,
        )


class SubscriptionListResponse(BaseModel):
    subscriptions: List[SubscriptionResponse]

    model_config = ConfigDict(populate_by_name=True)


class PaymentResolutionResponse(BaseModel):
    transaction: TransactionResponse
    subscription: Optional[SubscriptionResponse] = None

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_pair(
        cls, transaction: PaymentTransaction, subscription: Optional[VipSubscription]
    ) -> "PaymentResolutionResponse":
        return cls(
            transaction=TransactionResponse.from_transaction(transaction),
            subscription=SubscriptionResponse.from_subscription(subscription) if subscription else None,
        )


class TierQuoteResponse(BaseModel):
    tier: str
    days: int
    price: int
    currency: str
    price_per_day: float = Field(alias="pricePerDay")
    discount_percent: int = Field(alias="discountPercent", default=0)
    original_price: Optional[int] = Field(alias="originalPrice", default=None)
    savings: int = 0
    popular: bool = False

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_quote(cls, quote: Quote) -> "TierQuoteResponse":
        return cls(
            tier=quote.tier.value,
            days=quote.days,
            price=quote.price,
            currency=quote.currency,
            price_per_day=quote.price_per_day,
            discount_percent=quote.discount_percent,
            original_price=quote.original_price,
            savings=quote.savings,
            popular=quote.popular,
        )


class PricingResponse(BaseModel):
    entity_kind: str = Field(alias="entityKind")
    display_name: str = Field(alias="displayName")
    description: str
    features: List[str]
    tiers: List[TierQuoteResponse]
    payment_methods: List[str] = Field(alias="paymentMethods")

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def build(
        cls,
        pricing: EntityPricing,
        quotes: Sequence[Quote],
        methods: Sequence[PaymentMethod],
    ) -> "PricingResponse":
        return cls(
            entity_kind=pricing.entity_kind.value,
            display_name=pricing.display_name,
            description=pricing.description,
            features=list(pricing.features),
            tiers=[TierQuoteResponse.from_quote(item) for item in quotes],
            payment_methods=[method.value for method in methods],
        )


class VipStatusResponse(BaseModel):
    entity_kind: str = Field(alias="entityKind")
    entity_id: str = Field(alias="entityId")
    is_vip: bool = Field(alias="isVip")
    tier: Optional[str] = None
    expires_at: Optional[datetime] = Field(alias="expiresAt", default=None)

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_status(cls, status: VipStatus) -> "VipStatusResponse":
        return cls(
            entity_kind=status.entity_kind.value,
            entity_id=status.entity_id,
            is_vip=status.is_vip,
            tier=status.tier.value if status.tier else None,
            expires_at=status.expires_at,
        )


class AdminTransactionResponse(TransactionResponse):
    entity_kind: str = Field(alias="entityKind")
    entity_id: str = Field(alias="entityId")
    tier: str
    subscription_status: str = Field(alias="subscriptionStatus")
    starts_at: datetime = Field(alias="startsAt")
    expires_at: datetime = Field(alias="expiresAt")

    @classmethod
    def from_view(cls, view: AdminTransactionView) -> "AdminTransactionResponse":
        base = TransactionResponse.from_transaction(view.transaction).model_dump()
        return cls(
            **base,
            entity_kind=view.entity_kind.value,
            entity_id=view.entity_id,
            tier=view.tier.value,
            subscription_status=view.subscription_status.value,
            starts_at=view.starts_at,
            expires_at=view.expires_at,
        )


class AdminTransactionListResponse(BaseModel):
    items: List[AdminTransactionResponse]
    total: int
    limit: int
    offset: int

    model_config = ConfigDict(populate_by_name=True)


class ExpireLapsedResponse(BaseModel):
    expired: int

    model_config = ConfigDict(populate_by_name=True)
