"""VIP billing package: payment transactions and the purchase lifecycle."""

from .config import VipConfig, load_vip_config
from .models import (
    AdminTransactionView,
    PaymentMethod,
    PaymentStatus,
    PaymentTransaction,
    PurchaseResult,
    VipAuditEvent,
    VipAuditEventType,
)
from .promptpay import InstantPayment, PromptPayQRGenerator, QRProviderNotConfigured
from .service import (
    InstantPaymentProvider,
    OwnershipAuthorizer,
    SubscriptionStore,
    TransactionLedger,
    UnitOfWork,
    VipEventLogger,
    VipNotifier,
    VipStores,
    VipSubscriptionService,
)

__all__ = [
    "AdminTransactionView",
    "InstantPayment",
    "InstantPaymentProvider",
    "OwnershipAuthorizer",
    "PaymentMethod",
    "PaymentStatus",
    "PaymentTransaction",
    "PromptPayQRGenerator",
    "PurchaseResult",
    "QRProviderNotConfigured",
    "SubscriptionStore",
    "TransactionLedger",
    "UnitOfWork",
    "VipAuditEvent",
    "VipAuditEventType",
    "VipConfig",
    "VipEventLogger",
    "VipNotifier",
    "VipStores",
    "VipSubscriptionService",
    "load_vip_config",
]
