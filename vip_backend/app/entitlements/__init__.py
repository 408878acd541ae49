"""VIP entitlement domain: catalog, ownership checks and the subscription store."""

from .catalog import CATALOG_CURRENCY, PRICING_CATALOG, Quote, get_entity_pricing, quote, quotes
from .exceptions import (
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
    UnknownTier,
    VipError,
)
from .models import (
    DurationTier,
    EntityKind,
    OwnershipAction,
    SubscriptionStatus,
    VipStatus,
    VipSubscription,
)
from .ownership import (
    DelegatedOwnershipResolver,
    DirectOwnershipResolver,
    OwnershipLookup,
    OwnershipResolver,
    OwnershipVerifier,
    PostgresOwnershipLookup,
)
from .repository import PostgresSubscriptionStore, managed_connection

__all__ = [
    "CATALOG_CURRENCY",
    "PRICING_CATALOG",
    "Quote",
    "get_entity_pricing",
    "quote",
    "quotes",
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
    "DurationTier",
    "EntityKind",
    "OwnershipAction",
    "SubscriptionStatus",
    "VipStatus",
    "VipSubscription",
    "DelegatedOwnershipResolver",
    "DirectOwnershipResolver",
    "OwnershipLookup",
    "OwnershipResolver",
    "OwnershipVerifier",
    "PostgresOwnershipLookup",
    "PostgresSubscriptionStore",
    "managed_connection",
]
