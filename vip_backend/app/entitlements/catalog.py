"""Static pricing catalog for VIP entitlements."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
from typing import Dict, Optional, Tuple

from .exceptions import UnknownTier
from .models import DurationTier, EntityKind, parse_choice

CATALOG_CURRENCY = "THB"


@dataclass(frozen=True)
class TierPrice:
    """Price point for one duration tier."""

    tier: DurationTier
    days: int
    price: int
    discount_percent: int = 0
    original_price: Optional[int] = None
    popular: bool = False


@dataclass(frozen=True)
class EntityPricing:
    """Catalog entry for one entity kind."""

    entity_kind: EntityKind
    display_name: str
    description: str
    features: Tuple[str, ...]
    prices: Tuple[TierPrice, ...]


@dataclass(frozen=True)
class Quote:
    """Resolved price for an entity kind and tier."""

    entity_kind: EntityKind
    tier: DurationTier
    price: int
    currency: str
    duration: timedelta
    discount_percent: int = 0
    original_price: Optional[int] = None
    popular: bool = False

    @property
    def days(self) -> int:
        return self.duration.days

    @property
    def price_per_day(self) -> float:
        return round(self.price / self.duration.days, 2)

    @property
    def savings(self) -> int:
        if self.original_price is None:
            return 0
        return self.original_price - self.price


PRICING_CATALOG: Dict[EntityKind, EntityPricing] = {
    EntityKind.PROFILE: EntityPricing(
        entity_kind=EntityKind.PROFILE,
        display_name="Profile VIP",
        description="Boost your visibility in lineups and search results",
        features=(
            "VIP badge on profile",
            "Top position in venue lineup",
            "Search ranking boost",
        ),
        prices=(
            TierPrice(tier=DurationTier.TRIAL, days=7, price=99),
            TierPrice(tier=DurationTier.SHORT, days=30, price=299, discount_percent=29, original_price=424, popular=True),
            TierPrice(tier=DurationTier.MEDIUM, days=90, price=799, discount_percent=37, original_price=1273),
            TierPrice(tier=DurationTier.LONG, days=365, price=2499, discount_percent=51, original_price=5162),
        ),
    ),
    EntityKind.VENUE: EntityPricing(
        entity_kind=EntityKind.VENUE,
        display_name="Venue VIP",
        description="Maximize visibility on maps and search results",
        features=(
            "VIP badge on venue listing",
            "Featured map marker",
            "Priority search ranking",
            "Homepage featured placement",
        ),
        prices=(
            TierPrice(tier=DurationTier.TRIAL, days=7, price=299),
            TierPrice(tier=DurationTier.SHORT, days=30, price=899, discount_percent=30, original_price=1281, popular=True),
            TierPrice(tier=DurationTier.MEDIUM, days=90, price=2399, discount_percent=38, original_price=3844),
            TierPrice(tier=DurationTier.LONG, days=365, price=7499, discount_percent=52, original_price=15591),
        ),
    ),
}


def _to_quote(entity_kind: EntityKind, entry: TierPrice) -> Quote:
    return Quote(
        entity_kind=entity_kind,
        tier=entry.tier,
        price=entry.price,
        currency=CATALOG_CURRENCY,
        duration=timedelta(days=entry.days),
        discount_percent=entry.discount_percent,
        original_price=entry.original_price,
        popular=entry.popular,
    )


def get_entity_pricing(entity_kind: EntityKind | str) -> EntityPricing:
    """Return the catalog entry for an entity kind."""

    kind = parse_choice(EntityKind, entity_kind, field="entity_kind")
    return PRICING_CATALOG[kind]


def quote(entity_kind: EntityKind | str, tier: DurationTier | str) -> Quote:
    """Return the price, currency and duration for ``tier``, raising :class:`UnknownTier`."""

    pricing = get_entity_pricing(entity_kind)
    tier_key = tier.value if isinstance(tier, DurationTier) else str(tier).strip().lower()
    for entry in pricing.prices:
        if entry.tier.value == tier_key:
            return _to_quote(pricing.entity_kind, entry)
    allowed = ", ".join(entry.tier.value for entry in pricing.prices)
    raise UnknownTier(
        f"Unknown tier {tier_key!r} for {pricing.entity_kind.value}; expected one of: {allowed}",
        detail={"field": "tier"},
    )


def quotes(entity_kind: EntityKind | str) -> Tuple[Quote, ...]:
    """Return quotes for every tier of an entity kind, in catalog order."""

    pricing = get_entity_pricing(entity_kind)
    return tuple(_to_quote(pricing.entity_kind, entry) for entry in pricing.prices)
