"""Static catalog mapping Stripe prices and products to subscription tiers."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Iterable, Optional, Tuple

from .config import TIER_NAMES, BillingConfig


@dataclass(frozen=True)
class TierDescriptor:
    """Describes a subscription tier and its gateway identifiers."""

    name: str
    price_id: Optional[str] = None
    product_id: Optional[str] = None


class TierCatalog:
    """Lookup table between gateway identifiers and internal tier names."""

    def __init__(
        self,
        descriptors: Iterable[TierDescriptor],
        *,
        fallback_tier: Optional[str] = None,
    ) -> None:
        self._descriptors: Dict[str, TierDescriptor] = {}
        self._by_price: Dict[str, str] = {}
        self._by_product: Dict[str, str] = {}
        for descriptor in descriptors:
            self._descriptors[descriptor.name] = descriptor
            _register(self._by_price, descriptor.price_id, descriptor.name, "price")
            _register(self._by_product, descriptor.product_id, descriptor.name, "product")
        if fallback_tier is not None and fallback_tier not in self._descriptors:
            raise ValueError(f"Unknown fallback tier: {fallback_tier}")
        self._fallback_tier = fallback_tier

    @classmethod
    def from_config(cls, config: BillingConfig) -> "TierCatalog":
        descriptors = [
            TierDescriptor(
                name=tier,
                price_id=config.tier_prices.get(tier),
                product_id=config.tier_products.get(tier),
            )
            for tier in TIER_NAMES
        ]
        return cls(descriptors, fallback_tier=config.fallback_tier)

    @property
    def tiers(self) -> Tuple[TierDescriptor, ...]:
        return tuple(self._descriptors.values())

    def get(self, tier: str) -> Optional[TierDescriptor]:
        return self._descriptors.get(tier)

    def price_for_tier(self, tier: Optional[str]) -> Optional[str]:
        """Return the configured price for ``tier`` or ``None``."""

        if not tier:
            return None
        descriptor = self._descriptors.get(tier)
        if descriptor is None or not descriptor.price_id:
            return None
        return descriptor.price_id

    def tier_for_price(self, price_id: Optional[str]) -> Optional[str]:
        if not price_id:
            return None
        return self._by_price.get(price_id)

    def tier_for_product(self, product_id: Optional[str]) -> Optional[str]:
        if not product_id:
            return None
        return self._by_product.get(product_id)

    def derive_tier(self, price_id: Optional[str], product_id: Optional[str] = None) -> Optional[str]:
        """Resolve a tier from a subscription item, preferring the price id.

        Unknown identifiers resolve to the configured fallback tier, which is
        unset by default so that a misconfigured price is never mistaken for
        a paid entitlement.
        """

        tier = self.tier_for_price(price_id) or self.tier_for_product(product_id)
        if tier is None:
            return self._fallback_tier
        return tier


def _register(index: Dict[str, str], identifier: Optional[str], tier: str, kind: str) -> None:
    if not identifier:
        return
    existing = index.get(identifier)
    if existing is not None and existing != tier:
        raise ValueError(f"{kind} {identifier} is mapped to both {existing!r} and {tier!r}")
    index[identifier] = tier


__all__ = ["TierCatalog", "TierDescriptor"]
