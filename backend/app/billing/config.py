"""Billing configuration helpers."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Mapping, Optional
import os

TIER_NAMES = ("starter", "professional", "enterprise")


@dataclass(frozen=True)
class BillingConfig:
    """Configuration for the Stripe billing integration."""

    stripe_secret_key: Optional[str]
    webhook_secret: Optional[str]
    tier_prices: Dict[str, str] = field(default_factory=dict)
    tier_products: Dict[str, str] = field(default_factory=dict)
    fallback_tier: Optional[str] = None
    app_base_url: str = "http://localhost:5173"
    webhook_tolerance_seconds: int = 300

    @property
    def gateway_configured(self) -> bool:
        return bool(self.stripe_secret_key)


def _to_int(value: Optional[str], *, default: int) -> int:
    if value is None or value == "":
        return default
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"Expected integer value, got {value!r}") from exc


def _clean(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    stripped = value.strip()
    return stripped or None


def load_billing_config(env: Optional[Mapping[str, str]] = None) -> BillingConfig:
    """Load :class:`BillingConfig` from environment variables."""

    env_mapping = os.environ if env is None else env

    tier_prices: Dict[str, str] = {}
    tier_products: Dict[str, str] = {}
    for tier in TIER_NAMES:
        price_id = _clean(env_mapping.get(f"STRIPE_{tier.upper()}_PRICE_ID"))
        if price_id:
            tier_prices[tier] = price_id
        product_id = _clean(env_mapping.get(f"STRIPE_{tier.upper()}_PRODUCT_ID"))
        if product_id:
            tier_products[tier] = product_id

    fallback_tier = _clean(env_mapping.get("BILLING_FALLBACK_TIER"))
    if fallback_tier is not None:
        fallback_tier = fallback_tier.lower()
        if fallback_tier not in TIER_NAMES:
            raise ValueError(f"BILLING_FALLBACK_TIER must be one of {TIER_NAMES}, got {fallback_tier!r}")

    app_base_url = env_mapping.get("APP_BASE_URL", "http://localhost:5173")
    tolerance = max(0, _to_int(env_mapping.get("STRIPE_WEBHOOK_TOLERANCE_SECONDS"), default=300))

    return BillingConfig(
        stripe_secret_key=_clean(env_mapping.get("STRIPE_SECRET_KEY")),
        webhook_secret=_clean(env_mapping.get("STRIPE_WEBHOOK_SECRET")),
        tier_prices=tier_prices,
        tier_products=tier_products,
        fallback_tier=fallback_tier,
        app_base_url=app_base_url.rstrip("/"),
        webhook_tolerance_seconds=tolerance,
    )


__all__ = ["BillingConfig", "TIER_NAMES", "load_billing_config"]
