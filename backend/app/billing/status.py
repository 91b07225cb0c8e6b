"""Read-through subscription status lookups against the payment gateway."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from .catalog import TierCatalog
from .config import BillingConfig
from .exceptions import ConfigurationError
from .models import SubscriptionStatusResult
from .service import AccountProfileRepository, PaymentGateway

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class SubscriptionStatusQueryService:
    """Answers "is this user subscribed?" from the gateway, never the cache.

    Every intermediate absence (no caller, no email, no customer, no active
    subscription) is a normal negative result. Only missing configuration
    and gateway failures raise.
    """

    repository: AccountProfileRepository
    gateway: PaymentGateway
    catalog: TierCatalog
    config: BillingConfig

    def query_status(self, user_id: Optional[str], email: Optional[str] = None) -> SubscriptionStatusResult:
        if not self.config.gateway_configured:
            raise ConfigurationError("STRIPE_SECRET_KEY is not set")

        if user_id is None:
            logger.info("No authenticated caller, returning unsubscribed state")
            return SubscriptionStatusResult.unsubscribed()

        if not email:
            profile = self.repository.get_profile(user_id)
            email = profile.email if profile is not None else None
        if not email:
            logger.info("User %s has no email, returning unsubscribed state", user_id)
            return SubscriptionStatusResult.unsubscribed()

        customer = self.gateway.find_customer_by_email(email)
        if customer is None:
            logger.info("No customer found for user %s, returning unsubscribed state", user_id)
            return SubscriptionStatusResult.unsubscribed()

        subscription = self.gateway.find_active_subscription(customer.customer_id)
        if subscription is None:
            logger.info("No active subscription for customer %s", customer.customer_id)
            return SubscriptionStatusResult.unsubscribed()

        tier = self.catalog.derive_tier(subscription.price_id, subscription.product_id)
        logger.info(
            "Active subscription found",
            extra={
                "billing_customer_id": customer.customer_id,
                "billing_subscription_id": subscription.subscription_id,
                "billing_tier": tier,
            },
        )
        return SubscriptionStatusResult(
            subscribed=True,
            tier=tier,
            product_id=subscription.product_id,
            subscription_end=subscription.current_period_end,
        )


__all__ = ["SubscriptionStatusQueryService"]
