"""Application wiring for the billing synchronization services."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional

from ..billing import (
    BillingConfig,
    CheckoutSessionInitiator,
    ConfigurationError,
    CustomerIdentityResolver,
    PortalSessionInitiator,
    SubscriptionStatusQueryService,
    TierCatalog,
    WebhookEvent,
    WebhookEventProcessor,
    load_billing_config,
)
from ..billing.gateway import StripePaymentGateway, construct_webhook_event
from ..billing.repository import PostgresAccountProfileRepository
from ..billing.service import AccountProfileRepository, PaymentGateway


logger = logging.getLogger("billing")


class UnconfiguredPaymentGateway:
    """Stand-in used when ``STRIPE_SECRET_KEY`` is unset.

    Webhook signatures can still be verified; every API call fails.
    """

    def __init__(self, *, webhook_tolerance_seconds: int = 300) -> None:
        self._tolerance = webhook_tolerance_seconds

    def _fail(self, *args, **kwargs):
        raise ConfigurationError("STRIPE_SECRET_KEY is not set")

    find_customer_by_email = _fail
    create_customer = _fail
    create_checkout_session = _fail
    create_portal_session = _fail
    retrieve_subscription = _fail
    find_active_subscription = _fail

    def construct_event(self, payload: bytes, signature_header: str, secret: str) -> WebhookEvent:
        return construct_webhook_event(payload, signature_header, secret, tolerance=self._tolerance)


@dataclass(frozen=True)
class BillingComponents:
    """Billing services sharing one configuration, store and gateway."""

    config: BillingConfig
    catalog: TierCatalog
    resolver: CustomerIdentityResolver
    checkout: CheckoutSessionInitiator
    portal: PortalSessionInitiator
    webhooks: WebhookEventProcessor
    status: SubscriptionStatusQueryService


def build_billing_components(
    config: BillingConfig,
    *,
    repository: AccountProfileRepository,
    gateway: Optional[PaymentGateway] = None,
) -> BillingComponents:
    if gateway is None:
        if config.gateway_configured:
            gateway = StripePaymentGateway(
                config.stripe_secret_key or "",
                webhook_tolerance_seconds=config.webhook_tolerance_seconds,
            )
        else:
            logger.warning("STRIPE_SECRET_KEY is not set; billing endpoints will fail")
            gateway = UnconfiguredPaymentGateway(
                webhook_tolerance_seconds=config.webhook_tolerance_seconds,
            )

    catalog = TierCatalog.from_config(config)
    if not any(descriptor.price_id for descriptor in catalog.tiers):
        logger.warning("No Stripe price identifiers configured; checkout is unavailable")

    resolver = CustomerIdentityResolver(repository=repository, gateway=gateway)
    return BillingComponents(
        config=config,
        catalog=catalog,
        resolver=resolver,
        checkout=CheckoutSessionInitiator(
            resolver=resolver,
            repository=repository,
            gateway=gateway,
            catalog=catalog,
            config=config,
        ),
        portal=PortalSessionInitiator(resolver=resolver, gateway=gateway, config=config),
        webhooks=WebhookEventProcessor(
            repository=repository,
            gateway=gateway,
            catalog=catalog,
            config=config,
        ),
        status=SubscriptionStatusQueryService(
            repository=repository,
            gateway=gateway,
            catalog=catalog,
            config=config,
        ),
    )


@lru_cache(maxsize=1)
def get_billing_components() -> BillingComponents:
    return build_billing_components(
        load_billing_config(),
        repository=PostgresAccountProfileRepository(),
    )


__all__ = [
    "BillingComponents",
    "UnconfiguredPaymentGateway",
    "build_billing_components",
    "get_billing_components",
]
