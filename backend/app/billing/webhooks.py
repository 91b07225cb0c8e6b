"""Webhook ingestion: verifies gateway notifications and applies their effect."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from .catalog import TierCatalog
from .config import BillingConfig
from .exceptions import WebhookVerificationError
from .gateway import reference_id, snapshot_from_object
from .models import (
    BillingWebhookEventType,
    SubscriptionSnapshot,
    SubscriptionStatus,
    SubscriptionUpdate,
    WebhookAcknowledgement,
    WebhookEvent,
)
from .service import AccountProfileRepository, PaymentGateway

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class WebhookEventProcessor:
    """Sole writer of authoritative subscription state on account profiles."""

    repository: AccountProfileRepository
    gateway: PaymentGateway
    catalog: TierCatalog
    config: BillingConfig

    def process(self, raw_body: bytes, signature_header: Optional[str]) -> WebhookAcknowledgement:
        """Verify and apply one delivery.

        Raises :class:`WebhookVerificationError` before touching any state when
        the signature cannot be verified. After verification the delivery is
        always acknowledged; downstream failures are logged and reported via
        ``applied=False`` so the gateway does not redeliver indefinitely.
        """

        if not signature_header or not self.config.webhook_secret:
            logger.error("Webhook rejected: missing signature or webhook secret")
            raise WebhookVerificationError("Missing signature or webhook secret")

        try:
            event = self.gateway.construct_event(raw_body, signature_header, self.config.webhook_secret)
        except WebhookVerificationError as exc:
            logger.error("Webhook rejected: %s", exc.message)
            raise

        logger.info(
            "Stripe event received",
            extra={"billing_event_id": event.event_id, "billing_event_type": event.event_type},
        )
        event_type = BillingWebhookEventType.parse(event.event_type)
        if event_type is None:
            logger.info("Ignoring unhandled event type %s", event.event_type)
            return WebhookAcknowledgement(event_id=event.event_id, event_type=event.event_type, handled=False)

        try:
            matched = self.apply(event_type, event)
        except Exception:
            logger.exception(
                "Failed to apply webhook event",
                extra={"billing_event_id": event.event_id, "billing_event_type": event.event_type},
            )
            return WebhookAcknowledgement(
                event_id=event.event_id,
                event_type=event.event_type,
                handled=True,
                applied=False,
            )
        return WebhookAcknowledgement(
            event_id=event.event_id,
            event_type=event.event_type,
            handled=True,
            matched_rows=matched,
        )

    def apply(self, event_type: BillingWebhookEventType, event: WebhookEvent) -> int:
        if event_type == BillingWebhookEventType.CHECKOUT_SESSION_COMPLETED:
            return self._handle_checkout_completed(event)
        if event_type == BillingWebhookEventType.SUBSCRIPTION_UPDATED:
            return self._handle_subscription_updated(event)
        if event_type == BillingWebhookEventType.SUBSCRIPTION_DELETED:
            return self._handle_subscription_deleted(event)
        if event_type == BillingWebhookEventType.INVOICE_PAYMENT_FAILED:
            return self._handle_payment_failed(event)
        return 0

    def _handle_checkout_completed(self, event: WebhookEvent) -> int:
        session = event.data_object
        customer_id = reference_id(session.get("customer"))
        subscription_id = reference_id(session.get("subscription"))
        if not customer_id or not subscription_id:
            logger.info("Checkout session %s carries no subscription; skipping", session.get("id"))
            return 0

        snapshot = self.gateway.retrieve_subscription(subscription_id)
        tier = self._derive_tier(snapshot, customer_id)
        update = SubscriptionUpdate(
            customer_id=customer_id,
            status=SubscriptionStatus.ACTIVE.value,
            tier=tier,
            set_tier=tier is not None,
            subscription_end=snapshot.current_period_end,
            set_subscription_end=snapshot.current_period_end is not None,
            event_at=event.created,
        )
        return self._write(update, "Subscription activated")

    def _handle_subscription_updated(self, event: WebhookEvent) -> int:
        snapshot = snapshot_from_object(event.data_object)
        if not snapshot.customer_id:
            logger.warning("Subscription update %s has no customer", snapshot.subscription_id)
            return 0
        tier = self._derive_tier(snapshot, snapshot.customer_id)
        update = SubscriptionUpdate(
            customer_id=snapshot.customer_id,
            status=snapshot.status,
            tier=tier,
            set_tier=tier is not None,
            subscription_end=snapshot.current_period_end,
            set_subscription_end=snapshot.current_period_end is not None,
            event_at=event.created,
        )
        return self._write(update, "Subscription updated")

    def _handle_subscription_deleted(self, event: WebhookEvent) -> int:
        customer_id = reference_id(event.data_object.get("customer"))
        if not customer_id:
            return 0
        update = SubscriptionUpdate(
            customer_id=customer_id,
            status=SubscriptionStatus.CANCELED.value,
            tier=None,
            set_tier=True,
            event_at=event.created,
        )
        return self._write(update, "Subscription canceled")

    def _handle_payment_failed(self, event: WebhookEvent) -> int:
        customer_id = reference_id(event.data_object.get("customer"))
        if not customer_id:
            return 0
        update = SubscriptionUpdate(
            customer_id=customer_id,
            status=SubscriptionStatus.PAST_DUE.value,
            event_at=event.created,
        )
        return self._write(update, "Payment failed")

    def _derive_tier(self, snapshot: SubscriptionSnapshot, customer_id: str) -> Optional[str]:
        tier = self.catalog.derive_tier(snapshot.price_id, snapshot.product_id)
        if tier is None:
            logger.warning(
                "No tier configured for subscription item; leaving tier unchanged",
                extra={
                    "billing_customer_id": customer_id,
                    "billing_price_id": snapshot.price_id,
                    "billing_product_id": snapshot.product_id,
                },
            )
        return tier

    def _write(self, update: SubscriptionUpdate, description: str) -> int:
        matched = self.repository.apply_subscription_state(update)
        if matched == 0:
            logger.warning(
                "%s but no profile matched customer", description,
                extra={"billing_customer_id": update.customer_id},
            )
        else:
            logger.info(
                "%s for customer", description,
                extra={
                    "billing_customer_id": update.customer_id,
                    "billing_status": update.status,
                    "billing_tier": update.tier,
                },
            )
        return matched


__all__ = ["WebhookEventProcessor"]
