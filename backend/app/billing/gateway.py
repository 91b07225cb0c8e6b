"""Stripe implementation of the payment gateway used by billing services."""
from __future__ import annotations

import json
import logging
from contextlib import contextmanager
from typing import Any, Dict, Iterator, Mapping, Optional

import stripe

from .exceptions import UpstreamError, WebhookVerificationError
from .models import (
    ExternalCustomer,
    HostedSession,
    SubscriptionSnapshot,
    WebhookEvent,
    parse_timestamp,
)

logger = logging.getLogger(__name__)


@contextmanager
def _gateway_call(operation: str) -> Iterator[None]:
    try:
        yield
    except stripe.StripeError as exc:
        message = getattr(exc, "user_message", None) or str(exc)
        logger.error("Stripe %s failed: %s", operation, message)
        raise UpstreamError(f"Stripe error during {operation}: {message}") from exc


class StripePaymentGateway:
    """Thin adapter translating Stripe objects into billing domain models."""

    def __init__(self, api_key: str, *, webhook_tolerance_seconds: int = 300) -> None:
        if not api_key:
            raise ValueError("api_key must be provided")
        self._api_key = api_key
        self._tolerance = webhook_tolerance_seconds

    def find_customer_by_email(self, email: str) -> Optional[ExternalCustomer]:
        with _gateway_call("customer lookup"):
            result = stripe.Customer.list(email=email, limit=1, api_key=self._api_key)
        customers = list(getattr(result, "data", None) or [])
        if not customers:
            return None
        return customer_from_object(customers[0])

    def create_customer(self, *, email: str, metadata: Mapping[str, str]) -> ExternalCustomer:
        with _gateway_call("customer creation"):
            customer = stripe.Customer.create(
                email=email,
                metadata=dict(metadata),
                api_key=self._api_key,
            )
        return customer_from_object(customer)

    def create_checkout_session(
        self,
        *,
        customer_id: str,
        price_id: str,
        success_url: str,
        cancel_url: str,
        metadata: Mapping[str, str],
    ) -> HostedSession:
        with _gateway_call("checkout session creation"):
            session = stripe.checkout.Session.create(
                customer=customer_id,
                line_items=[{"price": price_id, "quantity": 1}],
                mode="subscription",
                success_url=success_url,
                cancel_url=cancel_url,
                metadata=dict(metadata),
                api_key=self._api_key,
            )
        return HostedSession(session_id=_field(session, "id"), url=_field(session, "url") or "")

    def create_portal_session(self, *, customer_id: str, return_url: str) -> HostedSession:
        with _gateway_call("portal session creation"):
            session = stripe.billing_portal.Session.create(
                customer=customer_id,
                return_url=return_url,
                api_key=self._api_key,
            )
        return HostedSession(session_id=_field(session, "id"), url=_field(session, "url") or "")

    def retrieve_subscription(self, subscription_id: str) -> SubscriptionSnapshot:
        with _gateway_call("subscription retrieval"):
            subscription = stripe.Subscription.retrieve(subscription_id, api_key=self._api_key)
        return snapshot_from_object(subscription)

    def find_active_subscription(self, customer_id: str) -> Optional[SubscriptionSnapshot]:
        with _gateway_call("subscription lookup"):
            result = stripe.Subscription.list(
                customer=customer_id,
                status="active",
                limit=1,
                api_key=self._api_key,
            )
        subscriptions = list(getattr(result, "data", None) or [])
        if not subscriptions:
            return None
        return snapshot_from_object(subscriptions[0])

    def construct_event(self, payload: bytes, signature_header: str, secret: str) -> WebhookEvent:
        return construct_webhook_event(payload, signature_header, secret, tolerance=self._tolerance)


def construct_webhook_event(
    payload: bytes,
    signature_header: str,
    secret: str,
    *,
    tolerance: int = 300,
) -> WebhookEvent:
    """Verify the ``Stripe-Signature`` header and parse the event body.

    Verification only needs the signing secret, never the API key.
    """

    try:
        body = payload.decode("utf-8") if isinstance(payload, (bytes, bytearray)) else payload
        stripe.WebhookSignature.verify_header(body, signature_header, secret, tolerance)
    except UnicodeDecodeError as exc:
        raise WebhookVerificationError("Invalid payload encoding") from exc
    except stripe.SignatureVerificationError as exc:
        raise WebhookVerificationError(str(exc) or "Invalid signature") from exc
    return event_from_body(body)


def event_from_body(body: str) -> WebhookEvent:
    try:
        data = json.loads(body)
    except ValueError as exc:
        raise WebhookVerificationError("Invalid payload") from exc
    if not isinstance(data, dict) or not data.get("type"):
        raise WebhookVerificationError("Invalid payload")

    data_section = data.get("data") or {}
    data_object = data_section.get("object") if isinstance(data_section, dict) else None
    return WebhookEvent(
        event_id=str(data.get("id") or ""),
        event_type=str(data["type"]),
        data_object=data_object if isinstance(data_object, dict) else {},
        created=data.get("created"),
    )


def customer_from_object(customer: Any) -> ExternalCustomer:
    metadata = _field(customer, "metadata") or {}
    return ExternalCustomer(
        customer_id=str(_field(customer, "id")),
        email=_field(customer, "email"),
        metadata={str(key): str(metadata[key]) for key in _keys(metadata)},
    )


def snapshot_from_object(subscription: Any) -> SubscriptionSnapshot:
    """Normalize a Stripe subscription (object or webhook dict)."""

    item = first_subscription_item(subscription)
    price = _field(item, "price")
    period_end = _field(subscription, "current_period_end")
    if period_end is None:
        # Newer API versions report the billing period per item.
        period_end = _field(item, "current_period_end")
    return SubscriptionSnapshot(
        subscription_id=str(_field(subscription, "id")),
        customer_id=reference_id(_field(subscription, "customer")),
        status=str(_field(subscription, "status") or ""),
        price_id=reference_id(price),
        product_id=reference_id(_field(price, "product")),
        current_period_end=_safe_timestamp(period_end),
    )


def first_subscription_item(subscription: Any) -> Any:
    items = _field(_field(subscription, "items"), "data") or []
    try:
        return items[0]
    except (IndexError, KeyError, TypeError):
        return None


def reference_id(value: Any) -> Optional[str]:
    """Return the id of an expandable field, which may be a string or an object."""

    if value is None:
        return None
    if isinstance(value, str):
        return value or None
    identifier = _field(value, "id")
    return str(identifier) if identifier else None


def _field(obj: Any, key: str) -> Any:
    if obj is None:
        return None
    try:
        return obj[key]
    except (KeyError, IndexError, TypeError, AttributeError):
        return getattr(obj, key, None) if not isinstance(obj, (dict, list, str)) else None


def _keys(obj: Any) -> list:
    if isinstance(obj, dict):
        return list(obj.keys())
    keys = getattr(obj, "keys", None)
    return list(keys()) if callable(keys) else []


def _safe_timestamp(value: Any) -> Optional[Any]:
    try:
        return parse_timestamp(value)
    except (TypeError, ValueError, OverflowError, OSError):
        logger.warning("Ignoring invalid subscription period end %r", value)
        return None


__all__ = [
    "StripePaymentGateway",
    "construct_webhook_event",
    "customer_from_object",
    "event_from_body",
    "reference_id",
    "snapshot_from_object",
]
