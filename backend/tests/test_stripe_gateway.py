"""Stripe adapter tests with the SDK calls stubbed out."""
from __future__ import annotations

from datetime import datetime, timezone
from types import SimpleNamespace

import pytest
import stripe

from backend.app.billing import ConfigurationError, UpstreamError, WebhookVerificationError
from backend.app.billing.gateway import (
    StripePaymentGateway,
    construct_webhook_event,
    reference_id,
    snapshot_from_object,
)
from backend.app.services.billing import UnconfiguredPaymentGateway
from backend.tests.billing_fakes import WEBHOOK_SECRET, event_body, sign_payload, subscription_object


@pytest.fixture
def stripe_gateway() -> StripePaymentGateway:
    return StripePaymentGateway("sk_test_123")


def test_find_customer_by_email_returns_first_match(monkeypatch, stripe_gateway) -> None:
    captured = {}

    def _list(**kwargs):
        captured.update(kwargs)
        return SimpleNamespace(data=[{"id": "cus_1", "email": "ada@example.com", "metadata": {"user_id": "u1"}}])

    monkeypatch.setattr(stripe.Customer, "list", _list)

    customer = stripe_gateway.find_customer_by_email("ada@example.com")

    assert customer.customer_id == "cus_1"
    assert customer.metadata == {"user_id": "u1"}
    assert captured == {"email": "ada@example.com", "limit": 1, "api_key": "sk_test_123"}


def test_find_customer_by_email_returns_none_when_empty(monkeypatch, stripe_gateway) -> None:
    monkeypatch.setattr(stripe.Customer, "list", lambda **kwargs: SimpleNamespace(data=[]))

    assert stripe_gateway.find_customer_by_email("nobody@example.com") is None


def test_checkout_session_is_single_item_subscription(monkeypatch, stripe_gateway) -> None:
    captured = {}

    def _create(**kwargs):
        captured.update(kwargs)
        return {"id": "cs_1", "url": "https://checkout.stripe.test/cs_1"}

    monkeypatch.setattr(stripe.checkout.Session, "create", _create)

    session = stripe_gateway.create_checkout_session(
        customer_id="cus_1",
        price_id="price_starter",
        success_url="https://app.test/ok",
        cancel_url="https://app.test/cancel",
        metadata={"user_id": "u1", "tier": "starter"},
    )

    assert session.session_id == "cs_1"
    assert session.url == "https://checkout.stripe.test/cs_1"
    assert captured["mode"] == "subscription"
    assert captured["line_items"] == [{"price": "price_starter", "quantity": 1}]
    assert captured["metadata"] == {"user_id": "u1", "tier": "starter"}


def test_portal_session_passes_return_url(monkeypatch, stripe_gateway) -> None:
    captured = {}

    def _create(**kwargs):
        captured.update(kwargs)
        return SimpleNamespace(id="bps_1", url="https://billing.stripe.test/session")

    monkeypatch.setattr(stripe.billing_portal.Session, "create", _create)

    session = stripe_gateway.create_portal_session(customer_id="cus_1", return_url="https://app.test/")

    assert session.url == "https://billing.stripe.test/session"
    assert captured["customer"] == "cus_1"
    assert captured["return_url"] == "https://app.test/"


def test_find_active_subscription_filters_by_status(monkeypatch, stripe_gateway) -> None:
    captured = {}

    def _list(**kwargs):
        captured.update(kwargs)
        return SimpleNamespace(data=[subscription_object(price_id="price_professional", product_id="prod_professional")])

    monkeypatch.setattr(stripe.Subscription, "list", _list)

    snapshot = stripe_gateway.find_active_subscription("cus_1")

    assert captured["status"] == "active"
    assert captured["limit"] == 1
    assert snapshot.price_id == "price_professional"
    assert snapshot.product_id == "prod_professional"
    assert snapshot.is_active


def test_stripe_errors_become_upstream_errors(monkeypatch, stripe_gateway) -> None:
    def _retrieve(subscription_id, **kwargs):
        raise stripe.StripeError("No such subscription")

    monkeypatch.setattr(stripe.Subscription, "retrieve", _retrieve)

    with pytest.raises(UpstreamError) as exc_info:
        stripe_gateway.retrieve_subscription("sub_missing")

    assert exc_info.value.status_code == 500
    assert "No such subscription" in exc_info.value.message


def test_gateway_requires_api_key() -> None:
    with pytest.raises(ValueError):
        StripePaymentGateway("")


def test_construct_webhook_event_parses_verified_body() -> None:
    body = event_body("invoice.payment_failed", {"id": "in_1", "customer": "cus_1"}, event_id="evt_9")

    event = construct_webhook_event(body, sign_payload(body), WEBHOOK_SECRET)

    assert event.event_id == "evt_9"
    assert event.event_type == "invoice.payment_failed"
    assert event.data_object["customer"] == "cus_1"
    assert event.created == datetime.fromtimestamp(1_700_000_000, tz=timezone.utc)


def test_construct_webhook_event_rejects_bad_signature() -> None:
    body = event_body("invoice.payment_failed", {"id": "in_1", "customer": "cus_1"})

    with pytest.raises(WebhookVerificationError):
        construct_webhook_event(body, "t=1,v1=deadbeef", WEBHOOK_SECRET)


def test_construct_webhook_event_rejects_body_without_type() -> None:
    body = b'{"id": "evt_1", "data": {"object": {}}}'

    with pytest.raises(WebhookVerificationError):
        construct_webhook_event(body, sign_payload(body), WEBHOOK_SECRET)


def test_snapshot_accepts_expanded_references() -> None:
    data = subscription_object()
    data["customer"] = {"id": "cus_expanded", "object": "customer"}
    data["items"]["data"][0]["price"]["product"] = {"id": "prod_expanded"}

    snapshot = snapshot_from_object(data)

    assert snapshot.customer_id == "cus_expanded"
    assert snapshot.product_id == "prod_expanded"
    assert snapshot.current_period_end == datetime.fromtimestamp(1_800_000_000, tz=timezone.utc)


def test_snapshot_without_items_has_no_price() -> None:
    snapshot = snapshot_from_object({"id": "sub_1", "customer": "cus_1", "status": "incomplete"})

    assert snapshot.price_id is None
    assert snapshot.product_id is None
    assert snapshot.current_period_end is None


@pytest.mark.parametrize(
    ("value", "expected"),
    [(None, None), ("", None), ("cus_1", "cus_1"), ({"id": "cus_2"}, "cus_2"), (SimpleNamespace(id="cus_3"), "cus_3")],
)
def test_reference_id(value, expected) -> None:
    assert reference_id(value) == expected


def test_unconfigured_gateway_still_verifies_webhooks() -> None:
    gateway = UnconfiguredPaymentGateway()
    body = event_body("customer.subscription.deleted", {"id": "sub_1", "customer": "cus_1"})

    event = gateway.construct_event(body, sign_payload(body), WEBHOOK_SECRET)

    assert event.event_type == "customer.subscription.deleted"
    with pytest.raises(ConfigurationError):
        gateway.find_customer_by_email("ada@example.com")
