import asyncio
import json

import pytest

import backend.main as backend_main
from backend.app.billing import (
    AuthenticationError,
    BillingValidationError,
    ConfigurationError,
    CustomerNotFoundError,
    UpstreamError,
    WebhookVerificationError,
)


@pytest.mark.parametrize(
    ("error", "status_code"),
    [
        (AuthenticationError("Missing authorization header"), 401),
        (BillingValidationError("Invalid checkout payload. Expected { tier }."), 400),
        (CustomerNotFoundError("No Stripe customer found for this user"), 404),
        (ConfigurationError("STRIPE_SECRET_KEY is not set"), 500),
        (UpstreamError("Stripe error during customer lookup: boom"), 500),
    ],
)
def test_billing_errors_render_error_body(error, status_code):
    response = asyncio.run(backend_main.handle_billing_error(None, error))

    assert response.status_code == status_code
    assert json.loads(response.body) == {"error": error.message}


def test_to_http_exception_carries_payload():
    exc = CustomerNotFoundError("No Stripe customer found for this user").to_http_exception()

    assert exc.status_code == 404
    assert exc.detail == {"error": "No Stripe customer found for this user"}


def test_webhook_verification_error_renders_plain_text():
    response = WebhookVerificationError("Invalid signature").to_response()

    assert response.status_code == 400
    assert response.body == b"Webhook Error: Invalid signature"
