"""API routes exposing billing synchronization."""
from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header, Request, Response
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse, PlainTextResponse

try:
    from backend import app_context
except ModuleNotFoundError as exc:  # pragma: no cover
    if exc.name != "backend":
        raise
    import app_context  # type: ignore[no-redef]

from ..billing import BillingError, WebhookVerificationError
from ..schemas.billing import (
    BillingErrorResponse,
    CheckoutSessionRequest,
    PortalSessionRequest,
    SessionUrlResponse,
    SubscriptionStatusResponse,
    WebhookReceivedResponse,
)
from ..services.billing import get_billing_components

logger = logging.getLogger(__name__)


def _get_current_user(authorization: Optional[str] = Header(None)):
    return app_context.get_current_user(authorization=authorization)


def _get_optional_current_user(authorization: Optional[str] = Header(None)):
    return app_context.get_optional_current_user(authorization=authorization)


def _error_response(exc: Exception, operation: str) -> Response:
    if isinstance(exc, BillingError):
        logger.warning("%s failed: %s", operation, exc.message)
        return exc.to_response()
    logger.exception("%s failed unexpectedly", operation)
    return JSONResponse(status_code=500, content={"error": str(exc) or exc.__class__.__name__})


_ERROR_RESPONSES = {
    400: {"model": BillingErrorResponse},
    401: {"model": BillingErrorResponse},
    500: {"model": BillingErrorResponse},
}

router = APIRouter(prefix="/api/billing", tags=["billing"])


@router.post("/checkout", response_model=SessionUrlResponse, responses=_ERROR_RESPONSES)
def create_checkout_session(
    payload: CheckoutSessionRequest,
    *,
    origin: Optional[str] = Header(None),
    current_user=Depends(_get_current_user),
):
    components = get_billing_components()
    try:
        session = components.checkout.create_checkout(
            str(current_user.id),
            current_user.email,
            payload.tier,
            payload.success_path,
            payload.cancel_path,
            origin=origin,
        )
    except Exception as exc:
        return _error_response(exc, "Checkout session creation")
    return SessionUrlResponse.from_session(session)


@router.post("/portal", response_model=SessionUrlResponse, responses={404: {"model": BillingErrorResponse}, **_ERROR_RESPONSES})
def create_portal_session(
    payload: Optional[PortalSessionRequest] = None,
    *,
    origin: Optional[str] = Header(None),
    referer: Optional[str] = Header(None),
    current_user=Depends(_get_current_user),
):
    components = get_billing_components()
    return_path = payload.return_path if payload is not None else None
    try:
        session = components.portal.create_portal_session(
            str(current_user.id),
            current_user.email,
            return_path,
            origin=origin,
            referer=referer,
        )
    except Exception as exc:
        return _error_response(exc, "Customer portal session creation")
    return SessionUrlResponse.from_session(session)


@router.post("/webhook", response_model=WebhookReceivedResponse)
async def receive_webhook(
    request: Request,
    *,
    stripe_signature: Optional[str] = Header(None, alias="Stripe-Signature"),
):
    components = get_billing_components()
    body = await request.body()
    try:
        await run_in_threadpool(components.webhooks.process, body, stripe_signature)
    except WebhookVerificationError as exc:
        return exc.to_response()
    except Exception as exc:
        logger.exception("Webhook processing failed before verification completed")
        return PlainTextResponse(f"Webhook Error: {exc}", status_code=400)
    return WebhookReceivedResponse(received=True)


@router.get("/subscription-status", response_model=SubscriptionStatusResponse, responses={500: {"model": BillingErrorResponse}})
def get_subscription_status(
    *,
    current_user=Depends(_get_optional_current_user),
):
    components = get_billing_components()
    user_id = str(current_user.id) if current_user is not None else None
    email = getattr(current_user, "email", None) if current_user is not None else None
    try:
        result = components.status.query_status(user_id, email)
    except Exception as exc:
        return _error_response(exc, "Subscription status query")
    return SubscriptionStatusResponse.from_result(result)
