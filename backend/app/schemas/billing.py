"""API schemas for billing endpoints."""
from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from ..billing import HostedSession, SubscriptionStatusResult


class CheckoutSessionRequest(BaseModel):
    tier: Optional[str] = None
    success_path: Optional[str] = Field(alias="successPath", default=None)
    cancel_path: Optional[str] = Field(alias="cancelPath", default=None)

    model_config = ConfigDict(populate_by_name=True)


class PortalSessionRequest(BaseModel):
    return_path: Optional[str] = Field(alias="returnPath", default=None)

    model_config = ConfigDict(populate_by_name=True)


class SessionUrlResponse(BaseModel):
    url: str

    @classmethod
    def from_session(cls, session: HostedSession) -> "SessionUrlResponse":
        return cls(url=session.url)


class WebhookReceivedResponse(BaseModel):
    received: bool = True


class SubscriptionStatusResponse(BaseModel):
    subscribed: bool
    tier: Optional[str] = None
    product_id: Optional[str] = None
    subscription_end: Optional[str] = None

    @classmethod
    def from_result(cls, result: SubscriptionStatusResult) -> "SubscriptionStatusResponse":
        subscription_end = result.subscription_end
        return cls(
            subscribed=result.subscribed,
            tier=result.tier,
            product_id=result.product_id,
            subscription_end=subscription_end.isoformat() if subscription_end else None,
        )


class BillingErrorResponse(BaseModel):
    error: str
