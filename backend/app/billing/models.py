"""Domain models for billing synchronization."""
from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class SubscriptionStatus(str, Enum):
    """Subscription states written by the application itself.

    Statuses reported by the gateway on subscription updates are stored
    verbatim and may fall outside this enum (``trialing``, ``unpaid`` ...).
    """

    ACTIVE = "active"
    PAST_DUE = "past_due"
    CANCELED = "canceled"


class BillingWebhookEventType(str, Enum):
    """Gateway event types that mutate account profiles."""

    CHECKOUT_SESSION_COMPLETED = "checkout.session.completed"
    SUBSCRIPTION_UPDATED = "customer.subscription.updated"
    SUBSCRIPTION_DELETED = "customer.subscription.deleted"
    INVOICE_PAYMENT_FAILED = "invoice.payment_failed"

    @classmethod
    def parse(cls, value: str) -> Optional["BillingWebhookEventType"]:
        try:
            return cls(value)
        except ValueError:
            return None


class AccountProfile(BaseModel):
    """Local cache of a user's billing relationship."""

    id: str = Field(description="Internal user identifier")
    user_id: Optional[str] = Field(default=None, description="Legacy alternate user reference")
    email: Optional[str] = None
    stripe_customer_id: Optional[str] = None
    subscription_tier: Optional[str] = None
    subscription_status: Optional[str] = None
    subscription_end: Optional[datetime] = None
    last_event_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    model_config = ConfigDict(populate_by_name=True, frozen=True)


class ExternalCustomer(BaseModel):
    """Customer record held by the payment gateway."""

    customer_id: str
    email: Optional[str] = None
    metadata: Dict[str, str] = Field(default_factory=dict)

    model_config = ConfigDict(frozen=True)


class SubscriptionSnapshot(BaseModel):
    """Gateway view of a subscription at the time it was fetched."""

    subscription_id: str
    customer_id: Optional[str] = None
    status: str
    price_id: Optional[str] = None
    product_id: Optional[str] = None
    current_period_end: Optional[datetime] = None

    model_config = ConfigDict(frozen=True)

    @property
    def is_active(self) -> bool:
        return self.status == SubscriptionStatus.ACTIVE.value


class SubscriptionUpdate(BaseModel):
    """Fields a webhook applies to the profile owning ``customer_id``.

    ``tier`` is only written when ``set_tier`` is true so that events which
    carry no tier information leave the stored tier untouched.
    """

    customer_id: str
    status: str
    tier: Optional[str] = None
    set_tier: bool = False
    subscription_end: Optional[datetime] = None
    set_subscription_end: bool = False
    event_at: Optional[datetime] = None

    model_config = ConfigDict(frozen=True)


class WebhookEvent(BaseModel):
    """Verified gateway notification. Never persisted."""

    event_id: str
    event_type: str
    data_object: Dict[str, Any] = Field(default_factory=dict)
    created: Optional[datetime] = None

    model_config = ConfigDict(frozen=True)

    @field_validator("created", mode="before")
    @classmethod
    def _parse_epoch(cls, value: object) -> object:
        return parse_timestamp(value)


class HostedSession(BaseModel):
    """Redirect target for a gateway-hosted checkout or portal flow."""

    session_id: Optional[str] = None
    url: str

    model_config = ConfigDict(frozen=True)


class SubscriptionStatusResult(BaseModel):
    """Live answer from the gateway for a single user."""

    subscribed: bool = False
    tier: Optional[str] = None
    product_id: Optional[str] = None
    subscription_end: Optional[datetime] = None

    model_config = ConfigDict(frozen=True)

    @classmethod
    def unsubscribed(cls) -> "SubscriptionStatusResult":
        return cls()


class WebhookAcknowledgement(BaseModel):
    """Outcome of a verified webhook delivery."""

    event_id: str
    event_type: str
    handled: bool
    applied: bool = True
    matched_rows: int = 0

    model_config = ConfigDict(frozen=True)


def parse_timestamp(value: object) -> Optional[datetime]:
    """Convert gateway epoch seconds or ISO strings to aware datetimes."""

    if value is None or value == "":
        return None
    if isinstance(value, bool):
        raise TypeError("Unsupported timestamp value")
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value, tz=timezone.utc)
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, str):
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    raise TypeError("Unsupported timestamp value")


__all__ = [
    "AccountProfile",
    "BillingWebhookEventType",
    "ExternalCustomer",
    "HostedSession",
    "SubscriptionSnapshot",
    "SubscriptionStatus",
    "SubscriptionStatusResult",
    "SubscriptionUpdate",
    "WebhookAcknowledgement",
    "WebhookEvent",
    "parse_timestamp",
]
