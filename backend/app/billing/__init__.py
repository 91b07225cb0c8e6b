"""Billing package synchronizing account profiles with the payment gateway."""

from .catalog import TierCatalog, TierDescriptor
from .config import BillingConfig, load_billing_config
from .exceptions import (
    AuthenticationError,
    BillingError,
    BillingValidationError,
    ConfigurationError,
    CustomerNotFoundError,
    DuplicateCustomerError,
    UpstreamError,
    WebhookVerificationError,
)
from .models import (
    AccountProfile,
    BillingWebhookEventType,
    ExternalCustomer,
    HostedSession,
    SubscriptionSnapshot,
    SubscriptionStatus,
    SubscriptionStatusResult,
    SubscriptionUpdate,
    WebhookAcknowledgement,
    WebhookEvent,
)
from .service import (
    AccountProfileRepository,
    CheckoutSessionInitiator,
    CustomerIdentityResolver,
    CustomerResolution,
    PaymentGateway,
    PortalSessionInitiator,
)
from .status import SubscriptionStatusQueryService
from .webhooks import WebhookEventProcessor

__all__ = [
    "AccountProfile",
    "AccountProfileRepository",
    "AuthenticationError",
    "BillingConfig",
    "BillingError",
    "BillingValidationError",
    "BillingWebhookEventType",
    "CheckoutSessionInitiator",
    "ConfigurationError",
    "CustomerIdentityResolver",
    "CustomerNotFoundError",
    "CustomerResolution",
    "DuplicateCustomerError",
    "ExternalCustomer",
    "HostedSession",
    "PaymentGateway",
    "PortalSessionInitiator",
    "SubscriptionSnapshot",
    "SubscriptionStatus",
    "SubscriptionStatusQueryService",
    "SubscriptionStatusResult",
    "SubscriptionUpdate",
    "TierCatalog",
    "TierDescriptor",
    "UpstreamError",
    "WebhookAcknowledgement",
    "WebhookEvent",
    "WebhookEventProcessor",
    "load_billing_config",
]
