"""Customer resolution and hosted session flows backed by the payment gateway."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Mapping, Optional, Protocol
from urllib.parse import urlparse

from .catalog import TierCatalog
from .config import BillingConfig
from .exceptions import (
    BillingValidationError,
    ConfigurationError,
    CustomerNotFoundError,
    DuplicateCustomerError,
)
from .models import (
    AccountProfile,
    ExternalCustomer,
    HostedSession,
    SubscriptionSnapshot,
    SubscriptionUpdate,
    WebhookEvent,
)

logger = logging.getLogger(__name__)

DEFAULT_SUCCESS_PATH = "/subscription-success?session_id={CHECKOUT_SESSION_ID}"
DEFAULT_CANCEL_PATH = "/pricing?canceled=true"


class PaymentGateway(Protocol):
    """External payment gateway integration."""

    def find_customer_by_email(self, email: str) -> Optional[ExternalCustomer]:
        ...

    def create_customer(self, *, email: str, metadata: Mapping[str, str]) -> ExternalCustomer:
        ...

    def create_checkout_session(
        self,
        *,
        customer_id: str,
        price_id: str,
        success_url: str,
        cancel_url: str,
        metadata: Mapping[str, str],
    ) -> HostedSession:
        ...

    def create_portal_session(self, *, customer_id: str, return_url: str) -> HostedSession:
        ...

    def retrieve_subscription(self, subscription_id: str) -> SubscriptionSnapshot:
        ...

    def find_active_subscription(self, customer_id: str) -> Optional[SubscriptionSnapshot]:
        ...

    def construct_event(self, payload: bytes, signature_header: str, secret: str) -> WebhookEvent:
        ...


class AccountProfileRepository(Protocol):
    """Persistence operations on the account profile table."""

    def get_profile(self, profile_id: str) -> Optional[AccountProfile]:
        ...

    def get_profile_by_user_reference(self, user_reference: str) -> Optional[AccountProfile]:
        ...

    def assign_customer(
        self,
        profile_id: str,
        *,
        user_id: str,
        email: Optional[str],
        customer_id: str,
    ) -> AccountProfile:
        ...

    def set_pending_tier(self, profile_id: str, tier: str) -> Optional[AccountProfile]:
        ...

    def apply_subscription_state(self, update: SubscriptionUpdate) -> int:
        ...


@dataclass(frozen=True)
class CustomerResolution:
    """Resolved customer reference and the profile that now carries it."""

    customer_id: str
    profile_id: str
    source: str


@dataclass(slots=True)
class CustomerIdentityResolver:
    """Maps an internal user to a stable gateway customer reference."""

    repository: AccountProfileRepository
    gateway: PaymentGateway

    def resolve(self, user_id: str, email: Optional[str], *, create: bool = True) -> str:
        return self.resolve_customer(user_id, email, create=create).customer_id

    def resolve_customer(
        self,
        user_id: str,
        email: Optional[str],
        *,
        create: bool = True,
    ) -> CustomerResolution:
        profile = self.repository.get_profile(user_id)
        if profile is not None and profile.stripe_customer_id:
            return CustomerResolution(profile.stripe_customer_id, profile.id, "profile")

        # Schemas mid-migration still key profiles by a separate user_id column.
        legacy = self.repository.get_profile_by_user_reference(user_id)
        if legacy is not None:
            if profile is None:
                profile = legacy
            if legacy.stripe_customer_id:
                if legacy.id != profile.id:
                    # The reference stays on the legacy row; the unique index forbids copying it.
                    logger.info(
                        "Resolved gateway customer from legacy profile",
                        extra={"billing_user_id": user_id, "billing_customer_id": legacy.stripe_customer_id},
                    )
                    return CustomerResolution(legacy.stripe_customer_id, profile.id, "legacy_profile")
                return self._persist(
                    profile_id=legacy.id,
                    user_id=user_id,
                    email=email,
                    customer_id=legacy.stripe_customer_id,
                    source="legacy_profile",
                )

        profile_id = profile.id if profile is not None else user_id
        customer: Optional[ExternalCustomer] = None
        source = "gateway_email"
        if email:
            customer = self.gateway.find_customer_by_email(email)
        if customer is None:
            if not create:
                raise CustomerNotFoundError("No Stripe customer found for this user")
            if not email:
                raise BillingValidationError("User email is required to create a customer")
            customer = self.gateway.create_customer(email=email, metadata={"user_id": user_id})
            source = "created"
            logger.info(
                "Created gateway customer",
                extra={"billing_user_id": user_id, "billing_customer_id": customer.customer_id},
            )

        return self._persist(
            profile_id=profile_id,
            user_id=user_id,
            email=email,
            customer_id=customer.customer_id,
            source=source,
        )

    def _persist(
        self,
        *,
        profile_id: str,
        user_id: str,
        email: Optional[str],
        customer_id: str,
        source: str,
    ) -> CustomerResolution:
        try:
            stored = self.repository.assign_customer(
                profile_id,
                user_id=user_id,
                email=email,
                customer_id=customer_id,
            )
        except DuplicateCustomerError:
            current = self.repository.get_profile(profile_id)
            if current is None or not current.stripe_customer_id:
                raise
            logger.warning(
                "Customer reference already claimed; adopting stored reference",
                extra={
                    "billing_user_id": user_id,
                    "billing_customer_id": customer_id,
                    "billing_stored_customer_id": current.stripe_customer_id,
                },
            )
            return CustomerResolution(current.stripe_customer_id, current.id, "profile")

        stored_customer_id = stored.stripe_customer_id or customer_id
        if stored_customer_id != customer_id:
            # A concurrent request assigned a reference first; the candidate is orphaned.
            logger.warning(
                "Concurrent customer resolution detected",
                extra={
                    "billing_user_id": user_id,
                    "billing_customer_id": customer_id,
                    "billing_stored_customer_id": stored_customer_id,
                },
            )
            source = "profile"
        logger.info(
            "Resolved gateway customer",
            extra={"billing_user_id": user_id, "billing_customer_id": stored_customer_id, "billing_source": source},
        )
        return CustomerResolution(stored_customer_id, stored.id, source)


@dataclass(slots=True)
class CheckoutSessionInitiator:
    """Starts hosted subscription checkout for a tier."""

    resolver: CustomerIdentityResolver
    repository: AccountProfileRepository
    gateway: PaymentGateway
    catalog: TierCatalog
    config: BillingConfig

    def create_checkout(
        self,
        user_id: str,
        email: Optional[str],
        tier: Optional[str],
        success_path: Optional[str] = None,
        cancel_path: Optional[str] = None,
        *,
        origin: Optional[str] = None,
    ) -> HostedSession:
        if not tier:
            raise BillingValidationError("Invalid checkout payload. Expected { tier }.")
        price_id = self.catalog.price_for_tier(tier)
        if not price_id:
            raise BillingValidationError(f"No Stripe price mapping configured for tier '{tier}'.")
        if not self.config.gateway_configured:
            raise ConfigurationError("STRIPE_SECRET_KEY is not set")

        resolution = self.resolver.resolve_customer(user_id, email)

        # Pending tier for the UI; the checkout webhook overwrites it.
        self.repository.set_pending_tier(resolution.profile_id, tier)

        base_url = (origin or self.config.app_base_url).rstrip("/")
        session = self.gateway.create_checkout_session(
            customer_id=resolution.customer_id,
            price_id=price_id,
            success_url=f"{base_url}{_redirect_path(success_path, DEFAULT_SUCCESS_PATH)}",
            cancel_url=f"{base_url}{_redirect_path(cancel_path, DEFAULT_CANCEL_PATH)}",
            metadata={"user_id": user_id, "tier": tier},
        )
        logger.info(
            "Checkout session created",
            extra={"billing_user_id": user_id, "billing_tier": tier, "billing_session_id": session.session_id},
        )
        return session


@dataclass(slots=True)
class PortalSessionInitiator:
    """Starts the hosted self-service billing portal for a known customer."""

    resolver: CustomerIdentityResolver
    gateway: PaymentGateway
    config: BillingConfig

    def create_portal_session(
        self,
        user_id: str,
        email: Optional[str],
        return_path: Optional[str] = None,
        *,
        origin: Optional[str] = None,
        referer: Optional[str] = None,
    ) -> HostedSession:
        if not self.config.gateway_configured:
            raise ConfigurationError("STRIPE_SECRET_KEY is not set")

        customer_id = self.resolver.resolve(user_id, email, create=False)
        base_url = (origin or self.config.app_base_url).rstrip("/")
        session = self.gateway.create_portal_session(
            customer_id=customer_id,
            return_url=f"{base_url}{resolve_return_path(return_path, referer)}",
        )
        logger.info(
            "Customer portal session created",
            extra={"billing_user_id": user_id, "billing_customer_id": customer_id},
        )
        return session


def _redirect_path(path: Optional[str], default: str) -> str:
    # Only app-relative paths; anything else could redirect off-site.
    if path and path.startswith("/"):
        return path
    return default


def resolve_return_path(return_path: Optional[str], referer: Optional[str]) -> str:
    """Pick the portal return path from the request, defaulting to ``/``."""

    if return_path and return_path.startswith("/"):
        return return_path
    if referer:
        try:
            path = urlparse(referer).path
        except ValueError:
            path = ""
        if path.startswith("/dashboard"):
            return "/dashboard"
    return "/"


__all__ = [
    "AccountProfileRepository",
    "CheckoutSessionInitiator",
    "CustomerIdentityResolver",
    "CustomerResolution",
    "DEFAULT_CANCEL_PATH",
    "DEFAULT_SUCCESS_PATH",
    "PaymentGateway",
    "PortalSessionInitiator",
    "resolve_return_path",
]
