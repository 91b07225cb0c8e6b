"""Errors raised by the billing synchronization subsystem."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional

from fastapi import HTTPException, status
from fastapi.responses import JSONResponse, PlainTextResponse


@dataclass
class BillingError(Exception):
    """Base class for billing failures surfaced to API callers."""

    message: str
    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    detail: Optional[Mapping[str, Any]] = field(default=None)

    def __post_init__(self) -> None:
        base_detail: Dict[str, Any] = {"error": self.message}
        if self.detail:
            base_detail.update(self.detail)
        object.__setattr__(self, "_payload", base_detail)
        super().__init__(self.message)

    def __str__(self) -> str:
        return self.message

    @property
    def payload(self) -> Mapping[str, Any]:
        """Serialized representation suitable for JSON responses."""

        return self._payload

    def to_http_exception(self) -> HTTPException:
        return HTTPException(status_code=self.status_code, detail=dict(self.payload))

    def to_response(self) -> JSONResponse:
        return JSONResponse(status_code=self.status_code, content=dict(self.payload))


@dataclass
class AuthenticationError(BillingError):
    status_code: int = status.HTTP_401_UNAUTHORIZED


@dataclass
class BillingValidationError(BillingError):
    status_code: int = status.HTTP_400_BAD_REQUEST


@dataclass
class CustomerNotFoundError(BillingError):
    status_code: int = status.HTTP_404_NOT_FOUND


@dataclass
class ConfigurationError(BillingError):
    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR


@dataclass
class UpstreamError(BillingError):
    """Gateway or store call failed; never retried internally."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR


@dataclass
class DuplicateCustomerError(BillingError):
    """Another profile already owns the customer reference."""

    status_code: int = status.HTTP_409_CONFLICT


@dataclass
class WebhookVerificationError(BillingError):
    status_code: int = status.HTTP_400_BAD_REQUEST

    def to_response(self) -> PlainTextResponse:  # type: ignore[override]
        return PlainTextResponse(f"Webhook Error: {self.message}", status_code=self.status_code)


__all__ = [
    "AuthenticationError",
    "BillingError",
    "BillingValidationError",
    "ConfigurationError",
    "CustomerNotFoundError",
    "DuplicateCustomerError",
    "UpstreamError",
    "WebhookVerificationError",
]
