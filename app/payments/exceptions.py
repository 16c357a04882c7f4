"""
Payment-specific exceptions.

Exception Hierarchy:
    PaymentError (base for payment domain)
    ├── PaymentNotFoundError - Intent/owner lookup failures (404)
    ├── PaymentValidationError - Bad amount, currency, owner state (400)
    ├── PaymentPermissionError - Caller does not own the entity (403)
    ├── SignatureVerificationError - Webhook failed authentication (401)
    ├── WebhookPayloadError - Webhook body unparseable/incomplete (400)
    └── ProviderError - Base for provider adapter errors (502)
        ├── ProviderUnavailableError - Timeout, 5xx, 429, circuit open (503, retryable)
        ├── ProviderRequestError - Provider rejected the request (502)
        └── ProviderNotConfiguredError - Missing credentials (503)

    PaymentConflictError - Checkout already in progress (inherits ConflictError)
    ├── StaleRecordError - Compare-and-swap lost to another writer
    ├── InvalidStateTransitionError - Transition not allowed from current state
    └── LockAcquisitionError - Distributed lock held elsewhere

Usage:
    from payments.exceptions import PaymentConflictError, ProviderUnavailableError

    try:
        result = checkout.initiate(...)
    except ProviderUnavailableError:
        # Retryable with backoff; the intent is already marked failed
        ...

Note:
    Provider errors carry internal detail (status codes, provider messages)
    for logs only. API views replace them with a generic message.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from core.exceptions import (
    BaseApplicationError,
    ConflictError,
    ExternalServiceError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)

if TYPE_CHECKING:
    from typing import Any


# =============================================================================
# Payment Domain Exceptions
# =============================================================================


class PaymentError(BaseApplicationError):
    """
    Base exception for all payment operations.

    Example:
        try:
            settlement.reject(intent_id, reason, actor)
        except PaymentError as e:
            return Response(e.to_dict(), status=e.http_status)
    """

    default_error_code: str = "PAYMENT_ERROR"


class PaymentNotFoundError(PaymentError, NotFoundError):
    """Raised when a payment intent or owning entity cannot be found."""

    default_error_code: str = "PAYMENT_NOT_FOUND"
    http_status: int = 404


class PaymentValidationError(PaymentError, ValidationError):
    """
    Raised when payment validation fails.

    Use for:
    - Non-positive or non-integer amounts
    - Amount not matching the authoritative owner price
    - Unsupported currency or provider
    - Owner not payable (already settled, cancelled, free plan)
    """

    default_error_code: str = "PAYMENT_VALIDATION_ERROR"
    http_status: int = 400


class PaymentPermissionError(PaymentError, PermissionDeniedError):
    """Raised when the caller is not allowed to pay for or view an entity."""

    default_error_code: str = "PAYMENT_PERMISSION_DENIED"
    http_status: int = 403


class SignatureVerificationError(PaymentError):
    """
    Raised when a webhook fails signature verification.

    This is a trust error: the payload is never parsed further and never
    reaches settlement, whatever it contains.
    """

    default_error_code: str = "INVALID_SIGNATURE"
    http_status: int = 401


class WebhookPayloadError(PaymentError):
    """Raised when a verified webhook body is not usable JSON."""

    default_error_code: str = "INVALID_WEBHOOK_PAYLOAD"
    http_status: int = 400


# =============================================================================
# Provider Exceptions
# =============================================================================


class ProviderError(PaymentError, ExternalServiceError):
    """
    Base exception for all provider adapter errors.

    Attributes:
        provider: Provider enum value
        status_code: HTTP status returned by the provider, if any
        is_retryable: Whether the call can be retried with backoff
    """

    default_error_code: str = "PROVIDER_ERROR"
    http_status: int = 502
    is_retryable: bool = False

    def __init__(
        self,
        message: str,
        provider: str | None = None,
        status_code: int | None = None,
        error_code: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        details = details or {}
        if provider:
            details["provider"] = provider
        if status_code is not None:
            details["status_code"] = status_code
        super().__init__(message, error_code=error_code, details=details)
        self.provider = provider
        self.status_code = status_code


class ProviderUnavailableError(ProviderError):
    """
    Transport or provider-side failure: timeout, connection error, 5xx,
    429, or an open circuit breaker.

    Retryable by the caller (checkout) or by reconciliation (status polling).
    """

    default_error_code: str = "PROVIDER_UNAVAILABLE"
    http_status: int = 503
    is_retryable: bool = True


class ProviderRequestError(ProviderError):
    """The provider answered definitively and rejected the request (4xx)."""

    default_error_code: str = "PROVIDER_REQUEST_REJECTED"
    is_retryable: bool = False


class ProviderNotConfiguredError(ProviderError):
    """Credentials or secrets for a provider are missing from settings."""

    default_error_code: str = "PROVIDER_NOT_CONFIGURED"
    http_status: int = 503
    is_retryable: bool = False


# =============================================================================
# Concurrency Control Exceptions
# =============================================================================


class PaymentConflictError(ConflictError):
    """
    Raised when an owner already has a payment in progress.

    Retryable after the caller re-checks the owner's state.
    """

    default_error_code: str = "PAYMENT_IN_PROGRESS"


class StaleRecordError(PaymentConflictError):
    """
    Raised when a compare-and-swap update matches zero rows.

    Another writer (webhook, confirm call, reconciliation) changed the
    record between read and write. The loser re-reads and returns the
    winner's result.
    """

    default_error_code: str = "STALE_RECORD"


class InvalidStateTransitionError(PaymentConflictError):
    """Raised when a transition is not allowed from the current state."""

    default_error_code: str = "INVALID_STATE_TRANSITION"


class LockAcquisitionError(PaymentConflictError):
    """Raised when a distributed lock is already held by another process."""

    default_error_code: str = "LOCK_ACQUISITION_FAILED"
