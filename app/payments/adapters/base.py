"""
Provider adapter interface and shared HTTP transport.

Every provider adapter implements the same four operations so checkout,
settlement and reconciliation never branch on provider:

    create_session(params) -> SessionResult
    verify(provider_reference, payload) -> ProviderStatus
    refund(params) -> RefundResult
    poll_status(provider_reference) -> ProviderStatus

All HTTP goes through PaymentProviderAdapter._request(), which applies a
bounded timeout, the per-provider circuit breaker and error translation:

    - connection error, timeout, 5xx, 429, open circuit
        -> ProviderUnavailableError (retryable)
    - any other 4xx
        -> ProviderRequestError (not retryable)

Usage:
    adapter = get_adapter(PaymentProvider.WALLET_A)
    session = adapter.create_session(
        CreateSessionParams(
            intent_id=str(intent.id),
            amount_minor=intent.amount_minor,
            currency=intent.currency,
            description="Booking payment",
            return_context=intent.return_context,
            idempotency_key=f"session:{intent.id}",
        )
    )
"""

from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any

import requests
from django.conf import settings

from payments.adapters.circuit_breaker import CircuitBreaker
from payments.exceptions import (
    ProviderNotConfiguredError,
    ProviderRequestError,
    ProviderUnavailableError,
)

MIN_TIMEOUT_SECONDS = 10
MAX_TIMEOUT_SECONDS = 30


# =============================================================================
# Data Types
# =============================================================================


@dataclass
class CreateSessionParams:
    """
    Parameters for opening a provider checkout session.

    Attributes:
        intent_id: Local PaymentIntent id, sent as the merchant reference
        amount_minor: Amount in smallest currency unit
        currency: ISO 4217 currency code
        description: Line description shown by the provider
        return_context: success_url / failure_url / cancel_url
        idempotency_key: Unique key for idempotent creation
    """

    intent_id: str
    amount_minor: int
    currency: str
    description: str
    return_context: dict[str, Any] = field(default_factory=dict)
    idempotency_key: str = ""

    def __post_init__(self) -> None:
        if self.amount_minor <= 0:
            raise ValueError("amount_minor must be positive")
        if not self.currency:
            raise ValueError("currency is required")
        if not self.idempotency_key:
            self.idempotency_key = f"session:{self.intent_id}"


@dataclass
class SessionResult:
    """
    Result of create_session.

    Attributes:
        provider_reference: Provider session/order id
        redirect_url: Hosted page the client is sent to, if any
        client_payload: Data the client needs to complete payment in-app
        raw: Full provider response (for debugging)
    """

    provider_reference: str
    redirect_url: str | None = None
    client_payload: dict[str, Any] = field(default_factory=dict)
    raw: dict[str, Any] = field(default_factory=dict)


@dataclass
class ProviderStatus:
    """
    Normalized provider view of a payment.

    Attributes:
        outcome: PaymentOutcome value, or None while still pending
        found: False when the provider has no record of the reference
        metadata: Outcome details worth keeping (capture id, provider status)
    """

    outcome: str | None = None
    found: bool = True
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def is_final(self) -> bool:
        return self.outcome is not None


@dataclass
class RefundParams:
    provider_reference: str
    amount_minor: int
    currency: str
    idempotency_key: str
    reason: str = ""
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class RefundResult:
    provider_refund_id: str
    status: str
    raw: dict[str, Any] = field(default_factory=dict)


# =============================================================================
# Helpers
# =============================================================================


def clamp_timeout(seconds: float | None) -> float:
    """Bound a configured timeout to the 10-30 second window."""
    if seconds is None:
        seconds = getattr(settings, "PAYMENT_PROVIDER_TIMEOUT_SECONDS", 15)
    return float(max(MIN_TIMEOUT_SECONDS, min(MAX_TIMEOUT_SECONDS, seconds)))


def minor_to_decimal(amount_minor: int) -> Decimal:
    """12345 -> Decimal("123.45")"""
    return (Decimal(amount_minor) / 100).quantize(Decimal("0.01"))


def decimal_to_minor(value: Any) -> int:
    return int((Decimal(str(value)) * 100).quantize(Decimal("1")))


# =============================================================================
# Adapter Base
# =============================================================================


class PaymentProviderAdapter(ABC):
    """
    Base class for provider adapters.

    Subclasses set ``provider`` and implement the four operations. An
    adapter instance holds its credentials, a requests.Session and the
    provider's circuit breaker; it keeps no per-payment state.
    """

    provider: str = ""

    def __init__(
        self,
        base_url: str,
        timeout: float | None = None,
        session: requests.Session | None = None,
        circuit_breaker: CircuitBreaker | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = clamp_timeout(timeout)
        self.session = session or requests.Session()
        self.circuit_breaker = circuit_breaker or CircuitBreaker(self.provider)

    @classmethod
    def get_logger(cls) -> logging.Logger:
        return logging.getLogger(f"{cls.__module__}.{cls.__name__}")

    # =========================================================================
    # Operations
    # =========================================================================

    @abstractmethod
    def create_session(self, params: CreateSessionParams) -> SessionResult:
        """Open a checkout session at the provider."""

    @abstractmethod
    def verify(self, provider_reference: str, payload: dict[str, Any]) -> ProviderStatus:
        """Synchronously confirm/capture a payment the client returned from."""

    @abstractmethod
    def refund(self, params: RefundParams) -> RefundResult:
        """Request a (partial) refund of a settled payment."""

    @abstractmethod
    def poll_status(self, provider_reference: str) -> ProviderStatus:
        """Read the provider's current view of a payment."""

    # =========================================================================
    # Transport
    # =========================================================================

    def _require(self, **credentials: str) -> None:
        missing = [name for name, value in credentials.items() if not value]
        if missing:
            raise ProviderNotConfiguredError(
                f"{self.provider} is not configured",
                provider=self.provider,
                details={"missing": missing},
            )

    def _request(
        self,
        method: str,
        path: str,
        operation: str,
        allow_not_found: bool = False,
        **kwargs: Any,
    ) -> dict[str, Any] | None:
        """
        Perform one provider HTTP call.

        Returns the decoded JSON body, or None for a 404 when
        ``allow_not_found`` is set.

        Raises:
            ProviderUnavailableError: Transport failure, 5xx, 429, open circuit
            ProviderRequestError: Provider rejected the request (4xx)
        """
        logger = self.get_logger()
        log_context = {
            "operation": operation,
            "provider": self.provider,
            "method": method,
            "path": path,
        }

        if not self.circuit_breaker.is_available():
            logger.warning("Provider circuit open, failing fast", extra=log_context)
            raise ProviderUnavailableError(
                f"{self.provider} is temporarily unavailable",
                provider=self.provider,
                error_code="CIRCUIT_OPEN",
            )

        start_time = time.time()
        logger.info("Starting provider operation", extra=log_context)

        try:
            response = self.session.request(
                method,
                f"{self.base_url}{path}",
                timeout=self.timeout,
                **kwargs,
            )
        except requests.Timeout as e:
            self.circuit_breaker.record_failure()
            logger.warning(
                "Provider request timed out",
                extra={**log_context, "duration_ms": (time.time() - start_time) * 1000},
            )
            raise ProviderUnavailableError(
                f"{self.provider} request timed out",
                provider=self.provider,
                error_code="PROVIDER_TIMEOUT",
            ) from e
        except requests.RequestException as e:
            self.circuit_breaker.record_failure()
            logger.warning(
                f"Provider connection error: {e}",
                extra={**log_context, "duration_ms": (time.time() - start_time) * 1000},
            )
            raise ProviderUnavailableError(
                f"{self.provider} connection failed",
                provider=self.provider,
            ) from e

        duration_ms = (time.time() - start_time) * 1000
        status_code = response.status_code
        log_context = {**log_context, "status_code": status_code, "duration_ms": duration_ms}

        if status_code >= 500 or status_code == 429:
            self.circuit_breaker.record_failure()
            logger.error("Provider unavailable", extra=log_context)
            raise ProviderUnavailableError(
                f"{self.provider} returned {status_code}",
                provider=self.provider,
                status_code=status_code,
            )

        self.circuit_breaker.record_success()

        if status_code == 404 and allow_not_found:
            logger.info("Provider has no record", extra=log_context)
            return None

        if status_code >= 400:
            logger.warning(
                "Provider rejected request",
                extra={**log_context, "body": response.text[:500]},
            )
            raise ProviderRequestError(
                f"{self.provider} rejected {operation}",
                provider=self.provider,
                status_code=status_code,
            )

        logger.info("Provider operation completed", extra=log_context)

        if not response.content:
            return {}
        try:
            body = response.json()
        except ValueError as e:
            raise ProviderUnavailableError(
                f"{self.provider} returned a malformed response",
                provider=self.provider,
                status_code=status_code,
            ) from e
        if not isinstance(body, dict):
            return {"data": body}
        return body
