"""
WalletA adapter: hosted checkout for cards and e-wallets.

Endpoints:
    POST /checkout/v1/checkouts              open a hosted checkout
    GET  /checkout/v1/checkouts/{id}         read checkout status
    POST /payments/v1/payments/{id}/refunds  refund a paid checkout

Authentication is HTTP Basic: the public key for checkout creation, the
secret key for status reads and refunds.

Checkout status mapping:
    PAYMENT_SUCCESS / PAID              -> succeeded
    PAYMENT_FAILED / FAILED             -> declined
    PAYMENT_EXPIRED / EXPIRED           -> declined
    PAYMENT_CANCELLED / CANCELLED       -> declined
    anything else (PENDING_PAYMENT ...) -> pending (None)
"""

from __future__ import annotations

from typing import Any

from django.conf import settings

from payments.adapters.base import (
    CreateSessionParams,
    PaymentProviderAdapter,
    ProviderStatus,
    RefundParams,
    RefundResult,
    SessionResult,
    minor_to_decimal,
)
from payments.exceptions import ProviderRequestError
from payments.state_machines import PaymentOutcome, PaymentProvider

STATUS_OUTCOMES = {
    "PAYMENT_SUCCESS": PaymentOutcome.SUCCEEDED,
    "PAID": PaymentOutcome.SUCCEEDED,
    "COMPLETED": PaymentOutcome.SUCCEEDED,
    "PAYMENT_FAILED": PaymentOutcome.DECLINED,
    "FAILED": PaymentOutcome.DECLINED,
    "PAYMENT_EXPIRED": PaymentOutcome.DECLINED,
    "EXPIRED": PaymentOutcome.DECLINED,
    "PAYMENT_CANCELLED": PaymentOutcome.DECLINED,
    "CANCELLED": PaymentOutcome.DECLINED,
}


def outcome_for_status(status: str | None) -> str | None:
    if not status:
        return None
    return STATUS_OUTCOMES.get(status.upper())


class WalletAAdapter(PaymentProviderAdapter):
    provider = PaymentProvider.WALLET_A

    def __init__(
        self,
        public_key: str | None = None,
        secret_key: str | None = None,
        base_url: str | None = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(base_url or settings.WALLET_A_BASE_URL, **kwargs)
        self.public_key = public_key if public_key is not None else settings.WALLET_A_PUBLIC_KEY
        self.secret_key = secret_key if secret_key is not None else settings.WALLET_A_SECRET_KEY

    def create_session(self, params: CreateSessionParams) -> SessionResult:
        self._require(public_key=self.public_key)
        return_context = params.return_context or {}
        body = {
            "totalAmount": {
                "value": str(minor_to_decimal(params.amount_minor)),
                "currency": params.currency,
            },
            "items": [
                {
                    "name": params.description,
                    "quantity": 1,
                    "totalAmount": {"value": str(minor_to_decimal(params.amount_minor))},
                }
            ],
            "redirectUrl": {
                "success": return_context.get("success_url", ""),
                "failure": return_context.get("failure_url", ""),
                "cancel": return_context.get("cancel_url", ""),
            },
            "requestReferenceNumber": params.intent_id,
        }
        data = self._request(
            "POST",
            "/checkout/v1/checkouts",
            operation="create_session",
            json=body,
            auth=(self.public_key, ""),
            headers={"Request-Reference-No": params.idempotency_key},
        )
        checkout_id = data.get("checkoutId")
        if not checkout_id:
            raise ProviderRequestError(
                "WalletA response is missing checkoutId",
                provider=self.provider,
            )
        return SessionResult(
            provider_reference=checkout_id,
            redirect_url=data.get("redirectUrl"),
            raw=data,
        )

    def verify(self, provider_reference: str, payload: dict[str, Any]) -> ProviderStatus:
        # Hosted checkout settles at the provider; the return leg only reads status.
        return self.poll_status(provider_reference)

    def poll_status(self, provider_reference: str) -> ProviderStatus:
        self._require(secret_key=self.secret_key)
        data = self._request(
            "GET",
            f"/checkout/v1/checkouts/{provider_reference}",
            operation="poll_status",
            allow_not_found=True,
            auth=(self.secret_key, ""),
        )
        if data is None:
            return ProviderStatus(found=False)
        status = data.get("paymentStatus") or data.get("status")
        metadata = {"provider_status": status}
        if data.get("paymentId") or data.get("id"):
            metadata["payment_id"] = data.get("paymentId") or data.get("id")
        return ProviderStatus(outcome=outcome_for_status(status), metadata=metadata)

    def refund(self, params: RefundParams) -> RefundResult:
        self._require(secret_key=self.secret_key)
        payment_id = params.metadata.get("payment_id") or params.provider_reference
        data = self._request(
            "POST",
            f"/payments/v1/payments/{payment_id}/refunds",
            operation="refund",
            json={
                "totalAmount": {
                    "amount": str(minor_to_decimal(params.amount_minor)),
                    "currency": params.currency,
                },
                "reason": params.reason or "Refund",
            },
            auth=(self.secret_key, ""),
            headers={"Request-Reference-No": params.idempotency_key},
        )
        return RefundResult(
            provider_refund_id=str(data.get("id", "")),
            status=data.get("status", "SUCCESS"),
            raw=data,
        )
