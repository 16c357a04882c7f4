"""
WalletB adapter: wallet checkout through a payments API with redirect actions.

Endpoints:
    POST /v1/payments                    create payment, returns action.url
    POST /v1/payments/details            submit return-leg details (verify)
    GET  /v1/payments/{pspReference}     read payment result
    POST /v1/payments/{psp}/refunds      refund

Authentication is the X-API-Key header.

resultCode mapping:
    Authorised                    -> succeeded
    Refused / Cancelled           -> declined
    Error                         -> errored
    Pending / Received / Redirect -> pending (None)
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
)
from payments.exceptions import ProviderRequestError
from payments.state_machines import PaymentOutcome, PaymentProvider

RESULT_CODE_OUTCOMES = {
    "authorised": PaymentOutcome.SUCCEEDED,
    "refused": PaymentOutcome.DECLINED,
    "cancelled": PaymentOutcome.DECLINED,
    "error": PaymentOutcome.ERRORED,
}


def outcome_for_result_code(result_code: str | None) -> str | None:
    if not result_code:
        return None
    return RESULT_CODE_OUTCOMES.get(result_code.lower())


class WalletBAdapter(PaymentProviderAdapter):
    provider = PaymentProvider.WALLET_B
    payment_method_type = "wallet_b"

    def __init__(
        self,
        api_key: str | None = None,
        merchant_account: str | None = None,
        base_url: str | None = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(base_url or settings.WALLET_B_BASE_URL, **kwargs)
        self.api_key = api_key if api_key is not None else settings.WALLET_B_API_KEY
        self.merchant_account = (
            merchant_account if merchant_account is not None else settings.WALLET_B_MERCHANT_ACCOUNT
        )

    def _headers(self, idempotency_key: str | None = None) -> dict[str, str]:
        headers = {"X-API-Key": self.api_key}
        if idempotency_key:
            headers["Idempotency-Key"] = idempotency_key
        return headers

    def create_session(self, params: CreateSessionParams) -> SessionResult:
        self._require(api_key=self.api_key, merchant_account=self.merchant_account)
        return_context = params.return_context or {}
        data = self._request(
            "POST",
            "/v1/payments",
            operation="create_session",
            json={
                "amount": {"value": params.amount_minor, "currency": params.currency},
                "reference": params.intent_id,
                "merchantAccount": self.merchant_account,
                "paymentMethod": {"type": self.payment_method_type},
                "returnUrl": return_context.get("success_url", ""),
                "shopperStatement": params.description[:22],
            },
            headers=self._headers(params.idempotency_key),
        )
        psp_reference = data.get("pspReference")
        if not psp_reference:
            raise ProviderRequestError(
                "WalletB response is missing pspReference",
                provider=self.provider,
            )
        action = data.get("action") or {}
        return SessionResult(
            provider_reference=psp_reference,
            redirect_url=action.get("url"),
            client_payload=action,
            raw=data,
        )

    def verify(self, provider_reference: str, payload: dict[str, Any]) -> ProviderStatus:
        self._require(api_key=self.api_key)
        details = payload.get("details") or payload
        data = self._request(
            "POST",
            "/v1/payments/details",
            operation="verify",
            json={"details": details},
            headers=self._headers(),
        )
        result_code = data.get("resultCode")
        returned_reference = data.get("pspReference")
        if returned_reference and returned_reference != provider_reference:
            raise ProviderRequestError(
                "WalletB details belong to a different payment",
                provider=self.provider,
                details={"expected": provider_reference, "received": returned_reference},
            )
        return ProviderStatus(
            outcome=outcome_for_result_code(result_code),
            metadata={"provider_status": result_code},
        )

    def poll_status(self, provider_reference: str) -> ProviderStatus:
        self._require(api_key=self.api_key)
        data = self._request(
            "GET",
            f"/v1/payments/{provider_reference}",
            operation="poll_status",
            allow_not_found=True,
            headers=self._headers(),
        )
        if data is None:
            return ProviderStatus(found=False)
        result_code = data.get("resultCode") or data.get("status")
        return ProviderStatus(
            outcome=outcome_for_result_code(result_code),
            metadata={"provider_status": result_code},
        )

    def refund(self, params: RefundParams) -> RefundResult:
        self._require(api_key=self.api_key, merchant_account=self.merchant_account)
        data = self._request(
            "POST",
            f"/v1/payments/{params.provider_reference}/refunds",
            operation="refund",
            json={
                "amount": {"value": params.amount_minor, "currency": params.currency},
                "merchantAccount": self.merchant_account,
                "reference": params.idempotency_key,
            },
            headers=self._headers(params.idempotency_key),
        )
        return RefundResult(
            provider_refund_id=str(data.get("pspReference", "")),
            status=data.get("status", "received"),
            raw=data,
        )
