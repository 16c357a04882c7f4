"""
GlobalWallet adapter: orders API with buyer approval and merchant capture.

Endpoints:
    POST /v1/oauth2/token                          client-credentials token
    POST /v2/checkout/orders                       create order (intent CAPTURE)
    POST /v2/checkout/orders/{id}/capture          capture approved order
    GET  /v2/checkout/orders/{id}                  read order
    POST /v2/payments/captures/{capture_id}/refund refund a capture

The access token is cached in the Django cache until shortly before it
expires, so every worker shares one token.

Order status mapping:
    COMPLETED (capture COMPLETED) -> succeeded
    COMPLETED (capture DECLINED)  -> declined
    VOIDED                        -> declined
    CREATED / APPROVED / ...      -> pending (None)
"""

from __future__ import annotations

from typing import Any

from django.conf import settings
from django.core.cache import cache

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

TOKEN_CACHE_KEY = "global_wallet:access_token"
TOKEN_EXPIRY_MARGIN_SECONDS = 60


def first_capture(order: dict[str, Any]) -> dict[str, Any]:
    """First capture of an order, or {} when the order has none or is malformed."""
    units = order.get("purchase_units")
    if not isinstance(units, list):
        return {}
    for unit in units:
        payments = unit.get("payments") if isinstance(unit, dict) else None
        captures = payments.get("captures") if isinstance(payments, dict) else None
        if isinstance(captures, list) and captures and isinstance(captures[0], dict):
            return captures[0]
    return {}


def outcome_for_order(order: dict[str, Any]) -> str | None:
    status = str(order.get("status") or "").upper()
    if status == "VOIDED":
        return PaymentOutcome.DECLINED
    if status != "COMPLETED":
        return None
    capture_status = str(first_capture(order).get("status") or "COMPLETED").upper()
    if capture_status == "COMPLETED":
        return PaymentOutcome.SUCCEEDED
    if capture_status in ("DECLINED", "FAILED"):
        return PaymentOutcome.DECLINED
    return None


class GlobalWalletAdapter(PaymentProviderAdapter):
    provider = PaymentProvider.GLOBAL_WALLET

    def __init__(
        self,
        client_id: str | None = None,
        client_secret: str | None = None,
        base_url: str | None = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(base_url or settings.GLOBAL_WALLET_BASE_URL, **kwargs)
        self.client_id = client_id if client_id is not None else settings.GLOBAL_WALLET_CLIENT_ID
        self.client_secret = (
            client_secret if client_secret is not None else settings.GLOBAL_WALLET_CLIENT_SECRET
        )

    # =========================================================================
    # Auth
    # =========================================================================

    def _access_token(self) -> str:
        token = cache.get(TOKEN_CACHE_KEY)
        if token:
            return token
        self._require(client_id=self.client_id, client_secret=self.client_secret)
        data = self._request(
            "POST",
            "/v1/oauth2/token",
            operation="access_token",
            data={"grant_type": "client_credentials"},
            auth=(self.client_id, self.client_secret),
        )
        token = data.get("access_token")
        if not token:
            raise ProviderRequestError(
                "GlobalWallet token response is missing access_token",
                provider=self.provider,
            )
        expires_in = int(data.get("expires_in", 0)) - TOKEN_EXPIRY_MARGIN_SECONDS
        if expires_in > 0:
            cache.set(TOKEN_CACHE_KEY, token, timeout=expires_in)
        return token

    def _headers(self, request_id: str | None = None) -> dict[str, str]:
        headers = {"Authorization": f"Bearer {self._access_token()}"}
        if request_id:
            headers["PayPal-Request-Id"] = request_id
        return headers

    # =========================================================================
    # Operations
    # =========================================================================

    def create_session(self, params: CreateSessionParams) -> SessionResult:
        return_context = params.return_context or {}
        data = self._request(
            "POST",
            "/v2/checkout/orders",
            operation="create_session",
            json={
                "intent": "CAPTURE",
                "purchase_units": [
                    {
                        "reference_id": params.intent_id,
                        "custom_id": params.intent_id,
                        "description": params.description,
                        "amount": {
                            "currency_code": params.currency,
                            "value": str(minor_to_decimal(params.amount_minor)),
                        },
                    }
                ],
                "application_context": {
                    "return_url": return_context.get("success_url", ""),
                    "cancel_url": return_context.get("cancel_url", ""),
                    "user_action": "PAY_NOW",
                },
            },
            headers=self._headers(params.idempotency_key),
        )
        order_id = data.get("id")
        if not order_id:
            raise ProviderRequestError(
                "GlobalWallet response is missing the order id",
                provider=self.provider,
            )
        approve_url = None
        for link in data.get("links") or []:
            if link.get("rel") in ("approve", "payer-action"):
                approve_url = link.get("href")
                break
        return SessionResult(
            provider_reference=order_id,
            redirect_url=approve_url,
            client_payload={"order_id": order_id},
            raw=data,
        )

    def verify(self, provider_reference: str, payload: dict[str, Any]) -> ProviderStatus:
        try:
            data = self._request(
                "POST",
                f"/v2/checkout/orders/{provider_reference}/capture",
                operation="verify",
                json={},
                headers=self._headers(f"capture:{provider_reference}"),
            )
        except ProviderRequestError as e:
            if e.status_code != 422:
                raise
            # Already captured or not approved yet: the order itself is authoritative.
            return self.poll_status(provider_reference)
        return self._status_from_order(data)

    def poll_status(self, provider_reference: str) -> ProviderStatus:
        data = self._request(
            "GET",
            f"/v2/checkout/orders/{provider_reference}",
            operation="poll_status",
            allow_not_found=True,
            headers=self._headers(),
        )
        if data is None:
            return ProviderStatus(found=False)
        return self._status_from_order(data)

    def refund(self, params: RefundParams) -> RefundResult:
        capture_id = params.metadata.get("capture_id")
        if not capture_id:
            raise ProviderRequestError(
                "GlobalWallet refunds need the capture id of the settled order",
                provider=self.provider,
                details={"provider_reference": params.provider_reference},
            )
        data = self._request(
            "POST",
            f"/v2/payments/captures/{capture_id}/refund",
            operation="refund",
            json={
                "amount": {
                    "currency_code": params.currency,
                    "value": str(minor_to_decimal(params.amount_minor)),
                },
                "note_to_payer": params.reason[:255],
            },
            headers=self._headers(params.idempotency_key),
        )
        return RefundResult(
            provider_refund_id=str(data.get("id", "")),
            status=data.get("status", ""),
            raw=data,
        )

    def _status_from_order(self, order: dict[str, Any]) -> ProviderStatus:
        metadata: dict[str, Any] = {"provider_status": order.get("status")}
        capture = first_capture(order)
        if capture.get("id"):
            metadata["capture_id"] = capture["id"]
        return ProviderStatus(outcome=outcome_for_order(order), metadata=metadata)
