"""
Provider webhook payload normalization.

Each provider sends a different JSON shape. The parsers turn a verified,
decoded body into WebhookNotification objects carrying the fields the
ingestor needs: a dedup id, the provider reference that identifies the
intent and a normalized outcome (None for non-final events).

WalletA (one checkout per body):
    {"id": "<checkoutId>", "paymentStatus": "PAYMENT_SUCCESS", ...}
    The dedup id combines checkout id and status, so an earlier pending
    delivery does not shadow the final one.

WalletB (batched):
    {"notificationItems": [{"NotificationRequestItem": {
        "pspReference": "...", "eventCode": "AUTHORISATION", "success": "true"}}]}

GlobalWallet:
    {"id": "WH-...", "event_type": "PAYMENT.CAPTURE.COMPLETED", "resource": {...}}
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from payments.adapters.global_wallet import first_capture, outcome_for_order
from payments.adapters.wallet_a import outcome_for_status
from payments.exceptions import WebhookPayloadError
from payments.state_machines import PaymentOutcome, PaymentProvider


@dataclass
class WebhookNotification:
    """One provider event, normalized."""

    external_event_id: str
    event_type: str
    provider_reference: str
    outcome: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def is_final(self) -> bool:
        return self.outcome is not None


def _require(value: Any, name: str, provider: str) -> str:
    if value in (None, ""):
        raise WebhookPayloadError(
            f"Webhook payload missing {name}",
            details={"provider": provider, "field": name},
        )
    return str(value)


# =============================================================================
# WalletA
# =============================================================================


def parse_wallet_a(payload: dict[str, Any]) -> list[WebhookNotification]:
    provider = PaymentProvider.WALLET_A
    checkout_id = _require(payload.get("id") or payload.get("checkoutId"), "id", provider)
    status = _require(payload.get("paymentStatus") or payload.get("status"), "paymentStatus", provider)
    metadata = {"provider_status": status}
    payment_id = payload.get("paymentId") or payload.get("requestReferenceNumber")
    if payment_id:
        metadata["payment_id"] = payment_id
    return [
        WebhookNotification(
            external_event_id=f"{checkout_id}:{status}",
            event_type=f"PAYMENT_{status}" if not status.startswith("PAYMENT_") else status,
            provider_reference=checkout_id,
            outcome=outcome_for_status(status),
            metadata=metadata,
        )
    ]


# =============================================================================
# WalletB
# =============================================================================


def _truthy(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() == "true"


def _wallet_b_outcome(event_code: str, success: Any) -> str | None:
    if event_code == "AUTHORISATION":
        return PaymentOutcome.SUCCEEDED if _truthy(success) else PaymentOutcome.DECLINED
    if event_code in ("CANCELLATION", "OFFER_CLOSED"):
        return PaymentOutcome.DECLINED
    return None


def parse_wallet_b(payload: dict[str, Any]) -> list[WebhookNotification]:
    provider = PaymentProvider.WALLET_B
    items = payload.get("notificationItems")
    if not isinstance(items, list) or not items:
        raise WebhookPayloadError(
            "Webhook payload missing notificationItems",
            details={"provider": provider},
        )

    notifications = []
    for wrapper in items:
        item = (wrapper or {}).get("NotificationRequestItem") if isinstance(wrapper, dict) else None
        if not isinstance(item, dict):
            raise WebhookPayloadError(
                "Malformed notification item",
                details={"provider": provider},
            )
        psp_reference = _require(item.get("pspReference"), "pspReference", provider)
        event_code = _require(item.get("eventCode"), "eventCode", provider).upper()
        metadata = {"event_code": event_code, "success": _truthy(item.get("success"))}
        if item.get("reason"):
            metadata["reason"] = item["reason"]
        notifications.append(
            WebhookNotification(
                external_event_id=f"{psp_reference}:{event_code}",
                event_type=event_code,
                provider_reference=psp_reference,
                outcome=_wallet_b_outcome(event_code, item.get("success")),
                metadata=metadata,
            )
        )
    return notifications


# =============================================================================
# GlobalWallet
# =============================================================================


def _object(value: Any, name: str, provider: str) -> dict[str, Any]:
    if value in (None, ""):
        return {}
    if not isinstance(value, dict):
        raise WebhookPayloadError(
            f"Webhook {name} must be an object",
            details={"provider": provider, "field": name},
        )
    return value


def parse_global_wallet(payload: dict[str, Any]) -> list[WebhookNotification]:
    provider = PaymentProvider.GLOBAL_WALLET
    event_id = _require(payload.get("id"), "id", provider)
    event_type = _require(payload.get("event_type"), "event_type", provider).upper()
    resource = _object(payload.get("resource"), "resource", provider)

    metadata: dict[str, Any] = {"event_type": event_type}
    outcome = None

    if event_type.startswith("PAYMENT.CAPTURE."):
        supplementary = _object(resource.get("supplementary_data"), "supplementary_data", provider)
        related = _object(supplementary.get("related_ids"), "related_ids", provider)
        reference = related.get("order_id")
        metadata["capture_id"] = resource.get("id")
        if event_type == "PAYMENT.CAPTURE.COMPLETED":
            outcome = PaymentOutcome.SUCCEEDED
        elif event_type in ("PAYMENT.CAPTURE.DENIED", "PAYMENT.CAPTURE.DECLINED"):
            outcome = PaymentOutcome.DECLINED
    else:
        reference = resource.get("id")
        if event_type == "CHECKOUT.ORDER.COMPLETED":
            outcome = outcome_for_order(resource)
            capture = first_capture(resource)
            if capture.get("id"):
                metadata["capture_id"] = capture["id"]
        elif event_type == "CHECKOUT.ORDER.VOIDED":
            outcome = PaymentOutcome.DECLINED

    return [
        WebhookNotification(
            external_event_id=event_id,
            event_type=event_type,
            provider_reference=_require(reference, "order reference", provider),
            outcome=outcome,
            metadata=metadata,
        )
    ]


PARSERS = {
    PaymentProvider.WALLET_A: parse_wallet_a,
    PaymentProvider.WALLET_B: parse_wallet_b,
    PaymentProvider.GLOBAL_WALLET: parse_global_wallet,
}


def parse_notifications(provider: str, payload: dict[str, Any]) -> list[WebhookNotification]:
    """
    Normalize a decoded webhook body.

    Raises:
        WebhookPayloadError: Event id or provider reference missing
    """
    try:
        parser = PARSERS[provider]
    except KeyError:
        raise WebhookPayloadError(f"Unknown provider: {provider}", details={"provider": provider})
    return parser(payload)
