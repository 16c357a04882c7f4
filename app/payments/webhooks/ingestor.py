"""
Webhook ingestor: verify, deduplicate, resolve and settle provider events.

The ingestor is independent of the HTTP framework. It takes the raw body
bytes and the request headers and returns an IngestResult that the Django
view turns into a response. Step order is fixed:

1. Verify the signature (fail closed, 401, audited critical)
2. Decode JSON (400 on garbage)
3. Normalize and deduplicate on (provider, external_event_id)
4. Resolve the intent by (provider, provider_reference)
5. Hand final outcomes to settlement; record the event and audit entry
   in the same transaction as the settlement

Business rejections (outcome for a terminal intent, unknown reference)
still answer 200 so providers stop redelivering. An outcome that reaches
an intent still in CREATED is answered 200 without a dedup row, so a
redelivery after checkout confirms the session can still settle it.

Usage:
    result = WebhookIngestor().handle("wallet_a", request.body, request.headers)
    return HttpResponse(result.body, status=result.status_code)
"""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from django.db import IntegrityError, transaction

from core.helpers import sha256_hexdigest
from payments.exceptions import SignatureVerificationError, WebhookPayloadError
from payments.models import AuditAction, AuditSeverity, PaymentIntent, WebhookEvent
from payments.services.audit_service import AuditService
from payments.services.settlement_service import SettlementService
from payments.state_machines import PaymentIntentStatus, PaymentProvider, WebhookEventOutcome
from payments.webhooks.parsers import WebhookNotification, parse_notifications
from payments.webhooks.signatures import SignatureVerifier, get_verifier

logger = logging.getLogger(__name__)

# Literal acknowledgement bodies some providers require
ACK_BODIES: dict[str, Any] = {
    PaymentProvider.WALLET_B: "[accepted]",
}

# Outcome reached an intent still in CREATED; no dedup row is written
DEFERRED = "deferred"


@dataclass
class IngestResult:
    """
    What the HTTP layer should answer.

    Attributes:
        status_code: HTTP status
        body: Response body (str for literal acks, dict for JSON)
        detail: Short machine-readable summary for logs and tests
    """

    status_code: int
    body: Any
    detail: str = ""

    @property
    def is_json(self) -> bool:
        return isinstance(self.body, dict)


class WebhookIngestor:
    """
    Processes provider webhook deliveries.

    Args:
        settlement: Settlement engine for final outcomes
        verifiers: Provider -> SignatureVerifier; built from settings per
            call when not given
    """

    def __init__(
        self,
        settlement: SettlementService | None = None,
        verifiers: Mapping[str, SignatureVerifier] | None = None,
    ) -> None:
        self.settlement = settlement or SettlementService()
        self.verifiers = verifiers

    def handle(self, provider: str, raw_body: bytes, headers: Mapping[str, str]) -> IngestResult:
        if provider not in PaymentProvider.values:
            return IngestResult(404, {"error": "unknown provider"}, "unknown_provider")

        actor = f"webhook:{provider}"
        digest = sha256_hexdigest(raw_body)

        # Step 1: signature, before anything reads the payload
        try:
            self._verifier_for(provider).verify(raw_body, headers)
        except SignatureVerificationError as e:
            reason = e.details.get("reason", e.message)
            logger.error(
                "Webhook signature rejected",
                extra={"provider": provider, "reason": reason, "payload_digest": digest},
            )
            AuditService.record(
                AuditAction.SIGNATURE_REJECTED,
                actor=actor,
                severity=AuditSeverity.CRITICAL,
                provider=provider,
                details={"reason": reason, "payload_digest": digest},
            )
            return IngestResult(401, {"error": "invalid signature"}, "signature_rejected")

        # Step 2: decode
        try:
            payload = json.loads(raw_body)
        except (ValueError, UnicodeDecodeError):
            logger.warning("Webhook body is not valid JSON", extra={"provider": provider})
            return IngestResult(400, {"error": "invalid payload"}, "invalid_json")
        if not isinstance(payload, dict):
            logger.warning("Webhook body is not a JSON object", extra={"provider": provider})
            return IngestResult(400, {"error": "invalid payload"}, "invalid_json")

        # Step 3: normalize
        try:
            notifications = parse_notifications(provider, payload)
        except WebhookPayloadError as e:
            logger.warning(
                f"Webhook payload rejected: {e.message}",
                extra={"provider": provider, "payload_digest": digest},
            )
            return IngestResult(400, {"error": "invalid payload"}, "invalid_payload")

        results = [self._process(provider, notification, digest, actor) for notification in notifications]
        return IngestResult(200, ACK_BODIES.get(provider, {"received": True}), ",".join(results))

    def _verifier_for(self, provider: str) -> SignatureVerifier:
        if self.verifiers is not None and provider in self.verifiers:
            return self.verifiers[provider]
        return get_verifier(provider)

    # =========================================================================
    # Per-event Processing
    # =========================================================================

    def _process(self, provider: str, notification: WebhookNotification, digest: str, actor: str) -> str:
        if WebhookEvent.objects.seen(provider, notification.external_event_id):
            return self._duplicate(provider, notification, actor)

        try:
            with transaction.atomic():
                intent = PaymentIntent.objects.filter(
                    provider=provider,
                    provider_reference=notification.provider_reference,
                ).first()

                if intent is None:
                    self._record_unmatched(provider, notification, digest, actor)
                    return WebhookEventOutcome.UNMATCHED

                if not notification.is_final:
                    self._record_event(provider, notification, digest, WebhookEventOutcome.IGNORED, intent)
                    logger.info(
                        "Non-final webhook event recorded",
                        extra={
                            "provider": provider,
                            "intent_id": str(intent.id),
                            "event_type": notification.event_type,
                        },
                    )
                    return WebhookEventOutcome.IGNORED

                status = self.settlement.apply(
                    intent.id,
                    notification.outcome,
                    notification.metadata,
                    actor=actor,
                )
                if status == PaymentIntentStatus.CREATED:
                    logger.info(
                        "Webhook outcome deferred until the session is confirmed",
                        extra={
                            "provider": provider,
                            "intent_id": str(intent.id),
                            "external_event_id": notification.external_event_id,
                        },
                    )
                    return DEFERRED
                self._record_event(provider, notification, digest, notification.outcome, intent)
                AuditService.record(
                    AuditAction.WEBHOOK_APPLIED,
                    actor=actor,
                    payment_intent=intent,
                    to_state=status,
                    details={
                        "external_event_id": notification.external_event_id,
                        "event_type": notification.event_type,
                        "outcome": notification.outcome,
                    },
                )
                return WebhookEventOutcome.APPLIED
        except IntegrityError:
            # A concurrent delivery of the same event committed first.
            return self._duplicate(provider, notification, actor)

    @staticmethod
    def _record_event(
        provider: str,
        notification: WebhookNotification,
        digest: str,
        outcome: str,
        intent: PaymentIntent | None,
    ) -> WebhookEvent:
        return WebhookEvent.objects.create(
            provider=provider,
            external_event_id=notification.external_event_id,
            event_type=notification.event_type,
            payload_digest=digest,
            outcome=outcome,
            payment_intent=intent,
        )

    def _record_unmatched(self, provider: str, notification: WebhookNotification, digest: str, actor: str) -> None:
        logger.warning(
            "Webhook references no known payment intent",
            extra={
                "provider": provider,
                "provider_reference": notification.provider_reference,
                "event_type": notification.event_type,
            },
        )
        self._record_event(provider, notification, digest, WebhookEventOutcome.UNMATCHED, None)
        AuditService.record(
            AuditAction.WEBHOOK_UNMATCHED,
            actor=actor,
            severity=AuditSeverity.WARNING,
            provider=provider,
            details={
                "external_event_id": notification.external_event_id,
                "provider_reference": notification.provider_reference,
                "event_type": notification.event_type,
            },
        )

    @staticmethod
    def _duplicate(provider: str, notification: WebhookNotification, actor: str) -> str:
        logger.info(
            "Duplicate webhook delivery ignored",
            extra={"provider": provider, "external_event_id": notification.external_event_id},
        )
        intent = PaymentIntent.objects.filter(
            provider=provider,
            provider_reference=notification.provider_reference,
        ).first()
        AuditService.record(
            AuditAction.WEBHOOK_DUPLICATE,
            actor=actor,
            payment_intent=intent,
            provider=provider,
            details={"external_event_id": notification.external_event_id},
        )
        return "duplicate"
