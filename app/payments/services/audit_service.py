"""
Audit sink for payment events.

Every entry is written to the AuditEntry table and mirrored to the
``payments.audit`` logger at a level matching its severity, so critical
entries reach whatever alerting is attached to the log pipeline.

Usage:
    from payments.services.audit_service import AuditService

    AuditService.record(
        AuditAction.SIGNATURE_REJECTED,
        actor="webhook:wallet_a",
        severity=AuditSeverity.CRITICAL,
        provider="wallet_a",
        details={"reason": "signature mismatch"},
    )
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from core.services import BaseService
from payments.models import AuditAction, AuditEntry, AuditSeverity

if TYPE_CHECKING:
    from typing import Any

    from payments.models import PaymentIntent

audit_logger = logging.getLogger("payments.audit")

SEVERITY_LOG_LEVELS = {
    AuditSeverity.INFO: logging.INFO,
    AuditSeverity.WARNING: logging.WARNING,
    AuditSeverity.CRITICAL: logging.ERROR,
}


class AuditService(BaseService):
    @classmethod
    def record(
        cls,
        action: AuditAction | str,
        actor: str,
        severity: AuditSeverity | str = AuditSeverity.INFO,
        payment_intent: PaymentIntent | None = None,
        provider: str = "",
        from_state: str = "",
        to_state: str = "",
        details: dict[str, Any] | None = None,
    ) -> AuditEntry:
        if payment_intent is not None and not provider:
            provider = payment_intent.provider
        entry = AuditEntry.objects.create(
            action=action,
            actor=actor,
            severity=severity,
            payment_intent=payment_intent,
            provider=provider,
            from_state=from_state,
            to_state=to_state,
            details=details or {},
        )
        audit_logger.log(
            SEVERITY_LOG_LEVELS.get(severity, logging.INFO),
            f"audit: {action}",
            extra={
                "audit_id": str(entry.id),
                "action": str(action),
                "actor": actor,
                "intent_id": str(payment_intent.id) if payment_intent else None,
                "provider": provider,
                "from_state": from_state,
                "to_state": to_state,
            },
        )
        return entry
