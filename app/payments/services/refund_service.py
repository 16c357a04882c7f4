"""
Refund service for returning money on settled payment intents.

Refunds follow a two-phase pattern so that no database transaction is
held across the provider call:

Phase 1 (transaction, intent row locked):
    - Intent must be SETTLED
    - Amount must fit in what is left after earlier refunds
    - Refund created in REQUESTED with a deterministic idempotency key,
      audited, then moved to PROCESSING

Phase 2 (no transaction):
    - adapter.refund() with the idempotency key

Phase 3 (transaction):
    - PROCESSING -> COMPLETED with the provider refund id, or
    - PROCESSING -> FAILED, audited critical for the operator queue and
      a refund_failed notification queued. Not retried automatically.

A refund never changes the intent status or the owner's payment status.

Usage:
    from payments.services import RefundService

    refund = RefundService().refund(
        intent_id=intent.id,
        amount_minor=10000,
        reason="Booking cancelled by provider",
        requested_by=request.user,
    )
    if refund.status == RefundState.FAILED:
        ...
"""

from __future__ import annotations

import logging
from functools import partial
from typing import TYPE_CHECKING

from django.db import transaction

from core.services import BaseService
from payments.adapters import AdapterRegistry, RefundParams
from payments.exceptions import (
    PaymentConflictError,
    PaymentNotFoundError,
    PaymentValidationError,
    ProviderError,
)
from payments.models import AuditAction, AuditSeverity, PaymentIntent, Refund
from payments.notifications import NotificationEvent, dispatch_payment_notification
from payments.services.audit_service import AuditService
from payments.state_machines import PaymentIntentStatus, RefundState

if TYPE_CHECKING:
    import uuid
    from collections.abc import Callable

    from django.contrib.auth.models import AbstractBaseUser


logger = logging.getLogger(__name__)


class RefundService(BaseService):
    """
    Requests provider refunds for settled intents.

    Args:
        adapters: Provider adapter registry
        notify: Callable(intent_id, status, event, extra) run after commit
    """

    def __init__(
        self,
        adapters: AdapterRegistry | None = None,
        notify: Callable[..., None] = dispatch_payment_notification,
    ) -> None:
        self.adapters = adapters or AdapterRegistry()
        self.notify = notify

    def refund(
        self,
        intent_id: uuid.UUID,
        amount_minor: int,
        reason: str = "",
        requested_by: AbstractBaseUser | None = None,
    ) -> Refund:
        """
        Refund part or all of a settled intent.

        Returns:
            The Refund, COMPLETED or FAILED

        Raises:
            PaymentNotFoundError: No such intent
            PaymentConflictError: Intent is not settled
            PaymentValidationError: Amount is not positive or exceeds the
                refundable remainder
        """
        actor = f"user:{requested_by.pk}" if requested_by is not None else "system"

        # Phase 1: create the refund record
        with transaction.atomic():
            try:
                intent = PaymentIntent.objects.select_for_update().get(pk=intent_id)
            except PaymentIntent.DoesNotExist as e:
                raise PaymentNotFoundError(
                    "Payment intent not found",
                    details={"payment_intent_id": str(intent_id)},
                ) from e

            if intent.status != PaymentIntentStatus.SETTLED:
                raise PaymentConflictError(
                    f"Only settled payments can be refunded (status '{intent.status}')",
                    details={"payment_intent_id": str(intent.id), "status": intent.status},
                )

            remaining = intent.amount_minor - Refund.refunded_total(intent.id)
            if isinstance(amount_minor, bool) or not isinstance(amount_minor, int) or amount_minor <= 0:
                raise PaymentValidationError(
                    "Refund amount must be a positive integer in minor units",
                    details={"amount_minor": str(amount_minor)},
                )
            if amount_minor > remaining:
                raise PaymentValidationError(
                    f"Refund amount ({amount_minor}) exceeds refundable amount ({remaining})",
                    details={"amount_minor": amount_minor, "refundable_minor": remaining},
                )

            sequence = Refund.objects.filter(payment_intent=intent).count() + 1
            refund = Refund.objects.create(
                payment_intent=intent,
                amount_minor=amount_minor,
                currency=intent.currency,
                reason=reason,
                idempotency_key=f"refund:{intent.id}:{sequence}",
                requested_by=requested_by,
            )
            AuditService.record(
                AuditAction.REFUND_REQUESTED,
                actor=actor,
                payment_intent=intent,
                details={
                    "refund_id": str(refund.id),
                    "amount_minor": amount_minor,
                    "reason": reason,
                },
            )
            refund.start_processing()
            refund.save()

        logger.info(
            "Refund requested",
            extra={
                "refund_id": str(refund.id),
                "intent_id": str(intent.id),
                "provider": intent.provider,
                "amount_minor": amount_minor,
            },
        )

        # Phase 2: provider call, outside any transaction
        adapter = self.adapters.get(intent.provider)
        try:
            result = adapter.refund(
                RefundParams(
                    provider_reference=intent.provider_reference,
                    amount_minor=amount_minor,
                    currency=intent.currency,
                    idempotency_key=refund.idempotency_key,
                    reason=reason,
                    metadata=intent.provider_metadata,
                )
            )
        except ProviderError as e:
            return self._fail_refund(refund, intent, str(e), actor)

        # Phase 3: record the result
        with transaction.atomic():
            refund = Refund.objects.select_for_update().get(pk=refund.pk)
            refund.complete(provider_refund_id=result.provider_refund_id)
            refund.save()
            AuditService.record(
                AuditAction.REFUND_COMPLETED,
                actor=actor,
                payment_intent=intent,
                details={
                    "refund_id": str(refund.id),
                    "provider_refund_id": result.provider_refund_id,
                    "provider_status": result.status,
                },
            )

        logger.info(
            "Refund completed",
            extra={
                "refund_id": str(refund.id),
                "intent_id": str(intent.id),
                "provider": intent.provider,
                "provider_refund_id": result.provider_refund_id,
            },
        )
        return refund

    def _fail_refund(self, refund: Refund, intent: PaymentIntent, reason: str, actor: str) -> Refund:
        with transaction.atomic():
            refund = Refund.objects.select_for_update().get(pk=refund.pk)
            refund.fail(reason=reason)
            refund.save()
            AuditService.record(
                AuditAction.REFUND_FAILED,
                actor=actor,
                severity=AuditSeverity.CRITICAL,
                payment_intent=intent,
                details={"refund_id": str(refund.id), "reason": reason},
            )
            transaction.on_commit(
                partial(
                    self.notify,
                    intent.id,
                    RefundState.FAILED,
                    NotificationEvent.REFUND_FAILED,
                    {"refund_id": str(refund.id)},
                )
            )

        logger.error(
            f"Refund failed: {reason}",
            extra={
                "refund_id": str(refund.id),
                "intent_id": str(intent.id),
                "provider": intent.provider,
            },
        )
        return refund

    @staticmethod
    def refunds_for(intent_id: uuid.UUID) -> list[Refund]:
        return list(Refund.objects.filter(payment_intent_id=intent_id).order_by("created_at"))
