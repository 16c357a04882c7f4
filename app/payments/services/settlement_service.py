"""
Settlement engine: the only writer of PaymentIntent status.

Every path that ends a payment (webhook, synchronous confirm, admin
reject, reconciliation) funnels through SettlementService, which:

1. Locks the intent row (select_for_update) inside transaction.atomic
2. Drops outcomes for terminal intents (idempotent, audited, never raises)
3. Validates the transition with django-fsm and commits it with a
   compare-and-swap on (status, version)
4. Applies owner-side effects in the same transaction: payment_status,
   in-progress marker release, booking confirmation or subscription
   activation/extension with a usage period reset
5. Writes the intent_transition audit entry
6. Schedules the notification with transaction.on_commit

Provider calls never happen here.

Usage:
    from payments.services import SettlementService

    status = SettlementService().apply(
        intent.id,
        PaymentOutcome.SUCCEEDED,
        {"capture_id": "CAP-1"},
        actor="webhook:global_wallet",
    )
"""

from __future__ import annotations

import logging
from functools import partial
from typing import TYPE_CHECKING, Any

from django.db import transaction
from django.utils import timezone

from bookings.models import BookingStatus
from core.services import BaseService
from payments.entitlements.plans import get_plan
from payments.entitlements.services import EntitlementService
from payments.exceptions import (
    InvalidStateTransitionError,
    PaymentNotFoundError,
    PaymentValidationError,
    StaleRecordError,
)
from payments.models import AuditAction, AuditSeverity, PaymentIntent
from payments.notifications import NotificationEvent, dispatch_payment_notification
from payments.services.audit_service import AuditService
from payments.services.owners import lock_owner
from payments.state_machines import (
    PaymentIntentStatus,
    PaymentOutcome,
    PaymentPurpose,
    SubscriptionStatus,
)

if TYPE_CHECKING:
    import uuid
    from collections.abc import Callable


logger = logging.getLogger(__name__)

STATUS_EVENTS = {
    PaymentIntentStatus.SETTLED: NotificationEvent.PAYMENT_SETTLED,
    PaymentIntentStatus.FAILED: NotificationEvent.PAYMENT_FAILED,
    PaymentIntentStatus.REJECTED: NotificationEvent.PAYMENT_REJECTED,
    PaymentIntentStatus.EXPIRED: NotificationEvent.PAYMENT_EXPIRED,
}


class SettlementService(BaseService):
    """
    Applies final outcomes to payment intents exactly once.

    Args:
        entitlements: Usage ledger used to open a new period on
            subscription settlement
        notify: Callable(intent_id, status, event) run after commit
    """

    def __init__(
        self,
        entitlements: type[EntitlementService] = EntitlementService,
        notify: Callable[..., None] = dispatch_payment_notification,
    ) -> None:
        self.entitlements = entitlements
        self.notify = notify

    # =========================================================================
    # Entry Points
    # =========================================================================

    def apply(
        self,
        intent_id: uuid.UUID,
        outcome: str,
        provider_metadata: dict[str, Any] | None = None,
        actor: str = "system",
    ) -> str:
        """
        Apply a normalized provider outcome.

        Returns the intent status after the call. Terminal intents and
        intents still in CREATED are left unchanged.

        Raises:
            PaymentValidationError: Unknown outcome
            PaymentNotFoundError: No such intent
        """
        if outcome not in PaymentOutcome.values:
            raise PaymentValidationError(
                f"Unknown payment outcome: {outcome}",
                details={"outcome": str(outcome)},
            )

        with transaction.atomic():
            intent = self._lock_intent(intent_id)

            if intent.is_terminal:
                return self._drop(intent, actor, f"outcome {outcome} for terminal intent")

            if intent.status == PaymentIntentStatus.CREATED:
                # Session confirmation not committed yet; reconciliation polls it later.
                return self._drop(intent, actor, f"outcome {outcome} before session confirmed")

            metadata = {**(provider_metadata or {}), "outcome": outcome}
            if outcome == PaymentOutcome.SUCCEEDED:
                return self._commit(intent, "settle", actor, metadata=metadata)
            return self._commit(
                intent,
                "fail",
                actor,
                reason=f"Provider reported {outcome}",
                metadata=metadata,
            )

    def reject(self, intent_id: uuid.UUID, reason: str, actor: str) -> str:
        """
        Administrative rejection of an intent awaiting its provider result.

        Raises:
            PaymentNotFoundError: No such intent
            InvalidStateTransitionError: Intent is not awaiting a result
        """
        with transaction.atomic():
            intent = self._lock_intent(intent_id)
            if intent.status != PaymentIntentStatus.AWAITING_PROVIDER_RESULT:
                raise InvalidStateTransitionError(
                    f"Cannot reject a payment in status '{intent.status}'",
                    details={"payment_intent_id": str(intent.id), "status": intent.status},
                )
            return self._commit(intent, "reject", actor, reason=reason)

    def expire(self, intent_id: uuid.UUID, actor: str, reason: str = "") -> str:
        with transaction.atomic():
            intent = self._lock_intent(intent_id)
            if intent.status != PaymentIntentStatus.AWAITING_PROVIDER_RESULT:
                return self._drop(intent, actor, "expire for intent not awaiting a result")
            return self._commit(
                intent,
                "expire",
                actor,
                reason=reason or "No provider result before timeout",
            )

    def fail_creation(self, intent_id: uuid.UUID, reason: str, actor: str) -> str:
        with transaction.atomic():
            intent = self._lock_intent(intent_id)
            if intent.status != PaymentIntentStatus.CREATED:
                return self._drop(intent, actor, "fail_creation for intent past CREATED")
            return self._commit(intent, "fail_creation", actor, reason=reason)

    def repair_owner(self, intent_id: uuid.UUID, actor: str) -> str:
        """
        Re-apply owner-side effects of a terminal intent.

        Used by reconciliation when an owner's payment_status disagrees
        with its latest terminal intent. Safe to repeat: subscription
        periods are only extended once per intent.
        """
        with transaction.atomic():
            intent = self._lock_intent(intent_id)
            if not intent.is_terminal:
                raise InvalidStateTransitionError(
                    "Only terminal intents can be used to repair owner state",
                    details={"payment_intent_id": str(intent.id), "status": intent.status},
                )
            owner_before = self._apply_owner_effects(intent)
            logger.error(
                "Owner payment state drifted from its latest intent; repaired",
                extra={
                    "intent_id": str(intent.id),
                    "provider": intent.provider,
                    "owner_key": intent.owner_key,
                    "owner_payment_status": owner_before,
                    "intent_status": intent.status,
                },
            )
            AuditService.record(
                AuditAction.OWNER_DRIFT_REPAIRED,
                actor=actor,
                severity=AuditSeverity.CRITICAL,
                payment_intent=intent,
                from_state=owner_before or "",
                to_state=intent.status,
                details={"owner_key": intent.owner_key},
            )
            return intent.status

    # =========================================================================
    # Commit Path
    # =========================================================================

    def _lock_intent(self, intent_id: uuid.UUID) -> PaymentIntent:
        try:
            return PaymentIntent.objects.select_for_update().get(pk=intent_id)
        except PaymentIntent.DoesNotExist as e:
            raise PaymentNotFoundError(
                "Payment intent not found",
                details={"payment_intent_id": str(intent_id)},
            ) from e

    def _drop(self, intent: PaymentIntent, actor: str, reason: str) -> str:
        logger.warning(
            "Transition dropped",
            extra={
                "intent_id": str(intent.id),
                "provider": intent.provider,
                "status": intent.status,
                "actor": actor,
                "reason": reason,
            },
        )
        AuditService.record(
            AuditAction.TRANSITION_DROPPED,
            actor=actor,
            severity=AuditSeverity.WARNING,
            payment_intent=intent,
            from_state=intent.status,
            to_state=intent.status,
            details={"reason": reason},
        )
        return intent.status

    def _commit(self, intent: PaymentIntent, transition_name: str, actor: str, **kwargs: Any) -> str:
        from_status = intent.status
        getattr(intent, transition_name)(**kwargs)
        try:
            intent.persist_transition(from_status)
        except StaleRecordError:
            current = PaymentIntent.objects.get(pk=intent.pk)
            return self._drop(current, actor, f"{transition_name} lost to a concurrent writer")

        self._apply_owner_effects(intent)

        AuditService.record(
            AuditAction.INTENT_TRANSITION,
            actor=actor,
            payment_intent=intent,
            from_state=from_status,
            to_state=intent.status,
            details={"transition": transition_name, "failure_reason": intent.failure_reason},
        )
        logger.info(
            "Payment intent transitioned",
            extra={
                "intent_id": str(intent.id),
                "provider": intent.provider,
                "from_state": from_status,
                "to_state": intent.status,
                "actor": actor,
            },
        )

        event = STATUS_EVENTS.get(intent.status)
        if event:
            transaction.on_commit(partial(self.notify, intent.id, intent.status, event))
        return intent.status

    # =========================================================================
    # Owner Effects
    # =========================================================================

    def _apply_owner_effects(self, intent: PaymentIntent) -> str | None:
        """Update the owner for a terminal intent. Returns the previous payment_status."""
        owner = lock_owner(intent)
        previous = owner.payment_status
        now = timezone.now()

        # A settled owner is never downgraded by a later non-settled intent.
        if owner.payment_status != PaymentIntentStatus.SETTLED or intent.status == PaymentIntentStatus.SETTLED:
            owner.payment_status = intent.status
        if owner.payment_intent_in_progress == intent.id:
            owner.payment_intent_in_progress = None

        if intent.status == PaymentIntentStatus.SETTLED:
            if intent.purpose == PaymentPurpose.BOOKING_PAYMENT:
                self._confirm_booking(owner, now)
            else:
                self._activate_subscription(owner, intent, now)

        owner.save()
        return previous

    @staticmethod
    def _confirm_booking(booking, now) -> None:
        if booking.status == BookingStatus.PENDING_PAYMENT:
            booking.status = BookingStatus.CONFIRMED
        if booking.paid_at is None:
            booking.paid_at = now

    def _activate_subscription(self, subscription, intent: PaymentIntent, now) -> None:
        if subscription.last_settled_intent_id == intent.id:
            return
        plan = get_plan(intent.plan_tier)
        if subscription.status == SubscriptionStatus.TRIAL:
            subscription.convert_trial()
        else:
            subscription.activate()
        subscription.start_paid_period(plan, now)
        subscription.last_settled_intent_id = intent.id
        self.entitlements.reset_period(subscription)
