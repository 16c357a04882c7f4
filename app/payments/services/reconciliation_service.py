"""
Reconciliation scanner: finds and repairs payment state that webhooks and
synchronous confirms left behind.

Checks, in order:
    1. Stuck awaiting: intents awaiting a provider result past the expiry
       window are polled (with exponential backoff per intent) and settled
       or failed through the settlement engine; only intents the provider
       has no record of are expired
    2. Stuck created: intents that never got a provider session are failed
    3. Owner drift: owners whose payment_status disagrees with their latest
       terminal intent are repaired (logged at ERROR, audited critical)
    4. Stale owner markers: in-progress markers pointing at a terminal or
       missing intent are cleared by compare-and-swap
    5. Subscription lapse: active subscriptions past their period and
       unconverted trials past their end date become lapsed

Only one pass runs at a time (cache lock "reconciliation:run"). Provider
polls happen outside any transaction. Every finding is persisted as a
ReconciliationDiscrepancy under the run; flagged rows are the operator
review queue.

Usage:
    from payments.services import ReconciliationService

    result = ReconciliationService().run()
    print(f"Found {result.discrepancies_found}, healed {result.auto_healed}")
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from functools import partial
from typing import TYPE_CHECKING

from django.conf import settings
from django.db import transaction
from django.db.models import F, OuterRef, Subquery
from django.utils import timezone

from bookings.models import Booking
from core.helpers import backoff_delay
from core.services import BaseService
from payments.adapters import AdapterRegistry
from payments.exceptions import ProviderError, ProviderUnavailableError
from payments.locks import DistributedLock
from payments.models import (
    AuditAction,
    DiscrepancyResolution,
    DiscrepancyType,
    PaymentIntent,
    ReconciliationDiscrepancy,
    ReconciliationRun,
    ReconciliationRunStatus,
    Subscription,
)
from payments.services.audit_service import AuditService
from payments.services.owners import release_marker
from payments.services.settlement_service import SettlementService
from payments.state_machines import (
    PaymentIntentStatus,
    PaymentOutcome,
    PaymentPurpose,
    SubscriptionStatus,
)

if TYPE_CHECKING:
    from collections.abc import Callable
    from typing import Any


logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

RUN_LOCK_KEY = "reconciliation:run"
RUN_LOCK_TTL = 3600

# Upper bound on the per-intent poll backoff (seconds)
POLL_BACKOFF_CAP = 3600

ACTOR = "reconciliation"

OWNER_MODELS = (
    (PaymentPurpose.BOOKING_PAYMENT, Booking, "booking"),
    (PaymentPurpose.SUBSCRIPTION_PAYMENT, Subscription, "subscription"),
)


# =============================================================================
# Data Types
# =============================================================================


@dataclass
class Discrepancy:
    """A detected disagreement between local state and reality."""

    discrepancy_type: str
    entity_type: str
    entity_id: uuid.UUID
    local_state: str
    provider_reference: str = ""
    provider_state: str = ""
    details: dict[str, Any] = field(default_factory=dict)


@dataclass
class HealingResult:
    """What the scanner did about one discrepancy."""

    discrepancy: Discrepancy
    resolution: str
    action_taken: str = ""
    error: str = ""


@dataclass
class ReconciliationRunResult:
    """Summary of one scanner pass."""

    run_id: uuid.UUID
    started_at: datetime
    completed_at: datetime | None = None
    intents_checked: int = 0
    owners_checked: int = 0
    subscriptions_checked: int = 0
    results: list[HealingResult] = field(default_factory=list)

    @property
    def discrepancies_found(self) -> int:
        return len(self.results)

    def count(self, resolution: str) -> int:
        return sum(1 for r in self.results if r.resolution == resolution)

    @property
    def auto_healed(self) -> int:
        return self.count(DiscrepancyResolution.AUTO_HEALED)

    @property
    def flagged_for_review(self) -> int:
        return self.count(DiscrepancyResolution.FLAGGED_FOR_REVIEW)

    @property
    def failed_to_heal(self) -> int:
        return self.count(DiscrepancyResolution.FAILED_TO_HEAL)

    def to_dict(self) -> dict[str, Any]:
        return {
            "run_id": str(self.run_id),
            "intents_checked": self.intents_checked,
            "owners_checked": self.owners_checked,
            "subscriptions_checked": self.subscriptions_checked,
            "discrepancies_found": self.discrepancies_found,
            "auto_healed": self.auto_healed,
            "flagged_for_review": self.flagged_for_review,
            "failed_to_heal": self.failed_to_heal,
        }


# =============================================================================
# Reconciliation Service
# =============================================================================


class ReconciliationService(BaseService):
    """
    Periodic safety net for payment state.

    Args:
        adapters: Provider adapter registry used for status polls
        settlement: Settlement engine; every intent change goes through it
    """

    def __init__(
        self,
        adapters: AdapterRegistry | None = None,
        settlement: SettlementService | None = None,
    ) -> None:
        self.adapters = adapters or AdapterRegistry()
        self.settlement = settlement or SettlementService()

    # =========================================================================
    # Public API
    # =========================================================================

    def run(self, expiry_hours: int | None = None, max_records: int | None = None) -> ReconciliationRunResult:
        """
        Run a full pass.

        Raises:
            LockAcquisitionError: Another pass is already running
        """
        expiry_hours = expiry_hours or settings.PAYMENT_INTENT_EXPIRY_HOURS
        max_records = max_records or settings.RECONCILIATION_MAX_RECORDS

        with DistributedLock(RUN_LOCK_KEY, ttl=RUN_LOCK_TTL, blocking=False):
            return self._run_with_lock(expiry_hours, max_records)

    def _run_with_lock(self, expiry_hours: int, max_records: int) -> ReconciliationRunResult:
        started_at = timezone.now()
        run = ReconciliationRun.objects.create(
            started_at=started_at,
            expiry_hours=expiry_hours,
            max_records=max_records,
            status=ReconciliationRunStatus.RUNNING,
        )
        result = ReconciliationRunResult(run_id=run.id, started_at=started_at)
        self.get_logger().info(
            "Starting reconciliation run",
            extra={"run_id": str(run.id), "expiry_hours": expiry_hours, "max_records": max_records},
        )

        try:
            self._check_stuck_awaiting(run, result, expiry_hours, max_records)
            self._check_stuck_created(run, result, max_records)
            self._check_owner_drift(run, result, max_records)
            self._check_stale_markers(run, result, max_records)
            self._check_subscription_lapse(run, result, max_records)
        except Exception as e:
            run.completed_at = timezone.now()
            run.status = ReconciliationRunStatus.FAILED
            run.error_message = str(e)
            run.save()
            self.get_logger().error(
                "Reconciliation run failed",
                extra={"run_id": str(run.id), "error": str(e)},
                exc_info=True,
            )
            raise

        result.completed_at = timezone.now()
        run.completed_at = result.completed_at
        run.intents_checked = result.intents_checked
        run.owners_checked = result.owners_checked
        run.subscriptions_checked = result.subscriptions_checked
        run.discrepancies_found = result.discrepancies_found
        run.auto_healed = result.auto_healed
        run.flagged_for_review = result.flagged_for_review
        run.failed_to_heal = result.failed_to_heal
        run.status = ReconciliationRunStatus.COMPLETED
        run.save()

        self.get_logger().info(
            "Reconciliation run completed",
            extra={
                **result.to_dict(),
                "duration_seconds": (result.completed_at - started_at).total_seconds(),
            },
        )
        return result

    # =========================================================================
    # Check 1: Stuck Awaiting
    # =========================================================================

    def _check_stuck_awaiting(
        self,
        run: ReconciliationRun,
        result: ReconciliationRunResult,
        expiry_hours: int,
        max_records: int,
    ) -> None:
        now = timezone.now()
        candidates = PaymentIntent.objects.filter(
            status=PaymentIntentStatus.AWAITING_PROVIDER_RESULT,
            created_at__lte=now - timedelta(hours=expiry_hours),
        ).order_by("created_at")[:max_records]

        for intent in candidates:
            if not self._poll_due(intent, now):
                continue
            result.intents_checked += 1
            self._guarded(run, result, intent, self._poll_and_settle, DiscrepancyType.PROVIDER_UNREACHABLE)

    @staticmethod
    def _poll_due(intent: PaymentIntent, now: datetime) -> bool:
        if intent.last_polled_at is None:
            return True
        delay = backoff_delay(
            intent.attempt_count,
            base=settings.RECONCILIATION_POLL_BACKOFF_SECONDS,
            cap=POLL_BACKOFF_CAP,
        )
        return intent.last_polled_at + timedelta(seconds=delay) <= now

    def _poll_and_settle(self, intent: PaymentIntent) -> HealingResult:
        adapter = self.adapters.get(intent.provider)
        attempts = intent.attempt_count + 1
        PaymentIntent.objects.filter(pk=intent.pk).update(
            attempt_count=F("attempt_count") + 1,
            last_polled_at=timezone.now(),
        )

        try:
            status = adapter.poll_status(intent.provider_reference)
        except ProviderUnavailableError as e:
            discrepancy = self._intent_discrepancy(
                intent,
                DiscrepancyType.PROVIDER_UNREACHABLE,
                details={"attempts": attempts, "error_code": e.error_code},
            )
            if attempts >= settings.RECONCILIATION_MAX_POLL_ATTEMPTS:
                return self._flag_for_review(discrepancy, f"Provider unreachable after {attempts} polls")
            return HealingResult(
                discrepancy=discrepancy,
                resolution=DiscrepancyResolution.FAILED_TO_HEAL,
                action_taken="Will poll again after backoff",
                error=e.message,
            )
        except ProviderError as e:
            discrepancy = self._intent_discrepancy(
                intent,
                DiscrepancyType.PROVIDER_UNREACHABLE,
                details={"attempts": attempts, "error_code": e.error_code},
            )
            return self._flag_for_review(discrepancy, f"Provider rejected status poll: {e.message}")

        if status.outcome == PaymentOutcome.SUCCEEDED:
            discrepancy_type = DiscrepancyType.LATE_SUCCESS
            new_status = self.settlement.apply(intent.id, status.outcome, status.metadata, actor=ACTOR)
        elif status.outcome is not None:
            discrepancy_type = DiscrepancyType.LATE_DECLINE
            new_status = self.settlement.apply(intent.id, status.outcome, status.metadata, actor=ACTOR)
        elif status.found:
            # The provider knows the payment but capture never completed in time
            discrepancy_type = DiscrepancyType.CAPTURE_TIMED_OUT
            new_status = self.settlement.apply(
                intent.id,
                PaymentOutcome.ERRORED,
                {**status.metadata, "reason": "Capture not completed before timeout"},
                actor=ACTOR,
            )
        else:
            discrepancy_type = DiscrepancyType.EXPIRED_WITHOUT_RECORD
            new_status = self.settlement.expire(intent.id, actor=ACTOR, reason="Provider has no record")

        discrepancy = self._intent_discrepancy(
            intent,
            discrepancy_type,
            provider_state=status.outcome or ("pending" if status.found else "not_found"),
            details={"attempts": attempts, "provider_metadata": status.metadata},
        )
        return HealingResult(
            discrepancy=discrepancy,
            resolution=DiscrepancyResolution.AUTO_HEALED,
            action_taken=f"Intent now {new_status}",
        )

    # =========================================================================
    # Check 2: Stuck Created
    # =========================================================================

    def _check_stuck_created(self, run: ReconciliationRun, result: ReconciliationRunResult, max_records: int) -> None:
        cutoff = timezone.now() - timedelta(minutes=settings.PAYMENT_CREATED_TIMEOUT_MINUTES)
        candidates = PaymentIntent.objects.filter(
            status=PaymentIntentStatus.CREATED,
            provider_reference__isnull=True,
            created_at__lte=cutoff,
        ).order_by("created_at")[:max_records]

        for intent in candidates:
            result.intents_checked += 1
            self._guarded(run, result, intent, self._fail_stuck_created, DiscrepancyType.STUCK_CREATED)

    def _fail_stuck_created(self, intent: PaymentIntent) -> HealingResult:
        new_status = self.settlement.fail_creation(
            intent.id,
            reason="Provider session was never confirmed",
            actor=ACTOR,
        )
        return HealingResult(
            discrepancy=self._intent_discrepancy(intent, DiscrepancyType.STUCK_CREATED),
            resolution=DiscrepancyResolution.AUTO_HEALED,
            action_taken=f"Intent now {new_status}",
        )

    # =========================================================================
    # Check 3: Owner Drift
    # =========================================================================

    def _check_owner_drift(self, run: ReconciliationRun, result: ReconciliationRunResult, max_records: int) -> None:
        terminal = list(PaymentIntentStatus.terminal())
        for _purpose, model, fk_name in OWNER_MODELS:
            latest = PaymentIntent.objects.filter(
                **{fk_name: OuterRef("pk")},
                status__in=terminal,
            ).order_by("-last_transition_at", "-created_at")
            owners = model.objects.annotate(
                latest_intent_id=Subquery(latest.values("id")[:1]),
                latest_intent_status=Subquery(latest.values("status")[:1]),
            ).filter(latest_intent_id__isnull=False)
            result.owners_checked += owners.count()

            # A settled owner stays settled; see SettlementService._apply_owner_effects.
            drifted = (
                owners.exclude(payment_status=PaymentIntentStatus.SETTLED)
                .exclude(payment_status=F("latest_intent_status"))
                .order_by("pk")[:max_records]
            )
            for owner in drifted:
                self._guarded(run, result, owner, self._repair_owner, DiscrepancyType.OWNER_STATUS_DRIFT)

    def _repair_owner(self, owner) -> HealingResult:
        new_status = self.settlement.repair_owner(owner.latest_intent_id, actor=ACTOR)
        discrepancy = Discrepancy(
            discrepancy_type=DiscrepancyType.OWNER_STATUS_DRIFT,
            entity_type=owner._meta.model_name,
            entity_id=owner.pk,
            local_state=owner.payment_status or "",
            provider_state=owner.latest_intent_status,
            details={"intent_id": str(owner.latest_intent_id)},
        )
        return HealingResult(
            discrepancy=discrepancy,
            resolution=DiscrepancyResolution.AUTO_HEALED,
            action_taken=f"Owner payment_status set to {new_status}",
        )

    # =========================================================================
    # Check 4: Stale Owner Markers
    # =========================================================================

    def _check_stale_markers(self, run: ReconciliationRun, result: ReconciliationRunResult, max_records: int) -> None:
        live_intents = PaymentIntent.objects.non_terminal().values("id")
        for purpose, model, _fk_name in OWNER_MODELS:
            stale = (
                model.objects.filter(payment_intent_in_progress__isnull=False)
                .exclude(payment_intent_in_progress__in=live_intents)
                .order_by("pk")[:max_records]
            )
            for owner in stale:
                result.owners_checked += 1
                self._guarded(
                    run,
                    result,
                    owner,
                    partial(self._clear_marker, purpose),
                    DiscrepancyType.STALE_OWNER_MARKER,
                )

    @staticmethod
    def _clear_marker(purpose: str, owner) -> HealingResult:
        marker = owner.payment_intent_in_progress
        cleared = release_marker(purpose, owner.pk, marker)
        holder_status = PaymentIntent.objects.filter(pk=marker).values_list("status", flat=True).first()
        discrepancy = Discrepancy(
            discrepancy_type=DiscrepancyType.STALE_OWNER_MARKER,
            entity_type=owner._meta.model_name,
            entity_id=owner.pk,
            local_state=str(marker),
            provider_state=holder_status or "missing",
        )
        if not cleared:
            # Marker changed since it was read; the next pass re-checks it.
            return HealingResult(
                discrepancy=discrepancy,
                resolution=DiscrepancyResolution.FAILED_TO_HEAL,
                error="Marker changed concurrently",
            )
        return HealingResult(
            discrepancy=discrepancy,
            resolution=DiscrepancyResolution.AUTO_HEALED,
            action_taken="Cleared in-progress marker",
        )

    # =========================================================================
    # Check 5: Subscription Lapse
    # =========================================================================

    def _check_subscription_lapse(
        self,
        run: ReconciliationRun,
        result: ReconciliationRunResult,
        max_records: int,
    ) -> None:
        now = timezone.now()
        expired_active = Subscription.objects.filter(
            status=SubscriptionStatus.ACTIVE,
            current_period_end__lt=now,
        )
        expired_trials = Subscription.objects.filter(
            status=SubscriptionStatus.TRIAL,
            trial_ends_at__lt=now,
            trial_converted_at__isnull=True,
        )
        candidates = (expired_active | expired_trials).order_by("pk")[:max_records]

        for subscription in candidates:
            result.subscriptions_checked += 1
            self._guarded(run, result, subscription, self._lapse_subscription, DiscrepancyType.SUBSCRIPTION_LAPSED)

    @staticmethod
    def _lapse_subscription(subscription: Subscription) -> HealingResult:
        with transaction.atomic():
            subscription = Subscription.objects.select_for_update().get(pk=subscription.pk)
            previous = subscription.status
            now = timezone.now()
            still_due = (
                previous == SubscriptionStatus.ACTIVE
                and subscription.current_period_end is not None
                and subscription.current_period_end < now
            ) or (
                previous == SubscriptionStatus.TRIAL
                and subscription.trial_ends_at is not None
                and subscription.trial_ends_at < now
            )
            discrepancy = Discrepancy(
                discrepancy_type=DiscrepancyType.SUBSCRIPTION_LAPSED,
                entity_type="subscription",
                entity_id=subscription.pk,
                local_state=previous,
                details={
                    "current_period_end": str(subscription.current_period_end),
                    "trial_ends_at": str(subscription.trial_ends_at),
                },
            )
            if not still_due:
                return HealingResult(
                    discrepancy=discrepancy,
                    resolution=DiscrepancyResolution.AUTO_HEALED,
                    action_taken="Renewed concurrently; no change",
                )

            subscription.lapse()
            subscription.save()
            AuditService.record(
                AuditAction.SUBSCRIPTION_LAPSED,
                actor=ACTOR,
                from_state=previous,
                to_state=subscription.status,
                details={"subscription_id": str(subscription.pk)},
            )

        logger.info(
            "Subscription lapsed",
            extra={"subscription_id": str(subscription.pk), "from_state": previous},
        )
        return HealingResult(
            discrepancy=discrepancy,
            resolution=DiscrepancyResolution.AUTO_HEALED,
            action_taken="Subscription lapsed; entitlements revert to free",
        )

    # =========================================================================
    # Internal: Helpers
    # =========================================================================

    def _guarded(
        self,
        run: ReconciliationRun,
        result: ReconciliationRunResult,
        entity,
        check: Callable[[Any], HealingResult],
        discrepancy_type: str,
    ) -> None:
        """Run one per-record check; a failure is recorded and the pass continues."""
        try:
            healing = check(entity)
        except Exception as e:
            self.get_logger().error(
                f"Reconciliation check failed: {type(e).__name__}",
                extra={"run_id": str(run.id), "entity_id": str(entity.pk)},
                exc_info=True,
            )
            healing = HealingResult(
                discrepancy=Discrepancy(
                    discrepancy_type=discrepancy_type,
                    entity_type="payment_intent" if isinstance(entity, PaymentIntent) else entity._meta.model_name,
                    entity_id=entity.pk,
                    local_state=str(getattr(entity, "status", "")),
                ),
                resolution=DiscrepancyResolution.FAILED_TO_HEAL,
                error=str(e),
            )
        result.results.append(healing)
        self._record_discrepancy(run, healing)

    @staticmethod
    def _intent_discrepancy(
        intent: PaymentIntent,
        discrepancy_type: str,
        provider_state: str = "",
        details: dict[str, Any] | None = None,
    ) -> Discrepancy:
        return Discrepancy(
            discrepancy_type=discrepancy_type,
            entity_type="payment_intent",
            entity_id=intent.id,
            local_state=intent.status,
            provider_reference=intent.provider_reference or "",
            provider_state=provider_state,
            details=details or {},
        )

    def _flag_for_review(self, discrepancy: Discrepancy, action: str) -> HealingResult:
        self.get_logger().warning(
            "Discrepancy flagged for review",
            extra={
                "discrepancy_type": discrepancy.discrepancy_type,
                "entity_type": discrepancy.entity_type,
                "entity_id": str(discrepancy.entity_id),
                "provider_reference": discrepancy.provider_reference,
                "local_state": discrepancy.local_state,
            },
        )
        return HealingResult(
            discrepancy=discrepancy,
            resolution=DiscrepancyResolution.FLAGGED_FOR_REVIEW,
            action_taken=action,
        )

    def _record_discrepancy(self, run: ReconciliationRun, healing: HealingResult) -> None:
        discrepancy = healing.discrepancy
        ReconciliationDiscrepancy.objects.create(
            run=run,
            entity_type=discrepancy.entity_type,
            entity_id=discrepancy.entity_id,
            provider_reference=discrepancy.provider_reference,
            discrepancy_type=discrepancy.discrepancy_type,
            local_state=discrepancy.local_state,
            provider_state=discrepancy.provider_state,
            details=discrepancy.details,
            resolution=healing.resolution,
            action_taken=healing.action_taken,
            error_message=healing.error,
        )


__all__ = [
    "Discrepancy",
    "HealingResult",
    "ReconciliationRunResult",
    "ReconciliationService",
]
