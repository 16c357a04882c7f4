"""
Checkout initiator: turns a request to pay into a provider session.

The intent is written in CREATED before the provider is called, so a
crash after the provider accepted the session leaves a durable record
for reconciliation to find. The flow is:

1. Validate amount, currency and provider against the owner's
   authoritative price (booking price or plan catalog price)
2. In one transaction: create the intent, audit it and claim the owner's
   in-progress marker with a conditional update
3. Outside any transaction or lock: adapter.create_session()
4. CREATED -> AWAITING_PROVIDER_RESULT with the provider reference
5. On provider error: CREATED -> FAILED through settlement (which frees
   the marker) and re-raise ProviderUnavailableError

Usage:
    from payments.services import CheckoutService

    result = CheckoutService().initiate(
        owner=booking,
        purpose=PaymentPurpose.BOOKING_PAYMENT,
        amount_minor=booking.price_minor,
        currency="PHP",
        provider=PaymentProvider.WALLET_A,
        return_context={"success_url": "...", "cancel_url": "..."},
        initiated_by=request.user,
    )
    redirect(result.redirect_url)
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from django.conf import settings
from django.db import IntegrityError, transaction
from django.db.models import F
from django.utils import timezone

from bookings.models import Booking, BookingStatus
from core.services import BaseService
from payments.adapters import AdapterRegistry, CreateSessionParams
from payments.entitlements.plans import PLAN_CATALOG, get_plan
from payments.exceptions import (
    PaymentConflictError,
    PaymentNotFoundError,
    PaymentValidationError,
    ProviderError,
    ProviderUnavailableError,
    StaleRecordError,
)
from payments.models import AuditAction, PaymentIntent, Subscription
from payments.services.audit_service import AuditService
from payments.services.owners import claim_marker, owner_model_for
from payments.services.settlement_service import SettlementService
from payments.state_machines import (
    PaymentIntentStatus,
    PaymentProvider,
    PaymentPurpose,
)

if TYPE_CHECKING:
    import uuid

    from django.contrib.auth.models import AbstractBaseUser


logger = logging.getLogger(__name__)

GENERIC_PROVIDER_MESSAGE = "payment could not be completed, please try again"


@dataclass
class CheckoutResult:
    """
    Result of a successful checkout.

    Attributes:
        intent_id: PaymentIntent now awaiting the provider result
        redirect_url: Hosted provider page, if the provider uses one
        client_payload: Data for in-app completion (provider specific)
    """

    intent_id: uuid.UUID
    redirect_url: str | None = None
    client_payload: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "intent_id": str(self.intent_id),
            "redirect_url": self.redirect_url,
            "client_payload": self.client_payload,
        }


class CheckoutService(BaseService):
    """
    Opens provider sessions and runs the synchronous confirm path.

    Args:
        adapters: Provider adapter registry
        settlement: Settlement engine used for failure and confirm outcomes
    """

    def __init__(
        self,
        adapters: AdapterRegistry | None = None,
        settlement: SettlementService | None = None,
    ) -> None:
        self.adapters = adapters or AdapterRegistry()
        self.settlement = settlement or SettlementService()

    # =========================================================================
    # Initiate
    # =========================================================================

    def initiate(
        self,
        owner: Booking | Subscription,
        purpose: str,
        amount_minor: int,
        currency: str,
        provider: str,
        return_context: dict[str, Any] | None = None,
        plan_tier: str | None = None,
        initiated_by: AbstractBaseUser | None = None,
    ) -> CheckoutResult:
        """
        Start a payment for ``owner``.

        Raises:
            PaymentValidationError: Bad amount/currency/provider, or the
                owner is not payable for that amount
            PaymentNotFoundError: Owner no longer exists
            PaymentConflictError: Another payment for the owner is in progress
            ProviderUnavailableError: Session could not be opened (retryable;
                the intent is already FAILED)
        """
        self._validate_request(purpose, amount_minor, currency, provider)
        owner = self._reload_owner(purpose, owner.pk)
        plan_tier = self._validate_owner(owner, purpose, amount_minor, currency, plan_tier)

        intent = self._create_intent(
            owner=owner,
            purpose=purpose,
            amount_minor=amount_minor,
            currency=currency,
            provider=provider,
            return_context=return_context or {},
            plan_tier=plan_tier,
            initiated_by=initiated_by,
        )

        adapter = self.adapters.get(provider)
        start_time = time.time()
        try:
            session = adapter.create_session(
                CreateSessionParams(
                    intent_id=str(intent.id),
                    amount_minor=amount_minor,
                    currency=currency,
                    description=self._describe(owner, purpose, plan_tier),
                    return_context=intent.return_context,
                    idempotency_key=f"session:{intent.id}",
                )
            )
        except ProviderError as e:
            logger.warning(
                f"Provider session failed: {e}",
                extra={
                    "intent_id": str(intent.id),
                    "provider": provider,
                    "error_code": e.error_code,
                    "duration_ms": (time.time() - start_time) * 1000,
                },
            )
            PaymentIntent.objects.filter(pk=intent.pk).update(attempt_count=F("attempt_count") + 1)
            self.settlement.fail_creation(intent.id, reason=str(e), actor="checkout")
            raise ProviderUnavailableError(
                GENERIC_PROVIDER_MESSAGE,
                provider=provider,
                error_code=e.error_code,
            ) from e

        intent.await_provider_result(session.provider_reference)
        try:
            intent.persist_transition(
                PaymentIntentStatus.CREATED,
                attempt_count=F("attempt_count") + 1,
            )
        except StaleRecordError:
            # Reconciliation failed the stuck intent while the provider call ran.
            current = PaymentIntent.objects.get(pk=intent.pk)
            logger.error(
                "Session opened for an intent that is no longer CREATED",
                extra={
                    "intent_id": str(intent.id),
                    "provider": provider,
                    "status": current.status,
                    "provider_reference": session.provider_reference,
                },
            )
            raise PaymentConflictError(
                "Payment session expired, please try again",
                details={"payment_intent_id": str(intent.id)},
            )

        logger.info(
            "Checkout session opened",
            extra={
                "intent_id": str(intent.id),
                "provider": provider,
                "provider_reference": session.provider_reference,
                "duration_ms": (time.time() - start_time) * 1000,
            },
        )
        return CheckoutResult(
            intent_id=intent.id,
            redirect_url=session.redirect_url,
            client_payload=session.client_payload,
        )

    # =========================================================================
    # Confirm
    # =========================================================================

    def confirm(self, intent_id: uuid.UUID, payload: dict[str, Any] | None = None) -> str:
        """
        Synchronous return/capture path.

        Verifies with the provider and hands a final outcome to settlement.
        Arrival order relative to the webhook does not matter: whichever
        lands second is dropped by settlement.

        Returns the intent status after the call.
        """
        try:
            intent = PaymentIntent.objects.get(pk=intent_id)
        except PaymentIntent.DoesNotExist as e:
            raise PaymentNotFoundError(
                "Payment intent not found",
                details={"payment_intent_id": str(intent_id)},
            ) from e

        if intent.status != PaymentIntentStatus.AWAITING_PROVIDER_RESULT:
            return intent.status

        adapter = self.adapters.get(intent.provider)
        PaymentIntent.objects.filter(pk=intent.pk).update(attempt_count=F("attempt_count") + 1)
        status = adapter.verify(intent.provider_reference, payload or {})
        if not status.is_final:
            logger.info(
                "Provider result still pending on confirm",
                extra={"intent_id": str(intent.id), "provider": intent.provider},
            )
            return intent.status
        return self.settlement.apply(
            intent.id,
            status.outcome,
            status.metadata,
            actor=f"confirm:{intent.provider}",
        )

    # =========================================================================
    # Validation
    # =========================================================================

    @staticmethod
    def _validate_request(purpose: str, amount_minor: Any, currency: str, provider: str) -> None:
        if isinstance(amount_minor, bool) or not isinstance(amount_minor, int) or amount_minor <= 0:
            raise PaymentValidationError(
                "Amount must be a positive integer in minor units",
                details={"amount_minor": str(amount_minor)},
            )
        if currency not in settings.PAYMENT_SUPPORTED_CURRENCIES:
            raise PaymentValidationError(
                f"Unsupported currency: {currency}",
                details={"currency": currency},
            )
        if provider not in PaymentProvider.values:
            raise PaymentValidationError(
                f"Unknown payment provider: {provider}",
                details={"provider": provider},
            )
        if purpose not in PaymentPurpose.values:
            raise PaymentValidationError(
                f"Unknown payment purpose: {purpose}",
                details={"purpose": purpose},
            )

    @staticmethod
    def _reload_owner(purpose: str, owner_id) -> Booking | Subscription:
        model = owner_model_for(purpose)
        try:
            return model.objects.get(pk=owner_id)
        except model.DoesNotExist as e:
            raise PaymentNotFoundError(
                f"{model.__name__} not found",
                details={"owner_id": str(owner_id)},
            ) from e

    @staticmethod
    def _validate_owner(
        owner: Booking | Subscription,
        purpose: str,
        amount_minor: int,
        currency: str,
        plan_tier: str | None,
    ) -> str:
        """Check the owner is payable for this amount. Returns the plan tier ("" for bookings)."""
        if purpose == PaymentPurpose.BOOKING_PAYMENT:
            if owner.is_paid:
                raise PaymentValidationError(
                    "Booking is already paid",
                    details={"booking_id": str(owner.pk)},
                )
            if owner.status != BookingStatus.PENDING_PAYMENT:
                raise PaymentValidationError(
                    f"Booking in status '{owner.status}' cannot be paid",
                    details={"booking_id": str(owner.pk), "status": owner.status},
                )
            expected_amount, expected_currency = owner.price_minor, owner.currency
            tier = ""
        else:
            if plan_tier not in PLAN_CATALOG:
                raise PaymentValidationError(
                    f"Unknown plan tier: {plan_tier}",
                    details={"plan_tier": str(plan_tier)},
                )
            plan = get_plan(plan_tier)
            if not plan.is_purchasable:
                raise PaymentValidationError(
                    f"Plan '{plan_tier}' cannot be purchased",
                    details={"plan_tier": plan_tier},
                )
            expected_amount, expected_currency = plan.price_minor, plan.currency
            tier = plan.tier

        if amount_minor != expected_amount or currency != expected_currency:
            raise PaymentValidationError(
                "Amount does not match the price",
                details={
                    "amount_minor": amount_minor,
                    "expected_amount_minor": expected_amount,
                    "currency": currency,
                    "expected_currency": expected_currency,
                },
            )
        return tier

    # =========================================================================
    # Intent Creation
    # =========================================================================

    def _create_intent(
        self,
        owner: Booking | Subscription,
        purpose: str,
        amount_minor: int,
        currency: str,
        provider: str,
        return_context: dict[str, Any],
        plan_tier: str,
        initiated_by: AbstractBaseUser | None,
    ) -> PaymentIntent:
        owner_key = PaymentIntent.build_owner_key(purpose, owner.pk)
        actor = f"user:{initiated_by.pk}" if initiated_by is not None else "system"
        owner_field = "booking" if purpose == PaymentPurpose.BOOKING_PAYMENT else "subscription"

        try:
            with transaction.atomic():
                intent = PaymentIntent.objects.create(
                    provider=provider,
                    purpose=purpose,
                    plan_tier=plan_tier,
                    owner_key=owner_key,
                    amount_minor=amount_minor,
                    currency=currency,
                    return_context=return_context,
                    initiated_by=initiated_by,
                    last_transition_at=timezone.now(),
                    **{owner_field: owner},
                )
                AuditService.record(
                    AuditAction.INTENT_CREATED,
                    actor=actor,
                    payment_intent=intent,
                    to_state=intent.status,
                    details={"owner_key": owner_key, "amount_minor": amount_minor},
                )
                self._claim_owner(purpose, owner, intent, actor)
        except IntegrityError as e:
            raise PaymentConflictError(
                "A payment for this item is already in progress",
                details={"owner_key": owner_key},
            ) from e

        logger.info(
            "Payment intent created",
            extra={
                "intent_id": str(intent.id),
                "provider": provider,
                "owner_key": owner_key,
                "amount_minor": amount_minor,
            },
        )
        return intent

    @staticmethod
    def _claim_owner(purpose: str, owner, intent: PaymentIntent, actor: str) -> None:
        if claim_marker(purpose, owner.pk, intent.id):
            return

        model = owner_model_for(purpose)
        current_marker = (
            model.objects.filter(pk=owner.pk)
            .values_list("payment_intent_in_progress", flat=True)
            .first()
        )
        holder_status = (
            PaymentIntent.objects.filter(pk=current_marker).values_list("status", flat=True).first()
            if current_marker
            else None
        )
        holder_is_live = holder_status in PaymentIntentStatus.non_terminal()

        if current_marker and not holder_is_live and claim_marker(
            purpose, owner.pk, intent.id, expected=current_marker
        ):
            AuditService.record(
                AuditAction.OWNER_MARKER_RECLAIMED,
                actor=actor,
                payment_intent=intent,
                details={"stale_intent_id": str(current_marker), "stale_status": holder_status},
            )
            return

        raise PaymentConflictError(
            "A payment for this item is already in progress",
            details={"owner_key": intent.owner_key},
        )

    @staticmethod
    def _describe(owner, purpose: str, plan_tier: str) -> str:
        if purpose == PaymentPurpose.BOOKING_PAYMENT:
            return f"Booking: {owner.title}"[:127]
        return f"Subscription: {get_plan(plan_tier).name}"
