"""
Tests for optimistic locking.

Tests compare_and_swap and the version counters on payment models: two
writers that read the same row can never both commit a transition.
"""

import uuid

import pytest

from payments.exceptions import StaleRecordError
from payments.locks import compare_and_swap, compare_and_swap_or_raise
from payments.models import PaymentIntent
from payments.state_machines import PaymentIntentStatus
from payments.tests.factories import BookingFactory, PaymentIntentFactory


class TestCompareAndSwap:
    """Tests for compare_and_swap function."""

    def test_updates_when_expected_values_match(self, db):
        intent = PaymentIntentFactory(awaiting=True)

        rows = compare_and_swap(
            PaymentIntent,
            intent.pk,
            expected={"status": PaymentIntentStatus.AWAITING_PROVIDER_RESULT, "version": 1},
            changes={"status": PaymentIntentStatus.SETTLED},
        )

        stored = PaymentIntent.objects.get(pk=intent.pk)
        assert rows == 1
        assert stored.status == PaymentIntentStatus.SETTLED
        assert stored.version == 2

    def test_no_update_when_version_is_stale(self, db):
        intent = PaymentIntentFactory(awaiting=True)

        rows = compare_and_swap(
            PaymentIntent,
            intent.pk,
            expected={"version": 7},
            changes={"status": PaymentIntentStatus.SETTLED},
        )

        assert rows == 0
        assert PaymentIntent.objects.get(pk=intent.pk).status == PaymentIntentStatus.AWAITING_PROVIDER_RESULT

    def test_bump_version_can_be_disabled(self, db):
        booking = BookingFactory()

        compare_and_swap(
            type(booking),
            booking.pk,
            expected={"payment_intent_in_progress__isnull": True},
            changes={"title": "Renamed"},
            bump_version=False,
        )

        booking.refresh_from_db()
        assert booking.title == "Renamed"
        assert booking.version == 1

    def test_or_raise_raises_stale_record(self, db):
        missing = uuid.uuid4()

        with pytest.raises(StaleRecordError) as exc_info:
            compare_and_swap_or_raise(
                PaymentIntent,
                missing,
                expected={"version": 1},
                changes={"failure_reason": "x"},
            )

        assert exc_info.value.details["pk"] == str(missing)
        assert exc_info.value.http_status == 409


class TestConcurrentTransitions:
    """Two in-memory copies of one intent racing to a terminal state."""

    def test_second_writer_loses(self, db):
        intent = PaymentIntentFactory(awaiting=True)
        webhook_copy = PaymentIntent.objects.get(pk=intent.pk)
        reconciliation_copy = PaymentIntent.objects.get(pk=intent.pk)

        webhook_copy.settle(metadata={"source": "webhook"})
        webhook_copy.persist_transition(PaymentIntentStatus.AWAITING_PROVIDER_RESULT)

        reconciliation_copy.expire(reason="timeout")
        with pytest.raises(StaleRecordError):
            reconciliation_copy.persist_transition(PaymentIntentStatus.AWAITING_PROVIDER_RESULT)

        stored = PaymentIntent.objects.get(pk=intent.pk)
        assert stored.status == PaymentIntentStatus.SETTLED
        assert stored.provider_metadata == {"source": "webhook"}
        assert stored.version == 2

    def test_persist_bumps_in_memory_version(self, db):
        intent = PaymentIntentFactory()

        intent.await_provider_result("chk_1")
        intent.persist_transition(PaymentIntentStatus.CREATED)

        assert intent.version == 2
        intent.settle()
        intent.persist_transition(PaymentIntentStatus.AWAITING_PROVIDER_RESULT)
        assert PaymentIntent.objects.get(pk=intent.pk).version == 3


class TestVersionedOwners:
    """Owners carry the VersionedMixin counter."""

    def test_version_increments_on_save(self, db):
        booking = BookingFactory()
        assert booking.version == 1

        booking.title = "Updated"
        booking.save()

        assert booking.version == 2

    def test_update_fields_includes_version(self, db):
        booking = BookingFactory()

        booking.title = "Only title"
        booking.save(update_fields=["title"])

        booking.refresh_from_db()
        assert booking.version == 2
