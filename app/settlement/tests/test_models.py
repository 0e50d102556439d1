"""
Tests for settlement models.

Tests defaults, database constraints and django-fsm transitions.
"""

import uuid
from datetime import timedelta

import pytest
from django.db import IntegrityError
from django.utils import timezone
from django_fsm import TransitionNotAllowed

from settlement.models import (
    CompletionRecord,
    EarningsEntry,
    PaymentOrder,
    RefundRecord,
)
from settlement.state_machines import (
    BookingStatus,
    CompletionState,
    EarningsEntryType,
    PaymentOrderState,
    PayoutState,
    RefundState,
    RefundType,
    WebhookEventStatus,
)
from settlement.tests.factories import (
    BookingFactory,
    CapturedOrderFactory,
    CompletionRecordFactory,
    EarningsLedgerFactory,
    PaymentOrderFactory,
    PayoutRequestFactory,
    RefundRecordFactory,
    WebhookEventFactory,
)


# =============================================================================
# PaymentOrder Tests
# =============================================================================


class TestPaymentOrderModel:
    """Tests for PaymentOrder model."""

    def test_default_values(self, db):
        order = PaymentOrderFactory()

        assert isinstance(order.pk, uuid.UUID)
        assert order.state == PaymentOrderState.PENDING
        assert order.booking is None
        assert order.has_placeholder_booking is True
        assert order.version == 1

    def test_placeholder_references_are_unique(self, db):
        first = PaymentOrderFactory()
        second = PaymentOrderFactory()

        assert first.booking_reference != second.booking_reference

    def test_earnings_split_constraint(self, db):
        with pytest.raises(IntegrityError):
            PaymentOrderFactory(
                amount_paise=50000,
                commission_paise=5000,
                technician_earnings_paise=46000,
            )

    def test_amount_must_be_positive(self, db):
        with pytest.raises(IntegrityError):
            PaymentOrderFactory(amount_paise=0, commission_paise=0, technician_earnings_paise=0)

    def test_gateway_order_id_unique(self, db):
        PaymentOrderFactory(gateway_order_id="pi_dup")

        with pytest.raises(IntegrityError):
            PaymentOrderFactory(gateway_order_id="pi_dup")

    def test_capture_links_booking(self, db):
        order = PaymentOrderFactory()
        booking = BookingFactory(customer=order.customer, technician=order.technician)

        order.capture(payment_id="ch_123", booking=booking)
        order.save()

        order = PaymentOrder.objects.get(pk=order.pk)
        assert order.state == PaymentOrderState.CAPTURED
        assert order.booking_id == booking.id
        assert order.booking_reference == str(booking.id)
        assert order.has_placeholder_booking is False
        assert order.captured_at is not None

    def test_fail_records_reason(self, db):
        order = PaymentOrderFactory()

        order.fail(reason="card_declined")
        order.save()

        order = PaymentOrder.objects.get(pk=order.pk)
        assert order.state == PaymentOrderState.FAILED
        assert order.failure_reason == "card_declined"

    def test_release_and_refund_only_from_captured(self, db):
        order = PaymentOrderFactory()

        with pytest.raises(TransitionNotAllowed):
            order.release()
        with pytest.raises(TransitionNotAllowed):
            order.refund()

    def test_released_order_cannot_be_refunded(self, db):
        order = CapturedOrderFactory()
        order.release()

        with pytest.raises(TransitionNotAllowed):
            order.refund()

    def test_version_increments_on_save(self, db):
        order = PaymentOrderFactory()

        order.metadata = {"description": "updated"}
        order.save()

        assert order.version == 2

    def test_str_representation(self, db):
        order = PaymentOrderFactory(amount_paise=50000)

        assert "500.00 INR" in str(order)


# =============================================================================
# Booking Tests
# =============================================================================


class TestBookingModel:
    def test_defaults_to_confirmed(self, db):
        booking = BookingFactory()

        assert booking.status == BookingStatus.CONFIRMED
        assert booking.is_confirmed

    def test_mark_completed(self, db):
        booking = BookingFactory()

        booking.mark_completed()

        assert booking.status == BookingStatus.COMPLETED
        assert booking.completed_at is not None

    def test_mark_cancelled(self, db):
        booking = BookingFactory()

        booking.mark_cancelled()

        assert booking.status == BookingStatus.CANCELLED
        assert booking.cancelled_at is not None


# =============================================================================
# CompletionRecord Tests
# =============================================================================


class TestCompletionRecordModel:
    def test_one_open_record_per_booking(self, db):
        booking = BookingFactory()
        CompletionRecordFactory(booking=booking)

        with pytest.raises(IntegrityError):
            CompletionRecordFactory(booking=booking)

    def test_expired_record_does_not_block_new_one(self, db):
        booking = BookingFactory()
        CompletionRecordFactory(booking=booking, state=CompletionState.EXPIRED)

        record = CompletionRecordFactory(booking=booking)

        assert record.state == CompletionState.PENDING

    def test_one_released_record_per_booking(self, db):
        booking = BookingFactory()
        CompletionRecordFactory(booking=booking, state=CompletionState.RELEASED)

        with pytest.raises(IntegrityError):
            CompletionRecordFactory(booking=booking, state=CompletionState.RELEASED)

    def test_full_handshake(self, db):
        record = CompletionRecordFactory()
        expires_at = timezone.now() + timedelta(minutes=5)

        record.issue(code_digest="a" * 64, expires_at=expires_at, attempts=3)
        record.verify()
        record.release()
        record.save()

        record = CompletionRecord.objects.get(pk=record.pk)
        assert record.state == CompletionState.RELEASED
        assert record.attempts_remaining == 3
        assert record.released_at is not None

    def test_expire_zeroes_attempts(self, db):
        record = CompletionRecordFactory()
        record.issue(code_digest="a" * 64, expires_at=timezone.now(), attempts=3)

        record.expire()

        assert record.state == CompletionState.EXPIRED
        assert record.attempts_remaining == 0

    def test_expired_record_cannot_be_verified(self, db):
        record = CompletionRecordFactory(state=CompletionState.EXPIRED)

        with pytest.raises(TransitionNotAllowed):
            record.verify()

    def test_is_past_deadline(self, db):
        record = CompletionRecordFactory()
        deadline = record.expires_at

        assert record.is_past_deadline(now=deadline) is False
        assert record.is_past_deadline(now=deadline + timedelta(seconds=1)) is True


# =============================================================================
# Earnings Tests
# =============================================================================


class TestEarningsModels:
    def test_ledger_balances_non_negative(self, db):
        with pytest.raises(IntegrityError):
            EarningsLedgerFactory(pending_payout_paise=-1)

    def test_entries_are_immutable(self, db):
        ledger = EarningsLedgerFactory()
        entry = EarningsEntry.objects.create(
            ledger=ledger,
            entry_type=EarningsEntryType.RELEASE_CREDIT,
            amount_paise=45000,
            balance_after_paise=45000,
            idempotency_key="release:immutable",
        )

        entry.description = "edited"
        with pytest.raises(ValueError, match="immutable"):
            entry.save()

    def test_entry_idempotency_key_unique(self, db):
        ledger = EarningsLedgerFactory()
        EarningsEntry.objects.create(
            ledger=ledger,
            entry_type=EarningsEntryType.RELEASE_CREDIT,
            amount_paise=100,
            balance_after_paise=100,
            idempotency_key="release:dup",
        )

        with pytest.raises(IntegrityError):
            EarningsEntry.objects.create(
                ledger=ledger,
                entry_type=EarningsEntryType.RELEASE_CREDIT,
                amount_paise=100,
                balance_after_paise=200,
                idempotency_key="release:dup",
            )

    def test_entry_amount_non_zero(self, db):
        ledger = EarningsLedgerFactory()

        with pytest.raises(IntegrityError):
            EarningsEntry.objects.create(
                ledger=ledger,
                entry_type=EarningsEntryType.RELEASE_CREDIT,
                amount_paise=0,
                balance_after_paise=0,
                idempotency_key="release:zero",
            )


# =============================================================================
# PayoutRequest Tests
# =============================================================================


class TestPayoutRequestModel:
    def test_accept_then_complete(self, db):
        payout = PayoutRequestFactory()

        payout.accept(gateway_payout_id="po_1")
        payout.complete()

        assert payout.state == PayoutState.COMPLETED
        assert payout.gateway_payout_id == "po_1"
        assert payout.completed_at is not None

    def test_reject_only_from_pending(self, db):
        payout = PayoutRequestFactory(state=PayoutState.PROCESSING)

        with pytest.raises(TransitionNotAllowed):
            payout.reject("declined")

    def test_bounce_only_from_processing(self, db):
        payout = PayoutRequestFactory()

        with pytest.raises(TransitionNotAllowed):
            payout.bounce("account closed")

    def test_amount_must_be_positive(self, db):
        with pytest.raises(IntegrityError):
            PayoutRequestFactory(amount_paise=0)


# =============================================================================
# RefundRecord Tests
# =============================================================================


class TestRefundRecordModel:
    def test_split_must_sum_to_amount(self, db):
        with pytest.raises(IntegrityError):
            RefundRecordFactory(
                refund_type=RefundType.PARTIAL,
                customer_refund_paise=40000,
                technician_compensation_paise=5000,
                platform_fee_paise=4000,
            )

    def test_one_refund_per_order(self, db):
        record = RefundRecordFactory()

        with pytest.raises(IntegrityError):
            RefundRecord.objects.create(
                payment_order=record.payment_order,
                amount_paise=50000,
                customer_refund_paise=50000,
                refund_type=RefundType.FULL,
            )

    def test_fail_then_retry(self, db):
        record = RefundRecordFactory()

        record.fail("gateway down")
        record.retry()

        assert record.state == RefundState.PENDING
        assert record.failed_at is None

    def test_complete_sets_gateway_id(self, db):
        record = RefundRecordFactory()

        record.complete(gateway_refund_id="re_1")

        assert record.state == RefundState.COMPLETED
        assert record.gateway_refund_id == "re_1"


# =============================================================================
# WebhookEvent Tests
# =============================================================================


class TestWebhookEventModel:
    def test_gateway_event_id_unique(self, db):
        WebhookEventFactory(gateway_event_id="evt_dup")

        with pytest.raises(IntegrityError):
            WebhookEventFactory(gateway_event_id="evt_dup")

    def test_get_object_id(self, db):
        event = WebhookEventFactory()

        assert event.get_object_id() == "po_test_123"

    def test_get_object_tolerates_malformed_payload(self, db):
        event = WebhookEventFactory(payload={"data": "oops"})

        assert event.get_object() == {}
        assert event.get_object_id() is None

    def test_mark_processing_counts_attempts(self, db):
        event = WebhookEventFactory()

        event.mark_processing()

        assert event.status == WebhookEventStatus.PROCESSING
        assert event.retry_count == 1

    def test_mark_processed_clears_error(self, db):
        event = WebhookEventFactory(error_message="boom")

        event.mark_processed()

        assert event.is_processed
        assert event.error_message is None
        assert event.processed_at is not None

    def test_mark_failed(self, db):
        event = WebhookEventFactory()

        event.mark_failed("handler crashed")

        assert event.is_failed
        assert event.error_message == "handler crashed"
