"""
Tests for RefundService.

Time windows are driven with freezegun: the booking is made at 08:00 for
a service at 18:00 on the same day.
"""

from datetime import datetime, timedelta, timezone as dt_timezone

import pytest
from freezegun import freeze_time

from settlement.exceptions import GatewayRejectedError, GatewayUnavailableError
from settlement.gateway import RefundResult
from settlement.models import EarningsEntry, EarningsLedger, PaymentOrder, RefundRecord
from settlement.services import RefundService
from settlement.state_machines import (
    BookingStatus,
    EarningsEntryType,
    PaymentOrderState,
    RefundState,
    RefundType,
)
from settlement.tests.factories import CapturedOrderFactory, PaymentOrderFactory

BOOKED_AT = datetime(2026, 3, 1, 8, 0, tzinfo=dt_timezone.utc)
SERVICE_AT = BOOKED_AT + timedelta(hours=10)


@pytest.fixture
def booked_order(db, customer, technician):
    with freeze_time(BOOKED_AT):
        return CapturedOrderFactory(
            customer=customer,
            technician=technician,
            booking__scheduled_for=SERVICE_AT,
        )


def _refund_at(order, user, hours, minutes=0):
    with freeze_time(BOOKED_AT + timedelta(hours=hours, minutes=minutes)):
        return RefundService.process_refund(order, user, reason="Plans changed")


# =============================================================================
# Quote
# =============================================================================


class TestQuote:
    def test_full_window(self, booked_order, customer):
        result = RefundService.quote(booked_order, customer, now=BOOKED_AT + timedelta(hours=3))

        assert result.data["allowed"] is True
        assert result.data["refund_type"] == RefundType.FULL
        assert result.data["customer_refund_paise"] == 50000

    def test_partial_window(self, booked_order, technician):
        result = RefundService.quote(booked_order, technician, now=BOOKED_AT + timedelta(hours=5))

        assert result.data["refund_type"] == RefundType.PARTIAL
        assert result.data["customer_refund_paise"] == 40000
        assert result.data["technician_compensation_paise"] == 5000
        assert result.data["platform_fee_paise"] == 5000

    def test_closed_window_is_reported_not_failed(self, booked_order, customer):
        result = RefundService.quote(
            booked_order, customer, now=BOOKED_AT + timedelta(hours=9, minutes=40)
        )

        assert result.success is True
        assert result.data == {
            "order_id": str(booked_order.id),
            "allowed": False,
            "reason": "too close to service start",
        }

    def test_stranger_is_denied(self, booked_order, stranger):
        result = RefundService.quote(booked_order, stranger)

        assert result.error_code == "PERMISSION_DENIED"

    def test_pending_order_has_no_quote(self, pending_order, customer):
        result = RefundService.quote(pending_order, customer)

        assert result.error_code == "INVALID_STATE_TRANSITION"


# =============================================================================
# Process
# =============================================================================


class TestProcessRefund:
    def test_full_refund(self, gateway, booked_order, customer):
        result = _refund_at(booked_order, customer, hours=3)

        assert result.success is True
        assert result.data["status"] == RefundState.COMPLETED
        assert result.data["refund_type"] == RefundType.FULL
        order = PaymentOrder.objects.get(pk=booked_order.pk)
        assert order.state == PaymentOrderState.REFUNDED
        assert order.booking.status == BookingStatus.CANCELLED
        record = RefundRecord.objects.get(payment_order=order)
        assert record.gateway_refund_id == "re_test_123"
        assert record.customer_reason == "Plans changed"
        assert not EarningsEntry.objects.exists()

    def test_partial_refund_compensates_technician(
        self, gateway, booked_order, customer, technician
    ):
        result = _refund_at(booked_order, customer, hours=5)

        assert result.data["customer_refund_paise"] == 40000
        assert gateway.refund.call_args.kwargs["amount"] == 40000
        ledger = EarningsLedger.objects.get(technician=technician)
        assert ledger.pending_payout_paise == 5000
        entry = EarningsEntry.objects.get()
        assert entry.entry_type == EarningsEntryType.CANCELLATION_COMPENSATION
        assert entry.idempotency_key == f"refund-compensation:{result.data['refund_id']}"

    def test_closed_window_creates_nothing(self, gateway, booked_order, customer):
        result = _refund_at(booked_order, customer, hours=9, minutes=40)

        assert result.error_code == "REFUND_WINDOW_CLOSED"
        assert result.details == {"allowed": False, "reason": "too close to service start"}
        gateway.refund.assert_not_called()
        assert not RefundRecord.objects.exists()
        assert PaymentOrder.objects.get(pk=booked_order.pk).state == PaymentOrderState.CAPTURED

    def test_repeat_is_replay(self, gateway, booked_order, customer):
        first = _refund_at(booked_order, customer, hours=5)
        order = PaymentOrder.objects.get(pk=booked_order.pk)

        second = _refund_at(order, customer, hours=5)

        assert second.data["replayed"] is True
        assert second.data["refund_id"] == first.data["refund_id"]
        assert gateway.refund.call_count == 1
        assert EarningsEntry.objects.count() == 1

    def test_only_customer_may_cancel(self, gateway, booked_order, technician):
        result = _refund_at(booked_order, technician, hours=3)

        assert result.error_code == "PERMISSION_DENIED"

    def test_released_order_cannot_be_refunded(self, gateway, db):
        order = CapturedOrderFactory()
        order.release()
        order.save()

        result = RefundService.process_refund(order, order.customer)

        assert result.error_code == "INVALID_STATE_TRANSITION"

    def test_gateway_rejection_fails_record(self, gateway, booked_order, customer):
        gateway.refund.side_effect = GatewayRejectedError("charge_already_refunded")

        result = _refund_at(booked_order, customer, hours=3)

        assert result.error_code == "GATEWAY_REJECTED"
        record = RefundRecord.objects.get(payment_order=booked_order)
        assert record.state == RefundState.FAILED
        assert PaymentOrder.objects.get(pk=booked_order.pk).state == PaymentOrderState.CAPTURED

    def test_failed_record_is_retried_with_original_split(self, gateway, booked_order, customer):
        gateway.refund.side_effect = GatewayRejectedError("temporary block")
        _refund_at(booked_order, customer, hours=5)
        gateway.refund.side_effect = None

        # Outside the windows now, but the frozen split is reused
        result = _refund_at(booked_order, customer, hours=9, minutes=50)

        assert result.data["status"] == RefundState.COMPLETED
        assert result.data["refund_type"] == RefundType.PARTIAL

    def test_unavailable_gateway_leaves_record_pending(self, gateway, booked_order, customer):
        gateway.refund.side_effect = GatewayUnavailableError("timeout")

        result = _refund_at(booked_order, customer, hours=3)

        assert result.success is True
        assert result.data["status"] == RefundState.PENDING
        assert result.data["retry_pending"] is True
        assert RefundRecord.objects.get(payment_order=booked_order).state == RefundState.PENDING

    def test_gateway_pending_refund_waits_for_webhook(self, gateway, booked_order, customer):
        gateway.refund.return_value = RefundResult(id="re_slow", status="pending", amount=50000)

        result = _refund_at(booked_order, customer, hours=3)

        assert result.data["status"] == RefundState.PENDING
        assert result.data["awaiting_gateway"] is True
        record = RefundRecord.objects.get(payment_order=booked_order)
        assert record.state == RefundState.PENDING
        assert record.gateway_refund_id == "re_slow"

    def test_lock_contention(self, gateway, booked_order, customer, mock_redis_lock):
        mock_redis_lock.set.return_value = False

        result = _refund_at(booked_order, customer, hours=3)

        assert result.error_code == "LOCK_ACQUISITION_FAILED"
        gateway.refund.assert_not_called()


# =============================================================================
# Gateway notifications & retries
# =============================================================================


class TestCompleteFromGateway:
    def test_finalizes_pending_refund(self, gateway, booked_order, customer):
        gateway.refund.return_value = RefundResult(id="re_slow", status="pending", amount=50000)
        _refund_at(booked_order, customer, hours=3)

        result = RefundService.complete_from_gateway(booked_order.gateway_order_id, "re_slow")

        assert result.data["status"] == RefundState.COMPLETED
        assert PaymentOrder.objects.get(pk=booked_order.pk).state == PaymentOrderState.REFUNDED

    def test_repeat_is_replay(self, gateway, booked_order, customer):
        _refund_at(booked_order, customer, hours=3)

        result = RefundService.complete_from_gateway(booked_order.gateway_order_id, "re_test_123")

        assert result.data["replayed"] is True

    def test_unknown_order(self, db):
        result = RefundService.complete_from_gateway("pi_unknown")

        assert result.error_code == "NOT_FOUND"

    def test_failed_record_is_not_completed(self, gateway, booked_order, customer):
        gateway.refund.side_effect = GatewayRejectedError("refused")
        _refund_at(booked_order, customer, hours=3)

        result = RefundService.complete_from_gateway(booked_order.gateway_order_id)

        assert result.error_code == "INVALID_STATE_TRANSITION"


class TestRetryPending:
    def test_resubmits_stale_pending_refunds(self, gateway, booked_order, customer):
        gateway.refund.side_effect = GatewayUnavailableError("timeout")
        _refund_at(booked_order, customer, hours=3)
        gateway.refund.side_effect = None

        with freeze_time(BOOKED_AT + timedelta(hours=3, minutes=5)):
            stats = RefundService.retry_pending()

        assert stats == {"submitted": 1, "completed": 1}
        assert PaymentOrder.objects.get(pk=booked_order.pk).state == PaymentOrderState.REFUNDED

    def test_skips_recent_pending_refunds(self, gateway, booked_order, customer):
        gateway.refund.side_effect = GatewayUnavailableError("timeout")
        _refund_at(booked_order, customer, hours=3)

        with freeze_time(BOOKED_AT + timedelta(hours=3, minutes=1)):
            stats = RefundService.retry_pending()

        assert stats == {"submitted": 0, "completed": 0}

    def test_ignores_orders_without_refunds(self, gateway, db):
        PaymentOrderFactory()

        assert RefundService.retry_pending() == {"submitted": 0, "completed": 0}
