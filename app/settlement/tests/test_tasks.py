"""
Tests for settlement Celery tasks.

Tasks are called directly; nothing is sent to a broker.
"""

import pytest

from core.services import ServiceResult

from settlement.models import PayoutRequest, WebhookEvent
from settlement.services import PayoutService
from settlement.state_machines import PayoutMethod, PayoutState, WebhookEventStatus
from settlement.tasks import (
    expire_completion_codes,
    expire_stale_orders,
    process_webhook_event,
    retry_failed_webhooks,
    retry_pending_payouts,
    retry_pending_refunds,
)
from settlement.tests.factories import WebhookEventFactory


@pytest.fixture
def mock_dispatch(mocker):
    return mocker.patch(
        "settlement.webhooks.handlers.dispatch_webhook",
        return_value=ServiceResult.success(None),
    )


# =============================================================================
# process_webhook_event
# =============================================================================


@pytest.mark.django_db
class TestProcessWebhookEvent:
    def test_processes_pending_event(self, mock_dispatch):
        event = WebhookEventFactory()

        result = process_webhook_event(str(event.id))

        assert result["status"] == "processed"
        event = WebhookEvent.objects.get(id=event.id)
        assert event.status == WebhookEventStatus.PROCESSED
        assert event.processed_at is not None
        assert event.retry_count == 1
        mock_dispatch.assert_called_once()

    def test_already_processed_is_skipped(self, mock_dispatch):
        event = WebhookEventFactory(status=WebhookEventStatus.PROCESSED)

        result = process_webhook_event(str(event.id))

        assert result["status"] == "already_processed"
        mock_dispatch.assert_not_called()

    def test_unknown_event_id(self, mock_dispatch):
        result = process_webhook_event("00000000-0000-0000-0000-000000000000")

        assert result["status"] == "not_found"
        mock_dispatch.assert_not_called()

    def test_handler_failure_marks_failed(self, mock_dispatch):
        mock_dispatch.return_value = ServiceResult.failure(
            "No payout for gateway id po_test_123", error_code="NOT_FOUND"
        )
        event = WebhookEventFactory()

        result = process_webhook_event(str(event.id))

        assert result["status"] == "handler_failed"
        event = WebhookEvent.objects.get(id=event.id)
        assert event.status == WebhookEventStatus.FAILED
        assert "po_test_123" in event.error_message

    def test_exception_marks_failed_and_raises(self, mock_dispatch):
        mock_dispatch.side_effect = RuntimeError("database went away")
        event = WebhookEventFactory()

        with pytest.raises(RuntimeError):
            process_webhook_event(str(event.id))

        event = WebhookEvent.objects.get(id=event.id)
        assert event.status == WebhookEventStatus.FAILED
        assert event.error_message == "RuntimeError: database went away"

    def test_failed_event_succeeds_on_retry(self, mock_dispatch):
        event = WebhookEventFactory(status=WebhookEventStatus.FAILED, retry_count=1)

        result = process_webhook_event(str(event.id))

        assert result["status"] == "processed"
        event = WebhookEvent.objects.get(id=event.id)
        assert event.retry_count == 2
        assert event.error_message is None

    def test_payout_paid_end_to_end(self, gateway, funded_technician):
        PayoutService.request_payout(
            funded_technician,
            60000,
            PayoutMethod.UPI,
            {"token": "ba_upi_1", "upi_id": "tech@okbank"},
        )
        event = WebhookEventFactory(event_type="payout.paid")

        result = process_webhook_event(str(event.id))

        assert result["status"] == "processed"
        assert PayoutRequest.objects.get(gateway_payout_id="po_test_123").state == (
            PayoutState.COMPLETED
        )


@pytest.mark.django_db
class TestRetryFailedWebhooks:
    def test_requeues_failed_events_with_retries_left(self, mocker, settings):
        settings.WEBHOOK_MAX_RETRIES = 5
        mock_delay = mocker.patch("settlement.tasks.process_webhook_event.delay")
        retryable = WebhookEventFactory(status=WebhookEventStatus.FAILED, retry_count=2)
        WebhookEventFactory(status=WebhookEventStatus.FAILED, retry_count=5)
        WebhookEventFactory(status=WebhookEventStatus.PROCESSED)

        result = retry_failed_webhooks()

        assert result == {"queued_count": 1}
        mock_delay.assert_called_once_with(str(retryable.id))

    def test_nothing_to_retry(self, mocker):
        mock_delay = mocker.patch("settlement.tasks.process_webhook_event.delay")

        assert retry_failed_webhooks() == {"queued_count": 0}
        mock_delay.assert_not_called()


# =============================================================================
# Sweeps
# =============================================================================


class TestSweeps:
    @pytest.mark.parametrize(
        "task, target, stats",
        [
            (
                expire_stale_orders,
                "settlement.services.OrderService.expire_stale",
                {"expired": 2, "released": 1, "skipped": 1},
            ),
            (
                retry_pending_payouts,
                "settlement.services.PayoutService.submit_pending",
                {"submitted": 1, "rejected": 0},
            ),
            (
                retry_pending_refunds,
                "settlement.services.RefundService.retry_pending",
                {"submitted": 3, "completed": 2},
            ),
        ],
    )
    def test_sweep_reports_stats(self, mocker, task, target, stats):
        mocker.patch(target, return_value=stats)

        result = task()

        assert result == {"status": "completed", **stats}

    def test_expire_completion_codes(self, mocker):
        mocker.patch(
            "settlement.services.CompletionService.expire_overdue",
            return_value=4,
        )

        assert expire_completion_codes() == {"status": "completed", "expired": 4}

    def test_sweep_skips_when_lock_held(self, mocker, mock_redis_lock):
        mock_redis_lock.set.return_value = False
        sweep = mocker.patch("settlement.services.OrderService.expire_stale")

        result = expire_stale_orders()

        assert result == {"status": "skipped"}
        sweep.assert_not_called()

    def test_sweep_lock_is_named_per_sweep(self, mocker, mock_redis_lock):
        mocker.patch(
            "settlement.services.OrderService.expire_stale",
            return_value={"expired": 0, "released": 0, "skipped": 0},
        )

        expire_stale_orders()

        lock_key = mock_redis_lock.set.call_args.args[0]
        assert lock_key == "lock:sweep:expire_stale_orders"
