"""
Celery tasks for settlement.

This module provides async tasks for:
- Processing Stripe webhook events
- Re-queueing failed webhook events
- Expiring stale authorizations and completion codes
- Re-submitting payouts and refunds the gateway never confirmed

Every periodic sweep is single-flight: it takes a non-blocking
DistributedLock and skips the run if another worker holds it.

Usage:
    from settlement.tasks import process_webhook_event

    # Queue a webhook for async processing
    process_webhook_event.delay(str(webhook_event.id))
"""

from __future__ import annotations

import logging
from uuid import UUID

from celery import shared_task
from django.conf import settings
from django.db import transaction

from settlement.exceptions import LockAcquisitionError
from settlement.locks import DistributedLock
from settlement.models import WebhookEvent
from settlement.state_machines import WebhookEventStatus

logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

# Sweep lock TTL (seconds); longer than any sweep is expected to run
SWEEP_LOCK_TTL = 300

WEBHOOK_RETRY_BATCH_SIZE = 100


# =============================================================================
# Webhook Processing Tasks
# =============================================================================


@shared_task(
    bind=True,
    autoretry_for=(Exception,),
    retry_backoff=True,
    retry_backoff_max=300,
    retry_kwargs={"max_retries": settings.WEBHOOK_MAX_RETRIES},
    acks_late=True,
)
def process_webhook_event(self, webhook_event_id: str) -> dict:
    """
    Process a Stripe webhook event asynchronously.

    1. Loads the WebhookEvent by ID
    2. Skips it if already processed
    3. Marks it processing and dispatches to the handler
    4. Marks it processed or failed

    Raises:
        Exception: Re-raised to trigger Celery retry
    """
    from settlement.webhooks.handlers import dispatch_webhook

    if isinstance(webhook_event_id, str):
        webhook_event_id = UUID(webhook_event_id)

    try:
        webhook_event = WebhookEvent.objects.get(id=webhook_event_id)
    except WebhookEvent.DoesNotExist:
        logger.error(
            "WebhookEvent not found",
            extra={"webhook_event_id": str(webhook_event_id)},
        )
        return {"status": "not_found", "webhook_event_id": str(webhook_event_id)}

    if webhook_event.is_processed:
        logger.info(
            "WebhookEvent already processed, skipping",
            extra={
                "webhook_event_id": str(webhook_event_id),
                "gateway_event_id": webhook_event.gateway_event_id,
            },
        )
        return {"status": "already_processed", "webhook_event_id": str(webhook_event_id)}

    webhook_event.mark_processing()
    webhook_event.save()

    logger.info(
        f"Dispatching webhook: {webhook_event.event_type}",
        extra={
            "webhook_event_id": str(webhook_event_id),
            "gateway_event_id": webhook_event.gateway_event_id,
            "retry_count": webhook_event.retry_count,
        },
    )

    try:
        with transaction.atomic():
            result = dispatch_webhook(webhook_event)
    except Exception as e:
        error_msg = f"{type(e).__name__}: {e}"
        webhook_event.mark_failed(error_msg)
        webhook_event.save()
        logger.exception(
            "Webhook processing failed with exception",
            extra={
                "webhook_event_id": str(webhook_event_id),
                "gateway_event_id": webhook_event.gateway_event_id,
            },
        )
        raise

    if result.success:
        webhook_event.mark_processed()
        webhook_event.save()
        return {
            "status": "processed",
            "webhook_event_id": str(webhook_event_id),
            "gateway_event_id": webhook_event.gateway_event_id,
        }

    error_msg = result.error or "Handler returned failure"
    webhook_event.mark_failed(error_msg)
    webhook_event.save()
    logger.warning(
        f"Webhook handler failed: {error_msg}",
        extra={
            "webhook_event_id": str(webhook_event_id),
            "gateway_event_id": webhook_event.gateway_event_id,
            "error_code": result.error_code,
        },
    )
    return {
        "status": "handler_failed",
        "webhook_event_id": str(webhook_event_id),
        "error": error_msg,
    }


@shared_task
def retry_failed_webhooks() -> dict:
    """Re-queue failed webhook events that still have retries left."""
    failed_webhooks = WebhookEvent.objects.filter(
        status=WebhookEventStatus.FAILED,
        retry_count__lt=settings.WEBHOOK_MAX_RETRIES,
    ).order_by("created_at")[:WEBHOOK_RETRY_BATCH_SIZE]

    queued_count = 0
    for webhook in failed_webhooks:
        process_webhook_event.delay(str(webhook.id))
        queued_count += 1

    if queued_count:
        logger.info(
            f"Queued {queued_count} failed webhooks for retry",
            extra={"queued_count": queued_count},
        )
    return {"queued_count": queued_count}


# =============================================================================
# Periodic Sweeps
# =============================================================================


def _run_sweep(name: str, sweep) -> dict:
    try:
        with DistributedLock(f"sweep:{name}", ttl=SWEEP_LOCK_TTL, blocking=False):
            stats = sweep()
    except LockAcquisitionError:
        logger.info(f"Sweep {name} already running, skipping")
        return {"status": "skipped"}

    logger.info(f"Sweep {name} finished", extra={"sweep": name, **stats})
    return {"status": "completed", **stats}


@shared_task
def expire_stale_orders() -> dict:
    """
    Cancel pending authorizations older than ORDER_AUTHORIZATION_TTL_MINUTES.

    Payments the gateway captured without a committed booking are refunded.
    """
    from settlement.services import OrderService

    return _run_sweep("expire_stale_orders", OrderService.expire_stale)


@shared_task
def expire_completion_codes() -> dict:
    """Move issued completion codes past their deadline to expired."""
    from settlement.services import CompletionService

    return _run_sweep(
        "expire_completion_codes",
        lambda: {"expired": CompletionService.expire_overdue()},
    )


@shared_task
def retry_pending_payouts() -> dict:
    """Re-submit payouts left pending by gateway outages."""
    from settlement.services import PayoutService

    return _run_sweep("retry_pending_payouts", PayoutService.submit_pending)


@shared_task
def retry_pending_refunds() -> dict:
    """Re-submit refunds left pending by gateway outages."""
    from settlement.services import RefundService

    return _run_sweep("retry_pending_refunds", RefundService.retry_pending)
