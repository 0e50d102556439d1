"""
Stripe webhook endpoint.

Deliveries are verified against the webhook secret, stored once per
gateway event id and handed to Celery. The response never waits for the
settlement work; the stored WebhookEvent is the durable record that it is
still owed.
"""

from __future__ import annotations

import logging

from django.http import HttpRequest, HttpResponse
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_POST

from settlement.exceptions import GatewayRejectedError
from settlement.models import WebhookEvent
from settlement.services import SettlementService
from settlement.state_machines import WebhookEventStatus

logger = logging.getLogger(__name__)


def _record_event(event_data: dict) -> tuple[WebhookEvent, bool]:
    return WebhookEvent.objects.get_or_create(
        gateway_event_id=event_data["id"],
        defaults={
            "event_type": event_data["type"],
            "payload": event_data,
            "status": WebhookEventStatus.PENDING,
        },
    )


@csrf_exempt
@require_POST
def stripe_webhook(request: HttpRequest) -> HttpResponse:
    """
    Accept a Stripe webhook delivery.

    Responses:
        200 "Accepted": stored (or found unprocessed) and queued
        200 "Already processed": redelivery of a handled event, nothing queued
        400: no Stripe-Signature header, bad signature, or no id/type
    """
    signature = request.headers.get("Stripe-Signature", "")
    if not signature:
        logger.warning("Webhook rejected: no Stripe-Signature header")
        return HttpResponse("Missing signature", status=400)

    try:
        event_data = SettlementService.get_gateway().verify_webhook_signature(
            request.body, signature
        )
    except GatewayRejectedError as e:
        logger.warning("Webhook rejected: signature check failed", extra={"error": e.message})
        return HttpResponse("Invalid signature", status=400)

    if not event_data.get("id") or not event_data.get("type"):
        logger.warning("Webhook rejected: event has no id or type")
        return HttpResponse("Invalid event", status=400)

    webhook_event, created = _record_event(event_data)
    log_extra = {
        "gateway_event_id": webhook_event.gateway_event_id,
        "webhook_event_id": str(webhook_event.id),
        "event_created": created,
    }

    if webhook_event.is_processed:
        logger.info("Webhook redelivered after processing, acknowledged", extra=log_extra)
        return HttpResponse("Already processed", status=200)

    from settlement.tasks import process_webhook_event

    process_webhook_event.delay(str(webhook_event.id))
    logger.info(f"Queued Stripe webhook {webhook_event.event_type}", extra=log_extra)
    return HttpResponse("Accepted", status=200)
