"""
Webhook event handlers for Stripe events.

This module provides a handler registry and the handlers that move
settlement state when the gateway reports an outcome asynchronously.

Handled events:
    payment_intent.amount_capturable_updated  order authorized
    payment_intent.succeeded                  captured payment reconciled
    payment_intent.payment_failed             pending order failed
    payment_intent.canceled                   pending order failed
    charge.refunded                           refund completed
    payout.paid                               payout completed
    payout.failed                             payout bounced, earnings restored

Usage:
    from settlement.webhooks.handlers import dispatch_webhook, register_handler

    @register_handler("custom.event")
    def handle_custom_event(webhook_event: WebhookEvent) -> ServiceResult:
        ...

    result = dispatch_webhook(webhook_event)
"""

from __future__ import annotations

import logging
from typing import Callable

from core.services import ServiceResult

from settlement.models import WebhookEvent
from settlement.services import OrderService, PayoutService, RefundService

logger = logging.getLogger(__name__)


# =============================================================================
# Handler Registry
# =============================================================================


# Maps event type strings to handler functions
WEBHOOK_HANDLERS: dict[str, Callable[[WebhookEvent], ServiceResult]] = {}


def register_handler(event_type: str) -> Callable:
    """
    Decorator to register a webhook event handler.

    Args:
        event_type: The Stripe event type (e.g., "payout.paid")
    """

    def decorator(func: Callable[[WebhookEvent], ServiceResult]) -> Callable:
        WEBHOOK_HANDLERS[event_type] = func
        return func

    return decorator


def dispatch_webhook(webhook_event: WebhookEvent) -> ServiceResult:
    """
    Dispatch a webhook event to its handler.

    Unknown event types are acknowledged with a success result so the
    gateway stops redelivering them.
    """
    handler = WEBHOOK_HANDLERS.get(webhook_event.event_type)

    if not handler:
        logger.info(
            f"No handler registered for event type: {webhook_event.event_type}",
            extra={"gateway_event_id": webhook_event.gateway_event_id},
        )
        return ServiceResult.success(None)

    return handler(webhook_event)


def _missing_object_id(webhook_event: WebhookEvent) -> ServiceResult:
    logger.error(
        f"{webhook_event.event_type}: event has no object id",
        extra={"gateway_event_id": webhook_event.gateway_event_id},
    )
    return ServiceResult.failure("Missing object id in event", error_code="VALIDATION_ERROR")


def _ignore_unknown(result: ServiceResult, webhook_event: WebhookEvent) -> ServiceResult:
    # Events for objects this engine never created are acknowledged
    if not result.success and result.error_code == "NOT_FOUND":
        logger.warning(
            f"{webhook_event.event_type}: no matching record, ignoring",
            extra={
                "gateway_event_id": webhook_event.gateway_event_id,
                "object_id": webhook_event.get_object_id(),
            },
        )
        return ServiceResult.success(None)
    return result


# =============================================================================
# Payment Intent Handlers
# =============================================================================


@register_handler("payment_intent.amount_capturable_updated")
def handle_payment_authorized(webhook_event: WebhookEvent) -> ServiceResult:
    payment_intent_id = webhook_event.get_object_id()
    if not payment_intent_id:
        return _missing_object_id(webhook_event)

    return OrderService.mark_authorized(payment_intent_id)


@register_handler("payment_intent.succeeded")
def handle_payment_captured(webhook_event: WebhookEvent) -> ServiceResult:
    """
    Reconcile a capture the gateway settled.

    Normally confirm_capture has already committed the order. A payment
    captured long ago whose order is still pending is refunded.
    """
    payment_intent_id = webhook_event.get_object_id()
    if not payment_intent_id:
        return _missing_object_id(webhook_event)

    return _ignore_unknown(
        OrderService.reconcile_gateway_capture(payment_intent_id),
        webhook_event,
    )


@register_handler("payment_intent.payment_failed")
def handle_payment_failed(webhook_event: WebhookEvent) -> ServiceResult:
    """Fail the pending order; the customer starts a new authorization."""
    payment_intent = webhook_event.get_object()
    payment_intent_id = payment_intent.get("id")
    if not payment_intent_id:
        return _missing_object_id(webhook_event)

    last_error = payment_intent.get("last_payment_error") or {}
    reason = last_error.get("message") or "Payment failed at gateway"

    return _ignore_unknown(
        OrderService.mark_failed_from_gateway(payment_intent_id, reason),
        webhook_event,
    )


@register_handler("payment_intent.canceled")
def handle_payment_canceled(webhook_event: WebhookEvent) -> ServiceResult:
    payment_intent = webhook_event.get_object()
    payment_intent_id = payment_intent.get("id")
    if not payment_intent_id:
        return _missing_object_id(webhook_event)

    reason = f"Cancelled at gateway: {payment_intent.get('cancellation_reason') or 'unknown'}"
    return _ignore_unknown(
        OrderService.mark_failed_from_gateway(payment_intent_id, reason),
        webhook_event,
    )


# =============================================================================
# Refund Handlers
# =============================================================================


@register_handler("charge.refunded")
def handle_charge_refunded(webhook_event: WebhookEvent) -> ServiceResult:
    """
    Complete a refund the gateway accepted but had not yet settled.

    The event object is the charge; its payment_intent identifies the order.
    """
    charge = webhook_event.get_object()
    payment_intent_id = charge.get("payment_intent")
    if not payment_intent_id:
        return _missing_object_id(webhook_event)

    refunds = (charge.get("refunds") or {}).get("data") or []
    gateway_refund_id = refunds[0].get("id") if refunds else None

    return _ignore_unknown(
        RefundService.complete_from_gateway(payment_intent_id, gateway_refund_id),
        webhook_event,
    )


# =============================================================================
# Payout Handlers
# =============================================================================


@register_handler("payout.paid")
def handle_payout_paid(webhook_event: WebhookEvent) -> ServiceResult:
    """
    Complete a processing payout.

    NOT_FOUND is left as a failure: the event can arrive before the debit
    transaction stores the gateway payout id, and the retry picks it up.
    """
    payout_id = webhook_event.get_object_id()
    if not payout_id:
        return _missing_object_id(webhook_event)

    return PayoutService.confirm_paid(payout_id)


@register_handler("payout.failed")
def handle_payout_failed(webhook_event: WebhookEvent) -> ServiceResult:
    payout = webhook_event.get_object()
    payout_id = payout.get("id")
    if not payout_id:
        return _missing_object_id(webhook_event)

    reason = payout.get("failure_message") or payout.get("failure_code") or "Payout failed"
    return PayoutService.reverse_failed(payout_id, reason)
