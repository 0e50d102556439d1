"""
Order service: authorization and capture of booking payments.

Flow:
    authorize_order  -> gateway authorization, PaymentOrder(pending)
    (customer pays at the gateway and the client reports success)
    confirm_capture  -> signature check, gateway capture, Booking + captured

The gateway is always called outside any database transaction. Local
state changes happen afterwards in a short transaction that re-reads the
order under select_for_update() and re-checks its state, so a duplicate
request that lost the race returns the winner's result.

Usage:
    from settlement.services import OrderService

    result = OrderService.authorize_order(customer, technician, 50000)
    if result.success:
        client_secret = result.data["client_secret"]

    result = OrderService.confirm_capture(
        user=customer,
        gateway_order_id="pi_123",
        gateway_payment_id="ch_123",
        signature=signature,
        booking_draft={"scheduled_for": when, "address": "..."},
    )
"""

from __future__ import annotations

import uuid
from datetime import timedelta
from typing import TYPE_CHECKING, Any

from django.conf import settings
from django.db import transaction
from django.utils import timezone

from django_fsm import TransitionNotAllowed

from core.services import ServiceResult

from settlement.commission import split_amount, validate_order_amount
from settlement.exceptions import GatewayError, GatewayRejectedError, InvalidAmountError
from settlement.gateway import IdempotencyKeyGenerator
from settlement.models import Booking, PaymentOrder
from settlement.services.base import SettlementService
from settlement.signatures import verify_confirmation
from settlement.state_machines import PaymentOrderState

if TYPE_CHECKING:
    from django.contrib.auth.models import AbstractBaseUser

CAPTURED_OR_LATER = (
    PaymentOrderState.CAPTURED,
    PaymentOrderState.RELEASED,
    PaymentOrderState.REFUNDED,
)


class OrderService(SettlementService):
    """
    Order Authorizer and Capture & Booking Committer.

    Error codes returned:
        INVALID_AMOUNT: Amount outside configured bounds
        VALIDATION_ERROR: Malformed request (self-payment, missing draft)
        SIGNATURE_MISMATCH: Client confirmation failed HMAC verification
        CAPTURE_FAILED: Gateway refused the capture; order is failed
        GATEWAY_UNAVAILABLE: Authorization could not reach the gateway
        ORDER_ALREADY_CAPTURED: Different payment id for a captured order
        NOT_FOUND / PERMISSION_DENIED
    """

    # =========================================================================
    # Authorization
    # =========================================================================

    @classmethod
    def authorize_order(
        cls,
        customer: AbstractBaseUser,
        technician: AbstractBaseUser,
        amount: int,
        contact: dict[str, str] | None = None,
        description: str = "",
    ) -> ServiceResult[dict[str, Any]]:
        """
        Create a gateway authorization and a pending PaymentOrder.

        Nothing is persisted unless the gateway accepted the authorization.

        Returns:
            ServiceResult with order_id, gateway_order_id, client_secret,
            amount, commission and technician_earnings
        """
        logger = cls.get_logger()

        try:
            validate_order_amount(amount)
        except InvalidAmountError as e:
            return ServiceResult.from_exception(e)

        if customer.pk == technician.pk:
            return ServiceResult.failure(
                "Customer and technician must be different users",
                error_code="VALIDATION_ERROR",
            )

        split = split_amount(amount)
        order_id = uuid.uuid4()

        try:
            gateway_order = cls.get_gateway().create_order(
                amount=amount,
                currency=settings.PAYMENT_CURRENCY,
                metadata={
                    "payment_order_id": str(order_id),
                    "customer_id": str(customer.pk),
                    "technician_id": str(technician.pk),
                },
                idempotency_key=IdempotencyKeyGenerator.generate("authorize", order_id),
            )
        except GatewayError as e:
            logger.warning(
                "Gateway authorization failed",
                extra={"payment_order_id": str(order_id), "error": e.message},
            )
            return ServiceResult.from_exception(e)

        order = PaymentOrder.objects.create(
            id=order_id,
            customer=customer,
            technician=technician,
            amount_paise=split.amount,
            commission_paise=split.commission,
            technician_earnings_paise=split.technician_earnings,
            currency=settings.PAYMENT_CURRENCY,
            gateway_order_id=gateway_order.id,
            metadata={
                "contact": contact or {},
                "description": description,
            },
        )

        logger.info(
            "Payment order authorized",
            extra={
                "payment_order_id": str(order.id),
                "gateway_order_id": order.gateway_order_id,
                "amount_paise": order.amount_paise,
            },
        )

        return ServiceResult.success(
            {
                "order_id": str(order.id),
                "gateway_order_id": order.gateway_order_id,
                "client_secret": gateway_order.client_secret,
                "amount": order.amount_paise,
                "commission": order.commission_paise,
                "technician_earnings": order.technician_earnings_paise,
                "status": order.state,
            }
        )

    # =========================================================================
    # Capture
    # =========================================================================

    @classmethod
    def confirm_capture(
        cls,
        user: AbstractBaseUser,
        gateway_order_id: str,
        gateway_payment_id: str,
        signature: str,
        booking_draft: dict[str, Any],
    ) -> ServiceResult[dict[str, Any]]:
        """
        Verify a client payment confirmation and capture it.

        Steps:
            1. Verify HMAC signature (before anything is read)
            2. Detect replays by gateway payment id
            3. Capture at the gateway (outside any transaction)
            4. Create the booking and mark the order captured, under lock

        Returns:
            ServiceResult with booking_id and status. status stays "pending"
            with retry_pending set (and booking_id None) when the gateway was
            unreachable; the call can simply be repeated.
        """
        logger = cls.get_logger()

        # Step 1: Signature first; a forged confirmation touches nothing
        if not verify_confirmation(gateway_order_id, gateway_payment_id, signature):
            logger.warning(
                "Payment confirmation signature mismatch",
                extra={"gateway_order_id": gateway_order_id},
            )
            return ServiceResult.failure(
                "Payment confirmation signature is invalid",
                error_code="SIGNATURE_MISMATCH",
            )

        # Step 2: Replay detection
        replay = PaymentOrder.objects.filter(gateway_payment_id=gateway_payment_id).first()
        if replay is not None and replay.state in CAPTURED_OR_LATER:
            if replay.gateway_order_id != gateway_order_id:
                return ServiceResult.failure(
                    "Payment id belongs to a different order",
                    error_code="VALIDATION_ERROR",
                )
            if replay.customer_id != user.pk:
                return cls._not_owner()
            return ServiceResult.success(cls._capture_payload(replay, replayed=True))

        order = PaymentOrder.objects.filter(gateway_order_id=gateway_order_id).first()
        if order is None:
            return ServiceResult.failure("Payment order not found", error_code="NOT_FOUND")
        if order.customer_id != user.pk:
            return cls._not_owner()

        if order.state in CAPTURED_OR_LATER:
            return ServiceResult.failure(
                "Order was already captured with a different payment",
                error_code="ORDER_ALREADY_CAPTURED",
            )
        if order.state == PaymentOrderState.FAILED:
            return ServiceResult.failure(
                order.failure_reason or "Payment failed",
                error_code="CAPTURE_FAILED",
            )

        draft_error = cls._validate_booking_draft(booking_draft)
        if draft_error is not None:
            return draft_error

        # Step 3: Gateway capture, outside any transaction
        try:
            capture = cls.get_gateway().capture(
                order.gateway_order_id,
                order.amount_paise,
                idempotency_key=IdempotencyKeyGenerator.generate("capture", order.id),
            )
        except GatewayRejectedError as e:
            return cls._fail_capture(order, e.message)
        except GatewayError as e:
            logger.warning(
                "Capture left pending, gateway unavailable",
                extra={"payment_order_id": str(order.id), "error": e.message},
            )
            return ServiceResult.success(
                {
                    "order_id": str(order.id),
                    "booking_id": None,
                    "status": order.state,
                    "replayed": False,
                    "retry_pending": True,
                }
            )

        if not capture.captured:
            return cls._fail_capture(
                order, f"Gateway did not confirm capture (status '{capture.status}')"
            )

        # Step 4: Commit locally under lock
        with transaction.atomic():
            order = PaymentOrder.objects.select_for_update().get(id=order.id)

            if order.state != PaymentOrderState.PENDING:
                # A concurrent duplicate committed first
                logger.info(
                    "Order state changed under lock",
                    extra={"payment_order_id": str(order.id), "state": order.state},
                )
                if order.state == PaymentOrderState.FAILED:
                    return ServiceResult.failure(
                        order.failure_reason or "Payment failed",
                        error_code="CAPTURE_FAILED",
                    )
                return ServiceResult.success(cls._capture_payload(order, replayed=True))

            booking = Booking.objects.create(
                customer=order.customer,
                technician=order.technician,
                scheduled_for=booking_draft["scheduled_for"],
                address=booking_draft.get("address", ""),
                description=booking_draft.get("description", ""),
            )
            order.capture(payment_id=gateway_payment_id, booking=booking)
            order.save()

        logger.info(
            "Payment captured and booking created",
            extra={
                "payment_order_id": str(order.id),
                "booking_id": str(booking.id),
                "gateway_payment_id": gateway_payment_id,
            },
        )
        return ServiceResult.success(cls._capture_payload(order, replayed=False))

    # =========================================================================
    # Cancellation & Status
    # =========================================================================

    @classmethod
    def cancel_pending_order(
        cls, order: PaymentOrder, reason: str = "cancelled"
    ) -> ServiceResult[dict[str, Any]]:
        """
        Release an uncaptured authorization and fail the order.

        No money was captured, so no compensating movement is needed. If
        the gateway reports the payment as already captured the order is
        left alone for the capture path to finish.
        """
        logger = cls.get_logger()

        if order.state == PaymentOrderState.FAILED:
            return ServiceResult.success(
                {"order_id": str(order.id), "status": order.state, "replayed": True}
            )
        if order.state != PaymentOrderState.PENDING:
            return ServiceResult.failure(
                f"Only pending orders can be cancelled (order is '{order.state}')",
                error_code="INVALID_STATE_TRANSITION",
            )

        try:
            cls.get_gateway().cancel_order(order.gateway_order_id)
        except GatewayRejectedError as e:
            gateway_order = cls._safe_retrieve(order.gateway_order_id)
            if gateway_order is None or gateway_order.status != "canceled":
                logger.warning(
                    "Gateway refused cancellation, order left pending",
                    extra={
                        "payment_order_id": str(order.id),
                        "gateway_status": getattr(gateway_order, "status", None),
                    },
                )
                return ServiceResult.from_exception(e)
        except GatewayError as e:
            return ServiceResult.from_exception(e)

        return cls._mark_failed(order.id, reason)

    @classmethod
    def get_payment_status(cls, order: PaymentOrder) -> ServiceResult[dict[str, Any]]:
        """Local order state plus the gateway's view of the payment."""
        data: dict[str, Any] = {
            "order_id": str(order.id),
            "status": order.state,
            "amount": order.amount_paise,
            "commission": order.commission_paise,
            "technician_earnings": order.technician_earnings_paise,
            "booking_id": str(order.booking_id) if order.booking_id else None,
            "booking_reference": order.booking_reference,
            "gateway_status": None,
        }

        gateway_order = cls._safe_retrieve(order.gateway_order_id)
        if gateway_order is not None:
            data["gateway_status"] = gateway_order.status

        return ServiceResult.success(data)

    @classmethod
    def mark_failed_from_gateway(
        cls, gateway_order_id: str, reason: str
    ) -> ServiceResult[dict[str, Any]]:
        """Fail a pending order after the gateway reported it failed or cancelled."""
        order = PaymentOrder.objects.filter(gateway_order_id=gateway_order_id).first()
        if order is None:
            return ServiceResult.failure("Payment order not found", error_code="NOT_FOUND")
        return cls._mark_failed(order.id, reason)

    @classmethod
    def mark_authorized(cls, gateway_order_id: str) -> ServiceResult[dict[str, Any]]:
        """Record when the gateway reported the payment as capturable."""
        updated = PaymentOrder.objects.filter(
            gateway_order_id=gateway_order_id,
            state=PaymentOrderState.PENDING,
            authorized_at__isnull=True,
        ).update(authorized_at=timezone.now())
        return ServiceResult.success({"updated": bool(updated)})

    @classmethod
    def reconcile_gateway_capture(
        cls, gateway_order_id: str, now=None
    ) -> ServiceResult[dict[str, Any]]:
        """
        Handle the gateway reporting a payment as captured (payment_intent.succeeded).

        Orders already committed need nothing. A pending order inside the
        authorization TTL is left for confirm_capture to commit; an older
        one never got its booking, so the payment is refunded.
        """
        order = PaymentOrder.objects.filter(gateway_order_id=gateway_order_id).first()
        if order is None:
            return ServiceResult.failure("Payment order not found", error_code="NOT_FOUND")

        if order.state != PaymentOrderState.PENDING:
            return ServiceResult.success(
                {"order_id": str(order.id), "status": order.state, "replayed": True}
            )

        if order.created_at >= cls._stale_cutoff(now):
            cls.get_logger().info(
                "Gateway capture reported before local commit",
                extra={"payment_order_id": str(order.id)},
            )
            return ServiceResult.success(
                {"order_id": str(order.id), "status": order.state, "replayed": False}
            )

        return cls.release_uncommitted_capture(order)

    @classmethod
    def release_uncommitted_capture(cls, order: PaymentOrder) -> ServiceResult[dict[str, Any]]:
        """
        Refund a payment the gateway captured but no booking was committed for.

        The order moves pending -> failed once the gateway accepts the
        refund. Until then it stays pending and the next sweep retries
        with the same idempotency key.
        """
        logger = cls.get_logger()

        try:
            refund = cls.get_gateway().refund(
                payment_id=order.gateway_order_id,
                amount=order.amount_paise,
                notes={
                    "payment_order_id": str(order.id),
                    "reason": "capture_not_committed",
                },
                idempotency_key=IdempotencyKeyGenerator.generate(
                    "release_capture", order.id
                ),
            )
        except GatewayError as e:
            logger.warning(
                "Could not refund uncommitted capture",
                extra={"payment_order_id": str(order.id), "error": e.message},
            )
            return ServiceResult.from_exception(e)

        if refund.status in ("failed", "canceled"):
            reason = f"Gateway reported refund {refund.id} as {refund.status}"
            logger.error(
                "Refund of uncommitted capture failed",
                extra={"payment_order_id": str(order.id), "reason": reason},
            )
            return ServiceResult.failure(reason, error_code="GATEWAY_REJECTED")

        result = cls._mark_failed(
            order.id, f"Captured without a booking, refunded as {refund.id}"
        )
        if not result.success:
            # confirm_capture committed the booking after the refund went out
            logger.error(
                "Uncommitted capture refunded but order has moved on",
                extra={"payment_order_id": str(order.id), "gateway_refund_id": refund.id},
            )
            return result

        logger.warning(
            "Uncommitted capture refunded",
            extra={"payment_order_id": str(order.id), "gateway_refund_id": refund.id},
        )
        return result

    @classmethod
    def expire_stale(cls, now=None) -> dict[str, int]:
        """
        Cancel authorizations nobody captured within the authorization TTL.

        A payment the gateway already captured is refunded instead, since
        its booking was never committed. Orders neither step can settle
        (gateway unreachable) stay pending and are counted as skipped.
        """
        stats = {"expired": 0, "released": 0, "skipped": 0}

        for order in PaymentOrder.objects.filter(
            state=PaymentOrderState.PENDING, created_at__lt=cls._stale_cutoff(now)
        ).order_by("created_at"):
            if cls.cancel_pending_order(order, reason="authorization expired").success:
                stats["expired"] += 1
                continue

            gateway_order = cls._safe_retrieve(order.gateway_order_id)
            if gateway_order is not None and gateway_order.is_captured:
                if cls.release_uncommitted_capture(order).success:
                    stats["released"] += 1
                    continue

            stats["skipped"] += 1

        return stats

    # =========================================================================
    # Helpers
    # =========================================================================

    @staticmethod
    def _stale_cutoff(now=None):
        return (now or timezone.now()) - timedelta(
            minutes=settings.ORDER_AUTHORIZATION_TTL_MINUTES
        )

    @classmethod
    def _mark_failed(cls, order_id, reason: str) -> ServiceResult[dict[str, Any]]:
        with transaction.atomic():
            order = PaymentOrder.objects.select_for_update().get(id=order_id)

            if order.state == PaymentOrderState.FAILED:
                return ServiceResult.success(
                    {"order_id": str(order.id), "status": order.state, "replayed": True}
                )
            try:
                order.fail(reason=reason)
            except TransitionNotAllowed as e:
                return cls.transition_failure(order, e)
            order.save()

        cls.get_logger().info(
            "Payment order failed",
            extra={"payment_order_id": str(order.id), "reason": reason},
        )
        return ServiceResult.success(
            {"order_id": str(order.id), "status": order.state, "replayed": False}
        )

    @classmethod
    def _fail_capture(cls, order: PaymentOrder, reason: str) -> ServiceResult[dict[str, Any]]:
        cls.get_logger().error(
            "Gateway capture failed",
            extra={"payment_order_id": str(order.id), "reason": reason},
        )
        result = cls._mark_failed(order.id, reason)
        if not result.success:
            return result
        return ServiceResult.failure(reason, error_code="CAPTURE_FAILED")

    @classmethod
    def _safe_retrieve(cls, gateway_order_id: str):
        try:
            return cls.get_gateway().retrieve_order(gateway_order_id)
        except GatewayError as e:
            cls.get_logger().warning(
                "Could not read payment from gateway",
                extra={"gateway_order_id": gateway_order_id, "error": e.message},
            )
            return None

    @staticmethod
    def _capture_payload(order: PaymentOrder, replayed: bool) -> dict[str, Any]:
        return {
            "order_id": str(order.id),
            "booking_id": str(order.booking_id) if order.booking_id else None,
            "status": order.state,
            "replayed": replayed,
        }

    @staticmethod
    def _validate_booking_draft(draft: dict[str, Any] | None) -> ServiceResult | None:
        if not draft or not draft.get("scheduled_for"):
            return ServiceResult.failure(
                "Booking details are incomplete",
                error_code="VALIDATION_ERROR",
                errors={"booking": ["scheduled_for is required"]},
            )
        return None

    @staticmethod
    def _not_owner() -> ServiceResult:
        return ServiceResult.failure(
            "You do not have access to this payment order",
            error_code="PERMISSION_DENIED",
        )
