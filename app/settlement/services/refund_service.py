"""
Refund service for cancelled bookings.

The split between customer, technician and platform is decided once by
compute_refund and frozen on a RefundRecord. The customer's share is then
refunded through the gateway, outside any transaction; local state only
changes after the gateway confirms.

Usage:
    from settlement.services import RefundService

    quote = RefundService.quote(order, request.user)
    result = RefundService.process_refund(order, request.user, reason="Plans changed")
"""

from __future__ import annotations

from datetime import timedelta
from typing import TYPE_CHECKING, Any

from django.db import IntegrityError, transaction
from django.utils import timezone

from django_fsm import TransitionNotAllowed

from core.services import ServiceResult

from settlement.exceptions import GatewayError, GatewayRejectedError, LockAcquisitionError
from settlement.gateway import IdempotencyKeyGenerator
from settlement.locks import DistributedLock
from settlement.models import PaymentOrder, RefundRecord
from settlement.refund_policy import RefundRejection, compute_refund
from settlement.services.base import SettlementService
from settlement.services.earnings_service import EarningsService
from settlement.state_machines import EarningsEntryType, PaymentOrderState, RefundState

if TYPE_CHECKING:
    from django.contrib.auth.models import AbstractBaseUser


REFUND_LOCK_TTL = 120

# Pending refunds younger than this are still owned by their request
RETRY_GRACE_PERIOD = timedelta(minutes=2)


class RefundService(SettlementService):
    """
    Cancellation refunds.

    Error codes returned:
        REFUND_WINDOW_CLOSED: Cancellation too close to service start
        GATEWAY_REJECTED: Gateway refused the refund (record failed)
        INVALID_STATE_TRANSITION: Order is not captured
        NOT_FOUND / PERMISSION_DENIED
    """

    @classmethod
    def quote(
        cls, order: PaymentOrder, user: AbstractBaseUser, now=None
    ) -> ServiceResult[dict[str, Any]]:
        """What a cancellation right now would return, without acting on it."""
        if user.pk not in (order.customer_id, order.technician_id):
            return cls._permission_denied()
        if order.state != PaymentOrderState.CAPTURED or order.booking_id is None:
            return ServiceResult.failure(
                f"Payment is '{order.state}' and cannot be refunded",
                error_code="INVALID_STATE_TRANSITION",
            )

        decision = cls._decide(order, now or timezone.now())
        return ServiceResult.success({"order_id": str(order.id), **decision.to_dict()})

    @staticmethod
    def _decide(order: PaymentOrder, now):
        booking = order.booking
        return compute_refund(
            amount=order.amount_paise,
            booked_at=booking.created_at,
            service_at=booking.scheduled_for,
            cancelled_at=now,
        )

    # =========================================================================
    # Process
    # =========================================================================

    @classmethod
    def process_refund(
        cls, order: PaymentOrder, user: AbstractBaseUser, reason: str = ""
    ) -> ServiceResult[dict[str, Any]]:
        """
        Cancel a captured booking and refund the customer's share.

        A pending record from an earlier attempt is reused, so the split is
        the one computed at first request. A failed record is moved back
        to pending and resubmitted.
        """
        logger = cls.get_logger()

        if order.customer_id != user.pk:
            return cls._permission_denied()

        if order.state == PaymentOrderState.REFUNDED:
            record = RefundRecord.objects.get(payment_order=order)
            return ServiceResult.success(cls._payload(record, replayed=True))

        if order.state != PaymentOrderState.CAPTURED:
            return ServiceResult.failure(
                f"Payment is '{order.state}' and cannot be refunded",
                error_code="INVALID_STATE_TRANSITION",
            )

        with transaction.atomic():
            record = (
                RefundRecord.objects.select_for_update().filter(payment_order=order).first()
            )

            if record is None:
                decision = cls._decide(order, timezone.now())
                if isinstance(decision, RefundRejection):
                    logger.info(
                        "Refund refused by policy",
                        extra={"payment_order_id": str(order.id), "reason": decision.reason},
                    )
                    return ServiceResult.failure(
                        f"Refund not allowed: {decision.reason}",
                        error_code="REFUND_WINDOW_CLOSED",
                        details=decision.to_dict(),
                    )

                try:
                    with transaction.atomic():
                        record = RefundRecord.objects.create(
                            payment_order=order,
                            amount_paise=decision.amount,
                            customer_refund_paise=decision.customer_refund,
                            technician_compensation_paise=decision.technician_compensation,
                            platform_fee_paise=decision.platform_fee,
                            refund_type=decision.refund_type,
                            policy_reason=decision.reason,
                            customer_reason=reason or "",
                        )
                except IntegrityError:
                    record = RefundRecord.objects.get(payment_order=order)
            elif record.state == RefundState.FAILED:
                record.retry()
                record.save()
            elif record.state == RefundState.COMPLETED:
                return ServiceResult.success(cls._payload(record, replayed=True))

        logger.info(
            "Refund record ready",
            extra={
                "refund_id": str(record.id),
                "payment_order_id": str(order.id),
                "refund_type": record.refund_type,
                "customer_refund_paise": record.customer_refund_paise,
            },
        )
        return cls.submit(record)

    @classmethod
    def submit(cls, record: RefundRecord) -> ServiceResult[dict[str, Any]]:
        """Send a PENDING refund to the gateway; finalize on success."""
        lock = DistributedLock(f"refund:{record.id}", ttl=REFUND_LOCK_TTL, blocking=False)
        try:
            with lock:
                return cls._submit_locked(record)
        except LockAcquisitionError as e:
            return ServiceResult.from_exception(e)

    @classmethod
    def _submit_locked(cls, record: RefundRecord) -> ServiceResult[dict[str, Any]]:
        logger = cls.get_logger()
        gateway = cls.get_gateway()

        record = RefundRecord.objects.select_related("payment_order").get(id=record.id)
        if record.state != RefundState.PENDING:
            return ServiceResult.success(cls._payload(record, replayed=True))
        order = record.payment_order

        try:
            result = gateway.refund(
                payment_id=order.gateway_order_id,
                amount=record.customer_refund_paise,
                notes={
                    "refund_id": str(record.id),
                    "payment_order_id": str(order.id),
                    "refund_type": record.refund_type,
                },
                idempotency_key=IdempotencyKeyGenerator.generate(
                    operation="refund",
                    entity_id=record.id,
                ),
            )
        except GatewayRejectedError as e:
            cls._fail(record.id, e.message)
            return ServiceResult.from_exception(e)
        except GatewayError as e:
            logger.warning(
                "Gateway unavailable for refund, will retry",
                extra={"refund_id": str(record.id), "error": e.message},
            )
            return ServiceResult.success({**cls._payload(record), "retry_pending": True})

        if result.status in ("failed", "canceled"):
            reason = f"Gateway reported refund {result.id} as {result.status}"
            cls._fail(record.id, reason)
            return ServiceResult.failure(reason, error_code="GATEWAY_REJECTED")

        if not result.succeeded:
            # Accepted but not settled; charge.refunded completes it
            RefundRecord.objects.filter(id=record.id, gateway_refund_id__isnull=True).update(
                gateway_refund_id=result.id
            )
            return ServiceResult.success({**cls._payload(record), "awaiting_gateway": True})

        return cls._finalize(record.id, result.id)

    @classmethod
    def _finalize(
        cls, record_id, gateway_refund_id: str | None
    ) -> ServiceResult[dict[str, Any]]:
        """
        Apply a confirmed refund locally, in one transaction.

        record -> completed, order -> refunded, booking -> cancelled, and
        any technician compensation credited to the ledger.
        """
        logger = cls.get_logger()

        with transaction.atomic():
            record = RefundRecord.objects.select_for_update().get(id=record_id)
            if record.state == RefundState.COMPLETED:
                return ServiceResult.success(cls._payload(record, replayed=True))

            order = PaymentOrder.objects.select_for_update().get(id=record.payment_order_id)
            try:
                record.complete(gateway_refund_id=gateway_refund_id)
            except TransitionNotAllowed as e:
                return cls.transition_failure(record, e)
            record.save()

            if order.state != PaymentOrderState.CAPTURED:
                # Money already went back; keep the record truthful for support
                logger.error(
                    "Refund completed for a payment that is no longer captured",
                    extra={"refund_id": str(record.id), "order_state": order.state},
                )
                return ServiceResult.success(cls._payload(record))

            order.refund()
            order.save()

            booking = order.booking
            booking.mark_cancelled()
            booking.save()

            if record.technician_compensation_paise > 0:
                EarningsService.credit(
                    technician=order.technician,
                    amount=record.technician_compensation_paise,
                    entry_type=EarningsEntryType.CANCELLATION_COMPENSATION,
                    idempotency_key=f"refund-compensation:{record.id}",
                    description=f"Cancellation of booking {booking.id}",
                    payment_order=order,
                    refund=record,
                )

        logger.info(
            "Refund completed",
            extra={
                "refund_id": str(record.id),
                "payment_order_id": str(order.id),
                "gateway_refund_id": gateway_refund_id,
            },
        )
        return ServiceResult.success(cls._payload(record))

    @classmethod
    def _fail(cls, record_id, reason: str) -> None:
        with transaction.atomic():
            record = RefundRecord.objects.select_for_update().get(id=record_id)
            if record.state != RefundState.PENDING:
                return
            record.fail(reason)
            record.save()

        cls.get_logger().warning(
            "Refund failed",
            extra={"refund_id": str(record_id), "reason": reason},
        )

    # =========================================================================
    # Gateway notifications & retries
    # =========================================================================

    @classmethod
    def complete_from_gateway(
        cls, gateway_order_id: str, gateway_refund_id: str | None = None
    ) -> ServiceResult[dict[str, Any]]:
        """Finalize the refund of an order once the gateway reports it (charge.refunded)."""
        record = (
            RefundRecord.objects.filter(payment_order__gateway_order_id=gateway_order_id)
            .only("id")
            .first()
        )
        if record is None:
            return ServiceResult.failure(
                f"No refund for gateway order {gateway_order_id}",
                error_code="NOT_FOUND",
            )
        return cls._finalize(record.id, gateway_refund_id)

    @classmethod
    def retry_pending(cls, now=None) -> dict[str, int]:
        """Re-submit PENDING refunds left behind by an unavailable gateway."""
        cutoff = (now or timezone.now()) - RETRY_GRACE_PERIOD
        stats = {"submitted": 0, "completed": 0}

        for record in RefundRecord.objects.filter(
            state=RefundState.PENDING, updated_at__lt=cutoff
        ).order_by("created_at"):
            result = cls.submit(record)
            stats["submitted"] += 1
            if result.success and result.data.get("status") == RefundState.COMPLETED:
                stats["completed"] += 1

        return stats

    @staticmethod
    def _payload(record: RefundRecord, replayed: bool = False) -> dict[str, Any]:
        return {
            "refund_id": str(record.id),
            "order_id": str(record.payment_order_id),
            "status": record.state,
            "refund_type": record.refund_type,
            "customer_refund_paise": record.customer_refund_paise,
            "technician_compensation_paise": record.technician_compensation_paise,
            "platform_fee_paise": record.platform_fee_paise,
            "replayed": replayed,
        }

    @staticmethod
    def _permission_denied() -> ServiceResult:
        return ServiceResult.failure(
            "You are not allowed to act on this payment",
            error_code="PERMISSION_DENIED",
        )
