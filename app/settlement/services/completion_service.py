"""
Completion service: the one-time-code gate that releases escrow.

Flow:
    issue_code      customer asks for a code once the technician is done
    release_on_otp  technician enters the code; on match the order is
                    released and the technician's earnings are credited

Every check and transition on a CompletionRecord happens under
select_for_update() in the same transaction, so concurrent submissions
cannot both consume the last attempt or both release.

Usage:
    from settlement.services import CompletionService

    result = CompletionService.issue_code(booking, customer)
    code = result.data["code"]  # deliver to the customer; never stored

    result = CompletionService.release_on_otp(completion_id, "4821", technician)
"""

from __future__ import annotations

import secrets
import string
from datetime import timedelta
from typing import TYPE_CHECKING, Any

from django.conf import settings
from django.db import IntegrityError, transaction
from django.utils import timezone

from core.exceptions import NotFoundError
from core.services import ServiceResult

from settlement.locks import lock_row
from settlement.models import CompletionRecord, PaymentOrder
from settlement.models.completion import OPEN_COMPLETION_STATES
from settlement.services.base import SettlementService
from settlement.services.earnings_service import EarningsService
from settlement.signatures import completion_code_digest, completion_code_matches
from settlement.state_machines import CompletionState, EarningsEntryType, PaymentOrderState

if TYPE_CHECKING:
    from django.contrib.auth.models import AbstractBaseUser

    from settlement.models import Booking


def generate_completion_code(length: int | None = None) -> str:
    length = length or settings.COMPLETION_CODE_LENGTH
    return "".join(secrets.choice(string.digits) for _ in range(length))


class CompletionService(SettlementService):
    """
    Completion/OTP release gate.

    Error codes returned:
        COMPLETION_IN_PROGRESS: An unexpired code is already outstanding
        INVALID_COMPLETION_CODE: Wrong code, attempts remain
        OTP_EXPIRED_OR_EXHAUSTED: Code expired or attempts used up
        INVALID_STATE_TRANSITION: Order not in a releasable state
        NOT_FOUND / PERMISSION_DENIED
    """

    @classmethod
    def _new_code_fields(cls, record: CompletionRecord) -> tuple[str, dict[str, Any]]:
        code = generate_completion_code()
        fields = {
            "code_digest": completion_code_digest(record.id, code),
            "expires_at": timezone.now()
            + timedelta(seconds=settings.COMPLETION_CODE_TTL_SECONDS),
            "attempts": settings.COMPLETION_CODE_MAX_ATTEMPTS,
        }
        return code, fields

    @staticmethod
    def _code_payload(record: CompletionRecord, code: str) -> dict[str, Any]:
        return {
            "completion_id": str(record.id),
            "booking_id": str(record.booking_id),
            "code": code,
            "expires_at": record.expires_at.isoformat(),
            "remaining_attempts": record.attempts_remaining,
            "status": record.state,
        }

    # =========================================================================
    # Issue / Regenerate
    # =========================================================================

    @classmethod
    def issue_code(
        cls, booking: Booking, user: AbstractBaseUser
    ) -> ServiceResult[dict[str, Any]]:
        """
        Issue a completion code for a captured booking.

        Only the booking's customer may ask for a code. An expired
        outstanding record is closed first; a live one blocks a new code
        (use regenerate_code instead).
        """
        logger = cls.get_logger()

        if booking.customer_id != user.pk:
            return cls._permission_denied()

        order = PaymentOrder.objects.filter(booking=booking).first()
        if order is None or order.state != PaymentOrderState.CAPTURED:
            return ServiceResult.failure(
                "Booking payment is not awaiting completion",
                error_code="INVALID_STATE_TRANSITION",
            )

        with transaction.atomic():
            open_record = (
                CompletionRecord.objects.select_for_update()
                .filter(booking=booking, state__in=OPEN_COMPLETION_STATES)
                .first()
            )
            if open_record is not None:
                if (
                    open_record.state == CompletionState.OTP_ISSUED
                    and open_record.is_past_deadline()
                ):
                    open_record.expire()
                    open_record.save()
                else:
                    return ServiceResult.failure(
                        "A completion code is already active for this booking",
                        error_code="COMPLETION_IN_PROGRESS",
                        details={"completion_id": str(open_record.id)},
                    )

            record = CompletionRecord(booking=booking)
            code, fields = cls._new_code_fields(record)
            record.issue(**fields)
            try:
                with transaction.atomic():
                    record.save()
            except IntegrityError:
                return ServiceResult.failure(
                    "A completion code is already active for this booking",
                    error_code="COMPLETION_IN_PROGRESS",
                )

        logger.info(
            "Completion code issued",
            extra={"completion_id": str(record.id), "booking_id": str(booking.id)},
        )
        return ServiceResult.success(cls._code_payload(record, code))

    @classmethod
    def regenerate_code(
        cls, completion_id, user: AbstractBaseUser
    ) -> ServiceResult[dict[str, Any]]:
        """
        Replace an outstanding code with a new one.

        Resets the deadline and the remaining attempts. Expired records cannot
        be regenerated; issue_code starts a fresh record instead.
        """
        with transaction.atomic():
            try:
                record = lock_row(CompletionRecord, id=completion_id)
            except NotFoundError as e:
                return ServiceResult.failure(e.message, error_code="NOT_FOUND")

            if record.booking.customer_id != user.pk:
                return cls._permission_denied()

            if record.state == CompletionState.OTP_ISSUED and record.is_past_deadline():
                record.expire()
                record.save()

            if record.state == CompletionState.EXPIRED:
                return cls._expired()
            if record.state != CompletionState.OTP_ISSUED:
                return ServiceResult.failure(
                    f"Completion is '{record.state}' and cannot get a new code",
                    error_code="INVALID_STATE_TRANSITION",
                )

            code, fields = cls._new_code_fields(record)
            record.reissue(**fields)
            record.save()

        cls.get_logger().info(
            "Completion code regenerated",
            extra={"completion_id": str(record.id)},
        )
        return ServiceResult.success(cls._code_payload(record, code))

    # =========================================================================
    # Verify & Release
    # =========================================================================

    @classmethod
    def release_on_otp(
        cls, completion_id, submitted_code: str, user: AbstractBaseUser
    ) -> ServiceResult[dict[str, Any]]:
        """
        Verify a submitted code and release the escrowed payment.

        On a correct code, in one transaction:
            - record: otp_issued -> otp_verified -> released
            - order: captured -> released
            - ledger credited with the technician's earnings
              (idempotency key "release:<order_id>")
            - booking marked completed

        Returns:
            ServiceResult with released, remaining_attempts and replayed
        """
        logger = cls.get_logger()

        with transaction.atomic():
            try:
                record = lock_row(CompletionRecord, id=completion_id)
            except NotFoundError as e:
                return ServiceResult.failure(e.message, error_code="NOT_FOUND")

            booking = record.booking
            if booking.technician_id != user.pk:
                return cls._permission_denied()

            if record.state == CompletionState.RELEASED:
                return ServiceResult.success(
                    {
                        "completion_id": str(record.id),
                        "released": True,
                        "remaining_attempts": record.attempts_remaining,
                        "replayed": True,
                    }
                )

            if record.state == CompletionState.OTP_ISSUED and record.is_past_deadline():
                record.expire()
                record.save()

            if record.state == CompletionState.EXPIRED:
                return cls._expired()

            if record.state != CompletionState.OTP_ISSUED:
                return ServiceResult.failure(
                    f"Completion is '{record.state}' and cannot be verified",
                    error_code="INVALID_STATE_TRANSITION",
                )

            if not completion_code_matches(record.id, submitted_code or "", record.code_digest):
                record.attempts_remaining = max(0, record.attempts_remaining - 1)
                if record.attempts_remaining == 0:
                    record.expire()
                record.save()

                logger.warning(
                    "Incorrect completion code",
                    extra={
                        "completion_id": str(record.id),
                        "remaining_attempts": record.attempts_remaining,
                    },
                )
                if record.state == CompletionState.EXPIRED:
                    return cls._expired()
                return ServiceResult.failure(
                    "Incorrect completion code",
                    error_code="INVALID_COMPLETION_CODE",
                    details={
                        "released": False,
                        "remaining_attempts": record.attempts_remaining,
                    },
                )

            order = PaymentOrder.objects.select_for_update().get(booking=booking)
            if order.state != PaymentOrderState.CAPTURED:
                return ServiceResult.failure(
                    f"Payment is '{order.state}' and cannot be released",
                    error_code="INVALID_STATE_TRANSITION",
                )

            record.verify()
            record.release()
            record.save()

            order.release()
            order.save()

            EarningsService.credit(
                technician=order.technician,
                amount=order.technician_earnings_paise,
                entry_type=EarningsEntryType.RELEASE_CREDIT,
                idempotency_key=f"release:{order.id}",
                description=f"Release of booking {booking.id}",
                payment_order=order,
            )

            booking.mark_completed()
            booking.save()

        logger.info(
            "Escrow released on completion code",
            extra={
                "completion_id": str(record.id),
                "payment_order_id": str(order.id),
                "technician_earnings_paise": order.technician_earnings_paise,
            },
        )
        return ServiceResult.success(
            {
                "completion_id": str(record.id),
                "order_id": str(order.id),
                "released": True,
                "remaining_attempts": record.attempts_remaining,
                "replayed": False,
            }
        )

    # =========================================================================
    # Sweeps
    # =========================================================================

    @classmethod
    def expire_overdue(cls, now=None) -> int:
        """Expire issued codes past their deadline. Returns the count."""
        now = now or timezone.now()
        candidate_ids = list(
            CompletionRecord.objects.filter(
                state=CompletionState.OTP_ISSUED,
                expires_at__lt=now,
            ).values_list("id", flat=True)
        )

        expired = 0
        for record_id in candidate_ids:
            with transaction.atomic():
                record = CompletionRecord.objects.select_for_update().get(id=record_id)
                # Re-check under lock; a regenerate may have extended it
                if record.state != CompletionState.OTP_ISSUED or not record.is_past_deadline(now):
                    continue
                record.expire()
                record.save()
                expired += 1

        if expired:
            cls.get_logger().info("Expired completion codes", extra={"count": expired})
        return expired

    @staticmethod
    def _expired() -> ServiceResult:
        return ServiceResult.failure(
            "Completion code has expired or has no attempts left; request a new code",
            error_code="OTP_EXPIRED_OR_EXHAUSTED",
            details={"released": False, "remaining_attempts": 0},
        )

    @staticmethod
    def _permission_denied() -> ServiceResult:
        return ServiceResult.failure(
            "You are not allowed to act on this completion",
            error_code="PERMISSION_DENIED",
        )
