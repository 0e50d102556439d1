"""
Payout service for moving technician earnings to an external account.

Money leaves the platform only after the gateway accepts the transfer:

1. Admission: lock the ledger, check the available balance, create a
   PENDING PayoutRequest (reserves the amount against other requests)
2. Gateway: create_payout OUTSIDE any transaction, idempotency key
   derived from the payout id
3. Debit: lock the payout, debit the ledger, PENDING -> PROCESSING
   (or straight to COMPLETED if the gateway already reports it paid)

If the gateway refuses, the payout moves to FAILED and the ledger is
never touched. If the gateway is unreachable, the payout stays PENDING
and retry_pending_payouts re-submits it with the same idempotency key.
Once out of attempts, a payout is rejected only after one last submission
finds the gateway still unreachable.

Usage:
    from settlement.services import PayoutService

    result = PayoutService.request_payout(
        technician=request.user,
        amount=60000,
        method="upi",
        destination={"token": "ba_123", "upi_id": "tech@okbank"},
    )
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from django.conf import settings
from django.db import transaction

from django_fsm import TransitionNotAllowed

from core.services import ServiceResult

from settlement.exceptions import (
    GatewayError,
    GatewayRejectedError,
    InsufficientBalanceError,
    LockAcquisitionError,
)
from settlement.gateway import IdempotencyKeyGenerator
from settlement.locks import DistributedLock
from settlement.models import PayoutRequest
from settlement.services.base import SettlementService
from settlement.services.earnings_service import EarningsService
from settlement.state_machines import PayoutMethod, PayoutState

if TYPE_CHECKING:
    from django.contrib.auth.models import AbstractBaseUser


# Distributed lock TTL for one gateway submission (seconds)
PAYOUT_LOCK_TTL = 120

REQUIRED_DESTINATION_FIELDS = {
    PayoutMethod.BANK: ("token", "account_number", "ifsc", "account_holder_name"),
    PayoutMethod.UPI: ("token", "upi_id"),
}


def mask_destination(method: str, destination: dict[str, Any]) -> dict[str, Any]:
    """
    Keep only what is safe to display.

    Bank account numbers become ``****1234``. The holder name, IFSC code
    and UPI id are kept as-is.
    """
    if method == PayoutMethod.BANK:
        account_number = str(destination["account_number"])
        return {
            "account_number": f"****{account_number[-4:]}",
            "account_holder_name": destination["account_holder_name"],
            "ifsc": destination["ifsc"],
        }
    return {"upi_id": destination["upi_id"]}


class PayoutService(SettlementService):
    """
    Technician payouts.

    Error codes returned:
        INSUFFICIENT_BALANCE: Below threshold or above the available balance
        VALIDATION_ERROR: Unknown method or incomplete destination
        GATEWAY_REJECTED: Gateway refused the transfer (payout failed)
        LOCK_ACQUISITION_FAILED: Another worker is submitting this payout
    """

    # =========================================================================
    # Request
    # =========================================================================

    @classmethod
    def request_payout(
        cls,
        technician: AbstractBaseUser,
        amount: int,
        method: str,
        destination: dict[str, Any],
    ) -> ServiceResult[dict[str, Any]]:
        """
        Admit a payout against the technician's own ledger and submit it.

        Returns:
            ServiceResult with payout_id, status and amount. retry_pending is
            set while the payout is still pending because the gateway could
            not be reached; the submission will be retried.
        """
        logger = cls.get_logger()

        if method not in REQUIRED_DESTINATION_FIELDS:
            return ServiceResult.failure(
                f"Unsupported payout method '{method}'",
                error_code="VALIDATION_ERROR",
                errors={"method": [f"Must be one of: {', '.join(PayoutMethod.values)}"]},
            )

        missing = [
            name
            for name in REQUIRED_DESTINATION_FIELDS[method]
            if not (destination or {}).get(name)
        ]
        if missing:
            return ServiceResult.failure(
                "Payout destination is incomplete",
                error_code="VALIDATION_ERROR",
                errors={name: ["This field is required."] for name in missing},
            )

        if amount < settings.PAYOUT_MIN_THRESHOLD_PAISE:
            return ServiceResult.failure(
                f"Minimum payout is {settings.PAYOUT_MIN_THRESHOLD_PAISE} paise",
                error_code="INSUFFICIENT_BALANCE",
                details={
                    "required_paise": amount,
                    "min_payout_paise": settings.PAYOUT_MIN_THRESHOLD_PAISE,
                },
            )

        try:
            payout = cls._admit(technician, amount, method, destination)
        except InsufficientBalanceError as e:
            logger.info(
                "Payout refused: insufficient balance",
                extra={"technician_id": str(technician.pk), **e.details},
            )
            return ServiceResult.from_exception(e)

        logger.info(
            "Payout admitted",
            extra={
                "payout_id": str(payout.id),
                "technician_id": str(technician.pk),
                "amount_paise": amount,
                "method": method,
            },
        )
        return cls.submit(payout)

    @classmethod
    def _admit(
        cls,
        technician: AbstractBaseUser,
        amount: int,
        method: str,
        destination: dict[str, Any],
    ) -> PayoutRequest:
        with transaction.atomic():
            ledger = EarningsService._lock_ledger(technician)
            available = EarningsService.available_balance(technician, ledger=ledger)
            if amount > available:
                raise InsufficientBalanceError(
                    "Payout exceeds available earnings",
                    required=amount,
                    available=available,
                )

            return PayoutRequest.objects.create(
                technician=technician,
                amount_paise=amount,
                currency=ledger.currency,
                method=method,
                destination=mask_destination(method, destination),
                destination_token=destination["token"],
            )

    # =========================================================================
    # Submission (gateway first, debit after)
    # =========================================================================

    @classmethod
    def submit(
        cls, payout: PayoutRequest, final_attempt: bool = False
    ) -> ServiceResult[dict[str, Any]]:
        """
        Send a PENDING payout to the gateway and debit on acceptance.

        Safe to call repeatedly: the gateway idempotency key is fixed per
        payout and the debit entry key is ``payout:<payout_id>``. On the
        final attempt an unreachable gateway rejects the payout instead of
        leaving it pending.
        """
        logger = cls.get_logger()
        lock = DistributedLock(f"payout:{payout.id}", ttl=PAYOUT_LOCK_TTL, blocking=False)

        try:
            with lock:
                return cls._submit_locked(payout, final_attempt)
        except LockAcquisitionError as e:
            logger.info(
                "Payout submission already in progress",
                extra={"payout_id": str(payout.id)},
            )
            return ServiceResult.from_exception(e)

    @classmethod
    def _submit_locked(
        cls, payout: PayoutRequest, final_attempt: bool = False
    ) -> ServiceResult[dict[str, Any]]:
        logger = cls.get_logger()
        gateway = cls.get_gateway()

        payout = PayoutRequest.objects.get(id=payout.id)
        if payout.state != PayoutState.PENDING:
            return ServiceResult.success(cls._payload(payout, replayed=True))

        PayoutRequest.objects.filter(id=payout.id).update(
            submission_attempts=payout.submission_attempts + 1
        )
        payout.submission_attempts += 1

        try:
            result = gateway.create_payout(
                destination=payout.destination_token,
                amount=payout.amount_paise,
                idempotency_key=IdempotencyKeyGenerator.generate(
                    operation="payout",
                    entity_id=payout.id,
                ),
                metadata={
                    "payout_id": str(payout.id),
                    "technician_id": str(payout.technician_id),
                },
            )
        except GatewayRejectedError as e:
            logger.warning(
                "Gateway rejected payout",
                extra={"payout_id": str(payout.id), "error": e.message},
            )
            cls._reject(payout.id, e.message)
            return ServiceResult.from_exception(e)
        except GatewayError as e:
            if final_attempt:
                reason = (
                    f"Gateway unavailable after {payout.submission_attempts} attempts"
                )
                cls._reject(payout.id, reason)
                return ServiceResult.failure(reason, error_code="GATEWAY_UNAVAILABLE")
            logger.warning(
                "Gateway unavailable for payout, will retry",
                extra={
                    "payout_id": str(payout.id),
                    "submission_attempts": payout.submission_attempts,
                    "error": e.message,
                },
            )
            return ServiceResult.success(
                {**cls._payload(payout), "retry_pending": True}
            )

        if result.is_failed:
            reason = f"Gateway reported payout {result.id} as {result.status}"
            cls._reject(payout.id, reason)
            return ServiceResult.failure(reason, error_code="GATEWAY_REJECTED")

        with transaction.atomic():
            payout = PayoutRequest.objects.select_for_update().get(id=payout.id)
            if payout.state != PayoutState.PENDING:
                return ServiceResult.success(cls._payload(payout, replayed=True))

            EarningsService.debit_for_payout(payout)
            payout.accept(gateway_payout_id=result.id)
            if result.is_paid:
                payout.complete()
            payout.save()

        logger.info(
            "Payout accepted by gateway",
            extra={
                "payout_id": str(payout.id),
                "gateway_payout_id": result.id,
                "state": payout.state,
            },
        )
        return ServiceResult.success(cls._payload(payout))

    @classmethod
    def submit_pending(cls) -> dict[str, int]:
        """
        Re-submit PENDING payouts.

        A payout out of attempts gets one last submission with its original
        idempotency key. If an earlier timed-out call actually reached the
        gateway, that returns the accepted payout and it is debited as
        usual; it is rejected only if the gateway refuses or stays
        unreachable. Called by the retry_pending_payouts task.
        """
        stats = {"submitted": 0, "rejected": 0}
        max_attempts = settings.PAYOUT_MAX_SUBMISSION_ATTEMPTS

        for payout in PayoutRequest.objects.filter(state=PayoutState.PENDING).order_by(
            "created_at"
        ):
            final_attempt = payout.submission_attempts >= max_attempts
            result = cls.submit(payout, final_attempt=final_attempt)

            if not result.success and result.error_code in (
                "GATEWAY_REJECTED",
                "GATEWAY_UNAVAILABLE",
            ):
                stats["rejected"] += 1
            else:
                stats["submitted"] += 1

        return stats

    @classmethod
    def _reject(cls, payout_id, reason: str) -> None:
        with transaction.atomic():
            payout = PayoutRequest.objects.select_for_update().get(id=payout_id)
            if payout.state != PayoutState.PENDING:
                return
            payout.reject(reason)
            payout.save()

        cls.get_logger().info(
            "Payout rejected, ledger untouched",
            extra={"payout_id": str(payout_id), "reason": reason},
        )

    # =========================================================================
    # Gateway notifications
    # =========================================================================

    @classmethod
    def confirm_paid(cls, gateway_payout_id: str) -> ServiceResult[dict[str, Any]]:
        """Mark an accepted payout as paid (payout.paid webhook)."""
        with transaction.atomic():
            payout = (
                PayoutRequest.objects.select_for_update()
                .filter(gateway_payout_id=gateway_payout_id)
                .first()
            )
            if payout is None:
                return ServiceResult.failure(
                    f"No payout for gateway id {gateway_payout_id}",
                    error_code="NOT_FOUND",
                )
            if payout.state == PayoutState.COMPLETED:
                return ServiceResult.success(cls._payload(payout, replayed=True))

            try:
                payout.complete()
            except TransitionNotAllowed as e:
                return cls.transition_failure(payout, e)
            payout.save()

        cls.get_logger().info(
            "Payout completed",
            extra={"payout_id": str(payout.id), "gateway_payout_id": gateway_payout_id},
        )
        return ServiceResult.success(cls._payload(payout))

    @classmethod
    def reverse_failed(
        cls, gateway_payout_id: str, reason: str
    ) -> ServiceResult[dict[str, Any]]:
        """
        Handle a transfer that failed after acceptance (payout.failed webhook).

        The payout moves PROCESSING -> FAILED and a payout_reversal credit
        restores both ledger balances.
        """
        with transaction.atomic():
            payout = (
                PayoutRequest.objects.select_for_update()
                .filter(gateway_payout_id=gateway_payout_id)
                .first()
            )
            if payout is None:
                return ServiceResult.failure(
                    f"No payout for gateway id {gateway_payout_id}",
                    error_code="NOT_FOUND",
                )
            if payout.state == PayoutState.FAILED:
                return ServiceResult.success(cls._payload(payout, replayed=True))

            try:
                payout.bounce(reason)
            except TransitionNotAllowed as e:
                return cls.transition_failure(payout, e)
            payout.save()
            EarningsService.reverse_payout(payout)

        cls.get_logger().warning(
            "Payout bounced, earnings restored",
            extra={
                "payout_id": str(payout.id),
                "gateway_payout_id": gateway_payout_id,
                "reason": reason,
            },
        )
        return ServiceResult.success(cls._payload(payout))

    @staticmethod
    def _payload(payout: PayoutRequest, replayed: bool = False) -> dict[str, Any]:
        return {
            "payout_id": str(payout.id),
            "status": payout.state,
            "amount": payout.amount_paise,
            "method": payout.method,
            "gateway_payout_id": payout.gateway_payout_id,
            "replayed": replayed,
        }
