"""
Earnings service: the only code that changes technician balances.

Every mutation:
1. Runs inside transaction.atomic() (joining the caller's transaction)
2. Locks the technician's EarningsLedger row with select_for_update()
3. Checks the idempotency key under the lock
4. Appends exactly one EarningsEntry and updates the balances

Replaying a mutation with the same idempotency key returns the existing
entry and leaves the balances untouched.

Usage:
    from settlement.services import EarningsService

    EarningsService.credit(
        technician=order.technician,
        amount=order.technician_earnings_paise,
        entry_type=EarningsEntryType.RELEASE_CREDIT,
        idempotency_key=f"release:{order.id}",
        payment_order=order,
    )
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from django.db import IntegrityError, transaction
from django.db.models import Sum

from core.services import BaseService

from settlement.exceptions import InsufficientBalanceError
from settlement.models import EarningsEntry, EarningsLedger, PayoutRequest
from settlement.state_machines import EarningsEntryType, PayoutState

if TYPE_CHECKING:
    from django.contrib.auth.models import AbstractBaseUser


@dataclass
class LedgerMutation:
    """
    Outcome of a ledger mutation.

    Attributes:
        entry: The entry written (or found, on replay)
        replayed: True if the idempotency key had already been applied
    """

    entry: EarningsEntry
    replayed: bool = False


class EarningsService(BaseService):
    """
    Row-locked, idempotent mutations of technician earnings.

    Balances:
        total_earnings_paise: Credits (release, compensation) minus payouts
            paid out, plus reversals of bounced payouts
        pending_payout_paise: The part of the earnings not yet paid out
    """

    @classmethod
    def get_or_create_ledger(cls, technician: AbstractBaseUser) -> EarningsLedger:
        ledger, created = EarningsLedger.objects.get_or_create(technician=technician)
        if created:
            cls.get_logger().info(
                "Created earnings ledger",
                extra={"technician_id": str(technician.pk), "ledger_id": str(ledger.id)},
            )
        return ledger

    @classmethod
    def _lock_ledger(cls, technician: AbstractBaseUser) -> EarningsLedger:
        cls.get_or_create_ledger(technician)
        return EarningsLedger.objects.select_for_update().get(technician=technician)

    @classmethod
    def reserved_for_payouts(cls, technician: AbstractBaseUser) -> int:
        """Sum of payouts admitted but not yet debited."""
        return (
            PayoutRequest.objects.filter(
                technician=technician,
                state=PayoutState.PENDING,
            ).aggregate(total=Sum("amount_paise"))["total"]
            or 0
        )

    @classmethod
    def available_balance(
        cls, technician: AbstractBaseUser, ledger: EarningsLedger | None = None
    ) -> int:
        """
        Balance that a new payout may draw on.

        pending_payout minus payouts still PENDING (admitted, not debited).
        Callers that need a consistent answer pass a locked ledger.
        """
        ledger = ledger or cls.get_or_create_ledger(technician)
        return max(0, ledger.pending_payout_paise - cls.reserved_for_payouts(technician))

    @classmethod
    def credit(
        cls,
        technician: AbstractBaseUser,
        amount: int,
        entry_type: str,
        idempotency_key: str,
        description: str = "",
        payment_order=None,
        payout=None,
        refund=None,
    ) -> LedgerMutation:
        """
        Add ``amount`` paise to both balances.

        Args:
            entry_type: RELEASE_CREDIT, CANCELLATION_COMPENSATION or
                PAYOUT_REVERSAL
        """
        if amount <= 0:
            raise ValueError("Credit amount must be positive")

        return cls._apply(
            technician,
            amount,
            entry_type,
            idempotency_key,
            description=description,
            payment_order=payment_order,
            payout=payout,
            refund=refund,
        )

    @classmethod
    def debit_for_payout(cls, payout: PayoutRequest) -> LedgerMutation:
        """
        Remove a confirmed payout's amount from both balances.

        Raises:
            InsufficientBalanceError: If the debit would take a balance
                below zero (the ledger is left unchanged)
        """
        return cls._apply(
            payout.technician,
            -payout.amount_paise,
            EarningsEntryType.PAYOUT_DEBIT,
            f"payout:{payout.id}",
            description=f"Payout {payout.id}",
            payout=payout,
        )

    @classmethod
    def reverse_payout(cls, payout: PayoutRequest) -> LedgerMutation:
        """Restore a bounced payout's amount to both balances."""
        return cls.credit(
            payout.technician,
            payout.amount_paise,
            EarningsEntryType.PAYOUT_REVERSAL,
            f"payout-reversal:{payout.id}",
            description=f"Reversal of failed payout {payout.id}",
            payout=payout,
        )

    @classmethod
    def _apply(
        cls,
        technician: AbstractBaseUser,
        signed_amount: int,
        entry_type: str,
        idempotency_key: str,
        **links,
    ) -> LedgerMutation:
        logger = cls.get_logger()

        with transaction.atomic():
            ledger = cls._lock_ledger(technician)

            # Idempotency check under the ledger lock
            existing = EarningsEntry.objects.filter(idempotency_key=idempotency_key).first()
            if existing is not None:
                logger.info(
                    "Ledger mutation already applied",
                    extra={"idempotency_key": idempotency_key, "entry_id": str(existing.id)},
                )
                return LedgerMutation(entry=existing, replayed=True)

            new_total = ledger.total_earnings_paise + signed_amount
            new_pending = ledger.pending_payout_paise + signed_amount
            if new_total < 0 or new_pending < 0:
                raise InsufficientBalanceError(
                    "Earnings balance is too low for this debit",
                    required=-signed_amount,
                    available=ledger.pending_payout_paise,
                )

            try:
                with transaction.atomic():
                    entry = EarningsEntry.objects.create(
                        ledger=ledger,
                        entry_type=entry_type,
                        amount_paise=signed_amount,
                        balance_after_paise=new_pending,
                        idempotency_key=idempotency_key,
                        description=links.pop("description", "") or "",
                        **links,
                    )
            except IntegrityError:
                # Another ledger wrote this key between our check and insert
                entry = EarningsEntry.objects.get(idempotency_key=idempotency_key)
                return LedgerMutation(entry=entry, replayed=True)

            ledger.total_earnings_paise = new_total
            ledger.pending_payout_paise = new_pending
            ledger.save(
                update_fields=["total_earnings_paise", "pending_payout_paise", "updated_at"]
            )

        logger.info(
            "Ledger mutation applied",
            extra={
                "technician_id": str(technician.pk),
                "entry_type": entry_type,
                "amount_paise": signed_amount,
                "pending_payout_paise": new_pending,
                "idempotency_key": idempotency_key,
            },
        )
        return LedgerMutation(entry=entry)
