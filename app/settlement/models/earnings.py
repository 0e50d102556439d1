"""
Earnings ledger models.

This module defines the technician-side money records:
- EarningsLedger: One row per technician with running balances
- EarningsEntry: Append-only journal of every change to those balances

The ledger row is the only place that decides whether a payout can be
paid; every change to it goes through EarningsService under a row lock
and writes exactly one entry keyed by an idempotency key.

Usage:
    from settlement.models import EarningsLedger

    ledger = EarningsLedger.objects.get(technician=user)
    ledger.pending_payout_paise  # Amount not yet paid out
"""

from __future__ import annotations

from django.conf import settings
from django.db import models
from django.db.models import Q

from core.model_mixins import UUIDPrimaryKeyMixin, VersionedMixin
from core.models import BaseModel

from settlement.state_machines import EarningsEntryType


class EarningsLedger(UUIDPrimaryKeyMixin, VersionedMixin, BaseModel):
    """
    Running balances for one technician.

    Fields:
        technician: Owner of the ledger
        total_earnings_paise: Lifetime credits, net of payout reversals
        pending_payout_paise: Earned but not yet paid out

    Constraints:
        - Both balances are non-negative
    """

    technician = models.OneToOneField(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="earnings_ledger",
    )

    total_earnings_paise = models.BigIntegerField(
        default=0,
        help_text="Lifetime earnings credited, in paise",
    )

    pending_payout_paise = models.BigIntegerField(
        default=0,
        help_text="Earnings awaiting payout, in paise",
    )

    currency = models.CharField(max_length=3, default="inr")

    class Meta:
        verbose_name = "Earnings Ledger"
        verbose_name_plural = "Earnings Ledgers"
        constraints = [
            models.CheckConstraint(
                condition=Q(total_earnings_paise__gte=0),
                name="earnings_ledger_total_non_negative",
            ),
            models.CheckConstraint(
                condition=Q(pending_payout_paise__gte=0),
                name="earnings_ledger_pending_non_negative",
            ),
        ]

    def __str__(self) -> str:
        return f"EarningsLedger({self.technician_id}, pending={self.pending_payout_paise})"


class EarningsEntry(UUIDPrimaryKeyMixin, models.Model):
    """
    One movement on an earnings ledger.

    Entries are immutable once created. Credits carry a positive amount,
    payout debits a negative one. balance_after_paise is the ledger's
    pending payout balance right after the entry was applied.

    Example:
        EarningsEntry.objects.create(
            ledger=ledger,
            entry_type=EarningsEntryType.RELEASE_CREDIT,
            amount_paise=45000,
            balance_after_paise=45000,
            idempotency_key=f"release:{order.id}",
            payment_order=order,
        )
    """

    created_at = models.DateTimeField(auto_now_add=True, db_index=True)

    ledger = models.ForeignKey(
        EarningsLedger,
        on_delete=models.PROTECT,
        related_name="entries",
    )

    entry_type = models.CharField(
        max_length=50,
        choices=EarningsEntryType.choices,
    )

    amount_paise = models.BigIntegerField(
        help_text="Signed amount in paise (credits positive, debits negative)",
    )

    balance_after_paise = models.BigIntegerField(
        help_text="Pending payout balance after this entry",
    )

    idempotency_key = models.CharField(
        max_length=255,
        unique=True,
        help_text="Unique key to prevent duplicate entries",
    )

    payment_order = models.ForeignKey(
        "settlement.PaymentOrder",
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="earnings_entries",
    )

    payout = models.ForeignKey(
        "settlement.PayoutRequest",
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="earnings_entries",
    )

    refund = models.ForeignKey(
        "settlement.RefundRecord",
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="earnings_entries",
    )

    description = models.CharField(max_length=255, blank=True, default="")

    class Meta:
        ordering = ["-created_at"]
        verbose_name = "Earnings Entry"
        verbose_name_plural = "Earnings Entries"
        indexes = [
            models.Index(fields=["ledger", "created_at"], name="entry_ledger_created_idx"),
            models.Index(fields=["entry_type"], name="entry_type_idx"),
        ]
        constraints = [
            models.CheckConstraint(
                condition=~Q(amount_paise=0),
                name="earnings_entry_amount_non_zero",
            ),
        ]

    def __str__(self) -> str:
        return f"{self.get_entry_type_display()}: {self.amount_paise} paise"

    def save(self, *args, **kwargs):
        if not self._state.adding:
            raise ValueError("Earnings entries are immutable")
        super().save(*args, **kwargs)
