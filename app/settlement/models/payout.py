"""
PayoutRequest model for technician withdrawals.

A payout moves money from a technician's pending earnings to their bank
account or UPI handle through the gateway.

Usage:
    from settlement.models import PayoutRequest

    payout = PayoutRequest.objects.create(
        technician=user,
        amount_paise=60000,
        method=PayoutMethod.BANK,
        destination={"account_number": "XXXXXX1234", "ifsc": "HDFC0001234"},
        destination_token="ba_123",
    )

    # After the gateway accepts the transfer
    payout.accept(gateway_payout_id="po_123")  # pending -> processing
    payout.save()
"""

from __future__ import annotations

from django.conf import settings
from django.db import models
from django.db.models import Q
from django.utils import timezone

from django_fsm import FSMField, transition

from core.model_mixins import UUIDPrimaryKeyMixin, VersionedMixin
from core.models import BaseModel

from settlement.state_machines import PayoutMethod, PayoutState


class PayoutRequest(UUIDPrimaryKeyMixin, VersionedMixin, BaseModel):
    """
    A technician's request to withdraw earnings.

    State Flow:
        PENDING -> PROCESSING -> COMPLETED
        PENDING -> FAILED (gateway rejected; ledger never debited)
        PROCESSING -> FAILED (transfer bounced; debit reversed)

    The ledger debit is applied in the same transaction as the
    PENDING -> PROCESSING transition, so only PROCESSING and COMPLETED
    payouts have touched the ledger.

    Fields:
        destination: Masked account details for display
        destination_token: Gateway reference for the destination account
        submission_attempts: Gateway submissions tried so far
    """

    technician = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="payout_requests",
    )

    amount_paise = models.PositiveBigIntegerField(
        help_text="Payout amount in paise",
    )

    currency = models.CharField(max_length=3, default="inr")

    method = models.CharField(
        max_length=10,
        choices=PayoutMethod.choices,
    )

    destination = models.JSONField(
        default=dict,
        blank=True,
        help_text="Masked destination details (never full account numbers)",
    )

    destination_token = models.CharField(
        max_length=255,
        help_text="Gateway destination reference (external account id)",
    )

    state = FSMField(
        default=PayoutState.PENDING,
        choices=PayoutState.choices,
        db_index=True,
        protected=True,
    )

    gateway_payout_id = models.CharField(
        max_length=255,
        null=True,
        blank=True,
        unique=True,
        help_text="Gateway payout id (po_xxx)",
    )

    submission_attempts = models.PositiveSmallIntegerField(default=0)

    failure_reason = models.TextField(null=True, blank=True)

    processed_at = models.DateTimeField(null=True, blank=True)

    completed_at = models.DateTimeField(null=True, blank=True)

    failed_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        ordering = ["-created_at"]
        verbose_name = "Payout Request"
        verbose_name_plural = "Payout Requests"
        indexes = [
            models.Index(fields=["technician", "state"], name="payout_tech_state_idx"),
            models.Index(fields=["state", "created_at"], name="payout_state_created_idx"),
        ]
        constraints = [
            models.CheckConstraint(
                condition=Q(amount_paise__gt=0),
                name="payout_request_amount_positive",
            ),
        ]

    def __str__(self) -> str:
        return f"PayoutRequest({self.id}, {self.state}, {self.amount_paise} paise)"

    # ==========================================================================
    # State Transitions (django-fsm)
    # ==========================================================================

    @transition(field=state, source=PayoutState.PENDING, target=PayoutState.PROCESSING)
    def accept(self, gateway_payout_id: str) -> None:
        """
        Gateway accepted the transfer.

        Transition: PENDING -> PROCESSING
        """
        self.gateway_payout_id = gateway_payout_id
        self.processed_at = timezone.now()
        self.failure_reason = None

    @transition(field=state, source=PayoutState.PROCESSING, target=PayoutState.COMPLETED)
    def complete(self) -> None:
        """
        Gateway reported the transfer as paid.

        Transition: PROCESSING -> COMPLETED
        """
        self.completed_at = timezone.now()

    @transition(field=state, source=PayoutState.PENDING, target=PayoutState.FAILED)
    def reject(self, reason: str) -> None:
        """
        Gateway refused the transfer before any money moved.

        Transition: PENDING -> FAILED
        """
        self.failure_reason = reason
        self.failed_at = timezone.now()

    @transition(field=state, source=PayoutState.PROCESSING, target=PayoutState.FAILED)
    def bounce(self, reason: str) -> None:
        """
        Accepted transfer failed later (for example a closed account).

        Transition: PROCESSING -> FAILED
        """
        self.failure_reason = reason
        self.failed_at = timezone.now()
