"""
RefundRecord model for cancelled bookings.

A refund record stores the policy split of a cancelled order between the
customer, the technician and the platform, and tracks the gateway refund
of the customer's share.
"""

from __future__ import annotations

from django.db import models
from django.db.models import F, Q
from django.utils import timezone

from django_fsm import FSMField, transition

from core.model_mixins import UUIDPrimaryKeyMixin, VersionedMixin
from core.models import BaseModel

from settlement.state_machines import RefundState, RefundType


class RefundRecord(UUIDPrimaryKeyMixin, VersionedMixin, BaseModel):
    """
    The refund for one payment order.

    State Flow:
        PENDING -> COMPLETED
        PENDING -> FAILED -> PENDING (retry)

    Fields:
        amount_paise: The order amount being split
        customer_refund_paise: Returned to the customer through the gateway
        technician_compensation_paise: Credited to the technician's earnings
        platform_fee_paise: Retained by the platform
        policy_reason: Which refund window applied

    Constraints:
        - customer + technician + platform shares equal the order amount
    """

    payment_order = models.OneToOneField(
        "settlement.PaymentOrder",
        on_delete=models.PROTECT,
        related_name="refund_record",
    )

    amount_paise = models.PositiveBigIntegerField()

    customer_refund_paise = models.PositiveBigIntegerField()

    technician_compensation_paise = models.PositiveBigIntegerField(default=0)

    platform_fee_paise = models.PositiveBigIntegerField(default=0)

    refund_type = models.CharField(
        max_length=10,
        choices=RefundType.choices,
    )

    state = FSMField(
        default=RefundState.PENDING,
        choices=RefundState.choices,
        db_index=True,
        protected=True,
    )

    gateway_refund_id = models.CharField(
        max_length=255,
        null=True,
        blank=True,
        unique=True,
        help_text="Gateway refund id (re_xxx)",
    )

    policy_reason = models.CharField(max_length=255, blank=True, default="")

    customer_reason = models.TextField(blank=True, default="")

    failure_reason = models.TextField(null=True, blank=True)

    completed_at = models.DateTimeField(null=True, blank=True)

    failed_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        ordering = ["-created_at"]
        verbose_name = "Refund Record"
        verbose_name_plural = "Refund Records"
        constraints = [
            models.CheckConstraint(
                condition=Q(
                    amount_paise=F("customer_refund_paise")
                    + F("technician_compensation_paise")
                    + F("platform_fee_paise")
                ),
                name="refund_record_split_sums_to_amount",
            ),
        ]

    def __str__(self) -> str:
        return f"RefundRecord({self.id}, {self.refund_type}, {self.state})"

    @transition(field=state, source=RefundState.PENDING, target=RefundState.COMPLETED)
    def complete(self, gateway_refund_id: str | None = None) -> None:
        if gateway_refund_id:
            self.gateway_refund_id = gateway_refund_id
        self.completed_at = timezone.now()
        self.failure_reason = None

    @transition(field=state, source=RefundState.PENDING, target=RefundState.FAILED)
    def fail(self, reason: str) -> None:
        self.failure_reason = reason
        self.failed_at = timezone.now()

    @transition(field=state, source=RefundState.FAILED, target=RefundState.PENDING)
    def retry(self) -> None:
        self.failed_at = None
