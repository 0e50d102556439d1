"""
PaymentOrder model: one customer payment for one technician booking.

The order is created when the gateway authorizes the payment and becomes
the escrow record for the money until it is released to the technician's
earnings or refunded to the customer.

Usage:
    from settlement.models import PaymentOrder

    order = PaymentOrder.objects.create(
        customer=customer,
        technician=technician,
        amount_paise=50000,
        commission_paise=5000,
        technician_earnings_paise=45000,
        gateway_order_id="pi_123",
    )

    # State transitions using django-fsm
    order.capture(payment_id="ch_123", booking=booking)  # pending -> captured
    order.save()
"""

from __future__ import annotations

import uuid

from django.conf import settings
from django.db import models
from django.utils import timezone

from django_fsm import FSMField, transition

from core.model_mixins import UUIDPrimaryKeyMixin, VersionedMixin
from core.models import BaseModel

from settlement.state_machines import PaymentOrderState


def placeholder_booking_reference() -> str:
    """Reference used until capture creates the real booking."""
    return f"tmp_{uuid.uuid4().hex}"


class PaymentOrder(UUIDPrimaryKeyMixin, VersionedMixin, BaseModel):
    """
    Escrow record for a single booking payment.

    State Flow:
        PENDING -> CAPTURED -> RELEASED (service completed, earnings credited)
        PENDING -> FAILED (capture refused, authorization cancelled or expired)
        CAPTURED -> REFUNDED (booking cancelled inside a refund window)

    Fields:
        customer / technician: The two sides of the booking
        amount_paise: Amount charged to the customer
        commission_paise: Platform commission (rate x amount, capped)
        technician_earnings_paise: amount - commission
        state: Current FSM state
        booking_reference: Placeholder until capture, then the booking id
        booking: The booking created by a successful capture
        gateway_order_id: Gateway authorization id (PaymentIntent)
        gateway_payment_id: Client-reported payment id applied at capture
        metadata: Contact details and description captured at authorization

    Note:
        The commission split is fixed at authorization and enforced by a
        database check constraint.
    """

    # ==========================================================================
    # Parties
    # ==========================================================================

    customer = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="customer_payment_orders",
        help_text="User paying for the booking",
    )

    technician = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="technician_payment_orders",
        help_text="User who will perform the service",
    )

    # ==========================================================================
    # Amounts
    # ==========================================================================

    amount_paise = models.PositiveBigIntegerField(
        help_text="Order amount in paise",
    )

    commission_paise = models.PositiveBigIntegerField(
        help_text="Platform commission in paise",
    )

    technician_earnings_paise = models.PositiveBigIntegerField(
        help_text="Amount credited to the technician on release, in paise",
    )

    currency = models.CharField(
        max_length=3,
        default="inr",
        help_text="ISO 4217 currency code (lowercase)",
    )

    # ==========================================================================
    # State & Booking Link
    # ==========================================================================

    state = FSMField(
        default=PaymentOrderState.PENDING,
        choices=PaymentOrderState.choices,
        db_index=True,
        protected=True,
        help_text="Current state of the payment order (managed by FSM)",
    )

    booking_reference = models.CharField(
        max_length=64,
        default=placeholder_booking_reference,
        db_index=True,
        help_text="Temporary reference until capture, then the booking id",
    )

    booking = models.OneToOneField(
        "settlement.Booking",
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="payment_order",
        help_text="Booking created when the payment was captured",
    )

    # ==========================================================================
    # Gateway Integration
    # ==========================================================================

    gateway_order_id = models.CharField(
        max_length=255,
        unique=True,
        help_text="Gateway authorization id (Stripe PaymentIntent pi_xxx)",
    )

    gateway_payment_id = models.CharField(
        max_length=255,
        null=True,
        blank=True,
        unique=True,
        help_text="Payment id confirmed by the client and applied at capture",
    )

    # ==========================================================================
    # State Timestamps
    # ==========================================================================

    authorized_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When the gateway reported the payment as capturable",
    )

    captured_at = models.DateTimeField(null=True, blank=True)

    released_at = models.DateTimeField(null=True, blank=True)

    refunded_at = models.DateTimeField(null=True, blank=True)

    failed_at = models.DateTimeField(null=True, blank=True)

    # ==========================================================================
    # Metadata & Error Info
    # ==========================================================================

    metadata = models.JSONField(
        default=dict,
        blank=True,
        help_text="Contact details and service description from checkout",
    )

    failure_reason = models.TextField(
        null=True,
        blank=True,
        help_text="Why the payment failed",
    )

    class Meta:
        ordering = ["-created_at"]
        verbose_name = "Payment Order"
        verbose_name_plural = "Payment Orders"
        indexes = [
            models.Index(fields=["customer", "state"], name="order_cust_state_idx"),
            models.Index(fields=["technician", "state"], name="order_tech_state_idx"),
            models.Index(fields=["state", "created_at"], name="order_state_created_idx"),
        ]
        constraints = [
            models.CheckConstraint(
                condition=models.Q(amount_paise__gt=0),
                name="payment_order_amount_positive",
            ),
            models.CheckConstraint(
                condition=models.Q(
                    technician_earnings_paise=models.F("amount_paise")
                    - models.F("commission_paise")
                ),
                name="payment_order_earnings_split",
            ),
        ]

    def __str__(self) -> str:
        amount_display = f"{self.amount_paise / 100:.2f} {self.currency.upper()}"
        return f"PaymentOrder({self.id}, {self.state}, {amount_display})"

    @property
    def has_placeholder_booking(self) -> bool:
        return self.booking_reference.startswith("tmp_")

    # ==========================================================================
    # State Transitions (django-fsm)
    # ==========================================================================

    @transition(
        field=state,
        source=PaymentOrderState.PENDING,
        target=PaymentOrderState.CAPTURED,
    )
    def capture(self, payment_id: str, booking) -> None:
        """
        Record a successful gateway capture.

        Transition: PENDING -> CAPTURED

        Swaps the placeholder booking reference for the real booking.
        """
        self.gateway_payment_id = payment_id
        self.booking = booking
        self.booking_reference = str(booking.id)
        self.captured_at = timezone.now()

    @transition(
        field=state,
        source=PaymentOrderState.PENDING,
        target=PaymentOrderState.FAILED,
    )
    def fail(self, reason: str | None = None) -> None:
        """
        Mark the payment as failed.

        Transition: PENDING -> FAILED

        No booking exists for a failed order.
        """
        self.failed_at = timezone.now()
        if reason:
            self.failure_reason = reason

    @transition(
        field=state,
        source=PaymentOrderState.CAPTURED,
        target=PaymentOrderState.RELEASED,
    )
    def release(self) -> None:
        """
        Release escrowed funds after verified service completion.

        Transition: CAPTURED -> RELEASED
        """
        self.released_at = timezone.now()

    @transition(
        field=state,
        source=PaymentOrderState.CAPTURED,
        target=PaymentOrderState.REFUNDED,
    )
    def refund(self) -> None:
        """
        Mark the payment as refunded after a cancellation.

        Transition: CAPTURED -> REFUNDED
        """
        self.refunded_at = timezone.now()
