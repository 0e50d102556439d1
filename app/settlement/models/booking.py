"""
Booking model: the confirmed appointment created by a successful capture.
"""

from __future__ import annotations

from django.conf import settings
from django.db import models
from django.utils import timezone

from core.model_mixins import UUIDPrimaryKeyMixin, VersionedMixin
from core.models import BaseModel

from settlement.state_machines import BookingStatus


class Booking(UUIDPrimaryKeyMixin, VersionedMixin, BaseModel):
    """
    A confirmed service appointment between a customer and a technician.

    Bookings only exist for captured payments. The status column is a
    plain field rather than a state machine; settlement drives it through
    mark_completed() and mark_cancelled().
    """

    customer = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="customer_bookings",
    )

    technician = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="technician_bookings",
    )

    scheduled_for = models.DateTimeField(
        db_index=True,
        help_text="When the service is due to start",
    )

    address = models.TextField(blank=True, default="")

    description = models.TextField(blank=True, default="")

    status = models.CharField(
        max_length=20,
        choices=BookingStatus.choices,
        default=BookingStatus.CONFIRMED,
        db_index=True,
    )

    completed_at = models.DateTimeField(null=True, blank=True)

    cancelled_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        ordering = ["-created_at"]
        verbose_name = "Booking"
        verbose_name_plural = "Bookings"
        indexes = [
            models.Index(fields=["technician", "status"], name="booking_tech_status_idx"),
            models.Index(fields=["customer", "status"], name="booking_cust_status_idx"),
        ]

    def __str__(self) -> str:
        return f"Booking({self.id}, {self.status})"

    @property
    def is_confirmed(self) -> bool:
        return self.status == BookingStatus.CONFIRMED

    def mark_completed(self) -> None:
        """Note: Does not save - caller must save after calling."""
        self.status = BookingStatus.COMPLETED
        self.completed_at = timezone.now()

    def mark_cancelled(self) -> None:
        """Note: Does not save - caller must save after calling."""
        self.status = BookingStatus.CANCELLED
        self.cancelled_at = timezone.now()
