"""
CompletionRecord model: the service-completion code handshake.

When a technician finishes a job, a short numeric code is issued to the
customer. The technician enters it to prove the work was done, which
releases the escrowed payment into the technician's earnings.

Only a digest of the code is stored. The plain code is returned once,
at issue time, for delivery to the customer.
"""

from __future__ import annotations

from django.db import models
from django.utils import timezone

from django_fsm import FSMField, transition

from core.model_mixins import UUIDPrimaryKeyMixin, VersionedMixin
from core.models import BaseModel

from settlement.state_machines import CompletionState

OPEN_COMPLETION_STATES = [
    CompletionState.PENDING,
    CompletionState.OTP_ISSUED,
    CompletionState.OTP_VERIFIED,
]


class CompletionRecord(UUIDPrimaryKeyMixin, VersionedMixin, BaseModel):
    """
    One completion attempt for a booking.

    State Flow:
        PENDING -> OTP_ISSUED -> OTP_VERIFIED -> RELEASED
        OTP_ISSUED -> OTP_ISSUED (regenerated: new code, new deadline)
        OTP_ISSUED -> EXPIRED (deadline passed or attempts exhausted)

    A booking has at most one open record and at most one released
    record; both rules are partial unique constraints.

    Fields:
        booking: The booking being completed
        code_digest: HMAC digest of the current code
        expires_at: Deadline for the current code
        attempts_remaining: Wrong entries left before expiry
    """

    booking = models.ForeignKey(
        "settlement.Booking",
        on_delete=models.PROTECT,
        related_name="completion_records",
    )

    code_digest = models.CharField(
        max_length=64,
        blank=True,
        default="",
        help_text="HMAC-SHA256 digest of the completion code",
    )

    state = FSMField(
        default=CompletionState.PENDING,
        choices=CompletionState.choices,
        db_index=True,
        protected=True,
    )

    expires_at = models.DateTimeField(
        null=True,
        blank=True,
        db_index=True,
        help_text="When the current code stops being accepted",
    )

    attempts_remaining = models.PositiveSmallIntegerField(default=0)

    issued_at = models.DateTimeField(null=True, blank=True)

    verified_at = models.DateTimeField(null=True, blank=True)

    released_at = models.DateTimeField(null=True, blank=True)

    expired_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        ordering = ["-created_at"]
        verbose_name = "Completion Record"
        verbose_name_plural = "Completion Records"
        indexes = [
            models.Index(fields=["state", "expires_at"], name="completion_state_exp_idx"),
        ]
        constraints = [
            models.UniqueConstraint(
                fields=["booking"],
                condition=models.Q(state__in=OPEN_COMPLETION_STATES),
                name="completion_one_open_per_booking",
            ),
            models.UniqueConstraint(
                fields=["booking"],
                condition=models.Q(state=CompletionState.RELEASED),
                name="completion_one_release_per_booking",
            ),
        ]

    def __str__(self) -> str:
        return f"CompletionRecord({self.id}, {self.state})"

    def is_past_deadline(self, now=None) -> bool:
        if self.expires_at is None:
            return False
        return (now or timezone.now()) > self.expires_at

    # ==========================================================================
    # State Transitions (django-fsm)
    # ==========================================================================

    @transition(
        field=state,
        source=CompletionState.PENDING,
        target=CompletionState.OTP_ISSUED,
    )
    def issue(self, code_digest: str, expires_at, attempts: int) -> None:
        self.code_digest = code_digest
        self.expires_at = expires_at
        self.attempts_remaining = attempts
        self.issued_at = timezone.now()

    @transition(
        field=state,
        source=CompletionState.OTP_ISSUED,
        target=CompletionState.OTP_ISSUED,
    )
    def reissue(self, code_digest: str, expires_at, attempts: int) -> None:
        """Replace the code; the previous one stops working immediately."""
        self.code_digest = code_digest
        self.expires_at = expires_at
        self.attempts_remaining = attempts
        self.issued_at = timezone.now()

    @transition(
        field=state,
        source=CompletionState.OTP_ISSUED,
        target=CompletionState.OTP_VERIFIED,
    )
    def verify(self) -> None:
        self.verified_at = timezone.now()

    @transition(
        field=state,
        source=CompletionState.OTP_VERIFIED,
        target=CompletionState.RELEASED,
    )
    def release(self) -> None:
        self.released_at = timezone.now()

    @transition(
        field=state,
        source=CompletionState.OTP_ISSUED,
        target=CompletionState.EXPIRED,
    )
    def expire(self) -> None:
        self.attempts_remaining = 0
        self.expired_at = timezone.now()
