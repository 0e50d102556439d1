"""
State enums for settlement models.

These are Django TextChoices used by django-fsm state fields and by the
plain status columns that are not state machines.

State Machines Overview:

PaymentOrder States:
    pending → captured → released
    pending → failed
    captured → refunded

CompletionRecord States:
    pending → otp_issued → otp_verified → released
    otp_issued → otp_issued (code regenerated)
    otp_issued → expired

PayoutRequest States:
    pending → processing → completed
    pending → failed (gateway rejected, ledger untouched)
    processing → failed (transfer bounced, reversal credited)

RefundRecord States:
    pending → completed
    pending → failed
"""

from django.db import models


class PaymentOrderState(models.TextChoices):
    """
    States for the PaymentOrder lifecycle.

    Terminal states: RELEASED, REFUNDED, FAILED

    PENDING means authorized at the gateway but not yet captured; no
    booking exists. CAPTURED means money is held by the platform and the
    booking is confirmed.
    """

    PENDING = "pending", "Pending"
    CAPTURED = "captured", "Captured"
    RELEASED = "released", "Released"
    REFUNDED = "refunded", "Refunded"
    FAILED = "failed", "Failed"


class CompletionState(models.TextChoices):
    """
    States for the service-completion handshake.

    Terminal states: RELEASED, EXPIRED

    A booking can accumulate several EXPIRED records; each fresh code
    after expiry is a new record.
    """

    PENDING = "pending", "Pending"
    OTP_ISSUED = "otp_issued", "Code Issued"
    OTP_VERIFIED = "otp_verified", "Code Verified"
    RELEASED = "released", "Released"
    EXPIRED = "expired", "Expired"


class PayoutState(models.TextChoices):
    """
    States for the PayoutRequest lifecycle.

    Terminal states: COMPLETED, FAILED

    Only PROCESSING and COMPLETED payouts have been debited from the
    technician's ledger.
    """

    PENDING = "pending", "Pending"
    PROCESSING = "processing", "Processing"
    COMPLETED = "completed", "Completed"
    FAILED = "failed", "Failed"


class RefundState(models.TextChoices):
    """States for the RefundRecord lifecycle."""

    PENDING = "pending", "Pending"
    COMPLETED = "completed", "Completed"
    FAILED = "failed", "Failed"


class RefundType(models.TextChoices):
    FULL = "FULL", "Full"
    PARTIAL = "PARTIAL", "Partial"


class BookingStatus(models.TextChoices):
    CONFIRMED = "confirmed", "Confirmed"
    COMPLETED = "completed", "Completed"
    CANCELLED = "cancelled", "Cancelled"


class PayoutMethod(models.TextChoices):
    BANK = "bank", "Bank Transfer"
    UPI = "upi", "UPI"


class EarningsEntryType(models.TextChoices):
    """
    Kinds of movement recorded against a technician's earnings ledger.

    Credits: RELEASE_CREDIT, CANCELLATION_COMPENSATION, PAYOUT_REVERSAL
    Debits: PAYOUT_DEBIT
    """

    RELEASE_CREDIT = "release_credit", "Release Credit"
    CANCELLATION_COMPENSATION = "cancellation_compensation", "Cancellation Compensation"
    PAYOUT_DEBIT = "payout_debit", "Payout Debit"
    PAYOUT_REVERSAL = "payout_reversal", "Payout Reversal"


class WebhookEventStatus(models.TextChoices):
    """
    Processing status for WebhookEvent.

    State Flow:
        PENDING → PROCESSING → PROCESSED
        PENDING → PROCESSING → FAILED (can retry)
    """

    PENDING = "pending", "Pending"
    PROCESSING = "processing", "Processing"
    PROCESSED = "processed", "Processed"
    FAILED = "failed", "Failed"


__all__ = [
    "BookingStatus",
    "CompletionState",
    "EarningsEntryType",
    "PaymentOrderState",
    "PayoutMethod",
    "PayoutState",
    "RefundState",
    "RefundType",
    "WebhookEventStatus",
]
