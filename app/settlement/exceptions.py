"""
Settlement-specific exceptions.

Exception Hierarchy:
    SettlementError (base for the settlement domain)
    ├── InvalidAmountError - Order amount outside configured bounds
    ├── SignatureMismatchError - Client confirmation failed HMAC check
    ├── CaptureFailedError - Gateway refused or did not confirm the capture
    ├── OtpExpiredOrExhaustedError - Completion code expired or out of attempts
    ├── RefundWindowClosedError - Cancellation too close to service start
    └── InsufficientBalanceError - Payout exceeds available earnings

    GatewayError (inherits ExternalServiceError)
    ├── GatewayUnavailableError - Transient: timeout, rate limit, 5xx (retry)
    └── GatewayRejectedError - Permanent refusal (do not retry)

    LockAcquisitionError - Distributed lock contention (inherits ConflictError)
    InvalidStateTransitionError - FSM transition not allowed (inherits ConflictError)

Usage:
    from settlement.exceptions import GatewayError, GatewayUnavailableError

    try:
        StripeGateway.capture(...)
    except GatewayError as e:
        if e.is_retryable:
            leave_pending_for_retry()
        else:
            mark_failed(e.message)

Note:
    Replaying an already-applied operation is not an error. Services
    return the prior outcome with ``replayed=True`` instead.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from core.exceptions import BaseApplicationError, ConflictError, ExternalServiceError

if TYPE_CHECKING:
    from typing import Any


# =============================================================================
# Settlement Domain Exceptions
# =============================================================================


class SettlementError(BaseApplicationError):
    """Base exception for all settlement operations."""

    default_error_code: str = "SETTLEMENT_ERROR"


class InvalidAmountError(SettlementError):
    """
    Raised when an order amount is outside the configured bounds.

    Example:
        raise InvalidAmountError(
            "Amount must be between 10000 and 10000000 paise",
            details={"amount_paise": 500},
        )
    """

    default_error_code: str = "INVALID_AMOUNT"


class SignatureMismatchError(SettlementError):
    """
    Raised when a client-reported payment confirmation fails verification.

    Nothing is read or written once this is raised; the request never
    proceeds to capture.
    """

    default_error_code: str = "SIGNATURE_MISMATCH"


class CaptureFailedError(SettlementError):
    """The order is terminally failed and no booking was created."""

    default_error_code: str = "CAPTURE_FAILED"


class OtpExpiredOrExhaustedError(SettlementError):
    """
    Raised when a completion code can no longer be used.

    Terminal for that completion record; the customer must request a
    fresh code, which starts a new record.
    """

    default_error_code: str = "OTP_EXPIRED_OR_EXHAUSTED"


class RefundWindowClosedError(SettlementError):
    """
    Raised when a cancellation falls outside every refund window.

    A policy rejection rather than a fault. No refund record is created.
    """

    default_error_code: str = "REFUND_WINDOW_CLOSED"


class InsufficientBalanceError(SettlementError):
    """
    Raised when a payout exceeds the technician's available balance
    or is below the payout threshold.

    Attributes:
        required: Amount requested in paise
        available: Amount that could be paid out in paise
    """

    default_error_code: str = "INSUFFICIENT_BALANCE"

    def __init__(
        self,
        message: str,
        required: int,
        available: int,
        error_code: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        self.required = required
        self.available = available
        full_details = {
            "required_paise": required,
            "available_paise": available,
        }
        if details:
            full_details.update(details)
        super().__init__(message, error_code=error_code, details=full_details)


# =============================================================================
# Gateway Exceptions
# =============================================================================


class GatewayError(ExternalServiceError):
    """
    Base exception for payment gateway failures.

    Attributes:
        gateway_code: The gateway's own error code, if it sent one
        is_retryable: Whether the same call may succeed if repeated
    """

    default_error_code: str = "GATEWAY_ERROR"
    is_retryable: bool = False

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        gateway_code: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        details = details or {}
        if gateway_code:
            details["gateway_code"] = gateway_code
        super().__init__(message, error_code=error_code, details=details)
        self.gateway_code = gateway_code


class GatewayUnavailableError(GatewayError):
    """
    Transient gateway failure: timeout, connection error, rate limit or 5xx.

    Raised only after the adapter's local retries are exhausted. The
    operation was not confirmed, so callers leave the entity pending and
    flag the result retry_pending.
    """

    default_error_code: str = "GATEWAY_UNAVAILABLE"
    is_retryable: bool = True


class GatewayRejectedError(GatewayError):
    """
    Permanent gateway refusal: declined card, invalid request, bad credentials.

    Attributes:
        decline_code: Card decline code if the gateway supplied one
    """

    default_error_code: str = "GATEWAY_REJECTED"
    is_retryable: bool = False

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        gateway_code: str | None = None,
        decline_code: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        details = details or {}
        if decline_code:
            details["decline_code"] = decline_code
        super().__init__(
            message, error_code=error_code, gateway_code=gateway_code, details=details
        )
        self.decline_code = decline_code


# =============================================================================
# Concurrency Control Exceptions
# =============================================================================


class LockAcquisitionError(ConflictError):
    """
    Raised when a distributed lock cannot be acquired.

    Periodic sweeps treat this as "another worker is already on it".
    """

    default_error_code: str = "LOCK_ACQUISITION_FAILED"


class InvalidStateTransitionError(ConflictError):
    """
    Raised when a state machine transition is not allowed.

    Wraps django-fsm's TransitionNotAllowed with the standard error format.
    """

    default_error_code: str = "INVALID_STATE_TRANSITION"


__all__ = [
    "CaptureFailedError",
    "GatewayError",
    "GatewayRejectedError",
    "GatewayUnavailableError",
    "InsufficientBalanceError",
    "InvalidAmountError",
    "InvalidStateTransitionError",
    "LockAcquisitionError",
    "OtpExpiredOrExhaustedError",
    "RefundWindowClosedError",
    "SettlementError",
    "SignatureMismatchError",
]
