"""
Refund calculator.

compute_refund() decides how a cancelled order's amount is split
between the customer, the technician and the platform. It is a pure
function of the amount and three timestamps; callers supply "now".

Windows, evaluated in order:
    1. Cancelled within REFUND_FULL_WINDOW of booking: full refund
    2. At least REFUND_PARTIAL_WINDOW before service: refund minus a
       cancellation fee shared by technician and platform
    3. Otherwise: rejected

Usage:
    from settlement.refund_policy import compute_refund, RefundRejection

    outcome = compute_refund(50000, booked_at, service_at, timezone.now())
    if isinstance(outcome, RefundRejection):
        return ServiceResult.failure(outcome.reason, error_code="REFUND_WINDOW_CLOSED")
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import ROUND_FLOOR, Decimal

from django.conf import settings

from settlement.commission import round_half_up
from settlement.state_machines import RefundType

TOO_CLOSE_TO_SERVICE = "too close to service start"


@dataclass(frozen=True)
class RefundBreakdown:
    """
    An allowed refund.

    customer_refund + technician_compensation + platform_fee == amount
    """

    amount: int
    customer_refund: int
    technician_compensation: int
    platform_fee: int
    refund_type: str
    reason: str

    def to_dict(self) -> dict:
        return {
            "allowed": True,
            "refund_type": self.refund_type,
            "amount_paise": self.amount,
            "customer_refund_paise": self.customer_refund,
            "technician_compensation_paise": self.technician_compensation,
            "platform_fee_paise": self.platform_fee,
            "reason": self.reason,
        }


@dataclass(frozen=True)
class RefundRejection:
    reason: str

    def to_dict(self) -> dict:
        return {"allowed": False, "reason": self.reason}


def compute_refund(
    amount: int,
    booked_at: datetime,
    service_at: datetime,
    cancelled_at: datetime,
) -> RefundBreakdown | RefundRejection:
    """
    Compute the refund split for a cancellation.

    Args:
        amount: Order amount in paise
        booked_at: When the booking was made
        service_at: When the service is scheduled to start
        cancelled_at: When the customer cancelled

    Returns:
        RefundBreakdown if a refund is allowed, RefundRejection otherwise.
        Any rounding remainder is assigned to the platform fee.

    Example:
        compute_refund(50000, t0, t0 + timedelta(hours=10), t0 + timedelta(hours=5))
        # RefundBreakdown(customer_refund=40000, technician_compensation=5000,
        #                 platform_fee=5000, refund_type="PARTIAL", ...)
    """
    if cancelled_at - booked_at <= settings.REFUND_FULL_WINDOW:
        return RefundBreakdown(
            amount=amount,
            customer_refund=amount,
            technician_compensation=0,
            platform_fee=0,
            refund_type=RefundType.FULL,
            reason="cancelled within the full refund window",
        )

    if service_at - cancelled_at >= settings.REFUND_PARTIAL_WINDOW:
        fee_rate = Decimal(str(settings.CANCELLATION_FEE_RATE))
        technician_share = Decimal(str(settings.CANCELLATION_FEE_TECHNICIAN_SHARE))

        fee = round_half_up(Decimal(amount) * fee_rate)
        customer_refund = amount - fee
        technician_compensation = int(
            (Decimal(fee) * technician_share).to_integral_value(rounding=ROUND_FLOOR)
        )
        platform_fee = amount - customer_refund - technician_compensation

        return RefundBreakdown(
            amount=amount,
            customer_refund=customer_refund,
            technician_compensation=technician_compensation,
            platform_fee=platform_fee,
            refund_type=RefundType.PARTIAL,
            reason="cancelled before the service start cutoff",
        )

    return RefundRejection(reason=TOO_CLOSE_TO_SERVICE)
