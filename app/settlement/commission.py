"""
Commission engine.

Pure functions that split an order amount between the platform and the
technician. All amounts are integer paise; the rate is a Decimal so the
result is exact and rounds half up.

Usage:
    from settlement.commission import split_amount, validate_order_amount

    validate_order_amount(50000)
    split = split_amount(50000)
    split.commission           # 5000
    split.technician_earnings  # 45000

Note:
    Rate, cap and order bounds come from Django settings
    (COMMISSION_RATE, COMMISSION_CAP_PAISE, ORDER_MIN_AMOUNT_PAISE,
    ORDER_MAX_AMOUNT_PAISE).
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal

from django.conf import settings

from settlement.exceptions import InvalidAmountError


@dataclass(frozen=True)
class CommissionSplit:
    """
    Result of splitting an order amount.

    Attributes:
        amount: Order amount in paise
        commission: Platform commission in paise
        technician_earnings: amount - commission
    """

    amount: int
    commission: int
    technician_earnings: int

    def to_dict(self) -> dict[str, int]:
        return {
            "amount_paise": self.amount,
            "commission_paise": self.commission,
            "technician_earnings_paise": self.technician_earnings,
        }


def round_half_up(value: Decimal) -> int:
    """Round a Decimal to the nearest integer, halves away from zero."""
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def _require_paise(amount) -> None:
    # bool is an int subclass; True would otherwise pass as 1 paisa
    if isinstance(amount, bool) or not isinstance(amount, int):
        raise InvalidAmountError(
            "Amount must be an integer number of paise",
            details={"amount": repr(amount)},
        )


def calculate_commission(amount: int) -> int:
    """
    Calculate the platform commission for an order amount.

    commission = min(round_half_up(amount x COMMISSION_RATE), COMMISSION_CAP_PAISE)

    Example:
        calculate_commission(50000)   # 5000
        calculate_commission(500000)  # 20000 (capped)
    """
    _require_paise(amount)
    rate = Decimal(str(settings.COMMISSION_RATE))
    return min(round_half_up(Decimal(amount) * rate), settings.COMMISSION_CAP_PAISE)


def calculate_technician_earnings(amount: int) -> int:
    return amount - calculate_commission(amount)


def split_amount(amount: int) -> CommissionSplit:
    commission = calculate_commission(amount)
    return CommissionSplit(
        amount=amount,
        commission=commission,
        technician_earnings=amount - commission,
    )


def validate_order_amount(amount) -> None:
    """
    Check an order amount against the configured bounds.

    Raises:
        InvalidAmountError: If the amount is not an integer or falls
            outside ORDER_MIN_AMOUNT_PAISE..ORDER_MAX_AMOUNT_PAISE
    """
    _require_paise(amount)
    minimum = settings.ORDER_MIN_AMOUNT_PAISE
    maximum = settings.ORDER_MAX_AMOUNT_PAISE
    if not minimum <= amount <= maximum:
        raise InvalidAmountError(
            f"Amount must be between {minimum} and {maximum} paise",
            details={
                "amount_paise": amount,
                "min_paise": minimum,
                "max_paise": maximum,
            },
        )
