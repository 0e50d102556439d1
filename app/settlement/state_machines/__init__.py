"""
State machine enums for settlement models.
"""

from settlement.state_machines.states import (
    BookingStatus,
    CompletionState,
    EarningsEntryType,
    PaymentOrderState,
    PayoutMethod,
    PayoutState,
    RefundState,
    RefundType,
    WebhookEventStatus,
)

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
