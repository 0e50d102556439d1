"""
Settlement models.

Models:
    PaymentOrder: Escrowed customer payment for one booking
    Booking: Confirmed appointment created at capture
    CompletionRecord: Completion-code handshake that releases escrow
    EarningsLedger / EarningsEntry: Technician balances and their journal
    PayoutRequest: Technician withdrawal
    RefundRecord: Policy split of a cancelled order
    WebhookEvent: Stored gateway webhook deliveries
"""

from settlement.models.booking import Booking
from settlement.models.completion import CompletionRecord
from settlement.models.earnings import EarningsEntry, EarningsLedger
from settlement.models.payment_order import PaymentOrder
from settlement.models.payout import PayoutRequest
from settlement.models.refund import RefundRecord
from settlement.models.webhook_event import WebhookEvent

__all__ = [
    "Booking",
    "CompletionRecord",
    "EarningsEntry",
    "EarningsLedger",
    "PaymentOrder",
    "PayoutRequest",
    "RefundRecord",
    "WebhookEvent",
]
