"""
Settlement services.

All business logic for moving money lives here. Views, webhook handlers
and tasks call these classes and never mutate settlement models directly.
"""

from settlement.services.base import SettlementService
from settlement.services.completion_service import CompletionService
from settlement.services.earnings_service import EarningsService, LedgerMutation
from settlement.services.order_service import OrderService
from settlement.services.payout_service import PayoutService
from settlement.services.refund_service import RefundService

__all__ = [
    "CompletionService",
    "EarningsService",
    "LedgerMutation",
    "OrderService",
    "PayoutService",
    "RefundService",
    "SettlementService",
]
