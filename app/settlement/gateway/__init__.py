"""
Payment gateway adapter.

The gateway is a black box behind StripeGateway; services depend only
on its operations and result types.
"""

from settlement.gateway.stripe_gateway import (
    CaptureResult,
    GatewayOrder,
    IdempotencyKeyGenerator,
    PayoutResult,
    RefundResult,
    StripeGateway,
    backoff_delay,
)

__all__ = [
    "CaptureResult",
    "GatewayOrder",
    "IdempotencyKeyGenerator",
    "PayoutResult",
    "RefundResult",
    "StripeGateway",
    "backoff_delay",
]
