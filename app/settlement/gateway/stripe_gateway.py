"""
Stripe gateway adapter for settlement operations.

Every call to the payment gateway goes through StripeGateway so that
timeouts, idempotency keys, local retries, structured logging and error
translation are applied the same way everywhere.

Features:
- Bounded HTTP timeout on every call (longer for refunds and payouts)
- Local retry with exponential backoff for transient failures
- Stripe SDK errors translated to GatewayUnavailableError (retryable)
  or GatewayRejectedError (permanent)
- Dataclass results instead of raw Stripe objects

Configuration (via settings):
- STRIPE_SECRET_KEY / STRIPE_WEBHOOK_SECRET
- STRIPE_API_TIMEOUT_SECONDS / STRIPE_LONG_API_TIMEOUT_SECONDS
- GATEWAY_MAX_ATTEMPTS, GATEWAY_RETRY_INITIAL_DELAY_SECONDS,
  GATEWAY_RETRY_MULTIPLIER

Usage:
    from settlement.gateway import StripeGateway, IdempotencyKeyGenerator

    order = StripeGateway.create_order(
        amount=50000,
        currency="inr",
        metadata={"customer_id": str(customer.id)},
        idempotency_key=IdempotencyKeyGenerator.generate("authorize", draft_id),
    )
    result = StripeGateway.capture(order.id, 50000, idempotency_key=...)
"""

from __future__ import annotations

import hashlib
import logging
import random
import time
import uuid
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

import stripe
from django.conf import settings

from settlement.exceptions import (
    GatewayError,
    GatewayRejectedError,
    GatewayUnavailableError,
)

if TYPE_CHECKING:
    from collections.abc import Callable


# =============================================================================
# Data Types
# =============================================================================


@dataclass
class GatewayOrder:
    """
    An authorization at the gateway (Stripe PaymentIntent, manual capture).

    Attributes:
        id: PaymentIntent id (pi_xxx)
        status: requires_payment_method, requires_capture, succeeded, canceled, ...
        amount: Authorized amount in paise
        client_secret: Secret the client uses to confirm the payment
        amount_received: Amount actually captured so far
    """

    id: str
    status: str
    amount: int
    client_secret: str | None = None
    amount_received: int = 0
    metadata: dict[str, str] = field(default_factory=dict)

    @property
    def is_capturable(self) -> bool:
        return self.status == "requires_capture"

    @property
    def is_captured(self) -> bool:
        return self.status == "succeeded"


@dataclass
class CaptureResult:
    """
    Outcome of a capture call.

    captured is True only when the gateway reports the money as taken;
    anything else must be treated as a failed capture.
    """

    id: str
    status: str
    captured: bool
    amount_captured: int = 0
    charge_id: str | None = None


@dataclass
class RefundResult:
    id: str
    status: str
    amount: int
    payment_id: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.status == "succeeded"


@dataclass
class PayoutResult:
    id: str
    status: str
    amount: int

    @property
    def is_paid(self) -> bool:
        return self.status == "paid"

    @property
    def is_failed(self) -> bool:
        return self.status in ("failed", "canceled")


# =============================================================================
# Idempotency Key Generator
# =============================================================================


class IdempotencyKeyGenerator:
    """
    Generate idempotency keys for gateway calls.

    Format: "{operation}:{entity_id}:{attempt}:{hash}"

    The same entity and operation always yield the same key, so a retried
    request (by the adapter, a Celery task or the client) is deduplicated
    by the gateway.

    Example:
        IdempotencyKeyGenerator.generate("payout", payout.id)
        # "payout:550e8400-e29b-41d4-a716-446655440000:1:a1b2c3d4"
    """

    @staticmethod
    def generate(operation: str, entity_id: uuid.UUID | str, attempt: int = 1) -> str:
        entity_str = str(entity_id)
        hash_input = f"{operation}:{entity_str}:{attempt}:{settings.SECRET_KEY}"
        short_hash = hashlib.sha256(hash_input.encode()).hexdigest()[:8]
        return f"{operation}:{entity_str}:{attempt}:{short_hash}"


# =============================================================================
# Retry Helpers
# =============================================================================


def backoff_delay(
    attempt: int,
    base: float = 1.0,
    multiplier: float = 2.0,
    max_delay: float = 60.0,
) -> float:
    """
    Exponential backoff delay with 0-25% jitter.

    Example:
        # Attempt 0: 1.0 - 1.25 seconds
        # Attempt 1: 2.0 - 2.5 seconds
        # Attempt 2: 4.0 - 5.0 seconds
        delay = backoff_delay(attempt=2)
    """
    delay = min(base * (multiplier**attempt), max_delay)
    return delay + delay * random.uniform(0, 0.25)


# =============================================================================
# Stripe Gateway
# =============================================================================


class StripeGateway:
    """
    Narrow adapter over the Stripe SDK.

    All methods are classmethods; no instance state is kept, so the class
    is safe to use from web workers and Celery workers alike.

    Operations:
        create_order: Authorize-only PaymentIntent (capture_method="manual")
        capture: Capture an authorized PaymentIntent
        refund: Refund part or all of a captured payment
        create_payout: Send money to an external bank account or UPI handle
        cancel_order: Release an uncaptured authorization
        retrieve_order: Read the gateway's view of an authorization
        verify_webhook_signature: Validate and parse a webhook delivery
    """

    # =========================================================================
    # Configuration
    # =========================================================================

    @staticmethod
    def _configure_stripe(timeout: int) -> None:
        stripe.api_key = settings.STRIPE_SECRET_KEY
        stripe.default_http_client = stripe.RequestsClient(timeout=timeout)

    @classmethod
    def get_logger(cls) -> logging.Logger:
        return logging.getLogger(f"{cls.__module__}.{cls.__name__}")

    # =========================================================================
    # Core Operations
    # =========================================================================

    @classmethod
    def create_order(
        cls,
        amount: int,
        currency: str,
        metadata: dict[str, str],
        idempotency_key: str,
    ) -> GatewayOrder:
        """
        Create an authorize-only payment at the gateway.

        Raises:
            GatewayRejectedError: Invalid parameters or credentials
            GatewayUnavailableError: Gateway unreachable after retries
        """
        log_context = {
            "operation": "create_order",
            "amount": amount,
            "currency": currency,
            "idempotency_key": idempotency_key,
        }

        intent = cls._execute(
            log_context,
            lambda: stripe.PaymentIntent.create(
                amount=amount,
                currency=currency,
                capture_method="manual",
                metadata=metadata,
                idempotency_key=idempotency_key,
            ),
        )
        return cls._to_gateway_order(intent)

    @classmethod
    def capture(cls, payment_id: str, amount: int, idempotency_key: str) -> CaptureResult:
        """
        Capture an authorized payment.

        Args:
            payment_id: PaymentIntent id to capture
            amount: Amount to capture in paise
            idempotency_key: Derived from the payment order id

        Raises:
            GatewayRejectedError: Not capturable (declined, expired, cancelled)
            GatewayUnavailableError: Gateway unreachable after retries
        """
        log_context = {
            "operation": "capture",
            "payment_id": payment_id,
            "amount": amount,
            "idempotency_key": idempotency_key,
        }

        intent = cls._execute(
            log_context,
            lambda: stripe.PaymentIntent.capture(
                payment_id,
                amount_to_capture=amount,
                idempotency_key=idempotency_key,
            ),
        )
        return CaptureResult(
            id=intent.id,
            status=intent.status,
            captured=intent.status == "succeeded",
            amount_captured=getattr(intent, "amount_received", 0) or 0,
            charge_id=getattr(intent, "latest_charge", None),
        )

    @classmethod
    def refund(
        cls,
        payment_id: str,
        amount: int,
        notes: dict[str, str],
        idempotency_key: str,
    ) -> RefundResult:
        """
        Refund ``amount`` paise of a captured payment.

        Raises:
            GatewayRejectedError: Refund not possible
            GatewayUnavailableError: Gateway unreachable after retries
        """
        log_context = {
            "operation": "refund",
            "payment_id": payment_id,
            "amount": amount,
            "idempotency_key": idempotency_key,
        }

        refund = cls._execute(
            log_context,
            lambda: stripe.Refund.create(
                payment_intent=payment_id,
                amount=amount,
                metadata=notes,
                idempotency_key=idempotency_key,
            ),
            timeout=settings.STRIPE_LONG_API_TIMEOUT_SECONDS,
        )
        return RefundResult(
            id=refund.id,
            status=refund.status,
            amount=refund.amount,
            payment_id=getattr(refund, "payment_intent", None),
        )

    @classmethod
    def create_payout(
        cls,
        destination: str,
        amount: int,
        idempotency_key: str,
        metadata: dict[str, str] | None = None,
    ) -> PayoutResult:
        """
        Send ``amount`` paise to an external account.

        Args:
            destination: Gateway reference of the bank account or UPI handle

        Raises:
            GatewayRejectedError: Destination invalid or payout refused
            GatewayUnavailableError: Gateway unreachable after retries
        """
        log_context = {
            "operation": "create_payout",
            "destination": destination,
            "amount": amount,
            "idempotency_key": idempotency_key,
        }

        payout = cls._execute(
            log_context,
            lambda: stripe.Payout.create(
                amount=amount,
                currency=settings.PAYMENT_CURRENCY,
                destination=destination,
                metadata=metadata or {},
                idempotency_key=idempotency_key,
            ),
            timeout=settings.STRIPE_LONG_API_TIMEOUT_SECONDS,
        )
        return PayoutResult(id=payout.id, status=payout.status, amount=payout.amount)

    @classmethod
    def cancel_order(cls, order_id: str, reason: str = "abandoned") -> GatewayOrder:
        """
        Cancel an uncaptured authorization, releasing the customer's hold.

        Raises:
            GatewayRejectedError: Already captured or already cancelled
        """
        log_context = {"operation": "cancel_order", "order_id": order_id}

        intent = cls._execute(
            log_context,
            lambda: stripe.PaymentIntent.cancel(order_id, cancellation_reason=reason),
        )
        return cls._to_gateway_order(intent)

    @classmethod
    def retrieve_order(cls, order_id: str) -> GatewayOrder:
        log_context = {"operation": "retrieve_order", "order_id": order_id}

        intent = cls._execute(
            log_context,
            lambda: stripe.PaymentIntent.retrieve(order_id),
            log_level=logging.DEBUG,
        )
        return cls._to_gateway_order(intent)

    # =========================================================================
    # Webhooks
    # =========================================================================

    @classmethod
    def verify_webhook_signature(cls, payload: bytes, header: str) -> dict[str, Any]:
        """
        Verify and parse a webhook delivery.

        Raises:
            GatewayRejectedError: Signature does not match the webhook secret
        """
        try:
            event = stripe.Webhook.construct_event(
                payload,
                header,
                settings.STRIPE_WEBHOOK_SECRET,
            )
        except stripe.SignatureVerificationError as e:
            raise GatewayRejectedError(
                "Invalid webhook signature",
                gateway_code="signature_verification_failed",
                details={"error": str(e)},
            ) from e
        except ValueError as e:
            raise GatewayRejectedError(
                "Malformed webhook payload",
                gateway_code="invalid_payload",
            ) from e
        return event.to_dict()

    # =========================================================================
    # Execution & Error Handling
    # =========================================================================

    @classmethod
    def _execute(
        cls,
        log_context: dict[str, Any],
        call: Callable[[], Any],
        timeout: int | None = None,
        log_level: int = logging.INFO,
    ) -> Any:
        """
        Run a Stripe call with timeout, retries, logging and translation.

        Transient failures are retried up to GATEWAY_MAX_ATTEMPTS with
        exponential backoff. Permanent failures are raised immediately.
        """
        cls._configure_stripe(timeout or settings.STRIPE_API_TIMEOUT_SECONDS)
        logger = cls.get_logger()
        max_attempts = max(1, settings.GATEWAY_MAX_ATTEMPTS)

        for attempt in range(max_attempts):
            context = {**log_context, "attempt": attempt + 1}
            start_time = time.time()
            logger.log(log_level, "Starting Stripe operation", extra=context)

            try:
                response = call()
            except Exception as e:
                duration_ms = (time.time() - start_time) * 1000
                error = cls._translate_error(e, context, duration_ms)
                if error.is_retryable and attempt + 1 < max_attempts:
                    time.sleep(
                        backoff_delay(
                            attempt,
                            base=settings.GATEWAY_RETRY_INITIAL_DELAY_SECONDS,
                            multiplier=settings.GATEWAY_RETRY_MULTIPLIER,
                        )
                    )
                    continue
                raise error from e

            duration_ms = (time.time() - start_time) * 1000
            logger.log(
                log_level,
                "Stripe operation completed",
                extra={
                    **context,
                    "gateway_id": getattr(response, "id", None),
                    "status": getattr(response, "status", None),
                    "duration_ms": duration_ms,
                },
            )
            return response

        # range(max_attempts) always returns or raises
        raise GatewayUnavailableError("Gateway retries exhausted")

    @classmethod
    def _translate_error(
        cls,
        error: Exception,
        log_context: dict[str, Any],
        duration_ms: float,
    ) -> GatewayError:
        """
        Map a Stripe SDK exception to the settlement gateway taxonomy.

        Returns:
            GatewayRejectedError for card, request and authentication errors;
            GatewayUnavailableError for rate limits, connection and server
            errors, and anything unrecognised
        """
        logger = cls.get_logger()
        log_context = {**log_context, "duration_ms": duration_ms}
        code = getattr(error, "code", None)

        if isinstance(error, stripe.CardError):
            decline_code = getattr(error, "decline_code", None)
            logger.warning(
                "Card error from Stripe",
                extra={**log_context, "decline_code": decline_code},
            )
            return GatewayRejectedError(
                getattr(error, "user_message", None) or str(error),
                gateway_code=code,
                decline_code=decline_code,
            )

        if isinstance(error, stripe.InvalidRequestError):
            logger.error(
                "Invalid request to Stripe",
                extra={**log_context, "gateway_code": code},
            )
            return GatewayRejectedError(str(error), gateway_code=code)

        if isinstance(error, stripe.AuthenticationError):
            logger.critical("Stripe authentication failed - check API key", extra=log_context)
            return GatewayRejectedError(
                "Payment gateway authentication failed",
                gateway_code="authentication_error",
            )

        if isinstance(error, stripe.RateLimitError):
            logger.warning("Rate limited by Stripe", extra=log_context)
            return GatewayUnavailableError(
                "Payment gateway rate limit exceeded",
                gateway_code="rate_limit",
            )

        if isinstance(error, stripe.APIConnectionError):
            logger.error("Connection error to Stripe", extra=log_context, exc_info=True)
            return GatewayUnavailableError(
                "Could not connect to the payment gateway",
                gateway_code="api_connection_error",
            )

        if isinstance(error, stripe.APIError):
            logger.error("Stripe API error", extra=log_context, exc_info=True)
            return GatewayUnavailableError(
                "Payment gateway service error",
                gateway_code="api_error",
            )

        logger.error(
            f"Unexpected error from Stripe: {type(error).__name__}",
            extra=log_context,
            exc_info=True,
        )
        return GatewayUnavailableError(
            f"Unexpected payment gateway error: {error}",
            gateway_code="unknown_error",
        )

    @staticmethod
    def _to_gateway_order(intent: Any) -> GatewayOrder:
        return GatewayOrder(
            id=intent.id,
            status=intent.status,
            amount=intent.amount,
            client_secret=getattr(intent, "client_secret", None),
            amount_received=getattr(intent, "amount_received", 0) or 0,
            metadata=dict(getattr(intent, "metadata", None) or {}),
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
