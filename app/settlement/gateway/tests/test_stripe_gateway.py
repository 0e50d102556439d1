"""
Tests for the Stripe gateway adapter.

Covers result mapping, idempotency keys, local retries and the
translation of Stripe SDK errors.
"""

import uuid

import pytest
import stripe

from settlement.exceptions import GatewayRejectedError, GatewayUnavailableError
from settlement.gateway import (
    CaptureResult,
    GatewayOrder,
    IdempotencyKeyGenerator,
    PayoutResult,
    RefundResult,
    StripeGateway,
    backoff_delay,
)


# =============================================================================
# Helpers
# =============================================================================


class TestIdempotencyKeyGenerator:
    def test_key_format(self):
        entity_id = uuid.uuid4()

        key = IdempotencyKeyGenerator.generate("capture", entity_id)

        operation, entity, attempt, digest = key.split(":")
        assert operation == "capture"
        assert entity == str(entity_id)
        assert attempt == "1"
        assert len(digest) == 8

    def test_same_inputs_same_key(self):
        entity_id = uuid.uuid4()

        assert IdempotencyKeyGenerator.generate("refund", entity_id) == (
            IdempotencyKeyGenerator.generate("refund", str(entity_id))
        )

    def test_operation_and_attempt_change_key(self):
        entity_id = uuid.uuid4()
        base = IdempotencyKeyGenerator.generate("payout", entity_id)

        assert IdempotencyKeyGenerator.generate("refund", entity_id) != base
        assert IdempotencyKeyGenerator.generate("payout", entity_id, attempt=2) != base


class TestBackoffDelay:
    def test_exponential_growth_with_jitter(self):
        for attempt, base in [(0, 1.0), (1, 2.0), (2, 4.0)]:
            delay = backoff_delay(attempt)
            assert base <= delay <= base * 1.25

    def test_respects_max_delay(self):
        assert backoff_delay(10, max_delay=5.0) <= 5.0 * 1.25


class TestResultTypes:
    def test_gateway_order_flags(self):
        assert GatewayOrder(id="pi", status="requires_capture", amount=1).is_capturable
        assert GatewayOrder(id="pi", status="succeeded", amount=1).is_captured

    def test_refund_succeeded(self):
        assert RefundResult(id="re", status="succeeded", amount=1).succeeded
        assert not RefundResult(id="re", status="pending", amount=1).succeeded

    @pytest.mark.parametrize(
        "status,paid,failed",
        [("paid", True, False), ("failed", False, True), ("canceled", False, True), ("in_transit", False, False)],
    )
    def test_payout_flags(self, status, paid, failed):
        result = PayoutResult(id="po", status=status, amount=1)

        assert result.is_paid is paid
        assert result.is_failed is failed


# =============================================================================
# Operations
# =============================================================================


class TestCreateOrder:
    def test_creates_manual_capture_intent(self, mock_stripe_payment_intent):
        result = StripeGateway.create_order(
            amount=50000,
            currency="inr",
            metadata={"payment_order_id": "ord_1"},
            idempotency_key="authorize:ord_1:1:abcd1234",
        )

        assert isinstance(result, GatewayOrder)
        assert result.id == "pi_test123"
        assert result.status == "requires_payment_method"
        assert result.client_secret == "pi_test123_secret_abc"
        call_kwargs = mock_stripe_payment_intent.create.call_args.kwargs
        assert call_kwargs["capture_method"] == "manual"
        assert call_kwargs["amount"] == 50000
        assert call_kwargs["idempotency_key"] == "authorize:ord_1:1:abcd1234"

    def test_uses_configured_timeout(self, mock_stripe_payment_intent, mock_stripe_http_client, settings):
        settings.STRIPE_API_TIMEOUT_SECONDS = 7

        StripeGateway.create_order(50000, "inr", {}, "key")

        mock_stripe_http_client.assert_called_with(timeout=7)


class TestCapture:
    def test_succeeded_capture(self, mock_stripe_payment_intent):
        result = StripeGateway.capture("pi_test123", 50000, idempotency_key="capture:1")

        assert isinstance(result, CaptureResult)
        assert result.captured is True
        assert result.amount_captured == 50000
        assert result.charge_id == "ch_test123"
        mock_stripe_payment_intent.capture.assert_called_once_with(
            "pi_test123", amount_to_capture=50000, idempotency_key="capture:1"
        )

    def test_non_succeeded_status_is_not_captured(
        self, mock_stripe_payment_intent, mock_payment_intent
    ):
        mock_stripe_payment_intent.capture.return_value = mock_payment_intent(
            status="requires_payment_method"
        )

        result = StripeGateway.capture("pi_test123", 50000, idempotency_key="capture:1")

        assert result.captured is False


class TestRefund:
    def test_creates_refund_with_long_timeout(
        self, mock_stripe_refund, mock_stripe_http_client, settings
    ):
        settings.STRIPE_LONG_API_TIMEOUT_SECONDS = 45

        result = StripeGateway.refund(
            payment_id="pi_test123",
            amount=40000,
            notes={"refund_id": "r1"},
            idempotency_key="refund:r1:1:abcd",
        )

        assert result == RefundResult(
            id="re_test123", status="succeeded", amount=50000, payment_id="pi_test123"
        )
        call_kwargs = mock_stripe_refund.create.call_args.kwargs
        assert call_kwargs["payment_intent"] == "pi_test123"
        assert call_kwargs["amount"] == 40000
        assert call_kwargs["metadata"] == {"refund_id": "r1"}
        mock_stripe_http_client.assert_called_with(timeout=45)


class TestCreatePayout:
    def test_creates_payout(self, mock_stripe_payout, settings):
        settings.PAYMENT_CURRENCY = "inr"

        result = StripeGateway.create_payout(
            destination="ba_123", amount=60000, idempotency_key="payout:p1:1:abcd"
        )

        assert result == PayoutResult(id="po_test123", status="pending", amount=60000)
        call_kwargs = mock_stripe_payout.create.call_args.kwargs
        assert call_kwargs["destination"] == "ba_123"
        assert call_kwargs["currency"] == "inr"
        assert call_kwargs["metadata"] == {}


class TestCancelAndRetrieve:
    def test_cancel_order(self, mock_stripe_payment_intent):
        result = StripeGateway.cancel_order("pi_test123")

        assert result.status == "canceled"
        mock_stripe_payment_intent.cancel.assert_called_once_with(
            "pi_test123", cancellation_reason="abandoned"
        )

    def test_retrieve_order(self, mock_stripe_payment_intent):
        result = StripeGateway.retrieve_order("pi_test123")

        assert result.is_capturable


# =============================================================================
# Webhooks
# =============================================================================


class TestVerifyWebhookSignature:
    def test_returns_event_dict(self, mock_stripe_webhook, settings):
        settings.STRIPE_WEBHOOK_SECRET = "whsec_test"

        event = StripeGateway.verify_webhook_signature(b"{}", "t=1,v1=abc")

        assert event["id"] == "evt_test123"
        mock_stripe_webhook.construct_event.assert_called_once_with(
            b"{}", "t=1,v1=abc", "whsec_test"
        )

    def test_bad_signature_is_rejected(self, mock_stripe_webhook):
        mock_stripe_webhook.construct_event.side_effect = stripe.SignatureVerificationError(
            "Unable to verify webhook signature.", "bad"
        )

        with pytest.raises(GatewayRejectedError) as exc_info:
            StripeGateway.verify_webhook_signature(b"{}", "bad")

        assert exc_info.value.gateway_code == "signature_verification_failed"

    def test_malformed_payload_is_rejected(self, mock_stripe_webhook):
        mock_stripe_webhook.construct_event.side_effect = ValueError("bad json")

        with pytest.raises(GatewayRejectedError) as exc_info:
            StripeGateway.verify_webhook_signature(b"not json", "t=1,v1=abc")

        assert exc_info.value.gateway_code == "invalid_payload"


# =============================================================================
# Retries & Error Translation
# =============================================================================


class TestErrorTranslation:
    def test_card_error_is_rejected_with_decline_code(
        self, mock_stripe_payment_intent, card_error
    ):
        mock_stripe_payment_intent.capture.side_effect = card_error

        with pytest.raises(GatewayRejectedError) as exc_info:
            StripeGateway.capture("pi_test123", 50000, idempotency_key="k")

        assert exc_info.value.decline_code == "generic_decline"
        assert exc_info.value.gateway_code == "card_declined"
        assert mock_stripe_payment_intent.capture.call_count == 1

    def test_invalid_request_is_rejected_without_retry(
        self, mock_stripe_payment_intent, invalid_request_error
    ):
        mock_stripe_payment_intent.retrieve.side_effect = invalid_request_error

        with pytest.raises(GatewayRejectedError):
            StripeGateway.retrieve_order("pi_missing")

        assert mock_stripe_payment_intent.retrieve.call_count == 1

    def test_authentication_error_is_rejected(self, mock_stripe_payment_intent):
        mock_stripe_payment_intent.create.side_effect = stripe.AuthenticationError(
            message="Invalid API Key provided."
        )

        with pytest.raises(GatewayRejectedError) as exc_info:
            StripeGateway.create_order(50000, "inr", {}, "key")

        assert exc_info.value.gateway_code == "authentication_error"

    def test_transient_error_is_retried_then_succeeds(
        self, mock_stripe_payment_intent, mock_payment_intent, rate_limit_error, no_backoff_sleep
    ):
        mock_stripe_payment_intent.create.side_effect = [
            rate_limit_error,
            mock_payment_intent(),
        ]

        result = StripeGateway.create_order(50000, "inr", {}, "key")

        assert result.id == "pi_test123"
        assert mock_stripe_payment_intent.create.call_count == 2
        no_backoff_sleep.assert_called_once()

    def test_transient_errors_exhaust_attempts(
        self, mock_stripe_refund, api_connection_error, settings
    ):
        settings.GATEWAY_MAX_ATTEMPTS = 3
        mock_stripe_refund.create.side_effect = api_connection_error

        with pytest.raises(GatewayUnavailableError) as exc_info:
            StripeGateway.refund("pi_test123", 50000, {}, "key")

        assert exc_info.value.gateway_code == "api_connection_error"
        assert exc_info.value.is_retryable is True
        assert mock_stripe_refund.create.call_count == 3

    def test_api_error_is_unavailable(self, mock_stripe_payout):
        mock_stripe_payout.create.side_effect = stripe.APIError(message="Server error")

        with pytest.raises(GatewayUnavailableError) as exc_info:
            StripeGateway.create_payout("ba_1", 60000, "key")

        assert exc_info.value.gateway_code == "api_error"

    def test_unknown_error_is_unavailable(self, mock_stripe_payment_intent, settings):
        settings.GATEWAY_MAX_ATTEMPTS = 1
        mock_stripe_payment_intent.cancel.side_effect = RuntimeError("socket closed")

        with pytest.raises(GatewayUnavailableError) as exc_info:
            StripeGateway.cancel_order("pi_test123")

        assert exc_info.value.gateway_code == "unknown_error"
