"""
Pytest fixtures for StripeGateway tests.

The Stripe SDK resources are patched; no request leaves the process.
"""

from dataclasses import dataclass
from typing import Any
from unittest.mock import patch

import pytest
import stripe


@dataclass
class MockStripeObject:
    """Mock Stripe API object with to_dict support."""

    data: dict[str, Any]

    def __getattr__(self, name: str) -> Any:
        if name == "data":
            return self.__dict__["data"]
        return self.data.get(name)

    def to_dict(self) -> dict[str, Any]:
        return self.data


# =============================================================================
# Mock Stripe Response Fixtures
# =============================================================================


@pytest.fixture
def mock_payment_intent():
    """Create a mock PaymentIntent response."""

    def _create(
        id: str = "pi_test123",
        status: str = "requires_capture",
        amount: int = 50000,
        client_secret: str | None = "pi_test123_secret_abc",
        amount_received: int = 0,
        latest_charge: str | None = None,
        metadata: dict | None = None,
    ) -> MockStripeObject:
        return MockStripeObject(
            {
                "id": id,
                "object": "payment_intent",
                "status": status,
                "amount": amount,
                "currency": "inr",
                "client_secret": client_secret,
                "amount_received": amount_received,
                "latest_charge": latest_charge,
                "metadata": metadata or {},
            }
        )

    return _create


@pytest.fixture
def mock_refund():
    def _create(id: str = "re_test123", status: str = "succeeded", amount: int = 50000):
        return MockStripeObject(
            {
                "id": id,
                "object": "refund",
                "status": status,
                "amount": amount,
                "payment_intent": "pi_test123",
            }
        )

    return _create


@pytest.fixture
def mock_payout():
    def _create(id: str = "po_test123", status: str = "pending", amount: int = 60000):
        return MockStripeObject(
            {"id": id, "object": "payout", "status": status, "amount": amount}
        )

    return _create


# =============================================================================
# Mock Stripe Error Fixtures
# =============================================================================


@pytest.fixture
def card_error():
    error = stripe.CardError(
        message="Your card was declined.",
        param=None,
        code="card_declined",
    )
    error.decline_code = "generic_decline"
    return error


@pytest.fixture
def invalid_request_error():
    return stripe.InvalidRequestError(
        message="No such payment_intent: 'pi_missing'",
        param="intent",
        code="resource_missing",
    )


@pytest.fixture
def rate_limit_error():
    return stripe.RateLimitError(message="Too many requests hit the API too quickly.")


@pytest.fixture
def api_connection_error():
    return stripe.APIConnectionError(message="Could not connect to Stripe.")


# =============================================================================
# Mock Stripe Client Fixtures
# =============================================================================


@pytest.fixture(autouse=True)
def mock_stripe_http_client():
    """Never build a real HTTP client."""
    with patch("stripe.RequestsClient") as mock:
        yield mock


@pytest.fixture(autouse=True)
def no_backoff_sleep():
    with patch("settlement.gateway.stripe_gateway.time.sleep") as mock:
        yield mock


@pytest.fixture
def mock_stripe_payment_intent(mock_payment_intent):
    with patch("stripe.PaymentIntent") as mock:
        mock.create.return_value = mock_payment_intent(status="requires_payment_method")
        mock.capture.return_value = mock_payment_intent(
            status="succeeded", amount_received=50000, latest_charge="ch_test123"
        )
        mock.cancel.return_value = mock_payment_intent(status="canceled")
        mock.retrieve.return_value = mock_payment_intent()
        yield mock


@pytest.fixture
def mock_stripe_refund(mock_refund):
    with patch("stripe.Refund") as mock:
        mock.create.return_value = mock_refund()
        yield mock


@pytest.fixture
def mock_stripe_payout(mock_payout):
    with patch("stripe.Payout") as mock:
        mock.create.return_value = mock_payout()
        yield mock


@pytest.fixture
def mock_stripe_webhook():
    with patch("stripe.Webhook") as mock:
        mock.construct_event.return_value = MockStripeObject(
            {
                "id": "evt_test123",
                "type": "payout.paid",
                "data": {"object": {"id": "po_test123", "object": "payout"}},
            }
        )
        yield mock
