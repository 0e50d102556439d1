"""
Pytest fixtures shared by all settlement test packages.

The gateway is always a MagicMock injected through
SettlementService.set_gateway; Redis is always mocked.

Usage:
    def test_release(captured_order, gateway):
        gateway.refund.return_value = RefundResult(...)
"""

import pytest
from rest_framework.test import APIClient
from rest_framework_simplejwt.tokens import RefreshToken

from settlement.gateway import CaptureResult, GatewayOrder, PayoutResult, RefundResult
from settlement.services import EarningsService, SettlementService
from settlement.state_machines import EarningsEntryType
from settlement.tests.factories import (
    CapturedOrderFactory,
    PaymentOrderFactory,
    UserFactory,
)


# =============================================================================
# Infrastructure
# =============================================================================


@pytest.fixture(autouse=True)
def mock_redis_lock(mocker):
    """Mock Redis for distributed locking."""
    mock_redis = mocker.MagicMock()
    mock_redis.set.return_value = True
    mock_redis.get.return_value = None
    mock_redis.eval.return_value = 1

    mocker.patch(
        "settlement.locks.get_redis_connection",
        return_value=mock_redis,
    )
    return mock_redis


@pytest.fixture
def gateway(mocker):
    """
    Gateway double injected into every settlement service.

    Defaults describe the happy path; tests override return values or
    side effects as needed.
    """
    mock_gateway = mocker.MagicMock()
    mock_gateway.create_order.return_value = GatewayOrder(
        id="pi_test_new",
        status="requires_payment_method",
        amount=50000,
        client_secret="pi_test_new_secret",
    )
    mock_gateway.capture.return_value = CaptureResult(
        id="pi_test_new",
        status="succeeded",
        captured=True,
        amount_captured=50000,
        charge_id="ch_test_new",
    )
    mock_gateway.refund.return_value = RefundResult(
        id="re_test_123",
        status="succeeded",
        amount=50000,
    )
    mock_gateway.create_payout.return_value = PayoutResult(
        id="po_test_123",
        status="pending",
        amount=60000,
    )
    mock_gateway.cancel_order.return_value = GatewayOrder(
        id="pi_test_new",
        status="canceled",
        amount=50000,
    )
    mock_gateway.retrieve_order.return_value = GatewayOrder(
        id="pi_test_new",
        status="requires_capture",
        amount=50000,
    )

    SettlementService.set_gateway(mock_gateway)
    yield mock_gateway
    SettlementService.set_gateway(None)


# =============================================================================
# Users
# =============================================================================


@pytest.fixture
def customer(db):
    return UserFactory()


@pytest.fixture
def technician(db):
    return UserFactory()


@pytest.fixture
def stranger(db):
    """A user with no relation to the order under test."""
    return UserFactory()


# =============================================================================
# Orders
# =============================================================================


@pytest.fixture
def pending_order(db, customer, technician):
    return PaymentOrderFactory(customer=customer, technician=technician)


@pytest.fixture
def captured_order(db, customer, technician):
    return CapturedOrderFactory(customer=customer, technician=technician)


@pytest.fixture
def funded_technician(db, technician):
    """Technician with ₹1,000 of released earnings."""
    EarningsService.credit(
        technician=technician,
        amount=100000,
        entry_type=EarningsEntryType.RELEASE_CREDIT,
        idempotency_key="release:seed",
    )
    return technician


# =============================================================================
# API Clients
# =============================================================================


def _client_for(user) -> APIClient:
    client = APIClient()
    refresh = RefreshToken.for_user(user)
    client.credentials(HTTP_AUTHORIZATION=f"Bearer {refresh.access_token}")
    return client


@pytest.fixture
def customer_client(customer):
    return _client_for(customer)


@pytest.fixture
def technician_client(technician):
    return _client_for(technician)


@pytest.fixture
def stranger_client(stranger):
    return _client_for(stranger)
