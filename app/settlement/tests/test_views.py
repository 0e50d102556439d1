"""
Tests for the settlement API views.

Requests go through the URL conf with JWT-authenticated clients; the
gateway is the MagicMock from the ``gateway`` fixture.
"""

from datetime import timedelta

import pytest
from django.urls import reverse
from django.utils import timezone
from rest_framework import status
from rest_framework.test import APIClient

from settlement.exceptions import GatewayRejectedError, GatewayUnavailableError
from settlement.gateway import RefundResult
from settlement.models import Booking, PaymentOrder, PayoutRequest
from settlement.signatures import sign_confirmation
from settlement.state_machines import PaymentOrderState, PayoutState, RefundType

UPI_DESTINATION = {"token": "ba_upi_1", "upi_id": "tech@okbank"}


def _confirm_body(order, payment_id="ch_client_1", signature=None):
    return {
        "gateway_order_id": order.gateway_order_id,
        "gateway_payment_id": payment_id,
        "signature": signature or sign_confirmation(order.gateway_order_id, payment_id),
        "booking": {
            "scheduled_for": (timezone.now() + timedelta(days=1)).isoformat(),
            "address": "12 MG Road, Bengaluru",
            "description": "Fix leaking kitchen tap",
        },
    }


# =============================================================================
# Orders
# =============================================================================


class TestOrderAuthorizeView:
    url = reverse("settlement:order-authorize")

    def test_authorize(self, customer_client, technician, gateway):
        response = customer_client.post(
            self.url,
            {"technician_id": technician.pk, "amount_paise": 50000},
            format="json",
        )

        assert response.status_code == status.HTTP_201_CREATED
        assert response.data["client_secret"] == "pi_test_new_secret"
        assert response.data["commission"] == 5000
        assert response.data["technician_earnings"] == 45000

    def test_requires_authentication(self, db, technician):
        response = APIClient().post(
            self.url,
            {"technician_id": technician.pk, "amount_paise": 50000},
            format="json",
        )

        assert response.status_code == status.HTTP_401_UNAUTHORIZED

    def test_amount_below_minimum(self, customer_client, technician, gateway):
        response = customer_client.post(
            self.url,
            {"technician_id": technician.pk, "amount_paise": 500},
            format="json",
        )

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.data["error_code"] == "INVALID_AMOUNT"
        gateway.create_order.assert_not_called()

    def test_unknown_technician(self, customer_client, gateway):
        response = customer_client.post(
            self.url,
            {"technician_id": 999999, "amount_paise": 50000},
            format="json",
        )

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert "technician_id" in response.data

    def test_gateway_unavailable(self, customer_client, technician, gateway):
        gateway.create_order.side_effect = GatewayUnavailableError("Stripe timed out")

        response = customer_client.post(
            self.url,
            {"technician_id": technician.pk, "amount_paise": 50000},
            format="json",
        )

        assert response.status_code == status.HTTP_503_SERVICE_UNAVAILABLE
        assert PaymentOrder.objects.count() == 0


class TestOrderConfirmView:
    url = reverse("settlement:order-confirm")

    def test_capture_creates_booking(self, customer_client, pending_order, gateway):
        response = customer_client.post(self.url, _confirm_body(pending_order), format="json")

        assert response.status_code == status.HTTP_200_OK
        assert response.data["replayed"] is False
        booking = Booking.objects.get(id=response.data["booking_id"])
        assert booking.customer_id == pending_order.customer_id

    def test_repeat_returns_same_booking(self, customer_client, pending_order, gateway):
        first = customer_client.post(self.url, _confirm_body(pending_order), format="json")
        second = customer_client.post(self.url, _confirm_body(pending_order), format="json")

        assert second.status_code == status.HTTP_200_OK
        assert second.data["booking_id"] == first.data["booking_id"]
        assert second.data["replayed"] is True
        assert Booking.objects.count() == 1

    def test_bad_signature(self, customer_client, pending_order, gateway):
        body = _confirm_body(pending_order, signature="0" * 64)

        response = customer_client.post(self.url, body, format="json")

        assert response.status_code == status.HTTP_403_FORBIDDEN
        assert response.data["error_code"] == "SIGNATURE_MISMATCH"
        gateway.capture.assert_not_called()

    def test_capture_declined(self, customer_client, pending_order, gateway):
        gateway.capture.side_effect = GatewayRejectedError("Your card was declined.")

        response = customer_client.post(self.url, _confirm_body(pending_order), format="json")

        assert response.status_code == status.HTTP_402_PAYMENT_REQUIRED
        assert PaymentOrder.objects.get(id=pending_order.id).state == PaymentOrderState.FAILED

    def test_gateway_unavailable_is_accepted(self, customer_client, pending_order, gateway):
        gateway.capture.side_effect = GatewayUnavailableError("Stripe timed out")

        response = customer_client.post(self.url, _confirm_body(pending_order), format="json")

        assert response.status_code == status.HTTP_202_ACCEPTED
        assert response.data["status"] == PaymentOrderState.PENDING
        assert response.data["retry_pending"] is True
        assert PaymentOrder.objects.get(id=pending_order.id).state == PaymentOrderState.PENDING

    def test_missing_booking_draft(self, customer_client, pending_order, gateway):
        body = _confirm_body(pending_order)
        del body["booking"]

        response = customer_client.post(self.url, body, format="json")

        assert response.status_code == status.HTTP_400_BAD_REQUEST


class TestOrderDetailView:
    def test_participant_sees_order(self, customer_client, captured_order, gateway):
        url = reverse("settlement:order-detail", args=[captured_order.id])

        response = customer_client.get(url)

        assert response.status_code == status.HTTP_200_OK
        assert response.data["state"] == PaymentOrderState.CAPTURED
        assert response.data["booking"]["id"] == str(captured_order.booking_id)
        assert response.data["gateway_status"] == "requires_capture"

    def test_technician_sees_order(self, technician_client, captured_order, gateway):
        url = reverse("settlement:order-detail", args=[captured_order.id])

        assert technician_client.get(url).status_code == status.HTTP_200_OK

    def test_stranger_gets_404(self, stranger_client, captured_order, gateway):
        url = reverse("settlement:order-detail", args=[captured_order.id])

        assert stranger_client.get(url).status_code == status.HTTP_404_NOT_FOUND


class TestOrderCancelView:
    def test_customer_cancels(self, customer_client, pending_order, gateway):
        url = reverse("settlement:order-cancel", args=[pending_order.id])

        response = customer_client.post(url, {"reason": "changed my mind"}, format="json")

        assert response.status_code == status.HTTP_200_OK
        assert PaymentOrder.objects.get(id=pending_order.id).state == PaymentOrderState.FAILED

    def test_technician_cannot_cancel(self, technician_client, pending_order, gateway):
        url = reverse("settlement:order-cancel", args=[pending_order.id])

        response = technician_client.post(url, {}, format="json")

        assert response.status_code == status.HTTP_403_FORBIDDEN
        gateway.cancel_order.assert_not_called()

    def test_captured_order_conflicts(self, customer_client, captured_order, gateway):
        url = reverse("settlement:order-cancel", args=[captured_order.id])

        response = customer_client.post(url, {}, format="json")

        assert response.status_code == status.HTTP_409_CONFLICT


# =============================================================================
# Refunds
# =============================================================================


class TestRefundViews:
    def test_quote(self, customer_client, captured_order):
        url = reverse("settlement:order-refund-quote", args=[captured_order.id])

        response = customer_client.get(url)

        assert response.status_code == status.HTTP_200_OK
        assert response.data["allowed"] is True
        assert response.data["refund_type"] == RefundType.FULL
        assert response.data["customer_refund_paise"] == captured_order.amount_paise

    def test_refund(self, customer_client, captured_order, gateway):
        url = reverse("settlement:order-refund", args=[captured_order.id])

        response = customer_client.post(url, {"reason": "Plans changed"}, format="json")

        assert response.status_code == status.HTTP_200_OK
        assert response.data["status"] == "completed"
        assert PaymentOrder.objects.get(id=captured_order.id).state == PaymentOrderState.REFUNDED

    def test_refund_while_gateway_down(self, customer_client, captured_order, gateway):
        gateway.refund.side_effect = GatewayUnavailableError("Stripe timed out")
        url = reverse("settlement:order-refund", args=[captured_order.id])

        response = customer_client.post(url, {}, format="json")

        assert response.status_code == status.HTTP_202_ACCEPTED
        assert response.data["retry_pending"] is True

    def test_refund_awaiting_settlement(self, customer_client, captured_order, gateway):
        gateway.refund.return_value = RefundResult(id="re_slow", status="pending", amount=50000)
        url = reverse("settlement:order-refund", args=[captured_order.id])

        response = customer_client.post(url, {}, format="json")

        assert response.status_code == status.HTTP_202_ACCEPTED
        assert response.data["awaiting_gateway"] is True
        assert PaymentOrder.objects.get(id=captured_order.id).state == PaymentOrderState.CAPTURED

    def test_technician_cannot_refund(self, technician_client, captured_order, gateway):
        url = reverse("settlement:order-refund", args=[captured_order.id])

        response = technician_client.post(url, {}, format="json")

        assert response.status_code == status.HTTP_403_FORBIDDEN
        gateway.refund.assert_not_called()

    def test_pending_order_cannot_be_refunded(self, customer_client, pending_order, gateway):
        url = reverse("settlement:order-refund", args=[pending_order.id])

        response = customer_client.post(url, {}, format="json")

        assert response.status_code == status.HTTP_409_CONFLICT


# =============================================================================
# Completion
# =============================================================================


class TestCompletionViews:
    @pytest.fixture
    def issued(self, customer_client, captured_order):
        url = reverse("settlement:completion-issue", args=[captured_order.booking_id])
        response = customer_client.post(url)
        assert response.status_code == status.HTTP_201_CREATED
        return response.data

    def _verify(self, client, completion_id, code):
        url = reverse("settlement:completion-verify", args=[completion_id])
        return client.post(url, {"code": code}, format="json")

    def test_issue_returns_code(self, issued):
        assert len(issued["code"]) == 4
        assert issued["remaining_attempts"] == 3

    def test_technician_releases_with_code(self, technician_client, issued, captured_order):
        response = self._verify(technician_client, issued["completion_id"], issued["code"])

        assert response.status_code == status.HTTP_200_OK
        assert response.data["released"] is True
        assert PaymentOrder.objects.get(id=captured_order.id).state == PaymentOrderState.RELEASED

    def test_wrong_code(self, technician_client, issued):
        wrong = "0000" if issued["code"] != "0000" else "1111"

        response = self._verify(technician_client, issued["completion_id"], wrong)

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.data["error_code"] == "INVALID_COMPLETION_CODE"
        assert response.data["details"] == {"released": False, "remaining_attempts": 2}

    def test_exhausted_code_is_gone(self, technician_client, issued):
        wrong = "0000" if issued["code"] != "0000" else "1111"
        for _ in range(3):
            self._verify(technician_client, issued["completion_id"], wrong)

        response = self._verify(technician_client, issued["completion_id"], issued["code"])

        assert response.status_code == status.HTTP_410_GONE

    def test_malformed_code(self, technician_client, issued):
        response = self._verify(technician_client, issued["completion_id"], "12ab")

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert "code" in response.data

    def test_regenerate(self, customer_client, issued):
        url = reverse("settlement:completion-regenerate", args=[issued["completion_id"]])

        response = customer_client.post(url)

        assert response.status_code == status.HTTP_200_OK
        assert response.data["remaining_attempts"] == 3

    def test_stranger_cannot_issue(self, stranger_client, captured_order):
        url = reverse("settlement:completion-issue", args=[captured_order.booking_id])

        assert stranger_client.post(url).status_code == status.HTTP_404_NOT_FOUND


# =============================================================================
# Earnings & Payouts
# =============================================================================


class TestEarningsView:
    url = reverse("settlement:earnings")

    def test_balances(self, technician_client, funded_technician):
        response = technician_client.get(self.url)

        assert response.status_code == status.HTTP_200_OK
        assert response.data["total_earnings_paise"] == 100000
        assert response.data["pending_payout_paise"] == 100000
        assert response.data["available_balance_paise"] == 100000
        assert len(response.data["recent_entries"]) == 1

    def test_new_user_has_empty_ledger(self, customer_client):
        response = customer_client.get(self.url)

        assert response.status_code == status.HTTP_200_OK
        assert response.data["pending_payout_paise"] == 0


class TestPayoutView:
    url = reverse("settlement:payouts")

    def _request(self, client, amount=60000, destination=None):
        return client.post(
            self.url,
            {
                "amount_paise": amount,
                "method": "upi",
                "destination": destination or UPI_DESTINATION,
            },
            format="json",
        )

    def test_request_payout(self, technician_client, funded_technician, gateway):
        response = self._request(technician_client)

        assert response.status_code == status.HTTP_201_CREATED
        assert response.data["gateway_payout_id"] == "po_test_123"
        payout = PayoutRequest.objects.get(id=response.data["payout_id"])
        assert payout.state == PayoutState.PROCESSING

    def test_insufficient_balance(self, technician_client, funded_technician, gateway):
        response = self._request(technician_client, amount=150000)

        assert response.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY
        assert response.data["error_code"] == "INSUFFICIENT_BALANCE"
        gateway.create_payout.assert_not_called()

    def test_gateway_rejects(self, technician_client, funded_technician, gateway):
        gateway.create_payout.side_effect = GatewayRejectedError("Invalid destination")

        response = self._request(technician_client)

        assert response.status_code == status.HTTP_502_BAD_GATEWAY

    def test_gateway_unavailable(self, technician_client, funded_technician, gateway):
        gateway.create_payout.side_effect = GatewayUnavailableError("Stripe timed out")

        response = self._request(technician_client)

        assert response.status_code == status.HTTP_202_ACCEPTED
        assert response.data["status"] == PayoutState.PENDING
        assert response.data["retry_pending"] is True

    def test_missing_destination_token(self, technician_client, funded_technician, gateway):
        response = self._request(technician_client, destination={"upi_id": "tech@okbank"})

        assert response.status_code == status.HTTP_400_BAD_REQUEST

    def test_list_own_payouts(self, technician_client, funded_technician, gateway):
        self._request(technician_client)

        response = technician_client.get(self.url)

        assert response.status_code == status.HTTP_200_OK
        assert len(response.data) == 1
        assert response.data[0]["destination"] == {"upi_id": "tech@okbank"}
