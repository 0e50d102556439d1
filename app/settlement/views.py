"""
Views for the settlement API.

Every view validates its input with a serializer, calls one service
operation and maps the ServiceResult to a response. Failures are mapped
to HTTP statuses through ERROR_STATUS; a successful result
flagged retry_pending (gateway unreachable, safe to repeat) or
awaiting_gateway (accepted, not yet settled) returns 202.

Endpoints:
    Orders:
        POST /api/v1/settlement/orders/ - Authorize an order
        POST /api/v1/settlement/orders/confirm/ - Confirm capture, create booking
        GET /api/v1/settlement/orders/{id}/ - Order status
        POST /api/v1/settlement/orders/{id}/cancel/ - Cancel a pending order
        GET /api/v1/settlement/orders/{id}/refund-quote/ - Refund breakdown now
        POST /api/v1/settlement/orders/{id}/refund/ - Cancel booking and refund

    Completion:
        POST /api/v1/settlement/bookings/{id}/completion/ - Issue completion code
        POST /api/v1/settlement/completions/{id}/regenerate/ - New code
        POST /api/v1/settlement/completions/{id}/verify/ - Verify and release

    Earnings:
        GET /api/v1/settlement/earnings/ - Ledger balances
        GET, POST /api/v1/settlement/payouts/ - List / request payouts
"""

from __future__ import annotations

from django.db.models import Q
from django.shortcuts import get_object_or_404
from rest_framework import status
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from drf_spectacular.utils import OpenApiResponse, extend_schema

from core.services import ServiceResult

from settlement.models import Booking, PaymentOrder, PayoutRequest
from settlement.serializers import (
    AuthorizeOrderResponseSerializer,
    AuthorizeOrderSerializer,
    CancelOrderSerializer,
    CaptureResponseSerializer,
    CompletionCodeResponseSerializer,
    CompletionVerifyResponseSerializer,
    CompletionVerifySerializer,
    ConfirmCaptureSerializer,
    EarningsLedgerSerializer,
    ErrorResponseSerializer,
    PaymentOrderSerializer,
    PayoutRequestCreateSerializer,
    PayoutRequestSerializer,
    PayoutResponseSerializer,
    RefundQuoteSerializer,
    RefundRequestSerializer,
    RefundResponseSerializer,
)
from settlement.services import (
    CompletionService,
    EarningsService,
    OrderService,
    PayoutService,
    RefundService,
)

ERROR_STATUS = {
    "INVALID_AMOUNT": status.HTTP_400_BAD_REQUEST,
    "VALIDATION_ERROR": status.HTTP_400_BAD_REQUEST,
    "INVALID_COMPLETION_CODE": status.HTTP_400_BAD_REQUEST,
    "CAPTURE_FAILED": status.HTTP_402_PAYMENT_REQUIRED,
    "SIGNATURE_MISMATCH": status.HTTP_403_FORBIDDEN,
    "PERMISSION_DENIED": status.HTTP_403_FORBIDDEN,
    "NOT_FOUND": status.HTTP_404_NOT_FOUND,
    "INVALID_STATE_TRANSITION": status.HTTP_409_CONFLICT,
    "LOCK_ACQUISITION_FAILED": status.HTTP_409_CONFLICT,
    "ORDER_ALREADY_CAPTURED": status.HTTP_409_CONFLICT,
    "COMPLETION_IN_PROGRESS": status.HTTP_409_CONFLICT,
    "OTP_EXPIRED_OR_EXHAUSTED": status.HTTP_410_GONE,
    "REFUND_WINDOW_CLOSED": status.HTTP_422_UNPROCESSABLE_ENTITY,
    "INSUFFICIENT_BALANCE": status.HTTP_422_UNPROCESSABLE_ENTITY,
    "GATEWAY_REJECTED": status.HTTP_502_BAD_GATEWAY,
    "GATEWAY_UNAVAILABLE": status.HTTP_503_SERVICE_UNAVAILABLE,
}

ERROR_RESPONSES = {
    400: OpenApiResponse(ErrorResponseSerializer, description="Invalid request"),
    403: OpenApiResponse(ErrorResponseSerializer, description="Not allowed"),
    404: OpenApiResponse(ErrorResponseSerializer, description="Not found"),
    409: OpenApiResponse(ErrorResponseSerializer, description="State conflict"),
}


def result_response(result: ServiceResult, success_status: int = status.HTTP_200_OK) -> Response:
    """Render a ServiceResult with the status its outcome maps to."""
    if result.success:
        data = result.data or {}
        if data.get("retry_pending") or data.get("awaiting_gateway"):
            return Response(data, status=status.HTTP_202_ACCEPTED)
        return Response(data, status=success_status)

    return Response(
        result.to_response(),
        status=ERROR_STATUS.get(result.error_code, status.HTTP_400_BAD_REQUEST),
    )


def participant_order(user, order_id) -> PaymentOrder:
    """Order visible to the user (customer or technician), else 404."""
    return get_object_or_404(
        PaymentOrder.objects.select_related("booking"),
        Q(customer=user) | Q(technician=user),
        id=order_id,
    )


# =============================================================================
# Orders
# =============================================================================


class OrderAuthorizeView(APIView):
    permission_classes = [IsAuthenticated]

    @extend_schema(
        operation_id="authorize_order",
        summary="Authorize a payment",
        description=(
            "Create a manual-capture authorization at the gateway for a booking "
            "with the given technician. Returns the client secret to complete "
            "payment on the client."
        ),
        request=AuthorizeOrderSerializer,
        responses={
            201: AuthorizeOrderResponseSerializer,
            503: OpenApiResponse(ErrorResponseSerializer, description="Gateway unavailable"),
            **ERROR_RESPONSES,
        },
        tags=["Settlement - Orders"],
    )
    def post(self, request):
        serializer = AuthorizeOrderSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        result = OrderService.authorize_order(
            customer=request.user,
            technician=data["technician"],
            amount=data["amount_paise"],
            contact=data.get("contact"),
            description=data.get("description", ""),
        )
        return result_response(result, success_status=status.HTTP_201_CREATED)


class OrderConfirmView(APIView):
    permission_classes = [IsAuthenticated]

    @extend_schema(
        operation_id="confirm_capture",
        summary="Confirm payment and create booking",
        description=(
            "Verify the signed client confirmation, capture the payment and "
            "create the booking. Repeating the call with the same payment id "
            "returns the same booking. 202 means the gateway was unreachable "
            "and the call can be repeated."
        ),
        request=ConfirmCaptureSerializer,
        responses={
            200: CaptureResponseSerializer,
            202: CaptureResponseSerializer,
            402: OpenApiResponse(ErrorResponseSerializer, description="Capture failed"),
            **ERROR_RESPONSES,
        },
        tags=["Settlement - Orders"],
    )
    def post(self, request):
        serializer = ConfirmCaptureSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        result = OrderService.confirm_capture(
            user=request.user,
            gateway_order_id=data["gateway_order_id"],
            gateway_payment_id=data["gateway_payment_id"],
            signature=data["signature"],
            booking_draft=data["booking"],
        )
        return result_response(result)


class OrderDetailView(APIView):
    permission_classes = [IsAuthenticated]

    @extend_schema(
        operation_id="get_order",
        summary="Get order status",
        description="Local order state plus the gateway's current view of the payment.",
        responses={200: PaymentOrderSerializer, 404: ERROR_RESPONSES[404]},
        tags=["Settlement - Orders"],
    )
    def get(self, request, order_id):
        order = participant_order(request.user, order_id)
        payment_status = OrderService.get_payment_status(order)

        data = PaymentOrderSerializer(order).data
        data["gateway_status"] = payment_status.data["gateway_status"]
        return Response(data)


class OrderCancelView(APIView):
    permission_classes = [IsAuthenticated]

    @extend_schema(
        operation_id="cancel_order",
        summary="Cancel a pending order",
        description="Release an uncaptured authorization. Only the customer may cancel.",
        request=CancelOrderSerializer,
        responses={200: OpenApiResponse(description="Order failed"), **ERROR_RESPONSES},
        tags=["Settlement - Orders"],
    )
    def post(self, request, order_id):
        order = participant_order(request.user, order_id)
        if order.customer_id != request.user.pk:
            return result_response(
                ServiceResult.failure(
                    "Only the customer can cancel this order",
                    error_code="PERMISSION_DENIED",
                )
            )

        serializer = CancelOrderSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        result = OrderService.cancel_pending_order(
            order, reason=serializer.validated_data["reason"] or "cancelled"
        )
        return result_response(result)


# =============================================================================
# Refunds
# =============================================================================


class RefundQuoteView(APIView):
    permission_classes = [IsAuthenticated]

    @extend_schema(
        operation_id="get_refund_quote",
        summary="Refund quote",
        description="What cancelling the booking right now would refund.",
        responses={200: RefundQuoteSerializer, **ERROR_RESPONSES},
        tags=["Settlement - Refunds"],
    )
    def get(self, request, order_id):
        order = participant_order(request.user, order_id)
        return result_response(RefundService.quote(order, request.user))


class RefundView(APIView):
    permission_classes = [IsAuthenticated]

    @extend_schema(
        operation_id="refund_order",
        summary="Cancel booking and refund",
        description=(
            "Cancel a captured booking. The customer's share is refunded "
            "through the gateway and any cancellation compensation is credited "
            "to the technician."
        ),
        request=RefundRequestSerializer,
        responses={
            200: RefundResponseSerializer,
            202: RefundResponseSerializer,
            422: OpenApiResponse(ErrorResponseSerializer, description="Refund window closed"),
            **ERROR_RESPONSES,
        },
        tags=["Settlement - Refunds"],
    )
    def post(self, request, order_id):
        order = participant_order(request.user, order_id)
        serializer = RefundRequestSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        result = RefundService.process_refund(
            order, request.user, reason=serializer.validated_data["reason"]
        )
        return result_response(result)


# =============================================================================
# Completion
# =============================================================================


class CompletionIssueView(APIView):
    permission_classes = [IsAuthenticated]

    @extend_schema(
        operation_id="issue_completion_code",
        summary="Mark service complete",
        description=(
            "Issue a one-time completion code for the booking. The code is "
            "returned once; the technician submits it to release payment."
        ),
        request=None,
        responses={201: CompletionCodeResponseSerializer, **ERROR_RESPONSES},
        tags=["Settlement - Completion"],
    )
    def post(self, request, booking_id):
        booking = get_object_or_404(
            Booking,
            Q(customer=request.user) | Q(technician=request.user),
            id=booking_id,
        )
        result = CompletionService.issue_code(booking, request.user)
        return result_response(result, success_status=status.HTTP_201_CREATED)


class CompletionRegenerateView(APIView):
    permission_classes = [IsAuthenticated]

    @extend_schema(
        operation_id="regenerate_completion_code",
        summary="Regenerate completion code",
        request=None,
        responses={
            200: CompletionCodeResponseSerializer,
            410: OpenApiResponse(ErrorResponseSerializer, description="Code expired"),
            **ERROR_RESPONSES,
        },
        tags=["Settlement - Completion"],
    )
    def post(self, request, completion_id):
        return result_response(CompletionService.regenerate_code(completion_id, request.user))


class CompletionVerifyView(APIView):
    permission_classes = [IsAuthenticated]

    @extend_schema(
        operation_id="verify_completion_code",
        summary="Verify completion code",
        description=(
            "Technician submits the customer's code. A correct code releases "
            "the payment and credits the technician's earnings."
        ),
        request=CompletionVerifySerializer,
        responses={
            200: CompletionVerifyResponseSerializer,
            410: OpenApiResponse(
                ErrorResponseSerializer, description="Code expired or out of attempts"
            ),
            **ERROR_RESPONSES,
        },
        tags=["Settlement - Completion"],
    )
    def post(self, request, completion_id):
        serializer = CompletionVerifySerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        result = CompletionService.release_on_otp(
            completion_id, serializer.validated_data["code"], request.user
        )
        return result_response(result)


# =============================================================================
# Earnings & Payouts
# =============================================================================


class EarningsView(APIView):
    permission_classes = [IsAuthenticated]

    @extend_schema(
        operation_id="get_earnings",
        summary="Earnings balances",
        responses={200: EarningsLedgerSerializer},
        tags=["Settlement - Earnings"],
    )
    def get(self, request):
        ledger = EarningsService.get_or_create_ledger(request.user)
        return Response(EarningsLedgerSerializer(ledger).data)


class PayoutListCreateView(APIView):
    permission_classes = [IsAuthenticated]

    @extend_schema(
        operation_id="list_payouts",
        summary="List payouts",
        responses={200: PayoutRequestSerializer(many=True)},
        tags=["Settlement - Earnings"],
    )
    def get(self, request):
        payouts = PayoutRequest.objects.filter(technician=request.user).order_by("-created_at")
        return Response(PayoutRequestSerializer(payouts, many=True).data)

    @extend_schema(
        operation_id="request_payout",
        summary="Request a payout",
        description=(
            "Transfer earnings to a bank account or UPI id. The ledger is "
            "debited only after the gateway accepts the transfer."
        ),
        request=PayoutRequestCreateSerializer,
        responses={
            201: PayoutResponseSerializer,
            202: PayoutResponseSerializer,
            422: OpenApiResponse(ErrorResponseSerializer, description="Insufficient balance"),
            502: OpenApiResponse(ErrorResponseSerializer, description="Gateway rejected"),
            **ERROR_RESPONSES,
        },
        tags=["Settlement - Earnings"],
    )
    def post(self, request):
        serializer = PayoutRequestCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        result = PayoutService.request_payout(
            technician=request.user,
            amount=data["amount_paise"],
            method=data["method"],
            destination=dict(data["destination"]),
        )
        return result_response(result, success_status=status.HTTP_201_CREATED)
