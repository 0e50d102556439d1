"""
Serializers for the settlement API.

Input serializers validate request bodies before a service is called;
output serializers describe the service payloads for the OpenAPI schema
and render model instances.

Serializers:
    AuthorizeOrderSerializer: Create an authorization
    ConfirmCaptureSerializer: Client payment confirmation + booking draft
    PaymentOrderSerializer: Order status
    RefundRequestSerializer: Customer cancellation reason
    CompletionVerifySerializer: Technician's submitted code
    PayoutRequestCreateSerializer: Payout amount, method and destination
    PayoutRequestSerializer: Payout status (masked destination)
    EarningsLedgerSerializer: Balances and recent entries
"""

from __future__ import annotations

from django.conf import settings
from django.contrib.auth import get_user_model
from rest_framework import serializers

from settlement.models import (
    Booking,
    EarningsEntry,
    EarningsLedger,
    PaymentOrder,
    PayoutRequest,
)
from settlement.state_machines import PayoutMethod

User = get_user_model()


# =============================================================================
# Orders
# =============================================================================


class ContactSerializer(serializers.Serializer):
    name = serializers.CharField(max_length=255, required=False, allow_blank=True)
    email = serializers.EmailField(required=False, allow_blank=True)
    phone = serializers.CharField(max_length=32, required=False, allow_blank=True)


class AuthorizeOrderSerializer(serializers.Serializer):
    """
    Request body for creating a payment authorization.

    Amount bounds are checked by the service so that the error carries
    the INVALID_AMOUNT code.
    """

    technician_id = serializers.PrimaryKeyRelatedField(
        queryset=User.objects.filter(is_active=True),
        source="technician",
    )
    amount_paise = serializers.IntegerField()
    contact = ContactSerializer(required=False)
    description = serializers.CharField(required=False, allow_blank=True, default="")


class AuthorizeOrderResponseSerializer(serializers.Serializer):
    order_id = serializers.UUIDField()
    gateway_order_id = serializers.CharField()
    client_secret = serializers.CharField(allow_null=True)
    amount = serializers.IntegerField()
    commission = serializers.IntegerField()
    technician_earnings = serializers.IntegerField()
    status = serializers.CharField()


class BookingDraftSerializer(serializers.Serializer):
    scheduled_for = serializers.DateTimeField()
    address = serializers.CharField(required=False, allow_blank=True, default="")
    description = serializers.CharField(required=False, allow_blank=True, default="")


class ConfirmCaptureSerializer(serializers.Serializer):
    gateway_order_id = serializers.CharField(max_length=255)
    gateway_payment_id = serializers.CharField(max_length=255)
    signature = serializers.CharField(max_length=128)
    booking = BookingDraftSerializer()


class CaptureResponseSerializer(serializers.Serializer):
    order_id = serializers.UUIDField()
    booking_id = serializers.UUIDField(allow_null=True)
    status = serializers.CharField()
    replayed = serializers.BooleanField()
    retry_pending = serializers.BooleanField(required=False)


class BookingSerializer(serializers.ModelSerializer):
    class Meta:
        model = Booking
        fields = [
            "id",
            "customer",
            "technician",
            "scheduled_for",
            "address",
            "description",
            "status",
            "completed_at",
            "cancelled_at",
            "created_at",
        ]
        read_only_fields = fields


class PaymentOrderSerializer(serializers.ModelSerializer):
    """Order as seen by its customer or technician."""

    booking = BookingSerializer(read_only=True)

    class Meta:
        model = PaymentOrder
        fields = [
            "id",
            "customer",
            "technician",
            "amount_paise",
            "commission_paise",
            "technician_earnings_paise",
            "currency",
            "state",
            "booking",
            "booking_reference",
            "gateway_order_id",
            "gateway_payment_id",
            "authorized_at",
            "captured_at",
            "released_at",
            "refunded_at",
            "failed_at",
            "failure_reason",
            "created_at",
        ]
        read_only_fields = fields


class CancelOrderSerializer(serializers.Serializer):
    reason = serializers.CharField(required=False, allow_blank=True, default="cancelled")


# =============================================================================
# Refunds
# =============================================================================


class RefundRequestSerializer(serializers.Serializer):
    reason = serializers.CharField(required=False, allow_blank=True, default="")


class RefundQuoteSerializer(serializers.Serializer):
    order_id = serializers.UUIDField()
    allowed = serializers.BooleanField()
    reason = serializers.CharField()
    refund_type = serializers.CharField(required=False)
    amount_paise = serializers.IntegerField(required=False)
    customer_refund_paise = serializers.IntegerField(required=False)
    technician_compensation_paise = serializers.IntegerField(required=False)
    platform_fee_paise = serializers.IntegerField(required=False)


class RefundResponseSerializer(serializers.Serializer):
    refund_id = serializers.UUIDField()
    order_id = serializers.UUIDField()
    status = serializers.CharField()
    refund_type = serializers.CharField()
    customer_refund_paise = serializers.IntegerField()
    technician_compensation_paise = serializers.IntegerField()
    platform_fee_paise = serializers.IntegerField()
    replayed = serializers.BooleanField()
    retry_pending = serializers.BooleanField(required=False)
    awaiting_gateway = serializers.BooleanField(required=False)


# =============================================================================
# Completion
# =============================================================================


class CompletionCodeResponseSerializer(serializers.Serializer):
    completion_id = serializers.UUIDField()
    booking_id = serializers.UUIDField()
    code = serializers.CharField(help_text="Shown once; share it with the technician")
    expires_at = serializers.DateTimeField()
    remaining_attempts = serializers.IntegerField()
    status = serializers.CharField()


class CompletionVerifySerializer(serializers.Serializer):
    code = serializers.RegexField(
        regex=r"^\d+$",
        max_length=settings.COMPLETION_CODE_LENGTH,
        min_length=settings.COMPLETION_CODE_LENGTH,
    )


class CompletionVerifyResponseSerializer(serializers.Serializer):
    completion_id = serializers.UUIDField()
    order_id = serializers.UUIDField(required=False)
    released = serializers.BooleanField()
    remaining_attempts = serializers.IntegerField()
    replayed = serializers.BooleanField()


# =============================================================================
# Earnings & Payouts
# =============================================================================


class EarningsEntrySerializer(serializers.ModelSerializer):
    class Meta:
        model = EarningsEntry
        fields = [
            "id",
            "entry_type",
            "amount_paise",
            "balance_after_paise",
            "description",
            "payment_order",
            "payout",
            "created_at",
        ]
        read_only_fields = fields


class EarningsLedgerSerializer(serializers.ModelSerializer):
    available_balance_paise = serializers.SerializerMethodField()
    recent_entries = serializers.SerializerMethodField()

    class Meta:
        model = EarningsLedger
        fields = [
            "total_earnings_paise",
            "pending_payout_paise",
            "available_balance_paise",
            "currency",
            "recent_entries",
            "updated_at",
        ]
        read_only_fields = fields

    def get_available_balance_paise(self, obj: EarningsLedger) -> int:
        from settlement.services import EarningsService

        return EarningsService.available_balance(obj.technician, ledger=obj)

    def get_recent_entries(self, obj: EarningsLedger) -> list[dict]:
        entries = obj.entries.order_by("-created_at")[:20]
        return EarningsEntrySerializer(entries, many=True).data


class PayoutDestinationSerializer(serializers.Serializer):
    """
    Destination details; which fields are required depends on the method.

    ``token`` is the gateway's reference for the external account.
    """

    token = serializers.CharField(max_length=255)
    account_number = serializers.CharField(max_length=34, required=False)
    ifsc = serializers.CharField(max_length=11, required=False)
    account_holder_name = serializers.CharField(max_length=255, required=False)
    upi_id = serializers.CharField(max_length=255, required=False)


class PayoutRequestCreateSerializer(serializers.Serializer):
    amount_paise = serializers.IntegerField(min_value=1)
    method = serializers.ChoiceField(choices=PayoutMethod.choices)
    destination = PayoutDestinationSerializer()


class PayoutRequestSerializer(serializers.ModelSerializer):
    class Meta:
        model = PayoutRequest
        fields = [
            "id",
            "amount_paise",
            "currency",
            "method",
            "destination",
            "state",
            "gateway_payout_id",
            "failure_reason",
            "processed_at",
            "completed_at",
            "failed_at",
            "created_at",
        ]
        read_only_fields = fields


class PayoutResponseSerializer(serializers.Serializer):
    payout_id = serializers.UUIDField()
    status = serializers.CharField()
    amount = serializers.IntegerField()
    method = serializers.CharField()
    gateway_payout_id = serializers.CharField(allow_null=True)
    replayed = serializers.BooleanField()
    retry_pending = serializers.BooleanField(required=False)


class ErrorResponseSerializer(serializers.Serializer):
    success = serializers.BooleanField(default=False)
    error = serializers.CharField()
    error_code = serializers.CharField(required=False)
    errors = serializers.DictField(required=False)
    details = serializers.DictField(required=False)
