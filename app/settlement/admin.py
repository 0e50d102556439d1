"""
Settlement admin configuration.

Money state only changes through the settlement services, so every
model here is read-only in the admin. The admin is for support staff to
see where an order, payout or refund stands and why.
"""

from django.contrib import admin

from settlement.models import (
    Booking,
    CompletionRecord,
    EarningsEntry,
    EarningsLedger,
    PaymentOrder,
    PayoutRequest,
    RefundRecord,
    WebhookEvent,
)


def format_paise(paise: int | None) -> str:
    if paise is None:
        return "-"
    return f"₹{paise / 100:,.2f}"


class ReadOnlyAdmin(admin.ModelAdmin):
    """View-only: no add, change or delete."""

    def has_add_permission(self, request, obj=None) -> bool:
        return False

    def has_change_permission(self, request, obj=None) -> bool:
        return False

    def has_delete_permission(self, request, obj=None) -> bool:
        return False


@admin.register(PaymentOrder)
class PaymentOrderAdmin(ReadOnlyAdmin):
    list_display = [
        "id",
        "customer",
        "technician",
        "amount_display",
        "commission_display",
        "state",
        "booking",
        "created_at",
    ]
    list_filter = ["state", "currency"]
    search_fields = ["id", "gateway_order_id", "gateway_payment_id", "booking_reference"]
    ordering = ["-created_at"]

    @admin.display(description="Amount")
    def amount_display(self, obj: PaymentOrder) -> str:
        return format_paise(obj.amount_paise)

    @admin.display(description="Commission")
    def commission_display(self, obj: PaymentOrder) -> str:
        return format_paise(obj.commission_paise)


@admin.register(Booking)
class BookingAdmin(ReadOnlyAdmin):
    list_display = ["id", "customer", "technician", "scheduled_for", "status", "created_at"]
    list_filter = ["status"]
    search_fields = ["id", "customer__email", "technician__email"]
    ordering = ["-scheduled_for"]


@admin.register(CompletionRecord)
class CompletionRecordAdmin(ReadOnlyAdmin):
    list_display = ["id", "booking", "state", "attempts_remaining", "expires_at", "created_at"]
    list_filter = ["state"]
    search_fields = ["id", "booking__id"]
    exclude = ["code_digest"]


class EarningsEntryInline(admin.TabularInline):
    model = EarningsEntry
    extra = 0
    can_delete = False
    fields = ["created_at", "entry_type", "amount_paise", "balance_after_paise", "idempotency_key"]
    readonly_fields = fields
    ordering = ["-created_at"]

    def has_add_permission(self, request, obj=None) -> bool:
        return False


@admin.register(EarningsLedger)
class EarningsLedgerAdmin(ReadOnlyAdmin):
    list_display = ["technician", "total_display", "pending_display", "updated_at"]
    search_fields = ["technician__email"]
    inlines = [EarningsEntryInline]

    @admin.display(description="Total earnings")
    def total_display(self, obj: EarningsLedger) -> str:
        return format_paise(obj.total_earnings_paise)

    @admin.display(description="Pending payout")
    def pending_display(self, obj: EarningsLedger) -> str:
        return format_paise(obj.pending_payout_paise)


@admin.register(EarningsEntry)
class EarningsEntryAdmin(ReadOnlyAdmin):
    list_display = ["id", "ledger", "entry_type", "amount_paise", "balance_after_paise", "created_at"]
    list_filter = ["entry_type"]
    search_fields = ["id", "idempotency_key"]
    ordering = ["-created_at"]


@admin.register(PayoutRequest)
class PayoutRequestAdmin(ReadOnlyAdmin):
    list_display = [
        "id",
        "technician",
        "amount_display",
        "method",
        "state",
        "submission_attempts",
        "created_at",
    ]
    list_filter = ["state", "method"]
    search_fields = ["id", "gateway_payout_id", "technician__email"]
    ordering = ["-created_at"]

    @admin.display(description="Amount")
    def amount_display(self, obj: PayoutRequest) -> str:
        return format_paise(obj.amount_paise)


@admin.register(RefundRecord)
class RefundRecordAdmin(ReadOnlyAdmin):
    list_display = [
        "id",
        "payment_order",
        "refund_type",
        "customer_refund_paise",
        "technician_compensation_paise",
        "platform_fee_paise",
        "state",
        "created_at",
    ]
    list_filter = ["state", "refund_type"]
    search_fields = ["id", "gateway_refund_id", "payment_order__id"]
    ordering = ["-created_at"]


@admin.register(WebhookEvent)
class WebhookEventAdmin(ReadOnlyAdmin):
    list_display = ["gateway_event_id", "event_type", "status", "retry_count", "created_at"]
    list_filter = ["status", "event_type"]
    search_fields = ["gateway_event_id"]
    ordering = ["-created_at"]
