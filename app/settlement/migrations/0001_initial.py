import uuid

import django.db.models.deletion
import django_fsm
from django.conf import settings
from django.db import migrations, models

import settlement.models.payment_order


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name="Booking",
            fields=[
                (
                    "created_at",
                    models.DateTimeField(
                        auto_now_add=True,
                        db_index=True,
                        help_text="Timestamp when this record was created",
                    ),
                ),
                (
                    "updated_at",
                    models.DateTimeField(
                        auto_now=True,
                        help_text="Timestamp when this record was last modified",
                    ),
                ),
                (
                    "version",
                    models.PositiveIntegerField(
                        default=1,
                        help_text="Version for optimistic locking - incremented on each save",
                    ),
                ),
                (
                    "id",
                    models.UUIDField(
                        default=uuid.uuid4,
                        editable=False,
                        help_text="Unique identifier for this record",
                        primary_key=True,
                        serialize=False,
                    ),
                ),
                (
                    "scheduled_for",
                    models.DateTimeField(
                        db_index=True, help_text="When the service is due to start"
                    ),
                ),
                ("address", models.TextField(blank=True, default="")),
                ("description", models.TextField(blank=True, default="")),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("confirmed", "Confirmed"),
                            ("completed", "Completed"),
                            ("cancelled", "Cancelled"),
                        ],
                        db_index=True,
                        default="confirmed",
                        max_length=20,
                    ),
                ),
                ("completed_at", models.DateTimeField(blank=True, null=True)),
                ("cancelled_at", models.DateTimeField(blank=True, null=True)),
                (
                    "customer",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="customer_bookings",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                (
                    "technician",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="technician_bookings",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "verbose_name": "Booking",
                "verbose_name_plural": "Bookings",
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(
                        fields=["technician", "status"],
                        name="booking_tech_status_idx",
                    ),
                    models.Index(
                        fields=["customer", "status"],
                        name="booking_cust_status_idx",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="PaymentOrder",
            fields=[
                (
                    "created_at",
                    models.DateTimeField(
                        auto_now_add=True,
                        db_index=True,
                        help_text="Timestamp when this record was created",
                    ),
                ),
                (
                    "updated_at",
                    models.DateTimeField(
                        auto_now=True,
                        help_text="Timestamp when this record was last modified",
                    ),
                ),
                (
                    "version",
                    models.PositiveIntegerField(
                        default=1,
                        help_text="Version for optimistic locking - incremented on each save",
                    ),
                ),
                (
                    "id",
                    models.UUIDField(
                        default=uuid.uuid4,
                        editable=False,
                        help_text="Unique identifier for this record",
                        primary_key=True,
                        serialize=False,
                    ),
                ),
                (
                    "amount_paise",
                    models.PositiveBigIntegerField(help_text="Order amount in paise"),
                ),
                (
                    "commission_paise",
                    models.PositiveBigIntegerField(
                        help_text="Platform commission in paise"
                    ),
                ),
                (
                    "technician_earnings_paise",
                    models.PositiveBigIntegerField(
                        help_text="Amount credited to the technician on release, in paise"
                    ),
                ),
                (
                    "currency",
                    models.CharField(
                        default="inr",
                        help_text="ISO 4217 currency code (lowercase)",
                        max_length=3,
                    ),
                ),
                (
                    "state",
                    django_fsm.FSMField(
                        choices=[
                            ("pending", "Pending"),
                            ("captured", "Captured"),
                            ("released", "Released"),
                            ("refunded", "Refunded"),
                            ("failed", "Failed"),
                        ],
                        db_index=True,
                        default="pending",
                        help_text="Current state of the payment order (managed by FSM)",
                        max_length=50,
                        protected=True,
                    ),
                ),
                (
                    "booking_reference",
                    models.CharField(
                        db_index=True,
                        default=settlement.models.payment_order.placeholder_booking_reference,
                        help_text="Temporary reference until capture, then the booking id",
                        max_length=64,
                    ),
                ),
                (
                    "gateway_order_id",
                    models.CharField(
                        help_text="Gateway authorization id (Stripe PaymentIntent pi_xxx)",
                        max_length=255,
                        unique=True,
                    ),
                ),
                (
                    "gateway_payment_id",
                    models.CharField(
                        blank=True,
                        help_text="Payment id confirmed by the client and applied at capture",
                        max_length=255,
                        null=True,
                        unique=True,
                    ),
                ),
                (
                    "authorized_at",
                    models.DateTimeField(
                        blank=True,
                        help_text="When the gateway reported the payment as capturable",
                        null=True,
                    ),
                ),
                ("captured_at", models.DateTimeField(blank=True, null=True)),
                ("released_at", models.DateTimeField(blank=True, null=True)),
                ("refunded_at", models.DateTimeField(blank=True, null=True)),
                ("failed_at", models.DateTimeField(blank=True, null=True)),
                (
                    "metadata",
                    models.JSONField(
                        blank=True,
                        default=dict,
                        help_text="Contact details and service description from checkout",
                    ),
                ),
                (
                    "failure_reason",
                    models.TextField(
                        blank=True, help_text="Why the payment failed", null=True
                    ),
                ),
                (
                    "booking",
                    models.OneToOneField(
                        blank=True,
                        help_text="Booking created when the payment was captured",
                        null=True,
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="payment_order",
                        to="settlement.booking",
                    ),
                ),
                (
                    "customer",
                    models.ForeignKey(
                        help_text="User paying for the booking",
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="customer_payment_orders",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                (
                    "technician",
                    models.ForeignKey(
                        help_text="User who will perform the service",
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="technician_payment_orders",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "verbose_name": "Payment Order",
                "verbose_name_plural": "Payment Orders",
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(
                        fields=["customer", "state"],
                        name="order_cust_state_idx",
                    ),
                    models.Index(
                        fields=["technician", "state"],
                        name="order_tech_state_idx",
                    ),
                    models.Index(
                        fields=["state", "created_at"],
                        name="order_state_created_idx",
                    ),
                ],
                "constraints": [
                    models.CheckConstraint(
                        condition=models.Q(("amount_paise__gt", 0)),
                        name="payment_order_amount_positive",
                    ),
                    models.CheckConstraint(
                        condition=models.Q(
                            (
                                "technician_earnings_paise",
                                models.F("amount_paise") - models.F("commission_paise"),
                            )
                        ),
                        name="payment_order_earnings_split",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="CompletionRecord",
            fields=[
                (
                    "created_at",
                    models.DateTimeField(
                        auto_now_add=True,
                        db_index=True,
                        help_text="Timestamp when this record was created",
                    ),
                ),
                (
                    "updated_at",
                    models.DateTimeField(
                        auto_now=True,
                        help_text="Timestamp when this record was last modified",
                    ),
                ),
                (
                    "version",
                    models.PositiveIntegerField(
                        default=1,
                        help_text="Version for optimistic locking - incremented on each save",
                    ),
                ),
                (
                    "id",
                    models.UUIDField(
                        default=uuid.uuid4,
                        editable=False,
                        help_text="Unique identifier for this record",
                        primary_key=True,
                        serialize=False,
                    ),
                ),
                (
                    "code_digest",
                    models.CharField(
                        blank=True,
                        default="",
                        help_text="HMAC-SHA256 digest of the completion code",
                        max_length=64,
                    ),
                ),
                (
                    "state",
                    django_fsm.FSMField(
                        choices=[
                            ("pending", "Pending"),
                            ("otp_issued", "Code Issued"),
                            ("otp_verified", "Code Verified"),
                            ("released", "Released"),
                            ("expired", "Expired"),
                        ],
                        db_index=True,
                        default="pending",
                        max_length=50,
                        protected=True,
                    ),
                ),
                (
                    "expires_at",
                    models.DateTimeField(
                        blank=True,
                        db_index=True,
                        help_text="When the current code stops being accepted",
                        null=True,
                    ),
                ),
                ("attempts_remaining", models.PositiveSmallIntegerField(default=0)),
                ("issued_at", models.DateTimeField(blank=True, null=True)),
                ("verified_at", models.DateTimeField(blank=True, null=True)),
                ("released_at", models.DateTimeField(blank=True, null=True)),
                ("expired_at", models.DateTimeField(blank=True, null=True)),
                (
                    "booking",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="completion_records",
                        to="settlement.booking",
                    ),
                ),
            ],
            options={
                "verbose_name": "Completion Record",
                "verbose_name_plural": "Completion Records",
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(
                        fields=["state", "expires_at"],
                        name="completion_state_exp_idx",
                    ),
                ],
                "constraints": [
                    models.UniqueConstraint(
                        condition=models.Q(
                            ("state__in", ["pending", "otp_issued", "otp_verified"])
                        ),
                        fields=("booking",),
                        name="completion_one_open_per_booking",
                    ),
                    models.UniqueConstraint(
                        condition=models.Q(("state", "released")),
                        fields=("booking",),
                        name="completion_one_release_per_booking",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="EarningsLedger",
            fields=[
                (
                    "created_at",
                    models.DateTimeField(
                        auto_now_add=True,
                        db_index=True,
                        help_text="Timestamp when this record was created",
                    ),
                ),
                (
                    "updated_at",
                    models.DateTimeField(
                        auto_now=True,
                        help_text="Timestamp when this record was last modified",
                    ),
                ),
                (
                    "version",
                    models.PositiveIntegerField(
                        default=1,
                        help_text="Version for optimistic locking - incremented on each save",
                    ),
                ),
                (
                    "id",
                    models.UUIDField(
                        default=uuid.uuid4,
                        editable=False,
                        help_text="Unique identifier for this record",
                        primary_key=True,
                        serialize=False,
                    ),
                ),
                (
                    "total_earnings_paise",
                    models.BigIntegerField(
                        default=0, help_text="Lifetime earnings credited, in paise"
                    ),
                ),
                (
                    "pending_payout_paise",
                    models.BigIntegerField(
                        default=0, help_text="Earnings awaiting payout, in paise"
                    ),
                ),
                ("currency", models.CharField(default="inr", max_length=3)),
                (
                    "technician",
                    models.OneToOneField(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="earnings_ledger",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "verbose_name": "Earnings Ledger",
                "verbose_name_plural": "Earnings Ledgers",
                "constraints": [
                    models.CheckConstraint(
                        condition=models.Q(("total_earnings_paise__gte", 0)),
                        name="earnings_ledger_total_non_negative",
                    ),
                    models.CheckConstraint(
                        condition=models.Q(("pending_payout_paise__gte", 0)),
                        name="earnings_ledger_pending_non_negative",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="PayoutRequest",
            fields=[
                (
                    "created_at",
                    models.DateTimeField(
                        auto_now_add=True,
                        db_index=True,
                        help_text="Timestamp when this record was created",
                    ),
                ),
                (
                    "updated_at",
                    models.DateTimeField(
                        auto_now=True,
                        help_text="Timestamp when this record was last modified",
                    ),
                ),
                (
                    "version",
                    models.PositiveIntegerField(
                        default=1,
                        help_text="Version for optimistic locking - incremented on each save",
                    ),
                ),
                (
                    "id",
                    models.UUIDField(
                        default=uuid.uuid4,
                        editable=False,
                        help_text="Unique identifier for this record",
                        primary_key=True,
                        serialize=False,
                    ),
                ),
                (
                    "amount_paise",
                    models.PositiveBigIntegerField(help_text="Payout amount in paise"),
                ),
                ("currency", models.CharField(default="inr", max_length=3)),
                (
                    "method",
                    models.CharField(
                        choices=[("bank", "Bank Transfer"), ("upi", "UPI")],
                        max_length=10,
                    ),
                ),
                (
                    "destination",
                    models.JSONField(
                        blank=True,
                        default=dict,
                        help_text="Masked destination details (never full account numbers)",
                    ),
                ),
                (
                    "destination_token",
                    models.CharField(
                        help_text="Gateway destination reference (external account id)",
                        max_length=255,
                    ),
                ),
                (
                    "state",
                    django_fsm.FSMField(
                        choices=[
                            ("pending", "Pending"),
                            ("processing", "Processing"),
                            ("completed", "Completed"),
                            ("failed", "Failed"),
                        ],
                        db_index=True,
                        default="pending",
                        max_length=50,
                        protected=True,
                    ),
                ),
                (
                    "gateway_payout_id",
                    models.CharField(
                        blank=True,
                        help_text="Gateway payout id (po_xxx)",
                        max_length=255,
                        null=True,
                        unique=True,
                    ),
                ),
                ("submission_attempts", models.PositiveSmallIntegerField(default=0)),
                ("failure_reason", models.TextField(blank=True, null=True)),
                ("processed_at", models.DateTimeField(blank=True, null=True)),
                ("completed_at", models.DateTimeField(blank=True, null=True)),
                ("failed_at", models.DateTimeField(blank=True, null=True)),
                (
                    "technician",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="payout_requests",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "verbose_name": "Payout Request",
                "verbose_name_plural": "Payout Requests",
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(
                        fields=["technician", "state"],
                        name="payout_tech_state_idx",
                    ),
                    models.Index(
                        fields=["state", "created_at"],
                        name="payout_state_created_idx",
                    ),
                ],
                "constraints": [
                    models.CheckConstraint(
                        condition=models.Q(("amount_paise__gt", 0)),
                        name="payout_request_amount_positive",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="RefundRecord",
            fields=[
                (
                    "created_at",
                    models.DateTimeField(
                        auto_now_add=True,
                        db_index=True,
                        help_text="Timestamp when this record was created",
                    ),
                ),
                (
                    "updated_at",
                    models.DateTimeField(
                        auto_now=True,
                        help_text="Timestamp when this record was last modified",
                    ),
                ),
                (
                    "version",
                    models.PositiveIntegerField(
                        default=1,
                        help_text="Version for optimistic locking - incremented on each save",
                    ),
                ),
                (
                    "id",
                    models.UUIDField(
                        default=uuid.uuid4,
                        editable=False,
                        help_text="Unique identifier for this record",
                        primary_key=True,
                        serialize=False,
                    ),
                ),
                ("amount_paise", models.PositiveBigIntegerField()),
                ("customer_refund_paise", models.PositiveBigIntegerField()),
                (
                    "technician_compensation_paise",
                    models.PositiveBigIntegerField(default=0),
                ),
                ("platform_fee_paise", models.PositiveBigIntegerField(default=0)),
                (
                    "refund_type",
                    models.CharField(
                        choices=[("FULL", "Full"), ("PARTIAL", "Partial")],
                        max_length=10,
                    ),
                ),
                (
                    "state",
                    django_fsm.FSMField(
                        choices=[
                            ("pending", "Pending"),
                            ("completed", "Completed"),
                            ("failed", "Failed"),
                        ],
                        db_index=True,
                        default="pending",
                        max_length=50,
                        protected=True,
                    ),
                ),
                (
                    "gateway_refund_id",
                    models.CharField(
                        blank=True,
                        help_text="Gateway refund id (re_xxx)",
                        max_length=255,
                        null=True,
                        unique=True,
                    ),
                ),
                (
                    "policy_reason",
                    models.CharField(blank=True, default="", max_length=255),
                ),
                ("customer_reason", models.TextField(blank=True, default="")),
                ("failure_reason", models.TextField(blank=True, null=True)),
                ("completed_at", models.DateTimeField(blank=True, null=True)),
                ("failed_at", models.DateTimeField(blank=True, null=True)),
                (
                    "payment_order",
                    models.OneToOneField(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="refund_record",
                        to="settlement.paymentorder",
                    ),
                ),
            ],
            options={
                "verbose_name": "Refund Record",
                "verbose_name_plural": "Refund Records",
                "ordering": ["-created_at"],
                "constraints": [
                    models.CheckConstraint(
                        condition=models.Q(
                            (
                                "amount_paise",
                                models.F("customer_refund_paise")
                                + models.F("technician_compensation_paise")
                                + models.F("platform_fee_paise"),
                            )
                        ),
                        name="refund_record_split_sums_to_amount",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="EarningsEntry",
            fields=[
                (
                    "id",
                    models.UUIDField(
                        default=uuid.uuid4,
                        editable=False,
                        help_text="Unique identifier for this record",
                        primary_key=True,
                        serialize=False,
                    ),
                ),
                ("created_at", models.DateTimeField(auto_now_add=True, db_index=True)),
                (
                    "entry_type",
                    models.CharField(
                        choices=[
                            ("release_credit", "Release Credit"),
                            ("cancellation_compensation", "Cancellation Compensation"),
                            ("payout_debit", "Payout Debit"),
                            ("payout_reversal", "Payout Reversal"),
                        ],
                        max_length=50,
                    ),
                ),
                (
                    "amount_paise",
                    models.BigIntegerField(
                        help_text="Signed amount in paise (credits positive, debits negative)"
                    ),
                ),
                (
                    "balance_after_paise",
                    models.BigIntegerField(
                        help_text="Pending payout balance after this entry"
                    ),
                ),
                (
                    "idempotency_key",
                    models.CharField(
                        help_text="Unique key to prevent duplicate entries",
                        max_length=255,
                        unique=True,
                    ),
                ),
                (
                    "description",
                    models.CharField(blank=True, default="", max_length=255),
                ),
                (
                    "ledger",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="entries",
                        to="settlement.earningsledger",
                    ),
                ),
                (
                    "payment_order",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="earnings_entries",
                        to="settlement.paymentorder",
                    ),
                ),
                (
                    "payout",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="earnings_entries",
                        to="settlement.payoutrequest",
                    ),
                ),
                (
                    "refund",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="earnings_entries",
                        to="settlement.refundrecord",
                    ),
                ),
            ],
            options={
                "verbose_name": "Earnings Entry",
                "verbose_name_plural": "Earnings Entries",
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(
                        fields=["ledger", "created_at"],
                        name="entry_ledger_created_idx",
                    ),
                    models.Index(
                        fields=["entry_type"],
                        name="entry_type_idx",
                    ),
                ],
                "constraints": [
                    models.CheckConstraint(
                        condition=models.Q(("amount_paise", 0), _negated=True),
                        name="earnings_entry_amount_non_zero",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="WebhookEvent",
            fields=[
                (
                    "created_at",
                    models.DateTimeField(
                        auto_now_add=True,
                        db_index=True,
                        help_text="Timestamp when this record was created",
                    ),
                ),
                (
                    "updated_at",
                    models.DateTimeField(
                        auto_now=True,
                        help_text="Timestamp when this record was last modified",
                    ),
                ),
                (
                    "id",
                    models.UUIDField(
                        default=uuid.uuid4,
                        editable=False,
                        help_text="Unique identifier for this record",
                        primary_key=True,
                        serialize=False,
                    ),
                ),
                (
                    "gateway_event_id",
                    models.CharField(
                        help_text="Gateway event id (evt_xxx)",
                        max_length=255,
                        unique=True,
                    ),
                ),
                ("event_type", models.CharField(db_index=True, max_length=100)),
                ("payload", models.JSONField()),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("pending", "Pending"),
                            ("processing", "Processing"),
                            ("processed", "Processed"),
                            ("failed", "Failed"),
                        ],
                        db_index=True,
                        default="pending",
                        max_length=20,
                    ),
                ),
                ("processed_at", models.DateTimeField(blank=True, null=True)),
                ("error_message", models.TextField(blank=True, null=True)),
                ("retry_count", models.PositiveSmallIntegerField(default=0)),
            ],
            options={
                "verbose_name": "Webhook Event",
                "verbose_name_plural": "Webhook Events",
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(
                        fields=["status", "created_at"],
                        name="webhook_status_created_idx",
                    ),
                    models.Index(
                        fields=["event_type", "created_at"],
                        name="webhook_type_created_idx",
                    ),
                ],
            },
        ),
    ]
