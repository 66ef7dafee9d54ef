import uuid

import django_fsm
from django.db import migrations, models


def _id_field():
    return (
        "id",
        models.UUIDField(
            default=uuid.uuid4,
            editable=False,
            help_text="Unique identifier for this record",
            primary_key=True,
            serialize=False,
        ),
    )


def _timestamp_fields():
    return [
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
    ]


def _registration_fields():
    return [
        (
            "registration_id",
            models.UUIDField(
                db_index=True,
                help_text="Registration identifier (owned by the registration subsystem)",
            ),
        ),
        (
            "registration_type",
            models.CharField(
                help_text="Registration kind: group, individual, vendor or staff",
                max_length=20,
            ),
        ),
    ]


class Migration(migrations.Migration):
    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name="Balance",
            fields=[
                _id_field(),
                *_timestamp_fields(),
                *_registration_fields(),
                (
                    "total_amount_due",
                    models.DecimalField(
                        decimal_places=2,
                        help_text="Total amount owed by the registration",
                        max_digits=12,
                    ),
                ),
                (
                    "amount_paid",
                    models.DecimalField(
                        decimal_places=2,
                        default=0,
                        help_text="Settled payments minus processed refunds",
                        max_digits=12,
                    ),
                ),
                (
                    "amount_remaining",
                    models.DecimalField(
                        decimal_places=2,
                        help_text="total_amount_due - amount_paid (negative when overpaid)",
                        max_digits=12,
                    ),
                ),
                (
                    "payment_status",
                    models.CharField(
                        choices=[
                            ("unpaid", "Unpaid"),
                            ("partial", "Partially Paid"),
                            ("paid_full", "Paid in Full"),
                            ("overpaid", "Overpaid"),
                        ],
                        db_index=True,
                        default="unpaid",
                        editable=False,
                        help_text="Derived from the balance triple on every write",
                        max_length=20,
                    ),
                ),
                (
                    "initial_amount_due",
                    models.DecimalField(
                        decimal_places=2,
                        help_text="Total when the balance was opened",
                        max_digits=12,
                    ),
                ),
                (
                    "due_date",
                    models.DateField(
                        blank=True,
                        db_index=True,
                        help_text="Date after which a positive remainder is overdue",
                        null=True,
                    ),
                ),
                (
                    "last_payment_date",
                    models.DateTimeField(
                        blank=True,
                        help_text="When a payment was last applied",
                        null=True,
                    ),
                ),
                (
                    "version",
                    models.PositiveIntegerField(
                        default=1,
                        help_text="Version for optimistic locking - incremented on each commit",
                    ),
                ),
            ],
            options={
                "verbose_name": "Balance",
                "verbose_name_plural": "Balances",
                "db_table": "balances",
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(
                        fields=["payment_status", "due_date"],
                        name="balance_status_due_idx",
                    ),
                ],
                "constraints": [
                    models.UniqueConstraint(
                        fields=("registration_id", "registration_type"),
                        name="balance_one_per_registration",
                    ),
                    models.CheckConstraint(
                        condition=models.Q(
                            registration_type__in=["group", "individual", "vendor", "staff"]
                        ),
                        name="balance_registration_type_valid",
                    ),
                    models.CheckConstraint(
                        condition=models.Q(total_amount_due__gte=0),
                        name="balance_total_non_negative",
                    ),
                    models.CheckConstraint(
                        condition=models.Q(amount_paid__gte=0),
                        name="balance_paid_non_negative",
                    ),
                    models.CheckConstraint(
                        condition=models.Q(
                            total_amount_due=models.F("amount_paid") + models.F("amount_remaining")
                        ),
                        name="balance_triple_reconciles",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="Payment",
            fields=[
                _id_field(),
                *_timestamp_fields(),
                *_registration_fields(),
                (
                    "amount",
                    models.DecimalField(
                        decimal_places=2,
                        help_text="Payment amount (always positive)",
                        max_digits=12,
                    ),
                ),
                (
                    "payment_method",
                    models.CharField(
                        choices=[("card", "Card"), ("check", "Check"), ("cash", "Cash")],
                        db_index=True,
                        help_text="card, check or cash",
                        max_length=10,
                    ),
                ),
                (
                    "payment_status",
                    django_fsm.FSMField(
                        choices=[
                            ("pending", "Pending"),
                            ("succeeded", "Succeeded"),
                            ("failed", "Failed"),
                        ],
                        db_index=True,
                        default="pending",
                        help_text="Current state of the payment (managed by FSM)",
                        max_length=50,
                        protected=True,
                    ),
                ),
                (
                    "processed_at",
                    models.DateTimeField(
                        blank=True,
                        help_text="When the payment settled or failed",
                        null=True,
                    ),
                ),
                (
                    "failure_reason",
                    models.TextField(
                        blank=True,
                        help_text="Gateway or operator reason when the payment failed",
                        null=True,
                    ),
                ),
                (
                    "gateway_reference",
                    models.CharField(
                        blank=True,
                        help_text="Gateway payment reference (Stripe PaymentIntent ID)",
                        max_length=255,
                        null=True,
                        unique=True,
                    ),
                ),
                (
                    "check_number",
                    models.CharField(
                        blank=True,
                        db_index=True,
                        help_text="Check number as written on the check",
                        max_length=50,
                        null=True,
                    ),
                ),
                (
                    "check_received_date",
                    models.DateField(
                        blank=True,
                        help_text="Date the check physically arrived",
                        null=True,
                    ),
                ),
                (
                    "payer_name",
                    models.CharField(
                        blank=True,
                        help_text="Name on the check",
                        max_length=255,
                        null=True,
                    ),
                ),
                (
                    "deposit_bank_account",
                    models.CharField(blank=True, max_length=100, null=True),
                ),
                ("deposit_date", models.DateField(blank=True, null=True)),
                (
                    "deposit_slip_number",
                    models.CharField(blank=True, max_length=100, null=True),
                ),
                (
                    "recorded_by_user_id",
                    models.CharField(
                        blank=True,
                        help_text="User who recorded the payment (None for gateway events)",
                        max_length=64,
                        null=True,
                    ),
                ),
                (
                    "notes",
                    models.TextField(
                        blank=True,
                        help_text="Free-form notes; may be appended after settlement",
                        null=True,
                    ),
                ),
            ],
            options={
                "verbose_name": "Payment",
                "verbose_name_plural": "Payments",
                "db_table": "payments",
                "ordering": ["created_at"],
                "indexes": [
                    models.Index(
                        fields=["registration_id", "registration_type", "created_at"],
                        name="payment_registration_idx",
                    ),
                    models.Index(
                        fields=["payment_method", "payment_status"],
                        name="payment_method_status_idx",
                    ),
                ],
                "constraints": [
                    models.CheckConstraint(
                        condition=models.Q(amount__gt=0),
                        name="payment_amount_positive",
                    ),
                    models.UniqueConstraint(
                        condition=models.Q(
                            ("payment_method", "check"), ("payment_status", "succeeded")
                        ),
                        fields=(
                            "registration_id",
                            "registration_type",
                            "check_number",
                            "check_received_date",
                            "amount",
                        ),
                        name="payment_check_received_once",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="Refund",
            fields=[
                _id_field(),
                *_timestamp_fields(),
                *_registration_fields(),
                (
                    "refund_amount",
                    models.DecimalField(
                        decimal_places=2,
                        help_text="Refund amount (always positive)",
                        max_digits=12,
                    ),
                ),
                (
                    "refund_method",
                    models.CharField(
                        choices=[
                            ("gateway", "Payment Gateway"),
                            ("check", "Check"),
                            ("cash", "Cash"),
                            ("manual", "Manual"),
                        ],
                        help_text="How the refund is paid out",
                        max_length=10,
                    ),
                ),
                (
                    "refund_reason",
                    models.CharField(help_text="Reason for the refund", max_length=500),
                ),
                (
                    "status",
                    django_fsm.FSMField(
                        choices=[
                            ("pending", "Pending"),
                            ("completed", "Completed"),
                            ("failed", "Failed"),
                        ],
                        db_index=True,
                        default="pending",
                        help_text="Current state of the refund (managed by FSM)",
                        max_length=50,
                        protected=True,
                    ),
                ),
                (
                    "gateway_payment_reference",
                    models.CharField(
                        blank=True,
                        help_text="Gateway reference of the card payment being refunded",
                        max_length=255,
                        null=True,
                    ),
                ),
                (
                    "gateway_refund_reference",
                    models.CharField(
                        blank=True,
                        help_text="Gateway refund ID (Stripe re_xxx)",
                        max_length=255,
                        null=True,
                        unique=True,
                    ),
                ),
                (
                    "processed_by_user_id",
                    models.CharField(
                        help_text="Operator who requested the refund",
                        max_length=64,
                    ),
                ),
                (
                    "balance_applied_at",
                    models.DateTimeField(
                        blank=True,
                        help_text="When the refund was debited from amount_paid",
                        null=True,
                    ),
                ),
                ("completed_at", models.DateTimeField(blank=True, null=True)),
                ("failed_at", models.DateTimeField(blank=True, null=True)),
                (
                    "failure_reason",
                    models.TextField(
                        blank=True,
                        help_text="Gateway error details if the refund failed",
                        null=True,
                    ),
                ),
                (
                    "version",
                    models.PositiveIntegerField(
                        default=1,
                        help_text="Version for optimistic locking - incremented on each save",
                    ),
                ),
            ],
            options={
                "verbose_name": "Refund",
                "verbose_name_plural": "Refunds",
                "db_table": "refunds",
                "ordering": ["created_at"],
                "indexes": [
                    models.Index(
                        fields=["registration_id", "registration_type", "created_at"],
                        name="refund_registration_idx",
                    ),
                    models.Index(
                        fields=["status", "created_at"],
                        name="refund_status_created_idx",
                    ),
                ],
                "constraints": [
                    models.CheckConstraint(
                        condition=models.Q(refund_amount__gt=0),
                        name="refund_amount_positive",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="AuditEntry",
            fields=[
                _id_field(),
                *_registration_fields(),
                (
                    "edit_type",
                    models.CharField(
                        choices=[
                            ("manual_total_change", "Manual Total Change"),
                            ("refund_processed", "Refund Processed"),
                            ("check_reconciled", "Check Reconciled"),
                        ],
                        db_index=True,
                        max_length=30,
                    ),
                ),
                ("old_total", models.DecimalField(decimal_places=2, max_digits=12)),
                ("new_total", models.DecimalField(decimal_places=2, max_digits=12)),
                (
                    "difference",
                    models.DecimalField(
                        decimal_places=2,
                        help_text="Signed change (total change or paid change, by edit type)",
                        max_digits=12,
                    ),
                ),
                (
                    "acting_user_id",
                    models.CharField(
                        help_text="User or system actor that made the edit",
                        max_length=64,
                    ),
                ),
                ("notes", models.TextField(blank=True, null=True)),
                ("reference_type", models.CharField(blank=True, max_length=20, null=True)),
                ("reference_id", models.UUIDField(blank=True, db_index=True, null=True)),
                (
                    "metadata",
                    models.JSONField(
                        blank=True,
                        default=dict,
                        help_text="Balance snapshot before and after the edit",
                    ),
                ),
                ("created_at", models.DateTimeField(auto_now_add=True, db_index=True)),
            ],
            options={
                "verbose_name": "Audit Entry",
                "verbose_name_plural": "Audit Entries",
                "db_table": "audit_entries",
                "ordering": ["created_at"],
                "indexes": [
                    models.Index(
                        fields=["registration_id", "registration_type", "created_at"],
                        name="audit_registration_idx",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="WebhookEvent",
            fields=[
                _id_field(),
                *_timestamp_fields(),
                (
                    "stripe_event_id",
                    models.CharField(
                        help_text="Stripe Event ID (evt_xxx) - unique constraint for idempotency",
                        max_length=255,
                        unique=True,
                    ),
                ),
                (
                    "event_type",
                    models.CharField(
                        db_index=True,
                        help_text="Stripe event type (e.g., 'payment_intent.succeeded')",
                        max_length=100,
                    ),
                ),
                (
                    "payload",
                    models.JSONField(help_text="Full webhook payload from Stripe (JSON)"),
                ),
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
                (
                    "retry_count",
                    models.PositiveSmallIntegerField(
                        default=0,
                        help_text="Number of processing attempts",
                    ),
                ),
            ],
            options={
                "verbose_name": "Webhook Event",
                "verbose_name_plural": "Webhook Events",
                "db_table": "ledger_webhook_events",
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(
                        fields=["status", "created_at"],
                        name="webhook_status_created_idx",
                    ),
                    models.Index(
                        fields=["status", "retry_count"],
                        name="webhook_status_retry_idx",
                    ),
                ],
            },
        ),
    ]
