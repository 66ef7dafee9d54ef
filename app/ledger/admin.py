"""
Ledger admin configuration.

Money only moves through the reconciler, so balances, payments, refunds
and audit entries are view-only here. Webhook events can be re-queued.
"""

from django.contrib import admin

from ledger.models import AuditEntry, Balance, Payment, Refund, WebhookEvent

__all__ = [
    "AuditEntryAdmin",
    "BalanceAdmin",
    "PaymentAdmin",
    "RefundAdmin",
    "WebhookEventAdmin",
]


class ReadOnlyAdminMixin:
    """View-only admin: no add, change or delete."""

    def has_add_permission(self, request, obj=None):
        return False

    def has_change_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False


@admin.register(Balance)
class BalanceAdmin(ReadOnlyAdminMixin, admin.ModelAdmin):
    list_display = [
        "registration_type",
        "registration_id",
        "total_amount_due",
        "amount_paid",
        "amount_remaining",
        "payment_status",
        "due_date",
        "version",
    ]
    list_filter = ["payment_status", "registration_type"]
    search_fields = ["registration_id"]
    date_hierarchy = "created_at"
    ordering = ["-created_at"]

    fieldsets = (
        (
            None,
            {
                "fields": ("id", "registration_type", "registration_id", "payment_status"),
            },
        ),
        (
            "Amounts",
            {
                "fields": (
                    "total_amount_due",
                    "amount_paid",
                    "amount_remaining",
                    "initial_amount_due",
                ),
            },
        ),
        (
            "Dates",
            {
                "fields": ("due_date", "last_payment_date", "created_at", "updated_at"),
            },
        ),
        (
            "Locking",
            {
                "fields": ("version",),
                "classes": ("collapse",),
            },
        ),
    )


@admin.register(Payment)
class PaymentAdmin(ReadOnlyAdminMixin, admin.ModelAdmin):
    list_display = [
        "id",
        "registration_type",
        "registration_id",
        "amount",
        "payment_method",
        "payment_status",
        "check_number",
        "processed_at",
    ]
    list_filter = ["payment_method", "payment_status", "created_at"]
    search_fields = ["id", "registration_id", "gateway_reference", "check_number", "payer_name"]
    date_hierarchy = "created_at"
    ordering = ["-created_at"]


@admin.register(Refund)
class RefundAdmin(ReadOnlyAdminMixin, admin.ModelAdmin):
    list_display = [
        "id",
        "registration_type",
        "registration_id",
        "refund_amount",
        "refund_method",
        "status",
        "balance_applied_at",
        "completed_at",
    ]
    list_filter = ["refund_method", "status", "created_at"]
    search_fields = [
        "id",
        "registration_id",
        "gateway_refund_reference",
        "gateway_payment_reference",
        "refund_reason",
        "idempotency_key",
    ]
    date_hierarchy = "created_at"
    ordering = ["-created_at"]


@admin.register(AuditEntry)
class AuditEntryAdmin(ReadOnlyAdminMixin, admin.ModelAdmin):
    """Audit entries are append-only."""

    list_display = [
        "created_at",
        "registration_type",
        "registration_id",
        "edit_type",
        "old_total",
        "new_total",
        "difference",
        "acting_user_id",
    ]
    list_filter = ["edit_type", "registration_type", "created_at"]
    search_fields = ["registration_id", "acting_user_id", "reference_id"]
    date_hierarchy = "created_at"
    ordering = ["-created_at"]


@admin.register(WebhookEvent)
class WebhookEventAdmin(admin.ModelAdmin):
    """
    Webhook events are immutable once received; failed ones can be
    re-queued from the changelist.
    """

    list_display = [
        "id",
        "stripe_event_id",
        "event_type",
        "status",
        "retry_count",
        "processed_at",
        "created_at",
    ]
    list_filter = ["status", "event_type", "created_at"]
    search_fields = ["id", "stripe_event_id", "event_type"]
    readonly_fields = [
        "id",
        "created_at",
        "updated_at",
        "stripe_event_id",
        "event_type",
        "status",
        "payload",
        "processed_at",
        "error_message",
        "retry_count",
    ]
    date_hierarchy = "created_at"
    ordering = ["-created_at"]
    actions = ["requeue_events"]

    def has_add_permission(self, request, obj=None):
        return False

    @admin.action(description="Re-queue selected events for processing")
    def requeue_events(self, request, queryset):
        from ledger.tasks import process_webhook_event

        queued = 0
        for webhook_event in queryset:
            if webhook_event.is_processed:
                continue
            process_webhook_event.delay(str(webhook_event.id))
            queued += 1
        self.message_user(request, f"Queued {queued} webhook events.")
