"""
Serializers for the ledger API.

Input serializers validate request bodies and reject unknown fields;
views turn their validated_data into ledger commands. Output serializers
are read-only.

Serializers:
    Input: OpenBalanceSerializer, AdjustTotalSerializer,
        RecordCheckReceivedSerializer, RecordCheckExpectedSerializer,
        MarkCheckReceivedSerializer, RecordCashPaymentSerializer,
        ProcessRefundSerializer, CompleteManualRefundSerializer,
        SummarizeBalancesSerializer, OverdueQuerySerializer
    Output: BalanceSerializer, PaymentSerializer, RefundSerializer,
        AuditEntrySerializer, BalanceStatementSerializer,
        BalanceSummarySerializer, RederivationResultSerializer

Usage:
    from ledger.serializers import BalanceSerializer

    serializer = BalanceSerializer(balance)
    data = serializer.data
"""

from __future__ import annotations

from rest_framework import serializers

from core.serializer_mixins import StrictFieldsMixin, TimestampMixin

from ledger.models import AuditEntry, Balance, Payment, Refund
from ledger.state_machines import RefundMethod, RegistrationType
from ledger.types import DepositDetails


def _money(**kwargs) -> serializers.DecimalField:
    return serializers.DecimalField(max_digits=12, decimal_places=2, **kwargs)


# =============================================================================
# Output Serializers
# =============================================================================


class BalanceSerializer(TimestampMixin, serializers.ModelSerializer):
    """Read-only balance with its derived status and version."""

    class Meta:
        model = Balance
        fields = [
            "id",
            "registration_id",
            "registration_type",
            "total_amount_due",
            "amount_paid",
            "amount_remaining",
            "payment_status",
            "initial_amount_due",
            "due_date",
            "last_payment_date",
            "version",
        ]
        read_only_fields = fields


class PaymentSerializer(TimestampMixin, serializers.ModelSerializer):
    class Meta:
        model = Payment
        fields = [
            "id",
            "registration_id",
            "registration_type",
            "amount",
            "payment_method",
            "payment_status",
            "processed_at",
            "failure_reason",
            "gateway_reference",
            "check_number",
            "check_received_date",
            "payer_name",
            "deposit_bank_account",
            "deposit_date",
            "deposit_slip_number",
            "recorded_by_user_id",
            "notes",
        ]
        read_only_fields = fields


class RefundSerializer(TimestampMixin, serializers.ModelSerializer):
    class Meta:
        model = Refund
        fields = [
            "id",
            "registration_id",
            "registration_type",
            "refund_amount",
            "refund_method",
            "refund_reason",
            "status",
            "gateway_payment_reference",
            "gateway_refund_reference",
            "processed_by_user_id",
            "idempotency_key",
            "balance_applied_at",
            "completed_at",
            "failed_at",
            "failure_reason",
        ]
        read_only_fields = fields


class AuditEntrySerializer(TimestampMixin, serializers.ModelSerializer):
    class Meta:
        model = AuditEntry
        fields = [
            "id",
            "registration_id",
            "registration_type",
            "edit_type",
            "old_total",
            "new_total",
            "difference",
            "acting_user_id",
            "notes",
            "reference_type",
            "reference_id",
            "metadata",
        ]
        read_only_fields = fields


class BalanceStatementSerializer(serializers.Serializer):
    """A balance with its payments, refunds and audit entries."""

    balance = BalanceSerializer(read_only=True)
    payments = PaymentSerializer(many=True, read_only=True)
    refunds = RefundSerializer(many=True, read_only=True)
    audit_entries = AuditEntrySerializer(many=True, read_only=True)


class RegistrationKeySerializer(StrictFieldsMixin, serializers.Serializer):
    registration_id = serializers.UUIDField()
    registration_type = serializers.ChoiceField(choices=RegistrationType.choices)


class SummaryTotalsSerializer(serializers.Serializer):
    total_amount_due = _money(read_only=True)
    amount_paid = _money(read_only=True)
    amount_remaining = _money(read_only=True)
    amount_outstanding = _money(read_only=True)


class BalanceSummarySerializer(serializers.Serializer):
    balances = BalanceSerializer(many=True, read_only=True)
    totals = SummaryTotalsSerializer(read_only=True)
    status_counts = serializers.DictField(child=serializers.IntegerField(), read_only=True)
    missing = serializers.SerializerMethodField()

    def get_missing(self, obj) -> list[dict]:
        return [
            {
                "registration_id": str(key.registration_id),
                "registration_type": key.registration_type,
            }
            for key in obj.missing
        ]


class BalanceTripleSerializer(serializers.Serializer):
    total_amount_due = _money(read_only=True)
    amount_paid = _money(read_only=True)
    amount_remaining = _money(read_only=True)
    status = serializers.CharField(read_only=True)


class RederivationResultSerializer(serializers.Serializer):
    """
    Stored vs re-derived balance.

    discrepancy maps each differing column to stored minus derived.
    """

    registration_id = serializers.UUIDField(source="key.registration_id", read_only=True)
    registration_type = serializers.CharField(source="key.registration_type", read_only=True)
    derived = BalanceTripleSerializer(read_only=True)
    stored = BalanceTripleSerializer(read_only=True)
    discrepancy = serializers.DictField(child=_money(), read_only=True)
    history_gaps = serializers.ListField(child=serializers.DictField(), read_only=True)
    matches = serializers.BooleanField(read_only=True)


# =============================================================================
# Balance Input Serializers
# =============================================================================


class OpenBalanceSerializer(StrictFieldsMixin, serializers.Serializer):
    """Open the balance for a finalized registration."""

    registration_id = serializers.UUIDField()
    registration_type = serializers.ChoiceField(choices=RegistrationType.choices)
    total_amount_due = _money(min_value=0)
    due_date = serializers.DateField(required=False, allow_null=True)


class AdjustTotalSerializer(StrictFieldsMixin, serializers.Serializer):
    """
    Admin edit of a registration's total.

    Supplying expected_version turns a concurrent edit into a 409 instead
    of a silent retry against the newer balance.
    """

    new_total = _money(min_value=0)
    notes = serializers.CharField(required=False, allow_blank=True, max_length=2000)
    expected_version = serializers.IntegerField(required=False, min_value=1)
    notify_email = serializers.EmailField(required=False, allow_null=True)


class SummarizeBalancesSerializer(StrictFieldsMixin, serializers.Serializer):
    registrations = RegistrationKeySerializer(many=True, allow_empty=False)


class OverdueQuerySerializer(StrictFieldsMixin, serializers.Serializer):
    as_of = serializers.DateField(required=False)


# =============================================================================
# Payment Input Serializers
# =============================================================================


class DepositDetailsSerializer(StrictFieldsMixin, serializers.Serializer):
    bank_account = serializers.CharField(required=False, allow_blank=True, max_length=100)
    deposit_date = serializers.DateField(required=False, allow_null=True)
    slip_number = serializers.CharField(required=False, allow_blank=True, max_length=100)


def deposit_from(data: dict | None) -> DepositDetails | None:
    """Build DepositDetails from validated deposit data, if any was sent."""
    if not data:
        return None
    return DepositDetails(**data)


class RecordCheckReceivedSerializer(StrictFieldsMixin, serializers.Serializer):
    check_number = serializers.CharField(max_length=50)
    amount_received = _money()
    date_received = serializers.DateField()
    payer_name = serializers.CharField(required=False, allow_blank=True, max_length=255)
    notes = serializers.CharField(required=False, allow_blank=True, max_length=2000)
    deposit = DepositDetailsSerializer(required=False, allow_null=True)
    notify_email = serializers.EmailField(required=False, allow_null=True)


class RecordCheckExpectedSerializer(StrictFieldsMixin, serializers.Serializer):
    check_number = serializers.CharField(max_length=50)
    amount = _money()
    payer_name = serializers.CharField(required=False, allow_blank=True, max_length=255)
    notes = serializers.CharField(required=False, allow_blank=True, max_length=2000)


class MarkCheckReceivedSerializer(StrictFieldsMixin, serializers.Serializer):
    date_received = serializers.DateField()
    notes = serializers.CharField(required=False, allow_blank=True, max_length=2000)
    deposit = DepositDetailsSerializer(required=False, allow_null=True)
    notify_email = serializers.EmailField(required=False, allow_null=True)


class RecordCashPaymentSerializer(StrictFieldsMixin, serializers.Serializer):
    amount = _money()
    received_at = serializers.DateTimeField()
    notes = serializers.CharField(required=False, allow_blank=True, max_length=2000)
    notify_email = serializers.EmailField(required=False, allow_null=True)


# =============================================================================
# Refund Input Serializers
# =============================================================================


class ProcessRefundSerializer(StrictFieldsMixin, serializers.Serializer):
    """
    Refund money to a registration.

    completed is ignored for gateway refunds; for the other methods it
    records whether the money has already gone out.

    Resending the same idempotency_key returns the original refund; a
    client that timed out should retry with the key it first sent.
    """

    refund_amount = _money()
    method = serializers.ChoiceField(choices=RefundMethod.choices)
    reason = serializers.CharField(max_length=500)
    completed = serializers.BooleanField(required=False, default=True)
    notify_email = serializers.EmailField(required=False, allow_null=True)
    idempotency_key = serializers.CharField(required=False, allow_null=True, max_length=255)


class CompleteManualRefundSerializer(StrictFieldsMixin, serializers.Serializer):
    notes = serializers.CharField(required=False, allow_blank=True, max_length=2000)


__all__ = [
    "AdjustTotalSerializer",
    "AuditEntrySerializer",
    "BalanceSerializer",
    "BalanceStatementSerializer",
    "BalanceSummarySerializer",
    "CompleteManualRefundSerializer",
    "DepositDetailsSerializer",
    "MarkCheckReceivedSerializer",
    "OpenBalanceSerializer",
    "OverdueQuerySerializer",
    "PaymentSerializer",
    "ProcessRefundSerializer",
    "RecordCashPaymentSerializer",
    "RecordCheckExpectedSerializer",
    "RecordCheckReceivedSerializer",
    "RederivationResultSerializer",
    "RefundSerializer",
    "SummarizeBalancesSerializer",
    "deposit_from",
]
