"""
Tests for LedgerReportingService.

Covers:
1. Balance statements with itemized history
2. Multi-registration summaries
3. Overdue lists
4. Re-deriving a balance from its history
"""

import datetime
import uuid
from decimal import Decimal

import pytest

from ledger.adapters import RefundResult
from ledger.exceptions import BalanceNotFoundError
from ledger.models import AuditEntry, Balance
from ledger.state_machines import (
    AuditEditType,
    BalanceStatus,
    RefundMethod,
    RegistrationType,
)
from ledger.tests.factories import BalanceFactory
from ledger.types import (
    AdjustTotalCommand,
    ProcessRefundCommand,
    RecordCheckReceivedCommand,
    RegistrationKey,
)

AS_OF = datetime.date(2024, 6, 1)


def balance_for(key=None, **kwargs):
    key = key or RegistrationKey(uuid.uuid4(), RegistrationType.INDIVIDUAL)
    return BalanceFactory(
        registration_id=key.registration_id,
        registration_type=key.registration_type,
        **kwargs,
    )


def refund(reconciler, key, amount="50.00", method=RefundMethod.CHECK, **kwargs):
    return reconciler.process_refund(
        ProcessRefundCommand(
            key=key,
            refund_amount=Decimal(amount),
            method=method,
            reason="Attendee cancelled",
            acting_user_id="42",
            **kwargs,
        )
    )


@pytest.mark.django_db
class TestBalanceStatement:
    def test_itemizes_history(self, reconciler, reporting, key, balance):
        reconciler.record_check_received(
            RecordCheckReceivedCommand(
                key=key,
                check_number="1042",
                amount_received=Decimal("300.00"),
                date_received=datetime.date(2024, 3, 1),
            )
        )
        refund(reconciler, key)
        reconciler.adjust_total(
            AdjustTotalCommand(key=key, new_total=Decimal("450.00"), acting_user_id="7")
        )

        statement = reporting.get_balance_statement(key)

        assert statement.balance.amount_paid == Decimal("250.00")
        assert statement.balance.amount_remaining == Decimal("200.00")
        assert [p.check_number for p in statement.payments] == ["1042"]
        assert [r.refund_amount for r in statement.refunds] == [Decimal("50.00")]
        assert [e.edit_type for e in statement.audit_entries] == [
            AuditEditType.CHECK_RECONCILED,
            AuditEditType.REFUND_PROCESSED,
            AuditEditType.MANUAL_TOTAL_CHANGE,
        ]

    def test_unknown_registration(self, reporting, key):
        with pytest.raises(BalanceNotFoundError):
            reporting.get_balance_statement(key)


@pytest.mark.django_db
class TestSummarizeBalances:
    def test_totals_and_counts(self, reporting):
        unpaid = balance_for(total_amount_due=Decimal("500.00"))
        partial = balance_for(total_amount_due=Decimal("300.00"), amount_paid=Decimal("100.00"))
        overpaid = balance_for(total_amount_due=Decimal("100.00"), amount_paid=Decimal("150.00"))

        summary = reporting.summarize_balances(
            [b.registration_key for b in (unpaid, partial, overpaid)]
        )

        assert len(summary.balances) == 3
        assert summary.totals == {
            "total_amount_due": Decimal("900.00"),
            "amount_paid": Decimal("250.00"),
            "amount_remaining": Decimal("650.00"),
            "amount_outstanding": Decimal("700.00"),
        }
        assert summary.status_counts == {
            BalanceStatus.UNPAID: 1,
            BalanceStatus.PARTIAL: 1,
            BalanceStatus.PAID_FULL: 0,
            BalanceStatus.OVERPAID: 1,
        }
        assert summary.missing == []

    def test_reports_missing_and_dedupes(self, reporting, key, balance):
        unknown = RegistrationKey(uuid.uuid4(), RegistrationType.VENDOR)

        summary = reporting.summarize_balances([key, key, unknown])

        assert [b.id for b in summary.balances] == [balance.id]
        assert summary.totals["total_amount_due"] == Decimal("500.00")
        assert summary.missing == [unknown]

    def test_same_id_different_type_not_included(self, reporting, key, balance):
        other = RegistrationKey(key.registration_id, RegistrationType.VENDOR)

        summary = reporting.summarize_balances([other])

        assert summary.balances == []
        assert summary.missing == [other]

    def test_empty_request(self, reporting):
        summary = reporting.summarize_balances([])

        assert summary.balances == []
        assert summary.totals["amount_paid"] == Decimal("0.00")


@pytest.mark.django_db
class TestFindOverdue:
    def test_past_due_with_money_owed(self, reporting):
        late = balance_for(due_date=datetime.date(2024, 5, 1))
        later = balance_for(due_date=datetime.date(2024, 5, 15))
        balance_for(due_date=datetime.date(2024, 4, 1), amount_paid=Decimal("500.00"))
        balance_for(due_date=AS_OF)
        balance_for(due_date=datetime.date(2024, 7, 1))
        balance_for()

        overdue = reporting.find_overdue(AS_OF)

        assert [b.id for b in overdue] == [late.id, later.id]

    def test_overpaid_is_not_overdue(self, reporting):
        balance_for(
            due_date=datetime.date(2024, 1, 1),
            total_amount_due=Decimal("100.00"),
            amount_paid=Decimal("120.00"),
        )

        assert reporting.find_overdue(AS_OF) == []

    def test_rejects_datetime(self, reporting):
        with pytest.raises(TypeError):
            reporting.find_overdue(datetime.datetime(2024, 6, 1, 12, 0))


@pytest.mark.django_db
class TestRederiveBalance:
    def test_matches_after_normal_activity(self, reconciler, reporting, key, card_paid_balance):
        refund(reconciler, key, "100.00", method=RefundMethod.GATEWAY)
        refund(reconciler, key, "25.00", method=RefundMethod.CASH)
        reconciler.adjust_total(
            AdjustTotalCommand(key=key, new_total=Decimal("600.00"), acting_user_id="7")
        )

        result = reporting.rederive_balance(key)

        assert result.matches is True
        assert result.derived.total_amount_due == Decimal("600.00")
        assert result.derived.amount_paid == Decimal("175.00")
        assert result.derived.amount_remaining == Decimal("425.00")

    def test_detects_tampering(self, reporting, key, card_paid_balance):
        Balance.objects.filter(**key.as_filter()).update(
            amount_paid=Decimal("320.00"), amount_remaining=Decimal("180.00")
        )

        result = reporting.rederive_balance(key)

        assert result.matches is False
        assert result.discrepancy == {
            "amount_paid": Decimal("20.00"),
            "amount_remaining": Decimal("-20.00"),
        }

    def test_pending_gateway_refund_not_counted(
        self, reconciler, gateway, reporting, key, card_paid_balance
    ):
        gateway.charge_refund.return_value = RefundResult(
            id="re_pending_1", amount=Decimal("100.00"), currency="usd", status="pending"
        )
        refund(reconciler, key, "100.00", method=RefundMethod.GATEWAY)

        result = reporting.rederive_balance(key)

        assert result.matches is True
        assert result.derived.amount_paid == Decimal("300.00")

    def test_reports_history_gap(self, reporting, key, balance):
        AuditEntry.objects.create(
            registration_id=key.registration_id,
            registration_type=key.registration_type,
            edit_type=AuditEditType.MANUAL_TOTAL_CHANGE,
            old_total=Decimal("450.00"),
            new_total=Decimal("500.00"),
            difference=Decimal("50.00"),
            acting_user_id="7",
        )

        result = reporting.rederive_balance(key)

        assert result.discrepancy == {}
        assert result.matches is False
        assert result.history_gaps[0]["expected_old_total"] == "500.00"
        assert result.history_gaps[0]["recorded_old_total"] == "450.00"
