"""
Tests for LedgerReconciler.

Each test drives the reconciler through its public entry points against
the real Django stores and asserts on the balance triple, the payment
rows and the audit trail together. Refunds live in test_refund_service.py.
"""

import datetime
import uuid
from decimal import Decimal
from unittest.mock import MagicMock

import pytest
from django.utils import timezone

from ledger.exceptions import (
    BalanceAlreadyOpenError,
    BalanceNotFoundError,
    InvalidStateTransitionError,
    LedgerValidationError,
    PaymentNotFoundError,
    RefundExceedsPaid,
    StaleBalanceError,
)
from ledger.models import AuditEntry, Balance, Payment
from ledger.services import SYSTEM_ACTOR, LedgerReconciler
from ledger.state_machines import (
    AuditEditType,
    BalanceStatus,
    PaymentMethod,
    PaymentState,
    RefundMethod,
    RegistrationType,
)
from ledger.tests.factories import BalanceFactory, PaymentFactory
from ledger.tests.helpers import no_lock, reload
from ledger.types import (
    AdjustTotalCommand,
    DepositDetails,
    MarkCheckReceivedCommand,
    OpenBalanceCommand,
    ProcessRefundCommand,
    RecordCardPaymentCommand,
    RecordCardPaymentFailedCommand,
    RecordCashPaymentCommand,
    RecordCheckExpectedCommand,
    RecordCheckReceivedCommand,
    RegistrationKey,
)

RECEIVED_ON = datetime.date(2024, 3, 1)


def check_received(key, amount="300.00", check_number="1042", date_received=RECEIVED_ON, **kwargs):
    return RecordCheckReceivedCommand(
        key=key,
        check_number=check_number,
        amount_received=Decimal(amount),
        date_received=date_received,
        **kwargs,
    )


# =============================================================================
# Balance Lifecycle
# =============================================================================


@pytest.mark.django_db
class TestOpenBalance:
    """Tests for opening a balance at registration finalization."""

    def test_opens_unpaid_balance(self, reconciler, key):
        balance = reconciler.open_balance(
            OpenBalanceCommand(
                key=key,
                total_amount_due=Decimal("750.00"),
                due_date=datetime.date(2024, 6, 1),
            )
        )

        assert balance.total_amount_due == Decimal("750.00")
        assert balance.amount_paid == Decimal("0.00")
        assert balance.amount_remaining == Decimal("750.00")
        assert balance.initial_amount_due == Decimal("750.00")
        assert balance.payment_status == BalanceStatus.UNPAID
        assert balance.due_date == datetime.date(2024, 6, 1)
        assert balance.version == 1

    def test_reopen_with_same_total_returns_existing(self, reconciler, key):
        command = OpenBalanceCommand(key=key, total_amount_due=Decimal("750.00"))

        first = reconciler.open_balance(command)
        second = reconciler.open_balance(command)

        assert first.pk == second.pk
        assert Balance.objects.filter(**key.as_filter()).count() == 1

    def test_reopen_with_different_total_rejected(self, reconciler, key):
        reconciler.open_balance(OpenBalanceCommand(key=key, total_amount_due=Decimal("750.00")))

        with pytest.raises(BalanceAlreadyOpenError) as exc_info:
            reconciler.open_balance(
                OpenBalanceCommand(key=key, total_amount_due=Decimal("800.00"))
            )

        assert exc_info.value.details["total_amount_due"] == "750.00"
        assert exc_info.value.details["requested_total"] == "800.00"

    def test_zero_total_is_unpaid(self, reconciler, key):
        balance = reconciler.open_balance(OpenBalanceCommand(key=key, total_amount_due="0"))

        assert balance.payment_status == BalanceStatus.UNPAID

    def test_registration_types_are_separate(self, reconciler, key):
        staff_key = RegistrationKey(key.registration_id, RegistrationType.STAFF)

        reconciler.open_balance(OpenBalanceCommand(key=key, total_amount_due=Decimal("100.00")))
        reconciler.open_balance(
            OpenBalanceCommand(key=staff_key, total_amount_due=Decimal("50.00"))
        )

        assert Balance.objects.filter(registration_id=key.registration_id).count() == 2


@pytest.mark.django_db
class TestAdjustTotal:
    """Tests for admin edits of the total due."""

    def test_raise_total(self, reconciler, key, balance):
        updated = reconciler.adjust_total(
            AdjustTotalCommand(
                key=key,
                new_total=Decimal("650.00"),
                acting_user_id="17",
                notes="Added two attendees",
            )
        )

        assert updated.total_amount_due == Decimal("650.00")
        assert updated.amount_remaining == Decimal("650.00")
        assert updated.version == balance.version + 1

        entry = AuditEntry.objects.get(**key.as_filter())
        assert entry.edit_type == AuditEditType.MANUAL_TOTAL_CHANGE
        assert entry.old_total == Decimal("500.00")
        assert entry.new_total == Decimal("650.00")
        assert entry.difference == Decimal("150.00")
        assert entry.acting_user_id == "17"
        assert entry.notes == "Added two attendees"
        assert entry.metadata["before"]["total_amount_due"] == "500.00"
        assert entry.metadata["after"]["total_amount_due"] == "650.00"

    def test_lower_total_below_paid_overpays(self, reconciler, key, balance):
        reconciler.record_check_received(check_received(key, amount="400.00"))

        updated = reconciler.adjust_total(
            AdjustTotalCommand(key=key, new_total=Decimal("350.00"), acting_user_id="17")
        )

        assert updated.amount_paid == Decimal("400.00")
        assert updated.amount_remaining == Decimal("-50.00")
        assert updated.payment_status == BalanceStatus.OVERPAID

        entry = AuditEntry.objects.get(edit_type=AuditEditType.MANUAL_TOTAL_CHANGE)
        assert entry.difference == Decimal("-150.00")

    def test_raise_total_on_paid_balance_reopens_it(self, reconciler, key, balance):
        reconciler.record_check_received(check_received(key, amount="500.00"))

        updated = reconciler.adjust_total(
            AdjustTotalCommand(key=key, new_total=Decimal("600.00"), acting_user_id="17")
        )

        assert updated.payment_status == BalanceStatus.PARTIAL
        assert updated.amount_remaining == Decimal("100.00")

    def test_unchanged_total_writes_nothing(self, reconciler, key, balance):
        updated = reconciler.adjust_total(
            AdjustTotalCommand(key=key, new_total=Decimal("500.00"), acting_user_id="17")
        )

        assert updated.version == balance.version
        assert AuditEntry.objects.count() == 0

    def test_second_of_two_edits_from_same_version_rejected(self, reconciler, key, balance):
        read_version = Balance.objects.get(**key.as_filter()).version
        first = AdjustTotalCommand(
            key=key, new_total=Decimal("650.00"), acting_user_id="17", expected_version=read_version
        )
        second = AdjustTotalCommand(
            key=key, new_total=Decimal("400.00"), acting_user_id="18", expected_version=read_version
        )

        committed = reconciler.adjust_total(first)
        with pytest.raises(StaleBalanceError) as exc_info:
            reconciler.adjust_total(second)

        assert committed.version == read_version + 1
        assert exc_info.value.details["expected_version"] == read_version
        assert exc_info.value.details["current_version"] == read_version + 1
        assert reload(balance).total_amount_due == Decimal("650.00")
        entry = AuditEntry.objects.get()
        assert entry.acting_user_id == "17"
        assert entry.new_total == Decimal("650.00")

    def test_current_expected_version_accepted(self, reconciler, key, balance):
        updated = reconciler.adjust_total(
            AdjustTotalCommand(
                key=key,
                new_total=Decimal("650.00"),
                acting_user_id="17",
                expected_version=balance.version,
            )
        )

        assert updated.total_amount_due == Decimal("650.00")

    def test_unknown_registration(self, reconciler, key):
        with pytest.raises(BalanceNotFoundError):
            reconciler.adjust_total(
                AdjustTotalCommand(key=key, new_total=Decimal("1.00"), acting_user_id="17")
            )


# =============================================================================
# Checks
# =============================================================================


@pytest.mark.django_db
class TestRecordCheckReceived:
    """Tests for applying received checks."""

    def test_full_payment(self, reconciler, key, balance):
        payment = reconciler.record_check_received(
            check_received(key, amount="500.00", acting_user_id="17", payer_name="ACME Corp")
        )

        assert payment.payment_method == PaymentMethod.CHECK
        assert payment.payment_status == PaymentState.SUCCEEDED
        assert payment.check_received_date == RECEIVED_ON
        assert payment.payer_name == "ACME Corp"
        assert payment.recorded_by_user_id == "17"

        balance = reload(balance)
        assert balance.amount_paid == Decimal("500.00")
        assert balance.amount_remaining == Decimal("0.00")
        assert balance.payment_status == BalanceStatus.PAID_FULL
        assert balance.last_payment_date is not None

    def test_audited_as_check_reconciled(self, reconciler, key, balance):
        payment = reconciler.record_check_received(
            check_received(key, acting_user_id="17", notes="Mailed in")
        )

        entry = AuditEntry.objects.get(**key.as_filter())
        assert entry.edit_type == AuditEditType.CHECK_RECONCILED
        assert entry.old_total == entry.new_total == Decimal("500.00")
        assert entry.difference == Decimal("300.00")
        assert entry.reference_type == "payment"
        assert entry.reference_id == payment.id
        assert entry.metadata["check_number"] == "1042"
        assert entry.notes == "Mailed in"

    def test_without_operator_audits_system(self, reconciler, key, balance):
        reconciler.record_check_received(check_received(key))

        assert AuditEntry.objects.get(**key.as_filter()).acting_user_id == SYSTEM_ACTOR

    def test_partial_then_rest(self, reconciler, key, balance):
        reconciler.record_check_received(check_received(key, amount="200.00"))
        assert reload(balance).payment_status == BalanceStatus.PARTIAL

        reconciler.record_check_received(
            check_received(key, amount="300.00", check_number="1043")
        )

        balance = reload(balance)
        assert balance.amount_paid == Decimal("500.00")
        assert balance.payment_status == BalanceStatus.PAID_FULL

    def test_overpayment(self, reconciler, key, balance):
        reconciler.record_check_received(check_received(key, amount="550.00"))

        balance = reload(balance)
        assert balance.amount_remaining == Decimal("-50.00")
        assert balance.payment_status == BalanceStatus.OVERPAID

    def test_same_check_twice_applies_once(self, reconciler, key, balance):
        first = reconciler.record_check_received(check_received(key))
        second = reconciler.record_check_received(check_received(key))

        assert first.id == second.id
        assert reload(balance).amount_paid == Decimal("300.00")
        assert Payment.objects.filter(**key.as_filter()).count() == 1
        assert AuditEntry.objects.filter(**key.as_filter()).count() == 1

    def test_same_number_different_date_is_a_new_check(self, reconciler, key, balance):
        reconciler.record_check_received(check_received(key, amount="100.00"))
        reconciler.record_check_received(
            check_received(key, amount="100.00", date_received=datetime.date(2024, 3, 8))
        )

        assert reload(balance).amount_paid == Decimal("200.00")

    def test_settles_pending_check_with_received_amount(self, reconciler, key, balance):
        expected = reconciler.record_check_expected(
            RecordCheckExpectedCommand(key=key, check_number="1042", amount=Decimal("250.00"))
        )

        payment = reconciler.record_check_received(check_received(key, amount="240.00"))

        assert payment.id == expected.id
        assert payment.amount == Decimal("240.00")
        assert reload(payment).payment_status == PaymentState.SUCCEEDED
        assert Payment.objects.filter(**key.as_filter()).count() == 1
        assert reload(balance).amount_paid == Decimal("240.00")

    def test_records_deposit_details(self, reconciler, key, balance):
        payment = reconciler.record_check_received(
            check_received(
                key,
                deposit=DepositDetails(
                    bank_account="First National ****1234",
                    deposit_date=datetime.date(2024, 3, 2),
                    slip_number="DS-88",
                ),
            )
        )

        payment = reload(payment)
        assert payment.deposit_bank_account == "First National ****1234"
        assert payment.deposit_date == datetime.date(2024, 3, 2)
        assert payment.deposit_slip_number == "DS-88"

    def test_unknown_registration_writes_nothing(self, reconciler, key):
        with pytest.raises(BalanceNotFoundError):
            reconciler.record_check_received(check_received(key))

        assert Payment.objects.count() == 0

    def test_failure_after_payment_rolls_everything_back(self, gateway, key, balance):
        audit = MagicMock()
        audit.record.side_effect = RuntimeError("audit store down")
        reconciler = LedgerReconciler(audit=audit, gateway=gateway, lock_factory=no_lock)

        with pytest.raises(RuntimeError):
            reconciler.record_check_received(check_received(key))

        assert Payment.objects.count() == 0
        balance = reload(balance)
        assert balance.amount_paid == Decimal("0.00")
        assert balance.version == 1


@pytest.mark.django_db
class TestExpectedChecks:
    """Tests for promised checks and marking them received."""

    @pytest.fixture
    def expected_check(self, reconciler, key, balance):
        return reconciler.record_check_expected(
            RecordCheckExpectedCommand(
                key=key,
                check_number="2001",
                amount=Decimal("200.00"),
                payer_name="Jordan Lee",
            )
        )

    def test_expected_check_has_no_balance_effect(self, expected_check, balance):
        assert expected_check.payment_status == PaymentState.PENDING
        assert reload(balance).amount_paid == Decimal("0.00")
        assert AuditEntry.objects.count() == 0

    def test_expected_check_requires_balance(self, reconciler, key):
        with pytest.raises(BalanceNotFoundError):
            reconciler.record_check_expected(
                RecordCheckExpectedCommand(key=key, check_number="1", amount=Decimal("1.00"))
            )

    def test_mark_received(self, reconciler, key, balance, expected_check):
        payment = reconciler.mark_check_received(
            MarkCheckReceivedCommand(
                payment_id=expected_check.id,
                date_received=RECEIVED_ON,
                acting_user_id="17",
            )
        )

        assert payment.payment_status == PaymentState.SUCCEEDED
        assert payment.check_received_date == RECEIVED_ON
        assert reload(balance).amount_paid == Decimal("200.00")

        entry = AuditEntry.objects.get(**key.as_filter())
        assert entry.edit_type == AuditEditType.CHECK_RECONCILED
        assert entry.reference_id == payment.id

    def test_mark_received_twice_same_date_is_noop(self, reconciler, balance, expected_check):
        command = MarkCheckReceivedCommand(
            payment_id=expected_check.id, date_received=RECEIVED_ON
        )

        reconciler.mark_check_received(command)
        reconciler.mark_check_received(command)

        assert reload(balance).amount_paid == Decimal("200.00")
        assert AuditEntry.objects.count() == 1

    def test_mark_received_on_other_date_rejected(self, reconciler, expected_check):
        reconciler.mark_check_received(
            MarkCheckReceivedCommand(payment_id=expected_check.id, date_received=RECEIVED_ON)
        )

        with pytest.raises(InvalidStateTransitionError):
            reconciler.mark_check_received(
                MarkCheckReceivedCommand(
                    payment_id=expected_check.id,
                    date_received=datetime.date(2024, 3, 5),
                )
            )

    def test_mark_received_rejects_non_check(self, reconciler, key, balance):
        cash = PaymentFactory(
            registration_id=key.registration_id,
            registration_type=key.registration_type,
            payment_method=PaymentMethod.CASH,
            check_number=None,
        )

        with pytest.raises(LedgerValidationError) as exc_info:
            reconciler.mark_check_received(
                MarkCheckReceivedCommand(payment_id=cash.id, date_received=RECEIVED_ON)
            )

        assert exc_info.value.error_code == "NOT_A_CHECK"

    def test_mark_received_rejects_failed_check(self, reconciler, key, balance):
        bounced = PaymentFactory(
            registration_id=key.registration_id,
            registration_type=key.registration_type,
            payment_status=PaymentState.FAILED,
        )

        with pytest.raises(InvalidStateTransitionError):
            reconciler.mark_check_received(
                MarkCheckReceivedCommand(payment_id=bounced.id, date_received=RECEIVED_ON)
            )

    def test_mark_received_unknown_payment(self, reconciler):
        with pytest.raises(PaymentNotFoundError):
            reconciler.mark_check_received(
                MarkCheckReceivedCommand(payment_id=uuid.uuid4(), date_received=RECEIVED_ON)
            )


# =============================================================================
# Cash
# =============================================================================


@pytest.mark.django_db
class TestRecordCashPayment:
    """Tests for cash taken at the desk."""

    def test_applies_cash(self, reconciler, key, balance):
        received_at = timezone.now() - datetime.timedelta(hours=2)

        payment = reconciler.record_cash_payment(
            RecordCashPaymentCommand(
                key=key,
                amount=Decimal("75.00"),
                received_at=received_at,
                acting_user_id="17",
            )
        )

        assert payment.payment_method == PaymentMethod.CASH
        assert payment.payment_status == PaymentState.SUCCEEDED
        assert payment.processed_at == received_at

        balance = reload(balance)
        assert balance.amount_paid == Decimal("75.00")
        assert balance.amount_remaining == Decimal("425.00")
        assert balance.last_payment_date == received_at

    def test_cash_is_not_audited(self, reconciler, key, balance):
        reconciler.record_cash_payment(
            RecordCashPaymentCommand(key=key, amount=Decimal("75.00"), received_at=timezone.now())
        )

        assert AuditEntry.objects.count() == 0


# =============================================================================
# Cards
# =============================================================================


@pytest.mark.django_db
class TestCardPayments:
    """Tests for card payments reported by the gateway."""

    def _succeeded(self, key, amount="300.00", reference="pi_card_1"):
        return RecordCardPaymentCommand(
            key=key, amount=Decimal(amount), gateway_reference=reference
        )

    def test_settlement_credits_balance(self, reconciler, key, balance):
        payment = reconciler.record_card_payment_succeeded(self._succeeded(key))

        assert payment.payment_method == PaymentMethod.CARD
        assert payment.payment_status == PaymentState.SUCCEEDED
        assert reload(balance).amount_paid == Decimal("300.00")

    def test_replayed_settlement_applies_once(self, reconciler, key, balance):
        first = reconciler.record_card_payment_succeeded(self._succeeded(key))
        second = reconciler.record_card_payment_succeeded(self._succeeded(key))

        assert first.id == second.id
        assert reload(balance).amount_paid == Decimal("300.00")

    def test_pending_intent_then_settlement(self, reconciler, key, balance):
        pending = reconciler.record_card_payment_pending(self._succeeded(key))
        assert pending.payment_status == PaymentState.PENDING
        assert reload(balance).amount_paid == Decimal("0.00")

        settled = reconciler.record_card_payment_succeeded(self._succeeded(key))

        assert settled.id == pending.id
        assert Payment.objects.count() == 1
        assert reload(balance).amount_paid == Decimal("300.00")

    def test_failure_then_retry_settles(self, reconciler, key, balance):
        failed = reconciler.record_card_payment_failed(
            RecordCardPaymentFailedCommand(
                key=key,
                amount=Decimal("300.00"),
                gateway_reference="pi_card_1",
                failure_reason="Your card was declined.",
            )
        )
        assert failed.payment_status == PaymentState.FAILED
        assert reload(balance).amount_paid == Decimal("0.00")

        settled = reconciler.record_card_payment_succeeded(self._succeeded(key))

        assert settled.id == failed.id
        assert reload(balance).amount_paid == Decimal("300.00")

    def test_late_failure_ignored(self, reconciler, key, balance):
        reconciler.record_card_payment_succeeded(self._succeeded(key))

        payment = reconciler.record_card_payment_failed(
            RecordCardPaymentFailedCommand(
                key=key, amount=Decimal("300.00"), gateway_reference="pi_card_1"
            )
        )

        assert reload(payment).payment_status == PaymentState.SUCCEEDED
        assert reload(balance).amount_paid == Decimal("300.00")

    def test_reference_of_another_registration_rejected(self, reconciler, key, balance):
        reconciler.record_card_payment_succeeded(self._succeeded(key))
        other = BalanceFactory()

        with pytest.raises(LedgerValidationError) as exc_info:
            reconciler.record_card_payment_succeeded(
                self._succeeded(other.registration_key)
            )

        assert exc_info.value.error_code == "GATEWAY_REFERENCE_MISMATCH"
        assert reload(other).amount_paid == Decimal("0.00")


# =============================================================================
# End-to-End Balance Scenarios
# =============================================================================


@pytest.mark.django_db
class TestBalanceScenarios:
    """A $300 registration paid by check, then refunded or re-priced."""

    @pytest.fixture
    def paid_in_full(self, reconciler, key):
        reconciler.open_balance(OpenBalanceCommand(key=key, total_amount_due=Decimal("300.00")))
        return reconciler.record_check_received(check_received(key, amount="300.00"))

    def _refund(self, reconciler, key, amount):
        return reconciler.process_refund(
            ProcessRefundCommand(
                key=key,
                refund_amount=Decimal(amount),
                method=RefundMethod.CHECK,
                reason="Attendee cancelled",
                acting_user_id="42",
            )
        )

    def test_check_pays_in_full(self, key, paid_in_full):
        balance = Balance.objects.get(**key.as_filter())

        assert balance.amount_paid == Decimal("300.00")
        assert balance.amount_remaining == Decimal("0.00")
        assert balance.payment_status == BalanceStatus.PAID_FULL

    def test_check_refund_reopens_balance(self, reconciler, key, paid_in_full):
        self._refund(reconciler, key, "100.00")

        balance = Balance.objects.get(**key.as_filter())
        assert balance.amount_paid == Decimal("200.00")
        assert balance.amount_remaining == Decimal("100.00")
        assert balance.payment_status == BalanceStatus.PARTIAL

        entry = AuditEntry.objects.get(edit_type=AuditEditType.REFUND_PROCESSED)
        assert entry.difference == Decimal("-100.00")

    def test_refund_over_paid_leaves_balance_unchanged(self, reconciler, key, paid_in_full):
        self._refund(reconciler, key, "100.00")
        before = Balance.objects.get(**key.as_filter())

        with pytest.raises(RefundExceedsPaid):
            self._refund(reconciler, key, "500.00")

        after = Balance.objects.get(**key.as_filter())
        assert (after.amount_paid, after.amount_remaining, after.version) == (
            before.amount_paid,
            before.amount_remaining,
            before.version,
        )

    def test_lowering_total_below_paid_overpays(self, reconciler, key, paid_in_full):
        updated = reconciler.adjust_total(
            AdjustTotalCommand(key=key, new_total=Decimal("250.00"), acting_user_id="7")
        )

        assert updated.total_amount_due == Decimal("250.00")
        assert updated.amount_paid == Decimal("300.00")
        assert updated.amount_remaining == Decimal("-50.00")
        assert updated.payment_status == BalanceStatus.OVERPAID
