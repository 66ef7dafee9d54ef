"""
Tests for ledger models.

Covers derived balance status, FSM transitions on payments and refunds,
settled-payment immutability and the append-only audit trail.
"""

import datetime
from decimal import Decimal

import pytest
from django.db import IntegrityError, transaction
from django_fsm import TransitionNotAllowed

from core.exceptions import BaseApplicationError

from ledger.exceptions import InvalidStateTransitionError, InvariantViolation
from ledger.models import AppendOnlyError, AuditEntry, Balance, Payment
from ledger.state_machines import (
    AuditEditType,
    BalanceStatus,
    PaymentMethod,
    PaymentState,
    RefundMethod,
    RefundState,
    WebhookEventStatus,
)
from ledger.tests.factories import (
    BalanceFactory,
    PaymentFactory,
    RefundFactory,
    WebhookEventFactory,
)
from ledger.tests.helpers import reload


@pytest.mark.django_db
class TestBalance:
    """Tests for the Balance model."""

    def test_status_derived_on_save(self):
        balance = BalanceFactory(
            total_amount_due=Decimal("500.00"), amount_paid=Decimal("200.00")
        )

        assert balance.payment_status == BalanceStatus.PARTIAL
        assert reload(balance).payment_status == BalanceStatus.PARTIAL

    def test_save_rejects_unreconciled_triple(self):
        with pytest.raises(InvariantViolation):
            BalanceFactory(
                total_amount_due=Decimal("500.00"),
                amount_paid=Decimal("100.00"),
                amount_remaining=Decimal("100.00"),
            )

        assert Balance.objects.count() == 0

    def test_version_increments_on_update(self):
        balance = BalanceFactory()
        assert balance.version == 1

        balance.due_date = None
        balance.save()

        assert balance.version == 2

    def test_one_balance_per_registration(self):
        balance = BalanceFactory()

        with pytest.raises(IntegrityError), transaction.atomic():
            BalanceFactory(
                registration_id=balance.registration_id,
                registration_type=balance.registration_type,
            )

    def test_same_id_different_type_allowed(self):
        balance = BalanceFactory(registration_type="group")

        other = BalanceFactory(
            registration_id=balance.registration_id, registration_type="staff"
        )

        assert other.pk != balance.pk

    def test_delete_not_allowed(self):
        balance = BalanceFactory()

        with pytest.raises(AppendOnlyError) as exc_info:
            balance.delete()

        assert exc_info.value.error_code == "APPEND_ONLY"
        assert Balance.objects.filter(pk=balance.pk).exists()

    def test_registration_key(self):
        balance = BalanceFactory()

        key = balance.registration_key

        assert key.registration_id == balance.registration_id
        assert key.registration_type == balance.registration_type


@pytest.mark.django_db
class TestPayment:
    """Tests for Payment state transitions."""

    def test_default_state_is_pending(self):
        payment = PaymentFactory()

        assert payment.payment_status == PaymentState.PENDING
        assert payment.is_pending

    def test_settle(self):
        payment = PaymentFactory()

        payment.settle()
        payment.save()

        payment = reload(payment)
        assert payment.payment_status == PaymentState.SUCCEEDED
        assert payment.processed_at is not None

    def test_fail_records_reason(self):
        payment = PaymentFactory(payment_method=PaymentMethod.CARD, gateway_reference="pi_1")

        payment.fail("card_declined")
        payment.save()

        payment = reload(payment)
        assert payment.payment_status == PaymentState.FAILED
        assert payment.failure_reason == "card_declined"

    def test_failed_card_can_settle_on_retry(self):
        payment = PaymentFactory(
            payment_method=PaymentMethod.CARD,
            gateway_reference="pi_2",
            payment_status=PaymentState.FAILED,
            failure_reason="insufficient_funds",
        )

        payment.settle()
        payment.save()

        payment = reload(payment)
        assert payment.is_settled
        assert payment.failure_reason is None

    def test_settled_payment_cannot_fail(self):
        payment = PaymentFactory(payment_status=PaymentState.SUCCEEDED)

        with pytest.raises(TransitionNotAllowed):
            payment.fail("late failure")

    def test_status_cannot_be_assigned_directly(self):
        payment = PaymentFactory()

        with pytest.raises(AttributeError):
            payment.payment_status = PaymentState.SUCCEEDED

    def test_settled_payment_is_immutable(self):
        payment = reload(PaymentFactory(payment_status=PaymentState.SUCCEEDED))

        payment.amount = Decimal("1.00")
        with pytest.raises(InvalidStateTransitionError):
            payment.save()

        assert reload(payment).amount == Decimal("100.00")

    def test_settled_payment_accepts_notes(self):
        payment = reload(PaymentFactory(payment_status=PaymentState.SUCCEEDED))

        payment.append_note("Deposited late")
        payment.append_note("Bank confirmed")

        notes = reload(payment).notes
        assert "Deposited late" in notes
        assert notes.count("\n") == 1

    def test_positive_amount_enforced(self):
        with pytest.raises(IntegrityError), transaction.atomic():
            PaymentFactory(amount=Decimal("0.00"))

    def test_same_check_received_once(self):
        received = datetime.date(2024, 3, 1)
        payment = PaymentFactory(
            payment_status=PaymentState.SUCCEEDED,
            check_number="77",
            check_received_date=received,
        )

        with pytest.raises(IntegrityError), transaction.atomic():
            PaymentFactory(
                registration_id=payment.registration_id,
                registration_type=payment.registration_type,
                check_number="77",
                check_received_date=received,
                payment_status=PaymentState.SUCCEEDED,
                amount=payment.amount,
            )

    def test_pending_duplicates_of_a_check_allowed(self):
        payment = PaymentFactory(check_number="78")

        PaymentFactory(
            registration_id=payment.registration_id,
            registration_type=payment.registration_type,
            check_number="78",
        )

        assert Payment.objects.filter(check_number="78").count() == 2


@pytest.mark.django_db
class TestRefund:
    """Tests for Refund state transitions."""

    def test_complete(self):
        refund = RefundFactory(refund_method=RefundMethod.GATEWAY)

        refund.complete("re_123")
        refund.save()

        refund = reload(refund)
        assert refund.status == RefundState.COMPLETED
        assert refund.gateway_refund_reference == "re_123"
        assert refund.completed_at is not None

    def test_fail(self):
        refund = RefundFactory()

        refund.fail("declined: card_expired")
        refund.save()

        refund = reload(refund)
        assert refund.status == RefundState.FAILED
        assert refund.failure_reason == "declined: card_expired"
        assert refund.failed_at is not None

    def test_completed_refund_cannot_fail(self):
        refund = RefundFactory(status=RefundState.COMPLETED)

        with pytest.raises(TransitionNotAllowed):
            refund.fail("too late")

    def test_network_failure_can_reopen(self):
        refund = RefundFactory(refund_method=RefundMethod.GATEWAY)
        refund.fail("network: timed out")
        refund.save()
        assert refund.failed_on_network is True

        refund.reopen()
        refund.save()

        refund = reload(refund)
        assert refund.status == RefundState.PENDING
        assert refund.failure_reason is None
        assert refund.failed_at is None

    def test_declined_refund_is_not_a_network_failure(self):
        refund = RefundFactory(refund_method=RefundMethod.GATEWAY)
        refund.fail("declined: card_expired")

        assert refund.failed_on_network is False

    def test_pending_refund_cannot_reopen(self):
        refund = RefundFactory()

        with pytest.raises(TransitionNotAllowed):
            refund.reopen()

    def test_idempotency_key_unique_per_registration(self):
        refund = RefundFactory(idempotency_key="refund-7")
        RefundFactory(idempotency_key="refund-7")
        RefundFactory()
        RefundFactory()

        with pytest.raises(IntegrityError), transaction.atomic():
            RefundFactory(
                registration_id=refund.registration_id,
                registration_type=refund.registration_type,
                idempotency_key="refund-7",
            )

    def test_version_increments_on_save(self):
        refund = RefundFactory()
        assert refund.version == 1

        refund.complete()
        refund.save()

        assert refund.version == 2

    def test_balance_applied(self):
        refund = RefundFactory()

        assert refund.balance_applied is False
        assert refund.is_gateway is False


@pytest.mark.django_db
class TestAuditEntry:
    """Tests for the append-only audit trail."""

    @pytest.fixture
    def entry(self, key):
        return AuditEntry.objects.create(
            registration_id=key.registration_id,
            registration_type=key.registration_type,
            edit_type=AuditEditType.MANUAL_TOTAL_CHANGE,
            old_total=Decimal("500.00"),
            new_total=Decimal("450.00"),
            difference=Decimal("-50.00"),
            acting_user_id="9",
        )

    def test_cannot_update(self, entry):
        entry.notes = "rewritten"

        with pytest.raises(AppendOnlyError):
            entry.save()

    def test_cannot_delete(self, entry):
        with pytest.raises(AppendOnlyError) as exc_info:
            entry.delete()

        assert isinstance(exc_info.value, BaseApplicationError)
        assert exc_info.value.http_status == 409

    def test_queryset_update_and_delete_blocked(self, entry, key):
        entries = AuditEntry.objects.for_registration(key)

        with pytest.raises(AppendOnlyError):
            entries.update(notes="rewritten")
        with pytest.raises(AppendOnlyError):
            entries.delete()

        assert AuditEntry.objects.count() == 1


@pytest.mark.django_db
class TestWebhookEvent:
    """Tests for WebhookEvent helpers."""

    def test_mark_processing_counts_attempts(self):
        event = WebhookEventFactory()

        event.mark_processing()

        assert event.status == WebhookEventStatus.PROCESSING
        assert event.retry_count == 1

    def test_can_retry_until_limit(self):
        event = WebhookEventFactory(status=WebhookEventStatus.FAILED, retry_count=4)
        assert event.can_retry is True

        event.retry_count = 5
        assert event.can_retry is False

    def test_mark_processed_clears_error(self):
        event = WebhookEventFactory(status=WebhookEventStatus.FAILED, error_message="boom")

        event.mark_processed()

        assert event.is_processed
        assert event.error_message is None
        assert event.processed_at is not None

    def test_get_object_handles_missing_data(self):
        event = WebhookEventFactory(payload={"id": "evt_1"})

        assert event.get_object() == {}
        assert event.get_object_id() is None
