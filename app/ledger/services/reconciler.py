"""
LedgerReconciler: the single writer of registration balances.

Every entry point takes a validated command and runs as one database
transaction that:
    1. Locks the balance row (SELECT ... FOR UPDATE)
    2. Computes the new triple with ledger.calculations
    3. Writes the payment or refund change
    4. Commits the balance against the version it read
    5. Appends the audit entry
    6. Schedules the notification for after commit

Any failure along the way rolls the whole transaction back, so a caller
never observes a payment without its balance effect or the reverse.

Stores, gateway and notifier are injected. Production callers use the
defaults; tests pass fakes.

Usage:
    from ledger.services import LedgerReconciler
    from ledger.types import RecordCheckReceivedCommand, RegistrationKey

    reconciler = LedgerReconciler()
    payment = reconciler.record_check_received(
        RecordCheckReceivedCommand(
            key=RegistrationKey(registration_id, "group"),
            check_number="1042",
            amount_received=Decimal("300.00"),
            date_received=date(2024, 3, 1),
        )
    )
"""

from __future__ import annotations

import uuid
from typing import TYPE_CHECKING

from django.db import IntegrityError
from django.utils import timezone

from core.services import BaseService

from ledger.adapters import StripeGateway
from ledger.calculations import ZERO, BalanceTriple
from ledger.exceptions import (
    BalanceAlreadyOpenError,
    BalanceNotFoundError,
    InvalidStateTransitionError,
    LedgerValidationError,
    StaleBalanceError,
)
from ledger.locks import refund_lock
from ledger.notifications import NotificationDispatcher
from ledger.services.refund_service import RefundProcessor
from ledger.state_machines import (
    AuditEditType,
    NotificationKind,
    PaymentMethod,
    PaymentState,
    RefundState,
)
from ledger.stores import (
    DjangoAuditTrail,
    DjangoBalanceStore,
    DjangoPaymentStore,
    DjangoRefundStore,
)
from ledger.types import AuditRecord

if TYPE_CHECKING:
    from collections.abc import Callable
    from typing import Any

    from ledger.locks import DistributedLock
    from ledger.models import Balance, Payment, Refund
    from ledger.protocols import (
        AuditTrail,
        BalanceStore,
        NotificationSender,
        PaymentGateway,
        PaymentStore,
        RefundStore,
    )
    from ledger.types import (
        AdjustTotalCommand,
        CompleteManualRefundCommand,
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


# Actor recorded on audit entries written without a human operator
SYSTEM_ACTOR = "system"


def _snapshot(before: BalanceTriple, after: BalanceTriple) -> dict[str, Any]:
    return {"before": before.as_dict(), "after": after.as_dict()}


class LedgerReconciler(BaseService):
    """
    Applies payments, refunds and total edits to balances.

    Methods:
        open_balance: Create the balance at registration finalization
        adjust_total: Admin edit of the total due (audited)
        record_check_received: Apply a received check (audited)
        record_check_expected: Note a promised check, no balance effect
        mark_check_received: Apply a previously expected check (audited)
        record_cash_payment: Apply cash taken at the desk
        record_card_payment_pending: Note a card payment intent
        record_card_payment_succeeded: Apply a card settlement
        record_card_payment_failed: Record a failed card attempt
        process_refund: Refund by gateway, check, cash or manual (audited)
        complete_gateway_refund: Finish a pending gateway refund
        complete_manual_refund: Confirm a pending offline refund went out
    """

    def __init__(
        self,
        balances: BalanceStore | None = None,
        payments: PaymentStore | None = None,
        refunds: RefundStore | None = None,
        audit: AuditTrail | None = None,
        notifier: NotificationSender | None = None,
        gateway: PaymentGateway | None = None,
        lock_factory: Callable[[RegistrationKey], DistributedLock] | None = None,
    ) -> None:
        self.balances = balances if balances is not None else DjangoBalanceStore()
        self.payments = payments if payments is not None else DjangoPaymentStore()
        self.refunds = refunds if refunds is not None else DjangoRefundStore()
        self.audit = audit if audit is not None else DjangoAuditTrail()
        self.notifier = notifier if notifier is not None else NotificationDispatcher()
        self.refund_processor = RefundProcessor(
            self,
            gateway=gateway if gateway is not None else StripeGateway,
            lock_factory=lock_factory or refund_lock,
        )

    # =========================================================================
    # Balance Lifecycle
    # =========================================================================

    def open_balance(self, command: OpenBalanceCommand) -> Balance:
        """
        Create the balance for a finalized registration.

        Opening again with the same total returns the existing balance.

        Raises:
            BalanceAlreadyOpenError: A balance exists with a different total
        """
        key = command.key
        logger = self.get_logger()

        try:
            existing = self.balances.get(key)
        except BalanceNotFoundError:
            existing = None

        if existing is None:
            triple = BalanceTriple.opening(command.total_amount_due).validate()
            try:
                with self.atomic():
                    balance = self.balances.create(key, triple, due_date=command.due_date)
            except IntegrityError:
                # Lost the race to another opener
                existing = self.balances.get(key)
            else:
                logger.info(
                    "Opened balance",
                    extra={**key.log_context(), "total_amount_due": str(triple.total_amount_due)},
                )
                return balance

        if existing.total_amount_due != command.total_amount_due:
            raise BalanceAlreadyOpenError(
                f"Balance for {key} is already open with a different total",
                details={
                    **key.log_context(),
                    "total_amount_due": str(existing.total_amount_due),
                    "requested_total": str(command.total_amount_due),
                },
            )
        return existing

    def adjust_total(self, command: AdjustTotalCommand) -> Balance:
        """
        Change the amount a registration owes.

        amount_paid is untouched; amount_remaining and status follow the
        new total. Lowering the total below what was paid leaves the
        balance overpaid rather than refunding anything.

        Raises:
            StaleBalanceError: expected_version given and not current
        """
        key = command.key
        with self.atomic():
            balance = self.balances.get_for_update(key)
            if (
                command.expected_version is not None
                and balance.version != command.expected_version
            ):
                raise StaleBalanceError(
                    f"Balance for {key} has been modified "
                    f"(expected version {command.expected_version}, current {balance.version})",
                    details={
                        **key.log_context(),
                        "expected_version": command.expected_version,
                        "current_version": balance.version,
                    },
                )

            before = BalanceTriple.of(balance)
            if before.total_amount_due == command.new_total:
                return balance

            after = before.with_total(command.new_total)
            updated = self.balances.commit(key, after, balance.version)

            difference = after.total_amount_due - before.total_amount_due
            self.audit.record(
                AuditRecord(
                    key=key,
                    edit_type=AuditEditType.MANUAL_TOTAL_CHANGE,
                    old_total=before.total_amount_due,
                    new_total=after.total_amount_due,
                    difference=difference,
                    acting_user_id=command.acting_user_id,
                    notes=command.notes,
                    metadata=_snapshot(before, after),
                )
            )
            self.notifier.notify(
                command.notify_email,
                NotificationKind.TOTAL_ADJUSTED,
                {
                    "old_total": before.total_amount_due,
                    "new_total": after.total_amount_due,
                    "amount_remaining": after.amount_remaining,
                },
            )

        self.get_logger().info(
            "Adjusted balance total",
            extra={
                **key.log_context(),
                "old_total": str(before.total_amount_due),
                "new_total": str(after.total_amount_due),
                "acting_user_id": command.acting_user_id,
            },
        )
        return updated

    # =========================================================================
    # Shared Balance Effects
    # =========================================================================

    def _credit(self, key: RegistrationKey, balance: Balance, payment: Payment):
        """Apply a settled payment to a locked balance; returns (before, after, balance)."""
        before = BalanceTriple.of(balance)
        after = before.apply_payment(payment.amount)
        updated = self.balances.commit(
            key,
            after,
            balance.version,
            last_payment_date=payment.processed_at or timezone.now(),
        )
        return before, after, updated

    def _record_check_reconciled(
        self,
        key: RegistrationKey,
        balance: Balance,
        payment: Payment,
        acting_user_id: str | None,
        notes: str | None,
        notify_email: str | None,
    ) -> Balance:
        before, after, updated = self._credit(key, balance, payment)
        self.audit.record(
            AuditRecord(
                key=key,
                edit_type=AuditEditType.CHECK_RECONCILED,
                old_total=before.total_amount_due,
                new_total=after.total_amount_due,
                difference=payment.amount,
                acting_user_id=acting_user_id or SYSTEM_ACTOR,
                notes=notes,
                reference_type="payment",
                reference_id=payment.id,
                metadata={**_snapshot(before, after), "check_number": payment.check_number},
            )
        )
        self.notifier.notify(
            notify_email,
            NotificationKind.CHECK_RECEIVED,
            {
                "check_number": payment.check_number,
                "amount": payment.amount,
                "amount_paid": after.amount_paid,
                "amount_remaining": after.amount_remaining,
            },
        )
        return updated

    def debit_refund(
        self,
        balance: Balance,
        refund: Refund,
        acting_user_id: str,
        notify_email: str | None = None,
    ) -> Balance:
        """
        Apply a refund to a locked balance and mark the refund applied.

        Must be called inside a transaction holding the balance row lock.
        """
        key = refund.registration_key
        before = BalanceTriple.of(balance)
        after = before.apply_refund(refund.refund_amount)
        updated = self.balances.commit(key, after, balance.version)

        refund.balance_applied_at = timezone.now()
        self.refunds.save(refund)

        self.audit.record(
            AuditRecord(
                key=key,
                edit_type=AuditEditType.REFUND_PROCESSED,
                old_total=before.total_amount_due,
                new_total=after.total_amount_due,
                difference=-refund.refund_amount,
                acting_user_id=acting_user_id,
                notes=refund.refund_reason,
                reference_type="refund",
                reference_id=refund.id,
                metadata={**_snapshot(before, after), "refund_method": refund.refund_method},
            )
        )
        self.notifier.notify(
            notify_email,
            NotificationKind.REFUND_PROCESSED,
            {
                "refund_amount": refund.refund_amount,
                "refund_method": refund.refund_method,
                "amount_paid": after.amount_paid,
                "amount_remaining": after.amount_remaining,
            },
        )
        return updated

    # =========================================================================
    # Checks
    # =========================================================================

    def record_check_received(self, command: RecordCheckReceivedCommand) -> Payment:
        """
        Apply a received check to the balance.

        Idempotent on (check_number, date_received, amount): recording the
        same check twice returns the first payment without a second credit.
        A pending check with the same number is settled instead of
        creating a duplicate.
        """
        key = command.key
        logger = self.get_logger()

        with self.atomic():
            balance = self.balances.get_for_update(key)

            existing = self.payments.find_received_check(
                key, command.check_number, command.date_received, command.amount_received
            )
            if existing is not None:
                logger.info(
                    "Check already recorded",
                    extra={
                        **key.log_context(),
                        "payment_id": str(existing.id),
                        "check_number": command.check_number,
                    },
                )
                return existing

            deposit = command.deposit
            payment = self.payments.find_pending_check(key, command.check_number)
            if payment is None:
                payment = self.payments.create(
                    registration_id=key.registration_id,
                    registration_type=key.registration_type,
                    amount=command.amount_received,
                    payment_method=PaymentMethod.CHECK,
                    payment_status=PaymentState.SUCCEEDED,
                    processed_at=timezone.now(),
                    check_number=command.check_number,
                    check_received_date=command.date_received,
                    payer_name=command.payer_name,
                    deposit_bank_account=deposit.bank_account if deposit else None,
                    deposit_date=deposit.deposit_date if deposit else None,
                    deposit_slip_number=deposit.slip_number if deposit else None,
                    recorded_by_user_id=command.acting_user_id,
                    notes=command.notes,
                )
            else:
                # The amount actually received wins over the amount promised
                payment.amount = command.amount_received
                if command.payer_name:
                    payment.payer_name = command.payer_name
                if command.notes:
                    payment.notes = command.notes
                self._settle_check(payment, command.date_received, command.acting_user_id, deposit)

            self._record_check_reconciled(
                key,
                balance,
                payment,
                command.acting_user_id,
                command.notes,
                command.notify_email,
            )

        logger.info(
            "Recorded check payment",
            extra={
                **key.log_context(),
                "payment_id": str(payment.id),
                "check_number": payment.check_number,
                "amount": str(payment.amount),
            },
        )
        return payment

    def _settle_check(self, payment: Payment, date_received, acting_user_id, deposit) -> None:
        payment.settle()
        payment.check_received_date = date_received
        if acting_user_id:
            payment.recorded_by_user_id = acting_user_id
        if deposit is not None:
            payment.deposit_bank_account = deposit.bank_account
            payment.deposit_date = deposit.deposit_date
            payment.deposit_slip_number = deposit.slip_number
        self.payments.save(payment)

    def record_check_expected(self, command: RecordCheckExpectedCommand) -> Payment:
        """Record a promised check as pending. No balance effect."""
        key = command.key
        with self.atomic():
            # Fails fast for an unknown registration
            self.balances.get(key)
            payment = self.payments.create(
                registration_id=key.registration_id,
                registration_type=key.registration_type,
                amount=command.amount,
                payment_method=PaymentMethod.CHECK,
                check_number=command.check_number,
                payer_name=command.payer_name,
                recorded_by_user_id=command.acting_user_id,
                notes=command.notes,
            )

        self.get_logger().info(
            "Recorded expected check",
            extra={
                **key.log_context(),
                "payment_id": str(payment.id),
                "check_number": payment.check_number,
            },
        )
        return payment

    def mark_check_received(self, command: MarkCheckReceivedCommand) -> Payment:
        """
        Settle a pending check and apply it to the balance.

        Marking an already received check again with the same date is a
        no-op.

        Raises:
            PaymentNotFoundError: Unknown payment_id
            LedgerValidationError: The payment is not a check
            InvalidStateTransitionError: The check is failed, or was
                received on a different date
        """
        candidate = self.payments.get(command.payment_id)
        if candidate.payment_method != PaymentMethod.CHECK:
            raise LedgerValidationError(
                "Only check payments can be marked received",
                error_code="NOT_A_CHECK",
                details={"payment_id": str(candidate.id)},
            )
        key = candidate.registration_key

        with self.atomic():
            balance = self.balances.get_for_update(key)
            payment = self.payments.get_for_update(command.payment_id)

            if payment.payment_status == PaymentState.SUCCEEDED:
                if payment.check_received_date == command.date_received:
                    return payment
                raise InvalidStateTransitionError(
                    "Check was already received on another date",
                    details={
                        "payment_id": str(payment.id),
                        "check_received_date": str(payment.check_received_date),
                    },
                )
            if payment.payment_status != PaymentState.PENDING:
                raise InvalidStateTransitionError(
                    f"Cannot mark a {payment.payment_status} check as received",
                    details={"payment_id": str(payment.id)},
                )

            if command.notes:
                payment.notes = command.notes
            self._settle_check(payment, command.date_received, command.acting_user_id, command.deposit)
            self._record_check_reconciled(
                key,
                balance,
                payment,
                command.acting_user_id,
                command.notes,
                command.notify_email,
            )

        self.get_logger().info(
            "Marked check received",
            extra={
                **key.log_context(),
                "payment_id": str(payment.id),
                "amount": str(payment.amount),
            },
        )
        return payment

    # =========================================================================
    # Cash
    # =========================================================================

    def record_cash_payment(self, command: RecordCashPaymentCommand) -> Payment:
        key = command.key
        with self.atomic():
            balance = self.balances.get_for_update(key)
            payment = self.payments.create(
                registration_id=key.registration_id,
                registration_type=key.registration_type,
                amount=command.amount,
                payment_method=PaymentMethod.CASH,
                payment_status=PaymentState.SUCCEEDED,
                processed_at=command.received_at,
                recorded_by_user_id=command.acting_user_id,
                notes=command.notes,
            )
            _, after, _ = self._credit(key, balance, payment)
            self.notifier.notify(
                command.notify_email,
                NotificationKind.PAYMENT_RECEIVED,
                {
                    "payment_method": PaymentMethod.CASH,
                    "amount": payment.amount,
                    "amount_paid": after.amount_paid,
                    "amount_remaining": after.amount_remaining,
                },
            )

        self.get_logger().info(
            "Recorded cash payment",
            extra={**key.log_context(), "payment_id": str(payment.id), "amount": str(payment.amount)},
        )
        return payment

    # =========================================================================
    # Cards
    # =========================================================================

    def _card_for_reference(self, key: RegistrationKey, gateway_reference: str) -> Payment | None:
        payment = self.payments.by_gateway_reference(gateway_reference, for_update=True)
        if payment is not None and payment.registration_key != key:
            raise LedgerValidationError(
                "Gateway reference belongs to another registration",
                error_code="GATEWAY_REFERENCE_MISMATCH",
                details={**key.log_context(), "gateway_reference": gateway_reference},
            )
        if payment is not None and payment.payment_method != PaymentMethod.CARD:
            raise LedgerValidationError(
                "Gateway reference belongs to a non-card payment",
                error_code="GATEWAY_REFERENCE_MISMATCH",
                details={"gateway_reference": gateway_reference},
            )
        return payment

    def record_card_payment_pending(self, command: RecordCardPaymentCommand) -> Payment:
        """Note a card payment intent; returns the existing row on replay."""
        key = command.key
        with self.atomic():
            self.balances.get_for_update(key)
            payment = self._card_for_reference(key, command.gateway_reference)
            if payment is None:
                payment = self.payments.create(
                    registration_id=key.registration_id,
                    registration_type=key.registration_type,
                    amount=command.amount,
                    payment_method=PaymentMethod.CARD,
                    gateway_reference=command.gateway_reference,
                    notes=command.notes,
                )
        return payment

    def record_card_payment_succeeded(self, command: RecordCardPaymentCommand) -> Payment:
        """
        Apply a card settlement reported by the gateway.

        Idempotent on gateway_reference: a replayed settlement returns the
        settled payment and leaves the balance as if applied once.
        """
        key = command.key
        logger = self.get_logger()

        with self.atomic():
            balance = self.balances.get_for_update(key)
            payment = self._card_for_reference(key, command.gateway_reference)

            if payment is not None and payment.is_settled:
                logger.info(
                    "Card payment already applied",
                    extra={
                        **key.log_context(),
                        "payment_id": str(payment.id),
                        "gateway_reference": command.gateway_reference,
                    },
                )
                return payment

            if payment is None:
                payment = self.payments.create(
                    registration_id=key.registration_id,
                    registration_type=key.registration_type,
                    amount=command.amount,
                    payment_method=PaymentMethod.CARD,
                    payment_status=PaymentState.SUCCEEDED,
                    processed_at=timezone.now(),
                    gateway_reference=command.gateway_reference,
                    notes=command.notes,
                )
            else:
                payment.amount = command.amount
                payment.settle()
                self.payments.save(payment)

            _, after, _ = self._credit(key, balance, payment)
            self.notifier.notify(
                command.notify_email,
                NotificationKind.PAYMENT_RECEIVED,
                {
                    "payment_method": PaymentMethod.CARD,
                    "amount": payment.amount,
                    "amount_paid": after.amount_paid,
                    "amount_remaining": after.amount_remaining,
                },
            )

        logger.info(
            "Recorded card payment",
            extra={
                **key.log_context(),
                "payment_id": str(payment.id),
                "gateway_reference": command.gateway_reference,
                "amount": str(payment.amount),
            },
        )
        return payment

    def record_card_payment_failed(self, command: RecordCardPaymentFailedCommand) -> Payment:
        """
        Record a failed card attempt. No balance effect.

        A failure reported after the payment settled is logged and ignored.
        """
        key = command.key
        logger = self.get_logger()

        with self.atomic():
            self.balances.get_for_update(key)
            payment = self._card_for_reference(key, command.gateway_reference)

            if payment is None:
                payment = self.payments.create(
                    registration_id=key.registration_id,
                    registration_type=key.registration_type,
                    amount=command.amount,
                    payment_method=PaymentMethod.CARD,
                    payment_status=PaymentState.FAILED,
                    processed_at=timezone.now(),
                    gateway_reference=command.gateway_reference,
                    failure_reason=command.failure_reason,
                )
            elif payment.is_pending:
                payment.fail(command.failure_reason)
                self.payments.save(payment)
            elif payment.is_settled:
                logger.warning(
                    "Ignoring failure for a settled card payment",
                    extra={
                        **key.log_context(),
                        "payment_id": str(payment.id),
                        "gateway_reference": command.gateway_reference,
                    },
                )

        return payment

    # =========================================================================
    # Refunds
    # =========================================================================

    def process_refund(self, command: ProcessRefundCommand) -> Refund:
        """
        Return money to a registration.

        Raises:
            RefundExceedsPaid: refund_amount > amount_paid; nothing written
            GatewayError: Gateway declined or unreachable; the refund row is
                left failed and the balance untouched
            LockAcquisitionError: Another refund for the registration is running
        """
        return self.refund_processor.process(command)

    def complete_gateway_refund(
        self,
        refund_id: uuid.UUID,
        gateway_refund_reference: str | None = None,
        notify_email: str | None = None,
    ) -> Refund:
        """
        Mark a gateway refund completed and debit the balance once.

        Called after a synchronous gateway success, an already-refunded
        answer, or a charge.refunded webhook. Safe to call repeatedly.

        Raises:
            InvalidStateTransitionError: The refund already failed
        """
        candidate = self.refunds.get(refund_id)

        with self.atomic():
            balance = self.balances.get_for_update(candidate.registration_key)
            refund = self.refunds.get_for_update(refund_id)

            if refund.status == RefundState.FAILED:
                raise InvalidStateTransitionError(
                    "Cannot complete a failed refund",
                    details={"refund_id": str(refund.id)},
                )
            if refund.is_pending:
                refund.complete(gateway_refund_reference)
                self.refunds.save(refund)
            elif gateway_refund_reference and not refund.gateway_refund_reference:
                refund.gateway_refund_reference = gateway_refund_reference
                self.refunds.save(refund)

            if not refund.balance_applied:
                self.debit_refund(balance, refund, refund.processed_by_user_id, notify_email)

        self.get_logger().info(
            "Completed gateway refund",
            extra={
                **refund.registration_key.log_context(),
                "refund_id": str(refund.id),
                "gateway_refund_reference": refund.gateway_refund_reference,
            },
        )
        return refund

    def fail_gateway_refund(self, refund_id: uuid.UUID, reason: str) -> Refund:
        """
        Mark a pending gateway refund failed. The balance is not touched.

        Raises:
            InvalidStateTransitionError: The refund already completed
        """
        with self.atomic():
            refund = self.refunds.get_for_update(refund_id)
            if refund.is_pending:
                refund.fail(reason)
                self.refunds.save(refund)
            elif refund.is_complete:
                raise InvalidStateTransitionError(
                    "Cannot fail a completed refund",
                    details={"refund_id": str(refund.id)},
                )
        return refund

    def complete_manual_refund(self, command: CompleteManualRefundCommand) -> Refund:
        """
        Confirm that a pending check, cash or manual refund went out.

        The balance was debited when the refund was recorded, so this
        only moves the refund to completed and audits the confirmation
        with a zero difference.

        Raises:
            LedgerValidationError: The refund is a gateway refund
            InvalidStateTransitionError: The refund already failed
        """
        candidate = self.refunds.get(command.refund_id)
        if candidate.is_gateway:
            raise LedgerValidationError(
                "Gateway refunds are completed by the gateway",
                error_code="GATEWAY_REFUND",
                details={"refund_id": str(candidate.id)},
            )
        key = candidate.registration_key

        with self.atomic():
            balance = self.balances.get_for_update(key)
            refund = self.refunds.get_for_update(command.refund_id)

            if refund.is_complete:
                return refund
            if not refund.is_pending:
                raise InvalidStateTransitionError(
                    f"Cannot complete a {refund.status} refund",
                    details={"refund_id": str(refund.id)},
                )

            refund.complete()
            self.refunds.save(refund)

            triple = BalanceTriple.of(balance)
            self.audit.record(
                AuditRecord(
                    key=key,
                    edit_type=AuditEditType.REFUND_PROCESSED,
                    old_total=triple.total_amount_due,
                    new_total=triple.total_amount_due,
                    difference=ZERO,
                    acting_user_id=command.acting_user_id,
                    notes=command.notes or "Refund marked completed",
                    reference_type="refund",
                    reference_id=refund.id,
                    metadata={"refund_method": refund.refund_method, "completed": True},
                )
            )

        self.get_logger().info(
            "Completed manual refund",
            extra={**key.log_context(), "refund_id": str(refund.id)},
        )
        return refund


__all__ = [
    "SYSTEM_ACTOR",
    "LedgerReconciler",
]
