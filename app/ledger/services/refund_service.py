"""
Refund processing for registration balances.

Refunds run under a per-registration Redis lock so two requests cannot
both pass the refundable check against the same paid amount. The
refundable amount is amount_paid less gateway refunds still in flight,
since those are only debited when the gateway confirms them.

Gateway refunds follow a two-phase pattern:

    Phase 1 (transaction): create the Refund row as PENDING
    Gateway call (no transaction open): charge_refund with an
        idempotency key derived from the caller's key, or the refund id
    Phase 2 (transaction): COMPLETED + balance debit, or FAILED

Check, cash and manual refunds debit the balance in a single transaction
as soon as they are recorded.

A command carrying an idempotency_key already seen for the registration
returns the refund it created. If that refund failed on a network error
the gateway call is repeated with the same gateway key, so a refund the
gateway did execute is not executed twice.

Usage:
    reconciler = LedgerReconciler()
    refund = reconciler.process_refund(
        ProcessRefundCommand(
            key=key,
            refund_amount=Decimal("100.00"),
            method=RefundMethod.CHECK,
            reason="One attendee cancelled",
            acting_user_id="42",
            idempotency_key="7f6d0c4e",
        )
    )
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from django.utils import timezone

from ledger.adapters import IdempotencyKeyGenerator
from ledger.exceptions import (
    GatewayAlreadyRefundedError,
    GatewayError,
    IdempotencyKeyReusedError,
    LedgerValidationError,
    RefundExceedsPaid,
)
from ledger.state_machines import RefundState

if TYPE_CHECKING:
    from collections.abc import Callable

    from ledger.locks import DistributedLock
    from ledger.models import Balance, Refund
    from ledger.protocols import PaymentGateway
    from ledger.services.reconciler import LedgerReconciler
    from ledger.types import ProcessRefundCommand, RegistrationKey


logger = logging.getLogger(__name__)


class RefundProcessor:
    """
    Runs ProcessRefundCommand for a LedgerReconciler.

    Shares the reconciler's stores and notifier; owns the gateway and the
    lock factory.
    """

    def __init__(
        self,
        reconciler: LedgerReconciler,
        gateway: PaymentGateway,
        lock_factory: Callable[[RegistrationKey], DistributedLock],
    ) -> None:
        self.reconciler = reconciler
        self.gateway = gateway
        self.lock_factory = lock_factory

    def set_gateway(self, gateway: PaymentGateway) -> None:
        self.gateway = gateway

    def process(self, command: ProcessRefundCommand) -> Refund:
        key = command.key
        log_context = {
            **key.log_context(),
            "refund_amount": str(command.refund_amount),
            "refund_method": command.method,
            "idempotency_key": command.idempotency_key,
        }
        logger.info("Processing refund", extra=log_context)

        with self.lock_factory(key):
            existing = None
            if command.idempotency_key:
                existing = self.reconciler.refunds.by_idempotency_key(
                    key, command.idempotency_key
                )

            if existing is not None:
                refund = self._replay(existing, command)
            else:
                self._check_refundable(self.reconciler.balances.get(key), command)
                if command.is_gateway:
                    refund = self._process_gateway(command)
                else:
                    refund = self._process_offline(command)

        logger.info(
            "Refund processed",
            extra={**log_context, "refund_id": str(refund.id), "status": refund.status},
        )
        return refund

    def _check_refundable(self, balance: Balance, command: ProcessRefundCommand) -> None:
        """
        Reject a refund larger than amount_paid less in-flight gateway refunds.

        Called once under the refund lock and again inside the transaction
        that writes the refund, against the row-locked balance.
        """
        key = command.key
        in_flight = self.reconciler.refunds.pending_gateway_total(key)
        refundable = balance.amount_paid - in_flight
        if command.refund_amount > refundable:
            logger.warning(
                "Refund exceeds amount paid",
                extra={
                    **key.log_context(),
                    "refund_amount": str(command.refund_amount),
                    "amount_paid": str(balance.amount_paid),
                    "pending_gateway_refunds": str(in_flight),
                },
            )
            raise RefundExceedsPaid(
                command.refund_amount,
                balance.amount_paid,
                details={
                    **key.log_context(),
                    "pending_gateway_refunds": str(in_flight),
                    "refundable": str(refundable),
                },
            )

    def _new_refund_fields(self, command: ProcessRefundCommand) -> dict:
        return {
            "registration_id": command.key.registration_id,
            "registration_type": command.key.registration_type,
            "refund_amount": command.refund_amount,
            "refund_method": command.method,
            "refund_reason": command.reason,
            "processed_by_user_id": command.acting_user_id,
            "idempotency_key": command.idempotency_key,
        }

    # =========================================================================
    # Replay
    # =========================================================================

    def _replay(self, refund: Refund, command: ProcessRefundCommand) -> Refund:
        if (
            refund.refund_amount != command.refund_amount
            or refund.refund_method != command.method
        ):
            raise IdempotencyKeyReusedError(
                "Idempotency key was already used for a different refund",
                details={
                    **command.key.log_context(),
                    "idempotency_key": command.idempotency_key,
                    "refund_id": str(refund.id),
                    "refund_amount": str(refund.refund_amount),
                    "refund_method": refund.refund_method,
                },
            )

        if not (refund.is_gateway and refund.failed_on_network):
            logger.info(
                "Refund replayed",
                extra={**command.key.log_context(), "refund_id": str(refund.id)},
            )
            return refund

        # The first attempt may have reached the gateway; reuse its key
        reconciler = self.reconciler
        with reconciler.atomic():
            balance = reconciler.balances.get_for_update(command.key)
            refund = reconciler.refunds.get_for_update(refund.id)
            self._check_refundable(balance, command)
            refund.reopen()
            reconciler.refunds.save(refund)

        logger.info(
            "Retrying gateway refund after network failure",
            extra={**command.key.log_context(), "refund_id": str(refund.id)},
        )
        return self._charge(refund, command)

    # =========================================================================
    # Check / Cash / Manual
    # =========================================================================

    def _process_offline(self, command: ProcessRefundCommand) -> Refund:
        reconciler = self.reconciler

        with reconciler.atomic():
            balance = reconciler.balances.get_for_update(command.key)
            self._check_refundable(balance, command)

            fields = self._new_refund_fields(command)
            if command.completed:
                fields["status"] = RefundState.COMPLETED
                fields["completed_at"] = timezone.now()
            refund = reconciler.refunds.create(**fields)

            reconciler.debit_refund(
                balance, refund, command.acting_user_id, command.notify_email
            )
        return refund

    # =========================================================================
    # Gateway
    # =========================================================================

    def _process_gateway(self, command: ProcessRefundCommand) -> Refund:
        reconciler = self.reconciler
        key = command.key

        card_payment = reconciler.payments.latest_settled_card(key)
        if card_payment is None:
            raise LedgerValidationError(
                "No settled card payment to refund through the gateway",
                error_code="NO_CARD_PAYMENT",
                details=key.log_context(),
            )

        # Phase 1: pending row, committed before the gateway is called
        with reconciler.atomic():
            balance = reconciler.balances.get_for_update(key)
            self._check_refundable(balance, command)
            refund = reconciler.refunds.create(
                **self._new_refund_fields(command),
                gateway_payment_reference=card_payment.gateway_reference,
            )

        return self._charge(refund, command)

    def _gateway_idempotency_key(self, refund: Refund) -> str:
        if refund.idempotency_key:
            return IdempotencyKeyGenerator.generate(
                "refund", f"{refund.registration_id}:{refund.idempotency_key}"
            )
        return IdempotencyKeyGenerator.generate("refund", refund.id)

    def _charge(self, refund: Refund, command: ProcessRefundCommand) -> Refund:
        reconciler = self.reconciler
        key = command.key

        try:
            result = self.gateway.charge_refund(
                refund.gateway_payment_reference,
                refund.refund_amount,
                self._gateway_idempotency_key(refund),
                metadata={
                    "refund_id": str(refund.id),
                    "registration_id": str(key.registration_id),
                    "registration_type": key.registration_type,
                },
            )
        except GatewayAlreadyRefundedError:
            logger.warning(
                "Gateway reports charge already refunded; completing locally",
                extra={**key.log_context(), "refund_id": str(refund.id)},
            )
            return reconciler.complete_gateway_refund(
                refund.id, notify_email=command.notify_email
            )
        except GatewayError as e:
            self._fail_refund(refund, e)
            raise

        if result.is_pending:
            # Phase 2 happens when the charge.refunded webhook arrives
            with reconciler.atomic():
                refund = reconciler.refunds.get_for_update(refund.id)
                refund.gateway_refund_reference = result.id
                reconciler.refunds.save(refund)
            logger.info(
                "Gateway refund pending",
                extra={
                    **key.log_context(),
                    "refund_id": str(refund.id),
                    "gateway_refund_reference": result.id,
                },
            )
            return refund

        return reconciler.complete_gateway_refund(
            refund.id, result.id, notify_email=command.notify_email
        )

    def _fail_refund(self, refund: Refund, error: GatewayError) -> None:
        """Persist the failure; the balance is not touched."""
        self.reconciler.fail_gateway_refund(refund.id, f"{error.kind}: {error.message}")
        logger.error(
            "Gateway refund failed",
            extra={
                **refund.registration_key.log_context(),
                "refund_id": str(refund.id),
                "kind": error.kind,
                "gateway_code": error.gateway_code,
            },
        )


__all__ = [
    "RefundProcessor",
]
