"""
Django ORM implementations of the ledger store protocols.

These are the production stores injected into LedgerReconciler. Every
read that precedes a write happens inside the caller's transaction with
select_for_update(), and balance commits are version-guarded UPDATEs, so
two mutations of the same registration cannot both win against a stale
read.

Usage:
    from ledger.stores import DjangoBalanceStore

    store = DjangoBalanceStore()
    with transaction.atomic():
        balance = store.get_for_update(key)
        store.commit(key, balance.triple.apply_payment(amount), balance.version)
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from django.db.models import F, Sum
from django.utils import timezone

from ledger.exceptions import (
    BalanceNotFoundError,
    PaymentNotFoundError,
    RefundNotFoundError,
    StaleBalanceError,
)
from ledger.calculations import ZERO
from ledger.models import AuditEntry, Balance, Payment, Refund
from ledger.state_machines import PaymentMethod, PaymentState, RefundMethod, RefundState

if TYPE_CHECKING:
    import datetime
    import uuid
    from collections.abc import Iterable
    from decimal import Decimal
    from typing import Any

    from django.db.models import QuerySet

    from ledger.calculations import BalanceTriple
    from ledger.types import AuditRecord, RegistrationKey


def _balance_not_found(key: RegistrationKey) -> BalanceNotFoundError:
    return BalanceNotFoundError(
        f"No balance for registration {key}",
        details=key.log_context(),
    )


# =============================================================================
# Balance Store
# =============================================================================


class DjangoBalanceStore:
    """Balances with optimistic versioning on top of row locks."""

    def get(self, key: RegistrationKey) -> Balance:
        balance = Balance.objects.filter(**key.as_filter()).first()
        if balance is None:
            raise _balance_not_found(key)
        return balance

    def get_for_update(self, key: RegistrationKey) -> Balance:
        balance = Balance.objects.select_for_update().filter(**key.as_filter()).first()
        if balance is None:
            raise _balance_not_found(key)
        return balance

    def create(
        self,
        key: RegistrationKey,
        triple: BalanceTriple,
        due_date: datetime.date | None = None,
    ) -> Balance:
        return Balance.objects.create(
            registration_id=key.registration_id,
            registration_type=key.registration_type,
            total_amount_due=triple.total_amount_due,
            amount_paid=triple.amount_paid,
            amount_remaining=triple.amount_remaining,
            initial_amount_due=triple.total_amount_due,
            due_date=due_date,
        )

    def commit(
        self,
        key: RegistrationKey,
        triple: BalanceTriple,
        expected_version: int,
        last_payment_date: datetime.datetime | None = None,
    ) -> Balance:
        triple.validate()

        fields: dict[str, Any] = {
            "total_amount_due": triple.total_amount_due,
            "amount_paid": triple.amount_paid,
            "amount_remaining": triple.amount_remaining,
            "payment_status": triple.status,
            "version": F("version") + 1,
            "updated_at": timezone.now(),
        }
        if last_payment_date is not None:
            fields["last_payment_date"] = last_payment_date

        updated = Balance.objects.filter(
            **key.as_filter(), version=expected_version
        ).update(**fields)

        if updated == 0:
            current_version = (
                Balance.objects.filter(**key.as_filter())
                .values_list("version", flat=True)
                .first()
            )
            if current_version is None:
                raise _balance_not_found(key)
            raise StaleBalanceError(
                f"Balance for {key} has been modified "
                f"(expected version {expected_version}, current {current_version})",
                details={
                    **key.log_context(),
                    "expected_version": expected_version,
                    "current_version": current_version,
                },
            )

        return Balance.objects.get(**key.as_filter())

    def list_for(self, keys: Iterable[RegistrationKey]) -> list[Balance]:
        keys = list(keys)
        if not keys:
            return []
        ids = {key.registration_id for key in keys}
        wanted = {(key.registration_id, key.registration_type) for key in keys}
        return [
            balance
            for balance in Balance.objects.filter(registration_id__in=ids)
            if (balance.registration_id, balance.registration_type) in wanted
        ]


# =============================================================================
# Payment Store
# =============================================================================


class DjangoPaymentStore:
    def create(self, **fields: Any) -> Payment:
        return Payment.objects.create(**fields)

    def get(self, payment_id: uuid.UUID) -> Payment:
        payment = Payment.objects.filter(id=payment_id).first()
        if payment is None:
            raise PaymentNotFoundError(
                f"Payment {payment_id} not found",
                details={"payment_id": str(payment_id)},
            )
        return payment

    def save(self, payment: Payment, update_fields: list[str] | None = None) -> Payment:
        payment.save(update_fields=update_fields)
        return payment

    def get_for_update(self, payment_id: uuid.UUID) -> Payment:
        payment = Payment.objects.select_for_update().filter(id=payment_id).first()
        if payment is None:
            raise PaymentNotFoundError(
                f"Payment {payment_id} not found",
                details={"payment_id": str(payment_id)},
            )
        return payment

    def by_gateway_reference(
        self, gateway_reference: str, for_update: bool = False
    ) -> Payment | None:
        queryset = Payment.objects.all()
        if for_update:
            queryset = queryset.select_for_update()
        return queryset.filter(gateway_reference=gateway_reference).first()

    def find_received_check(
        self,
        key: RegistrationKey,
        check_number: str,
        date_received: datetime.date,
        amount: Decimal,
    ) -> Payment | None:
        return Payment.objects.filter(
            **key.as_filter(),
            payment_method=PaymentMethod.CHECK,
            payment_status=PaymentState.SUCCEEDED,
            check_number=check_number,
            check_received_date=date_received,
            amount=amount,
        ).first()

    def find_pending_check(self, key: RegistrationKey, check_number: str) -> Payment | None:
        return (
            Payment.objects.select_for_update()
            .filter(
                **key.as_filter(),
                payment_method=PaymentMethod.CHECK,
                payment_status=PaymentState.PENDING,
                check_number=check_number,
            )
            .order_by("created_at")
            .first()
        )

    def latest_settled_card(self, key: RegistrationKey) -> Payment | None:
        return (
            Payment.objects.filter(
                **key.as_filter(),
                payment_method=PaymentMethod.CARD,
                payment_status=PaymentState.SUCCEEDED,
                gateway_reference__isnull=False,
            )
            .order_by("-processed_at", "-created_at")
            .first()
        )

    def list_for(self, key: RegistrationKey) -> QuerySet:
        return Payment.objects.filter(**key.as_filter()).order_by("created_at")


# =============================================================================
# Refund Store
# =============================================================================


class DjangoRefundStore:
    def create(self, **fields: Any) -> Refund:
        return Refund.objects.create(**fields)

    def get(self, refund_id: uuid.UUID) -> Refund:
        refund = Refund.objects.filter(id=refund_id).first()
        if refund is None:
            raise RefundNotFoundError(
                f"Refund {refund_id} not found",
                details={"refund_id": str(refund_id)},
            )
        return refund

    def save(self, refund: Refund) -> Refund:
        refund.save()
        return refund

    def get_for_update(self, refund_id: uuid.UUID) -> Refund:
        refund = Refund.objects.select_for_update().filter(id=refund_id).first()
        if refund is None:
            raise RefundNotFoundError(
                f"Refund {refund_id} not found",
                details={"refund_id": str(refund_id)},
            )
        return refund

    def by_gateway_refund_reference(
        self, gateway_refund_reference: str, for_update: bool = False
    ) -> Refund | None:
        queryset = Refund.objects.all()
        if for_update:
            queryset = queryset.select_for_update()
        return queryset.filter(gateway_refund_reference=gateway_refund_reference).first()

    def by_idempotency_key(
        self, key: RegistrationKey, idempotency_key: str, for_update: bool = False
    ) -> Refund | None:
        queryset = Refund.objects.filter(**key.as_filter(), idempotency_key=idempotency_key)
        if for_update:
            queryset = queryset.select_for_update()
        return queryset.first()

    def pending_gateway_total(self, key: RegistrationKey) -> Decimal:
        """Gateway refunds in flight: sent, not yet debited from amount_paid."""
        total = Refund.objects.filter(
            **key.as_filter(),
            refund_method=RefundMethod.GATEWAY,
            status=RefundState.PENDING,
            balance_applied_at__isnull=True,
        ).aggregate(total=Sum("refund_amount"))["total"]
        return total if total is not None else ZERO

    def list_for(self, key: RegistrationKey) -> QuerySet:
        return Refund.objects.filter(**key.as_filter()).order_by("created_at")


# =============================================================================
# Audit Trail
# =============================================================================


class DjangoAuditTrail:
    """Append-only; exposes record() and reads, nothing else."""

    def record(self, entry: AuditRecord) -> None:
        AuditEntry.objects.create(
            registration_id=entry.key.registration_id,
            registration_type=entry.key.registration_type,
            edit_type=entry.edit_type,
            old_total=entry.old_total,
            new_total=entry.new_total,
            difference=entry.difference,
            acting_user_id=entry.acting_user_id,
            notes=entry.notes,
            reference_type=entry.reference_type,
            reference_id=entry.reference_id,
            metadata=entry.metadata,
        )

    def list_for(self, key: RegistrationKey) -> QuerySet:
        return AuditEntry.objects.for_registration(key)


__all__ = [
    "DjangoAuditTrail",
    "DjangoBalanceStore",
    "DjangoPaymentStore",
    "DjangoRefundStore",
]
