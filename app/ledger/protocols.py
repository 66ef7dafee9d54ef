"""
Protocol definitions for the collaborators the reconciler depends on.

The reconciler never reaches for a module-level store or client; it is
handed objects satisfying these protocols. Production wiring uses the
Django-backed stores in ledger.stores, the Stripe gateway in
ledger.adapters and the Celery-backed dispatcher in ledger.notifications.
Tests substitute fakes or mocks.

Available Protocols:
    BalanceStore: Versioned read/commit of balances
    PaymentStore: Payment record persistence and lookups
    RefundStore: Refund record persistence and lookups
    AuditTrail: Append-only audit log
    PaymentGateway: Refund capability of the card processor
    NotificationSender: Fire-and-forget notification dispatch
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    import datetime
    import uuid
    from collections.abc import Iterable
    from decimal import Decimal
    from typing import Any

    from django.db.models import QuerySet

    from ledger.adapters.stripe_adapter import RefundResult
    from ledger.calculations import BalanceTriple
    from ledger.models import Balance, Payment, Refund
    from ledger.types import AuditRecord, RegistrationKey


@runtime_checkable
class BalanceStore(Protocol):
    """
    Durable balances keyed one-to-one with a registration.

    commit() only succeeds against the version the caller read; a
    concurrent commit in between makes it raise StaleBalanceError.
    """

    def get(self, key: RegistrationKey) -> Balance:
        """
        Return the balance, or raise BalanceNotFoundError.
        """
        ...

    def get_for_update(self, key: RegistrationKey) -> Balance:
        """
        Return the balance with its row locked for the current transaction.
        """
        ...

    def create(
        self,
        key: RegistrationKey,
        triple: BalanceTriple,
        due_date: datetime.date | None = None,
    ) -> Balance:
        ...

    def commit(
        self,
        key: RegistrationKey,
        triple: BalanceTriple,
        expected_version: int,
        last_payment_date: datetime.datetime | None = None,
    ) -> Balance:
        """
        Write a new triple if the stored version still equals expected_version.

        Raises:
            InvariantViolation: The triple does not reconcile
            StaleBalanceError: The version moved since it was read
            BalanceNotFoundError: There is no balance for the key
        """
        ...

    def list_for(self, keys: Iterable[RegistrationKey]) -> list[Balance]:
        ...


@runtime_checkable
class PaymentStore(Protocol):
    def create(self, **fields: Any) -> Payment: ...

    def save(self, payment: Payment, update_fields: list[str] | None = None) -> Payment: ...

    def get(self, payment_id: uuid.UUID) -> Payment: ...

    def get_for_update(self, payment_id: uuid.UUID) -> Payment: ...

    def by_gateway_reference(
        self, gateway_reference: str, for_update: bool = False
    ) -> Payment | None: ...

    def find_received_check(
        self,
        key: RegistrationKey,
        check_number: str,
        date_received: datetime.date,
        amount: Decimal,
    ) -> Payment | None: ...

    def find_pending_check(
        self, key: RegistrationKey, check_number: str
    ) -> Payment | None: ...

    def latest_settled_card(self, key: RegistrationKey) -> Payment | None: ...

    def list_for(self, key: RegistrationKey) -> QuerySet: ...


@runtime_checkable
class RefundStore(Protocol):
    def create(self, **fields: Any) -> Refund: ...

    def save(self, refund: Refund) -> Refund: ...

    def get(self, refund_id: uuid.UUID) -> Refund: ...

    def get_for_update(self, refund_id: uuid.UUID) -> Refund: ...

    def by_gateway_refund_reference(
        self, gateway_refund_reference: str, for_update: bool = False
    ) -> Refund | None: ...

    def by_idempotency_key(
        self, key: RegistrationKey, idempotency_key: str, for_update: bool = False
    ) -> Refund | None: ...

    def pending_gateway_total(self, key: RegistrationKey) -> Decimal: ...

    def list_for(self, key: RegistrationKey) -> QuerySet: ...


@runtime_checkable
class AuditTrail(Protocol):
    """Append-only log. There is deliberately no update or delete."""

    def record(self, entry: AuditRecord) -> None: ...

    def list_for(self, key: RegistrationKey) -> QuerySet: ...


@runtime_checkable
class PaymentGateway(Protocol):
    """
    The only gateway capability the ledger consumes.

    Raises GatewayDeclinedError, GatewayNetworkError or
    GatewayAlreadyRefundedError instead of returning an error value.
    """

    def charge_refund(
        self,
        gateway_payment_reference: str,
        amount: Decimal,
        idempotency_key: str,
        metadata: dict[str, str] | None = None,
    ) -> RefundResult: ...


@runtime_checkable
class NotificationSender(Protocol):
    """
    Fire-and-forget notifications sent after a ledger commit.

    Implementations must never raise into the caller.
    """

    def notify(
        self,
        recipient: str | None,
        template_kind: str,
        payload: dict[str, Any],
    ) -> None: ...
