"""
Data types for ledger operations.

Each reconciler entry point takes one command dataclass. Commands
normalize and validate their own fields in __post_init__, so a malformed
command is rejected with LedgerValidationError before any state is read.

Types:
    RegistrationKey: (registration_id, registration_type) pair
    DepositDetails: Bank deposit information for a received check
    OpenBalanceCommand, AdjustTotalCommand: Balance lifecycle
    RecordCheckReceivedCommand, RecordCheckExpectedCommand,
    MarkCheckReceivedCommand: Check reconciliation
    RecordCashPaymentCommand: Cash settlement
    RecordCardPaymentCommand, RecordCardPaymentFailedCommand: Card settlement
    ProcessRefundCommand, CompleteManualRefundCommand: Refunds
    AuditRecord: Entry handed to the audit trail

Usage:
    from ledger.types import RecordCheckReceivedCommand, RegistrationKey

    command = RecordCheckReceivedCommand(
        key=RegistrationKey(registration_id, "group"),
        check_number="1042",
        amount_received=Decimal("300.00"),
        date_received=date(2024, 3, 1),
    )
"""

from __future__ import annotations

import datetime
import uuid
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any

from django.utils import timezone

from ledger.calculations import to_amount
from ledger.exceptions import LedgerValidationError
from ledger.state_machines import AuditEditType, RefundMethod, RegistrationType


def _coerce_uuid(value: Any, field_name: str) -> uuid.UUID:
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except (TypeError, ValueError, AttributeError):
        raise LedgerValidationError(
            f"{field_name} must be a UUID",
            error_code="INVALID_IDENTIFIER",
            details={field_name: repr(value)},
        )


def _require_text(value: Any, field_name: str, max_length: int = 255) -> str:
    if not isinstance(value, str) or not value.strip():
        raise LedgerValidationError(
            f"{field_name} is required",
            error_code="MISSING_FIELD",
            details={"field": field_name},
        )
    value = value.strip()
    if len(value) > max_length:
        raise LedgerValidationError(
            f"{field_name} cannot exceed {max_length} characters",
            error_code="FIELD_TOO_LONG",
            details={"field": field_name, "max_length": max_length},
        )
    return value


def _optional_text(value: Any, field_name: str, max_length: int = 255) -> str | None:
    if value is None or (isinstance(value, str) and not value.strip()):
        return None
    return _require_text(value, field_name, max_length)


def _require_actor(value: Any) -> str:
    # User primary keys arrive as ints from request.user
    if isinstance(value, int) and not isinstance(value, bool):
        value = str(value)
    return _require_text(value, "acting_user_id", 64)


def _optional_actor(value: Any) -> str | None:
    if value is None or value == "":
        return None
    return _require_actor(value)


def _require_past_date(value: Any, field_name: str) -> datetime.date:
    if isinstance(value, datetime.datetime) or not isinstance(value, datetime.date):
        raise LedgerValidationError(
            f"{field_name} must be a date",
            error_code="INVALID_DATE",
            details={field_name: repr(value)},
        )
    if value > timezone.localdate():
        raise LedgerValidationError(
            f"{field_name} cannot be in the future",
            error_code="DATE_IN_FUTURE",
            details={field_name: value.isoformat()},
        )
    return value


def _require_past_datetime(value: Any, field_name: str) -> datetime.datetime:
    if not isinstance(value, datetime.datetime):
        raise LedgerValidationError(
            f"{field_name} must be a timestamp",
            error_code="INVALID_DATE",
            details={field_name: repr(value)},
        )
    if timezone.is_naive(value):
        value = timezone.make_aware(value)
    if value > timezone.now():
        raise LedgerValidationError(
            f"{field_name} cannot be in the future",
            error_code="DATE_IN_FUTURE",
            details={field_name: value.isoformat()},
        )
    return value


# =============================================================================
# Identity
# =============================================================================


@dataclass(frozen=True)
class RegistrationKey:
    """
    Identifies the registration a balance belongs to.

    Registrations are owned by another subsystem; the ledger only keeps
    this pair as a foreign reference.
    """

    registration_id: uuid.UUID
    registration_type: str

    def __post_init__(self) -> None:
        object.__setattr__(
            self, "registration_id", _coerce_uuid(self.registration_id, "registration_id")
        )
        if self.registration_type not in RegistrationType.values:
            raise LedgerValidationError(
                f"Unknown registration type: {self.registration_type!r}",
                error_code="INVALID_REGISTRATION_TYPE",
                details={
                    "registration_type": repr(self.registration_type),
                    "allowed": list(RegistrationType.values),
                },
            )

    def as_filter(self) -> dict[str, Any]:
        """Keyword arguments that select this registration's rows."""
        return {
            "registration_id": self.registration_id,
            "registration_type": self.registration_type,
        }

    def log_context(self) -> dict[str, str]:
        return {
            "registration_id": str(self.registration_id),
            "registration_type": self.registration_type,
        }

    def __str__(self) -> str:
        return f"{self.registration_type}:{self.registration_id}"


@dataclass
class DepositDetails:
    """Where a received check was deposited."""

    bank_account: str | None = None
    deposit_date: datetime.date | None = None
    slip_number: str | None = None

    def __post_init__(self) -> None:
        self.bank_account = _optional_text(self.bank_account, "bank_account", 100)
        self.slip_number = _optional_text(self.slip_number, "slip_number", 100)
        if self.deposit_date is not None:
            self.deposit_date = _require_past_date(self.deposit_date, "deposit_date")


# =============================================================================
# Balance Commands
# =============================================================================


@dataclass
class OpenBalanceCommand:
    """Create the balance when a registration is finalized with a priced total."""

    key: RegistrationKey
    total_amount_due: Decimal
    due_date: datetime.date | None = None

    def __post_init__(self) -> None:
        self.total_amount_due = to_amount(
            self.total_amount_due, "total_amount_due", allow_zero=True
        )


@dataclass
class AdjustTotalCommand:
    """
    Admin edit of the amount a registration owes.

    expected_version pins the edit to the balance the admin was looking
    at; None means "whatever is current when the lock is taken".
    """

    key: RegistrationKey
    new_total: Decimal
    acting_user_id: str
    notes: str | None = None
    expected_version: int | None = None
    notify_email: str | None = None

    def __post_init__(self) -> None:
        self.new_total = to_amount(self.new_total, "new_total", allow_zero=True)
        self.acting_user_id = _require_actor(self.acting_user_id)
        self.notes = _optional_text(self.notes, "notes", 2000)
        if self.expected_version is not None and (
            isinstance(self.expected_version, bool)
            or not isinstance(self.expected_version, int)
            or self.expected_version < 1
        ):
            raise LedgerValidationError(
                "expected_version must be a positive integer",
                error_code="INVALID_VERSION",
                details={"expected_version": repr(self.expected_version)},
            )


# =============================================================================
# Payment Commands
# =============================================================================


@dataclass
class RecordCheckReceivedCommand:
    """A physical check arrived and is applied to the balance."""

    key: RegistrationKey
    check_number: str
    amount_received: Decimal
    date_received: datetime.date
    acting_user_id: str | None = None
    notes: str | None = None
    payer_name: str | None = None
    deposit: DepositDetails | None = None
    notify_email: str | None = None

    def __post_init__(self) -> None:
        self.check_number = _require_text(self.check_number, "check_number", 50)
        self.amount_received = to_amount(self.amount_received, "amount_received")
        self.date_received = _require_past_date(self.date_received, "date_received")
        self.acting_user_id = _optional_actor(self.acting_user_id)
        self.notes = _optional_text(self.notes, "notes", 2000)
        self.payer_name = _optional_text(self.payer_name, "payer_name")


@dataclass
class RecordCheckExpectedCommand:
    """A check was promised but has not arrived; no balance effect yet."""

    key: RegistrationKey
    check_number: str
    amount: Decimal
    acting_user_id: str | None = None
    payer_name: str | None = None
    notes: str | None = None

    def __post_init__(self) -> None:
        self.check_number = _require_text(self.check_number, "check_number", 50)
        self.amount = to_amount(self.amount, "amount")
        self.acting_user_id = _optional_actor(self.acting_user_id)
        self.payer_name = _optional_text(self.payer_name, "payer_name")
        self.notes = _optional_text(self.notes, "notes", 2000)


@dataclass
class MarkCheckReceivedCommand:
    """A previously expected check arrived."""

    payment_id: uuid.UUID
    date_received: datetime.date
    acting_user_id: str | None = None
    notes: str | None = None
    deposit: DepositDetails | None = None
    notify_email: str | None = None

    def __post_init__(self) -> None:
        self.payment_id = _coerce_uuid(self.payment_id, "payment_id")
        self.date_received = _require_past_date(self.date_received, "date_received")
        self.acting_user_id = _optional_actor(self.acting_user_id)
        self.notes = _optional_text(self.notes, "notes", 2000)


@dataclass
class RecordCashPaymentCommand:
    """Cash was taken at the desk."""

    key: RegistrationKey
    amount: Decimal
    received_at: datetime.datetime
    acting_user_id: str | None = None
    notes: str | None = None
    notify_email: str | None = None

    def __post_init__(self) -> None:
        self.amount = to_amount(self.amount, "amount")
        self.received_at = _require_past_datetime(self.received_at, "received_at")
        self.acting_user_id = _optional_actor(self.acting_user_id)
        self.notes = _optional_text(self.notes, "notes", 2000)


@dataclass
class RecordCardPaymentCommand:
    """
    A card payment identified by its gateway reference.

    Used for both the pending record written when an intent is created
    and the settlement reported by the gateway.
    """

    key: RegistrationKey
    amount: Decimal
    gateway_reference: str
    notes: str | None = None
    notify_email: str | None = None

    def __post_init__(self) -> None:
        self.amount = to_amount(self.amount, "amount")
        self.gateway_reference = _require_text(
            self.gateway_reference, "gateway_reference"
        )
        self.notes = _optional_text(self.notes, "notes", 2000)


@dataclass
class RecordCardPaymentFailedCommand:
    """The gateway reported a card payment as failed."""

    key: RegistrationKey
    amount: Decimal
    gateway_reference: str
    failure_reason: str | None = None

    def __post_init__(self) -> None:
        self.amount = to_amount(self.amount, "amount")
        self.gateway_reference = _require_text(
            self.gateway_reference, "gateway_reference"
        )
        self.failure_reason = _optional_text(self.failure_reason, "failure_reason", 2000)


# =============================================================================
# Refund Commands
# =============================================================================


@dataclass
class ProcessRefundCommand:
    """
    Return money to a registration.

    completed only applies to non-gateway methods: it declares whether the
    check or cash has already gone out (completed) or is still to be sent
    (pending). Gateway refunds resolve against the gateway response.

    idempotency_key makes the call replay-safe: the same key for the same
    registration returns the refund it first created, and retries the
    gateway call when that refund failed on a network error.
    """

    key: RegistrationKey
    refund_amount: Decimal
    method: str
    reason: str
    acting_user_id: str
    completed: bool = True
    notify_email: str | None = None
    idempotency_key: str | None = None

    def __post_init__(self) -> None:
        self.refund_amount = to_amount(self.refund_amount, "refund_amount")
        self.idempotency_key = _optional_text(self.idempotency_key, "idempotency_key", 255)
        if self.method not in RefundMethod.values:
            raise LedgerValidationError(
                f"Unknown refund method: {self.method!r}",
                error_code="INVALID_REFUND_METHOD",
                details={"method": repr(self.method), "allowed": list(RefundMethod.values)},
            )
        self.reason = _require_text(self.reason, "reason", 500)
        self.acting_user_id = _require_actor(self.acting_user_id)

    @property
    def is_gateway(self) -> bool:
        return self.method == RefundMethod.GATEWAY


@dataclass
class CompleteManualRefundCommand:
    """An operator confirms a pending check/cash/manual refund went out."""

    refund_id: uuid.UUID
    acting_user_id: str
    notes: str | None = None

    def __post_init__(self) -> None:
        self.refund_id = _coerce_uuid(self.refund_id, "refund_id")
        self.acting_user_id = _require_actor(self.acting_user_id)
        self.notes = _optional_text(self.notes, "notes", 2000)


# =============================================================================
# Audit
# =============================================================================


@dataclass
class AuditRecord:
    """
    One balance-affecting edit, as handed to the audit trail.

    For manual_total_change, old_total/new_total are the totals and
    difference is new - old. For refund_processed and check_reconciled the
    total does not move, so old_total == new_total and difference is the
    signed change in amount_paid.
    """

    key: RegistrationKey
    edit_type: str
    old_total: Decimal
    new_total: Decimal
    difference: Decimal
    acting_user_id: str
    notes: str | None = None
    reference_type: str | None = None
    reference_id: uuid.UUID | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.edit_type not in AuditEditType.values:
            raise LedgerValidationError(
                f"Unknown audit edit type: {self.edit_type!r}",
                error_code="INVALID_AUDIT_EDIT_TYPE",
            )


__all__ = [
    "AdjustTotalCommand",
    "AuditRecord",
    "CompleteManualRefundCommand",
    "DepositDetails",
    "MarkCheckReceivedCommand",
    "OpenBalanceCommand",
    "ProcessRefundCommand",
    "RecordCardPaymentCommand",
    "RecordCardPaymentFailedCommand",
    "RecordCashPaymentCommand",
    "RecordCheckExpectedCommand",
    "RecordCheckReceivedCommand",
    "RegistrationKey",
]
