"""
Ledger-specific exceptions for balance, payment and refund operations.

Every error the reconciler raises is typed; nothing is swallowed except
notification delivery failures, which never reach the caller.

Exception Hierarchy:
    LedgerError (base)
    ├── LedgerValidationError - Malformed input, rejected before any I/O
    ├── BalanceNotFoundError - No balance for the registration
    ├── PaymentNotFoundError / RefundNotFoundError - Child record lookups
    ├── InvariantViolation - Balance triple would not reconcile
    ├── RefundExceedsPaid - Refund larger than the amount paid
    ├── AppendOnlyError - Update or delete of a retained ledger record
    └── GatewayError - Payment gateway failure
        ├── GatewayDeclinedError - Gateway rejected the refund (permanent)
        ├── GatewayNetworkError - Timeout/connection/5xx (safe to retry)
        └── GatewayAlreadyRefundedError - Charge already refunded (treated as success)

    StaleBalanceError - Optimistic version mismatch (inherits ConflictError)
    LockAcquisitionError - Refund lock contention (inherits ConflictError)
    InvalidStateTransitionError - FSM transition not allowed (inherits ConflictError)
    BalanceAlreadyOpenError - Balance re-opened with another total (inherits ConflictError)
    IdempotencyKeyReusedError - Refund key replayed with other parameters (inherits ConflictError)

Usage:
    from ledger.exceptions import RefundExceedsPaid, StaleBalanceError

    if refund_amount > balance.amount_paid:
        raise RefundExceedsPaid(refund_amount, balance.amount_paid)
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from core.exceptions import (
    BaseApplicationError,
    ConflictError,
    NotFoundError,
    ValidationError,
)

if TYPE_CHECKING:
    from decimal import Decimal
    from typing import Any


# =============================================================================
# Ledger Domain Exceptions
# =============================================================================


class LedgerError(BaseApplicationError):
    """Base exception for all ledger operations."""

    default_error_code: str = "LEDGER_ERROR"


class LedgerValidationError(LedgerError, ValidationError):
    """
    Raised when a ledger command is malformed.

    Use for:
    - Zero or negative amounts
    - Amounts with sub-cent precision
    - Unknown registration types or refund methods
    - Dates in the future

    Always raised before any state is read.
    """

    default_error_code: str = "LEDGER_VALIDATION_ERROR"


class BalanceNotFoundError(LedgerError, NotFoundError):
    """Raised when no balance exists for a registration."""

    default_error_code: str = "BALANCE_NOT_FOUND"


class PaymentNotFoundError(LedgerError, NotFoundError):
    """Raised when a payment record cannot be found."""

    default_error_code: str = "PAYMENT_NOT_FOUND"


class RefundNotFoundError(LedgerError, NotFoundError):
    """Raised when a refund record cannot be found."""

    default_error_code: str = "REFUND_NOT_FOUND"


class InvariantViolation(LedgerError):
    """
    Raised when a computed balance would not reconcile.

    total_amount_due must equal amount_paid + amount_remaining, and
    neither the total nor the amount paid may go negative. This is a
    defect to investigate, never something to correct silently, so the
    surrounding transaction is rolled back.
    """

    default_error_code: str = "INVARIANT_VIOLATION"
    http_status: int = 500


class RefundExceedsPaid(LedgerError):
    """
    Raised when a refund request is larger than the amount paid.

    Business-rule rejection: no refund row is written and the balance
    is left untouched.
    """

    default_error_code: str = "REFUND_EXCEEDS_PAID"
    http_status: int = 422

    def __init__(
        self,
        refund_amount: Decimal,
        amount_paid: Decimal,
        details: dict[str, Any] | None = None,
    ):
        details = {
            **(details or {}),
            "refund_amount": str(refund_amount),
            "amount_paid": str(amount_paid),
        }
        super().__init__("Refund amount exceeds amount paid", details=details)
        self.refund_amount = refund_amount
        self.amount_paid = amount_paid


class AppendOnlyError(LedgerError):
    """
    Raised on an attempt to update or delete a retained ledger record.

    Audit entries are never changed; balances are never deleted.
    """

    default_error_code: str = "APPEND_ONLY"
    http_status: int = 409


# =============================================================================
# Gateway Exceptions
# =============================================================================


class GatewayError(LedgerError):
    """
    Base exception for payment gateway failures.

    Attributes:
        kind: One of "declined", "network", "already_refunded"
        is_retryable: Whether the caller may retry with the same idempotency key
        gateway_code: Gateway's own error code, if any
    """

    default_error_code: str = "GATEWAY_ERROR"
    http_status: int = 502
    kind: str = "network"
    is_retryable: bool = False

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        gateway_code: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        details = details or {}
        details["kind"] = self.kind
        if gateway_code:
            details["gateway_code"] = gateway_code
        super().__init__(message, error_code=error_code, details=details)
        self.gateway_code = gateway_code


class GatewayDeclinedError(GatewayError):
    """The gateway rejected the refund. Permanent for this request."""

    default_error_code: str = "GATEWAY_DECLINED"
    kind: str = "declined"


class GatewayNetworkError(GatewayError):
    """
    The gateway could not be reached or did not answer in time.

    The outcome at the gateway is unknown; retrying with the same
    idempotency key is safe.
    """

    default_error_code: str = "GATEWAY_NETWORK_ERROR"
    kind: str = "network"
    is_retryable: bool = True


class GatewayAlreadyRefundedError(GatewayError):
    """The charge was already refunded at the gateway."""

    default_error_code: str = "GATEWAY_ALREADY_REFUNDED"
    kind: str = "already_refunded"


# =============================================================================
# Concurrency Control Exceptions
# =============================================================================


class StaleBalanceError(ConflictError):
    """
    Raised when a balance commit targets a version that is no longer current.

    Another mutation committed first. The caller must re-read and retry;
    see ledger.retry.retry_on_conflict for the bounded helper.
    """

    default_error_code: str = "STALE_BALANCE"


class LockAcquisitionError(ConflictError):
    """Raised when the per-registration refund lock cannot be acquired."""

    default_error_code: str = "LOCK_ACQUISITION_FAILED"


class InvalidStateTransitionError(ConflictError):
    """Raised when a payment or refund is not in a state that allows the action."""

    default_error_code: str = "INVALID_STATE_TRANSITION"


class BalanceAlreadyOpenError(ConflictError):
    """
    Raised when a balance is opened again with a different total.

    Re-pricing an open registration goes through adjust_total so the change
    is audited.
    """

    default_error_code: str = "BALANCE_ALREADY_OPEN"


class IdempotencyKeyReusedError(ConflictError):
    """Raised when a refund idempotency key is replayed with a different amount or method."""

    default_error_code: str = "IDEMPOTENCY_KEY_REUSED"


__all__ = [
    "AppendOnlyError",
    "BalanceAlreadyOpenError",
    "BalanceNotFoundError",
    "GatewayAlreadyRefundedError",
    "GatewayDeclinedError",
    "GatewayError",
    "GatewayNetworkError",
    "IdempotencyKeyReusedError",
    "InvalidStateTransitionError",
    "InvariantViolation",
    "LedgerError",
    "LedgerValidationError",
    "LockAcquisitionError",
    "PaymentNotFoundError",
    "RefundExceedsPaid",
    "RefundNotFoundError",
    "StaleBalanceError",
]
