"""
Pure balance arithmetic.

This module is the only place a balance status is computed. Nothing here
touches the database; the reconciler feeds it the current triple read
under lock and commits whatever it returns.

Usage:
    from ledger.calculations import BalanceTriple, derive_status

    triple = BalanceTriple.opening(Decimal("300.00"))
    triple = triple.apply_payment(Decimal("300.00"))
    triple.status  # BalanceStatus.PAID_FULL
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import TYPE_CHECKING

from ledger.exceptions import InvariantViolation, LedgerValidationError
from ledger.state_machines import BalanceStatus

if TYPE_CHECKING:
    from typing import Any

CENT = Decimal("0.01")
ZERO = Decimal("0.00")


def derive_status(
    total_due: Decimal, paid: Decimal, remaining: Decimal
) -> BalanceStatus:
    """
    Derive the payment status from a balance triple.

    Rules are evaluated in order:
        remaining == 0 and total_due > 0  → paid_full
        remaining < 0                     → overpaid
        paid > 0                          → partial
        otherwise                         → unpaid

    A zero total with nothing paid is unpaid, not paid_full.
    """
    if remaining == 0 and total_due > 0:
        return BalanceStatus.PAID_FULL
    if remaining < 0:
        return BalanceStatus.OVERPAID
    if paid > 0:
        return BalanceStatus.PARTIAL
    return BalanceStatus.UNPAID


def to_amount(value: Any, field_name: str, allow_zero: bool = False) -> Decimal:
    """
    Coerce a monetary input to a two-place Decimal.

    Raises:
        LedgerValidationError: Value is not a finite number, has sub-cent
            precision, is negative, or is zero when zero is not allowed
    """
    if isinstance(value, bool) or value is None:
        raise LedgerValidationError(
            f"{field_name} must be a decimal amount",
            error_code="INVALID_AMOUNT",
            details={field_name: repr(value)},
        )
    try:
        amount = value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise LedgerValidationError(
            f"{field_name} must be a decimal amount",
            error_code="INVALID_AMOUNT",
            details={field_name: repr(value)},
        )

    if not amount.is_finite():
        raise LedgerValidationError(
            f"{field_name} must be finite",
            error_code="INVALID_AMOUNT",
            details={field_name: str(amount)},
        )
    if amount != amount.quantize(CENT):
        raise LedgerValidationError(
            f"{field_name} cannot have more than two decimal places",
            error_code="INVALID_AMOUNT_PRECISION",
            details={field_name: str(amount)},
        )
    if amount < 0 or (amount == 0 and not allow_zero):
        qualifier = "zero or greater" if allow_zero else "greater than zero"
        raise LedgerValidationError(
            f"{field_name} must be {qualifier}",
            error_code="INVALID_AMOUNT",
            details={field_name: str(amount)},
        )
    return amount.quantize(CENT)


@dataclass(frozen=True)
class BalanceTriple:
    """
    The three money columns of a balance.

    Each operation returns a new triple with amount_remaining recomputed
    from the other two; validate() checks the identity before a commit.
    """

    total_amount_due: Decimal
    amount_paid: Decimal
    amount_remaining: Decimal

    @classmethod
    def opening(cls, total_amount_due: Decimal) -> BalanceTriple:
        return cls(total_amount_due, ZERO, total_amount_due)

    @classmethod
    def of(cls, balance: Any) -> BalanceTriple:
        """Snapshot the triple of a Balance model instance."""
        return cls(
            balance.total_amount_due,
            balance.amount_paid,
            balance.amount_remaining,
        )

    @property
    def status(self) -> BalanceStatus:
        return derive_status(
            self.total_amount_due, self.amount_paid, self.amount_remaining
        )

    def apply_payment(self, amount: Decimal) -> BalanceTriple:
        paid = self.amount_paid + amount
        return BalanceTriple(self.total_amount_due, paid, self.total_amount_due - paid)

    def apply_refund(self, amount: Decimal) -> BalanceTriple:
        paid = self.amount_paid - amount
        return BalanceTriple(self.total_amount_due, paid, self.total_amount_due - paid)

    def with_total(self, new_total: Decimal) -> BalanceTriple:
        return BalanceTriple(new_total, self.amount_paid, new_total - self.amount_paid)

    def validate(self) -> BalanceTriple:
        """
        Check the triple before it is committed.

        Raises:
            InvariantViolation: Negative total or paid amount, or
                total != paid + remaining
        """
        problems = []
        if self.total_amount_due < 0:
            problems.append("total_amount_due is negative")
        if self.amount_paid < 0:
            problems.append("amount_paid is negative")
        if self.total_amount_due != self.amount_paid + self.amount_remaining:
            problems.append("total_amount_due != amount_paid + amount_remaining")

        if problems:
            raise InvariantViolation(
                "Balance would not reconcile: " + "; ".join(problems),
                details=self.as_dict(),
            )
        return self

    def as_dict(self) -> dict[str, str]:
        return {
            "total_amount_due": str(self.total_amount_due),
            "amount_paid": str(self.amount_paid),
            "amount_remaining": str(self.amount_remaining),
        }


__all__ = [
    "CENT",
    "ZERO",
    "BalanceTriple",
    "derive_status",
    "to_amount",
]
