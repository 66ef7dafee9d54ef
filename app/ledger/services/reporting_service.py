"""
Read side of the ledger: statements, summaries, overdue lists and
re-derivation of a balance from its history.

Nothing in this module writes. Balances are read fresh on every call.

Usage:
    from ledger.services import LedgerReportingService

    reporting = LedgerReportingService()
    statement = reporting.get_balance_statement(key)
    check = reporting.rederive_balance(key)
    if not check.matches:
        ...
"""

from __future__ import annotations

import datetime
from collections import Counter
from dataclasses import dataclass, field
from decimal import Decimal
from typing import TYPE_CHECKING

from django.db.models import Sum

from core.services import BaseService

from ledger.calculations import ZERO, BalanceTriple
from ledger.models import AuditEntry, Balance, Payment, Refund
from ledger.state_machines import AuditEditType, BalanceStatus, PaymentState
from ledger.stores import (
    DjangoAuditTrail,
    DjangoBalanceStore,
    DjangoPaymentStore,
    DjangoRefundStore,
)

if TYPE_CHECKING:
    from collections.abc import Iterable
    from typing import Any

    from ledger.protocols import AuditTrail, BalanceStore, PaymentStore, RefundStore
    from ledger.types import RegistrationKey


# =============================================================================
# Result Types
# =============================================================================


@dataclass
class BalanceStatement:
    """A balance with its itemized history, each list ordered by created_at."""

    balance: Balance
    payments: list[Payment]
    refunds: list[Refund]
    audit_entries: list[AuditEntry]


@dataclass
class BalanceSummary:
    """
    Aggregate over a set of registrations.

    Attributes:
        balances: One row per registration that has a balance
        totals: Sums of total_amount_due, amount_paid, amount_remaining
            and amount_outstanding (positive remainders only)
        status_counts: Number of balances in each payment status
        missing: Requested keys with no balance
    """

    balances: list[Balance]
    totals: dict[str, Decimal]
    status_counts: dict[str, int]
    missing: list[RegistrationKey] = field(default_factory=list)


@dataclass
class RederivationResult:
    """
    Balance recomputed from payments, refunds and total edits.

    discrepancy maps each column that differs to stored minus derived.
    history_gaps lists total edits whose old_total did not follow the
    previous edit.
    """

    key: RegistrationKey
    derived: BalanceTriple
    stored: BalanceTriple
    discrepancy: dict[str, Decimal]
    history_gaps: list[dict[str, Any]] = field(default_factory=list)

    @property
    def matches(self) -> bool:
        return not self.discrepancy and not self.history_gaps


# =============================================================================
# Service
# =============================================================================


class LedgerReportingService(BaseService):
    def __init__(
        self,
        balances: BalanceStore | None = None,
        payments: PaymentStore | None = None,
        refunds: RefundStore | None = None,
        audit: AuditTrail | None = None,
    ) -> None:
        self.balances = balances if balances is not None else DjangoBalanceStore()
        self.payments = payments if payments is not None else DjangoPaymentStore()
        self.refunds = refunds if refunds is not None else DjangoRefundStore()
        self.audit = audit if audit is not None else DjangoAuditTrail()

    def get_balance_statement(self, key: RegistrationKey) -> BalanceStatement:
        """
        Raises:
            BalanceNotFoundError: No balance for the registration
        """
        balance = self.balances.get(key)
        return BalanceStatement(
            balance=balance,
            payments=list(self.payments.list_for(key)),
            refunds=list(self.refunds.list_for(key)),
            audit_entries=list(self.audit.list_for(key)),
        )

    def summarize_balances(self, keys: Iterable[RegistrationKey]) -> BalanceSummary:
        keys = list(dict.fromkeys(keys))
        balances = self.balances.list_for(keys)
        found = {balance.registration_key for balance in balances}

        totals = {
            "total_amount_due": ZERO,
            "amount_paid": ZERO,
            "amount_remaining": ZERO,
            "amount_outstanding": ZERO,
        }
        for balance in balances:
            totals["total_amount_due"] += balance.total_amount_due
            totals["amount_paid"] += balance.amount_paid
            totals["amount_remaining"] += balance.amount_remaining
            if balance.amount_remaining > 0:
                totals["amount_outstanding"] += balance.amount_remaining

        counts = Counter(balance.payment_status for balance in balances)
        status_counts = {status: counts.get(status, 0) for status in BalanceStatus.values}

        return BalanceSummary(
            balances=sorted(balances, key=lambda b: (b.registration_type, str(b.registration_id))),
            totals=totals,
            status_counts=status_counts,
            missing=[key for key in keys if key not in found],
        )

    def find_overdue(self, as_of: datetime.date) -> list[Balance]:
        """
        Balances past their due date that still owe money.

        A balance without a due date is never overdue, however unpaid.
        """
        if isinstance(as_of, datetime.datetime) or not isinstance(as_of, datetime.date):
            raise TypeError("as_of must be a date")
        return list(
            Balance.objects.filter(due_date__lt=as_of, amount_remaining__gt=0).order_by(
                "due_date", "registration_type", "registration_id"
            )
        )

    def rederive_balance(self, key: RegistrationKey) -> RederivationResult:
        """
        Recompute the triple from history and compare it with the stored one.

        total: the opening total with each manual_total_change applied in order
        paid: succeeded payments minus refunds applied to the balance
        """
        balance = self.balances.get(key)

        total = balance.initial_amount_due
        gaps: list[dict[str, Any]] = []
        for entry in self.audit.list_for(key).filter(
            edit_type=AuditEditType.MANUAL_TOTAL_CHANGE
        ):
            if entry.old_total != total:
                gaps.append(
                    {
                        "audit_entry_id": str(entry.id),
                        "expected_old_total": str(total),
                        "recorded_old_total": str(entry.old_total),
                    }
                )
            total = entry.new_total

        paid_in = self.payments.list_for(key).filter(
            payment_status=PaymentState.SUCCEEDED
        ).aggregate(total=Sum("amount"))["total"] or ZERO
        paid_out = self.refunds.list_for(key).filter(
            balance_applied_at__isnull=False
        ).aggregate(total=Sum("refund_amount"))["total"] or ZERO
        paid = paid_in - paid_out

        derived = BalanceTriple(total, paid, total - paid)
        stored = BalanceTriple.of(balance)

        discrepancy = {}
        for column in ("total_amount_due", "amount_paid", "amount_remaining"):
            difference = getattr(stored, column) - getattr(derived, column)
            if difference != 0:
                discrepancy[column] = difference

        if discrepancy or gaps:
            self.get_logger().warning(
                "Balance does not match its history",
                extra={
                    **key.log_context(),
                    "discrepancy": {k: str(v) for k, v in discrepancy.items()},
                    "history_gaps": len(gaps),
                },
            )

        return RederivationResult(
            key=key,
            derived=derived,
            stored=stored,
            discrepancy=discrepancy,
            history_gaps=gaps,
        )


__all__ = [
    "BalanceStatement",
    "BalanceSummary",
    "LedgerReportingService",
    "RederivationResult",
]
