"""
Balance model: the money state of one registration.

A Balance is a materialized projection over the registration's payment,
refund and total-adjustment history. It is created when the registration
is finalized and never deleted, even if the registration is cancelled.

Usage:
    from ledger.models import Balance

    balance = Balance.objects.get(
        registration_id=registration_id,
        registration_type="group",
    )
    balance.payment_status  # derived from the triple on every write
"""

from __future__ import annotations

from django.db import models
from django.db.models import F, Q

from core.models import BaseModel
from core.model_mixins import RegistrationScopedMixin, UUIDPrimaryKeyMixin

from ledger.calculations import BalanceTriple
from ledger.exceptions import AppendOnlyError
from ledger.state_machines import BalanceStatus, RegistrationType


class Balance(UUIDPrimaryKeyMixin, RegistrationScopedMixin, BaseModel):
    """
    What a registration owes, has paid and still owes.

    Invariant:
        total_amount_due == amount_paid + amount_remaining

    Enforced three times: by BalanceTriple.validate() before any commit,
    by save(), and by a database CheckConstraint.

    Fields:
        total_amount_due: Authoritative price of the registration (>= 0)
        amount_paid: Sum of settled payments minus processed refunds (>= 0)
        amount_remaining: total - paid; negative only when overpaid
        payment_status: Derived from the triple, never set by callers
        initial_amount_due: Total at opening, used to re-derive the balance
        due_date: Optional date after which a positive remainder is overdue
        last_payment_date: When money last came in
        version: Optimistic locking version
    """

    # ==========================================================================
    # Money
    # ==========================================================================

    total_amount_due = models.DecimalField(
        max_digits=12,
        decimal_places=2,
        help_text="Total amount owed by the registration",
    )

    amount_paid = models.DecimalField(
        max_digits=12,
        decimal_places=2,
        default=0,
        help_text="Settled payments minus processed refunds",
    )

    amount_remaining = models.DecimalField(
        max_digits=12,
        decimal_places=2,
        help_text="total_amount_due - amount_paid (negative when overpaid)",
    )

    payment_status = models.CharField(
        max_length=20,
        choices=BalanceStatus.choices,
        default=BalanceStatus.UNPAID,
        editable=False,
        db_index=True,
        help_text="Derived from the balance triple on every write",
    )

    initial_amount_due = models.DecimalField(
        max_digits=12,
        decimal_places=2,
        help_text="Total when the balance was opened",
    )

    # ==========================================================================
    # Dates
    # ==========================================================================

    due_date = models.DateField(
        null=True,
        blank=True,
        db_index=True,
        help_text="Date after which a positive remainder is overdue",
    )

    last_payment_date = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When a payment was last applied",
    )

    # ==========================================================================
    # Concurrency Control
    # ==========================================================================

    version = models.PositiveIntegerField(
        default=1,
        help_text="Version for optimistic locking - incremented on each commit",
    )

    # ==========================================================================
    # Meta & Methods
    # ==========================================================================

    class Meta:
        db_table = "balances"
        ordering = ["-created_at"]
        verbose_name = "Balance"
        verbose_name_plural = "Balances"
        indexes = [
            models.Index(
                fields=["payment_status", "due_date"],
                name="balance_status_due_idx",
            ),
        ]
        constraints = [
            models.UniqueConstraint(
                fields=["registration_id", "registration_type"],
                name="balance_one_per_registration",
            ),
            models.CheckConstraint(
                condition=Q(registration_type__in=RegistrationType.values),
                name="balance_registration_type_valid",
            ),
            models.CheckConstraint(
                condition=Q(total_amount_due__gte=0),
                name="balance_total_non_negative",
            ),
            models.CheckConstraint(
                condition=Q(amount_paid__gte=0),
                name="balance_paid_non_negative",
            ),
            models.CheckConstraint(
                condition=Q(total_amount_due=F("amount_paid") + F("amount_remaining")),
                name="balance_triple_reconciles",
            ),
        ]

    def __str__(self) -> str:
        return (
            f"Balance({self.registration_type}:{self.registration_id}, "
            f"{self.amount_paid}/{self.total_amount_due}, {self.payment_status})"
        )

    @property
    def triple(self) -> BalanceTriple:
        return BalanceTriple.of(self)

    def save(self, *args, **kwargs):
        """
        Save with derived status and version auto-increment.

        Status is recomputed from the triple, and the triple is validated,
        on every save. Routine mutations go through BalanceStore.commit(),
        which performs a version-guarded UPDATE instead.
        """
        self.triple.validate()
        self.payment_status = self.triple.status

        is_update = self.pk and not self._state.adding
        if is_update:
            self.version = F("version") + 1
        super().save(*args, **kwargs)
        if is_update:
            self.refresh_from_db(fields=["version"])

    def delete(self, *args, **kwargs):
        raise AppendOnlyError(
            "Balances are retained for audit and cannot be deleted",
            details={"balance_id": str(self.pk)},
        )
