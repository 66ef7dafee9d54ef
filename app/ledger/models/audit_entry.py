"""
AuditEntry model: the append-only record of balance-affecting edits.

Entries explain why a balance looks the way it does without trusting the
balance row itself. They are written inside the same transaction as the
balance change they describe and are never updated or deleted.
"""

from __future__ import annotations

from django.db import models

from core.model_mixins import RegistrationScopedMixin, UUIDPrimaryKeyMixin

from ledger.exceptions import AppendOnlyError
from ledger.state_machines import AuditEditType


class AuditEntryQuerySet(models.QuerySet):
    def update(self, **kwargs):
        raise AppendOnlyError("Audit entries cannot be updated")

    def delete(self):
        raise AppendOnlyError("Audit entries cannot be deleted")

    def for_registration(self, key):
        return self.filter(**key.as_filter()).order_by("created_at")


class AuditEntry(UUIDPrimaryKeyMixin, RegistrationScopedMixin, models.Model):
    """
    One balance-affecting edit.

    For manual_total_change the totals move and difference is new - old.
    For refund_processed and check_reconciled the total is unchanged, and
    difference is the signed change in amount_paid (-100 for a 100 refund).

    Does not inherit BaseModel: there is no updated_at on an immutable row.
    """

    edit_type = models.CharField(
        max_length=30,
        choices=AuditEditType.choices,
        db_index=True,
    )

    old_total = models.DecimalField(max_digits=12, decimal_places=2)
    new_total = models.DecimalField(max_digits=12, decimal_places=2)
    difference = models.DecimalField(
        max_digits=12,
        decimal_places=2,
        help_text="Signed change (total change or paid change, by edit type)",
    )

    acting_user_id = models.CharField(
        max_length=64,
        help_text="User or system actor that made the edit",
    )

    notes = models.TextField(null=True, blank=True)

    # Link to the payment or refund that caused the edit, if any
    reference_type = models.CharField(max_length=20, null=True, blank=True)
    reference_id = models.UUIDField(null=True, blank=True, db_index=True)

    metadata = models.JSONField(
        default=dict,
        blank=True,
        help_text="Balance snapshot before and after the edit",
    )

    created_at = models.DateTimeField(auto_now_add=True, db_index=True)

    objects = AuditEntryQuerySet.as_manager()

    class Meta:
        db_table = "audit_entries"
        ordering = ["created_at"]
        verbose_name = "Audit Entry"
        verbose_name_plural = "Audit Entries"
        indexes = [
            models.Index(
                fields=["registration_id", "registration_type", "created_at"],
                name="audit_registration_idx",
            ),
        ]

    def __str__(self) -> str:
        return f"AuditEntry({self.edit_type}, {self.difference:+}, by {self.acting_user_id})"

    def save(self, *args, **kwargs):
        if not self._state.adding:
            raise AppendOnlyError("Audit entries cannot be updated")
        super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        raise AppendOnlyError("Audit entries cannot be deleted")
