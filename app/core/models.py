"""
Abstract timestamped base for ledger rows.

Balance, Payment, Refund and WebhookEvent all carry a created_at that
orders their history and an updated_at that moves on every save.
AuditEntry is append-only and declares its own created_at instead.

    from core.models import BaseModel
    from core.model_mixins import RegistrationScopedMixin, UUIDPrimaryKeyMixin

    class Refund(UUIDPrimaryKeyMixin, RegistrationScopedMixin, BaseModel):
        ...

Mixins go first so their fields precede the timestamps.
"""

from __future__ import annotations

from django.db import models


class BaseModel(models.Model):
    """Adds created_at (indexed, set once) and updated_at (set on save)."""

    created_at = models.DateTimeField(
        auto_now_add=True,
        db_index=True,
        help_text="When the row was written",
    )
    updated_at = models.DateTimeField(
        auto_now=True,
        help_text="When the row was last saved",
    )

    class Meta:
        abstract = True
        ordering = ["-created_at"]

    def __str__(self) -> str:
        return f"{type(self).__name__} {self.pk}"
