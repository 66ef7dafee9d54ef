"""
Field mixins shared by the ledger models.

    UUIDPrimaryKeyMixin: random UUID primary key
    RegistrationScopedMixin: the (registration_id, registration_type) reference

Usage:
    from core.models import BaseModel
    from core.model_mixins import RegistrationScopedMixin, UUIDPrimaryKeyMixin

    class Refund(UUIDPrimaryKeyMixin, RegistrationScopedMixin, BaseModel):
        ...

Mixins come before BaseModel in the bases list.
"""

from __future__ import annotations

import uuid

from django.db import models


class UUIDPrimaryKeyMixin(models.Model):
    """Random UUID primary key, so ledger row ids are not guessable from the API."""

    id = models.UUIDField(
        primary_key=True,
        default=uuid.uuid4,
        editable=False,
        help_text="Unique identifier for this record",
    )

    class Meta:
        abstract = True


class RegistrationScopedMixin(models.Model):
    """
    Reference to a registration owned by another subsystem.

    Registrations live outside this service, so the reference is a plain
    (id, type) pair rather than a foreign key.

    Fields:
        registration_id: Identifier assigned by the registration subsystem
        registration_type: Registration kind (group, individual, vendor, staff)
    """

    registration_id = models.UUIDField(
        db_index=True,
        help_text="Registration identifier (owned by the registration subsystem)",
    )
    registration_type = models.CharField(
        max_length=20,
        help_text="Registration kind: group, individual, vendor or staff",
    )

    class Meta:
        abstract = True

    @property
    def registration_key(self):
        """Return the (id, type) pair as a RegistrationKey."""
        from ledger.types import RegistrationKey

        return RegistrationKey(self.registration_id, self.registration_type)
