"""
DRF serializer mixins used by the ledger API.

    StrictFieldsMixin: reject input keys the serializer does not declare
    TimestampMixin: append created_at and updated_at to model output

Usage:
    from core.serializer_mixins import StrictFieldsMixin

    class AdjustTotalSerializer(StrictFieldsMixin, serializers.Serializer):
        new_total = serializers.DecimalField(max_digits=12, decimal_places=2)
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from rest_framework import serializers

if TYPE_CHECKING:
    from typing import Any


class StrictFieldsMixin:
    """
    Fail validation when the payload carries undeclared fields.

    DRF silently drops unknown keys by default, which hides client typos
    such as "ammount". Read-only fields count as unknown on input.
    """

    def to_internal_value(self, data: Any) -> Any:
        if hasattr(data, "keys"):
            writable = {
                name
                for name, field in self.fields.items()  # type: ignore[attr-defined]
                if not field.read_only
            }
            unknown = sorted(set(data.keys()) - writable)
            if unknown:
                raise serializers.ValidationError(
                    {name: ["Unknown field."] for name in unknown}
                )
        return super().to_internal_value(data)  # type: ignore[misc]


class TimestampMixin:
    """
    Add created_at and updated_at to ModelSerializer output.

    Only adds a timestamp field if the model has it; AuditEntry, for one,
    has created_at but no updated_at.
    """

    def get_field_names(self, declared_fields: Any, info: Any) -> list[str]:
        fields = super().get_field_names(declared_fields, info)  # type: ignore[misc]
        if hasattr(self.Meta.model, "created_at") and "created_at" not in fields:
            fields = list(fields) + ["created_at"]
        if hasattr(self.Meta.model, "updated_at") and "updated_at" not in fields:
            fields = list(fields) + ["updated_at"]
        return fields
