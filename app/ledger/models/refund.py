"""
Refund model for tracking money returned to a registration.

Usage:
    from ledger.models import Refund
    from ledger.state_machines import RefundMethod

    refund = Refund.objects.create(
        registration_id=registration_id,
        registration_type="group",
        refund_amount=Decimal("100.00"),
        refund_method=RefundMethod.CHECK,
        refund_reason="Cancelled one attendee",
        processed_by_user_id="42",
    )

    refund.complete()  # pending -> completed
    refund.save()
"""

from __future__ import annotations

from django.db import models
from django.db.models import F, Q
from django.utils import timezone

from django_fsm import FSMField, transition

from core.models import BaseModel
from core.model_mixins import RegistrationScopedMixin, UUIDPrimaryKeyMixin

from ledger.state_machines import RefundMethod, RefundState


class Refund(UUIDPrimaryKeyMixin, RegistrationScopedMixin, BaseModel):
    """
    Money returned to a registration.

    State Flow:
        PENDING -> COMPLETED
        PENDING -> FAILED
        FAILED -> PENDING (retry after a network failure)

    Balance effect:
        Gateway refunds debit the balance when they complete. Check, cash
        and manual refunds debit it as soon as they are recorded, since the
        obligation exists whether or not the money has physically gone out.
        balance_applied_at marks that the debit happened, so it happens once.

    Fields:
        refund_amount: Amount returned (positive)
        refund_method: gateway, check, cash or manual
        refund_reason: Operator-supplied reason
        status: Current FSM state
        gateway_payment_reference: Card payment the gateway refund targets
        gateway_refund_reference: Gateway's refund ID (re_xxx)
        processed_by_user_id: Operator who requested the refund
        idempotency_key: Caller key that makes process_refund replay-safe
        balance_applied_at: When amount_paid was debited
        version: Optimistic locking version
    """

    # ==========================================================================
    # Amount & Method
    # ==========================================================================

    refund_amount = models.DecimalField(
        max_digits=12,
        decimal_places=2,
        help_text="Refund amount (always positive)",
    )

    refund_method = models.CharField(
        max_length=10,
        choices=RefundMethod.choices,
        help_text="How the refund is paid out",
    )

    refund_reason = models.CharField(
        max_length=500,
        help_text="Reason for the refund",
    )

    # ==========================================================================
    # State
    # ==========================================================================

    status = FSMField(
        default=RefundState.PENDING,
        choices=RefundState.choices,
        db_index=True,
        protected=True,
        help_text="Current state of the refund (managed by FSM)",
    )

    # ==========================================================================
    # Gateway Integration
    # ==========================================================================

    gateway_payment_reference = models.CharField(
        max_length=255,
        null=True,
        blank=True,
        help_text="Gateway reference of the card payment being refunded",
    )

    gateway_refund_reference = models.CharField(
        max_length=255,
        null=True,
        blank=True,
        unique=True,
        help_text="Gateway refund ID (Stripe re_xxx)",
    )

    # ==========================================================================
    # Bookkeeping
    # ==========================================================================

    idempotency_key = models.CharField(
        max_length=255,
        null=True,
        blank=True,
        help_text="Caller-supplied key; replaying it returns this refund",
    )

    processed_by_user_id = models.CharField(
        max_length=64,
        help_text="Operator who requested the refund",
    )

    balance_applied_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When the refund was debited from amount_paid",
    )

    completed_at = models.DateTimeField(null=True, blank=True)
    failed_at = models.DateTimeField(null=True, blank=True)

    failure_reason = models.TextField(
        null=True,
        blank=True,
        help_text="Gateway error details if the refund failed",
    )

    version = models.PositiveIntegerField(
        default=1,
        help_text="Version for optimistic locking - incremented on each save",
    )

    # ==========================================================================
    # Meta & Methods
    # ==========================================================================

    class Meta:
        db_table = "refunds"
        ordering = ["created_at"]
        verbose_name = "Refund"
        verbose_name_plural = "Refunds"
        indexes = [
            models.Index(
                fields=["registration_id", "registration_type", "created_at"],
                name="refund_registration_idx",
            ),
            models.Index(
                fields=["status", "created_at"],
                name="refund_status_created_idx",
            ),
        ]
        constraints = [
            models.CheckConstraint(
                condition=Q(refund_amount__gt=0),
                name="refund_amount_positive",
            ),
            models.UniqueConstraint(
                fields=["registration_id", "registration_type", "idempotency_key"],
                condition=Q(idempotency_key__isnull=False),
                name="refund_idempotency_key_unique",
            ),
        ]

    def __str__(self) -> str:
        return f"Refund({self.id}, {self.refund_method}, {self.refund_amount}, {self.status})"

    def save(self, *args, **kwargs):
        """Save with version auto-increment for optimistic locking."""
        is_update = not self._state.adding
        if is_update:
            self.version = F("version") + 1
        super().save(*args, **kwargs)
        if is_update:
            self.refresh_from_db(fields=["version"])

    # ==========================================================================
    # State Transitions (django-fsm)
    # ==========================================================================

    @transition(
        field=status,
        source=RefundState.PENDING,
        target=RefundState.COMPLETED,
    )
    def complete(self, gateway_refund_reference: str | None = None):
        """
        Mark refund as completed.

        Transition: PENDING -> COMPLETED
        """
        self.completed_at = timezone.now()
        if gateway_refund_reference:
            self.gateway_refund_reference = gateway_refund_reference

    @transition(
        field=status,
        source=RefundState.PENDING,
        target=RefundState.FAILED,
    )
    def fail(self, reason: str | None = None):
        """
        Mark refund as failed.

        Transition: PENDING -> FAILED
        """
        self.failed_at = timezone.now()
        if reason:
            self.failure_reason = reason

    @transition(
        field=status,
        source=RefundState.FAILED,
        target=RefundState.PENDING,
    )
    def reopen(self):
        """
        Put a refund that failed on a network error back in flight.

        Transition: FAILED -> PENDING
        """
        self.failed_at = None
        self.failure_reason = None

    # ==========================================================================
    # Properties
    # ==========================================================================

    @property
    def is_gateway(self) -> bool:
        return self.refund_method == RefundMethod.GATEWAY

    @property
    def is_pending(self) -> bool:
        return self.status == RefundState.PENDING

    @property
    def is_complete(self) -> bool:
        return self.status == RefundState.COMPLETED

    @property
    def failed_on_network(self) -> bool:
        """The gateway outcome is unknown; a retry with the same key is safe."""
        return self.status == RefundState.FAILED and (self.failure_reason or "").startswith(
            "network:"
        )

    @property
    def balance_applied(self) -> bool:
        return self.balance_applied_at is not None
