"""
Payment model: one payment attempt or settlement for a registration.

Payments are append-mostly. A card payment is written PENDING when its
intent is created and settles on the gateway's confirmation; a check can
be announced PENDING and settle on receipt, or be written SUCCEEDED in one
step; cash settles immediately.

Usage:
    from ledger.models import Payment

    payment = Payment.objects.create(
        registration_id=registration_id,
        registration_type="individual",
        amount=Decimal("150.00"),
        payment_method=PaymentMethod.CHECK,
        check_number="1042",
    )
    payment.settle()
    payment.save()
"""

from __future__ import annotations

from django.db import models
from django.db.models import Q
from django.utils import timezone

from django_fsm import FSMField, transition

from core.models import BaseModel
from core.model_mixins import RegistrationScopedMixin, UUIDPrimaryKeyMixin

from ledger.exceptions import InvalidStateTransitionError
from ledger.state_machines import PaymentMethod, PaymentState

# Fields that may still change once a payment has succeeded
MUTABLE_AFTER_SETTLEMENT = frozenset({"notes", "updated_at"})


class Payment(UUIDPrimaryKeyMixin, RegistrationScopedMixin, BaseModel):
    """
    A single payment attempt against a registration's balance.

    State Flow:
        PENDING -> SUCCEEDED (settle)
        PENDING -> FAILED (fail)

    Idempotency:
        gateway_reference is unique, so a card settlement is applied once
        however many times the gateway reports it. Succeeded checks are
        unique on (registration, check_number, check_received_date, amount).

    Once SUCCEEDED a payment is immutable apart from appended notes.
    """

    # ==========================================================================
    # Amount & Method
    # ==========================================================================

    amount = models.DecimalField(
        max_digits=12,
        decimal_places=2,
        help_text="Payment amount (always positive)",
    )

    payment_method = models.CharField(
        max_length=10,
        choices=PaymentMethod.choices,
        db_index=True,
        help_text="card, check or cash",
    )

    # ==========================================================================
    # State
    # ==========================================================================

    payment_status = FSMField(
        default=PaymentState.PENDING,
        choices=PaymentState.choices,
        db_index=True,
        protected=True,
        help_text="Current state of the payment (managed by FSM)",
    )

    processed_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When the payment settled or failed",
    )

    failure_reason = models.TextField(
        null=True,
        blank=True,
        help_text="Gateway or operator reason when the payment failed",
    )

    # ==========================================================================
    # Card Details
    # ==========================================================================

    gateway_reference = models.CharField(
        max_length=255,
        null=True,
        blank=True,
        unique=True,
        help_text="Gateway payment reference (Stripe PaymentIntent ID)",
    )

    # ==========================================================================
    # Check Details
    # ==========================================================================

    check_number = models.CharField(
        max_length=50,
        null=True,
        blank=True,
        db_index=True,
        help_text="Check number as written on the check",
    )

    check_received_date = models.DateField(
        null=True,
        blank=True,
        help_text="Date the check physically arrived",
    )

    payer_name = models.CharField(
        max_length=255,
        null=True,
        blank=True,
        help_text="Name on the check",
    )

    deposit_bank_account = models.CharField(max_length=100, null=True, blank=True)
    deposit_date = models.DateField(null=True, blank=True)
    deposit_slip_number = models.CharField(max_length=100, null=True, blank=True)

    # ==========================================================================
    # Bookkeeping
    # ==========================================================================

    recorded_by_user_id = models.CharField(
        max_length=64,
        null=True,
        blank=True,
        help_text="User who recorded the payment (None for gateway events)",
    )

    notes = models.TextField(
        null=True,
        blank=True,
        help_text="Free-form notes; may be appended after settlement",
    )

    # ==========================================================================
    # Meta & Methods
    # ==========================================================================

    class Meta:
        db_table = "payments"
        ordering = ["created_at"]
        verbose_name = "Payment"
        verbose_name_plural = "Payments"
        indexes = [
            models.Index(
                fields=["registration_id", "registration_type", "created_at"],
                name="payment_registration_idx",
            ),
            models.Index(
                fields=["payment_method", "payment_status"],
                name="payment_method_status_idx",
            ),
        ]
        constraints = [
            models.CheckConstraint(
                condition=Q(amount__gt=0),
                name="payment_amount_positive",
            ),
            models.UniqueConstraint(
                fields=[
                    "registration_id",
                    "registration_type",
                    "check_number",
                    "check_received_date",
                    "amount",
                ],
                condition=Q(payment_method=PaymentMethod.CHECK)
                & Q(payment_status=PaymentState.SUCCEEDED),
                name="payment_check_received_once",
            ),
        ]

    def __str__(self) -> str:
        return f"Payment({self.id}, {self.payment_method}, {self.amount}, {self.payment_status})"

    @classmethod
    def from_db(cls, db, field_names, values):
        instance = super().from_db(db, field_names, values)
        # Read through __dict__ so a deferred status is not lazily loaded
        instance._persisted_status = instance.__dict__.get("payment_status")
        return instance

    def save(self, *args, **kwargs):
        """
        Save, refusing changes to a settled payment other than notes.

        Raises:
            InvalidStateTransitionError: The stored payment already succeeded
                and the save would touch more than notes
        """
        persisted = getattr(self, "_persisted_status", None)
        if persisted == PaymentState.SUCCEEDED and not self._state.adding:
            update_fields = kwargs.get("update_fields")
            if update_fields is None or not set(update_fields) <= MUTABLE_AFTER_SETTLEMENT:
                raise InvalidStateTransitionError(
                    "Settled payments are immutable except for notes",
                    details={"payment_id": str(self.id)},
                )
        super().save(*args, **kwargs)
        self._persisted_status = self.payment_status

    # ==========================================================================
    # State Transitions (django-fsm)
    # ==========================================================================

    @transition(
        field=payment_status,
        source=[PaymentState.PENDING, PaymentState.FAILED],
        target=PaymentState.SUCCEEDED,
    )
    def settle(self, processed_at=None):
        """
        Mark the payment as settled.

        Transition: PENDING -> SUCCEEDED
        Transition: FAILED -> SUCCEEDED (card retried on the same intent)
        """
        self.processed_at = processed_at or timezone.now()
        self.failure_reason = None

    @transition(
        field=payment_status,
        source=PaymentState.PENDING,
        target=PaymentState.FAILED,
    )
    def fail(self, reason: str | None = None):
        """
        Mark the payment as failed.

        Transition: PENDING -> FAILED
        """
        self.processed_at = timezone.now()
        if reason:
            self.failure_reason = reason

    # ==========================================================================
    # Helpers
    # ==========================================================================

    def append_note(self, note: str) -> None:
        """Append a note and save; allowed in every state."""
        stamp = timezone.now().strftime("%Y-%m-%d %H:%M")
        line = f"[{stamp}] {note}"
        self.notes = f"{self.notes}\n{line}" if self.notes else line
        self.save(update_fields=["notes", "updated_at"])

    @property
    def is_settled(self) -> bool:
        return self.payment_status == PaymentState.SUCCEEDED

    @property
    def is_pending(self) -> bool:
        return self.payment_status == PaymentState.PENDING
