"""
State and choice enums for ledger models.

These are Django TextChoices for database storage and admin integration.
Payment and Refund states are driven by django-fsm transitions; the
balance status is never transitioned directly, it is derived from the
balance triple (see ledger.calculations.derive_status).

State Machines Overview:

Payment States:
    pending → succeeded (settlement)
    pending → failed
    succeeded is terminal and immutable apart from appended notes

Refund States:
    pending → completed
    pending → failed

Balance Status (derived, not transitioned):
    unpaid ↔ partial ↔ paid_full ↔ overpaid
    any status reachable by a consistent triple is legal
"""

from django.db import models


class RegistrationType(models.TextChoices):
    """Kinds of registration a balance can belong to."""

    GROUP = "group", "Group"
    INDIVIDUAL = "individual", "Individual"
    VENDOR = "vendor", "Vendor"
    STAFF = "staff", "Staff"


class BalanceStatus(models.TextChoices):
    """
    Payment status of a balance.

    Derived from (total_amount_due, amount_paid, amount_remaining):
        remaining == 0 and total > 0  → PAID_FULL
        remaining < 0                 → OVERPAID
        paid > 0                      → PARTIAL
        otherwise                     → UNPAID
    """

    UNPAID = "unpaid", "Unpaid"
    PARTIAL = "partial", "Partially Paid"
    PAID_FULL = "paid_full", "Paid in Full"
    OVERPAID = "overpaid", "Overpaid"


class PaymentMethod(models.TextChoices):
    """How a payment was made."""

    CARD = "card", "Card"
    CHECK = "check", "Check"
    CASH = "cash", "Cash"


class PaymentState(models.TextChoices):
    """
    States for the Payment model lifecycle.

    Terminal states: SUCCEEDED, FAILED

    Card payments start PENDING when the intent is created and settle on
    the gateway's confirmation. Checks start PENDING when announced and
    settle when the check is physically received. Cash settles immediately.
    """

    PENDING = "pending", "Pending"
    SUCCEEDED = "succeeded", "Succeeded"
    FAILED = "failed", "Failed"


class RefundMethod(models.TextChoices):
    """
    How a refund is paid out.

    GATEWAY refunds go back to the card through the payment gateway;
    the others are settled outside the system and recorded here.
    """

    GATEWAY = "gateway", "Payment Gateway"
    CHECK = "check", "Check"
    CASH = "cash", "Cash"
    MANUAL = "manual", "Manual"


class RefundState(models.TextChoices):
    """
    States for the Refund model lifecycle.

    State Flow:
        PENDING → COMPLETED
        PENDING → FAILED

    Gateway refunds resolve against the gateway response or a later
    webhook. Non-gateway refunds may sit in PENDING until an operator
    confirms the money went out.
    """

    PENDING = "pending", "Pending"
    COMPLETED = "completed", "Completed"
    FAILED = "failed", "Failed"


class AuditEditType(models.TextChoices):
    """Kinds of balance-affecting edits recorded in the audit trail."""

    MANUAL_TOTAL_CHANGE = "manual_total_change", "Manual Total Change"
    REFUND_PROCESSED = "refund_processed", "Refund Processed"
    CHECK_RECONCILED = "check_reconciled", "Check Reconciled"


class NotificationKind(models.TextChoices):
    """Templates the notification dispatcher knows how to render."""

    CHECK_RECEIVED = "check_received", "Check Received"
    PAYMENT_RECEIVED = "payment_received", "Payment Received"
    REFUND_PROCESSED = "refund_processed", "Refund Processed"
    TOTAL_ADJUSTED = "total_adjusted", "Total Adjusted"


class WebhookEventStatus(models.TextChoices):
    """
    Processing status for Stripe webhook events.

    State Flow:
        PENDING → PROCESSING → PROCESSED
        PENDING → PROCESSING → FAILED → PROCESSING (retry)
    """

    PENDING = "pending", "Pending"
    PROCESSING = "processing", "Processing"
    PROCESSED = "processed", "Processed"
    FAILED = "failed", "Failed"
