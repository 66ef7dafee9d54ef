"""
Ledger domain models.

- Balance: What a registration owes and has paid (one per registration)
- Payment: Individual card, check and cash payments
- Refund: Money returned to a registration
- AuditEntry: Append-only record of balance-affecting edits
- WebhookEvent: Stripe webhook event tracking for idempotent processing
"""

from ledger.models.audit_entry import AppendOnlyError, AuditEntry
from ledger.models.balance import Balance
from ledger.models.payment import Payment
from ledger.models.refund import Refund
from ledger.models.webhook_event import WebhookEvent

__all__ = [
    "AppendOnlyError",
    "AuditEntry",
    "Balance",
    "Payment",
    "Refund",
    "WebhookEvent",
]
