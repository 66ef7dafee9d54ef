"""
Stripe webhook ingestion for the ledger.

Webhooks are verified, stored idempotently and processed asynchronously
by ledger.tasks.process_webhook_event.
"""

from ledger.webhooks.handlers import dispatch_webhook, register_handler
from ledger.webhooks.views import stripe_webhook

__all__ = [
    "dispatch_webhook",
    "register_handler",
    "stripe_webhook",
]
