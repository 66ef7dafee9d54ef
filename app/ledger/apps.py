"""
Ledger app configuration.

This app owns the registration payment ledger:
- Balances, payments, refunds and the audit trail
- The reconciler that keeps the balance triple consistent
- Stripe refund and webhook integration
"""

from django.apps import AppConfig


class LedgerConfig(AppConfig):
    """Configuration for the ledger application."""

    default_auto_field = "django.db.models.BigAutoField"
    name = "ledger"
    verbose_name = "Registration Ledger"
