"""
Tests for the ledger app.

This package contains test modules for:
- test_calculations.py, test_types.py: Pure arithmetic and command validation
- test_models.py: Balance, Payment, Refund, AuditEntry, WebhookEvent
- test_services.py: LedgerReconciler payment and total scenarios
- test_refund_service.py: Refunds by gateway, check, cash and manual
- test_reporting.py: Statements, summaries, overdue lists, re-derivation
- test_handlers.py, test_webhook_views.py, test_tasks.py: Stripe webhooks
- test_views.py: API endpoint tests

Usage:
    pytest ledger/tests/
    pytest ledger/tests/test_services.py
"""
