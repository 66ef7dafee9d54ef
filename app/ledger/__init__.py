"""
Registration payment ledger.

Tracks what each registration owes and has paid, reconciles check, cash
and card payments, processes refunds through the payment gateway, and
keeps an append-only audit trail of every balance-affecting edit.

Entry points live in ledger.services:
    LedgerReconciler: every balance mutation
    RefundProcessor: gateway and manual refunds
    LedgerReportingService: statements, aggregates and re-derivation
"""
