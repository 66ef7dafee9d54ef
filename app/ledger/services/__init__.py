"""
Ledger services.

Usage:
    from ledger.services import LedgerReconciler, LedgerReportingService
"""

from ledger.services.reconciler import SYSTEM_ACTOR, LedgerReconciler
from ledger.services.refund_service import RefundProcessor
from ledger.services.reporting_service import (
    BalanceStatement,
    BalanceSummary,
    LedgerReportingService,
    RederivationResult,
)

__all__ = [
    "SYSTEM_ACTOR",
    "BalanceStatement",
    "BalanceSummary",
    "LedgerReconciler",
    "LedgerReportingService",
    "RederivationResult",
    "RefundProcessor",
]
