"""
State machine enums for ledger models.
"""

from ledger.state_machines.states import (
    AuditEditType,
    BalanceStatus,
    NotificationKind,
    PaymentMethod,
    PaymentState,
    RefundMethod,
    RefundState,
    RegistrationType,
    WebhookEventStatus,
)

__all__ = [
    "AuditEditType",
    "BalanceStatus",
    "NotificationKind",
    "PaymentMethod",
    "PaymentState",
    "RefundMethod",
    "RefundState",
    "RegistrationType",
    "WebhookEventStatus",
]
