"""
Post-commit notifications for ledger events.

Notifications are side effects: they are queued only after the ledger
transaction commits, and a broken mail server or broker can never roll
back or fail a ledger operation.

Kinds:
    check_received: A check payment was applied
    payment_received: A card or cash payment was applied
    refund_processed: A refund was applied to the balance
    total_adjusted: An operator changed the total due

Usage:
    from ledger.notifications import NotificationDispatcher

    NotificationDispatcher().notify(
        "payer@example.com",
        NotificationKind.PAYMENT_RECEIVED,
        {"amount": "100.00", "amount_remaining": "400.00"},
    )
"""

from __future__ import annotations

import logging
from typing import Any

from django.conf import settings
from django.db import transaction

from ledger.state_machines import NotificationKind

logger = logging.getLogger(__name__)


SUBJECTS: dict[str, str] = {
    NotificationKind.CHECK_RECEIVED: "Check payment received",
    NotificationKind.PAYMENT_RECEIVED: "Payment received",
    NotificationKind.REFUND_PROCESSED: "Refund processed",
    NotificationKind.TOTAL_ADJUSTED: "Registration total updated",
}


def render_notification(template_kind: str, payload: dict[str, Any]) -> tuple[str, str]:
    """Return (subject, body) for a notification."""
    subject = SUBJECTS.get(template_kind, "Registration balance update")
    lines = [subject, ""]
    for name in sorted(payload):
        label = name.replace("_", " ").capitalize()
        lines.append(f"{label}: {payload[name]}")
    return subject, "\n".join(lines)


def notifications_enabled() -> bool:
    return bool(getattr(settings, "LEDGER_NOTIFICATIONS_ENABLED", True))


class NotificationDispatcher:
    """
    NotificationSender that queues an email task once the current
    transaction commits. Outside a transaction the task is queued at once.
    """

    def notify(
        self,
        recipient: str | None,
        template_kind: str,
        payload: dict[str, Any],
    ) -> None:
        if not recipient or not notifications_enabled():
            return

        payload = {name: str(value) for name, value in payload.items()}

        def _enqueue() -> None:
            from ledger import tasks

            try:
                tasks.send_ledger_notification.delay(recipient, template_kind, payload)
            except Exception:
                logger.exception(
                    "Failed to queue ledger notification",
                    extra={"template_kind": template_kind},
                )

        transaction.on_commit(_enqueue)


__all__ = [
    "NotificationDispatcher",
    "notifications_enabled",
    "render_notification",
]
