"""
Webhook event handlers for Stripe events.

Handlers translate Stripe payloads into reconciler commands. A handler
returns ServiceResult.failure for events it can never apply (missing
metadata, unknown registration) so the event is marked failed for review
instead of retried. Conflicts and unexpected errors propagate so the
Celery task retries them.

Usage:
    from ledger.webhooks.handlers import dispatch_webhook, register_handler

    @register_handler("custom.event")
    def handle_custom_event(webhook_event: WebhookEvent) -> ServiceResult:
        ...

    result = dispatch_webhook(webhook_event)
"""

from __future__ import annotations

import logging
import uuid
from typing import Callable

from core.services import ServiceResult

from ledger.adapters import cents_to_amount
from ledger.exceptions import (
    BalanceNotFoundError,
    InvalidStateTransitionError,
    LedgerValidationError,
)
from ledger.models import Refund, WebhookEvent
from ledger.retry import retry_on_conflict
from ledger.services import LedgerReconciler
from ledger.state_machines import RefundMethod, RefundState
from ledger.types import (
    RecordCardPaymentCommand,
    RecordCardPaymentFailedCommand,
    RegistrationKey,
)

logger = logging.getLogger(__name__)

# Errors that will not go away on retry
UNAPPLIABLE_ERRORS = (LedgerValidationError, BalanceNotFoundError)


# =============================================================================
# Handler Registry
# =============================================================================


WEBHOOK_HANDLERS: dict[str, Callable[[WebhookEvent], ServiceResult]] = {}


def register_handler(event_type: str) -> Callable:
    """Decorator registering a handler for a Stripe event type."""

    def decorator(func: Callable[[WebhookEvent], ServiceResult]) -> Callable:
        WEBHOOK_HANDLERS[event_type] = func
        return func

    return decorator


def dispatch_webhook(webhook_event: WebhookEvent) -> ServiceResult:
    """
    Dispatch a webhook event to its handler.

    Unknown event types succeed with no effect so they are not retried.
    """
    handler = WEBHOOK_HANDLERS.get(webhook_event.event_type)

    if not handler:
        logger.info(
            f"No handler registered for event type: {webhook_event.event_type}",
            extra={"stripe_event_id": webhook_event.stripe_event_id},
        )
        return ServiceResult.success(None)

    return handler(webhook_event)


def get_reconciler() -> LedgerReconciler:
    return LedgerReconciler()


def _registration_key(obj: dict) -> RegistrationKey:
    """
    Read the registration from the object's metadata.

    Raises:
        LedgerValidationError: Missing or malformed metadata
    """
    metadata = obj.get("metadata") or {}
    registration_id = metadata.get("registration_id")
    registration_type = metadata.get("registration_type")
    if not registration_id or not registration_type:
        raise LedgerValidationError(
            "Webhook object has no registration metadata",
            error_code="MISSING_REGISTRATION_METADATA",
            details={"object_id": obj.get("id")},
        )
    return RegistrationKey(registration_id, registration_type)


def _notify_email(obj: dict) -> str | None:
    metadata = obj.get("metadata") or {}
    return metadata.get("notify_email") or obj.get("receipt_email")


# =============================================================================
# Payment Intent Handlers
# =============================================================================


@register_handler("payment_intent.succeeded")
def handle_payment_intent_succeeded(webhook_event: WebhookEvent) -> ServiceResult:
    """Apply a settled card payment to the registration's balance."""
    intent = webhook_event.get_object()
    log_context = {
        "stripe_event_id": webhook_event.stripe_event_id,
        "payment_intent_id": intent.get("id"),
    }

    try:
        command = RecordCardPaymentCommand(
            key=_registration_key(intent),
            amount=cents_to_amount(intent.get("amount_received") or intent.get("amount")),
            gateway_reference=intent.get("id"),
            notify_email=_notify_email(intent),
        )
        reconciler = get_reconciler()
        payment = retry_on_conflict(
            lambda: reconciler.record_card_payment_succeeded(command)
        )
    except UNAPPLIABLE_ERRORS as e:
        logger.error(
            "payment_intent.succeeded could not be applied",
            extra={**log_context, "error": e.message, "error_code": e.error_code},
        )
        return ServiceResult.from_exception(e)

    logger.info(
        "Applied card payment from webhook",
        extra={**log_context, "payment_id": str(payment.id)},
    )
    return ServiceResult.success(payment)


@register_handler("payment_intent.payment_failed")
def handle_payment_intent_failed(webhook_event: WebhookEvent) -> ServiceResult:
    """Record a failed card attempt. No balance effect."""
    intent = webhook_event.get_object()
    last_error = intent.get("last_payment_error") or {}

    try:
        command = RecordCardPaymentFailedCommand(
            key=_registration_key(intent),
            amount=cents_to_amount(intent.get("amount")),
            gateway_reference=intent.get("id"),
            failure_reason=last_error.get("message") or last_error.get("code"),
        )
        payment = get_reconciler().record_card_payment_failed(command)
    except UNAPPLIABLE_ERRORS as e:
        logger.error(
            "payment_intent.payment_failed could not be recorded",
            extra={
                "stripe_event_id": webhook_event.stripe_event_id,
                "error": e.message,
            },
        )
        return ServiceResult.from_exception(e)

    return ServiceResult.success(payment)


# =============================================================================
# Refund Handlers
# =============================================================================


def _local_refund_for(refund_data: dict) -> Refund | None:
    """Match a Stripe refund object to a local gateway refund."""
    stripe_refund_id = refund_data.get("id")
    if stripe_refund_id:
        refund = Refund.objects.filter(gateway_refund_reference=stripe_refund_id).first()
        if refund is not None:
            return refund

    refund_id = (refund_data.get("metadata") or {}).get("refund_id")
    if not refund_id:
        return None
    try:
        refund_id = uuid.UUID(str(refund_id))
    except ValueError:
        logger.warning(
            "Malformed refund_id in Stripe refund metadata",
            extra={"stripe_refund_id": stripe_refund_id, "refund_id": refund_id},
        )
        return None
    return Refund.objects.filter(id=refund_id, refund_method=RefundMethod.GATEWAY).first()


def _settle_refund(refund_data: dict, log_context: dict) -> str:
    """
    Bring the local refund in line with a Stripe refund object.

    Returns one of: completed, failed, unmatched, unchanged, conflict.
    """
    refund = _local_refund_for(refund_data)
    if refund is None:
        logger.info(
            "Stripe refund has no local counterpart",
            extra={**log_context, "stripe_refund_id": refund_data.get("id")},
        )
        return "unmatched"

    reconciler = get_reconciler()
    status = refund_data.get("status")

    if status == "succeeded":
        if refund.status == RefundState.FAILED:
            logger.error(
                "Stripe completed a refund recorded locally as failed",
                extra={
                    **log_context,
                    "refund_id": str(refund.id),
                    "stripe_refund_id": refund_data.get("id"),
                },
            )
            return "conflict"
        if refund.is_complete and refund.balance_applied:
            return "unchanged"
        retry_on_conflict(
            lambda: reconciler.complete_gateway_refund(refund.id, refund_data.get("id"))
        )
        return "completed"

    if status in ("failed", "canceled"):
        try:
            reconciler.fail_gateway_refund(
                refund.id, f"declined: {refund_data.get('failure_reason') or status}"
            )
        except InvalidStateTransitionError:
            logger.error(
                "Stripe failed a refund already completed locally",
                extra={**log_context, "refund_id": str(refund.id)},
            )
            return "conflict"
        return "failed"

    return "unchanged"


@register_handler("charge.refunded")
def handle_charge_refunded(webhook_event: WebhookEvent) -> ServiceResult:
    """
    Complete pending gateway refunds listed on a refunded charge.

    Each local refund is debited from the balance at most once.
    """
    charge = webhook_event.get_object()
    refunds_data = (charge.get("refunds") or {}).get("data") or []
    log_context = {
        "stripe_event_id": webhook_event.stripe_event_id,
        "charge_id": charge.get("id"),
    }

    outcomes: dict[str, int] = {}
    for refund_data in refunds_data:
        outcome = _settle_refund(refund_data, log_context)
        outcomes[outcome] = outcomes.get(outcome, 0) + 1

    logger.info("Processed charge.refunded", extra={**log_context, **outcomes})

    if outcomes.get("conflict"):
        return ServiceResult.failure(
            "Gateway refund state conflicts with the ledger; needs review",
            error_code="REFUND_STATE_CONFLICT",
        )
    return ServiceResult.success(outcomes)


@register_handler("charge.refund.updated")
def handle_charge_refund_updated(webhook_event: WebhookEvent) -> ServiceResult:
    """Resolve an asynchronous gateway refund from its own update event."""
    refund_data = webhook_event.get_object()
    outcome = _settle_refund(refund_data, {"stripe_event_id": webhook_event.stripe_event_id})
    if outcome == "conflict":
        return ServiceResult.failure(
            "Gateway refund state conflicts with the ledger; needs review",
            error_code="REFUND_STATE_CONFLICT",
        )
    return ServiceResult.success(outcome)


__all__ = [
    "WEBHOOK_HANDLERS",
    "dispatch_webhook",
    "get_reconciler",
    "register_handler",
]
