"""
Celery tasks for the ledger.

This module provides async tasks for:
- Processing Stripe webhook events
- Retrying failed and resetting stuck webhook events
- Sending post-commit ledger notifications
- Checking stored balances against their history

Usage:
    from ledger.tasks import process_webhook_event

    process_webhook_event.delay(str(webhook_event.id))
"""

from __future__ import annotations

import logging
from datetime import timedelta
from uuid import UUID

from celery import shared_task
from django.conf import settings
from django.core.mail import send_mail
from django.db import transaction
from django.db.models import Q
from django.utils import timezone

from ledger.models import Balance, WebhookEvent
from ledger.models.webhook_event import MAX_WEBHOOK_RETRIES
from ledger.notifications import render_notification
from ledger.state_machines import WebhookEventStatus

logger = logging.getLogger(__name__)


STUCK_PROCESSING_THRESHOLD_MINUTES = 30
UNQUEUED_THRESHOLD_MINUTES = 10
RETRY_BATCH_SIZE = 100
DRIFT_AUDIT_BATCH_SIZE = 500


# =============================================================================
# Webhook Processing Tasks
# =============================================================================


@shared_task(
    bind=True,
    autoretry_for=(Exception,),
    retry_backoff=True,
    retry_backoff_max=300,
    retry_kwargs={"max_retries": MAX_WEBHOOK_RETRIES},
    acks_late=True,
)
def process_webhook_event(self, webhook_event_id: str) -> dict:
    """
    Process a stored Stripe webhook event.

    1. Load the WebhookEvent; skip if already processed
    2. Mark processing
    3. Dispatch to the handler for its event type
    4. Mark processed, or failed with the handler's error

    Exceptions are re-raised so Celery retries with backoff.
    """
    from ledger.webhooks.handlers import dispatch_webhook

    if isinstance(webhook_event_id, str):
        webhook_event_id = UUID(webhook_event_id)

    try:
        webhook_event = WebhookEvent.objects.get(id=webhook_event_id)
    except WebhookEvent.DoesNotExist:
        logger.error(
            "WebhookEvent not found",
            extra={"webhook_event_id": str(webhook_event_id)},
        )
        return {"status": "not_found", "webhook_event_id": str(webhook_event_id)}

    log_context = {
        "webhook_event_id": str(webhook_event_id),
        "stripe_event_id": webhook_event.stripe_event_id,
        "event_type": webhook_event.event_type,
    }

    if webhook_event.is_processed:
        logger.info("WebhookEvent already processed, skipping", extra=log_context)
        return {"status": "already_processed", "webhook_event_id": str(webhook_event_id)}

    webhook_event.mark_processing()
    webhook_event.save()

    logger.info(
        f"Dispatching webhook: {webhook_event.event_type}",
        extra={**log_context, "retry_count": webhook_event.retry_count},
    )

    try:
        with transaction.atomic():
            result = dispatch_webhook(webhook_event)
    except Exception as e:
        error_msg = f"{type(e).__name__}: {e}"
        webhook_event.mark_failed(error_msg)
        webhook_event.save()
        logger.exception(
            "Webhook processing failed with exception",
            extra={**log_context, "error": error_msg},
        )
        raise

    if result.success:
        webhook_event.mark_processed()
        webhook_event.save()
        logger.info("Webhook processed successfully", extra=log_context)
        return {
            "status": "processed",
            "webhook_event_id": str(webhook_event_id),
            "stripe_event_id": webhook_event.stripe_event_id,
        }

    error_msg = result.error or "Handler returned failure"
    webhook_event.mark_failed(error_msg)
    webhook_event.save()
    logger.warning(
        f"Webhook handler failed: {error_msg}",
        extra={**log_context, "error_code": result.error_code},
    )
    return {
        "status": "handler_failed",
        "webhook_event_id": str(webhook_event_id),
        "error": error_msg,
    }


@shared_task
def retry_failed_webhooks() -> dict:
    """
    Re-queue failed webhook events that still have retries left, and
    pending events whose original enqueue never reached the worker.
    """
    unqueued_before = timezone.now() - timedelta(minutes=UNQUEUED_THRESHOLD_MINUTES)
    failed_webhooks = WebhookEvent.objects.filter(
        Q(status=WebhookEventStatus.FAILED, retry_count__lt=MAX_WEBHOOK_RETRIES)
        | Q(status=WebhookEventStatus.PENDING, created_at__lt=unqueued_before)
    ).order_by("created_at")[:RETRY_BATCH_SIZE]

    queued_count = 0
    for webhook in failed_webhooks:
        try:
            process_webhook_event.delay(str(webhook.id))
        except Exception as e:
            logger.error(
                f"Failed to queue webhook for retry: {e}",
                extra={"webhook_event_id": str(webhook.id)},
            )
            continue
        queued_count += 1

    if queued_count:
        logger.info(
            f"Queued {queued_count} failed webhooks for retry",
            extra={"queued_count": queued_count},
        )
    return {"queued_count": queued_count}


@shared_task
def cleanup_stuck_webhooks() -> dict:
    """Reset events left in PROCESSING by a crashed worker to FAILED."""
    threshold = timezone.now() - timedelta(minutes=STUCK_PROCESSING_THRESHOLD_MINUTES)
    stuck_webhooks = WebhookEvent.objects.filter(
        status=WebhookEventStatus.PROCESSING,
        updated_at__lt=threshold,
    )

    reset_count = 0
    for webhook in stuck_webhooks:
        webhook.mark_failed("Processing timed out - reset for retry")
        webhook.save()
        reset_count += 1
        logger.warning(
            "Reset stuck webhook",
            extra={
                "webhook_event_id": str(webhook.id),
                "stripe_event_id": webhook.stripe_event_id,
            },
        )

    return {"reset_count": reset_count}


# =============================================================================
# Notifications
# =============================================================================


@shared_task(
    bind=True,
    autoretry_for=(Exception,),
    retry_backoff=True,
    retry_kwargs={"max_retries": 3},
)
def send_ledger_notification(
    self, recipient: str, template_kind: str, payload: dict
) -> bool:
    """Email a ledger notification. Queued only after the ledger commit."""
    subject, body = render_notification(template_kind, payload)
    send_mail(
        subject,
        body,
        getattr(settings, "LEDGER_NOTIFICATION_FROM_EMAIL", None),
        [recipient],
        fail_silently=False,
    )
    logger.info(
        "Sent ledger notification",
        extra={"template_kind": template_kind},
    )
    return True


# =============================================================================
# Balance Drift Audit
# =============================================================================


@shared_task
def audit_balance_drift() -> dict:
    """
    Re-derive every balance from its history and log any that disagree.

    Never corrects anything; a mismatch is a defect to investigate.
    """
    from ledger.services import LedgerReportingService

    reporting = LedgerReportingService()
    checked = 0
    drifted: list[str] = []

    for balance in Balance.objects.order_by("created_at").iterator(
        chunk_size=DRIFT_AUDIT_BATCH_SIZE
    ):
        checked += 1
        result = reporting.rederive_balance(balance.registration_key)
        if not result.matches:
            drifted.append(str(balance.registration_key))

    if drifted:
        logger.error(
            f"{len(drifted)} balances do not match their history",
            extra={"checked": checked, "drifted": drifted[:50]},
        )
    else:
        logger.info("All balances match their history", extra={"checked": checked})

    return {"checked": checked, "drifted": drifted}
