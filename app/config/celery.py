"""
Celery configuration for the ledger service.

Celery runs the ledger's background work:
- Stripe webhook processing, retries and stuck-event recovery
- Post-commit notification emails
- The nightly balance drift audit (scheduled by django-celery-beat)

Redis is both the message broker and result backend. Tasks are
auto-discovered from the installed apps (ledger/tasks.py).

Usage:
    from ledger.tasks import process_webhook_event

    process_webhook_event.delay(str(webhook_event.id))

For more information, see:
https://docs.celeryq.dev/en/stable/django/first-steps-with-django.html
"""

import os

from celery import Celery

# Set the default Django settings module for the Celery worker
os.environ.setdefault("DJANGO_SETTINGS_MODULE", "config.settings")

app = Celery("config")

# All Celery settings are prefixed with CELERY_ in settings.py
app.config_from_object("django.conf:settings", namespace="CELERY")

app.autodiscover_tasks()
