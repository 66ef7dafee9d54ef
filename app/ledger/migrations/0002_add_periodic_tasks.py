"""
Add celery-beat schedules for the ledger's periodic tasks.

- retry_failed_webhooks: every 5 minutes
- cleanup_stuck_webhooks: every 15 minutes
- audit_balance_drift: daily at 03:00
"""

from django.db import migrations

INTERVAL_TASKS = [
    (
        "Retry Failed Ledger Webhooks",
        "ledger.tasks.retry_failed_webhooks",
        5,
        "Re-queues failed webhook events with retries left and pending "
        "events that never reached a worker.",
    ),
    (
        "Reset Stuck Ledger Webhooks",
        "ledger.tasks.cleanup_stuck_webhooks",
        15,
        "Marks events left in processing by a crashed worker as failed.",
    ),
]

DRIFT_AUDIT_TASK = "Audit Balance Drift"


def create_periodic_tasks(apps, schema_editor):
    """Create the periodic tasks for webhook recovery and drift auditing."""
    IntervalSchedule = apps.get_model("django_celery_beat", "IntervalSchedule")
    CrontabSchedule = apps.get_model("django_celery_beat", "CrontabSchedule")
    PeriodicTask = apps.get_model("django_celery_beat", "PeriodicTask")

    for name, task, minutes, description in INTERVAL_TASKS:
        schedule, _ = IntervalSchedule.objects.get_or_create(
            every=minutes,
            period="minutes",
        )
        PeriodicTask.objects.get_or_create(
            name=name,
            defaults={
                "task": task,
                "interval": schedule,
                "enabled": True,
                "description": description,
            },
        )

    nightly, _ = CrontabSchedule.objects.get_or_create(
        minute="0",
        hour="3",
        day_of_week="*",
        day_of_month="*",
        month_of_year="*",
    )
    PeriodicTask.objects.get_or_create(
        name=DRIFT_AUDIT_TASK,
        defaults={
            "task": "ledger.tasks.audit_balance_drift",
            "crontab": nightly,
            "enabled": True,
            "description": (
                "Re-derives every balance from its payments, refunds and "
                "total edits and logs any that disagree."
            ),
        },
    )


def remove_periodic_tasks(apps, schema_editor):
    """Remove the periodic tasks on migration rollback."""
    PeriodicTask = apps.get_model("django_celery_beat", "PeriodicTask")

    names = [name for name, *_ in INTERVAL_TASKS] + [DRIFT_AUDIT_TASK]
    PeriodicTask.objects.filter(name__in=names).delete()


class Migration(migrations.Migration):
    dependencies = [
        ("ledger", "0001_initial"),
        ("django_celery_beat", "0019_alter_periodictasks_options"),
    ]

    operations = [
        migrations.RunPython(create_periodic_tasks, remove_periodic_tasks),
    ]
