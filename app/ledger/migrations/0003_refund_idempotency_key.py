"""
Add Refund.idempotency_key, unique per registration when set.
"""

from django.db import migrations, models


class Migration(migrations.Migration):
    dependencies = [
        ("ledger", "0002_add_periodic_tasks"),
    ]

    operations = [
        migrations.AddField(
            model_name="refund",
            name="idempotency_key",
            field=models.CharField(
                blank=True,
                help_text="Caller-supplied key; replaying it returns this refund",
                max_length=255,
                null=True,
            ),
        ),
        migrations.AddConstraint(
            model_name="refund",
            constraint=models.UniqueConstraint(
                condition=models.Q(idempotency_key__isnull=False),
                fields=("registration_id", "registration_type", "idempotency_key"),
                name="refund_idempotency_key_unique",
            ),
        ),
    ]
