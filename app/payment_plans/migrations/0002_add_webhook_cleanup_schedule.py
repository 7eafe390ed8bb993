"""
Add celery-beat schedule for pruning archived webhook events.

Creates a daily periodic task for cleanup_old_webhook_events, which deletes
processed WebhookEvent rows older than WEBHOOK_EVENT_RETENTION_DAYS.
"""

from django.db import migrations

TASK_NAME = "Clean Up Old Payment Plan Webhook Events"


def create_periodic_task(apps, schema_editor):
    """Create the periodic task for webhook event cleanup."""
    IntervalSchedule = apps.get_model("django_celery_beat", "IntervalSchedule")
    PeriodicTask = apps.get_model("django_celery_beat", "PeriodicTask")

    schedule, _ = IntervalSchedule.objects.get_or_create(
        every=1,
        period="days",
    )

    PeriodicTask.objects.get_or_create(
        name=TASK_NAME,
        defaults={
            "task": "payment_plans.tasks.cleanup_old_webhook_events",
            "interval": schedule,
            "enabled": True,
            "description": (
                "Deletes processed gateway webhook events past the retention "
                "window. Failed events are kept for debugging."
            ),
        },
    )


def remove_periodic_task(apps, schema_editor):
    """Remove the periodic task on migration rollback."""
    PeriodicTask = apps.get_model("django_celery_beat", "PeriodicTask")

    PeriodicTask.objects.filter(name=TASK_NAME).delete()


class Migration(migrations.Migration):
    dependencies = [
        ("payment_plans", "0001_initial"),
        ("django_celery_beat", "0019_alter_periodictasks_options"),
    ]

    operations = [
        migrations.RunPython(create_periodic_task, remove_periodic_task),
    ]
