"""
Add celery-beat schedules for the settlement sweeps.

Creates one periodic task per sweep:
- expire_stale_orders: cancel authorizations nobody captured
- expire_completion_codes: close completion codes past their deadline
- retry_pending_payouts: re-submit payouts the gateway never confirmed
- retry_pending_refunds: re-submit refunds the gateway never confirmed
- retry_failed_webhooks: re-queue failed webhook events
"""

from django.db import migrations

SWEEPS = [
    {
        "name": "Expire Stale Payment Orders",
        "task": "settlement.tasks.expire_stale_orders",
        "every": 10,
        "period": "minutes",
        "description": (
            "Cancels pending authorizations older than the authorization TTL "
            "at the gateway and marks the orders failed."
        ),
    },
    {
        "name": "Expire Completion Codes",
        "task": "settlement.tasks.expire_completion_codes",
        "every": 1,
        "period": "minutes",
        "description": "Moves issued completion codes past their deadline to expired.",
    },
    {
        "name": "Retry Pending Payouts",
        "task": "settlement.tasks.retry_pending_payouts",
        "every": 5,
        "period": "minutes",
        "description": (
            "Re-submits payouts left pending by gateway outages, reusing the "
            "original idempotency key."
        ),
    },
    {
        "name": "Retry Pending Refunds",
        "task": "settlement.tasks.retry_pending_refunds",
        "every": 5,
        "period": "minutes",
        "description": "Re-submits refunds left pending by gateway outages.",
    },
    {
        "name": "Retry Failed Webhooks",
        "task": "settlement.tasks.retry_failed_webhooks",
        "every": 5,
        "period": "minutes",
        "description": "Re-queues failed webhook events that still have retries left.",
    },
]


def create_periodic_tasks(apps, schema_editor):
    IntervalSchedule = apps.get_model("django_celery_beat", "IntervalSchedule")
    PeriodicTask = apps.get_model("django_celery_beat", "PeriodicTask")

    for sweep in SWEEPS:
        schedule, _ = IntervalSchedule.objects.get_or_create(
            every=sweep["every"],
            period=sweep["period"],
        )
        PeriodicTask.objects.get_or_create(
            name=sweep["name"],
            defaults={
                "task": sweep["task"],
                "interval": schedule,
                "enabled": True,
                "description": sweep["description"],
            },
        )


def remove_periodic_tasks(apps, schema_editor):
    PeriodicTask = apps.get_model("django_celery_beat", "PeriodicTask")

    PeriodicTask.objects.filter(name__in=[sweep["name"] for sweep in SWEEPS]).delete()


class Migration(migrations.Migration):
    dependencies = [
        ("settlement", "0001_initial"),
        ("django_celery_beat", "0019_alter_periodictasks_options"),
    ]

    operations = [
        migrations.RunPython(create_periodic_tasks, remove_periodic_tasks),
    ]
