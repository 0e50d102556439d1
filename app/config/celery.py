"""
Celery configuration for the settlement service.

Workers run webhook processing and the periodic settlement sweeps
(stale authorizations, overdue completion codes, payout and refund
re-submission). Redis is both broker and result backend, and tasks are
auto-discovered from installed apps.

Usage:
    from settlement.tasks import process_webhook_event

    process_webhook_event.delay(str(webhook_event.id))
"""

import os

from celery import Celery

os.environ.setdefault("DJANGO_SETTINGS_MODULE", "config.settings")

app = Celery("config")

# All Celery settings are prefixed with CELERY_ in settings.py
app.config_from_object("django.conf:settings", namespace="CELERY")

app.autodiscover_tasks()
