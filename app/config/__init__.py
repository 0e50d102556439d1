"""
Project configuration package: settings, URLs, WSGI and Celery.

The Celery app is imported here so ``@shared_task`` functions in the
settlement app bind to it as soon as Django starts.
"""

from config.celery import app as celery_app

__all__ = ("celery_app",)
