"""
Stripe webhook intake.

views.stripe_webhook verifies and stores events; handlers apply them
through the settlement services from a Celery task.
"""
