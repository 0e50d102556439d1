"""
Root pytest configuration for the settlement service.

Configures pytest-django and auto-marks tests by file name. Settlement
fixtures (mocked gateway, mocked Redis, users, API clients) live in
settlement/conftest.py.
"""

import os

import django
import pytest

# Ensure Django settings are configured before any tests run
os.environ.setdefault("DJANGO_SETTINGS_MODULE", "config.settings")


def pytest_configure():
    """Configure Django settings before tests run."""
    django.setup()

    from django.conf import settings

    # Disable throttling during tests to prevent rate limit failures
    settings.REST_FRAMEWORK["DEFAULT_THROTTLE_CLASSES"] = []
    settings.REST_FRAMEWORK["DEFAULT_THROTTLE_RATES"] = {}

    # Fast password hasher for factories
    settings.PASSWORD_HASHERS = [
        "django.contrib.auth.hashers.MD5PasswordHasher",
    ]


def pytest_collection_modifyitems(items):
    """
    Auto-mark tests based on filename patterns.

    Mapping:
    - test_integration.py → e2e (request-to-ledger flows)
    - test_views.py, test_*_service.py, test_tasks.py, ... → integration
    - test_models.py, test_commission.py, test_locks.py, ... → unit
    - Unmatched files → integration

    Explicit markers on test functions/classes take precedence.
    """
    e2e_patterns = ["test_integration.py"]

    integration_patterns = [
        "test_views.py",
        "test_tasks.py",
        "test_handlers.py",
        "test_order_service.py",
        "test_completion_service.py",
        "test_earnings_service.py",
        "test_payout_service.py",
        "test_refund_service.py",
    ]

    unit_patterns = [
        "test_models.py",
        "test_commission.py",
        "test_refund_policy.py",
        "test_signatures.py",
        "test_locks.py",
        "test_stripe_gateway.py",
        "test_services.py",
        "test_exceptions.py",
    ]

    for item in items:
        existing_markers = {m.name for m in item.iter_markers()}
        if existing_markers & {"unit", "integration", "e2e"}:
            continue

        filename = str(item.fspath).split("/")[-1]

        if any(pattern in filename for pattern in e2e_patterns):
            item.add_marker(pytest.mark.e2e)
        elif any(pattern in filename for pattern in integration_patterns):
            item.add_marker(pytest.mark.integration)
        elif any(pattern in filename for pattern in unit_patterns):
            item.add_marker(pytest.mark.unit)
        else:
            item.add_marker(pytest.mark.integration)
