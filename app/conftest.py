"""
Root pytest configuration for the Django project.

This module configures pytest-django and provides project-wide fixtures.
App-specific fixtures are defined in each app's tests/conftest.py.
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

    # Use fast password hasher for tests (PBKDF2 is too slow with 870K iterations)
    settings.PASSWORD_HASHERS = [
        "django.contrib.auth.hashers.MD5PasswordHasher",
    ]

    # No Redis in unit tests; lock tests patch the connection explicitly
    settings.CACHES = {
        "default": {"BACKEND": "django.core.cache.backends.locmem.LocMemCache"}
    }

    # The test client speaks plain HTTP
    settings.SECURE_SSL_REDIRECT = False

    # Outbound notifications stay local
    settings.SLACK_WEBHOOK_URL = ""
    settings.GHL_API_KEY = ""
    settings.AUTHORIZE_NET_SIGNATURE_KEY = ""


def pytest_collection_modifyitems(items):
    """
    Auto-mark tests based on filename patterns.

    Mapping:
    - test_integration.py → e2e (full webhook-to-notification journeys)
    - test_views.py, test_tasks.py, test_state_machine.py, etc. → integration
    - test_models.py, test_calculator.py, test_normalizer.py, etc. → unit
    - Unmatched files → integration (safe default for Django)

    Explicit markers on test functions/classes take precedence.
    """
    # Filename patterns for each category
    e2e_patterns = ["test_integration.py"]

    integration_patterns = [
        "test_views.py",
        "test_tasks.py",
        "test_store.py",
        "test_state_machine.py",
        "test_plan_service.py",
        "test_dispatcher.py",
    ]

    unit_patterns = [
        "test_models.py",
        "test_serializers.py",
        "test_state_transitions.py",
        "test_locks.py",
        "test_calculator.py",
        "test_normalizer.py",
        "test_sinks.py",
        "test_services.py",
        "test_exceptions.py",
    ]

    for item in items:
        # Skip if test already has unit/integration/e2e marker
        existing_markers = {m.name for m in item.iter_markers()}
        if existing_markers & {"unit", "integration", "e2e"}:
            continue

        filename = os.path.basename(str(item.fspath))

        # Check patterns in priority order
        if any(pattern in filename for pattern in e2e_patterns):
            item.add_marker(pytest.mark.e2e)
        elif any(pattern in filename for pattern in integration_patterns):
            item.add_marker(pytest.mark.integration)
        elif any(pattern in filename for pattern in unit_patterns):
            item.add_marker(pytest.mark.unit)
        else:
            # Default: integration (safe for Django where most tests hit DB)
            item.add_marker(pytest.mark.integration)


@pytest.fixture(autouse=True)
def _clear_process_singletons():
    """Reset lru_cached singletons so settings overrides take effect per test."""
    from payment_plans.notifications.sinks import get_notification_sinks
    from payment_plans.services.state_machine import get_plan_state_machine
    from payment_plans.webhooks.normalizer import get_event_normalizer

    get_notification_sinks.cache_clear()
    get_plan_state_machine.cache_clear()
    get_event_normalizer.cache_clear()
    yield
    get_notification_sinks.cache_clear()
    get_plan_state_machine.cache_clear()
    get_event_normalizer.cache_clear()
