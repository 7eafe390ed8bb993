"""
Celery configuration for the payment plan engine.

Celery runs two kinds of work here:
- Post-commit notification delivery (Slack, CRM), off the webhook request path
- Periodic maintenance scheduled through django-celery-beat

Redis is both the message broker and the result backend. Tasks are
auto-discovered from all installed Django apps.

Usage:
    # Worker
    celery -A config worker -l info

    # Scheduler (schedules live in the database, see payment_plans migrations)
    celery -A config beat -l info

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
