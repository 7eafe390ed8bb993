"""
Payment plans app configuration.

This app tracks installment plans paid through gateway recurring billing:
- Installment schedule calculation
- Webhook normalization and idempotent plan transitions
- Post-commit notifications to Slack and the CRM
"""

from django.apps import AppConfig


class PaymentPlansConfig(AppConfig):
    """Configuration for the payment_plans application."""

    default_auto_field = "django.db.models.BigAutoField"
    name = "payment_plans"
    verbose_name = "Payment Plans"
