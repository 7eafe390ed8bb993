"""
Payment plan domain models.

- Plan: Installment plan attached to an order, driven by gateway webhooks
- PaymentRecord: One row per installment of a Plan
- WebhookEvent: Archived gateway webhook deliveries for idempotent processing
"""

from payment_plans.models.payment_record import PaymentRecord
from payment_plans.models.plan import Plan
from payment_plans.models.webhook_event import WebhookEvent

__all__ = [
    "PaymentRecord",
    "Plan",
    "WebhookEvent",
]
