"""
State machine enums for payment plan models.
"""

from payment_plans.state_machines.states import (
    PLAN_CLOSED_STATES,
    OrderPaymentStatus,
    PaymentRecordStatus,
    PlanStatus,
    WebhookEventStatus,
)

__all__ = [
    "PLAN_CLOSED_STATES",
    "OrderPaymentStatus",
    "PaymentRecordStatus",
    "PlanStatus",
    "WebhookEventStatus",
]
