"""
State enums for payment plan models.

These are Django TextChoices for database storage and admin integration,
used as django-fsm field choices.

State Machines Overview:

Plan States:
    pending → active → completed
    pending/active → suspended → cancelled
    pending/active → cancelled

PaymentRecord States:
    pending → paid
    pending → failed → paid (manual recovery)

WebhookEvent Status:
    pending → processing → processed
    pending → processing → failed
"""

from django.db import models


class PlanStatus(models.TextChoices):
    """
    States for the Plan lifecycle.

    Terminal states: COMPLETED, CANCELLED
    SUSPENDED is not terminal but never resumes automatically.
    """

    PENDING = "pending", "Pending"
    ACTIVE = "active", "Active"
    COMPLETED = "completed", "Completed"
    SUSPENDED = "suspended", "Suspended"
    CANCELLED = "cancelled", "Cancelled"


class PaymentRecordStatus(models.TextChoices):
    """States for a single installment."""

    PENDING = "pending", "Pending"
    PAID = "paid", "Paid"
    FAILED = "failed", "Failed"


class OrderPaymentStatus(models.TextChoices):
    """Payment status of the order the plan pays for."""

    PENDING = "pending", "Pending"
    PAID = "paid", "Paid"


class WebhookEventStatus(models.TextChoices):
    """
    Processing status for WebhookEvent.

    State Flow:
        PENDING → PROCESSING → PROCESSED
        PENDING → PROCESSING → FAILED
    """

    PENDING = "pending", "Pending"
    PROCESSING = "processing", "Processing"
    PROCESSED = "processed", "Processed"
    FAILED = "failed", "Failed"


#: States in which no further installment can be recorded.
PLAN_CLOSED_STATES = frozenset(
    {PlanStatus.COMPLETED, PlanStatus.SUSPENDED, PlanStatus.CANCELLED}
)
