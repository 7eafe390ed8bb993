"""
Plan model for installment billing.

A Plan splits an order total into a fixed number of installments. The first
installment is charged out of band when the customer signs up. The remaining
ones arrive as gateway subscription webhooks keyed by subscription_id.

Usage:
    from payment_plans.models import Plan
    from payment_plans.state_machines import PlanStatus

    plan = Plan.objects.create(
        order_reference="Q-1001",
        customer_email="buyer@example.com",
        total_amount=Decimal("2980.00"),
        installment_count=3,
        first_payment_amount=Decimal("993.34"),
        installment_amount=Decimal("993.33"),
    )

    plan.record_payment(1)  # pending -> active
    plan.save()
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from django.conf import settings
from django.db import models
from django.db.models import F, Q
from django.utils import timezone

from django_fsm import RETURN_VALUE, FSMField, transition

from core.models import BaseModel, UUIDPrimaryKeyMixin

from payment_plans.calculator import MAX_INSTALLMENTS, MIN_INSTALLMENTS
from payment_plans.state_machines import OrderPaymentStatus, PlanStatus

if TYPE_CHECKING:
    from datetime import datetime
    from typing import Any


def has_remaining_installments(plan: Plan) -> bool:
    """FSM condition: at least one installment is still unpaid."""
    return plan.completed_payments < plan.installment_count


class Plan(UUIDPrimaryKeyMixin, BaseModel):
    """
    Installment payment plan attached to a quote/order.

    Uses django-fsm for the lifecycle and a version field for optimistic
    locking. Webhook-driven writes go through PlanStore.update_plan, which
    compare-and-swaps on version.

    State Flow:
        PENDING -> ACTIVE (first installment recorded)
        ACTIVE -> COMPLETED (last installment recorded)
        PENDING/ACTIVE -> SUSPENDED (gateway suspended the subscription)
        PENDING/ACTIVE/SUSPENDED -> CANCELLED

    Invariants:
        0 <= completed_payments <= installment_count
        status == COMPLETED iff completed_payments == installment_count
    """

    # ==========================================================================
    # Order
    # ==========================================================================

    order_reference = models.CharField(
        max_length=100,
        db_index=True,
        help_text="Quote or order number this plan pays for",
    )

    customer_email = models.EmailField(
        blank=True,
        default="",
        help_text="Customer email, used to find the CRM contact",
    )

    customer_name = models.CharField(
        max_length=255,
        blank=True,
        default="",
    )

    created_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="payment_plans",
        help_text="User who created the quote; may read the plan status",
    )

    is_installment_plan = models.BooleanField(
        default=True,
        help_text="Webhook transitions are ignored when False",
    )

    # ==========================================================================
    # Schedule (fixed at creation)
    # ==========================================================================

    total_amount = models.DecimalField(max_digits=10, decimal_places=2)

    installment_count = models.PositiveSmallIntegerField(
        help_text="Total number of installments, including the first",
    )

    first_payment_amount = models.DecimalField(
        max_digits=10,
        decimal_places=2,
        help_text="First installment; absorbs the rounding remainder",
    )

    installment_amount = models.DecimalField(
        max_digits=10,
        decimal_places=2,
        help_text="Amount of every installment after the first",
    )

    # ==========================================================================
    # Gateway
    # ==========================================================================

    subscription_id = models.CharField(
        max_length=64,
        null=True,
        blank=True,
        unique=True,
        help_text="Gateway recurring-billing subscription ID",
    )

    # ==========================================================================
    # Progress & State
    # ==========================================================================

    completed_payments = models.PositiveSmallIntegerField(default=0)

    status = FSMField(
        default=PlanStatus.PENDING,
        choices=PlanStatus.choices,
        db_index=True,
        help_text="Current state of the plan (managed by FSM)",
    )

    order_payment_status = models.CharField(
        max_length=20,
        choices=OrderPaymentStatus.choices,
        default=OrderPaymentStatus.PENDING,
        help_text="Set to paid once every installment is collected",
    )

    order_paid_at = models.DateTimeField(null=True, blank=True)
    completed_at = models.DateTimeField(null=True, blank=True)
    suspended_at = models.DateTimeField(null=True, blank=True)
    cancelled_at = models.DateTimeField(null=True, blank=True)

    # ==========================================================================
    # Concurrency Control
    # ==========================================================================

    version = models.PositiveIntegerField(
        default=1,
        help_text="Version for optimistic locking - incremented on each save",
    )

    metadata = models.JSONField(
        default=dict,
        blank=True,
        help_text="Arbitrary JSON metadata for extensibility",
    )

    # ==========================================================================
    # Meta & Methods
    # ==========================================================================

    class Meta:
        ordering = ["-created_at"]
        verbose_name = "Payment Plan"
        verbose_name_plural = "Payment Plans"
        indexes = [
            models.Index(
                fields=["status", "created_at"], name="plan_status_created_idx"
            ),
            models.Index(fields=["customer_email"], name="plan_customer_email_idx"),
        ]
        constraints = [
            models.CheckConstraint(
                condition=Q(total_amount__gt=0),
                name="plan_total_amount_positive",
            ),
            models.CheckConstraint(
                condition=Q(installment_count__gte=MIN_INSTALLMENTS)
                & Q(installment_count__lte=MAX_INSTALLMENTS),
                name="plan_installment_count_range",
            ),
            models.CheckConstraint(
                condition=Q(completed_payments__lte=F("installment_count")),
                name="plan_completed_payments_bounded",
            ),
        ]

    def __str__(self) -> str:
        return (
            f"Plan({self.order_reference}, {self.status}, "
            f"{self.completed_payments}/{self.installment_count})"
        )

    def save(self, *args, **kwargs):
        """
        Save with version auto-increment for optimistic locking.
        """
        is_update = self.pk and not self._state.adding
        if is_update:
            self.version = F("version") + 1
        super().save(*args, **kwargs)
        if is_update:
            self.refresh_from_db(fields=["version"])

    # ==========================================================================
    # State Transitions (django-fsm)
    # ==========================================================================

    @transition(
        field=status,
        source=[PlanStatus.PENDING, PlanStatus.ACTIVE],
        target=RETURN_VALUE(PlanStatus.ACTIVE, PlanStatus.COMPLETED),
        conditions=[has_remaining_installments],
    )
    def record_payment(self, payment_number: int, paid_at: datetime | None = None):
        """
        Count installment #payment_number as collected.

        Transition: PENDING/ACTIVE -> ACTIVE, or -> COMPLETED on the last one.
        Completing the plan also marks the owning order paid.
        """
        self.completed_payments = payment_number
        if payment_number >= self.installment_count:
            now = paid_at or timezone.now()
            self.order_payment_status = OrderPaymentStatus.PAID
            self.order_paid_at = now
            self.completed_at = now
            return PlanStatus.COMPLETED
        return PlanStatus.ACTIVE

    @transition(
        field=status,
        source=[PlanStatus.PENDING, PlanStatus.ACTIVE],
        target=PlanStatus.SUSPENDED,
    )
    def suspend(self):
        """Transition: PENDING/ACTIVE -> SUSPENDED."""
        self.suspended_at = timezone.now()

    @transition(
        field=status,
        source=[PlanStatus.PENDING, PlanStatus.ACTIVE, PlanStatus.SUSPENDED],
        target=PlanStatus.CANCELLED,
    )
    def cancel(self):
        """Transition: PENDING/ACTIVE/SUSPENDED -> CANCELLED."""
        self.cancelled_at = timezone.now()

    # ==========================================================================
    # Helpers
    # ==========================================================================

    def transition_fields(self) -> dict[str, Any]:
        """Lifecycle fields written back by PlanStore.update_plan."""
        return {
            "status": self.status,
            "completed_payments": self.completed_payments,
            "order_payment_status": self.order_payment_status,
            "order_paid_at": self.order_paid_at,
            "completed_at": self.completed_at,
            "suspended_at": self.suspended_at,
            "cancelled_at": self.cancelled_at,
        }

    @property
    def remaining_payments(self) -> int:
        return self.installment_count - self.completed_payments

    @property
    def is_completed(self) -> bool:
        return self.status == PlanStatus.COMPLETED

    @property
    def is_suspended(self) -> bool:
        return self.status == PlanStatus.SUSPENDED

    @property
    def is_cancelled(self) -> bool:
        return self.status == PlanStatus.CANCELLED
