"""
PaymentRecord model: one row per installment of a Plan.

All records of a plan are inserted together when the plan is created. The
record for installment N is written before the plan counter moves to N,
which lets a replayed webhook detect and heal a half-applied transition.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from django.db import models
from django.db.models import Q
from django.utils import timezone

from django_fsm import FSMField, transition

from core.models import BaseModel, UUIDPrimaryKeyMixin

from payment_plans.state_machines import PaymentRecordStatus

if TYPE_CHECKING:
    from datetime import datetime
    from typing import Any


class PaymentRecord(UUIDPrimaryKeyMixin, BaseModel):
    """
    A single installment of a payment plan.

    The (plan, transaction_id) pair is unique, so a gateway transaction can
    pay at most one installment per plan.

    State Flow:
        PENDING -> PAID
        PENDING -> FAILED (plan suspended while this was the next installment)
        FAILED -> PAID
    """

    plan = models.ForeignKey(
        "payment_plans.Plan",
        on_delete=models.CASCADE,
        related_name="payment_records",
    )

    payment_number = models.PositiveSmallIntegerField(
        help_text="1-based installment number",
    )

    total_payments = models.PositiveSmallIntegerField(
        help_text="Installment count of the plan, kept for display",
    )

    amount = models.DecimalField(max_digits=10, decimal_places=2)

    status = FSMField(
        default=PaymentRecordStatus.PENDING,
        choices=PaymentRecordStatus.choices,
        db_index=True,
    )

    transaction_id = models.CharField(
        max_length=64,
        null=True,
        blank=True,
        help_text="Gateway transaction that paid this installment",
    )

    paid_at = models.DateTimeField(null=True, blank=True)
    failed_at = models.DateTimeField(null=True, blank=True)

    metadata = models.JSONField(default=dict, blank=True)

    class Meta:
        ordering = ["plan", "payment_number"]
        verbose_name = "Payment Record"
        verbose_name_plural = "Payment Records"
        constraints = [
            models.UniqueConstraint(
                fields=["plan", "payment_number"],
                name="payment_record_unique_number",
            ),
            models.UniqueConstraint(
                fields=["plan", "transaction_id"],
                condition=Q(transaction_id__isnull=False),
                name="payment_record_unique_transaction",
            ),
            models.CheckConstraint(
                condition=Q(payment_number__gte=1),
                name="payment_record_number_positive",
            ),
        ]

    def __str__(self) -> str:
        return (
            f"PaymentRecord({self.plan_id}, "
            f"{self.payment_number}/{self.total_payments}, {self.status})"
        )

    # ==========================================================================
    # State Transitions (django-fsm)
    # ==========================================================================

    @transition(
        field=status,
        source=[PaymentRecordStatus.PENDING, PaymentRecordStatus.FAILED],
        target=PaymentRecordStatus.PAID,
    )
    def mark_paid(self, transaction_id: str | None, paid_at: datetime | None = None):
        self.transaction_id = transaction_id or None
        self.paid_at = paid_at or timezone.now()

    @transition(
        field=status,
        source=PaymentRecordStatus.PENDING,
        target=PaymentRecordStatus.FAILED,
    )
    def mark_failed(self, failed_at: datetime | None = None):
        self.failed_at = failed_at or timezone.now()

    def transition_fields(self) -> dict[str, Any]:
        """Fields written back by PlanStore.update_payment_record."""
        return {
            "status": self.status,
            "transaction_id": self.transaction_id,
            "paid_at": self.paid_at,
            "failed_at": self.failed_at,
        }

    @property
    def is_paid(self) -> bool:
        return self.status == PaymentRecordStatus.PAID
