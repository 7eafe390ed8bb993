"""
Plan service for creating payment plans and recording their first payment.

The first installment is charged synchronously when the customer signs up,
before the gateway subscription exists. Every later installment arrives as
a webhook and goes through PlanStateMachine instead.

Usage:
    from payment_plans.services import PlanService

    plan = PlanService.create_plan(
        order_reference="Q-1001",
        total_amount="2980.00",
        installments=3,
        customer_email="buyer@example.com",
    )

    PlanService.mark_first_payment_complete(
        plan.pk, transaction_id="60012345678", subscription_id="9876543"
    )
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import TYPE_CHECKING

from django.utils import timezone

from django_fsm import can_proceed

from core.services import BaseService, ServiceResult

from payment_plans.calculator import compute_schedule, validate_plan
from payment_plans.exceptions import InvalidPlanParameters, StorageFailure
from payment_plans.store import DjangoPlanStore

if TYPE_CHECKING:
    from typing import Any
    from uuid import UUID

    from django.contrib.auth.models import AbstractBaseUser

    from payment_plans.models import PaymentRecord, Plan
    from payment_plans.store import PlanStore


@dataclass
class PlanStatusSnapshot:
    """Read model returned by PlanService.get_plan_status."""

    plan: Plan
    records: list[PaymentRecord] = field(default_factory=list)

    @property
    def paid_amount(self) -> Decimal:
        return sum((r.amount for r in self.records if r.is_paid), Decimal("0.00"))

    @property
    def remaining_amount(self) -> Decimal:
        return self.plan.total_amount - self.paid_amount

    @property
    def next_payment(self) -> PaymentRecord | None:
        for record in self.records:
            if not record.is_paid:
                return record
        return None


class PlanService(BaseService):
    """
    Creates plans and records the out-of-band first installment.

    All methods are class methods. The store defaults to DjangoPlanStore and
    can be swapped per call. create_plan raises InvalidPlanParameters; the
    other methods report expected failures as ServiceResult.
    """

    @classmethod
    def create_plan(
        cls,
        order_reference: str,
        total_amount: Any,
        installments: Any,
        customer_email: str = "",
        customer_name: str = "",
        created_by: AbstractBaseUser | None = None,
        metadata: dict[str, Any] | None = None,
        store: PlanStore | None = None,
    ) -> Plan:
        """
        Create a PENDING plan and one PENDING PaymentRecord per installment.

        Returns:
            The new Plan

        Raises:
            InvalidPlanParameters: If the amount or installment count is not
                acceptable; nothing is written
        """
        store = store or DjangoPlanStore()

        validation = validate_plan(total_amount, installments)
        if not validation.valid:
            raise InvalidPlanParameters(
                validation.error,
                details={
                    "total_amount": str(total_amount),
                    "installments": installments,
                },
            )
        schedule = validation.schedule

        with store.atomic():
            plan = store.insert_plan(
                order_reference=order_reference,
                customer_email=customer_email,
                customer_name=customer_name,
                created_by=created_by,
                total_amount=schedule.total_amount,
                installment_count=schedule.installments,
                first_payment_amount=schedule.first_payment,
                installment_amount=schedule.recurring_amount,
                metadata=metadata or {},
            )
            store.create_payment_records(
                plan.pk,
                (
                    {
                        "payment_number": number,
                        "total_payments": schedule.installments,
                        "amount": amount,
                    }
                    for number, amount in enumerate(schedule.amounts(), start=1)
                ),
            )

        cls.get_logger().info(
            f"Created payment plan for {order_reference}",
            extra={
                "plan_id": str(plan.pk),
                "order_reference": order_reference,
                "installments": schedule.installments,
                "total_amount": str(schedule.total_amount),
            },
        )
        return plan

    @classmethod
    def preview_schedule(cls, total_amount: Any, installments: Any) -> ServiceResult:
        """Compute a schedule without storing anything."""
        try:
            schedule = compute_schedule(total_amount, installments)
        except InvalidPlanParameters as e:
            return ServiceResult.failure(e.message, error_code=e.error_code)
        return ServiceResult.success(schedule)

    @classmethod
    def mark_first_payment_complete(
        cls,
        plan_id: UUID | str,
        transaction_id: str,
        subscription_id: str,
        store: PlanStore | None = None,
    ) -> ServiceResult[Plan]:
        """
        Record installment #1 and link the gateway subscription.

        Moves the plan PENDING -> ACTIVE with completed_payments = 1.
        Calling it again with the same transaction is a no-op success.
        """
        store = store or DjangoPlanStore()

        if not subscription_id:
            return ServiceResult.failure(
                "Subscription ID is required", error_code="MISSING_SUBSCRIPTION_ID"
            )

        with store.atomic():
            plan = store.find_plan_by_id(plan_id, for_update=True)
            if plan is None:
                return ServiceResult.failure("Payment plan not found", error_code="PLAN_NOT_FOUND")

            record = store.get_payment_record(plan.pk, 1)
            if record is None:
                raise StorageFailure(
                    f"Payment record 1 missing for plan {plan.pk}",
                    details={"plan_id": str(plan.pk), "payment_number": 1},
                )

            if record.is_paid and plan.completed_payments >= 1:
                if record.transaction_id == transaction_id:
                    return ServiceResult.success(plan)
                return ServiceResult.failure(
                    "First payment already recorded with a different transaction",
                    error_code="FIRST_PAYMENT_ALREADY_RECORDED",
                )

            if not can_proceed(plan.record_payment):
                return ServiceResult.failure(
                    f"Plan is {plan.status}; cannot record first payment",
                    error_code="INVALID_PLAN_STATE",
                )

            now = timezone.now()
            if not record.is_paid:
                record.mark_paid(transaction_id, paid_at=now)
                store.update_payment_record(plan.pk, 1, record.transition_fields())

            plan.record_payment(1, paid_at=now)
            fields = plan.transition_fields()
            fields["subscription_id"] = subscription_id
            plan = store.update_plan(plan.pk, fields, expected_version=plan.version)

        cls.get_logger().info(
            f"Recorded first payment on plan {plan.pk}",
            extra={
                "plan_id": str(plan.pk),
                "subscription_id": subscription_id,
                "transaction_id": transaction_id,
            },
        )
        return ServiceResult.success(plan)

    @classmethod
    def get_plan_status(
        cls, plan_id: UUID | str, store: PlanStore | None = None
    ) -> PlanStatusSnapshot | None:
        """Plan plus its payment records, or None if the plan does not exist."""
        store = store or DjangoPlanStore()
        plan = store.find_plan_by_id(plan_id)
        if plan is None:
            return None
        return PlanStatusSnapshot(plan=plan, records=store.list_payment_records(plan.pk))
