"""
Durable storage for payment plans.

PlanStore is the interface the state machine and plan service depend on.
DjangoPlanStore implements it on the Django ORM. Every database error is
re-raised as StorageFailure so callers only deal with one retryable type.

Usage:
    from payment_plans.store import DjangoPlanStore

    store = DjangoPlanStore()
    with store.atomic():
        plan = store.find_plan_by_subscription_id("sub_123", for_update=True)
        store.update_plan(plan.pk, {"status": "active"}, expected_version=plan.version)
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import TYPE_CHECKING, Protocol, runtime_checkable

from django.db import DatabaseError, transaction
from django.utils import timezone

from payment_plans.exceptions import StaleRecordError, StorageFailure
from payment_plans.locks import check_version
from payment_plans.models import PaymentRecord, Plan
from payment_plans.state_machines import PaymentRecordStatus

if TYPE_CHECKING:
    from collections.abc import Callable, Generator, Iterable
    from typing import Any
    from uuid import UUID


logger = logging.getLogger(__name__)


@runtime_checkable
class PlanStore(Protocol):
    """Storage operations for Plan and PaymentRecord."""

    def find_plan_by_subscription_id(
        self, subscription_id: str, for_update: bool = False
    ) -> Plan | None: ...

    def find_plan_by_id(self, plan_id: UUID | str, for_update: bool = False) -> Plan | None: ...

    def insert_plan(self, **fields: Any) -> Plan: ...

    def update_plan(
        self,
        plan_id: UUID | str,
        fields: dict[str, Any],
        expected_version: int | None = None,
    ) -> Plan: ...

    def create_payment_records(
        self, plan_id: UUID | str, records: Iterable[dict[str, Any]]
    ) -> list[PaymentRecord]: ...

    def update_payment_record(
        self, plan_id: UUID | str, payment_number: int, fields: dict[str, Any]
    ) -> PaymentRecord: ...

    def get_payment_record(
        self, plan_id: UUID | str, payment_number: int
    ) -> PaymentRecord | None: ...

    def find_paid_record_by_transaction(
        self, plan_id: UUID | str, transaction_id: str
    ) -> PaymentRecord | None: ...

    def list_payment_records(self, plan_id: UUID | str) -> list[PaymentRecord]: ...

    def atomic(self) -> Any: ...

    def on_commit(self, callback: Callable[[], None]) -> None: ...


@contextmanager
def storage_errors(operation: str, **context: Any) -> Generator[None, None, None]:
    """Re-raise database errors as StorageFailure."""
    try:
        yield
    except DatabaseError as e:
        logger.error(
            f"Plan store {operation} failed: {type(e).__name__}",
            extra={"operation": operation, **context},
            exc_info=True,
        )
        raise StorageFailure(
            f"Plan store {operation} failed",
            details={"operation": operation, "error": str(e), **context},
        ) from e


class DjangoPlanStore:
    """PlanStore backed by the Django ORM."""

    def find_plan_by_subscription_id(
        self, subscription_id: str, for_update: bool = False
    ) -> Plan | None:
        if not subscription_id:
            return None
        with storage_errors("find_plan_by_subscription_id", subscription_id=subscription_id):
            queryset = Plan.objects.all()
            if for_update:
                queryset = queryset.select_for_update()
            return queryset.filter(subscription_id=subscription_id).first()

    def find_plan_by_id(self, plan_id: UUID | str, for_update: bool = False) -> Plan | None:
        with storage_errors("find_plan_by_id", plan_id=str(plan_id)):
            queryset = Plan.objects.all()
            if for_update:
                queryset = queryset.select_for_update()
            return queryset.filter(pk=plan_id).first()

    def insert_plan(self, **fields: Any) -> Plan:
        with storage_errors("insert_plan"):
            return Plan.objects.create(**fields)

    def update_plan(
        self,
        plan_id: UUID | str,
        fields: dict[str, Any],
        expected_version: int | None = None,
    ) -> Plan:
        """
        Write ``fields`` to the plan and bump its version.

        With ``expected_version`` the write is a compare-and-swap and raises
        StaleRecordError when another writer got there first.
        """
        fields = {**fields, "updated_at": timezone.now()}
        with storage_errors("update_plan", plan_id=str(plan_id)):
            if expected_version is None:
                current = Plan.objects.filter(pk=plan_id).values_list("version", flat=True).first()
                if current is None:
                    raise StaleRecordError(
                        f"Plan {plan_id} no longer exists",
                        details={"pk": str(plan_id)},
                    )
                expected_version = current
            check_version(Plan, plan_id, expected_version, **fields)
            return Plan.objects.get(pk=plan_id)

    def create_payment_records(
        self, plan_id: UUID | str, records: Iterable[dict[str, Any]]
    ) -> list[PaymentRecord]:
        with storage_errors("create_payment_records", plan_id=str(plan_id)):
            objs = [PaymentRecord(plan_id=plan_id, **record) for record in records]
            return PaymentRecord.objects.bulk_create(objs)

    def update_payment_record(
        self, plan_id: UUID | str, payment_number: int, fields: dict[str, Any]
    ) -> PaymentRecord:
        fields = {**fields, "updated_at": timezone.now()}
        with storage_errors(
            "update_payment_record",
            plan_id=str(plan_id),
            payment_number=payment_number,
        ):
            rows = PaymentRecord.objects.filter(
                plan_id=plan_id, payment_number=payment_number
            ).update(**fields)
            if rows == 0:
                raise StorageFailure(
                    f"Payment record {payment_number} missing for plan {plan_id}",
                    details={"plan_id": str(plan_id), "payment_number": payment_number},
                )
            return PaymentRecord.objects.get(plan_id=plan_id, payment_number=payment_number)

    def get_payment_record(
        self, plan_id: UUID | str, payment_number: int
    ) -> PaymentRecord | None:
        with storage_errors("get_payment_record", plan_id=str(plan_id)):
            return PaymentRecord.objects.filter(
                plan_id=plan_id, payment_number=payment_number
            ).first()

    def find_paid_record_by_transaction(
        self, plan_id: UUID | str, transaction_id: str
    ) -> PaymentRecord | None:
        if not transaction_id:
            return None
        with storage_errors("find_paid_record_by_transaction", plan_id=str(plan_id)):
            return PaymentRecord.objects.filter(
                plan_id=plan_id,
                transaction_id=transaction_id,
                status=PaymentRecordStatus.PAID,
            ).first()

    def list_payment_records(self, plan_id: UUID | str) -> list[PaymentRecord]:
        with storage_errors("list_payment_records", plan_id=str(plan_id)):
            return list(
                PaymentRecord.objects.filter(plan_id=plan_id).order_by("payment_number")
            )

    def atomic(self):
        return transaction.atomic()

    def on_commit(self, callback: Callable[[], None]) -> None:
        transaction.on_commit(callback)
