"""
Tests for payment plan models.

Tests cover:
- Plan FSM transitions and the completion side effects
- Plan version auto-increment and database constraints
- PaymentRecord transitions and per-plan transaction uniqueness
- WebhookEvent processing helpers
"""

from decimal import Decimal

import pytest
from django.db import IntegrityError, transaction
from django_fsm import TransitionNotAllowed, can_proceed

from payment_plans.models import PaymentRecord
from payment_plans.state_machines import (
    OrderPaymentStatus,
    PaymentRecordStatus,
    PlanStatus,
    WebhookEventStatus,
)
from payment_plans.tests.factories import (
    PaymentRecordFactory,
    PlanFactory,
    WebhookEventFactory,
)


class TestPlanTransitions:
    """Tests for Plan lifecycle transitions."""

    def test_first_payment_activates_plan(self, pending_plan):
        """PENDING -> ACTIVE when installment 1 is recorded."""
        pending_plan.record_payment(1)

        assert pending_plan.status == PlanStatus.ACTIVE
        assert pending_plan.completed_payments == 1
        assert pending_plan.order_payment_status == OrderPaymentStatus.PENDING
        assert pending_plan.completed_at is None

    def test_last_payment_completes_plan(self, final_installment_plan):
        """ACTIVE -> COMPLETED on the last installment; order marked paid."""
        final_installment_plan.record_payment(3)

        assert final_installment_plan.status == PlanStatus.COMPLETED
        assert final_installment_plan.completed_payments == 3
        assert final_installment_plan.order_payment_status == OrderPaymentStatus.PAID
        assert final_installment_plan.order_paid_at is not None
        assert final_installment_plan.completed_at == final_installment_plan.order_paid_at

    def test_record_payment_blocked_when_all_collected(self, db):
        """The remaining-installments condition blocks a fourth payment."""
        plan = PlanFactory(status=PlanStatus.ACTIVE, completed_payments=3)

        assert can_proceed(plan.record_payment) is False

    @pytest.mark.parametrize(
        "status",
        [PlanStatus.COMPLETED, PlanStatus.SUSPENDED, PlanStatus.CANCELLED],
    )
    def test_record_payment_not_allowed_from_closed_states(self, db, status):
        plan = PlanFactory(status=status, completed_payments=1)

        with pytest.raises(TransitionNotAllowed):
            plan.record_payment(2)

    def test_suspend_from_active(self, active_plan):
        active_plan.suspend()

        assert active_plan.status == PlanStatus.SUSPENDED
        assert active_plan.suspended_at is not None
        assert active_plan.is_suspended

    def test_cancel_from_suspended(self, active_plan):
        """Suspended plans can still be cancelled."""
        active_plan.suspend()
        active_plan.cancel()

        assert active_plan.status == PlanStatus.CANCELLED
        assert active_plan.cancelled_at is not None

    def test_completed_plan_cannot_be_suspended_or_cancelled(self, db):
        plan = PlanFactory(status=PlanStatus.COMPLETED, completed_payments=3)

        assert can_proceed(plan.suspend) is False
        assert can_proceed(plan.cancel) is False

    def test_transition_fields_cover_lifecycle(self, final_installment_plan):
        final_installment_plan.record_payment(3)
        fields = final_installment_plan.transition_fields()

        assert fields["status"] == PlanStatus.COMPLETED
        assert fields["completed_payments"] == 3
        assert fields["order_payment_status"] == OrderPaymentStatus.PAID

    def test_remaining_payments(self, active_plan):
        assert active_plan.remaining_payments == 2


class TestPlanPersistence:
    """Tests for Plan versioning and constraints."""

    def test_new_plan_has_version_1(self, pending_plan):
        assert pending_plan.version == 1

    def test_version_increments_on_save(self, active_plan):
        active_plan.customer_name = "Renamed"
        active_plan.save()

        assert active_plan.version == 2

        active_plan.save()
        assert active_plan.version == 3

    def test_installment_count_must_be_in_range(self, db):
        with pytest.raises(IntegrityError):
            with transaction.atomic():
                PlanFactory(installment_count=1, payment_records=False)

    def test_total_amount_must_be_positive(self, db):
        with pytest.raises(IntegrityError):
            with transaction.atomic():
                PlanFactory(total_amount=Decimal("0.00"), payment_records=False)

    def test_completed_payments_bounded_by_count(self, db):
        with pytest.raises(IntegrityError):
            with transaction.atomic():
                PlanFactory(completed_payments=4, payment_records=False)

    def test_subscription_id_is_unique(self, active_plan):
        with pytest.raises(IntegrityError):
            with transaction.atomic():
                PlanFactory(subscription_id=active_plan.subscription_id)

    def test_factory_creates_one_record_per_installment(self, active_plan):
        records = list(active_plan.payment_records.all())

        assert [r.payment_number for r in records] == [1, 2, 3]
        assert [r.amount for r in records] == [
            Decimal("993.34"),
            Decimal("993.33"),
            Decimal("993.33"),
        ]
        assert records[0].status == PaymentRecordStatus.PAID
        assert records[1].status == PaymentRecordStatus.PENDING


class TestPaymentRecordTransitions:
    """Tests for PaymentRecord transitions."""

    def test_mark_paid_from_pending(self, db):
        record = PaymentRecordFactory()
        record.mark_paid("txn_1")

        assert record.status == PaymentRecordStatus.PAID
        assert record.transaction_id == "txn_1"
        assert record.paid_at is not None
        assert record.is_paid

    def test_mark_paid_without_transaction_stores_null(self, db):
        record = PaymentRecordFactory()
        record.mark_paid("")

        assert record.transaction_id is None

    def test_failed_record_can_be_paid(self, db):
        record = PaymentRecordFactory()
        record.mark_failed()
        assert record.status == PaymentRecordStatus.FAILED
        assert record.failed_at is not None

        record.mark_paid("txn_late")
        assert record.status == PaymentRecordStatus.PAID

    def test_paid_record_cannot_fail(self, db):
        record = PaymentRecordFactory(status=PaymentRecordStatus.PAID, transaction_id="t")

        with pytest.raises(TransitionNotAllowed):
            record.mark_failed()

    def test_transaction_unique_per_plan(self, active_plan):
        """A gateway transaction pays at most one installment per plan."""
        PaymentRecord.objects.filter(plan=active_plan, payment_number=2).update(
            transaction_id="dup"
        )

        with pytest.raises(IntegrityError):
            with transaction.atomic():
                PaymentRecord.objects.filter(plan=active_plan, payment_number=3).update(
                    transaction_id="dup"
                )

    def test_null_transactions_do_not_collide(self, active_plan):
        """Unpaid records all have a NULL transaction_id."""
        assert (
            PaymentRecord.objects.filter(plan=active_plan, transaction_id__isnull=True).count()
            == 2
        )


class TestWebhookEvent:
    """Tests for WebhookEvent helpers."""

    def test_mark_processing_counts_attempts(self, db):
        event = WebhookEventFactory()
        event.mark_processing()
        event.mark_processing()

        assert event.status == WebhookEventStatus.PROCESSING
        assert event.retry_count == 2

    def test_mark_processed_clears_error(self, db):
        event = WebhookEventFactory(
            status=WebhookEventStatus.FAILED, error_message="boom"
        )
        event.mark_processed("applied")

        assert event.is_processed
        assert event.outcome == "applied"
        assert event.processed_at is not None
        assert event.error_message is None

    def test_mark_failed(self, db):
        event = WebhookEventFactory()
        event.mark_failed("Storage unavailable")

        assert event.is_failed
        assert event.error_message == "Storage unavailable"

    def test_gateway_event_id_is_unique(self, db):
        WebhookEventFactory(gateway_event_id="evt_same")

        with pytest.raises(IntegrityError):
            with transaction.atomic():
                WebhookEventFactory(gateway_event_id="evt_same")
