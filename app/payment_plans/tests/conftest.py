"""
Pytest fixtures for payment plan tests.

Fixtures provide plans in each lifecycle state, a state machine wired to a
mock notifier, and a builder for normalized gateway events.

Usage:
    def test_installment_paid(state_machine, active_plan, make_event):
        result = state_machine.apply(make_event(active_plan.subscription_id, "txn_2"))
        assert result.applied
"""

from contextlib import nullcontext
from decimal import Decimal

import pytest
from rest_framework.test import APIClient

from payment_plans.services import PlanStateMachine
from payment_plans.state_machines import PlanStatus
from payment_plans.tests.factories import PlanFactory, UserFactory
from payment_plans.webhooks.normalizer import (
    EventFamily,
    EventKind,
    NormalizedPaymentEvent,
)


# =============================================================================
# User Fixtures
# =============================================================================


@pytest.fixture
def user(db):
    """Create a test user."""
    return UserFactory()


@pytest.fixture
def other_user(db):
    """Create a second user who owns nothing."""
    return UserFactory()


@pytest.fixture
def staff_user(db):
    """Create a staff user."""
    return UserFactory(is_staff=True)


@pytest.fixture
def api_client():
    """DRF API client."""
    return APIClient()


# =============================================================================
# Plan Fixtures
# =============================================================================


@pytest.fixture
def pending_plan(db, user):
    """Plan created at quote time; nothing paid, no subscription yet."""
    return PlanFactory(created_by=user, subscription_id=None)


@pytest.fixture
def active_plan(db, user):
    """Plan with the first of three installments collected."""
    return PlanFactory(created_by=user, active=True, subscription_id="sub_active")


@pytest.fixture
def final_installment_plan(db, user):
    """Plan with two of three installments collected."""
    return PlanFactory(
        created_by=user,
        status=PlanStatus.ACTIVE,
        completed_payments=2,
        subscription_id="sub_final",
    )


@pytest.fixture
def four_installment_plan(db, user):
    """Active plan of four installments, two collected."""
    return PlanFactory(
        created_by=user,
        status=PlanStatus.ACTIVE,
        total_amount=Decimal("4000.00"),
        installment_count=4,
        first_payment_amount=Decimal("1000.00"),
        installment_amount=Decimal("1000.00"),
        completed_payments=2,
        subscription_id="sub_four",
    )


# =============================================================================
# Redis / State Machine Fixtures
# =============================================================================


@pytest.fixture
def mock_redis(mocker):
    """
    Mock Redis client for distributed lock tests.

    Returns a MagicMock configured so every lock acquires and releases.
    """
    mock_client = mocker.MagicMock()
    mock_client.set.return_value = True
    mock_client.eval.return_value = 1

    mocker.patch(
        "payment_plans.locks.get_redis_connection",
        return_value=mock_client,
    )
    return mock_client


@pytest.fixture
def notifier(mocker):
    """Mock NotificationDispatcher; records dispatch calls."""
    return mocker.MagicMock()


@pytest.fixture
def state_machine(notifier):
    """PlanStateMachine with a no-op lock and a mock notifier."""
    return PlanStateMachine(
        notifier=notifier,
        lock_factory=lambda key: nullcontext(),
        max_attempts=3,
    )


@pytest.fixture
def make_event():
    """
    Build a NormalizedPaymentEvent.

    Example:
        event = make_event("sub_1", "txn_2")
        event = make_event("sub_1", kind=EventKind.PLAN_SUSPENDED)
    """

    def _make(
        subscription_id,
        transaction_id="",
        kind=EventKind.INSTALLMENT_PAID,
        amount=Decimal("993.33"),
        event_type=None,
    ):
        if event_type is None:
            event_type = {
                EventKind.INSTALLMENT_PAID: "net.authorize.payment.authcapture.created",
                EventKind.PLAN_SUSPENDED: "net.authorize.customer.subscription.suspended",
                EventKind.PLAN_CANCELLED: "net.authorize.customer.subscription.cancelled",
                EventKind.UNSUPPORTED: "net.authorize.payment.refund.created",
            }[kind]
        return NormalizedPaymentEvent(
            kind=kind,
            subscription_id=subscription_id or "",
            transaction_id=transaction_id,
            amount=amount,
            event_id=f"evt_{subscription_id}_{transaction_id}",
            event_type=event_type,
            family=(
                EventFamily.TRANSACTION
                if kind in (EventKind.INSTALLMENT_PAID, EventKind.UNSUPPORTED)
                else EventFamily.SUBSCRIPTION
            ),
        )

    return _make
