"""
Payment plan state machine.

Applies a NormalizedPaymentEvent to the plan it refers to, exactly once.

Concurrency:
    - A Redis DistributedLock serializes all transitions of one subscription
    - The plan row is read with select_for_update inside one transaction
    - Every plan write is a compare-and-swap on Plan.version. A stale
      snapshot raises StaleRecordError and the transition is retried from a
      fresh read, up to PAYMENT_PLAN_MAX_TRANSITION_ATTEMPTS times

Write order:
    The PaymentRecord is written before the Plan. If a crash lands between
    the two writes, the redelivered event finds the record already paid and
    only bumps the plan counter.

Usage:
    from payment_plans.services import get_plan_state_machine

    result = get_plan_state_machine().apply(event)
    if result.outcome is TransitionOutcome.APPLIED:
        ...
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from functools import lru_cache, partial
from typing import TYPE_CHECKING

from django.conf import settings
from django.utils import timezone

from django_fsm import can_proceed

from payment_plans.exceptions import StaleRecordError, StorageFailure
from payment_plans.locks import DistributedLock, subscription_lock_key
from payment_plans.store import DjangoPlanStore
from payment_plans.webhooks.normalizer import EventKind

if TYPE_CHECKING:
    from collections.abc import Callable
    from contextlib import AbstractContextManager
    from typing import Any

    from payment_plans.models import Plan
    from payment_plans.notifications.dispatcher import NotificationDispatcher
    from payment_plans.store import PlanStore
    from payment_plans.webhooks.normalizer import NormalizedPaymentEvent


logger = logging.getLogger(__name__)


class TransitionOutcome(str, Enum):
    APPLIED = "applied"
    PLAN_NOT_FOUND = "plan_not_found"
    NOT_INSTALLMENT_PLAN = "not_installment_plan"
    DUPLICATE = "duplicate"
    INVALID_STATE = "invalid_state"
    MISSING_SUBSCRIPTION_ID = "missing_subscription_id"
    UNSUPPORTED = "unsupported"


@dataclass(frozen=True)
class TransitionResult:
    """
    What happened when an event was applied.

    Attributes:
        outcome: APPLIED, or the reason the event was a no-op
        plan: Plan after the transition (or as found, for no-ops)
        payment_number: Installment the event touched, when there is one
        reason: Human-readable detail for logs and the webhook response
    """

    outcome: TransitionOutcome
    plan: Plan | None = None
    payment_number: int | None = None
    reason: str = ""

    @property
    def applied(self) -> bool:
        return self.outcome is TransitionOutcome.APPLIED

    def to_dict(self) -> dict[str, Any]:
        return {
            "outcome": self.outcome.value,
            "plan_id": str(self.plan.pk) if self.plan is not None else None,
            "plan_status": self.plan.status if self.plan is not None else None,
            "payment_number": self.payment_number,
            "reason": self.reason,
        }


def default_lock_factory(key: str) -> AbstractContextManager:
    return DistributedLock(
        key,
        ttl=settings.PAYMENT_PLAN_LOCK_TTL_SECONDS,
        blocking=True,
        timeout=settings.PAYMENT_PLAN_LOCK_TIMEOUT_SECONDS,
    )


class PlanStateMachine:
    """
    Drives Plan and PaymentRecord state from gateway events.

    Every event is handled under the subscription lock, inside a single
    store transaction. Notifications are registered with on_commit and only
    go out once the transition is durable.
    """

    def __init__(
        self,
        store: PlanStore | None = None,
        notifier: NotificationDispatcher | None = None,
        lock_factory: Callable[[str], AbstractContextManager] | None = None,
        max_attempts: int | None = None,
    ) -> None:
        if notifier is None:
            from payment_plans.notifications.dispatcher import NotificationDispatcher

            notifier = NotificationDispatcher()
        self.store = store or DjangoPlanStore()
        self.notifier = notifier
        self.lock_factory = lock_factory or default_lock_factory
        self.max_attempts = max_attempts or settings.PAYMENT_PLAN_MAX_TRANSITION_ATTEMPTS

    # ==========================================================================
    # Entry Point
    # ==========================================================================

    def apply(self, event: NormalizedPaymentEvent) -> TransitionResult:
        """
        Apply one normalized event.

        Returns:
            TransitionResult; deliberate no-ops are results, not errors

        Raises:
            StorageFailure: The store failed; the event should be redelivered
            StaleRecordError: Version conflicts outlasted max_attempts
            LockAcquisitionError: Another worker held the subscription lock
        """
        context = event.log_context()

        if event.kind is EventKind.UNSUPPORTED:
            return TransitionResult(
                TransitionOutcome.UNSUPPORTED,
                reason=f"Unsupported event type: {event.event_type or '<missing>'}",
            )

        if not event.subscription_id:
            logger.warning("Payment plan event has no subscription ID", extra=context)
            return TransitionResult(
                TransitionOutcome.MISSING_SUBSCRIPTION_ID,
                reason="No subscription ID in event",
            )

        handler = self._handlers()[event.kind]

        with self.lock_factory(subscription_lock_key(event.subscription_id)):
            for attempt in range(1, self.max_attempts + 1):
                try:
                    with self.store.atomic():
                        result = handler(event)
                        if result.applied:
                            self._schedule_notification(event.kind, result)
                except StaleRecordError:
                    if attempt >= self.max_attempts:
                        logger.error(
                            "Giving up on payment plan transition after version conflicts",
                            extra={**context, "attempts": attempt},
                        )
                        raise
                    logger.warning(
                        "Payment plan changed underneath transition, retrying",
                        extra={**context, "attempt": attempt},
                    )
                    continue

                self._log_result(result, context)
                return result

        # Unreachable: the loop either returns or raises.
        raise StorageFailure("Transition loop exited without a result")

    def _handlers(self) -> dict[EventKind, Callable[[NormalizedPaymentEvent], TransitionResult]]:
        return {
            EventKind.INSTALLMENT_PAID: self._apply_installment_paid,
            EventKind.PLAN_SUSPENDED: self._apply_plan_suspended,
            EventKind.PLAN_CANCELLED: self._apply_plan_cancelled,
        }

    # ==========================================================================
    # Lookup
    # ==========================================================================

    def _locate(self, event: NormalizedPaymentEvent) -> tuple[Plan | None, TransitionResult | None]:
        plan = self.store.find_plan_by_subscription_id(event.subscription_id, for_update=True)
        if plan is None:
            return None, TransitionResult(
                TransitionOutcome.PLAN_NOT_FOUND,
                reason="No plan found for subscription ID",
            )
        if not plan.is_installment_plan:
            return None, TransitionResult(
                TransitionOutcome.NOT_INSTALLMENT_PLAN,
                plan=plan,
                reason="Order is not a payment plan",
            )
        return plan, None

    # ==========================================================================
    # Transitions
    # ==========================================================================

    def _apply_installment_paid(self, event: NormalizedPaymentEvent) -> TransitionResult:
        plan, skipped = self._locate(event)
        if skipped is not None:
            return skipped

        healed = False
        while True:
            already_paid = self.store.find_paid_record_by_transaction(
                plan.pk, event.transaction_id
            )
            if already_paid is not None and already_paid.payment_number <= plan.completed_payments:
                return TransitionResult(
                    TransitionOutcome.DUPLICATE,
                    plan=plan,
                    payment_number=already_paid.payment_number,
                    reason="Transaction already recorded",
                )

            next_number = plan.completed_payments + 1
            if next_number > plan.installment_count:
                return TransitionResult(
                    TransitionOutcome.DUPLICATE,
                    plan=plan,
                    reason=(
                        f"Payment {next_number} exceeds total installments "
                        f"{plan.installment_count}"
                    ),
                )

            if not can_proceed(plan.record_payment):
                return TransitionResult(
                    TransitionOutcome.INVALID_STATE,
                    plan=plan,
                    reason=f"Plan is {plan.status}; payment not recorded",
                )

            record = self.store.get_payment_record(plan.pk, next_number)
            if record is None:
                raise StorageFailure(
                    f"Payment record {next_number} missing for plan {plan.pk}",
                    details={"plan_id": str(plan.pk), "payment_number": next_number},
                )

            if record.is_paid:
                # Record written, counter not: finish the earlier transition.
                plan.record_payment(next_number, paid_at=record.paid_at)
                plan = self.store.update_plan(
                    plan.pk, plan.transition_fields(), expected_version=plan.version
                )
                logger.warning(
                    f"Healed half-applied payment {next_number} on plan {plan.pk}",
                    extra={**event.log_context(), "plan_id": str(plan.pk)},
                )
                if (
                    not event.transaction_id
                    or record.transaction_id == event.transaction_id
                    or plan.completed_payments >= plan.installment_count
                ):
                    # Same payment replayed, or the heal paid the last installment
                    return TransitionResult(
                        TransitionOutcome.APPLIED,
                        plan=plan,
                        payment_number=next_number,
                        reason="Recovered half-applied payment",
                    )
                healed = True
                continue

            now = timezone.now()
            record.mark_paid(event.transaction_id, paid_at=now)
            self.store.update_payment_record(plan.pk, next_number, record.transition_fields())

            plan.record_payment(next_number, paid_at=now)
            plan = self.store.update_plan(
                plan.pk, plan.transition_fields(), expected_version=plan.version
            )

            return TransitionResult(
                TransitionOutcome.APPLIED,
                plan=plan,
                payment_number=next_number,
                reason="Recovered half-applied payment, then recorded" if healed else "",
            )

    def _apply_plan_suspended(self, event: NormalizedPaymentEvent) -> TransitionResult:
        plan, skipped = self._locate(event)
        if skipped is not None:
            return skipped

        if plan.is_suspended:
            return TransitionResult(
                TransitionOutcome.DUPLICATE, plan=plan, reason="Plan already suspended"
            )
        if not can_proceed(plan.suspend):
            return TransitionResult(
                TransitionOutcome.INVALID_STATE,
                plan=plan,
                reason=f"Plan is {plan.status}; cannot suspend",
            )

        failed_number = None
        next_number = plan.completed_payments + 1
        record = self.store.get_payment_record(plan.pk, next_number)
        if record is not None and can_proceed(record.mark_failed):
            record.mark_failed()
            self.store.update_payment_record(plan.pk, next_number, record.transition_fields())
            failed_number = next_number

        plan.suspend()
        plan = self.store.update_plan(
            plan.pk, plan.transition_fields(), expected_version=plan.version
        )
        return TransitionResult(TransitionOutcome.APPLIED, plan=plan, payment_number=failed_number)

    def _apply_plan_cancelled(self, event: NormalizedPaymentEvent) -> TransitionResult:
        plan, skipped = self._locate(event)
        if skipped is not None:
            return skipped

        if plan.is_cancelled:
            return TransitionResult(
                TransitionOutcome.DUPLICATE, plan=plan, reason="Plan already cancelled"
            )
        if not can_proceed(plan.cancel):
            return TransitionResult(
                TransitionOutcome.INVALID_STATE,
                plan=plan,
                reason=f"Plan is {plan.status}; cannot cancel",
            )

        plan.cancel()
        plan = self.store.update_plan(
            plan.pk, plan.transition_fields(), expected_version=plan.version
        )
        return TransitionResult(TransitionOutcome.APPLIED, plan=plan)

    # ==========================================================================
    # Side Effects
    # ==========================================================================

    def _schedule_notification(self, kind: EventKind, result: TransitionResult) -> None:
        self.store.on_commit(
            partial(self.notifier.dispatch, kind, result.plan.pk, result.payment_number)
        )

    def _log_result(self, result: TransitionResult, context: dict[str, Any]) -> None:
        extra = {
            **context,
            "outcome": result.outcome.value,
            "plan_id": str(result.plan.pk) if result.plan is not None else None,
            "payment_number": result.payment_number,
        }
        if result.applied:
            plan = result.plan
            logger.info(
                f"Payment plan {plan.pk} -> {plan.status} "
                f"({plan.completed_payments}/{plan.installment_count})",
                extra=extra,
            )
        else:
            logger.info(f"Payment plan event skipped: {result.reason}", extra=extra)


@lru_cache(maxsize=1)
def get_plan_state_machine() -> PlanStateMachine:
    """Process-wide PlanStateMachine, built on first use."""
    return PlanStateMachine()
