"""
Post-commit notification dispatch.

The state machine registers NotificationDispatcher.dispatch with
transaction.on_commit. dispatch only enqueues a Celery task; the task calls
deliver(), which fans out to every configured sink.

Neither step ever raises. A broker outage or a failing sink is logged and
the already-committed transition stands.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from payment_plans.exceptions import NotificationFailure
from payment_plans.webhooks.normalizer import EventKind

if TYPE_CHECKING:
    from collections.abc import Iterable
    from uuid import UUID

    from payment_plans.models import Plan
    from payment_plans.notifications.sinks import NotificationSink


logger = logging.getLogger(__name__)


class NotificationDispatcher:
    """Enqueues deliver_plan_notification for a committed transition."""

    def dispatch(
        self,
        kind: EventKind | str,
        plan_id: UUID | str,
        payment_number: int | None = None,
    ) -> None:
        from payment_plans.tasks import deliver_plan_notification

        kind = EventKind(kind)
        try:
            deliver_plan_notification.delay(kind.value, str(plan_id), payment_number)
        except Exception:
            logger.error(
                "Failed to enqueue payment plan notification",
                extra={"plan_id": str(plan_id), "event_kind": kind.value},
                exc_info=True,
            )


def deliver(
    kind: EventKind | str,
    plan: Plan,
    payment_number: int | None,
    sinks: Iterable[NotificationSink],
) -> int:
    """
    Call every sink for one transition.

    Returns:
        Number of sinks that completed without raising
    """
    kind = EventKind(kind)
    delivered = 0
    for sink in sinks:
        sink_name = type(sink).__name__
        try:
            if kind is EventKind.INSTALLMENT_PAID:
                sink.notify_installment_paid(plan, payment_number)
            elif kind is EventKind.PLAN_SUSPENDED:
                sink.notify_plan_suspended(plan)
            elif kind is EventKind.PLAN_CANCELLED:
                sink.notify_plan_cancelled(plan)
            else:
                continue
        except NotificationFailure as e:
            logger.warning(
                f"Notification sink {sink_name} failed: {e.message}",
                extra={"plan_id": str(plan.pk), "sink": sink_name, **e.details},
            )
            continue
        except Exception:
            logger.error(
                f"Notification sink {sink_name} raised unexpectedly",
                extra={"plan_id": str(plan.pk), "sink": sink_name},
                exc_info=True,
            )
            continue
        delivered += 1
    return delivered
