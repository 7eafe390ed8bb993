"""
Celery tasks for payment plans.

This module provides async tasks for:
- Delivering post-commit notifications to the configured sinks
- Periodic cleanup of archived webhook events

Usage:
    from payment_plans.tasks import deliver_plan_notification

    deliver_plan_notification.delay("installment-paid", str(plan.pk), 2)
"""

from __future__ import annotations

import logging
from datetime import timedelta

from celery import shared_task
from django.conf import settings
from django.utils import timezone

from payment_plans.models import Plan, WebhookEvent
from payment_plans.notifications.dispatcher import deliver
from payment_plans.notifications.sinks import get_notification_sinks
from payment_plans.state_machines import WebhookEventStatus

logger = logging.getLogger(__name__)


# =============================================================================
# Notification Tasks
# =============================================================================


@shared_task(ignore_result=True)
def deliver_plan_notification(kind: str, plan_id: str, payment_number: int | None = None) -> dict:
    """
    Send one committed plan transition to every notification sink.

    Sinks are fire-and-forget, so this task never retries.

    Returns:
        Dict with the number of sinks that succeeded
    """
    plan = Plan.objects.filter(pk=plan_id).first()
    if plan is None:
        logger.warning(
            "Plan vanished before notification delivery",
            extra={"plan_id": plan_id, "event_kind": kind},
        )
        return {"delivered": 0}

    delivered = deliver(kind, plan, payment_number, get_notification_sinks())
    return {"delivered": delivered}


# =============================================================================
# Maintenance Tasks
# =============================================================================


@shared_task
def cleanup_old_webhook_events(days: int | None = None) -> dict:
    """
    Periodic task to clean up old processed webhook events.

    Failed and in-flight events are kept for debugging and redelivery.

    Args:
        days: Retention in days (default: WEBHOOK_EVENT_RETENTION_DAYS)

    Returns:
        Dict with count of webhook events deleted
    """
    if days is None:
        days = settings.WEBHOOK_EVENT_RETENTION_DAYS
    cutoff = timezone.now() - timedelta(days=days)

    deleted_count, _ = WebhookEvent.objects.filter(
        status=WebhookEventStatus.PROCESSED,
        processed_at__lt=cutoff,
    ).delete()

    if deleted_count > 0:
        logger.info(
            f"Deleted {deleted_count} old payment plan webhook events",
            extra={
                "deleted_count": deleted_count,
                "cutoff_date": cutoff.isoformat(),
            },
        )

    return {"deleted_count": deleted_count}
