"""
WebhookEvent model for gateway webhook tracking.

Every delivery from the payment gateway is archived here before it is
handled. The unique gateway_event_id makes a full redelivery of an event
that was already processed a cheap no-op.

Usage:
    from payment_plans.models import WebhookEvent

    event, created = WebhookEvent.objects.get_or_create(
        gateway_event_id=envelope["id"],
        defaults={"event_type": envelope["eventType"], "payload": envelope},
    )
    if not created and event.is_processed:
        return HttpResponse("Already processed", status=200)
"""

from __future__ import annotations

from django.db import models
from django.utils import timezone

from core.models import BaseModel, UUIDPrimaryKeyMixin

from payment_plans.state_machines import WebhookEventStatus


class WebhookEvent(UUIDPrimaryKeyMixin, BaseModel):
    """
    Archived gateway webhook delivery.

    Processing Flow:
        1. Webhook arrives, signature verified when a key is configured
        2. Insert/get WebhookEvent by gateway_event_id
        3. If exists and PROCESSED -> return 200 (duplicate)
        4. Set status to PROCESSING
        5. Normalize and apply to the plan state machine
        6. Set status to PROCESSED (with outcome) or FAILED

    Fields:
        gateway_event_id: Envelope id, or a SHA-256 of the body when absent
        event_type: Gateway event type string
        payload: Full JSON envelope
        status: Processing status
        outcome: State machine outcome (applied, duplicate, ...)
        processed_at: When event was successfully processed
        error_message: Error details if processing failed
        retry_count: Number of processing attempts
    """

    gateway_event_id = models.CharField(
        max_length=255,
        unique=True,
        help_text="Gateway notification ID - unique constraint for idempotency",
    )

    event_type = models.CharField(
        max_length=100,
        blank=True,
        default="",
        db_index=True,
    )

    payload = models.JSONField(help_text="Full webhook envelope (JSON)")

    status = models.CharField(
        max_length=20,
        choices=WebhookEventStatus.choices,
        default=WebhookEventStatus.PENDING,
        db_index=True,
    )

    outcome = models.CharField(max_length=40, blank=True, default="")

    processed_at = models.DateTimeField(null=True, blank=True)

    error_message = models.TextField(null=True, blank=True)

    retry_count = models.PositiveSmallIntegerField(
        default=0,
        help_text="Number of processing attempts",
    )

    class Meta:
        ordering = ["-created_at"]
        verbose_name = "Webhook Event"
        verbose_name_plural = "Webhook Events"
        indexes = [
            models.Index(
                fields=["status", "created_at"], name="webhook_status_created_idx"
            ),
            models.Index(
                fields=["event_type", "created_at"], name="webhook_type_created_idx"
            ),
        ]

    def __str__(self) -> str:
        return f"WebhookEvent({self.gateway_event_id}, {self.event_type})"

    @property
    def is_processed(self) -> bool:
        return self.status == WebhookEventStatus.PROCESSED

    @property
    def is_failed(self) -> bool:
        return self.status == WebhookEventStatus.FAILED

    # ==========================================================================
    # Helper Methods
    # ==========================================================================

    def mark_processing(self) -> None:
        """
        Mark event as being processed.

        Note: Does not save - caller must save after calling.
        """
        self.status = WebhookEventStatus.PROCESSING
        self.retry_count += 1

    def mark_processed(self, outcome: str = "") -> None:
        """
        Mark event as successfully processed.

        Note: Does not save - caller must save after calling.
        """
        self.status = WebhookEventStatus.PROCESSED
        self.outcome = outcome
        self.processed_at = timezone.now()
        self.error_message = None

    def mark_failed(self, error_message: str) -> None:
        """
        Mark event as failed with error message.

        Note: Does not save - caller must save after calling.
        """
        self.status = WebhookEventStatus.FAILED
        self.error_message = error_message
