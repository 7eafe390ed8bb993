"""
Webhook endpoint for payment gateway notifications.

The view:
1. Verifies the HMAC-SHA512 signature when a key is configured
2. Creates/retrieves the WebhookEvent record (idempotent)
3. Normalizes the envelope and applies it to the plan state machine
4. Answers 200 once the transition is durable, 503 when it is not

Processing happens inside the request. The gateway redelivers on any
non-2xx, so a 503 for a retryable failure is how the event gets retried.

Usage:
    # In urls.py
    from payment_plans.webhooks.views import gateway_webhook

    urlpatterns = [
        path("webhooks/gateway/", gateway_webhook, name="gateway_webhook"),
    ]
"""

from __future__ import annotations

import hashlib
import hmac
import json
import logging

from django.conf import settings
from django.db import DatabaseError
from django.http import HttpRequest, HttpResponse, JsonResponse
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_POST

from payment_plans.exceptions import (
    LockAcquisitionError,
    StaleRecordError,
    StorageFailure,
)
from payment_plans.models import WebhookEvent
from payment_plans.services import get_plan_state_machine
from payment_plans.state_machines import WebhookEventStatus
from payment_plans.webhooks.normalizer import get_event_normalizer


logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "X-ANET-Signature"
SIGNATURE_PREFIX = "sha512="

RETRYABLE_ERRORS = (StorageFailure, StaleRecordError, LockAcquisitionError, DatabaseError)


def verify_signature(body: bytes, header: str, key: str) -> bool:
    """
    Check an ``X-ANET-Signature: sha512=<hex>`` header against the raw body.

    The key is the hex signature key from the gateway dashboard; the
    comparison is case-insensitive on the hex digest.
    """
    if not header or not header.lower().startswith(SIGNATURE_PREFIX):
        return False
    received = header[len(SIGNATURE_PREFIX):].strip().lower()
    try:
        key_bytes = bytes.fromhex(key)
    except ValueError:
        key_bytes = key.encode()
    expected = hmac.new(key_bytes, body, hashlib.sha512).hexdigest().lower()
    return hmac.compare_digest(received, expected)


def event_id_for(envelope: dict, body: bytes) -> str:
    """Envelope id, or a content hash so id-less redeliveries still dedupe."""
    event_id = envelope.get("id")
    if isinstance(event_id, (str, int)) and not isinstance(event_id, bool) and str(event_id).strip():
        return str(event_id).strip()
    return f"sha256:{hashlib.sha256(body).hexdigest()}"


@csrf_exempt
@require_POST
def gateway_webhook(request: HttpRequest) -> HttpResponse:
    """
    Receive and apply payment gateway webhook events.

    Returns:
        HttpResponse with status:
        - 200: Event processed (including deliberate no-ops) or already processed
        - 400: Body is not a JSON object
        - 401: Signature missing or wrong
        - 503: Retryable failure; the gateway should redeliver
    """
    body = request.body

    # Step 1: Verify signature
    signature_key = settings.AUTHORIZE_NET_SIGNATURE_KEY
    if signature_key:
        if not verify_signature(body, request.headers.get(SIGNATURE_HEADER, ""), signature_key):
            logger.warning("Gateway webhook signature verification failed")
            return HttpResponse("Invalid signature", status=401)

    # Step 2: Parse envelope
    try:
        envelope = json.loads(body)
    except (ValueError, UnicodeDecodeError):
        logger.warning("Gateway webhook body is not valid JSON")
        return HttpResponse("Invalid payload", status=400)
    if not isinstance(envelope, dict):
        logger.warning("Gateway webhook body is not a JSON object")
        return HttpResponse("Invalid payload", status=400)

    gateway_event_id = event_id_for(envelope, body)
    event_type = str(envelope.get("eventType") or "")[:100]

    logger.info(
        f"Received gateway webhook: {event_type or '<missing>'}",
        extra={"gateway_event_id": gateway_event_id, "event_type": event_type},
    )

    # Step 3: Create/get WebhookEvent (idempotent)
    try:
        webhook_event, created = WebhookEvent.objects.get_or_create(
            gateway_event_id=gateway_event_id,
            defaults={
                "event_type": event_type,
                "payload": envelope,
                "status": WebhookEventStatus.PENDING,
            },
        )
    except DatabaseError:
        logger.error(
            "Failed to archive gateway webhook",
            extra={"gateway_event_id": gateway_event_id},
            exc_info=True,
        )
        return HttpResponse("Storage unavailable", status=503)

    if not created and webhook_event.is_processed:
        logger.info(
            "Webhook already processed, returning success",
            extra={"gateway_event_id": gateway_event_id},
        )
        return HttpResponse("Already processed", status=200)

    webhook_event.mark_processing()
    try:
        webhook_event.save(update_fields=["status", "retry_count", "updated_at"])
    except DatabaseError:
        logger.error(
            "Failed to mark gateway webhook as processing",
            extra={"gateway_event_id": gateway_event_id},
            exc_info=True,
        )
        return HttpResponse("Storage unavailable", status=503)

    # Step 4: Normalize and apply
    event = get_event_normalizer().normalize(envelope)
    try:
        result = get_plan_state_machine().apply(event)
    except RETRYABLE_ERRORS as e:
        logger.warning(
            f"Gateway webhook processing failed, asking for redelivery: {type(e).__name__}",
            extra={**event.log_context(), "gateway_event_id": gateway_event_id},
        )
        _mark_failed(webhook_event, str(e))
        return HttpResponse("Temporarily unavailable", status=503)
    except Exception as e:
        logger.error(
            f"Unexpected error processing gateway webhook: {type(e).__name__}",
            extra={**event.log_context(), "gateway_event_id": gateway_event_id},
            exc_info=True,
        )
        _mark_failed(webhook_event, f"{type(e).__name__}: {e}")
        raise

    # Step 5: Record outcome
    webhook_event.mark_processed(result.outcome.value)
    webhook_event.save(
        update_fields=["status", "outcome", "processed_at", "error_message", "updated_at"]
    )

    return JsonResponse({"status": "processed", **result.to_dict()}, status=200)


def _mark_failed(webhook_event: WebhookEvent, message: str) -> None:
    webhook_event.mark_failed(message)
    try:
        webhook_event.save(update_fields=["status", "error_message", "updated_at"])
    except DatabaseError:
        logger.error(
            "Failed to record webhook failure",
            extra={"gateway_event_id": webhook_event.gateway_event_id},
            exc_info=True,
        )
