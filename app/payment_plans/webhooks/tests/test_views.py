"""
Tests for the gateway webhook view.

Tests cover:
- HMAC-SHA512 signature verification
- Envelope validation
- WebhookEvent archiving and idempotency
- Outcome recording and retryable failures (503)
- Post-commit notification enqueueing
"""

import hashlib
import hmac
import json
from unittest.mock import patch

import pytest
from django.db import OperationalError

from payment_plans.exceptions import StorageFailure
from payment_plans.models import Plan, WebhookEvent
from payment_plans.services import PlanStateMachine
from payment_plans.state_machines import PlanStatus, WebhookEventStatus
from payment_plans.webhooks.views import event_id_for, gateway_webhook, verify_signature

SIGNATURE_KEY = "A1B2C3D4E5F60718293A4B5C6D7E8F90"
WEBHOOK_PATH = "/api/v1/payment-plans/webhooks/gateway/"


def sign(body: bytes, key: str = SIGNATURE_KEY) -> str:
    digest = hmac.new(bytes.fromhex(key), body, hashlib.sha512).hexdigest()
    return f"sha512={digest.upper()}"


# =============================================================================
# Signature Verification
# =============================================================================


class TestVerifySignature:
    """Tests for verify_signature."""

    def test_accepts_uppercase_and_lowercase_digest(self):
        body = b'{"id": "evt"}'
        signature = sign(body)

        assert verify_signature(body, signature, SIGNATURE_KEY)
        assert verify_signature(body, "sha512=" + signature[7:].lower(), SIGNATURE_KEY)

    def test_rejects_tampered_body(self):
        assert not verify_signature(b'{"id": "other"}', sign(b'{"id": "evt"}'), SIGNATURE_KEY)

    @pytest.mark.parametrize("header", ["", "sha256=abcd", "abcd"])
    def test_rejects_malformed_header(self, header):
        assert not verify_signature(b"{}", header, SIGNATURE_KEY)

    def test_non_hex_key_used_as_text(self):
        body = b"{}"
        digest = hmac.new(b"not-hex-key", body, hashlib.sha512).hexdigest()

        assert verify_signature(body, f"sha512={digest}", "not-hex-key")


class TestWebhookSignature:
    """Signature enforcement in the view."""

    @pytest.fixture(autouse=True)
    def signature_key(self, settings):
        settings.AUTHORIZE_NET_SIGNATURE_KEY = SIGNATURE_KEY

    def test_missing_signature_returns_401(self, make_webhook_request, transaction_envelope, db):
        response = gateway_webhook(make_webhook_request(transaction_envelope()))

        assert response.status_code == 401
        assert b"Invalid signature" in response.content
        assert WebhookEvent.objects.count() == 0

    def test_wrong_signature_returns_401(self, make_webhook_request, transaction_envelope, db):
        response = gateway_webhook(
            make_webhook_request(transaction_envelope(), signature="sha512=" + "0" * 128)
        )

        assert response.status_code == 401

    def test_valid_signature_is_processed(
        self, make_webhook_request, transaction_envelope, active_plan
    ):
        body = json.dumps(transaction_envelope()).encode()

        response = gateway_webhook(
            make_webhook_request(None, signature=sign(body), raw_body=body)
        )

        assert response.status_code == 200


# =============================================================================
# Envelope Validation
# =============================================================================


class TestWebhookPayload:
    @pytest.mark.parametrize("raw_body", [b"not json", b"[1, 2]", b'"text"', b"\xff\xfe"])
    def test_invalid_payload_returns_400(self, make_webhook_request, raw_body, db):
        response = gateway_webhook(make_webhook_request(None, raw_body=raw_body))

        assert response.status_code == 400
        assert b"Invalid payload" in response.content

    def test_get_not_allowed(self, rf):
        response = gateway_webhook(rf.get(WEBHOOK_PATH))

        assert response.status_code == 405

    def test_event_id_falls_back_to_body_hash(self):
        body = b'{"eventType": "x"}'

        event_id = event_id_for({"eventType": "x"}, body)

        assert event_id.startswith("sha256:")
        assert event_id == event_id_for({"eventType": "x", "id": "  "}, body)
        assert event_id_for({"id": "evt-1"}, body) == "evt-1"


# =============================================================================
# Processing
# =============================================================================


class TestWebhookProcessing:
    """Tests for applying webhooks to plans."""

    def test_installment_paid_is_applied(
        self, make_webhook_request, transaction_envelope, active_plan
    ):
        response = gateway_webhook(make_webhook_request(transaction_envelope()))

        assert response.status_code == 200
        data = json.loads(response.content)
        assert data["status"] == "processed"
        assert data["outcome"] == "applied"
        assert data["plan_id"] == str(active_plan.pk)
        assert data["plan_status"] == PlanStatus.ACTIVE
        assert data["payment_number"] == 2

        event = WebhookEvent.objects.get(gateway_event_id="evt-tx-1")
        assert event.status == WebhookEventStatus.PROCESSED
        assert event.outcome == "applied"
        assert event.retry_count == 1
        assert event.event_type == "net.authorize.payment.authcapture.created"
        assert Plan.objects.get(pk=active_plan.pk).completed_payments == 2

    def test_same_event_delivered_twice(
        self, make_webhook_request, transaction_envelope, active_plan
    ):
        envelope = transaction_envelope()
        gateway_webhook(make_webhook_request(envelope))

        response = gateway_webhook(make_webhook_request(envelope))

        assert response.status_code == 200
        assert b"Already processed" in response.content
        assert WebhookEvent.objects.count() == 1
        assert Plan.objects.get(pk=active_plan.pk).completed_payments == 2

    def test_same_transaction_under_new_event_id(
        self, make_webhook_request, transaction_envelope, active_plan
    ):
        """The gateway may re-send a charge with a fresh notification id."""
        gateway_webhook(make_webhook_request(transaction_envelope(event_id="evt-a")))

        response = gateway_webhook(
            make_webhook_request(transaction_envelope(event_id="evt-b"))
        )

        assert json.loads(response.content)["outcome"] == "duplicate"
        assert Plan.objects.get(pk=active_plan.pk).completed_payments == 2

    def test_full_plan_completes(self, make_webhook_request, transaction_envelope, active_plan):
        gateway_webhook(make_webhook_request(transaction_envelope("600-2", "evt-2")))
        response = gateway_webhook(make_webhook_request(transaction_envelope("600-3", "evt-3")))

        assert json.loads(response.content)["plan_status"] == PlanStatus.COMPLETED

    def test_suspension(self, make_webhook_request, subscription_envelope, active_plan):
        response = gateway_webhook(make_webhook_request(subscription_envelope()))

        data = json.loads(response.content)
        assert data["outcome"] == "applied"
        assert data["plan_status"] == PlanStatus.SUSPENDED

    def test_cancellation(self, make_webhook_request, subscription_envelope, active_plan):
        response = gateway_webhook(
            make_webhook_request(
                subscription_envelope(
                    event_type="net.authorize.customer.subscription.terminated"
                )
            )
        )

        assert json.loads(response.content)["plan_status"] == PlanStatus.CANCELLED

    def test_unsupported_event_is_acknowledged(self, make_webhook_request, active_plan):
        envelope = {
            "id": "evt-refund",
            "eventType": "net.authorize.payment.refund.created",
            "payload": {"id": "600", "subscription": {"id": "9876543"}},
        }

        response = gateway_webhook(make_webhook_request(envelope))

        assert response.status_code == 200
        assert json.loads(response.content)["outcome"] == "unsupported"
        assert WebhookEvent.objects.get(gateway_event_id="evt-refund").is_processed

    def test_unknown_subscription_is_acknowledged(
        self, make_webhook_request, transaction_envelope, db
    ):
        response = gateway_webhook(make_webhook_request(transaction_envelope()))

        assert response.status_code == 200
        assert json.loads(response.content)["outcome"] == "plan_not_found"

    def test_routed_through_url(self, client, transaction_envelope, active_plan):
        """The endpoint is reachable without CSRF token or session."""
        response = client.post(
            WEBHOOK_PATH,
            data=json.dumps(transaction_envelope()),
            content_type="application/json",
        )

        assert response.status_code == 200


# =============================================================================
# Failures
# =============================================================================


class TestWebhookFailures:
    """Retryable failures answer 503 so the gateway redelivers."""

    def test_storage_failure_returns_503_then_redelivery_succeeds(
        self, make_webhook_request, transaction_envelope, active_plan
    ):
        envelope = transaction_envelope()

        with patch.object(
            PlanStateMachine, "apply", side_effect=StorageFailure("Plan store down")
        ):
            response = gateway_webhook(make_webhook_request(envelope))

        assert response.status_code == 503
        event = WebhookEvent.objects.get(gateway_event_id="evt-tx-1")
        assert event.status == WebhookEventStatus.FAILED
        assert "Plan store down" in event.error_message

        response = gateway_webhook(make_webhook_request(envelope))

        assert response.status_code == 200
        event.refresh_from_db()
        assert event.status == WebhookEventStatus.PROCESSED
        assert event.retry_count == 2
        assert event.error_message is None
        assert Plan.objects.get(pk=active_plan.pk).completed_payments == 2

    def test_held_lock_returns_503(
        self, make_webhook_request, transaction_envelope, active_plan, mock_redis, settings
    ):
        settings.PAYMENT_PLAN_LOCK_TIMEOUT_SECONDS = 0.1
        mock_redis.set.return_value = False

        response = gateway_webhook(make_webhook_request(transaction_envelope()))

        assert response.status_code == 503
        assert Plan.objects.get(pk=active_plan.pk).completed_payments == 1

    def test_database_error_marking_processing_returns_503(
        self, make_webhook_request, transaction_envelope, active_plan
    ):
        original_save = WebhookEvent.save

        def failing_processing_save(self, *args, **kwargs):
            if "retry_count" in (kwargs.get("update_fields") or ()):
                raise OperationalError("database is locked")
            return original_save(self, *args, **kwargs)

        with patch.object(WebhookEvent, "save", failing_processing_save):
            response = gateway_webhook(make_webhook_request(transaction_envelope()))

        assert response.status_code == 503
        event = WebhookEvent.objects.get(gateway_event_id="evt-tx-1")
        assert event.status == WebhookEventStatus.PENDING
        assert Plan.objects.get(pk=active_plan.pk).completed_payments == 1

    def test_unexpected_error_is_recorded_and_raised(
        self, make_webhook_request, transaction_envelope, active_plan
    ):
        with patch.object(PlanStateMachine, "apply", side_effect=RuntimeError("boom")):
            with pytest.raises(RuntimeError):
                gateway_webhook(make_webhook_request(transaction_envelope()))

        event = WebhookEvent.objects.get(gateway_event_id="evt-tx-1")
        assert event.status == WebhookEventStatus.FAILED
        assert event.error_message == "RuntimeError: boom"


# =============================================================================
# Notifications
# =============================================================================


class TestWebhookNotifications:
    def test_notification_enqueued_after_commit(
        self,
        make_webhook_request,
        transaction_envelope,
        active_plan,
        django_capture_on_commit_callbacks,
    ):
        with patch("payment_plans.tasks.deliver_plan_notification.delay") as mock_delay:
            with django_capture_on_commit_callbacks(execute=True):
                gateway_webhook(make_webhook_request(transaction_envelope()))

        mock_delay.assert_called_once_with("installment-paid", str(active_plan.pk), 2)

    def test_no_notification_for_duplicate(
        self,
        make_webhook_request,
        transaction_envelope,
        active_plan,
        django_capture_on_commit_callbacks,
    ):
        gateway_webhook(make_webhook_request(transaction_envelope(event_id="evt-a")))

        with patch("payment_plans.tasks.deliver_plan_notification.delay") as mock_delay:
            with django_capture_on_commit_callbacks(execute=True):
                gateway_webhook(make_webhook_request(transaction_envelope(event_id="evt-b")))

        mock_delay.assert_not_called()
