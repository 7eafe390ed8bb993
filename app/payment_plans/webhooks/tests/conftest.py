"""
Pytest fixtures for gateway webhook tests.

Provides envelope builders for each event family, a request helper
and a mocked Redis connection for the subscription lock.
"""

import json

import pytest
from django.test import RequestFactory

from payment_plans.tests.factories import PlanFactory

WEBHOOK_PATH = "/api/v1/payment-plans/webhooks/gateway/"


@pytest.fixture
def rf():
    """Request factory for creating test requests."""
    return RequestFactory()


@pytest.fixture(autouse=True)
def mock_redis(mocker):
    """Every subscription lock acquires and releases."""
    mock_client = mocker.MagicMock()
    mock_client.set.return_value = True
    mock_client.eval.return_value = 1
    mocker.patch("payment_plans.locks.get_redis_connection", return_value=mock_client)
    return mock_client


@pytest.fixture
def active_plan(db):
    """Plan with the first of three installments collected."""
    return PlanFactory(active=True, subscription_id="9876543")


@pytest.fixture
def make_webhook_request(rf):
    """
    Build a POST to the gateway webhook.

    Example:
        request = make_webhook_request(envelope, signature=sign(body))
    """

    def _make(envelope, signature=None, raw_body=None):
        body = raw_body if raw_body is not None else json.dumps(envelope).encode()
        headers = {}
        if signature is not None:
            headers["HTTP_X_ANET_SIGNATURE"] = signature
        return rf.post(WEBHOOK_PATH, data=body, content_type="application/json", **headers)

    return _make


@pytest.fixture
def transaction_envelope():
    """ARB charge for installment #2 of subscription 9876543."""

    def _make(trans_id="60012345679", event_id="evt-tx-1", amount=993.33):
        return {
            "notificationId": event_id,
            "id": event_id,
            "eventType": "net.authorize.payment.authcapture.created",
            "eventDate": "2025-02-01T08:00:00.000Z",
            "webhookId": "wh-1",
            "payload": {
                "responseCode": 1,
                "authAmount": amount,
                "entityName": "transaction",
                "id": trans_id,
                "subscription": {"id": "9876543", "payNum": 2},
            },
        }

    return _make


@pytest.fixture
def subscription_envelope():
    """Subscription management event for subscription 9876543."""

    def _make(event_type="net.authorize.customer.subscription.suspended", event_id="evt-sub-1"):
        return {
            "id": event_id,
            "eventType": event_type,
            "eventDate": "2025-03-01T08:00:00.000Z",
            "payload": {
                "name": "Payment plan Q-1001",
                "amount": 993.33,
                "status": "suspended",
                "profile": {"customerProfileId": 1, "email": "buyer@example.com"},
                "entityName": "subscription",
                "id": "9876543",
            },
        }

    return _make
