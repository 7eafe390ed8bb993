"""
Tests for payment plan API views.

Tests cover:
- Plan status access rules (creator, staff, others, anonymous)
- Plan validation endpoint
"""

import uuid

import pytest
from django.urls import reverse

from payment_plans.state_machines import PlanStatus


def detail_url(plan_id):
    return reverse("payment_plans:detail", kwargs={"plan_id": plan_id})


VALIDATE_URL = "/api/v1/payment-plans/validate/"


class TestPlanStatusView:
    """Tests for GET /api/v1/payment-plans/{plan_id}/."""

    def test_creator_sees_plan(self, api_client, user, active_plan):
        api_client.force_authenticate(user=user)

        response = api_client.get(detail_url(active_plan.pk))

        assert response.status_code == 200
        data = response.json()
        assert data["id"] == str(active_plan.pk)
        assert data["status"] == PlanStatus.ACTIVE
        assert data["completed_payments"] == 1
        assert data["remaining_payments"] == 2
        assert data["total_amount"] == "2980.00"
        assert [r["payment_number"] for r in data["payment_records"]] == [1, 2, 3]
        assert data["payment_records"][0]["status"] == "paid"
        assert data["payment_records"][0]["amount"] == "993.34"

    def test_staff_sees_any_plan(self, api_client, staff_user, active_plan):
        api_client.force_authenticate(user=staff_user)

        response = api_client.get(detail_url(active_plan.pk))

        assert response.status_code == 200

    def test_other_user_is_forbidden(self, api_client, other_user, active_plan):
        api_client.force_authenticate(user=other_user)

        response = api_client.get(detail_url(active_plan.pk))

        assert response.status_code == 403
        assert response.json() == {"error": "You do not have access to this payment plan"}

    def test_unknown_plan(self, api_client, user):
        api_client.force_authenticate(user=user)

        response = api_client.get(detail_url(uuid.uuid4()))

        assert response.status_code == 404
        assert response.json() == {"error": "Payment plan not found"}

    def test_anonymous_is_rejected(self, api_client, active_plan):
        response = api_client.get(detail_url(active_plan.pk))

        assert response.status_code in (401, 403)


class TestPlanValidationView:
    """Tests for POST /api/v1/payment-plans/validate/."""

    @pytest.fixture(autouse=True)
    def authenticate(self, api_client, user):
        api_client.force_authenticate(user=user)

    def test_valid_plan_returns_schedule(self, api_client):
        response = api_client.post(
            VALIDATE_URL, {"total_amount": "2980.00", "installments": 3}, format="json"
        )

        assert response.status_code == 200
        data = response.json()
        assert data["valid"] is True
        assert data["error"] is None
        assert data["schedule"]["first_payment"] == "993.34"
        assert data["schedule"]["recurring_amount"] == "993.33"
        assert data["schedule"]["remaining_occurrences"] == 2

    def test_invalid_plan_returns_reason(self, api_client):
        response = api_client.post(
            VALIDATE_URL, {"total_amount": "5.00", "installments": 12}, format="json"
        )

        assert response.status_code == 200
        data = response.json()
        assert data["valid"] is False
        assert data["error"].startswith("Minimum payment would be $0.41")

    def test_out_of_range_installments(self, api_client):
        response = api_client.post(
            VALIDATE_URL, {"total_amount": "2980.00", "installments": 24}, format="json"
        )

        assert response.status_code == 200
        assert response.json() == {
            "valid": False,
            "error": "Installments must be between 2 and 12",
            "schedule": None,
        }

    def test_malformed_input(self, api_client):
        response = api_client.post(
            VALIDATE_URL, {"total_amount": "lots", "installments": "three"}, format="json"
        )

        assert response.status_code == 400
        assert set(response.json()) == {"total_amount", "installments"}
