"""
API views for payment plans.

Provides:
- PlanStatusView: Plan progress and installments, for the plan's creator or staff
- PlanValidationView: Pre-submission check of a total/installment pair

The gateway webhook endpoint lives in payment_plans.webhooks.views.
"""

from __future__ import annotations

import logging

from drf_spectacular.utils import OpenApiResponse, extend_schema
from rest_framework import status
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from payment_plans.calculator import validate_plan
from payment_plans.models import Plan
from payment_plans.serializers import (
    PlanStatusSerializer,
    PlanValidationRequestSerializer,
    PlanValidationResultSerializer,
)

logger = logging.getLogger(__name__)


class PlanStatusView(APIView):
    """
    Get a payment plan's progress.

    GET /api/v1/payment-plans/{plan_id}/

    Response:
        200 OK: Plan with its payment records
        403 Forbidden: Caller neither created the plan nor is staff
        404 Not Found: Plan doesn't exist
    """

    permission_classes = [IsAuthenticated]

    @extend_schema(
        operation_id="get_payment_plan",
        summary="Get payment plan status",
        description=(
            "Retrieve a payment plan with its installment records. Only the user "
            "who created the plan and staff may read it."
        ),
        responses={
            200: OpenApiResponse(
                response=PlanStatusSerializer,
                description="Plan status",
            ),
            403: OpenApiResponse(description="Access denied"),
            404: OpenApiResponse(description="Plan not found"),
        },
        tags=["Payment Plans"],
    )
    def get(self, request, plan_id):
        plan = (
            Plan.objects.prefetch_related("payment_records")
            .filter(pk=plan_id)
            .first()
        )
        if plan is None:
            return Response(
                {"error": "Payment plan not found"},
                status=status.HTTP_404_NOT_FOUND,
            )

        if not request.user.is_staff and plan.created_by_id != request.user.pk:
            logger.warning(
                "Denied payment plan status access",
                extra={"plan_id": str(plan.pk), "user_id": request.user.pk},
            )
            return Response(
                {"error": "You do not have access to this payment plan"},
                status=status.HTTP_403_FORBIDDEN,
            )

        return Response(PlanStatusSerializer(plan).data)


class PlanValidationView(APIView):
    """
    Check a plan configuration before the quote is submitted.

    POST /api/v1/payment-plans/validate/

    Request:
        {"total_amount": "2980.00", "installments": 3}

    Response:
        200 OK: {"valid": bool, "error": str | null, "schedule": {...} | null}
        400 Bad Request: Malformed input
    """

    permission_classes = [IsAuthenticated]

    @extend_schema(
        operation_id="validate_payment_plan",
        summary="Validate payment plan",
        description=(
            "Check that a total can be split into the requested number of "
            "installments with every payment at least $1.00, and return the "
            "resulting schedule."
        ),
        request=PlanValidationRequestSerializer,
        responses={
            200: OpenApiResponse(
                response=PlanValidationResultSerializer,
                description="Validation result",
            ),
            400: OpenApiResponse(description="Malformed input"),
        },
        tags=["Payment Plans"],
    )
    def post(self, request):
        serializer = PlanValidationRequestSerializer(data=request.data)
        if not serializer.is_valid():
            return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)

        result = validate_plan(
            serializer.validated_data["total_amount"],
            serializer.validated_data["installments"],
        )
        data = PlanValidationResultSerializer(
            {"valid": result.valid, "error": result.error, "schedule": result.schedule}
        ).data
        return Response(data)
