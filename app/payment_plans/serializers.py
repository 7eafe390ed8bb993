"""
Serializers for the payment plan API.

Provides:
- PaymentRecordSerializer: Read-only installment row
- PlanStatusSerializer: Plan with its installments, for the status endpoint
- PlanValidationRequestSerializer: Input for the pre-submission check
- PlanValidationResultSerializer: Output of the pre-submission check
"""

from __future__ import annotations

from rest_framework import serializers

from payment_plans.calculator import MAX_INSTALLMENTS, MIN_INSTALLMENTS
from payment_plans.models import PaymentRecord, Plan


class PaymentRecordSerializer(serializers.ModelSerializer):
    class Meta:
        model = PaymentRecord
        fields = [
            "payment_number",
            "total_payments",
            "amount",
            "status",
            "transaction_id",
            "paid_at",
            "failed_at",
        ]
        read_only_fields = fields


class PlanStatusSerializer(serializers.ModelSerializer):
    """
    Read-only view of a plan and its installments.

    Usage:
        data = PlanStatusSerializer(plan).data
    """

    remaining_payments = serializers.IntegerField(read_only=True)
    payment_records = PaymentRecordSerializer(many=True, read_only=True)

    class Meta:
        model = Plan
        fields = [
            "id",
            "order_reference",
            "customer_email",
            "customer_name",
            "status",
            "total_amount",
            "installment_count",
            "first_payment_amount",
            "installment_amount",
            "completed_payments",
            "remaining_payments",
            "subscription_id",
            "order_payment_status",
            "order_paid_at",
            "completed_at",
            "suspended_at",
            "cancelled_at",
            "created_at",
            "updated_at",
            "payment_records",
        ]
        read_only_fields = fields


class PlanValidationRequestSerializer(serializers.Serializer):
    total_amount = serializers.DecimalField(
        max_digits=12,
        decimal_places=2,
        help_text="Order total in dollars",
    )
    installments = serializers.IntegerField(
        help_text=f"Number of installments ({MIN_INSTALLMENTS}-{MAX_INSTALLMENTS})",
    )


class InstallmentScheduleSerializer(serializers.Serializer):
    first_payment = serializers.DecimalField(max_digits=12, decimal_places=2)
    recurring_amount = serializers.DecimalField(max_digits=12, decimal_places=2)
    remaining_occurrences = serializers.IntegerField()
    installments = serializers.IntegerField()
    total_amount = serializers.DecimalField(max_digits=12, decimal_places=2)


class PlanValidationResultSerializer(serializers.Serializer):
    valid = serializers.BooleanField()
    error = serializers.CharField(allow_null=True)
    schedule = InstallmentScheduleSerializer(allow_null=True)
