"""
Payment plan admin configuration.

Plans and payment records are driven by gateway webhooks and PlanService.
The admin is for visibility; lifecycle fields are read-only here.
"""

from django.contrib import admin

from payment_plans.models import PaymentRecord, Plan, WebhookEvent

__all__ = [
    "PaymentRecordAdmin",
    "PaymentRecordInline",
    "PlanAdmin",
    "WebhookEventAdmin",
]


class PaymentRecordInline(admin.TabularInline):
    model = PaymentRecord
    extra = 0
    can_delete = False
    fields = ["payment_number", "amount", "status", "transaction_id", "paid_at", "failed_at"]
    readonly_fields = fields
    ordering = ["payment_number"]


@admin.register(Plan)
class PlanAdmin(admin.ModelAdmin):
    """
    Admin configuration for Plan.

    State changes should come from the gateway or the service layer, not admin.
    """

    list_display = [
        "id",
        "order_reference",
        "customer_email",
        "status",
        "progress_display",
        "total_amount",
        "subscription_id",
        "created_at",
    ]
    list_filter = ["status", "order_payment_status", "is_installment_plan", "created_at"]
    search_fields = ["id", "order_reference", "customer_email", "subscription_id"]
    readonly_fields = [
        "id",
        "created_at",
        "updated_at",
        "version",
        "status",
        "completed_payments",
        "order_payment_status",
        "order_paid_at",
        "completed_at",
        "suspended_at",
        "cancelled_at",
    ]
    date_hierarchy = "created_at"
    ordering = ["-created_at"]
    inlines = [PaymentRecordInline]

    fieldsets = (
        (
            None,
            {
                "fields": ("id", "order_reference", "customer_email", "customer_name", "created_by"),
            },
        ),
        (
            "Schedule",
            {
                "fields": (
                    "is_installment_plan",
                    "total_amount",
                    "installment_count",
                    "first_payment_amount",
                    "installment_amount",
                ),
            },
        ),
        (
            "Status",
            {
                "fields": (
                    "status",
                    "completed_payments",
                    "subscription_id",
                    "order_payment_status",
                    "order_paid_at",
                    "completed_at",
                    "suspended_at",
                    "cancelled_at",
                ),
            },
        ),
        (
            "Metadata",
            {
                "fields": ("metadata", "version"),
                "classes": ("collapse",),
            },
        ),
        (
            "Timestamps",
            {
                "fields": ("created_at", "updated_at"),
            },
        ),
    )

    @admin.display(description="Progress")
    def progress_display(self, obj: Plan) -> str:
        return f"{obj.completed_payments}/{obj.installment_count}"


@admin.register(PaymentRecord)
class PaymentRecordAdmin(admin.ModelAdmin):
    list_display = [
        "id",
        "plan",
        "payment_number",
        "amount",
        "status",
        "transaction_id",
        "paid_at",
    ]
    list_filter = ["status", "created_at"]
    search_fields = ["id", "transaction_id", "plan__order_reference", "plan__subscription_id"]
    readonly_fields = [
        "id",
        "plan",
        "payment_number",
        "total_payments",
        "amount",
        "status",
        "transaction_id",
        "paid_at",
        "failed_at",
        "created_at",
        "updated_at",
    ]
    ordering = ["-created_at"]


@admin.register(WebhookEvent)
class WebhookEventAdmin(admin.ModelAdmin):
    """
    Admin configuration for WebhookEvent.

    Webhook events are immutable once received.
    """

    list_display = [
        "id",
        "gateway_event_id",
        "event_type",
        "status",
        "outcome",
        "retry_count",
        "processed_at",
        "created_at",
    ]
    list_filter = ["status", "outcome", "event_type", "created_at"]
    search_fields = ["id", "gateway_event_id", "event_type"]
    readonly_fields = [
        "id",
        "created_at",
        "updated_at",
        "gateway_event_id",
        "event_type",
        "payload",
        "outcome",
        "processed_at",
    ]
    date_hierarchy = "created_at"
    ordering = ["-created_at"]

    fieldsets = (
        (
            None,
            {
                "fields": ("id", "gateway_event_id", "event_type", "status", "outcome"),
            },
        ),
        (
            "Processing",
            {
                "fields": ("processed_at", "retry_count"),
            },
        ),
        (
            "Error Info",
            {
                "fields": ("error_message",),
                "classes": ("collapse",),
            },
        ),
        (
            "Payload",
            {
                "fields": ("payload",),
                "classes": ("collapse",),
            },
        ),
        (
            "Timestamps",
            {
                "fields": ("created_at", "updated_at"),
            },
        ),
    )
