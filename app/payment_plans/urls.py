"""
URL configuration for payment_plans app.

Payment Plans:
    GET /{plan_id}/                - Get plan status
    POST /validate/                - Validate a plan configuration

Payment Plans - Webhooks:
    POST /webhooks/gateway/        - Gateway webhook (signature-verified, no auth)
"""

from django.urls import path

from payment_plans.views import PlanStatusView, PlanValidationView
from payment_plans.webhooks.views import gateway_webhook

app_name = "payment_plans"

urlpatterns = [
    path("validate/", PlanValidationView.as_view(), name="validate"),
    path("webhooks/gateway/", gateway_webhook, name="gateway-webhook"),
    path("<uuid:plan_id>/", PlanStatusView.as_view(), name="detail"),
]
