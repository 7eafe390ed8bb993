"""
Webhook handling for payment gateway notifications.

- normalizer: Maps heterogeneous gateway envelopes to NormalizedPaymentEvent
- views: The inbound endpoint, with signature check and event archiving

Usage:
    # In urls.py
    from payment_plans.webhooks.views import gateway_webhook
"""
