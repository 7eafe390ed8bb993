"""
Outbound notification sinks for payment plan transitions.

A sink turns a durable plan transition into a message somewhere else. Sinks
are best effort: they raise NotificationFailure, and the dispatcher logs it
and moves on to the next sink.

Configured sinks:
    PAYMENT_PLAN_NOTIFICATION_SINKS = [
        "payment_plans.notifications.sinks.LoggingNotificationSink",
        "payment_plans.notifications.sinks.SlackNotificationSink",
        "payment_plans.notifications.sinks.CrmNotificationSink",
    ]
"""

from __future__ import annotations

import logging
import time
from functools import lru_cache
from typing import TYPE_CHECKING, Protocol, runtime_checkable

import httpx
from django.conf import settings
from django.utils.module_loading import import_string

from payment_plans.exceptions import NotificationFailure

if TYPE_CHECKING:
    from typing import Any

    from payment_plans.models import Plan


logger = logging.getLogger(__name__)

SLACK_FOOTER = "Payment Plan Engine"
DEFAULT_GHL_API_BASE_URL = "https://rest.gohighlevel.com/v1"


@runtime_checkable
class NotificationSink(Protocol):
    """Receives post-commit plan transitions."""

    def notify_installment_paid(self, plan: Plan, payment_number: int) -> None: ...

    def notify_plan_suspended(self, plan: Plan) -> None: ...

    def notify_plan_cancelled(self, plan: Plan) -> None: ...


def _money(amount: Any) -> str:
    return f"${amount:,.2f}"


class LoggingNotificationSink:
    """Writes each transition to the payment_plans log."""

    def notify_installment_paid(self, plan: Plan, payment_number: int) -> None:
        logger.info(
            f"Installment {payment_number}/{plan.installment_count} paid on plan {plan.pk}",
            extra={"plan_id": str(plan.pk), "payment_number": payment_number},
        )

    def notify_plan_suspended(self, plan: Plan) -> None:
        logger.info(f"Plan {plan.pk} suspended", extra={"plan_id": str(plan.pk)})

    def notify_plan_cancelled(self, plan: Plan) -> None:
        logger.info(f"Plan {plan.pk} cancelled", extra={"plan_id": str(plan.pk)})


class SlackNotificationSink:
    """
    Posts to a Slack incoming webhook.

    Skipped (logged at debug) when SLACK_WEBHOOK_URL is empty.
    """

    def __init__(
        self,
        webhook_url: str | None = None,
        timeout: float | None = None,
        client: httpx.Client | None = None,
    ) -> None:
        self.webhook_url = webhook_url if webhook_url is not None else settings.SLACK_WEBHOOK_URL
        self.timeout = timeout or settings.PAYMENT_PLAN_NOTIFICATION_TIMEOUT_SECONDS
        self.client = client

    def notify_installment_paid(self, plan: Plan, payment_number: int) -> None:
        if plan.is_completed:
            title = "Payment plan completed"
            text = f"All {plan.installment_count} installments collected for {plan.order_reference}"
            color = "#2eb886"
        else:
            title = "Installment paid"
            text = (
                f"Installment {payment_number} of {plan.installment_count} "
                f"collected for {plan.order_reference}"
            )
            color = "#36a64f"
        self.post(title, text, self._plan_fields(plan), color=color, emoji="💳")

    def notify_plan_suspended(self, plan: Plan) -> None:
        self.post(
            "Payment plan suspended",
            f"The gateway suspended the subscription for {plan.order_reference}",
            self._plan_fields(plan),
            color="warning",
            emoji="⚠️",
        )

    def notify_plan_cancelled(self, plan: Plan) -> None:
        self.post(
            "Payment plan cancelled",
            f"The subscription for {plan.order_reference} was cancelled",
            self._plan_fields(plan),
            color="danger",
            emoji="🛑",
        )

    def _plan_fields(self, plan: Plan) -> list[dict[str, Any]]:
        return [
            {"title": "Order", "value": plan.order_reference},
            {"title": "Customer", "value": plan.customer_name or plan.customer_email},
            {
                "title": "Progress",
                "value": f"{plan.completed_payments}/{plan.installment_count}",
            },
            {"title": "Total", "value": _money(plan.total_amount)},
            {"title": "Subscription", "value": plan.subscription_id},
        ]

    def build_payload(
        self,
        title: str,
        text: str,
        fields: list[dict[str, Any]],
        color: str = "good",
        emoji: str = "📢",
    ) -> dict[str, Any]:
        return {
            "text": f"{emoji} {title}",
            "attachments": [
                {
                    "color": color,
                    "text": text,
                    "fields": [
                        {
                            "title": f["title"],
                            "value": f.get("value") or "N/A",
                            "short": f.get("short", True),
                        }
                        for f in fields
                    ],
                    "footer": SLACK_FOOTER,
                    "ts": int(time.time()),
                }
            ],
        }

    def post(self, title: str, text: str, fields: list[dict[str, Any]], **kwargs: Any) -> None:
        if not self.webhook_url:
            logger.debug("SLACK_WEBHOOK_URL not configured, skipping Slack notification")
            return

        payload = self.build_payload(title, text, fields, **kwargs)
        try:
            if self.client is not None:
                response = self.client.post(self.webhook_url, json=payload, timeout=self.timeout)
            else:
                response = httpx.post(self.webhook_url, json=payload, timeout=self.timeout)
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise NotificationFailure(
                f"Slack notification failed: {type(e).__name__}",
                details={"title": title},
            ) from e


class CrmNotificationSink:
    """
    Records plan progress on the customer's GoHighLevel contact.

    Looks the contact up by email, appends a note, and tags it. Skipped when
    GHL_API_KEY or the plan's customer email is missing.
    """

    def __init__(
        self,
        api_key: str | None = None,
        base_url: str | None = None,
        timeout: float | None = None,
        client: httpx.Client | None = None,
    ) -> None:
        self.api_key = api_key if api_key is not None else settings.GHL_API_KEY
        self.base_url = (base_url or settings.GHL_API_BASE_URL or DEFAULT_GHL_API_BASE_URL).rstrip("/")
        self.timeout = timeout or settings.PAYMENT_PLAN_NOTIFICATION_TIMEOUT_SECONDS
        self._client = client

    def notify_installment_paid(self, plan: Plan, payment_number: int) -> None:
        if plan.is_completed:
            note = (
                f"Payment plan for {plan.order_reference} completed: "
                f"{plan.installment_count} installments, {_money(plan.total_amount)} total."
            )
            tags = ["payment-plan-completed"]
        else:
            note = (
                f"Installment {payment_number} of {plan.installment_count} paid "
                f"for {plan.order_reference}."
            )
            tags = ["payment-plan-active"]
        self.record(plan, note, tags)

    def notify_plan_suspended(self, plan: Plan) -> None:
        self.record(
            plan,
            f"Payment plan for {plan.order_reference} suspended after "
            f"{plan.completed_payments} of {plan.installment_count} installments.",
            ["payment-plan-suspended"],
        )

    def notify_plan_cancelled(self, plan: Plan) -> None:
        self.record(
            plan,
            f"Payment plan for {plan.order_reference} cancelled.",
            ["payment-plan-cancelled"],
        )

    # ==========================================================================
    # GoHighLevel API
    # ==========================================================================

    def _get_client(self) -> httpx.Client:
        if self._client is None:
            self._client = httpx.Client(
                base_url=self.base_url,
                timeout=self.timeout,
                headers={
                    "Authorization": f"Bearer {self.api_key}",
                    "Content-Type": "application/json",
                    "Accept": "application/json",
                },
            )
        return self._client

    def _request(self, method: str, path: str, **kwargs: Any) -> dict[str, Any]:
        try:
            response = self._get_client().request(method, path, **kwargs)
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise NotificationFailure(
                f"GoHighLevel {method} {path} failed: {type(e).__name__}",
                details={"path": path},
            ) from e
        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError:
            return {}

    def find_contact_id(self, email: str) -> str | None:
        data = self._request("GET", "/contacts/search", params={"email": email})
        for contact in data.get("contacts") or []:
            if (contact.get("email") or "").lower() == email.lower():
                return contact.get("id")
        return None

    def record(self, plan: Plan, note: str, tags: list[str]) -> None:
        if not self.api_key:
            logger.debug("GHL_API_KEY not configured, skipping CRM notification")
            return
        if not plan.customer_email:
            logger.debug(
                "Plan has no customer email, skipping CRM notification",
                extra={"plan_id": str(plan.pk)},
            )
            return

        contact_id = self.find_contact_id(plan.customer_email)
        if contact_id is None:
            logger.info(
                "No CRM contact for plan customer",
                extra={"plan_id": str(plan.pk)},
            )
            return

        self._request("POST", f"/contacts/{contact_id}/notes/", json={"body": note})
        self._request("POST", f"/contacts/{contact_id}/tags/", json={"tags": tags})


@lru_cache(maxsize=1)
def get_notification_sinks() -> tuple[NotificationSink, ...]:
    """
    Sinks listed in PAYMENT_PLAN_NOTIFICATION_SINKS, built once.

    A path that fails to import or construct is logged and left out; the
    remaining sinks are still returned.
    """
    sinks = []
    for path in settings.PAYMENT_PLAN_NOTIFICATION_SINKS:
        try:
            sinks.append(import_string(path)())
        except Exception as e:
            logger.error(
                f"Failed to load notification sink {path}: {type(e).__name__}",
                extra={"sink_path": path},
                exc_info=True,
            )
    return tuple(sinks)
