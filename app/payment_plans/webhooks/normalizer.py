"""
Webhook envelope normalization.

The gateway nests the same semantic fields under different key paths
depending on the event family (transaction, invoice, subscription
management), and the shapes drift within a family too. This module probes
an ordered list of candidate paths per field and keeps the first present
value. It never raises on a missing or malformed field.

Envelope:
    {"id": "...", "eventType": "...", "eventDate": "...", "payload": {...}}

Usage:
    from payment_plans.webhooks.normalizer import get_event_normalizer

    event = get_event_normalizer().normalize(envelope)
    if event.kind is EventKind.INSTALLMENT_PAID:
        ...
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from enum import Enum
from functools import lru_cache
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Callable, Mapping, Sequence
    from typing import Any


logger = logging.getLogger(__name__)

CENT = Decimal("0.01")
ZERO = Decimal("0.00")

_NON_NUMERIC = re.compile(r"[^0-9.\-]")


class EventKind(str, Enum):
    """What a webhook means for a payment plan."""

    INSTALLMENT_PAID = "installment-paid"
    PLAN_SUSPENDED = "plan-suspended"
    PLAN_CANCELLED = "plan-cancelled"
    UNSUPPORTED = "unsupported"


class EventFamily(str, Enum):
    TRANSACTION = "transaction"
    INVOICE = "invoice"
    SUBSCRIPTION = "subscription"


@dataclass(frozen=True)
class NormalizedPaymentEvent:
    """
    Canonical view of a gateway webhook.

    Identifiers default to "" and amount to 0.00 when the payload does not
    carry them.
    """

    kind: EventKind
    subscription_id: str = ""
    transaction_id: str = ""
    amount: Decimal = ZERO
    event_id: str = ""
    event_type: str = ""
    event_date: str = ""
    customer_email: str = ""
    invoice_number: str = ""
    family: EventFamily = EventFamily.TRANSACTION
    raw_payload: Mapping[str, Any] = field(default_factory=dict, compare=False, repr=False)

    @property
    def is_supported(self) -> bool:
        return self.kind is not EventKind.UNSUPPORTED

    def log_context(self) -> dict[str, Any]:
        """Fields for ``logger.*(..., extra=...)``."""
        return {
            "event_id": self.event_id,
            "event_type": self.event_type,
            "event_kind": self.kind.value,
            "subscription_id": self.subscription_id,
            "transaction_id": self.transaction_id,
        }


# =============================================================================
# Field Resolution
# =============================================================================


#: Candidate paths per semantic field, per event family. First present wins.
FIELD_PATHS: dict[EventFamily, dict[str, tuple[str, ...]]] = {
    EventFamily.TRANSACTION: {
        "subscription_id": (
            "subscription.id",
            "subscriptionId",
            "subscription.subscriptionId",
            "order.subscriptionId",
        ),
        "transaction_id": (
            "id",
            "transId",
            "transactionId",
            "transaction.transId",
        ),
        "amount": (
            "authAmount",
            "settleAmount",
            "subscriptionAmount",
            "order.amount",
            "amount",
        ),
        "customer_email": (
            "customer.email",
            "billTo.email",
            "shipTo.email",
        ),
        "invoice_number": (
            "order.invoiceNumber",
            "invoiceNumber",
        ),
    },
    EventFamily.INVOICE: {
        "subscription_id": (
            "subscription.id",
            "subscriptionId",
            "invoice.subscriptionId",
        ),
        "transaction_id": (
            "transactionId",
            "transId",
            "payment.transId",
            "invoice.transactionId",
        ),
        "amount": (
            "amountPaid",
            "paidAmount",
            "amount",
            "invoice.amount",
            "totalAmount",
        ),
        "customer_email": (
            "customer.email",
            "billTo.email",
            "invoice.customer.email",
            "email",
        ),
        "invoice_number": (
            "invoiceNumber",
            "invoice.invoiceNumber",
            "number",
        ),
    },
    EventFamily.SUBSCRIPTION: {
        # Here payload.id is the subscription itself.
        "subscription_id": (
            "subscription.id",
            "subscriptionId",
            "id",
        ),
        "transaction_id": (
            "transactionId",
            "transId",
            "lastTransaction.transId",
        ),
        "amount": (
            "amount",
            "subscriptionAmount",
            "subscription.amount",
        ),
        "customer_email": (
            "profile.email",
            "customer.email",
            "billTo.email",
            "subscription.profile.email",
        ),
        "invoice_number": (
            "order.invoiceNumber",
            "invoiceNumber",
        ),
    },
}


def _is_present(value: Any) -> bool:
    if value is None:
        return False
    if isinstance(value, str):
        return bool(value.strip())
    if isinstance(value, (dict, list, tuple)):
        return bool(value)
    return True


def _is_scalar(value: Any) -> bool:
    if isinstance(value, bool):
        return False
    if isinstance(value, str):
        return bool(value.strip())
    return isinstance(value, (int, float, Decimal))


def lookup_path(data: Any, path: str) -> Any:
    """Follow a dotted path through nested mappings; None if it breaks."""
    current = data
    for key in path.split("."):
        if not isinstance(current, dict):
            return None
        current = current.get(key)
    return current


def first_present(
    data: Any,
    paths: Sequence[str],
    predicate: Callable[[Any], bool] = _is_present,
) -> Any:
    """
    Return the value at the first path that satisfies ``predicate``.

    Skips None, blank strings and empty containers by default.
    """
    for path in paths:
        value = lookup_path(data, path)
        if predicate(value):
            return value
    return None


def parse_money(value: Any) -> Decimal:
    """
    Parse a currency value from a webhook payload.

    Strips everything but digits, '.' and '-', so "$1,993.33" parses.
    Unparseable, non-finite and negative values become 0.00.

    Examples:
        parse_money("$1,993.33")  # Decimal("1993.33")
        parse_money(1993.33)      # Decimal("1993.33")
        parse_money(None)         # Decimal("0.00")
    """
    if value is None or isinstance(value, bool):
        return ZERO
    if isinstance(value, (int, float, Decimal)):
        text = str(value)
    elif isinstance(value, str):
        text = _NON_NUMERIC.sub("", value)
    else:
        return ZERO

    if not text:
        return ZERO
    try:
        amount = Decimal(text)
        if not amount.is_finite() or amount < 0:
            return ZERO
        return amount.quantize(CENT, rounding=ROUND_HALF_UP)
    except InvalidOperation:
        return ZERO


def _identifier(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    return str(value).strip()


# =============================================================================
# Classification
# =============================================================================


#: Exact event types this subsystem knows about.
EVENT_KIND_MAP: dict[str, EventKind] = {
    # Transactions (ARB charges arrive as auth-capture with a subscription)
    "net.authorize.payment.authcapture.created": EventKind.INSTALLMENT_PAID,
    "net.authorize.payment.capture.created": EventKind.INSTALLMENT_PAID,
    "net.authorize.payment.priorAuthCapture.created": EventKind.INSTALLMENT_PAID,
    "net.authorize.payment.authorization.created": EventKind.UNSUPPORTED,
    "net.authorize.payment.authcapture.failed": EventKind.UNSUPPORTED,
    "net.authorize.payment.refund.created": EventKind.UNSUPPORTED,
    "net.authorize.payment.void.created": EventKind.UNSUPPORTED,
    "net.authorize.payment.fraud.held": EventKind.UNSUPPORTED,
    "net.authorize.payment.fraud.declined": EventKind.UNSUPPORTED,
    "net.authorize.payment.fraud.approved": EventKind.UNSUPPORTED,
    # Subscription management
    "net.authorize.customer.subscription.suspended": EventKind.PLAN_SUSPENDED,
    "net.authorize.customer.subscription.terminated": EventKind.PLAN_CANCELLED,
    "net.authorize.customer.subscription.cancelled": EventKind.PLAN_CANCELLED,
    "net.authorize.customer.subscription.created": EventKind.UNSUPPORTED,
    "net.authorize.customer.subscription.updated": EventKind.UNSUPPORTED,
    "net.authorize.customer.subscription.expiring": EventKind.UNSUPPORTED,
    "net.authorize.customer.subscription.failed": EventKind.UNSUPPORTED,
    # Customer profiles ("paymentProfile" would otherwise hit the "pay" keyword)
    "net.authorize.customer.created": EventKind.UNSUPPORTED,
    "net.authorize.customer.updated": EventKind.UNSUPPORTED,
    "net.authorize.customer.deleted": EventKind.UNSUPPORTED,
    "net.authorize.customer.paymentProfile.created": EventKind.UNSUPPORTED,
    "net.authorize.customer.paymentProfile.updated": EventKind.UNSUPPORTED,
    "net.authorize.customer.paymentProfile.deleted": EventKind.UNSUPPORTED,
    # Invoicing
    "invoicing.customer.invoice.paid": EventKind.INSTALLMENT_PAID,
    "net.authorize.invoice.paid": EventKind.INSTALLMENT_PAID,
    "invoicing.customer.invoice.created": EventKind.UNSUPPORTED,
    "invoicing.customer.invoice.send": EventKind.UNSUPPORTED,
    "invoicing.customer.invoice.updated": EventKind.UNSUPPORTED,
    "invoicing.customer.invoice.partial-payment": EventKind.UNSUPPORTED,
    "invoicing.customer.invoice.reminder": EventKind.UNSUPPORTED,
    "invoicing.customer.invoice.overdue-reminder": EventKind.UNSUPPORTED,
}

#: Substring fallback, checked in order. The first group that matches wins.
KEYWORD_GROUPS: tuple[tuple[tuple[str, ...], EventKind], ...] = (
    (("fail", "refund", "void", "decline", "partial"), EventKind.UNSUPPORTED),
    (("suspend",), EventKind.PLAN_SUSPENDED),
    (("cancel", "terminat"), EventKind.PLAN_CANCELLED),
    (("paid", "pay"), EventKind.INSTALLMENT_PAID),
)

#: Namespaces stripped before keyword matching, longest first.
EVENT_NAMESPACES = (
    "net.authorize.customer.subscription.",
    "net.authorize.customer.",
    "net.authorize.payment.",
    "invoicing.customer.",
    "net.authorize.",
)


def event_family(event_type: str) -> EventFamily:
    lowered = event_type.lower()
    if "subscription" in lowered:
        return EventFamily.SUBSCRIPTION
    if "invoic" in lowered:
        return EventFamily.INVOICE
    return EventFamily.TRANSACTION


def classify(event_type: str) -> EventKind:
    """
    Map a gateway event type to an EventKind.

    Exact matches come from EVENT_KIND_MAP. Anything else goes through the
    KEYWORD_GROUPS fallback, matched against the event type with its
    gateway namespace removed.
    """
    if not event_type:
        return EventKind.UNSUPPORTED

    kind = EVENT_KIND_MAP.get(event_type)
    if kind is not None:
        return kind

    action = event_type.lower()
    for namespace in EVENT_NAMESPACES:
        if action.startswith(namespace):
            action = action[len(namespace):]
            break

    for keywords, group_kind in KEYWORD_GROUPS:
        if any(keyword in action for keyword in keywords):
            return group_kind
    return EventKind.UNSUPPORTED


# =============================================================================
# Normalizer
# =============================================================================


class EventNormalizer:
    """
    Turns raw webhook envelopes into NormalizedPaymentEvent.

    Total over arbitrary input: anything that is not a recognisable
    envelope comes back as an UNSUPPORTED event.
    """

    def __init__(
        self,
        field_paths: dict[EventFamily, dict[str, tuple[str, ...]]] | None = None,
    ) -> None:
        self.field_paths = field_paths or FIELD_PATHS

    def normalize(self, envelope: Any) -> NormalizedPaymentEvent:
        if not isinstance(envelope, dict):
            logger.warning(
                "Webhook envelope is not an object",
                extra={"envelope_type": type(envelope).__name__},
            )
            return NormalizedPaymentEvent(kind=EventKind.UNSUPPORTED)

        event_type = _identifier(envelope.get("eventType"))
        payload = envelope.get("payload")
        if not isinstance(payload, dict):
            payload = {}

        family = event_family(event_type)
        paths = self.field_paths[family]

        event = NormalizedPaymentEvent(
            kind=classify(event_type),
            subscription_id=_identifier(
                first_present(payload, paths["subscription_id"], _is_scalar)
            ),
            transaction_id=_identifier(
                first_present(payload, paths["transaction_id"], _is_scalar)
            ),
            amount=parse_money(first_present(payload, paths["amount"])),
            event_id=_identifier(envelope.get("id")),
            event_type=event_type,
            event_date=_identifier(envelope.get("eventDate")),
            customer_email=_identifier(
                first_present(payload, paths["customer_email"], _is_scalar)
            ),
            invoice_number=_identifier(
                first_present(payload, paths["invoice_number"], _is_scalar)
            ),
            family=family,
            raw_payload=payload,
        )

        if not event.is_supported:
            logger.info(
                f"Ignoring unsupported webhook event type: {event_type or '<missing>'}",
                extra=event.log_context(),
            )
        else:
            logger.debug("Normalized webhook event", extra=event.log_context())

        return event


@lru_cache(maxsize=1)
def get_event_normalizer() -> EventNormalizer:
    """Process-wide EventNormalizer, built on first use."""
    return EventNormalizer()
