"""Decoded Stripe webhook events.

``decode_event`` turns the verified JSON payload into one of a closed set of
frozen dataclass variants. Any type string outside the set becomes
``UnknownEvent`` which the processor acknowledges and ignores.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from storefront.billing.errors import MalformedEvent


@dataclass(frozen=True)
class BillingEvent:
    event_id: str
    event_type: str
    obj: dict[str, Any] = field(default_factory=dict)

    @property
    def metadata(self) -> dict[str, str]:
        return self.obj.get("metadata") or {}


@dataclass(frozen=True)
class CheckoutCompleted(BillingEvent):
    """checkout.session.completed: ``obj`` is a Checkout Session."""

    @property
    def subscription_ref(self) -> str | dict[str, Any] | None:
        return self.obj.get("subscription")

    @property
    def customer_id(self) -> str | None:
        return _id_of(self.obj.get("customer"))

    @property
    def customer_email(self) -> str | None:
        details = self.obj.get("customer_details") or {}
        return details.get("email") or self.obj.get("customer_email")

    @property
    def customer_name(self) -> str | None:
        return (self.obj.get("customer_details") or {}).get("name")


@dataclass(frozen=True)
class SubscriptionCreated(BillingEvent):
    """customer.subscription.created: ``obj`` is a Subscription."""


@dataclass(frozen=True)
class SubscriptionUpdated(BillingEvent):
    """customer.subscription.updated: ``obj`` is a Subscription."""


@dataclass(frozen=True)
class SubscriptionDeleted(BillingEvent):
    """customer.subscription.deleted: ``obj`` is a Subscription."""


@dataclass(frozen=True)
class InvoicePaid(BillingEvent):
    """invoice.paid / invoice.payment_succeeded: ``obj`` is an Invoice."""

    @property
    def subscription_id(self) -> str | None:
        return invoice_subscription_id(self.obj)


@dataclass(frozen=True)
class InvoicePaymentFailed(BillingEvent):
    """invoice.payment_failed: ``obj`` is an Invoice."""

    @property
    def subscription_id(self) -> str | None:
        return invoice_subscription_id(self.obj)


@dataclass(frozen=True)
class UnknownEvent(BillingEvent):
    """Any event type this service does not handle."""


EVENT_TYPES: dict[str, type[BillingEvent]] = {
    "checkout.session.completed": CheckoutCompleted,
    "customer.subscription.created": SubscriptionCreated,
    "customer.subscription.updated": SubscriptionUpdated,
    "customer.subscription.deleted": SubscriptionDeleted,
    "invoice.paid": InvoicePaid,
    "invoice.payment_succeeded": InvoicePaid,
    "invoice.payment_failed": InvoicePaymentFailed,
}


def decode_event(raw: dict[str, Any]) -> BillingEvent:
    """Build the typed variant for a verified Stripe event payload.

    Raises MalformedEvent when ``data`` or ``data.object`` is not an object.
    """
    event_type = str(raw.get("type") or "")
    data = raw.get("data") or {}
    if not isinstance(data, dict):
        raise MalformedEvent(f"event data is a {type(data).__name__}, expected an object")
    obj = data.get("object") or {}
    if not isinstance(obj, dict):
        raise MalformedEvent(f"event data.object is a {type(obj).__name__}, expected an object")
    variant = EVENT_TYPES.get(event_type, UnknownEvent)
    return variant(event_id=str(raw.get("id") or ""), event_type=event_type, obj=obj)


# ── Stripe object helpers ────────────────────────────────────────────────────

def _id_of(ref: Any) -> str | None:
    """Stripe references are either an id string or an expanded object."""
    if isinstance(ref, dict):
        return ref.get("id")
    return ref or None


def _first_item(subscription: dict[str, Any]) -> dict[str, Any]:
    items = (subscription.get("items") or {}).get("data") or []
    return items[0] if items else {}


def subscription_price_id(subscription: dict[str, Any]) -> str | None:
    return _id_of(_first_item(subscription).get("price"))


def subscription_customer_id(subscription: dict[str, Any]) -> str | None:
    return _id_of(subscription.get("customer"))


def _ts_to_dt(ts: int | None) -> datetime | None:
    if ts:
        return datetime.fromtimestamp(ts, tz=timezone.utc)
    return None


def subscription_period(subscription: dict[str, Any]) -> tuple[datetime | None, datetime | None]:
    """Current period bounds; newer API versions only carry them per item."""
    item = _first_item(subscription)
    start = subscription.get("current_period_start") or item.get("current_period_start")
    end = subscription.get("current_period_end") or item.get("current_period_end")
    return _ts_to_dt(start), _ts_to_dt(end)


def subscription_cancel_at(subscription: dict[str, Any]) -> datetime | None:
    return _ts_to_dt(subscription.get("cancel_at"))


def invoice_subscription_id(invoice: dict[str, Any]) -> str | None:
    sub = invoice.get("subscription")
    if sub:
        return _id_of(sub)
    details = ((invoice.get("parent") or {}).get("subscription_details")) or {}
    return _id_of(details.get("subscription"))
