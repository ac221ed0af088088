"""
Typed gateway events.

Each known Stripe event type is parsed into a small frozen dataclass carrying
only the fields reconciliation reads. Anything else becomes Unrecognized so
new event types pass through harmlessly.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Optional


@dataclass(frozen=True)
class BillingEvent:
    event_id: Optional[str]
    event_type: str


@dataclass(frozen=True)
class CheckoutCompleted(BillingEvent):
    session_id: str
    customer_id: Optional[str] = None
    subscription_id: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class SubscriptionCreated(BillingEvent):
    subscription_id: str
    customer_id: Optional[str] = None
    status: Optional[str] = None
    price_id: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class SubscriptionUpdated(BillingEvent):
    subscription_id: str
    customer_id: Optional[str] = None
    status: Optional[str] = None
    price_id: Optional[str] = None


@dataclass(frozen=True)
class SubscriptionDeleted(BillingEvent):
    subscription_id: str
    customer_id: Optional[str] = None


@dataclass(frozen=True)
class InvoicePaymentSucceeded(BillingEvent):
    invoice_id: Optional[str]
    subscription_id: Optional[str]


@dataclass(frozen=True)
class InvoicePaymentFailed(BillingEvent):
    invoice_id: Optional[str]
    subscription_id: Optional[str]


@dataclass(frozen=True)
class Unrecognized(BillingEvent):
    pass


def _price_id(subscription_object):
    items = (subscription_object.get("items") or {}).get("data") or []
    if not items:
        return None
    price = items[0].get("price") or {}
    return price.get("id") if isinstance(price, dict) else price


def _invoice_subscription_id(invoice):
    subscription = invoice.get("subscription")
    if subscription is None:
        # Newer API versions nest it under parent.subscription_details
        details = (invoice.get("parent") or {}).get("subscription_details") or {}
        subscription = details.get("subscription")
    if isinstance(subscription, dict):
        return subscription.get("id")
    return subscription


def _ref(value):
    # Expanded objects arrive as dicts, unexpanded ones as ids
    if isinstance(value, dict):
        return value.get("id")
    return value


def _checkout_completed(event_id, event_type, obj):
    return CheckoutCompleted(
        event_id=event_id,
        event_type=event_type,
        session_id=obj["id"],
        customer_id=_ref(obj.get("customer")),
        subscription_id=_ref(obj.get("subscription")),
        metadata=dict(obj.get("metadata") or {}),
    )


def _subscription_created(event_id, event_type, obj):
    return SubscriptionCreated(
        event_id=event_id,
        event_type=event_type,
        subscription_id=obj["id"],
        customer_id=_ref(obj.get("customer")),
        status=obj.get("status"),
        price_id=_price_id(obj),
        metadata=dict(obj.get("metadata") or {}),
    )


def _subscription_updated(event_id, event_type, obj):
    return SubscriptionUpdated(
        event_id=event_id,
        event_type=event_type,
        subscription_id=obj["id"],
        customer_id=_ref(obj.get("customer")),
        status=obj.get("status"),
        price_id=_price_id(obj),
    )


def _subscription_deleted(event_id, event_type, obj):
    return SubscriptionDeleted(
        event_id=event_id,
        event_type=event_type,
        subscription_id=obj["id"],
        customer_id=_ref(obj.get("customer")),
    )


def _invoice(event_class):
    def build(event_id, event_type, obj):
        return event_class(
            event_id=event_id,
            event_type=event_type,
            invoice_id=obj.get("id"),
            subscription_id=_invoice_subscription_id(obj),
        )
    return build


PARSERS = {
    "checkout.session.completed": _checkout_completed,
    "customer.subscription.created": _subscription_created,
    "customer.subscription.updated": _subscription_updated,
    "customer.subscription.deleted": _subscription_deleted,
    "invoice.payment_succeeded": _invoice(InvoicePaymentSucceeded),
    "invoice.paid": _invoice(InvoicePaymentSucceeded),
    "invoice.payment_failed": _invoice(InvoicePaymentFailed),
}


def parse_event(payload: Dict[str, Any]) -> BillingEvent:
    """Turn a decoded Stripe event body into a typed event. Raises ValueError on malformed input."""
    if not isinstance(payload, dict) or "type" not in payload:
        raise ValueError("Webhook payload is not a Stripe event")

    event_id = payload.get("id")
    event_type = payload["type"]
    parser = PARSERS.get(event_type)
    if parser is None:
        return Unrecognized(event_id=event_id, event_type=event_type)

    obj = (payload.get("data") or {}).get("object")
    if not isinstance(obj, dict):
        raise ValueError(f"Event {event_id} has no data.object")

    try:
        return parser(event_id, event_type, obj)
    except KeyError as e:
        raise ValueError(f"Event {event_id} ({event_type}) is missing {e}") from e
