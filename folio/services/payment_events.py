"""
Stripe webhook verification and event normalisation.

Turns a verified Stripe payload into a PaymentEvent carrying only the fields
the reconciler needs. Signature checking is delegated to the Stripe SDK.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any, Dict, Optional
import json
import stripe
from folio.utils.errors import InvalidEventError, SignatureError

CHECKOUT_COMPLETED = "checkout.session.completed"
SUBSCRIPTION_CREATED = "customer.subscription.created"
SUBSCRIPTION_UPDATED = "customer.subscription.updated"
SUBSCRIPTION_DELETED = "customer.subscription.deleted"
PAYMENT_SUCCEEDED = "invoice.payment_succeeded"
PAYMENT_FAILED = "invoice.payment_failed"

HANDLED_EVENT_TYPES = (
    CHECKOUT_COMPLETED,
    SUBSCRIPTION_CREATED,
    SUBSCRIPTION_UPDATED,
    SUBSCRIPTION_DELETED,
    PAYMENT_SUCCEEDED,
    PAYMENT_FAILED,
)


@dataclass(frozen=True)
class PaymentEvent:
    type: str
    event_id: Optional[str] = None
    created: Optional[int] = None
    idempotency_key: Optional[str] = None
    provider_status: Optional[str] = None
    period_end: Optional[int] = None
    customer_id: Optional[str] = None
    subscription_id: Optional[str] = None
    creator_id: Optional[str] = None
    plan_type: Optional[str] = None
    featured_posts: Optional[int] = None
    data: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_handled(self) -> bool:
        return self.type in HANDLED_EVENT_TYPES


def construct_event(payload: bytes, signature: Optional[str], secret: str) -> Dict[str, Any]:
    """
    Verify a webhook delivery and return the decoded event.

    Raises:
        SignatureError: missing header/secret, bad signature or unparsable body
    """
    if not signature or not secret:
        raise SignatureError("Missing Stripe signature or webhook secret")

    try:
        stripe.Webhook.construct_event(payload, signature, secret)
        return json.loads(payload)
    except stripe.SignatureVerificationError as e:
        raise SignatureError(f"Invalid signature: {e}") from e
    except ValueError as e:
        raise SignatureError(f"Invalid payload: {e}") from e


def _int_or_none(value: Any) -> Optional[int]:
    try:
        return int(value) if value not in (None, "") else None
    except (TypeError, ValueError):
        return None


def _period_end(subscription: Dict[str, Any]) -> Optional[int]:
    # Newer API versions report the period on the subscription items
    period_end = subscription.get("current_period_end")
    if period_end is None:
        items = (subscription.get("items") or {}).get("data") or []
        if items:
            period_end = items[0].get("current_period_end")
    return _int_or_none(period_end)


def _invoice_subscription_id(invoice: Dict[str, Any]) -> Optional[str]:
    subscription_id = invoice.get("subscription")
    if not subscription_id:
        details = (invoice.get("parent") or {}).get("subscription_details") or {}
        subscription_id = details.get("subscription")
    if isinstance(subscription_id, dict):
        subscription_id = subscription_id.get("id")
    return subscription_id


def from_stripe_event(event: Dict[str, Any]) -> PaymentEvent:
    """
    Normalise a decoded Stripe event.

    Raises:
        InvalidEventError: the event lacks the ids needed to correlate it
    """
    event_type = event.get("type")
    if not event_type:
        raise InvalidEventError("Event has no type")

    obj = (event.get("data") or {}).get("object") or {}
    common = {
        "type": event_type,
        "event_id": event.get("id"),
        "created": _int_or_none(event.get("created")),
        "data": obj,
    }

    if event_type == CHECKOUT_COMPLETED:
        metadata = obj.get("metadata") or {}
        session_id = obj.get("id")
        creator_id = metadata.get("creatorId")
        plan_type = metadata.get("planType")
        if not session_id or not creator_id or not plan_type:
            raise InvalidEventError("Missing session id, creatorId or planType in checkout session")
        return PaymentEvent(
            idempotency_key=session_id,
            customer_id=obj.get("customer"),
            subscription_id=obj.get("subscription"),
            creator_id=creator_id,
            plan_type=plan_type,
            featured_posts=_int_or_none(metadata.get("featured_posts")),
            provider_status=obj.get("status"),
            **common,
        )

    if event_type in (SUBSCRIPTION_CREATED, SUBSCRIPTION_UPDATED, SUBSCRIPTION_DELETED):
        subscription_id = obj.get("id")
        if not subscription_id:
            raise InvalidEventError(f"{event_type} without subscription id")
        metadata = obj.get("metadata") or {}
        return PaymentEvent(
            subscription_id=subscription_id,
            customer_id=obj.get("customer"),
            provider_status=obj.get("status"),
            period_end=_period_end(obj),
            creator_id=metadata.get("creatorId"),
            plan_type=metadata.get("planType"),
            **common,
        )

    if event_type in (PAYMENT_SUCCEEDED, PAYMENT_FAILED):
        subscription_id = _invoice_subscription_id(obj)
        if not subscription_id:
            raise InvalidEventError(f"{event_type} without subscription id")
        return PaymentEvent(
            subscription_id=subscription_id,
            customer_id=obj.get("customer"),
            provider_status=obj.get("status"),
            **common,
        )

    # Unhandled types pass through so the caller can acknowledge them
    return PaymentEvent(**common)
