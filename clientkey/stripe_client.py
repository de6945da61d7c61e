"""Stripe access — API key setup, webhook verification, and the calls the
billing engine makes. Every helper returns plain dicts."""

import logging
from datetime import datetime, timezone

import stripe

from clientkey.config import STRIPE_API_KEY, STRIPE_WEBHOOK_SECRET

logger = logging.getLogger(__name__)


class WebhookVerificationError(Exception):
    """Raised when a webhook payload cannot be authenticated."""


def _stripe():
    if not stripe.api_key:
        if not STRIPE_API_KEY:
            raise RuntimeError("STRIPE_API_KEY must be set")
        stripe.api_key = STRIPE_API_KEY
    return stripe


def _to_dict(obj) -> dict:
    if obj is None:
        return {}
    if isinstance(obj, dict) and not isinstance(obj, stripe.StripeObject):
        return obj
    return obj.to_dict()


def to_iso(unix: int | None) -> str | None:
    """Stripe epoch seconds → ISO-8601 UTC string."""
    if not unix or not isinstance(unix, (int, float)):
        return None
    return datetime.fromtimestamp(unix, tz=timezone.utc).isoformat()


# ---------------------------------------------------------------------------
# Webhooks
# ---------------------------------------------------------------------------

def construct_event(payload: bytes, signature: str) -> dict:
    """Verify a webhook signature and return the event envelope."""
    if not signature or not STRIPE_WEBHOOK_SECRET:
        raise WebhookVerificationError("Webhook signature or secret missing")
    try:
        event = stripe.Webhook.construct_event(payload, signature, STRIPE_WEBHOOK_SECRET)
    except stripe.SignatureVerificationError as e:
        raise WebhookVerificationError(f"Invalid signature: {e}") from e
    except ValueError as e:
        raise WebhookVerificationError(f"Invalid payload: {e}") from e
    return _to_dict(event)


# ---------------------------------------------------------------------------
# Subscriptions + customers
# ---------------------------------------------------------------------------

def retrieve_subscription(subscription_id: str) -> dict:
    return _to_dict(_stripe().Subscription.retrieve(subscription_id))


def retrieve_customer(customer_id: str) -> dict:
    return _to_dict(_stripe().Customer.retrieve(customer_id))


def find_customer_by_email(email: str) -> dict | None:
    customers = _stripe().Customer.list(email=email, limit=1)
    return _to_dict(customers.data[0]) if customers.data else None


def find_active_subscription(customer_id: str) -> dict | None:
    subs = _stripe().Subscription.list(customer=customer_id, status="active", limit=1)
    return _to_dict(subs.data[0]) if subs.data else None


def subscription_periods(subscription: dict) -> tuple[str | None, str | None]:
    """Current period bounds as ISO strings.

    Newer API versions carry the period on the subscription items rather than
    the subscription itself.
    """
    start = subscription.get("current_period_start")
    end = subscription.get("current_period_end")
    if start is None or end is None:
        items = (subscription.get("items") or {}).get("data") or []
        if items:
            start = start if start is not None else items[0].get("current_period_start")
            end = end if end is not None else items[0].get("current_period_end")
    return to_iso(start), to_iso(end)


def subscription_price_id(subscription: dict) -> str | None:
    items = (subscription.get("items") or {}).get("data") or []
    if not items:
        return None
    return (items[0].get("price") or {}).get("id")


def invoice_subscription_id(invoice: dict) -> str | None:
    """Subscription id an invoice belongs to, across API versions."""
    sub = invoice.get("subscription")
    if isinstance(sub, dict):
        return sub.get("id")
    if sub:
        return sub
    details = ((invoice.get("parent") or {}).get("subscription_details") or {})
    sub = details.get("subscription")
    if isinstance(sub, dict):
        return sub.get("id")
    return sub or None


# ---------------------------------------------------------------------------
# Checkout + schedules
# ---------------------------------------------------------------------------

def create_checkout_session(params: dict) -> dict:
    return _to_dict(_stripe().checkout.Session.create(**params))


def create_subscription_schedule(subscription_id: str, phases: list[dict]) -> dict:
    """Attach a schedule to an existing subscription and set its phases.

    Stripe does not accept phases together with ``from_subscription``, so the
    schedule is created first and the phases written in a second call.
    """
    client = _stripe()
    schedule = _to_dict(client.SubscriptionSchedule.create(from_subscription=subscription_id))
    current = schedule["phases"][0] if schedule.get("phases") else None
    if current and "start_date" not in phases[0]:
        phases[0]["start_date"] = current["start_date"]
    return _to_dict(client.SubscriptionSchedule.modify(
        schedule["id"],
        end_behavior="release",
        phases=phases,
    ))


def iter_subscription_schedules():
    """All subscription schedules that have not ended yet."""
    page = _stripe().SubscriptionSchedule.list(limit=100)
    for schedule in page.auto_paging_iter():
        data = _to_dict(schedule)
        if data.get("status") in ("active", "not_started"):
            yield data


# ---------------------------------------------------------------------------
# Add-ons + coupons
# ---------------------------------------------------------------------------

def add_subscription_item_unit(subscription: dict, price_id: str) -> int:
    """Add one unit of ``price_id`` to a subscription. Returns the new quantity."""
    client = _stripe()
    for item in (subscription.get("items") or {}).get("data") or []:
        if (item.get("price") or {}).get("id") == price_id:
            quantity = (item.get("quantity") or 0) + 1
            client.SubscriptionItem.modify(item["id"], quantity=quantity)
            return quantity
    client.SubscriptionItem.create(subscription=subscription["id"], price=price_id, quantity=1)
    return 1


def create_coupon(params: dict) -> dict:
    return _to_dict(_stripe().Coupon.create(**params))


def delete_coupon(coupon_id: str) -> dict:
    return _to_dict(_stripe().Coupon.delete(coupon_id))
