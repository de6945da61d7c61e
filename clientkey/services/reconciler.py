"""Webhook reconciler — folds Stripe lifecycle events into the local
subscription record.

Every delivery carries Stripe's current full object, so each handler writes
absolute values keyed on Stripe ids and is safe to re-apply in any order.
"""

import logging

from postgrest.exceptions import APIError

from clientkey import stripe_client
from clientkey import supabase_client as db
from clientkey.config import BILLING_PORTAL_URL
from clientkey.plans import (
    ACTIVE, CANCELED, EARLY_BIRD, PAST_DUE, REGULAR, format_price, monthly_price,
)
from clientkey.services.checkout import create_price_transition_schedule
from clientkey.services.mailer import EmailSendError, render_layout, send_email

logger = logging.getLogger(__name__)

_PAID_TIERS = {EARLY_BIRD, REGULAR}


class MalformedEventError(ValueError):
    """The event envelope is missing required fields."""


def handle_event(event: dict) -> str:
    """Dispatch a verified Stripe event. Returns a short outcome string."""
    event_type = event.get("type")
    obj = (event.get("data") or {}).get("object")
    if not event_type or not isinstance(obj, dict):
        raise MalformedEventError("Event is missing type or data.object")

    handler = _HANDLERS.get(event_type)
    if handler is None:
        logger.info("Unhandled event type: %s", event_type)
        return "ignored"

    logger.info("Processing event %s (%s)", event.get("id"), event_type)
    return handler(obj)


# ---------------------------------------------------------------------------
# Local record writes
# ---------------------------------------------------------------------------

def subscription_fields(subscription: dict) -> dict:
    """Fields copied verbatim from a Stripe subscription object."""
    period_start, period_end = stripe_client.subscription_periods(subscription)
    return {
        "status": subscription.get("status"),
        "current_period_start": period_start,
        "current_period_end": period_end,
        "cancel_at_period_end": bool(subscription.get("cancel_at_period_end")),
    }


def store_subscription(user_id: str, data: dict) -> str:
    """Insert or update the user's subscription row.

    Issuing an early bird subscription the user did not already hold (a new
    row, an upgrade from free or regular, or a new Stripe subscription) takes
    a slot from the promotional counter. Redelivery of the same subscription
    does not. Returns "created" or "updated".
    """
    existing = db.get_subscription_for_user(user_id)
    if existing:
        if _is_new_early_bird(existing, data) and \
                db.swap_subscription_for_user(user_id, existing, dict(data)):
            logger.info("Subscription for user %s moved to early bird (%s)", user_id,
                        data.get("stripe_subscription_id"))
            _take_early_bird_slot(user_id)
            return "updated"
        db.update_subscription_for_user(user_id, dict(data))
        logger.info("Updated existing subscription for user %s", user_id)
        return "updated"

    try:
        db.insert_subscription({"user_id": user_id, **data})
    except APIError as e:
        if not db.is_unique_violation(e):
            raise
        # Another request inserted first; retry against the row it wrote
        return store_subscription(user_id, data)

    logger.info("Created subscription for user %s (%s)", user_id, data.get("pricing_tier"))
    if data.get("pricing_tier") == EARLY_BIRD:
        _take_early_bird_slot(user_id)
    return "created"


def _is_new_early_bird(existing: dict, data: dict) -> bool:
    """True when ``data`` issues an early bird subscription the row does not hold yet."""
    if data.get("pricing_tier") != EARLY_BIRD:
        return False
    return existing.get("pricing_tier") != EARLY_BIRD or \
        existing.get("stripe_subscription_id") != data.get("stripe_subscription_id")


def _take_early_bird_slot(user_id: str) -> None:
    count = db.increment_early_bird_counter()
    if count is None:
        logger.warning("Early bird limit already reached; counter not incremented for user %s",
                       user_id)
        db.log_action("early_bird_limit_reached", "user", user_id,
                      "Checkout completed at early bird price after the limit was reached")
        return
    logger.info("Early bird counter incremented to %d", count)


# ---------------------------------------------------------------------------
# Event handlers
# ---------------------------------------------------------------------------

def _checkout_completed(session: dict) -> str:
    if session.get("mode") != "subscription" or not session.get("customer") \
            or not session.get("subscription"):
        return "ignored"

    metadata = session.get("metadata") or {}
    user_id = metadata.get("user_id")
    tier = metadata.get("pricing_tier")
    if not user_id or tier not in _PAID_TIERS:
        logger.warning("Checkout %s missing user_id/pricing_tier metadata", session.get("id"))
        return "ignored"

    subscription = stripe_client.retrieve_subscription(session["subscription"])

    outcome = store_subscription(user_id, {
        "stripe_customer_id": session["customer"],
        "stripe_subscription_id": session["subscription"],
        "pricing_tier": tier,
        "monthly_price": monthly_price(tier),
        **subscription_fields(subscription),
    })

    if tier == EARLY_BIRD and not subscription.get("schedule"):
        create_price_transition_schedule(subscription["id"])

    db.log_action("checkout_completed", "subscription", session["subscription"],
                  f"user={user_id} tier={tier} ({outcome})")
    return outcome


def _subscription_updated(subscription: dict) -> str:
    if not db.get_subscription_by_stripe_id(subscription["id"]):
        logger.warning("Subscription %s not found locally; ignoring update", subscription["id"])
        return "not_found"

    db.update_subscription_by_stripe_id(subscription["id"], subscription_fields(subscription))
    logger.info("Subscription %s status updated to %s", subscription["id"],
                subscription.get("status"))
    return "updated"


def _subscription_deleted(subscription: dict) -> str:
    if not db.get_subscription_by_stripe_id(subscription["id"]):
        logger.warning("Subscription %s not found locally; ignoring delete", subscription["id"])
        return "not_found"

    db.update_subscription_by_stripe_id(subscription["id"], {
        "status": CANCELED,
        "cancel_at_period_end": False,
    })
    logger.info("Subscription %s marked as canceled", subscription["id"])
    return "updated"


def _invoice_subscription(invoice: dict) -> dict | None:
    subscription_id = stripe_client.invoice_subscription_id(invoice)
    if not subscription_id:
        return None
    local = db.get_subscription_by_stripe_id(subscription_id)
    if not local:
        logger.warning("Invoice %s refers to unknown subscription %s",
                       invoice.get("id"), subscription_id)
    return local


def _payment_succeeded(invoice: dict) -> str:
    local = _invoice_subscription(invoice)
    if not local:
        return "not_found"
    if local.get("status") == CANCELED:
        logger.info("Ignoring payment for canceled subscription %s",
                    local["stripe_subscription_id"])
        return "ignored"

    db.update_subscription_by_stripe_id(local["stripe_subscription_id"], {"status": ACTIVE})
    logger.info("Subscription %s marked as active after payment", local["stripe_subscription_id"])
    return "updated"


def _payment_failed(invoice: dict) -> str:
    local = _invoice_subscription(invoice)
    if not local:
        return "not_found"
    if local.get("status") == CANCELED:
        logger.info("Ignoring failed payment for canceled subscription %s",
                    local["stripe_subscription_id"])
        return "ignored"

    db.update_subscription_by_stripe_id(local["stripe_subscription_id"], {"status": PAST_DUE})
    logger.info("Subscription %s marked as past_due", local["stripe_subscription_id"])

    _notify_payment_failed(invoice, local)
    return "updated"


def _notify_payment_failed(invoice: dict, local: dict) -> None:
    """Best effort; the status change stands whether or not this sends."""
    email = invoice.get("customer_email") or db.get_user_email(local["user_id"])
    if not email:
        logger.warning("No email for user %s; payment failure notice not sent", local["user_id"])
        return

    html = render_layout("payment_failed", {
        "amount_due": format_price(invoice.get("amount_due") or local.get("monthly_price") or 0),
        "billing_portal_url": BILLING_PORTAL_URL,
    })
    try:
        send_email(email, "Action needed: your ClientKey payment failed", html)
    except EmailSendError as e:
        logger.error("Payment failure notice to %s failed: %s", email, e)


_HANDLERS = {
    "checkout.session.completed": _checkout_completed,
    "customer.subscription.updated": _subscription_updated,
    "customer.subscription.deleted": _subscription_deleted,
    "invoice.payment_succeeded": _payment_succeeded,
    "invoice.payment_failed": _payment_failed,
}
