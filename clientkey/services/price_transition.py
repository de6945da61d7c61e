"""Price-increase notices — warn early bird customers 30 days before their
schedule moves them to the regular price. Sent once per (user, subscription)."""

import logging
from datetime import datetime, timedelta, timezone

from clientkey import stripe_client
from clientkey import supabase_client as db
from clientkey.config import BILLING_PORTAL_URL
from clientkey.plans import EARLY_BIRD, REGULAR, format_price, monthly_price
from clientkey.services.mailer import render_layout, send_email

logger = logging.getLogger(__name__)

NOTICE_LEAD = timedelta(days=30)
WINDOW_HALF_WIDTH = timedelta(hours=12)


def notice_window(now: datetime) -> tuple[datetime, datetime]:
    """24-hour slot centered 30 days out."""
    center = now + NOTICE_LEAD
    return center - WINDOW_HALF_WIDTH, center + WINDOW_HALF_WIDTH


def transition_time(schedule: dict) -> datetime | None:
    """When the schedule's second phase starts."""
    phases = schedule.get("phases") or []
    if len(phases) < 2 or not phases[1].get("start_date"):
        return None
    return datetime.fromtimestamp(phases[1]["start_date"], tz=timezone.utc)


def send_price_increase_notices(now: datetime | None = None) -> dict:
    """Scan all open subscription schedules and notify those transitioning soon.

    Returns counts: {checked, due, sent, already_sent, skipped, errors}.
    """
    now = now or datetime.now(timezone.utc)
    start, end = notice_window(now)
    logger.info("Checking schedules transitioning between %s and %s",
                start.isoformat(), end.isoformat())

    counts = {"checked": 0, "due": 0, "sent": 0, "already_sent": 0, "skipped": 0, "errors": 0}

    for schedule in stripe_client.iter_subscription_schedules():
        counts["checked"] += 1
        transition = transition_time(schedule)
        if transition is None or not (start <= transition <= end):
            continue

        counts["due"] += 1
        try:
            outcome = _notify_schedule(schedule, transition)
        except Exception:
            counts["errors"] += 1
            logger.exception("Price increase notice failed for schedule %s", schedule.get("id"))
            continue
        counts[outcome] += 1

    logger.info("Price increase notices: %s", counts)
    return counts


def _notify_schedule(schedule: dict, transition: datetime) -> str:
    subscription_id = schedule.get("subscription")
    if isinstance(subscription_id, dict):
        subscription_id = subscription_id.get("id")
    if not subscription_id:
        logger.warning("Schedule %s has no subscription", schedule.get("id"))
        return "skipped"

    subscription = stripe_client.retrieve_subscription(subscription_id)
    user_id = (subscription.get("metadata") or {}).get("user_id")
    if not user_id:
        logger.warning("Subscription %s has no user_id metadata", subscription_id)
        return "skipped"

    if db.get_price_increase_notice(user_id, subscription_id):
        logger.info("Notice already sent for user %s / %s", user_id, subscription_id)
        return "already_sent"

    customer_id = subscription.get("customer")
    if isinstance(customer_id, dict):
        customer_id = customer_id.get("id")
    customer = stripe_client.retrieve_customer(customer_id) if customer_id else {}
    email = customer.get("email")
    if not email:
        logger.warning("No email for customer %s (user %s)", customer_id, user_id)
        return "skipped"

    html = render_layout("price_increase", {
        "current_price": format_price(monthly_price(EARLY_BIRD)),
        "new_price": format_price(monthly_price(REGULAR)),
        "transition_date": transition.strftime("%B %d, %Y"),
        "billing_portal_url": BILLING_PORTAL_URL,
    })
    send_email(email, "Your ClientKey Early Bird Pricing Ends Soon", html)

    db.record_price_increase_notice(user_id, subscription_id, transition.isoformat())
    logger.info("Price increase notice sent to %s (user %s, transition %s)",
                email, user_id, transition.isoformat())
    return "sent"
