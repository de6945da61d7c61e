"""Renewal reminders for subscriptions whose period ends in 7 days.

No dedup record: the 24-hour window is the only guard, so this must run once
a day at a stable time.
"""

import logging
from datetime import datetime, timedelta, timezone

from clientkey import supabase_client as db
from clientkey.config import BILLING_PORTAL_URL
from clientkey.plans import format_price, tier_name
from clientkey.services.mailer import render_layout, send_email

logger = logging.getLogger(__name__)

REMINDER_LEAD = timedelta(days=7)
WINDOW = timedelta(hours=24)


def reminder_window(now: datetime) -> tuple[datetime, datetime]:
    start = now + REMINDER_LEAD
    return start, start + WINDOW


def send_expiry_reminders(now: datetime | None = None) -> dict:
    """Email owners of active subscriptions renewing in [now+7d, now+8d).

    Returns counts: {found, sent, skipped, errors}.
    """
    now = now or datetime.now(timezone.utc)
    start, end = reminder_window(now)
    logger.info("Checking for subscriptions expiring between %s and %s",
                start.isoformat(), end.isoformat())

    subscriptions = db.get_active_subscriptions_ending_between(start.isoformat(), end.isoformat())
    counts = {"found": len(subscriptions), "sent": 0, "skipped": 0, "errors": 0}

    for subscription in subscriptions:
        try:
            email = db.get_user_email(subscription["user_id"])
            if not email:
                counts["skipped"] += 1
                logger.warning("Could not find user email for subscription %s", subscription["id"])
                continue

            send_email(email, "Your ClientKey subscription is expiring soon",
                       _render(subscription))
            counts["sent"] += 1
        except Exception:
            counts["errors"] += 1
            logger.exception("Failed to send expiration email for subscription %s",
                             subscription.get("id"))

    logger.info("Sent %d expiration reminder emails", counts["sent"])
    return counts


def _render(subscription: dict) -> str:
    renewal = db.parse_ts(subscription["current_period_end"])
    return render_layout("expiry_reminder", {
        "tier_name": tier_name(subscription.get("pricing_tier", "")),
        "monthly_price": format_price(subscription.get("monthly_price") or 0),
        "renewal_date": renewal.strftime("%B %d, %Y"),
        "billing_portal_url": BILLING_PORTAL_URL,
    })
