"""Checkout — early bird vs regular tier assignment, Stripe checkout sessions,
the early bird → regular price schedule, and free-tier provisioning."""

import logging
from datetime import datetime, timedelta, timezone

from postgrest.exceptions import APIError

from clientkey import stripe_client
from clientkey import supabase_client as db
from clientkey.config import APP_URL
from clientkey.plans import (
    ACTIVE, EARLY_BIRD, EARLY_BIRD_PHASE_DAYS, FREE, REGULAR, TIERS,
)

logger = logging.getLogger(__name__)


def assign_tier() -> str:
    """Early bird while the promotional counter is under its limit, else regular."""
    counter = db.get_signup_counter()
    if counter and counter["early_bird_count"] < counter["early_bird_limit"]:
        return EARLY_BIRD
    return REGULAR


def create_checkout(user: dict, coupon: str | None = None, now: datetime | None = None) -> dict:
    """Create a Stripe checkout session for the user at the tier they qualify for.

    Nothing is written locally; the webhook reconciler records the
    subscription once Stripe reports the checkout as completed.
    """
    now = now or datetime.now(timezone.utc)
    tier = assign_tier()
    price_id = TIERS[tier]["price_id"]
    logger.info("Checkout for user %s: tier=%s price=%s", user["id"], tier, price_id)

    metadata = {"user_id": user["id"], "pricing_tier": tier}
    subscription_metadata = dict(metadata)
    if tier == EARLY_BIRD:
        expires = now + timedelta(days=EARLY_BIRD_PHASE_DAYS)
        subscription_metadata["early_bird_expires_at"] = expires.isoformat()

    params = {
        "mode": "subscription",
        "line_items": [{"price": price_id, "quantity": 1}],
        "success_url": f"{APP_URL}/dashboard?success=true",
        "cancel_url": f"{APP_URL}/dashboard?canceled=true",
        "metadata": metadata,
        "subscription_data": {"metadata": subscription_metadata},
    }

    customer = stripe_client.find_customer_by_email(user["email"])
    if customer:
        params["customer"] = customer["id"]
    else:
        params["customer_email"] = user["email"]

    if coupon:
        params["discounts"] = [{"coupon": coupon}]

    session = stripe_client.create_checkout_session(params)
    logger.info("Checkout session created: %s", session.get("id"))

    # Sessions normally get their subscription on completion; the reconciler
    # attaches the schedule then. Handle the case where it already exists.
    if tier == EARLY_BIRD and session.get("subscription"):
        create_price_transition_schedule(session["subscription"], now)

    return {"url": session.get("url"), "tier": tier, "session_id": session.get("id")}


def price_transition_phases(now: datetime) -> list[dict]:
    """Early bird price for a year, then regular price with no end date."""
    promo_end = int((now + timedelta(days=EARLY_BIRD_PHASE_DAYS)).timestamp())
    return [
        {
            "items": [{"price": TIERS[EARLY_BIRD]["price_id"], "quantity": 1}],
            "end_date": promo_end,
        },
        {
            "items": [{"price": TIERS[REGULAR]["price_id"], "quantity": 1}],
        },
    ]


def create_price_transition_schedule(subscription_id: str, now: datetime | None = None) -> dict:
    """Attach the two-phase early bird schedule to a subscription."""
    now = now or datetime.now(timezone.utc)
    schedule = stripe_client.create_subscription_schedule(
        subscription_id, price_transition_phases(now),
    )
    logger.info(
        "Subscription schedule %s created for %s — regular price after %d days",
        schedule.get("id"), subscription_id, EARLY_BIRD_PHASE_DAYS,
    )
    db.log_action("price_schedule_created", "subscription", subscription_id,
                  f"Schedule {schedule.get('id')}")
    return schedule


def provision_free_subscription(user_id: str) -> tuple[dict, bool]:
    """Give a user the free tier if they have no subscription yet.

    Returns (subscription, created).
    """
    existing = db.get_subscription_for_user(user_id)
    if existing:
        return existing, False

    try:
        subscription = db.insert_subscription({
            "user_id": user_id,
            "pricing_tier": FREE,
            "monthly_price": TIERS[FREE]["monthly_price"],
            "status": ACTIVE,
        })
    except APIError as e:
        if not db.is_unique_violation(e):
            raise
        # Created concurrently by another request
        return db.get_subscription_for_user(user_id) or {}, False

    logger.info("Free subscription created for user %s", user_id)
    return subscription, True
