"""Subscription verification — pull the caller's current state from Stripe
and write it to the local record."""

import logging

from clientkey import stripe_client
from clientkey.plans import monthly_price, tier_for_price
from clientkey.services.reconciler import store_subscription, subscription_fields

logger = logging.getLogger(__name__)


def verify_subscription(user: dict) -> dict | None:
    """Sync the user's active Stripe subscription into the datastore.

    Returns a summary {tier, status, current_period_end}, or None when the
    user has no Stripe customer or no active subscription.
    """
    customer = stripe_client.find_customer_by_email(user["email"])
    if not customer:
        logger.info("No Stripe customer for user %s", user["id"])
        return None

    subscription = stripe_client.find_active_subscription(customer["id"])
    if not subscription:
        logger.info("No active subscription for customer %s", customer["id"])
        return None

    tier = tier_for_price(stripe_client.subscription_price_id(subscription))
    fields = subscription_fields(subscription)

    outcome = store_subscription(user["id"], {
        "stripe_customer_id": customer["id"],
        "stripe_subscription_id": subscription["id"],
        "pricing_tier": tier,
        "monthly_price": monthly_price(tier),
        **fields,
    })
    logger.info("Verified subscription %s for user %s (%s)", subscription["id"], user["id"], outcome)

    return {
        "tier": tier,
        "status": fields["status"],
        "current_period_end": fields["current_period_end"],
    }
