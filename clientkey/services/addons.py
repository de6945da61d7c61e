"""Add-on client packs — extra capacity bought on top of a paid plan."""

import logging

from clientkey import stripe_client
from clientkey import supabase_client as db
from clientkey.config import STRIPE_ADDON_PRICE_ID

logger = logging.getLogger(__name__)

CLIENTS_PER_PACK = 5


class AddonPurchaseError(ValueError):
    """The user cannot buy an add-on in their current state."""


def purchase_addon_pack(user: dict) -> int:
    """Add one client pack to the user's active subscription.

    The local pack count is set to Stripe's resulting item quantity, so a
    retried purchase never drifts from what is billed.
    """
    if not STRIPE_ADDON_PRICE_ID:
        raise RuntimeError("STRIPE_ADDON_PRICE_ID must be set")

    customer = stripe_client.find_customer_by_email(user["email"])
    if not customer:
        raise AddonPurchaseError("No Stripe customer found. Please upgrade to a paid plan first.")

    subscription = stripe_client.find_active_subscription(customer["id"])
    if not subscription:
        raise AddonPurchaseError("No active subscription found. Please upgrade to a paid plan first.")

    packs = stripe_client.add_subscription_item_unit(subscription, STRIPE_ADDON_PRICE_ID)
    db.update_subscription_for_user(user["id"], {"addon_client_packs": packs})

    logger.info("User %s now has %d add-on packs", user["id"], packs)
    db.log_action("addon_purchased", "subscription", subscription["id"],
                  f"user={user['id']} packs={packs}")
    return packs
