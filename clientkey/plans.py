"""Pricing tiers and subscription states."""

from clientkey.config import (
    EARLY_BIRD_PRICE_CENTS, REGULAR_PRICE_CENTS,
    STRIPE_EARLY_BIRD_PRICE_ID, STRIPE_REGULAR_PRICE_ID,
)

FREE = "free"
EARLY_BIRD = "early_bird"
REGULAR = "regular"

TIERS = {
    FREE: {"name": "Free", "monthly_price": 0, "price_id": None},
    EARLY_BIRD: {
        "name": "Early Bird",
        "monthly_price": EARLY_BIRD_PRICE_CENTS,
        "price_id": STRIPE_EARLY_BIRD_PRICE_ID,
    },
    REGULAR: {
        "name": "Pro",
        "monthly_price": REGULAR_PRICE_CENTS,
        "price_id": STRIPE_REGULAR_PRICE_ID,
    },
}

# Subscription statuses mirrored from Stripe
ACTIVE = "active"
PAST_DUE = "past_due"
CANCELED = "canceled"

# Length of the promotional phase before the switch to regular pricing
EARLY_BIRD_PHASE_DAYS = 365


def monthly_price(tier: str) -> int:
    """Monthly price in cents for a tier (regular for unknown tiers)."""
    return TIERS.get(tier, TIERS[REGULAR])["monthly_price"]


def tier_name(tier: str) -> str:
    return TIERS[tier]["name"] if tier in TIERS else tier


def tier_for_price(price_id: str | None) -> str:
    """Derive the tier from a Stripe price id."""
    if price_id and price_id == TIERS[EARLY_BIRD]["price_id"]:
        return EARLY_BIRD
    return REGULAR


def format_price(cents: int) -> str:
    return f"${cents / 100:.2f}"
