"""Coupon management for admins."""

import logging

from clientkey import stripe_client
from clientkey import supabase_client as db

logger = logging.getLogger(__name__)

DURATIONS = ("once", "repeating", "forever")
_MAX_COUPON_ID_LEN = 500


class CouponValidationError(ValueError):
    """Coupon parameters are malformed."""


def _positive_number(value, field: str) -> float | int:
    if isinstance(value, bool) or not isinstance(value, (int, float)) or value <= 0:
        raise CouponValidationError(f"{field} must be a positive number")
    return value


def build_coupon_params(body: dict) -> dict:
    """Validate a create-coupon request body into Stripe coupon params."""
    name = (body.get("name") or "").strip() if isinstance(body.get("name"), str) else ""
    if not name:
        raise CouponValidationError("Coupon name is required")

    percent_off = body.get("percent_off")
    amount_off = body.get("amount_off")
    if percent_off and amount_off:
        raise CouponValidationError("Provide either percent_off or amount_off, not both")
    if not percent_off and not amount_off:
        raise CouponValidationError("Either percent_off or amount_off must be provided")

    duration = body.get("duration") or "once"
    if duration not in DURATIONS:
        raise CouponValidationError(f"duration must be one of {', '.join(DURATIONS)}")

    params = {"name": name, "duration": duration}

    if percent_off:
        percent_off = _positive_number(percent_off, "percent_off")
        if percent_off > 100:
            raise CouponValidationError("percent_off cannot exceed 100")
        params["percent_off"] = percent_off
    else:
        amount_off = _positive_number(amount_off, "amount_off")
        if not isinstance(amount_off, int):
            raise CouponValidationError("amount_off must be a whole number of cents")
        params["amount_off"] = amount_off
        params["currency"] = (body.get("currency") or "usd").lower()

    if duration == "repeating":
        months = body.get("duration_in_months")
        if isinstance(months, bool) or not isinstance(months, int) or months <= 0:
            raise CouponValidationError("duration_in_months is required for repeating coupons")
        params["duration_in_months"] = months

    return params


def create_coupon(admin_id: str, body: dict) -> dict:
    params = build_coupon_params(body)
    coupon = stripe_client.create_coupon(params)
    logger.info("Admin %s created coupon %s", admin_id, coupon.get("id"))
    db.log_action("coupon_created", "coupon", coupon.get("id", ""), f"by {admin_id}: {params['name']}")
    return coupon


def deactivate_coupon(admin_id: str, coupon_id: str) -> dict:
    """Delete a coupon in Stripe; existing redemptions are kept, new ones refused."""
    if not isinstance(coupon_id, str) or not coupon_id.strip() or len(coupon_id) > _MAX_COUPON_ID_LEN:
        raise CouponValidationError("Invalid coupon ID")

    deleted = stripe_client.delete_coupon(coupon_id)
    logger.info("Admin %s deactivated coupon %s", admin_id, coupon_id)
    db.log_action("coupon_deactivated", "coupon", coupon_id, f"by {admin_id}")
    return deleted
