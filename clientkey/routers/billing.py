"""Billing router — checkout, verification, free tier, add-ons, coupons."""

import logging

import stripe
from fastapi import APIRouter, Body, Depends, HTTPException

from clientkey.security import current_user, require_admin
from clientkey.services.addons import AddonPurchaseError, CLIENTS_PER_PACK, purchase_addon_pack
from clientkey.services.checkout import create_checkout, provision_free_subscription
from clientkey.services.coupons import CouponValidationError, create_coupon, deactivate_coupon
from clientkey.services.verification import verify_subscription

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/billing")


def _processor_error(e: stripe.StripeError) -> HTTPException:
    logger.error("Stripe error: %s", e)
    return HTTPException(status_code=502, detail=e.user_message or str(e))


@router.post("/checkout")
def checkout(body: dict = Body(default={}), user: dict = Depends(current_user)):
    """Start a subscription checkout at the tier the user qualifies for."""
    coupon = body.get("coupon") if isinstance(body, dict) else None
    try:
        return create_checkout(user, coupon=coupon)
    except stripe.StripeError as e:
        raise _processor_error(e)


@router.post("/free-subscription")
def free_subscription(user: dict = Depends(current_user)):
    subscription, created = provision_free_subscription(user["id"])
    message = "Free subscription created" if created else "Subscription already exists"
    return {"message": message, "subscription": subscription}


@router.post("/verify")
def verify(user: dict = Depends(current_user)):
    try:
        return {"subscription": verify_subscription(user)}
    except stripe.StripeError as e:
        raise _processor_error(e)


@router.post("/addons")
def purchase_addon(user: dict = Depends(current_user)):
    try:
        packs = purchase_addon_pack(user)
    except AddonPurchaseError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except stripe.StripeError as e:
        raise _processor_error(e)
    return {
        "success": True,
        "addon_packs": packs,
        "message": f"Successfully added {CLIENTS_PER_PACK} client slots to your account",
    }


@router.post("/coupons")
def new_coupon(body: dict = Body(...), admin: dict = Depends(require_admin)):
    try:
        return {"coupon": create_coupon(admin["id"], body)}
    except CouponValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except stripe.StripeError as e:
        raise _processor_error(e)


@router.delete("/coupons/{coupon_id}")
def remove_coupon(coupon_id: str, admin: dict = Depends(require_admin)):
    try:
        coupon = deactivate_coupon(admin["id"], coupon_id)
    except CouponValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except stripe.StripeError as e:
        raise _processor_error(e)
    return {
        "success": True,
        "coupon": coupon,
        "message": "Coupon has been deactivated and can no longer be redeemed",
    }
