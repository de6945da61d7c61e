"""Stripe webhook — signature-verified entry point for the reconciler."""

import asyncio
import logging

from fastapi import APIRouter, Header, HTTPException, Request

from clientkey import stripe_client
from clientkey.services.reconciler import MalformedEventError, handle_event

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks")


@router.post("/stripe")
async def stripe_webhook(
    request: Request,
    stripe_signature: str = Header(""),
):
    payload = await request.body()

    try:
        event = stripe_client.construct_event(payload, stripe_signature)
    except stripe_client.WebhookVerificationError as e:
        logger.error("Stripe webhook rejected: %s", e)
        raise HTTPException(status_code=400, detail=str(e))

    try:
        status = await asyncio.to_thread(handle_event, event)
    except MalformedEventError as e:
        raise HTTPException(status_code=400, detail=str(e))

    return {"received": True, "status": status}
