"""Tracking endpoints — public, no auth; reached from rendered email.

The pixel must always come back as an image, whatever happens internally.
"""

import logging

from fastapi import APIRouter, HTTPException, Query
from fastapi.responses import RedirectResponse, Response

from clientkey.services import tracking

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/track")

_NO_CACHE = {"Cache-Control": "no-cache, no-store, must-revalidate"}


@router.get("/open")
def track_open(client_id: str = Query("")):
    try:
        tracking.record_open(client_id)
    except Exception:
        logger.exception("Error tracking email open for client %s", client_id)
    return Response(content=tracking.TRACKING_PIXEL, media_type="image/png", headers=_NO_CACHE)


@router.get("/click")
def track_click(client_id: str = Query(""), url: str = Query("")):
    if not client_id or not url:
        raise HTTPException(status_code=400, detail="Missing parameters")
    if not tracking.is_safe_redirect(url):
        raise HTTPException(status_code=400, detail="Invalid destination URL")

    if tracking.is_valid_client_id(client_id):
        try:
            tracking.record_click(client_id)
        except Exception:
            logger.exception("Error tracking email click for client %s", client_id)

    return RedirectResponse(url, status_code=302)


@router.post("/complete")
def track_complete(client_id: str = Query("")):
    if not tracking.is_valid_client_id(client_id):
        raise HTTPException(status_code=400, detail="Invalid client ID")
    recorded = tracking.record_completed(client_id)
    return {"status": "recorded" if recorded else "already_recorded"}
