"""Caller authentication for routers — scheduler secret, user tokens, admins."""

import hmac
import logging

from fastapi import Header, HTTPException

from clientkey import config
from clientkey import supabase_client as db

logger = logging.getLogger(__name__)


def require_cron_secret(x_cron_secret: str = Header("")) -> None:
    """Reject scheduler calls without the shared CRON_SECRET.

    An unconfigured secret rejects every call with 401 and logs an error.
    """
    if not config.CRON_SECRET:
        logger.error("CRON_SECRET environment variable not configured; rejecting job call")
        raise HTTPException(status_code=401, detail="Unauthorized")
    if not x_cron_secret or not hmac.compare_digest(x_cron_secret, config.CRON_SECRET):
        logger.warning("Unauthorized job invocation — invalid or missing cron secret")
        raise HTTPException(status_code=401, detail="Unauthorized")


def current_user(authorization: str = Header("")) -> dict:
    """Resolve the Bearer access token to a user with an email address."""
    token = authorization.removeprefix("Bearer ").strip()
    user = db.get_user_from_token(token) if token else None
    if not user or not user.get("email"):
        raise HTTPException(status_code=401, detail="User not authenticated")
    return user


def require_admin(authorization: str = Header("")) -> dict:
    user = current_user(authorization)
    if not db.is_admin(user["id"]):
        raise HTTPException(status_code=403, detail="Admin access required")
    return user
