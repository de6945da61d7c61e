"""Email tracking — open pixel, click redirects, assessment completion.

The event log is append-only. ``opened`` and ``completed`` are recorded at
most once per client; ``clicked`` is recorded every time.
"""

import base64
import logging
import re
import urllib.parse

from postgrest.exceptions import APIError

from clientkey import supabase_client as db
from clientkey.config import APP_URL, PUBLIC_URL

logger = logging.getLogger(__name__)

SENT = "sent"
OPENED = "opened"
CLICKED = "clicked"
COMPLETED = "completed"

# 1x1 transparent PNG
TRACKING_PIXEL = base64.b64decode(
    "iVBORw0KGgoAAAANSUhEUgAAAAEAAAABCAYAAAAfFcSJAAAADUlEQVR42mNk+M9QDwADhgGAWjR9awAAAABJRU5ErkJggg=="
)

_UUID_RE = re.compile(r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$", re.IGNORECASE)


def is_valid_client_id(client_id: str) -> bool:
    return bool(client_id) and bool(_UUID_RE.match(client_id))


def is_safe_redirect(url: str) -> bool:
    parsed = urllib.parse.urlparse(url or "")
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


# ---------------------------------------------------------------------------
# Links embedded in outbound email
# ---------------------------------------------------------------------------

def assessment_url(client_id: str) -> str:
    return f"{APP_URL}/assessment/{client_id}"


def pixel_url(client_id: str) -> str:
    return f"{PUBLIC_URL}/track/open?" + urllib.parse.urlencode({"client_id": client_id})


def click_url(client_id: str, destination: str) -> str:
    params = urllib.parse.urlencode({"client_id": client_id, "url": destination})
    return f"{PUBLIC_URL}/track/click?{params}"


def pixel_tag(client_id: str) -> str:
    return (f'<img src="{pixel_url(client_id)}" width="1" height="1" alt="" '
            'style="display:block;" />')


# ---------------------------------------------------------------------------
# Recording
# ---------------------------------------------------------------------------

def _record_once(client_id: str, event_type: str) -> bool:
    """Insert an event unless the client already has one. True if inserted."""
    if db.has_tracking_event(client_id, event_type):
        return False
    try:
        db.insert_tracking_event(client_id, event_type)
    except APIError as e:
        # Lost the race against a simultaneous request
        if db.is_unique_violation(e):
            return False
        raise
    logger.info("Email %s tracked for client %s", event_type, client_id)
    return True


def record_open(client_id: str) -> bool:
    if not is_valid_client_id(client_id):
        logger.info("Ignoring open with invalid client id")
        return False
    return _record_once(client_id, OPENED)


def record_click(client_id: str) -> dict:
    row = db.insert_tracking_event(client_id, CLICKED)
    logger.info("Email click tracked for client %s", client_id)
    return row


def record_completed(client_id: str) -> bool:
    return _record_once(client_id, COMPLETED)
