"""Supabase connection and query helpers for billing and lifecycle tables."""

import logging
import threading
from datetime import datetime, timezone

from postgrest.exceptions import APIError
from supabase import AuthError, Client, create_client

from clientkey.config import SUPABASE_SERVICE_KEY, SUPABASE_URL

logger = logging.getLogger(__name__)

_client: Client | None = None
_client_lock = threading.Lock()

# Postgres unique_violation
UNIQUE_VIOLATION = "23505"

# Rows requested per page; PostgREST may still cap below this
PAGE_SIZE = 1000
# Client ids per `in` filter, keeping the request URL short
CLIENT_ID_CHUNK = 100


def get_client() -> Client:
    """Return the Supabase client singleton (thread-safe)."""
    global _client
    if _client is None:
        with _client_lock:
            if _client is None:
                if not SUPABASE_URL or not SUPABASE_SERVICE_KEY:
                    raise RuntimeError("SUPABASE_URL and SUPABASE_SERVICE_KEY must be set")
                _client = create_client(SUPABASE_URL, SUPABASE_SERVICE_KEY)
    return _client


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def parse_ts(value: str | None) -> datetime | None:
    """Parse a timestamptz column value into an aware datetime."""
    if not value:
        return None
    ts = datetime.fromisoformat(value.replace("Z", "+00:00"))
    return ts if ts.tzinfo else ts.replace(tzinfo=timezone.utc)


# ---------------------------------------------------------------------------
# Generic helpers
# ---------------------------------------------------------------------------

def _table(name: str):
    """Return a table query builder."""
    return get_client().table(name)


def _rpc(name: str, params: dict | None = None):
    """Return a stored-procedure call builder."""
    return get_client().rpc(name, params or {})


def insert(table: str, data: dict) -> dict:
    """Insert a row and return it."""
    result = _table(table).insert(data).execute()
    return result.data[0] if result.data else {}


def upsert(table: str, data: dict, on_conflict: str = "",
           ignore_duplicates: bool = False) -> dict:
    """Upsert a row and return it (empty dict when a duplicate was ignored)."""
    if on_conflict:
        q = _table(table).upsert(data, on_conflict=on_conflict,
                                 ignore_duplicates=ignore_duplicates)
    else:
        q = _table(table).upsert(data, ignore_duplicates=ignore_duplicates)
    result = q.execute()
    return result.data[0] if result.data else {}


def update(table: str, data: dict, match: dict) -> dict:
    """Update rows matching conditions. Returns the first updated row or {}."""
    q = _table(table).update(data)
    for k, v in match.items():
        q = q.eq(k, v)
    result = q.execute()
    return result.data[0] if result.data else {}


def select(table: str, columns: str = "*", match: dict | None = None,
           order: str | None = None, order_desc: bool = False,
           limit: int | None = None) -> list[dict]:
    """Select rows with optional filtering, ordering, and limit."""
    q = _table(table).select(columns)
    if match:
        for k, v in match.items():
            q = q.eq(k, v)
    if order:
        q = q.order(order, desc=order_desc)
    if limit:
        q = q.limit(limit)
    result = q.execute()
    return result.data or []


def select_one(table: str, columns: str = "*", match: dict | None = None) -> dict | None:
    """Select a single row."""
    rows = select(table, columns, match, limit=1)
    return rows[0] if rows else None


def is_unique_violation(exc: APIError) -> bool:
    return getattr(exc, "code", None) == UNIQUE_VIOLATION


# ---------------------------------------------------------------------------
# Users (Supabase auth)
# ---------------------------------------------------------------------------

def get_user_from_token(token: str) -> dict | None:
    """Resolve a user access token to {id, email}. None if the token is invalid."""
    if not token:
        return None
    try:
        resp = get_client().auth.get_user(token)
    except AuthError as e:
        logger.warning("Rejected access token: %s", e)
        return None
    user = resp.user if resp else None
    if not user:
        return None
    return {"id": user.id, "email": user.email}


def get_user_email(user_id: str) -> str | None:
    """Look up a user's account email through the auth admin API."""
    try:
        resp = get_client().auth.admin.get_user_by_id(user_id)
    except AuthError as e:
        logger.warning("Could not load user %s: %s", user_id, e)
        return None
    user = resp.user if resp else None
    return user.email if user and user.email else None


def is_admin(user_id: str) -> bool:
    """True if the user holds the admin role."""
    return select_one("user_roles", columns="role",
                      match={"user_id": user_id, "role": "admin"}) is not None


# ---------------------------------------------------------------------------
# Subscriptions
# ---------------------------------------------------------------------------

def get_subscription_for_user(user_id: str) -> dict | None:
    return select_one("subscriptions", match={"user_id": user_id})


def get_subscription_by_stripe_id(stripe_subscription_id: str) -> dict | None:
    return select_one("subscriptions", match={"stripe_subscription_id": stripe_subscription_id})


def insert_subscription(data: dict) -> dict:
    return insert("subscriptions", data)


def update_subscription_for_user(user_id: str, data: dict) -> dict:
    data["updated_at"] = now_iso()
    return update("subscriptions", data, {"user_id": user_id})


def swap_subscription_for_user(user_id: str, previous: dict, data: dict) -> bool:
    """Update the user's row only if its tier and Stripe id still match ``previous``.

    Compare-and-set: of two concurrent writers seeing the same row, only one
    gets True.
    """
    data["updated_at"] = now_iso()
    q = _table("subscriptions").update(data).eq("user_id", user_id)
    for col in ("pricing_tier", "stripe_subscription_id"):
        value = previous.get(col)
        q = q.is_(col, "null") if value is None else q.eq(col, value)
    result = q.execute()
    return bool(result.data)


def update_subscription_by_stripe_id(stripe_subscription_id: str, data: dict) -> dict:
    data["updated_at"] = now_iso()
    return update("subscriptions", data, {"stripe_subscription_id": stripe_subscription_id})


def get_active_subscriptions_ending_between(start: str, end: str) -> list[dict]:
    """Active subscriptions whose period ends in [start, end)."""
    q = _table("subscriptions").select("*")
    q = q.eq("status", "active").gte("current_period_end", start).lt("current_period_end", end)
    result = q.execute()
    return result.data or []


# ---------------------------------------------------------------------------
# Promotional counter
# ---------------------------------------------------------------------------

def get_signup_counter() -> dict | None:
    """The singleton early bird counter row."""
    return select_one("signup_counter", columns="early_bird_count, early_bird_limit")


def increment_early_bird_counter() -> int | None:
    """Atomically take one early bird slot.

    Runs a single conditional UPDATE in the database. Returns the new count,
    or None when the limit was already reached.
    """
    result = _rpc("increment_early_bird_counter").execute()
    data = result.data
    if isinstance(data, list):
        data = data[0] if data else None
    return data if isinstance(data, int) else None


# ---------------------------------------------------------------------------
# Price-increase notices
# ---------------------------------------------------------------------------

def get_price_increase_notice(user_id: str, subscription_id: str) -> dict | None:
    return select_one("early_bird_notifications",
                      match={"user_id": user_id, "subscription_id": subscription_id})


def record_price_increase_notice(user_id: str, subscription_id: str,
                                 price_increase_date: str) -> dict:
    """Write the dedup marker; a concurrent duplicate is ignored."""
    return upsert("early_bird_notifications", {
        "user_id": user_id,
        "subscription_id": subscription_id,
        "price_increase_date": price_increase_date,
        "notification_sent_at": now_iso(),
    }, on_conflict="user_id,subscription_id", ignore_duplicates=True)


# ---------------------------------------------------------------------------
# Clients + email tracking
# ---------------------------------------------------------------------------

def get_client_record(client_id: str) -> dict | None:
    return select_one("clients", match={"id": client_id})


def get_clients_pending_assessment() -> list[dict]:
    """Clients without a DISC result."""
    q = _table("clients").select("id, user_id, name, email").is_("disc_type", "null")
    result = q.execute()
    return result.data or []


def insert_tracking_event(client_id: str, event_type: str, metadata: dict | None = None) -> dict:
    row = {"client_id": client_id, "event_type": event_type}
    if metadata is not None:
        row["metadata"] = metadata
    return insert("email_tracking", row)


def has_tracking_event(client_id: str, event_type: str) -> bool:
    return select_one("email_tracking", columns="id",
                      match={"client_id": client_id, "event_type": event_type}) is not None


def get_tracking_events(client_ids: list[str]) -> list[dict]:
    """Tracking history for the given clients, oldest first.

    Pages with ``range`` until an empty page, so a server-side row cap
    cannot drop the newest events.
    """
    events = []
    for i in range(0, len(client_ids), CLIENT_ID_CHUNK):
        chunk = client_ids[i:i + CLIENT_ID_CHUNK]
        offset = 0
        while True:
            q = _table("email_tracking").select("*").in_("client_id", chunk)
            q = q.order("created_at").order("id").range(offset, offset + PAGE_SIZE - 1)
            rows = q.execute().data or []
            if not rows:
                break
            events.extend(rows)
            offset += len(rows)
    events.sort(key=lambda e: e.get("created_at") or "")
    return events


def get_email_template(user_id: str, template_type: str) -> dict | None:
    return select_one("email_templates",
                      match={"user_id": user_id, "template_type": template_type})


def get_reminder_settings() -> dict | None:
    return select_one("reminder_settings")


# ---------------------------------------------------------------------------
# Onboarding sequences
# ---------------------------------------------------------------------------

def get_open_onboarding_progress() -> list[dict]:
    """Progress rows that are neither paused nor completed."""
    q = _table("client_onboarding_progress").select("*")
    q = q.is_("completed_at", "null").eq("is_paused", False)
    result = q.execute()
    return result.data or []


def get_onboarding_sequence(sequence_id: str) -> dict | None:
    return select_one("onboarding_sequences", match={"id": sequence_id})


def get_sequence_step(sequence_id: str, step_order: int) -> dict | None:
    return select_one("onboarding_sequence_steps",
                      match={"sequence_id": sequence_id, "step_order": step_order})


def advance_onboarding_progress(progress_id: str, from_step: int, sent_at: str) -> bool:
    """Move a progress row from ``from_step`` to the next step.

    Conditional on the row still being at ``from_step`` so overlapping runs
    cannot advance it twice.
    """
    row = update("client_onboarding_progress", {
        "current_step": from_step + 1,
        "last_email_sent_at": sent_at,
        "updated_at": now_iso(),
    }, {"id": progress_id, "current_step": from_step})
    return bool(row)


def complete_onboarding_progress(progress_id: str) -> dict:
    return update("client_onboarding_progress", {
        "completed_at": now_iso(),
        "updated_at": now_iso(),
    }, {"id": progress_id})


# ---------------------------------------------------------------------------
# Audit Log
# ---------------------------------------------------------------------------

def log_action(action: str, entity_type: str = "", entity_id: str = "", details: str = "") -> dict:
    """Log an operator-relevant action."""
    return insert("audit_log", {
        "action": action,
        "entity_type": entity_type,
        "entity_id": entity_id,
        "details": details,
    })
