"""Assessment invites and reminders.

Reminder eligibility is recomputed from each client's full tracking history
on every run, so re-running the job the same day sends nothing new.
"""

import html
import logging
import re
from collections import defaultdict
from datetime import datetime, timedelta, timezone

from clientkey import supabase_client as db
from clientkey.services import tracking
from clientkey.services.mailer import default_sender, render_layout, render_placeholders, send_email

logger = logging.getLogger(__name__)

DEFAULT_REMINDER_DELAY_DAYS = 3
DEFAULT_MAX_REMINDERS = 3
DEFAULT_PRIMARY_COLOR = "#4F46E5"

DEFAULT_SUBJECTS = {
    "invitation": "You're invited to take a DISC assessment",
    "reminder": "Reminder: your DISC assessment is waiting",
}

_EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
_MAX_NAME_LEN = 100


class InviteValidationError(ValueError):
    """Invite request is malformed."""


# ---------------------------------------------------------------------------
# Rendering
# ---------------------------------------------------------------------------

def render_assessment_email(owner_id: str, template_type: str, client_id: str,
                            client_name: str) -> tuple[str, str, str]:
    """Build (sender, subject, html) from the owner's template or the default."""
    template = db.get_email_template(owner_id, template_type) if owner_id else None
    color = (template or {}).get("primary_color") or DEFAULT_PRIMARY_COLOR
    values = {
        "CLIENT_NAME": html.escape(client_name),
        "ASSESSMENT_LINK": tracking.click_url(client_id, tracking.assessment_url(client_id)),
        "PRIMARY_COLOR": color,
    }

    if template:
        body = render_placeholders(template["content"], values)
        subject = template.get("subject") or DEFAULT_SUBJECTS[template_type]
        sender = default_sender(template.get("company_name"))
    else:
        body = render_layout(f"assessment_{template_type}", values)
        subject = DEFAULT_SUBJECTS[template_type]
        sender = default_sender()

    return sender, subject, body + tracking.pixel_tag(client_id)


# ---------------------------------------------------------------------------
# Invites
# ---------------------------------------------------------------------------

def validate_invite(client_id: str, client_name: str, client_email: str) -> None:
    if not tracking.is_valid_client_id(client_id or ""):
        raise InviteValidationError("Invalid client ID format")
    if not client_name or len(client_name) > _MAX_NAME_LEN:
        raise InviteValidationError("Invalid client name")
    if not client_email or not _EMAIL_RE.match(client_email):
        raise InviteValidationError("Invalid email address")


def send_invite(owner: dict, client_id: str, client_name: str, client_email: str) -> str:
    """Email a client their assessment link and log the initial ``sent`` event."""
    validate_invite(client_id, client_name, client_email)

    client = db.get_client_record(client_id)
    if not client or client.get("user_id") != owner["id"]:
        raise InviteValidationError("Unknown client")

    sender, subject, body = render_assessment_email(owner["id"], "invitation",
                                                    client_id, client_name)
    resend_id = send_email(client_email, subject, body, sender=sender)
    db.insert_tracking_event(client_id, tracking.SENT)

    logger.info("Assessment invite sent to client %s", client_id)
    return resend_id


# ---------------------------------------------------------------------------
# Reminders
# ---------------------------------------------------------------------------

def reminder_settings() -> tuple[int, int]:
    """(delay_days, max_reminders)."""
    settings = db.get_reminder_settings() or {}
    delay = settings.get("reminder_delay_days")
    maximum = settings.get("max_reminders")
    return (
        DEFAULT_REMINDER_DELAY_DAYS if delay is None else delay,
        DEFAULT_MAX_REMINDERS if maximum is None else maximum,
    )


def is_reminder(event: dict) -> bool:
    return event.get("event_type") == tracking.SENT and \
        (event.get("metadata") or {}).get("is_reminder") is True


def reminder_eligibility(events: list[dict], now: datetime, delay_days: int,
                         max_reminders: int) -> tuple[bool, str]:
    """Decide whether a client is due a reminder. Returns (eligible, reason)."""
    by_type = defaultdict(list)
    for e in events:
        by_type[e.get("event_type")].append(e)

    if not by_type[tracking.SENT]:
        return False, "not_invited"
    if not by_type[tracking.OPENED]:
        return False, "never_opened"
    if by_type[tracking.COMPLETED]:
        return False, "completed"

    reminders = [e for e in events if is_reminder(e)]
    if len(reminders) >= max_reminders:
        return False, "max_reminders"

    actions = [db.parse_ts(e["created_at"]) for e in by_type[tracking.OPENED][:1] + reminders]
    last_action = max(actions)
    if last_action > now - timedelta(days=delay_days):
        return False, "too_soon"

    today = now.astimezone(timezone.utc).date()
    if any(db.parse_ts(e["created_at"]).astimezone(timezone.utc).date() == today
           for e in reminders):
        return False, "sent_today"

    return True, "eligible"


def send_assessment_reminders(now: datetime | None = None) -> dict:
    """Remind clients who opened their invite but have not finished.

    Returns counts: {checked, eligible, sent, errors}.
    """
    now = now or datetime.now(timezone.utc)
    delay_days, max_reminders = reminder_settings()
    logger.info("Using settings: delay=%d days, max=%d reminders", delay_days, max_reminders)

    clients = db.get_clients_pending_assessment()
    counts = {"checked": len(clients), "eligible": 0, "sent": 0, "errors": 0}
    if not clients:
        logger.info("No clients pending assessment")
        return counts

    history = defaultdict(list)
    for event in db.get_tracking_events([c["id"] for c in clients]):
        history[event["client_id"]].append(event)

    for client in clients:
        events = history.get(client["id"], [])
        eligible, reason = reminder_eligibility(events, now, delay_days, max_reminders)
        if not eligible:
            logger.debug("Client %s not eligible for reminder: %s", client["id"], reason)
            continue

        counts["eligible"] += 1
        try:
            _send_reminder(client, len([e for e in events if is_reminder(e)]) + 1)
            counts["sent"] += 1
        except Exception:
            counts["errors"] += 1
            logger.exception("Failed to send reminder to client %s", client["id"])

    logger.info("Reminder check complete: %s", counts)
    return counts


def _send_reminder(client: dict, reminder_number: int) -> None:
    sender, subject, body = render_assessment_email(
        client.get("user_id"), "reminder", client["id"], client.get("name") or "",
    )
    send_email(client["email"], subject, body, sender=sender)
    db.insert_tracking_event(client["id"], tracking.SENT, {
        "is_reminder": True,
        "reminder_number": reminder_number,
    })
    logger.info("Reminder %d sent to client %s", reminder_number, client["id"])
