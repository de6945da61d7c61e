"""Onboarding drip engine — advances each enrolled client through their
sequence one delay-gated step at a time.

A step only counts as done once its email was accepted by the provider;
a failed send leaves ``current_step`` untouched so the next run retries it.
"""

import html
import logging
from datetime import datetime, timezone

from clientkey import supabase_client as db
from clientkey.services.mailer import render_layout, render_placeholders, send_email

logger = logging.getLogger(__name__)

SECONDS_PER_DAY = 86400


def process_onboarding(now: datetime | None = None) -> dict:
    """Run one pass over all open progress rows.

    Returns counts: {processed, sent, not_due, completed, skipped, errors}.
    """
    now = now or datetime.now(timezone.utc)
    rows = db.get_open_onboarding_progress()
    logger.info("Found %d open onboarding progress records", len(rows))

    counts = {"processed": len(rows), "sent": 0, "not_due": 0, "completed": 0,
              "skipped": 0, "errors": 0}

    for progress in rows:
        try:
            outcome = advance(progress, now)
        except Exception:
            counts["errors"] += 1
            logger.exception("Error processing onboarding for client %s", progress.get("client_id"))
            continue
        counts[outcome] += 1

    logger.info("Onboarding emails job completed: %s", counts)
    return counts


def elapsed_days(progress: dict, now: datetime) -> int:
    """Whole days since the last email, or since the sequence started."""
    since = db.parse_ts(progress.get("last_email_sent_at")) or db.parse_ts(progress["started_at"])
    return int((now - since).total_seconds() // SECONDS_PER_DAY)


def client_placeholders(client: dict, escape: bool = True) -> dict:
    values = {
        "client_name": client.get("name") or "",
        "client_company": client.get("company") or "",
        "client_email": client.get("email") or "",
    }
    if escape:
        values = {k: html.escape(v) for k, v in values.items()}
    return values


def advance(progress: dict, now: datetime) -> str:
    """Send the next step for one progress row if it is due."""
    current_step = progress.get("current_step") or 0
    step = db.get_sequence_step(progress["sequence_id"], current_step + 1)

    if not step:
        db.complete_onboarding_progress(progress["id"])
        logger.info("Sequence completed for client %s", progress["client_id"])
        return "completed"

    days = elapsed_days(progress, now)
    if days < (step.get("delay_days") or 0):
        logger.debug("Not time yet for client %s: %d/%d days",
                     progress["client_id"], days, step.get("delay_days"))
        return "not_due"

    client = db.get_client_record(progress["client_id"])
    if not client or not client.get("email"):
        logger.warning("Client %s missing or has no email", progress["client_id"])
        return "skipped"

    sequence = db.get_onboarding_sequence(progress["sequence_id"]) or {}
    content = render_placeholders(step.get("email_content") or "", client_placeholders(client))
    body = render_layout("onboarding", {
        "sequence_name": html.escape(sequence.get("name") or "ClientKey"),
        "content": content,
    })
    subject = render_placeholders(step.get("email_subject") or "",
                                  client_placeholders(client, escape=False))

    # Raises on failure; the step is not advanced.
    send_email(client["email"], subject, body)

    if not db.advance_onboarding_progress(progress["id"], current_step, now.isoformat()):
        logger.warning("Progress %s was advanced by a concurrent run", progress["id"])

    logger.info("Onboarding step %d sent to client %s", current_step + 1, client["id"])
    return "sent"
