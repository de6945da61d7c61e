"""Outbound email — Resend delivery and {{placeholder}} rendering."""

import logging

import resend

from clientkey.config import (
    EMAIL_TEMPLATES_DIR, RESEND_API_KEY, RESEND_FROM_EMAIL, RESEND_FROM_NAME,
)

logger = logging.getLogger(__name__)


class EmailSendError(Exception):
    """The email provider did not accept a message."""


def default_sender(name: str | None = None) -> str:
    return f"{name or RESEND_FROM_NAME} <{RESEND_FROM_EMAIL}>"


def send_email(to_email: str, subject: str, html: str, sender: str | None = None) -> str:
    """Send an email via Resend and return the provider message id.

    Raises EmailSendError on any provider failure.
    """
    if not RESEND_API_KEY:
        raise EmailSendError("RESEND_API_KEY not set — cannot send")
    if not to_email:
        raise EmailSendError("No recipient address")

    if not resend.api_key:
        resend.api_key = RESEND_API_KEY

    try:
        result = resend.Emails.send({
            "from": sender or default_sender(),
            "to": [to_email],
            "subject": subject,
            "html": html,
        })
    except Exception as e:
        raise EmailSendError(f"Resend error sending to {to_email}: {e}") from e

    resend_id = result.get("id", "") if isinstance(result, dict) else getattr(result, "id", "")
    logger.info("Email sent to %s (%s): %s", to_email, resend_id, subject)
    return resend_id


def render_placeholders(text: str, values: dict) -> str:
    """Replace {{key}} tokens with values. Literal replacement, no template engine."""
    for key, val in values.items():
        text = text.replace("{{" + key + "}}", "" if val is None else str(val))
    return text


def render_layout(template_name: str, values: dict) -> str:
    """Render one of the bundled HTML email layouts."""
    template_path = EMAIL_TEMPLATES_DIR / f"{template_name}.html"

    if not template_path.exists():
        raise FileNotFoundError(f"Email template '{template_name}' not found at {template_path}")

    return render_placeholders(template_path.read_text(), values)
