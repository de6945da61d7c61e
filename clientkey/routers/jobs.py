"""Scheduled job endpoints — invoked by an external cron with X-Cron-Secret."""

from fastapi import APIRouter, Depends

from clientkey.security import require_cron_secret
from clientkey.services.assessments import send_assessment_reminders
from clientkey.services.expiry_reminders import send_expiry_reminders
from clientkey.services.onboarding import process_onboarding
from clientkey.services.price_transition import send_price_increase_notices

router = APIRouter(prefix="/jobs", dependencies=[Depends(require_cron_secret)])


@router.post("/check-expiring-subscriptions")
def check_expiring_subscriptions():
    return send_expiry_reminders()


@router.post("/notify-price-increase")
def notify_price_increase():
    return send_price_increase_notices()


@router.post("/send-onboarding-emails")
def send_onboarding_emails():
    return process_onboarding()


@router.post("/send-reminder-emails")
def send_reminder_emails():
    return send_assessment_reminders()
