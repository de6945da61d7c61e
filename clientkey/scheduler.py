"""APScheduler — in-process alternative to an external cron hitting /jobs/*.

Each job is a blocking pass over the datastore, so it runs in a worker
thread. ``max_instances=1`` keeps runs of the same job from overlapping.
"""

import asyncio
import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from clientkey.services.assessments import send_assessment_reminders
from clientkey.services.expiry_reminders import send_expiry_reminders
from clientkey.services.onboarding import process_onboarding
from clientkey.services.price_transition import send_price_increase_notices

logger = logging.getLogger(__name__)

scheduler = AsyncIOScheduler(
    timezone="UTC",
    job_defaults={"coalesce": True, "max_instances": 1},
)


async def _run(name: str, job) -> None:
    try:
        result = await asyncio.to_thread(job)
        logger.info("%s: %s", name, result)
    except Exception:
        logger.exception("%s failed", name)


@scheduler.scheduled_job("cron", hour=9, minute=0, id="check_expiring_subscriptions")
async def check_expiring_subscriptions():
    await _run("Expiry reminders", send_expiry_reminders)


@scheduler.scheduled_job("cron", hour=10, minute=0, id="notify_price_increase")
async def notify_price_increase():
    await _run("Price increase notices", send_price_increase_notices)


@scheduler.scheduled_job("cron", minute=0, id="send_onboarding_emails")
async def send_onboarding_emails():
    await _run("Onboarding emails", process_onboarding)


@scheduler.scheduled_job("cron", hour=14, minute=0, id="send_reminder_emails")
async def send_reminder_emails():
    await _run("Assessment reminders", send_assessment_reminders)
