"""
APScheduler configuration.

Only the weekly payout run is scheduled. The FastAPI lifespan starts the
scheduler when PAYOUT_SCHEDULER_ENABLED is set.
"""
import logging

from apscheduler.executors.asyncio import AsyncIOExecutor
from apscheduler.jobstores.memory import MemoryJobStore
from apscheduler.schedulers.asyncio import AsyncIOScheduler

from marketplace_finance.core.config import settings

logger = logging.getLogger(__name__)

PAYOUT_JOB_ID = "scheduled_payouts"

job_defaults = {
    'coalesce': True,  # Combine missed runs into one
    'max_instances': 1,  # Never two payout runs at once
    'misfire_grace_time': 300,
}


async def run_payout_job():
    """Scheduler entry point; a failed run is logged and the next one still fires."""
    from marketplace_finance.jobs.payout_jobs import run_scheduled_payouts

    try:
        await run_scheduled_payouts()
    except Exception as e:
        logger.exception(f"Job '{PAYOUT_JOB_ID}' failed: {e}")


def build_scheduler() -> AsyncIOScheduler:
    scheduler = AsyncIOScheduler(
        jobstores={'default': MemoryJobStore()},
        executors={'default': AsyncIOExecutor()},
        job_defaults=job_defaults,
        timezone='UTC',
    )
    scheduler.add_job(
        run_payout_job,
        'cron',
        day_of_week=settings.PAYOUT_SCHEDULE_DAY_OF_WEEK,
        hour=settings.PAYOUT_SCHEDULE_HOUR,
        minute=0,
        id=PAYOUT_JOB_ID,
        name='Weekly supplier payouts',
        replace_existing=True,
    )
    logger.info(
        "Payout job scheduled: %s %02d:00 UTC",
        settings.PAYOUT_SCHEDULE_DAY_OF_WEEK,
        settings.PAYOUT_SCHEDULE_HOUR,
    )
    return scheduler
