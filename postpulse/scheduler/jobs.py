"""PostPulse — Scheduler Jobs.

APScheduler nightly job that reconciles every monthly summary against the
raw events at the configured hour.
"""

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from sqlalchemy.exc import SQLAlchemyError

from postpulse.config import settings
from postpulse.database import get_session
from postpulse.aggregation.backfill import run_backfill
from postpulse.core.errors import BackfillError, TransientIOError
from postpulse.core.logging import get_logger

logger = get_logger("scheduler")

scheduler = AsyncIOScheduler()


async def nightly_reconcile_job():
    """Rebuild all summaries from raw events to correct any drift."""
    logger.info("Scheduled reconcile starting...")
    session_gen = get_session()
    session = next(session_gen)
    try:
        result = run_backfill(session)
        logger.info(
            f"Scheduled reconcile complete. Groups: {result.target_groups}, "
            f"skipped events: {result.skipped}"
        )
    except BackfillError as e:
        logger.error(
            f"Scheduled reconcile failed: {e}", extra={"committed": e.committed}
        )
    except (TransientIOError, SQLAlchemyError) as e:
        logger.error(f"Scheduled reconcile failed: {e}")
    finally:
        session_gen.close()


def start_scheduler():
    """Configure and start the scheduler."""
    if not settings.scheduler_enabled:
        logger.info("Scheduler disabled via config")
        return

    scheduler.add_job(
        nightly_reconcile_job,
        "cron",
        hour=settings.reconcile_hour,
        minute=0,
        id="nightly_reconcile",
        replace_existing=True,
        misfire_grace_time=3600,
        max_instances=1,
    )
    scheduler.start()
    logger.info(f"Scheduler started. Nightly reconcile at {settings.reconcile_hour}:00 UTC")


def stop_scheduler():
    """Shutdown the scheduler gracefully."""
    if scheduler.running:
        scheduler.shutdown(wait=False)
        logger.info("Scheduler stopped")
