"""Scheduler service for cron jobs using APScheduler."""
import logging
import multiprocessing
import os
from datetime import datetime, timedelta

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from app.database import session_scope
from app.services.errors import SettlementFinalizedError, SettlementInProgressError
from app.services.settlement import run_monthly_settlement

logger = logging.getLogger(__name__)

# Initialize scheduler
scheduler = AsyncIOScheduler()

# Process names allowed to run jobs: a single `uvicorn main:app` process, or
# the first worker when uvicorn runs with --workers
SCHEDULER_PROCESSES = ("MainProcess", "SpawnProcess-1")


def is_scheduler_process() -> bool:
    return multiprocessing.current_process().name in SCHEDULER_PROCESSES


async def monthly_settlement_job(container):
    """Settle the previous calendar month."""
    lock_name = "job:monthly_settlement"

    async with container.locks.hold(lock_name, timeout=container.settings.SETTLEMENT_LOCK_TIMEOUT_SECONDS) as acquired:
        if not acquired:
            logger.info(f"Skipping {lock_name} - another instance is running")
            return

        logger.info("Running monthly_settlement job")
        try:
            async with session_scope() as session:
                summary = await run_monthly_settlement(
                    container.settlements,
                    session,
                    finalize=container.settings.SETTLEMENT_AUTO_FINALIZE,
                    timeout=container.settings.SETTLEMENT_TIMEOUT_SECONDS,
                )
            logger.info(
                f"Monthly settlement for {summary.month:%Y-%m} complete: "
                f"{summary.educator_count} educators, {summary.total_earnings:.2f} distributed"
            )
        except (SettlementFinalizedError, SettlementInProgressError) as e:
            logger.info(f"Monthly settlement skipped: {e}")
        except Exception as e:
            logger.error(f"Error in monthly_settlement: {e}")


async def process_subscriptions_job(container):
    """Move lapsed subscriptions into grace period and expire elapsed grace periods."""
    lock_name = "job:process_subscriptions"

    async with container.locks.hold(lock_name, timeout=300) as acquired:
        if not acquired:
            logger.info(f"Skipping {lock_name} - another instance is running")
            return

        logger.info("Running process_subscriptions job")
        try:
            async with session_scope() as session:
                sweep = await container.subscriptions.process_expired_subscriptions(session)
                await session.commit()
            logger.info(
                f"Processed subscriptions: {sweep.renewed} renewed, "
                f"{sweep.grace_started} in grace period, {sweep.expired} expired"
            )
        except Exception as e:
            logger.error(f"Error in process_subscriptions: {e}")


def start_scheduler(container):
    """Start the APScheduler with all cron jobs."""
    current_pid = os.getpid()
    current_process_name = multiprocessing.current_process().name

    if not is_scheduler_process():
        logger.info(f"Skipping scheduler on {current_process_name} (PID: {current_pid})")
        return

    logger.info(f"Starting scheduler on {current_process_name} (PID: {current_pid})...")

    # Job 1: Settle the previous month on the 1st at 02:00 UTC
    scheduler.add_job(
        monthly_settlement_job,
        trigger=CronTrigger(day=1, hour=2, minute=0),
        args=[container],
        id="monthly_settlement",
        name="Monthly settlement",
        replace_existing=True
    )

    # Job 2: Subscription expiry sweep every hour (staggered: starts at :05)
    scheduler.add_job(
        process_subscriptions_job,
        trigger=IntervalTrigger(hours=1, start_date=datetime.utcnow() + timedelta(minutes=5)),
        args=[container],
        id="process_subscriptions",
        name="Process expired subscriptions",
        replace_existing=True
    )

    scheduler.start()
    logger.info("Scheduler started with 2 cron jobs")


def stop_scheduler():
    """Stop the APScheduler."""
    if scheduler.running:
        scheduler.shutdown()
        logger.info("Scheduler stopped")
    else:
        logger.info("Scheduler was not running")
