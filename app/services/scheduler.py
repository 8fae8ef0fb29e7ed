"""
APScheduler Configuration

Runs the nightly maintenance job (auto-checkout and materialized view refresh)
in the academy's local timezone.
"""
import logging
import os

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from app.services.maintenance import get_maintenance_service
from app.services.payroll_timezone import PAYROLL_TZ

logger = logging.getLogger(__name__)

ENABLE_SCHEDULER = os.getenv("ENABLE_SCHEDULER", "true").lower() in ("1", "true", "yes")
MAINTENANCE_CRON_HOUR = int(os.getenv("MAINTENANCE_CRON_HOUR", "21"))
MAINTENANCE_CRON_MINUTE = int(os.getenv("MAINTENANCE_CRON_MINUTE", "0"))

# Global scheduler instance
scheduler = AsyncIOScheduler(timezone=PAYROLL_TZ)


async def nightly_maintenance():
    """
    Nightly job: close expired attendance sessions, then refresh the MVs.

    Logs the run summary; failures are logged and retried the next night.
    """
    logger.info("Starting nightly maintenance job")

    try:
        summary = await get_maintenance_service().run_nightly_maintenance()
        auto_checkout = summary["autoCheckout"]
        logger.info(
            f"Nightly maintenance done: {auto_checkout['studentsClosed']} student and "
            f"{auto_checkout['staffClosed']} staff sessions closed "
            f"(status {auto_checkout['status']}), MVs refreshed at {summary['mvRefresh']['completedAt']}"
        )
        if not summary["success"]:
            logger.warning("Auto-checkout step reported an error, see auto_checkout_runs")

    except Exception as e:
        logger.error(f"Nightly maintenance failed: {e}", exc_info=True)


def configure_scheduler():
    scheduler.add_job(
        nightly_maintenance,
        trigger=CronTrigger(hour=MAINTENANCE_CRON_HOUR, minute=MAINTENANCE_CRON_MINUTE, timezone=PAYROLL_TZ),
        id='nightly_maintenance',
        name='Nightly Auto-Checkout and MV Refresh',
        replace_existing=True,
        coalesce=True,  # Combine missed runs into single execution
        max_instances=1
    )

    logger.info(
        f"Scheduler configured with nightly maintenance at "
        f"{MAINTENANCE_CRON_HOUR:02d}:{MAINTENANCE_CRON_MINUTE:02d}"
    )


def start_scheduler() -> bool:
    """Start the APScheduler unless disabled through ENABLE_SCHEDULER"""
    if not ENABLE_SCHEDULER:
        logger.info("Scheduler disabled (ENABLE_SCHEDULER=false)")
        return False
    configure_scheduler()
    scheduler.start()
    logger.info("Scheduler started")
    return True


def stop_scheduler():
    """Stop the APScheduler"""
    if scheduler.running:
        scheduler.shutdown()
        logger.info("Scheduler stopped")
