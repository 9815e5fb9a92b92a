"""
Scheduler for automated marketplace order syncs

Uses APScheduler to import new orders on a fixed interval.
"""
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from shopsync.config import get_settings
from shopsync.models.base import SessionLocal
from shopsync.services.runtime import get_runtime
from shopsync.utils.logger import log

settings = get_settings()
scheduler = AsyncIOScheduler()


async def sync_marketplaces():
    """Import orders from every configured marketplace"""
    db = SessionLocal()
    try:
        report = await get_runtime().orchestrator(db).sync()
        if report.failed_platforms:
            log.warning(f"Scheduled sync: {', '.join(report.failed_platforms)} failed")
        log.info(f"Scheduled sync completed: {report.orders_new} new orders")
    except Exception as e:
        log.error(f"Scheduled sync error: {str(e)}")
    finally:
        db.close()


def setup_scheduler():
    """
    Configure scheduled jobs.

    Marketplace orders: every ``sync_interval_minutes`` (default hourly),
    never more than one run at a time.
    """
    scheduler.add_job(
        sync_marketplaces,
        trigger=IntervalTrigger(minutes=settings.sync_interval_minutes),
        id='marketplace_sync',
        name='Marketplace Order Sync',
        replace_existing=True,
        max_instances=1
    )
    log.info(f"Scheduled marketplace sync every {settings.sync_interval_minutes} minutes")


def start_scheduler():
    """Start the scheduler"""
    setup_scheduler()
    scheduler.start()
    log.info("Scheduler started")


def stop_scheduler():
    """Stop the scheduler"""
    if scheduler.running:
        scheduler.shutdown()
        log.info("Scheduler stopped")
