"""
Scheduled tasks for the sync engine.

Jobs run inside the FastAPI process on an AsyncIOScheduler. Each job opens
its own database session and uses the platform clients built at startup.
All jobs are gated by SYNC_SCHEDULE_ENABLED; cadences come from settings.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, Optional

from apscheduler.events import EVENT_JOB_ERROR, EVENT_JOB_EXECUTED
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from syncbridge.core.config import Settings, get_settings
from syncbridge.core.exceptions import DriftCheckInProgressError
from syncbridge.database import async_session
from syncbridge.integrations.base import PlatformInterface
from syncbridge.services.exchange_rate_service import ExchangeRateService
from syncbridge.services.notification_service import EmailNotificationService
from syncbridge.services.reconciliation_service import DriftChecker
from syncbridge.services.stock_alerts import StockAlertService
from syncbridge.services.sync_services import SyncService
from syncbridge.services.transaction_ledger import TransactionLedger
from syncbridge.services.webhook_processor import cleanup_webhook_events

logger = logging.getLogger(__name__)

# Global scheduler instance
scheduler: Optional[AsyncIOScheduler] = None

# Set by create_scheduler; jobs read platforms and settings from here
_context: Dict[str, object] = {
    "platforms": {},
    "settings": None,
    "session_factory": async_session,
}


def _settings() -> Settings:
    return _context["settings"] or get_settings()


async def full_sync_task():
    """Push every active mapping's priority-platform state to the other side"""
    try:
        async with _context["session_factory"]() as db:
            await SyncService(db, _context["platforms"], _settings()).run_full_sync()
    except Exception as e:
        logger.exception(f"Error in scheduled full sync: {str(e)}")


async def inventory_sync_task():
    try:
        async with _context["session_factory"]() as db:
            await SyncService(db, _context["platforms"], _settings()).run_inventory_sync()
    except Exception as e:
        logger.exception(f"Error in scheduled inventory sync: {str(e)}")


async def price_sync_task():
    try:
        async with _context["session_factory"]() as db:
            await SyncService(db, _context["platforms"], _settings()).run_price_sync()
    except Exception as e:
        logger.exception(f"Error in scheduled price sync: {str(e)}")


async def drift_check_task():
    """Drift check; corrects mismatches only when DRIFT_AUTO_CORRECT is set"""
    settings = _settings()
    try:
        async with _context["session_factory"]() as db:
            checker = DriftChecker(db, _context["platforms"], settings)
            report = await checker.run(dry_run=not settings.DRIFT_AUTO_CORRECT)
            if report.mismatch_count or report.error_count:
                logger.warning(
                    f"Scheduled drift check flagged {report.mismatch_count} mismatch(es) "
                    f"and {report.error_count} error(s)"
                )
    except DriftCheckInProgressError:
        logger.info("Skipping scheduled drift check: another check is running")
    except Exception as e:
        logger.exception(f"Error in scheduled drift check: {str(e)}")


async def stock_alert_task():
    """Low-stock summary and failed ledger rows from the last day"""
    settings = _settings()
    try:
        async with _context["session_factory"]() as db:
            alerts = StockAlertService(db, _context["platforms"], settings, EmailNotificationService(settings))
            await alerts.check_low_stock()
            await alerts.notify_failed_transactions(datetime.now(timezone.utc) - timedelta(days=1))
    except Exception as e:
        logger.exception(f"Error in stock alert task: {str(e)}")


async def exchange_rate_task():
    try:
        async with _context["session_factory"]() as db:
            row = await ExchangeRateService(db, _settings()).refresh_from_api()
            logger.info(f"Exchange rate refreshed: 1 {row.base_currency} = {row.rate} {row.quote_currency}")
    except Exception as e:
        logger.exception(f"Error refreshing exchange rate: {str(e)}")


async def cleanup_task():
    """Delete old webhook audit rows and completed ledger rows"""
    settings = _settings()
    try:
        async with _context["session_factory"]() as db:
            deleted_events = await cleanup_webhook_events(db, settings.WEBHOOK_LOG_RETENTION_DAYS)
            deleted_tx = await TransactionLedger(db).purge_older_than(settings.LEDGER_RETENTION_DAYS)
        logger.info(f"Cleanup completed: {deleted_events} webhook events, {deleted_tx} ledger rows deleted")
    except Exception as e:
        logger.exception(f"Error in cleanup task: {str(e)}")


JOB_FUNCTIONS: Dict[str, Callable] = {
    "full_sync": full_sync_task,
    "inventory_sync": inventory_sync_task,
    "price_sync": price_sync_task,
    "drift_check": drift_check_task,
    "stock_alerts": stock_alert_task,
    "exchange_rate": exchange_rate_task,
    "cleanup": cleanup_task,
}


def _job_schedules(settings: Settings) -> Dict[str, str]:
    return {
        "full_sync": settings.CRON_FULL_SYNC,
        "inventory_sync": settings.CRON_INVENTORY_SYNC,
        "price_sync": settings.CRON_PRICE_SYNC,
        "drift_check": settings.CRON_DRIFT_CHECK,
        "stock_alerts": settings.CRON_LOW_STOCK,
        "exchange_rate": settings.CRON_EXCHANGE_RATE,
        "cleanup": settings.CRON_CLEANUP,
    }


def job_listener(event):
    """Listen to job events for logging"""
    if event.exception:
        logger.error(f"Job {event.job_id} crashed: {event.exception}")
    else:
        logger.info(f"Job {event.job_id} executed successfully at {datetime.now()}")


def create_scheduler(
    platforms: Dict[str, PlatformInterface],
    settings: Optional[Settings] = None,
    session_factory: Optional[Callable] = None,
) -> AsyncIOScheduler:
    """Create and configure the scheduler"""
    global scheduler

    settings = settings or get_settings()
    _context["platforms"] = platforms
    _context["settings"] = settings
    if session_factory is not None:
        _context["session_factory"] = session_factory

    if scheduler is not None:
        return scheduler

    scheduler = AsyncIOScheduler()
    scheduler.add_listener(job_listener, EVENT_JOB_EXECUTED | EVENT_JOB_ERROR)

    if settings.SYNC_SCHEDULE_ENABLED:
        for job_id, crontab in _job_schedules(settings).items():
            scheduler.add_job(
                JOB_FUNCTIONS[job_id],
                CronTrigger.from_crontab(crontab),
                id=job_id,
                name=job_id.replace("_", " ").title(),
                replace_existing=True,
                max_instances=1,  # Only one run of each job at a time
                misfire_grace_time=3600,
            )
            logger.info(f"Scheduled job {job_id} added with schedule: {crontab}")
    else:
        logger.info("Scheduled sync is disabled. Set SYNC_SCHEDULE_ENABLED=true to enable")

    return scheduler


async def start_scheduler(platforms: Dict[str, PlatformInterface], settings: Optional[Settings] = None):
    """Start the scheduler"""
    create_scheduler(platforms, settings)

    if not scheduler.running:
        scheduler.start()
        logger.info("Scheduler started successfully")

        jobs = scheduler.get_jobs()
        if jobs:
            logger.info(f"Active scheduled jobs: {len(jobs)}")
            for job in jobs:
                logger.info(f"  - {job.name}: {job.trigger}")
        else:
            logger.info("No scheduled jobs configured")


async def stop_scheduler():
    """Stop the scheduler gracefully"""
    global scheduler

    if scheduler and scheduler.running:
        scheduler.shutdown(wait=True)
        logger.info("Scheduler stopped successfully")
    scheduler = None


async def run_job_now(job_id: str):
    """Run one job immediately, outside its schedule"""
    logger.info(f"Manually running job {job_id}...")
    await JOB_FUNCTIONS[job_id]()


async def get_scheduler_status():
    """Get current scheduler status and job information"""
    if scheduler is None:
        return {"status": "not_initialized", "jobs": []}

    jobs_info = []
    for job in scheduler.get_jobs():
        jobs_info.append({
            "id": job.id,
            "name": job.name,
            "next_run": job.next_run_time.isoformat() if job.next_run_time else None,
            "trigger": str(job.trigger),
        })

    return {
        "status": "running" if scheduler.running else "stopped",
        "jobs": jobs_info,
    }
