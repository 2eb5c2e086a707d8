"""
Background task scheduler for Level Up Solo.
Runs the periodic energy reset sweep using APScheduler.

The sweep is optional (ENERGY_RESET_SWEEP=true); the stats endpoint still
checks the reset on every read, so the sweep only makes resets timely
for users who are not polling.
"""

import logging
from typing import Optional
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.jobstores.sqlalchemy import SQLAlchemyJobStore
from apscheduler.jobstores.memory import MemoryJobStore
from apscheduler.executors.pool import ThreadPoolExecutor

logger = logging.getLogger(__name__)

ENERGY_RESET_JOB_ID = 'energy_reset_sweep'

# Global scheduler instance
_scheduler: Optional[BackgroundScheduler] = None


def get_scheduler(database_url: str = None) -> BackgroundScheduler:
    """Get or create the global scheduler instance.

    Args:
        database_url: PostgreSQL database URL for job persistence;
            jobs are kept in memory when omitted

    Returns:
        BackgroundScheduler instance
    """
    global _scheduler

    if _scheduler is None:
        if database_url:
            jobstore = SQLAlchemyJobStore(url=database_url, tablename='apscheduler_jobs')
        else:
            jobstore = MemoryJobStore()

        job_defaults = {
            'coalesce': True,  # Combine missed runs into one
            'max_instances': 1,
            'misfire_grace_time': 900
        }

        _scheduler = BackgroundScheduler(
            jobstores={'default': jobstore},
            executors={'default': ThreadPoolExecutor(max_workers=2)},
            job_defaults=job_defaults,
            timezone='UTC'
        )

        logger.info(f"Scheduler created with {'PostgreSQL' if database_url else 'memory'} job store")

    return _scheduler


def execute_energy_reset_sweep():
    """Refill energy for every user whose local day changed (scheduled job)."""
    try:
        # Import here to avoid circular imports
        from levelup.models.energy import reset_all_due
        from levelup.utils.metrics import ENERGY_RESETS

        count = reset_all_due()
        if count:
            ENERGY_RESETS.labels(trigger='sweep').inc(count)
        logger.info(f"Energy reset sweep finished: {count} users reset")
        return count

    except Exception as e:
        logger.error(f"Error in energy reset sweep: {e}", exc_info=True)
        return 0


def add_energy_reset_job(scheduler: BackgroundScheduler):
    """Run the sweep at the top of every hour.

    Hourly so that each timezone's midnight is caught within the hour.
    """
    scheduler.add_job(
        func=execute_energy_reset_sweep,
        trigger=CronTrigger(minute=0),
        id=ENERGY_RESET_JOB_ID,
        name='Energy reset sweep - refill users past local midnight',
        replace_existing=True
    )
    logger.info("Scheduled energy reset sweep hourly")


def start_scheduler(database_url: str = None):
    """Start the scheduler with all jobs.

    Args:
        database_url: PostgreSQL database URL for job persistence
    """
    try:
        scheduler = get_scheduler(database_url)
        add_energy_reset_job(scheduler)
        scheduler.start()
        logger.info("Scheduler started successfully")

        # Catch up on resets missed while the app was down
        execute_energy_reset_sweep()

    except Exception as e:
        logger.error(f"Failed to start scheduler: {e}", exc_info=True)


def stop_scheduler():
    """Stop the scheduler gracefully."""
    global _scheduler

    if _scheduler and _scheduler.running:
        _scheduler.shutdown(wait=True)
        logger.info("Scheduler stopped")
    _scheduler = None


def is_scheduler_running() -> bool:
    return _scheduler is not None and _scheduler.running


def get_scheduled_jobs() -> list:
    """Get list of scheduled jobs.

    Returns:
        List of job dictionaries with id, name, next_run_time
    """
    if _scheduler and _scheduler.running:
        return [{
            'id': job.id,
            'name': job.name,
            'next_run': str(job.next_run_time) if job.next_run_time else None
        } for job in _scheduler.get_jobs()]
    return []
