"""
APScheduler configuration for running backups as a daemon.

Runs the backup orchestrator on a crontab schedule. At most one run is
active at a time; runs missed while a previous one is still going are
coalesced into one.
"""

import logging

from apscheduler.schedulers.blocking import BlockingScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.executors.pool import ThreadPoolExecutor

from dbdrive.config import BackupConfig
from dbdrive.backup.executor import run_backup


logger = logging.getLogger(__name__)

BACKUP_JOB_ID = 'database_backup'

# Global scheduler instance
scheduler = None


def init_scheduler(config: BackupConfig, schedule: str = None):
    """
    Initialize and configure APScheduler.

    Args:
        config: Run configuration
        schedule: Crontab expression (default: config.backup_schedule)

    Returns:
        The scheduler instance
    """
    global scheduler

    if scheduler is not None:
        return scheduler

    schedule = schedule or config.backup_schedule
    trigger = CronTrigger.from_crontab(schedule, timezone=config.schedule_timezone)

    executors = {
        'default': ThreadPoolExecutor(max_workers=1)
    }

    job_defaults = {
        'coalesce': True,  # Combine multiple pending runs into one
        'max_instances': 1,  # Only one backup at a time
        'misfire_grace_time': 3600
    }

    scheduler_kwargs = {'executors': executors, 'job_defaults': job_defaults}
    if config.schedule_timezone:
        scheduler_kwargs['timezone'] = config.schedule_timezone

    scheduler = BlockingScheduler(**scheduler_kwargs)
    scheduler.add_job(
        func=_execute_backup_wrapper,
        args=[config],
        trigger=trigger,
        id=BACKUP_JOB_ID,
        name=f"Backup: {config.db_name}",
        replace_existing=True
    )

    logger.info(f"Scheduled backup of {config.db_name} ({schedule})")
    return scheduler


def start_scheduler():
    """
    Start the scheduler. Blocks until stop_scheduler() or a signal.
    """
    global scheduler

    if scheduler is None:
        raise RuntimeError("Scheduler not initialized. Call init_scheduler() first.")

    for job in get_scheduled_jobs():
        logger.info(f"  - {job['id']}: {job['name']} (trigger: {job['trigger']})")

    scheduler.start()


def stop_scheduler():
    """Stop the scheduler."""
    global scheduler

    if scheduler and scheduler.running:
        scheduler.shutdown(wait=False)
        logger.info("Scheduler stopped")


def _execute_backup_wrapper(config: BackupConfig) -> int:
    """
    Run one backup from the scheduler thread.

    Unexpected exceptions are logged so the scheduler keeps running.
    """
    try:
        exit_code = run_backup(config)
        logger.info(f"Scheduled backup finished with exit code {exit_code}")
        return exit_code
    except Exception:
        logger.exception("Scheduled backup crashed")
        return 1


def get_scheduled_jobs() -> list:
    """
    Get list of all scheduled jobs.

    Returns:
        List of dicts with job information
    """
    global scheduler

    if scheduler is None:
        return []

    jobs = []

    for job in scheduler.get_jobs():
        next_run = getattr(job, 'next_run_time', None)
        jobs.append({
            'id': job.id,
            'name': job.name,
            'next_run': next_run.isoformat() if next_run else None,
            'trigger': str(job.trigger)
        })

    return jobs
