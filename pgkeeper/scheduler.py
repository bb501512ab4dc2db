"""
APScheduler configuration for pgkeeper.

Runs one backup cycle per firing of BACKUP_SCHEDULE_CRON. Cycles never
overlap: the job allows a single running instance and coalesces missed runs.
"""

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.schedulers.blocking import BlockingScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.executors.pool import ThreadPoolExecutor

from pgkeeper.cycle import run_cycle


BACKUP_JOB_ID = 'backup_cycle'

# Global scheduler instance and Flask app reference
scheduler = None
flask_app = None


def init_scheduler(app, blocking: bool = False):
    """
    Initialize and configure APScheduler.

    Args:
        app: Flask app instance
        blocking: Use a BlockingScheduler (CLI) instead of a background one

    Returns:
        The configured scheduler

    Raises:
        ValueError: If BACKUP_SCHEDULE_CRON is not a valid crontab expression
    """
    global scheduler, flask_app

    if scheduler is not None:
        return scheduler

    timezone = app.config.get('SCHEDULER_TIMEZONE', 'UTC')
    trigger = CronTrigger.from_crontab(app.config['BACKUP_SCHEDULE_CRON'], timezone=timezone)

    # Store Flask app reference for use in background threads
    flask_app = app

    executors = {
        'default': ThreadPoolExecutor(max_workers=1)
    }

    job_defaults = {
        'coalesce': True,  # Combine multiple pending runs into one
        'max_instances': 1,  # Never two cycles against the same server
        'misfire_grace_time': 300  # 5 minutes grace period for misfires
    }

    scheduler_class = BlockingScheduler if blocking else BackgroundScheduler
    scheduler = scheduler_class(
        executors=executors,
        job_defaults=job_defaults,
        timezone=timezone
    )

    scheduler.add_job(
        func=_execute_cycle_wrapper,
        trigger=trigger,
        id=BACKUP_JOB_ID,
        name='PostgreSQL Backup Cycle',
        replace_existing=True
    )

    app.logger.info(f"Scheduled backup cycle: {app.config['BACKUP_SCHEDULE_CRON']} ({timezone})")
    return scheduler


def start_scheduler():
    """
    Start the APScheduler.

    Blocks when the scheduler was initialized with blocking=True.
    """
    global scheduler

    if scheduler is None:
        raise RuntimeError("Scheduler not initialized. Call init_scheduler() first.")

    if scheduler.running:
        flask_app.logger.info(f"Scheduler already running (state={scheduler.state})")
        return

    for job in scheduler.get_jobs():
        next_run = job.next_run_time.isoformat() if getattr(job, 'next_run_time', None) else 'pending start'
        flask_app.logger.info(f"  - {job.id}: {job.name} (next run: {next_run})")

    scheduler.start()


def stop_scheduler():
    """Stop the APScheduler."""
    global scheduler

    if scheduler and scheduler.running:
        scheduler.shutdown()
        if flask_app is not None:
            flask_app.logger.info("APScheduler stopped")


def _execute_cycle_wrapper():
    """
    Run one cycle inside the stored app's context.

    Exceptions are already mapped to an exit status by run_cycle; the status
    is only logged here since a scheduled run has no process to exit.
    """
    global flask_app

    with flask_app.app_context():
        status = run_cycle(flask_app)
        flask_app.logger.info(f"Scheduled backup cycle finished with status {status}")


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


def is_scheduler_running() -> bool:
    """Check if scheduler is running."""
    return scheduler is not None and scheduler.running
