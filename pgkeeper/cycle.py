"""
One backup cycle as run by the CLI and the scheduler.

Builds the settings snapshot from the app config, runs the orchestrator,
then purges old run logs. Maps the outcome to a process exit code.
"""

import threading
from typing import Optional

from pgkeeper import LOG_FILE_PATTERN
from pgkeeper.backup import BackupOrchestrator, RetentionPurger, ServerConnectionError
from pgkeeper.models import ConfigError, CycleSummary, ServerSettings


EXIT_SUCCESS = 0
EXIT_FAILURE = 1

# Most recent completed cycle, reported by /api/status
last_cycle = None
_last_cycle_lock = threading.Lock()


def record_cycle(summary: CycleSummary):
    global last_cycle
    with _last_cycle_lock:
        last_cycle = summary


def get_last_cycle() -> Optional[CycleSummary]:
    with _last_cycle_lock:
        return last_cycle


def purge_old_logs(app) -> int:
    """
    Delete run logs older than LOG_RETENTION_DAYS.

    Errors are logged and swallowed; log cleanup never affects the exit code.

    Returns:
        Number of log files deleted
    """
    purger = RetentionPurger(app.logger)
    try:
        return purger.purge(
            app.config['LOG_DIR'],
            LOG_FILE_PATTERN,
            app.config['LOG_RETENTION_DAYS']
        )
    except Exception as e:
        app.logger.error(f"Failed to cleanup old logs: {e}")
        return 0


def run_cycle(app) -> int:
    """
    Run one complete backup cycle for the app's configured server.

    Args:
        app: Flask app instance (config and logger source)

    Returns:
        EXIT_SUCCESS if the cycle completed (individual database failures
        included), EXIT_FAILURE on configuration errors, enumeration failure
        or any unhandled exception
    """
    logger = app.logger
    logger.info("Starting PostgreSQL Backup Process...")

    try:
        settings = ServerSettings.from_config(app.config)
        summary = BackupOrchestrator(logger).run_backup_cycle(settings)
        record_cycle(summary)
        if summary.failed:
            logger.warning(f"Backup process completed with {summary.failed} failed database(s)")
        else:
            logger.info("Backup process completed successfully!")
        return EXIT_SUCCESS

    except ConfigError as e:
        logger.error(f"ERROR: Invalid configuration: {e}")
        return EXIT_FAILURE

    except ServerConnectionError as e:
        logger.error(f"ERROR: {e}")
        return EXIT_FAILURE

    except Exception as e:
        logger.exception(f"ERROR: {e}")
        return EXIT_FAILURE

    finally:
        purge_old_logs(app)
