"""
Backup orchestrator - drives one complete backup cycle.

Workflow:
1. Ensure the backup directory exists
2. List eligible databases (a failure here aborts the cycle)
3. Back up each database in order, continuing past failures
4. Purge backups older than the retention window
"""

import logging
from datetime import datetime
from typing import Optional

from pgkeeper.models import BackupOutcome, BackupResult, CycleSummary, ServerSettings
from pgkeeper.utils.filesystem import ensure_directory
from .databases import DatabaseEnumerator
from .retention import RetentionPurger
from .runner import BackupRunner


BACKUP_PATTERN = '*.backup'


class BackupOrchestrator:
    """
    Runs enumerate -> backup each -> purge, strictly one database at a time.

    pg_dump already saturates server I/O for one database, so jobs are never
    run concurrently against the same server.
    """

    def __init__(
        self,
        logger: logging.Logger,
        enumerator: Optional[DatabaseEnumerator] = None,
        purger: Optional[RetentionPurger] = None
    ):
        """
        Initialize backup orchestrator.

        Args:
            logger: Logger passed down to every component
            enumerator: DatabaseEnumerator to use (default: new instance)
            purger: RetentionPurger to use (default: new instance)
        """
        self.logger = logger
        self.enumerator = enumerator or DatabaseEnumerator(logger)
        self.purger = purger or RetentionPurger(logger)

    def run_backup_cycle(self, settings: ServerSettings) -> CycleSummary:
        """
        Execute one backup cycle.

        Args:
            settings: Server settings snapshot for this run

        Returns:
            CycleSummary with total/succeeded/failed counts and per-job results

        Raises:
            ServerConnectionError: If the database listing cannot be retrieved
        """
        summary = CycleSummary()
        self._log_settings(settings)

        backup_dir = ensure_directory(settings.backup_path)
        self.logger.info(f"Backup directory: {backup_dir}")

        self.logger.info("Retrieving database list...")
        databases = self.enumerator.list_databases(settings)
        for name in databases:
            self.logger.info(f"- {name}")

        self.logger.info("Starting backup process...")
        runner = BackupRunner(settings, self.logger)
        for database in databases:
            summary.results.append(self._backup_one(runner, database, backup_dir, settings))

        self.logger.info("Cleaning up old backups...")
        summary.purged = self.purger.purge(backup_dir, BACKUP_PATTERN, settings.retention_days)

        summary.completed_at = datetime.now()
        self.logger.info(
            f"Backup cycle complete. "
            f"Total: {summary.total}, "
            f"Succeeded: {summary.succeeded}, "
            f"Failed: {summary.failed}, "
            f"Purged: {summary.purged}"
        )
        return summary

    def _backup_one(self, runner: BackupRunner, database: str, backup_dir: str, settings: ServerSettings) -> BackupResult:
        """Back up a single database; never raises."""
        self.logger.info(f"Backing up database: {database}", extra={'database': database})

        try:
            result = runner.run(database, backup_dir, settings.timeout_seconds)
        except Exception as e:
            self.logger.exception(f"Error backing up database: {database}: {e}", extra={'database': database})
            return BackupResult(
                database=database,
                succeeded=False,
                outcome=BackupOutcome.LAUNCH_FAILED,
                artifact_path=None
            )

        if result.succeeded:
            self.logger.info(f"Successfully backed up database: {database}", extra={'database': database})
        else:
            self.logger.error(
                f"Failed to backup database: {database} ({result.outcome.value})",
                extra={'database': database, 'outcome': result.outcome.value}
            )
        return result

    def _log_settings(self, settings: ServerSettings):
        self.logger.info("Using settings:")
        self.logger.info(f"Host: {settings.host}")
        self.logger.info(f"Port: {settings.port}")
        self.logger.info(f"Username: {settings.username}")
        self.logger.info(f"Database: {settings.database}")
        self.logger.info(f"Backup Type: {settings.backup_type.value}")
        self.logger.info(f"Retention Days: {settings.retention_days}")
        self.logger.info(f"Timeout: {settings.timeout_minutes} minutes")
