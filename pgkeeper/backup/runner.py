"""
Backup runner - executes pg_dump for a single database.

Workflow:
1. Pick a unique destination file ({database}_{YYYYMMDD_HHMMSS}.backup)
2. Launch pg_dump with the password in the child environment
3. Drain stdout/stderr on two reader threads while waiting for exit
4. Kill the process group if it exceeds the timeout
5. Validate the artifact (must exist and be non-empty)
"""

import os
import signal
import subprocess
import threading
import logging
from collections import deque
from typing import Callable, Dict, IO, List, Optional

from pgkeeper.models import (
    BackupArtifact,
    BackupJob,
    BackupOutcome,
    BackupResult,
    BackupType,
    ServerSettings,
)
from pgkeeper.utils.filesystem import timestamp_for_filename


BACKUP_EXTENSION = '.backup'
ERROR_MARKERS = ('error', 'fatal', 'failed')
STDERR_TAIL_LINES = 20
# Upper bound on waiting for a reader after the process is gone
READER_JOIN_TIMEOUT = 5


def is_error_line(line: str) -> bool:
    """
    Check whether a pg_dump stderr line looks like a real problem.

    pg_dump writes its verbose progress to stderr too, so only lines that
    mention error/fatal/failed are treated as warnings. This is an English
    substring heuristic and depends on the server's message locale.
    """
    lowered = line.lower()
    return any(marker in lowered for marker in ERROR_MARKERS)


class BackupRunner:
    """
    Runs pg_dump for one database at a time.

    Owns the child process for the duration of `run` and always releases it
    (normal exit or kill) before returning.
    """

    def __init__(self, settings: ServerSettings, logger: logging.Logger):
        """
        Initialize backup runner.

        Args:
            settings: Server settings snapshot
            logger: Logger for progress and results
        """
        self.settings = settings
        self.logger = logger

    def destination_path(self, database: str, output_directory: str) -> str:
        """
        Generate a destination path that does not collide with an existing file.

        Format: {output_directory}/{database}_{YYYYMMDD_HHMMSS}.backup, with a
        numeric suffix added if a file with that name already exists.
        """
        base = os.path.join(output_directory, f"{database}_{timestamp_for_filename()}")
        candidate = base + BACKUP_EXTENSION
        counter = 1
        while os.path.exists(candidate):
            candidate = f"{base}_{counter}{BACKUP_EXTENSION}"
            counter += 1
        return candidate

    def build_command(self, database: str, output_path: str) -> List[str]:
        """
        Build the pg_dump argument list.

        Custom (compressed archive) format, large objects included, verbose.
        The password is never part of the command line.
        """
        command = [
            self.settings.pg_dump_path,
            '-h', self.settings.host,
            '-p', str(self.settings.port),
            '-U', self.settings.username,
            '-F', 'c',
            '-b',
            '-v',
            '-f', output_path,
        ]

        if self.settings.backup_type is BackupType.TABLES:
            for table in self.settings.specific_tables:
                command.extend(['-t', table])

        command.append(database)
        return command

    def build_environment(self) -> Dict[str, str]:
        """Inherited environment plus PGPASSWORD for the child process."""
        env = os.environ.copy()
        if self.settings.password:
            env['PGPASSWORD'] = self.settings.password
        return env

    def run(self, database: str, output_directory: str, timeout: Optional[float] = None) -> BackupResult:
        """
        Back up one database.

        Args:
            database: Name of the database to dump
            output_directory: Directory the .backup file is written to
            timeout: Seconds to wait for pg_dump (default: settings timeout)

        Returns:
            BackupResult describing the terminal outcome
        """
        if timeout is None:
            timeout = self.settings.timeout_seconds

        job = BackupJob(
            database=database,
            output_path=self.destination_path(database, output_directory)
        )
        command = self.build_command(database, job.output_path)

        self.logger.info(f"Starting backup of database: {database}", extra={'database': database})
        self.logger.debug(f"Executing command: {' '.join(command)}", extra={'database': database})

        try:
            process = subprocess.Popen(
                command,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                stdin=subprocess.DEVNULL,
                env=self.build_environment(),
                text=True,
                encoding='utf-8',
                errors='replace',
                # Own process group, so a timeout can kill anything pg_dump spawned
                start_new_session=True
            )
        except OSError as e:
            self.logger.error(
                f"Failed to start {self.settings.pg_dump_path} for database {database}: {e}",
                extra={'database': database}
            )
            job.finish(BackupOutcome.LAUNCH_FAILED)
            return BackupResult.from_job(job)

        job.pid = process.pid
        stderr_tail = deque(maxlen=STDERR_TAIL_LINES)

        def on_stdout(line):
            self.logger.info(f"[{database}] {line}", extra={'database': database, 'stream': 'stdout'})

        def on_stderr(line):
            stderr_tail.append(line)
            if is_error_line(line):
                self.logger.warning(f"[{database}] {line}", extra={'database': database, 'stream': 'stderr'})
            else:
                self.logger.debug(f"[{database}] {line}", extra={'database': database, 'stream': 'stderr'})

        readers = [
            self._start_reader(process.stdout, on_stdout, f"pg_dump-stdout-{database}"),
            self._start_reader(process.stderr, on_stderr, f"pg_dump-stderr-{database}"),
        ]

        timed_out = False
        try:
            process.wait(timeout=timeout)
        except subprocess.TimeoutExpired:
            timed_out = True
        finally:
            if timed_out or process.poll() is None:
                self._kill_process_group(process)
            for reader, stream in zip(readers, (process.stdout, process.stderr)):
                reader.join(READER_JOIN_TIMEOUT)
                if reader.is_alive():
                    # Closing would block on the reader's buffer lock; the daemon thread keeps the pipe
                    self.logger.warning(
                        f"Output reader {reader.name} still open after {READER_JOIN_TIMEOUT}s, abandoning it",
                        extra={'database': database}
                    )
                else:
                    stream.close()

        job.exit_code = process.returncode

        if timed_out:
            self.logger.error(
                f"Backup operation timed out for database: {database} after {timeout:.0f}s",
                extra={'database': database}
            )
            if self.settings.remove_partial_on_timeout:
                self._remove_partial(job)
            else:
                job.artifact = BackupArtifact.inspect(job.output_path)
            job.finish(BackupOutcome.TIMED_OUT)
            return BackupResult.from_job(job)

        job.finish(self._classify(job, stderr_tail))
        return BackupResult.from_job(job)

    def _classify(self, job: BackupJob, stderr_tail) -> BackupOutcome:
        """Decide the outcome of a job whose process exited on its own."""
        database = job.database
        job.artifact = BackupArtifact.inspect(job.output_path)

        if job.artifact is None:
            self.logger.error(
                f"Backup file for {database} doesn't exist (exit code {job.exit_code})",
                extra={'database': database}
            )
            return BackupOutcome.MISSING_ARTIFACT

        if not job.artifact.is_valid:
            self.logger.error(
                f"Backup file for {database} is empty (exit code {job.exit_code})",
                extra={'database': database}
            )
            return BackupOutcome.EMPTY_ARTIFACT

        if job.exit_code != 0:
            self.logger.error(
                f"Backup failed for database: {database} (exit code {job.exit_code})",
                extra={'database': database}
            )
            if stderr_tail:
                self.logger.error("Error output:\n" + '\n'.join(stderr_tail), extra={'database': database})
            return BackupOutcome.NONZERO_EXIT

        self.logger.info(
            f"Successfully backed up database: {database} "
            f"(Size: {job.artifact.size_bytes / 1024:.2f} KB)",
            extra={'database': database}
        )
        return BackupOutcome.SUCCEEDED

    def _kill_process_group(self, process: subprocess.Popen):
        """SIGKILL pg_dump and every process in its group, then reap pg_dump."""
        try:
            os.killpg(process.pid, signal.SIGKILL)
        except ProcessLookupError:
            pass
        except OSError as e:
            self.logger.warning(f"Failed to kill process group {process.pid}: {e}")
            process.kill()
        process.wait()

    def _remove_partial(self, job: BackupJob):
        if not os.path.exists(job.output_path):
            return
        try:
            os.remove(job.output_path)
            self.logger.info(f"Removed partial backup file: {job.output_path}")
        except OSError as e:
            self.logger.warning(f"Failed to remove partial backup file {job.output_path}: {e}")

    @staticmethod
    def _start_reader(stream: IO[str], handler: Callable[[str], None], name: str) -> threading.Thread:
        """Drain a pipe line by line on a daemon thread until it closes."""
        def drain():
            for line in stream:
                line = line.rstrip('\r\n')
                if line:
                    handler(line)

        thread = threading.Thread(target=drain, name=name, daemon=True)
        thread.start()
        return thread
