"""
Data model for pgkeeper backup runs.

Everything here is plain data: an immutable settings snapshot taken once per
run, the per-database job record, and the summaries handed back to callers.
"""

import os
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Tuple

from pgkeeper.utils.filesystem import file_created_at


DEFAULT_PORT = 5432
DEFAULT_RETENTION_DAYS = 7
DEFAULT_TIMEOUT_MINUTES = 30
TRUE_STRINGS = ('1', 'true', 'yes', 'on')


def _as_bool(value) -> bool:
    """Interpret a config flag that may arrive as a bool or an env-style string."""
    if isinstance(value, str):
        return value.strip().lower() in TRUE_STRINGS
    return bool(value)


class ConfigError(Exception):
    """Raised when the configuration cannot produce valid server settings."""
    pass


class BackupType(str, Enum):
    """Which slice of a database a dump covers."""
    FULL = 'full'
    TABLES = 'tables'


class BackupOutcome(str, Enum):
    """Terminal outcome of one backup job."""
    SUCCEEDED = 'succeeded'
    NONZERO_EXIT = 'nonzero_exit'
    MISSING_ARTIFACT = 'missing_artifact'
    EMPTY_ARTIFACT = 'empty_artifact'
    TIMED_OUT = 'timed_out'
    LAUNCH_FAILED = 'launch_failed'

    @property
    def status(self) -> str:
        """Collapse the outcome to succeeded / failed / timed_out."""
        if self is BackupOutcome.SUCCEEDED:
            return 'succeeded'
        if self is BackupOutcome.TIMED_OUT:
            return 'timed_out'
        return 'failed'


@dataclass(frozen=True)
class ServerSettings:
    """
    Immutable snapshot of everything a backup cycle needs.

    Built once at startup with `from_config` and passed by value into the
    orchestrator. The password is kept out of repr() so the snapshot can be
    logged safely.
    """

    host: str
    username: str
    password: str = field(default='', repr=False)
    port: int = DEFAULT_PORT
    database: str = 'postgres'
    retention_days: int = DEFAULT_RETENTION_DAYS
    backup_type: BackupType = BackupType.FULL
    specific_tables: Tuple[str, ...] = ()
    backup_path: str = ''
    timeout_minutes: int = DEFAULT_TIMEOUT_MINUTES
    pg_dump_path: str = 'pg_dump'
    remove_partial_on_timeout: bool = False

    @classmethod
    def from_config(cls, config: Mapping[str, Any]) -> 'ServerSettings':
        """
        Build settings from a Flask-style config mapping.

        Args:
            config: Mapping with the PG_* / BACKUP_* keys from pgkeeper.config

        Returns:
            ServerSettings instance

        Raises:
            ConfigError: If host or username is missing, or a value is invalid
        """
        host = (config.get('PG_HOST') or '').strip()
        username = (config.get('PG_USERNAME') or '').strip()

        if not host:
            raise ConfigError("PG_HOST is not configured")
        if not username:
            raise ConfigError("PG_USERNAME is not configured")

        try:
            backup_type = BackupType(config.get('BACKUP_TYPE') or BackupType.FULL.value)
        except ValueError:
            raise ConfigError(
                f"Invalid BACKUP_TYPE: {config.get('BACKUP_TYPE')}. "
                f"Valid options: {[t.value for t in BackupType]}"
            )

        tables = tuple(config.get('BACKUP_SPECIFIC_TABLES') or ())
        if backup_type is BackupType.TABLES and not tables:
            raise ConfigError("BACKUP_TYPE 'tables' requires BACKUP_SPECIFIC_TABLES")

        try:
            port = int(config.get('PG_PORT') or DEFAULT_PORT)
            retention_days = int(config.get('BACKUP_RETENTION_DAYS', DEFAULT_RETENTION_DAYS))
            timeout_minutes = int(config.get('BACKUP_TIMEOUT_MINUTES') or DEFAULT_TIMEOUT_MINUTES)
        except (TypeError, ValueError) as e:
            raise ConfigError(f"Invalid numeric setting: {e}")

        if retention_days < 0:
            raise ConfigError(f"BACKUP_RETENTION_DAYS must not be negative: {retention_days}")
        if timeout_minutes <= 0:
            raise ConfigError(f"BACKUP_TIMEOUT_MINUTES must be positive: {timeout_minutes}")

        backup_path = config.get('BACKUP_PATH') or os.path.join(
            config.get('BASE_DIR') or os.getcwd(), 'Backups'
        )

        return cls(
            host=host,
            username=username,
            password=config.get('PG_PASSWORD') or '',
            port=port,
            database=config.get('PG_DATABASE') or 'postgres',
            retention_days=retention_days,
            backup_type=backup_type,
            specific_tables=tables,
            backup_path=backup_path,
            timeout_minutes=timeout_minutes,
            pg_dump_path=config.get('PG_DUMP_PATH') or 'pg_dump',
            remove_partial_on_timeout=_as_bool(config.get('REMOVE_PARTIAL_ON_TIMEOUT', False)),
        )

    @property
    def timeout_seconds(self) -> float:
        return self.timeout_minutes * 60.0


@dataclass(frozen=True)
class BackupArtifact:
    """A dump file on disk."""

    path: str
    size_bytes: int
    created_at: datetime

    @classmethod
    def inspect(cls, path: str) -> Optional['BackupArtifact']:
        """Return the artifact at `path`, or None if no file exists there."""
        try:
            stat = os.stat(path)
        except FileNotFoundError:
            return None
        return cls(
            path=path,
            size_bytes=stat.st_size,
            created_at=file_created_at(stat)
        )

    @property
    def is_valid(self) -> bool:
        return self.size_bytes > 0


@dataclass
class BackupJob:
    """
    One database's backup attempt.

    The outcome is write-once: `finish` may only be called a single time.
    """

    database: str
    output_path: str
    started_at: datetime = field(default_factory=datetime.now)
    outcome: Optional[BackupOutcome] = None
    completed_at: Optional[datetime] = None
    exit_code: Optional[int] = None
    pid: Optional[int] = None
    artifact: Optional[BackupArtifact] = None

    def finish(self, outcome: BackupOutcome):
        if self.outcome is not None:
            raise RuntimeError(
                f"Backup job for {self.database} already finished with {self.outcome.value}"
            )
        self.outcome = outcome
        self.completed_at = datetime.now()

    @property
    def finished(self) -> bool:
        return self.outcome is not None


@dataclass(frozen=True)
class BackupResult:
    """What BackupRunner.run hands back to the orchestrator."""

    database: str
    succeeded: bool
    outcome: BackupOutcome
    artifact_path: Optional[str]
    artifact_size: int = 0
    exit_code: Optional[int] = None
    duration_seconds: float = 0.0

    @classmethod
    def from_job(cls, job: BackupJob) -> 'BackupResult':
        if not job.finished:
            raise RuntimeError(f"Backup job for {job.database} has no outcome yet")

        duration = (job.completed_at - job.started_at).total_seconds()
        return cls(
            database=job.database,
            succeeded=job.outcome is BackupOutcome.SUCCEEDED,
            outcome=job.outcome,
            artifact_path=job.artifact.path if job.artifact else None,
            artifact_size=job.artifact.size_bytes if job.artifact else 0,
            exit_code=job.exit_code,
            duration_seconds=duration
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'database': self.database,
            'succeeded': self.succeeded,
            'outcome': self.outcome.value,
            'status': self.outcome.status,
            'artifact_path': self.artifact_path,
            'artifact_size': self.artifact_size,
            'exit_code': self.exit_code,
            'duration_seconds': round(self.duration_seconds, 3)
        }


@dataclass(frozen=True)
class RetentionRequest:
    """Parameters for a single purge call."""

    directory: str
    pattern: str
    cutoff: datetime
    age_source: str = 'created'


@dataclass
class CycleSummary:
    """Result of one end-to-end backup cycle."""

    started_at: datetime = field(default_factory=datetime.now)
    completed_at: Optional[datetime] = None
    results: List[BackupResult] = field(default_factory=list)
    purged: int = 0

    @property
    def total(self) -> int:
        return len(self.results)

    @property
    def succeeded(self) -> int:
        return sum(1 for r in self.results if r.succeeded)

    @property
    def failed(self) -> int:
        return self.total - self.succeeded

    def to_dict(self) -> Dict[str, Any]:
        return {
            'started_at': self.started_at.isoformat(),
            'completed_at': self.completed_at.isoformat() if self.completed_at else None,
            'total': self.total,
            'succeeded': self.succeeded,
            'failed': self.failed,
            'purged': self.purged,
            'results': [r.to_dict() for r in self.results]
        }
