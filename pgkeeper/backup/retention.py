"""
Retention policy enforcement for backups and run logs.

Deletes files in a directory whose age is strictly older than a cutoff of
now - retention_days. Used for both *.backup artifacts and backup_log_*.txt
run logs.
"""

import os
import logging
from datetime import datetime, timedelta
from fnmatch import fnmatch
from typing import List

from pgkeeper.models import RetentionRequest
from pgkeeper.utils.filesystem import file_created_at, file_modified_at


AGE_SOURCES = {
    'created': file_created_at,
    'modified': file_modified_at,
}


class RetentionPurger:
    """
    Purges files older than a retention window.

    A failure to delete one file is logged and skipped; the rest of the
    directory is still processed.
    """

    def __init__(self, logger: logging.Logger):
        """
        Initialize retention purger.

        Args:
            logger: Logger for deletions and failures
        """
        self.logger = logger

    def purge(self, directory: str, pattern: str, retention_days: int, age_source: str = 'created') -> int:
        """
        Delete files matching `pattern` older than `retention_days`.

        Args:
            directory: Directory to scan (not recursive)
            pattern: Glob pattern matched against file names, e.g. '*.backup'
            retention_days: Files strictly older than now - retention_days are deleted
            age_source: 'created' or 'modified'

        Returns:
            Number of files deleted

        Raises:
            ValueError: If age_source is unknown or retention_days is negative
        """
        if age_source not in AGE_SOURCES:
            raise ValueError(
                f"Invalid age source: {age_source}. "
                f"Valid options: {list(AGE_SOURCES.keys())}"
            )
        if retention_days < 0:
            raise ValueError(f"Retention days must not be negative: {retention_days}")

        request = RetentionRequest(
            directory=directory,
            pattern=pattern,
            cutoff=datetime.now() - timedelta(days=retention_days),
            age_source=age_source
        )
        return self.purge_request(request)

    def purge_request(self, request: RetentionRequest) -> int:
        """
        Apply a prepared retention request.

        Args:
            request: RetentionRequest with directory, pattern and cutoff

        Returns:
            Number of files deleted
        """
        if not os.path.isdir(request.directory):
            self.logger.info(f"Retention directory does not exist, nothing to purge: {request.directory}")
            return 0

        age_of = AGE_SOURCES[request.age_source]

        # Filter files older than cutoff
        to_delete = [
            path for path, stat in self._list_matching(request.directory, request.pattern)
            if age_of(stat) < request.cutoff
        ]

        # Delete old files
        deleted_count = 0
        for path in to_delete:
            try:
                os.remove(path)
                deleted_count += 1
                self.logger.info(f"Deleted old file: {os.path.basename(path)}")
            except FileNotFoundError:
                # Already gone, nothing left to purge
                pass
            except OSError as e:
                self.logger.warning(f"Failed to delete old file {path}: {e}")

        self.logger.info(
            f"Retention cleanup of {request.directory} ({request.pattern}) complete. "
            f"Cutoff: {request.cutoff.isoformat(sep=' ', timespec='seconds')}, "
            f"deleted: {deleted_count}"
        )
        return deleted_count

    def _list_matching(self, directory: str, pattern: str) -> List[tuple]:
        """List (path, stat) for regular files in `directory` matching `pattern`."""
        matches = []
        with os.scandir(directory) as entries:
            for entry in entries:
                if not fnmatch(entry.name, pattern):
                    continue
                try:
                    if not entry.is_file(follow_symlinks=False):
                        continue
                    matches.append((entry.path, entry.stat(follow_symlinks=False)))
                except OSError as e:
                    self.logger.warning(f"Failed to inspect {entry.path}: {e}")
        return sorted(matches, key=lambda match: match[0])
