"""
Filesystem helpers shared by the backup runner and retention purger.
"""

import os
from datetime import datetime


def timestamp_for_filename(moment: datetime = None) -> str:
    """Format a timestamp as YYYYMMDD_HHMMSS for use in file names."""
    return (moment or datetime.now()).strftime('%Y%m%d_%H%M%S')


def ensure_directory(path: str) -> str:
    """
    Create a directory (and parents) if it does not exist.

    Args:
        path: Directory path

    Returns:
        Absolute path of the directory
    """
    os.makedirs(path, exist_ok=True)
    return os.path.abspath(path)


def file_created_at(stat_result: os.stat_result) -> datetime:
    """
    Creation time of a file.

    Uses st_birthtime where the platform records it (macOS, BSD, Windows on
    newer Pythons). Linux does not expose it through os.stat, so st_ctime is
    the closest substitute there.
    """
    birthtime = getattr(stat_result, 'st_birthtime', None)
    if birthtime is None:
        birthtime = stat_result.st_ctime
    return datetime.fromtimestamp(birthtime)


def file_modified_at(stat_result: os.stat_result) -> datetime:
    """Last modification time of a file."""
    return datetime.fromtimestamp(stat_result.st_mtime)
