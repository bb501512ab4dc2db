"""
Backup module for pgkeeper.

This module handles the core backup functionality including:
- Database enumeration
- pg_dump execution with timeout and output capture
- Retention policy enforcement
- Cycle orchestration
"""

from .databases import DatabaseEnumerator, ServerConnectionError
from .runner import BackupRunner
from .retention import RetentionPurger
from .orchestrator import BackupOrchestrator

__all__ = [
    'DatabaseEnumerator',
    'ServerConnectionError',
    'BackupRunner',
    'RetentionPurger',
    'BackupOrchestrator'
]
