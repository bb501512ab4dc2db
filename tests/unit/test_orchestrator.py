"""
Unit tests for the backup orchestrator (pgkeeper/backup/orchestrator.py).

Tests cycle ordering, failure isolation and retention with mocked
components, plus one end-to-end cycle against the fake pg_dump.
"""

import os
from dataclasses import replace
from unittest.mock import MagicMock, patch

import pytest

from pgkeeper.backup.databases import DatabaseEnumerator, ServerConnectionError
from pgkeeper.backup.orchestrator import BACKUP_PATTERN, BackupOrchestrator
from pgkeeper.backup.retention import RetentionPurger
from pgkeeper.models import BackupOutcome, BackupResult


def _result(database, succeeded=True):
    return BackupResult(
        database=database,
        succeeded=succeeded,
        outcome=BackupOutcome.SUCCEEDED if succeeded else BackupOutcome.NONZERO_EXIT,
        artifact_path=f'/backups/{database}.backup' if succeeded else None,
        artifact_size=1024 if succeeded else 0,
        exit_code=0 if succeeded else 1
    )


@pytest.fixture
def enumerator():
    mock = MagicMock(spec=DatabaseEnumerator)
    mock.list_databases.return_value = ['alpha', 'beta']
    return mock


@pytest.fixture
def purger():
    mock = MagicMock(spec=RetentionPurger)
    mock.purge.return_value = 0
    return mock


class TestBackupOrchestrator:
    """Test BackupOrchestrator.run_backup_cycle with mocked components."""

    @patch('pgkeeper.backup.orchestrator.BackupRunner')
    def test_one_failure_does_not_stop_cycle(self, mock_runner_class, settings, logger, enumerator, purger):
        """Test alpha failing still lets beta run; counts reflect both."""
        mock_runner_class.return_value.run.side_effect = [
            _result('alpha', succeeded=False),
            _result('beta', succeeded=True),
        ]

        summary = BackupOrchestrator(logger, enumerator, purger).run_backup_cycle(settings)

        assert summary.total == 2
        assert summary.succeeded == 1
        assert summary.failed == 1
        assert [r.database for r in summary.results] == ['alpha', 'beta']
        assert summary.completed_at is not None

    @patch('pgkeeper.backup.orchestrator.BackupRunner')
    def test_databases_backed_up_in_enumeration_order(self, mock_runner_class, settings, logger, enumerator, purger):
        enumerator.list_databases.return_value = ['a', 'b', 'c']
        mock_runner_class.return_value.run.side_effect = lambda db, *args: _result(db)

        BackupOrchestrator(logger, enumerator, purger).run_backup_cycle(settings)

        run_calls = mock_runner_class.return_value.run.call_args_list
        assert [call[0][0] for call in run_calls] == ['a', 'b', 'c']
        assert all(call[0][2] == settings.timeout_seconds for call in run_calls)

    @patch('pgkeeper.backup.orchestrator.BackupRunner')
    def test_enumeration_failure_aborts_cycle(self, mock_runner_class, settings, logger, enumerator, purger):
        """Test no backups and no purge happen when listing fails."""
        enumerator.list_databases.side_effect = ServerConnectionError('connection refused')

        with pytest.raises(ServerConnectionError):
            BackupOrchestrator(logger, enumerator, purger).run_backup_cycle(settings)

        mock_runner_class.return_value.run.assert_not_called()
        purger.purge.assert_not_called()

    @patch('pgkeeper.backup.orchestrator.BackupRunner')
    def test_unexpected_runner_error_recorded_as_failure(self, mock_runner_class, settings, logger, enumerator, purger):
        mock_runner_class.return_value.run.side_effect = [
            RuntimeError('boom'),
            _result('beta'),
        ]

        summary = BackupOrchestrator(logger, enumerator, purger).run_backup_cycle(settings)

        assert summary.failed == 1
        assert summary.results[0].outcome is BackupOutcome.LAUNCH_FAILED
        assert summary.results[1].succeeded is True

    @patch('pgkeeper.backup.orchestrator.BackupRunner')
    def test_no_databases(self, mock_runner_class, settings, logger, enumerator, purger):
        """Test an empty server still runs retention."""
        enumerator.list_databases.return_value = []

        summary = BackupOrchestrator(logger, enumerator, purger).run_backup_cycle(settings)

        assert summary.total == 0
        purger.purge.assert_called_once()

    @patch('pgkeeper.backup.orchestrator.BackupRunner')
    def test_purge_runs_after_backups(self, mock_runner_class, settings, logger, enumerator, purger):
        mock_runner_class.return_value.run.side_effect = lambda db, *args: _result(db)
        purger.purge.return_value = 3

        summary = BackupOrchestrator(logger, enumerator, purger).run_backup_cycle(settings)

        purger.purge.assert_called_once_with(
            os.path.abspath(settings.backup_path),
            BACKUP_PATTERN,
            settings.retention_days
        )
        assert summary.purged == 3

    @patch('pgkeeper.backup.orchestrator.BackupRunner')
    def test_creates_backup_directory(self, mock_runner_class, settings, logger, enumerator, purger, tmp_path):
        target = tmp_path / 'nested' / 'backups'
        enumerator.list_databases.return_value = []

        BackupOrchestrator(logger, enumerator, purger).run_backup_cycle(
            replace(settings, backup_path=str(target))
        )

        assert target.is_dir()

    @patch('pgkeeper.backup.orchestrator.BackupRunner')
    def test_password_never_logged(self, mock_runner_class, settings, logger, enumerator, purger, caplog):
        mock_runner_class.return_value.run.side_effect = lambda db, *args: _result(db)

        BackupOrchestrator(logger, enumerator, purger).run_backup_cycle(settings)

        assert caplog.records
        assert not any('s3cr3t' in record.getMessage() for record in caplog.records)


class TestBackupCycleEndToEnd:
    """Test a full cycle with the fake pg_dump and a real purger."""

    def test_cycle_with_failing_database(self, settings, logger, enumerator, backup_dir, monkeypatch):
        monkeypatch.setenv('FAKE_PG_DUMP_MODE', 'ok')
        monkeypatch.setenv('FAKE_PG_DUMP_FAIL_DATABASES', 'alpha')

        summary = BackupOrchestrator(logger, enumerator).run_backup_cycle(settings)

        assert summary.total == 2
        assert summary.failed == 1
        alpha, beta = summary.results
        assert alpha.outcome is BackupOutcome.NONZERO_EXIT
        assert beta.outcome is BackupOutcome.SUCCEEDED
        assert os.path.getsize(beta.artifact_path) > 0
        assert len(list(backup_dir.glob('*.backup'))) == 2
