"""
Command line interface for pgkeeper.

Flask CLI group (flask --app pgkeeper backup ...) plus the `pgkeeper`
console script, which runs one cycle and exits with its status.
"""

import sys

import click
from flask import current_app
from flask.cli import AppGroup

from pgkeeper.backup import DatabaseEnumerator, RetentionPurger, ServerConnectionError
from pgkeeper.backup.orchestrator import BACKUP_PATTERN
from pgkeeper.cycle import EXIT_FAILURE, run_cycle
from pgkeeper.models import ConfigError, ServerSettings


backup_cli = AppGroup('backup', help='Run and manage PostgreSQL backups.')


def _load_settings() -> ServerSettings:
    try:
        return ServerSettings.from_config(current_app.config)
    except ConfigError as e:
        raise click.ClickException(f"Invalid configuration: {e}")


@backup_cli.command('run')
def run_command():
    """Back up every database once, then purge old backups and logs."""
    sys.exit(run_cycle(current_app._get_current_object()))


@backup_cli.command('list-databases')
def list_databases_command():
    """Print the databases that would be backed up."""
    settings = _load_settings()
    try:
        databases = DatabaseEnumerator(current_app.logger).list_databases(settings)
    except ServerConnectionError as e:
        raise click.ClickException(str(e))

    for name in databases:
        click.echo(name)


@backup_cli.command('purge')
@click.option('--days', type=click.IntRange(min=0), default=None,
              help='Retention window in days (default: BACKUP_RETENTION_DAYS).')
def purge_command(days):
    """Delete backups older than the retention window."""
    settings = _load_settings()
    if days is None:
        days = settings.retention_days

    deleted = RetentionPurger(current_app.logger).purge(settings.backup_path, BACKUP_PATTERN, days)
    click.echo(f"Deleted {deleted} old backup file(s)")


@backup_cli.command('schedule')
def schedule_command():
    """Run backup cycles on BACKUP_SCHEDULE_CRON until interrupted."""
    from pgkeeper.scheduler import init_scheduler, start_scheduler

    app = current_app._get_current_object()
    try:
        init_scheduler(app, blocking=True)
    except ValueError as e:
        raise click.ClickException(f"Invalid BACKUP_SCHEDULE_CRON: {e}")

    try:
        start_scheduler()
    except (KeyboardInterrupt, SystemExit):
        app.logger.info("Scheduler interrupted, exiting")


def main():
    """Console script entry point: one cycle, exit code 0 or 1."""
    try:
        from pgkeeper import create_app
        app = create_app()
    except Exception as e:
        print(f"ERROR: Failed to start pgkeeper: {e}", file=sys.stderr)
        return EXIT_FAILURE

    return run_cycle(app)


if __name__ == '__main__':
    sys.exit(main())
