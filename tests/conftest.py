"""
Shared pytest fixtures for pgkeeper tests.

This module provides fixtures for:
- Flask app, test client and CLI runner
- Server settings pointing at a fake pg_dump
- A fake pg_dump executable whose behaviour is driven by env vars
- A plain logger for components under test
"""

import os
import stat
import sys
import logging
import time
from datetime import timedelta

import pytest

from pgkeeper import create_app
from pgkeeper import cycle as cycle_module
from pgkeeper import scheduler as scheduler_module
from pgkeeper.models import ServerSettings


FAKE_PG_DUMP_SOURCE = '''#!{python}
"""Stand-in for pg_dump used by the test suite."""
import json
import os
import sys
import time

args = sys.argv[1:]
output = args[args.index('-f') + 1]
database = args[-1]

record = os.environ.get('FAKE_PG_DUMP_RECORD')
if record:
    with open(record, 'w') as f:
        json.dump({{'argv': args, 'password': os.environ.get('PGPASSWORD')}}, f)

mode = os.environ.get('FAKE_PG_DUMP_MODE', 'ok')
failing = [name for name in os.environ.get('FAKE_PG_DUMP_FAIL_DATABASES', '').split(',') if name]
if database in failing:
    mode = 'fail'

print('pg_dump: last built-in OID is 16383', file=sys.stderr, flush=True)
print('pg_dump: reading schemas', file=sys.stderr, flush=True)
print('dumping ' + database, flush=True)

if mode == 'ok':
    with open(output, 'wb') as f:
        f.write(b'PGDMP' * 200)
    sys.exit(0)

if mode == 'empty':
    open(output, 'wb').close()
    sys.exit(0)

if mode == 'missing':
    sys.exit(0)

if mode == 'fail':
    with open(output, 'wb') as f:
        f.write(b'PGDMP')
    print('pg_dump: error: query failed: ERROR:  permission denied for table secrets', file=sys.stderr, flush=True)
    sys.exit(1)

if mode == 'hang':
    with open(output, 'wb') as f:
        f.write(b'PGDMP')
    time.sleep(120)
    sys.exit(0)

sys.exit(3)
'''


@pytest.fixture
def fake_pg_dump(tmp_path):
    """
    Create an executable fake pg_dump.

    Behaviour is controlled through environment variables (use monkeypatch):
    - FAKE_PG_DUMP_MODE: ok | empty | missing | fail | hang
    - FAKE_PG_DUMP_FAIL_DATABASES: comma-separated databases that fail
    - FAKE_PG_DUMP_RECORD: file to record argv and PGPASSWORD into
    """
    script = tmp_path / 'bin' / 'pg_dump'
    script.parent.mkdir()
    script.write_text(FAKE_PG_DUMP_SOURCE.format(python=sys.executable))
    script.chmod(script.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return str(script)


WRAPPER_PG_DUMP_SOURCE = '''#!/bin/sh
# Wrapper that hangs in a child process holding the output pipes
sleep 60 &
echo $! > "{pid_file}"
echo "wrapper started" >&2
wait
'''


@pytest.fixture
def wrapper_pg_dump(tmp_path):
    """
    Create a shell wrapper standing in for pg_dump that hangs in a child.

    Returns:
        Tuple of (script path, file the child's pid is written to)
    """
    pid_file = tmp_path / 'child.pid'
    script = tmp_path / 'wrapper' / 'pg_dump'
    script.parent.mkdir()
    script.write_text(WRAPPER_PG_DUMP_SOURCE.format(pid_file=pid_file))
    script.chmod(script.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return str(script), pid_file


@pytest.fixture
def backup_dir(tmp_path):
    path = tmp_path / 'backups'
    path.mkdir()
    return path


@pytest.fixture
def settings(backup_dir, fake_pg_dump):
    """Server settings pointing at the fake pg_dump."""
    return ServerSettings(
        host='db.example.com',
        username='backup',
        password='s3cr3t',
        port=5433,
        backup_path=str(backup_dir),
        pg_dump_path=fake_pg_dump
    )


@pytest.fixture
def logger():
    """Logger handed to components under test; records reach caplog via root."""
    test_logger = logging.getLogger('tests.pgkeeper')
    test_logger.setLevel(logging.DEBUG)
    return test_logger


@pytest.fixture(scope='function')
def app(tmp_path, fake_pg_dump):
    """
    Create Flask app with test configuration.

    Backups and logs go to the test's temp directory.
    """
    app = create_app('testing', test_config={
        'BACKUP_PATH': str(tmp_path / 'app_backups'),
        'LOG_DIR': str(tmp_path / 'logs'),
        'PG_DUMP_PATH': fake_pg_dump,
    })

    yield app

    # Reset module state shared between tests
    cycle_module.last_cycle = None
    scheduler_module.scheduler = None
    scheduler_module.flask_app = None
    for handler in list(app.logger.handlers):
        app.logger.removeHandler(handler)
        handler.close()


@pytest.fixture(scope='function')
def client(app):
    """Flask test client for making HTTP requests."""
    return app.test_client()


@pytest.fixture(scope='function')
def runner(app):
    """Flask CLI test runner."""
    return app.test_cli_runner()


@pytest.fixture
def set_file_age():
    """
    Return a helper that backdates a path's access and modification time.

    Based on time.time() so it agrees with datetime.now() both with and
    without freezegun active.
    """
    def _set(path, age: timedelta):
        timestamp = time.time() - age.total_seconds()
        os.utime(path, (timestamp, timestamp))
    return _set
