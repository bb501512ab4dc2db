import os
import logging
from flask import Flask

from pgkeeper.utils.filesystem import timestamp_for_filename


LOG_FILE_PATTERN = 'backup_log_*.txt'


def configure_logging(app):
    """Configure application logging"""

    # Create logs directory if it doesn't exist
    log_dir = app.config['LOG_DIR']
    os.makedirs(log_dir, exist_ok=True)

    # Set log level based on environment
    log_level = logging.DEBUG if app.config.get('DEBUG', False) else logging.INFO

    # Drop handlers left over from a previous app instance with the same name
    for handler in list(app.logger.handlers):
        app.logger.removeHandler(handler)
        handler.close()

    # Console handler
    console_handler = logging.StreamHandler()
    console_handler.setLevel(log_level)
    console_formatter = logging.Formatter(
        '[%(asctime)s] %(levelname)s: %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )
    console_handler.setFormatter(console_formatter)

    # One log file per run
    log_file = os.path.join(log_dir, f"backup_log_{timestamp_for_filename()}.txt")
    file_handler = logging.FileHandler(log_file, encoding='utf-8')
    file_handler.setLevel(log_level)
    file_formatter = logging.Formatter(
        '[%(asctime)s] %(levelname)s [%(name)s.%(funcName)s:%(lineno)d] %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )
    file_handler.setFormatter(file_formatter)

    app.logger.setLevel(log_level)
    app.logger.addHandler(console_handler)
    app.logger.addHandler(file_handler)
    app.config['LOG_FILE'] = log_file

    app.logger.info(f"Logging configured (level: {logging.getLevelName(log_level)}, file: {log_file})")


def create_app(config_name=None, test_config=None):
    """Flask application factory"""

    app = Flask(__name__)

    # Load configuration
    if config_name is None:
        config_name = os.environ.get('PGKEEPER_ENV', 'production')

    from pgkeeper.config import config
    app.config.from_object(config[config_name])
    if test_config:
        app.config.update(test_config)

    # Configure logging
    configure_logging(app)

    # Ensure required directories exist
    if not app.config.get('BACKUP_PATH'):
        app.config['BACKUP_PATH'] = os.path.join(app.config['BASE_DIR'], 'Backups')
        app.logger.warning(f"No backup path configured, using default: {app.config['BACKUP_PATH']}")
    os.makedirs(app.config['BACKUP_PATH'], exist_ok=True)

    # Register blueprints and CLI commands
    from pgkeeper.routes import status_routes
    from pgkeeper import cli
    app.register_blueprint(status_routes.bp)
    app.cli.add_command(cli.backup_cli)

    # Health check endpoint
    @app.route('/health')
    def health():
        return {'status': 'healthy'}, 200

    # Scheduler runs in-process only when explicitly enabled
    if app.config.get('SCHEDULER_ENABLED', False):
        from pgkeeper.scheduler import init_scheduler, start_scheduler, stop_scheduler
        import atexit

        app.logger.info("Initializing scheduler in this process...")
        init_scheduler(app)
        start_scheduler()
        atexit.register(stop_scheduler)
    else:
        app.logger.debug("Scheduler initialization skipped (SCHEDULER_ENABLED is off)")

    return app
