import os


def _env_bool(name, default='false'):
    return os.environ.get(name, default).strip().lower() in ('1', 'true', 'yes', 'on')


def _env_list(name):
    raw = os.environ.get(name) or ''
    return [item.strip() for item in raw.split(',') if item.strip()]


class Config:
    """Base configuration"""

    BASE_DIR = os.path.abspath(os.path.dirname(os.path.dirname(__file__)))

    # PostgreSQL server
    PG_HOST = os.environ.get('PG_HOST', '')
    PG_PORT = int(os.environ.get('PG_PORT', 5432))
    PG_USERNAME = os.environ.get('PG_USERNAME', '')
    PG_PASSWORD = os.environ.get('PG_PASSWORD', '')
    PG_DATABASE = os.environ.get('PG_DATABASE', 'postgres')

    # Backups
    BACKUP_TYPE = os.environ.get('BACKUP_TYPE', 'full')
    BACKUP_SPECIFIC_TABLES = _env_list('BACKUP_SPECIFIC_TABLES')
    BACKUP_PATH = os.environ.get('BACKUP_PATH', '')
    BACKUP_RETENTION_DAYS = int(os.environ.get('BACKUP_RETENTION_DAYS', 7))
    BACKUP_TIMEOUT_MINUTES = int(os.environ.get('BACKUP_TIMEOUT_MINUTES', 30))
    PG_DUMP_PATH = os.environ.get('PG_DUMP_PATH', 'pg_dump')
    REMOVE_PARTIAL_ON_TIMEOUT = _env_bool('REMOVE_PARTIAL_ON_TIMEOUT')

    # Logs
    LOG_DIR = os.environ.get('LOG_DIR') or os.path.join(BASE_DIR, 'Logs')
    LOG_RETENTION_DAYS = int(os.environ.get('LOG_RETENTION_DAYS', 30))

    # Scheduler
    BACKUP_SCHEDULE_CRON = os.environ.get('BACKUP_SCHEDULE_CRON', '0 2 * * *')
    SCHEDULER_TIMEZONE = os.environ.get('SCHEDULER_TIMEZONE', 'UTC')
    SCHEDULER_ENABLED = _env_bool('SCHEDULER_ENABLED')


class DevelopmentConfig(Config):
    """Development configuration"""
    DEBUG = True

    # Keep everything under the project directory for local runs
    DATA_DIR = os.path.join(Config.BASE_DIR, 'data')
    BACKUP_PATH = os.environ.get('BACKUP_PATH') or os.path.join(DATA_DIR, 'Backups')
    LOG_DIR = os.environ.get('LOG_DIR') or os.path.join(DATA_DIR, 'Logs')


class ProductionConfig(Config):
    """Production configuration"""
    DEBUG = False


class TestingConfig(Config):
    """Testing configuration"""
    TESTING = True
    DEBUG = False
    PG_HOST = 'localhost'
    PG_USERNAME = 'backup'
    PG_PASSWORD = 'secret'
    SCHEDULER_ENABLED = False


# Configuration dictionary
config = {
    'development': DevelopmentConfig,
    'production': ProductionConfig,
    'testing': TestingConfig,
    'default': ProductionConfig
}
