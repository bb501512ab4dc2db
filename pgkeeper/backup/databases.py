"""
Database enumeration.

Lists the databases on a PostgreSQL server that are eligible for backup:
everything except template databases and the server's bookkeeping
`postgres` database, in lexicographic order.
"""

import logging
from typing import List

from sqlalchemy import create_engine, text
from sqlalchemy.engine import URL
from sqlalchemy.exc import SQLAlchemyError

from pgkeeper.models import ServerSettings


LIST_DATABASES_SQL = text(
    "SELECT datname FROM pg_database "
    "WHERE datistemplate = false "
    "AND datname != 'postgres' "
    "ORDER BY datname"
)


class ServerConnectionError(ConnectionError):
    """Raised when the server is unreachable or rejects the credentials."""
    pass


def build_connection_url(settings: ServerSettings) -> URL:
    """
    Build a SQLAlchemy URL for the settings' default database.

    Args:
        settings: Server settings snapshot

    Returns:
        sqlalchemy URL using the psycopg2 driver
    """
    return URL.create(
        'postgresql+psycopg2',
        username=settings.username,
        password=settings.password or None,
        host=settings.host,
        port=settings.port,
        database=settings.database
    )


class DatabaseEnumerator:
    """
    Lists backup-eligible databases from the server.
    """

    def __init__(self, logger: logging.Logger, connect_timeout: int = 30):
        """
        Initialize database enumerator.

        Args:
            logger: Logger to record progress and failures on
            connect_timeout: Seconds to wait for the server to accept a connection
        """
        self.logger = logger
        self.connect_timeout = connect_timeout

    def list_databases(self, settings: ServerSettings) -> List[str]:
        """
        List database names eligible for backup.

        Args:
            settings: Server settings snapshot

        Returns:
            Database names ordered lexicographically

        Raises:
            ServerConnectionError: If the server cannot be reached or queried
        """
        engine = create_engine(
            build_connection_url(settings),
            connect_args={'connect_timeout': self.connect_timeout},
            pool_pre_ping=False
        )

        try:
            with engine.connect() as conn:
                rows = conn.execute(LIST_DATABASES_SQL).fetchall()
        except SQLAlchemyError as e:
            self.logger.error(
                f"Error getting database names from {settings.host}:{settings.port}: {e}",
                extra={'host': settings.host, 'port': settings.port}
            )
            raise ServerConnectionError(
                f"Failed to list databases on {settings.host}:{settings.port}: {e}"
            ) from e
        finally:
            engine.dispose()

        # Codepoint order, independent of the server's collation
        databases = sorted({row[0] for row in rows if row[0]})

        self.logger.info(f"Found {len(databases)} databases to backup")
        return databases
