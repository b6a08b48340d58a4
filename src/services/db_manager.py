"""Database manager: existence check, drop and attach of the refreshed database"""

import logging
from enum import Enum

from src.config import config
from src.services.file_transfer import FileTransfer
from src.services.retry import RetryExecutor
from src.services.sql_client import DatabaseClient, DatabaseQueryFailed

logger = logging.getLogger(__name__)

# SQL Server: "Could not open new database '%.*ls'. CREATE DATABASE is aborted."
COULD_NOT_OPEN_NEW_DATABASE = 1813

EXISTS_SQL = "SELECT database_id FROM sys.databases WHERE name = :name"

DROP_SQL = """
DECLARE @db sysname = :name;
IF DB_ID(@db) IS NOT NULL
BEGIN
    DECLARE @ddl nvarchar(max) =
        N'ALTER DATABASE ' + QUOTENAME(@db) + N' SET SINGLE_USER WITH ROLLBACK IMMEDIATE; '
        + N'DROP DATABASE ' + QUOTENAME(@db) + N';';
    EXEC sp_executesql @ddl;
END
"""

ATTACH_SQL_TEMPLATE = """
DECLARE @db sysname = :name;
DECLARE @filename nvarchar(4000) = :filename;
DECLARE @ddl nvarchar(max) =
    N'CREATE DATABASE ' + QUOTENAME(@db)
    + N' ON (FILENAME = N''' + REPLACE(@filename, N'''', N'''''') + N''') '
    + N'{mode};';
EXEC sp_executesql @ddl;
"""


class AttachMode(str, Enum):
    """How CREATE DATABASE attaches a data file without its log"""

    REBUILD_LOG = "FOR ATTACH_REBUILD_LOG"
    FORCE_REBUILD_LOG = "FOR ATTACH_FORCE_REBUILD_LOG"

    @property
    def statement(self) -> str:
        return ATTACH_SQL_TEMPLATE.format(mode=self.value)


class FileInaccessible(Exception):
    """Raised when the data file to attach cannot be read"""

    pass


def is_could_not_open_new_database(error: DatabaseQueryFailed) -> bool:
    """True if the attach failed because SQL Server could not open the new database"""
    if COULD_NOT_OPEN_NEW_DATABASE in error.error_codes:
        return True
    return "could not open new database" in str(error).lower()


class DatabaseManager:
    """Manages the lifecycle of one named database attached from a data file"""

    def __init__(
        self,
        client: DatabaseClient,
        retry: RetryExecutor | None = None,
        db_name: str | None = None,
    ):
        self.client = client
        self.retry = retry or RetryExecutor()
        self.db_name = db_name or config.db_name

    def exists(self) -> bool:
        """Check sys.databases for the configured name"""

        def _exists() -> bool:
            rows = self.client.query(EXISTS_SQL, {"name": self.db_name})
            return len(rows) > 0

        return self.retry.run(_exists, "Database existence check")

    def drop(self) -> bool:
        """
        Drop the database, kicking out other sessions first

        A missing database is not an error; the whole sequence, including the
        existence check, is retried from the top.
        """

        def _drop() -> bool:
            if not self.exists():
                logger.info(f"Database {self.db_name} does not exist, skipping drop operation")
                return True

            try:
                self.client.execute(DROP_SQL, {"name": self.db_name})
            except DatabaseQueryFailed as e:
                raise DatabaseQueryFailed(
                    f"Failed to drop database: {e}", e.error_codes
                ) from e

            logger.info(f"Database {self.db_name} dropped successfully")
            return True

        return self.retry.run(_drop, "Database drop operation")

    def _attach(self, mdf_path: str, mode: AttachMode) -> None:
        self.client.execute(mode.statement, {"name": self.db_name, "filename": mdf_path})
        logger.info(f"Database {self.db_name} created successfully with {mode.value}")

    def create(self, mdf_path: str) -> bool:
        """
        Attach mdf_path as the database

        Tries FOR ATTACH_REBUILD_LOG, and once more with
        FOR ATTACH_FORCE_REBUILD_LOG if SQL Server could not open the new
        database. A retry replays both steps.
        """

        def _create() -> bool:
            if not FileTransfer.is_accessible(mdf_path):
                raise FileInaccessible(f"MDF file {mdf_path} is not accessible")

            try:
                self._attach(mdf_path, AttachMode.REBUILD_LOG)
            except DatabaseQueryFailed as e:
                if not is_could_not_open_new_database(e):
                    raise
                logger.error(
                    "Standard attach failed. Retrying with FOR ATTACH_FORCE_REBUILD_LOG"
                )
                self._attach(mdf_path, AttachMode.FORCE_REBUILD_LOG)

            return True

        return self.retry.run(_create, "Database creation")
