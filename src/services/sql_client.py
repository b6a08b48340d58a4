"""SQL Server client: lazily created SQLAlchemy connection pool"""

import logging
import re
import threading
from typing import Any, Protocol

from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import URL, Engine
from sqlalchemy.exc import DBAPIError, SQLAlchemyError

from src.config import AppConfig

logger = logging.getLogger(__name__)

# pyodbc renders SQL Server error numbers as "... message text. (1813) (SQLExecDirectW)"
_ERROR_NUMBER_PATTERN = re.compile(r"\((\d{2,6})\)")


class DatabaseQueryFailed(Exception):
    """Raised when a catalog or DDL statement fails"""

    def __init__(self, message: str, error_codes: tuple[int, ...] = ()):
        super().__init__(message)
        self.error_codes = error_codes


class DatabaseClient(Protocol):
    """Minimal database surface the refresh pipeline depends on"""

    def query(self, statement: str, params: dict[str, Any] | None = None) -> list[Any]: ...

    def execute(self, statement: str, params: dict[str, Any] | None = None) -> None: ...

    def close(self) -> None: ...


def extract_error_codes(message: str) -> tuple[int, ...]:
    """Pull SQL Server error numbers out of a driver error message"""
    return tuple(int(code) for code in _ERROR_NUMBER_PATTERN.findall(message))


def build_connection_url(app_config: AppConfig) -> URL:
    """Build the mssql+pyodbc URL from connection settings"""
    return URL.create(
        "mssql+pyodbc",
        username=app_config.sql_user,
        password=app_config.sql_password.get_secret_value(),
        host=app_config.sql_server,
        database=app_config.sql_database,
        query={
            "driver": app_config.sql_driver,
            "Encrypt": "yes" if app_config.sql_encrypt else "no",
            "TrustServerCertificate": "yes" if app_config.sql_trust_server_certificate else "no",
        },
    )


class SqlServerClient:
    """Owns the process-wide connection pool; created on first use, closed once"""

    def __init__(self, app_config: AppConfig):
        self.config = app_config
        self._engine: Engine | None = None
        self._closed = False
        self._lock = threading.Lock()

    def _create_engine(self) -> Engine:
        engine = create_engine(
            build_connection_url(self.config),
            # CREATE/DROP DATABASE cannot run inside a user transaction
            isolation_level="AUTOCOMMIT",
            pool_size=self.config.sql_pool_size,
            max_overflow=0,
            pool_recycle=self.config.sql_pool_recycle_seconds,
            pool_pre_ping=True,
            connect_args={"timeout": self.config.sql_connection_timeout_seconds},
        )

        request_timeout = self.config.sql_request_timeout_seconds

        @event.listens_for(engine, "connect")
        def _set_query_timeout(dbapi_connection, connection_record):
            dbapi_connection.timeout = request_timeout

        return engine

    @property
    def engine(self) -> Engine:
        with self._lock:
            if self._closed:
                raise DatabaseQueryFailed("SQL pool has been closed")
            if self._engine is None:
                self._engine = self._create_engine()
            return self._engine

    def connect(self) -> None:
        """
        Initialize the pool and prove the server is reachable

        Raises:
            DatabaseQueryFailed: If no connection can be opened
        """
        try:
            self.query("SELECT 1")
        except DatabaseQueryFailed as e:
            logger.error(f"Failed to initialize SQL pool: {e}")
            raise
        logger.info("SQL pool initialized successfully")

    def _run(self, statement: str, params: dict[str, Any] | None, fetch: bool) -> list[Any]:
        try:
            with self.engine.connect() as conn:
                result = conn.execute(text(statement), params or {})
                return list(result) if fetch else []
        except DBAPIError as e:
            message = str(e.orig) if e.orig is not None else str(e)
            raise DatabaseQueryFailed(message, extract_error_codes(message)) from e
        except SQLAlchemyError as e:
            raise DatabaseQueryFailed(str(e)) from e

    def query(self, statement: str, params: dict[str, Any] | None = None) -> list[Any]:
        """Run a statement and return all rows"""
        return self._run(statement, params, fetch=True)

    def execute(self, statement: str, params: dict[str, Any] | None = None) -> None:
        """Run a statement that returns no rows"""
        self._run(statement, params, fetch=False)

    def close(self) -> None:
        """Dispose of the pool; later calls are no-ops"""
        with self._lock:
            if self._closed:
                return
            self._closed = True
            engine, self._engine = self._engine, None

        if engine is not None:
            engine.dispose()
            logger.info("SQL pool closed successfully")
