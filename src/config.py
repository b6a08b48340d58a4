"""Centralized configuration using Pydantic BaseSettings"""

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class AppConfig(BaseSettings):
    """Application configuration with environment variable support"""

    # Target database
    db_name: str = Field(default="REPLICA", description="Name of the database to refresh")

    # Refresh cycle
    refresh_interval_seconds: int = Field(
        default=180, ge=1, description="Seconds between scheduled refresh cycles"
    )
    max_retry_attempts: int = Field(
        default=5, ge=1, le=50, description="Attempts per retried operation"
    )
    retry_delay_seconds: float = Field(
        default=10, ge=0, le=3600, description="Fixed delay between attempts (seconds)"
    )

    # Files
    log_file_path: str = Field(
        default="./logs/database_manager.log", description="Append-only log file path"
    )
    source_path: str = Field(
        default="./data/source/REPLICA.mdf", description="Externally produced data file"
    )
    destination_folder: str = Field(
        default="./data/attached", description="Directory the data file is copied into"
    )
    verify_destination_hash: bool = Field(
        default=False, description="Compare destination digest against the source digest"
    )

    # Volume snapshot
    snapshot_enabled: bool = Field(
        default=True, description="Try a volume shadow copy before the plain copy"
    )
    snapshot_timeout_seconds: int = Field(
        default=120, ge=1, le=3600, description="Timeout for snapshot create/delete commands"
    )

    # SQL Server connection
    sql_server: str = Field(
        default="localhost\\SQLEXPRESS", description="SQL Server host or host\\instance"
    )
    sql_user: str = Field(default="sa", description="SQL login")
    sql_password: SecretStr = Field(default=SecretStr(""), description="SQL login password")
    sql_database: str = Field(
        default="master", description="Database the management connection opens"
    )
    sql_driver: str = Field(
        default="ODBC Driver 18 for SQL Server", description="Installed ODBC driver name"
    )
    sql_encrypt: bool = Field(default=True, description="Encrypt the connection")
    sql_trust_server_certificate: bool = Field(
        default=True, description="Accept self-signed server certificates"
    )
    sql_connection_timeout_seconds: int = Field(
        default=30, ge=1, le=600, description="Login timeout"
    )
    sql_request_timeout_seconds: int = Field(
        default=30, ge=0, le=3600, description="Per-statement timeout (0 = none)"
    )
    sql_pool_size: int = Field(default=10, ge=1, le=100, description="Connection pool size")
    sql_pool_recycle_seconds: int = Field(
        default=30, ge=-1, description="Recycle pooled connections older than this"
    )

    # OpenTelemetry
    otel_logging_enabled: bool = Field(
        default=False, description="Export a log record per refresh cycle"
    )
    otel_tracing_enabled: bool = Field(
        default=False, description="Export a trace span per refresh cycle"
    )
    otel_endpoint: str = Field(
        default="http://otel-collector.otel.svc.cluster.local:4318",
        description="OpenTelemetry collector endpoint (HTTP/protobuf)",
    )
    otel_service_name: str = Field(
        default="db-refresh", description="Service name for OpenTelemetry"
    )
    otel_service_version: str = Field(
        default="1.0.0", description="Service version for OpenTelemetry"
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        frozen=True,
    )


# Global config instance
config = AppConfig()
