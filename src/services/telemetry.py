"""OpenTelemetry logging and tracing for database refresh cycles"""

import logging
from contextlib import AbstractContextManager, nullcontext
from datetime import datetime, timezone

from opentelemetry import trace
from opentelemetry._logs import SeverityNumber, set_logger_provider
from opentelemetry.exporter.otlp.proto.http._log_exporter import OTLPLogExporter
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk._logs import LoggerProvider
from opentelemetry.sdk._logs.export import BatchLogRecordProcessor
from opentelemetry.sdk.resources import SERVICE_NAME, SERVICE_VERSION, Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor

from src.config import AppConfig, config
from src.models.refresh_result import RefreshResult

logger = logging.getLogger(__name__)

CYCLE_NAME = "database_refresh"


class TelemetryService:
    """Handle OpenTelemetry logging and tracing for refresh cycles"""

    def __init__(self, app_config: AppConfig | None = None):
        self.config = app_config or config
        self.logging_enabled = self.config.otel_logging_enabled
        self.tracing_enabled = self.config.otel_tracing_enabled
        self.logger_provider = None
        self.tracer_provider = None
        self.otel_logger = None
        self.tracer = None

        # Initialize logging if enabled
        if self.logging_enabled:
            try:
                self._initialize_logging()
            except Exception as e:
                logger.warning(f"Failed to initialize OTel logging: {e}. Logging disabled.")
                self.logging_enabled = False

        # Initialize tracing if enabled
        if self.tracing_enabled:
            try:
                self._initialize_tracing()
            except Exception as e:
                logger.warning(f"Failed to initialize OTel tracing: {e}. Tracing disabled.")
                self.tracing_enabled = False

    def _resource(self) -> Resource:
        return Resource(
            attributes={
                SERVICE_NAME: self.config.otel_service_name,
                SERVICE_VERSION: self.config.otel_service_version,
            }
        )

    def _initialize_logging(self) -> None:
        """Initialize OpenTelemetry logging with OTLP log exporter"""
        self.logger_provider = LoggerProvider(resource=self._resource())

        log_endpoint = self.config.otel_endpoint
        if not log_endpoint.endswith("/v1/logs"):
            log_endpoint = f"{log_endpoint.rstrip('/')}/v1/logs"

        self.logger_provider.add_log_record_processor(
            BatchLogRecordProcessor(OTLPLogExporter(endpoint=log_endpoint))
        )
        set_logger_provider(self.logger_provider)
        self.otel_logger = self.logger_provider.get_logger(__name__)

        logger.info(f"OpenTelemetry logging initialized with endpoint: {log_endpoint}")

    def _initialize_tracing(self) -> None:
        """Initialize OpenTelemetry tracing with OTLP trace exporter"""
        self.tracer_provider = TracerProvider(resource=self._resource())

        trace_endpoint = self.config.otel_endpoint
        if not trace_endpoint.endswith("/v1/traces"):
            trace_endpoint = f"{trace_endpoint.rstrip('/')}/v1/traces"

        self.tracer_provider.add_span_processor(
            BatchSpanProcessor(OTLPSpanExporter(endpoint=trace_endpoint))
        )
        trace.set_tracer_provider(self.tracer_provider)
        self.tracer = self.tracer_provider.get_tracer(__name__)

        logger.info(f"OpenTelemetry tracing initialized with endpoint: {trace_endpoint}")

    def cycle_span(self) -> AbstractContextManager:
        """Span wrapping one refresh cycle, or a no-op when tracing is off"""
        if not self.tracing_enabled or self.tracer is None:
            return nullcontext()
        return self.tracer.start_as_current_span(CYCLE_NAME)

    def log_refresh(self, result: RefreshResult) -> None:
        """
        Emit one log record describing a finished refresh cycle

        Args:
            result: Outcome of the cycle
        """
        if not self.logging_enabled or not self.otel_logger:
            return

        try:
            # Low-cardinality attributes only
            attributes: dict[str, str | int | float | bool] = {
                "refresh.name": CYCLE_NAME,
                "refresh.database": self.config.db_name,
                "refresh.success": result.success,
                "refresh.skipped": result.skipped,
                "refresh.duration_seconds": float(result.duration_seconds),
            }

            if result.file_hash:
                attributes["refresh.file_hash"] = result.file_hash

            if result.error:
                error_message = result.error
                if len(error_message) > 500:
                    error_message = error_message[:500] + "..."
                attributes["error.message"] = error_message

            if result.skipped:
                status = "SKIPPED"
            elif result.success:
                status = "SUCCESS"
            else:
                status = "FAILED"

            log_body = f"[{CYCLE_NAME}] {status} duration={result.duration_seconds:.2f}s"

            if result.success or result.skipped:
                severity = SeverityNumber.INFO
            else:
                severity = SeverityNumber.ERROR

            self.otel_logger.emit(
                body=log_body,
                severity_number=severity,
                attributes=attributes,
                timestamp=int(datetime.now(timezone.utc).timestamp() * 1e9),
            )

        except Exception as e:
            # Don't let telemetry errors break the refresh loop
            logger.warning(f"Failed to log telemetry: {e}")

    def shutdown(self) -> None:
        """Flush and stop exporters"""
        for provider in (self.logger_provider, self.tracer_provider):
            if provider is None:
                continue
            try:
                provider.shutdown()
            except Exception as e:
                logger.warning(f"Failed to shut down telemetry provider: {e}")


# Global telemetry service instance
_telemetry_service: TelemetryService | None = None


def get_telemetry_service(app_config: AppConfig | None = None) -> TelemetryService:
    """Get or create the global telemetry service instance"""
    global _telemetry_service
    if _telemetry_service is None:
        _telemetry_service = TelemetryService(app_config)
    return _telemetry_service
