"""OpenTelemetry logging and tracing for queries and pipeline runs"""

import logging
from datetime import UTC, datetime
from typing import Any

from opentelemetry import trace
from opentelemetry._logs import SeverityNumber, set_logger_provider
from opentelemetry.exporter.otlp.proto.http._log_exporter import OTLPLogExporter
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.httpx import HTTPXClientInstrumentor
from opentelemetry.sdk._logs import LoggerProvider
from opentelemetry.sdk._logs.export import BatchLogRecordProcessor
from opentelemetry.sdk.resources import SERVICE_NAME, SERVICE_VERSION, Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor

from repovec.config import config
from repovec.models.reports import PipelineResult
from repovec.models.search_result import QueryOutput

logger = logging.getLogger(__name__)


class TelemetryService:
    """Handle OpenTelemetry logging and tracing"""

    def __init__(self):
        self.logging_enabled = config.otel_logging_enabled
        self.tracing_enabled = config.otel_tracing_enabled
        self.logger_provider = None
        self.tracer_provider = None
        self.otel_logger = None

        if self.logging_enabled:
            try:
                self._initialize_logging()
            except Exception as e:
                logger.warning(f"Failed to initialize OTel logging: {e}. Logging disabled.")
                self.logging_enabled = False

        if self.tracing_enabled:
            try:
                self._initialize_tracing()
            except Exception as e:
                logger.warning(f"Failed to initialize OTel tracing: {e}. Tracing disabled.")
                self.tracing_enabled = False

    def _resource(self) -> Resource:
        return Resource(
            attributes={
                SERVICE_NAME: config.otel_service_name,
                SERVICE_VERSION: config.otel_service_version,
            }
        )

    def _initialize_logging(self) -> None:
        """Initialize OpenTelemetry logging with OTLP log exporter"""
        self.logger_provider = LoggerProvider(resource=self._resource())

        log_endpoint = config.otel_endpoint
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

        trace_endpoint = config.otel_endpoint
        if not trace_endpoint.endswith("/v1/traces"):
            trace_endpoint = f"{trace_endpoint.rstrip('/')}/v1/traces"

        self.tracer_provider.add_span_processor(
            BatchSpanProcessor(OTLPSpanExporter(endpoint=trace_endpoint))
        )
        trace.set_tracer_provider(self.tracer_provider)

        logger.info(f"OpenTelemetry tracing initialized with endpoint: {trace_endpoint}")

    def log_query(
        self,
        query: str,
        parameters: dict[str, Any],
        output: QueryOutput | None = None,
        error: Exception | None = None,
    ) -> None:
        """
        Log a similarity query and its outcome

        Args:
            query: The query text (goes into the log body, not attributes)
            parameters: Query parameters (limit, min_score, metadata_filter)
            output: The query output (if successful)
            error: The error (if failed)
        """
        if not self.logging_enabled or not self.otel_logger:
            return

        try:
            # Attributes stay low cardinality
            attributes: dict[str, str | int | float | bool] = {
                "event.name": "query",
                "response.success": error is None,
            }
            if parameters.get("limit") is not None:
                attributes["query.param.limit"] = int(parameters["limit"])
            if parameters.get("min_score") is not None:
                attributes["query.param.min_score"] = float(parameters["min_score"])
            if parameters.get("metadata_filter"):
                attributes["query.param.filter_keys"] = ",".join(
                    sorted(parameters["metadata_filter"])
                )

            body_parts = ["[query]", "SUCCESS" if error is None else "FAILED"]
            truncated_query = query if len(query) <= 200 else query[:200] + "..."
            body_parts.append(f'query="{truncated_query}"')

            if output is not None:
                attributes["response.result_count"] = len(output.results)
                attributes["response.query_time_ms"] = output.query_info.query_time_ms
                attributes["response.degraded"] = output.query_info.degraded
                if output.results:
                    attributes["response.top_score"] = output.results[0].score
                body_parts.append(
                    f"results={len(output.results)} time={output.query_info.query_time_ms:.1f}ms"
                )

            if error is not None:
                attributes["error.type"] = type(error).__name__
                attributes["error.message"] = _truncate(str(error))
                body_parts.append(f"error={type(error).__name__}")

            self._emit(" ".join(body_parts), attributes, error is not None)

        except Exception as e:
            # Don't let telemetry errors break the application
            logger.warning(f"Failed to log telemetry: {e}")

    def log_pipeline_run(self, result: PipelineResult) -> None:
        """Log counts and outcome of one pipeline run"""
        if not self.logging_enabled or not self.otel_logger:
            return

        try:
            attributes: dict[str, str | int | float | bool] = {
                "event.name": "pipeline_run",
                "pipeline.success": result.success,
                "pipeline.duration_seconds": result.duration_seconds,
                "pipeline.new_items": result.new_items,
                "pipeline.total_items": result.total_items,
                "pipeline.failure_count": len(result.failures),
            }
            if result.retention is not None:
                attributes["retention.age_removed"] = result.retention.age.removed
                attributes["retention.deleted_files_removed"] = (
                    result.retention.deleted_files.removed
                )
                attributes["retention.capacity_removed"] = result.retention.capacity.removed
            if result.export is not None:
                attributes["export.compressed_bytes"] = result.export.compressed_bytes
            if result.error:
                attributes["error.message"] = _truncate(result.error)

            body = (
                f"[pipeline] {'SUCCESS' if result.success else 'FAILED'} "
                f"new={result.new_items} total={result.total_items} "
                f"time={result.duration_seconds:.1f}s"
            )
            self._emit(body, attributes, not result.success)

        except Exception as e:
            logger.warning(f"Failed to log telemetry: {e}")

    def _emit(self, body: str, attributes: dict, failed: bool) -> None:
        severity = logging.ERROR if failed else logging.INFO
        self.otel_logger.emit(
            body=body,
            severity_number=SeverityNumber(self._severity_to_number(severity)),
            attributes=attributes,
            timestamp=int(datetime.now(UTC).timestamp() * 1e9),
        )

    def _severity_to_number(self, level: int) -> int:
        """Convert Python logging level to OpenTelemetry severity number"""
        if level >= logging.CRITICAL:
            return 21  # FATAL
        elif level >= logging.ERROR:
            return 17  # ERROR
        elif level >= logging.WARNING:
            return 13  # WARN
        elif level >= logging.INFO:
            return 9  # INFO
        else:
            return 5  # DEBUG


def _truncate(message: str, limit: int = 500) -> str:
    return message if len(message) <= limit else message[:limit] + "..."


# Global telemetry service instance
_telemetry_service: TelemetryService | None = None
# Track if instrumentation has been initialized
_instrumentation_initialized = False


def _ensure_instrumentation_initialized() -> None:
    """Ensure httpx instrumentation is initialized before HTTP clients are created"""
    global _instrumentation_initialized
    if not _instrumentation_initialized and config.otel_tracing_enabled:
        try:
            HTTPXClientInstrumentor().instrument()
            _instrumentation_initialized = True
            logger.info("HTTP request tracing instrumentation initialized")
        except Exception as e:
            logger.warning(f"Failed to initialize HTTP tracing instrumentation: {e}")


def get_telemetry_service() -> TelemetryService:
    """Get or create the global telemetry service instance"""
    global _telemetry_service
    _ensure_instrumentation_initialized()
    if _telemetry_service is None:
        _telemetry_service = TelemetryService()
    return _telemetry_service
