"""Unit tests for telemetry service"""

from unittest.mock import MagicMock, patch

from conftest import NOW
from repovec.models.reports import PipelineResult, RetentionReport, StageReport
from repovec.models.search_result import QueryInfo, QueryOutput, SearchResult
from repovec.services.telemetry import TelemetryService


def configure(mock_config, logging_enabled=True, tracing_enabled=False):
    mock_config.otel_logging_enabled = logging_enabled
    mock_config.otel_tracing_enabled = tracing_enabled
    mock_config.otel_endpoint = "http://localhost:4318"
    mock_config.otel_service_name = "test-service"
    mock_config.otel_service_version = "1.0.0"


def make_output(score=0.95, degraded=False):
    return QueryOutput(
        results=[SearchResult(id="commit-abc", type="commit", content="fix", score=score)],
        query_info=QueryInfo(
            original_query="test query", total_results=1, query_time_ms=42.5, degraded=degraded
        ),
    )


class TestTelemetryService:
    """Test telemetry service initialization and logging"""

    @patch("repovec.services.telemetry.config")
    def test_telemetry_service_disabled(self, mock_config):
        """Test that telemetry can be disabled"""
        configure(mock_config, logging_enabled=False)

        service = TelemetryService()

        assert service.logging_enabled is False
        assert service.tracing_enabled is False
        assert service.otel_logger is None

    @patch("repovec.services.telemetry.config")
    @patch("repovec.services.telemetry.set_logger_provider")
    def test_telemetry_service_enabled(self, mock_set_logger_provider, mock_config):
        """Test that telemetry initializes when enabled"""
        configure(mock_config)

        service = TelemetryService()

        assert service.logging_enabled is True
        assert service.tracing_enabled is False
        assert service.logger_provider is not None
        assert mock_set_logger_provider.called

    @patch("repovec.services.telemetry.config")
    @patch("repovec.services.telemetry.trace.set_tracer_provider")
    def test_telemetry_tracing_enabled(self, mock_set_tracer_provider, mock_config):
        """Test that tracing initializes when enabled"""
        configure(mock_config, logging_enabled=False, tracing_enabled=True)

        service = TelemetryService()

        assert service.logging_enabled is False
        assert service.tracing_enabled is True
        assert service.tracer_provider is not None

    @patch("repovec.services.telemetry.config")
    def test_log_query_when_disabled(self, mock_config):
        """Test that logging does nothing when disabled"""
        configure(mock_config, logging_enabled=False)

        service = TelemetryService()
        # Should not raise any errors
        service.log_query("test query", {"limit": 5}, output=make_output())

    @patch("repovec.services.telemetry.config")
    @patch("repovec.services.telemetry.set_logger_provider")
    def test_log_query_with_output(self, mock_set_logger_provider, mock_config):
        """Test logging a successful query"""
        configure(mock_config)
        mock_otel_logger = MagicMock()

        service = TelemetryService()
        service.otel_logger = mock_otel_logger

        service.log_query(
            "test query",
            {"limit": 5, "min_score": 0.2, "metadata_filter": {"type": "file", "repo": "app"}},
            output=make_output(),
        )

        assert mock_otel_logger.emit.called
        call_kwargs = mock_otel_logger.emit.call_args.kwargs

        assert "test query" in call_kwargs["body"]
        assert "SUCCESS" in call_kwargs["body"]

        attrs = call_kwargs["attributes"]
        assert attrs["event.name"] == "query"
        assert attrs["query.param.limit"] == 5
        assert attrs["query.param.min_score"] == 0.2
        assert attrs["query.param.filter_keys"] == "repo,type"
        assert attrs["response.success"] is True
        assert attrs["response.result_count"] == 1
        assert attrs["response.top_score"] == 0.95
        assert attrs["response.degraded"] is False

        # High-cardinality query text stays out of attributes
        assert "query.text" not in attrs

    @patch("repovec.services.telemetry.config")
    @patch("repovec.services.telemetry.set_logger_provider")
    def test_log_query_with_error(self, mock_set_logger_provider, mock_config):
        """Test logging a failed query"""
        configure(mock_config)
        mock_otel_logger = MagicMock()

        service = TelemetryService()
        service.otel_logger = mock_otel_logger

        service.log_query("test query", {"limit": 5}, error=ValueError("Test error"))

        call_kwargs = mock_otel_logger.emit.call_args.kwargs
        assert "FAILED" in call_kwargs["body"]
        assert "ValueError" in call_kwargs["body"]

        attrs = call_kwargs["attributes"]
        assert attrs["response.success"] is False
        assert attrs["error.type"] == "ValueError"
        assert "Test error" in attrs["error.message"]

    @patch("repovec.services.telemetry.config")
    @patch("repovec.services.telemetry.set_logger_provider")
    def test_log_query_truncates_long_query(self, mock_set_logger_provider, mock_config):
        """Test that very long queries are truncated in log body"""
        configure(mock_config)
        mock_otel_logger = MagicMock()

        service = TelemetryService()
        service.otel_logger = mock_otel_logger

        long_query = "a" * 300
        service.log_query(long_query, {"limit": 5}, output=make_output())

        body = mock_otel_logger.emit.call_args.kwargs["body"]
        assert "..." in body
        assert "a" * 201 not in body

    @patch("repovec.services.telemetry.config")
    @patch("repovec.services.telemetry.set_logger_provider")
    def test_emit_failure_is_swallowed(self, mock_set_logger_provider, mock_config):
        """Test that exporter errors never reach the caller"""
        configure(mock_config)
        mock_otel_logger = MagicMock()
        mock_otel_logger.emit.side_effect = RuntimeError("collector down")

        service = TelemetryService()
        service.otel_logger = mock_otel_logger

        service.log_query("test query", {"limit": 5}, output=make_output())

    @patch("repovec.services.telemetry.config")
    @patch("repovec.services.telemetry.set_logger_provider")
    def test_log_pipeline_run(self, mock_set_logger_provider, mock_config):
        """Test logging a pipeline run with retention counts"""
        configure(mock_config)
        mock_otel_logger = MagicMock()

        service = TelemetryService()
        service.otel_logger = mock_otel_logger

        result = PipelineResult(
            success=True,
            start_time=NOW,
            end_time=NOW,
            duration_seconds=3.5,
            new_items=4,
            total_items=10,
            retention=RetentionReport(
                age=StageReport.from_counts(12, 11),
                deleted_files=StageReport.from_counts(11, 10),
                capacity=StageReport.from_counts(10, 10),
                total=StageReport.from_counts(12, 10),
            ),
            failures=["list acme/flaky: GitHubFetchError: boom"],
        )
        service.log_pipeline_run(result)

        call_kwargs = mock_otel_logger.emit.call_args.kwargs
        assert call_kwargs["body"].startswith("[pipeline] SUCCESS")

        attrs = call_kwargs["attributes"]
        assert attrs["pipeline.new_items"] == 4
        assert attrs["pipeline.failure_count"] == 1
        assert attrs["retention.age_removed"] == 1
        assert attrs["retention.deleted_files_removed"] == 1
        assert attrs["retention.capacity_removed"] == 0
