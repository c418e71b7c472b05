"""Unit tests for the command line interface"""

import argparse
from datetime import UTC, datetime
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from repovec import cli
from repovec.exceptions import SnapshotNotFoundError
from repovec.models.reports import PipelineResult


class TestParseFilter:
    """Test --filter parsing"""

    def test_none(self):
        assert cli.parse_filter(None) is None
        assert cli.parse_filter([]) is None

    def test_json_and_plain_values(self):
        parsed = cli.parse_filter(["type=file", "chunk_index=0", "owner=acme", "flag=true"])

        assert parsed == {"type": "file", "chunk_index": 0, "owner": "acme", "flag": True}

    def test_quoted_json_string(self):
        assert cli.parse_filter(['sha="123"']) == {"sha": "123"}

    def test_value_may_contain_equals(self):
        assert cli.parse_filter(["message=a=b"]) == {"message": "a=b"}

    def test_missing_separator(self):
        with pytest.raises(argparse.ArgumentTypeError):
            cli.parse_filter(["typefile"])


class TestMain:
    """Test command dispatch and exit codes"""

    def result(self, success=True):
        now = datetime.now(UTC)
        return PipelineResult(
            success=success,
            start_time=now,
            end_time=now,
            duration_seconds=0.0,
            error=None if success else "boom",
        )

    def test_run_success(self):
        orchestrator = MagicMock()
        orchestrator.refresh_once.return_value = self.result()

        with patch("repovec.cli.RefreshOrchestrator", return_value=orchestrator) as factory:
            assert cli.main(["run", "--reset"]) == 0

        assert factory.call_args.kwargs["reset"] is True
        assert factory.call_args.kwargs["skip_cleanup"] is False

    def test_run_failure_exit_code(self):
        orchestrator = MagicMock()
        orchestrator.refresh_once.return_value = self.result(success=False)

        with patch("repovec.cli.RefreshOrchestrator", return_value=orchestrator):
            assert cli.main(["run"]) == 1

    def test_bad_filter_exit_code(self):
        assert cli.main(["query", "hello", "--filter", "broken"]) == 1

    def test_unknown_command_exits(self):
        with pytest.raises(SystemExit):
            cli.main(["explode"])

    def test_query_closes_snapshot_source(self):
        source = MagicMock()
        service = MagicMock()
        service.query = AsyncMock(side_effect=SnapshotNotFoundError("no snapshot"))

        with (
            patch("repovec.cli.create_snapshot_source", return_value=source),
            patch("repovec.cli.SearchService", return_value=service),
        ):
            assert cli.main(["query", "hello"]) == 1

        source.close.assert_called_once()
