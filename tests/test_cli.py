"""Tests for the command-line entry point."""

import argparse
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from semantic_indexer import cli
from semantic_indexer.models.batch import RunSummary
from semantic_indexer.utils.errors import BatchFailedError, PipelineCancelled, TransientError


class TestParseFilters:
    """Test --filter parsing."""

    def test_values_are_json_when_possible(self):
        assert cli.parse_filters(["page_index=2", "language=en", "draft=false"]) == {
            "page_index": 2,
            "language": "en",
            "draft": False,
        }

    def test_no_filters(self):
        assert cli.parse_filters(None) is None

    def test_invalid_filter(self):
        with pytest.raises(argparse.ArgumentTypeError):
            cli.parse_filters(["no-equals-sign"])


class TestArguments:
    """Test argument parsing."""

    def test_ingest_defaults(self):
        args = cli.build_parser().parse_args(["ingest"])
        assert args.max_documents == 1000
        assert args.batch_size is None
        assert args.skip_existing is True

    def test_no_skip_existing(self):
        args = cli.build_parser().parse_args(["ingest", "--no-skip-existing", "--batch-size", "10"])
        assert args.skip_existing is False
        assert args.batch_size == 10

    def test_invalid_threshold_exits(self):
        with pytest.raises(SystemExit):
            cli.main(["search", "query", "--score-threshold", "1.5"])


class TestIngestCommand:
    """Test exit codes of the ingest command."""

    def _run(self, capsys, outcome):
        pipeline = MagicMock()
        if isinstance(outcome, Exception):
            pipeline.run = AsyncMock(side_effect=outcome)
        else:
            pipeline.run = AsyncMock(return_value=outcome)

        with patch.object(cli, "build_pipeline", return_value=pipeline), patch.object(cli, "setup_logging"):
            code = cli.main(["ingest", "--max-documents", "50"])

        assert pipeline.run.await_args.kwargs["max_documents"] == 50
        return code, capsys.readouterr().out

    def test_success(self, capsys):
        code, out = self._run(capsys, RunSummary(total_chunks=50, processed=50, final_store_count=50))
        assert code == 0
        assert "COMPLETED" in out

    def test_failure_prints_summary(self, capsys):
        error = BatchFailedError(1, 0, 25, 4, ["chunk-0000"], cause=TransientError("timeout"))
        error.summary = RunSummary(total_chunks=50, error="BATCH_FAILED: timeout", pending_chunk_ids=["chunk-0000"])

        code, out = self._run(capsys, error)

        assert code == 1
        assert "FAILED" in out

    def test_cancelled(self, capsys):
        error = PipelineCancelled(processed=25, total=50)
        error.summary = RunSummary(total_chunks=50, processed=25, cancelled=True)

        code, out = self._run(capsys, error)

        assert code == 130
        assert "CANCELLED" in out


class TestResetCommand:
    """Test the reset command."""

    def test_requires_confirmation(self, capsys):
        with patch.object(cli, "VectorStore") as store_cls, patch.object(cli, "setup_logging"):
            code = cli.main(["reset"])

        assert code == 1
        store_cls.assert_not_called()
        assert "--yes" in capsys.readouterr().err
