"""Tests for the processor and search command-line interfaces."""

import os
from pathlib import Path
from typing import Callable, Iterator
from unittest.mock import MagicMock, patch

import pytest
from click.testing import CliRunner

from context_keeper.errors import StorageError
from context_keeper.processor.__main__ import cli as processor_cli
from context_keeper.search.__main__ import cli as search_cli


@pytest.fixture(autouse=True)
def configure_logging() -> Iterator[MagicMock]:
    """Keep the CLIs from configuring file logging under the home directory."""
    with patch("context_keeper.api.configure_logging") as mock:
        yield mock


@pytest.fixture
def runner() -> CliRunner:
    return CliRunner()


@pytest.fixture
def base_args(tmp_path: Path) -> list[str]:
    """Options pointing both CLIs at a temporary store and no config file."""
    return ["--config", str(tmp_path / "missing.yaml"), "--root", str(tmp_path / "store")]


class TestProcessorCli:
    """Tests for the archive/stats/cleanup commands."""

    def test_archive(self, runner: CliRunner, base_args: list[str], write_transcript: Callable[..., Path]) -> None:
        path = write_transcript()
        result = runner.invoke(processor_cli, [*base_args, "archive", str(path), "--trigger", "preCompact"])
        assert result.exit_code == 0, result.output
        assert "archived session sess-1" in result.output

        again = runner.invoke(processor_cli, [*base_args, "archive", str(path)])
        assert "skipped (unchanged)" in again.output

        forced = runner.invoke(processor_cli, [*base_args, "archive", "--force", str(path)])
        assert "archived session sess-1" in forced.output

    def test_debug_flag(self, runner: CliRunner, base_args: list[str], configure_logging: MagicMock) -> None:
        """--debug is passed through to logging setup along with the loaded config."""
        result = runner.invoke(processor_cli, ["--debug", *base_args, "stats"])
        assert result.exit_code == 0
        name, config = configure_logging.call_args.args
        assert name == "processor"
        assert config.logging.redact is True
        assert configure_logging.call_args.kwargs == {"debug": True}

    def test_archive_missing_file(self, runner: CliRunner, base_args: list[str], tmp_path: Path) -> None:
        result = runner.invoke(processor_cli, [*base_args, "archive", str(tmp_path / "nope.jsonl")])
        assert result.exit_code != 0

    def test_archive_storage_failure(
        self, runner: CliRunner, base_args: list[str], write_transcript: Callable[..., Path]
    ) -> None:
        """A storage failure is reported and turns into a non-zero exit code."""
        with patch("context_keeper.api.archive_transcript", side_effect=StorageError("disk full")):
            result = runner.invoke(processor_cli, [*base_args, "archive", str(write_transcript())])
        assert result.exit_code == 1

    def test_stats(self, runner: CliRunner, base_args: list[str], write_transcript: Callable[..., Path]) -> None:
        runner.invoke(processor_cli, [*base_args, "archive", str(write_transcript())])
        result = runner.invoke(processor_cli, [*base_args, "stats"])
        assert result.exit_code == 0
        assert "total_sessions: 1" in result.output
        assert "indexed_sessions: 1" in result.output
        assert "top_keywords: " in result.output

    def test_cleanup(self, runner: CliRunner, base_args: list[str]) -> None:
        result = runner.invoke(processor_cli, [*base_args, "cleanup", "--days", "30"])
        assert result.exit_code == 0
        assert "Removed 0 session file(s)" in result.output

    def test_cleanup_unindexes_expired(
        self, runner: CliRunner, base_args: list[str], tmp_path: Path, write_transcript: Callable[..., Path]
    ) -> None:
        runner.invoke(processor_cli, [*base_args, "archive", str(write_transcript())])
        for path in (tmp_path / "store" / "projects").glob("*/sessions/*.json"):
            os.utime(path, (0, 0))

        result = runner.invoke(processor_cli, [*base_args, "cleanup", "--days", "30"])
        assert "Removed 1 session file(s), 1 session(s) unindexed" in result.output
        stats = runner.invoke(processor_cli, [*base_args, "stats"])
        assert "total_sessions: 0" in stats.output
        assert "indexed_sessions: 0" in stats.output


class TestSearchCli:
    """Tests for the search/recent/patterns/rebuild-index commands."""

    @pytest.fixture
    def archived(self, runner: CliRunner, base_args: list[str], write_transcript: Callable[..., Path]) -> None:
        for session_id in ("a", "b"):
            runner.invoke(processor_cli, [*base_args, "archive", str(write_transcript(session_id))])

    @pytest.mark.usefixtures("archived")
    def test_search(self, runner: CliRunner, base_args: list[str]) -> None:
        result = runner.invoke(search_cli, [*base_args, "search", "redis", "-v"])
        assert result.exit_code == 0, result.output
        assert "Found 2 contexts" in result.output
        assert "Why does the redis cache time out?" in result.output
        assert "Project: /home/user/webapp" in result.output

    @pytest.mark.usefixtures("archived")
    def test_search_with_filters(self, runner: CliRunner, base_args: list[str]) -> None:
        result = runner.invoke(
            search_cli, [*base_args, "search", "redis", "--file", "*.ts", "--since", "2020-01-01"]
        )
        assert result.exit_code == 0, result.output
        assert "Found 0 contexts" in result.output

    @pytest.mark.usefixtures("archived")
    def test_recent(self, runner: CliRunner, base_args: list[str]) -> None:
        result = runner.invoke(search_cli, [*base_args, "recent", "-n", "1"])
        assert result.exit_code == 0
        assert result.output.count("Session:") == 1

    @pytest.mark.usefixtures("archived")
    def test_patterns(self, runner: CliRunner, base_args: list[str]) -> None:
        result = runner.invoke(search_cli, [*base_args, "patterns", "--type", "command"])
        assert result.exit_code == 0
        assert "[command] pytest <path> -q" in result.output

    def test_patterns_none(self, runner: CliRunner, base_args: list[str]) -> None:
        result = runner.invoke(search_cli, [*base_args, "patterns"])
        assert "No recurring patterns found" in result.output

    def test_patterns_bad_type(self, runner: CliRunner, base_args: list[str]) -> None:
        result = runner.invoke(search_cli, [*base_args, "patterns", "--type", "regex"])
        assert result.exit_code == 2

    @pytest.mark.usefixtures("archived")
    def test_rebuild_index(self, runner: CliRunner, base_args: list[str]) -> None:
        result = runner.invoke(search_cli, [*base_args, "rebuild-index"])
        assert result.exit_code == 0
        assert "Indexed 2 sessions" in result.output

    @pytest.mark.usefixtures("archived")
    def test_analyze(self, runner: CliRunner, base_args: list[str]) -> None:
        result = runner.invoke(search_cli, [*base_args, "analyze", "/home/user/webapp"])
        assert result.exit_code == 0, result.output
        assert "Patterns: " in result.output
        assert "[low] Frequently Modified Files" in result.output
        assert "/home/user/webapp/src/cache.py" in result.output

    @pytest.mark.parametrize(
        ("target", "args"),
        [
            ("search", ["search", "redis"]),
            ("search", ["recent"]),
            ("get_patterns", ["patterns"]),
            ("rebuild_index", ["rebuild-index"]),
            ("analyze_project", ["analyze", "/srv/app"]),
        ],
    )
    def test_storage_failure_exits_nonzero(
        self, runner: CliRunner, base_args: list[str], target: str, args: list[str]
    ) -> None:
        """Storage errors are logged and turn into exit code 1 instead of a traceback."""
        with patch(f"context_keeper.api.{target}", side_effect=StorageError("disk full")):
            result = runner.invoke(search_cli, [*base_args, *args])
        assert result.exit_code == 1
        assert not isinstance(result.exception, StorageError)
