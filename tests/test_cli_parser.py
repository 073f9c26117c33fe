"""Tests for CLI command parsing and dispatch."""

import pytest
from unittest.mock import AsyncMock

from cli.models import (
    BackupCommand,
    ClearCacheCommand,
    PruneCommand,
    RepopulateCommand,
    RestoreCommand,
    RetentionCommand,
    SnapshotsCommand,
)
from cli.parser import ParseError, parse_command
from cli.repl import run_once


class TestParseCommand:
    def test_backup_without_folders(self):
        assert parse_command("backup") == BackupCommand()

    def test_backup_with_quoted_folders(self):
        cmd = parse_command('backup ~/Documents "My Pictures"')
        assert cmd == BackupCommand(sources=("~/Documents", "My Pictures"))

    @pytest.mark.parametrize("line, expected", [
        ("snapshots", SnapshotsCommand()),
        ("prune", PruneCommand()),
        ("repopulate", RepopulateCommand()),
        ("clear-cache", ClearCacheCommand()),
    ])
    def test_commands_without_arguments(self, line, expected):
        assert parse_command(line) == expected

    def test_commands_reject_arguments(self):
        with pytest.raises(ParseError, match="takes no arguments"):
            parse_command("prune now")

    def test_restore(self):
        assert parse_command("restore 1700000000000") == RestoreCommand(timestamp=1700000000000)
        assert parse_command("restore 1700000000000 out") == RestoreCommand(
            timestamp=1700000000000, destination="out"
        )

    @pytest.mark.parametrize("line", ["restore", "restore abc", "restore 1 a b"])
    def test_restore_invalid(self, line):
        with pytest.raises(ParseError):
            parse_command(line)

    def test_retention(self):
        assert parse_command("retention") == RetentionCommand()
        assert parse_command("retention 7 4 12 2") == RetentionCommand(values=(7, 4, 12, 2))

    @pytest.mark.parametrize("line", ["retention 1 2 3", "retention 1 2 3 x", "retention 1 -2 3 4"])
    def test_retention_invalid(self, line):
        with pytest.raises(ParseError):
            parse_command(line)

    def test_empty(self):
        with pytest.raises(ParseError, match="Empty command"):
            parse_command("   ")

    def test_unknown(self):
        with pytest.raises(ParseError, match="Unknown command: upload"):
            parse_command("upload x")

    def test_unbalanced_quotes(self):
        with pytest.raises(ParseError, match="Invalid syntax"):
            parse_command('backup "unterminated')


@pytest.mark.asyncio
async def test_run_once_reports_parse_errors():
    assert await run_once("frobnicate") == "Error: Unknown command: frobnicate"


@pytest.mark.asyncio
async def test_run_once_dispatches(monkeypatch):
    handler = AsyncMock(return_value="Nothing to prune.")
    monkeypatch.setattr("cli.repl.handle_prune", handler)

    assert await run_once("prune") == "Nothing to prune."
    handler.assert_awaited_once_with(PruneCommand())
