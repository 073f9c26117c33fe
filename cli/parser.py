"""Command parser for CLI input."""

import shlex

from cli.models import (
    BackupCommand,
    ClearCacheCommand,
    CommandRequest,
    PruneCommand,
    RepopulateCommand,
    RestoreCommand,
    RetentionCommand,
    SnapshotsCommand,
)


class ParseError(Exception):
    """Raised when command parsing fails."""

    pass


def parse_command(input_line: str) -> CommandRequest:
    """Parse user input into a CommandRequest object.

    Args:
        input_line: Raw user input from REPL

    Returns:
        CommandRequest object

    Raises:
        ParseError: If command syntax is invalid
    """
    if not input_line.strip():
        raise ParseError("Empty command")

    try:
        tokens = shlex.split(input_line)
    except ValueError as e:
        raise ParseError(f"Invalid syntax: {e}")

    if not tokens:
        raise ParseError("Empty command")

    command_name = tokens[0]
    args = tokens[1:]

    if command_name == "backup":
        return BackupCommand(sources=tuple(args))
    elif command_name == "snapshots":
        _expect_no_args(command_name, args)
        return SnapshotsCommand()
    elif command_name == "restore":
        return _parse_restore(args)
    elif command_name == "prune":
        _expect_no_args(command_name, args)
        return PruneCommand()
    elif command_name == "retention":
        return _parse_retention(args)
    elif command_name == "repopulate":
        _expect_no_args(command_name, args)
        return RepopulateCommand()
    elif command_name == "clear-cache":
        _expect_no_args(command_name, args)
        return ClearCacheCommand()
    else:
        raise ParseError(f"Unknown command: {command_name}")


def _expect_no_args(command_name: str, args: list[str]) -> None:
    if args:
        raise ParseError(f"{command_name} takes no arguments")


def _parse_restore(args: list[str]) -> RestoreCommand:
    """Parse 'restore <timestamp> [dest]' command."""
    if not args or len(args) > 2:
        raise ParseError("restore requires a snapshot timestamp and an optional destination")
    try:
        timestamp = int(args[0])
    except ValueError:
        raise ParseError(f"Invalid snapshot timestamp: {args[0]}")
    destination = args[1] if len(args) == 2 else None
    return RestoreCommand(timestamp=timestamp, destination=destination)


def _parse_retention(args: list[str]) -> RetentionCommand:
    """Parse 'retention [daily weekly monthly yearly]' command."""
    if not args:
        return RetentionCommand()
    if len(args) != 4:
        raise ParseError("retention requires exactly four values: daily weekly monthly yearly")
    try:
        values = tuple(int(arg) for arg in args)
    except ValueError:
        raise ParseError("retention values must be whole numbers")
    if any(value < 0 for value in values):
        raise ParseError("retention values must not be negative")
    return RetentionCommand(values=values)
