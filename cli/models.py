"""Command request data types for CLI."""

from dataclasses import dataclass
from typing import Literal


@dataclass(frozen=True)
class BackupCommand:
    """Back up folders; empty means the configured sources."""

    sources: tuple[str, ...] = ()
    command: Literal["backup"] = "backup"


@dataclass(frozen=True)
class SnapshotsCommand:
    """List restorable snapshots."""

    command: Literal["snapshots"] = "snapshots"


@dataclass(frozen=True)
class RestoreCommand:
    """Restore the snapshot with the given timestamp."""

    timestamp: int
    destination: str | None = None
    command: Literal["restore"] = "restore"


@dataclass(frozen=True)
class PruneCommand:
    """Prune snapshots according to the retention policy."""

    command: Literal["prune"] = "prune"


@dataclass(frozen=True)
class RetentionCommand:
    """Show the retention policy, or set it when values are given."""

    values: tuple[int, int, int, int] | None = None
    command: Literal["retention"] = "retention"


@dataclass(frozen=True)
class RepopulateCommand:
    """Rebuild the chunk cache from the stored snapshots."""

    command: Literal["repopulate"] = "repopulate"


@dataclass(frozen=True)
class ClearCacheCommand:
    """Clear the chunk and file caches."""

    command: Literal["clear-cache"] = "clear-cache"


CommandRequest = (
    BackupCommand
    | SnapshotsCommand
    | RestoreCommand
    | PruneCommand
    | RetentionCommand
    | RepopulateCommand
    | ClearCacheCommand
)
