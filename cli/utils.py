"""Utility functions for CLI output and setup."""

from datetime import datetime, timezone
from typing import List, Optional

from backends.base import Backend
from backends.local_backend import LocalBackend
from backends.webdav_backend import WebDavBackend
from cli.config import Config
from cli.constants import GREEN, RED, RESET
from common.types import SnapshotRetention
from common.utils import format_file_size
from engine.observer import PruneResult
from engine.restore import SnapshotItem


def build_backend(config: Config) -> Backend:
    """
    Create the backend selected in the config.

    Raises:
        ValueError: If the backend type is unknown or WebDAV has no URL
    """
    backend_type = config.get_backend_type()
    if backend_type == "local":
        return LocalBackend(config.get_storage_root())
    if backend_type == "webdav":
        settings = config.get_webdav_settings()
        if not settings['url']:
            raise ValueError("WebDAV backend selected but no webdav_url configured")
        retry = config.get_retry_config()
        return WebDavBackend(
            settings['url'],
            username=settings['username'],
            password=settings['password'],
            timeout=config.get_timeout(),
            max_retries=retry['max_retries'],
            retry_backoff_multiplier=retry['retry_backoff_multiplier'],
        )
    raise ValueError(f"Unknown backend type: {backend_type}")


def format_timestamp(timestamp: int) -> str:
    """Format epoch milliseconds as a local date and time."""
    return datetime.fromtimestamp(timestamp / 1000, tz=timezone.utc).astimezone().strftime("%Y-%m-%d %H:%M:%S")


def format_snapshot_list(items: List[SnapshotItem], own_namespace: Optional[str] = None) -> str:
    if not items:
        return "No snapshots found."

    lines = [f"Found {len(items)} snapshot(s):", ""]
    for item in items:
        snapshot = item.snapshot
        marker = "" if item.stored_snapshot.namespace == own_namespace else f" [{item.stored_snapshot.namespace}]"
        lines.append(
            f"  {item.timestamp}  {format_timestamp(item.timestamp)}  "
            f"{len(snapshot.items)} files, {format_file_size(snapshot.size)}  {snapshot.name}{marker}"
        )
    return "\n".join(lines)


def format_retention(retention: SnapshotRetention) -> str:
    return (
        f"Retention: keep {retention.daily} daily, {retention.weekly} weekly, "
        f"{retention.monthly} monthly, {retention.yearly} yearly snapshot(s)"
    )


def format_prune_result(result: PruneResult) -> str:
    if not result.snapshots_pruned and not result.failed_snapshots:
        return "Nothing to prune."

    lines = [
        f"{GREEN}Pruned {len(result.snapshots_pruned)} snapshot(s){RESET}, "
        f"deleted {result.chunks_deleted} chunk(s), freed {format_file_size(result.bytes_freed)} "
        f"in {result.duration_ms}ms."
    ]
    if result.failed_snapshots:
        failed = ", ".join(str(timestamp) for timestamp in result.failed_snapshots)
        lines.append(f"{RED}Could not prune:{RESET} {failed}")
    return "\n".join(lines)
