"""Generational (daily/weekly/monthly/yearly) snapshot retention."""

from datetime import date, timedelta
from typing import Callable, Iterable, List, Optional, Protocol, Sequence, Set, Tuple

from common.logging_config import get_logger
from common.types import SnapshotRetention, StoredSnapshot
from engine.exceptions import InvalidRetentionPolicyError

logger = get_logger(__name__)

MILLIS_PER_DAY = 86_400_000
EPOCH = date(1970, 1, 1)

DEFAULT_RETENTION = SnapshotRetention(daily=3, weekly=1, monthly=1, yearly=1)

Bucket = Callable[[date], date]


class RetentionStore(Protocol):
    """Where the retention policy is persisted, outside the engine."""

    def load_retention(self) -> Optional[SnapshotRetention]:
        ...

    def save_retention(self, retention: SnapshotRetention) -> None:
        ...


class InMemoryRetentionStore:
    def __init__(self, retention: Optional[SnapshotRetention] = None):
        self.retention = retention

    def load_retention(self) -> Optional[SnapshotRetention]:
        return self.retention

    def save_retention(self, retention: SnapshotRetention) -> None:
        self.retention = retention


def epoch_date(timestamp: int) -> date:
    """UTC calendar date of an epoch-millisecond timestamp."""
    return EPOCH + timedelta(days=timestamp // MILLIS_PER_DAY)


def _day(d: date) -> date:
    return d


def _week(d: date) -> date:
    return d - timedelta(days=d.weekday())


def _month(d: date) -> date:
    return d.replace(day=1)


def _year(d: date) -> date:
    return d.replace(month=1, day=1)


def _to_keep(dated: Iterable[Tuple[int, date]], keep: int, bucket: Bucket) -> List[int]:
    """
    Keep the newest snapshot of each distinct bucket, up to keep buckets.

    Args:
        dated: (timestamp, date) pairs sorted newest first
        keep: Number of buckets to keep
        bucket: Maps a date to the start of its bucket
    """
    kept: List[int] = []
    if keep <= 0:
        return kept
    seen: Set[date] = set()
    for timestamp, d in dated:
        period = bucket(d)
        if period in seen:
            continue
        seen.add(period)
        kept.append(timestamp)
        if len(kept) >= keep:
            break
    return kept


def get_snapshots_to_delete(
    snapshots: Sequence[StoredSnapshot],
    retention: SnapshotRetention,
) -> List[StoredSnapshot]:
    """
    Return the snapshots not retained by any of the four buckets.

    A snapshot kept by several buckets is kept once. Input order is
    preserved in the result.
    """
    dated = sorted(
        ((s.timestamp, epoch_date(s.timestamp)) for s in snapshots),
        key=lambda pair: pair[0],
        reverse=True,
    )
    to_keep: Set[int] = set()
    to_keep.update(_to_keep(dated, retention.daily, _day))
    to_keep.update(_to_keep(dated, retention.weekly, _week))
    to_keep.update(_to_keep(dated, retention.monthly, _month))
    to_keep.update(_to_keep(dated, retention.yearly, _year))
    return [s for s in snapshots if s.timestamp not in to_keep]


class RetentionManager:
    def __init__(self, store: RetentionStore):
        self.store = store

    def set_snapshot_retention(self, retention: SnapshotRetention) -> None:
        """
        Persist a new retention policy.

        Raises:
            InvalidRetentionPolicyError: If all values are 0 or any is negative
        """
        if retention.is_empty():
            raise InvalidRetentionPolicyError("Not all values can be 0")
        if min(retention.daily, retention.weekly, retention.monthly, retention.yearly) < 0:
            raise InvalidRetentionPolicyError("Retention values must not be negative")
        self.store.save_retention(retention)
        logger.info(
            f"Set snapshot retention [daily={retention.daily}, weekly={retention.weekly}, "
            f"monthly={retention.monthly}, yearly={retention.yearly}]"
        )

    def get_snapshot_retention(self) -> SnapshotRetention:
        return self.store.load_retention() or DEFAULT_RETENTION

    def get_snapshots_to_delete(self, snapshots: Sequence[StoredSnapshot]) -> List[StoredSnapshot]:
        return get_snapshots_to_delete(snapshots, self.get_snapshot_retention())
