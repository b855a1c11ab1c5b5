"""Retention planning and temp-file sweeping.

Bucket assignment and plan computation are pure so they can be tested without
a store; only ``sweep_orphans`` touches the filesystem.
"""

import time
from collections import defaultdict
from datetime import datetime
from pathlib import Path
from typing import Dict, Iterable, List, NamedTuple, Optional

from .._storage.base import TEMP_PREFIX, TEMP_SUFFIX
from .._utils import ensure_utc, logger
from ..config import RetentionPolicy
from ..schemas import BackupMetadata, BackupStatus


class RetentionBuckets(NamedTuple):
    day: str
    week: str
    month: str


class RetentionPlan(NamedTuple):
    keep: List[BackupMetadata]
    delete: List[BackupMetadata]


def bucket_keys(timestamp: datetime) -> RetentionBuckets:
    """Assign a timestamp to its daily, ISO-weekly and monthly bucket (UTC)."""
    ts = ensure_utc(timestamp)
    iso_year, iso_week, _ = ts.isocalendar()
    return RetentionBuckets(
        day=ts.strftime("%Y-%m-%d"),
        week=f"{iso_year}-W{iso_week:02d}",
        month=ts.strftime("%Y-%m"),
    )


def _newest_per_bucket(backups: List[BackupMetadata], field: str, limit: int) -> List[str]:
    """Ids of the newest backup in each of the `limit` most recent buckets.

    `backups` must already be sorted newest-first.
    """
    if limit <= 0:
        return []
    selected = []
    seen = set()
    for backup in backups:
        key = getattr(bucket_keys(backup.timestamp), field)
        if key in seen:
            continue
        seen.add(key)
        selected.append(backup.id)
        if len(seen) >= limit:
            break
    return selected


def plan_retention(backups: Iterable[BackupMetadata], policy: RetentionPolicy) -> RetentionPlan:
    """Decide which backups survive a cleanup pass.

    Pending and running backups are never scheduled for deletion and failed
    ones always are. Completed backups are grouped by type and kept when they
    are the newest of a retained day, week or month; ``max_per_type`` then
    trims the kept set from the oldest end.
    """
    keep: List[BackupMetadata] = []
    delete: List[BackupMetadata] = []
    by_type: Dict[str, List[BackupMetadata]] = defaultdict(list)

    for backup in backups:
        if backup.status in (BackupStatus.PENDING, BackupStatus.RUNNING):
            keep.append(backup)
        elif backup.status == BackupStatus.FAILED:
            delete.append(backup)
        else:
            by_type[backup.type.value].append(backup)

    for backup_type, group in by_type.items():
        group.sort(key=lambda b: b.timestamp, reverse=True)

        retained_ids = set()
        retained_ids.update(_newest_per_bucket(group, "day", policy.daily))
        retained_ids.update(_newest_per_bucket(group, "week", policy.weekly))
        retained_ids.update(_newest_per_bucket(group, "month", policy.monthly))

        retained = [b for b in group if b.id in retained_ids]
        cap = policy.max_per_type.get(backup_type)
        if cap is not None:
            retained = retained[:cap]
            retained_ids = {b.id for b in retained}

        keep.extend(retained)
        delete.extend(b for b in group if b.id not in retained_ids)

    delete.sort(key=lambda b: b.timestamp)
    return RetentionPlan(keep=keep, delete=delete)


def sweep_orphans(staging_dir: Path, max_age: float, now: Optional[float] = None) -> List[str]:
    """Remove stale temp files left behind by interrupted writes.

    Only files following the temp naming convention (``temp_*.tmp``) and older
    than ``max_age`` seconds are removed, so in-progress writes survive.

    Returns:
        Names of removed files
    """
    now = time.time() if now is None else now
    removed = []

    if not staging_dir.is_dir():
        return removed

    for path in staging_dir.iterdir():
        if not (path.is_file() and path.name.startswith(TEMP_PREFIX) and path.name.endswith(TEMP_SUFFIX)):
            continue
        try:
            age = now - path.stat().st_mtime
            if age > max_age:
                path.unlink()
                removed.append(path.name)
                logger.info(f"Removed orphaned temp file: {path.name} ({age / 3600:.1f}h old)")
        except FileNotFoundError:
            continue
        except OSError as e:
            logger.warning(f"Failed to remove orphaned temp file {path.name}: {e}")

    return removed
