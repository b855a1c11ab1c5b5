"""Backup creation, verification, restore and retention."""

from .engine import BackupEngine
from .restore import RestoreEngine
from .retention import bucket_keys, plan_retention, sweep_orphans

__all__ = [
    "BackupEngine",
    "RestoreEngine",
    "bucket_keys",
    "plan_retention",
    "sweep_orphans",
]
