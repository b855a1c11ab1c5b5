"""Abstract artifact store shared by all storage backends."""

import re
import shutil
from abc import ABC, abstractmethod
from pathlib import Path
from typing import AsyncIterator, List, NamedTuple, Optional

from ..schemas import BackupMetadata

_SAFE_ID = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.\-]*$")

ARTIFACT_SUFFIX = ".sbak"
TEMP_PREFIX = "temp_"
TEMP_SUFFIX = ".tmp"


class DiskUsage(NamedTuple):
    total: int
    used: int
    free: int


def is_safe_id(backup_id: str) -> bool:
    """Backup ids become file names and object keys; reject anything path-like."""
    return bool(backup_id) and bool(_SAFE_ID.match(backup_id)) and ".." not in backup_id


def temp_file_name(label: str) -> str:
    return f"{TEMP_PREFIX}{label}{TEMP_SUFFIX}"


class BaseArtifactStore(ABC):
    """Durable storage for backup artifacts and their metadata records.

    Artifacts are always staged on local disk first (see ``staging_dir``) so
    that the engine can checksum them before they become visible.
    """

    def __init__(self, staging_dir: Path):
        self.staging_dir = Path(staging_dir)
        self.staging_dir.mkdir(parents=True, exist_ok=True)

    @property
    @abstractmethod
    def location(self) -> str:
        """Stable identity of where artifacts live, shared by every handle on it."""
        raise NotImplementedError

    def staging_path(self, label: str) -> Path:
        return self.staging_dir / temp_file_name(label)

    def disk_usage(self) -> DiskUsage:
        usage = shutil.disk_usage(self.staging_dir)
        return DiskUsage(total=usage.total, used=usage.used, free=usage.free)

    @abstractmethod
    async def put_artifact(self, backup_id: str, staged_path: Path) -> int:
        """Move a fully written staged file into the store. Returns stored size."""
        raise NotImplementedError

    @abstractmethod
    def artifact_path(self, backup_id: str) -> "AsyncIterator[Path]":
        """Async context manager yielding a readable local path to the artifact."""
        raise NotImplementedError

    @abstractmethod
    async def artifact_exists(self, backup_id: str) -> bool:
        raise NotImplementedError

    @abstractmethod
    async def artifact_size(self, backup_id: str) -> Optional[int]:
        raise NotImplementedError

    @abstractmethod
    async def delete_artifact(self, backup_id: str) -> int:
        """Remove the artifact. Returns the number of bytes freed (0 if absent)."""
        raise NotImplementedError

    @abstractmethod
    async def put_metadata(self, metadata: BackupMetadata) -> None:
        raise NotImplementedError

    @abstractmethod
    async def get_metadata(self, backup_id: str) -> Optional[BackupMetadata]:
        raise NotImplementedError

    @abstractmethod
    async def list_metadata(self) -> List[BackupMetadata]:
        raise NotImplementedError

    @abstractmethod
    async def delete_metadata(self, backup_id: str) -> None:
        raise NotImplementedError
