"""Local filesystem artifact store."""

import os
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator, List, Optional

from pydantic import ValidationError

from .._utils import logger
from ..exceptions import StorageError
from ..schemas import BackupMetadata
from .base import ARTIFACT_SUFFIX, BaseArtifactStore, is_safe_id


class LocalArtifactStore(BaseArtifactStore):
    """Store artifacts and metadata records under a single directory.

    Layout::

        <root>/<backup_id>.sbak         artifact
        <root>/metadata/<backup_id>.json metadata record
        <root>/temp/                    staging area for in-progress writes
    """

    def __init__(self, root: str = "./backups"):
        self.root = Path(root)
        self.metadata_dir = self.root / "metadata"
        try:
            self.root.mkdir(parents=True, exist_ok=True)
            self.metadata_dir.mkdir(parents=True, exist_ok=True)
            super().__init__(self.root / "temp")
        except OSError as e:
            raise StorageError(f"Cannot initialize backup directory {self.root}: {e}") from e

    @property
    def location(self) -> str:
        return str(self.root.resolve())

    def _artifact_file(self, backup_id: str) -> Path:
        return self.root / f"{backup_id}{ARTIFACT_SUFFIX}"

    def _metadata_file(self, backup_id: str) -> Path:
        return self.metadata_dir / f"{backup_id}.json"

    async def put_artifact(self, backup_id: str, staged_path: Path) -> int:
        target = self._artifact_file(backup_id)
        try:
            # Same volume as the staging dir, so the rename is atomic
            os.replace(staged_path, target)
            return target.stat().st_size
        except OSError as e:
            raise StorageError(f"Failed to store artifact {backup_id}: {e}") from e

    @asynccontextmanager
    async def artifact_path(self, backup_id: str) -> AsyncIterator[Path]:
        path = self._artifact_file(backup_id)
        if not is_safe_id(backup_id) or not path.is_file():
            raise StorageError(f"Artifact not found: {backup_id}")
        yield path

    async def artifact_exists(self, backup_id: str) -> bool:
        return is_safe_id(backup_id) and self._artifact_file(backup_id).is_file()

    async def artifact_size(self, backup_id: str) -> Optional[int]:
        if not await self.artifact_exists(backup_id):
            return None
        return self._artifact_file(backup_id).stat().st_size

    async def delete_artifact(self, backup_id: str) -> int:
        if not await self.artifact_exists(backup_id):
            return 0
        path = self._artifact_file(backup_id)
        try:
            size = path.stat().st_size
            path.unlink()
        except FileNotFoundError:
            return 0
        except OSError as e:
            raise StorageError(f"Failed to delete artifact {backup_id}: {e}") from e
        return size

    async def put_metadata(self, metadata: BackupMetadata) -> None:
        if not is_safe_id(metadata.id):
            raise StorageError(f"Invalid backup id: {metadata.id}")
        target = self._metadata_file(metadata.id)
        tmp = self.metadata_dir / f".{metadata.id}.json.tmp"
        try:
            tmp.write_text(metadata.model_dump_json(indent=2))
            os.replace(tmp, target)
        except OSError as e:
            tmp.unlink(missing_ok=True)
            raise StorageError(f"Failed to write metadata {metadata.id}: {e}") from e

        logger.debug(f"Metadata saved: {target}")

    async def get_metadata(self, backup_id: str) -> Optional[BackupMetadata]:
        if not is_safe_id(backup_id):
            return None
        path = self._metadata_file(backup_id)
        try:
            return BackupMetadata.model_validate_json(path.read_text())
        except FileNotFoundError:
            return None
        except OSError as e:
            raise StorageError(f"Failed to read metadata {backup_id}: {e}") from e
        except ValidationError as e:
            logger.warning(f"Corrupted metadata record {path.name}: {e}")
            return None

    async def list_metadata(self) -> List[BackupMetadata]:
        records = []
        try:
            paths = sorted(self.metadata_dir.glob("*.json"))
        except OSError as e:
            raise StorageError(f"Failed to list metadata: {e}") from e

        for path in paths:
            try:
                records.append(BackupMetadata.model_validate_json(path.read_text()))
            except (OSError, ValidationError) as e:
                logger.warning(f"Failed to read backup metadata {path.name}: {e}")

        return records

    async def delete_metadata(self, backup_id: str) -> None:
        if not is_safe_id(backup_id):
            return
        try:
            self._metadata_file(backup_id).unlink(missing_ok=True)
        except OSError as e:
            raise StorageError(f"Failed to delete metadata {backup_id}: {e}") from e
