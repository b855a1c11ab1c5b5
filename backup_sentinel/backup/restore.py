"""Restore engine: validation, file-set resolution and conflict handling."""

import asyncio
import os
import tarfile
from pathlib import Path
from typing import List, Optional, Sequence, Tuple

from .._storage.base import BaseArtifactStore
from .._utils import is_within, logger
from ..checksum import ChecksumVerifier
from ..exceptions import (
    BackupNotFoundError,
    DestinationError,
    IntegrityError,
    OperationTimeoutError,
    StorageError,
)
from ..schemas import BackupMetadata, RestoreRequest, RestoreResult
from .utils import extract_member


def validate_destination(target: Path) -> None:
    """Fail before any I/O if the restore target is unusable."""
    if not target.is_dir():
        logger.warning(f"Restore target does not exist or is not a directory: {target}")
        raise DestinationError("Diretório de destino não existe")
    if not os.access(target, os.W_OK | os.X_OK):
        logger.warning(f"Restore target is not writable: {target}")
        raise DestinationError("Diretório de destino sem permissão de escrita")


def _matches(metadata: BackupMetadata, item: str) -> List[str]:
    if item in metadata.files:
        return [item]

    # A backed-up source path selects everything stored under its archive name
    if item in metadata.sources:
        prefix = Path(item).name
    else:
        prefix = item.strip("/")
    return [name for name in metadata.files if name == prefix or name.startswith(prefix + "/")]


def resolve_files(metadata: BackupMetadata, requested: Optional[Sequence[str]]) -> Tuple[List[str], List[str]]:
    """Resolve a selective restore request against the backup's entries.

    Args:
        metadata: Backup being restored
        requested: Source paths, archive entry names or directory prefixes.
            None or empty selects every entry.

    Returns:
        (selected archive entries in backup order, requested items not found)
    """
    if not requested:
        return list(metadata.files), []

    wanted = set()
    missing = []
    for item in requested:
        matches = _matches(metadata, item)
        if not matches:
            missing.append(item)
        wanted.update(matches)

    return [name for name in metadata.files if name in wanted], missing


class RestoreEngine:
    """Restore artifacts into a target directory.

    Restores only read from the store, so they never take the creation lock;
    a semaphore bounds how many run at once.
    """

    def __init__(self, store: BaseArtifactStore, verifier: ChecksumVerifier, max_concurrent: int = 4):
        self.store = store
        self.verifier = verifier
        self.max_concurrent = max_concurrent
        self._semaphore = asyncio.Semaphore(max_concurrent)

    async def restore(self, request: RestoreRequest) -> RestoreResult:
        if request.timeout is None:
            return await self._restore(request)
        try:
            return await asyncio.wait_for(self._restore(request), timeout=request.timeout)
        except asyncio.TimeoutError:
            logger.error(f"Restore of {request.backup_id} timed out after {request.timeout}s")
            raise OperationTimeoutError("Restore", request.timeout)

    async def _restore(self, request: RestoreRequest) -> RestoreResult:
        target = Path(request.target_path)
        validate_destination(target)

        metadata = await self.store.get_metadata(request.backup_id)
        if metadata is None:
            raise BackupNotFoundError(request.backup_id)
        if not metadata.is_restorable:
            raise BackupNotFoundError(request.backup_id, f"Backup não está concluído: {request.backup_id}")

        selected, missing = resolve_files(metadata, request.files)

        entries = []
        for name in selected:
            if is_within(target / name, target):
                entries.append(name)
            else:
                logger.warning(f"Skipping entry outside restore target: {name}")
                missing.append(name)

        if missing:
            logger.warning(f"Files not found in backup {metadata.id}: {missing}")

        if request.dry_run:
            would_restore, would_skip = [], []
            for name in entries:
                if self._conflicts(target, name, request.overwrite):
                    would_skip.append(name)
                else:
                    would_restore.append(name)
            logger.info(
                f"Dry run for {metadata.id}: {len(would_restore)} files would be restored, "
                f"{len(would_skip)} skipped"
            )
            return RestoreResult(
                success=True,
                backup_id=metadata.id,
                target_path=str(target),
                dry_run=True,
                restored_files=would_restore,
                skipped_files=would_skip,
                missing_files=missing,
            )

        async with self._semaphore:
            logger.info(f"Starting restore: {metadata.id} -> {target}")
            restored, skipped = await self._extract(metadata, target, entries, request.overwrite)

        logger.info(f"Restore complete: {metadata.id} ({len(restored)} restored, {len(skipped)} skipped)")
        return RestoreResult(
            success=True,
            backup_id=metadata.id,
            target_path=str(target),
            restored_files=restored,
            skipped_files=skipped,
            missing_files=missing,
        )

    @staticmethod
    def _conflicts(target: Path, name: str, overwrite: bool) -> bool:
        """An entry conflicts when its path or any parent below target is taken."""
        destination = target / name
        parent = target
        for part in Path(name).parts[:-1]:
            parent = parent / part
            if not parent.is_dir() and (parent.exists() or parent.is_symlink()):
                return True
        if destination.is_dir():
            return True
        return not overwrite and (destination.exists() or destination.is_symlink())

    async def _extract(
        self,
        metadata: BackupMetadata,
        target: Path,
        entries: List[str],
        overwrite: bool,
    ) -> Tuple[List[str], List[str]]:
        restored, skipped = [], []

        async with self.store.artifact_path(metadata.id) as archive_path:
            algorithm = metadata.checksum.partition(":")[0]
            actual = self.verifier.compute(archive_path, algorithm)
            if actual != metadata.checksum:
                logger.error(f"Checksum mismatch for {metadata.id}! Expected: {metadata.checksum}, Got: {actual}")
                raise IntegrityError(metadata.id, metadata.checksum, actual)

            try:
                with tarfile.open(archive_path, "r:*") as tar:
                    for name in entries:
                        destination = target / name
                        if self._conflicts(target, name, overwrite) or not extract_member(
                            tar, name, destination, overwrite
                        ):
                            logger.warning(f"File already exists, skipping: {destination}")
                            skipped.append(name)
                            continue

                        restored.append(name)
                        logger.debug(f"Restored file: {destination}")
                        await asyncio.sleep(0)
            except (OSError, tarfile.TarError, KeyError) as e:
                raise StorageError(f"Failed to restore {metadata.id}: {e}") from e

        return restored, skipped
