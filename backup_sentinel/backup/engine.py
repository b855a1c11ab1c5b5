"""Backup orchestration: create, list, verify, restore, delete and cleanup."""

import asyncio
import tarfile
import threading
from typing import Dict, List, Optional, Sequence, Union

from .._storage import BaseArtifactStore, StorageFactory
from .._utils import generate_backup_id, logger, utc_now
from ..checksum import ChecksumVerifier
from ..config import BackupConfig, SentinelConfig
from ..exceptions import (
    BackupError,
    BackupNotFoundError,
    ConcurrencyError,
    OperationTimeoutError,
    StorageError,
)
from ..schemas import (
    BackupFilter,
    BackupMetadata,
    BackupStatus,
    BackupStatusSummary,
    BackupType,
    CleanupReport,
    CreateRequest,
    DeleteResult,
    EngineState,
    RestoreRequest,
    RestoreResult,
    VerifyResult,
)
from .restore import RestoreEngine
from .retention import plan_retention, sweep_orphans
from .utils import collect_entries, create_archive, list_archive_members

IN_FLIGHT = (BackupStatus.PENDING, BackupStatus.RUNNING)

_create_locks: Dict[str, threading.Lock] = {}
_create_locks_guard = threading.Lock()


def creation_lock(location: str) -> threading.Lock:
    """Return the process-wide creation lock for a store location."""
    with _create_locks_guard:
        return _create_locks.setdefault(location, threading.Lock())


class BackupEngine:
    """Orchestrate backup operations against a single artifact store.

    Only creation is mutually exclusive: a second ``create_backup`` against the
    same store, from this engine or any other in the process, fails
    immediately with ``ConcurrencyError``. Listing and verification are pure
    reads, and restores run concurrently up to ``max_concurrent_restores``.
    """

    def __init__(self, store: BaseArtifactStore, config: Optional[BackupConfig] = None):
        """Initialize backup engine.

        Args:
            store: Artifact store holding artifacts and metadata records
            config: Engine configuration, defaults to BackupConfig()
        """
        self.store = store
        self.config = config or BackupConfig()
        self.verifier = ChecksumVerifier(self.config.checksum_algorithm)
        self.restorer = RestoreEngine(store, self.verifier, self.config.max_concurrent_restores)
        # Engines over the same store share one lock, so the non-blocking
        # acquire picks exactly one winner across engines, tasks and threads
        self._create_lock = creation_lock(store.location)

    @classmethod
    def from_config(cls, config: SentinelConfig) -> "BackupEngine":
        return cls(StorageFactory.create(config.storage), config.backup)

    @property
    def state(self) -> EngineState:
        return EngineState.RUNNING if self._create_lock.locked() else EngineState.IDLE

    async def initialize(self) -> List[str]:
        """Mark backups left in flight by an interrupted process as failed.

        Returns:
            Ids of the records that were marked failed
        """
        if self._create_lock.locked():
            return []

        recovered = []
        for metadata in await self.store.list_metadata():
            if metadata.status not in IN_FLIGHT:
                continue
            await self.store.delete_artifact(metadata.id)
            await self.store.put_metadata(metadata.model_copy(update={
                "status": BackupStatus.FAILED,
                "checksum": None,
                "error": "Backup interrompido antes de concluir",
            }))
            recovered.append(metadata.id)
            logger.warning(f"Marked interrupted backup as failed: {metadata.id}")

        return recovered

    async def create(self, request: CreateRequest) -> BackupMetadata:
        return await self.create_backup(request.sources, request.type, request.tags, request.timeout)

    async def create_backup(
        self,
        sources: Sequence[str],
        backup_type: Union[BackupType, str] = BackupType.FULL,
        tags: Optional[Dict[str, str]] = None,
        timeout: Optional[float] = None,
    ) -> BackupMetadata:
        """Create a backup of the given sources.

        Args:
            sources: Files or directories to include, in order
            backup_type: full or incremental
            tags: Optional labels stored with the metadata
            timeout: Optional deadline in seconds

        Returns:
            BackupMetadata with status completed

        Raises:
            ConcurrencyError: Another backup is being created
            SourceNotFoundError: A source is missing or unreadable
            StorageError: Artifact or metadata could not be written
            OperationTimeoutError: The deadline passed before completion
        """
        if not sources:
            raise ValueError("At least one source is required")
        backup_type = BackupType(backup_type)

        if not self._create_lock.acquire(blocking=False):
            logger.warning("Backup creation rejected: another backup is running")
            raise ConcurrencyError()

        try:
            if timeout is None:
                return await self._create(list(sources), backup_type, tags)
            try:
                return await asyncio.wait_for(self._create(list(sources), backup_type, tags), timeout=timeout)
            except asyncio.TimeoutError:
                logger.error(f"Backup creation timed out after {timeout}s")
                raise OperationTimeoutError("Backup", timeout)
        finally:
            self._create_lock.release()

    async def _create(
        self,
        sources: List[str],
        backup_type: BackupType,
        tags: Optional[Dict[str, str]],
    ) -> BackupMetadata:
        backup_id = generate_backup_id(backup_type.value)
        if await self.store.get_metadata(backup_id) is not None:
            raise StorageError(f"Backup id already exists: {backup_id}")

        logger.info(f"Starting backup: {backup_id} ({backup_type.value}, {len(sources)} sources)")
        entries = collect_entries(sources)

        metadata = BackupMetadata(
            id=backup_id,
            type=backup_type,
            sources=sources,
            files=[arcname for _, arcname in entries],
            timestamp=utc_now(),
            status=BackupStatus.RUNNING,
            compression=self.config.compression,
            tags=tags or {},
        )
        await self.store.put_metadata(metadata)

        staged_path = self.store.staging_path(backup_id)
        stored = False

        try:
            try:
                await create_archive(entries, staged_path, self.config.compression)
                checksum = self.verifier.compute(staged_path)
            except OSError as e:
                raise StorageError(f"Failed to build archive for {backup_id}: {e}") from e

            size = await self.store.put_artifact(backup_id, staged_path)
            stored = True

            completed = metadata.model_copy(update={
                "status": BackupStatus.COMPLETED,
                "checksum": checksum,
                "size": size,
            })
            await self.store.put_metadata(completed)

        except asyncio.CancelledError:
            await self._mark_failed(metadata, stored, "Backup cancelado ou tempo limite excedido")
            raise
        except Exception as e:
            logger.error(f"Backup {backup_id} failed: {e}")
            await self._mark_failed(metadata, stored, str(e))
            raise
        finally:
            staged_path.unlink(missing_ok=True)

        logger.info(f"Backup complete: {backup_id} ({size:,} bytes, {len(entries)} files)")
        return completed

    async def _mark_failed(self, metadata: BackupMetadata, stored: bool, reason: str) -> None:
        try:
            if stored:
                await self.store.delete_artifact(metadata.id)
            await self.store.put_metadata(metadata.model_copy(update={
                "status": BackupStatus.FAILED,
                "checksum": None,
                "error": reason,
            }))
        except StorageError as e:
            logger.error(f"Could not record failure of backup {metadata.id}: {e}")

    async def list_backups(self, filters: Optional[BackupFilter] = None) -> List[BackupMetadata]:
        """List backups, newest first."""
        backups = await self.store.list_metadata()
        if filters is not None:
            backups = [b for b in backups if filters.matches(b)]
        backups.sort(key=lambda b: b.timestamp, reverse=True)
        return backups

    async def verify_backup(self, backup_id: str) -> VerifyResult:
        """Check that a backup's artifact exists and matches its checksum.

        Never raises for missing or damaged backups; problems are reported as
        issues so arbitrary ids can be checked safely.
        """
        metadata = await self.store.get_metadata(backup_id)
        if metadata is None:
            return VerifyResult(valid=False, issues=[f"Backup não encontrado: {backup_id}"])

        if metadata.status != BackupStatus.COMPLETED:
            return VerifyResult(
                valid=False,
                issues=[f"Backup não está concluído (status: {metadata.status.value})"],
            )

        issues = []
        try:
            if not await self.store.artifact_exists(backup_id):
                return VerifyResult(valid=False, issues=[f"Arquivo de backup não encontrado: {backup_id}"])

            async with self.store.artifact_path(backup_id) as archive_path:
                if not self.verifier.verify(archive_path, metadata.checksum):
                    issues.append("Checksum não confere - arquivo pode estar corrompido")
                else:
                    try:
                        members = set(list_archive_members(archive_path))
                        absent = [name for name in metadata.files if name not in members]
                        if absent:
                            issues.append(f"Arquivos ausentes no backup: {', '.join(absent)}")
                    except (tarfile.TarError, OSError) as e:
                        issues.append(f"Erro ao carregar backup: {e}")
        except (StorageError, ValueError) as e:
            issues.append(f"Erro ao acessar backup: {e}")

        if issues:
            logger.warning(f"Backup {backup_id} failed verification: {issues}")
        return VerifyResult(valid=not issues, issues=issues)

    async def restore_backup(self, request: RestoreRequest) -> RestoreResult:
        """Restore a backup into request.target_path.

        Raises:
            DestinationError: target_path is not a writable directory
            BackupNotFoundError: Unknown or non-completed backup
            IntegrityError: Artifact does not match its checksum
            StorageError: Artifact could not be read or files written
            OperationTimeoutError: The deadline passed before completion
        """
        return await self.restorer.restore(request)

    async def delete_backup(self, backup_id: str) -> DeleteResult:
        """Delete a backup's artifact and metadata.

        Raises:
            BackupNotFoundError: Unknown backup id
            ConcurrencyError: The backup is still being created
        """
        metadata = await self.store.get_metadata(backup_id)
        if metadata is None:
            raise BackupNotFoundError(backup_id)
        if metadata.status in IN_FLIGHT:
            raise ConcurrencyError(f"Backup em execução não pode ser removido: {backup_id}")

        freed = await self.store.delete_artifact(backup_id)
        await self.store.delete_metadata(backup_id)

        logger.info(f"Deleted backup: {backup_id} ({freed:,} bytes freed)")
        return DeleteResult(success=True, freed_space=freed)

    async def cleanup(self) -> CleanupReport:
        """Apply the retention policy and sweep stale temp files.

        At most ``max_deletions_per_cycle`` backups are deleted per pass; the
        rest are reported as deferred and picked up by the next pass.
        Failures are logged and reported, never raised.
        """
        report = CleanupReport()

        try:
            backups = await self.store.list_metadata()
        except StorageError as e:
            logger.error(f"Cleanup skipped, cannot list backups: {e}")
            return report

        plan = plan_retention(backups, self.config.retention)
        batch = plan.delete[: self.config.max_deletions_per_cycle]
        report.deferred = [b.id for b in plan.delete[self.config.max_deletions_per_cycle:]]

        for backup in batch:
            try:
                result = await self.delete_backup(backup.id)
                report.deleted.append(backup.id)
                report.freed_space += result.freed_space
            except BackupError as e:
                logger.warning(f"Failed to remove old backup {backup.id}: {e}")
                report.failed.append(backup.id)

        report.orphans_removed = sweep_orphans(self.store.staging_dir, self.config.orphan_max_age)

        logger.info(
            f"Cleanup finished: {len(report.deleted)} deleted, {len(report.deferred)} deferred, "
            f"{len(report.failed)} failed, {len(report.orphans_removed)} orphans removed"
        )
        return report

    async def get_backup_status(self) -> BackupStatusSummary:
        backups = await self.list_backups()
        completed = [b for b in backups if b.status == BackupStatus.COMPLETED]
        return BackupStatusSummary(
            is_running=self._create_lock.locked(),
            last_backup=completed[0] if completed else None,
            total_backups=len(backups),
            total_size=sum(b.size for b in backups),
        )
