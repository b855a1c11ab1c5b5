"""Tests for restore behaviour: selection, conflicts, dry runs and integrity."""

import asyncio
import os
import pytest
from datetime import datetime, timezone
from unittest.mock import patch

from backup_sentinel.backup.restore import RestoreEngine, resolve_files, validate_destination
from backup_sentinel.exceptions import (
    BackupNotFoundError,
    DestinationError,
    IntegrityError,
    OperationTimeoutError,
)
from backup_sentinel.schemas import BackupMetadata, BackupStatus, BackupType, RestoreRequest


def snapshot(directory):
    return sorted(str(p.relative_to(directory)) for p in directory.rglob("*"))


@pytest.fixture
def metadata():
    return BackupMetadata(
        id="backup_x",
        type=BackupType.FULL,
        sources=["/srv/data", "/etc/app.conf"],
        files=["data/a.txt", "data/sub/b.txt", "app.conf"],
        timestamp=datetime.now(timezone.utc),
        status=BackupStatus.COMPLETED,
        checksum="sha256:abc",
    )


def test_resolve_all_files_by_default(metadata):
    selected, missing = resolve_files(metadata, None)

    assert selected == ["data/a.txt", "data/sub/b.txt", "app.conf"]
    assert missing == []


def test_resolve_by_entry_source_and_prefix(metadata):
    assert resolve_files(metadata, ["app.conf"]) == (["app.conf"], [])
    assert resolve_files(metadata, ["/srv/data"]) == (["data/a.txt", "data/sub/b.txt"], [])
    assert resolve_files(metadata, ["data/sub"]) == (["data/sub/b.txt"], [])


def test_resolve_reports_missing(metadata):
    selected, missing = resolve_files(metadata, ["app.conf", "nope.txt"])

    assert selected == ["app.conf"]
    assert missing == ["nope.txt"]


def test_validate_destination(workspace):
    validate_destination(workspace)

    with pytest.raises(DestinationError, match="Diretório de destino não existe"):
        validate_destination(workspace / "missing")

    file_target = workspace / "file.txt"
    file_target.write_text("x")
    with pytest.raises(DestinationError):
        validate_destination(file_target)


@pytest.mark.asyncio
async def test_full_restore(engine, sources, restore_dir):
    metadata = await engine.create_backup([str(sources["dir"]), str(sources["file"])])

    result = await engine.restore_backup(RestoreRequest(backup_id=metadata.id, target_path=str(restore_dir)))

    assert result.success is True
    assert result.restored_files == ["data/a.txt", "data/sub/b.txt", "config.json"]
    assert (restore_dir / "data" / "a.txt").read_text() == "alpha"
    assert (restore_dir / "data" / "sub" / "b.txt").read_text() == "bravo"
    assert (restore_dir / "config.json").read_text() == '{"debug": false}'
    # No temp files left behind
    assert not any(p.name.endswith(".restore.tmp") for p in restore_dir.rglob("*"))


@pytest.mark.asyncio
async def test_selective_restore(engine, sources, restore_dir):
    metadata = await engine.create_backup([str(sources["dir"]), str(sources["file"])])

    result = await engine.restore_backup(RestoreRequest(
        backup_id=metadata.id,
        target_path=str(restore_dir),
        files=["config.json", "missing.txt"],
    ))

    assert result.success is True
    assert result.restored_files == ["config.json"]
    assert result.missing_files == ["missing.txt"]
    assert snapshot(restore_dir) == ["config.json"]


@pytest.mark.asyncio
async def test_existing_file_untouched_without_overwrite(engine, workspace, restore_dir):
    (workspace / "a.txt").write_text("from backup")
    metadata = await engine.create_backup([str(workspace / "a.txt")])

    existing = restore_dir / "a.txt"
    existing.write_text("local changes")

    result = await engine.restore_backup(RestoreRequest(
        backup_id=metadata.id,
        target_path=str(restore_dir),
        overwrite=False,
    ))

    assert result.success is True
    assert result.skipped_files == ["a.txt"]
    assert result.restored_files == []
    assert existing.read_text() == "local changes"


@pytest.mark.asyncio
async def test_overwrite_replaces_existing_file(engine, workspace, restore_dir):
    (workspace / "a.txt").write_text("from backup")
    metadata = await engine.create_backup([str(workspace / "a.txt")])
    (restore_dir / "a.txt").write_text("local changes")

    result = await engine.restore_backup(RestoreRequest(
        backup_id=metadata.id,
        target_path=str(restore_dir),
        overwrite=True,
    ))

    assert result.restored_files == ["a.txt"]
    assert (restore_dir / "a.txt").read_text() == "from backup"


@pytest.mark.asyncio
async def test_dry_run_writes_nothing(engine, sources, restore_dir):
    metadata = await engine.create_backup([str(sources["dir"]), str(sources["file"])])
    (restore_dir / "config.json").write_text("keep me")
    before = snapshot(restore_dir)

    result = await engine.restore_backup(RestoreRequest(
        backup_id=metadata.id,
        target_path=str(restore_dir),
        files=["data", "ghost.txt"],
        dry_run=True,
    ))
    again = await engine.restore_backup(RestoreRequest(
        backup_id=metadata.id,
        target_path=str(restore_dir),
        dry_run=True,
    ))

    assert result.dry_run is True
    assert result.restored_files == ["data/a.txt", "data/sub/b.txt"]
    assert result.missing_files == ["ghost.txt"]
    assert again.skipped_files == ["config.json"]
    assert snapshot(restore_dir) == before
    assert (restore_dir / "config.json").read_text() == "keep me"


@pytest.mark.asyncio
@pytest.mark.parametrize("overwrite", [False, True])
async def test_file_in_place_of_parent_directory_is_skipped(engine, sources, restore_dir, overwrite):
    metadata = await engine.create_backup([str(sources["dir"]), str(sources["file"])])
    (restore_dir / "data").write_text("not a directory")
    request = dict(backup_id=metadata.id, target_path=str(restore_dir), overwrite=overwrite)

    planned = await engine.restore_backup(RestoreRequest(dry_run=True, **request))
    result = await engine.restore_backup(RestoreRequest(**request))

    assert result.success is True
    assert result.skipped_files == ["data/a.txt", "data/sub/b.txt"]
    assert result.restored_files == ["config.json"]
    assert planned.skipped_files == result.skipped_files
    assert planned.restored_files == result.restored_files
    assert (restore_dir / "data").read_text() == "not a directory"
    assert (restore_dir / "config.json").read_text() == '{"debug": false}'


@pytest.mark.asyncio
async def test_file_appearing_after_conflict_check_is_kept(engine, workspace, restore_dir):
    (workspace / "a.txt").write_text("from backup")
    metadata = await engine.create_backup([str(workspace / "a.txt")])
    existing = restore_dir / "a.txt"

    def appear(*args):
        existing.write_text("written concurrently")
        return False

    with patch.object(RestoreEngine, "_conflicts", side_effect=appear):
        result = await engine.restore_backup(RestoreRequest(backup_id=metadata.id, target_path=str(restore_dir)))

    assert result.skipped_files == ["a.txt"]
    assert result.restored_files == []
    assert existing.read_text() == "written concurrently"
    assert snapshot(restore_dir) == ["a.txt"]

@pytest.mark.asyncio
async def test_dry_run_validates_destination(engine, sources, workspace):
    metadata = await engine.create_backup([str(sources["file"])])

    with pytest.raises(DestinationError):
        await engine.restore_backup(RestoreRequest(
            backup_id=metadata.id,
            target_path=str(workspace / "nowhere"),
            dry_run=True,
        ))

    assert not (workspace / "nowhere").exists()


@pytest.mark.asyncio
async def test_dry_run_unknown_backup_writes_nothing(engine, restore_dir):
    with pytest.raises(BackupNotFoundError):
        await engine.restore_backup(RestoreRequest(
            backup_id="backup_inexistente",
            target_path=str(restore_dir),
            dry_run=True,
        ))

    assert snapshot(restore_dir) == []


@pytest.mark.asyncio
async def test_restore_corrupted_artifact(engine, sources, restore_dir):
    metadata = await engine.create_backup([str(sources["file"])])
    (engine.store.root / f"{metadata.id}.sbak").write_bytes(b"not a tarball")

    with pytest.raises(IntegrityError) as exc_info:
        await engine.restore_backup(RestoreRequest(backup_id=metadata.id, target_path=str(restore_dir)))

    assert exc_info.value.expected == metadata.checksum
    assert snapshot(restore_dir) == []


@pytest.mark.asyncio
async def test_restore_failed_backup_refused(engine, store, restore_dir):
    await store.put_metadata(BackupMetadata(
        id="backup_failed_1",
        type=BackupType.FULL,
        sources=["/data"],
        timestamp=datetime.now(timezone.utc),
        status=BackupStatus.FAILED,
    ))

    with pytest.raises(BackupNotFoundError, match="não está concluído"):
        await engine.restore_backup(RestoreRequest(backup_id="backup_failed_1", target_path=str(restore_dir)))


@pytest.mark.asyncio
async def test_restores_run_concurrently(engine, sources, workspace):
    metadata = await engine.create_backup([str(sources["dir"])])
    targets = []
    for i in range(3):
        target = workspace / f"restore_{i}"
        target.mkdir()
        targets.append(target)

    results = await asyncio.gather(*(
        engine.restore_backup(RestoreRequest(backup_id=metadata.id, target_path=str(t)))
        for t in targets
    ))

    assert all(r.success for r in results)
    for target in targets:
        assert (target / "data" / "a.txt").read_text() == "alpha"


@pytest.mark.asyncio
async def test_restore_timeout(engine, sources, restore_dir):
    metadata = await engine.create_backup([str(sources["file"])])

    async def slow_extract(self, *args, **kwargs):
        await asyncio.sleep(5)

    with patch.object(RestoreEngine, "_extract", new=slow_extract):
        with pytest.raises(OperationTimeoutError):
            await engine.restore_backup(RestoreRequest(
                backup_id=metadata.id,
                target_path=str(restore_dir),
                timeout=0.05,
            ))


@pytest.mark.skipif(os.geteuid() == 0, reason="root ignores directory permissions")
def test_validate_destination_read_only(workspace):
    target = workspace / "ro"
    target.mkdir()
    target.chmod(0o500)
    try:
        with pytest.raises(DestinationError, match="sem permissão de escrita"):
            validate_destination(target)
    finally:
        target.chmod(0o700)
