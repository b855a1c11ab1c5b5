"""Tests for data models."""

import pytest
from datetime import datetime, timedelta, timezone
from pydantic import ValidationError

from backup_sentinel.recovery.models import CheckResult, CheckStatus, EventType, RecoveryEvent, Severity
from backup_sentinel.schemas import (
    BackupFilter,
    BackupMetadata,
    BackupStatus,
    BackupType,
    CreateRequest,
    RestoreRequest,
)


def metadata(**overrides):
    fields = dict(
        id="backup_1",
        type="full",
        sources=["/data"],
        timestamp=datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc),
        status="completed",
        checksum="sha256:abc",
    )
    fields.update(overrides)
    return BackupMetadata(**fields)


class TestBackupMetadata:
    def test_completed_requires_checksum(self):
        with pytest.raises(ValidationError, match="completed backups must carry a checksum"):
            metadata(checksum=None)

    def test_checksum_only_on_completed(self):
        with pytest.raises(ValidationError, match="checksum is only set on completed backups"):
            metadata(status="failed")

        failed = metadata(status="failed", checksum=None, error="boom")
        assert failed.is_restorable is False

    def test_naive_timestamp_becomes_utc(self):
        record = metadata(timestamp=datetime(2024, 1, 1, 12, 0))
        assert record.timestamp.tzinfo == timezone.utc

    def test_json_roundtrip(self):
        record = metadata(tags={"env": "prod"}, files=["data/a.txt"])
        assert BackupMetadata.model_validate_json(record.model_dump_json()) == record

    def test_enums(self):
        record = metadata()
        assert record.type == BackupType.FULL
        assert record.status == BackupStatus.COMPLETED
        assert record.is_restorable is True


class TestRequests:
    def test_create_request_requires_sources_and_type(self):
        with pytest.raises(ValidationError):
            CreateRequest(sources=[], type="full")
        with pytest.raises(ValidationError):
            CreateRequest(sources=["/data"])
        with pytest.raises(ValidationError):
            CreateRequest(sources=["/data"], type="differential")

    def test_restore_request_defaults(self):
        request = RestoreRequest(backup_id="backup_1", target_path="/restore")
        assert request.files is None
        assert request.overwrite is False
        assert request.dry_run is False
        assert request.timeout is None

    def test_restore_request_timeout_positive(self):
        with pytest.raises(ValidationError):
            RestoreRequest(backup_id="backup_1", target_path="/restore", timeout=0)


class TestBackupFilter:
    def test_matches(self):
        record = metadata(tags={"env": "prod", "team": "core"})
        ts = record.timestamp

        assert BackupFilter().matches(record)
        assert BackupFilter(type="full").matches(record)
        assert not BackupFilter(type="incremental").matches(record)
        assert BackupFilter(date_from=ts - timedelta(hours=1), date_to=ts).matches(record)
        assert not BackupFilter(date_from=ts + timedelta(seconds=1)).matches(record)
        assert not BackupFilter(date_to=ts - timedelta(seconds=1)).matches(record)
        assert BackupFilter(tags={"env": "prod"}).matches(record)
        assert not BackupFilter(tags={"env": "dev"}).matches(record)


class TestRecoveryModels:
    def test_event_defaults(self):
        event = RecoveryEvent(type=EventType.DISK_SPACE_LOW, severity=Severity.HIGH)

        assert event.id.startswith("event_")
        assert event.resolved is False
        assert event.resolved_at is None
        assert event.timestamp.tzinfo is not None

    def test_check_result_failed(self):
        assert CheckResult(name="x", status=CheckStatus.FAIL).failed is True
        assert CheckResult(name="x", status=CheckStatus.WARN).failed is False
