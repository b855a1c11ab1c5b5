"""Data models for backup/restore operations."""

from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from ._utils import ensure_utc


class BackupType(str, Enum):
    FULL = "full"
    INCREMENTAL = "incremental"


class BackupStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class EngineState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"


class BackupMetadata(BaseModel):
    """Identity and description of one stored artifact."""

    id: str = Field(..., min_length=1, description="Unique backup identifier")
    type: BackupType
    sources: List[str] = Field(..., description="Source paths included, in order")
    files: List[str] = Field(default_factory=list, description="Archive entry names")
    timestamp: datetime = Field(..., description="Creation time (UTC)")
    size: int = Field(default=0, ge=0, description="Stored artifact size in bytes")
    status: BackupStatus = BackupStatus.PENDING
    checksum: Optional[str] = Field(default=None, description="Artifact digest, '<algorithm>:<hex>'")
    compression: bool = True
    tags: Dict[str, str] = Field(default_factory=dict)
    error: Optional[str] = None

    @field_validator("timestamp")
    @classmethod
    def normalize_timestamp(cls, v: datetime) -> datetime:
        return ensure_utc(v)

    @model_validator(mode="after")
    def check_checksum_matches_status(self) -> "BackupMetadata":
        if self.status == BackupStatus.COMPLETED and not self.checksum:
            raise ValueError("completed backups must carry a checksum")
        if self.status != BackupStatus.COMPLETED and self.checksum:
            raise ValueError(f"checksum is only set on completed backups, status is {self.status.value}")
        return self

    @property
    def is_restorable(self) -> bool:
        return self.status == BackupStatus.COMPLETED


class CreateRequest(BaseModel):
    sources: List[str] = Field(..., min_length=1)
    type: BackupType
    tags: Optional[Dict[str, str]] = None
    timeout: Optional[float] = Field(default=None, gt=0)


class RestoreRequest(BaseModel):
    backup_id: str = Field(..., min_length=1)
    target_path: str = Field(..., min_length=1)
    files: Optional[List[str]] = None
    overwrite: bool = False
    dry_run: bool = False
    timeout: Optional[float] = Field(default=None, gt=0)


class BackupFilter(BaseModel):
    type: Optional[BackupType] = None
    date_from: Optional[datetime] = None
    date_to: Optional[datetime] = None
    tags: Optional[Dict[str, str]] = None

    def matches(self, metadata: BackupMetadata) -> bool:
        if self.type and metadata.type != self.type:
            return False
        if self.date_from and metadata.timestamp < ensure_utc(self.date_from):
            return False
        if self.date_to and metadata.timestamp > ensure_utc(self.date_to):
            return False
        if self.tags:
            return all(metadata.tags.get(k) == v for k, v in self.tags.items())
        return True


class VerifyResult(BaseModel):
    valid: bool
    issues: List[str] = Field(default_factory=list)


class RestoreResult(BaseModel):
    success: bool
    backup_id: str
    target_path: str
    dry_run: bool = False
    restored_files: List[str] = Field(default_factory=list)
    skipped_files: List[str] = Field(default_factory=list)
    missing_files: List[str] = Field(default_factory=list)


class DeleteResult(BaseModel):
    success: bool
    freed_space: int = 0


class CleanupReport(BaseModel):
    deleted: List[str] = Field(default_factory=list)
    deferred: List[str] = Field(default_factory=list)
    failed: List[str] = Field(default_factory=list)
    orphans_removed: List[str] = Field(default_factory=list)
    freed_space: int = 0


class BackupStatusSummary(BaseModel):
    is_running: bool
    last_backup: Optional[BackupMetadata] = None
    total_backups: int = 0
    total_size: int = 0
