"""Data models for health monitoring and recovery events."""

from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator

from .._utils import ensure_utc, generate_event_id, utc_now


class EventType(str, Enum):
    DISK_SPACE_LOW = "disk_space_low"
    BACKUP_FAILED = "backup_failed"
    BACKUP_STALE = "backup_stale"
    SERVICE_DOWN = "service_down"
    DATA_CORRUPTION = "data_corruption"
    RESOURCE_EXHAUSTION = "resource_exhaustion"
    CUSTOM = "custom"


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class CheckStatus(str, Enum):
    PASS = "pass"
    WARN = "warn"
    FAIL = "fail"


class CheckResult(BaseModel):
    name: str
    status: CheckStatus
    message: str = ""
    duration_ms: float = 0.0
    timestamp: datetime = Field(default_factory=utc_now)

    @property
    def failed(self) -> bool:
        return self.status == CheckStatus.FAIL


class RecoveryEvent(BaseModel):
    """A detected anomaly, tracked from OPEN to RESOLVED."""

    id: str = Field(default_factory=generate_event_id)
    type: EventType
    severity: Severity
    description: str = ""
    source: Optional[str] = None
    resolved: bool = False
    timestamp: datetime = Field(default_factory=utc_now)
    resolved_at: Optional[datetime] = None
    action: Optional[str] = None

    @field_validator("timestamp", "resolved_at")
    @classmethod
    def normalize_timestamps(cls, v: Optional[datetime]) -> Optional[datetime]:
        return ensure_utc(v) if v is not None else None


class RecoveryOutcome(BaseModel):
    success: bool
    action: Optional[str] = None
    event_id: Optional[str] = None
    detail: str = ""


class MonitorStatus(BaseModel):
    is_monitoring: bool
    last_check: Optional[datetime] = None
    health: str = "unknown"  # "healthy", "degraded", "unhealthy", "unknown"
    active_events: int = 0
    last_results: List[CheckResult] = Field(default_factory=list)
