from .checks import (
    BackupAgeCheck,
    BackupIntegrityCheck,
    BaseHealthCheck,
    CpuUsageCheck,
    DiskSpaceCheck,
    MemoryUsageCheck,
    ResourceUsageCheck,
    ServiceCheck,
)
from .events import BaseEventLog, JsonlEventLog, RedisEventLog, create_event_log
from .models import (
    CheckResult,
    CheckStatus,
    EventType,
    MonitorStatus,
    RecoveryEvent,
    RecoveryOutcome,
    Severity,
)
from .monitor import DisasterRecoveryMonitor
from .notify import BaseNotifier, CallbackNotifier, WebhookNotifier

__all__ = [
    "BackupAgeCheck",
    "BackupIntegrityCheck",
    "BaseEventLog",
    "BaseHealthCheck",
    "BaseNotifier",
    "CallbackNotifier",
    "CheckResult",
    "CheckStatus",
    "CpuUsageCheck",
    "DisasterRecoveryMonitor",
    "DiskSpaceCheck",
    "EventType",
    "JsonlEventLog",
    "MemoryUsageCheck",
    "MonitorStatus",
    "RecoveryEvent",
    "RecoveryOutcome",
    "RedisEventLog",
    "ResourceUsageCheck",
    "ServiceCheck",
    "Severity",
    "WebhookNotifier",
    "create_event_log",
]
