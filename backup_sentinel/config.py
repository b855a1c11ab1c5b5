"""Configuration management for backup-sentinel."""

import os
from dataclasses import dataclass, field
from typing import Dict, Optional, Tuple

from .checksum import SUPPORTED_ALGORITHMS


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() == "true"


def _env_float(name: str) -> Optional[float]:
    raw = os.getenv(name)
    return float(raw) if raw else None


def _env_list(name: str) -> Tuple[str, ...]:
    raw = os.getenv(name, "")
    return tuple(item.strip() for item in raw.split(",") if item.strip())


@dataclass(frozen=True)
class StorageConfig:
    """Artifact store configuration."""
    backend: str = "local"  # local, s3
    backup_dir: str = "./backups"

    # S3 specific settings
    s3_bucket: Optional[str] = None
    s3_prefix: str = "backups"
    s3_region: str = "us-east-1"
    s3_endpoint_url: Optional[str] = None

    @classmethod
    def from_env(cls) -> 'StorageConfig':
        """Create config from environment variables."""
        return cls(
            backend=os.getenv("BACKUP_STORAGE_BACKEND", "local"),
            backup_dir=os.getenv("BACKUP_DIR", "./backups"),
            s3_bucket=os.getenv("BACKUP_S3_BUCKET"),
            s3_prefix=os.getenv("BACKUP_S3_PREFIX", "backups"),
            s3_region=os.getenv("BACKUP_S3_REGION", os.getenv("AWS_REGION", "us-east-1")),
            s3_endpoint_url=os.getenv("BACKUP_S3_ENDPOINT_URL"),
        )

    def __post_init__(self):
        """Validate configuration."""
        if self.backend not in {"local", "s3"}:
            raise ValueError(f"Unknown storage backend: {self.backend}")
        if self.backend == "s3" and not self.s3_bucket:
            raise ValueError("s3_bucket is required when backend is 's3'")


@dataclass(frozen=True)
class RetentionPolicy:
    """How many completed backups of each type survive a cleanup pass.

    A backup is kept when it is the newest one inside one of the most recent
    ``daily`` days, ``weekly`` ISO weeks or ``monthly`` months. ``max_per_type``
    optionally puts a hard cap on the kept set of a given backup type.
    """
    daily: int = 7
    weekly: int = 4
    monthly: int = 12
    max_per_type: Dict[str, int] = field(default_factory=dict)

    @classmethod
    def from_env(cls) -> 'RetentionPolicy':
        """Create config from environment variables."""
        max_per_type = {}
        for backup_type in ("full", "incremental"):
            cap = os.getenv(f"BACKUP_RETENTION_MAX_{backup_type.upper()}")
            if cap is not None:
                max_per_type[backup_type] = int(cap)
        return cls(
            daily=int(os.getenv("BACKUP_RETENTION_DAILY", "7")),
            weekly=int(os.getenv("BACKUP_RETENTION_WEEKLY", "4")),
            monthly=int(os.getenv("BACKUP_RETENTION_MONTHLY", "12")),
            max_per_type=max_per_type,
        )

    def __post_init__(self):
        """Validate configuration."""
        for name in ("daily", "weekly", "monthly"):
            if getattr(self, name) < 0:
                raise ValueError(f"{name} must be non-negative, got {getattr(self, name)}")
        for backup_type, cap in self.max_per_type.items():
            if cap < 0:
                raise ValueError(f"max_per_type[{backup_type}] must be non-negative, got {cap}")


@dataclass(frozen=True)
class BackupConfig:
    """Backup engine configuration."""
    checksum_algorithm: str = "sha256"
    compression: bool = True
    max_concurrent_restores: int = 4
    max_deletions_per_cycle: int = 10
    orphan_max_age: float = 24 * 60 * 60
    retention: RetentionPolicy = field(default_factory=RetentionPolicy)

    @classmethod
    def from_env(cls) -> 'BackupConfig':
        """Create config from environment variables."""
        return cls(
            checksum_algorithm=os.getenv("BACKUP_CHECKSUM_ALGORITHM", "sha256"),
            compression=_env_bool("BACKUP_COMPRESSION", "true"),
            max_concurrent_restores=int(os.getenv("BACKUP_MAX_CONCURRENT_RESTORES", "4")),
            max_deletions_per_cycle=int(os.getenv("BACKUP_MAX_DELETIONS_PER_CYCLE", "10")),
            orphan_max_age=float(os.getenv("BACKUP_ORPHAN_MAX_AGE", str(24 * 60 * 60))),
            retention=RetentionPolicy.from_env(),
        )

    def __post_init__(self):
        """Validate configuration."""
        if self.checksum_algorithm not in SUPPORTED_ALGORITHMS:
            raise ValueError(
                f"checksum_algorithm must be one of {sorted(SUPPORTED_ALGORITHMS)}, "
                f"got {self.checksum_algorithm}"
            )
        if self.max_concurrent_restores <= 0:
            raise ValueError(f"max_concurrent_restores must be positive, got {self.max_concurrent_restores}")
        if self.max_deletions_per_cycle <= 0:
            raise ValueError(f"max_deletions_per_cycle must be positive, got {self.max_deletions_per_cycle}")
        if self.orphan_max_age <= 0:
            raise ValueError(f"orphan_max_age must be positive, got {self.orphan_max_age}")


@dataclass(frozen=True)
class MonitorConfig:
    """Disaster recovery monitor configuration."""
    interval: float = 30.0
    tick_timeout: float = 60.0
    check_timeout: float = 10.0
    check_retries: int = 3
    check_retry_wait: float = 0.5
    auto_recovery: bool = False
    min_free_disk_ratio: float = 0.1
    max_backup_age: float = 2 * 24 * 60 * 60
    restore_target: Optional[str] = None
    backup_sources: Tuple[str, ...] = ()
    event_log_backend: str = "jsonl"  # jsonl, redis
    event_log_path: str = "./backups/recovery_events.jsonl"
    redis_url: str = "redis://localhost:6379"
    redis_key: str = "backup_sentinel:recovery_events"

    # Resource checks are enabled by setting a percentage threshold
    max_memory_usage: Optional[float] = None
    max_cpu_usage: Optional[float] = None

    # Admin notifications
    notify_webhook_url: Optional[str] = None
    notify_timeout: float = 10.0

    @classmethod
    def from_env(cls) -> 'MonitorConfig':
        """Create config from environment variables."""
        return cls(
            interval=float(os.getenv("DR_MONITOR_INTERVAL", "30")),
            tick_timeout=float(os.getenv("DR_TICK_TIMEOUT", "60")),
            check_timeout=float(os.getenv("DR_CHECK_TIMEOUT", "10")),
            check_retries=int(os.getenv("DR_CHECK_RETRIES", "3")),
            check_retry_wait=float(os.getenv("DR_CHECK_RETRY_WAIT", "0.5")),
            auto_recovery=_env_bool("DR_AUTO_RECOVERY", "false"),
            min_free_disk_ratio=float(os.getenv("DR_MIN_FREE_DISK_RATIO", "0.1")),
            max_backup_age=float(os.getenv("DR_MAX_BACKUP_AGE", str(2 * 24 * 60 * 60))),
            restore_target=os.getenv("DR_RESTORE_TARGET"),
            backup_sources=_env_list("DR_BACKUP_SOURCES"),
            event_log_backend=os.getenv("DR_EVENT_LOG_BACKEND", "jsonl"),
            event_log_path=os.getenv("DR_EVENT_LOG_PATH", "./backups/recovery_events.jsonl"),
            redis_url=os.getenv("DR_REDIS_URL", "redis://localhost:6379"),
            redis_key=os.getenv("DR_REDIS_KEY", "backup_sentinel:recovery_events"),
            max_memory_usage=_env_float("DR_MAX_MEMORY_USAGE"),
            max_cpu_usage=_env_float("DR_MAX_CPU_USAGE"),
            notify_webhook_url=os.getenv("DR_NOTIFY_WEBHOOK_URL"),
            notify_timeout=float(os.getenv("DR_NOTIFY_TIMEOUT", "10")),
        )

    def __post_init__(self):
        """Validate configuration."""
        if self.interval <= 0:
            raise ValueError(f"interval must be positive, got {self.interval}")
        if self.tick_timeout <= 0:
            raise ValueError(f"tick_timeout must be positive, got {self.tick_timeout}")
        if self.check_timeout <= 0:
            raise ValueError(f"check_timeout must be positive, got {self.check_timeout}")
        if self.check_retries <= 0:
            raise ValueError(f"check_retries must be positive, got {self.check_retries}")
        if self.check_retry_wait < 0:
            raise ValueError(f"check_retry_wait must be non-negative, got {self.check_retry_wait}")
        if not 0.0 <= self.min_free_disk_ratio < 1.0:
            raise ValueError(f"min_free_disk_ratio must be between 0.0 and 1.0, got {self.min_free_disk_ratio}")
        if self.max_backup_age <= 0:
            raise ValueError(f"max_backup_age must be positive, got {self.max_backup_age}")
        if self.event_log_backend not in {"jsonl", "redis"}:
            raise ValueError(f"Unknown event log backend: {self.event_log_backend}")
        for name in ("max_memory_usage", "max_cpu_usage"):
            value = getattr(self, name)
            if value is not None and not 0.0 < value <= 100.0:
                raise ValueError(f"{name} must be a percentage in (0, 100], got {value}")
        if self.notify_timeout <= 0:
            raise ValueError(f"notify_timeout must be positive, got {self.notify_timeout}")


@dataclass(frozen=True)
class SentinelConfig:
    """Main configuration for backup-sentinel."""
    storage: StorageConfig = field(default_factory=StorageConfig)
    backup: BackupConfig = field(default_factory=BackupConfig)
    monitor: MonitorConfig = field(default_factory=MonitorConfig)

    @classmethod
    def from_env(cls) -> 'SentinelConfig':
        """Create complete config from environment variables."""
        return cls(
            storage=StorageConfig.from_env(),
            backup=BackupConfig.from_env(),
            monitor=MonitorConfig.from_env(),
        )
