from .backup import BackupEngine
from .checksum import ChecksumVerifier
from .config import BackupConfig, MonitorConfig, RetentionPolicy, SentinelConfig, StorageConfig
from .recovery import DisasterRecoveryMonitor
from ._storage import LocalArtifactStore, StorageFactory

__version__ = "0.1.0"
__author__ = "backup-sentinel contributors"
__url__ = "https://github.com/backup-sentinel/backup-sentinel"

__all__ = [
    "BackupEngine",
    "BackupConfig",
    "ChecksumVerifier",
    "DisasterRecoveryMonitor",
    "LocalArtifactStore",
    "MonitorConfig",
    "RetentionPolicy",
    "SentinelConfig",
    "StorageConfig",
    "StorageFactory",
]
