from .base import BaseArtifactStore, DiskUsage, is_safe_id
from .factory import StorageFactory
from .local import LocalArtifactStore

__all__ = [
    "BaseArtifactStore",
    "DiskUsage",
    "LocalArtifactStore",
    "StorageFactory",
    "is_safe_id",
]
