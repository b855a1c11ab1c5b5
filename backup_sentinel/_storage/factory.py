"""Storage factory for centralized artifact store creation."""

from pathlib import Path
from typing import Callable, Dict, Type

from ..config import StorageConfig
from .base import BaseArtifactStore


def _get_local_store():
    from .local import LocalArtifactStore
    return LocalArtifactStore


def _get_s3_store():
    from .s3 import S3ArtifactStore
    return S3ArtifactStore


class StorageFactory:
    """Factory for creating artifact stores with validation and registration."""

    _backends: Dict[str, Callable[[], Type[BaseArtifactStore]]] = {}

    ALLOWED_BACKENDS = {"local", "s3"}

    @classmethod
    def register(cls, name: str, backend_loader: Callable[[], Type[BaseArtifactStore]]) -> None:
        """Register an artifact store backend.

        Args:
            name: Backend name (must be in ALLOWED_BACKENDS)
            backend_loader: Function that returns the store class

        Raises:
            ValueError: If backend name not in allowed list
        """
        if name not in cls.ALLOWED_BACKENDS:
            raise ValueError(f"Backend {name} not in allowed storage backends: {cls.ALLOWED_BACKENDS}")
        cls._backends[name] = backend_loader

    @classmethod
    def create(cls, config: StorageConfig) -> BaseArtifactStore:
        """Create the artifact store described by config.

        Raises:
            ValueError: If backend is unknown
        """
        if config.backend not in cls._backends:
            raise ValueError(
                f"Unknown storage backend: {config.backend}. "
                f"Available: {sorted(cls._backends)}"
            )

        store_class = cls._backends[config.backend]()
        if config.backend == "s3":
            return store_class(
                bucket=config.s3_bucket,
                prefix=config.s3_prefix,
                region=config.s3_region,
                endpoint_url=config.s3_endpoint_url,
                staging_dir=str(Path(config.backup_dir) / "temp"),
            )
        return store_class(config.backup_dir)


def _register_backends():
    StorageFactory.register("local", _get_local_store)
    StorageFactory.register("s3", _get_s3_store)


_register_backends()
