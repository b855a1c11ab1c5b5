"""Exceptions raised by the backup engine and the recovery monitor."""

from typing import Optional


class BackupError(Exception):
    """Base exception for backup-sentinel errors."""
    pass


class ConcurrencyError(BackupError):
    """A backup creation was attempted while another one is running."""

    def __init__(self, message: str = "Backup já está em execução"):
        super().__init__(message)


class NotFoundError(BackupError):
    pass


class BackupNotFoundError(NotFoundError):
    def __init__(self, backup_id: str, message: Optional[str] = None):
        self.backup_id = backup_id
        super().__init__(message or f"Backup não encontrado: {backup_id}")


class SourceNotFoundError(NotFoundError):
    def __init__(self, source: str):
        self.source = source
        super().__init__(f"Fonte não encontrada: {source}")


class EventNotFoundError(NotFoundError):
    def __init__(self, event_id: str):
        self.event_id = event_id
        super().__init__(f"Evento não encontrado: {event_id}")


class IntegrityError(BackupError):
    """Stored artifact does not match its recorded checksum."""

    def __init__(self, backup_id: str, expected: str, actual: str):
        self.backup_id = backup_id
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Checksum não confere para {backup_id}: esperado {expected}, obtido {actual}"
        )


class DestinationError(BackupError):
    pass


class OperationTimeoutError(BackupError, TimeoutError):
    def __init__(self, operation: str, timeout: float):
        self.operation = operation
        self.timeout = timeout
        super().__init__(f"{operation} excedeu o tempo limite de {timeout}s")


class StorageError(BackupError):
    """Underlying storage backend I/O failure."""
    pass
