"""Health checks run by the disaster recovery monitor."""

import asyncio
import inspect
import time
from abc import ABC, abstractmethod
from typing import Awaitable, Callable, Optional, Tuple, Union

import psutil

from .._storage.base import BaseArtifactStore
from .._utils import logger, utc_now
from ..backup.engine import BackupEngine
from ..schemas import BackupStatus
from .models import CheckResult, CheckStatus, EventType, Severity

PingFunc = Callable[[], Union[bool, Awaitable[bool]]]
RestartFunc = Callable[[], Union[None, Awaitable[None]]]


async def _maybe_await(value):
    if inspect.isawaitable(value):
        return await value
    return value


class BaseHealthCheck(ABC):
    """A single named health check.

    Subclasses implement ``check`` and declare which event type and severity a
    failure maps to. ``run`` never raises: an exception becomes a failed result.
    """

    name: str = "custom"
    event_type: EventType = EventType.CUSTOM
    severity: Severity = Severity.MEDIUM

    @abstractmethod
    async def check(self) -> Tuple[CheckStatus, str]:
        raise NotImplementedError

    async def run(self) -> CheckResult:
        start = time.perf_counter()
        try:
            status, message = await self.check()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning(f"Health check {self.name} raised: {e}")
            status, message = CheckStatus.FAIL, f"Erro ao executar verificação: {e}"

        return CheckResult(
            name=self.name,
            status=status,
            message=message,
            duration_ms=(time.perf_counter() - start) * 1000,
            timestamp=utc_now(),
        )


class DiskSpaceCheck(BaseHealthCheck):
    name = "disk_space"
    event_type = EventType.DISK_SPACE_LOW
    severity = Severity.HIGH

    def __init__(self, store: BaseArtifactStore, min_free_ratio: float = 0.1):
        self.store = store
        self.min_free_ratio = min_free_ratio

    async def check(self) -> Tuple[CheckStatus, str]:
        usage = self.store.disk_usage()
        free_ratio = usage.free / usage.total if usage.total else 0.0
        message = f"Espaço livre em disco: {free_ratio:.1%}"

        if free_ratio < self.min_free_ratio:
            return CheckStatus.FAIL, message + " - CRÍTICO"
        if free_ratio < self.min_free_ratio * 1.5:
            return CheckStatus.WARN, message + " - ATENÇÃO"
        return CheckStatus.PASS, message


class BackupAgeCheck(BaseHealthCheck):
    """Fails when the newest completed backup is missing or too old.

    Only completed records are considered, so an in-flight creation neither
    satisfies nor blocks this check.
    """

    name = "backup_age"
    event_type = EventType.BACKUP_STALE
    severity = Severity.MEDIUM

    def __init__(self, engine: BackupEngine, max_age: float):
        self.engine = engine
        self.max_age = max_age

    async def check(self) -> Tuple[CheckStatus, str]:
        backups = await self.engine.list_backups()
        latest = next((b for b in backups if b.status == BackupStatus.COMPLETED), None)
        if latest is None:
            return CheckStatus.FAIL, "Nenhum backup concluído encontrado"

        age = (utc_now() - latest.timestamp).total_seconds()
        if age > self.max_age:
            return CheckStatus.FAIL, f"Último backup ({latest.id}) tem {age / 3600:.1f}h"
        return CheckStatus.PASS, f"Último backup ({latest.id}) tem {age / 3600:.1f}h"


class BackupIntegrityCheck(BaseHealthCheck):
    name = "backup_integrity"
    event_type = EventType.BACKUP_FAILED
    severity = Severity.HIGH

    def __init__(self, engine: BackupEngine):
        self.engine = engine

    async def check(self) -> Tuple[CheckStatus, str]:
        backups = [
            b for b in await self.engine.list_backups()
            if b.status in (BackupStatus.COMPLETED, BackupStatus.FAILED)
        ]
        if not backups:
            return CheckStatus.PASS, "Nenhum backup para verificar"

        newest = backups[0]
        if newest.status == BackupStatus.FAILED:
            return CheckStatus.FAIL, f"Último backup falhou: {newest.id} ({newest.error})"

        result = await self.engine.verify_backup(newest.id)
        if not result.valid:
            return CheckStatus.FAIL, f"Backup {newest.id} inválido: {'; '.join(result.issues)}"
        return CheckStatus.PASS, f"Backup {newest.id} íntegro"


class ServiceCheck(BaseHealthCheck):
    """Ping a collaborator service; optionally knows how to restart it."""

    event_type = EventType.SERVICE_DOWN
    severity = Severity.CRITICAL

    def __init__(self, name: str, ping: PingFunc, restart: Optional[RestartFunc] = None):
        self.name = name
        self.ping = ping
        self.restart = restart

    async def check(self) -> Tuple[CheckStatus, str]:
        healthy = await _maybe_await(self.ping())
        if healthy:
            return CheckStatus.PASS, f"Serviço {self.name} respondendo"
        return CheckStatus.FAIL, f"Serviço {self.name} não está respondendo"

    async def restart_service(self) -> None:
        if self.restart is None:
            raise RuntimeError(f"No restart handler for service {self.name}")
        await _maybe_await(self.restart())


class ResourceUsageCheck(BaseHealthCheck):
    """Compare a sampled usage percentage against a ceiling.

    Fails above ``max_percent`` and warns above 80% of it.
    """

    event_type = EventType.RESOURCE_EXHAUSTION
    severity = Severity.HIGH
    label: str = "Uso de recurso"

    def __init__(self, max_percent: float, sampler: Optional[Callable[[], float]] = None):
        self.max_percent = max_percent
        self.sampler = sampler or self.sample

    @staticmethod
    def sample() -> float:
        raise NotImplementedError

    async def check(self) -> Tuple[CheckStatus, str]:
        percent = self.sampler()
        message = f"{self.label}: {percent:.1f}%"

        if percent > self.max_percent:
            return CheckStatus.FAIL, message + " - CRÍTICO"
        if percent > self.max_percent * 0.8:
            return CheckStatus.WARN, message + " - ATENÇÃO"
        return CheckStatus.PASS, message


class MemoryUsageCheck(ResourceUsageCheck):
    name = "memory_usage"
    label = "Uso de memória"

    @staticmethod
    def sample() -> float:
        return psutil.virtual_memory().percent


class CpuUsageCheck(ResourceUsageCheck):
    name = "cpu_usage"
    label = "Uso de CPU"

    @staticmethod
    def sample() -> float:
        # Non-blocking: usage since the previous call
        return psutil.cpu_percent(interval=None)
