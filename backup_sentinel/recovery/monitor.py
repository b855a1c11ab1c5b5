"""Disaster recovery monitor: periodic health checks, events and remediation."""

import asyncio
from datetime import datetime
from typing import Dict, List, Optional, Sequence, Union

from tenacity import AsyncRetrying, retry_if_result, stop_after_attempt, wait_exponential

from .._utils import ensure_utc, logger, utc_now
from ..backup.engine import BackupEngine
from ..config import MonitorConfig, SentinelConfig
from ..exceptions import BackupError, EventNotFoundError
from ..schemas import BackupStatus, RestoreRequest
from .checks import (
    BackupAgeCheck,
    BackupIntegrityCheck,
    BaseHealthCheck,
    CpuUsageCheck,
    DiskSpaceCheck,
    MemoryUsageCheck,
    ServiceCheck,
)
from .events import BaseEventLog, create_event_log
from .models import (
    CheckResult,
    CheckStatus,
    EventType,
    MonitorStatus,
    RecoveryEvent,
    RecoveryOutcome,
    Severity,
)
from .notify import BaseNotifier, WebhookNotifier

DEFAULT_SEVERITY = {
    EventType.DISK_SPACE_LOW: Severity.HIGH,
    EventType.BACKUP_FAILED: Severity.HIGH,
    EventType.BACKUP_STALE: Severity.MEDIUM,
    EventType.SERVICE_DOWN: Severity.CRITICAL,
    EventType.DATA_CORRUPTION: Severity.CRITICAL,
    EventType.RESOURCE_EXHAUSTION: Severity.HIGH,
    EventType.CUSTOM: Severity.MEDIUM,
}

_SEVERE = (Severity.HIGH, Severity.CRITICAL)


class RecoveryFailed(Exception):
    """Internal signal that a remediation could not be carried out."""


class DisasterRecoveryMonitor:
    """Watch the backup engine and its collaborators, and react to failures.

    The monitor only talks to the engine through its public methods. Each
    confirmed check failure opens at most one event per type until that
    event is resolved; recoveries that fail leave the event open so the
    next tick can try again.
    """

    def __init__(
        self,
        engine: BackupEngine,
        checks: Optional[Sequence[BaseHealthCheck]] = None,
        config: Optional[MonitorConfig] = None,
        event_log: Optional[BaseEventLog] = None,
        notifiers: Optional[Sequence[BaseNotifier]] = None,
    ):
        """Initialize the monitor.

        Args:
            engine: Backup engine used for checks and remediation
            checks: Health checks to run, defaults to the built-in backup checks
            config: Monitor configuration, defaults to MonitorConfig()
            event_log: Event persistence, defaults to the backend named in config
            notifiers: Channels told about every newly opened event
        """
        self.engine = engine
        self.config = config or MonitorConfig()
        self.checks: List[BaseHealthCheck] = (
            list(checks) if checks is not None else self.default_checks(engine, self.config)
        )
        self.event_log = event_log or create_event_log(self.config)
        self.notifiers: List[BaseNotifier] = list(notifiers or [])

        self._events: Dict[str, RecoveryEvent] = {}
        self._loaded = False
        self._task: Optional[asyncio.Task] = None
        self._last_check: Optional[datetime] = None
        self._last_results: List[CheckResult] = []
        self._recovery_lock = asyncio.Lock()
        # Guards loading and the find-open-then-record step of event creation
        self._events_lock = asyncio.Lock()

    @classmethod
    def from_config(
        cls,
        config: SentinelConfig,
        engine: Optional[BackupEngine] = None,
        extra_checks: Sequence[BaseHealthCheck] = (),
    ) -> "DisasterRecoveryMonitor":
        engine = engine or BackupEngine.from_config(config)
        checks = cls.default_checks(engine, config.monitor) + list(extra_checks)
        notifiers = []
        if config.monitor.notify_webhook_url:
            notifiers.append(
                WebhookNotifier(config.monitor.notify_webhook_url, timeout=config.monitor.notify_timeout)
            )
        return cls(engine, checks, config.monitor, notifiers=notifiers)

    @staticmethod
    def default_checks(engine: BackupEngine, config: MonitorConfig) -> List[BaseHealthCheck]:
        checks: List[BaseHealthCheck] = [
            DiskSpaceCheck(engine.store, config.min_free_disk_ratio),
            BackupAgeCheck(engine, config.max_backup_age),
            BackupIntegrityCheck(engine),
        ]
        if config.max_memory_usage is not None:
            checks.append(MemoryUsageCheck(config.max_memory_usage))
        if config.max_cpu_usage is not None:
            checks.append(CpuUsageCheck(config.max_cpu_usage))
        return checks

    @property
    def is_monitoring(self) -> bool:
        return self._task is not None and not self._task.done()

    async def _ensure_loaded(self) -> None:
        if self._loaded:
            return
        async with self._events_lock:
            if self._loaded:
                return
            for event in await self.event_log.load():
                self._events[event.id] = event
            self._loaded = True
        logger.debug(f"Loaded {len(self._events)} recovery events")

    async def start_monitoring(self) -> None:
        if self.is_monitoring:
            logger.info("Monitoring already running")
            return

        await self._ensure_loaded()
        self._task = asyncio.create_task(self._run_loop())
        logger.info(f"Monitoring started (interval {self.config.interval}s, {len(self.checks)} checks)")

    async def stop_monitoring(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return

        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info("Monitoring stopped")

    async def _run_loop(self) -> None:
        while True:
            try:
                await asyncio.wait_for(self._tick(), timeout=self.config.tick_timeout)
            except asyncio.TimeoutError:
                logger.error(f"Monitoring tick exceeded {self.config.tick_timeout}s")
            except Exception as e:
                logger.exception(f"Monitoring tick failed: {e}")
            await asyncio.sleep(self.config.interval)

    async def _tick(self) -> None:
        await self.detect_issues()
        if not self.config.auto_recovery:
            return

        for event in self._open_events():
            outcome = await self.trigger_recovery(event.id)
            if not outcome.success:
                logger.warning(f"Automatic recovery of {event.id} failed: {outcome.detail}")

    async def get_status(self) -> MonitorStatus:
        await self._ensure_loaded()
        return MonitorStatus(
            is_monitoring=self.is_monitoring,
            last_check=self._last_check,
            health=self._health(),
            active_events=len(self._open_events()),
            last_results=list(self._last_results),
        )

    def _health(self) -> str:
        if not self._last_results:
            return "unknown"

        severity = {check.name: check.severity for check in self.checks}
        failed = [r for r in self._last_results if r.failed]
        if any(severity.get(r.name, Severity.MEDIUM) in _SEVERE for r in failed):
            return "unhealthy"
        if failed or any(r.status == CheckStatus.WARN for r in self._last_results):
            return "degraded"
        return "healthy"

    async def detect_issues(self) -> List[RecoveryEvent]:
        """Run every health check once and open events for confirmed failures.

        Checks run concurrently. A check that raises or exceeds
        ``check_timeout`` counts as failed, and a failing check is attempted
        up to ``check_retries`` times before its failure is confirmed.

        Returns:
            Events opened by this pass
        """
        await self._ensure_loaded()

        results = await asyncio.gather(*(self._run_check(check) for check in self.checks))
        self._last_results = list(results)
        self._last_check = utc_now()

        new_events = []
        async with self._events_lock:
            for check, result in zip(self.checks, results):
                if not result.failed:
                    continue
                if self._find_open(check.event_type) is not None:
                    logger.debug(f"Event already open for {check.event_type.value}, skipping")
                    continue

                event = RecoveryEvent(
                    type=check.event_type,
                    severity=check.severity,
                    description=result.message,
                    source=check.name,
                )
                await self._record(event)
                new_events.append(event)
                logger.warning(f"Recovery event opened: {event.id} [{event.severity.value}] {event.description}")

        for event in new_events:
            await self._notify(event)
        return new_events

    async def _run_check(self, check: BaseHealthCheck) -> CheckResult:
        timeout = self.config.check_timeout

        async def attempt() -> CheckResult:
            try:
                return await asyncio.wait_for(check.run(), timeout=timeout)
            except asyncio.TimeoutError:
                logger.warning(f"Health check {check.name} timed out after {timeout}s")
                return CheckResult(
                    name=check.name,
                    status=CheckStatus.FAIL,
                    message=f"Tempo limite de {timeout}s excedido",
                    duration_ms=timeout * 1000,
                )
            except Exception as e:
                logger.warning(f"Health check {check.name} raised: {e}")
                return CheckResult(name=check.name, status=CheckStatus.FAIL, message=str(e))

        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.config.check_retries),
            wait=wait_exponential(multiplier=self.config.check_retry_wait, max=10),
            retry=retry_if_result(lambda result: result.failed),
            retry_error_callback=lambda state: state.outcome.result(),
        )
        return await retrying(attempt)

    async def trigger_recovery(self, event_id_or_type: Union[str, EventType]) -> RecoveryOutcome:
        """Run the remediation for an event.

        Args:
            event_id_or_type: An event id, or an event type. A type selects the
                newest open event of that type, or opens a manual one.

        Raises:
            EventNotFoundError: Neither a known event id nor an event type
        """
        await self._ensure_loaded()

        async with self._recovery_lock:
            event = await self._event_for(event_id_or_type)
            if event.resolved:
                logger.info(f"Event {event.id} already resolved, nothing to do")
                return RecoveryOutcome(success=True, action=event.action, event_id=event.id,
                                       detail="Evento já resolvido")

            logger.info(f"Starting recovery for {event.id} ({event.type.value})")
            try:
                action, detail = await self._remediate(event)
            except (BackupError, RecoveryFailed) as e:
                logger.error(f"Recovery for {event.id} failed: {e}")
                return RecoveryOutcome(success=False, event_id=event.id, detail=str(e))

            await self._mark_resolved(event, action)
            logger.info(f"Recovery for {event.id} succeeded: {action}")
            return RecoveryOutcome(success=True, action=action, event_id=event.id, detail=detail)

    async def _event_for(self, event_id_or_type: Union[str, EventType]) -> RecoveryEvent:
        if isinstance(event_id_or_type, str) and event_id_or_type in self._events:
            return self._events[event_id_or_type]

        try:
            event_type = EventType(event_id_or_type)
        except ValueError:
            raise EventNotFoundError(str(event_id_or_type))

        async with self._events_lock:
            candidates = [e for e in self._open_events() if e.type == event_type]
            if candidates:
                return candidates[0]

            event = RecoveryEvent(
                type=event_type,
                severity=DEFAULT_SEVERITY[event_type],
                description="Recuperação solicitada manualmente",
                source="manual",
            )
            await self._record(event)

        await self._notify(event)
        return event

    async def _remediate(self, event: RecoveryEvent):
        if event.type == EventType.SERVICE_DOWN:
            check = self._service_check(event.source)
            if check is not None:
                try:
                    await check.restart_service()
                except Exception as e:
                    raise RecoveryFailed(f"Falha ao reiniciar serviço {check.name}: {e}") from e
                return "restart_service", f"Serviço {check.name} reiniciado"
            return await self._restore_latest_valid()

        if event.type == EventType.DATA_CORRUPTION:
            return await self._restore_latest_valid()

        if event.type in (EventType.BACKUP_FAILED, EventType.BACKUP_STALE):
            if not self.config.backup_sources:
                raise RecoveryFailed("Nenhuma fonte de backup configurada")
            metadata = await self.engine.create_backup(list(self.config.backup_sources))
            return "create_backup", f"Backup criado: {metadata.id}"

        if event.type == EventType.DISK_SPACE_LOW:
            report = await self.engine.cleanup()
            if report.failed:
                raise RecoveryFailed(f"Falha ao remover backups: {', '.join(report.failed)}")
            return "cleanup", f"{len(report.deleted)} backups removidos, {report.freed_space} bytes liberados"

        raise RecoveryFailed(f"Nenhuma ação de recuperação para {event.type.value}")

    def _service_check(self, name: Optional[str]) -> Optional[ServiceCheck]:
        for check in self.checks:
            if isinstance(check, ServiceCheck) and check.name == name and check.restart is not None:
                return check
        return None

    async def _restore_latest_valid(self):
        if not self.config.restore_target:
            raise RecoveryFailed("Diretório de restauração não configurado")

        for backup in await self.engine.list_backups():
            if backup.status != BackupStatus.COMPLETED:
                continue
            if not (await self.engine.verify_backup(backup.id)).valid:
                logger.warning(f"Skipping invalid backup during recovery: {backup.id}")
                continue

            result = await self.engine.restore_backup(RestoreRequest(
                backup_id=backup.id,
                target_path=self.config.restore_target,
                overwrite=True,
            ))
            return "restore_backup", f"Backup {backup.id} restaurado ({len(result.restored_files)} arquivos)"

        raise RecoveryFailed("Nenhum backup válido disponível")

    async def resolve_event(self, event_id: str, action: Optional[str] = None) -> RecoveryEvent:
        await self._ensure_loaded()

        event = self._events.get(event_id)
        if event is None:
            raise EventNotFoundError(event_id)
        if event.resolved:
            return event
        return await self._mark_resolved(event, action or "manual")

    async def list_events(
        self,
        resolved: Optional[bool] = None,
        severity: Optional[Severity] = None,
        type: Optional[EventType] = None,
        date_from: Optional[datetime] = None,
        date_to: Optional[datetime] = None,
    ) -> List[RecoveryEvent]:
        """List events newest first, optionally filtered.

        ``date_from`` and ``date_to`` bound the event timestamp inclusively;
        naive datetimes are taken as UTC.
        """
        await self._ensure_loaded()

        date_from = ensure_utc(date_from) if date_from is not None else None
        date_to = ensure_utc(date_to) if date_to is not None else None
        events = [
            e for e in self._events.values()
            if (resolved is None or e.resolved == resolved)
            and (severity is None or e.severity == severity)
            and (type is None or e.type == type)
            and (date_from is None or e.timestamp >= date_from)
            and (date_to is None or e.timestamp <= date_to)
        ]
        events.sort(key=lambda e: e.timestamp, reverse=True)
        return events

    async def _mark_resolved(self, event: RecoveryEvent, action: Optional[str]) -> RecoveryEvent:
        resolved = event.model_copy(update={
            "resolved": True,
            "resolved_at": utc_now(),
            "action": action,
        })
        await self._record(resolved)
        logger.info(f"Recovery event resolved: {event.id}")
        return resolved

    async def _record(self, event: RecoveryEvent) -> None:
        await self.event_log.append(event)
        self._events[event.id] = event

    async def _notify(self, event: RecoveryEvent) -> None:
        for notifier in self.notifiers:
            try:
                await notifier.notify(event)
            except Exception as e:
                logger.error(f"Failed to notify {notifier.name} about {event.id}: {e}")

    def _open_events(self) -> List[RecoveryEvent]:
        events = [e for e in self._events.values() if not e.resolved]
        events.sort(key=lambda e: e.timestamp, reverse=True)
        return events

    def _find_open(self, event_type: EventType) -> Optional[RecoveryEvent]:
        for event in self._events.values():
            if not event.resolved and event.type == event_type:
                return event
        return None
