"""Append-only persistence for recovery events."""

import json
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, List, Optional

import redis.asyncio as aioredis
from pydantic import ValidationError
from redis.exceptions import RedisError

from .._utils import logger
from ..config import MonitorConfig
from ..exceptions import StorageError
from .models import RecoveryEvent


def _fold(records: List[RecoveryEvent]) -> List[RecoveryEvent]:
    """Collapse a log into the latest version of each event, in first-seen order."""
    latest: Dict[str, RecoveryEvent] = {}
    for record in records:
        latest[record.id] = record
    return list(latest.values())


class BaseEventLog(ABC):
    """Events are never rewritten in place; each state change is appended."""

    @abstractmethod
    async def append(self, event: RecoveryEvent) -> None:
        raise NotImplementedError

    @abstractmethod
    async def read_all(self) -> List[RecoveryEvent]:
        """Every record in append order, including superseded versions."""
        raise NotImplementedError

    async def load(self) -> List[RecoveryEvent]:
        return _fold(await self.read_all())


class JsonlEventLog(BaseEventLog):
    """One JSON object per line in a local file."""

    def __init__(self, path: str):
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)

    async def append(self, event: RecoveryEvent) -> None:
        try:
            with open(self.path, "a", encoding="utf-8") as f:
                f.write(event.model_dump_json() + "\n")
        except OSError as e:
            raise StorageError(f"Failed to append recovery event {event.id}: {e}") from e

    async def read_all(self) -> List[RecoveryEvent]:
        if not self.path.exists():
            return []

        records = []
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                for line_no, line in enumerate(f, start=1):
                    line = line.strip()
                    if not line:
                        continue
                    try:
                        records.append(RecoveryEvent.model_validate_json(line))
                    except ValidationError as e:
                        logger.warning(f"Skipping malformed event at {self.path.name}:{line_no}: {e}")
        except OSError as e:
            raise StorageError(f"Failed to read recovery events: {e}") from e

        return records


class RedisEventLog(BaseEventLog):
    """Events stored in a Redis list (RPUSH/LRANGE)."""

    def __init__(self, client: Any, key: str = "backup_sentinel:recovery_events"):
        self.redis = client
        self.key = key

    @classmethod
    def from_url(cls, url: str, key: str = "backup_sentinel:recovery_events") -> "RedisEventLog":
        return cls(aioredis.from_url(url), key)

    async def append(self, event: RecoveryEvent) -> None:
        try:
            await self.redis.rpush(self.key, event.model_dump_json())
        except RedisError as e:
            raise StorageError(f"Failed to append recovery event {event.id}: {e}") from e

    async def read_all(self) -> List[RecoveryEvent]:
        try:
            raw_records = await self.redis.lrange(self.key, 0, -1)
        except RedisError as e:
            raise StorageError(f"Failed to read recovery events: {e}") from e

        records = []
        for raw in raw_records:
            try:
                if isinstance(raw, bytes):
                    raw = raw.decode("utf-8")
                records.append(RecoveryEvent.model_validate(json.loads(raw)))
            except (ValueError, ValidationError) as e:
                logger.warning(f"Skipping malformed event in {self.key}: {e}")

        return records


def create_event_log(config: MonitorConfig, redis_client: Optional[Any] = None) -> BaseEventLog:
    if config.event_log_backend == "redis":
        if redis_client is not None:
            return RedisEventLog(redis_client, config.redis_key)
        return RedisEventLog.from_url(config.redis_url, config.redis_key)
    return JsonlEventLog(config.event_log_path)
