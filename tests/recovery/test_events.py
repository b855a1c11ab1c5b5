"""Tests for recovery event logs."""

import pytest
from unittest.mock import AsyncMock, MagicMock, patch

from redis.exceptions import ConnectionError as RedisConnectionError

from backup_sentinel.config import MonitorConfig
from backup_sentinel.exceptions import StorageError
from backup_sentinel.recovery.events import JsonlEventLog, RedisEventLog, create_event_log
from backup_sentinel.recovery.models import EventType, RecoveryEvent, Severity


def make_event(event_id="event_1", **overrides):
    fields = dict(id=event_id, type=EventType.BACKUP_STALE, severity=Severity.MEDIUM, description="stale")
    fields.update(overrides)
    return RecoveryEvent(**fields)


@pytest.mark.asyncio
async def test_jsonl_append_and_fold(workspace):
    log = JsonlEventLog(str(workspace / "events" / "log.jsonl"))
    opened = make_event()

    await log.append(opened)
    await log.append(make_event("event_2", type=EventType.DISK_SPACE_LOW))
    await log.append(opened.model_copy(update={"resolved": True, "action": "create_backup"}))

    raw = await log.read_all()
    assert len(raw) == 3

    events = await log.load()
    assert [e.id for e in events] == ["event_1", "event_2"]
    assert events[0].resolved is True
    assert events[0].action == "create_backup"


@pytest.mark.asyncio
async def test_jsonl_missing_file(workspace):
    assert await JsonlEventLog(str(workspace / "none.jsonl")).load() == []


@pytest.mark.asyncio
async def test_jsonl_skips_malformed_lines(workspace):
    path = workspace / "log.jsonl"
    log = JsonlEventLog(str(path))
    await log.append(make_event())
    with open(path, "a") as f:
        f.write("{broken\n\n")

    assert [e.id for e in await log.load()] == ["event_1"]


@pytest.fixture
def redis_client():
    """Mocked redis client backed by a list."""
    data = []
    client = AsyncMock()

    async def rpush(key, value):
        data.append(value.encode("utf-8"))
        return len(data)

    async def lrange(key, start, end):
        return list(data)

    client.rpush = AsyncMock(side_effect=rpush)
    client.lrange = AsyncMock(side_effect=lrange)
    client.data = data
    return client


@pytest.mark.asyncio
async def test_redis_append_and_load(redis_client):
    log = RedisEventLog(redis_client, key="events")
    event = make_event()

    await log.append(event)
    await log.append(event.model_copy(update={"resolved": True}))
    redis_client.data.append(b"not json")

    events = await log.load()

    assert len(events) == 1
    assert events[0].resolved is True
    redis_client.rpush.assert_awaited_with("events", event.model_copy(update={"resolved": True}).model_dump_json())
    redis_client.lrange.assert_awaited_once_with("events", 0, -1)


@pytest.mark.asyncio
async def test_redis_errors_wrapped():
    client = AsyncMock()
    client.rpush.side_effect = RedisConnectionError("down")
    client.lrange.side_effect = RedisConnectionError("down")
    log = RedisEventLog(client)

    with pytest.raises(StorageError, match="Failed to append"):
        await log.append(make_event())
    with pytest.raises(StorageError, match="Failed to read"):
        await log.load()


def test_create_event_log(workspace):
    jsonl = create_event_log(MonitorConfig(event_log_path=str(workspace / "e.jsonl")))
    assert isinstance(jsonl, JsonlEventLog)

    client = MagicMock()
    redis_log = create_event_log(MonitorConfig(event_log_backend="redis", redis_key="k"), redis_client=client)
    assert isinstance(redis_log, RedisEventLog)
    assert redis_log.redis is client
    assert redis_log.key == "k"

    with patch("backup_sentinel.recovery.events.aioredis.from_url") as from_url:
        from_config = create_event_log(MonitorConfig(event_log_backend="redis", redis_url="redis://h:1"))
    from_url.assert_called_once_with("redis://h:1")
    assert from_config.redis is from_url.return_value
