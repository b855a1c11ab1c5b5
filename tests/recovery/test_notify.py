"""Tests for admin notifiers."""

import httpx
import pytest
from unittest.mock import AsyncMock, MagicMock, patch

from backup_sentinel.recovery.models import EventType, RecoveryEvent, Severity
from backup_sentinel.recovery.notify import CallbackNotifier, WebhookNotifier


def make_event():
    return RecoveryEvent(
        id="event_1",
        type=EventType.DISK_SPACE_LOW,
        severity=Severity.HIGH,
        description="Espaço livre em disco: 4.0% - CRÍTICO",
        source="disk_space",
    )


@pytest.mark.asyncio
async def test_webhook_posts_event():
    event = make_event()
    notifier = WebhookNotifier("https://hooks.example.com/dr", headers={"X-Token": "t"}, timeout=3)

    with patch("httpx.AsyncClient") as mock_client_class:
        mock_client = AsyncMock()
        mock_client.post.return_value = MagicMock()
        mock_client_class.return_value.__aenter__.return_value = mock_client

        await notifier.notify(event)

    mock_client_class.assert_called_once_with(timeout=3)
    url = mock_client.post.call_args.args[0]
    kwargs = mock_client.post.call_args.kwargs
    assert url == "https://hooks.example.com/dr"
    assert kwargs["headers"] == {"X-Token": "t"}
    assert kwargs["json"]["event"]["id"] == "event_1"
    assert kwargs["json"]["event"]["type"] == "disk_space_low"
    assert kwargs["json"]["message"] == "[high] disk_space_low: Espaço livre em disco: 4.0% - CRÍTICO"
    mock_client.post.return_value.raise_for_status.assert_called_once()


@pytest.mark.asyncio
async def test_webhook_http_error_raises():
    with patch("httpx.AsyncClient") as mock_client_class:
        mock_client = AsyncMock()
        mock_response = MagicMock()
        mock_response.status_code = 502
        mock_response.raise_for_status.side_effect = httpx.HTTPStatusError(
            "502", request=None, response=mock_response
        )
        mock_client.post.return_value = mock_response
        mock_client_class.return_value.__aenter__.return_value = mock_client

        with pytest.raises(httpx.HTTPStatusError):
            await WebhookNotifier("https://hooks.example.com/dr").notify(make_event())


@pytest.mark.asyncio
async def test_callback_notifier_sync_and_async():
    seen = []
    async_callback = AsyncMock()

    await CallbackNotifier(seen.append).notify(make_event())
    await CallbackNotifier(async_callback).notify(make_event())

    assert [e.id for e in seen] == ["event_1"]
    async_callback.assert_awaited_once()
