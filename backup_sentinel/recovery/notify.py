"""Admin notifications sent when the monitor opens a recovery event."""

from abc import ABC, abstractmethod
from typing import Awaitable, Callable, Dict, Optional, Union

import httpx

from .._utils import logger
from .models import RecoveryEvent


class BaseNotifier(ABC):
    """Deliver a newly opened event to administrators.

    Implementations raise on delivery failure; the monitor logs the error and
    carries on, so a broken channel never blocks detection.
    """

    name: str = "notifier"

    @abstractmethod
    async def notify(self, event: RecoveryEvent) -> None:
        raise NotImplementedError


class WebhookNotifier(BaseNotifier):
    """POST the event as JSON to a webhook URL."""

    name = "webhook"

    def __init__(self, url: str, headers: Optional[Dict[str, str]] = None, timeout: float = 10.0):
        self.url = url
        self.headers = headers or {}
        self.timeout = timeout

    def payload(self, event: RecoveryEvent) -> dict:
        return {
            "event": event.model_dump(mode="json"),
            "message": f"[{event.severity.value}] {event.type.value}: {event.description}",
        }

    async def notify(self, event: RecoveryEvent) -> None:
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            response = await client.post(self.url, json=self.payload(event), headers=self.headers)
            response.raise_for_status()
        logger.info(f"Webhook notification sent for event {event.id}")


class CallbackNotifier(BaseNotifier):
    """Hand the event to an application callback, sync or async."""

    name = "callback"

    def __init__(self, callback: Callable[[RecoveryEvent], Union[None, Awaitable[None]]]):
        self.callback = callback

    async def notify(self, event: RecoveryEvent) -> None:
        result = self.callback(event)
        if result is not None:
            await result
