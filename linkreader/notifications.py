from __future__ import annotations

import asyncio
import json
import logging
import time
from collections.abc import AsyncIterator
from datetime import datetime, timezone
from typing import Any

logger = logging.getLogger(__name__)


def format_event(event: str, data: dict[str, Any]) -> str:
    return f"event: {event}\ndata: {json.dumps(data)}\n\n"


def client_id_for(header_value: str | None, host: str | None) -> str:
    if header_value and header_value.strip():
        return header_value.strip()
    return f"{host or 'unknown'}-{int(time.time() * 1000)}"


class NotificationChannel:
    """Server-to-client event queue for one connection, with a cancellable keep-alive task."""

    def __init__(self, client_id: str, keepalive_interval: float = 30.0):
        self.client_id = client_id
        self.keepalive_interval = keepalive_interval
        self.queue: asyncio.Queue[str] = asyncio.Queue()
        self._keepalive_task: asyncio.Task | None = None
        self.closed = False

    def send(self, event: str, data: dict[str, Any]) -> None:
        if not self.closed:
            self.queue.put_nowait(format_event(event, data))

    def start(self) -> None:
        self.send("initialized", {"type": "initialized", "clientId": self.client_id})
        self._keepalive_task = asyncio.create_task(self._keepalive())

    async def _keepalive(self) -> None:
        while not self.closed:
            await asyncio.sleep(self.keepalive_interval)
            self.send("ping", {"type": "ping", "timestamp": datetime.now(timezone.utc).isoformat()})

    @property
    def keepalive_running(self) -> bool:
        return self._keepalive_task is not None and not self._keepalive_task.done()

    def close(self) -> None:
        self.closed = True
        if self._keepalive_task is not None:
            self._keepalive_task.cancel()


class NotificationRegistry:
    def __init__(self) -> None:
        self._channels: dict[str, NotificationChannel] = {}

    def register(self, channel: NotificationChannel) -> None:
        previous = self._channels.get(channel.client_id)
        if previous is not None and previous is not channel:
            previous.close()
        self._channels[channel.client_id] = channel
        logger.info("Notification channel opened for %s (%d active)", channel.client_id, len(self._channels))

    def unregister(self, channel: NotificationChannel) -> None:
        if self._channels.get(channel.client_id) is channel:
            del self._channels[channel.client_id]
        logger.info("Notification channel closed for %s (%d active)", channel.client_id, len(self._channels))

    def get(self, client_id: str) -> NotificationChannel | None:
        return self._channels.get(client_id)

    def __contains__(self, client_id: object) -> bool:
        return client_id in self._channels

    def __len__(self) -> int:
        return len(self._channels)


async def stream_events(
    request,
    channel: NotificationChannel,
    registry: NotificationRegistry,
    poll_interval: float = 1.0,
) -> AsyncIterator[str]:
    """Yield queued SSE frames until the peer disconnects, then tear the channel down."""
    registry.register(channel)
    channel.start()
    try:
        while True:
            if await request.is_disconnected():
                return
            try:
                frame = await asyncio.wait_for(channel.queue.get(), timeout=poll_interval)
            except asyncio.TimeoutError:
                continue
            yield frame
    finally:
        channel.close()
        registry.unregister(channel)
