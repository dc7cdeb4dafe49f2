from __future__ import annotations

import asyncio
import json
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

logger = logging.getLogger("vfrplanner.events")


def _json_default(value: Any) -> Any:
    if hasattr(value, "to_payload"):
        return value.to_payload()
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (set, frozenset)):
        return sorted(value)
    return str(value)


@dataclass(frozen=True, slots=True)
class EventMessage:
    type: str
    data: Any
    id: str | None = None
    retry: int | None = None
    created_at: float = field(default_factory=time.time)

    def to_sse(self) -> bytes:
        """Encode as one server-sent event frame."""

        lines: list[str] = []
        if self.retry is not None:
            lines.append(f"retry: {self.retry}")
        if self.id is not None:
            lines.append(f"id: {self.id}")
        lines.append(f"event: {self.type}")
        payload = json.dumps(self.data, separators=(",", ":"), default=_json_default)
        lines.extend(f"data: {chunk}" for chunk in (payload.splitlines() or ["{}"]))
        return ("\n".join(lines) + "\n\n").encode("utf-8")


class EventSubscription:
    def __init__(self, bus: EventBus, queue: asyncio.Queue[EventMessage]) -> None:
        self._bus = bus
        self._queue = queue
        self._closed = False

    async def get(self) -> EventMessage:
        return await self._queue.get()

    def get_nowait(self) -> EventMessage:
        return self._queue.get_nowait()

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        await self._bus._unsubscribe(self._queue)


class EventBus:
    """Fan-out of search job events to every open event stream.

    A subscriber whose queue is full is dropped rather than blocking the
    publishing search.
    """

    def __init__(self, *, subscriber_queue_size: int = 512) -> None:
        self._subscriber_queue_size = max(32, subscriber_queue_size)
        self._subscribers: set[asyncio.Queue[EventMessage]] = set()
        self._lock = asyncio.Lock()
        self._counter = 0

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    async def publish(
        self,
        event_type: str,
        data: Any,
        *,
        event_id: str | None = None,
        retry: int | None = None,
    ) -> None:
        message = EventMessage(type=event_type, data=data, id=event_id or self._next_id(), retry=retry)
        async with self._lock:
            stale = []
            for queue in self._subscribers:
                try:
                    queue.put_nowait(message)
                except asyncio.QueueFull:
                    stale.append(queue)
            for queue in stale:
                self._subscribers.discard(queue)
        if stale:
            logger.warning("Dropped %s slow event subscriber(s)", len(stale))

    async def subscribe(self) -> EventSubscription:
        queue: asyncio.Queue[EventMessage] = asyncio.Queue(self._subscriber_queue_size)
        async with self._lock:
            self._subscribers.add(queue)
        return EventSubscription(self, queue)

    async def _unsubscribe(self, queue: asyncio.Queue[EventMessage]) -> None:
        async with self._lock:
            self._subscribers.discard(queue)

    def _next_id(self) -> str:
        self._counter += 1
        return str(self._counter)


event_bus = EventBus()

__all__ = ["EventBus", "EventMessage", "EventSubscription", "event_bus"]
