from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Union

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class UserMessage:
    text: str

    def to_dict(self) -> dict[str, Any]:
        return {"type": "userMessage", "text": self.text}


@dataclass(frozen=True)
class RequestAcknowledged:
    def to_dict(self) -> dict[str, Any]:
        return {"type": "acknowledgeRequest"}


OutboundEvent = Union[UserMessage, RequestAcknowledged]


@dataclass(frozen=True)
class Subscription:
    queue: "asyncio.Queue[OutboundEvent]"
    unsubscribe: Callable[[], Awaitable[None]]


class NotificationChannel:
    """Fans outbound events out to every subscriber through bounded queues.

    A full queue drops its oldest event rather than blocking the publisher.
    """

    def __init__(self, *, max_queue_size: int = 200) -> None:
        self._subscribers: set[asyncio.Queue[OutboundEvent]] = set()
        self._max_queue_size = max_queue_size
        self._lock = asyncio.Lock()

    async def subscribe(self) -> Subscription:
        queue: asyncio.Queue[OutboundEvent] = asyncio.Queue(maxsize=self._max_queue_size)
        async with self._lock:
            self._subscribers.add(queue)

        async def _unsubscribe() -> None:
            async with self._lock:
                self._subscribers.discard(queue)

        return Subscription(queue=queue, unsubscribe=_unsubscribe)

    async def publish(self, event: OutboundEvent) -> None:
        async with self._lock:
            subscribers = list(self._subscribers)
        if not subscribers:
            logger.debug("No subscribers for %s", event)
        for queue in subscribers:
            if queue.full():
                try:
                    queue.get_nowait()
                except asyncio.QueueEmpty:
                    pass
            try:
                queue.put_nowait(event)
            except asyncio.QueueFull:
                logger.warning("Dropped outbound event %s", event)
