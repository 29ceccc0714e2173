from __future__ import annotations

import logging
from datetime import timedelta
from typing import Any, Awaitable, Callable, Mapping

from hue_voice.config import AppConfig
from hue_voice.connection import ConnectionManager
from hue_voice.engine import LightStateEngine
from hue_voice.messages import MessageKind, MessagePublisher
from hue_voice.models import Request

logger = logging.getLogger(__name__)

Handler = Callable[[Request], Awaitable[None]]


class CommandDispatcher:
    """Entry point for parsed voice intents.

    Holds the single in-flight Request. Commands arriving while the bridge is
    not connected start (or report) a connection attempt and are dropped.
    """

    def __init__(
        self,
        *,
        config: AppConfig,
        connection: ConnectionManager,
        engine: LightStateEngine,
        publisher: MessagePublisher,
    ) -> None:
        self.config = config
        self.connection = connection
        self.engine = engine
        self.publisher = publisher
        self.request: Request | None = None
        self._handlers: dict[str, Handler] = {
            "on": self.engine.turn_on,
            "off": self.engine.turn_off,
            "color": self.engine.set_color,
            "dim": self.engine.dim,
            "night": self._night_prompt,
            "sleep": self._sleep_prompt,
            "connect": self._reconnect,
        }

    async def take_action(self, action: str, params: Mapping[str, Any] | None = None) -> None:
        if await self._reject_if_busy(action):
            return
        action = (action or "").strip().lower()
        self.request = Request.from_params(action, params)

        if not await self._ensure_connected():
            return

        logger.info("Received request for action: %s.", action)
        handler = self._handlers.get(action)
        if handler is None:
            await self.publisher.publish(MessageKind.INVALID_COMMAND)
            return
        await handler(self.request)

    async def confirm_action(self) -> None:
        if await self._reject_if_busy("confirm"):
            return
        request = self.request
        pending = request.pending_action if request is not None else None
        logger.info("Confirming action: %s.", pending)

        if request is None or pending not in {"night", "sleep"}:
            await self.publisher.publish(MessageKind.INVALID_COMMAND)
            return
        if not await self._ensure_connected():
            return

        request.pending_action = None
        if pending == "night":
            await self.publisher.publish(MessageKind.NIGHT_CONFIRMATION)
            await self.engine.turn_on(request)
        else:
            request.time = self.engine.now() + timedelta(minutes=self.config.sleep_delay_minutes)
            await self.engine.turn_off(request)

    async def cancel_action(self) -> None:
        pending = self.request.pending_action if self.request is not None else None
        logger.debug('Cancelling request of type "%s"', pending)
        self.request = None
        await self.publisher.acknowledge()

    async def _reject_if_busy(self, action: str) -> bool:
        if not self.engine.busy:
            return False
        logger.info("Rejecting %r while the previous request is still being applied", action)
        await self.publisher.publish(MessageKind.REQUEST_IN_PROGRESS)
        return True

    async def _ensure_connected(self) -> bool:
        if self.connection.is_connected:
            return True
        if self.connection.in_progress:
            await self.publisher.publish(MessageKind.CONNECTION_IN_PROGRESS)
        else:
            self.connection.reset_retry_count()
            await self.connection.connect()
        return False

    async def _night_prompt(self, request: Request) -> None:
        logger.debug("Invoking nighttime behavior.")
        request.pending_action = "night"
        await self.publisher.publish(MessageKind.NIGHT_PROMPT)

    async def _sleep_prompt(self, request: Request) -> None:
        logger.debug("Invoking bedtime behavior.")
        request.pending_action = "sleep"
        await self.publisher.publish(MessageKind.SLEEP_PROMPT)

    async def _reconnect(self, request: Request) -> None:
        await self.connection.reconnect()
