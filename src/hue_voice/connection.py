from __future__ import annotations

import asyncio
import enum
import logging
from dataclasses import dataclass
from typing import Any

from hue_voice.config import AppConfig
from hue_voice.credentials import CredentialStore
from hue_voice.discovery import BridgeDiscovery
from hue_voice.hue_client import HueAuthError, HueClient, HueLinkButtonError, HueTransportError, HueUpstreamError
from hue_voice.messages import MessageKind, MessagePublisher

logger = logging.getLogger(__name__)


class ConnectionState(enum.Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


class ConnectionSignal(enum.Enum):
    BRIDGE_RETRY = "bridgeRetry"
    BRIDGE_TIMEOUT = "bridgeTimeout"
    ERROR_NO_BRIDGE = "errorNoBridge"
    ERROR_NOT_REGISTERED = "errorNotRegistered"
    BRIDGE_CONNECTED = "bridgeConnected"


_FAILURE_MESSAGES = {
    ConnectionSignal.ERROR_NO_BRIDGE: MessageKind.NO_BRIDGE_FOUND,
    ConnectionSignal.ERROR_NOT_REGISTERED: MessageKind.NOT_REGISTERED,
}


@dataclass
class BridgeConnection:
    state: ConnectionState = ConnectionState.DISCONNECTED
    bridge_address: str | None = None
    access_token: str | None = None
    retry_count: int = 0
    is_retry_in_flight: bool = False

    @property
    def in_progress(self) -> bool:
        return self.state is ConnectionState.CONNECTING or self.is_retry_in_flight

    def snapshot(self) -> dict[str, Any]:
        token = self.access_token
        return {
            "state": self.state.value,
            "bridgeAddress": self.bridge_address,
            "accessToken": f"{token[:6]}…" if token else None,
            "retryCount": self.retry_count,
            "retryInFlight": self.is_retry_in_flight,
        }


class ConnectionManager:
    """Owns the single logical connection to the bridge.

    Each attempt runs discovery, then either validates the stored application
    key or pairs to obtain one. Failed attempts are retried on a fixed delay
    until ``connect_max_retries`` is reached. Only the first failure of a
    retry sequence is announced to the user.
    """

    def __init__(
        self,
        *,
        config: AppConfig,
        hue: HueClient,
        discovery: BridgeDiscovery,
        credentials: CredentialStore,
        publisher: MessagePublisher,
    ) -> None:
        self._config = config
        self._hue = hue
        self._discovery = discovery
        self._credentials = credentials
        self._publisher = publisher
        self._retry_task: asyncio.Task | None = None
        self.connection = BridgeConnection()

    @property
    def is_connected(self) -> bool:
        return self.connection.state is ConnectionState.CONNECTED

    @property
    def in_progress(self) -> bool:
        return self.connection.in_progress

    def reset_retry_count(self) -> None:
        self.connection.retry_count = 0

    async def connect(self) -> bool:
        """Start a connection attempt. Returns False if one is already outstanding."""
        if self.connection.in_progress:
            logger.info("Connection attempt already in progress")
            await self._publisher.publish(MessageKind.CONNECTION_IN_PROGRESS)
            return False
        if self.is_connected:
            logger.debug("Already connected to bridge %s", self.connection.bridge_address)
            return True
        logger.info("Attempting connection to the Hue bridge")
        await self._attempt()
        return True

    async def reconnect(self) -> bool:
        if self.connection.in_progress:
            await self._publisher.publish(MessageKind.CONNECTION_IN_PROGRESS)
            return False
        self.connection.state = ConnectionState.DISCONNECTED
        self.reset_retry_count()
        return await self.connect()

    async def join(self) -> None:
        """Wait until no retry timer is armed."""
        while self._retry_task is not None:
            task = self._retry_task
            # Failures are logged by _on_retry_done.
            await asyncio.wait({task})
            if self._retry_task is task:
                break

    async def close(self) -> None:
        task, self._retry_task = self._retry_task, None
        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        self.connection.is_retry_in_flight = False

    async def _attempt(self) -> None:
        self.connection.state = ConnectionState.CONNECTING
        self.connection.is_retry_in_flight = False

        try:
            bridges = await self._discovery.discover()
        except (HueTransportError, OSError) as exc:
            logger.error("Bridge discovery failed: %s", exc)
            bridges = []

        logger.debug("Hue bridges found: %s", [b.ip for b in bridges])
        if not bridges:
            await self._handle(ConnectionSignal.ERROR_NO_BRIDGE)
            return

        # First bridge wins; there is no bridge picker.
        bridge = bridges[0]
        self.connection.bridge_address = bridge.ip
        token = await self._credentials.get()
        await self._hue.configure(bridge_host=bridge.ip, application_key=token)

        if token:
            await self._validate(token)
        else:
            await self._register()

    async def _register(self) -> None:
        try:
            username = await self._hue.register(devicetype=self._config.devicetype)
        except HueLinkButtonError:
            logger.info("Bridge %s is waiting for its link button", self.connection.bridge_address)
            await self._handle(ConnectionSignal.ERROR_NOT_REGISTERED)
            return
        except (HueTransportError, HueUpstreamError) as exc:
            logger.error("Registration with bridge %s failed: %s", self.connection.bridge_address, exc)
            await self._handle(ConnectionSignal.ERROR_NOT_REGISTERED)
            return

        logger.info("Registered with bridge %s", self.connection.bridge_address)
        await self._credentials.set(username)
        await self._hue.configure(bridge_host=self.connection.bridge_address, application_key=username)
        await self._validate(username)

    async def _validate(self, token: str) -> None:
        try:
            await self._hue.validate()
        except HueAuthError as exc:
            logger.error("Bridge rejected the stored application key: %s", exc.body)
            await self._credentials.clear()
            await self._hue.configure(bridge_host=self.connection.bridge_address, application_key=None)
            self.connection.access_token = None
            await self._handle(ConnectionSignal.ERROR_NOT_REGISTERED)
            return
        except (HueTransportError, HueUpstreamError) as exc:
            # Reachability problem, not a credential problem: keep the key.
            logger.error("Could not validate connection to bridge %s: %s", self.connection.bridge_address, exc)
            await self._handle(ConnectionSignal.ERROR_NO_BRIDGE)
            return

        self.connection.access_token = token
        await self._handle(ConnectionSignal.BRIDGE_CONNECTED)

    async def _handle(self, signal: ConnectionSignal) -> None:
        if signal is ConnectionSignal.BRIDGE_CONNECTED:
            logger.info("Connection to bridge %s has been established.", self.connection.bridge_address)
            self.connection.state = ConnectionState.CONNECTED
            self.connection.retry_count = 0
            self.connection.is_retry_in_flight = False
            await self._publisher.publish(MessageKind.CONNECTED)
        elif signal in _FAILURE_MESSAGES:
            if self.connection.retry_count == 0:
                await self._publisher.publish(_FAILURE_MESSAGES[signal])
            else:
                logger.info("%s on retry attempt %d", signal.value, self.connection.retry_count)
            await self._schedule_retry()
        elif signal is ConnectionSignal.BRIDGE_RETRY:
            logger.info("Retry attempt %d to establish bridge connection.", self.connection.retry_count)
            await self._attempt()
        elif signal is ConnectionSignal.BRIDGE_TIMEOUT:
            logger.warning("Retry timed out after %d attempts.", self.connection.retry_count)
            self.connection.state = ConnectionState.DISCONNECTED
            self.connection.is_retry_in_flight = False
            await self._publisher.publish(MessageKind.CONNECTION_TIMED_OUT)

    async def _schedule_retry(self) -> None:
        self.connection.state = ConnectionState.DISCONNECTED
        self.connection.retry_count += 1
        if self.connection.retry_count < self._config.connect_max_retries:
            self.connection.is_retry_in_flight = True
            self._retry_task = asyncio.create_task(
                self._retry_after(self._config.connect_retry_delay_seconds)
            )
            self._retry_task.add_done_callback(self._on_retry_done)
        else:
            await self._handle(ConnectionSignal.BRIDGE_TIMEOUT)

    async def _retry_after(self, delay: float) -> None:
        await asyncio.sleep(delay)
        self._retry_task = None
        await self._handle(ConnectionSignal.BRIDGE_RETRY)

    def _on_retry_done(self, task: asyncio.Task) -> None:
        if task.cancelled() or task.exception() is None:
            return
        logger.error("Bridge retry attempt failed", exc_info=task.exception())
        self.connection.state = ConnectionState.DISCONNECTED
        self.connection.is_retry_in_flight = False
