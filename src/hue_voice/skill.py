from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Callable

import httpx

from hue_voice.channel import NotificationChannel
from hue_voice.config import AppConfig
from hue_voice.connection import ConnectionManager
from hue_voice.credentials import CredentialStore
from hue_voice.db import Database
from hue_voice.discovery import BridgeDiscovery
from hue_voice.dispatcher import CommandDispatcher
from hue_voice.engine import LightStateEngine
from hue_voice.hue_client import HueClient
from hue_voice.messages import MessagePublisher


@dataclass
class LightingSkill:
    config: AppConfig
    db: Database
    hue: HueClient
    channel: NotificationChannel
    publisher: MessagePublisher
    credentials: CredentialStore
    connection: ConnectionManager
    engine: LightStateEngine
    dispatcher: CommandDispatcher

    @classmethod
    def build(
        cls,
        *,
        config: AppConfig,
        db: Database,
        hue_transport: httpx.AsyncBaseTransport | None = None,
        discovery_transport: httpx.AsyncBaseTransport | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> "LightingSkill":
        hue = HueClient(bridge_host=None, application_key=None, transport=hue_transport)
        channel = NotificationChannel()
        publisher = MessagePublisher(channel=channel)
        credentials = CredentialStore(config=db)
        connection = ConnectionManager(
            config=config,
            hue=hue,
            discovery=BridgeDiscovery(config=config, transport=discovery_transport),
            credentials=credentials,
            publisher=publisher,
        )
        engine_kwargs = {"clock": clock} if clock is not None else {}
        engine = LightStateEngine(config=config, hue=hue, publisher=publisher, **engine_kwargs)
        dispatcher = CommandDispatcher(config=config, connection=connection, engine=engine, publisher=publisher)
        return cls(
            config=config,
            db=db,
            hue=hue,
            channel=channel,
            publisher=publisher,
            credentials=credentials,
            connection=connection,
            engine=engine,
            dispatcher=dispatcher,
        )

    async def start(self) -> None:
        # An env-provided key seeds the store once; a stored key is never overwritten.
        if self.config.application_key and not await self.credentials.get():
            await self.credentials.set(self.config.application_key)

    async def close(self) -> None:
        await self.connection.close()
        await self.hue.close()
