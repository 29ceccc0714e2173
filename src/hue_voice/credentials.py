from __future__ import annotations

import logging
from typing import Protocol

logger = logging.getLogger(__name__)

BRIDGE_USERNAME_KEY = "hue.bridge_username"


class ConfigPort(Protocol):
    async def get_setting(self, key: str) -> str | None: ...

    async def set_setting(self, key: str, value: str | None) -> None: ...


class CredentialStore:
    """Holds the application key issued by the bridge when the skill paired with it."""

    def __init__(self, *, config: ConfigPort) -> None:
        self._config = config

    async def get(self) -> str | None:
        value = await self._config.get_setting(BRIDGE_USERNAME_KEY)
        return value or None

    async def set(self, username: str) -> None:
        if not username:
            raise ValueError("username must be a non-empty string")
        await self._config.set_setting(BRIDGE_USERNAME_KEY, username)
        logger.info("Stored bridge application key %s…", username[:6])

    async def clear(self) -> None:
        await self._config.set_setting(BRIDGE_USERNAME_KEY, None)
        logger.info("Cleared stored bridge application key")
