from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

import os


def _env_bool(value: str | None, default: bool) -> bool:
    if value is None or not value.strip():
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class AppConfig:
    port: int
    bridge_host: Optional[str]
    application_key: Optional[str]
    devicetype: str
    discovery_url: str
    discovery_timeout_seconds: float
    discovery_ssdp: bool
    connect_max_retries: int
    connect_retry_delay_seconds: float
    dim_brightness: float
    sleep_delay_minutes: int
    log_level: str

    @staticmethod
    def from_env() -> "AppConfig":
        return AppConfig(
            port=int(os.getenv("PORT", "8000")),
            bridge_host=os.getenv("HUE_BRIDGE_HOST") or None,
            application_key=os.getenv("HUE_APPLICATION_KEY") or None,
            devicetype=os.getenv("HUE_DEVICETYPE", "hue-voice#skill"),
            discovery_url=os.getenv("DISCOVERY_URL", "https://discovery.meethue.com/"),
            discovery_timeout_seconds=float(os.getenv("DISCOVERY_TIMEOUT_SECONDS", "3.0")),
            discovery_ssdp=_env_bool(os.getenv("DISCOVERY_SSDP"), True),
            connect_max_retries=int(os.getenv("CONNECT_MAX_RETRIES", "10")),
            connect_retry_delay_seconds=float(os.getenv("CONNECT_RETRY_DELAY_SECONDS", "6.0")),
            dim_brightness=float(os.getenv("DIM_BRIGHTNESS", "30")),
            sleep_delay_minutes=int(os.getenv("SLEEP_DELAY_MINUTES", "5")),
            log_level=os.getenv("LOG_LEVEL", "INFO"),
        )
