import asyncio
import json
from datetime import datetime, timezone
from typing import Any, Callable

import httpx
import pytest

from hue_voice.channel import Subscription
from hue_voice.config import AppConfig


@pytest.fixture
def config() -> AppConfig:
    return AppConfig(
        port=8000,
        bridge_host="bridge.test",
        application_key=None,
        devicetype="hue-voice#test",
        discovery_url="https://discovery.test/",
        discovery_timeout_seconds=0.1,
        discovery_ssdp=False,
        connect_max_retries=10,
        connect_retry_delay_seconds=0.0,
        dim_brightness=30.0,
        sleep_delay_minutes=5,
        log_level="DEBUG",
    )


@pytest.fixture
def clock() -> Callable[[], datetime]:
    # Fixed instant so schedule times are deterministic.
    return lambda: datetime(2026, 10, 18, 12, 0, tzinfo=timezone.utc)


class FakeBridge:
    """Minimal v1 bridge: pairing, key checks, lights, groups and schedules."""

    def __init__(self) -> None:
        self.lights: dict[str, Any] = {
            "1": {"name": "Sofa lamp", "state": {"on": False}},
            "2": {"name": "Reading lamp", "state": {"on": False}},
            "3": {"name": "Counter", "state": {"on": False}},
        }
        self.groups: dict[str, Any] = {
            "1": {"name": "Living Room", "lights": ["1", "2"], "type": "Room"},
            "2": {"name": "Kitchen", "lights": ["3"], "type": "Room"},
        }
        self.valid_keys: set[str] = {"stored-key"}
        self.issued_username = "new-user"
        # Number of pairing attempts refused before the link button counts as pressed.
        self.link_button_after = 0
        self.failing_lights: set[str] = set()
        self.broken_lights: set[str] = set()
        self.unreachable = False
        self.write_gate: asyncio.Event | None = None
        self.write_seen = asyncio.Event()
        self.requests: list[tuple[str, str, Any]] = []
        self._pair_attempts = 0
        self._schedule_ids = 0

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def calls(self, method: str, suffix: str = "") -> list[tuple[str, str, Any]]:
        return [r for r in self.requests if r[0] == method and r[1].endswith(suffix)]

    @property
    def state_writes(self) -> dict[str, Any]:
        return {path.split("/")[-2]: body for method, path, body in self.requests if method == "PUT"}

    @property
    def schedules(self) -> list[Any]:
        return [body for _, _, body in self.calls("POST", "/schedules")]

    async def handler(self, request: httpx.Request) -> httpx.Response:
        if self.unreachable:
            raise httpx.ConnectError("no route to bridge", request=request)

        body = json.loads(request.content) if request.content else None
        path = request.url.path
        self.requests.append((request.method, path, body))

        if request.method == "POST" and path == "/api":
            self._pair_attempts += 1
            if self._pair_attempts <= self.link_button_after:
                return httpx.Response(
                    200, json=[{"error": {"type": 101, "address": "", "description": "link button not pressed"}}]
                )
            self.valid_keys.add(self.issued_username)
            return httpx.Response(200, json=[{"success": {"username": self.issued_username}}])

        parts = path.strip("/").split("/")
        if len(parts) < 2 or parts[0] != "api":
            return httpx.Response(404, text="not found")
        if parts[1] not in self.valid_keys:
            return httpx.Response(200, json=[{"error": {"type": 1, "address": "/", "description": "unauthorized user"}}])

        resource = parts[2:]
        if request.method == "GET" and resource == ["capabilities"]:
            return httpx.Response(200, json={"lights": {"available": 60}})
        if request.method == "GET" and resource == ["lights"]:
            return httpx.Response(200, json=self.lights)
        if request.method == "GET" and resource == ["groups"]:
            return httpx.Response(200, json=self.groups)
        if request.method == "PUT" and len(resource) == 3 and resource[0] == "lights":
            self.write_seen.set()
            if self.write_gate is not None:
                await self.write_gate.wait()
            light_id = resource[1]
            if light_id in self.broken_lights:
                raise httpx.RemoteProtocolError("peer closed connection", request=request)
            if light_id in self.failing_lights:
                return httpx.Response(
                    200, json=[{"error": {"type": 201, "address": path, "description": "device is set to off"}}]
                )
            return httpx.Response(200, json=[{"success": {f"/lights/{light_id}/state/on": body.get("on")}}])
        if request.method == "POST" and resource == ["schedules"]:
            self._schedule_ids += 1
            return httpx.Response(200, json=[{"success": {"id": str(self._schedule_ids)}}])
        return httpx.Response(404, text="not found")


@pytest.fixture
def bridge() -> FakeBridge:
    return FakeBridge()


@pytest.fixture
def drain() -> Callable[[Subscription], list[dict[str, Any]]]:
    def _drain(subscription: Subscription) -> list[dict[str, Any]]:
        events: list[dict[str, Any]] = []
        while not subscription.queue.empty():
            events.append(subscription.queue.get_nowait().to_dict())
        return events

    return _drain
