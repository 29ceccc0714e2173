from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

import asyncio
import random

import httpx


class HueTransportError(Exception):
    pass


class HueUpstreamError(Exception):
    def __init__(self, *, status_code: int, body: Any) -> None:
        super().__init__(f"Hue upstream error: {status_code}")
        self.status_code = status_code
        self.body = body


class HueAuthError(HueUpstreamError):
    """The bridge rejected the application key (v1 error type 1)."""


class HueLinkButtonError(HueAuthError):
    """Pairing was refused because the link button was not pressed (v1 error type 101)."""


# v1 error types, see the Hue API "error messages" reference.
ERROR_UNAUTHORIZED_USER = 1
ERROR_LINK_BUTTON_NOT_PRESSED = 101


@dataclass(frozen=True)
class HueJSONishResult:
    status_code: int
    body: Any


@dataclass(frozen=True)
class LightDevice:
    id: str
    state: dict[str, Any] = field(default_factory=dict)
    name: str | None = None


@dataclass(frozen=True)
class RoomGroup:
    id: str
    name: str
    member_device_ids: list[str] = field(default_factory=list)


def raise_for_bridge_errors(body: Any, *, status_code: int = 200) -> None:
    """Raise if a v1 response body carries ``[{"error": {...}}]`` entries.

    The v1 API answers most failures with HTTP 200 and an error list, so the
    status code alone says nothing about success.
    """
    if not isinstance(body, list):
        return
    for item in body:
        if not isinstance(item, dict) or "error" not in item:
            continue
        err = item["error"]
        err_type = 0
        if isinstance(err, dict):
            try:
                err_type = int(err.get("type", 0))
            except (TypeError, ValueError):
                err_type = 0
        if err_type == ERROR_LINK_BUTTON_NOT_PRESSED:
            raise HueLinkButtonError(status_code=status_code, body=body)
        if err_type == ERROR_UNAUTHORIZED_USER:
            raise HueAuthError(status_code=status_code, body=body)
        raise HueUpstreamError(status_code=status_code, body=body)


class HueClient:
    def __init__(
        self,
        *,
        bridge_host: str | None,
        application_key: str | None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._bridge_host = bridge_host
        self._application_key = application_key
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def close(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    async def configure(self, *, bridge_host: str | None, application_key: str | None) -> None:
        changed_host = bridge_host != self._bridge_host
        self._bridge_host = bridge_host
        self._application_key = application_key
        if changed_host:
            # Base URL is bound at client creation; rebuilt on next request.
            await self.close()

    @property
    def bridge_host(self) -> str | None:
        return self._bridge_host

    def _base_url(self) -> str:
        if not self._bridge_host:
            raise HueTransportError("bridge_host not configured")
        return f"https://{self._bridge_host}"

    def _user_path(self, suffix: str = "") -> str:
        if not self._application_key:
            raise HueAuthError(status_code=0, body="application_key not configured")
        return f"/api/{self._application_key}{suffix}"

    def light_state_address(self, light_id: str) -> str:
        return self._user_path(f"/lights/{light_id}/state")

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client:
            return self._client
        self._client = httpx.AsyncClient(
            base_url=self._base_url(),
            verify=False,
            timeout=httpx.Timeout(10.0, connect=3.0),
            transport=self._transport,
        )
        return self._client

    async def request_jsonish(
        self,
        *,
        method: str,
        path: str,
        json_body: Any | None = None,
        retry: bool = False,
        max_attempts: int = 3,
        base_delay_ms: int = 200,
    ) -> HueJSONishResult:
        client = await self._get_client()
        attempts = max_attempts if retry else 1

        last_transport_error: Exception | None = None
        last_upstream_error: HueUpstreamError | None = None

        for attempt in range(1, attempts + 1):
            try:
                resp = await client.request(method, path, json=json_body)
            except httpx.HTTPError as exc:
                last_transport_error = exc
                if attempt == attempts:
                    raise HueTransportError(str(exc)) from exc
                await self._sleep_backoff(attempt=attempt, base_delay_ms=base_delay_ms)
                continue

            body: Any
            content_type = resp.headers.get("content-type", "")
            if "application/json" in content_type:
                try:
                    body = resp.json()
                except ValueError:
                    body = resp.text
            else:
                body = resp.text

            if resp.status_code >= 400:
                err = HueUpstreamError(status_code=resp.status_code, body=body)
                last_upstream_error = err
                should_retry = retry and (resp.status_code == 429 or 500 <= resp.status_code <= 599)
                if should_retry and attempt < attempts:
                    await self._sleep_backoff(attempt=attempt, base_delay_ms=base_delay_ms)
                    continue
                raise err

            raise_for_bridge_errors(body, status_code=resp.status_code)
            return HueJSONishResult(status_code=resp.status_code, body=body)

        if last_upstream_error:
            raise last_upstream_error
        if last_transport_error:
            raise HueTransportError(str(last_transport_error)) from last_transport_error
        raise HueTransportError("request failed")

    async def _sleep_backoff(self, *, attempt: int, base_delay_ms: int) -> None:
        # Exponential backoff with jitter.
        delay = (base_delay_ms / 1000.0) * (2 ** (attempt - 1))
        delay = delay * (0.5 + random.random())
        await asyncio.sleep(min(delay, 5.0))

    async def get_json(self, path: str, *, retry: bool = False) -> Any:
        result = await self.request_jsonish(method="GET", path=path, retry=retry)
        return result.body

    async def post_json(self, path: str, *, json_body: Any) -> Any:
        result = await self.request_jsonish(method="POST", path=path, json_body=json_body)
        return result.body

    async def put_json(self, path: str, *, json_body: Any) -> Any:
        result = await self.request_jsonish(method="PUT", path=path, json_body=json_body)
        return result.body

    async def register(self, *, devicetype: str) -> str:
        """Pair with the bridge; needs the link button pressed within the last 30s."""
        response = await self.post_json("/api", json_body={"devicetype": devicetype})
        # Expected: [{"success": {"username": "..."}}]; error lists were raised above.
        if isinstance(response, list) and response:
            first = response[0]
            if isinstance(first, dict) and isinstance(first.get("success"), dict):
                username = first["success"].get("username")
                if isinstance(username, str) and username:
                    return username
        raise HueUpstreamError(status_code=200, body=response)

    async def validate(self) -> None:
        """Cheap authenticated read; raises HueAuthError if the key was rejected."""
        await self.get_json(self._user_path("/capabilities"))

    async def list_lights(self) -> list[LightDevice]:
        payload = await self.get_json(self._user_path("/lights"), retry=True)
        if not isinstance(payload, dict):
            return []
        lights: list[LightDevice] = []
        for light_id, item in payload.items():
            if not isinstance(item, dict):
                continue
            state = item.get("state")
            name = item.get("name")
            lights.append(
                LightDevice(
                    id=str(light_id),
                    state=state if isinstance(state, dict) else {},
                    name=name if isinstance(name, str) else None,
                )
            )
        return lights

    async def list_groups(self) -> list[RoomGroup]:
        payload = await self.get_json(self._user_path("/groups"), retry=True)
        if not isinstance(payload, dict):
            return []
        groups: list[RoomGroup] = []
        for group_id, item in payload.items():
            if not isinstance(item, dict) or not isinstance(item.get("name"), str):
                continue
            members = item.get("lights")
            groups.append(
                RoomGroup(
                    id=str(group_id),
                    name=item["name"],
                    member_device_ids=[str(m) for m in members] if isinstance(members, list) else [],
                )
            )
        return groups

    async def set_light_state(self, light_id: str, state: dict[str, Any]) -> Any:
        return await self.put_json(self.light_state_address(light_id), json_body=state)

    async def create_schedule(self, payload: dict[str, Any]) -> str | None:
        response = await self.post_json(self._user_path("/schedules"), json_body=payload)
        if isinstance(response, list) and response:
            first = response[0]
            if isinstance(first, dict) and isinstance(first.get("success"), dict):
                schedule_id = first["success"].get("id")
                return str(schedule_id) if schedule_id is not None else None
        return None
