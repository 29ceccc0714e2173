from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Callable

from hue_voice.config import AppConfig
from hue_voice.hue_client import HueClient, HueTransportError, HueUpstreamError, LightDevice
from hue_voice.messages import MessageKind, MessagePublisher
from hue_voice.models import LightState, Request, Schedule, parse_time_of_day

logger = logging.getLogger(__name__)

COLOR_HUES: dict[str, int] = {
    "red": 0,
    "orange": 5000,
    "yellow": 18000,
    "green": 25500,
    "cyan": 36207,
    "blue": 46920,
    "pink": 56100,
    "indigo": 48500,
    "violet": 46000,
}
DEFAULT_HUE = 32767  # neutral white-ish
FULL_SATURATION = 254

# Actions whose summary reads as a plain on/off.
_INFERRED_ACTIONS = {"night": "on", "sleep": "off"}


def normalize_name(value: str) -> str:
    return " ".join(value.strip().lower().split())


def hue_for_color(color: str | None) -> int:
    hue = COLOR_HUES.get(normalize_name(color)) if color else None
    if hue is None:
        logger.error("Unsupported color requested: %s", color)
        return DEFAULT_HUE
    return hue


def _local_now() -> datetime:
    return datetime.now().astimezone()


def summarize(request: Request) -> str | None:
    """Sentence announcing a finished request, or None for a plain immediate change."""
    action = _INFERRED_ACTIONS.get(request.action or "", request.action)
    if request.room:
        if action == "dim":
            return f"I've dimmed the lights in the {request.room}."
        if action == "color":
            return f"I've changed the lights in the {request.room} to {request.color}."
        return f"I've turned {action} the lights in the {request.room}."
    if request.schedule is not None:
        when = request.schedule.display_time
        if action == "dim":
            return f"Certainly, I'll dim them at {when}."
        if action == "color":
            return f"Certainly, I'll change them to {request.color} at {when}."
        return f"Certainly, I'll turn them {action} at {when}."
    return None


class LightStateEngine:
    def __init__(
        self,
        *,
        config: AppConfig,
        hue: HueClient,
        publisher: MessagePublisher,
        clock: Callable[[], datetime] = _local_now,
    ) -> None:
        self._config = config
        self._hue = hue
        self._publisher = publisher
        self._clock = clock
        self._busy = False

    @property
    def busy(self) -> bool:
        return self._busy

    def now(self) -> datetime:
        return self._clock()

    async def turn_on(self, request: Request) -> None:
        logger.debug("Turning on the lights")
        request.desired_state = LightState(on=True, brightness=100.0)
        await self.change_lights_state(request)

    async def turn_off(self, request: Request) -> None:
        logger.debug("Turning off the lights")
        request.desired_state = LightState(on=False)
        await self.change_lights_state(request)

    async def dim(self, request: Request) -> None:
        logger.debug("Dimming the lights")
        request.desired_state = LightState(on=True, brightness=self._config.dim_brightness)
        await self.change_lights_state(request)

    async def set_color(self, request: Request) -> None:
        logger.debug("Setting the lights to color %s", request.color)
        request.desired_state = LightState(on=True, hue=hue_for_color(request.color), sat=FULL_SATURATION)
        await self.change_lights_state(request)

    def build_schedule(self, request: Request) -> Schedule:
        if request.time is None:
            raise ValueError("request has no time")
        now = self.now()
        target = parse_time_of_day(request.time, now=now)
        if target < now:
            logger.warning("Scheduled time %s is already in the past", target.isoformat())
        return Schedule.at(target, body=request.desired_state.to_bridge())

    async def change_lights_state(self, request: Request) -> None:
        """Apply ``request.desired_state`` to every targeted light.

        Publishes INVALID_COMMAND for an unparseable time and INVALID_ROOM for an
        unknown room; neither touches a light nor acknowledges the request.
        Otherwise the request is acknowledged exactly once after the fan-out.
        """
        self._busy = True
        try:
            if request.time is not None:
                try:
                    request.schedule = self.build_schedule(request)
                except ValueError as exc:
                    logger.warning("Rejecting request: %s", exc)
                    await self._publisher.publish(MessageKind.INVALID_COMMAND)
                    return

            if request.room:
                matched = await self._filter_by_room(request)
                if not matched:
                    return

            await self._update_lights(request)
        finally:
            self._busy = False

    async def _filter_by_room(self, request: Request) -> bool:
        try:
            groups = await self._hue.list_groups()
        except (HueTransportError, HueUpstreamError) as exc:
            logger.error("Could not list light groups: %s", exc)
            await self._publisher.acknowledge()
            return False

        logger.debug("Located %d light group(s)", len(groups))
        wanted = normalize_name(request.room or "")
        group = next((g for g in groups if normalize_name(g.name) == wanted), None)
        if group is None:
            logger.warning('No matching groups were found for room "%s".', request.room)
            await self._publisher.publish(MessageKind.INVALID_ROOM)
            return False

        logger.debug("Room %r matched group %s with lights %s", request.room, group.id, group.member_device_ids)
        request.filtered_device_ids = list(group.member_device_ids)
        return True

    async def _update_lights(self, request: Request) -> None:
        try:
            lights = await self._hue.list_lights()
        except (HueTransportError, HueUpstreamError) as exc:
            logger.error("Could not list lights: %s", exc)
            await self._publisher.acknowledge()
            return

        outcomes = await asyncio.gather(*(self._process_light(request, light) for light in lights))
        logger.debug(
            "Processed all %d light(s) (%d written, %d skipped, %d failed)",
            len(outcomes),
            outcomes.count("written"),
            outcomes.count("skipped"),
            outcomes.count("failed"),
        )

        summary = summarize(request)
        if summary:
            await self._publisher.publish_text(summary)
        await self._publisher.acknowledge()

    async def _process_light(self, request: Request, light: LightDevice) -> str:
        # An empty member list means no filter.
        if request.filtered_device_ids and light.id not in request.filtered_device_ids:
            logger.info("Skipping light %s because it is not in the %s.", light.id, request.room)
            return "skipped"

        body = request.desired_state.to_bridge()
        try:
            if request.schedule is not None:
                address = self._hue.light_state_address(light.id)
                logger.info(
                    "Scheduling light #%s to %s at %s",
                    light.id,
                    body,
                    request.schedule.target_time_local.isoformat(),
                )
                await self._hue.create_schedule(request.schedule.to_bridge(address))
            else:
                logger.info("Changing state of light #%s to %s", light.id, body)
                await self._hue.set_light_state(light.id, body)
        except (HueTransportError, HueUpstreamError) as exc:
            logger.error("Failed to update light #%s: %s (%r)", light.id, exc, getattr(exc, "body", None))
            return "failed"
        return "written"
