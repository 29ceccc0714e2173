from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Mapping

from pydantic import BaseModel, Field

# Format the v1 schedules API expects for "localtime" (no offset, bridge-local).
BRIDGE_TIME_FORMAT = "%Y-%m-%dT%H:%M:%S"

_TIME_OF_DAY_FORMATS = ("%I:%M%p", "%I%p", "%H:%M", "%H.%M")


class LightState(BaseModel):
    on: bool | None = Field(default=None, description="Turn on/off.")
    brightness: float | None = Field(default=None, ge=0.0, le=100.0, description="Brightness percent 0-100.")
    hue: int | None = Field(default=None, ge=0, le=65535, description="Hue wheel position.")
    sat: int | None = Field(default=None, ge=0, le=254, description="Saturation.")

    def to_bridge(self) -> dict[str, Any]:
        body: dict[str, Any] = {}
        if self.on is not None:
            body["on"] = self.on
        if self.brightness is not None:
            body["bri"] = max(1, min(254, int(round(self.brightness * 254 / 100.0))))
        if self.hue is not None:
            body["hue"] = self.hue
        if self.sat is not None:
            body["sat"] = self.sat
        return body


def parse_time_of_day(value: str | datetime, *, now: datetime) -> datetime:
    """Resolve "6:30PM", "5 pm" or "17:00" to that time on ``now``'s date.

    A datetime is taken as the target itself. Raises ValueError when the
    string matches none of the accepted formats.
    """
    if isinstance(value, datetime):
        target = value if value.tzinfo else value.replace(tzinfo=now.tzinfo)
        return target.replace(microsecond=0)

    text = "".join(value.upper().split())
    for fmt in _TIME_OF_DAY_FORMATS:
        try:
            parsed = datetime.strptime(text, fmt)
        except ValueError:
            continue
        return now.replace(hour=parsed.hour, minute=parsed.minute, second=0, microsecond=0)
    raise ValueError(f"Unrecognized time of day: {value!r}")


def format_display_time(value: datetime) -> str:
    hour = value.hour % 12 or 12
    suffix = "am" if value.hour < 12 else "pm"
    return f"{hour}:{value.minute:02d}{suffix}"


@dataclass(frozen=True)
class Schedule:
    name: str
    description: str
    target_time_local: datetime
    target_time_utc: datetime
    method: str
    body: dict[str, Any]

    @staticmethod
    def at(target_local: datetime, *, body: dict[str, Any]) -> "Schedule":
        # The bridge reads both "time" and "localtime" as its own wall clock,
        # so the UTC slot carries the same clock reading, not a conversion.
        return Schedule(
            name="Hue Voice Schedule",
            description="This schedule was created by the hue-voice skill.",
            target_time_local=target_local,
            target_time_utc=target_local.replace(tzinfo=timezone.utc),
            method="PUT",
            body=body,
        )

    def to_bridge(self, address: str) -> dict[str, Any]:
        """Bridge payload for one light; ``address`` is that light's state path."""
        return {
            "name": self.name,
            "description": self.description,
            "command": {"address": address, "method": self.method, "body": self.body},
            "time": self.target_time_utc.strftime(BRIDGE_TIME_FORMAT),
            "localtime": self.target_time_local.strftime(BRIDGE_TIME_FORMAT),
        }

    @property
    def display_time(self) -> str:
        return format_display_time(self.target_time_local)


@dataclass
class Request:
    action: str | None = None
    room: str | None = None
    color: str | None = None
    time: str | datetime | None = None
    pending_action: str | None = None
    schedule: Schedule | None = None
    filtered_device_ids: list[str] | None = None
    desired_state: LightState = field(default_factory=LightState)

    @classmethod
    def from_params(cls, action: str, params: Mapping[str, Any] | None) -> "Request":
        params = params or {}

        def _text(key: str) -> str | None:
            value = params.get(key)
            if isinstance(value, str):
                value = value.strip()
            return value or None

        return cls(action=action, room=_text("room"), color=_text("color"), time=_text("time"))
