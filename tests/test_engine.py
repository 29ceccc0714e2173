import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from hue_voice.db import Database
from hue_voice.engine import DEFAULT_HUE, hue_for_color, summarize
from hue_voice.messages import MESSAGE_TEXT, MessageKind
from hue_voice.models import LightState, Request, Schedule, parse_time_of_day
from hue_voice.skill import LightingSkill

ACK = {"type": "acknowledgeRequest"}


async def _connected_skill(config, bridge, clock) -> LightingSkill:
    db = Database(":memory:")
    await db.connect()
    skill = LightingSkill.build(config=config, db=db, hue_transport=bridge.transport, clock=clock)
    await skill.credentials.set("stored-key")
    await skill.connection.connect()
    assert skill.connection.is_connected
    return skill


async def _close(skill: LightingSkill) -> None:
    await skill.close()
    await skill.db.close()


def _say(text: str) -> dict:
    return {"type": "userMessage", "text": text}


def test_light_state_scales_brightness_to_bridge_range():
    assert LightState(on=True, brightness=100.0).to_bridge() == {"on": True, "bri": 254}
    assert LightState(on=True, brightness=30.0).to_bridge() == {"on": True, "bri": 76}
    assert LightState(on=True, brightness=0.0).to_bridge() == {"on": True, "bri": 1}
    assert LightState(on=False).to_bridge() == {"on": False}


def test_unknown_color_falls_back_to_default_hue():
    assert hue_for_color(" Blue ") == 46920
    assert hue_for_color("red") == 0
    assert hue_for_color("turquoise") == DEFAULT_HUE
    assert hue_for_color("chartreuse") == DEFAULT_HUE
    assert hue_for_color(None) == DEFAULT_HUE


def test_parse_time_of_day_accepts_spoken_forms():
    now = datetime(2026, 10, 18, 12, 0, tzinfo=timezone.utc)
    assert parse_time_of_day("6:30 PM", now=now) == datetime(2026, 10, 18, 18, 30, tzinfo=timezone.utc)
    assert parse_time_of_day("5pm", now=now) == datetime(2026, 10, 18, 17, 0, tzinfo=timezone.utc)
    assert parse_time_of_day("07:15", now=now) == datetime(2026, 10, 18, 7, 15, tzinfo=timezone.utc)
    with pytest.raises(ValueError):
        parse_time_of_day("teatime", now=now)


def test_schedule_payload_uses_bridge_wall_clock():
    local = datetime(2026, 10, 18, 18, 30, tzinfo=timezone(timedelta(hours=2)))
    schedule = Schedule.at(local, body={"on": False})
    assert schedule.target_time_utc == datetime(2026, 10, 18, 18, 30, tzinfo=timezone.utc)
    assert schedule.display_time == "6:30pm"
    assert schedule.to_bridge("/api/k/lights/1/state") == {
        "name": "Hue Voice Schedule",
        "description": "This schedule was created by the hue-voice skill.",
        "command": {"address": "/api/k/lights/1/state", "method": "PUT", "body": {"on": False}},
        "time": "2026-10-18T18:30:00",
        "localtime": "2026-10-18T18:30:00",
    }


def test_summary_prefers_room_over_schedule():
    now = datetime(2026, 10, 18, 12, 0, tzinfo=timezone.utc)
    scheduled = Request(action="dim", room="den", schedule=Schedule.at(now, body={}))
    assert summarize(scheduled) == "I've dimmed the lights in the den."
    assert summarize(Request(action="sleep", schedule=Schedule.at(now, body={}))) == (
        "Certainly, I'll turn them off at 12:00pm."
    )
    assert summarize(Request(action="on")) is None


@pytest.mark.asyncio
async def test_turn_on_writes_every_light(config, bridge, clock, drain):
    skill = await _connected_skill(config, bridge, clock)
    sub = await skill.channel.subscribe()
    try:
        await skill.dispatcher.take_action("on")

        assert bridge.state_writes == {
            "1": {"on": True, "bri": 254},
            "2": {"on": True, "bri": 254},
            "3": {"on": True, "bri": 254},
        }
        assert drain(sub) == [ACK]
        assert not skill.engine.busy
    finally:
        await _close(skill)


@pytest.mark.asyncio
async def test_room_filter_limits_writes_to_group_members(config, bridge, clock, drain):
    skill = await _connected_skill(config, bridge, clock)
    sub = await skill.channel.subscribe()
    try:
        await skill.dispatcher.take_action("off", {"room": " Living Room "})

        assert bridge.state_writes == {"1": {"on": False}, "2": {"on": False}}
        assert drain(sub) == [_say("I've turned off the lights in the Living Room."), ACK]
    finally:
        await _close(skill)


@pytest.mark.asyncio
async def test_unknown_room_touches_nothing(config, bridge, clock, drain):
    skill = await _connected_skill(config, bridge, clock)
    sub = await skill.channel.subscribe()
    try:
        await skill.dispatcher.take_action("on", {"room": "attic"})

        assert bridge.state_writes == {}
        assert drain(sub) == [_say(MESSAGE_TEXT[MessageKind.INVALID_ROOM])]
    finally:
        await _close(skill)


@pytest.mark.asyncio
async def test_empty_room_group_updates_every_light(config, bridge, clock, drain):
    bridge.groups["3"] = {"name": "Garage", "lights": []}
    skill = await _connected_skill(config, bridge, clock)
    sub = await skill.channel.subscribe()
    try:
        await skill.dispatcher.take_action("on", {"room": "garage"})

        assert set(bridge.state_writes) == {"1", "2", "3"}
        assert drain(sub) == [_say("I've turned on the lights in the garage."), ACK]
    finally:
        await _close(skill)


@pytest.mark.asyncio
async def test_scheduled_change_creates_one_schedule_per_light(config, bridge, clock, drain):
    skill = await _connected_skill(config, bridge, clock)
    sub = await skill.channel.subscribe()
    try:
        await skill.dispatcher.take_action("off", {"time": "6:30pm"})

        assert bridge.state_writes == {}
        assert len(bridge.schedules) == 3
        first = bridge.schedules[0]
        assert first["localtime"] == "2026-10-18T18:30:00"
        assert first["command"] == {"address": "/api/stored-key/lights/1/state", "method": "PUT", "body": {"on": False}}
        assert drain(sub) == [_say("Certainly, I'll turn them off at 6:30pm."), ACK]
    finally:
        await _close(skill)


@pytest.mark.asyncio
async def test_dim_and_color_bodies(config, bridge, clock, drain):
    skill = await _connected_skill(config, bridge, clock)
    sub = await skill.channel.subscribe()
    try:
        await skill.dispatcher.take_action("dim", {"room": "kitchen"})
        assert bridge.state_writes == {"3": {"on": True, "bri": 76}}
        assert drain(sub) == [_say("I've dimmed the lights in the kitchen."), ACK]

        await skill.dispatcher.take_action("color", {"room": "kitchen", "color": "blue"})
        assert bridge.state_writes == {"3": {"on": True, "hue": 46920, "sat": 254}}
        assert drain(sub) == [_say("I've changed the lights in the kitchen to blue."), ACK]
    finally:
        await _close(skill)


@pytest.mark.asyncio
async def test_failed_light_still_acknowledges_once(config, bridge, clock, drain):
    bridge.failing_lights = {"2"}
    skill = await _connected_skill(config, bridge, clock)
    sub = await skill.channel.subscribe()
    try:
        await skill.dispatcher.take_action("on")

        assert set(bridge.state_writes) == {"1", "2", "3"}
        assert drain(sub) == [ACK]
    finally:
        await _close(skill)


@pytest.mark.asyncio
async def test_unparseable_time_is_an_invalid_command(config, bridge, clock, drain):
    skill = await _connected_skill(config, bridge, clock)
    sub = await skill.channel.subscribe()
    try:
        await skill.dispatcher.take_action("on", {"time": "after dinner"})

        assert bridge.requests[-1][1].endswith("/capabilities")
        assert drain(sub) == [_say(MESSAGE_TEXT[MessageKind.INVALID_COMMAND])]
    finally:
        await _close(skill)


@pytest.mark.asyncio
async def test_requests_are_rejected_while_lights_are_updating(config, bridge, clock, drain):
    bridge.write_gate = asyncio.Event()
    skill = await _connected_skill(config, bridge, clock)
    sub = await skill.channel.subscribe()
    try:
        first = asyncio.create_task(skill.dispatcher.take_action("on"))
        await asyncio.wait_for(bridge.write_seen.wait(), timeout=3.0)
        assert skill.engine.busy

        await skill.dispatcher.take_action("off")
        assert drain(sub) == [_say(MESSAGE_TEXT[MessageKind.REQUEST_IN_PROGRESS])]

        bridge.write_gate.set()
        await asyncio.wait_for(first, timeout=3.0)
        assert drain(sub) == [ACK]
        assert all(body == {"on": True, "bri": 254} for body in bridge.state_writes.values())
    finally:
        await _close(skill)


@pytest.mark.asyncio
async def test_bridge_without_lights_still_acknowledges(config, bridge, clock, drain):
    bridge.lights = {}
    skill = await _connected_skill(config, bridge, clock)
    sub = await skill.channel.subscribe()
    try:
        await skill.dispatcher.take_action("on")

        assert bridge.state_writes == {}
        assert drain(sub) == [ACK]
    finally:
        await _close(skill)


@pytest.mark.asyncio
async def test_protocol_error_on_one_light_still_acknowledges(config, bridge, clock, drain):
    bridge.broken_lights = {"2"}
    skill = await _connected_skill(config, bridge, clock)
    sub = await skill.channel.subscribe()
    try:
        await skill.dispatcher.take_action("on", {"room": "living room"})

        assert set(bridge.state_writes) == {"1", "2"}
        assert drain(sub) == [_say("I've turned on the lights in the living room."), ACK]
        assert not skill.engine.busy
    finally:
        await _close(skill)


@pytest.mark.asyncio
async def test_schedule_times_match_spoken_time_outside_utc(config, bridge):
    eastern = timezone(timedelta(hours=-5))
    skill = await _connected_skill(config, bridge, lambda: datetime(2026, 10, 18, 12, 0, tzinfo=eastern))
    try:
        schedule = skill.engine.build_schedule(Request(action="off", time="6:30PM"))
        assert schedule.target_time_local == datetime(2026, 10, 18, 18, 30, tzinfo=eastern)
        assert (schedule.target_time_utc.hour, schedule.target_time_utc.minute) == (18, 30)
        assert schedule.target_time_utc.date() == schedule.target_time_local.date()

        await skill.dispatcher.take_action("off", {"time": "6:30PM"})
        assert {(s["time"], s["localtime"]) for s in bridge.schedules} == {
            ("2026-10-18T18:30:00", "2026-10-18T18:30:00")
        }
    finally:
        await _close(skill)
