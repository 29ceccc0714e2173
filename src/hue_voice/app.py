from __future__ import annotations

import asyncio
import json
import logging
import os
import time
from contextlib import asynccontextmanager
from typing import Awaitable, Callable

from fastapi import FastAPI, Request, Response, status
from fastapi.responses import JSONResponse, StreamingResponse

from hue_voice.config import AppConfig
from hue_voice.db import Database
from hue_voice.schemas import (
    AcceptedResponse,
    ActionRequest,
    ConnectionResponse,
    HealthResponse,
    ReadinessResponse,
)
from hue_voice.skill import LightingSkill

logger = logging.getLogger("hue_voice")


def _default_db_path() -> str:
    env = os.getenv("DB_PATH")
    if env:
        return env

    preferred_dir = "/data"
    try:
        if os.path.isdir(preferred_dir) and os.access(preferred_dir, os.W_OK):
            return os.path.join(preferred_dir, "hue-voice.db")
    except OSError:
        pass

    return os.path.join(os.getcwd(), ".data", "hue-voice.db")


@asynccontextmanager
async def lifespan(app: FastAPI):
    config = AppConfig.from_env()
    db = Database(db_path=_default_db_path())
    await db.connect()

    skill = LightingSkill.build(config=config, db=db)
    await skill.start()
    app.state.skill = skill
    app.state.tasks = set()
    try:
        yield
    finally:
        tasks: set[asyncio.Task] = app.state.tasks
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        await skill.close()
        await db.close()


app = FastAPI(
    title="Hue Voice Skill",
    version="0.1.0",
    description=(
        "Relays parsed voice intents to a Philips Hue bridge.\n\n"
        "- `POST /v1/actions` start an action (`on`, `off`, `color`, `dim`, `night`, `sleep`, `connect`)\n"
        "- `POST /v1/actions/confirm` / `POST /v1/actions/cancel` answer a pending prompt\n"
        "- `GET /v1/events/stream` SSE stream of `userMessage` and `acknowledgeRequest` events\n"
    ),
    lifespan=lifespan,
)


def _skill() -> LightingSkill:
    return app.state.skill


def _spawn(work: Awaitable[None], *, label: str) -> None:
    tasks: set[asyncio.Task] = app.state.tasks
    task = asyncio.create_task(work)
    tasks.add(task)

    def _done(t: asyncio.Task) -> None:
        tasks.discard(t)
        if not t.cancelled() and t.exception() is not None:
            logger.error("%s failed", label, exc_info=t.exception())

    task.add_done_callback(_done)


@app.middleware("http")
async def access_log(request: Request, call_next: Callable[[Request], Awaitable[Response]]):
    start = time.perf_counter()
    response = await call_next(request)
    duration_ms = (time.perf_counter() - start) * 1000
    logger.info(
        "%s %s -> %s (%.1fms)",
        request.method,
        request.url.path,
        response.status_code,
        duration_ms,
    )
    return response


@app.get("/healthz", response_model=HealthResponse, tags=["meta"])
async def healthz() -> HealthResponse:
    return {"ok": True}


@app.get("/readyz", response_model=ReadinessResponse, tags=["meta"])
async def readyz() -> ReadinessResponse:
    manager = _skill().connection
    if not manager.is_connected:
        return JSONResponse({"ready": False, "reason": manager.connection.state.value}, status_code=503)
    return {"ready": True}


@app.get("/v1/connection", response_model=ConnectionResponse, tags=["meta"])
async def connection_status() -> ConnectionResponse:
    return _skill().connection.connection.snapshot()


@app.post(
    "/v1/actions",
    response_model=AcceptedResponse,
    status_code=status.HTTP_202_ACCEPTED,
    tags=["actions"],
)
async def take_action(payload: ActionRequest) -> AcceptedResponse:
    params = payload.params.model_dump(exclude_none=True)
    _spawn(_skill().dispatcher.take_action(payload.action, params), label=f"action {payload.action!r}")
    return {"accepted": True, "action": payload.action}


@app.post(
    "/v1/actions/confirm",
    response_model=AcceptedResponse,
    status_code=status.HTTP_202_ACCEPTED,
    tags=["actions"],
)
async def confirm_action() -> AcceptedResponse:
    _spawn(_skill().dispatcher.confirm_action(), label="confirm")
    return {"accepted": True, "action": "confirm"}


@app.post(
    "/v1/actions/cancel",
    response_model=AcceptedResponse,
    status_code=status.HTTP_202_ACCEPTED,
    tags=["actions"],
)
async def cancel_action() -> AcceptedResponse:
    await _skill().dispatcher.cancel_action()
    return {"accepted": True, "action": "cancel"}


@app.get(
    "/v1/events/stream",
    tags=["events"],
    responses={200: {"content": {"text/event-stream": {"schema": {"type": "string"}}}}},
)
async def events_stream():
    subscription = await _skill().channel.subscribe()

    async def _gen():
        try:
            while True:
                try:
                    event = await asyncio.wait_for(subscription.queue.get(), timeout=15.0)
                    yield f"data: {json.dumps(event.to_dict(), separators=(',', ':'))}\n\n"
                except asyncio.TimeoutError:
                    yield ": keepalive\n\n"
        finally:
            await subscription.unsubscribe()

    return StreamingResponse(_gen(), media_type="text/event-stream")
