from __future__ import annotations

from pydantic import BaseModel, Field


class HealthResponse(BaseModel):
    ok: bool = Field(..., description="Process is alive.")


class ReadinessResponse(BaseModel):
    ready: bool = Field(..., description="True when the skill holds a validated bridge connection.")
    reason: str | None = Field(
        default=None,
        description="When not ready, the current connection state (disconnected/connecting).",
    )


class ActionParams(BaseModel):
    time: str | None = Field(default=None, description="Time of day to schedule the change.", examples=["6:30PM"])
    room: str | None = Field(default=None, description="Room (light group) name.", examples=["Kitchen"])
    color: str | None = Field(default=None, description="Named color for the color action.", examples=["blue"])


class ActionRequest(BaseModel):
    action: str = Field(
        ...,
        description="One of on, off, color, dim, night, sleep, connect.",
        examples=["on"],
    )
    params: ActionParams = Field(default_factory=ActionParams)


class AcceptedResponse(BaseModel):
    accepted: bool = True
    action: str


class ConnectionResponse(BaseModel):
    state: str
    bridgeAddress: str | None = None
    accessToken: str | None = Field(default=None, description="Masked application key.")
    retryCount: int
    retryInFlight: bool
