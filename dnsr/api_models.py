from __future__ import annotations

from pydantic import BaseModel, Field


class ServerStatus(BaseModel):
    name: str
    ip: str
    healthy: bool | None = Field(None, description="None until the first probe")
    primary: bool = False
    assigned: bool = False
    unhealthy_for_s: float | None = Field(None, description="Seconds since the last unhealthy transition")
    message: str = ""
    latency_ms: float | None = None


class CycleStatus(BaseModel):
    started_at: str
    ok: bool
    healthy: list[str] = []
    primary: list[str] = []
    assigned_before: list[str] = []
    assigned_after: list[str] = []
    planned: list[str] = []
    applied: list[str] = []
    failed: list[str] = []
    skipped: list[str] = []
    unmanaged: list[str] = []
    error: str | None = None


class StatusResponse(BaseModel):
    record_name: str
    cycles: int
    running: bool
    servers: list[ServerStatus]
    last_cycle: CycleStatus | None = None


class EventOut(BaseModel):
    id: int
    ts: str
    level: str
    server: str | None = None
    operation: str | None = None
    attempt: int | None = None
    message: str
