from __future__ import annotations

from dataclasses import asdict

from fastapi import FastAPI, Query

from . import db
from .api_models import CycleStatus, EventOut, ServerStatus, StatusResponse
from .reconciler import Reconciler


def create_app(reconciler: Reconciler) -> FastAPI:
    """Read-only status surface for a running reconciler."""
    app = FastAPI(title="DNS Reconciler")

    @app.get("/healthz")
    def healthz() -> dict:
        return {"status": "ok"}

    @app.get("/status", response_model=StatusResponse)
    def status() -> StatusResponse:
        now = reconciler.clock.now()
        servers = []
        for r in reconciler.state.snapshot():
            unhealthy_for = None
            if r.is_healthy is False and r.last_unhealthy_time is not None:
                unhealthy_for = round(now - r.last_unhealthy_time, 1)
            servers.append(
                ServerStatus(
                    name=r.server.name,
                    ip=r.server.ip,
                    healthy=r.is_healthy,
                    primary=r.is_primary,
                    assigned=r.is_assigned,
                    unhealthy_for_s=unhealthy_for,
                    message=r.last_message,
                    latency_ms=r.last_latency_ms,
                )
            )
        last = reconciler.last_summary
        return StatusResponse(
            record_name=reconciler.settings.cf_record_name,
            cycles=reconciler.cycles,
            running=not reconciler.stopped,
            servers=servers,
            last_cycle=CycleStatus(**last.as_dict()) if last else None,
        )

    @app.get("/events", response_model=list[EventOut])
    def events(limit: int = Query(50, ge=1, le=1000)) -> list[EventOut]:
        return [EventOut(**asdict(e)) for e in db.recent_events(limit)]

    return app
