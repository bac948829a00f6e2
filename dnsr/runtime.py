from __future__ import annotations

import time
from dataclasses import dataclass, field, replace
from threading import Lock

from .settings import Server


class SystemClock:
    """Monotonic seconds; the only clock used outside tests."""

    def now(self) -> float:
        return time.monotonic()

    def sleep(self, seconds: float) -> None:
        if seconds > 0:
            time.sleep(seconds)


@dataclass(frozen=True)
class ProbeResult:
    healthy: bool
    is_primary: bool = False
    message: str = ""
    latency_ms: float | None = None


@dataclass
class HealthRecord:
    server: Server
    is_healthy: bool | None = None  # None until the first probe
    is_primary: bool = False
    last_healthy_time: float | None = None
    last_unhealthy_time: float | None = None
    is_assigned: bool = False
    last_message: str = ""
    last_latency_ms: float | None = None


@dataclass(frozen=True)
class Transition:
    server: Server
    previous: bool | None
    current: bool


class RuntimeState:
    """Per-server health state, owned by one reconciler.

    The reconciler is the only writer. The lock exists so the status API can
    take consistent snapshots from another thread.
    """

    def __init__(self, servers: tuple[Server, ...] | list[Server]) -> None:
        self.lock = Lock()
        self.records: dict[str, HealthRecord] = {s.name: HealthRecord(server=s) for s in servers}

    def update_health(self, server: Server, result: ProbeResult, now: float) -> Transition | None:
        """Apply one probe result. Returns the transition, or None when health did not change."""
        with self.lock:
            rec = self.records[server.name]
            # Role can flip without a health change.
            rec.is_primary = bool(result.healthy and result.is_primary)
            rec.last_message = result.message
            rec.last_latency_ms = result.latency_ms

            prev = rec.is_healthy
            if prev is result.healthy:
                return None
            if result.healthy:
                rec.last_healthy_time = now
            else:
                rec.last_unhealthy_time = now
            rec.is_healthy = result.healthy
            return Transition(server=server, previous=prev, current=result.healthy)

    def set_assigned(self, assigned_ips: set[str]) -> None:
        with self.lock:
            for rec in self.records.values():
                rec.is_assigned = rec.server.ip in assigned_ips

    def snapshot(self) -> list[HealthRecord]:
        """Copies of all records, sorted by server name."""
        with self.lock:
            return [replace(r) for _, r in sorted(self.records.items())]


@dataclass
class CycleSummary:
    started_at: str
    healthy: list[str] = field(default_factory=list)
    primary: list[str] = field(default_factory=list)
    assigned_before: list[str] = field(default_factory=list)
    assigned_after: list[str] = field(default_factory=list)
    planned: list[str] = field(default_factory=list)
    applied: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    unmanaged: list[str] = field(default_factory=list)
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None and not self.failed

    def as_dict(self) -> dict:
        return {
            "started_at": self.started_at,
            "healthy": list(self.healthy),
            "primary": list(self.primary),
            "assigned_before": list(self.assigned_before),
            "assigned_after": list(self.assigned_after),
            "planned": list(self.planned),
            "applied": list(self.applied),
            "failed": list(self.failed),
            "skipped": list(self.skipped),
            "unmanaged": list(self.unmanaged),
            "error": self.error,
            "ok": self.ok,
        }
