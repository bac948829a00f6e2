from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from threading import Event, Thread
from typing import Callable

from . import db
from .health import check_health
from .planner import ASSIGN, apply_actions, build_plan
from .provider import CloudflareClient, ProviderError
from .runtime import CycleSummary, ProbeResult, RuntimeState, SystemClock
from .settings import Server, Settings

Probe = Callable[[Server, Settings], ProbeResult]


class Reconciler:
    """Keeps the published A records in line with backend health.

    One cycle: probe every server concurrently, update health state, fetch the
    record set, plan, apply. Cycles never overlap.
    """

    def __init__(
        self,
        settings: Settings,
        client: CloudflareClient,
        state: RuntimeState | None = None,
        probe: Probe = check_health,
        clock=None,
    ):
        self.settings = settings
        self.client = client
        self.state = state or RuntimeState(settings.servers)
        self.probe = probe
        self.clock = clock or SystemClock()
        self.last_summary: CycleSummary | None = None
        self.cycles = 0
        self._stop = Event()
        self._thr: Thread | None = None

    def start(self) -> None:
        if self._thr and self._thr.is_alive():
            return
        self._stop.clear()
        self._thr = Thread(target=self.run_forever, daemon=True)
        self._thr.start()

    def stop(self, timeout: float | None = None) -> None:
        self._stop.set()
        if self._thr:
            self._thr.join(timeout)

    @property
    def stopped(self) -> bool:
        return self._stop.is_set()

    def run_forever(self, max_cycles: int | None = None, on_cycle: Callable[[CycleSummary], None] | None = None) -> None:
        """Run cycles until stopped; a single cycle when no interval is configured."""
        db.log_event("INFO", "Reconciler started")
        n = 0
        while not self._stop.is_set():
            summary = self.run_cycle()
            if on_cycle:
                on_cycle(summary)
            n += 1
            if self.settings.interval_s is None or (max_cycles is not None and n >= max_cycles):
                break
            self._stop.wait(self.settings.interval_s)
        db.log_event("INFO", "Reconciler stopped")

    def probe_all(self) -> dict[str, ProbeResult]:
        servers = list(self.settings.servers)
        with ThreadPoolExecutor(max_workers=max(1, len(servers))) as pool:
            results = list(pool.map(self._safe_probe, servers))
        return {s.name: r for s, r in zip(servers, results)}

    def _safe_probe(self, server: Server) -> ProbeResult:
        try:
            return self.probe(server, self.settings)
        except Exception as e:
            return ProbeResult(False, False, f"Probe error: {type(e).__name__}: {e}")

    def run_cycle(self) -> CycleSummary:
        summary = CycleSummary(started_at=db.utc_now())
        try:
            self._tick(summary)
        except ProviderError as e:
            summary.error = f"Could not fetch DNS records: {e}"
            db.log_event("ERROR", f"Cycle aborted: {summary.error}", operation="list", attempt=e.attempts)
        except Exception as e:
            summary.error = f"{type(e).__name__}: {e}"
            db.log_event("ERROR", f"Cycle failed: {summary.error}")

        self.cycles += 1
        self.last_summary = summary
        db.record_cycle(summary.ok, summary.as_dict())
        return summary

    def _tick(self, summary: CycleSummary) -> None:
        results = self.probe_all()
        now = self.clock.now()
        for server in sorted(self.settings.servers, key=lambda s: s.name):
            res = results[server.name]
            tr = self.state.update_health(server, res, now)
            if tr is None:
                continue
            if tr.previous is None:
                db.log_event("INFO", f"Initial health: {'up' if res.healthy else 'down'} ({res.message})", server=server.name)
            elif res.healthy:
                db.log_event("INFO", "Server recovered", server=server.name)
            else:
                db.log_event("WARN", f"Server became unhealthy: {res.message}", server=server.name)

        records = self.state.snapshot()
        summary.healthy = [r.server.name for r in records if r.is_healthy]
        summary.primary = [r.server.name for r in records if r.is_healthy and r.is_primary]

        # Ground truth; failure here aborts the cycle.
        snapshot = self.client.list_records()
        managed_ips = {s.ip for s in self.settings.servers}
        published_ips = {r.content for r in snapshot}
        summary.unmanaged = sorted(published_ips - managed_ips)
        self.state.set_assigned(published_ips)
        records = self.state.snapshot()
        summary.assigned_before = [r.server.name for r in records if r.is_assigned]

        plan = build_plan(records, snapshot, now, self.settings.grace_period_s)
        summary.planned = [a.label for a in plan.actions]
        if plan.all_unhealthy:
            db.log_event("ERROR", "All servers are down; keeping existing DNS records")
        for name in plan.held_by_floor:
            db.log_event("WARN", "Kept DNS record: last published address", server=name)

        res = apply_actions(plan.actions, self.client, published_count=len(summary.assigned_before))
        summary.applied = [a.label for a in res.applied]
        summary.failed = [a.label for a in res.failed]
        summary.skipped = [a.label for a in res.skipped]

        after = set(summary.assigned_before)
        for a in res.applied:
            if a.kind == ASSIGN:
                after.add(a.server.name)
            else:
                after.discard(a.server.name)
        summary.assigned_after = sorted(after)
        self.state.set_assigned({s.ip for s in self.settings.servers if s.name in after})
