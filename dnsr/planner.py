from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable

from . import db
from .provider import CloudflareClient, ProviderError, RecordSnapshot, ValidationError
from .runtime import HealthRecord
from .settings import Server

ASSIGN = "assign"
UNASSIGN = "unassign"

# Never publish fewer addresses than this while anything is healthy.
MIN_PUBLISHED = 1


@dataclass(frozen=True)
class Action:
    kind: str  # assign|unassign
    server: Server
    record_id: str | None = None
    reason: str = ""

    @property
    def label(self) -> str:
        return f"{self.kind}({self.server.name})"


@dataclass
class Plan:
    actions: list[Action] = field(default_factory=list)
    held_by_floor: list[str] = field(default_factory=list)  # removable, kept to preserve the floor
    in_grace: list[str] = field(default_factory=list)  # unhealthy, grace period still running
    all_unhealthy: bool = False


def records_by_ip(snapshot: Iterable[RecordSnapshot]) -> dict[str, RecordSnapshot]:
    """First record per address; later duplicates are ignored."""
    out: dict[str, RecordSnapshot] = {}
    for r in snapshot:
        out.setdefault(r.content, r)
    return out


def build_plan(
    records: Iterable[HealthRecord],
    snapshot: Iterable[RecordSnapshot],
    now: float,
    grace_period_s: float = 30.0,
) -> Plan:
    """Decide which servers to publish and which to withdraw.

    Pure: inputs are not modified. Assignment is taken from `snapshot` only,
    never from a cached flag. Servers are visited by name so the same inputs
    give the same actions. Assigns come first, then unassigns.
    """
    ordered = sorted(records, key=lambda r: r.server.name)
    published = records_by_ip(snapshot)
    assigned = {r.server.name: r.server.ip in published for r in ordered}

    healthy = [r for r in ordered if r.is_healthy]
    non_primary_healthy = [r for r in healthy if not r.is_primary]

    plan = Plan(all_unhealthy=not healthy)

    assigns: list[Action] = []
    for rec in ordered:
        if not rec.is_healthy or assigned[rec.server.name]:
            continue
        if rec.is_primary and non_primary_healthy:
            continue
        reason = "primary fallback, no other healthy server" if rec.is_primary else "healthy"
        assigns.append(Action(ASSIGN, rec.server, reason=reason))

    # Reachability over minimality: with nothing healthy, leave the record set alone.
    if plan.all_unhealthy:
        plan.actions = assigns
        return plan

    projected = sum(assigned.values()) + len(assigns)
    unassigns: list[Action] = []
    for rec in ordered:
        name = rec.server.name
        if not assigned[name]:
            continue
        if rec.is_healthy:
            if not (rec.is_primary and non_primary_healthy):
                continue
            reason = "primary demoted, non-primary server available"
        elif rec.is_healthy is None:
            continue
        else:
            since = rec.last_unhealthy_time
            if since is None or now - since < grace_period_s:
                plan.in_grace.append(name)
                continue
            reason = f"unhealthy for {now - since:.0f}s"

        if projected - 1 < MIN_PUBLISHED:
            plan.held_by_floor.append(name)
            continue
        projected -= 1
        unassigns.append(Action(UNASSIGN, rec.server, record_id=published[rec.server.ip].id, reason=reason))

    plan.actions = assigns + unassigns
    return plan


def plan_actions(
    records: Iterable[HealthRecord],
    snapshot: Iterable[RecordSnapshot],
    now: float,
    grace_period_s: float = 30.0,
) -> list[Action]:
    return build_plan(records, snapshot, now, grace_period_s).actions


@dataclass
class ApplyResult:
    applied: list[Action] = field(default_factory=list)
    failed: list[Action] = field(default_factory=list)
    skipped: list[Action] = field(default_factory=list)


def apply_actions(actions: list[Action], client: CloudflareClient, published_count: int) -> ApplyResult:
    """Apply each action on its own; one failure does not stop the batch.

    `published_count` is the number of managed addresses published before the
    batch. An unassign that would leave none (because an earlier assign
    failed) is skipped and re-derived next cycle.
    """
    res = ApplyResult()
    live = published_count
    for action in actions:
        name = action.server.name
        if action.kind == UNASSIGN and live - 1 < MIN_PUBLISHED:
            db.log_event("WARN", f"Skipped {action.label}: would leave no published address", server=name, operation=UNASSIGN)
            res.skipped.append(action)
            continue
        try:
            if action.kind == ASSIGN:
                client.create_record(action.server.ip, server_name=name)
                live += 1
            else:
                client.delete_record(action.record_id or "", server_name=name)
                live -= 1
        except (ValidationError, ProviderError) as e:
            attempts = getattr(e, "attempts", 0)
            db.log_event("ERROR", f"{action.label} failed: {e}", server=name, operation=action.kind, attempt=attempts or None)
            res.failed.append(action)
            continue
        res.applied.append(action)
    return res
