from __future__ import annotations

import json
import os
import sqlite3
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

DB_PATH = os.getenv("DNSR_DB_PATH", "dnsr.db")


def utc_now() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def configure(path: str) -> None:
    global DB_PATH
    DB_PATH = path


def _resolve_db_path() -> str:
    """Return a file path usable by sqlite.

    If the configured path is an existing directory (a bind mount created by
    Docker, for instance) the DB file is placed inside it.
    """
    p = os.path.abspath(DB_PATH)
    if os.path.isdir(p):
        p = os.path.join(p, "dnsr.db")

    parent = os.path.dirname(p)
    if parent and not os.path.exists(parent):
        os.makedirs(parent, exist_ok=True)

    return p


def connect() -> sqlite3.Connection:
    conn = sqlite3.connect(_resolve_db_path(), check_same_thread=False)
    conn.row_factory = sqlite3.Row
    return conn


def init_db() -> None:
    """Create tables if they do not exist."""
    with connect() as conn:
        conn.executescript(
            """
            CREATE TABLE IF NOT EXISTS events (
              id INTEGER PRIMARY KEY AUTOINCREMENT,
              ts TEXT NOT NULL,
              level TEXT NOT NULL,
              server TEXT,
              operation TEXT,
              attempt INTEGER,
              message TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS cycles (
              id INTEGER PRIMARY KEY AUTOINCREMENT,
              ts TEXT NOT NULL,
              ok INTEGER NOT NULL,
              summary TEXT NOT NULL -- json
            );

            CREATE INDEX IF NOT EXISTS idx_events_ts ON events(ts);
            """
        )


def log_event(
    level: str,
    message: str,
    server: str | None = None,
    operation: str | None = None,
    attempt: int | None = None,
) -> None:
    with connect() as conn:
        conn.execute(
            "INSERT INTO events (ts, level, server, operation, attempt, message) VALUES (?, ?, ?, ?, ?, ?)",
            (utc_now(), level.upper(), server, operation, attempt, message),
        )


def record_cycle(ok: bool, summary: dict[str, Any]) -> None:
    with connect() as conn:
        conn.execute(
            "INSERT INTO cycles (ts, ok, summary) VALUES (?, ?, ?)",
            (utc_now(), 1 if ok else 0, json.dumps(summary)),
        )


@dataclass(frozen=True)
class EventRow:
    id: int
    ts: str
    level: str
    server: str | None
    operation: str | None
    attempt: int | None
    message: str


def recent_events(limit: int = 50) -> list[EventRow]:
    limit = max(1, min(1000, int(limit)))
    with connect() as conn:
        rows = conn.execute(
            "SELECT id, ts, level, server, operation, attempt, message FROM events ORDER BY id DESC LIMIT ?",
            (limit,),
        ).fetchall()
    return [EventRow(**dict(r)) for r in rows]


def recent_cycles(limit: int = 10) -> list[dict[str, Any]]:
    limit = max(1, min(1000, int(limit)))
    with connect() as conn:
        rows = conn.execute("SELECT ts, ok, summary FROM cycles ORDER BY id DESC LIMIT ?", (limit,)).fetchall()
    return [{"ts": r["ts"], "ok": bool(r["ok"]), "summary": json.loads(r["summary"])} for r in rows]
