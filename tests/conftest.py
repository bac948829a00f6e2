import json
import os
import sys
import uuid

import httpx
import pytest

# Ensure project root is importable (so `import cli` works without installing)
_project_root = os.path.dirname(os.path.dirname(__file__))
if _project_root not in sys.path:
    sys.path.insert(0, _project_root)

from dnsr import db  # noqa: E402
from dnsr.provider import CloudflareClient  # noqa: E402
from dnsr.settings import Server, Settings  # noqa: E402

RECORD_NAME = "app.example.com"


class FakeClock:
    """Time only moves when someone sleeps (or the test advances it)."""

    def __init__(self, start: float = 1000.0):
        self.t = start
        self.sleeps = []

    def now(self) -> float:
        return self.t

    def sleep(self, seconds: float) -> None:
        if seconds > 0:
            self.sleeps.append(seconds)
            self.t += seconds

    def advance(self, seconds: float) -> None:
        self.t += seconds


class FakeZone:
    """In-memory Cloudflare zone served through httpx.MockTransport."""

    def __init__(self, records=None):
        self.records = dict(records or {})  # record id -> ip
        self.calls = []
        self.fail = {}  # method -> list of status codes to return before succeeding

    def add(self, ip: str) -> str:
        rid = uuid.uuid4().hex
        self.records[rid] = ip
        return rid

    def id_for(self, ip: str) -> str:
        return next(rid for rid, v in self.records.items() if v == ip)

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.calls.append((request.method, request.url.path))
        pending = self.fail.get(request.method)
        if pending:
            status = pending.pop(0)
            return httpx.Response(status, json={"success": False, "errors": [{"code": 1000, "message": "boom"}]})

        if request.method == "GET":
            result = [{"id": rid, "content": ip, "name": RECORD_NAME, "type": "A"} for rid, ip in self.records.items()]
            return httpx.Response(200, json={"success": True, "result": result})
        if request.method == "POST":
            body = json.loads(request.content)
            rid = self.add(body["content"])
            return httpx.Response(200, json={"success": True, "result": {"id": rid, **body}})
        if request.method == "DELETE":
            rid = request.url.path.rsplit("/", 1)[-1]
            if self.records.pop(rid, None) is None:
                return httpx.Response(404, json={"success": False, "errors": [{"code": 81044, "message": "not found"}]})
            return httpx.Response(200, json={"success": True, "result": {"id": rid}})
        return httpx.Response(405)

    @property
    def ips(self) -> set:
        return set(self.records.values())


@pytest.fixture(autouse=True)
def isolated_db(tmp_path, monkeypatch):
    monkeypatch.setattr(db, "DB_PATH", str(tmp_path / "events.db"))
    db.init_db()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def make_settings():
    def _make(servers=None, **overrides):
        servers = servers or [Server("alpha", "10.0.0.1"), Server("bravo", "10.0.0.2"), Server("charlie", "10.0.0.3")]
        base = dict(
            servers=tuple(servers),
            spoof_host=RECORD_NAME,
            health_check_url="https://app.example.com/api/health",
            cf_api_token="token",
            cf_zone_id="0123456789abcdef0123456789abcdef",
            cf_record_name=RECORD_NAME,
        )
        base.update(overrides)
        return Settings(**base)

    return _make


@pytest.fixture
def zone():
    return FakeZone()


@pytest.fixture
def make_client(clock, make_settings, zone):
    clients = []

    def _make(settings=None, handler=None):
        c = CloudflareClient(
            settings or make_settings(),
            clock=clock,
            transport=httpx.MockTransport(handler or zone.handler),
        )
        clients.append(c)
        return c

    yield _make
    for c in clients:
        c.close()
