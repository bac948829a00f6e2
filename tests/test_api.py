from fastapi.testclient import TestClient

from dnsr.api import create_app
from dnsr.reconciler import Reconciler
from dnsr.runtime import ProbeResult


def _probe(server, settings):
    if server.name == "charlie":
        return ProbeResult(False, False, "HTTP 503", 12.5)
    return ProbeResult(True, server.name == "alpha", "Healthy", 3.0)


def _reconciler(make_settings, make_client, clock):
    settings = make_settings()
    return Reconciler(settings, make_client(settings), probe=_probe, clock=clock)


def test_healthz(make_settings, make_client, clock):
    client = TestClient(create_app(_reconciler(make_settings, make_client, clock)))
    r = client.get("/healthz")
    assert r.status_code == 200
    assert r.json() == {"status": "ok"}


def test_status_before_first_cycle(make_settings, make_client, clock):
    client = TestClient(create_app(_reconciler(make_settings, make_client, clock)))
    body = client.get("/status").json()
    assert body["cycles"] == 0
    assert body["last_cycle"] is None
    assert [s["healthy"] for s in body["servers"]] == [None, None, None]


def test_status_after_cycle(make_settings, make_client, clock, zone):
    rec = _reconciler(make_settings, make_client, clock)
    rec.run_cycle()
    clock.advance(10)

    body = TestClient(create_app(rec)).get("/status").json()
    assert body["record_name"] == "app.example.com"
    assert body["cycles"] == 1
    by_name = {s["name"]: s for s in body["servers"]}
    # alpha is primary and bravo is a healthy alternative
    assert by_name["alpha"]["primary"] is True
    assert by_name["alpha"]["assigned"] is False
    assert by_name["bravo"]["assigned"] is True
    assert by_name["charlie"]["healthy"] is False
    assert by_name["charlie"]["unhealthy_for_s"] >= 10
    assert body["last_cycle"]["applied"] == ["assign(bravo)"]
    assert body["last_cycle"]["ok"] is True
    assert zone.ips == {"10.0.0.2"}


def test_events_endpoint(make_settings, make_client, clock):
    rec = _reconciler(make_settings, make_client, clock)
    rec.run_cycle()
    client = TestClient(create_app(rec))

    r = client.get("/events", params={"limit": 2})
    assert r.status_code == 200
    events = r.json()
    assert len(events) == 2
    assert events[0]["id"] > events[1]["id"]

    assert client.get("/events", params={"limit": 0}).status_code == 422
