from dnsr.runtime import ProbeResult, RuntimeState
from dnsr.settings import Server

A = Server("alpha", "10.0.0.1")
B = Server("bravo", "10.0.0.2")


def test_first_probe_is_a_transition():
    st = RuntimeState([A, B])
    tr = st.update_health(A, ProbeResult(False), now=10.0)
    assert tr is not None and tr.previous is None and tr.current is False
    rec = st.records["alpha"]
    assert rec.is_healthy is False
    assert rec.last_unhealthy_time == 10.0
    assert rec.last_healthy_time is None


def test_edges_set_timestamps_only_on_change():
    st = RuntimeState([A])
    st.update_health(A, ProbeResult(True), now=1.0)
    assert st.update_health(A, ProbeResult(True), now=2.0) is None
    assert st.records["alpha"].last_healthy_time == 1.0

    tr = st.update_health(A, ProbeResult(False), now=3.0)
    assert tr.previous is True and tr.current is False
    assert st.update_health(A, ProbeResult(False), now=4.0) is None
    rec = st.records["alpha"]
    assert rec.last_unhealthy_time == 3.0
    assert rec.last_healthy_time == 1.0

    st.update_health(A, ProbeResult(True), now=5.0)
    assert rec.last_healthy_time == 5.0
    assert rec.last_unhealthy_time == 3.0


def test_primary_overwritten_without_health_change():
    st = RuntimeState([A])
    st.update_health(A, ProbeResult(True, is_primary=False), now=1.0)
    assert st.update_health(A, ProbeResult(True, is_primary=True), now=2.0) is None
    assert st.records["alpha"].is_primary is True
    st.update_health(A, ProbeResult(True, is_primary=False), now=3.0)
    assert st.records["alpha"].is_primary is False


def test_set_assigned_and_snapshot_are_sorted_copies():
    st = RuntimeState([B, A])
    st.set_assigned({"10.0.0.2"})
    snap = st.snapshot()
    assert [r.server.name for r in snap] == ["alpha", "bravo"]
    assert [r.is_assigned for r in snap] == [False, True]

    snap[0].is_assigned = True
    assert st.records["alpha"].is_assigned is False
