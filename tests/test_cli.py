import json

import cli


def _clear_env(monkeypatch):
    for name in ("servers", "spoof_host", "health_check_url", "CF_API_TOKEN", "CF_ZONE_ID", "CF_RECORD_NAME", "interval_seconds"):
        monkeypatch.delenv(name, raising=False)
    # keep a stray .env in the working directory from leaking in
    monkeypatch.setattr("dnsr.settings.load_dotenv", lambda *a, **k: False)


def test_run_exits_with_config_status_when_env_missing(monkeypatch, capsys):
    _clear_env(monkeypatch)
    assert cli.main(["run", "--once"]) == cli.EXIT_CONFIG
    assert "Missing required environment variable" in capsys.readouterr().err


def test_run_once_prints_summary(monkeypatch, capsys, tmp_path):
    _clear_env(monkeypatch)
    monkeypatch.setenv("servers", json.dumps([{"name": "alpha", "ip": "10.0.0.1"}]))
    monkeypatch.setenv("spoof_host", "app.example.com")
    monkeypatch.setenv("health_check_url", "https://app.example.com/health")
    monkeypatch.setenv("CF_API_TOKEN", "token")
    monkeypatch.setenv("CF_ZONE_ID", "zone")
    monkeypatch.setenv("CF_RECORD_NAME", "app.example.com")
    monkeypatch.setenv("DNSR_DB_PATH", str(tmp_path / "cli.db"))

    class _Rec:
        class client:
            @staticmethod
            def close():
                pass

        def run_cycle(self):
            from dnsr.runtime import CycleSummary

            return CycleSummary(started_at="2026-01-01T00:00:00Z", healthy=["alpha"])

    real_build = cli._build

    def fake_build():
        real_build()  # settings validation + db setup
        return _Rec()

    monkeypatch.setattr(cli, "_build", fake_build)
    assert cli.main(["run", "--once"]) == 0
    out = json.loads(capsys.readouterr().out)
    assert out["healthy"] == ["alpha"]
    assert out["ok"] is True
    assert (tmp_path / "cli.db").exists()


def test_status_queries_api(monkeypatch, capsys):
    calls = []

    class _Resp:
        ok = True

        def json(self):
            return {"cycles": 3}

    def fake_get(url, timeout=10, params=None):
        calls.append((url, params))
        return _Resp()

    monkeypatch.setattr(cli.requests, "get", fake_get)
    assert cli.main(["--api", "http://dnsr:9000/", "status"]) == 0
    assert calls == [("http://dnsr:9000/status", None)]
    assert json.loads(capsys.readouterr().out) == {"cycles": 3}

    assert cli.main(["events", "--limit", "5"]) == 0
    assert calls[-1] == ("http://localhost:8000/events", {"limit": 5})
