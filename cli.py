from __future__ import annotations

import argparse
import json
import sys

import requests

EXIT_CONFIG = 3


def _print(obj) -> None:
    print(json.dumps(obj, indent=2, ensure_ascii=False))


def _build():
    """Validate settings and wire the reconciler. Raises ConfigurationError."""
    from dnsr import db
    from dnsr.provider import CloudflareClient
    from dnsr.reconciler import Reconciler
    from dnsr.runtime import SystemClock
    from dnsr.settings import load_settings

    settings = load_settings()
    db.configure(settings.db_path)
    db.init_db()
    clock = SystemClock()
    client = CloudflareClient(settings, clock=clock)
    return Reconciler(settings, client, clock=clock)


def _cmd_run(once: bool) -> int:
    from dnsr.settings import ConfigurationError

    try:
        rec = _build()
    except ConfigurationError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return EXIT_CONFIG

    try:
        if once:
            _print(rec.run_cycle().as_dict())
        else:
            rec.run_forever(on_cycle=lambda s: _print(s.as_dict()))
    except KeyboardInterrupt:
        pass
    finally:
        rec.client.close()
    return 0


def _cmd_serve(host: str, port: int) -> int:
    import uvicorn

    from dnsr.api import create_app
    from dnsr.settings import ConfigurationError

    try:
        rec = _build()
    except ConfigurationError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return EXIT_CONFIG

    rec.start()
    try:
        uvicorn.run(create_app(rec), host=host, port=port)
    finally:
        rec.stop(timeout=5)
        rec.client.close()
    return 0


def main(argv: list[str] | None = None) -> int:
    p = argparse.ArgumentParser(description="DNS Reconciler CLI")
    p.add_argument("--api", default="http://localhost:8000", help="Status API base URL")
    sub = p.add_subparsers(dest="cmd", required=True)

    s_run = sub.add_parser("run", help="Run reconciliation (loops when interval_seconds is set)")
    s_run.add_argument("--once", action="store_true", help="Run a single cycle and exit")

    s_serve = sub.add_parser("serve", help="Run the reconciler with the status API")
    s_serve.add_argument("--host", default="127.0.0.1")
    s_serve.add_argument("--port", type=int, default=8000)

    sub.add_parser("status", help="Show server health and the last cycle")

    s_ev = sub.add_parser("events", help="Show events")
    s_ev.add_argument("--limit", type=int, default=20)

    args = p.parse_args(argv)

    base = args.api.rstrip("/")

    if args.cmd == "run":
        return _cmd_run(args.once)

    if args.cmd == "serve":
        return _cmd_serve(args.host, args.port)

    if args.cmd == "status":
        r = requests.get(f"{base}/status", timeout=10)
        _print(r.json())
        return 0 if r.ok else 1

    if args.cmd == "events":
        r = requests.get(f"{base}/events", params={"limit": args.limit}, timeout=10)
        _print(r.json())
        return 0 if r.ok else 1

    return 2


if __name__ == "__main__":
    raise SystemExit(main(sys.argv[1:]))
