from __future__ import annotations

import json
import time
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FuturesTimeout

import httpx

from .runtime import ProbeResult
from .settings import Server, Settings

# Some backends reject unknown clients.
PROBE_HEADERS = {"User-Agent": "curl/8.0.1", "Accept": "*/*"}

_TRUTHY = {"true", "1", "yes", "y", "on"}


def is_primary_flag(value: object) -> bool:
    """Interpret the role field of a health payload.

    Missing or malformed values mean "not primary".
    """
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        return value == 1
    if isinstance(value, str):
        return value.strip().lower() in _TRUTHY
    return False


def probe_url(health_check_url: str, ip: str) -> httpx.URL:
    """The health check URL with its host replaced by a literal address."""
    return httpx.URL(health_check_url).copy_with(host=ip)


class DeadlineExceeded(httpx.TimeoutException):
    """The whole exchange ran past the probe budget."""


def _fetch(
    url: httpx.URL,
    headers: dict[str, str],
    settings: Settings,
    transport: httpx.BaseTransport | None,
    deadline: float,
) -> tuple[int, bytes]:
    # httpx timeouts apply per phase; the deadline bounds the body as a whole.
    with httpx.Client(
        timeout=settings.probe_timeout_s,
        verify=False,
        follow_redirects=False,
        trust_env=False,
        transport=transport,
    ) as client:
        with client.stream("GET", url, headers=headers, extensions={"sni_hostname": settings.spoof_host}) as resp:
            chunks = []
            for chunk in resp.iter_bytes():
                if time.monotonic() > deadline:
                    raise DeadlineExceeded("probe deadline exceeded")
                chunks.append(chunk)
            return resp.status_code, b"".join(chunks)


def check_health(
    server: Server,
    settings: Settings,
    transport: httpx.BaseTransport | None = None,
) -> ProbeResult:
    """Probe one backend by address while presenting the virtual hostname.

    The hostname goes out as TLS SNI and as the Host header, so the check never
    depends on DNS for that name. Certificates are not verified since the
    target is reached by IP. One attempt, no retries. The whole request,
    body included, must finish within `probe_timeout_s`.
    """
    url = probe_url(settings.health_check_url, server.ip)
    headers = {**PROBE_HEADERS, "Host": settings.spoof_host}
    start = time.time()
    deadline = time.monotonic() + settings.probe_timeout_s
    pool = ThreadPoolExecutor(max_workers=1)
    try:
        fut = pool.submit(_fetch, url, headers, settings, transport, deadline)
        status, body = fut.result(timeout=settings.probe_timeout_s)
        latency_ms = round((time.time() - start) * 1000.0, 2)
        if status != 200:
            return ProbeResult(False, False, f"HTTP {status}", latency_ms)
        try:
            data = json.loads(body)
        except ValueError:
            data = None
        primary = isinstance(data, dict) and is_primary_flag(data.get(settings.primary_field))
        return ProbeResult(True, primary, "Healthy", latency_ms)
    except (FuturesTimeout, httpx.TimeoutException):
        latency_ms = round((time.time() - start) * 1000.0, 2)
        return ProbeResult(False, False, "Timed out", latency_ms)
    except httpx.HTTPError as e:
        latency_ms = round((time.time() - start) * 1000.0, 2)
        return ProbeResult(False, False, f"Error: {type(e).__name__}: {e}", latency_ms)
    finally:
        # A stuck worker stops at its next read timeout or chunk.
        pool.shutdown(wait=False)
