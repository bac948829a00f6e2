from __future__ import annotations

import re
from dataclasses import dataclass
from threading import Lock, RLock
from typing import Any, Callable, TypeVar

import httpx

from . import db
from .runtime import SystemClock
from .settings import Settings, is_valid_ipv4

T = TypeVar("T")

CF_API_BASE = "https://api.cloudflare.com/client/v4"
RECORD_ID_RE = re.compile(r"^[a-f0-9]{32}$")
CF_RATE_LIMIT_CODE = 10013


class ValidationError(ValueError):
    """Malformed input caught before any request is sent."""


class ProviderError(Exception):
    def __init__(self, message: str, status: int | None = None, code: int | None = None, attempts: int = 1):
        super().__init__(message)
        self.status = status
        self.code = code
        self.attempts = attempts


class RetryableProviderError(ProviderError):
    """429, provider rate limit code, 5xx, resets and timeouts."""


class NonRetryableProviderError(ProviderError):
    pass


class RetriesExhausted(ProviderError):
    pass


@dataclass(frozen=True)
class RecordSnapshot:
    id: str
    content: str
    name: str


def validate_ip(ip: str) -> None:
    if not is_valid_ipv4(ip):
        raise ValidationError(f"Invalid IP address: {ip}")


def validate_record_id(record_id: str) -> None:
    if not isinstance(record_id, str) or not RECORD_ID_RE.match(record_id):
        raise ValidationError(f"Invalid record ID: {record_id}")


class MinIntervalLimiter:
    """Single-token bucket: at least `min_interval_s` between consecutive calls."""

    def __init__(self, min_interval_s: float, clock=None) -> None:
        self.min_interval_s = float(min_interval_s)
        self.clock = clock or SystemClock()
        self._last: float | None = None
        self._lock = Lock()

    def acquire(self) -> None:
        with self._lock:
            if self._last is not None:
                wait = self.min_interval_s - (self.clock.now() - self._last)
                if wait > 0:
                    self.clock.sleep(wait)
            self._last = self.clock.now()


def _error_code(resp: httpx.Response) -> int | None:
    try:
        body = resp.json()
    except ValueError:
        return None
    if not isinstance(body, dict):
        return None
    errors = body.get("errors") or []
    if errors and isinstance(errors[0], dict):
        code = errors[0].get("code")
        return code if isinstance(code, int) else None
    return None


def classify(exc: Exception) -> ProviderError:
    """Map a transport or HTTP failure onto the retry taxonomy."""
    if isinstance(exc, ProviderError):
        return exc
    if isinstance(exc, httpx.HTTPStatusError):
        status = exc.response.status_code
        code = _error_code(exc.response)
        msg = f"HTTP {status}" + (f" (code {code})" if code is not None else "")
        if status == 429 or code == CF_RATE_LIMIT_CODE or 500 <= status < 600:
            return RetryableProviderError(msg, status=status, code=code)
        return NonRetryableProviderError(msg, status=status, code=code)
    if isinstance(exc, (httpx.TimeoutException, httpx.NetworkError, httpx.RemoteProtocolError)):
        return RetryableProviderError(f"{type(exc).__name__}: {exc}")
    return NonRetryableProviderError(f"{type(exc).__name__}: {exc}")


class CloudflareClient:
    """Rate-limited, retrying access to the zone's A records for one name.

    Construct once and share: the limiter and the lock serialize every
    outbound call across operations and cycles.
    """

    def __init__(
        self,
        settings: Settings,
        clock=None,
        transport: httpx.BaseTransport | None = None,
        base_url: str = CF_API_BASE,
    ) -> None:
        self.settings = settings
        self.clock = clock or SystemClock()
        self.limiter = MinIntervalLimiter(settings.min_request_interval_s, self.clock)
        self.retry_delays = tuple(settings.retry_delays_s)
        self._lock = RLock()
        self._http = httpx.Client(
            base_url=base_url,
            headers={"Authorization": f"Bearer {settings.cf_api_token}"},
            timeout=settings.provider_timeout_s,
            transport=transport,
        )

    def close(self) -> None:
        self._http.close()

    def _records_path(self) -> str:
        return f"/zones/{self.settings.cf_zone_id}/dns_records"

    def _call(self, operation: str, fn: Callable[[], T], server: str | None = None) -> T:
        max_retries = len(self.retry_delays)
        with self._lock:
            for attempt in range(max_retries + 1):
                self.limiter.acquire()
                try:
                    result = fn()
                except Exception as e:
                    err = classify(e)
                    err.attempts = attempt + 1
                    retryable = isinstance(err, RetryableProviderError)
                    if not retryable:
                        db.log_event("ERROR", f"{operation} failed: {err}", server=server, operation=operation, attempt=attempt + 1)
                        raise err from e
                    if attempt == max_retries:
                        db.log_event(
                            "ERROR",
                            f"{operation} failed after {attempt + 1} attempts: {err}",
                            server=server,
                            operation=operation,
                            attempt=attempt + 1,
                        )
                        raise RetriesExhausted(
                            f"{operation} failed after {attempt + 1} attempts: {err}",
                            status=err.status,
                            code=err.code,
                            attempts=attempt + 1,
                        ) from e
                    delay = self.retry_delays[attempt]
                    db.log_event(
                        "WARN",
                        f"{operation} failed ({err}), retrying in {delay:g}s",
                        server=server,
                        operation=operation,
                        attempt=attempt + 1,
                    )
                    self.clock.sleep(delay)
                    continue
                if attempt > 0:
                    db.log_event(
                        "INFO",
                        f"{operation} succeeded after {attempt} retries",
                        server=server,
                        operation=operation,
                        attempt=attempt + 1,
                    )
                return result
        raise RuntimeError(f"{operation}: retry loop ended without a result")

    def list_records(self) -> list[RecordSnapshot]:
        def _do() -> list[RecordSnapshot]:
            resp = self._http.get(
                self._records_path(),
                params={"name": self.settings.cf_record_name, "type": "A"},
            )
            resp.raise_for_status()
            body: dict[str, Any] = resp.json()
            return [
                RecordSnapshot(id=r["id"], content=r["content"], name=r.get("name", self.settings.cf_record_name))
                for r in body.get("result") or []
            ]

        return self._call("Get DNS records", _do)

    def create_record(self, ip: str, server_name: str | None = None) -> RecordSnapshot | None:
        validate_ip(ip)

        def _do() -> RecordSnapshot | None:
            resp = self._http.post(
                self._records_path(),
                json={
                    "type": "A",
                    "name": self.settings.cf_record_name,
                    "content": ip,
                    "ttl": self.settings.cf_record_ttl,
                    "proxied": self.settings.cf_proxied,
                },
            )
            resp.raise_for_status()
            try:
                r = resp.json().get("result") or {}
            except ValueError:
                return None
            if "id" not in r:
                return None
            return RecordSnapshot(id=r["id"], content=r.get("content", ip), name=r.get("name", self.settings.cf_record_name))

        label = server_name or "server"
        rec = self._call(f"Create DNS record for {label}", _do, server=server_name)
        db.log_event("INFO", f"Added DNS record {ip}", server=server_name, operation="create")
        return rec

    def delete_record(self, record_id: str, server_name: str | None = None) -> None:
        validate_record_id(record_id)

        def _do() -> None:
            resp = self._http.delete(f"{self._records_path()}/{record_id}")
            resp.raise_for_status()

        label = server_name or "server"
        self._call(f"Delete DNS record for {label}", _do, server=server_name)
        db.log_event("INFO", f"Removed DNS record {record_id}", server=server_name, operation="delete")
