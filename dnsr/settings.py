from __future__ import annotations

import json
import os
from dataclasses import dataclass
from typing import Mapping

from dotenv import load_dotenv
from pydantic import BaseModel, Field, TypeAdapter, field_validator
from pydantic import ValidationError as PydanticValidationError


class ConfigurationError(Exception):
    """Raised before the first cycle when the environment cannot be used."""


def is_valid_ipv4(ip: str) -> bool:
    """Four dot-separated decimal octets, each 0-255, no leading zeros."""
    if not isinstance(ip, str):
        return False
    parts = ip.split(".")
    if len(parts) != 4:
        return False
    for part in parts:
        if not part.isascii() or not part.isdigit():
            return False
        if len(part) > 1 and part[0] == "0":
            return False
        if int(part) > 255:
            return False
    return True


REQUIRED_VARS = ("CF_API_TOKEN", "CF_ZONE_ID", "CF_RECORD_NAME", "spoof_host", "health_check_url")


def _env_bool(env: Mapping[str, str], name: str, default: bool = False) -> bool:
    raw = env.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "y", "on"}


def _env_int(env: Mapping[str, str], name: str, default: int | None) -> int | None:
    raw = env.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be an integer, got {raw!r}") from None


class ServerSpec(BaseModel):
    name: str = Field(..., min_length=1, description="Display name of the backend")
    ip: str = Field(..., description="IPv4 literal the backend answers on")

    @field_validator("ip")
    @classmethod
    def _check_ip(cls, v: str) -> str:
        if not is_valid_ipv4(v):
            raise ValueError(f"Invalid IP address: {v} (must be valid IPv4 with octets 0-255)")
        return v


_SERVERS = TypeAdapter(list[ServerSpec])


@dataclass(frozen=True)
class Server:
    name: str
    ip: str


@dataclass(frozen=True)
class Settings:
    servers: tuple[Server, ...]
    spoof_host: str
    health_check_url: str

    cf_api_token: str
    cf_zone_id: str
    cf_record_name: str
    cf_record_ttl: int = 300
    cf_proxied: bool = True

    interval_s: int | None = None
    primary_field: str = "isMongoPrimary"
    db_path: str = "dnsr.db"

    # Timing knobs
    probe_timeout_s: float = 3.0
    provider_timeout_s: float = 10.0
    grace_period_s: float = 30.0
    min_request_interval_s: float = 1.0
    retry_delays_s: tuple[float, ...] = (1.0, 2.0, 4.0, 8.0)


def parse_servers(raw: str | None) -> tuple[Server, ...]:
    if not raw:
        raise ConfigurationError("Missing required environment variable: servers")
    try:
        specs = _SERVERS.validate_python(json.loads(raw))
    except json.JSONDecodeError as e:
        raise ConfigurationError(f"Invalid servers configuration: not JSON ({e})") from None
    except PydanticValidationError as e:
        raise ConfigurationError(f"Invalid servers configuration: {e}") from None
    if not specs:
        raise ConfigurationError("Invalid servers configuration: servers must be a non-empty array")

    names = [s.name for s in specs]
    ips = [s.ip for s in specs]
    if len(set(names)) != len(names):
        raise ConfigurationError("Invalid servers configuration: server names must be unique")
    if len(set(ips)) != len(ips):
        raise ConfigurationError("Invalid servers configuration: server IPs must be unique")
    return tuple(Server(name=s.name, ip=s.ip) for s in specs)


def load_settings(env: Mapping[str, str] | None = None) -> Settings:
    """Validate the environment into an immutable Settings value.

    With no explicit mapping, a `.env` file in the working directory is loaded
    into the process environment first.
    """
    if env is None:
        load_dotenv()
        env = os.environ

    for name in REQUIRED_VARS:
        if not env.get(name):
            raise ConfigurationError(f"Missing required environment variable: {name}")

    interval = _env_int(env, "interval_seconds", None)
    if interval is not None and interval <= 0:
        interval = None

    ttl = _env_int(env, "CF_RECORD_TTL", 300)
    # Cloudflare accepts 1 (automatic) or 60..86400.
    if ttl != 1 and not 60 <= ttl <= 86400:
        raise ConfigurationError(f"CF_RECORD_TTL out of range: {ttl}")

    url = env["health_check_url"]
    if not url.startswith(("http://", "https://")):
        raise ConfigurationError("health_check_url must be an http(s) URL")

    return Settings(
        servers=parse_servers(env.get("servers")),
        spoof_host=env["spoof_host"],
        health_check_url=url,
        cf_api_token=env["CF_API_TOKEN"],
        cf_zone_id=env["CF_ZONE_ID"],
        cf_record_name=env["CF_RECORD_NAME"],
        cf_record_ttl=ttl,
        cf_proxied=_env_bool(env, "CF_PROXIED", True),
        interval_s=interval,
        primary_field=env.get("primary_field") or "isMongoPrimary",
        db_path=env.get("DNSR_DB_PATH") or "dnsr.db",
    )
