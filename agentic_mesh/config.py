"""Mesh configuration.

Reads environment variables (or a .env file) on instantiation: MeshSettings()

Environment variables (all prefixed MESH_):
  MESH_SERVICES          — service map, JSON object {"id": "url"} or CSV "id=url,id=url"
  MESH_REQUEST_TIMEOUT   — per-invocation timeout in seconds (default: 10)
  MESH_CONNECT_TIMEOUT   — TCP connect timeout in seconds (default: 5)
  MESH_MAX_RETRIES       — retries for transient transport failures (default: 2)
  MESH_BACKOFF_BASE      — first backoff delay in seconds (default: 0.5)
  MESH_BACKOFF_MAX       — backoff ceiling in seconds (default: 8)
  MESH_QUERY_TIMEOUT     — wall-clock bound for one query (default: 30)
  MESH_MAX_CONCURRENCY   — independent steps dispatched at once (default: 4)
  MESH_MIN_CONFIDENCE    — resolver match threshold (default: 1)
  MESH_CONTINUE_ON_ERROR — skip-and-continue instead of fail-fast (default: false)
  MESH_LOG_LEVEL         — log level for entry points (default: WARNING)
  MESH_RATE_LIMIT        — slowapi limit for the HTTP query endpoints (default: 60/minute)
"""

from __future__ import annotations

import json

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def parse_service_map(raw: str) -> dict[str, str]:
    """Parse MESH_SERVICES into an ordered {service_id: base_url} mapping.

    Accepts a JSON object or a comma-separated list of ``id=url`` pairs.
    Trailing slashes are stripped from URLs. Raises ValueError on bad input.
    """
    raw = (raw or "").strip()
    if not raw:
        return {}

    if raw.startswith("{"):
        try:
            parsed = json.loads(raw)
        except json.JSONDecodeError as e:
            raise ValueError(f"MESH_SERVICES must be a valid JSON object: {e}") from e
        if not isinstance(parsed, dict):
            raise ValueError("MESH_SERVICES JSON must be an object of id -> url")
        pairs = [(str(k), str(v)) for k, v in parsed.items()]
    else:
        pairs = []
        for item in raw.split(","):
            item = item.strip()
            if not item:
                continue
            if "=" not in item:
                raise ValueError(f"MESH_SERVICES entry must look like id=url: {item!r}")
            service_id, url = item.split("=", 1)
            pairs.append((service_id.strip(), url.strip()))

    services: dict[str, str] = {}
    for service_id, url in pairs:
        if not service_id or not url:
            raise ValueError(f"MESH_SERVICES entry has an empty id or url: {service_id!r}={url!r}")
        if service_id in services:
            raise ValueError(f"Duplicate MESH_SERVICES id: {service_id!r}")
        services[service_id] = url.rstrip("/")
    return services


class MeshSettings(BaseSettings):
    """Settings for catalog discovery, invocation and pipeline execution."""

    model_config = SettingsConfigDict(
        env_prefix="MESH_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    services: str = ""
    request_timeout: float = Field(default=10.0, gt=0)
    connect_timeout: float = Field(default=5.0, gt=0)
    max_retries: int = Field(default=2, ge=0, le=10)
    backoff_base: float = Field(default=0.5, ge=0)
    backoff_max: float = Field(default=8.0, ge=0)
    query_timeout: float = Field(default=30.0, gt=0)
    max_concurrency: int = Field(default=4, ge=1)
    min_confidence: int = Field(default=1, ge=1)
    continue_on_error: bool = False
    log_level: str = "WARNING"
    rate_limit: str = "60/minute"

    @field_validator("log_level", mode="before")
    @classmethod
    def uppercase_level(cls, v: object) -> str:
        return str(v).upper()

    @field_validator("services")
    @classmethod
    def check_services(cls, v: str) -> str:
        parse_service_map(v)
        return v

    @property
    def service_map(self) -> dict[str, str]:
        return parse_service_map(self.services)

    def backoff_delay(self, retry: int) -> float:
        """Delay before retry number ``retry`` (0-based): base * 2**retry, capped."""
        return min(self.backoff_base * (2 ** retry), self.backoff_max)
