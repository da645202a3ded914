"""Configuration for tk-proxy server and client modes."""

from __future__ import annotations

import secrets
import socket
from dataclasses import dataclass, field
from pathlib import Path
from urllib.parse import urlsplit

from tkproxy.errors import InvalidConfigError
from tkproxy.services.schedule import parse_duration

AUTH_TOKEN_ENV = "TK_PROXY_AUTH_TOKEN"
MAX_REQUEST_BYTES = 10 * 1024 * 1024


def generate_auth_token() -> str:
    return secrets.token_hex(24)


@dataclass(frozen=True)
class ServerConfig:
    """Ingestion server configuration."""

    host: str = "0.0.0.0"
    port: int = 8787
    data_dir: Path = field(default_factory=lambda: Path(".tk-proxy"))
    submit_hour_utc: int = 2
    auth_token: str | None = None
    no_auth: bool = False
    check_interval_ms: int = field(default_factory=lambda: parse_duration("10m"))
    dry_run_submit: bool = False
    max_request_bytes: int = MAX_REQUEST_BYTES
    drain_timeout_s: float = 30.0

    def __post_init__(self) -> None:
        if not 0 <= self.submit_hour_utc <= 23:
            msg = f"submit_hour_utc must be between 0 and 23: {self.submit_hour_utc}"
            raise InvalidConfigError(msg)
        if not 1 <= self.port <= 65535:
            msg = f"port must be between 1 and 65535: {self.port}"
            raise InvalidConfigError(msg)
        if self.check_interval_ms <= 0:
            msg = f"check_interval_ms must be greater than zero: {self.check_interval_ms}"
            raise InvalidConfigError(msg)
        if self.max_request_bytes <= 0:
            msg = f"max_request_bytes must be greater than zero: {self.max_request_bytes}"
            raise InvalidConfigError(msg)
        if not self.no_auth and not self.auth_token:
            msg = "auth_token is required unless no_auth is set"
            raise InvalidConfigError(msg)

    @property
    def auth_enabled(self) -> bool:
        return not self.no_auth

    @property
    def check_interval_s(self) -> float:
        return self.check_interval_ms / 1000


@dataclass(frozen=True)
class ClientConfig:
    """Upload client configuration."""

    server_url: str
    client_id: str = field(default_factory=socket.gethostname)
    interval_ms: int = field(default_factory=lambda: parse_duration("4h"))
    jitter_ms: int = field(default_factory=lambda: parse_duration("1h"))
    auth_token: str | None = None
    no_auth: bool = False
    once: bool = False
    request_timeout_ms: int = field(default_factory=lambda: parse_duration("30s"))

    def __post_init__(self) -> None:
        parts = urlsplit(self.server_url)
        if parts.scheme not in ("http", "https") or not parts.netloc:
            msg = f"Server URL must be http or https: {self.server_url}"
            raise InvalidConfigError(msg)
        if not self.client_id.strip():
            msg = "client_id must not be empty"
            raise InvalidConfigError(msg)
        if not self.no_auth and not self.auth_token:
            msg = f"Missing auth token. Set --auth-token or {AUTH_TOKEN_ENV}"
            raise InvalidConfigError(msg)

    @property
    def base_url(self) -> str:
        return self.server_url.rstrip("/")

    @property
    def captures_url(self) -> str:
        return f"{self.base_url}/v1/captures"
