from __future__ import annotations

import json
import os
import tempfile
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping

from abt.runner.errors import ConfigValidationError


class HttpMethod(str, Enum):
    GET = "GET"
    POST = "POST"
    PUT = "PUT"
    DELETE = "DELETE"
    HEAD = "HEAD"


@dataclass(frozen=True, slots=True)
class TrialConfig:
    url: str
    requests: int
    concurrency: int
    method: HttpMethod = HttpMethod.GET
    timelimit: int | None = None
    timeout: int | None = None
    keepalive: bool = False
    headers: Mapping[str, str] = field(default_factory=dict)
    cookies: Mapping[str, str] = field(default_factory=dict)
    body: str | None = None
    content_type: str | None = None
    auth_username: str | None = None
    auth_password: str | None = None
    proxy_url: str | None = None
    verbosity: int | None = None
    accept_varying_length: bool = False

    @classmethod
    def parse(cls, data: Mapping[str, Any]) -> ParsedConfig:
        """Best-effort build from decoded JSON.

        Malformed fields fall back to their defaults and are reported in
        ``field_errors``; ``failed_fields`` names them so later rule checks
        can skip what could not be read.
        """
        errors: list[str] = []
        failed: set[str] = set()

        def fail(key: str, message: str) -> None:
            errors.append(message)
            failed.add(key)

        def integer(key: str, required: bool = False) -> int | None:
            value = data.get(key)
            if value is None or value == "":
                if required:
                    fail(key, f"{key} is required")
                return None
            if isinstance(value, bool):
                fail(key, f"{key} must be an integer")
                return None
            try:
                return int(value)
            except (TypeError, ValueError):
                fail(key, f"{key} must be an integer")
                return None

        def flag(key: str) -> bool:
            value = data.get(key)
            if value is None:
                return False
            if not isinstance(value, bool):
                fail(key, f"{key} must be a boolean")
                return False
            return value

        def text(key: str) -> str | None:
            value = data.get(key)
            if value is None or value == "":
                return None
            return str(value)

        def string_map(key: str) -> dict[str, str]:
            value = data.get(key) or {}
            if not isinstance(value, Mapping):
                fail(key, f"{key} must be an object")
                return {}
            return {str(k): str(v) for k, v in value.items()}

        method = HttpMethod.GET
        raw_method = data.get("method") or "GET"
        try:
            method = HttpMethod(str(raw_method).upper())
        except ValueError:
            fail("method", f"Unsupported method: {raw_method}")

        body = data.get("body")
        if body is not None and not isinstance(body, str):
            body = json.dumps(body, separators=(",", ":"))

        requests = integer("requests", required=True)
        concurrency = integer("concurrency", required=True)
        config = cls(
            url=str(data.get("url") or ""),
            requests=requests or 0,
            concurrency=concurrency or 0,
            method=method,
            timelimit=integer("timelimit"),
            timeout=integer("timeout"),
            keepalive=flag("keepalive"),
            headers=string_map("headers"),
            cookies=string_map("cookies"),
            body=body,
            content_type=text("content_type"),
            auth_username=text("auth_username"),
            auth_password=text("auth_password"),
            proxy_url=text("proxy_url"),
            verbosity=integer("verbosity"),
            accept_varying_length=flag("accept_varying_length"),
        )
        return ParsedConfig(config=config, field_errors=errors, failed_fields=frozenset(failed))

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> TrialConfig:
        parsed = cls.parse(data)
        if parsed.field_errors:
            raise ConfigValidationError(parsed.field_errors)
        return parsed.config

    def to_metadata(self) -> Mapping[str, Any]:
        return {
            "url": self.url,
            "requests": self.requests,
            "concurrency": self.concurrency,
            "method": self.method.value,
            "timelimit": self.timelimit,
            "timeout": self.timeout,
            "keepalive": self.keepalive,
            "headers": dict(self.headers),
            "cookies": dict(self.cookies),
            "body": self.body,
            "content_type": self.content_type,
            "auth_username": self.auth_username,
            "auth_password": "***" if self.auth_password else None,
            "proxy_url": self.proxy_url,
            "verbosity": self.verbosity,
            "accept_varying_length": self.accept_varying_length,
        }


@dataclass(frozen=True, slots=True)
class ParsedConfig:
    config: TrialConfig
    field_errors: list[str]
    failed_fields: frozenset[str]


@dataclass(frozen=True, slots=True)
class ServiceSettings:
    executable: str = "ab"
    scratch_dir: str = field(default_factory=tempfile.gettempdir)
    heartbeat_interval: float = 1.0
    max_logs: int = 500
    session_ttl_sec: float = 24 * 60 * 60
    finished_ttl_sec: float = 60 * 60
    sweep_interval_sec: float = 30 * 60
    host: str = "0.0.0.0"
    port: int = 5173
    archive_path: str = ".abt/abt.duckdb"

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> ServiceSettings:
        env = os.environ if environ is None else environ
        defaults = cls()
        return cls(
            executable=env.get("ABT_EXECUTABLE", defaults.executable),
            scratch_dir=env.get("ABT_SCRATCH_DIR", defaults.scratch_dir),
            heartbeat_interval=float(env.get("ABT_HEARTBEAT_INTERVAL", defaults.heartbeat_interval)),
            max_logs=int(env.get("ABT_MAX_LOGS", defaults.max_logs)),
            session_ttl_sec=float(env.get("ABT_SESSION_TTL", defaults.session_ttl_sec)),
            finished_ttl_sec=float(env.get("ABT_FINISHED_TTL", defaults.finished_ttl_sec)),
            sweep_interval_sec=float(env.get("ABT_SWEEP_INTERVAL", defaults.sweep_interval_sec)),
            host=env.get("ABT_HOST", defaults.host),
            port=int(env.get("PORT", env.get("ABT_PORT", defaults.port))),
            archive_path=env.get("ABT_ARCHIVE_PATH", defaults.archive_path),
        )
