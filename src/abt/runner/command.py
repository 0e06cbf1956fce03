from __future__ import annotations

import json
import logging
import os
import tempfile
from dataclasses import dataclass
from typing import Any
from urllib.parse import urlencode

from abt.config import HttpMethod, TrialConfig

log = logging.getLogger(__name__)

MIN_VERBOSITY = 3
FORM_URLENCODED = "application/x-www-form-urlencoded"
JSON_CONTENT = "application/json"


@dataclass(frozen=True, slots=True)
class BuiltCommand:
    argv: list[str]
    payload_file: str | None = None


def build_command(
    config: TrialConfig,
    session_id: str,
    executable: str = "ab",
    scratch_dir: str | None = None,
) -> BuiltCommand:
    """Assemble the ab argument vector for an already validated config.

    When the request carries a body it is written to a fresh file under
    ``scratch_dir``; the caller owns that file and must remove it.
    """
    args = [executable, "-n", str(config.requests), "-c", str(config.concurrency)]

    if config.timelimit:
        args += ["-t", str(config.timelimit)]
    if config.keepalive:
        args.append("-k")
    if config.method is not HttpMethod.GET:
        args += ["-m", config.method.value]
    if config.timeout:
        args += ["-s", str(config.timeout)]

    args += ["-v", str(max(config.verbosity or MIN_VERBOSITY, MIN_VERBOSITY))]

    if config.accept_varying_length:
        args.append("-l")
    for key, value in config.headers.items():
        args += ["-H", f"{key}: {value}"]
    for key, value in config.cookies.items():
        args += ["-C", f"{key}={value}"]
    if config.auth_username and config.auth_password:
        args += ["-A", f"{config.auth_username}:{config.auth_password}"]
    if config.proxy_url:
        args += ["-X", config.proxy_url]

    payload_file = None
    payload_flag = _payload_flag(config)
    if payload_flag and config.body:
        payload = transform_body(config.body, config.content_type)
        payload_file = write_payload(payload, session_id, scratch_dir)
        args += [payload_flag, payload_file]
        if config.content_type:
            args += ["-T", config.content_type]

    args.append(config.url)
    return BuiltCommand(argv=args, payload_file=payload_file)


def _payload_flag(config: TrialConfig) -> str | None:
    if config.method in (HttpMethod.POST, HttpMethod.GET):
        return "-p"
    if config.method is HttpMethod.PUT:
        return "-u"
    return None


def transform_body(body: str, content_type: str | None = None) -> str:
    try:
        parsed = json.loads(body)
    except ValueError:
        return body

    normalized = (content_type or "").lower()
    if FORM_URLENCODED in normalized and isinstance(parsed, dict):
        return urlencode({str(key): _stringify(value) for key, value in parsed.items()})
    if JSON_CONTENT in normalized:
        return _compact_json(parsed)
    # multipart/form-data and unknown types are sent as JSON text, ab has no multipart encoder
    if isinstance(parsed, (dict, list)):
        return _compact_json(parsed)
    return _stringify(parsed)


def _compact_json(value: Any) -> str:
    return json.dumps(value, separators=(",", ":"), ensure_ascii=False)


def _stringify(value: Any) -> str:
    if isinstance(value, str):
        return value
    return _compact_json(value)


def write_payload(payload: str, session_id: str, scratch_dir: str | None = None) -> str:
    fd, path = tempfile.mkstemp(prefix=f"ab-{session_id}-", suffix=".txt", dir=scratch_dir)
    with os.fdopen(fd, "w", encoding="utf-8") as handle:
        handle.write(payload)
    return path


def remove_payload(path: str | None) -> None:
    if not path:
        return
    try:
        os.unlink(path)
    except FileNotFoundError:
        pass
    except OSError as exc:
        log.warning("Failed to remove payload file %s: %s", path, exc)


def redact_argv(argv: list[str]) -> list[str]:
    redacted = list(argv)
    for idx, arg in enumerate(redacted[:-1]):
        if arg == "-A":
            user = redacted[idx + 1].split(":", 1)[0]
            redacted[idx + 1] = f"{user}:***"
    return redacted
