"""Line classification for ab's stdout and stderr.

Each stream has an ordered table of ``(predicate, handler)`` rules; the first
predicate that accepts a line decides what, if anything, is surfaced. Cross-line
state lives in an explicit :class:`ParserState` owned by a single run.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable

from abt.metrics import LogLevel

DEFAULT_VERBOSITY = 2
PROGRESS_EVERY = 10
PREVIEW_CHARS = 100

_NOT_2XX_RE = re.compile(r"Response code not 2xx \((\d+)\)")
_RESPONSE_CODE_RE = re.compile(r"Response code = (\d+)")
_COMPLETED_RE = re.compile(r"Completed (\d+) requests")

IGNORABLE_PATTERNS = (
    "SSL/TLS Handshake",
    "SSL/TLS State",
    "SSL/TLS",
    "SSLv3/TLS write",
    "SSLv3/TLS read",
    "TLSv1.3 read",
    "TLSv1.2 read",
    "TLSv1.1 read",
    "read server certificate",
    "read encrypted extensions",
    "read server certificate verify",
    "read finished",
    "write client hello",
    "before SSL initialization",
    "before SSL/TLS connection",
    "after SSL/TLS connection",
    "SSL-Session:",
    "Session-ID:",
    "Session-ID-ctx:",
    "Protocol :",
    "Transport Protocol :",
    "Max Early Data:",
    "Extended master secret:",
    "Verify return code:",
    "Timeout :",
    "Start Time:",
    "Cipher :",
    "Cipher Suite",
    "Cipher Bits:",
    "Resumption PSK:",
    "PSK identity:",
    "PSK identity hint:",
    "SRP username:",
    "Key-Arg   :",
    "TLS session ticket",
    "Compression:",
    "Expansion:",
    "SSL",
)
CONNECTION_FAILURE_MARKERS = ("apr_socket_recv", "Connection", "Failed")


class EventKind(str, Enum):
    TEST_START = "test_start"
    RESPONSE_ERROR = "response_error"
    RESPONSE = "response"
    PROGRESS = "progress"
    PARSE_NOISE = "parse_noise"
    COMPLETED = "completed"
    CONNECTION_ERROR = "connection_error"
    STDERR = "stderr"


@dataclass(frozen=True, slots=True)
class LineEvent:
    level: LogLevel
    message: str
    kind: EventKind


@dataclass(slots=True)
class PendingResponse:
    status: str
    code: str
    message: str
    status_code: int


@dataclass(slots=True)
class ParserState:
    verbosity: int = DEFAULT_VERBOSITY
    response_count: int = 0
    pending: PendingResponse | None = None

    @classmethod
    def for_verbosity(cls, verbosity: int | None) -> ParserState:
        return cls(verbosity=DEFAULT_VERBOSITY if verbosity is None else verbosity)


Predicate = Callable[[str], bool]
Handler = Callable[[str, ParserState], "LineEvent | None"]


def _is_benchmark_start(line: str) -> bool:
    return "Benchmarking" in line


def _on_benchmark_start(line: str, state: ParserState) -> LineEvent:
    return LineEvent(LogLevel.INFO, line, EventKind.TEST_START)


def _is_json_object(line: str) -> bool:
    return line.startswith("{") and line.endswith("}")


def _on_json_object(line: str, state: ParserState) -> LineEvent | None:
    try:
        parsed = json.loads(line)
    except ValueError:
        parsed = None
    if not isinstance(parsed, dict):
        return LineEvent(
            LogLevel.DEBUG,
            f"Failed to parse JSON: {line[:PREVIEW_CHARS]}...",
            EventKind.PARSE_NOISE,
        )
    code = parsed.get("code") or parsed.get("statusCode") or ""
    state.pending = PendingResponse(
        status=str(parsed.get("status") or "unknown"),
        code=str(code),
        message=str(parsed.get("message") or "Unknown error"),
        status_code=_as_int(parsed.get("statusCode") or code),
    )
    return None


def _is_non_2xx_warning(line: str) -> bool:
    return "WARNING: Response code not 2xx" in line


def _on_non_2xx_warning(line: str, state: ParserState) -> LineEvent | None:
    state.response_count += 1
    match = _NOT_2XX_RE.search(line)
    message = f"Request #{state.response_count}: "
    if match:
        message += f"statusCode: {int(match.group(1))}"
    else:
        message += "Non-2xx response"

    pending, state.pending = state.pending, None
    if pending is None:
        return LineEvent(LogLevel.ERROR, message, EventKind.RESPONSE_ERROR)

    message += f", status: {pending.status}, code: {pending.code}, message: {pending.message}"
    if pending.status_code >= 400:
        return LineEvent(LogLevel.ERROR, message, EventKind.RESPONSE_ERROR)
    if state.verbosity >= 3:
        return LineEvent(LogLevel.DEBUG, message, EventKind.RESPONSE)
    return None


def _is_success_code(line: str) -> bool:
    if "LOG: Response code" not in line:
        return False
    match = _RESPONSE_CODE_RE.search(line)
    return bool(match) and 200 <= int(match.group(1)) < 300


def _on_success_code(line: str, state: ParserState) -> LineEvent | None:
    state.response_count += 1
    if state.response_count % PROGRESS_EVERY == 0:
        return LineEvent(
            LogLevel.DEBUG,
            f"Progress: {state.response_count} requests completed",
            EventKind.PROGRESS,
        )
    if state.verbosity >= 3:
        code = int(_RESPONSE_CODE_RE.search(line).group(1))
        return LineEvent(LogLevel.DEBUG, f"Request #{state.response_count}: HTTP {code}", EventKind.RESPONSE)
    return None


STDOUT_RULES: tuple[tuple[Predicate, Handler], ...] = (
    (_is_benchmark_start, _on_benchmark_start),
    (_is_json_object, _on_json_object),
    (_is_non_2xx_warning, _on_non_2xx_warning),
    (_is_success_code, _on_success_code),
)


def _is_completed(line: str) -> bool:
    return bool(_COMPLETED_RE.search(line))


def _on_completed(line: str, state: ParserState) -> LineEvent:
    count = _COMPLETED_RE.search(line).group(1)
    return LineEvent(LogLevel.INFO, f"Finished: {count} requests", EventKind.COMPLETED)


def _is_connection_failure(line: str) -> bool:
    return any(marker in line for marker in CONNECTION_FAILURE_MARKERS)


def _on_connection_failure(line: str, state: ParserState) -> LineEvent:
    return LineEvent(LogLevel.ERROR, f"Error: {line}", EventKind.CONNECTION_ERROR)


def is_ignorable(line: str) -> bool:
    return "Finished" in line or any(pattern in line for pattern in IGNORABLE_PATTERNS)


def _drop(line: str, state: ParserState) -> None:
    return None


def _any_line(line: str) -> bool:
    return True


def _on_stderr_passthrough(line: str, state: ParserState) -> LineEvent:
    return LineEvent(LogLevel.DEBUG, f"STDERR: {line}", EventKind.STDERR)


STDERR_RULES: tuple[tuple[Predicate, Handler], ...] = (
    (_is_completed, _on_completed),
    (_is_connection_failure, _on_connection_failure),
    (is_ignorable, _drop),
    (_any_line, _on_stderr_passthrough),
)


def _dispatch(rules: tuple[tuple[Predicate, Handler], ...], line: str, state: ParserState) -> LineEvent | None:
    trimmed = line.strip()
    if not trimmed:
        return None
    for predicate, handler in rules:
        if predicate(trimmed):
            return handler(trimmed, state)
    return None


def classify_stdout(line: str, state: ParserState) -> LineEvent | None:
    return _dispatch(STDOUT_RULES, line, state)


def classify_stderr(line: str, state: ParserState) -> LineEvent | None:
    return _dispatch(STDERR_RULES, line, state)


def _as_int(value: Any) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0
