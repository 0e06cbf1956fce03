from __future__ import annotations

import re
from collections import Counter
from typing import Any, Callable

from abt.metrics.models import ErrorSummaryEntry, TrialResult

_STATUS_RE = re.compile(r"HTTP/1\.[01] (\d{3})")
_PERCENTILE_HEADER = "Percentage of the requests served"
_PERCENTILE_RE = re.compile(r"^(\d+)%\s+(\d+(?:\.\d+)?)")
_CONCURRENT_MARKER = "across all concurrent"

_STATUS_MESSAGES = {
    200: "OK",
    201: "Created",
    204: "No Content",
    301: "Moved Permanently",
    302: "Found",
    304: "Not Modified",
    400: "Bad Request",
    401: "Unauthorized",
    403: "Forbidden",
    404: "Not Found",
    405: "Method Not Allowed",
    429: "Too Many Requests",
    500: "Internal Server Error",
    502: "Bad Gateway",
    503: "Service Unavailable",
    504: "Gateway Timeout",
}


def _text(value: str) -> str:
    return value.strip()


def _int(value: str) -> int:
    token = value.split()[0] if value.split() else ""
    try:
        return int(token)
    except ValueError:
        return 0


def _float(value: str) -> float:
    token = value.split()[0] if value.split() else ""
    try:
        return float(token)
    except ValueError:
        return 0.0


# (label, result field, parser); "Time per request" is split on _CONCURRENT_MARKER.
_FIELDS: tuple[tuple[str, str, Callable[[str], Any]], ...] = (
    ("Server Software:", "server_software", _text),
    ("Server Hostname:", "server_hostname", _text),
    ("Server Port:", "server_port", _int),
    ("Document Path:", "document_path", _text),
    ("Document Length:", "document_length", _int),
    ("Concurrency Level:", "concurrency_level", _int),
    ("Time taken for tests:", "time_taken", _float),
    ("Complete requests:", "complete_requests", _int),
    ("Failed requests:", "failed_requests", _int),
    ("Non-2xx responses:", "non_2xx_responses", _int),
    ("Total transferred:", "total_transferred", _int),
    ("HTML transferred:", "html_transferred", _int),
    ("Requests per second:", "requests_per_second", _float),
    ("Time per request:", "time_per_request", _float),
    ("Transfer rate:", "transfer_rate", _float),
)


def status_message(status_code: int) -> str:
    return _STATUS_MESSAGES.get(status_code, f"HTTP {status_code}")


def aggregate(output: str) -> TrialResult:
    """Turn the captured stdout of an ab run into a TrialResult.

    Every "Label: value" line maps to exactly one field; values that fail to
    parse become 0. Status-code histogram fields are only filled in when at
    least one ``HTTP/1.x NNN`` line was seen.
    """
    fields: dict[str, Any] = {}
    percentiles: dict[int, float] = {}
    status_codes: Counter[str] = Counter()
    in_percentiles = False

    for raw in output.splitlines():
        line = raw.strip()
        if not line:
            continue

        status = _STATUS_RE.search(line)
        if status:
            status_codes[status.group(1)] += 1

        if _PERCENTILE_HEADER in line:
            in_percentiles = True
            continue
        if in_percentiles:
            match = _PERCENTILE_RE.match(line)
            if match:
                percentiles[int(match.group(1))] = float(match.group(2))
                continue
            in_percentiles = False

        for label, name, parse in _FIELDS:
            if label not in line:
                continue
            value = line.split(label, 1)[1]
            if name == "time_per_request" and _CONCURRENT_MARKER in line:
                name = "time_per_request_concurrent"
            fields[name] = parse(value)
            break

    if status_codes:
        fields.update(_classify_status_codes(status_codes))
    return TrialResult(percentiles=percentiles, **fields)


def _classify_status_codes(status_codes: Counter[str]) -> dict[str, Any]:
    successful = redirects = client_errors = server_errors = 0
    summary: list[ErrorSummaryEntry] = []
    for code, count in status_codes.items():
        status = int(code)
        if 200 <= status < 300:
            successful += count
            continue
        if 300 <= status < 400:
            redirects += count
        elif 400 <= status < 500:
            client_errors += count
        elif status >= 500:
            server_errors += count
        else:
            continue
        summary.append(ErrorSummaryEntry(status_code=code, count=count, message=status_message(status)))
    return {
        "status_codes": dict(status_codes),
        "successful_requests": successful,
        "redirects": redirects,
        "client_errors": client_errors,
        "server_errors": server_errors,
        "error_summary": summary,
    }
