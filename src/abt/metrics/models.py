from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any


class LogLevel(str, Enum):
    INFO = "info"
    ERROR = "error"
    DEBUG = "debug"


@dataclass(frozen=True, slots=True)
class LogEvent:
    level: LogLevel
    message: str
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict[str, Any]:
        return {
            "timestamp": self.timestamp.isoformat(),
            "level": self.level.value,
            "message": self.message,
        }


@dataclass(frozen=True, slots=True)
class ErrorSummaryEntry:
    status_code: str
    count: int
    message: str


@dataclass(frozen=True, slots=True)
class TrialResult:
    server_software: str = ""
    server_hostname: str = ""
    server_port: int = 0
    document_path: str = ""
    document_length: int = 0
    concurrency_level: int = 0
    time_taken: float = 0.0
    complete_requests: int = 0
    failed_requests: int = 0
    non_2xx_responses: int = 0
    total_transferred: int = 0
    html_transferred: int = 0
    requests_per_second: float = 0.0
    time_per_request: float = 0.0
    time_per_request_concurrent: float = 0.0
    transfer_rate: float = 0.0
    percentiles: dict[int, float] = field(default_factory=dict)
    # None means no status line was observed, which differs from a zero count.
    status_codes: dict[str, int] | None = None
    successful_requests: int | None = None
    redirects: int | None = None
    client_errors: int | None = None
    server_errors: int | None = None
    error_summary: list[ErrorSummaryEntry] | None = None

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["percentiles"] = {str(k): v for k, v in self.percentiles.items()}
        return data
