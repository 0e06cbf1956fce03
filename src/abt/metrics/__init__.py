from __future__ import annotations

from abt.metrics.aggregator import aggregate, status_message
from abt.metrics.models import ErrorSummaryEntry, LogEvent, LogLevel, TrialResult

__all__ = [
    "ErrorSummaryEntry",
    "LogEvent",
    "LogLevel",
    "TrialResult",
    "aggregate",
    "status_message",
]
