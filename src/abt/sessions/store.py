from __future__ import annotations

import logging
import threading
import uuid
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any

from abt.config import TrialConfig
from abt.metrics import LogEvent, LogLevel, TrialResult
from abt.runner.errors import SessionNotFoundError

log = logging.getLogger(__name__)

MAX_LOGS_PER_SESSION = 500
SESSION_TTL = timedelta(hours=24)
FINISHED_TTL = timedelta(hours=1)


class SessionStatus(str, Enum):
    PREPARING = "preparing"
    RUNNING = "running"
    COMPLETED = "completed"
    STOPPED = "stopped"
    ERROR = "error"

    @property
    def is_terminal(self) -> bool:
        return self in (SessionStatus.COMPLETED, SessionStatus.STOPPED, SessionStatus.ERROR)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(slots=True)
class Session:
    id: str
    config: TrialConfig
    logs: deque[LogEvent]
    status: SessionStatus = SessionStatus.PREPARING
    start_time: datetime = field(default_factory=_utcnow)
    end_time: datetime | None = None
    result: TrialResult | None = None

    def summary(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "status": self.status.value,
            "start_time": self.start_time.isoformat(),
            "end_time": self.end_time.isoformat() if self.end_time else None,
            "config": {
                "url": self.config.url,
                "requests": self.config.requests,
                "concurrency": self.config.concurrency,
            },
        }

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "config": dict(self.config.to_metadata()),
            "status": self.status.value,
            "start_time": self.start_time.isoformat(),
            "end_time": self.end_time.isoformat() if self.end_time else None,
            "logs": [event.to_dict() for event in self.logs],
            "result": self.result.to_dict() if self.result else None,
        }


class SessionStore:
    """Authoritative in-memory state of every trial, keyed by session id.

    All access goes through one re-entrant lock so log appends from run
    callbacks never interleave with snapshots taken for subscribers.
    """

    def __init__(
        self,
        max_logs: int = MAX_LOGS_PER_SESSION,
        session_ttl: timedelta = SESSION_TTL,
        finished_ttl: timedelta = FINISHED_TTL,
    ) -> None:
        self.max_logs = max_logs
        self.session_ttl = session_ttl
        self.finished_ttl = finished_ttl
        self._sessions: dict[str, Session] = {}
        self._lock = threading.RLock()

    def create(self, config: TrialConfig) -> Session:
        session = Session(id=str(uuid.uuid4()), config=config, logs=deque(maxlen=self.max_logs))
        with self._lock:
            self._sessions[session.id] = session
        return session

    def get(self, session_id: str) -> Session | None:
        with self._lock:
            return self._sessions.get(session_id)

    def require(self, session_id: str) -> Session:
        session = self.get(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        return session

    def sessions(self) -> list[Session]:
        with self._lock:
            return list(self._sessions.values())

    def delete(self, session_id: str) -> bool:
        with self._lock:
            return self._sessions.pop(session_id, None) is not None

    def append_log(self, session_id: str, level: LogLevel, message: str) -> LogEvent | None:
        event = LogEvent(level=level, message=message)
        with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                return None
            session.logs.append(event)
        return event

    def logs(self, session_id: str) -> list[LogEvent]:
        with self._lock:
            return list(self.require(session_id).logs)

    def mark_running(self, session_id: str) -> Session:
        with self._lock:
            session = self.require(session_id)
            session.status = SessionStatus.RUNNING
            session.start_time = _utcnow()
            session.end_time = None
            session.result = None
            return session

    def mark_finished(
        self,
        session_id: str,
        status: SessionStatus,
        result: TrialResult | None = None,
    ) -> Session | None:
        with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                return None
            session.status = status
            session.end_time = _utcnow()
            if result is not None:
                session.result = result
            return session

    def snapshot(self, session_id: str) -> dict[str, Any] | None:
        """Status, retained logs and result as pushed to a new subscriber."""
        with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                return None
            return {
                "status": session.status.value,
                "logs": [event.to_dict() for event in session.logs],
                "result": session.result.to_dict() if session.result else None,
            }

    def sweep(self, now: datetime | None = None) -> list[str]:
        now = now or _utcnow()
        removed: list[str] = []
        with self._lock:
            for session_id, session in list(self._sessions.items()):
                age = now - session.start_time
                is_old = age > self.session_ttl
                is_stale_finished = (
                    session.status in (SessionStatus.COMPLETED, SessionStatus.ERROR)
                    and age > self.finished_ttl
                )
                if is_old or is_stale_finished:
                    del self._sessions[session_id]
                    removed.append(session_id)
        for session_id in removed:
            log.info("Deleted old session: %s", session_id)
        if removed:
            log.info("Cleaned up %d old sessions", len(removed))
        return removed

    def describe(self, session_id: str) -> dict[str, Any]:
        with self._lock:
            return self.require(session_id).to_dict()
