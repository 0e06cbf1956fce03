from __future__ import annotations

from abt.sessions.broadcaster import Broadcaster, Connection, MessageType, envelope
from abt.sessions.controller import SessionController, StopOutcome
from abt.sessions.store import Session, SessionStatus, SessionStore

__all__ = [
    "Broadcaster",
    "Connection",
    "MessageType",
    "Session",
    "SessionController",
    "SessionStatus",
    "SessionStore",
    "StopOutcome",
    "envelope",
]
