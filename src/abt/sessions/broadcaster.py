from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Protocol

from abt.sessions.store import SessionStore

log = logging.getLogger(__name__)


class MessageType(str, Enum):
    CONNECTED = "connected"
    SESSION_STATE = "session_state"
    LOG = "log"
    TEST_START = "test_start"
    TEST_COMPLETE = "test_complete"
    TEST_STOPPED = "test_stopped"
    TEST_ERROR = "test_error"


class Connection(Protocol):
    async def send_json(self, data: Any) -> None:
        ...


def envelope(message_type: MessageType, session_id: str | None, data: Any = None) -> dict[str, Any]:
    return {"type": message_type.value, "session_id": session_id, "data": data}


@dataclass(slots=True)
class _Subscription:
    connection: Connection
    queue: asyncio.Queue[dict[str, Any]]
    writer: asyncio.Task[None] | None = None


class Broadcaster:
    """Pushes session events to at most one subscriber per session.

    ``publish`` only enqueues, so callers on the run path never wait on the
    network; each subscription drains its own queue in order.
    """

    def __init__(self, store: SessionStore) -> None:
        self._store = store
        self._subscriptions: dict[str, _Subscription] = {}

    def subscriber(self, session_id: str) -> Connection | None:
        subscription = self._subscriptions.get(session_id)
        return subscription.connection if subscription else None

    def subscribe(self, session_id: str, connection: Connection) -> bool:
        """Attach ``connection`` to a session, replacing any earlier subscriber.

        The current snapshot is queued ahead of any live event, so nothing
        appended after this call is missed and nothing before it is repeated.
        Returns whether the session exists.
        """
        self.unsubscribe(session_id)
        subscription = _Subscription(connection=connection, queue=asyncio.Queue())
        snapshot = self._store.snapshot(session_id)
        if snapshot is not None:
            subscription.queue.put_nowait(envelope(MessageType.SESSION_STATE, session_id, snapshot))
        subscription.writer = asyncio.create_task(self._write(session_id, subscription))
        self._subscriptions[session_id] = subscription
        log.info("WebSocket client subscribed to session: %s", session_id)
        return snapshot is not None

    def unsubscribe(self, session_id: str, connection: Connection | None = None) -> bool:
        subscription = self._subscriptions.get(session_id)
        if subscription is None:
            return False
        if connection is not None and subscription.connection is not connection:
            return False
        del self._subscriptions[session_id]
        if subscription.writer is not None:
            subscription.writer.cancel()
        return True

    def drop_connection(self, connection: Connection) -> list[str]:
        dropped = [
            session_id
            for session_id, subscription in list(self._subscriptions.items())
            if subscription.connection is connection
        ]
        for session_id in dropped:
            self.unsubscribe(session_id)
            log.info("WebSocket client unsubscribed from session: %s", session_id)
        return dropped

    def publish(self, session_id: str, message_type: MessageType, data: Any = None) -> bool:
        subscription = self._subscriptions.get(session_id)
        if subscription is None:
            log.debug("No subscriber for session %s, dropping %s", session_id, message_type.value)
            return False
        subscription.queue.put_nowait(envelope(message_type, session_id, data))
        return True

    async def flush(self, session_id: str) -> None:
        subscription = self._subscriptions.get(session_id)
        if subscription is not None:
            await subscription.queue.join()

    async def close(self) -> None:
        writers = [s.writer for s in self._subscriptions.values() if s.writer is not None]
        self._subscriptions.clear()
        for writer in writers:
            writer.cancel()
        await asyncio.gather(*writers, return_exceptions=True)

    async def _write(self, session_id: str, subscription: _Subscription) -> None:
        while True:
            message = await subscription.queue.get()
            try:
                await subscription.connection.send_json(message)
            except Exception as exc:
                log.warning("Error sending %s for session %s: %s", message["type"], session_id, exc)
            finally:
                subscription.queue.task_done()
