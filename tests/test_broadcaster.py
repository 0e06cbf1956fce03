from __future__ import annotations

from typing import Any

import pytest

from abt.config import TrialConfig
from abt.metrics import LogLevel
from abt.sessions import Broadcaster, MessageType, SessionStore

CONFIG = TrialConfig(url="http://example.com/", requests=10, concurrency=2)


class FakeConnection:
    def __init__(self, fail_first: bool = False) -> None:
        self.sent: list[dict[str, Any]] = []
        self.fail_first = fail_first

    async def send_json(self, data: Any) -> None:
        if self.fail_first:
            self.fail_first = False
            raise ConnectionError("socket closed")
        self.sent.append(data)

    @property
    def types(self) -> list[str]:
        return [m["type"] for m in self.sent]


def _log(store: SessionStore, broadcaster: Broadcaster, session_id: str, message: str) -> None:
    event = store.append_log(session_id, LogLevel.INFO, message)
    broadcaster.publish(session_id, MessageType.LOG, event.to_dict())


@pytest.mark.asyncio
async def test_snapshot_precedes_live_events_without_gaps() -> None:
    store = SessionStore()
    broadcaster = Broadcaster(store)
    session = store.create(CONFIG)
    _log(store, broadcaster, session.id, "before")

    conn = FakeConnection()
    assert broadcaster.subscribe(session.id, conn) is True
    _log(store, broadcaster, session.id, "after")
    await broadcaster.flush(session.id)

    assert conn.types == ["session_state", "log"]
    assert [e["message"] for e in conn.sent[0]["data"]["logs"]] == ["before"]
    assert conn.sent[1]["data"]["message"] == "after"
    assert all(m["session_id"] == session.id for m in conn.sent)
    await broadcaster.close()


@pytest.mark.asyncio
async def test_unknown_session_gets_no_snapshot() -> None:
    broadcaster = Broadcaster(SessionStore())
    conn = FakeConnection()
    assert broadcaster.subscribe("nope", conn) is False
    await broadcaster.flush("nope")
    assert conn.sent == []
    await broadcaster.close()


@pytest.mark.asyncio
async def test_publish_without_subscriber_is_dropped() -> None:
    store = SessionStore()
    broadcaster = Broadcaster(store)
    session = store.create(CONFIG)
    assert broadcaster.publish(session.id, MessageType.TEST_START, {}) is False


@pytest.mark.asyncio
async def test_new_subscriber_supersedes_previous() -> None:
    store = SessionStore()
    broadcaster = Broadcaster(store)
    session = store.create(CONFIG)
    first, second = FakeConnection(), FakeConnection()

    broadcaster.subscribe(session.id, first)
    await broadcaster.flush(session.id)
    broadcaster.subscribe(session.id, second)
    broadcaster.publish(session.id, MessageType.TEST_START, {"config": {}})
    await broadcaster.flush(session.id)

    assert first.types == ["session_state"]
    assert second.types == ["session_state", "test_start"]
    assert broadcaster.subscriber(session.id) is second
    assert broadcaster.unsubscribe(session.id, first) is False
    await broadcaster.close()


@pytest.mark.asyncio
async def test_send_failure_does_not_stop_delivery() -> None:
    store = SessionStore()
    broadcaster = Broadcaster(store)
    session = store.create(CONFIG)
    conn = FakeConnection(fail_first=True)

    broadcaster.subscribe(session.id, conn)
    broadcaster.publish(session.id, MessageType.TEST_ERROR, {"error": "x"})
    await broadcaster.flush(session.id)

    assert conn.types == ["test_error"]
    await broadcaster.close()


@pytest.mark.asyncio
async def test_drop_connection_removes_every_subscription() -> None:
    store = SessionStore()
    broadcaster = Broadcaster(store)
    a, b = store.create(CONFIG), store.create(CONFIG)
    conn = FakeConnection()
    broadcaster.subscribe(a.id, conn)
    broadcaster.subscribe(b.id, conn)

    assert sorted(broadcaster.drop_connection(conn)) == sorted([a.id, b.id])
    assert broadcaster.subscriber(a.id) is None
    assert broadcaster.publish(b.id, MessageType.LOG, {}) is False
    await broadcaster.close()
