from __future__ import annotations

import asyncio
import logging
from dataclasses import replace
from datetime import timedelta
from enum import Enum
from typing import Any, Mapping

from abt.config import ServiceSettings, TrialConfig, ValidationResult, validate_mapping
from abt.metrics import LogLevel, TrialResult
from abt.runner.errors import AbtError, SessionStateError
from abt.runner.supervisor import Outcome, ProcessSupervisor
from abt.sessions.broadcaster import Broadcaster, MessageType
from abt.sessions.store import SessionStatus, SessionStore
from abt.storage import ArchiveError, TrialArchive

log = logging.getLogger(__name__)

STARTABLE = (
    SessionStatus.PREPARING,
    SessionStatus.COMPLETED,
    SessionStatus.STOPPED,
    SessionStatus.ERROR,
)


class StopOutcome(str, Enum):
    ALREADY_TERMINAL = "already_terminal"
    STOPPED = "stopped"
    NOT_RUNNING = "not_running"


class SessionController:
    def __init__(
        self,
        store: SessionStore,
        supervisor: ProcessSupervisor,
        broadcaster: Broadcaster,
        archive: TrialArchive | None = None,
    ) -> None:
        self.store = store
        self.supervisor = supervisor
        self.broadcaster = broadcaster
        self.archive = archive
        self._tasks: dict[str, asyncio.Task[None]] = {}

    @classmethod
    def from_settings(
        cls,
        settings: ServiceSettings,
        archive: TrialArchive | None = None,
    ) -> SessionController:
        store = SessionStore(
            max_logs=settings.max_logs,
            session_ttl=timedelta(seconds=settings.session_ttl_sec),
            finished_ttl=timedelta(seconds=settings.finished_ttl_sec),
        )
        supervisor = ProcessSupervisor(
            executable=settings.executable,
            scratch_dir=settings.scratch_dir,
            heartbeat_interval=settings.heartbeat_interval,
        )
        return cls(store, supervisor, Broadcaster(store), archive)

    def validate(self, data: Mapping[str, Any]) -> ValidationResult:
        return validate_mapping(data)

    def create_session(self, config: TrialConfig) -> str:
        session = self.store.create(config)
        log.info("Created session %s for %s", session.id, config.url)
        return session.id

    def start_session(self, session_id: str) -> None:
        session = self.store.require(session_id)
        if session.status not in STARTABLE or self.supervisor.is_running(session_id):
            raise SessionStateError("Session already running")
        task = self._tasks.get(session_id)
        if task is not None and not task.done():
            raise SessionStateError("Session already running")

        session = self.store.mark_running(session_id)
        self.broadcaster.publish(
            session_id,
            MessageType.TEST_START,
            {"config": dict(session.config.to_metadata())},
        )
        self._log(session_id, LogLevel.INFO, "Starting load testing...")
        self._tasks[session_id] = asyncio.create_task(self._drive(session_id, session.config))

    def stop_session(self, session_id: str) -> StopOutcome:
        session = self.store.require(session_id)
        if session.status.is_terminal:
            return StopOutcome.ALREADY_TERMINAL
        if not self._halt(session_id):
            return StopOutcome.NOT_RUNNING

        result = TrialResult()
        self.store.mark_finished(session_id, SessionStatus.STOPPED, result)
        self._log(session_id, LogLevel.INFO, "Test stopped by user")
        self.broadcaster.publish(
            session_id,
            MessageType.TEST_STOPPED,
            {"result": result.to_dict(), "message": "Test stopped by user"},
        )
        return StopOutcome.STOPPED

    def delete_session(self, session_id: str) -> None:
        self.store.require(session_id)
        self._halt(session_id)
        self.store.delete(session_id)
        self.broadcaster.unsubscribe(session_id)
        log.info("Deleted session %s", session_id)

    def list_sessions(self) -> list[dict[str, Any]]:
        return [session.summary() for session in self.store.sessions()]

    def get_session(self, session_id: str) -> dict[str, Any]:
        return self.store.describe(session_id)

    def get_logs(self, session_id: str) -> list[dict[str, Any]]:
        return [event.to_dict() for event in self.store.logs(session_id)]

    async def check_availability(self) -> bool:
        return await self.supervisor.check_availability()

    async def wait(self, session_id: str) -> None:
        task = self._tasks.get(session_id)
        if task is not None:
            await asyncio.gather(task, return_exceptions=True)

    async def run_janitor(self, interval: float) -> None:
        while True:
            await asyncio.sleep(interval)
            self.sweep()

    def sweep(self) -> list[str]:
        removed = self.store.sweep()
        for session_id in removed:
            self.broadcaster.unsubscribe(session_id)
        return removed

    async def shutdown(self) -> None:
        await self.supervisor.stop_all()
        tasks = list(self._tasks.values())
        # runs that had not spawned yet are not known to the supervisor
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        await self.broadcaster.close()

    def _halt(self, session_id: str) -> bool:
        if self.supervisor.stop(session_id):
            return True
        task = self._tasks.get(session_id)
        if task is None or task.done() or self.supervisor.is_running(session_id):
            return False
        # the run task has not reached the supervisor yet, so nothing was spawned
        task.cancel()
        self._tasks.pop(session_id, None)
        return True

    def _log(self, session_id: str, level: LogLevel, message: str) -> None:
        event = self.store.append_log(session_id, level, message)
        if event is not None:
            self.broadcaster.publish(session_id, MessageType.LOG, event.to_dict())

    async def _drive(self, session_id: str, config: TrialConfig) -> None:
        def sink(level: LogLevel, message: str) -> None:
            # once stopped, the stop event is the last thing a subscriber sees
            session = self.store.get(session_id)
            if session is not None and session.status is SessionStatus.RUNNING:
                self._log(session_id, level, message)

        try:
            outcome = await self.supervisor.run(config, session_id, sink)
        except AbtError as exc:
            self._fail(session_id, str(exc))
            return
        finally:
            self._tasks.pop(session_id, None)

        if outcome is Outcome.CANCELLED:
            # stop_session already recorded the stop unless the session vanished meanwhile
            session = self.store.get(session_id)
            if session is not None and session.status is SessionStatus.RUNNING:
                self.store.mark_finished(session_id, SessionStatus.STOPPED, TrialResult())
            return

        session = self.store.mark_finished(session_id, SessionStatus.COMPLETED, outcome)
        if session is None:
            return
        self._log(session_id, LogLevel.INFO, "Test completed successfully!")
        self.broadcaster.publish(session_id, MessageType.TEST_COMPLETE, {"result": outcome.to_dict()})
        if self.archive is not None:
            try:
                # restarts reset the live session
                await asyncio.to_thread(self.archive.save_trial, replace(session))
            except ArchiveError as exc:
                log.warning("%s", exc)

    def _fail(self, session_id: str, message: str) -> None:
        log.warning("Session %s failed: %s", session_id, message)
        session = self.store.get(session_id)
        if session is None or session.status is not SessionStatus.RUNNING:
            return
        self.store.mark_finished(session_id, SessionStatus.ERROR)
        self._log(session_id, LogLevel.ERROR, f"Error executing test: {message}")
        self.broadcaster.publish(session_id, MessageType.TEST_ERROR, {"error": message})
