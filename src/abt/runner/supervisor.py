from __future__ import annotations

import asyncio
import contextlib
import logging
import threading
from asyncio.subprocess import PIPE, Process
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable

from abt.config import TrialConfig, validate
from abt.metrics import LogLevel, TrialResult, aggregate
from abt.runner.classifier import ParserState, classify_stderr, classify_stdout
from abt.runner.command import build_command, redact_argv, remove_payload
from abt.runner.errors import AbnormalExitError, ConfigValidationError, SessionBusyError, SpawnError

log = logging.getLogger(__name__)

LogSink = Callable[[LogLevel, str], None]

# ab prints response headers and bodies at -v 3+, allow long lines
STREAM_LIMIT = 4 * 1024 * 1024


class Outcome(Enum):
    CANCELLED = "cancelled"


@dataclass(slots=True)
class _ProcessHandle:
    process: Process | None = None
    cancelled: bool = False
    pumps: list[asyncio.Task[None]] = field(default_factory=list)


class ProcessSupervisor:
    """Runs ab for one session at a time and supports forcible cancellation."""

    def __init__(
        self,
        executable: str = "ab",
        scratch_dir: str | None = None,
        heartbeat_interval: float = 1.0,
    ) -> None:
        self.executable = executable
        self.scratch_dir = scratch_dir
        self.heartbeat_interval = heartbeat_interval
        self._handles: dict[str, _ProcessHandle] = {}
        self._lock = threading.Lock()

    def is_running(self, session_id: str) -> bool:
        with self._lock:
            return session_id in self._handles

    def active_sessions(self) -> list[str]:
        with self._lock:
            return list(self._handles)

    async def run(
        self,
        config: TrialConfig,
        session_id: str,
        log_sink: LogSink,
    ) -> TrialResult | Outcome:
        validation = validate(config)
        if not validation.ok:
            raise ConfigValidationError(validation.errors)

        # registered before the spawn so a stop issued meanwhile is honoured
        handle = _ProcessHandle()
        with self._lock:
            if session_id in self._handles:
                raise SessionBusyError(f"Session {session_id} already has a running process")
            self._handles[session_id] = handle

        payload_file: str | None = None
        try:
            log_sink(LogLevel.INFO, "Preparing to run Apache Benchmark...")
            command = build_command(config, session_id, self.executable, self.scratch_dir)
            payload_file = command.payload_file
            log_sink(LogLevel.INFO, f"Command: {' '.join(redact_argv(command.argv))}")

            try:
                process = await asyncio.create_subprocess_exec(
                    *command.argv,
                    stdout=PIPE,
                    stderr=PIPE,
                    limit=STREAM_LIMIT,
                )
            except OSError as exc:
                if not handle.cancelled:
                    log_sink(LogLevel.ERROR, f"Error starting process: {exc}")
                raise SpawnError(f"Failed to launch {self.executable}: {exc}") from exc

            handle.process = process
            log.info("Started %s for session %s (pid %s)", self.executable, session_id, process.pid)
            if handle.cancelled:
                with contextlib.suppress(ProcessLookupError):
                    process.kill()
            else:
                log_sink(LogLevel.INFO, f"Apache Benchmark started (PID: {process.pid})")
                log_sink(
                    LogLevel.INFO,
                    f"Running {config.requests} requests with concurrency {config.concurrency}",
                )

            state = ParserState.for_verbosity(config.verbosity)
            stdout_lines: list[str] = []
            stderr_lines: list[str] = []
            handle.pumps = [
                asyncio.create_task(self._pump_stdout(process, handle, state, stdout_lines, log_sink)),
                asyncio.create_task(self._pump_stderr(process, handle, state, stderr_lines, log_sink)),
            ]
            heartbeat = asyncio.create_task(self._heartbeat(process, handle, log_sink))

            try:
                returncode = await process.wait()
                heartbeat.cancel()
                if handle.cancelled:
                    for pump in handle.pumps:
                        pump.cancel()
                await asyncio.gather(heartbeat, *handle.pumps, return_exceptions=True)
            except asyncio.CancelledError:
                handle.cancelled = True
                if process.returncode is None:
                    with contextlib.suppress(ProcessLookupError):
                        process.kill()
                for task in (heartbeat, *handle.pumps):
                    task.cancel()
                raise
        finally:
            self._release(session_id, handle)
            remove_payload(payload_file)

        if handle.cancelled:
            log.info("Session %s stopped by user", session_id)
            log_sink(LogLevel.INFO, "Test stopped by user")
            return Outcome.CANCELLED

        if returncode != 0:
            stderr_text = "".join(stderr_lines)
            log.warning("%s exited with code %s for session %s", self.executable, returncode, session_id)
            log_sink(LogLevel.ERROR, f"Apache Benchmark finished with code {returncode}: {stderr_text}")
            raise AbnormalExitError(returncode, stderr_text)

        result = aggregate("".join(stdout_lines))
        log_sink(LogLevel.INFO, f"Test completed: {result.requests_per_second:.2f} RPS")
        return result

    def stop(self, session_id: str) -> bool:
        with self._lock:
            handle = self._handles.get(session_id)
            if handle is None or (handle.process is not None and handle.process.returncode is not None):
                return False
            handle.cancelled = True
            del self._handles[session_id]
        if handle.process is None:
            log.info("Session %s stopped before its process was spawned", session_id)
            return True
        try:
            handle.process.kill()
        except ProcessLookupError:
            log.debug("Process for session %s already gone", session_id)
        for pump in handle.pumps:
            pump.cancel()
        log.info("Process forcibly stopped for session %s", session_id)
        return True

    async def stop_all(self) -> None:
        for session_id in self.active_sessions():
            self.stop(session_id)

    async def check_availability(self) -> bool:
        try:
            process = await asyncio.create_subprocess_exec(
                self.executable,
                "-V",
                stdout=PIPE,
                stderr=PIPE,
            )
        except OSError:
            return False
        await process.communicate()
        return process.returncode == 0

    def _release(self, session_id: str, handle: _ProcessHandle) -> None:
        with self._lock:
            if self._handles.get(session_id) is handle:
                del self._handles[session_id]

    async def _pump_stdout(
        self,
        process: Process,
        handle: _ProcessHandle,
        state: ParserState,
        lines: list[str],
        log_sink: LogSink,
    ) -> None:
        assert process.stdout is not None
        async for raw in process.stdout:
            if handle.cancelled:
                return
            line = raw.decode("utf-8", errors="replace").rstrip("\r\n")
            lines.append(f"{line}\n")
            event = classify_stdout(line, state)
            if event is not None:
                log_sink(event.level, event.message)

    async def _pump_stderr(
        self,
        process: Process,
        handle: _ProcessHandle,
        state: ParserState,
        lines: list[str],
        log_sink: LogSink,
    ) -> None:
        assert process.stderr is not None
        async for raw in process.stderr:
            if handle.cancelled:
                return
            line = raw.decode("utf-8", errors="replace")
            lines.append(line)
            event = classify_stderr(line, state)
            if event is not None:
                log_sink(event.level, event.message)

    async def _heartbeat(self, process: Process, handle: _ProcessHandle, log_sink: LogSink) -> None:
        while True:
            await asyncio.sleep(self.heartbeat_interval)
            if handle.cancelled or process.returncode is not None:
                return
            log_sink(LogLevel.INFO, "Test is running...")
