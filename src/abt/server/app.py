from __future__ import annotations

import asyncio
import contextlib
import json
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, AsyncIterator

from fastapi import Body, Depends, FastAPI, HTTPException, Request, WebSocket, WebSocketDisconnect, status
from fastapi.middleware.cors import CORSMiddleware

from abt.config import ServiceSettings, TrialConfig
from abt.runner.errors import ConfigValidationError, SessionNotFoundError, SessionStateError
from abt.sessions import MessageType, SessionController, StopOutcome, envelope
from abt.storage import TrialArchive

log = logging.getLogger(__name__)

VERSION = "0.1.0"
SESSION_NOT_FOUND_MSG = "Session not found"

_STOP_MESSAGES = {
    StopOutcome.ALREADY_TERMINAL: "Test already completed or stopped",
    StopOutcome.STOPPED: "Test stopped",
    StopOutcome.NOT_RUNNING: "Test not running",
}


def get_controller(request: Request) -> SessionController:
    return request.app.state.controller


def create_app(
    settings: ServiceSettings | None = None,
    controller: SessionController | None = None,
    archive: TrialArchive | None = None,
) -> FastAPI:
    settings = settings or ServiceSettings.from_env()
    controller = controller or SessionController.from_settings(settings, archive)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        if await controller.check_availability():
            log.info("Apache Benchmark available")
        else:
            log.warning("Apache Benchmark not found! Install the utility for the service.")
        janitor = asyncio.create_task(controller.run_janitor(settings.sweep_interval_sec))
        log.info("Automatic session cleanup configured (every %s seconds)", settings.sweep_interval_sec)
        try:
            yield
        finally:
            janitor.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await janitor
            await controller.shutdown()

    app = FastAPI(title="ApacheBench Trial Service", version=VERSION, lifespan=lifespan)
    app.state.controller = controller
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/api/health")
    async def health() -> dict[str, Any]:
        return {
            "status": "OK",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "version": VERSION,
        }

    @app.get("/api/status")
    async def availability(ctl: SessionController = Depends(get_controller)) -> dict[str, Any]:
        available = await ctl.check_availability()
        return {
            "available": available,
            "message": (
                "Apache Benchmark available"
                if available
                else "Apache Benchmark not found. Make sure the utility is installed."
            ),
        }

    @app.post("/api/validate-config")
    async def validate_config(
        payload: dict[str, Any] = Body(...),
        ctl: SessionController = Depends(get_controller),
    ) -> dict[str, Any]:
        result = ctl.validate(payload)
        return {"valid": result.ok, "errors": result.errors}

    @app.post("/api/sessions")
    async def create_session(
        payload: dict[str, Any] = Body(...),
        ctl: SessionController = Depends(get_controller),
    ) -> dict[str, Any]:
        try:
            config = TrialConfig.from_mapping(payload)
        except ConfigValidationError as exc:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail={"error": "Error creating session", "errors": ctl.validate(payload).errors},
            ) from exc
        session_id = ctl.create_session(config)
        return {"session_id": session_id, "message": "Session created successfully"}

    @app.get("/api/sessions")
    async def list_sessions(ctl: SessionController = Depends(get_controller)) -> list[dict[str, Any]]:
        return ctl.list_sessions()

    @app.get("/api/sessions/{session_id}")
    async def get_session(session_id: str, ctl: SessionController = Depends(get_controller)) -> dict[str, Any]:
        try:
            return ctl.get_session(session_id)
        except SessionNotFoundError as exc:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=SESSION_NOT_FOUND_MSG) from exc

    @app.post("/api/sessions/{session_id}/start")
    async def start_session(session_id: str, ctl: SessionController = Depends(get_controller)) -> dict[str, Any]:
        try:
            ctl.start_session(session_id)
        except SessionNotFoundError as exc:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=SESSION_NOT_FOUND_MSG) from exc
        except SessionStateError as exc:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
        return {"message": "Test started"}

    @app.post("/api/sessions/{session_id}/stop")
    async def stop_session(session_id: str, ctl: SessionController = Depends(get_controller)) -> dict[str, Any]:
        try:
            outcome = ctl.stop_session(session_id)
        except SessionNotFoundError as exc:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=SESSION_NOT_FOUND_MSG) from exc
        return {"message": _STOP_MESSAGES[outcome], "outcome": outcome.value}

    @app.delete("/api/sessions/{session_id}")
    async def delete_session(session_id: str, ctl: SessionController = Depends(get_controller)) -> dict[str, Any]:
        try:
            ctl.delete_session(session_id)
        except SessionNotFoundError as exc:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=SESSION_NOT_FOUND_MSG) from exc
        return {"message": "Session deleted"}

    @app.get("/api/sessions/{session_id}/logs")
    async def session_logs(session_id: str, ctl: SessionController = Depends(get_controller)) -> dict[str, Any]:
        try:
            return {"logs": ctl.get_logs(session_id)}
        except SessionNotFoundError as exc:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=SESSION_NOT_FOUND_MSG) from exc

    @app.websocket("/ws")
    async def subscriptions(websocket: WebSocket) -> None:
        await websocket.accept()
        broadcaster = controller.broadcaster
        await websocket.send_json(
            envelope(MessageType.CONNECTED, None, {"message": "WebSocket connection established"})
        )
        try:
            while True:
                raw = await websocket.receive_text()
                try:
                    message = json.loads(raw)
                except ValueError:
                    log.warning("Ignoring malformed WebSocket message: %.100s", raw)
                    continue
                if not isinstance(message, dict):
                    continue
                kind = message.get("type")
                session_id = message.get("session_id")
                if kind == "subscribe" and session_id:
                    broadcaster.subscribe(str(session_id), websocket)
                elif kind == "disconnect":
                    log.info(
                        "WebSocket client disconnected: %s, reason: %s",
                        session_id or "unknown session",
                        message.get("reason") or "unknown",
                    )
                    broadcaster.drop_connection(websocket)
                    await websocket.close(code=1000, reason="Client disconnected")
                    return
        except WebSocketDisconnect:
            log.info("WebSocket connection closed")
        finally:
            broadcaster.drop_connection(websocket)

    return app
