from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Mapping

import httpx

TERMINAL_STATUSES = ("completed", "stopped", "error")


class ApiError(RuntimeError):
    def __init__(self, status_code: int, detail: Any) -> None:
        self.status_code = status_code
        self.detail = detail
        super().__init__(f"HTTP {status_code}: {detail}")


@dataclass(slots=True)
class ApiClient:
    """Thin async client for a running ``abt serve`` instance."""

    client: httpx.AsyncClient

    async def validate(self, config: Mapping[str, Any]) -> dict[str, Any]:
        return await self._request("POST", "/api/validate-config", json=dict(config))

    async def create_session(self, config: Mapping[str, Any]) -> str:
        data = await self._request("POST", "/api/sessions", json=dict(config))
        return data["session_id"]

    async def start_session(self, session_id: str) -> None:
        await self._request("POST", f"/api/sessions/{session_id}/start")

    async def stop_session(self, session_id: str) -> str:
        data = await self._request("POST", f"/api/sessions/{session_id}/stop")
        return data["outcome"]

    async def delete_session(self, session_id: str) -> None:
        await self._request("DELETE", f"/api/sessions/{session_id}")

    async def get_session(self, session_id: str) -> dict[str, Any]:
        return await self._request("GET", f"/api/sessions/{session_id}")

    async def list_sessions(self) -> list[dict[str, Any]]:
        return await self._request("GET", "/api/sessions")

    async def wait_for_completion(self, session_id: str, poll_sec: float = 1.0) -> dict[str, Any]:
        while True:
            session = await self.get_session(session_id)
            if session["status"] in TERMINAL_STATUSES:
                return session
            await asyncio.sleep(poll_sec)

    async def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        resp = await self.client.request(method, path, **kwargs)
        if resp.is_error:
            try:
                body = resp.json()
            except ValueError:
                body = resp.text
            detail = body.get("detail") if isinstance(body, dict) else body
            raise ApiError(resp.status_code, detail)
        return resp.json()
