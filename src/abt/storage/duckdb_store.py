from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import duckdb
import pandas as pd

from abt.runner.errors import AbtError


class ArchiveError(AbtError):
    pass


def _naive_utc(value: datetime) -> datetime:
    # TIMESTAMP columns hold UTC wall time
    return value.astimezone(timezone.utc).replace(tzinfo=None)


@dataclass(slots=True)
class TrialArchive:
    db_path: Path

    def __post_init__(self) -> None:
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_schema()

    def _connect(self) -> duckdb.DuckDBPyConnection:
        return duckdb.connect(str(self.db_path))

    def _init_schema(self) -> None:
        with self._connect() as con:
            con.execute(
                """
                CREATE TABLE IF NOT EXISTS trial_meta (
                    session_id TEXT PRIMARY KEY,
                    created_at TIMESTAMP,
                    finished_at TIMESTAMP,
                    status TEXT,
                    url TEXT,
                    requests_per_second DOUBLE,
                    config_json TEXT,
                    result_json TEXT
                );
                """
            )
            con.execute(
                """
                CREATE TABLE IF NOT EXISTS status_codes (
                    session_id TEXT,
                    status_code TEXT,
                    count INTEGER
                );
                """
            )

    def trial_exists(self, session_id: str) -> bool:
        with self._connect() as con:
            result = con.execute(
                "SELECT COUNT(*) FROM trial_meta WHERE session_id = ?",
                [session_id],
            ).fetchone()
            return bool(result and result[0] > 0)

    def save_trial(self, session: Any) -> None:
        """Persist a finished session; saving the same id again replaces it."""
        result = session.result
        finished_at = _naive_utc(session.end_time or datetime.now(timezone.utc))
        config_json = json.dumps(session.config.to_metadata())
        result_json = json.dumps(result.to_dict()) if result else None
        rps = result.requests_per_second if result else None
        try:
            with self._connect() as con:
                con.execute("DELETE FROM trial_meta WHERE session_id = ?", [session.id])
                con.execute("DELETE FROM status_codes WHERE session_id = ?", [session.id])
                con.execute(
                    "INSERT INTO trial_meta VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
                    [
                        session.id,
                        _naive_utc(session.start_time),
                        finished_at,
                        session.status.value,
                        session.config.url,
                        rps,
                        config_json,
                        result_json,
                    ],
                )
                codes_df = pd.DataFrame(
                    [
                        {"session_id": session.id, "status_code": code, "count": count}
                        for code, count in ((result.status_codes or {}) if result else {}).items()
                    ]
                )
                if not codes_df.empty:
                    con.execute("INSERT INTO status_codes SELECT * FROM codes_df")
        except duckdb.Error as exc:
            raise ArchiveError(f"Failed to archive session {session.id}: {exc}") from exc

    def list_trials(self) -> pd.DataFrame:
        with self._connect() as con:
            return con.execute(
                "SELECT session_id, created_at, finished_at, status, url, requests_per_second "
                "FROM trial_meta ORDER BY created_at DESC"
            ).fetchdf()

    def load_trial(self, session_id: str) -> dict[str, Any] | None:
        with self._connect() as con:
            row = con.execute(
                "SELECT status, config_json, result_json FROM trial_meta WHERE session_id = ?",
                [session_id],
            ).fetchone()
            if not row:
                return None
            return {
                "session_id": session_id,
                "status": row[0],
                "config": json.loads(row[1]),
                "result": json.loads(row[2]) if row[2] else None,
            }

    def load_status_codes(self, session_id: str) -> pd.DataFrame:
        with self._connect() as con:
            return con.execute(
                "SELECT status_code, count FROM status_codes WHERE session_id = ? ORDER BY status_code",
                [session_id],
            ).fetchdf()
