from __future__ import annotations

from pathlib import Path

from abt.config import ServiceSettings
from abt.storage.duckdb_store import ArchiveError, TrialArchive


def default_archive(settings: ServiceSettings | None = None) -> TrialArchive:
    settings = settings or ServiceSettings()
    return TrialArchive(Path(settings.archive_path))


__all__ = ["ArchiveError", "TrialArchive", "default_archive"]
