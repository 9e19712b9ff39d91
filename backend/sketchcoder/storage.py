"""
Durable storage for version histories.

Every mutating VersionStore call hands the full history to `save()`; backends
must either persist the whole record or nothing.
"""

import hashlib
import json
import logging
import os
import re
import tempfile
from typing import Protocol

from sketchcoder.errors import HistoryError
from sketchcoder.models import VersionHistory

logger = logging.getLogger(__name__)


class HistoryBackend(Protocol):
    def load(self, project_id: str) -> VersionHistory | None: ...

    def save(self, history: VersionHistory) -> None: ...

    def delete(self, project_id: str) -> None: ...


class MemoryBackend:
    """Process-local backend. Stores serialized copies so callers can't alias state."""

    def __init__(self):
        self._records: dict[str, str] = {}

    def load(self, project_id: str) -> VersionHistory | None:
        raw = self._records.get(project_id)
        if raw is None:
            return None
        return VersionHistory.model_validate_json(raw)

    def save(self, history: VersionHistory) -> None:
        self._records[history.project_id] = history.model_dump_json()

    def delete(self, project_id: str) -> None:
        self._records.pop(project_id, None)


_SAFE_NAME = re.compile(r"[^A-Za-z0-9_.-]")


class JsonFileBackend:
    """One JSON file per project, replaced atomically on every save."""

    def __init__(self, directory: str):
        self.directory = os.path.abspath(directory)
        os.makedirs(self.directory, exist_ok=True)

    def _path(self, project_id: str) -> str:
        # readable prefix + sha256 of the full id
        prefix = _SAFE_NAME.sub("_", project_id)[:40] or "_"
        digest = hashlib.sha256(project_id.encode("utf-8")).hexdigest()
        return os.path.join(self.directory, f"{prefix}-{digest}.json")

    def load(self, project_id: str) -> VersionHistory | None:
        path = self._path(project_id)
        if not os.path.exists(path):
            return None
        with open(path, "r", encoding="utf-8") as f:
            history = VersionHistory.model_validate(json.load(f))
        if history.project_id != project_id:
            raise HistoryError(
                f"History file {os.path.basename(path)} belongs to project '{history.project_id}'",
                {"project_id": project_id, "stored_project_id": history.project_id},
            )
        return history

    def save(self, history: VersionHistory) -> None:
        path = self._path(history.project_id)
        fd, tmp_path = tempfile.mkstemp(prefix=".history-", suffix=".json", dir=self.directory)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(history.model_dump_json(indent=2))
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise
        logger.debug("[history] saved %s (%d versions)", path, len(history.versions))

    def delete(self, project_id: str) -> None:
        path = self._path(project_id)
        if os.path.exists(path):
            os.unlink(path)


def build_backend(settings) -> HistoryBackend:
    """Pick the backend named by `settings.history_backend`."""
    kind = settings.history_backend.lower()
    if kind == "memory":
        return MemoryBackend()
    if kind == "file":
        return JsonFileBackend(settings.history_dir)
    if kind == "supabase":
        from sketchcoder.database import SupabaseBackend
        return SupabaseBackend(table=settings.supabase_table)
    raise ValueError(f"Unknown history_backend '{settings.history_backend}'")
