"""
Version history store: append-only record of accepted component source per
project, with a movable "current" pointer, rollback and a positional diff.

Mutations build a new VersionHistory, persist it through the backend, and only
then replace the cached copy, so a failed save leaves the store unchanged.
Versions handed to callers are copies.

Single writer: call from the event loop thread only.
"""

import logging

from sketchcoder.errors import (
    HistoryExists,
    HistoryNotFound,
    LastVersionDeletionRejected,
    VersionNotFound,
)
from sketchcoder.models import CodeVersion, VersionDiff, VersionHistory
from sketchcoder.storage import HistoryBackend, MemoryBackend

logger = logging.getLogger(__name__)

INITIAL_LABEL = "Initial version"
DEFAULT_LABEL = "Updated code"


class VersionStore:
    def __init__(self, backend: HistoryBackend | None = None):
        self.backend = backend or MemoryBackend()
        self._histories: dict[str, VersionHistory] = {}

    # ── internals ────────────────────────────────────────────────────────

    def _load(self, project_id: str) -> VersionHistory | None:
        history = self._histories.get(project_id)
        if history is None:
            history = self.backend.load(project_id)
            if history is not None:
                self._histories[project_id] = history
        return history

    def _require(self, project_id: str) -> VersionHistory:
        history = self._load(project_id)
        if history is None or not history.versions:
            raise HistoryNotFound(project_id)
        return history

    def _commit(self, history: VersionHistory) -> None:
        self.backend.save(history)
        self._histories[history.project_id] = history

    @staticmethod
    def _find(history: VersionHistory, version_id: str) -> CodeVersion | None:
        return next((v for v in history.versions if v.id == version_id), None)

    # ── operations ───────────────────────────────────────────────────────

    def has_history(self, project_id: str) -> bool:
        history = self._load(project_id)
        return history is not None and bool(history.versions)

    def initialize(
        self,
        project_id: str,
        source_text: str,
        component_name: str,
        replace: bool = False,
    ) -> CodeVersion:
        """Create a history holding one version (sequence 1) and make it current.

        An existing non-empty history is never reset implicitly: pass
        replace=True or call clear_history() first.
        """
        if self.has_history(project_id) and not replace:
            raise HistoryExists(project_id)

        version = CodeVersion(
            source_text=source_text,
            label=INITIAL_LABEL,
            component_name=component_name,
            sequence_number=1,
        )
        history = VersionHistory(
            project_id=project_id,
            versions=[version],
            current_version_id=version.id,
        )
        self._commit(history)
        logger.info("[history] %s initialized (%s)", project_id, component_name)
        return version.model_copy()

    def add_version(
        self,
        project_id: str,
        source_text: str,
        label: str = DEFAULT_LABEL,
        component_name: str | None = None,
    ) -> CodeVersion:
        history = self._require(project_id)
        current = self._find(history, history.current_version_id) if history.current_version_id else None
        base = current or history.versions[-1]

        version = CodeVersion(
            source_text=source_text,
            label=label or DEFAULT_LABEL,
            component_name=component_name or base.component_name,
            sequence_number=max(v.sequence_number for v in history.versions) + 1,
            parent_id=base.id,
        )
        self._commit(history.model_copy(update={
            "versions": [*history.versions, version],
            "current_version_id": version.id,
        }))
        logger.info("[history] %s v%d added: %s", project_id, version.sequence_number, version.label)
        return version.model_copy()

    def get_versions(self, project_id: str) -> list[CodeVersion]:
        history = self._load(project_id)
        if history is None:
            return []
        return [v.model_copy() for v in history.versions]

    def get_version(self, project_id: str, version_id: str) -> CodeVersion:
        history = self._require(project_id)
        version = self._find(history, version_id)
        if version is None:
            raise VersionNotFound(project_id, version_id)
        return version.model_copy()

    def get_current_version(self, project_id: str) -> CodeVersion | None:
        history = self._load(project_id)
        if history is None or history.current_version_id is None:
            return None
        version = self._find(history, history.current_version_id)
        return version.model_copy() if version else None

    def get_latest_version(self, project_id: str) -> CodeVersion | None:
        history = self._load(project_id)
        if history is None or not history.versions:
            return None
        return max(history.versions, key=lambda v: v.sequence_number).model_copy()

    def get_version_count(self, project_id: str) -> int:
        history = self._load(project_id)
        return len(history.versions) if history else 0

    def get_version_tree(self, project_id: str) -> list[CodeVersion]:
        """Versions ordered by creation time (parent links give the tree)."""
        return sorted(self.get_versions(project_id), key=lambda v: (v.created_at, v.sequence_number))

    def rollback(self, project_id: str, version_id: str) -> CodeVersion | None:
        """Point `current` at an existing version. Nothing is created or deleted.

        Returns None when the project or version is unknown.
        """
        history = self._load(project_id)
        if history is None:
            return None
        target = self._find(history, version_id)
        if target is None:
            return None
        if history.current_version_id != version_id:
            self._commit(history.model_copy(update={"current_version_id": version_id}))
            logger.info("[history] %s rolled back to v%d", project_id, target.sequence_number)
        return target.model_copy()

    def delete_version(self, project_id: str, version_id: str) -> None:
        history = self._require(project_id)
        if self._find(history, version_id) is None:
            raise VersionNotFound(project_id, version_id)
        if len(history.versions) <= 1:
            raise LastVersionDeletionRejected(project_id)

        remaining = [v for v in history.versions if v.id != version_id]
        current_id = history.current_version_id
        if current_id == version_id:
            current_id = max(remaining, key=lambda v: v.sequence_number).id

        self._commit(history.model_copy(update={
            "versions": remaining,
            "current_version_id": current_id,
        }))
        logger.info("[history] %s deleted version %s", project_id, version_id)

    def update_label(self, project_id: str, version_id: str, label: str) -> CodeVersion:
        """Edit a version's label. Source text and numbering are immutable."""
        history = self._require(project_id)
        target = self._find(history, version_id)
        if target is None:
            raise VersionNotFound(project_id, version_id)

        updated = target.model_copy(update={"label": label})
        self._commit(history.model_copy(update={
            "versions": [updated if v.id == version_id else v for v in history.versions],
        }))
        return updated.model_copy()

    def compare(self, project_id: str, id_a: str, id_b: str) -> VersionDiff | None:
        """Positional line diff of two versions, or None if either is unknown.

        Line i of A is compared with line i of B; inserting a line near the top
        therefore reports every following line as modified. This is intended
        for quick human review, not a minimal edit script.
        """
        history = self._load(project_id)
        if history is None:
            return None
        a = self._find(history, id_a)
        b = self._find(history, id_b)
        if a is None or b is None:
            return None
        return positional_diff(a.source_text, b.source_text)

    def has_unsaved_changes(self, project_id: str, live_text: str) -> bool:
        current = self.get_current_version(project_id)
        return current is None or current.source_text != live_text

    def clear_history(self, project_id: str) -> None:
        """Drop every version. The project can be initialized again afterwards."""
        self._commit(VersionHistory(project_id=project_id))
        logger.info("[history] %s cleared", project_id)


def positional_diff(text_a: str, text_b: str) -> VersionDiff:
    lines_a = text_a.split("\n")
    lines_b = text_b.split("\n")
    diff = VersionDiff()

    for i in range(max(len(lines_a), len(lines_b))):
        line_a = lines_a[i] if i < len(lines_a) else ""
        line_b = lines_b[i] if i < len(lines_b) else ""

        if line_a == "" and line_b != "":
            diff.additions.append(f"+ {line_b}")
        elif line_a != "" and line_b == "":
            diff.deletions.append(f"- {line_a}")
        elif line_a != line_b:
            diff.modifications.append(f"~ {line_a} → {line_b}")

    return diff
