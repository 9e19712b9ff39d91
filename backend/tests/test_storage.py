import json
import os
from types import SimpleNamespace

import pytest

from sketchcoder.errors import HistoryError
from sketchcoder.models import CodeVersion, VersionHistory
from sketchcoder.storage import JsonFileBackend, MemoryBackend, build_backend
from sketchcoder.version_store import VersionStore


def _history(project_id: str = "p") -> VersionHistory:
    version = CodeVersion(source_text="const A = () => null;", label="Initial version",
                          component_name="A", sequence_number=1)
    return VersionHistory(project_id=project_id, versions=[version], current_version_id=version.id)


def test_memory_backend_returns_independent_copies() -> None:
    backend = MemoryBackend()
    backend.save(_history())

    loaded = backend.load("p")
    loaded.versions.clear()
    assert len(backend.load("p").versions) == 1

    backend.delete("p")
    assert backend.load("p") is None


def test_json_file_backend_round_trip(tmp_path) -> None:
    backend = JsonFileBackend(str(tmp_path / "histories"))
    original = _history("team/project one")
    backend.save(original)

    assert backend.load("team/project one") == original
    assert backend.load("missing") is None
    # no temp files left behind
    names = [p.name for p in (tmp_path / "histories").iterdir()]
    assert len(names) == 1
    assert names[0].startswith("team_project_one-")
    assert names[0].endswith(".json")

    backend.delete("team/project one")
    assert backend.load("team/project one") is None


def test_json_file_backend_keeps_similar_ids_apart(tmp_path) -> None:
    store = VersionStore(JsonFileBackend(str(tmp_path)))
    a = store.initialize("team/a", "const A = () => <p/>;", "A")
    b = store.initialize("team_a", "const B = () => <p/>;", "B")

    reopened = VersionStore(JsonFileBackend(str(tmp_path)))
    assert reopened.get_current_version("team/a").id == a.id
    assert reopened.get_current_version("team_a").id == b.id
    assert len(os.listdir(tmp_path)) == 2


def test_json_file_backend_rejects_foreign_record(tmp_path) -> None:
    backend = JsonFileBackend(str(tmp_path))
    backend.save(_history("alpha"))

    # a file whose contents claim another project
    path = backend._path("alpha")
    with open(path, encoding="utf-8") as f:
        data = json.load(f)
    data["project_id"] = "beta"
    with open(path, "w", encoding="utf-8") as f:
        json.dump(data, f)

    with pytest.raises(HistoryError):
        backend.load("alpha")


def test_build_backend(tmp_path) -> None:
    assert isinstance(build_backend(SimpleNamespace(history_backend="memory")), MemoryBackend)

    backend = build_backend(SimpleNamespace(history_backend="File", history_dir=str(tmp_path)))
    assert isinstance(backend, JsonFileBackend)

    with pytest.raises(ValueError):
        build_backend(SimpleNamespace(history_backend="redis"))


class _FakeQuery:
    def __init__(self, rows: dict, table: str):
        self.rows = rows
        self.table = table
        self.op = "select"
        self.payload = None
        self.filters = {}

    def select(self, columns):
        return self

    def eq(self, column, value):
        self.filters[column] = value
        return self

    def limit(self, n):
        return self

    def upsert(self, row, on_conflict=None):
        self.op, self.payload = "upsert", row
        return self

    def delete(self):
        self.op = "delete"
        return self

    def execute(self):
        if self.op == "upsert":
            self.rows[self.payload["project_id"]] = self.payload
            return SimpleNamespace(data=[self.payload])
        if self.op == "delete":
            self.rows.pop(self.filters["project_id"], None)
            return SimpleNamespace(data=[])
        row = self.rows.get(self.filters.get("project_id"))
        return SimpleNamespace(data=[row] if row else [])


class _FakeSupabase:
    def __init__(self):
        self.rows = {}
        self.tables = []

    def table(self, name):
        self.tables.append(name)
        return _FakeQuery(self.rows, name)


def test_supabase_backend_upserts_whole_record() -> None:
    from sketchcoder.database import SupabaseBackend

    client = _FakeSupabase()
    backend = SupabaseBackend(table="version_histories", client=client)
    history = _history("p1")

    assert backend.load("p1") is None
    backend.save(history)
    backend.save(history)
    assert len(client.rows) == 1
    assert isinstance(client.rows["p1"]["versions"][0]["created_at"], str)
    assert backend.load("p1") == history

    backend.delete("p1")
    assert backend.load("p1") is None
    assert set(client.tables) == {"version_histories"}
