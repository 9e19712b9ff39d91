import io
import json

import pytest
from fastapi.testclient import TestClient
from PIL import Image

from sketchcoder import main
from sketchcoder.errors import HistoryError, NetworkError
from sketchcoder.inflight import InflightRegistry
from sketchcoder.models import GeneratedComponent, RenderFailure, RenderFailureKind, RenderResult, RenderStage, UIAnalysis
from sketchcoder.storage import MemoryBackend
from sketchcoder.version_store import VersionStore

FOO_NULL = "function Foo(){ return null }"
FOO_DIV = "function Foo(){ return <div/> }"


class FakeRenderer:
    def __init__(self):
        self.calls = []
        self.closed = False

    async def render(self, source_text, component_name, screenshot=False):
        self.calls.append((source_text, component_name))
        if not (source_text or "").strip():
            return RenderResult(
                ok=False,
                component_name=component_name,
                failure=RenderFailure(
                    kind=RenderFailureKind.empty_input, stage=RenderStage.preprocess, message="No code provided",
                ),
            )
        return RenderResult(ok=True, component_name=component_name, html="<div></div>")

    async def aclose(self):
        self.closed = True


@pytest.fixture
def renderer() -> FakeRenderer:
    return FakeRenderer()


@pytest.fixture
def client(renderer: FakeRenderer):
    main.app.state.store = VersionStore(MemoryBackend())
    main.app.state.renderer = renderer
    main.app.state.inflight = InflightRegistry()
    with TestClient(main.app) as c:
        yield c
    main.app.state.store = None
    main.app.state.renderer = None
    main.app.state.inflight = None


def _png() -> bytes:
    buf = io.BytesIO()
    Image.new("RGB", (40, 30), (255, 255, 255)).save(buf, format="PNG")
    return buf.getvalue()


def test_health(client: TestClient) -> None:
    assert client.get("/health").json() == {"status": "ok"}
    assert client.get("/").status_code == 200


def test_config_status(client: TestClient) -> None:
    body = client.get("/config/status").json()
    assert body["success"]
    assert set(body["data"]) >= {"configured", "analysis_model", "generation_model", "history_backend"}


def test_version_history_flow(client: TestClient) -> None:
    r = client.post("/projects/proj1/history", json={"source_text": FOO_NULL, "component_name": "Foo"})
    assert r.status_code == 200
    v1 = r.json()["data"]
    assert v1["sequence_number"] == 1

    r = client.post("/projects/proj1/versions", json={"source_text": FOO_DIV, "label": "edit"})
    v2 = r.json()["data"]
    assert v2["sequence_number"] == 2
    assert v2["parent_id"] == v1["id"]

    listing = client.get("/projects/proj1/versions").json()["data"]
    assert listing["count"] == 2
    assert listing["current_version_id"] == v2["id"]

    r = client.post(f"/projects/proj1/rollback/{v1['id']}", params={"render": "true"})
    data = r.json()["data"]
    assert data["version"]["id"] == v1["id"]
    assert data["render"]["ok"]

    current = client.get("/projects/proj1/versions/current").json()["data"]
    assert current["source_text"] == FOO_NULL


def test_reinitialize_is_rejected_without_replace(client: TestClient) -> None:
    client.post("/projects/p/history", json={"source_text": "a", "component_name": "Foo"})

    r = client.post("/projects/p/history", json={"source_text": "b", "component_name": "Foo"})
    assert r.status_code == 409
    body = r.json()
    assert body["success"] is False
    assert body["code"] == "history_exists"

    r = client.post("/projects/p/history", json={"source_text": "b", "component_name": "Foo", "replace": True})
    assert r.status_code == 200


def test_delete_last_version_is_rejected(client: TestClient) -> None:
    v1 = client.post("/projects/p/history", json={"source_text": "a", "component_name": "Foo"}).json()["data"]

    r = client.delete(f"/projects/p/versions/{v1['id']}")
    assert r.status_code == 409
    assert r.json()["code"] == "last_version"
    assert client.get("/projects/p/versions").json()["data"]["count"] == 1


def test_unknown_project_and_version(client: TestClient) -> None:
    r = client.post("/projects/ghost/versions", json={"source_text": "a"})
    assert r.status_code == 404
    assert r.json()["code"] == "history_not_found"

    client.post("/projects/p/history", json={"source_text": "a", "component_name": "Foo"})
    r = client.post("/projects/p/rollback/nope")
    assert r.status_code == 404
    assert r.json()["code"] == "version_not_found"


def test_label_compare_unsaved_and_export(client: TestClient) -> None:
    v1 = client.post("/projects/p/history", json={"source_text": "a\nb", "component_name": "Foo"}).json()["data"]
    v2 = client.post("/projects/p/versions", json={"source_text": "a\nb\nc"}).json()["data"]

    r = client.patch(f"/projects/p/versions/{v1['id']}", json={"label": "Baseline"})
    assert r.json()["data"]["label"] == "Baseline"

    diff = client.get("/projects/p/compare", params={"a": v1["id"], "b": v2["id"]}).json()["data"]
    assert diff == {"additions": ["+ c"], "deletions": [], "modifications": []}

    assert client.post("/projects/p/unsaved", json={"live_text": "a\nb\nc"}).json()["data"]["unsaved"] is False
    assert client.post("/projects/p/unsaved", json={"live_text": "changed"}).json()["data"]["unsaved"] is True

    r = client.get(f"/projects/p/versions/{v2['id']}/export")
    assert r.status_code == 200
    assert r.text == "a\nb\nc"
    assert 'filename="Foo.tsx"' in r.headers["content-disposition"]


def test_clear_history(client: TestClient) -> None:
    client.post("/projects/p/history", json={"source_text": "a", "component_name": "Foo"})
    assert client.delete("/projects/p/history").json()["success"]
    assert client.get("/projects/p/versions").json()["data"]["count"] == 0
    assert client.get("/projects/p/versions/current").json()["data"] is None


def test_render_returns_failure_as_data(client: TestClient, renderer: FakeRenderer) -> None:
    r = client.post("/render", json={"source_text": "", "component_name": "Foo"})
    assert r.status_code == 200
    result = r.json()["data"]
    assert result["ok"] is False
    assert result["failure"]["kind"] == "empty_input"
    assert renderer.calls == [("", "Foo")]


def test_validate(client: TestClient) -> None:
    r = client.post("/validate", json={"source_text": '<div class="x"></div>'})
    data = r.json()["data"]
    assert data["valid"] is False
    assert data["errors"][0]["type"] == "class_not_classname"


def test_generate_records_versions(client: TestClient, monkeypatch) -> None:
    async def fake_generate(analysis, name):
        return GeneratedComponent(source_text=f"export default function {name}() {{ return <div/> }}",
                                  component_name=name)

    monkeypatch.setattr(main, "generate_component", fake_generate)
    analysis = UIAnalysis().model_dump(by_alias=True)

    first = client.post("/generate", json={"analysis": analysis, "component_name": "login form", "project_id": "p"})
    body = first.json()["data"]
    assert body["component"]["component_name"] == "LoginForm"
    assert body["version"]["sequence_number"] == 1
    assert body["fallback"] is False

    second = client.post("/generate", json={"analysis": analysis, "component_name": "LoginForm", "project_id": "p"})
    assert second.json()["data"]["version"]["sequence_number"] == 2
    assert second.json()["data"]["version"]["label"] == "Generated from sketch"


def test_generate_failure_returns_fallback(client: TestClient, monkeypatch) -> None:
    async def failing_generate(analysis, name):
        raise NetworkError("generate: the model provider did not answer in time", timeout=True)

    monkeypatch.setattr(main, "generate_component", failing_generate)

    r = client.post("/generate", json={"analysis": {}, "component_name": "Hero", "project_id": "p"})
    assert r.status_code == 504
    body = r.json()
    assert body["success"] is False
    assert body["code"] == "timeout"
    assert body["data"]["fallback"] is True
    assert "function Hero()" in body["data"]["component"]["source_text"]
    # fallback code is never recorded
    assert client.get("/projects/p/versions").json()["data"]["count"] == 0


def test_analyze(client: TestClient, monkeypatch) -> None:
    async def fake_analyze(image, media_type):
        return UIAnalysis(extracted_text=["Hello"], confidence=0.9)

    monkeypatch.setattr(main, "analyze_sketch", fake_analyze)

    r = client.post("/analyze", files={"file": ("sketch.png", _png(), "image/png")})
    body = r.json()
    assert body["success"]
    assert body["data"]["analysis"]["extractedText"] == ["Hello"]


def test_analyze_rejects_bad_upload(client: TestClient) -> None:
    r = client.post("/analyze", files={"file": ("notes.txt", b"hello", "text/plain")})
    assert r.status_code == 400
    assert r.json()["code"] == "invalid_upload"


def test_analyze_failure_returns_fallback(client: TestClient, monkeypatch) -> None:
    async def failing_analyze(image, media_type):
        raise NetworkError("analyze: could not reach the model provider")

    monkeypatch.setattr(main, "analyze_sketch", failing_analyze)

    r = client.post("/analyze", files={"file": ("sketch.png", _png(), "image/png")})
    assert r.status_code == 502
    assert r.json()["data"]["fallback"] is True


def test_pipeline_stream(client: TestClient, renderer: FakeRenderer, monkeypatch) -> None:
    async def fake_analyze(image, media_type):
        return UIAnalysis()

    async def fake_generate(analysis, name):
        return GeneratedComponent(source_text=f"function {name}() {{ return <div/> }}", component_name=name)

    monkeypatch.setattr(main, "analyze_sketch", fake_analyze)
    monkeypatch.setattr(main, "generate_component", fake_generate)

    r = client.post(
        "/pipeline/stream",
        files={"file": ("sketch.png", _png(), "image/png")},
        data={"component_name": "Landing", "project_id": "p"},
    )
    assert r.status_code == 200
    events = [line[len("event: "):] for line in r.text.splitlines() if line.startswith("event: ")]
    assert events == ["status", "analysis", "status", "component", "version", "status", "render", "done"]
    assert renderer.calls[0][1] == "Landing"
    assert client.get("/projects/p/versions").json()["data"]["count"] == 1


def test_shutdown_closes_renderer(renderer: FakeRenderer) -> None:
    main.app.state.store = VersionStore(MemoryBackend())
    main.app.state.renderer = renderer
    main.app.state.inflight = InflightRegistry()
    with TestClient(main.app):
        pass
    assert renderer.closed
    main.app.state.store = None
    main.app.state.renderer = None
    main.app.state.inflight = None


def test_compare_unknown_version_is_not_found(client: TestClient) -> None:
    v1 = client.post("/projects/p/history", json={"source_text": "a", "component_name": "Foo"}).json()["data"]

    r = client.get("/projects/p/compare", params={"a": v1["id"], "b": "missing"})
    assert r.status_code == 404
    assert r.json()["code"] == "version_not_found"
    assert r.json()["details"]["version_id"] == "missing"


def test_upload_read_is_bounded(client: TestClient, monkeypatch) -> None:
    limited = main.get_settings().model_copy(update={"max_upload_bytes": 64})
    monkeypatch.setattr(main, "get_settings", lambda: limited)

    seen = []
    original = main.validate_upload

    def spy(data, *args):
        seen.append(len(data))
        return original(data, *args)

    monkeypatch.setattr(main, "validate_upload", spy)

    buf = io.BytesIO()
    Image.effect_noise((200, 200), 64).convert("RGB").save(buf, format="PNG")
    r = client.post("/analyze", files={"file": ("sketch.png", buf.getvalue(), "image/png")})

    assert r.status_code == 400
    assert r.json()["code"] == "invalid_upload"
    assert seen == [65]


class _UnsavableBackend(MemoryBackend):
    def __init__(self, error: Exception):
        super().__init__()
        self.error = error

    def save(self, history) -> None:
        raise self.error


def _stream_events(client: TestClient, monkeypatch) -> list[tuple[str, str]]:
    async def fake_analyze(image, media_type):
        return UIAnalysis()

    async def fake_generate(analysis, name):
        return GeneratedComponent(source_text=f"function {name}() {{ return <div/> }}", component_name=name)

    monkeypatch.setattr(main, "analyze_sketch", fake_analyze)
    monkeypatch.setattr(main, "generate_component", fake_generate)

    r = client.post(
        "/pipeline/stream",
        files={"file": ("sketch.png", _png(), "image/png")},
        data={"component_name": "Landing", "project_id": "p"},
    )
    assert r.status_code == 200
    events, current = [], None
    for line in r.text.splitlines():
        if line.startswith("event: "):
            current = line[len("event: "):]
        elif line.startswith("data: ") and current:
            events.append((current, line[len("data: "):]))
            current = None
    return events


@pytest.mark.parametrize("error, code", [
    (OSError("disk full"), "storage_error"),
    (HistoryError("history file is corrupt"), "history_error"),
])
def test_pipeline_stream_survives_record_failure(client: TestClient, renderer: FakeRenderer, monkeypatch,
                                                 error, code) -> None:
    main.app.state.store = VersionStore(_UnsavableBackend(error))

    events = _stream_events(client, monkeypatch)

    names = [name for name, _ in events]
    assert names == ["status", "analysis", "status", "component", "error", "status", "render", "done"]
    payload = json.loads(events[4][1])
    assert payload["stage"] == "record"
    assert payload["code"] == code
    assert renderer.calls[0][1] == "Landing"
