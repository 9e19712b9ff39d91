from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI, File, Form, Request, UploadFile
from fastapi.encoders import jsonable_encoder
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response, StreamingResponse
from pydantic import BaseModel, Field

from sketchcoder.analyzer import analyze_sketch, fallback_analysis
from sketchcoder.code_validator import validate_source
from sketchcoder.config import get_settings
from sketchcoder.errors import HistoryError, InvalidUpload, RequestSuperseded, SketchcoderError, VersionNotFound
from sketchcoder.generator import fallback_component, generate_component, to_component_name
from sketchcoder.image_utils import validate_upload
from sketchcoder.inflight import InflightRegistry
from sketchcoder.llm import is_configured
from sketchcoder.logging_utils import configure_logging
from sketchcoder.models import GeneratedComponent, UIAnalysis
from sketchcoder.renderer import SandboxedRenderer
from sketchcoder.sse_utils import sse_event
from sketchcoder.storage import build_backend
from sketchcoder.version_store import VersionStore

logger = logging.getLogger("sketchcoder.api")

GENERATED_LABEL = "Generated from sketch"


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    configure_logging(settings.log_level, settings.log_suppress_patterns)

    # Pre-set services (tests) are kept as they are
    if getattr(app.state, "store", None) is None:
        app.state.store = VersionStore(build_backend(settings))
    if getattr(app.state, "renderer", None) is None:
        app.state.renderer = SandboxedRenderer()
    if getattr(app.state, "inflight", None) is None:
        app.state.inflight = InflightRegistry()
    logger.info("[startup] history backend=%s transpiler=%s", settings.history_backend, settings.transpiler)

    yield

    try:
        await app.state.renderer.aclose()
    except Exception as e:
        logger.warning("[shutdown] failed to close renderer: %s", e)


app = FastAPI(title="Sketchcoder API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ---------------------------------------------------------------------------
# Envelope + error handling
# ---------------------------------------------------------------------------

def ok(data) -> dict:
    return {"success": True, "data": jsonable_encoder(data)}


def failed(exc: SketchcoderError, data=None) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "data": jsonable_encoder(data), **exc.to_dict()},
    )


@app.exception_handler(SketchcoderError)
async def sketchcoder_error_handler(request: Request, exc: SketchcoderError):
    if isinstance(exc, HistoryError) and get_settings().debug:
        logger.error("[history] %s %s: %s", request.method, request.url.path, exc.message, exc_info=exc)
    else:
        logger.warning("[%s] %s %s: %s", exc.code, request.method, request.url.path, exc.message)
    return failed(exc)


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.error("[error] %s %s failed", request.method, request.url.path, exc_info=exc)
    return JSONResponse(
        status_code=500,
        content={"success": False, "data": None, "code": "internal_error", "error": str(exc), "details": {}},
    )


# ---------------------------------------------------------------------------
# Models
# ---------------------------------------------------------------------------

class GenerateRequest(BaseModel):
    analysis: UIAnalysis
    component_name: str = "GeneratedComponent"
    project_id: str | None = None
    label: str | None = None


class RenderRequest(BaseModel):
    source_text: str = ""
    component_name: str
    screenshot: bool = False


class ValidateRequest(BaseModel):
    source_text: str
    filename: str = "Component.tsx"


class InitializeRequest(BaseModel):
    source_text: str
    component_name: str
    replace: bool = False


class AddVersionRequest(BaseModel):
    source_text: str
    label: str | None = None
    component_name: str | None = None


class LabelRequest(BaseModel):
    label: str = Field(..., min_length=1)


class UnsavedRequest(BaseModel):
    live_text: str


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

async def _analyze(request: Request, image: bytes, media_type: str, project_id: str | None) -> UIAnalysis:
    if project_id:
        return await request.app.state.inflight.run(project_id, "analyze", analyze_sketch(image, media_type))
    return await analyze_sketch(image, media_type)


async def _generate(request: Request, analysis: UIAnalysis, name: str, project_id: str | None) -> GeneratedComponent:
    if project_id:
        return await request.app.state.inflight.run(project_id, "generate", generate_component(analysis, name))
    return await generate_component(analysis, name)


def _record(store: VersionStore, project_id: str, component: GeneratedComponent, label: str | None):
    """Accepted code becomes a version: the first one initializes the history."""
    if store.has_history(project_id):
        return store.add_version(
            project_id,
            component.source_text,
            label=label or GENERATED_LABEL,
            component_name=component.component_name,
        )
    return store.initialize(project_id, component.source_text, component.component_name)


async def _read_upload(file: UploadFile) -> bytes:
    settings = get_settings()
    # at most limit + 1 bytes; anything longer is rejected either way
    data = await file.read(settings.max_upload_bytes + 1)
    validate_upload(data, file.content_type, settings.max_upload_bytes, settings.allowed_image_types)
    return data


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------

@app.get("/")
def root():
    return {"message": "Sketchcoder backend is running"}


@app.get("/health")
async def health():
    return {"status": "ok"}


@app.get("/config/status")
async def config_status():
    settings = get_settings()
    return ok({
        "configured": is_configured(),
        "analysis_model": settings.analysis_model,
        "generation_model": settings.generation_model,
        "history_backend": settings.history_backend,
        "transpiler": settings.transpiler,
    })


@app.post("/analyze")
async def analyze_endpoint(
    request: Request,
    file: UploadFile = File(...),
    project_id: str | None = Form(None),
):
    """Detect UI elements in an uploaded sketch."""
    image = await _read_upload(file)
    try:
        analysis = await _analyze(request, image, file.content_type, project_id)
    except (InvalidUpload, RequestSuperseded):
        raise
    except SketchcoderError as e:
        logger.warning("[analyze] failed, returning fallback analysis: %s", e.message)
        return failed(e, data={"analysis": fallback_analysis(), "fallback": True})
    return ok({"analysis": analysis, "fallback": False})


@app.post("/generate")
async def generate_endpoint(request: Request, body: GenerateRequest):
    """Generate a component; with a project_id the result is recorded as a version."""
    name = to_component_name(body.component_name)
    try:
        component = await _generate(request, body.analysis, name, body.project_id)
    except RequestSuperseded:
        raise
    except SketchcoderError as e:
        logger.warning("[generate] failed, returning fallback component: %s", e.message)
        fallback = GeneratedComponent(source_text=fallback_component(name), component_name=name)
        return failed(e, data={"component": fallback, "version": None, "fallback": True})

    version = None
    if body.project_id:
        version = _record(request.app.state.store, body.project_id, component, body.label)
    return ok({"component": component, "version": version, "fallback": False})


@app.post("/pipeline/stream")
async def pipeline_stream(
    request: Request,
    file: UploadFile = File(...),
    component_name: str = Form("GeneratedComponent"),
    project_id: str | None = Form(None),
    screenshot: bool = Form(False),
):
    """Sketch -> analysis -> component -> version -> preview, streamed as SSE."""
    image = await _read_upload(file)
    media_type = file.content_type
    name = to_component_name(component_name)
    store: VersionStore = request.app.state.store
    renderer: SandboxedRenderer = request.app.state.renderer

    async def event_stream():
        yield sse_event("status", {"stage": "analyze", "message": "Analyzing sketch..."})
        try:
            analysis = await _analyze(request, image, media_type, project_id)
        except SketchcoderError as e:
            yield sse_event("error", {"stage": "analyze", **e.to_dict()})
            if not isinstance(e, RequestSuperseded):
                yield sse_event("analysis", {"analysis": fallback_analysis(), "fallback": True})
            yield sse_event("done", {"ok": False})
            return
        yield sse_event("analysis", {"analysis": analysis, "fallback": False})

        yield sse_event("status", {"stage": "generate", "message": f"Generating {name}..."})
        try:
            component = await _generate(request, analysis, name, project_id)
        except SketchcoderError as e:
            yield sse_event("error", {"stage": "generate", **e.to_dict()})
            if not isinstance(e, RequestSuperseded):
                fallback = GeneratedComponent(source_text=fallback_component(name), component_name=name)
                yield sse_event("component", {"component": fallback, "fallback": True})
            yield sse_event("done", {"ok": False})
            return
        yield sse_event("component", {"component": component, "fallback": False})

        if project_id:
            try:
                version = _record(store, project_id, component, None)
            except SketchcoderError as e:
                yield sse_event("error", {"stage": "record", **e.to_dict()})
            except Exception as e:
                logger.error("[pipeline] %s: could not record version", project_id, exc_info=e)
                yield sse_event("error", {
                    "stage": "record", "code": "storage_error", "error": str(e) or e.__class__.__name__, "details": {},
                })
            else:
                yield sse_event("version", {"version": version})

        yield sse_event("status", {"stage": "render", "message": "Rendering preview..."})
        result = await renderer.render(component.source_text, component.component_name, screenshot=screenshot)
        yield sse_event("render", {"result": result})
        yield sse_event("done", {"ok": result.ok})

    return StreamingResponse(
        event_stream(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )


@app.post("/render")
async def render_endpoint(request: Request, body: RenderRequest):
    """Preview a component. Render failures are reported in the result, not as errors."""
    result = await request.app.state.renderer.render(body.source_text, body.component_name, screenshot=body.screenshot)
    return ok(result)


@app.post("/validate")
async def validate_endpoint(body: ValidateRequest):
    return ok(validate_source(body.source_text, body.filename))


# ---------------------------------------------------------------------------
# Version history
# ---------------------------------------------------------------------------

@app.post("/projects/{project_id}/history")
async def initialize_history(request: Request, project_id: str, body: InitializeRequest):
    version = request.app.state.store.initialize(
        project_id, body.source_text, body.component_name, replace=body.replace,
    )
    return ok(version)


@app.delete("/projects/{project_id}/history")
async def clear_history(request: Request, project_id: str):
    request.app.state.store.clear_history(project_id)
    return ok({"project_id": project_id, "cleared": True})


@app.get("/projects/{project_id}/versions")
async def list_versions(request: Request, project_id: str, order: str = "sequence"):
    store: VersionStore = request.app.state.store
    versions = store.get_version_tree(project_id) if order == "tree" else store.get_versions(project_id)
    current = store.get_current_version(project_id)
    return ok({
        "versions": versions,
        "current_version_id": current.id if current else None,
        "count": len(versions),
    })


@app.get("/projects/{project_id}/versions/current")
async def current_version(request: Request, project_id: str):
    return ok(request.app.state.store.get_current_version(project_id))


@app.post("/projects/{project_id}/versions")
async def add_version(request: Request, project_id: str, body: AddVersionRequest):
    store: VersionStore = request.app.state.store
    version = store.add_version(
        project_id, body.source_text, label=body.label or "", component_name=body.component_name,
    )
    return ok(version)


@app.patch("/projects/{project_id}/versions/{version_id}")
async def update_label(request: Request, project_id: str, version_id: str, body: LabelRequest):
    return ok(request.app.state.store.update_label(project_id, version_id, body.label))


@app.delete("/projects/{project_id}/versions/{version_id}")
async def delete_version(request: Request, project_id: str, version_id: str):
    store: VersionStore = request.app.state.store
    store.delete_version(project_id, version_id)
    current = store.get_current_version(project_id)
    return ok({"deleted": version_id, "current_version_id": current.id if current else None})


@app.post("/projects/{project_id}/rollback/{version_id}")
async def rollback(request: Request, project_id: str, version_id: str, render: bool = False):
    """Move the current pointer; with ?render=true the restored code is previewed too."""
    version = request.app.state.store.rollback(project_id, version_id)
    if version is None:
        raise VersionNotFound(project_id, version_id)

    result = None
    if render:
        result = await request.app.state.renderer.render(version.source_text, version.component_name)
    return ok({"version": version, "render": result})


@app.get("/projects/{project_id}/compare")
async def compare_versions(request: Request, project_id: str, a: str, b: str):
    store: VersionStore = request.app.state.store
    diff = store.compare(project_id, a, b)
    if diff is None:
        known = {v.id for v in store.get_versions(project_id)}
        raise VersionNotFound(project_id, a if a not in known else b)
    return ok(diff)


@app.post("/projects/{project_id}/unsaved")
async def unsaved_changes(request: Request, project_id: str, body: UnsavedRequest):
    return ok({"unsaved": request.app.state.store.has_unsaved_changes(project_id, body.live_text)})


@app.get("/projects/{project_id}/versions/{version_id}/export")
async def export_version(request: Request, project_id: str, version_id: str):
    """Download one version as `<ComponentName>.tsx`."""
    version = request.app.state.store.get_version(project_id, version_id)
    return Response(
        content=version.source_text,
        media_type="text/plain; charset=utf-8",
        headers={"Content-Disposition": f'attachment; filename="{version.component_name}.tsx"'},
    )
