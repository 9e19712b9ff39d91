"""
Pydantic models shared by the collaborators, the renderer, the version
store and the HTTP layer.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, Field


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Sketch analysis
# ---------------------------------------------------------------------------

class ElementType(str, Enum):
    button = "button"
    input = "input"
    card = "card"
    navbar = "navbar"
    modal = "modal"
    text = "text"
    image = "image"
    container = "container"
    list = "list"


class Bounds(BaseModel):
    x: float = 0
    y: float = 0
    width: float = 0
    height: float = 0


class DetectedElement(BaseModel):
    type: ElementType
    confidence: float = Field(0.5, ge=0, le=1)
    bounds: Bounds = Field(default_factory=Bounds)
    text: str | None = None
    properties: dict[str, Any] | None = None


class UIAnalysis(BaseModel):
    detected_elements: list[DetectedElement] = Field(default_factory=list, alias="detectedElements")
    extracted_text: list[str] = Field(default_factory=list, alias="extractedText")
    suggestions: list[str] = Field(default_factory=list)
    confidence: float = Field(0.0, ge=0, le=1)

    model_config = {"populate_by_name": True}


class GeneratedComponent(BaseModel):
    source_text: str
    component_name: str
    dependencies: list[str] = Field(default_factory=list)
    generated_at: datetime = Field(default_factory=_utcnow)


# ---------------------------------------------------------------------------
# Version history
# ---------------------------------------------------------------------------

class CodeVersion(BaseModel):
    id: str = Field(default_factory=lambda: uuid4().hex)
    source_text: str
    created_at: datetime = Field(default_factory=_utcnow)
    label: str
    component_name: str
    sequence_number: int = Field(..., ge=1)
    parent_id: str | None = None


class VersionHistory(BaseModel):
    project_id: str
    versions: list[CodeVersion] = Field(default_factory=list)
    current_version_id: str | None = None


class VersionDiff(BaseModel):
    """Positional line diff: line i of A against line i of B (not LCS)."""

    additions: list[str] = Field(default_factory=list)
    deletions: list[str] = Field(default_factory=list)
    modifications: list[str] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Rendering
# ---------------------------------------------------------------------------

class RenderStage(str, Enum):
    preprocess = "preprocess"
    transpile = "transpile"
    instantiate = "instantiate"
    render = "render"


class RenderFailureKind(str, Enum):
    empty_input = "empty_input"
    structural_invalid = "structural_invalid"
    transpile_error = "transpile_error"
    resolution_error = "resolution_error"
    runtime_error = "runtime_error"


class RenderFailure(BaseModel):
    kind: RenderFailureKind
    stage: RenderStage
    message: str


class RenderResult(BaseModel):
    ok: bool
    component_name: str
    html: str | None = None
    screenshot_b64: str | None = None
    failure: RenderFailure | None = None
    duration_ms: float = 0.0
    cached: bool = False
