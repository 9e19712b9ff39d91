"""
Sandboxed renderer: untrusted component source in, RenderResult out.

Pipeline:
  [1] empty check                 -> empty_input
  [2] strip imports/exports       (the sandbox supplies React bindings itself)
  [3] structural check            -> structural_invalid   (transpiler not called)
  [4] transpile (Babel/esbuild)   -> transpile_error
  [5] resolve component name      -> resolution_error
  [6] instantiate + render        -> runtime_error        (in the browser sandbox)

render() never raises. Results are memoized per (source_text, component_name).
Transpile and render run one at a time; a very large component blocks later
previews until it finishes or hits render_timeout.
"""

import hashlib
import logging
import re
import time
from collections import OrderedDict

from sketchcoder.boundary import FailureBoundary, RenderStageError
from sketchcoder.config import get_settings
from sketchcoder.models import RenderFailureKind, RenderResult, RenderStage
from sketchcoder.sandbox import PreviewSandbox, SandboxTimeout, SandboxUnavailable
from sketchcoder.transpiler import TranspileFailed, Transpiler, build_transpiler

logger = logging.getLogger(__name__)

_IDENTIFIER = re.compile(r"^[A-Za-z_$][\w$]*$")

_USE_DIRECTIVE = re.compile(r"^\s*['\"]use (client|server|strict)['\"]\s*;?[ \t]*$", re.MULTILINE)
_IMPORT = re.compile(
    r"^\s*import\s+(?:type\s+)?(?:[^'\";]*?\s+from\s+)?['\"][^'\"]+['\"]\s*;?[ \t]*$",
    re.MULTILINE,
)
_EXPORT_LIST = re.compile(
    r"^\s*export\s+(?:type\s+)?\{[^}]*\}\s*(?:from\s+['\"][^'\"]+['\"])?\s*;?[ \t]*$",
    re.MULTILINE,
)
_EXPORT_STAR = re.compile(r"^\s*export\s+\*.*$", re.MULTILINE)
_EXPORT_DEFAULT_IDENT = re.compile(r"^\s*export\s+default\s+([A-Za-z_$][\w$]*)\s*;?[ \t]*$", re.MULTILINE)
_EXPORT_DEFAULT_ANON_FN = re.compile(r"^(\s*)export\s+default\s+(async\s+)?function\s*(\*?)\s*\(", re.MULTILINE)
_EXPORT_DEFAULT_ANON_CLASS = re.compile(r"^(\s*)export\s+default\s+class\s*(extends\b|\{)", re.MULTILINE)
_EXPORT_DEFAULT_EXPR = re.compile(r"^(\s*)export\s+default\s+(?!function\b|class\b|async\s+function\b)", re.MULTILINE)
_EXPORT_KEYWORD = re.compile(r"^(\s*)export\s+(default\s+)?", re.MULTILINE)

_DECLARATION = re.compile(
    r"\b(?:function\s*\*?\s*[A-Za-z_$]|class\s+[A-Za-z_$]|(?:const|let|var)\s+[A-Za-z_$][\w$]*\s*[=:])"
)
_ARROW = re.compile(r"=>")
_DECLARED_NAME = re.compile(
    r"\b(?:function\s*\*?\s*([A-Za-z_$][\w$]*)|class\s+([A-Za-z_$][\w$]*)"
    r"|(?:const|let|var)\s+([A-Za-z_$][\w$]*)\s*[=:])"
)


def strip_module_syntax(source_text: str, component_name: str) -> str:
    """Remove import/export syntax so the code can run outside a module loader.

    Anonymous default exports are bound to `component_name`; a bare
    `export default Name;` line is dropped since Name is declared elsewhere.
    """
    text = _USE_DIRECTIVE.sub("", source_text)
    text = _IMPORT.sub("", text)
    text = _EXPORT_LIST.sub("", text)
    text = _EXPORT_STAR.sub("", text)
    text = _EXPORT_DEFAULT_IDENT.sub("", text)
    text = _EXPORT_DEFAULT_ANON_FN.sub(
        lambda m: f"{m.group(1)}{m.group(2) or ''}function{m.group(3)} {component_name}(", text
    )
    text = _EXPORT_DEFAULT_ANON_CLASS.sub(lambda m: f"{m.group(1)}class {component_name} {m.group(2)}", text)
    text = _EXPORT_DEFAULT_EXPR.sub(lambda m: f"{m.group(1)}const {component_name} = ", text)
    text = _EXPORT_KEYWORD.sub(lambda m: m.group(1), text)
    return text.strip()


def has_component_shape(text: str) -> bool:
    """True when the text declares something a component could be."""
    return bool(_DECLARATION.search(text) or _ARROW.search(text))


def declared_names(text: str) -> set[str]:
    """Names introduced by function/class/const/let/var declarations.

    Nesting is not tracked, so this over-approximates the top-level scope;
    the sandbox performs the authoritative lookup after evaluation.
    """
    names = set()
    for m in _DECLARED_NAME.finditer(text):
        names.add(next(g for g in m.groups() if g))
    return names


def cache_key(source_text: str, component_name: str) -> str:
    h = hashlib.sha256()
    h.update(component_name.encode("utf-8"))
    h.update(b"\x00")
    h.update(source_text.encode("utf-8"))
    return h.hexdigest()


class SandboxedRenderer:
    def __init__(
        self,
        sandbox: PreviewSandbox | None = None,
        transpiler: Transpiler | None = None,
        cache_size: int | None = None,
        max_source_chars: int | None = None,
    ):
        settings = get_settings()
        self.sandbox = sandbox or PreviewSandbox(settings)
        self.transpiler = transpiler or build_transpiler(settings, self.sandbox)
        self.cache_size = settings.render_cache_size if cache_size is None else cache_size
        self.max_source_chars = max_source_chars or settings.max_source_chars
        self._cache: OrderedDict[str, RenderResult] = OrderedDict()

    def clear_cache(self):
        self._cache.clear()

    async def aclose(self):
        self.clear_cache()
        await self.sandbox.close()

    def _remember(self, key: str, result: RenderResult):
        if self.cache_size <= 0:
            return
        self._cache[key] = result
        self._cache.move_to_end(key)
        while len(self._cache) > self.cache_size:
            self._cache.popitem(last=False)

    async def render(self, source_text: str | None, component_name: str, screenshot: bool = False) -> RenderResult:
        source_text = source_text or ""
        key = cache_key(source_text, component_name)
        cached = self._cache.get(key)
        if cached is not None and (not screenshot or not cached.ok or cached.screenshot_b64):
            self._cache.move_to_end(key)
            return cached.model_copy(update={"cached": True})

        t0 = time.perf_counter()
        boundary = FailureBoundary(RenderStage.preprocess)
        html = None
        screenshot_b64 = None

        async with boundary:
            html, screenshot_b64 = await self._run(source_text, component_name, screenshot, boundary)

        result = RenderResult(
            ok=not boundary.failed,
            component_name=component_name,
            html=html,
            screenshot_b64=screenshot_b64,
            failure=boundary.failure,
            duration_ms=round((time.perf_counter() - t0) * 1000, 1),
        )
        if not boundary.transient:
            self._remember(key, result)
        return result

    async def _run(self, source_text: str, component_name: str, screenshot: bool, boundary: FailureBoundary):
        # [1]
        if not source_text.strip():
            raise RenderStageError(RenderFailureKind.empty_input, RenderStage.preprocess, "No code provided to preview")
        if len(source_text) > self.max_source_chars:
            raise RenderStageError(
                RenderFailureKind.structural_invalid, RenderStage.preprocess,
                f"Source is {len(source_text)} characters; the preview limit is {self.max_source_chars}",
            )
        if not _IDENTIFIER.match(component_name or ""):
            raise RenderStageError(
                RenderFailureKind.resolution_error, RenderStage.preprocess,
                f"'{component_name}' is not a valid component identifier",
            )

        # [2] + [3]
        clean = strip_module_syntax(source_text, component_name)
        if not has_component_shape(clean):
            raise RenderStageError(
                RenderFailureKind.structural_invalid, RenderStage.preprocess,
                "Invalid component structure: component must be a function, class or const declaration",
            )

        # [4]
        boundary.stage = RenderStage.transpile
        try:
            code = await self.transpiler.transpile(clean, f"{component_name}.tsx")
        except TranspileFailed as e:
            raise RenderStageError(
                RenderFailureKind.transpile_error, RenderStage.transpile,
                f"JSX transpilation failed: {e}",
                transient=e.transient,
            )

        # [5]
        names = declared_names(clean)
        if component_name not in names:
            found = ", ".join(sorted(names)) or "none"
            raise RenderStageError(
                RenderFailureKind.resolution_error, RenderStage.instantiate,
                f"Component '{component_name}' is not declared (found: {found})",
            )

        # [6]
        boundary.stage = RenderStage.render
        try:
            outcome = await self.sandbox.execute(code, component_name, screenshot=screenshot)
        except SandboxTimeout as e:
            raise RenderStageError(RenderFailureKind.runtime_error, RenderStage.render, str(e), transient=True)
        except SandboxUnavailable as e:
            raise RenderStageError(RenderFailureKind.runtime_error, RenderStage.instantiate, str(e), transient=True)

        if not outcome.get("ok"):
            raise RenderStageError(
                RenderFailureKind(outcome.get("kind", "runtime_error")),
                RenderStage(outcome.get("stage", "render")),
                outcome.get("message") or "Component failed to render",
            )
        logger.info("[render] %s rendered, %d chars of markup", component_name, len(outcome.get("html") or ""))
        return outcome.get("html"), outcome.get("screenshot_b64")
