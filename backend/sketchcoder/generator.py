"""
Component generator: turns a UIAnalysis into ONE React + Tailwind component
with a single Claude call.
"""

import logging
import re
import time

from sketchcoder.config import get_settings
from sketchcoder.errors import MalformedResponseError
from sketchcoder.llm import create_message, strip_code_fences
from sketchcoder.models import DetectedElement, ElementType, GeneratedComponent, UIAnalysis

logger = logging.getLogger(__name__)


GENERATION_SYSTEM_PROMPT = """You are an expert React developer who creates clean, responsive components using Tailwind CSS and modern React patterns.

## Rules
1. Output ONLY the raw component file. No markdown fences. No explanation.
2. One functional component, declared as `export default function ComponentName()`.
3. Use `className` (not `class`), self-close void elements (`<img />`, `<input />`).
4. Tailwind utility classes for ALL styling; mobile-first responsive (`sm:`, `md:`, `lg:`).
5. Semantic HTML, alt text on images, labels on inputs, hover and focus states on interactive elements.
6. React hooks (useState, useEffect, useMemo, useCallback, useRef) only. No other runtime libraries,
   no data fetching, no browser storage.
7. Never abbreviate with placeholder comments like `// ...` or `// rest of items`."""


# Layout hint per element type. Keyed by every ElementType member.
ELEMENT_HINTS = {
    ElementType.button: "a <button> with hover/focus states",
    ElementType.input: "a labelled form control (<input>, <textarea> or <select>)",
    ElementType.card: "a bordered, rounded card container with padding and shadow",
    ElementType.navbar: "a <nav> bar; collapse links into a toggle menu on small screens",
    ElementType.modal: "a dialog overlay controlled by useState, closed by default",
    ElementType.text: "a heading or paragraph with the exact text",
    ElementType.image: "an <img> placeholder with a descriptive alt",
    ElementType.container: "a layout wrapper (flex or grid) grouping nearby elements",
    ElementType.list: "a <ul>/<ol> rendered from an array with .map() and key props",
}

_COMPONENT_NAME = re.compile(r"^[A-Z][A-Za-z0-9_]*$")


def to_component_name(name: str | None, default: str = "GeneratedComponent") -> str:
    """Coerce free text ("my login form") into a PascalCase identifier."""
    if name and _COMPONENT_NAME.match(name):
        return name
    words = re.findall(r"[A-Za-z0-9]+", name or "")
    candidate = "".join(w[:1].upper() + w[1:] for w in words)
    if not candidate or not candidate[0].isalpha():
        return default
    return candidate


def describe_element(el: DetectedElement) -> str:
    b = el.bounds
    line = f"{el.type.value} at ({b.x:g}, {b.y:g}) size {b.width:g}x{b.height:g}"
    if el.text:
        line += f' with text "{el.text}"'
    if el.properties:
        props = ", ".join(f"{k}={v}" for k, v in el.properties.items())
        line += f" [{props}]"
    return f"- {line}: render as {ELEMENT_HINTS[el.type]}"


def build_user_prompt(analysis: UIAnalysis, component_name: str) -> str:
    # Top-to-bottom, left-to-right reading order
    ordered = sorted(analysis.detected_elements, key=lambda e: (e.bounds.y, e.bounds.x))
    elements = "\n".join(describe_element(el) for el in ordered) or "- (no elements detected)"
    return (
        f"Generate a React component based on this UI analysis.\n\n"
        f"Component Name: {component_name}\n\n"
        f"Detected Elements (top to bottom):\n{elements}\n\n"
        f"Extracted Text: {', '.join(analysis.extracted_text) or 'None'}\n\n"
        f"Suggestions: {', '.join(analysis.suggestions) or 'None'}\n\n"
        f"The file must declare `export default function {component_name}()`."
    )


def extract_dependencies(source_text: str) -> list[str]:
    """Packages the component imports, plus react when hooks or JSX are used."""
    deps = []
    for m in re.finditer(r"^\s*import\s+(?:[^'\";]*?\s+from\s+)?['\"]([^'\"]+)['\"]", source_text, re.MULTILINE):
        pkg = m.group(1)
        if pkg.startswith((".", "/", "@/")):
            continue
        if pkg not in deps:
            deps.append(pkg)
    if "react" not in deps and re.search(r"\buse(State|Effect|Memo|Callback|Ref)\b|<[A-Za-z]", source_text):
        deps.insert(0, "react")
    return deps


async def generate_component(analysis: UIAnalysis, component_name: str) -> GeneratedComponent:
    """Generate one component. Raises the provider error taxonomy on failure."""
    settings = get_settings()
    component_name = to_component_name(component_name)
    t0 = time.time()

    raw = await create_message(
        context="generate",
        model=settings.generation_model,
        max_tokens=settings.generation_max_tokens,
        temperature=settings.generation_temperature,
        system=GENERATION_SYSTEM_PROMPT,
        messages=[{"role": "user", "content": build_user_prompt(analysis, component_name)}],
    )

    source_text = strip_code_fences(raw)
    if "<" not in source_text or not re.search(r"\b(function|const|class)\b", source_text):
        raise MalformedResponseError(
            "The model response does not look like a React component",
            {"preview": source_text[:200]},
        )
    if not re.search(rf"\b{re.escape(component_name)}\b", source_text):
        logger.warning("[generate] %s not declared in generated code; preview will fail to resolve it", component_name)

    logger.info("[generate] %s in %.1fs, %d chars", component_name, time.time() - t0, len(source_text))
    return GeneratedComponent(
        source_text=source_text,
        component_name=component_name,
        dependencies=extract_dependencies(source_text),
    )


def fallback_component(name: str) -> str:
    """Minimal placeholder component used when generation fails."""
    return f'''export default function {name}() {{
  return (
    <section className="py-16 px-4">
      <div className="max-w-xl mx-auto text-center">
        <p className="text-gray-500">{name} could not be generated. Try again.</p>
      </div>
    </section>
  );
}}
'''
