"""
Sketch analyzer: single Claude vision call that turns a hand-drawn UI sketch
into a structured UIAnalysis (detected elements, text, suggestions).
"""

import logging

from pydantic import ValidationError

from sketchcoder.config import get_settings
from sketchcoder.errors import MalformedResponseError
from sketchcoder.image_utils import sketch_to_b64
from sketchcoder.llm import create_message, extract_json_object
from sketchcoder.models import Bounds, DetectedElement, ElementType, UIAnalysis

logger = logging.getLogger(__name__)


ANALYSIS_PROMPT = """Analyze this UI sketch and extract the following information:

1. Identify all UI elements (buttons, inputs, cards, navigation, text, images, etc.)
2. Extract any visible text content
3. Determine the layout structure and hierarchy
4. Suggest appropriate React components and Tailwind classes
5. Provide confidence scores for each detected element

Output ONLY valid JSON (no markdown fences, no explanation). The schema:
{
  "detectedElements": [
    {
      "type": "button|input|card|navbar|modal|text|image|container|list",
      "confidence": 0.95,
      "bounds": {"x": 10, "y": 20, "width": 100, "height": 40},
      "text": "Button Label",
      "properties": {"variant": "primary", "size": "medium"}
    }
  ],
  "extractedText": ["Header Title", "Button Label", "Input Placeholder"],
  "suggestions": ["Use a grid layout for the card components"],
  "confidence": 0.87
}

Bounds are pixels relative to the top-left of the sketch. Use ONLY the listed element types."""


# Words the model sometimes uses instead of the closed element vocabulary
TYPE_ALIASES = {
    "nav": ElementType.navbar,
    "navigation": ElementType.navbar,
    "header": ElementType.navbar,
    "textarea": ElementType.input,
    "textfield": ElementType.input,
    "checkbox": ElementType.input,
    "select": ElementType.input,
    "dropdown": ElementType.input,
    "dialog": ElementType.modal,
    "popup": ElementType.modal,
    "heading": ElementType.text,
    "label": ElementType.text,
    "paragraph": ElementType.text,
    "icon": ElementType.image,
    "img": ElementType.image,
    "link": ElementType.button,
    "table": ElementType.list,
    "grid": ElementType.container,
    "section": ElementType.container,
    "div": ElementType.container,
}


def _coerce_type(raw) -> ElementType:
    value = str(raw or "").strip().lower()
    try:
        return ElementType(value)
    except ValueError:
        pass
    if value in TYPE_ALIASES:
        return TYPE_ALIASES[value]
    logger.warning("[analyze] unknown element type %r, treating as container", raw)
    return ElementType.container


def _clamp(value, default: float = 0.5) -> float:
    try:
        return min(1.0, max(0.0, float(value)))
    except (TypeError, ValueError):
        return default


def parse_analysis(payload: dict) -> UIAnalysis:
    """Validate a raw model payload into a UIAnalysis.

    Element types outside the closed vocabulary are mapped through TYPE_ALIASES
    (falling back to container); a missing element list is a malformed response.
    """
    raw_elements = payload.get("detectedElements", payload.get("detected_elements"))
    if not isinstance(raw_elements, list):
        raise MalformedResponseError("Analysis is missing the detectedElements list")

    elements = []
    for raw in raw_elements:
        if not isinstance(raw, dict):
            continue
        bounds = raw.get("bounds") if isinstance(raw.get("bounds"), dict) else {}
        try:
            elements.append(DetectedElement(
                type=_coerce_type(raw.get("type")),
                confidence=_clamp(raw.get("confidence")),
                bounds=Bounds(**{k: bounds.get(k, 0) or 0 for k in ("x", "y", "width", "height")}),
                text=str(raw["text"]) if raw.get("text") is not None else None,
                properties=raw.get("properties") if isinstance(raw.get("properties"), dict) else None,
            ))
        except ValidationError as e:
            logger.warning("[analyze] dropping invalid element %r: %s", raw, e)

    texts = payload.get("extractedText", payload.get("extracted_text")) or []
    suggestions = payload.get("suggestions") or []
    return UIAnalysis(
        detected_elements=elements,
        extracted_text=[str(t) for t in texts if t is not None] if isinstance(texts, list) else [],
        suggestions=[str(s) for s in suggestions if s is not None] if isinstance(suggestions, list) else [],
        confidence=_clamp(payload.get("confidence"), default=0.0),
    )


async def analyze_sketch(image_bytes: bytes, media_type: str = "image/png") -> UIAnalysis:
    """Send one sketch to the vision model and return the parsed analysis."""
    settings = get_settings()
    b64, media_type = sketch_to_b64(
        image_bytes,
        max_width=settings.image_max_width,
        quality=settings.image_quality,
        media_type=media_type,
    )

    raw = await create_message(
        context="analyze",
        model=settings.analysis_model,
        max_tokens=settings.analysis_max_tokens,
        temperature=settings.analysis_temperature,
        messages=[{
            "role": "user",
            "content": [
                {"type": "image", "source": {"type": "base64", "media_type": media_type, "data": b64}},
                {"type": "text", "text": ANALYSIS_PROMPT},
            ],
        }],
    )

    analysis = parse_analysis(extract_json_object(raw))
    logger.info(
        "[analyze] %d elements, %d texts, confidence %.2f",
        len(analysis.detected_elements), len(analysis.extracted_text), analysis.confidence,
    )
    return analysis


def fallback_analysis() -> UIAnalysis:
    """Placeholder analysis shown when the real one failed."""
    return UIAnalysis(
        detected_elements=[
            DetectedElement(
                type=ElementType.container,
                confidence=0.5,
                bounds=Bounds(x=0, y=0, width=400, height=600),
                text="Analysis partially completed",
                properties={},
            )
        ],
        extracted_text=["Manual review required"],
        suggestions=[
            "The AI analysis encountered an issue. Please try uploading a clearer image.",
            "Consider drawing UI elements with more defined boundaries.",
            "Ensure good lighting and contrast in the sketch.",
        ],
        confidence=0.3,
    )
