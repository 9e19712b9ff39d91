import json

from pydantic import BaseModel


def _default(obj):
    if isinstance(obj, BaseModel):
        return obj.model_dump(mode="json")
    return str(obj)


def sse_event(event_type: str, data: dict) -> str:
    """Format a Server-Sent Event string. Pydantic models in `data` are serialized."""
    payload = {"type": event_type, **data}
    return f"event: {event_type}\ndata: {json.dumps(payload, default=_default)}\n\n"
