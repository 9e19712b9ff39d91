"""
Shared Anthropic plumbing for the analysis and generation collaborators:
client construction, one bounded request helper, SDK error translation and
response clean-up.
"""

import asyncio
import json
import logging
import os

import anthropic

from sketchcoder.config import get_settings
from sketchcoder.errors import (
    ConfigurationError,
    MalformedResponseError,
    NetworkError,
    UpstreamError,
)

logger = logging.getLogger(__name__)

_client = None


def _get_client():
    """Get the shared async Anthropic client. Retries are left to the user."""
    global _client
    if _client is None:
        settings = get_settings()
        api_key = os.getenv("ANTHROPIC_API_KEY") or settings.anthropic_api_key
        if not api_key:
            raise ConfigurationError("ANTHROPIC_API_KEY is not set. Add it to .env and restart the server.")
        _client = anthropic.AsyncAnthropic(
            api_key=api_key,
            timeout=settings.request_timeout,
            max_retries=0,
        )
    return _client


def reset_client():
    global _client
    _client = None


def is_configured() -> bool:
    return bool(os.getenv("ANTHROPIC_API_KEY") or get_settings().anthropic_api_key)


def translate_error(exc: Exception, context: str) -> Exception:
    """Map an Anthropic SDK exception onto the service's error taxonomy."""
    if isinstance(exc, anthropic.APITimeoutError):
        return NetworkError(f"{context}: the model provider did not answer in time", timeout=True)
    if isinstance(exc, anthropic.APIConnectionError):
        return NetworkError(f"{context}: could not reach the model provider")
    if isinstance(exc, (anthropic.AuthenticationError, anthropic.PermissionDeniedError)):
        return ConfigurationError(
            f"{context}: the Anthropic API key is invalid or lacks access. Check ANTHROPIC_API_KEY."
        )
    if isinstance(exc, anthropic.RateLimitError):
        return UpstreamError(f"{context}: rate limit exceeded, wait a moment and try again", rate_limited=True)
    if isinstance(exc, anthropic.APIStatusError):
        status = getattr(exc, "status_code", 0) or 0
        if status >= 500:
            return UpstreamError(
                f"{context}: the model provider is temporarily unavailable",
                details={"status": status},
            )
        return UpstreamError(f"{context}: request rejected ({status})", details={"status": status})
    return exc


async def create_message(
    *,
    context: str,
    model: str,
    max_tokens: int,
    temperature: float,
    messages: list,
    system: str | None = None,
) -> str:
    """Send one Messages API request and return the concatenated text blocks.

    The call is bounded by `request_timeout`; expiry surfaces as a timeout
    NetworkError instead of hanging.
    """
    settings = get_settings()
    client = _get_client()
    kwargs = {
        "model": model,
        "max_tokens": max_tokens,
        "temperature": temperature,
        "messages": messages,
    }
    if system:
        kwargs["system"] = system

    try:
        response = await asyncio.wait_for(
            client.messages.create(**kwargs),
            timeout=settings.request_timeout,
        )
    except asyncio.TimeoutError:
        raise NetworkError(f"{context}: the model provider did not answer in time", timeout=True)
    except anthropic.AnthropicError as e:
        raise translate_error(e, context) from e

    text = "".join(
        getattr(block, "text", "") for block in (response.content or [])
        if getattr(block, "type", None) == "text"
    )
    usage = getattr(response, "usage", None)
    logger.info(
        "[%s] %s: %sin/%sout, %d chars",
        context, model,
        getattr(usage, "input_tokens", "?"), getattr(usage, "output_tokens", "?"),
        len(text),
    )
    if not text.strip():
        raise MalformedResponseError(f"{context}: the model returned an empty response")
    return text


def strip_code_fences(text: str) -> str:
    """Remove markdown code fences from model output."""
    text = text.strip()
    if text.startswith("```"):
        # Remove first line (```tsx, ```json etc.)
        text = text.split("\n", 1)[1] if "\n" in text else text[3:]
    if text.endswith("```"):
        text = text[:-3]
    return text.strip()


def extract_json_object(raw: str) -> dict:
    """Try a few strategies to pull one JSON object out of a model response."""
    text = raw.strip()

    # Strategy 1: direct parse
    try:
        parsed = json.loads(text)
        if isinstance(parsed, dict):
            return parsed
    except ValueError:
        pass

    # Strategy 2: strip code fences
    cleaned = strip_code_fences(text)
    try:
        parsed = json.loads(cleaned)
        if isinstance(parsed, dict):
            return parsed
    except ValueError:
        pass

    # Strategy 3: first { to last }
    start = text.find("{")
    end = text.rfind("}")
    if start >= 0 and end > start:
        try:
            parsed = json.loads(text[start:end + 1])
            if isinstance(parsed, dict):
                return parsed
        except ValueError:
            pass

    raise MalformedResponseError("Model response did not contain a JSON object", {"preview": text[:200]})
