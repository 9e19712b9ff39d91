import anthropic
import httpx
import pytest

from sketchcoder.errors import ConfigurationError, MalformedResponseError, NetworkError, UpstreamError
from sketchcoder.llm import extract_json_object, strip_code_fences, translate_error

REQUEST = httpx.Request("POST", "https://api.anthropic.com/v1/messages")


def _response(status: int) -> httpx.Response:
    return httpx.Response(status, request=REQUEST)


def test_timeout_maps_to_timeout_network_error() -> None:
    err = translate_error(anthropic.APITimeoutError(request=REQUEST), "analyze")
    assert isinstance(err, NetworkError)
    assert err.timeout
    assert err.code == "timeout"
    assert err.status_code == 504


def test_connection_error_maps_to_network_error() -> None:
    err = translate_error(anthropic.APIConnectionError(request=REQUEST), "generate")
    assert isinstance(err, NetworkError)
    assert not err.timeout
    assert err.status_code == 502
    assert err.message.startswith("generate:")


def test_auth_error_maps_to_configuration_error() -> None:
    exc = anthropic.AuthenticationError("invalid x-api-key", response=_response(401), body=None)
    err = translate_error(exc, "analyze")
    assert isinstance(err, ConfigurationError)
    assert err.status_code == 503


def test_rate_limit_maps_to_upstream_error() -> None:
    exc = anthropic.RateLimitError("slow down", response=_response(429), body=None)
    err = translate_error(exc, "generate")
    assert isinstance(err, UpstreamError)
    assert err.rate_limited
    assert err.code == "rate_limited"
    assert err.status_code == 429


def test_server_error_maps_to_upstream_error() -> None:
    exc = anthropic.InternalServerError("overloaded", response=_response(529), body=None)
    err = translate_error(exc, "generate")
    assert isinstance(err, UpstreamError)
    assert not err.rate_limited
    assert err.details == {"status": 529}


def test_unknown_errors_pass_through() -> None:
    original = ValueError("boom")
    assert translate_error(original, "generate") is original


def test_strip_code_fences() -> None:
    assert strip_code_fences("```tsx\nconst A = 1;\n```") == "const A = 1;"
    assert strip_code_fences("  plain text  ") == "plain text"


@pytest.mark.parametrize(
    "raw",
    [
        '{"confidence": 0.5}',
        '```json\n{"confidence": 0.5}\n```',
        'Here is the analysis:\n{"confidence": 0.5}\nHope that helps.',
    ],
)
def test_extract_json_object(raw: str) -> None:
    assert extract_json_object(raw) == {"confidence": 0.5}


def test_extract_json_object_rejects_garbage() -> None:
    with pytest.raises(MalformedResponseError):
        extract_json_object("I could not read the sketch.")
    with pytest.raises(MalformedResponseError):
        extract_json_object("[1, 2, 3]")
