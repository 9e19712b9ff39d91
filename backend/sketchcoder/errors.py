"""
Error taxonomy. Every error the service can report to a client derives from
SketchcoderError and carries a stable `code` plus the HTTP status it maps to.
Render failures are not exceptions; see models.RenderFailure.
"""


class SketchcoderError(Exception):
    code = "internal_error"
    status_code = 500

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        return {"code": self.code, "error": self.message, "details": self.details}


# ── Model provider ─────────────────────────────────────────────────────────

class ConfigurationError(SketchcoderError):
    """Provider credential missing or rejected."""
    code = "configuration_error"
    status_code = 503


class NetworkError(SketchcoderError):
    code = "network_error"
    status_code = 502

    def __init__(self, message: str, timeout: bool = False, details: dict | None = None):
        super().__init__(message, details)
        self.timeout = timeout
        if timeout:
            self.code = "timeout"
            self.status_code = 504


class UpstreamError(SketchcoderError):
    """Provider answered with a rate limit or a server-side failure."""
    code = "upstream_error"
    status_code = 502

    def __init__(self, message: str, rate_limited: bool = False, details: dict | None = None):
        super().__init__(message, details)
        self.rate_limited = rate_limited
        if rate_limited:
            self.code = "rate_limited"
            self.status_code = 429


class MalformedResponseError(SketchcoderError):
    code = "malformed_response"
    status_code = 502


class RequestSuperseded(SketchcoderError):
    """A newer analysis/generation request for the same project replaced this one."""
    code = "request_superseded"
    status_code = 409


class InvalidUpload(SketchcoderError):
    code = "invalid_upload"
    status_code = 400


# ── Version history ────────────────────────────────────────────────────────

class HistoryError(SketchcoderError):
    code = "history_error"
    status_code = 400


class HistoryNotFound(HistoryError):
    code = "history_not_found"
    status_code = 404

    def __init__(self, project_id: str):
        super().__init__(f"No version history for project '{project_id}'", {"project_id": project_id})


class HistoryExists(HistoryError):
    code = "history_exists"
    status_code = 409

    def __init__(self, project_id: str):
        super().__init__(
            f"Project '{project_id}' already has a version history; clear it or pass replace=true",
            {"project_id": project_id},
        )


class VersionNotFound(HistoryError):
    code = "version_not_found"
    status_code = 404

    def __init__(self, project_id: str, version_id: str):
        super().__init__(
            f"Version '{version_id}' not found in project '{project_id}'",
            {"project_id": project_id, "version_id": version_id},
        )


class LastVersionDeletionRejected(HistoryError):
    code = "last_version"
    status_code = 409

    def __init__(self, project_id: str):
        super().__init__(
            "Cannot delete the only remaining version",
            {"project_id": project_id},
        )
