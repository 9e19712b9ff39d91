"""
Failure isolation for preview renders.

FailureBoundary is a (sync or async) context manager around one renderer
stage. Any Exception raised inside is captured as a RenderFailure and
suppressed, so a misbehaving component can only fail its own preview.
Cancellation and other BaseExceptions still propagate.
"""

import logging

from sketchcoder.models import RenderFailure, RenderFailureKind, RenderStage

logger = logging.getLogger(__name__)


class RenderStageError(Exception):
    """Raised inside a boundary to report a specific failure kind."""

    def __init__(self, kind: RenderFailureKind, stage: RenderStage, message: str, transient: bool = False):
        super().__init__(message)
        self.kind = kind
        self.stage = stage
        self.message = message
        self.transient = transient


class FailureBoundary:
    def __init__(self, stage: RenderStage, kind: RenderFailureKind = RenderFailureKind.runtime_error):
        self.stage = stage
        self.kind = kind
        self.failure: RenderFailure | None = None
        self.transient = False

    @property
    def failed(self) -> bool:
        return self.failure is not None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        if exc is None or not isinstance(exc, Exception):
            return False

        if isinstance(exc, RenderStageError):
            self.failure = RenderFailure(kind=exc.kind, stage=exc.stage, message=exc.message)
            self.transient = exc.transient
            logger.info("[render] %s failed (%s): %s", exc.stage.value, exc.kind.value, exc.message)
        else:
            message = str(exc) or exc.__class__.__name__
            self.failure = RenderFailure(kind=self.kind, stage=self.stage, message=message)
            # Unexpected errors are infrastructure problems, not properties of the source
            self.transient = True
            logger.warning("[render] unexpected error in %s stage: %s", self.stage.value, message, exc_info=exc)
        return True

    async def __aenter__(self):
        return self.__enter__()

    async def __aexit__(self, exc_type, exc, tb):
        return self.__exit__(exc_type, exc, tb)
