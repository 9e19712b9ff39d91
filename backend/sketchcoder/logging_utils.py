"""
Logging setup. One call at start-up configures the `sketchcoder` logger tree.

Noisy diagnostics are filtered by pattern through a logging.Filter built from
settings, instead of patching handlers or stdout anywhere else.
"""

import logging
import re

_LOGGER_NAME = "sketchcoder"
_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


class PatternSuppressFilter(logging.Filter):
    """Drop records whose rendered message matches any configured regex."""

    def __init__(self, patterns: list[str] | tuple[str, ...] = ()):
        super().__init__()
        self.patterns = [re.compile(p) for p in patterns]

    def filter(self, record: logging.LogRecord) -> bool:
        if not self.patterns:
            return True
        message = record.getMessage()
        return not any(p.search(message) for p in self.patterns)


def configure_logging(level: str = "INFO", suppress_patterns: list[str] | None = None) -> logging.Logger:
    """Attach a single stream handler to the package logger and return it.

    Safe to call repeatedly: previous handlers are closed and replaced.
    """
    logger = logging.getLogger(_LOGGER_NAME)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    logger.setLevel(getattr(logging, level.upper(), logging.INFO))
    logger.propagate = False

    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter(_FORMAT))
    handler.addFilter(PatternSuppressFilter(suppress_patterns or []))
    logger.addHandler(handler)
    return logger
