"""
Tracks in-flight analysis/generation requests per (project, kind).

Starting a new request cancels the one it replaces, and a result that
finished after being replaced is never handed back, so a slow older
response cannot overwrite a newer one.
"""

import asyncio
import logging
from typing import Awaitable, TypeVar

from sketchcoder.errors import RequestSuperseded

logger = logging.getLogger(__name__)

T = TypeVar("T")


class InflightRegistry:
    def __init__(self):
        self._tasks: dict[tuple[str, str], asyncio.Task] = {}
        self._tokens: dict[tuple[str, str], int] = {}

    def token(self, project_id: str, kind: str) -> int:
        return self._tokens.get((project_id, kind), 0)

    def active(self, project_id: str, kind: str) -> bool:
        task = self._tasks.get((project_id, kind))
        return task is not None and not task.done()

    async def run(self, project_id: str, kind: str, coro: Awaitable[T]) -> T:
        """Await `coro` as the latest request for (project_id, kind).

        Raises RequestSuperseded if a newer request started before this one
        finished. Check-and-return happens without yielding to the loop, so
        the caller can apply the result immediately.
        """
        key = (project_id, kind)
        previous = self._tasks.get(key)
        if previous is not None and not previous.done():
            previous.cancel()
            logger.info("[%s] %s: cancelled superseded request", kind, project_id)

        token = self._tokens.get(key, 0) + 1
        self._tokens[key] = token
        task = asyncio.ensure_future(coro)
        self._tasks[key] = task

        try:
            result = await task
        except asyncio.CancelledError:
            if self._tokens.get(key) != token:
                raise RequestSuperseded(f"A newer {kind} request for '{project_id}' replaced this one")
            raise
        finally:
            if self._tasks.get(key) is task:
                del self._tasks[key]

        if self._tokens.get(key) != token:
            raise RequestSuperseded(f"A newer {kind} request for '{project_id}' replaced this one")
        return result
