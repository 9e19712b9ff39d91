"""
JSX/TSX -> plain JavaScript. Both implementations are full-grammar
transpilers (Babel or esbuild); output uses React.createElement so it can run
against the sandbox's React facade without a module loader.
"""

import asyncio
import logging
import shutil
import subprocess
from typing import Protocol

from sketchcoder.config import get_settings
from sketchcoder.sandbox import PreviewSandbox, SandboxTimeout, SandboxUnavailable

logger = logging.getLogger(__name__)


class TranspileFailed(Exception):
    """The transpiler rejected the source, or (transient=True) could not run at all."""

    def __init__(self, message: str, transient: bool = False):
        super().__init__(message)
        self.transient = transient


class Transpiler(Protocol):
    async def transpile(self, source: str, filename: str) -> str: ...


class BabelTranspiler:
    """@babel/standalone executed inside the preview sandbox."""

    def __init__(self, sandbox: PreviewSandbox):
        self.sandbox = sandbox

    async def transpile(self, source: str, filename: str) -> str:
        try:
            result = await self.sandbox.transpile(source, filename)
        except (SandboxUnavailable, SandboxTimeout) as e:
            raise TranspileFailed(str(e), transient=True) from e
        if not result.get("ok"):
            raise TranspileFailed(result.get("message") or "Babel rejected the source")
        return result["code"]


class EsbuildTranspiler:
    """esbuild CLI in transform mode (stdin -> stdout)."""

    def __init__(self, esbuild_bin: str | None = None, timeout: float | None = None):
        settings = get_settings()
        self.esbuild_bin = esbuild_bin or settings.esbuild_bin
        self.timeout = timeout or settings.render_timeout

    def _command(self) -> list[str]:
        path = shutil.which(self.esbuild_bin)
        if path:
            cmd = [path]
        elif shutil.which("npx"):
            cmd = ["npx", "--yes", "esbuild"]
        else:
            raise TranspileFailed("esbuild is not installed and npx is unavailable", transient=True)
        return cmd + [
            "--loader=tsx",
            "--jsx=transform",
            "--jsx-factory=React.createElement",
            "--jsx-fragment=React.Fragment",
            "--target=es2019",
            "--log-level=error",
        ]

    async def transpile(self, source: str, filename: str) -> str:
        cmd = self._command() + [f"--sourcefile={filename}"]

        def _run():
            return subprocess.run(
                cmd,
                input=source,
                capture_output=True,
                text=True,
                timeout=self.timeout,
            )

        try:
            result = await asyncio.to_thread(_run)
        except subprocess.TimeoutExpired:
            raise TranspileFailed(f"esbuild timed out after {self.timeout:g}s", transient=True)
        except OSError as e:
            raise TranspileFailed(f"Could not run esbuild: {e}", transient=True) from e

        if result.returncode != 0:
            message = (result.stderr or result.stdout or "esbuild failed").strip()
            raise TranspileFailed(message.splitlines()[0] if message else "esbuild failed")
        return result.stdout


def build_transpiler(settings, sandbox: PreviewSandbox) -> Transpiler:
    if settings.transpiler == "esbuild":
        return EsbuildTranspiler(settings.esbuild_bin, settings.render_timeout)
    if settings.transpiler == "babel":
        return BabelTranspiler(sandbox)
    raise ValueError(f"Unknown transpiler '{settings.transpiler}'")
