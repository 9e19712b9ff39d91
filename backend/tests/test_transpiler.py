import subprocess
from types import SimpleNamespace

import pytest

from sketchcoder import transpiler
from sketchcoder.sandbox import SandboxUnavailable
from sketchcoder.transpiler import BabelTranspiler, EsbuildTranspiler, TranspileFailed, build_transpiler


class FakeSandbox:
    def __init__(self, result=None, error=None):
        self.result = result
        self.error = error

    async def transpile(self, source: str, filename: str) -> dict:
        if self.error:
            raise self.error
        return self.result


async def test_babel_returns_code() -> None:
    t = BabelTranspiler(FakeSandbox({"ok": True, "code": "React.createElement('div')"}))
    assert await t.transpile("<div/>", "A.tsx") == "React.createElement('div')"


async def test_babel_syntax_error() -> None:
    t = BabelTranspiler(FakeSandbox({"ok": False, "message": "Unexpected token (1:5)"}))
    with pytest.raises(TranspileFailed) as info:
        await t.transpile("<div", "A.tsx")
    assert not info.value.transient
    assert "Unexpected token" in str(info.value)


async def test_babel_without_browser_is_transient() -> None:
    t = BabelTranspiler(FakeSandbox(error=SandboxUnavailable("no chromium")))
    with pytest.raises(TranspileFailed) as info:
        await t.transpile("<div/>", "A.tsx")
    assert info.value.transient


async def test_esbuild_success(monkeypatch) -> None:
    seen = {}

    def fake_run(cmd, **kwargs):
        seen["cmd"] = cmd
        seen["input"] = kwargs["input"]
        return subprocess.CompletedProcess(cmd, 0, stdout="compiled", stderr="")

    monkeypatch.setattr(transpiler.shutil, "which", lambda name: "/usr/bin/esbuild" if name == "esbuild" else None)
    monkeypatch.setattr(transpiler.subprocess, "run", fake_run)

    out = await EsbuildTranspiler("esbuild", 5).transpile("const A = () => <div/>;", "A.tsx")

    assert out == "compiled"
    assert seen["cmd"][0] == "/usr/bin/esbuild"
    assert "--jsx-factory=React.createElement" in seen["cmd"]
    assert "--sourcefile=A.tsx" in seen["cmd"]
    assert seen["input"] == "const A = () => <div/>;"


async def test_esbuild_reports_first_error_line(monkeypatch) -> None:
    def fake_run(cmd, **kwargs):
        return subprocess.CompletedProcess(cmd, 1, stdout="", stderr="✘ [ERROR] Expected \">\"\n\n  A.tsx:1:20\n")

    monkeypatch.setattr(transpiler.shutil, "which", lambda name: "/usr/bin/esbuild")
    monkeypatch.setattr(transpiler.subprocess, "run", fake_run)

    with pytest.raises(TranspileFailed) as info:
        await EsbuildTranspiler("esbuild", 5).transpile("const A = () => <div;", "A.tsx")
    assert str(info.value) == '✘ [ERROR] Expected ">"'
    assert not info.value.transient


async def test_esbuild_missing_is_transient(monkeypatch) -> None:
    monkeypatch.setattr(transpiler.shutil, "which", lambda name: None)
    with pytest.raises(TranspileFailed) as info:
        await EsbuildTranspiler("esbuild", 5).transpile("const A = 1;", "A.tsx")
    assert info.value.transient


def test_build_transpiler() -> None:
    sandbox = FakeSandbox()
    assert isinstance(build_transpiler(SimpleNamespace(transpiler="babel"), sandbox), BabelTranspiler)
    built = build_transpiler(SimpleNamespace(transpiler="esbuild", esbuild_bin="esbuild", render_timeout=3.0), sandbox)
    assert isinstance(built, EsbuildTranspiler)
    assert built.timeout == 3.0
    with pytest.raises(ValueError):
        build_transpiler(SimpleNamespace(transpiler="swc"), sandbox)
