"""
Preview sandbox: runs generated React components in a headless Chromium
(Playwright), out of the server process.

Each render gets a fresh BrowserContext whose network is fully blocked; the
React/ReactDOM/Babel runtime is injected as inline script content, read from
`preview_asset_dir` when present (see fetch_preview_assets.py) or downloaded
once and cached in memory.
"""

import asyncio
import base64
import logging
import os

import httpx

from sketchcoder.config import get_settings

logger = logging.getLogger(__name__)


class SandboxUnavailable(Exception):
    """The browser or the preview runtime could not be started."""


class SandboxTimeout(Exception):
    pass


PREVIEW_HTML = """<!doctype html>
<html lang="en">
<head>
<meta charset="utf-8">
<style>body{margin:0;font-family:ui-sans-serif,system-ui,sans-serif}#root{padding:16px}</style>
</head>
<body><div id="root"></div></body>
</html>"""

# Runtime file name in preview_asset_dir -> settings attribute holding its URL
RUNTIME_ASSETS = {
    "react.production.min.js": "react_url",
    "react-dom.production.min.js": "react_dom_url",
    "babel.min.js": "babel_url",
}

TRANSPILE_JS = r"""
([source, filename]) => {
  try {
    const out = Babel.transform(source, {
      filename,
      presets: [
        ["react", { runtime: "classic" }],
        ["typescript", { isTSX: true, allExtensions: true }],
      ],
      sourceType: "script",
    });
    return { ok: true, code: out.code };
  } catch (e) {
    return { ok: false, message: String((e && e.message) || e) };
  }
}
"""

# Error boundary + evaluation harness. Generated code only sees the React
# facade and the hooks; host globals are shadowed by undefined parameters.
HARNESS_JS = r"""
(() => {
  window.__sandboxErrors = [];
  window.addEventListener("error", (ev) => {
    window.__sandboxErrors.push(String((ev.error && ev.error.message) || ev.message));
  });

  class SandboxErrorBoundary extends React.Component {
    constructor(props) {
      super(props);
      this.state = { hasError: false, error: null };
    }
    static getDerivedStateFromError(error) {
      return { hasError: true, error };
    }
    componentDidCatch(error) {
      window.__sandboxErrors.push(String((error && error.message) || error));
    }
    render() {
      if (this.state.hasError) {
        return React.createElement(
          "div",
          { "data-sandbox-error": "true", style: { padding: "1rem", color: "#b91c1c", fontFamily: "monospace" } },
          React.createElement("strong", null, "Render Error: "),
          String((this.state.error && this.state.error.message) || "Component failed to render")
        );
      }
      return this.props.children;
    }
  }

  const SHADOWED = [
    "window", "document", "globalThis", "self", "parent", "top", "fetch", "XMLHttpRequest",
    "WebSocket", "localStorage", "sessionStorage", "indexedDB", "navigator",
  ];

  window.__sandboxRender = async ([code, name, settleMs]) => {
    const facade = Object.freeze({
      createElement: React.createElement,
      Fragment: React.Fragment,
      useState: React.useState,
      useEffect: React.useEffect,
      useMemo: React.useMemo,
      useCallback: React.useCallback,
      useRef: React.useRef,
    });

    let Component;
    try {
      const factory = new Function(
        "React", "useState", "useEffect", "useMemo", "useCallback", "useRef", ...SHADOWED,
        code + "\nreturn typeof " + name + " !== 'undefined' ? " + name + " : undefined;"
      );
      Component = factory(
        facade, React.useState, React.useEffect, React.useMemo, React.useCallback, React.useRef,
        ...SHADOWED.map(() => undefined)
      );
    } catch (e) {
      return { ok: false, stage: "instantiate", kind: "runtime_error", message: String((e && e.message) || e) };
    }

    const isComponent = typeof Component === "function" ||
      (Component !== null && typeof Component === "object" && Component.$$typeof !== undefined);
    if (!isComponent) {
      return {
        ok: false, stage: "instantiate", kind: "resolution_error",
        message: 'Component "' + name + '" not found or is not a component',
      };
    }

    const container = document.getElementById("root");
    window.__sandboxErrors = [];
    try {
      const root = ReactDOM.createRoot(container);
      ReactDOM.flushSync(() => {
        root.render(React.createElement(SandboxErrorBoundary, null, React.createElement(Component)));
      });
    } catch (e) {
      window.__sandboxErrors.push(String((e && e.message) || e));
    }
    // let effects and their state updates settle
    await new Promise((resolve) => setTimeout(resolve, settleMs));

    if (window.__sandboxErrors.length) {
      return { ok: false, stage: "render", kind: "runtime_error", message: window.__sandboxErrors[0] };
    }
    return { ok: true, html: container.innerHTML };
  };
})();
"""


class PreviewSandbox:
    """Owns one headless Chromium. Renders are serialized."""

    def __init__(self, settings=None):
        self.settings = settings or get_settings()
        self._playwright = None
        self._browser = None
        self._babel_page = None
        self._runtime: dict[str, str] = {}
        self._lock = asyncio.Lock()
        self._start_lock = asyncio.Lock()
        self._babel_lock = asyncio.Lock()

    # ── lifecycle ────────────────────────────────────────────────────────

    async def start(self):
        async with self._start_lock:
            if self._browser is not None and self._browser.is_connected():
                return
            try:
                from playwright.async_api import async_playwright
                self._playwright = await async_playwright().start()
                self._browser = await self._playwright.chromium.launch(
                    headless=True,
                    args=["--disable-extensions", "--no-first-run"],
                )
            except Exception as e:
                await self.close()
                raise SandboxUnavailable(f"Could not launch the preview browser: {e}") from e
            logger.info("[render] preview browser started")

    async def close(self):
        for closer in (
            self._babel_page and self._babel_page.context.close,
            self._browser and self._browser.close,
            self._playwright and self._playwright.stop,
        ):
            if closer is None:
                continue
            try:
                await closer()
            except Exception as e:
                logger.warning("[render] error during sandbox shutdown: %s", e)
        self._babel_page = None
        self._browser = None
        self._playwright = None

    # ── runtime assets ───────────────────────────────────────────────────

    async def _asset(self, filename: str) -> str:
        if filename in self._runtime:
            return self._runtime[filename]

        local_path = os.path.join(self.settings.preview_asset_dir, filename)
        if os.path.exists(local_path):
            with open(local_path, "r", encoding="utf-8") as f:
                content = f.read()
        else:
            url = getattr(self.settings, RUNTIME_ASSETS[filename])
            logger.info("[render] downloading preview runtime %s", url)
            try:
                async with httpx.AsyncClient(timeout=30, follow_redirects=True) as client:
                    resp = await client.get(url)
                    resp.raise_for_status()
                    content = resp.text
            except httpx.HTTPError as e:
                raise SandboxUnavailable(f"Could not load preview runtime {filename}: {e}") from e
        self._runtime[filename] = content
        return content

    async def _new_page(self, *scripts: str):
        """Open an isolated, offline page with the given runtime files loaded."""
        await self.start()
        context = await self._browser.new_context(
            viewport={"width": self.settings.viewport_width, "height": self.settings.viewport_height},
            service_workers="block",
        )
        await context.route("**/*", lambda route: route.abort())
        page = await context.new_page()
        await page.set_content(PREVIEW_HTML)
        for filename in scripts:
            await page.add_script_tag(content=await self._asset(filename))
        return page

    # ── operations ───────────────────────────────────────────────────────

    async def transpile(self, source: str, filename: str) -> dict:
        """Run @babel/standalone on `source`. Returns {"ok", "code"|"message"}.

        The Babel page is reused and used by one caller at a time; it never
        evaluates generated code.
        """
        async with self._babel_lock:
            if self._babel_page is None or self._babel_page.is_closed():
                self._babel_page = await self._new_page("babel.min.js")
            try:
                return await asyncio.wait_for(
                    self._babel_page.evaluate(TRANSPILE_JS, [source, filename]),
                    timeout=self.settings.render_timeout,
                )
            except asyncio.TimeoutError:
                await self._babel_page.context.close()
                self._babel_page = None
                raise SandboxTimeout(f"Transpilation exceeded {self.settings.render_timeout:g}s")

    async def execute(self, code: str, component_name: str, screenshot: bool = False, settle_ms: int = 50) -> dict:
        """Instantiate and render transpiled code in a fresh page.

        Returns the harness result: {"ok", "html"} or {"ok": False, "stage", "kind", "message"},
        plus "screenshot_b64" when requested and rendering succeeded.
        """
        async with self._lock:
            page = await self._new_page("react.production.min.js", "react-dom.production.min.js")
            page_errors = []
            page.on("pageerror", lambda err: page_errors.append(str(err)))
            try:
                await page.add_script_tag(content=HARNESS_JS)
                try:
                    result = await asyncio.wait_for(
                        page.evaluate("(args) => window.__sandboxRender(args)", [code, component_name, settle_ms]),
                        timeout=self.settings.render_timeout,
                    )
                except asyncio.TimeoutError:
                    raise SandboxTimeout(
                        f"Component did not finish rendering within {self.settings.render_timeout:g}s"
                    )
                if result.get("ok") and page_errors:
                    result = {"ok": False, "stage": "render", "kind": "runtime_error", "message": page_errors[0]}
                if result.get("ok") and screenshot:
                    png = await page.locator("#root").screenshot()
                    result["screenshot_b64"] = base64.b64encode(png).decode()
                return result
            finally:
                await page.context.close()
