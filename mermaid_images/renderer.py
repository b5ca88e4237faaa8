from __future__ import annotations

import html
import json
import logging
from pathlib import Path
from typing import Any

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError
from playwright.async_api import async_playwright

from .config import RenderOptions, Settings

CONTAINER_SELECTOR = ".mermaid"
SVG_SELECTOR = ".mermaid svg"
ERROR_SVG_SELECTOR = '.mermaid svg[aria-roledescription="error"]'
BROWSER_ARGS = ["--no-sandbox", "--disable-setuid-sandbox"]

PAGE_TEMPLATE = """<!DOCTYPE html>
<html>
  <head>
    <meta charset="utf-8">
    <style>
      body {{
        margin: 0;
        padding: 20px;
        font-family: Arial, sans-serif;
        background: {background};
      }}
      .mermaid {{
        text-align: center;
      }}
      {custom_css}
    </style>
  </head>
  <body>
    <div class="mermaid">{code}</div>
    <script src="{cdn}"></script>
    <script>
      mermaid.initialize({init});
    </script>
  </body>
</html>
"""


class RenderError(Exception):
    """A single diagram could not be turned into an image."""

    def __init__(self, filename: str, message: str):
        super().__init__(f"{filename}: {message}")
        self.filename = filename


class RenderTimeout(RenderError):
    pass


def mermaid_init_config(options: RenderOptions) -> dict[str, Any]:
    cfg = options.mermaid_config.model_dump(mode="json", by_alias=True)
    return {"startOnLoad": True, "theme": options.theme, **cfg}


def build_page_html(code: str, options: RenderOptions, cdn: str) -> str:
    """Standalone page that renders ``code`` into the ``.mermaid`` container."""
    return PAGE_TEMPLATE.format(
        background=options.background_color,
        custom_css=options.custom_css,
        code=html.escape(code, quote=False),
        cdn=html.escape(cdn),
        init=json.dumps(mermaid_init_config(options)),
    )


class BrowserRenderer:
    """Headless Chromium holding one page that is reused for every diagram.

    Use as ``async with BrowserRenderer(settings) as renderer``; the browser
    is released on every exit path.
    """

    def __init__(self, settings: Settings):
        self.settings = settings
        self._playwright = None
        self._browser = None
        self._page = None

    @property
    def extension(self) -> str:
        return self.settings.render.image_format

    async def __aenter__(self) -> BrowserRenderer:
        await self.start()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    async def start(self) -> None:
        options = self.settings.render
        logging.info("Starting headless browser")
        self._playwright = await async_playwright().start()
        try:
            self._browser = await self._playwright.chromium.launch(headless=True, args=BROWSER_ARGS)
            self._page = await self._browser.new_page(
                viewport={"width": options.width, "height": options.height},
                device_scale_factor=options.image_scale,
            )
        except BaseException:
            await self.close()
            raise
        logging.info("Headless browser ready")

    async def close(self) -> None:
        """Best-effort release; failures are logged, never raised."""
        browser, pw = self._browser, self._playwright
        self._page = self._browser = self._playwright = None
        if browser is not None:
            try:
                await browser.close()
            except PlaywrightError as e:
                logging.warning("Failed to close browser: %s", e)
        if pw is not None:
            try:
                await pw.stop()
            except PlaywrightError as e:
                logging.warning("Failed to stop Playwright: %s", e)
            else:
                logging.info("Headless browser stopped")

    async def render(self, code: str, base_filename: str) -> Path:
        """Render ``code`` to ``<output_dir>/<base_filename>.<format>``."""
        if self._page is None:
            raise RuntimeError("BrowserRenderer is not started")
        page = self._page
        settings = self.settings
        timeout_ms = settings.render_timeout_sec * 1000
        out_path = settings.output_dir / f"{base_filename}.{self.extension}"

        try:
            await page.set_content(
                build_page_html(code, settings.render, settings.mermaid_cdn), timeout=timeout_ms
            )
            await page.wait_for_selector(SVG_SELECTOR, state="attached", timeout=timeout_ms)
        except PlaywrightTimeoutError as e:
            raise RenderTimeout(
                base_filename, f"no rendered diagram after {settings.render_timeout_sec:g}s"
            ) from e
        except PlaywrightError as e:
            raise RenderError(base_filename, f"page failed to load: {e}") from e

        try:
            if await page.query_selector(ERROR_SVG_SELECTOR) is not None:
                raise RenderError(base_filename, "mermaid reported a syntax error")
            if self.extension == "png":
                await page.screenshot(path=str(out_path), full_page=True, omit_background=False)
            else:
                markup = await page.eval_on_selector(SVG_SELECTOR, "el => el.outerHTML")
                out_path.write_text(markup, encoding="utf-8")
        except PlaywrightError as e:
            raise RenderError(base_filename, f"capture failed: {e}") from e
        return out_path
