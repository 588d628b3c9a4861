"""Browser Layer — Playwright-based headless rendering for client-rendered pages.

The Browser Layer has no decision-making authority. It renders a page in an
isolated context, waits for content, and returns what it saw. The acquirer
decides when rendering is needed.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any

from playwright.async_api import Browser, BrowserContext, Page, async_playwright

from pricewatch.config.providers import RenderingHint
from pricewatch.config.settings import BrowserConfig


class ActionStatus(str, Enum):
    SUCCESS = "success"
    FAILURE = "failure"
    TIMEOUT = "timeout"


@dataclass
class ActionResult:
    """Result of a browser action."""

    status: ActionStatus
    detail: str = ""


class RenderError(Exception):
    """Raised when a page cannot be rendered (navigation failed, browser gone)."""


@dataclass
class RenderedPage:
    """Content captured from a fully rendered page."""

    url: str
    html: str
    title: str
    text: str
    screenshot: bytes | None


# Strips non-content nodes and prefers the main content region over the body.
_EXTRACT_TEXT_JS = """() => {
    document.querySelectorAll('script, style, noscript, iframe, template')
        .forEach(el => el.remove());
    const candidates = ['main', '[role=main]', 'article', '#content', '.content'];
    for (const selector of candidates) {
        const region = document.querySelector(selector);
        if (region && region.innerText && region.innerText.trim()) {
            return region.innerText.replace(/\\s+/g, ' ').trim();
        }
    }
    const body = document.body;
    return body ? body.innerText.replace(/\\s+/g, ' ').trim() : '';
}"""


class BrowserLayer:
    """Playwright-based rendering engine.

    Contract:
    - One browser process per layer, one fresh context per rendered page
    - Navigation and marker waits carry their own timeouts
    - Waiting for a pricing marker is best-effort and never fails a page
    - Raises RenderError only when the page itself cannot be loaded
    """

    def __init__(self, config: BrowserConfig | None = None) -> None:
        self._config = config or BrowserConfig()
        self._playwright: Any = None
        self._browser: Browser | None = None

    @property
    def is_started(self) -> bool:
        return self._browser is not None

    async def start(self) -> None:
        """Launch the browser process."""
        if self._browser is not None:
            return
        self._playwright = await async_playwright().start()
        self._browser = await self._playwright.chromium.launch(
            headless=self._config.headless,
        )

    async def stop(self) -> None:
        """Clean up browser resources."""
        if self._browser:
            await self._browser.close()
            self._browser = None
        if self._playwright:
            await self._playwright.stop()
            self._playwright = None

    async def _new_context(self) -> BrowserContext:
        if self._browser is None:
            raise RenderError("Browser not started")
        return await self._browser.new_context(
            viewport={
                "width": self._config.viewport_width,
                "height": self._config.viewport_height,
            },
            user_agent=self._config.user_agent,
            locale=self._config.locale,
        )

    async def navigate(self, page: Page, url: str) -> ActionResult:
        """Navigate to a URL and wait for the network to settle."""
        try:
            await page.goto(
                url, wait_until="networkidle", timeout=self._config.navigation_timeout_ms
            )
            return ActionResult(status=ActionStatus.SUCCESS, detail=f"Navigated to {url}")
        except Exception as e:
            return ActionResult(status=ActionStatus.FAILURE, detail=str(e))

    async def wait_for_marker(self, page: Page, hint: RenderingHint) -> ActionResult:
        """Wait for any pricing-like content marker to appear."""
        selectors = list(self._config.pricing_markers)
        if hint.wait_for_selector:
            selectors.insert(0, hint.wait_for_selector)
        selector = ", ".join(selectors)
        try:
            await page.wait_for_selector(selector, timeout=self._config.marker_timeout_ms)
            return ActionResult(status=ActionStatus.SUCCESS, detail=f"Marker {selector} appeared")
        except Exception as e:
            return ActionResult(status=ActionStatus.TIMEOUT, detail=str(e))

    async def scroll_cycle(self, page: Page) -> ActionResult:
        """Scroll to the bottom and back to trigger lazy-loaded content."""
        try:
            await page.evaluate("window.scrollTo(0, document.body.scrollHeight)")
            await page.wait_for_timeout(self._config.settle_after_scroll_ms)
            await page.evaluate("window.scrollTo(0, 0)")
            return ActionResult(status=ActionStatus.SUCCESS, detail="Scrolled to end and back")
        except Exception as e:
            return ActionResult(status=ActionStatus.FAILURE, detail=str(e))

    async def render(self, url: str, hint: RenderingHint | None = None) -> RenderedPage:
        """Render a single page in its own context and capture its content."""
        hint = hint or RenderingHint()
        context = await self._new_context()
        try:
            page = await context.new_page()
            result = await self.navigate(page, url)
            if result.status != ActionStatus.SUCCESS:
                raise RenderError(result.detail)

            await self.wait_for_marker(page, hint)
            if hint.wait_time_ms > 0:
                await page.wait_for_timeout(hint.wait_time_ms)
            if hint.scroll_to_bottom:
                await self.scroll_cycle(page)

            title = await page.title()
            html = await page.content()
            text = await page.evaluate(_EXTRACT_TEXT_JS)
            screenshot = None
            if self._config.screenshot:
                screenshot = await page.screenshot(full_page=True, type="png")

            return RenderedPage(
                url=url,
                html=html,
                title=title,
                text=text or "",
                screenshot=screenshot,
            )
        finally:
            await context.close()
