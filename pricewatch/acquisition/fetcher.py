"""Lightweight page fetch — plain HTTP GET plus HTML-to-text cleanup.

Used for server-rendered providers. No JavaScript is executed; when the
resulting text is too short the acquirer falls back to the browser layer.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

import httpx
from bs4 import BeautifulSoup

from pricewatch.config.settings import AcquisitionConfig

_STRIP_TAGS = ("script", "style", "noscript", "iframe", "template", "svg")
_MAIN_REGION_SELECTORS = ("main", "[role=main]", "article", "#content", ".content")
_WHITESPACE = re.compile(r"\s+")


@dataclass
class FetchedPage:
    """Result of a plain fetch."""

    url: str
    status_code: int
    html: str
    title: str
    text: str


def normalize_text(text: str) -> str:
    return _WHITESPACE.sub(" ", text).strip()


def html_to_text(html: str) -> tuple[str, str]:
    """Return ``(title, text)`` for an HTML document.

    Scripts and styles are dropped. Text from the main content region is
    preferred over the whole body when the region is present and non-empty.
    """
    soup = BeautifulSoup(html, "html.parser")
    title = normalize_text(soup.title.get_text()) if soup.title else ""

    for tag in soup(_STRIP_TAGS):
        tag.decompose()

    for selector in _MAIN_REGION_SELECTORS:
        region = soup.select_one(selector)
        if region is not None:
            text = normalize_text(region.get_text(" "))
            if text:
                return title, text

    root = soup.body or soup
    return title, normalize_text(root.get_text(" "))


class PageFetcher:
    """Async HTTP fetcher shared across the pages of one acquisition."""

    def __init__(
        self,
        config: AcquisitionConfig | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._config = config or AcquisitionConfig()
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            timeout=self._config.fetch_timeout_s,
            follow_redirects=True,
            headers={
                "User-Agent": self._config.user_agent,
                "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
                "Accept-Language": self._config.accept_language,
            },
        )

    async def __aenter__(self) -> "PageFetcher":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def fetch(self, url: str) -> FetchedPage:
        """Fetch a URL. Raises ``httpx.HTTPError`` on transport or status errors."""
        response = await self._client.get(url)
        response.raise_for_status()
        html = response.text
        title, text = html_to_text(html)
        return FetchedPage(
            url=url,
            status_code=response.status_code,
            html=html,
            title=title,
            text=text,
        )
