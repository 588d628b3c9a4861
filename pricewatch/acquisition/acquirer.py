"""Content Acquirer — gathers one PageSnapshot per configured provider URL.

Chooses between a plain fetch and the full rendering engine per page, runs
pages in small concurrent batches, and records page failures inline so a
single bad URL never aborts the provider.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable

import httpx

from pricewatch.acquisition.fetcher import FetchedPage, PageFetcher
from pricewatch.browser.layer import BrowserLayer, RenderedPage
from pricewatch.config.providers import ProviderDescriptor, RenderingHint
from pricewatch.config.settings import AcquisitionConfig
from pricewatch.pipeline.models import AcquisitionReport, PageSnapshot, infer_source_type

logger = logging.getLogger(__name__)


class AcquisitionError(Exception):
    """A single page could not be acquired. Recorded inline, never escalated."""


class AcquisitionTotalFailure(Exception):
    """No page could be acquired, or acquisition could not be attempted at all."""


class ContentAcquirer:
    """Acquires raw content for every URL of a provider.

    Contract:
    - acquire() returns exactly one PageSnapshot per URL, in URL order
    - page-level errors and timeouts populate PageSnapshot.error
    - raises AcquisitionTotalFailure only when a provider needs rendering and
      no rendering engine is available
    """

    def __init__(
        self,
        config: AcquisitionConfig | None = None,
        renderer: BrowserLayer | None = None,
        fetcher_factory: Callable[[], PageFetcher] | None = None,
    ) -> None:
        self._config = config or AcquisitionConfig()
        self._renderer = renderer
        self._fetcher_factory = fetcher_factory or (lambda: PageFetcher(self._config))
        self._renderer_lock = asyncio.Lock()

    @property
    def can_render(self) -> bool:
        return self._renderer is not None

    async def aclose(self) -> None:
        if self._renderer is not None:
            await self._renderer.stop()

    def is_sufficient(self, text: str) -> bool:
        """Real pricing pages are never shorter than the configured threshold."""
        return len(text.strip()) >= self._config.min_content_length

    async def acquire(self, provider: ProviderDescriptor) -> AcquisitionReport:
        hint = provider.rendering
        if hint.mode == "csr" and self._renderer is None:
            raise AcquisitionTotalFailure(
                f"Provider {provider.id} requires rendering but no rendering engine is available"
            )

        start = time.monotonic()
        urls = list(provider.urls)
        pages: dict[str, PageSnapshot] = {}
        batch_size = self._config.batch_size

        async with self._fetcher_factory() as fetcher:
            for offset in range(0, len(urls), batch_size):
                batch = urls[offset : offset + batch_size]
                results = await asyncio.gather(
                    *(self._acquire_page(fetcher, url, hint) for url in batch)
                )
                for snapshot in results:
                    pages[snapshot.url] = snapshot

        duration_ms = round((time.monotonic() - start) * 1000)
        report = AcquisitionReport(
            provider_id=provider.id,
            pages=[pages[url] for url in urls],
            duration_ms=duration_ms,
        )
        logger.info(
            "Acquired %d/%d pages for %s in %dms",
            len(report.usable_pages),
            len(urls),
            provider.id,
            duration_ms,
        )
        return report

    async def _acquire_page(
        self, fetcher: PageFetcher, url: str, hint: RenderingHint
    ) -> PageSnapshot:
        try:
            return await self._acquire_page_unchecked(fetcher, url, hint)
        except Exception as exc:
            logger.warning("Acquisition failed for %s: %s", url, exc)
            return PageSnapshot.failed(url, f"{type(exc).__name__}: {exc}")

    async def _acquire_page_unchecked(
        self, fetcher: PageFetcher, url: str, hint: RenderingHint
    ) -> PageSnapshot:
        if hint.mode == "csr":
            return await self._render(url, hint)

        fetched: FetchedPage | None = None
        fetch_error = ""
        try:
            fetched = await fetcher.fetch(url)
        except httpx.HTTPError as exc:
            fetch_error = f"{type(exc).__name__}: {exc}"

        if fetched is not None and self.is_sufficient(fetched.text):
            return self._from_fetch(fetched)

        if hint.mode == "ssr" or self._renderer is None:
            if fetched is not None:
                return self._from_fetch(fetched)
            raise AcquisitionError(fetch_error)

        logger.debug("Plain fetch insufficient for %s, rendering", url)
        return await self._render(url, hint)

    async def _render(self, url: str, hint: RenderingHint) -> PageSnapshot:
        if self._renderer is None:
            raise AcquisitionError("Rendering engine unavailable")
        async with self._renderer_lock:
            if not self._renderer.is_started:
                await self._renderer.start()
        rendered = await self._renderer.render(url, hint)
        return self._from_render(rendered)

    @staticmethod
    def _from_fetch(fetched: FetchedPage) -> PageSnapshot:
        return PageSnapshot(
            url=fetched.url,
            html=fetched.html,
            text=fetched.text,
            title=fetched.title,
            source_type=infer_source_type(fetched.url),
            acquired_via="fetch",
        )

    @staticmethod
    def _from_render(rendered: RenderedPage) -> PageSnapshot:
        return PageSnapshot(
            url=rendered.url,
            html=rendered.html,
            text=rendered.text,
            title=rendered.title,
            screenshot=rendered.screenshot,
            source_type=infer_source_type(rendered.url),
            acquired_via="render",
        )
