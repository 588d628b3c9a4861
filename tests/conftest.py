"""Shared fixtures: a manual clock, stub acquirer and extraction engine, and a wired coordinator."""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Any

import pytest

from pricewatch.config.providers import (
    ExtractionHints,
    ProviderDescriptor,
    ProviderRegistry,
    RenderingHint,
)
from pricewatch.config.settings import RefreshConfig, StoreConfig
from pricewatch.extraction.engine import (
    ExtractionAdapter,
    ExtractionEngine,
    ExtractionError,
    ExtractionRequest,
    RawExtraction,
)
from pricewatch.pipeline.evaluator import ConfidenceEvaluator
from pricewatch.pipeline.models import AcquisitionReport, PageSnapshot, infer_source_type
from pricewatch.refresh.background import BackgroundTaskPool
from pricewatch.refresh.coordinator import RefreshCoordinator
from pricewatch.store.documents import InMemoryDocumentStore
from pricewatch.store.versioned import VersionedStore

PRICING_TEXT = (
    "Acme Cloud pricing. Free plan: $0 per month, includes 100 GB bandwidth and "
    "1 project. Pro plan: $20 per user per month, includes 1 TB bandwidth, "
    "unlimited projects, preview deployments and email support. Enterprise plan: "
    "custom pricing with SSO, audit logs, a 99.99% SLA and dedicated support. "
) * 3

SCENARIO_A_DOCUMENT = {"tiers": [{"name": "Free", "price": 0}, {"name": "Pro", "price": 20}]}


class ManualClock:
    """Deterministic clock; tests move time with advance()."""

    def __init__(self, start: datetime | None = None) -> None:
        self.current = start or datetime(2024, 11, 20, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **kwargs: float) -> None:
        self.current += timedelta(**kwargs)


class StubAcquirer:
    """Returns a canned report. ``gate`` holds every acquire() until it is set."""

    def __init__(
        self,
        pages: list[PageSnapshot] | None = None,
        gate: asyncio.Event | None = None,
        error: Exception | None = None,
    ) -> None:
        self.pages = pages
        self.gate = gate
        self.error = error
        self.calls: list[str] = []
        self.entered = asyncio.Event()

    async def acquire(self, provider: ProviderDescriptor) -> AcquisitionReport:
        self.calls.append(provider.id)
        self.entered.set()
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        pages = self.pages
        if pages is None:
            pages = [
                PageSnapshot(
                    url=url,
                    html=f"<html><body><main>{PRICING_TEXT}</main></body></html>",
                    text=PRICING_TEXT,
                    title="Pricing",
                    source_type=infer_source_type(url),
                    acquired_via="fetch",
                )
                for url in provider.urls
            ]
        return AcquisitionReport(provider_id=provider.id, pages=pages, duration_ms=42)

    async def aclose(self) -> None:
        return None


class StubEngine(ExtractionEngine):
    """Extraction engine returning a fixed document, or raising a given error.

    ``delay_s`` makes every call sleep first, to exercise the adapter timeout.
    """

    def __init__(
        self,
        data: Any = None,
        confidence: float | None = 0.9,
        model: str = "stub-model",
        error: Exception | None = None,
        delay_s: float = 0,
    ) -> None:
        self.delay_s = delay_s
        self.data = SCENARIO_A_DOCUMENT if data is None and error is None else data
        self.confidence = confidence
        self.model = model
        self.error = error
        self.requests: list[ExtractionRequest] = []

    async def extract(self, request: ExtractionRequest) -> RawExtraction:
        self.requests.append(request)
        if self.delay_s:
            await asyncio.sleep(self.delay_s)
        if self.error is not None:
            raise self.error
        return RawExtraction(
            data=self.data, confidence=self.confidence, model=self.model, tokens_used=1234
        )


def build_provider(**overrides: Any) -> ProviderDescriptor:
    fields: dict[str, Any] = {
        "id": "acme",
        "name": "Acme Cloud",
        "category": "hosting",
        "urls": ("https://acme.example.com/pricing",),
        "rendering": RenderingHint(mode="ssr"),
        "hints": ExtractionHints(),
    }
    fields.update(overrides)
    return ProviderDescriptor(**fields)


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def provider():
    return build_provider()


@pytest.fixture
def make_provider():
    return build_provider


@pytest.fixture
def registry(provider):
    return ProviderRegistry([provider, build_provider(id="other", name="Other Cloud")])


@pytest.fixture
def documents(clock):
    return InMemoryDocumentStore(clock=clock)


@pytest.fixture
def store(documents, registry):
    return VersionedStore(documents, StoreConfig(backend="memory"), registry)


@pytest.fixture
def stub_acquirer():
    return StubAcquirer()


@pytest.fixture
def make_acquirer():
    return StubAcquirer


@pytest.fixture
def stub_engine():
    return StubEngine()


@pytest.fixture
def make_engine():
    return StubEngine


@pytest.fixture
def refresh_config():
    return RefreshConfig(freshness_window_s=3600, lease_ttl_s=300)


@pytest.fixture
def make_coordinator(registry, store, refresh_config):
    """Build a coordinator around the shared store with the given stubs."""

    def _make(acquirer=None, engine=None, extraction_timeout_s=120.0, **kwargs):
        return RefreshCoordinator(
            registry=kwargs.pop("registry", registry),
            acquirer=acquirer or StubAcquirer(),
            extractor=ExtractionAdapter(engine or StubEngine(), timeout_s=extraction_timeout_s),
            evaluator=ConfidenceEvaluator(),
            store=kwargs.pop("store", store),
            config=kwargs.pop("config", refresh_config),
            pool=BackgroundTaskPool(),
            **kwargs,
        )

    return _make


@pytest.fixture
def extraction_error():
    return ExtractionError("Empty response from extraction model")
