"""Wires a RefreshCoordinator from process configuration."""

from __future__ import annotations

import logging

from pricewatch.acquisition.acquirer import ContentAcquirer
from pricewatch.browser.layer import BrowserLayer
from pricewatch.config.providers import load_registry
from pricewatch.config.settings import PricewatchConfig
from pricewatch.extraction.engine import ExtractionAdapter, ExtractionEngine, GeminiExtractionEngine
from pricewatch.pipeline.evaluator import ConfidenceEvaluator
from pricewatch.refresh.background import BackgroundTaskPool
from pricewatch.refresh.coordinator import RefreshCoordinator
from pricewatch.store.artifacts import ArtifactArchive
from pricewatch.store.documents import DocumentStore, FileDocumentStore, InMemoryDocumentStore
from pricewatch.store.versioned import VersionedStore

logger = logging.getLogger(__name__)


def build_document_store(config: PricewatchConfig) -> DocumentStore:
    if config.store.backend == "memory":
        return InMemoryDocumentStore()
    return FileDocumentStore(config.store.data_dir / "store")


async def build_coordinator(
    config: PricewatchConfig | None = None,
    engine: ExtractionEngine | None = None,
) -> RefreshCoordinator:
    """Build the registry, store and pipeline components once at startup."""
    config = config or PricewatchConfig()
    registry = load_registry(config.providers_file, config.url_policy)

    if engine is None:
        engine = GeminiExtractionEngine(config.vertex)
        if not await engine.initialize():
            logger.warning("Extraction model unavailable; refreshes will fail at extraction")

    file_backed = config.store.backend == "file"
    artifacts = None
    if file_backed and config.store.save_artifacts:
        artifacts = ArtifactArchive(config.store.data_dir / "artifacts")
    ledger_dir = None
    if file_backed and config.refresh.signal_ledger:
        ledger_dir = config.store.data_dir / "signals"

    coordinator = RefreshCoordinator(
        registry=registry,
        acquirer=ContentAcquirer(config.acquisition, renderer=BrowserLayer(config.browser)),
        extractor=ExtractionAdapter(engine, timeout_s=config.vertex.request_timeout_s),
        evaluator=ConfidenceEvaluator(config.evaluator),
        store=VersionedStore(build_document_store(config), config.store, registry),
        config=config.refresh,
        pool=BackgroundTaskPool(),
        artifacts=artifacts,
        ledger_dir=ledger_dir,
    )
    logger.info(
        "Refresh coordinator ready: %d providers, %s store", len(registry), config.store.backend
    )
    return coordinator
