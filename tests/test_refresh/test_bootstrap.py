"""Tests for coordinator wiring from process configuration."""

import pytest

from pricewatch.config.settings import PricewatchConfig, RefreshConfig, StoreConfig, VertexConfig
from pricewatch.refresh.bootstrap import build_coordinator, build_document_store
from pricewatch.store.documents import FileDocumentStore, InMemoryDocumentStore


def _config(tmp_path, backend="file", **refresh):
    return PricewatchConfig(
        store=StoreConfig(backend=backend, data_dir=tmp_path),
        refresh=RefreshConfig(**refresh),
        vertex=VertexConfig(project_id=""),
        providers_file=None,
    )


class TestBuildDocumentStore:
    def test_memory_backend(self, tmp_path):
        assert isinstance(build_document_store(_config(tmp_path, "memory")), InMemoryDocumentStore)

    def test_file_backend_under_data_dir(self, tmp_path):
        documents = build_document_store(_config(tmp_path))
        assert isinstance(documents, FileDocumentStore)
        assert documents.root == tmp_path / "store"


class TestBuildCoordinator:
    @pytest.mark.asyncio
    async def test_builtin_registry_and_file_store(self, tmp_path, stub_engine):
        coordinator = await build_coordinator(_config(tmp_path, signal_ledger=True), engine=stub_engine)

        assert {"vercel", "netlify", "supabase", "render", "fly"} <= set(coordinator.registry.ids)
        assert isinstance(coordinator.store.documents, FileDocumentStore)
        assert coordinator._artifacts.root == tmp_path / "artifacts"
        assert coordinator._ledger_dir == tmp_path / "signals"
        await coordinator.acquirer.aclose()

    @pytest.mark.asyncio
    async def test_memory_backend_skips_artifacts_and_ledger(self, tmp_path, stub_engine):
        coordinator = await build_coordinator(
            _config(tmp_path, "memory", signal_ledger=True), engine=stub_engine
        )
        assert coordinator._artifacts is None
        assert coordinator._ledger_dir is None

    @pytest.mark.asyncio
    async def test_unavailable_model_still_builds(self, tmp_path, caplog):
        coordinator = await build_coordinator(_config(tmp_path, "memory"))
        assert len(coordinator.registry) >= 5
        assert "Extraction model unavailable" in caplog.text
