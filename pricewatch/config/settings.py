"""Pricewatch configuration settings."""

from __future__ import annotations

import os
from datetime import timedelta
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field, field_validator


def _int_env(var_name: str, default: int) -> int:
    raw = os.getenv(var_name, "").strip()
    return int(raw) if raw else default


class VertexConfig(BaseModel):
    """Vertex AI configuration for the extraction boundary."""

    project_id: str = Field(default_factory=lambda: os.getenv("VERTEX_PROJECT_ID", ""))
    location: str = Field(default_factory=lambda: os.getenv("VERTEX_LOCATION", "us-central1"))
    model: str = Field(
        default_factory=lambda: os.getenv("PRICEWATCH_EXTRACTION_MODEL", "gemini-2.5-flash")
    )
    max_prompt_chars: int = 200_000
    temperature: float = 0.1
    max_output_tokens: int = 8192
    request_timeout_s: int = Field(
        default_factory=lambda: _int_env("PRICEWATCH_EXTRACTION_TIMEOUT_S", 120)
    )

    @field_validator("request_timeout_s")
    @classmethod
    def _validate_request_timeout(cls, value: int) -> int:
        if value < 1:
            raise ValueError("PRICEWATCH_EXTRACTION_TIMEOUT_S must be >= 1")
        return value


class AcquisitionConfig(BaseModel):
    """Content acquisition configuration."""

    batch_size: int = Field(default_factory=lambda: _int_env("PRICEWATCH_FETCH_BATCH_SIZE", 3))
    min_content_length: int = 500
    fetch_timeout_s: float = 15.0
    user_agent: str = (
        "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/124.0 Safari/537.36"
    )
    accept_language: str = "en-US,en;q=0.9"

    @field_validator("batch_size")
    @classmethod
    def _validate_batch_size(cls, value: int) -> int:
        if value < 1:
            raise ValueError("PRICEWATCH_FETCH_BATCH_SIZE must be >= 1")
        return value


class BrowserConfig(BaseModel):
    """Browser layer configuration."""

    headless: bool = True
    viewport_width: int = 1920
    viewport_height: int = 1080
    user_agent: str | None = None
    locale: str = "en-US"
    navigation_timeout_ms: int = 30000
    marker_timeout_ms: int = 5000
    settle_after_scroll_ms: int = 1000
    pricing_markers: list[str] = Field(
        default_factory=lambda: [".pricing", '[class*="pricing"]', '[id*="pricing"]', "table"]
    )
    screenshot: bool = True


class EvaluatorConfig(BaseModel):
    """Thresholds for the confidence evaluator."""

    acceptance_threshold: float = 0.5
    min_serialized_size: int = 32
    size_change_threshold: float = 0.5
    price_change_threshold: float = 0.5
    price_match_tolerance: float = 0.2
    high_price_ceiling: float = 100_000
    duplicate_node_distance: int = 5


class RefreshConfig(BaseModel):
    """Refresh coordinator policy."""

    freshness_window_s: int = Field(
        default_factory=lambda: _int_env("PRICEWATCH_FRESHNESS_WINDOW_S", 3600)
    )
    lease_ttl_s: int = Field(default_factory=lambda: _int_env("PRICEWATCH_LEASE_TTL_S", 300))
    schema_version: str = "2024-11-20"
    signal_ledger: bool = False

    @property
    def freshness_window(self) -> timedelta:
        return timedelta(seconds=self.freshness_window_s)

    @property
    def lease_ttl(self) -> timedelta:
        return timedelta(seconds=self.lease_ttl_s)

    @field_validator("lease_ttl_s")
    @classmethod
    def _validate_lease_ttl(cls, value: int) -> int:
        if value < 1:
            raise ValueError("PRICEWATCH_LEASE_TTL_S must be >= 1")
        return value


class StoreConfig(BaseModel):
    """Versioned store configuration."""

    backend: Literal["memory", "file"] = Field(
        default_factory=lambda: os.getenv("PRICEWATCH_STORE_BACKEND", "file")  # type: ignore[return-value]
    )
    data_dir: Path = Field(
        default_factory=lambda: Path(os.getenv("PRICEWATCH_DATA_DIR", "./data"))
    )
    archive_retention_days: int = 365
    failure_retention_days: int = 30
    save_artifacts: bool = True


class URLPolicyConfig(BaseModel):
    """Policy applied to provider URLs when the registry is loaded."""

    allowed_schemes: list[str] = Field(default_factory=lambda: ["http", "https"])
    block_local_hostnames: bool = True
    block_private_ips: bool = True
    resolve_dns: bool = False


class PricewatchConfig(BaseModel):
    """Root configuration for a Pricewatch process."""

    vertex: VertexConfig = Field(default_factory=VertexConfig)
    acquisition: AcquisitionConfig = Field(default_factory=AcquisitionConfig)
    browser: BrowserConfig = Field(default_factory=BrowserConfig)
    evaluator: EvaluatorConfig = Field(default_factory=EvaluatorConfig)
    refresh: RefreshConfig = Field(default_factory=RefreshConfig)
    store: StoreConfig = Field(default_factory=StoreConfig)
    url_policy: URLPolicyConfig = Field(default_factory=URLPolicyConfig)
    providers_file: Path | None = Field(
        default_factory=lambda: (
            Path(os.environ["PRICEWATCH_PROVIDERS_FILE"])
            if os.getenv("PRICEWATCH_PROVIDERS_FILE")
            else None
        )
    )
    log_level: str = Field(default_factory=lambda: os.getenv("PRICEWATCH_LOG_LEVEL", "INFO"))
