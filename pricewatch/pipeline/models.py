"""Refresh pipeline data models — page captures, extraction and validation outcomes,
and the durable pricing snapshot consumed by the serving layer."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Literal
from urllib.parse import urlparse

from pydantic import BaseModel, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SourceType(str, Enum):
    """Inferred category of a source page."""

    PRICING = "pricing"
    LIMITS = "limits"
    FAIR_USE = "fair-use"
    DOCS = "docs"


def infer_source_type(url: str) -> SourceType:
    path = url.lower()
    if "pricing" in path:
        return SourceType.PRICING
    if "limits" in path:
        return SourceType.LIMITS
    if "fair-use" in path:
        return SourceType.FAIR_USE
    return SourceType.DOCS


_PAGE_LABELS: tuple[tuple[str, str], ...] = (
    ("pricing", "Main Pricing"),
    ("limits", "Limits & Quotas"),
    ("fair-use", "Fair Use Policy"),
    ("enterprise", "Enterprise"),
    ("faq", "FAQ"),
    ("billing", "Billing Info"),
    ("docs", "Documentation"),
)


def infer_page_label(url: str) -> str:
    """Human-readable page label used in extraction prompts."""
    path = urlparse(url).path.lower()
    for needle, label in _PAGE_LABELS:
        if needle in path:
            return label
    return "Info Page"


class PageSnapshot(BaseModel):
    """One URL's acquisition result. Failures are carried in ``error``."""

    url: str
    html: str = ""
    text: str = ""
    title: str = ""
    screenshot: bytes | None = None
    source_type: SourceType
    captured_at: datetime = Field(default_factory=utcnow)
    error: str | None = None
    acquired_via: Literal["fetch", "render"] | None = None

    model_config = {"frozen": True}

    @property
    def ok(self) -> bool:
        return self.error is None and bool(self.text.strip())

    @classmethod
    def failed(cls, url: str, error: str) -> "PageSnapshot":
        return cls(url=url, source_type=infer_source_type(url), error=error)


class AcquisitionReport(BaseModel):
    """All page snapshots gathered for one provider in one attempt."""

    provider_id: str
    pages: list[PageSnapshot]
    duration_ms: int = 0

    @property
    def usable_pages(self) -> list[PageSnapshot]:
        return [page for page in self.pages if page.ok]

    @property
    def failed_pages(self) -> list[PageSnapshot]:
        return [page for page in self.pages if not page.ok]


class ExtractionOutcome(BaseModel):
    """Structured document returned by the extraction boundary."""

    data: Any
    confidence: float = Field(ge=0.0, le=1.0)
    model: str
    tokens_used: int = 0


class ValidationOutcome(BaseModel):
    """Accept/reject decision from the confidence evaluator."""

    accepted: bool
    confidence: float = Field(ge=0.0, le=1.0)
    errors: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    layer_scores: dict[str, float] = Field(default_factory=dict)


class SnapshotSource(BaseModel):
    url: str
    type: SourceType
    scraped_at: datetime = Field(alias="scrapedAt")

    model_config = {"populate_by_name": True, "frozen": True}


class SnapshotMetadata(BaseModel):
    confidence: float = Field(ge=0.0, le=1.0)
    extraction_model: str = Field(alias="extractionModel")
    processing_time: int = Field(alias="processingTime")
    schema_version: str = Field(alias="schemaVersion")

    model_config = {"populate_by_name": True, "frozen": True}


class PricingSnapshot(BaseModel):
    """The durable, accepted unit of pricing data for a provider.

    Serialized with camelCase keys; that shape is read verbatim by the
    serving layer.
    """

    provider: str
    scraped_at: datetime = Field(alias="scrapedAt")
    sources: list[SnapshotSource]
    data: Any
    metadata: SnapshotMetadata

    model_config = {"populate_by_name": True, "frozen": True}

    def to_document(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)

    @classmethod
    def from_document(cls, document: dict[str, Any]) -> "PricingSnapshot":
        return cls.model_validate(document)

    def age_at(self, now: datetime) -> float:
        """Age in seconds relative to ``now``."""
        scraped_at = self.scraped_at
        if scraped_at.tzinfo is None:
            scraped_at = scraped_at.replace(tzinfo=timezone.utc)
        return (now - scraped_at).total_seconds()


class FailureRecord(BaseModel):
    """Last rejected validation for a provider, kept for operators."""

    provider: str
    job_id: str
    recorded_at: datetime = Field(default_factory=utcnow)
    outcome: ValidationOutcome
    candidate: Any = None
    extraction_model: str = ""
