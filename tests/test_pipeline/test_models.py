"""Tests for pipeline data models and the stored snapshot shape."""

from datetime import datetime, timedelta, timezone

import pytest

from pricewatch.pipeline.models import (
    PageSnapshot,
    PricingSnapshot,
    SnapshotMetadata,
    SnapshotSource,
    SourceType,
    infer_page_label,
    infer_source_type,
)

CAPTURED = datetime(2024, 11, 20, 12, 0, tzinfo=timezone.utc)


@pytest.mark.parametrize(
    ("url", "expected"),
    [
        ("https://vercel.com/pricing", SourceType.PRICING),
        ("https://vercel.com/docs/limits", SourceType.LIMITS),
        ("https://example.com/legal/fair-use", SourceType.FAIR_USE),
        ("https://example.com/docs/billing", SourceType.DOCS),
    ],
)
def test_infer_source_type(url, expected):
    assert infer_source_type(url) == expected


@pytest.mark.parametrize(
    ("url", "label"),
    [
        ("https://netlify.com/pricing/", "Main Pricing"),
        ("https://netlify.com/pricing/faq/", "Main Pricing"),
        ("https://docs.netlify.com/billing-faq/", "FAQ"),
        ("https://acme.example.com/enterprise", "Enterprise"),
        ("https://acme.example.com/about", "Info Page"),
    ],
)
def test_infer_page_label(url, label):
    assert infer_page_label(url) == label


class TestPageSnapshot:
    def test_failed_snapshot(self):
        page = PageSnapshot.failed("https://acme.example.com/docs/limits", "ReadTimeout: slow")
        assert not page.ok
        assert page.text == ""
        assert page.source_type == SourceType.LIMITS

    def test_blank_text_is_not_ok(self):
        page = PageSnapshot(url="https://a.example.com", text="   ", source_type=SourceType.DOCS)
        assert not page.ok

    def test_immutable(self):
        page = PageSnapshot(url="https://a.example.com", text="x", source_type=SourceType.DOCS)
        with pytest.raises(Exception):
            page.text = "y"


class TestPricingSnapshot:
    @pytest.fixture
    def snapshot(self):
        return PricingSnapshot(
            provider="vercel",
            scraped_at=CAPTURED,
            sources=[
                SnapshotSource(
                    url="https://vercel.com/pricing",
                    type=SourceType.PRICING,
                    scraped_at=CAPTURED,
                )
            ],
            data={"plans": [{"name": "Hobby", "price": 0}]},
            metadata=SnapshotMetadata(
                confidence=0.85,
                extraction_model="gemini-2.5-flash",
                processing_time=1200,
                schema_version="2024-11-20",
            ),
        )

    def test_document_shape(self, snapshot):
        document = snapshot.to_document()
        assert set(document) == {"provider", "scrapedAt", "sources", "data", "metadata"}
        assert document["sources"] == [
            {"url": "https://vercel.com/pricing", "type": "pricing", "scrapedAt": "2024-11-20T12:00:00Z"}
        ]
        assert document["metadata"] == {
            "confidence": 0.85,
            "extractionModel": "gemini-2.5-flash",
            "processingTime": 1200,
            "schemaVersion": "2024-11-20",
        }

    def test_from_document(self, snapshot):
        assert PricingSnapshot.from_document(snapshot.to_document()) == snapshot

    def test_age(self, snapshot):
        assert snapshot.age_at(CAPTURED + timedelta(minutes=5)) == 300
