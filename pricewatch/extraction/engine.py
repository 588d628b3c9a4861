"""Extraction boundary — turns acquired page text into a structured pricing document.

The model behind the boundary is a black box. It receives the provider name
and the text of each page, and returns a JSON document in whatever shape
fits that provider. The adapter normalizes the answer (document, confidence,
model id, token usage) and turns empty or unparseable answers into
ExtractionError.
"""

from __future__ import annotations

import asyncio
import json
import logging
import math
from typing import Any

from pydantic import BaseModel, Field

from pricewatch.config.providers import ProviderDescriptor
from pricewatch.config.settings import VertexConfig
from pricewatch.pipeline.document import find_terms, price_values, serialize
from pricewatch.pipeline.models import ExtractionOutcome, PageSnapshot, infer_page_label
from pricewatch.telemetry.errors import ErrorCode, emit_structured_error

logger = logging.getLogger(__name__)


class ExtractionError(Exception):
    """The extraction boundary returned nothing usable."""


class ExtractionPage(BaseModel):
    url: str
    page_type: str
    title: str = ""
    text: str


class ExtractionRequest(BaseModel):
    """What the boundary is asked to read."""

    provider_name: str
    pages: list[ExtractionPage]
    keywords: list[str] = Field(default_factory=list)


class RawExtraction(BaseModel):
    """Unnormalized boundary response. ``confidence`` is None when not reported."""

    data: Any = None
    confidence: float | None = None
    model: str = ""
    tokens_used: int = 0


SYSTEM_PROMPT = (
    "You are an expert at extracting pricing information from websites.\n"
    "Your task is to extract comprehensive pricing data from the provided content.\n\n"
    "IMPORTANT INSTRUCTIONS:\n"
    "1. Extract ALL pricing tiers, plans, and options\n"
    "2. Include ALL limits, quotas, and restrictions\n"
    "3. Capture overage pricing and additional costs\n"
    "4. Note fair use policies and hidden limitations\n"
    "5. Preserve the natural structure of the provider's pricing model\n"
    "6. Include both included and paid features\n"
    "7. Extract pricing for all services/products offered\n\n"
    "Return the data in the most natural JSON structure for this provider.\n"
    "Do NOT force the data into a predetermined schema.\n"
    "Organize it in a way that makes sense for this specific provider's business model."
)


def build_extraction_prompt(request: ExtractionRequest, max_chars: int) -> str:
    """Assemble the user prompt: page index, focus list, then delimited page text."""
    descriptions = "\n".join(
        f"Page {i + 1} ({page.page_type}): {page.url}" for i, page in enumerate(request.pages)
    )

    budget = max(max_chars // max(len(request.pages), 1), 1)
    blocks = []
    for i, page in enumerate(request.pages):
        blocks.append(
            f"=== PAGE {i + 1}: {page.url} ===\n"
            f"Title: {page.title}\n\n"
            f"{page.text[:budget]}\n\n"
            f"=== END OF PAGE {i + 1} ==="
        )
    combined = "\n\n".join(blocks)

    keywords = ""
    if request.keywords:
        keywords = f"\nTerms this provider is known to use: {', '.join(request.keywords)}\n"

    return (
        f"Extract comprehensive pricing information from {request.provider_name}.\n\n"
        f"You have {len(request.pages)} pages of content:\n{descriptions}\n{keywords}\n"
        "IMPORTANT: Correlate information across ALL pages to build a complete picture.\n"
        "Pay special attention to:\n"
        "- Main pricing tiers and their costs\n"
        "- Resource limits and quotas\n"
        "- Overage charges\n"
        "- Fair use policies\n"
        "- Hidden costs or restrictions\n"
        "- Enterprise/custom pricing mentions\n"
        "- Free tier limitations\n"
        "- Features included vs paid add-ons\n\n"
        f"CONTENT TO ANALYZE:\n{combined}\n\n"
        "Extract and return a comprehensive JSON object with all pricing information.\n"
        f"Structure it naturally for {request.provider_name}'s specific pricing model."
    )


def _count_tiers(data: Any) -> int:
    if isinstance(data, dict):
        for key in ("plans", "tiers", "products"):
            if isinstance(data.get(key), list):
                return len(data[key])
    signatures = {price.signature.rsplit("/", 1)[0] for price in price_values(data)}
    return min(len(signatures), 10)


def estimate_confidence(data: Any, page_count: int) -> float:
    """Completeness heuristic used when the model reports no confidence.

    Five equally weighted checks: pricing vocabulary, limits vocabulary,
    feature vocabulary, at least 500 serialized chars per page, and at least
    two distinct tiers.
    """
    checks = [
        bool(find_terms(data, ("price", "cost", "pricing", "plans", "tiers"))),
        bool(find_terms(data, ("limits", "quotas", "included", "allowance"))),
        bool(find_terms(data, ("features", "capabilities", "included"))),
        len(serialize(data)) >= page_count * 500,
        _count_tiers(data) >= 2,
    ]
    return sum(checks) / len(checks)


class ExtractionEngine:
    """Base class for extraction backends."""

    @property
    def is_available(self) -> bool:
        return True

    async def initialize(self) -> bool:
        return True

    async def extract(self, request: ExtractionRequest) -> RawExtraction:
        raise NotImplementedError


class GeminiExtractionEngine(ExtractionEngine):
    """Extraction backend on Vertex AI Gemini.

    Stateless apart from the client handle. Failures propagate as
    ExtractionError; nothing is retried here.
    """

    def __init__(self, config: VertexConfig) -> None:
        self._config = config
        self._client: Any = None
        self._initialized = False

    async def initialize(self) -> bool:
        """Initialize the Vertex AI client. Returns False when not configured."""
        if not self._config.project_id:
            return False

        try:
            import vertexai
            from vertexai.generative_models import GenerativeModel

            vertexai.init(
                project=self._config.project_id,
                location=self._config.location,
            )
            self._client = GenerativeModel(
                self._config.model,
                system_instruction=SYSTEM_PROMPT,
            )
            self._initialized = True
            return True
        except Exception as exc:
            emit_structured_error(
                logger,
                code=ErrorCode.EXTRACTION_INITIALIZATION_FAILED,
                message=str(exc),
                suppressed=True,
            )
            self._initialized = False
            return False

    @property
    def is_available(self) -> bool:
        return self._initialized and self._client is not None

    async def extract(self, request: ExtractionRequest) -> RawExtraction:
        if not self.is_available:
            raise ExtractionError("Extraction model is not initialized")

        from vertexai.generative_models import GenerationConfig

        prompt = build_extraction_prompt(request, self._config.max_prompt_chars)
        try:
            response = await self._client.generate_content_async(
                prompt,
                generation_config=GenerationConfig(
                    temperature=self._config.temperature,
                    max_output_tokens=self._config.max_output_tokens,
                    response_mime_type="application/json",
                ),
            )
        except Exception as exc:
            raise ExtractionError(f"Extraction request failed: {exc}") from exc

        text = getattr(response, "text", "") or ""
        if not text.strip():
            raise ExtractionError("Empty response from extraction model")
        try:
            data = json.loads(text)
        except json.JSONDecodeError as exc:
            raise ExtractionError(f"Unparseable response from extraction model: {exc}") from exc

        usage = getattr(response, "usage_metadata", None)
        tokens = int(getattr(usage, "total_token_count", 0) or 0)
        return RawExtraction(data=data, model=self._config.model, tokens_used=tokens)


class ExtractionAdapter:
    """Wraps an extraction engine and normalizes its result for the pipeline.

    Every engine call is bounded by ``timeout_s``; a call that runs past it is
    cancelled and reported as ExtractionError.
    """

    def __init__(self, engine: ExtractionEngine, timeout_s: float = 120.0) -> None:
        self._engine = engine
        self._timeout_s = timeout_s

    @property
    def engine(self) -> ExtractionEngine:
        return self._engine

    @staticmethod
    def build_request(provider: ProviderDescriptor, pages: list[PageSnapshot]) -> ExtractionRequest:
        return ExtractionRequest(
            provider_name=provider.name,
            pages=[
                ExtractionPage(
                    url=page.url,
                    page_type=infer_page_label(page.url),
                    title=page.title,
                    text=page.text,
                )
                for page in pages
                if page.ok
            ],
            keywords=list(provider.hints.keywords),
        )

    async def extract(
        self, provider: ProviderDescriptor, pages: list[PageSnapshot]
    ) -> ExtractionOutcome:
        request = self.build_request(provider, pages)
        if not request.pages:
            raise ExtractionError(f"No usable page content for {provider.id}")

        try:
            raw = await asyncio.wait_for(self._engine.extract(request), timeout=self._timeout_s)
        except asyncio.TimeoutError:
            raise ExtractionError(
                f"Extraction for {provider.id} timed out after {self._timeout_s:g}s"
            ) from None
        if raw.data is None or isinstance(raw.data, (str, int, float, bool)):
            raise ExtractionError(
                f"Extraction returned no structured document for {provider.id}"
            )

        confidence = raw.confidence
        if confidence is None or math.isnan(confidence):
            confidence = estimate_confidence(raw.data, len(request.pages))
        confidence = max(0.0, min(1.0, confidence))

        logger.info(
            "Extracted %s document for %s (confidence %.2f, %d tokens)",
            type(raw.data).__name__,
            provider.id,
            confidence,
            raw.tokens_used,
        )
        return ExtractionOutcome(
            data=raw.data,
            confidence=confidence,
            model=raw.model or "unknown",
            tokens_used=max(raw.tokens_used, 0),
        )
