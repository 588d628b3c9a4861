"""Provider descriptors and the provider registry.

Descriptors are immutable and loaded once at process start, either from the
built-in list below or from a JSON/TOML file. The registry is passed by
reference into every component that needs to look a provider up.
"""

from __future__ import annotations

import json
import logging
import tomllib
from collections.abc import Iterable, Iterator
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator

from pricewatch.config.settings import URLPolicyConfig
from pricewatch.config.url_policy import validate_provider_url

logger = logging.getLogger(__name__)

ProviderCategory = Literal["hosting", "api", "cloud", "database", "auth"]


class UnknownProviderError(KeyError):
    """Raised when a provider id is not present in the registry."""


class RenderingHint(BaseModel):
    """How a provider's pages should be acquired.

    mode:
      - ``ssr``: server-rendered, plain fetch only
      - ``csr``: client-rendered, go straight to the rendering engine
      - ``auto``: plain fetch first, render when the fetch is insufficient
    """

    mode: Literal["ssr", "csr", "auto"] = "auto"
    wait_for_selector: str | None = None
    wait_time_ms: int = 0
    scroll_to_bottom: bool = True

    model_config = {"frozen": True}


class ExtractionHints(BaseModel):
    """Provider-registered expectations, used by extraction and evaluation."""

    keywords: tuple[str, ...] = ()
    selectors: tuple[str, ...] = ()

    model_config = {"frozen": True}


class ProviderDescriptor(BaseModel):
    """Static configuration for one tracked provider."""

    id: str = Field(min_length=1, pattern=r"^[a-z0-9][a-z0-9_-]*$")
    name: str
    category: ProviderCategory
    urls: tuple[str, ...] = Field(min_length=1)
    rendering: RenderingHint = Field(default_factory=RenderingHint)
    hints: ExtractionHints = Field(default_factory=ExtractionHints)
    fallback_data: Any = None

    model_config = {"frozen": True}

    @field_validator("urls")
    @classmethod
    def _validate_urls_unique(cls, value: tuple[str, ...]) -> tuple[str, ...]:
        if len(set(value)) != len(value):
            raise ValueError("Provider urls must be unique")
        return value


class ProviderRegistry:
    """Read-only lookup of provider descriptors by id."""

    def __init__(
        self,
        providers: Iterable[ProviderDescriptor],
        url_policy: URLPolicyConfig | None = None,
    ) -> None:
        policy = url_policy or URLPolicyConfig()
        self._providers: dict[str, ProviderDescriptor] = {}
        for provider in providers:
            if provider.id in self._providers:
                raise ValueError(f"Duplicate provider id: {provider.id}")
            for url in provider.urls:
                check = validate_provider_url(url, policy)
                if not check.allowed:
                    raise ValueError(
                        f"Provider {provider.id} has an invalid url {url}: {check.reason}"
                    )
            self._providers[provider.id] = provider

    def get(self, provider_id: str) -> ProviderDescriptor:
        try:
            return self._providers[provider_id]
        except KeyError:
            raise UnknownProviderError(provider_id) from None

    def __contains__(self, provider_id: object) -> bool:
        return provider_id in self._providers

    def __iter__(self) -> Iterator[ProviderDescriptor]:
        return iter(self._providers.values())

    def __len__(self) -> int:
        return len(self._providers)

    @property
    def ids(self) -> list[str]:
        return list(self._providers)


BUILTIN_PROVIDERS: tuple[ProviderDescriptor, ...] = (
    ProviderDescriptor(
        id="vercel",
        name="Vercel",
        category="hosting",
        urls=(
            "https://vercel.com/pricing",
            "https://vercel.com/docs/limits",
            "https://vercel.com/docs/limits/fair-use-guidelines",
            "https://vercel.com/docs/pricing",
        ),
        rendering=RenderingHint(mode="ssr"),
        hints=ExtractionHints(
            keywords=(
                "Hobby",
                "Pro",
                "Enterprise",
                "bandwidth",
                "build minutes",
                "serverless functions",
            )
        ),
    ),
    ProviderDescriptor(
        id="netlify",
        name="Netlify",
        category="hosting",
        urls=(
            "https://www.netlify.com/pricing/",
            "https://docs.netlify.com/manage/accounts-and-billing/billing-faq/",
            "https://www.netlify.com/pricing/faq/",
        ),
        rendering=RenderingHint(mode="ssr"),
        hints=ExtractionHints(
            keywords=(
                "Free",
                "Pro",
                "Enterprise",
                "bandwidth",
                "build minutes",
                "functions",
                "edge functions",
            )
        ),
    ),
    ProviderDescriptor(
        id="supabase",
        name="Supabase",
        category="database",
        urls=("https://supabase.com/pricing",),
        rendering=RenderingHint(mode="ssr"),
        hints=ExtractionHints(
            keywords=(
                "Free",
                "Pro",
                "Team",
                "Enterprise",
                "database",
                "storage",
                "bandwidth",
                "edge functions",
                "vector",
                "auth",
            )
        ),
    ),
    ProviderDescriptor(
        id="render",
        name="Render",
        category="hosting",
        urls=("https://render.com/pricing",),
        rendering=RenderingHint(mode="ssr"),
        hints=ExtractionHints(
            keywords=(
                "Individual",
                "Team",
                "Organization",
                "Enterprise",
                "web services",
                "databases",
                "redis",
                "bandwidth",
            )
        ),
    ),
    ProviderDescriptor(
        id="fly",
        name="Fly.io",
        category="hosting",
        urls=("https://fly.io/docs/about/pricing/",),
        rendering=RenderingHint(mode="auto"),
        hints=ExtractionHints(
            keywords=("Hobby", "Launch", "Scale", "Enterprise", "machines", "volumes", "bandwidth")
        ),
    ),
)


def _read_provider_file(path: Path) -> list[dict[str, Any]]:
    if path.suffix == ".toml":
        with path.open("rb") as f:
            raw = tomllib.load(f)
    else:
        raw = json.loads(path.read_text(encoding="utf-8"))

    if isinstance(raw, dict):
        raw = raw.get("providers", [])
    if not isinstance(raw, list):
        raise ValueError(f"Provider file {path} must contain a list of providers")
    return raw


def load_registry(
    path: Path | None = None,
    url_policy: URLPolicyConfig | None = None,
) -> ProviderRegistry:
    """Build the process-wide registry.

    With no path the built-in providers are used. A ``.toml`` file is read
    with tomllib, anything else is parsed as JSON. Either form may be a bare
    list or a table with a ``providers`` key.
    """
    if path is None:
        return ProviderRegistry(BUILTIN_PROVIDERS, url_policy)

    entries = _read_provider_file(path)
    providers = [ProviderDescriptor.model_validate(entry) for entry in entries]
    logger.info("Loaded %d providers from %s", len(providers), path)
    return ProviderRegistry(providers, url_policy)
