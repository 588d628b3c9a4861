"""Confidence Evaluator — layered acceptance checks over an extracted document.

Layers run in a fixed order:
1. Core (hard): non-empty, non-trivial, carries pricing or limits vocabulary
2. Provider (soft): provider-registered expected terms
3. Statistical (soft): size and price drift against the last accepted snapshot
4. Semantic (soft): implausible or duplicated price values

Only the core layer short-circuits. A negative price is recorded as a hard
error by the semantic layer and rejects the candidate even though the layer
itself is soft. The evaluator is pure: it reads nothing and writes nothing.
"""

from __future__ import annotations

import math
from typing import Any

from pricewatch.config.providers import ProviderDescriptor
from pricewatch.config.settings import EvaluatorConfig
from pricewatch.pipeline.document import (
    PriceValue,
    find_terms,
    is_empty,
    price_values,
    serialize,
)
from pricewatch.pipeline.models import PricingSnapshot, ValidationOutcome

PRICING_TERMS = ("price", "cost", "plan", "tier", "free", "pro", "enterprise")
LIMITS_TERMS = ("limits", "quotas", "features", "included")

# Layer weights when passed / failed.
LAYER_SCORES: dict[str, tuple[float, float]] = {
    "core": (1.0, 0.0),
    "provider": (0.8, 0.0),
    "statistical": (0.7, 0.5),
    "semantic": (0.9, 0.5),
}


def _clamp(value: float) -> float:
    if math.isnan(value):
        return 0.0
    return max(0.0, min(1.0, value))


def _format_price(value: float) -> str:
    return f"${value:g}"


class ConfidenceEvaluator:
    """Scores an extracted document and decides whether it may become current."""

    def __init__(self, config: EvaluatorConfig | None = None) -> None:
        self._config = config or EvaluatorConfig()

    def evaluate(
        self,
        provider: ProviderDescriptor,
        document: Any,
        extraction_confidence: float,
        previous: PricingSnapshot | None = None,
    ) -> ValidationOutcome:
        errors: list[str] = []
        warnings: list[str] = []

        core_ok = self._check_core(document, errors)
        if not core_ok:
            scores = {name: failed for name, (_, failed) in LAYER_SCORES.items()}
            return self._decide(scores, extraction_confidence, errors, warnings, core_ok)

        passed = {
            "core": core_ok,
            "provider": self._check_provider(provider, document, warnings),
            "statistical": self._check_statistical(document, previous, warnings),
            "semantic": self._check_semantic(document, errors, warnings),
        }
        scores = {
            name: LAYER_SCORES[name][0] if ok else LAYER_SCORES[name][1]
            for name, ok in passed.items()
        }
        return self._decide(scores, extraction_confidence, errors, warnings, core_ok)

    def _decide(
        self,
        scores: dict[str, float],
        extraction_confidence: float,
        errors: list[str],
        warnings: list[str],
        core_ok: bool,
    ) -> ValidationOutcome:
        validation_score = sum(scores.values()) / len(scores)
        confidence = _clamp((_clamp(extraction_confidence) + validation_score) / 2)
        accepted = (
            core_ok and not errors and confidence > self._config.acceptance_threshold
        )
        if not accepted and not errors:
            errors.append(f"Confidence too low: {confidence * 100:.1f}%")
        return ValidationOutcome(
            accepted=accepted,
            confidence=confidence,
            errors=errors,
            warnings=warnings,
            layer_scores=scores,
        )

    # --- Layer 1: core ---

    def _check_core(self, document: Any, errors: list[str]) -> bool:
        if is_empty(document) or not isinstance(document, (dict, list)):
            errors.append("Data is empty or not an object")
            return False

        if len(serialize(document)) < self._config.min_serialized_size:
            errors.append("Data appears to be too small to contain pricing information")
            return False

        if not find_terms(document, PRICING_TERMS) and not find_terms(document, LIMITS_TERMS):
            errors.append("Data does not contain expected pricing-related fields")
            return False

        return True

    # --- Layer 2: provider expectations ---

    def _check_provider(
        self, provider: ProviderDescriptor, document: Any, warnings: list[str]
    ) -> bool:
        expected = provider.hints.keywords
        if not expected:
            return True

        found = find_terms(document, expected)
        missing = [term for term in expected if term.lower() not in found]
        for term in missing:
            warnings.append(f"{provider.name} data missing expected term '{term}'")
        return len(missing) < len(expected)

    # --- Layer 3: statistical drift ---

    def _check_statistical(
        self, document: Any, previous: PricingSnapshot | None, warnings: list[str]
    ) -> bool:
        if previous is None:
            return True

        ok = True
        old_size = len(serialize(previous.data))
        new_size = len(serialize(document))
        if old_size > 0:
            size_change = abs(old_size - new_size) / old_size
            if size_change > self._config.size_change_threshold:
                warnings.append(
                    f"Data size changed by {size_change * 100:.0f}% from last extraction"
                )
                ok = False

        old_prices = price_values(previous.data)
        for price in price_values(document):
            match = self._match_previous(price, old_prices)
            if match is None:
                continue
            if match.value == 0:
                if price.value != 0:
                    warnings.append(
                        f"Detected price change from free: {_format_price(match.value)} "
                        f"-> {_format_price(price.value)} at {price.signature}"
                    )
                    ok = False
                continue
            change = abs(price.value - match.value) / abs(match.value)
            if change > self._config.price_change_threshold:
                warnings.append(
                    f"Detected {change * 100:.0f}% price change: "
                    f"{_format_price(match.value)} -> {_format_price(price.value)}"
                )
                ok = False
        return ok

    def _match_previous(self, price: PriceValue, old_prices: list[PriceValue]) -> PriceValue | None:
        """Same location first, else the closest old value within the tolerance band."""
        for old in old_prices:
            if old.signature == price.signature:
                return old

        if not old_prices or price.value == 0:
            return None
        closest = min(old_prices, key=lambda old: abs(old.value - price.value))
        if abs(closest.value - price.value) / abs(price.value) < self._config.price_match_tolerance:
            return closest
        return None

    # --- Layer 4: semantic plausibility ---

    def _check_semantic(self, document: Any, errors: list[str], warnings: list[str]) -> bool:
        ok = True
        prices = price_values(document)

        for price in prices:
            if price.value < 0:
                errors.append(f"Invalid negative price found: {price.value:g} at {price.signature}")
                ok = False
            elif price.value > self._config.high_price_ceiling:
                warnings.append(f"Unusually high price found: {_format_price(price.value)}")

        seen: dict[float, int] = {}
        reported: set[float] = set()
        for price in prices:
            previous_position = seen.get(price.value)
            if (
                previous_position is not None
                and price.value not in reported
                and price.position - previous_position > self._config.duplicate_node_distance
            ):
                warnings.append(f"Duplicate price value found: {price.value:g}")
                reported.add(price.value)
            seen[price.value] = price.position

        return ok
