"""Generic traversal helpers for schema-less extracted documents.

Extracted pricing documents have no fixed shape. Everything that inspects
them (vocabulary checks, price discovery, size comparison) walks the parsed
tree instead of reading named fields.
"""

from __future__ import annotations

import json
import math
import re
from collections.abc import Iterable, Iterator
from dataclasses import dataclass
from typing import Any

PathPart = str | int
Path = tuple[PathPart, ...]

PRICE_KEY_TERMS = (
    "price",
    "pricing",
    "cost",
    "amount",
    "fee",
    "monthly",
    "annual",
    "yearly",
    "usd",
    "charge",
    "overage",
    "rate",
)

# Fields that name a sibling group (a tier, a plan) inside a list.
LABEL_KEYS = ("name", "id", "title", "plan", "tier", "slug")

_CURRENCY_AMOUNT = re.compile(
    r"(?P<sign>-)?\s*(?:[$€£]\s*(?P<pre>\d[\d,]*(?:\.\d+)?)|(?P<post>\d[\d,]*(?:\.\d+)?)\s*(?:USD|EUR|GBP)\b)",
    re.IGNORECASE,
)


@dataclass(frozen=True)
class PriceValue:
    """A price-like number found in a document."""

    value: float
    signature: str
    position: int


def serialize(document: Any) -> str:
    """Compact, key-order preserving JSON serialization."""
    return json.dumps(document, separators=(",", ":"), ensure_ascii=False, default=str)


def is_number(value: Any) -> bool:
    return (
        isinstance(value, (int, float))
        and not isinstance(value, bool)
        and not (isinstance(value, float) and (math.isnan(value) or math.isinf(value)))
    )


def walk(document: Any, path: Path = ()) -> Iterator[tuple[Path, Any]]:
    """Yield ``(path, node)`` for every node in pre-order, the root included."""
    yield path, document
    if isinstance(document, dict):
        for key, value in document.items():
            yield from walk(value, path + (str(key),))
    elif isinstance(document, list):
        for index, value in enumerate(document):
            yield from walk(value, path + (index,))


def iter_terms(document: Any) -> Iterator[str]:
    """Yield every dict key and string leaf, lowercased."""
    for path, node in walk(document):
        if path and isinstance(path[-1], str):
            yield path[-1].lower()
        if isinstance(node, str):
            yield node.lower()


def find_terms(document: Any, vocabulary: Iterable[str]) -> set[str]:
    """Return the vocabulary terms that occur in any key or string value."""
    wanted = {term.lower() for term in vocabulary}
    found: set[str] = set()
    for text in iter_terms(document):
        for term in wanted - found:
            if term in text:
                found.add(term)
        if found == wanted:
            break
    return found


def is_empty(document: Any) -> bool:
    if document is None:
        return True
    if isinstance(document, (dict, list, str)):
        return len(document) == 0
    return False


def _label_for(element: Any) -> str | None:
    if not isinstance(element, dict):
        return None
    for key in LABEL_KEYS:
        value = element.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip().lower()
    return None


def _signature(document: Any, path: Path) -> str:
    """Stable location of a node: list indices are replaced by sibling labels."""
    parts: list[str] = []
    node = document
    for part in path:
        if isinstance(part, int):
            element = node[part]
            label = _label_for(element)
            parts.append(f"[{label}]" if label else f"[{part}]")
            node = element
        else:
            parts.append(part.lower())
            node = node[part]
    return "/".join(parts)


def _is_price_path(path: Path) -> bool:
    for part in path:
        if isinstance(part, str):
            lowered = part.lower()
            if any(term in lowered for term in PRICE_KEY_TERMS):
                return True
    return False


def _parse_currency(text: str) -> list[float]:
    amounts: list[float] = []
    for match in _CURRENCY_AMOUNT.finditer(text):
        raw = (match.group("pre") or match.group("post") or "").replace(",", "")
        try:
            amount = float(raw)
        except ValueError:
            continue
        amounts.append(-amount if match.group("sign") else amount)
    return amounts


def price_values(document: Any) -> list[PriceValue]:
    """Collect price-like numbers.

    A number counts when any key on its path carries price vocabulary; a
    string counts for every currency-marked amount it contains. The match is
    permissive and only feeds diagnostics.
    """
    found: list[PriceValue] = []
    for position, (path, node) in enumerate(walk(document)):
        if is_number(node) and _is_price_path(path):
            found.append(PriceValue(float(node), _signature(document, path), position))
        elif isinstance(node, str):
            for amount in _parse_currency(node):
                found.append(PriceValue(amount, _signature(document, path), position))
    return found
