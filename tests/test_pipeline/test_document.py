"""Tests for generic document traversal and price discovery."""

from pricewatch.pipeline.document import (
    find_terms,
    is_empty,
    price_values,
    serialize,
    walk,
)


class TestWalk:
    def test_preorder_with_paths(self):
        doc = {"a": [1, {"b": 2}]}
        paths = [path for path, _ in walk(doc)]
        assert paths == [(), ("a",), ("a", 0), ("a", 1), ("a", 1, "b")]

    def test_scalar_root(self):
        assert list(walk(5)) == [((), 5)]


class TestFindTerms:
    def test_matches_keys_and_string_values(self):
        doc = {"Plans": [{"name": "Hobby"}, {"name": "Pro"}]}
        assert find_terms(doc, ["plan", "hobby", "enterprise"]) == {"plan", "hobby"}

    def test_case_insensitive(self):
        assert find_terms({"PRICE": 1}, ["price"]) == {"price"}

    def test_numbers_are_not_terms(self):
        assert find_terms({"x": 20}, ["20"]) == set()


class TestIsEmpty:
    def test_empty_values(self):
        assert is_empty(None)
        assert is_empty({})
        assert is_empty([])
        assert is_empty("")

    def test_non_empty_values(self):
        assert not is_empty({"a": 1})
        assert not is_empty(0)


class TestPriceValues:
    def test_numeric_leaves_under_price_keys(self):
        doc = {"tiers": [{"name": "Free", "price": 0}, {"name": "Pro", "price": 20}]}
        prices = price_values(doc)
        assert [(p.value, p.signature) for p in prices] == [
            (0.0, "tiers/[free]/price"),
            (20.0, "tiers/[pro]/price"),
        ]

    def test_numbers_outside_price_paths_ignored(self):
        doc = {"limits": {"projects": 3, "seats": 10}}
        assert price_values(doc) == []

    def test_nested_under_price_key(self):
        doc = {"cost": {"compute": {"per_hour": 0.05}}}
        assert [p.value for p in price_values(doc)] == [0.05]

    def test_currency_amounts_in_strings(self):
        doc = {"notes": "Pro is $20/mo, Team is $1,250.50 or 99 USD yearly"}
        assert [p.value for p in price_values(doc)] == [20.0, 1250.5, 99.0]

    def test_negative_currency_amount(self):
        assert [p.value for p in price_values({"discount": "-$5"})] == [-5.0]

    def test_booleans_are_not_prices(self):
        assert price_values({"price_visible": True}) == []

    def test_unlabelled_list_items_use_index(self):
        doc = {"prices": [10, 20]}
        assert [p.signature for p in price_values(doc)] == ["prices/[0]", "prices/[1]"]


def test_serialize_is_compact():
    assert serialize({"a": [1, 2]}) == '{"a":[1,2]}'
