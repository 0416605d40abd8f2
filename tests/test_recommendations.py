"""Tests for product recommendations."""

import json

import httpx
import pytest

from errors import RecommendationUnavailable
from recommendations import GeminiClient, local_recommendations, parse_ids, recommend

URL = "https://gemini.test/v1beta/models/gemini:generateContent"


def product(pid, price, category="skincare", tags=None, name=None):
    return {"id": pid, "name": name or f"Product {pid}", "brand": "Olay", "category": category, "price": price, "tags": tags or []}


def gemini_reply(text):
    return {"candidates": [{"content": {"parts": [{"text": text}]}}]}


def client_for(handler, api_key="key"):
    return GeminiClient(api_key, URL, timeout=1, transport=httpx.MockTransport(handler))


class TestLocalFallback:
    def test_skincare_interest_picks_only_skincare(self):
        catalog = [
            product("s", 5000, category="skincare", tags=["Skincare"]),
            product("m", 5000, category="makeup", tags=["Makeup"]),
        ]
        prefs = {"min_budget": 1000, "max_budget": 10000, "interests": ["Skincare"]}

        assert [p["id"] for p in recommend(prefs, catalog)] == ["s"]

    def test_results_within_budget_and_capped_at_six(self):
        catalog = [product(str(i), price) for i, price in enumerate(range(0, 20000, 1000))]
        prefs = {"min_budget": 2000, "max_budget": 15000, "interests": []}

        result = recommend(prefs, catalog)

        assert len(result) == 6
        assert all(2000 <= p["price"] <= 15000 for p in result)

    def test_nothing_in_budget_returns_empty(self):
        catalog = [product("a", 50000), product("b", 60000)]
        prefs = {"min_budget": 0, "max_budget": 1000, "interests": ["Skincare"]}

        assert recommend(prefs, catalog) == []

    def test_no_interest_match_falls_back_to_budget_set(self):
        catalog = [product("a", 3000, category="haircare"), product("b", 90000, category="haircare")]
        prefs = {"min_budget": 0, "max_budget": 5000, "interests": ["Fragrance"]}

        assert [p["id"] for p in recommend(prefs, catalog)] == ["a"]

    def test_no_preferences_uses_default_budget(self):
        catalog = [product("a", 500), product("b", 200000)]
        assert [p["id"] for p in local_recommendations(None, catalog)] == ["a"]

    def test_inputs_not_mutated(self):
        catalog = [product("a", 3000, tags=["Skincare"])]
        prefs = {"min_budget": 0, "max_budget": 5000, "interests": ["Skincare"]}
        before = (json.dumps(catalog), json.dumps(prefs))

        recommend(prefs, catalog)

        assert (json.dumps(catalog), json.dumps(prefs)) == before


class TestParseIds:
    def test_comma_separated(self):
        assert parse_ids("a1, b2 ,c3") == ["a1", "b2", "c3"]

    def test_prose_around_ids(self):
        assert parse_ids("Recommended: a1, b2.") == ["a1", "b2"]

    def test_empty(self):
        assert parse_ids("") == []
        assert parse_ids(None) == []


class TestRemotePath:
    PREFS = {"min_budget": 1000, "max_budget": 10000, "interests": ["Skincare"]}
    CATALOG = [
        product("a", 5000, tags=["Skincare"]),
        product("b", 6000, category="makeup"),
        product("c", 50000, tags=["Skincare"]),
    ]

    def test_uses_remote_ranking(self):
        seen = {}

        def handler(request):
            seen["key"] = request.url.params["key"]
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json=gemini_reply("b, a"))

        result = recommend(self.PREFS, self.CATALOG, client_for(handler))

        assert [p["id"] for p in result] == ["b", "a"]
        assert seen["key"] == "key"
        assert "Skincare" in seen["body"]["contents"][0]["parts"][0]["text"]

    def test_remote_ids_outside_budget_are_dropped(self):
        handler = lambda request: httpx.Response(200, json=gemini_reply("c, b"))

        assert [p["id"] for p in recommend(self.PREFS, self.CATALOG, client_for(handler))] == ["b"]

    @pytest.mark.parametrize(
        "handler",
        [
            lambda request: httpx.Response(500, json={"error": "boom"}),
            lambda request: httpx.Response(200, json={"candidates": []}),
            lambda request: httpx.Response(200, json={"candidates": [{"content": {"parts": [{"text": None}]}}]}),
            lambda request: httpx.Response(200, text="not json"),
            lambda request: httpx.Response(200, json=gemini_reply("I cannot help with that")),
        ],
    )
    def test_unusable_remote_falls_back_to_local(self, handler):
        result = recommend(self.PREFS, self.CATALOG, client_for(handler))
        assert [p["id"] for p in result] == ["a"]

    def test_timeout_falls_back_to_local(self):
        def handler(request):
            raise httpx.ReadTimeout("too slow", request=request)

        assert [p["id"] for p in recommend(self.PREFS, self.CATALOG, client_for(handler))] == ["a"]

    def test_missing_key_is_unavailable(self):
        client = GeminiClient(None, URL)
        with pytest.raises(RecommendationUnavailable):
            client.complete("prompt")
        assert [p["id"] for p in recommend(self.PREFS, self.CATALOG, client)] == ["a"]
