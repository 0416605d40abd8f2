"""
Product recommendations

``recommend`` asks Gemini for a ranked pick first and falls back to a local
budget/interest filter whenever the remote answer is unusable. Callers never
see a remote failure.
"""
import logging
import re
from typing import Any, Dict, List, Optional, Sequence

import httpx

from catalog import budget_range, match_interests, within_budget
from errors import RecommendationUnavailable

logger = logging.getLogger(__name__)

MAX_RECOMMENDATIONS = 6

Product = Dict[str, Any]


def build_prompt(preferences: Dict[str, Any], products: Sequence[Product]) -> str:
    lo, hi = budget_range(preferences)
    interests = ", ".join(preferences.get("interests") or [])
    brands = ", ".join(preferences.get("preferred_brands") or []) or "No preference"
    lines = "\n".join(
        f"- {p['id']}: {p.get('name')} (${p.get('price')}) - {p.get('category')} - {p.get('brand')}"
        for p in products
    )
    return (
        "Based on the following user preferences, recommend the most suitable products "
        "from the available list:\n\n"
        f"User Interests: {interests}\n"
        f"Budget Range: ${lo} - ${hi}\n"
        f"Skin Type: {preferences.get('skin_type') or 'Not specified'}\n"
        f"Preferred Brands: {brands}\n\n"
        f"Available Products:\n{lines}\n\n"
        f"Please return only the product IDs of the top {MAX_RECOMMENDATIONS} most suitable "
        "products, separated by commas. Consider price range, interests, skin type, and "
        "brand preferences."
    )


def parse_ids(text: Optional[str]) -> List[str]:
    """Pull a comma separated id list out of free text."""
    if not text:
        return []
    ids = []
    for chunk in text.split(","):
        token = re.sub(r"[^A-Za-z0-9_-]", "", chunk.strip().split()[-1]) if chunk.strip() else ""
        if token and token not in ids:
            ids.append(token)
    return ids


class GeminiClient:
    """Thin client for the generateContent endpoint."""

    def __init__(self, api_key: Optional[str], api_url: str, timeout: float = 10.0, transport: Optional[httpx.BaseTransport] = None):
        self.api_key = api_key
        self.api_url = api_url
        self.timeout = timeout
        self.transport = transport

    def complete(self, prompt: str) -> str:
        if not self.api_key:
            raise RecommendationUnavailable("Gemini API key not configured")
        body = {"contents": [{"parts": [{"text": prompt}]}]}
        try:
            with httpx.Client(timeout=self.timeout, transport=self.transport) as http:
                response = http.post(self.api_url, params={"key": self.api_key}, json=body)
                response.raise_for_status()
                data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            raise RecommendationUnavailable(f"Gemini request failed: {e}") from e
        try:
            text = data["candidates"][0]["content"]["parts"][0]["text"]
        except (KeyError, IndexError, TypeError) as e:
            raise RecommendationUnavailable("Gemini response had no text") from e
        if not isinstance(text, str):
            raise RecommendationUnavailable("Gemini response had no text")
        return text


def local_recommendations(preferences: Optional[Dict[str, Any]], catalog: Sequence[Product]) -> List[Product]:
    lo, hi = budget_range(preferences)
    eligible = within_budget(catalog, lo, hi)
    interests = (preferences or {}).get("interests") or []
    if interests:
        matched = match_interests(eligible, interests)
        if matched:
            eligible = matched
    return eligible[:MAX_RECOMMENDATIONS]


def remote_recommendations(client: GeminiClient, preferences: Dict[str, Any], catalog: Sequence[Product]) -> List[Product]:
    lo, hi = budget_range(preferences)
    eligible = {p["id"]: p for p in within_budget(catalog, lo, hi)}
    text = client.complete(build_prompt(preferences, catalog))
    picks = [eligible[i] for i in parse_ids(text) if i in eligible]
    if not picks:
        raise RecommendationUnavailable(f"No usable product ids in: {text[:80]!r}")
    return picks[:MAX_RECOMMENDATIONS]


def recommend(preferences: Optional[Dict[str, Any]], catalog: Sequence[Product], client: Optional[GeminiClient] = None) -> List[Product]:
    if client is not None and preferences:
        try:
            return remote_recommendations(client, preferences, catalog)
        except RecommendationUnavailable as e:
            logger.warning("Falling back to local recommendations: %s", e)
    return local_recommendations(preferences, catalog)
