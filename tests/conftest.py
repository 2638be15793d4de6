"""Shared fixtures: a scripted fake LLM, fake geo clients and HTTP mocks."""

import json
from collections import Counter
from typing import Any, Dict, List, Optional, Union

import httpx
import pytest
import pytest_asyncio

from photo_enrichment.ai.cache import TTLCache
from photo_enrichment.ai.llm import LlmError, LlmReply
from photo_enrichment.ai.search import SearchError, SearchResult


class FakeLlm:
    """Returns scripted replies in order; an Exception in the script is raised."""

    def __init__(self, replies: Optional[List[Union[str, dict, Exception]]] = None):
        self.replies = list(replies or [])
        self.calls: List[Dict[str, Any]] = []

    def queue(self, *replies: Union[str, dict, Exception]) -> "FakeLlm":
        self.replies.extend(replies)
        return self

    async def complete(self, system_prompt, user_prompt, image_bytes=None, image_mime=None,
                       model=None, max_tokens=512, temperature=0.2, detail="high", json_mode=True):
        self.calls.append({
            "system": system_prompt,
            "user": user_prompt,
            "has_image": bool(image_bytes),
            "model": model,
            "detail": detail,
        })
        if not self.replies:
            raise LlmError("no scripted reply left")
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        text = json.dumps(reply) if isinstance(reply, dict) else reply
        return LlmReply(text=text, model=model or "fake-model", usage={"total_tokens": 10}, duration_ms=1)


class FakeFoodSearch:
    """nearby_food_places keyed by radius; records every radius asked for."""

    def __init__(self, by_radius: Optional[Dict[float, list]] = None, default: Optional[list] = None):
        self.by_radius = by_radius or {}
        self.default = default or []
        self.radii: List[float] = []

    async def nearby_food_places(self, lat, lon, radius=250):
        self.radii.append(radius)
        return list(self.by_radius.get(radius, self.default))


class FakeCollector:
    """Stands in for ContextCollector; returns one fixed bundle."""

    def __init__(self, bundle):
        self.bundle = bundle
        self.calls = []

    async def collect(self, lat, lon, classification, fetch_food=False):
        self.calls.append((lat, lon, classification, fetch_food))
        return self.bundle


class FakeSearch:
    def __init__(self, fail_on=()):
        self.queries = []
        self.fail_on = fail_on

    async def search(self, query, max_results=None):
        self.queries.append(query)
        if any(f in query for f in self.fail_on):
            raise SearchError("quota exceeded")
        return [SearchResult(title="Listing", url="https://example.com/1", snippet="$20", source="example.com")]


class MockGoogleApis:
    """httpx.MockTransport handler for the Google Maps, Overpass and Custom Search endpoints."""

    def __init__(self):
        self.requests = Counter()
        self.geocode: Dict[str, Any] = {"status": "OK", "results": []}
        self.nearby: Dict[str, Dict[str, Any]] = {}
        self.overpass: Dict[str, Any] = {"elements": []}
        self.search: Dict[str, Any] = {"items": []}
        self.fail_paths: set = set()

    def __call__(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        self.requests[path] += 1
        if path in self.fail_paths:
            return httpx.Response(500, json={"error": "boom"})
        if path.endswith("/geocode/json"):
            return httpx.Response(200, json=self.geocode)
        if path.endswith("/nearbysearch/json"):
            place_type = request.url.params.get("type")
            self.requests[f"nearby:{place_type}"] += 1
            return httpx.Response(200, json=self.nearby.get(place_type, {"status": "ZERO_RESULTS", "results": []}))
        if path.endswith("/interpreter"):
            return httpx.Response(200, json=self.overpass)
        if path.endswith("/customsearch/v1"):
            return httpx.Response(200, json=self.search)
        return httpx.Response(404)


def google_place(place_id, name, lat, lng, types, rating=None, vicinity=None):
    raw = {
        "place_id": place_id,
        "name": name,
        "geometry": {"location": {"lat": lat, "lng": lng}},
        "types": types,
        "vicinity": vicinity or f"{name} street",
    }
    if rating is not None:
        raw["rating"] = rating
        raw["user_ratings_total"] = 120
    return raw


def candidate(name, distance, rating=None, types=("restaurant",), place_id=None, **extra):
    c = {
        "id": place_id or name.lower().replace(" ", "-"),
        "place_id": place_id or name.lower().replace(" ", "-"),
        "name": name,
        "category": "restaurant",
        "distance_meters": distance,
        "rating": rating,
        "address": f"{name} address",
        "source": "google",
        "types": list(types),
    }
    c.update(extra)
    return c


@pytest.fixture
def fake_llm():
    return FakeLlm()


@pytest.fixture
def cache():
    return TTLCache(max_entries=100)


@pytest.fixture
def google_apis():
    return MockGoogleApis()


@pytest_asyncio.fixture
async def http_client(google_apis):
    async with httpx.AsyncClient(transport=httpx.MockTransport(google_apis)) as client:
        yield client


@pytest.fixture
def jpeg_bytes():
    return b"\xff\xd8\xff\xe0fake-jpeg-bytes"
