"""Tests for the Google Places, food places, Overpass and web search clients."""

import pytest

from conftest import google_place
from photo_enrichment.ai.cache import TTLCache
from photo_enrichment.ai.poi.food_places import FoodPlacesClient
from photo_enrichment.ai.poi.geo import haversine_distance_meters, normalize_category
from photo_enrichment.ai.poi.google_places import GooglePlacesClient
from photo_enrichment.ai.poi.osm_trails import OsmTrailsClient, build_overpass_query, normalize_element
from photo_enrichment.ai.search import SearchError, WebSearchClient

LAT, LON = 37.9, -122.0


class TestGeo:
    def test_haversine(self):
        d = haversine_distance_meters(LAT, LON, LAT + 0.001, LON)
        assert d == pytest.approx(111.2, abs=0.5)

    @pytest.mark.parametrize(
        "types,expected",
        [
            (["park", "point_of_interest"], "park"),
            (["museum", "tourist_attraction"], "attraction"),
            (["lodging"], "hotel"),
            (["meal_takeaway", "restaurant"], "restaurant"),
            (["convenience_store"], "store"),
            (["museum"], "museum"),
            ([], "unknown"),
        ],
    )
    def test_normalize_category(self, types, expected):
        assert normalize_category(types) == expected


class TestGooglePlacesClient:
    @pytest.mark.asyncio
    async def test_reverse_geocode_parses_components_and_caches(self, http_client, google_apis, cache):
        google_apis.geocode = {
            "status": "OK",
            "results": [{
                "formatted_address": "1 Main St, Concord, CA 94520, USA",
                "address_components": [
                    {"long_name": "Concord", "types": ["locality", "political"]},
                    {"long_name": "California", "types": ["administrative_area_level_1"]},
                    {"long_name": "United States", "types": ["country"]},
                ],
            }],
        }
        client = GooglePlacesClient("key", http_client, cache)
        result = await client.reverse_geocode(LAT, LON)
        again = await client.reverse_geocode(LAT, LON)

        assert result == {
            "address": "1 Main St, Concord, CA 94520, USA",
            "city": "Concord",
            "region": "California",
            "country": "United States",
        }
        assert again == result
        assert google_apis.requests["/maps/api/geocode/json"] == 1

    @pytest.mark.asyncio
    async def test_nearby_places_dedupes_and_normalizes(self, http_client, google_apis, cache):
        park = google_place("p1", "Lime Ridge Open Space", LAT + 0.0005, LON, ["park"])
        google_apis.nearby = {
            "park": {"status": "OK", "results": [park]},
            "tourist_attraction": {"status": "OK", "results": [
                park,
                google_place("t1", "Contra Costa Canal Trail", LAT + 0.002, LON, ["tourist_attraction"]),
            ]},
            "museum": {"status": "OK", "results": [
                google_place("m1", "History Museum", LAT + 0.004, LON, ["museum"]),
            ]},
        }
        client = GooglePlacesClient("key", http_client, cache)
        places = await client.nearby_places(LAT, LON, 800)

        assert [p["id"] for p in places] == ["p1", "t1", "m1"]
        assert places[0]["category"] == "park"
        assert places[0]["confidence"] == "high"
        assert places[1]["category"] == "trail"
        assert places[1]["confidence"] == "medium"
        assert places[2]["confidence"] == "low"
        assert all(p["source"] == "google" for p in places)
        assert places[0]["distance_meters"] == pytest.approx(55.6, abs=0.5)

    @pytest.mark.asyncio
    async def test_nearby_places_cached(self, http_client, google_apis, cache):
        client = GooglePlacesClient("key", http_client, cache)
        await client.nearby_places(LAT, LON, 800)
        await client.nearby_places(LAT, LON, 800)
        assert google_apis.requests["/maps/api/place/nearbysearch/json"] == 4

    @pytest.mark.asyncio
    async def test_request_denied_backs_off(self, http_client, google_apis, cache):
        google_apis.geocode = {"status": "REQUEST_DENIED", "error_message": "bad key"}
        client = GooglePlacesClient("key", http_client, cache)

        assert await client.reverse_geocode(LAT, LON) is None
        assert not client.enabled
        assert await client.nearby_places(LAT, LON) == []
        assert google_apis.requests["/maps/api/place/nearbysearch/json"] == 0

    @pytest.mark.asyncio
    async def test_http_failure_not_cached(self, http_client, google_apis, cache):
        google_apis.fail_paths.add("/maps/api/geocode/json")
        client = GooglePlacesClient("key", http_client, cache)
        assert await client.reverse_geocode(LAT, LON) is None
        assert len(cache) == 0

    @pytest.mark.asyncio
    async def test_missing_key_skips_calls(self, http_client, google_apis, cache):
        client = GooglePlacesClient("", http_client, cache)
        assert await client.reverse_geocode(LAT, LON) is None
        assert await client.nearby_places(LAT, LON) == []
        assert sum(google_apis.requests.values()) == 0


class TestFoodPlacesClient:
    @pytest.mark.asyncio
    async def test_dedupes_keeping_richest_record(self, http_client, google_apis, cache):
        bare = google_place("f1", "Cajun Crackn Concord", LAT + 0.0002, LON, ["restaurant"])
        rich = google_place("f1", "Cajun Crackn Concord", LAT + 0.0002, LON, ["bar", "restaurant"], rating=4.5)
        google_apis.nearby = {
            "restaurant": {"status": "OK", "results": [bare]},
            "bar": {"status": "OK", "results": [rich]},
            "cafe": {"status": "OK", "results": [
                google_place("f2", "Beans", LAT + 0.0001, LON, ["cafe"], rating=4.1),
            ]},
        }
        places = GooglePlacesClient("key", http_client, cache)
        client = FoodPlacesClient(places, cache)
        food = await client.nearby_food_places(LAT, LON, 60)

        assert [f["name"] for f in food] == ["Beans", "Cajun Crackn Concord"]
        assert food[1]["rating"] == 4.5
        assert "confidence" not in food[1]
        assert google_apis.requests["/maps/api/place/nearbysearch/json"] == 6

    @pytest.mark.asyncio
    async def test_food_results_cached_per_radius(self, http_client, google_apis, cache):
        client = FoodPlacesClient(GooglePlacesClient("key", http_client, cache), cache)
        await client.nearby_food_places(LAT, LON, 30.48)
        await client.nearby_food_places(LAT, LON, 30.48)
        await client.nearby_food_places(LAT, LON, 60.96)
        assert google_apis.requests["/maps/api/place/nearbysearch/json"] == 12


class TestOsmTrails:
    def test_query_shape(self):
        query = build_overpass_query(LAT, LON, 200)
        assert query.startswith("[out:json][timeout:25];")
        assert 'way(around:200, 37.9, -122.0)[highway~"footway|path|cycleway"];' in query
        assert '[route~"hiking|foot|bicycle"]' in query
        assert "[waterway=canal]" in query
        assert query.endswith("out tags center;")

    def test_normalize_element(self):
        element = {"type": "way", "id": 42, "center": {"lat": LAT + 0.001, "lon": LON}, "tags": {"name": "Canal Trail"}}
        trail = normalize_element(element, LAT, LON)
        assert trail["id"] == "osm:way/42"
        assert trail["category"] == "trail"
        assert trail["source"] == "osm"
        assert trail["distance_meters"] == pytest.approx(111.2, abs=0.5)
        assert normalize_element({"type": "relation", "id": 1}, LAT, LON) is None

    @pytest.mark.asyncio
    async def test_nearby_trails_sorted_and_cached(self, http_client, google_apis, cache):
        google_apis.overpass = {"elements": [
            {"type": "way", "id": 2, "center": {"lat": LAT + 0.002, "lon": LON}, "tags": {"name": "Far Path"}},
            {"type": "way", "id": 1, "center": {"lat": LAT + 0.0005, "lon": LON}, "tags": {"name": "Near Path"}},
            {"type": "relation", "id": 3, "tags": {"name": "No Center"}},
        ]}
        client = OsmTrailsClient(http_client, cache)
        trails = await client.nearby_trails(LAT, LON, 200)
        await client.nearby_trails(LAT, LON, 200)

        assert [t["name"] for t in trails] == ["Near Path", "Far Path"]
        assert google_apis.requests["/api/interpreter"] == 1

    @pytest.mark.asyncio
    async def test_overpass_failure_returns_empty(self, http_client, google_apis):
        google_apis.fail_paths.add("/api/interpreter")
        client = OsmTrailsClient(http_client, TTLCache())
        assert await client.nearby_trails(LAT, LON) == []


class TestWebSearchClient:
    @pytest.mark.asyncio
    async def test_search_results(self, http_client, google_apis):
        google_apis.search = {"items": [
            {"title": "Power Pack #1", "link": "https://example.com/pp1", "snippet": "Sold for $20", "displayLink": "example.com"},
        ]}
        client = WebSearchClient("key", "cx", http_client)
        results = await client.search('"Power Pack #1" price value')
        assert results[0].url == "https://example.com/pp1"
        assert results[0].source == "example.com"

    @pytest.mark.asyncio
    async def test_unconfigured_raises(self, http_client):
        with pytest.raises(SearchError):
            await WebSearchClient("", "", http_client).search("anything")

    @pytest.mark.asyncio
    async def test_http_error_raises(self, http_client, google_apis):
        google_apis.fail_paths.add("/customsearch/v1")
        with pytest.raises(SearchError):
            await WebSearchClient("key", "cx", http_client).search("anything")
