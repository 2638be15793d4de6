"""Tests for the location intelligence node and its deterministic helpers."""

import pytest

from conftest import FakeCollector, FakeLlm
from photo_enrichment.ai.llm import LlmError
from photo_enrichment.ai.location_intel import (
    NO_INSIGHTS,
    LocationIntelligenceNode,
    default_location_intel,
    fallback_location_intel,
    normalize_location_intel,
    post_process_location_intel,
    select_best_nearby,
)

BUNDLE = {
    "reverse_result": {"address": "1 Main St, Concord, CA", "city": "Concord", "region": "California"},
    "nearby_places": [
        {"name": "Coffee Spot", "category": "cafe", "distance_meters": 20.0},
        {"name": "Lime Ridge Open Space", "category": "park", "distance_meters": 140.0},
        {"name": "Mt Diablo Summit", "category": "landmark", "distance_meters": 600.0},
    ],
    "osm_trails": [{"name": "Contra Costa Canal Trail", "category": "trail", "distance_meters": 90.0}],
    "nearby_food": [],
}


class TestNormalize:
    def test_defaults(self):
        intel = default_location_intel()
        assert intel["city"] == "unknown"
        assert intel["description_addendum"] == NO_INSIGHTS

    def test_missing_and_blank_fields_become_unknown(self):
        intel = normalize_location_intel({"city": "Concord", "region": "  ", "nearest_trail": "Unknown"})
        assert intel["city"] == "Concord"
        assert intel["region"] == "unknown"
        assert intel["nearest_trail"] == "unknown"
        assert intel["nearest_landmark"] == "unknown"

    @pytest.mark.parametrize(
        "landmark,promoted",
        [("Lime Ridge Open Space", True), ("Briones Regional Park", True), ("Todos Santos Plaza", False)],
    )
    def test_park_like_landmark_fills_unknown_park(self, landmark, promoted):
        intel = post_process_location_intel(normalize_location_intel({"nearest_landmark": landmark}))
        assert (intel["nearest_park"] == landmark) is promoted

    def test_known_park_not_replaced(self):
        intel = post_process_location_intel(
            normalize_location_intel({"nearest_landmark": "Lime Ridge Open Space", "nearest_park": "Newhall Park"})
        )
        assert intel["nearest_park"] == "Newhall Park"


class TestFallback:
    def test_from_bundle(self):
        intel = fallback_location_intel(BUNDLE)
        assert intel["city"] == "Concord"
        assert intel["region"] == "California"
        assert intel["nearest_landmark"] == "Mt Diablo Summit"
        assert intel["nearest_park"] == "Lime Ridge Open Space"
        assert intel["nearest_trail"] == "Contra Costa Canal Trail"
        assert intel["description_addendum"] == "Taken in Concord, California near Mt Diablo Summit."
        assert intel["source"] == "fallback"

    def test_empty_bundle(self):
        intel = fallback_location_intel(None)
        assert intel["city"] == "unknown"
        assert intel["description_addendum"] == NO_INSIGHTS


class TestSelectBestNearby:
    def test_priority_order(self):
        best = select_best_nearby(BUNDLE["nearby_places"], BUNDLE["osm_trails"], None)
        assert best["name"] == "Mt Diablo Summit"

    def test_park_before_trail(self):
        places = [p for p in BUNDLE["nearby_places"] if p["category"] != "landmark"]
        best = select_best_nearby(places, BUNDLE["osm_trails"], None)
        assert best["name"] == "Lime Ridge Open Space"

    def test_falls_back_to_model_landmark(self):
        intel = normalize_location_intel({"nearest_landmark": "Heather Farm"})
        best = select_best_nearby([{"name": "Coffee Spot", "category": "cafe"}], [], intel)
        assert best == {"name": "Heather Farm", "category": "landmark", "source": "model"}

    def test_nothing(self):
        assert select_best_nearby([], [], default_location_intel()) is None


class TestLocationIntelligenceNode:
    STATE = {
        "classification": "scenery",
        "gps_string": "37.9,-122.0",
        "metadata": {"GPSImgDirection": 372.0, "GPSAltitude": 120.5},
        "poi_cache": BUNDLE,
    }

    @pytest.mark.asyncio
    async def test_model_answer(self):
        llm = FakeLlm([{
            "city": "Concord",
            "region": "California",
            "nearest_landmark": "Lime Ridge Open Space",
            "nearest_park": "unknown",
            "nearest_trail": "Contra Costa Canal Trail",
            "description_addendum": "Overlooking Lime Ridge.",
        }])
        update = await LocationIntelligenceNode(llm)(self.STATE)

        intel = update["location_intel"]
        assert intel["source"] == "model"
        assert intel["nearest_park"] == "Lime Ridge Open Space"
        assert "Lime Ridge Open Space" in llm.calls[0]["user"]

        analysis = update["poi_analysis"]
        assert analysis["heading_degrees"] == 12.0
        assert analysis["heading_cardinal"] == "NNE"
        assert analysis["altitude_meters"] == 120.5
        assert analysis["address"] == "1 Main St, Concord, CA"
        assert analysis["best_match"]["name"] == "Mt Diablo Summit"
        assert len(analysis["nearby_trails"]) == 1
        assert update["debug_usage"][0]["step"] == "location_intelligence"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("reply", [LlmError("rate limited"), "I think this is Concord"])
    async def test_fallback_on_failure(self, reply):
        update = await LocationIntelligenceNode(FakeLlm([reply]))(self.STATE)
        assert update["location_intel"]["source"] == "fallback"
        assert update["location_intel"]["city"] == "Concord"

    @pytest.mark.asyncio
    async def test_collects_context_when_missing(self):
        collector = FakeCollector(BUNDLE)
        state = {k: v for k, v in self.STATE.items() if k != "poi_cache"}
        update = await LocationIntelligenceNode(FakeLlm([LlmError("down")]), collector)(state)

        assert collector.calls == [(37.9, -122.0, "scenery", False)]
        assert update["poi_analysis"]["address"] == "1 Main St, Concord, CA"

    @pytest.mark.asyncio
    async def test_no_context_at_all(self):
        update = await LocationIntelligenceNode(FakeLlm([LlmError("down")]))({"classification": "scenery"})
        assert update["location_intel"]["description_addendum"] == NO_INSIGHTS
        assert update["poi_analysis"]["best_match"] is None
        assert update["poi_analysis"]["heading_cardinal"] is None
