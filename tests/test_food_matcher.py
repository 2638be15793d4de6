"""Tests for restaurant candidate search, curation and selection."""

import pytest

from conftest import FakeFoodSearch, candidate
from photo_enrichment.ai.food_matcher import (
    FoodLocationNode,
    FoodMatchConfig,
    curate_candidates,
    escalation_radii,
    keyword_score,
    match_food_location,
    search_food_candidates,
    select_best_candidate,
)

GPS = "37.9,-122.0"


class TestEscalation:
    def test_radii_double_then_cap(self):
        assert escalation_radii(30.48, 250) == [30.48, 60.96, 121.92, 250.0]

    def test_radii_bounded_by_max(self):
        assert escalation_radii(100, 150) == [100.0, 150.0]

    @pytest.mark.asyncio
    async def test_stops_at_first_non_empty_radius(self):
        client = FakeFoodSearch(by_radius={60.96: [candidate("Beans", 50)]})
        found, radius = await search_food_candidates(client, 0, 0, escalation_radii(30.48, 250))
        assert [c["name"] for c in found] == ["Beans"]
        assert radius == 60.96
        assert client.radii == [30.48, 60.96]

    @pytest.mark.asyncio
    async def test_nothing_at_any_radius(self):
        client = FakeFoodSearch()
        found, radius = await search_food_candidates(client, 0, 0, escalation_radii(30.48, 250))
        assert found == [] and radius is None
        assert client.radii == [30.48, 60.96, 121.92, 250.0]


class TestCurate:
    def test_filters_to_food_types_and_sorts(self):
        raw = [
            candidate("Far Good", 80, rating=4.8),
            candidate("Gas Station", 5, types=("gas_station",), category="store"),
            candidate("Near Ok", 20, rating=3.9),
            candidate("Near Great", 20, rating=4.6),
        ]
        curated = curate_candidates(raw, 5)
        assert [c["name"] for c in curated] == ["Near Great", "Near Ok", "Far Good"]

    def test_category_fallback_then_raw(self):
        by_category = [candidate("Snack Bar", 10, types=("point_of_interest",))]
        assert curate_candidates(by_category)[0]["name"] == "Snack Bar"
        raw = [candidate("Mystery", 10, types=("point_of_interest",), category="unknown")]
        assert curate_candidates(raw)[0]["name"] == "Mystery"

    def test_keeps_at_most_max(self):
        raw = [candidate(f"R{i}", i * 10) for i in range(8)]
        assert len(curate_candidates(raw, 5)) == 5


class TestKeywordScore:
    def test_name_hit_scores_two_category_hit_scores_one(self):
        cajun = candidate("Cajun Crackn Concord", 25)
        assert keyword_score(cajun, ["seafood"]) == (2, ["seafood"])
        sushi_bar = candidate("Blue Fin", 10, types=("restaurant", "sushi_restaurant"))
        assert keyword_score(sushi_bar, ["sushi"]) == (1, ["sushi"])
        assert keyword_score(candidate("Viaggio Ristorante", 10), ["seafood", "crab"]) == (0, [])


class TestSelectBest:
    def test_keyword_match_beats_nearer_candidate(self):
        curated = curate_candidates([
            candidate("Viaggio Ristorante", 10, rating=4.5),
            candidate("Cajun Crackn Concord", 25, rating=4.2),
        ])
        best = select_best_candidate(curated, ["seafood", "crab"], FoodMatchConfig(match_threshold=2))
        assert best["name"] == "Cajun Crackn Concord"
        assert best["match_score"] >= 2
        assert set(best["keyword_matches"]) == {"seafood", "crab"}

    def test_threshold_above_achievable_score(self):
        curated = curate_candidates([
            candidate("Viaggio Ristorante", 10, rating=3.5),
            candidate("Cajun Crackn Concord", 25, rating=3.5),
        ])
        best = select_best_candidate(curated, ["seafood", "crab"], FoodMatchConfig(match_threshold=99))
        assert best is None

    def test_deterministic_auto_select(self):
        curated = curate_candidates([candidate("Corner Bistro", 40, rating=4.3)])
        best = select_best_candidate(curated, None, FoodMatchConfig())
        assert best["deterministic"] is True
        assert best["confidence"] == 1

    @pytest.mark.parametrize("distance,rating", [(150, 4.8), (40, 3.9), (None, 4.8), (40, None)])
    def test_no_deterministic_when_thresholds_missed(self, distance, rating):
        curated = [candidate("Corner Bistro", distance, rating=rating)]
        assert select_best_candidate(curated, None, FoodMatchConfig()) is None

    def test_does_not_mutate_input(self):
        curated = [candidate("Corner Bistro", 40, rating=4.3)]
        select_best_candidate(curated, None, FoodMatchConfig())
        assert "deterministic" not in curated[0]


class TestMatchFoodLocation:
    @pytest.mark.asyncio
    async def test_end_to_end_keyword_property(self):
        client = FakeFoodSearch(default=[
            candidate("Cajun Crackn Concord", 25, rating=4.2),
            candidate("Viaggio Ristorante", 10, rating=3.8),
        ])
        result = await match_food_location(client, 37.9, -122.0, ["seafood", "crab"], FoodMatchConfig(match_threshold=2))
        assert result.best["name"] == "Cajun Crackn Concord"
        assert result.best["match_score"] >= 2

        strict = await match_food_location(client, 37.9, -122.0, ["seafood", "crab"], FoodMatchConfig(match_threshold=10))
        assert strict.best is None
        assert len(strict.candidates) == 2


class TestFoodLocationNode:
    @pytest.mark.asyncio
    async def test_zero_candidates_everywhere(self):
        node = FoodLocationNode(FakeFoodSearch())
        update = await node({"gps_string": GPS, "poi_cache": {"nearby_food": []}})
        assert update["nearby_food_places"] == []
        assert update["best_restaurant_candidate"] is None

    @pytest.mark.asyncio
    async def test_no_gps(self):
        client = FakeFoodSearch(default=[candidate("Beans", 5, rating=4.9)])
        update = await FoodLocationNode(client)({"metadata": {}})
        assert update["nearby_food_places"] == []
        assert update["best_restaurant_candidate"] is None
        assert client.radii == []

    @pytest.mark.asyncio
    async def test_uses_prefetched_context_and_scene_tags(self):
        client = FakeFoodSearch()
        state = {
            "gps_string": GPS,
            "scene_tags": ["seafood", "crab"],
            "poi_cache": {"nearby_food": [
                candidate("Viaggio Ristorante", 10, rating=4.6),
                candidate("Cajun Crackn Concord", 25, rating=4.2),
            ]},
        }
        update = await FoodLocationNode(client)(state)
        assert update["best_restaurant_candidate"]["name"] == "Cajun Crackn Concord"
        assert client.radii == []
        assert len(update["nearby_food_places_curated"]) == 2

    @pytest.mark.asyncio
    async def test_caller_keywords_win_over_scene_tags(self):
        state = {
            "gps_string": GPS,
            "food_keywords": ["pizza"],
            "scene_tags": ["seafood"],
            "poi_cache": {"nearby_food": [
                candidate("Tony's Pizzeria", 30, rating=3.0),
                candidate("Crab Shack", 20, rating=3.0),
            ]},
        }
        update = await FoodLocationNode(FakeFoodSearch())(state)
        assert update["best_restaurant_candidate"]["name"] == "Tony's Pizzeria"
