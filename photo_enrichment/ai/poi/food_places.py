from __future__ import annotations

import asyncio
import logging
from typing import List

from photo_enrichment.ai.cache import TTLCache, coordinate_key, hours
from photo_enrichment.ai.poi.geo import FOOD_PLACE_TYPES, distance_sort_key
from photo_enrichment.ai.poi.google_places import GooglePlacesClient
from photo_enrichment.ai.states import PoiCandidate

logger = logging.getLogger(__name__)


def _filled(candidate: PoiCandidate) -> int:
    return sum(1 for v in candidate.values() if v not in (None, "", []))


class FoodPlacesClient:
    """Restaurants, cafes and bars around a point, one Nearby Search per food type."""

    def __init__(self, places: GooglePlacesClient, cache: TTLCache, ttl_hours: float = 2.0) -> None:
        self.places = places
        self.cache = cache
        self.ttl_seconds = hours(ttl_hours)

    async def nearby_food_places(self, lat: float, lon: float, radius: float = 250) -> List[PoiCandidate]:
        key = coordinate_key("food", lat, lon, radius)
        cached = self.cache.get(key)
        if cached is not None:
            return cached
        if not self.places.enabled:
            return []

        responses = await asyncio.gather(
            *(self.places.nearby_search_raw(lat, lon, radius, t) for t in FOOD_PLACE_TYPES)
        )
        if all(r is None for r in responses):
            return []

        # same place comes back under several types; keep the richest record
        by_id = {}
        for results in responses:
            for raw in results or []:
                place_id = raw.get("place_id")
                if not place_id:
                    continue
                candidate = self.places.to_candidate(raw, lat, lon)
                candidate.pop("confidence", None)
                current = by_id.get(place_id)
                if current is None or _filled(candidate) > _filled(current):
                    by_id[place_id] = candidate

        food = sorted(by_id.values(), key=distance_sort_key)
        logger.debug("food search r=%.1fm found %d place(s)", radius, len(food))
        self.cache.set(key, food, self.ttl_seconds)
        return food
