from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Dict, List, Optional, Sequence, TypeVar

from photo_enrichment.ai.cache import TTLCache, coordinate_key, hours
from photo_enrichment.ai.classification import (
    is_collectible,
    normalize_classification,
    should_skip_generic_poi,
    should_skip_reverse_geocode,
    should_skip_trails,
)
from photo_enrichment.ai.food_matcher import escalation_radii, search_food_candidates
from photo_enrichment.ai.helpers import resolve_gps, utc_now_iso
from photo_enrichment.ai.poi.food_places import FoodPlacesClient
from photo_enrichment.ai.poi.google_places import GooglePlacesClient
from photo_enrichment.ai.poi.osm_trails import OsmTrailsClient
from photo_enrichment.ai.states import PoiCache, PoiCacheSummary

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class ContextConfig:
    places_radius: float = 800
    trails_radius: float = 200
    food_start_radius: float = 30.48
    food_max_radius: float = 250.0
    bundle_ttl_hours: float = 1.0
    skip_trail_categories: List[str] = field(default_factory=lambda: ["food"])


async def _safe(name: str, call: Awaitable[T], default: T, failures: List[str]) -> T:
    """Runs one provider call; a failure only empties that field."""
    try:
        return await call
    except Exception as e:
        logger.warning("context: %s failed: %s", name, e)
        failures.append(name)
        return default


async def _nothing(value: Any = None) -> Any:
    return value


class ContextCollector:
    """
    Aggregates reverse geocode, nearby places, nearby food and trails for one
    coordinate into a context bundle. Provider calls run concurrently and each
    is cached by its client; the assembled bundle is cached as well.
    """

    def __init__(
        self,
        places: Optional[GooglePlacesClient],
        food: Optional[FoodPlacesClient],
        trails: Optional[OsmTrailsClient],
        cache: TTLCache,
        config: Optional[ContextConfig] = None,
    ) -> None:
        self.places = places
        self.food = food
        self.trails = trails
        self.cache = cache
        self.config = config or ContextConfig()

    def _bundle_key(self, lat: float, lon: float, classification: Optional[str], fetch_food: bool):
        intent = normalize_classification(classification).value
        return coordinate_key("context", lat, lon, intent, fetch_food)

    async def collect(
        self,
        lat: float,
        lon: float,
        classification: Optional[str],
        fetch_food: bool = False,
    ) -> PoiCache:
        fetch_food = fetch_food and not is_collectible(classification)
        key = self._bundle_key(lat, lon, classification, fetch_food)
        cached = self.cache.get(key)
        if cached is not None:
            logger.debug("context: bundle cache hit %s", key)
            return cached

        cfg = self.config
        failures: List[str] = []
        reverse_call = (
            _nothing(None)
            if self.places is None or should_skip_reverse_geocode(classification)
            else _safe("reverse_geocode", self.places.reverse_geocode(lat, lon), None, failures)
        )
        places_call = (
            _nothing([])
            if self.places is None or should_skip_generic_poi(classification)
            else _safe("nearby_places", self.places.nearby_places(lat, lon, cfg.places_radius), [], failures)
        )
        food_call = (
            _safe("nearby_food", self._food_with_escalation(lat, lon), [], failures)
            if fetch_food and self.food is not None
            else _nothing([])
        )
        trails_call = (
            _nothing([])
            if self.trails is None or should_skip_trails(classification, cfg.skip_trail_categories)
            else _safe("osm_trails", self.trails.nearby_trails(lat, lon, cfg.trails_radius), [], failures)
        )

        reverse_result, nearby_places, nearby_food, osm_trails = await asyncio.gather(
            reverse_call, places_call, food_call, trails_call
        )

        bundle = PoiCache(
            reverse_result=reverse_result,
            nearby_places=list(nearby_places or []),
            nearby_food=list(nearby_food or []),
            osm_trails=list(osm_trails or []),
            fetched_at=utc_now_iso(),
        )
        if failures:
            logger.info("context: not caching bundle after failed %s", ", ".join(failures))
        else:
            self.cache.set(key, bundle, hours(cfg.bundle_ttl_hours))
        return bundle

    async def _food_with_escalation(self, lat: float, lon: float):
        radii = escalation_radii(self.config.food_start_radius, self.config.food_max_radius)
        found, _ = await search_food_candidates(self.food, lat, lon, radii)
        return found


def summarize_bundle(bundle: PoiCache, duration_ms: int) -> PoiCacheSummary:
    reverse = bundle.get("reverse_result") or {}
    return PoiCacheSummary(
        nearby_places_count=len(bundle.get("nearby_places") or []),
        nearby_food_count=len(bundle.get("nearby_food") or []),
        osm_trails_count=len(bundle.get("osm_trails") or []),
        has_address=bool(reverse.get("address")),
        duration_ms=duration_ms,
    )


class CollectContextNode:
    """LangGraph node: fills poi_cache for the photo's coordinates."""

    def __init__(self, collector: ContextCollector, food_categories: Sequence[str] = ("food",)) -> None:
        self.collector = collector
        self.food_categories = tuple(food_categories)

    async def __call__(self, state: Dict[str, Any]) -> Dict[str, Any]:
        coords = resolve_gps(state.get("metadata"), state.get("gps_string"))
        if coords is None:
            logger.info("collect_context: no GPS, nothing to collect")
            return {}

        classification = state.get("classification")
        fetch_food = normalize_classification(classification).value in self.food_categories

        started = time.perf_counter()
        bundle = await self.collector.collect(coords[0], coords[1], classification, fetch_food=fetch_food)
        duration_ms = int((time.perf_counter() - started) * 1000)
        summary = summarize_bundle(bundle, duration_ms)

        logger.info(
            "collect_context: places=%d food=%d trails=%d address=%s (%dms)",
            summary["nearby_places_count"],
            summary["nearby_food_count"],
            summary["osm_trails_count"],
            summary["has_address"],
            duration_ms,
        )
        return {"poi_cache": bundle, "poi_cache_summary": summary}
