from __future__ import annotations

import logging
import time
from typing import Any, Dict, List, Optional

import httpx

from photo_enrichment.ai.cache import TTLCache
from photo_enrichment.ai.classify import ClassifyImageNode
from photo_enrichment.ai.collectibles import (
    DescribeCollectibleNode,
    IdentifyCollectibleNode,
    ValuateCollectibleNode,
)
from photo_enrichment.ai.context import CollectContextNode, ContextCollector, ContextConfig
from photo_enrichment.ai.final_graph import build_photo_graph
from photo_enrichment.ai.food_matcher import FoodLocationNode, FoodMatchConfig
from photo_enrichment.ai.llm import LlmClient
from photo_enrichment.ai.location_intel import LocationIntelligenceNode
from photo_enrichment.ai.metadata import FoodMetadataNode, GenerateMetadataNode
from photo_enrichment.ai.poi.food_places import FoodPlacesClient
from photo_enrichment.ai.poi.google_places import GooglePlacesClient
from photo_enrichment.ai.poi.osm_trails import OsmTrailsClient
from photo_enrichment.ai.search import WebSearchClient
from photo_enrichment.ai.states import PhotoState, initial_state, merge_state
from photo_enrichment.config import Settings

logger = logging.getLogger(__name__)

_SUMMARY_SKIP = {"image_bytes", "debug_usage"}
_MAX_LIST_ITEMS = 10


def summarize_state(state: Dict[str, Any]) -> Dict[str, Any]:
    """Loggable view of a state: no image bytes, long lists truncated."""
    summary: Dict[str, Any] = {}
    for key, value in state.items():
        if key in _SUMMARY_SKIP:
            continue
        if isinstance(value, (bytes, bytearray)):
            summary[key] = f"<{len(value)} bytes>"
        elif isinstance(value, list) and len(value) > _MAX_LIST_ITEMS:
            summary[key] = value[:_MAX_LIST_ITEMS] + [f"... {len(value) - _MAX_LIST_ITEMS} more"]
        else:
            summary[key] = value
    if state.get("image_bytes"):
        summary["image_size"] = len(state["image_bytes"])
    summary["debug_usage_count"] = len(state.get("debug_usage") or [])
    return summary


def build_workflow(
    settings: Settings,
    http: httpx.AsyncClient,
    cache: Optional[TTLCache] = None,
    llm: Optional[LlmClient] = None,
):
    """Wires clients and nodes from settings and returns the compiled graph."""
    cache = cache or TTLCache(max_entries=settings.cache_max_entries)
    llm = llm or LlmClient(
        default_model=settings.default_model,
        timeout=settings.request_timeout * 6,
        api_key=settings.openai_api_key.get_secret_value() or None,
    )

    places = GooglePlacesClient(
        settings.google_maps_api_key.get_secret_value(),
        http,
        cache,
        ttl_hours=settings.places_cache_ttl_hours,
    )
    food = FoodPlacesClient(places, cache, ttl_hours=settings.food_cache_ttl_hours)
    trails = OsmTrailsClient(http, cache, endpoint=settings.osm_overpass_endpoint, ttl_hours=settings.osm_cache_ttl_hours)
    search = WebSearchClient(
        settings.google_search_api_key.get_secret_value(),
        settings.google_search_cx,
        http,
        max_results=settings.search_max_results,
    )

    collector = ContextCollector(
        places,
        food,
        trails,
        cache,
        ContextConfig(
            places_radius=settings.nearby_places_radius,
            trails_radius=settings.osm_trails_radius,
            food_start_radius=settings.food_search_start_radius,
            food_max_radius=settings.food_search_max_radius,
            bundle_ttl_hours=settings.context_cache_ttl_hours,
            skip_trail_categories=settings.skip_trail_categories,
        ),
    )
    food_config = FoodMatchConfig(
        start_radius=settings.food_search_start_radius,
        max_radius=settings.food_search_max_radius,
        max_candidates=settings.food_candidate_max,
        deterministic_distance=settings.food_deterministic_distance,
        deterministic_min_rating=settings.food_deterministic_min_rating,
        match_threshold=settings.food_keyword_match_threshold,
    )

    return build_photo_graph(
        classify_image_node=ClassifyImageNode(llm, model=settings.classify_model),
        collect_context_node=CollectContextNode(collector),
        location_intelligence_node=LocationIntelligenceNode(llm, collector, model=settings.location_model),
        food_location_node=FoodLocationNode(food, food_config),
        food_metadata_node=FoodMetadataNode(llm, model=settings.food_model),
        identify_collectible_node=IdentifyCollectibleNode(llm, model=settings.collectible_model),
        valuate_collectible_node=ValuateCollectibleNode(llm, search, model=settings.collectible_model),
        describe_collectible_node=DescribeCollectibleNode(llm, model=settings.describe_model),
        generate_metadata_node=GenerateMetadataNode(llm, model=settings.metadata_model),
    )


async def run_photo_workflow(
    graph,
    image_bytes: bytes,
    image_mime: str = "image/jpeg",
    filename: str = "",
    metadata: Optional[Dict[str, Any]] = None,
    gps_string: Optional[str] = None,
    device: Optional[str] = None,
    model_overrides: Optional[Dict[str, str]] = None,
    food_keywords: Optional[List[str]] = None,
    collectible_override: Optional[Dict[str, Any]] = None,
    run_id: Optional[str] = None,
) -> PhotoState:
    """
    Runs one photo through the compiled graph and returns the final state.
    Unexpected graph failures come back as state["error"] instead of raising.
    """
    state0 = initial_state(
        image_bytes,
        image_mime=image_mime,
        filename=filename,
        metadata=metadata,
        gps_string=gps_string,
        device=device,
        model_overrides=model_overrides,
        food_keywords=food_keywords,
        collectible_override=collectible_override,
        run_id=run_id,
    )
    logger.info("run %s start: %s", state0["run_id"], summarize_state(state0))

    started = time.perf_counter()
    try:
        final_state = await graph.ainvoke(state0, config={"recursion_limit": 25})
    except Exception as e:
        logger.exception("run %s failed", state0["run_id"])
        final_state = merge_state(state0, {"error": f"workflow failed: {e}"})
    duration_ms = int((time.perf_counter() - started) * 1000)

    logger.info(
        "run %s end in %dms: classification=%s error=%s",
        state0["run_id"],
        duration_ms,
        final_state.get("classification"),
        final_state.get("error"),
    )
    logger.debug("run %s final state: %s", state0["run_id"], summarize_state(final_state))
    return final_state
