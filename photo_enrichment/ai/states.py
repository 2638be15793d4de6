# states.py

import operator
import uuid
from typing import Annotated, Any, Dict, List, Literal, Optional, TypedDict


class PoiCandidate(TypedDict, total=False):
    id: str
    place_id: Optional[str]
    name: str
    category: str
    lat: Optional[float]
    lon: Optional[float]
    distance_meters: Optional[float]   # fixed at creation
    rating: Optional[float]
    user_ratings_total: Optional[int]
    address: Optional[str]
    source: Literal["google", "osm"]
    types: List[str]
    confidence: Any                    # high / medium / low (generic places), 1 on a locked food pick
    tags: Dict[str, str]               # osm only

    # set by the food matcher
    match_score: int
    keyword_matches: List[str]
    deterministic: bool
    selection_reason: str


class ReverseGeocode(TypedDict, total=False):
    address: Optional[str]
    city: Optional[str]
    region: Optional[str]
    country: Optional[str]


class PoiCache(TypedDict, total=False):
    reverse_result: Optional[ReverseGeocode]
    nearby_places: List[PoiCandidate]
    nearby_food: List[PoiCandidate]
    osm_trails: List[PoiCandidate]
    fetched_at: str


class PoiCacheSummary(TypedDict, total=False):
    nearby_places_count: int
    nearby_food_count: int
    osm_trails_count: int
    has_address: bool
    duration_ms: int


class LocationIntel(TypedDict, total=False):
    city: str
    region: str
    nearest_landmark: str
    nearest_park: str
    nearest_trail: str
    description_addendum: str
    source: Literal["model", "fallback"]


class MarketDataPoint(TypedDict, total=False):
    price: float
    venue: str
    url: Optional[str]
    date_seen: str
    condition: Optional[str]


class CollectibleValuation(TypedDict, total=False):
    low: Optional[float]
    high: Optional[float]
    currency: str
    reasoning: str
    market_data: List[MarketDataPoint]


class CollectibleRecord(TypedDict, total=False):
    identification: Dict[str, Any]     # id, category, confidence, source
    review: Dict[str, Any]             # status: pending / confirmed / rejected
    valuation: CollectibleValuation
    search_snippets: List[Dict[str, Any]]


class FinalResult(TypedDict, total=False):
    caption: str
    description: str
    keywords: str
    classification: str
    collectible_insights: Dict[str, Any]


class PhotoState(TypedDict, total=False):
    # ------- INPUTS / CONFIG -------

    image_bytes: bytes
    image_mime: str
    filename: str

    # EXIF-derived map (nested "GPS" map allowed)
    metadata: Dict[str, Any]

    # "lat,lon" when the caller already knows it
    gps_string: Optional[str]
    device: Optional[str]

    # defaultModel / classifyModel / locationModel / foodModel /
    # collectibleModel / describeModel
    model_overrides: Dict[str, str]

    # caller hints for the restaurant matcher ("seafood", "crab")
    food_keywords: List[str]

    # human identification that bypasses the identify model
    collectible_override: Optional[Dict[str, Any]]

    run_id: str

    # ------- ROUTING -------

    classification: Optional[str]
    classification_raw: Optional[str]
    scene_tags: List[str]

    # set by any stage that cannot continue; routes straight to END
    error: Optional[str]

    # ------- CONTEXT -------

    poi_cache: Optional[PoiCache]
    poi_cache_summary: Optional[PoiCacheSummary]

    # ------- PIPELINES -------

    nearby_food_places: List[PoiCandidate]
    nearby_food_places_curated: List[PoiCandidate]
    best_restaurant_candidate: Optional[PoiCandidate]
    food_analysis: Optional[Dict[str, Any]]

    location_intel: Optional[LocationIntel]
    poi_analysis: Optional[Dict[str, Any]]

    collectible: Optional[CollectibleRecord]

    # ------- OUTPUT -------

    final_result: Optional[FinalResult]

    # ------- DIAGNOSTICS -------

    # append-only, never read by routing or node logic
    debug_usage: Annotated[List[Dict[str, Any]], operator.add]


INPUT_FIELDS = frozenset({
    "image_bytes", "image_mime", "filename", "metadata", "gps_string",
    "device", "model_overrides", "food_keywords", "collectible_override",
    "run_id",
})

APPEND_FIELDS = frozenset({"debug_usage"})

WRITABLE_FIELDS = frozenset(PhotoState.__annotations__) - INPUT_FIELDS


def initial_state(
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
    return PhotoState(
        image_bytes=image_bytes,
        image_mime=image_mime or "image/jpeg",
        filename=filename,
        metadata=dict(metadata or {}),
        gps_string=gps_string,
        device=device,
        model_overrides=dict(model_overrides or {}),
        food_keywords=list(food_keywords or []),
        collectible_override=collectible_override,
        run_id=run_id or uuid.uuid4().hex,
        classification=None,
        error=None,
        poi_cache=None,
        debug_usage=[],
    )


def check_update(partial: Dict[str, Any]) -> None:
    """Raises KeyError when a partial update names an unknown or input field."""
    rejected = set(partial) - WRITABLE_FIELDS
    frozen = rejected & INPUT_FIELDS
    if frozen:
        raise KeyError(f"input field(s) are read-only: {sorted(frozen)}")
    if rejected:
        raise KeyError(f"unknown state field(s): {sorted(rejected)}")


def merge_state(prev: PhotoState, partial: Dict[str, Any]) -> PhotoState:
    """
    Applies a stage's partial update the same way the compiled graph does:
    last write wins per key, debug_usage appends. Unknown keys and writes to
    input fields are rejected.
    """
    check_update(partial)

    merged: Dict[str, Any] = dict(prev)
    for key, value in partial.items():
        if key in APPEND_FIELDS:
            merged[key] = list(merged.get(key) or []) + list(value or [])
        else:
            merged[key] = value
    return PhotoState(**merged)
