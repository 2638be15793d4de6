from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol, Sequence, Tuple

from photo_enrichment.ai.helpers import resolve_gps
from photo_enrichment.ai.poi.geo import FOOD_PLACE_TYPES
from photo_enrichment.ai.states import PoiCandidate

logger = logging.getLogger(__name__)


class FoodSearch(Protocol):
    async def nearby_food_places(self, lat: float, lon: float, radius: float = ...) -> List[PoiCandidate]:
        ...


# keyword -> terms that count as a hit in a restaurant name/category
CUISINE_HINTS: Dict[str, Tuple[str, ...]] = {
    "seafood": ("seafood", "fish", "crab", "cajun", "crawfish", "oyster", "shrimp", "lobster", "boil", "poke", "sushi"),
    "crab": ("crab", "crack", "cajun", "seafood", "boil"),
    "pizza": ("pizza", "pizzeria", "slice"),
    "pasta": ("pasta", "italian", "trattoria", "ristorante", "osteria"),
    "italian": ("italian", "trattoria", "ristorante", "osteria", "pizzeria", "pasta"),
    "sushi": ("sushi", "japanese", "izakaya", "poke", "ramen"),
    "ramen": ("ramen", "noodle", "japanese"),
    "taco": ("taco", "taqueria", "mexican", "burrito", "cantina"),
    "burger": ("burger", "grill", "diner"),
    "coffee": ("coffee", "cafe", "espresso", "roaster"),
    "dessert": ("dessert", "bakery", "patisserie", "gelato", "ice cream", "donut"),
    "bbq": ("bbq", "barbecue", "smokehouse"),
    "thai": ("thai",),
    "indian": ("indian", "curry", "tandoor"),
    "chinese": ("chinese", "dim sum", "dumpling", "szechuan", "wok"),
}

_FOOD_CATEGORY_TERMS = ("restaurant", "food", "cafe", "bar", "bakery")


@dataclass
class FoodMatchConfig:
    start_radius: float = 30.48
    max_radius: float = 250.0
    max_candidates: int = 5
    deterministic_distance: float = 100.0
    deterministic_min_rating: float = 4.0
    match_threshold: int = 2


@dataclass
class FoodMatchResult:
    candidates: List[PoiCandidate] = field(default_factory=list)
    curated: List[PoiCandidate] = field(default_factory=list)
    best: Optional[PoiCandidate] = None
    radius_used: Optional[float] = None


# -------------------------
# Search
# -------------------------

def escalation_radii(start: float, max_radius: float) -> List[float]:
    """[start, 2x, 4x, max], bounded by max, ascending and without repeats."""
    start = max(1.0, float(start))
    max_radius = max(start, float(max_radius))
    radii: List[float] = []
    for r in (start, start * 2, start * 4, max_radius):
        r = round(min(r, max_radius), 2)
        if r not in radii:
            radii.append(r)
    return sorted(radii)


async def search_food_candidates(
    client: FoodSearch,
    lat: float,
    lon: float,
    radii: Sequence[float],
) -> Tuple[List[PoiCandidate], Optional[float]]:
    """Widens the search until something is found; stops at the first non-empty radius."""
    for radius in radii:
        found = await client.nearby_food_places(lat, lon, radius)
        if found:
            logger.info("food search: %d candidate(s) at r=%.1fm", len(found), radius)
            return list(found), radius
    return [], None


# -------------------------
# Curation / scoring
# -------------------------

def _is_food_category(candidate: PoiCandidate) -> bool:
    category = str(candidate.get("category") or "").lower()
    return any(term in category for term in _FOOD_CATEGORY_TERMS)


def _ranking_key(candidate: PoiCandidate) -> Tuple[float, float]:
    distance = candidate.get("distance_meters")
    rating = candidate.get("rating")
    return (
        distance if distance is not None else math.inf,
        -(rating if rating is not None else 0.0),
    )


def curate_candidates(candidates: Sequence[PoiCandidate], max_candidates: int = 5) -> List[PoiCandidate]:
    typed = [c for c in candidates if set(c.get("types") or []) & set(FOOD_PLACE_TYPES)]
    if not typed:
        typed = [c for c in candidates if _is_food_category(c)]
    if not typed:
        typed = list(candidates)
    return sorted(typed, key=_ranking_key)[:max_candidates]


def keyword_score(candidate: PoiCandidate, keywords: Sequence[str]) -> Tuple[int, List[str]]:
    """Name hit scores 2, category/type-only hit scores 1, per keyword."""
    name = str(candidate.get("name") or "").lower()
    meta = " ".join(
        [str(candidate.get("category") or "")] + [str(t) for t in candidate.get("types") or []]
    ).lower().replace("_", " ")

    score = 0
    matched: List[str] = []
    for keyword in keywords:
        kw = str(keyword).strip().lower()
        if not kw:
            continue
        terms = CUISINE_HINTS.get(kw, ()) + (kw,)
        if any(term in name for term in terms):
            score += 2
            matched.append(kw)
        elif any(term in meta for term in terms):
            score += 1
            matched.append(kw)
    return score, matched


def select_best_candidate(
    curated: Sequence[PoiCandidate],
    keywords: Optional[Sequence[str]],
    config: FoodMatchConfig,
) -> Optional[PoiCandidate]:
    if not curated:
        return None

    if keywords:
        scored = []
        for c in curated:
            score, matched = keyword_score(c, keywords)
            scored.append((score, _ranking_key(c)[0], c, matched))
        # highest score first, nearer wins ties
        scored.sort(key=lambda s: (-s[0], s[1]))
        score, _, top, matched = scored[0]
        if score >= config.match_threshold:
            return PoiCandidate(
                {**top, "match_score": score, "keyword_matches": matched, "selection_reason": "keyword"}
            )

    top = curated[0]
    distance = top.get("distance_meters")
    rating = top.get("rating")
    if (
        distance is not None
        and distance <= config.deterministic_distance
        and rating is not None
        and rating >= config.deterministic_min_rating
    ):
        return PoiCandidate(
            {**top, "deterministic": True, "confidence": 1, "selection_reason": "deterministic"}
        )
    return None


async def match_food_location(
    client: Optional[FoodSearch],
    lat: float,
    lon: float,
    keywords: Optional[Sequence[str]],
    config: FoodMatchConfig,
    prefetched: Optional[List[PoiCandidate]] = None,
) -> FoodMatchResult:
    radius_used = None
    if prefetched:
        candidates = list(prefetched)
    elif client is not None:
        candidates, radius_used = await search_food_candidates(
            client, lat, lon, escalation_radii(config.start_radius, config.max_radius)
        )
    else:
        candidates = []

    curated = curate_candidates(candidates, config.max_candidates)
    best = select_best_candidate(curated, keywords, config)
    return FoodMatchResult(candidates=candidates, curated=curated, best=best, radius_used=radius_used)


# -------------------------
# Node
# -------------------------

class FoodLocationNode:
    """LangGraph node: picks the restaurant candidates for a food photo."""

    def __init__(self, food_client: Optional[FoodSearch], config: Optional[FoodMatchConfig] = None) -> None:
        self.food_client = food_client
        self.config = config or FoodMatchConfig()

    async def __call__(self, state: Dict[str, Any]) -> Dict[str, Any]:
        coords = resolve_gps(state.get("metadata"), state.get("gps_string"))
        if coords is None:
            logger.info("food_location: no GPS, skipping restaurant match")
            return {
                "nearby_food_places": [],
                "nearby_food_places_curated": [],
                "best_restaurant_candidate": None,
            }

        keywords = list(state.get("food_keywords") or []) or list(state.get("scene_tags") or [])
        prefetched = (state.get("poi_cache") or {}).get("nearby_food")

        try:
            result = await match_food_location(
                self.food_client, coords[0], coords[1], keywords, self.config, prefetched=prefetched
            )
        except Exception as e:
            logger.warning("food_location: candidate search failed: %s", e)
            result = FoodMatchResult()

        best = result.best
        logger.info(
            "food_location: %d candidate(s), best=%s",
            len(result.candidates),
            best.get("name") if best else None,
        )
        return {
            "nearby_food_places": result.candidates,
            "nearby_food_places_curated": result.curated,
            "best_restaurant_candidate": best,
        }
