from __future__ import annotations

import math
import re
from typing import Iterable, Optional

EARTH_RADIUS_METERS = 6_371_000.0

FOOD_PLACE_TYPES = ("restaurant", "cafe", "bakery", "bar", "meal_takeaway", "meal_delivery")
GENERIC_PLACE_TYPES = ("park", "museum", "tourist_attraction", "natural_feature")

TRAIL_NAME_RE = re.compile(r"trail|trailhead|canal|aqueduct|greenway|walkway|path", re.IGNORECASE)


def haversine_distance_meters(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    phi1, phi2 = math.radians(lat1), math.radians(lat2)
    dphi = math.radians(lat2 - lat1)
    dlambda = math.radians(lon2 - lon1)
    a = math.sin(dphi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(dlambda / 2) ** 2
    return 2 * EARTH_RADIUS_METERS * math.asin(min(1.0, math.sqrt(a)))


def distance_or_none(
    lat: float,
    lon: float,
    other_lat: Optional[float],
    other_lon: Optional[float],
) -> Optional[float]:
    if other_lat is None or other_lon is None:
        return None
    return round(haversine_distance_meters(lat, lon, other_lat, other_lon), 1)


def normalize_category(types: Optional[Iterable[str]]) -> str:
    """Collapses Google place types into the small category set used downstream."""
    types = [t.lower() for t in (types or []) if t]
    if not types:
        return "unknown"
    first = types[0]
    if "park" in first:
        return "park"
    if "tourist_attraction" in types or "natural_feature" in types:
        return "attraction"
    if "lodging" in types:
        return "hotel"
    if any(t in ("restaurant", "cafe", "food", "bar", "fast_food") for t in types):
        return "restaurant"
    if any(t in ("store", "supermarket", "convenience_store") for t in types):
        return "store"
    if TRAIL_NAME_RE.search(first):
        return "trail"
    return first


def confidence_for_distance(distance_meters: Optional[float]) -> str:
    if distance_meters is None:
        return "low"
    if distance_meters <= 120:
        return "high"
    if distance_meters <= 300:
        return "medium"
    return "low"


def distance_sort_key(candidate: dict) -> float:
    d = candidate.get("distance_meters")
    return d if d is not None else math.inf
