from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

import httpx

from photo_enrichment.ai.cache import TTLCache, coordinate_key, hours
from photo_enrichment.ai.poi.geo import distance_or_none, distance_sort_key
from photo_enrichment.ai.states import PoiCandidate

logger = logging.getLogger(__name__)

OVERPASS_ENDPOINT = "https://overpass-api.de/api/interpreter"


def build_overpass_query(lat: float, lon: float, radius: float) -> str:
    around = f"around:{int(round(radius))}, {lat}, {lon}"
    return (
        "[out:json][timeout:25];\n"
        "(\n"
        f'  way({around})[highway~"footway|path|cycleway"];\n'
        f'  relation({around})[route~"hiking|foot|bicycle"];\n'
        f"  way({around})[waterway=canal];\n"
        ");\n"
        "out tags center;"
    )


def normalize_element(element: Dict[str, Any], lat: float, lon: float) -> Optional[PoiCandidate]:
    """Overpass element -> trail candidate; elements without a position are dropped."""
    center = element.get("center") or {}
    el_lat = center.get("lat", element.get("lat"))
    el_lon = center.get("lon", element.get("lon"))
    if el_lat is None or el_lon is None:
        return None
    tags = element.get("tags") or {}
    return PoiCandidate(
        id=f"osm:{element.get('type')}/{element.get('id')}",
        name=tags.get("name") or "",
        category="trail",
        lat=el_lat,
        lon=el_lon,
        distance_meters=distance_or_none(lat, lon, el_lat, el_lon),
        source="osm",
        tags={str(k): str(v) for k, v in tags.items()},
    )


class OsmTrailsClient:
    """Footpaths, cycleways, hiking routes and canals from the Overpass API."""

    def __init__(
        self,
        http: httpx.AsyncClient,
        cache: TTLCache,
        endpoint: str = OVERPASS_ENDPOINT,
        ttl_hours: float = 6.0,
    ) -> None:
        self.http = http
        self.cache = cache
        self.endpoint = endpoint
        self.ttl_seconds = hours(ttl_hours)

    async def nearby_trails(self, lat: float, lon: float, radius: float = 100) -> List[PoiCandidate]:
        key = coordinate_key("osm", lat, lon, radius)
        cached = self.cache.get(key)
        if cached is not None:
            return cached

        query = build_overpass_query(lat, lon, radius)
        try:
            response = await self.http.post(self.endpoint, data={"data": query})
            response.raise_for_status()
            payload = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.warning("Overpass request failed: %s", e)
            return []

        elements = payload.get("elements") if isinstance(payload, dict) else None
        trails = []
        for element in elements or []:
            candidate = normalize_element(element, lat, lon)
            if candidate is not None:
                trails.append(candidate)
        trails.sort(key=distance_sort_key)

        self.cache.set(key, trails, self.ttl_seconds)
        return trails
