from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Callable, Dict, List, Optional

import httpx

from photo_enrichment.ai.cache import TTLCache, coordinate_key, hours
from photo_enrichment.ai.poi.geo import (
    GENERIC_PLACE_TYPES,
    TRAIL_NAME_RE,
    confidence_for_distance,
    distance_or_none,
    distance_sort_key,
    normalize_category,
)
from photo_enrichment.ai.states import PoiCandidate, ReverseGeocode

logger = logging.getLogger(__name__)

GEOCODE_URL = "https://maps.googleapis.com/maps/api/geocode/json"
NEARBY_SEARCH_URL = "https://maps.googleapis.com/maps/api/place/nearbysearch/json"

DENIED_BACKOFF_SECONDS = 10 * 60


class GooglePlacesClient:
    """
    Reverse geocoding and nearby place search against the Google Maps web APIs.

    Every call is cached through the shared TTLCache keyed by rounded
    coordinates and radius. Failures return None / [] and are never cached.
    A REQUEST_DENIED answer switches the client off for a backoff window.
    """

    def __init__(
        self,
        api_key: str,
        http: httpx.AsyncClient,
        cache: TTLCache,
        ttl_hours: float = 24.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.api_key = api_key
        self.http = http
        self.cache = cache
        self.ttl_seconds = hours(ttl_hours)
        self._clock = clock
        self._denied_until = 0.0

    @property
    def enabled(self) -> bool:
        return bool(self.api_key) and self._clock() >= self._denied_until

    # -------------------------
    # HTTP
    # -------------------------

    async def _get_json(self, url: str, params: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        try:
            response = await self.http.get(url, params={**params, "key": self.api_key})
            response.raise_for_status()
            data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.warning("Google API request failed (%s): %s", url.rsplit("/", 2)[-2], e)
            return None

        if not isinstance(data, dict):
            return None
        status = data.get("status", "UNKNOWN")
        if status == "REQUEST_DENIED":
            self._denied_until = self._clock() + DENIED_BACKOFF_SECONDS
            logger.warning(
                "Google API denied the request (%s); backing off for %ds",
                data.get("error_message", "no message"),
                DENIED_BACKOFF_SECONDS,
            )
            return None
        if status not in ("OK", "ZERO_RESULTS"):
            logger.warning("Google API error: %s (status=%s)", data.get("error_message"), status)
            return None
        return data

    # -------------------------
    # Reverse geocoding
    # -------------------------

    async def reverse_geocode(self, lat: float, lon: float) -> Optional[ReverseGeocode]:
        key = coordinate_key("reverse", lat, lon)
        cached = self.cache.get(key)
        if cached is not None:
            return cached
        if not self.enabled:
            return None

        data = await self._get_json(GEOCODE_URL, {"latlng": f"{lat},{lon}"})
        if data is None:
            return None

        results = data.get("results") or []
        result = self._parse_geocode(results[0]) if results else ReverseGeocode(address=None)
        self.cache.set(key, result, self.ttl_seconds)
        return result

    @staticmethod
    def _parse_geocode(result: Dict[str, Any]) -> ReverseGeocode:
        parsed = ReverseGeocode(
            address=result.get("formatted_address"),
            city=None,
            region=None,
            country=None,
        )
        for component in result.get("address_components") or []:
            types = component.get("types") or []
            name = component.get("long_name")
            if "locality" in types and not parsed["city"]:
                parsed["city"] = name
            elif "postal_town" in types and not parsed["city"]:
                parsed["city"] = name
            elif "administrative_area_level_1" in types:
                parsed["region"] = name
            elif "country" in types:
                parsed["country"] = name
        return parsed

    # -------------------------
    # Nearby search
    # -------------------------

    async def nearby_search_raw(
        self,
        lat: float,
        lon: float,
        radius: float,
        place_type: str,
    ) -> Optional[List[Dict[str, Any]]]:
        """Raw Nearby Search results for one type; None on failure."""
        if not self.enabled:
            return None
        data = await self._get_json(
            NEARBY_SEARCH_URL,
            {"location": f"{lat},{lon}", "radius": int(round(radius)), "type": place_type},
        )
        if data is None:
            return None
        return list(data.get("results") or [])

    async def nearby_places(self, lat: float, lon: float, radius: float = 61) -> List[PoiCandidate]:
        key = coordinate_key("places", lat, lon, radius)
        cached = self.cache.get(key)
        if cached is not None:
            return cached
        if not self.enabled:
            return []

        responses = await asyncio.gather(
            *(self.nearby_search_raw(lat, lon, radius, t) for t in GENERIC_PLACE_TYPES)
        )
        if all(r is None for r in responses):
            return []

        seen = set()
        places: List[PoiCandidate] = []
        for results in responses:
            for raw in results or []:
                place_id = raw.get("place_id")
                if not place_id or place_id in seen:
                    continue
                seen.add(place_id)
                places.append(self.to_candidate(raw, lat, lon))

        places.sort(key=distance_sort_key)
        self.cache.set(key, places, self.ttl_seconds)
        return places

    @staticmethod
    def to_candidate(raw: Dict[str, Any], lat: float, lon: float) -> PoiCandidate:
        location = (raw.get("geometry") or {}).get("location") or {}
        place_lat, place_lon = location.get("lat"), location.get("lng")
        distance = distance_or_none(lat, lon, place_lat, place_lon)
        name = raw.get("name") or ""
        types = list(raw.get("types") or [])

        category = normalize_category(types)
        if TRAIL_NAME_RE.search(name):
            category = "trail"

        return PoiCandidate(
            id=raw.get("place_id"),
            place_id=raw.get("place_id"),
            name=name,
            category=category,
            lat=place_lat,
            lon=place_lon,
            distance_meters=distance,
            rating=raw.get("rating"),
            user_ratings_total=raw.get("user_ratings_total"),
            address=raw.get("vicinity") or raw.get("formatted_address"),
            source="google",
            types=types,
            confidence=confidence_for_distance(distance),
        )
