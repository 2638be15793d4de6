from __future__ import annotations

import logging
import re
from typing import Any, Dict, List, Optional, Sequence

from photo_enrichment.ai.context import ContextCollector
from photo_enrichment.ai.helpers import (
    UNKNOWN,
    extract_altitude,
    extract_heading,
    extract_timestamp,
    heading_to_cardinal,
    parse_json_response,
    resolve_gps,
    usage_entry,
)
from photo_enrichment.ai.llm import LlmClient, LlmError, pick_model
from photo_enrichment.ai.poi.geo import distance_sort_key
from photo_enrichment.ai.prompts import (
    build_location_intel_user_message,
    get_location_intel_system_message,
)
from photo_enrichment.ai.states import LocationIntel, PoiCache, PoiCandidate

logger = logging.getLogger(__name__)

INTEL_FIELDS = ("city", "region", "nearest_landmark", "nearest_park", "nearest_trail", "description_addendum")
NO_INSIGHTS = "No additional location insights available."

PARK_LIKE_RE = re.compile(
    r"\b(open space|regional park|state park|city park|preserve|recreation area|park)\b",
    re.IGNORECASE,
)

BEST_NEARBY_PRIORITY = ("landmark", "attraction", "park", "trail", "mountain", "river")

# keep prompts small
_MAX_PLACES_IN_PROMPT = 8


# -------------------------
# Helpers
# -------------------------

def default_location_intel() -> LocationIntel:
    intel = LocationIntel(**{f: UNKNOWN for f in INTEL_FIELDS})
    intel["description_addendum"] = NO_INSIGHTS
    return intel


def _known(value: Any) -> bool:
    return isinstance(value, str) and value.strip() != "" and value.strip().lower() != UNKNOWN


def normalize_location_intel(raw: Dict[str, Any]) -> LocationIntel:
    intel = default_location_intel()
    for f in INTEL_FIELDS:
        value = raw.get(f)
        if _known(value):
            intel[f] = str(value).strip()
    return intel


def post_process_location_intel(intel: LocationIntel) -> LocationIntel:
    """A park-like landmark fills an unknown nearest_park."""
    intel = LocationIntel(**intel)
    landmark = intel.get("nearest_landmark")
    if _known(landmark) and not _known(intel.get("nearest_park")) and PARK_LIKE_RE.search(landmark):
        intel["nearest_park"] = landmark
    return intel


def _nearest(candidates: Sequence[PoiCandidate], categories: Sequence[str]) -> Optional[PoiCandidate]:
    matching = [c for c in candidates if c.get("category") in categories and c.get("name")]
    return min(matching, key=distance_sort_key) if matching else None


def fallback_location_intel(bundle: Optional[PoiCache]) -> LocationIntel:
    """Deterministic intel built straight from the context bundle."""
    bundle = bundle or {}
    intel = default_location_intel()
    reverse = bundle.get("reverse_result") or {}
    places = list(bundle.get("nearby_places") or [])
    trails = list(bundle.get("osm_trails") or [])

    if reverse.get("city"):
        intel["city"] = reverse["city"]
    if reverse.get("region"):
        intel["region"] = reverse["region"]

    named = sorted((p for p in places if p.get("name")), key=distance_sort_key)
    landmark = _nearest(places, ("landmark", "attraction")) or (named[0] if named else None)
    if landmark:
        intel["nearest_landmark"] = landmark["name"]
    park = _nearest(places, ("park",))
    if park:
        intel["nearest_park"] = park["name"]
    trail = _nearest(trails + places, ("trail",))
    if trail:
        intel["nearest_trail"] = trail["name"]

    parts = []
    if _known(intel["city"]):
        parts.append(f"Taken in {intel['city']}" + (f", {intel['region']}" if _known(intel["region"]) else ""))
    if _known(intel["nearest_landmark"]):
        parts.append(f"near {intel['nearest_landmark']}")
    if parts:
        intel["description_addendum"] = " ".join(parts) + "."
    intel["source"] = "fallback"
    return post_process_location_intel(intel)


def select_best_nearby(
    nearby_places: Sequence[PoiCandidate],
    trails: Sequence[PoiCandidate],
    intel: Optional[LocationIntel],
) -> Optional[Dict[str, Any]]:
    pool = [c for c in list(nearby_places) + list(trails) if c.get("name")]
    for category in BEST_NEARBY_PRIORITY:
        best = _nearest(pool, (category,))
        if best:
            return dict(best)
    if intel and _known(intel.get("nearest_landmark")):
        return {"name": intel["nearest_landmark"], "category": "landmark", "source": "model"}
    return None


def _compact(candidate: PoiCandidate) -> Dict[str, Any]:
    return {
        "name": candidate.get("name"),
        "category": candidate.get("category"),
        "distance_meters": candidate.get("distance_meters"),
    }


def build_structured_context(state: Dict[str, Any], bundle: Optional[PoiCache]) -> Dict[str, Any]:
    metadata = state.get("metadata") or {}
    coords = resolve_gps(metadata, state.get("gps_string"))
    heading = extract_heading(metadata)
    bundle = bundle or {}
    return {
        "gps": {"lat": coords[0], "lon": coords[1]} if coords else None,
        "heading_degrees": heading,
        "heading_cardinal": heading_to_cardinal(heading),
        "altitude_meters": extract_altitude(metadata),
        "timestamp": extract_timestamp(metadata),
        "device": state.get("device"),
        "reverse_geocode": bundle.get("reverse_result"),
        "nearby_places": [_compact(c) for c in (bundle.get("nearby_places") or [])[:_MAX_PLACES_IN_PROMPT]],
        "nearby_trails": [_compact(c) for c in (bundle.get("osm_trails") or [])[:_MAX_PLACES_IN_PROMPT]],
        "metadata": {k: v for k, v in metadata.items() if not isinstance(v, (bytes, bytearray))},
    }


# -------------------------
# Node
# -------------------------

class LocationIntelligenceNode:
    """LangGraph node: city/region/landmark/park/trail for a scenery photo."""

    def __init__(
        self,
        llm: LlmClient,
        collector: Optional[ContextCollector] = None,
        model: str = "gpt-4o-mini",
        max_tokens: int = 512,
    ) -> None:
        self.llm = llm
        self.collector = collector
        self.model = model
        self.max_tokens = max_tokens

    async def _bundle(self, state: Dict[str, Any]) -> Optional[PoiCache]:
        bundle = state.get("poi_cache")
        if bundle is not None or self.collector is None:
            return bundle
        coords = resolve_gps(state.get("metadata"), state.get("gps_string"))
        if coords is None:
            return None
        return await self.collector.collect(coords[0], coords[1], state.get("classification"))

    async def __call__(self, state: Dict[str, Any]) -> Dict[str, Any]:
        bundle = await self._bundle(state)
        structured = build_structured_context(state, bundle)
        model = pick_model(state.get("model_overrides"), "locationModel", self.model)

        usage: List[Dict[str, Any]] = []
        intel: Optional[LocationIntel] = None
        try:
            reply = await self.llm.complete(
                get_location_intel_system_message(),
                build_location_intel_user_message(structured),
                model=model,
                max_tokens=self.max_tokens,
            )
            usage.append(usage_entry("location_intelligence", reply.model, reply.usage, reply.duration_ms))
            parsed = parse_json_response(reply.text)
            if parsed.ok:
                intel = post_process_location_intel(normalize_location_intel(parsed.value))
                intel["source"] = "model"
            else:
                logger.warning("location_intelligence: unparsable output, using fallback (%s)", parsed.error)
        except LlmError as e:
            logger.warning("location_intelligence: model call failed, using fallback: %s", e)

        if intel is None:
            intel = fallback_location_intel(bundle)
            usage.append(usage_entry("location_intelligence", notes="deterministic fallback"))

        nearby = list((bundle or {}).get("nearby_places") or [])
        trails = list((bundle or {}).get("osm_trails") or [])
        poi_analysis = {
            "best_match": select_best_nearby(nearby, trails, intel),
            "heading_degrees": structured["heading_degrees"],
            "heading_cardinal": structured["heading_cardinal"],
            "altitude_meters": structured["altitude_meters"],
            "address": ((bundle or {}).get("reverse_result") or {}).get("address"),
            "nearby_places": nearby,
            "nearby_trails": trails,
        }

        logger.info("location_intelligence: city=%s landmark=%s (%s)",
                    intel["city"], intel["nearest_landmark"], intel.get("source"))
        return {"location_intel": intel, "poi_analysis": poi_analysis, "debug_usage": usage}
