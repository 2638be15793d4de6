from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Sequence

from photo_enrichment.ai.helpers import (
    build_metadata_keywords,
    extract_heading,
    extract_altitude,
    extract_timestamp,
    heading_to_cardinal,
    keywords_to_string,
    merge_keyword_strings,
    parse_json_response,
    resolve_gps,
    usage_entry,
)
from photo_enrichment.ai.llm import LlmClient, LlmError, pick_model
from photo_enrichment.ai.location_intel import NO_INSIGHTS
from photo_enrichment.ai.prompts import (
    build_food_metadata_user_message,
    build_metadata_user_message,
    get_food_metadata_system_message,
    get_metadata_system_message,
)
from photo_enrichment.ai.states import FinalResult, LocationIntel, PoiCandidate

logger = logging.getLogger(__name__)

# a model-chosen place id needs at least this confidence
MIN_CHOSEN_PLACE_CONFIDENCE = 0.5
# used when the model picks a place id but omits restaurant_confidence
DEFAULT_CHOSEN_PLACE_CONFIDENCE = 0.85

_INTEL_LABELS = (
    ("city", "City"),
    ("region", "Region"),
    ("nearest_landmark", "Nearest landmark"),
    ("nearest_park", "Nearest park"),
    ("nearest_trail", "Nearest trail"),
)


# -------------------------
# Helpers
# -------------------------

def _known(value: Any) -> bool:
    return isinstance(value, str) and value.strip() != "" and value.strip().lower() != "unknown"


def _text(value: Any) -> str:
    return value.strip() if isinstance(value, str) else ""


def enrich_with_location_intel(
    description: str,
    keywords: str,
    intel: Optional[LocationIntel],
) -> tuple[str, str]:
    """Appends 'Location Intelligence: City: X | ...' and adds known values to keywords."""
    if not intel:
        return description, keywords

    known = [(label, intel[f]) for f, label in _INTEL_LABELS if _known(intel.get(f))]
    addendum = _text(intel.get("description_addendum"))
    if addendum == NO_INSIGHTS:
        addendum = ""

    parts = [description.strip()] if description.strip() else []
    if addendum and addendum not in description:
        parts.append(addendum)
    if known:
        parts.append("Location Intelligence: " + " | ".join(f"{label}: {value}" for label, value in known))
    return " ".join(parts), merge_keyword_strings(keywords, [value for _, value in known])


def ensure_restaurant_in_description(
    description: str,
    restaurant_name: Optional[str],
    location: Optional[str] = None,
    timestamp: Optional[str] = None,
) -> str:
    """The chosen restaurant name must appear verbatim in the description."""
    name = _text(restaurant_name)
    description = _text(description)
    if not name or name.lower() in description.lower():
        return description

    suffix = ""
    if location:
        suffix += f" in {location}"
    if timestamp:
        suffix += f" on {timestamp.split('T')[0]}"

    if not description:
        return f"A dish enjoyed at {name}{suffix}."
    if not description.endswith((".", "!", "?")):
        description += "."
    return f"{description} This dish was enjoyed at {name}{suffix}."


def _photo_location(state: Dict[str, Any]) -> Optional[str]:
    reverse = (state.get("poi_cache") or {}).get("reverse_result") or {}
    if reverse.get("address"):
        return reverse["address"]
    intel = state.get("location_intel") or {}
    if _known(intel.get("city")):
        return intel["city"]
    return None


# -------------------------
# Generic generator
# -------------------------

class GenerateMetadataNode:
    """LangGraph node: caption/description/keywords for any classification."""

    def __init__(self, llm: LlmClient, model: str = "gpt-4o-mini", max_tokens: int = 512) -> None:
        self.llm = llm
        self.model = model
        self.max_tokens = max_tokens

    @staticmethod
    def fallback(classification: str, state: Dict[str, Any]) -> Dict[str, str]:
        intel = state.get("location_intel") or {}
        where = f" in {intel['city']}" if _known(intel.get("city")) else ""
        ts = extract_timestamp(state.get("metadata"))
        when = f" on {ts.split('T')[0]}" if ts else ""
        return {
            "caption": f"A {classification} photo{where}",
            "description": f"A {classification} photo taken{where}{when}.",
            "keywords": classification,
        }

    async def __call__(self, state: Dict[str, Any]) -> Dict[str, Any]:
        classification = state.get("classification") or "other"
        metadata = dict(state.get("metadata") or {})
        coords = resolve_gps(metadata, state.get("gps_string"))
        heading = extract_heading(metadata)
        prompt_metadata = {
            **metadata,
            "direction": heading_to_cardinal(heading) or "unknown",
            "altitude": extract_altitude(metadata),
        }
        intel = state.get("location_intel")
        model = pick_model(state.get("model_overrides"), "defaultModel", self.model)

        usage: List[Dict[str, Any]] = []
        generated: Optional[Dict[str, Any]] = None
        try:
            reply = await self.llm.complete(
                get_metadata_system_message(),
                build_metadata_user_message(
                    classification,
                    prompt_metadata,
                    f"{coords[0]},{coords[1]}" if coords else "unknown",
                    state.get("device") or "unknown",
                    intel,
                ),
                image_bytes=state.get("image_bytes"),
                image_mime=state.get("image_mime"),
                model=model,
                max_tokens=self.max_tokens,
            )
            usage.append(usage_entry("generate_metadata", reply.model, reply.usage, reply.duration_ms))
            parsed = parse_json_response(reply.text)
            if parsed.ok:
                generated = parsed.value
            else:
                logger.warning("generate_metadata: unparsable output, using template (%s)", parsed.error)
        except LlmError as e:
            logger.warning("generate_metadata: model call failed, using template: %s", e)

        template = self.fallback(classification, state)
        generated = generated or {}
        caption = _text(generated.get("caption")) or template["caption"]
        description = _text(generated.get("description")) or template["description"]
        keywords = keywords_to_string(generated.get("keywords")) or template["keywords"]

        description, keywords = enrich_with_location_intel(description, keywords, intel)
        keywords = merge_keyword_strings(classification, keywords, build_metadata_keywords(metadata, coords))

        return {
            "final_result": FinalResult(
                caption=caption,
                description=description,
                keywords=keywords,
                classification=classification,
            ),
            "debug_usage": usage,
        }


# -------------------------
# Food generator
# -------------------------

def _compact_candidate(c: PoiCandidate) -> Dict[str, Any]:
    return {
        "placeId": c.get("place_id") or c.get("id"),
        "name": c.get("name"),
        "address": c.get("address"),
        "types": c.get("types") or [],
        "rating": c.get("rating"),
        "distance_meters": c.get("distance_meters"),
    }


def _confidence(value: Any, default: float) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def choose_restaurant(
    generated: Dict[str, Any],
    candidates: Sequence[PoiCandidate],
    best: Optional[PoiCandidate],
) -> tuple[Optional[PoiCandidate], float, str]:
    """
    Decides which restaurant (if any) the food entry names.

    A deterministic (locked) candidate always wins. A model-chosen place id is
    honoured only when it is in the candidate list with enough confidence.
    A model restaurant_name must match a candidate name. Otherwise the
    keyword-matched candidate, if any, is used.
    """
    if best and best.get("deterministic"):
        return best, 1.0, "deterministic"

    by_id = {(c.get("place_id") or c.get("id")): c for c in candidates}
    chosen_id = generated.get("chosen_place_id")
    if isinstance(chosen_id, str) and chosen_id in by_id:
        conf = _confidence(generated.get("restaurant_confidence"), DEFAULT_CHOSEN_PLACE_CONFIDENCE)
        if conf >= MIN_CHOSEN_PLACE_CONFIDENCE:
            return by_id[chosen_id], conf, "model_place_id"

    name = _text(generated.get("restaurant_name")).lower()
    if name:
        for c in candidates:
            if _text(c.get("name")).lower() == name:
                return c, _confidence(generated.get("restaurant_confidence"), 0.5), "model_name"

    if best:
        return best, min(1.0, 0.5 + 0.1 * int(best.get("match_score") or 0)), "keyword"
    return None, 0.0, "none"


class FoodMetadataNode:
    """LangGraph node: dish + restaurant aware metadata for food photos."""

    def __init__(self, llm: LlmClient, model: str = "gpt-4o-mini", max_tokens: int = 700) -> None:
        self.llm = llm
        self.model = model
        self.max_tokens = max_tokens

    async def __call__(self, state: Dict[str, Any]) -> Dict[str, Any]:
        classification = state.get("classification") or "food"
        metadata = dict(state.get("metadata") or {})
        coords = resolve_gps(metadata, state.get("gps_string"))
        candidates = list(state.get("nearby_food_places_curated") or state.get("nearby_food_places") or [])
        best = state.get("best_restaurant_candidate")
        locked = best if best and best.get("deterministic") else None
        timestamp = extract_timestamp(metadata)
        location = _photo_location(state)
        model = pick_model(state.get("model_overrides"), "foodModel", self.model)

        usage: List[Dict[str, Any]] = []
        generated: Dict[str, Any] = {}
        try:
            reply = await self.llm.complete(
                get_food_metadata_system_message(),
                build_food_metadata_user_message(
                    classification,
                    timestamp or "unknown",
                    location or "unknown",
                    metadata,
                    [_compact_candidate(c) for c in candidates],
                    locked,
                ),
                image_bytes=state.get("image_bytes"),
                image_mime=state.get("image_mime"),
                model=model,
                max_tokens=self.max_tokens,
            )
            usage.append(usage_entry("food_metadata", reply.model, reply.usage, reply.duration_ms))
            parsed = parse_json_response(reply.text)
            if parsed.ok:
                generated = parsed.value
            else:
                logger.warning("food_metadata: unparsable output, using template (%s)", parsed.error)
        except LlmError as e:
            logger.warning("food_metadata: model call failed, using template: %s", e)

        restaurant, confidence, reason = choose_restaurant(generated, candidates, best)
        restaurant_name = _text(restaurant.get("name")) if restaurant else None
        restaurant_address = restaurant.get("address") if restaurant else None

        dish = _text(generated.get("dish_name"))
        caption = _text(generated.get("caption"))
        if not caption:
            subject = dish or "A dish"
            caption = f"{subject} at {restaurant_name}" if restaurant_name else subject
        description = _text(generated.get("description"))
        if not description and not restaurant_name:
            description = f"{dish or 'A dish'} photographed" + (f" in {location}" if location else "") + "."
        description = ensure_restaurant_in_description(description, restaurant_name, location, timestamp)

        keywords = merge_keyword_strings(
            classification,
            generated.get("keywords"),
            [k for k in (dish, _text(generated.get("cuisine")), restaurant_name) if k],
            build_metadata_keywords(metadata, coords),
        )

        food_analysis = {
            "dish_name": dish or None,
            "dish_type": generated.get("dish_type"),
            "cuisine": generated.get("cuisine"),
            "restaurant_name": restaurant_name,
            "restaurant_address": restaurant_address,
            "restaurant_place_id": (restaurant.get("place_id") or restaurant.get("id")) if restaurant else None,
            "restaurant_confidence": confidence,
            "restaurant_reasoning": generated.get("restaurant_reasoning"),
            "selection": reason,
            "location_summary": generated.get("location_summary") or location,
        }
        logger.info("food_metadata: restaurant=%s (%s)", restaurant_name, reason)

        return {
            "food_analysis": food_analysis,
            "final_result": FinalResult(
                caption=caption,
                description=description,
                keywords=keywords,
                classification=classification,
            ),
            "debug_usage": usage,
        }
