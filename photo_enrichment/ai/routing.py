from __future__ import annotations

from typing import Any, Dict, Literal, Optional

from photo_enrichment.ai.classification import Classification, normalize_classification
from photo_enrichment.ai.helpers import resolve_gps

END_ROUTE = "__end__"

AfterClassify = Literal["collect_context", "identify_collectible", "generate_metadata", "__end__"]


def next_stage_after_classify(
    classification: Optional[str],
    has_error: bool,
    has_gps: bool,
) -> AfterClassify:
    """Pure routing table: (classification, error present, gps present) -> next stage."""
    if has_error:
        return END_ROUTE
    cls = normalize_classification(classification)
    if cls is Classification.FOOD:
        return "collect_context"
    if cls is Classification.COLLECTIBLE:
        return "identify_collectible"
    if cls is Classification.SCENERY and has_gps:
        return "collect_context"
    return "generate_metadata"


def _has_gps(state: Dict[str, Any]) -> bool:
    return resolve_gps(state.get("metadata"), state.get("gps_string")) is not None


# -------------------------
# Conditional edge functions
# -------------------------

def route_after_classify(state: Dict[str, Any]) -> AfterClassify:
    return next_stage_after_classify(
        state.get("classification"),
        bool(state.get("error")),
        _has_gps(state),
    )


def route_after_context(state: Dict[str, Any]) -> Literal["food_location", "location_intelligence", "__end__"]:
    if state.get("error"):
        return END_ROUTE
    if normalize_classification(state.get("classification")) is Classification.FOOD:
        return "food_location"
    return "location_intelligence"


def route_after_food_location(state: Dict[str, Any]) -> Literal["food_metadata", "__end__"]:
    return END_ROUTE if state.get("error") else "food_metadata"


def route_after_location_intelligence(state: Dict[str, Any]) -> Literal["generate_metadata", "__end__"]:
    return END_ROUTE if state.get("error") else "generate_metadata"


def route_after_identify(state: Dict[str, Any]) -> Literal["valuate_collectible", "__end__"]:
    return END_ROUTE if state.get("error") else "valuate_collectible"


def route_after_valuate(state: Dict[str, Any]) -> Literal["describe_collectible", "__end__"]:
    return END_ROUTE if state.get("error") else "describe_collectible"
