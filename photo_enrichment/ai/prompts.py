# ---------- PROMPTS ----------

import json
from typing import Any, Dict, Optional


def _dump(value: Any) -> str:
    return json.dumps(value, indent=2, ensure_ascii=False, default=str)


# ---------- classification ----------

def get_classify_system_message() -> str:
    return """
You are an image triage module in a photo archiving system.
Classify the photo as exactly one of: scenery, food, receipt, collectables, health data, or other.
Also list up to 8 short tags naming what is visible (dish names, cuisine, objects, landscape features).
Return ONLY a JSON object: {"classification": "...", "tags": ["...", "..."]}
""".strip()


def get_classify_user_message() -> str:
    return "Classify this photo."


# ---------- generic metadata ----------

def get_metadata_system_message() -> str:
    return """
You are a professional photo archivist. Write concise, factual archival metadata for a single photo.
Use only what is visible in the photo and the context you are given. Do not invent places, dates or people.
Return ONLY a JSON object with keys:
- caption: one short sentence
- description: 2-4 sentences describing the scene
- keywords: a comma separated string that starts with the classification, followed by 4 to 9 descriptive keywords
""".strip()


def build_metadata_user_message(
    classification: str,
    metadata: Dict[str, Any],
    gps: str,
    device: str,
    location_intel: Optional[Dict[str, Any]] = None,
) -> str:
    lines = [
        f"classification: {classification}",
        f"gps: {gps}",
        f"device: {device}",
        f"metadata: {_dump(metadata)}",
    ]
    if location_intel:
        lines.append(f"location_intelligence: {_dump(location_intel)}")
        lines.append("Mention the city, nearby landmark, park or trail when they are known (not 'unknown').")
    return "\n".join(lines)


# ---------- location intelligence ----------

def get_location_intel_system_message() -> str:
    return """
You are a location analyst. From GPS, compass heading, reverse geocoding and nearby points of interest,
decide where a photo was taken and what the camera was likely facing.
Only use names that appear in the provided context. If something cannot be determined use "unknown".
Return ONLY a JSON object with keys:
city, region, nearest_landmark, nearest_park, nearest_trail, description_addendum
description_addendum is one sentence that could be appended to a photo description.
""".strip()


def build_location_intel_user_message(structured_context: Dict[str, Any]) -> str:
    return f"Structured context:\n{_dump(structured_context)}"


# ---------- food ----------

FOOD_RESTAURANT_NAME_RULE = (
    "If restaurant_name is not null, the description MUST contain the exact "
    "restaurant_name string at least once."
)


def get_food_metadata_system_message() -> str:
    return f"""
You are a careful food and lifestyle writer producing short archival entries for a food magazine.
Use ONLY the photo and the structured context (classification, metadata, nearby_food_places, location).
Do not invent restaurants, dishes, dates or people that the input does not support.
When several restaurants are listed choose the single most plausible one; if none fits set restaurant_name to null.
{FOOD_RESTAURANT_NAME_RULE}
Return ONLY one JSON object with no markdown.
""".strip()


def build_food_metadata_user_message(
    classification: str,
    photo_timestamp: str,
    photo_location: str,
    metadata: Dict[str, Any],
    candidates: list,
    locked_restaurant: Optional[Dict[str, Any]],
) -> str:
    locked = ""
    if locked_restaurant:
        locked = (
            "\ndeterministic_restaurant: true\n"
            f"locked restaurant_name: {locked_restaurant.get('name')}\n"
            f"locked restaurant_address: {locked_restaurant.get('address')}\n"
            "You MUST use the locked restaurant and focus on the dish and the description.\n"
        )
    return f"""Photo context:
classification: {classification}
photo_timestamp: {photo_timestamp}
photo_location: {photo_location}
metadata: {_dump(metadata)}
nearby_food_places: {_dump(candidates)}
{locked}
Instructions:
1. Identify the dish. If people are visible describe them generically; never guess names, ages or relationships.
2. Compare the dish and setting with the names and types of nearby_food_places (all within roughly 100 ft).
3. Pick the candidate that logically matches (a seafood boil and a Cajun seafood place); if nothing matches set restaurant_name to null.
4. caption: one sentence. description: 1-2 sentences, naming the dish and, when known, the restaurant, location and date.
   {FOOD_RESTAURANT_NAME_RULE}
5. keywords: array of short strings (dish, cuisine, ingredients, restaurant name, scene).

Respond with a JSON object with keys:
caption, description, dish_name, dish_type, cuisine, restaurant_name, restaurant_address,
restaurant_confidence (0-1), restaurant_reasoning, location_summary, keywords (array),
chosen_place_id (placeId of the chosen candidate or null)
"""


# ---------- collectibles ----------

def get_identify_system_message() -> str:
    return """
You are an expert visual identifier of collectibles.
Identify the item in the image as precisely as possible. Return a JSON object with:
- "id": precise identification (e.g. "Marvel Power Pack #1, 1984", "Pyrex Butterprint Mixing Bowl 403")
- "confidence": number between 0 and 1
- "category": broad category (e.g. "Comics", "Kitchenware", "Trading Cards")
Do NOT estimate value. Do NOT describe the background.
""".strip()


def get_valuate_system_message() -> str:
    return """
You are a professional appraiser. Determine the market value of a collectible from web search results.
Return a JSON object with this exact schema:
{
  "valuation": {"low": <number or null>, "high": <number or null>, "currency": "USD"},
  "market_data": [
    {"price": <plain number>, "venue": "<e.g. eBay, Heritage Auctions>", "url": "<source url>", "date_seen": "YYYY-MM-DD"}
  ],
  "reasoning": "<string>"
}
Put every individual price you find into market_data. Prices are plain numbers without $ or commas.
If no price can be found set low and high to null and market_data to []. Never make up numbers.
""".strip()


def build_valuate_user_message(collectible_id: str, category: str, search_text: str) -> str:
    return (
        f"Item: {collectible_id}\n"
        f"Category: {category}\n\n"
        f"Search results:\n{search_text}"
    )


def get_describe_system_message() -> str:
    return """
You are a collectibles expert writing descriptions for a photo catalog app.
Turn the structured analysis into a 3-5 sentence description in a confident appraiser's voice:
what the item is, its condition, the estimated value range citing the sources and prices found,
and one notable detail about it.
Return a JSON object:
{
  "description": "...",
  "caption": "short headline, 5-10 words",
  "keywords": ["up to 8 keywords"],
  "priceSources": [{"source": "...", "url": "https://...", "priceFound": "$XX - $XX", "notes": "..."}]
}
""".strip()


def build_describe_user_message(
    identification: Dict[str, Any],
    valuation: Dict[str, Any],
    search_snippets: list,
) -> str:
    return (
        f"Identification: {_dump(identification)}\n"
        f"Valuation: {_dump(valuation)}\n"
        f"Search results used: {_dump(search_snippets)}"
    )
