from __future__ import annotations

from enum import Enum
from typing import Iterable, Optional


class Classification(str, Enum):
    SCENERY = "scenery"
    FOOD = "food"
    COLLECTIBLE = "collectible"
    RECEIPT = "receipt"
    HEALTH_DATA = "health data"
    OTHER = "other"


# checked in order; "food" wins over "collect"
_SUBSTRING_TABLE = (
    ("food", Classification.FOOD),
    ("collect", Classification.COLLECTIBLE),
    ("scenery", Classification.SCENERY),
    ("receipt", Classification.RECEIPT),
    ("health", Classification.HEALTH_DATA),
)


def normalize_classification(label: Optional[str]) -> Classification:
    """Maps any model label onto exactly one member; unknown labels -> OTHER."""
    if isinstance(label, Classification):
        return label
    text = (label or "").strip().lower()
    if not text:
        return Classification.OTHER
    for needle, member in _SUBSTRING_TABLE:
        if needle in text:
            return member
    return Classification.OTHER


def is_food(label: Optional[str]) -> bool:
    return normalize_classification(label) is Classification.FOOD


def is_collectible(label: Optional[str]) -> bool:
    return normalize_classification(label) is Classification.COLLECTIBLE


def should_skip_generic_poi(label: Optional[str]) -> bool:
    """Generic nearby places are irrelevant for food and collectible photos."""
    return normalize_classification(label) in (Classification.FOOD, Classification.COLLECTIBLE)


def should_skip_reverse_geocode(label: Optional[str]) -> bool:
    return is_collectible(label)


def should_skip_trails(label: Optional[str], skip_categories: Iterable[str] = ("food",)) -> bool:
    cls = normalize_classification(label)
    if cls in (Classification.FOOD, Classification.COLLECTIBLE):
        return True
    raw = (label or "").strip().lower() if not isinstance(label, Classification) else cls.value
    for category in skip_categories:
        category = category.strip().lower()
        if category and (category in raw or category == cls.value):
            return True
    return False
