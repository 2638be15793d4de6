"""
Configuration for the photo enrichment workflow.

Values come from environment variables (and a local .env file) through
pydantic-settings.
"""

from __future__ import annotations

from functools import lru_cache
from typing import List

from dotenv import load_dotenv
from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Runtime settings for models, geo providers, caching and matching."""

    model_config = SettingsConfigDict(
        env_prefix="PHOTO_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Language models
    openai_api_key: SecretStr = Field(default=SecretStr(""), description="OpenAI API key")
    default_model: str = "gpt-4o"
    classify_model: str = "gpt-4o-mini"
    metadata_model: str = "gpt-4o-mini"
    location_model: str = "gpt-4o-mini"
    food_model: str = "gpt-4o-mini"
    collectible_model: str = "gpt-4o"
    describe_model: str = "gpt-4o-mini"

    # Geo / search providers
    google_maps_api_key: SecretStr = Field(default=SecretStr(""), description="Google Maps Platform key")
    google_search_api_key: SecretStr = Field(default=SecretStr(""), description="Custom Search JSON API key")
    google_search_cx: str = Field(default="", description="Custom Search engine id")
    osm_overpass_endpoint: str = "https://overpass-api.de/api/interpreter"
    search_max_results: int = Field(default=5, ge=1, le=10)
    request_timeout: float = Field(default=10.0, gt=0, le=120)

    # Cache
    places_cache_ttl_hours: float = 24.0
    food_cache_ttl_hours: float = 2.0
    osm_cache_ttl_hours: float = 6.0
    context_cache_ttl_hours: float = 1.0
    cache_max_entries: int = Field(default=500, ge=1)

    # Radii (meters)
    nearby_places_radius: int = 800
    food_search_start_radius: float = 30.48
    food_search_max_radius: float = 250.0
    osm_trails_radius: int = 200
    osm_skip_categories: str = "food"

    # Food matching
    food_candidate_max: int = Field(default=5, ge=1)
    food_deterministic_distance: float = 100.0
    food_deterministic_min_rating: float = 4.0
    food_keyword_match_threshold: int = 2

    log_level: str = "INFO"

    @property
    def skip_trail_categories(self) -> List[str]:
        return [c.strip().lower() for c in self.osm_skip_categories.split(",") if c.strip()]


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    # the OpenAI SDK reads OPENAI_API_KEY straight from the environment
    load_dotenv()
    return Settings()
