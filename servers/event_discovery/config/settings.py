"""Service settings using pydantic-settings."""

from functools import lru_cache
from typing import Literal, Optional

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Configuration loaded from environment variables and an optional `.env`.

    A missing provider credential is not an error: that provider is simply
    skipped at search time.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    # Provider credentials
    ticketmaster_api_key: Optional[str] = Field(default=None, alias="TICKETMASTER_API_KEY")
    rapidapi_key: Optional[str] = Field(default=None, alias="RAPIDAPI_KEY")
    rapidapi_host: str = Field(
        default="real-time-events-search.p.rapidapi.com", alias="RAPIDAPI_HOST"
    )
    eventbrite_token: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("EVENTBRITE_TOKEN", "EVENTBRITE_PRIVATE_TOKEN"),
    )

    # Geocoding
    mapbox_token: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("MAPBOX_TOKEN", "MAPBOX_ACCESS_TOKEN")
    )
    nominatim_enabled: bool = Field(default=True, alias="NOMINATIM_ENABLED")
    geocode_timeout: float = Field(default=5.0, alias="GEOCODE_TIMEOUT")

    # Persisted store
    supabase_url: Optional[str] = Field(default=None, alias="SUPABASE_URL")
    supabase_key: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("SUPABASE_KEY", "SUPABASE_SERVICE_ROLE_KEY"),
    )
    supabase_table: str = Field(default="events", alias="SUPABASE_TABLE")
    store_max_age_hours: float = Field(default=24.0, alias="STORE_MAX_AGE_HOURS")

    # HTTP behaviour
    http_timeout: float = Field(default=10.0, alias="HTTP_TIMEOUT")
    provider_timeout: float = Field(default=12.0, alias="PROVIDER_TIMEOUT")
    retry_attempts: int = Field(default=3, ge=1, alias="RETRY_ATTEMPTS")
    retry_base_delay: float = Field(default=0.5, ge=0, alias="RETRY_BASE_DELAY")

    # Rate quotas
    ticketmaster_per_second: int = Field(default=5, alias="TICKETMASTER_PER_SECOND")
    ticketmaster_per_day: int = Field(default=5000, alias="TICKETMASTER_PER_DAY")
    rapidapi_per_minute: int = Field(default=30, alias="RAPIDAPI_PER_MINUTE")
    rapidapi_per_day: int = Field(default=500, alias="RAPIDAPI_PER_DAY")
    eventbrite_per_minute: int = Field(default=16, alias="EVENTBRITE_PER_MINUTE")
    eventbrite_per_day: int = Field(default=2000, alias="EVENTBRITE_PER_DAY")
    provider_min_interval: float = Field(default=0.5, ge=0, alias="PROVIDER_MIN_INTERVAL")

    # Circuit breaker
    breaker_failure_threshold: int = Field(default=5, ge=1, alias="BREAKER_FAILURE_THRESHOLD")
    breaker_recovery_timeout: float = Field(default=60.0, alias="BREAKER_RECOVERY_TIMEOUT")

    # Response cache
    cache_ttl_seconds: float = Field(default=300.0, alias="CACHE_TTL_SECONDS")
    cache_max_entries: int = Field(default=256, alias="CACHE_MAX_ENTRIES")

    # Enrichment
    enrichment_concurrency: int = Field(default=5, ge=1, alias="ENRICHMENT_CONCURRENCY")
    enrichment_timeout: float = Field(default=3.0, alias="ENRICHMENT_TIMEOUT")
    enrichment_deadline: float = Field(default=4.0, gt=0, alias="ENRICHMENT_DEADLINE")

    # Fallback events
    fallback_count: int = Field(default=12, ge=1, alias="FALLBACK_COUNT")
    fallback_days_ahead: int = Field(default=14, ge=1, alias="FALLBACK_DAYS_AHEAD")
    default_city: str = Field(default="New York", alias="DEFAULT_CITY")

    # Deduplication
    fuzzy_dedupe: bool = Field(default=False, alias="FUZZY_DEDUPE")
    fuzzy_threshold: float = Field(default=0.85, ge=0, le=1, alias="FUZZY_THRESHOLD")

    # Logging
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO", alias="LOG_LEVEL"
    )
    log_format: Literal["json", "console"] = Field(default="console", alias="LOG_FORMAT")

    @property
    def supabase_configured(self) -> bool:
        return bool(self.supabase_url and self.supabase_key)


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
