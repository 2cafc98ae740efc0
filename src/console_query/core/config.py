"""Console query configuration using pydantic-settings."""
from functools import lru_cache

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    # REST API the list pages talk to
    api_url: str = Field(default="http://localhost:3044", validation_alias="CONSOLE_API_URL")
    api_timeout: float = Field(default=30.0, validation_alias="CONSOLE_API_TIMEOUT")
    api_token: str = Field(default="", validation_alias="CONSOLE_API_TOKEN")

    # List paging and search input
    default_page_size: int = Field(default=20, validation_alias="CONSOLE_PAGE_SIZE")
    search_debounce_ms: int = Field(default=500, validation_alias="CONSOLE_SEARCH_DEBOUNCE_MS")

    # Query cache retention
    max_idle_queries: int = Field(default=50, validation_alias="CONSOLE_MAX_IDLE_QUERIES")
    query_stale_time: float = Field(default=0.0, validation_alias="CONSOLE_QUERY_STALE_TIME")

    # Redis - push invalidation channel
    redis_url: str = Field(default="redis://localhost:6379", validation_alias="REDIS_URL")
    redis_enabled: bool = Field(default=True, validation_alias="REDIS_ENABLED")

    # Comma-separated event suffixes that invalidate a resource kind ("servers:changed")
    invalidation_events_str: str = Field(
        default="changed,created,updated,deleted",
        validation_alias="CONSOLE_INVALIDATION_EVENTS",
    )

    @field_validator("default_page_size", "search_debounce_ms")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        """Page size and debounce delay must be positive."""
        if v < 1:
            raise ValueError("must be >= 1")
        return v

    @field_validator("max_idle_queries")
    @classmethod
    def validate_non_negative(cls, v: int) -> int:
        """Idle retention may be zero (drop entries as soon as unobserved)."""
        if v < 0:
            raise ValueError("must be >= 0")
        return v

    @property
    def invalidation_events(self) -> list[str]:
        """Parse comma-separated invalidation event suffixes into a list."""
        if not self.invalidation_events_str:
            return []
        return [e.strip() for e in self.invalidation_events_str.split(",") if e.strip()]

    @property
    def search_debounce_seconds(self) -> float:
        """Debounce delay in seconds, as used by the event loop timers."""
        return self.search_debounce_ms / 1000


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
